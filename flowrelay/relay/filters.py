"""전달할 가치가 있는 레코드를 고르는 필터."""

from __future__ import annotations

import logging
from typing import Iterable

from flowrelay.netflow.elements import NAT_EVENT_ELEMENTS, element_ids
from flowrelay.netflow.models import FlowRecord

logger = logging.getLogger("flowrelay.relay.filters")


class RecordFilter:
    """허용 목록의 요소 중 하나라도 값이 있는 레코드만 통과시킨다.

    허용 목록은 시작 시 한 번 이름 → ID로 해석한다.
    """

    def __init__(self, allowed: Iterable[int]) -> None:
        self._allowed = frozenset(allowed)

    @classmethod
    def from_names(cls, names: Iterable[str] = NAT_EVENT_ELEMENTS) -> "RecordFilter":
        """요소 이름 목록으로 필터를 만든다. 모르는 이름이면 KeyError."""
        names = list(names)
        flt = cls(element_ids(names))
        logger.info("Record filter allows: %s", ", ".join(names))
        return flt

    @property
    def allowed(self) -> frozenset[int]:
        return self._allowed

    def is_forwardable(self, record: FlowRecord) -> bool:
        # 빈 값(b"" 또는 빈 리스트)은 없는 것으로 본다
        return any(record.fields.get(ident) for ident in self._allowed)

    def select(self, records: Iterable[FlowRecord]) -> list[FlowRecord]:
        """전달 대상 레코드만 순서대로 반환한다."""
        return [r for r in records if self.is_forwardable(r)]
