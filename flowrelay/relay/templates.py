"""세션별 템플릿 상태: 디코드용 TemplateStore와 출력용 OutputTemplateSelector."""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from flowrelay.netflow.models import DecodeResult, ErrorCode, FlowRecord, Template
from flowrelay.netflow.parser import TemplateNotFoundError, decode, search_template
from flowrelay.relay.session import SessionKey

logger = logging.getLogger("flowrelay.relay.templates")

Decoder  = Callable[[bytes, list[Template]], DecodeResult]
Searcher = Callable[[int, Iterable[Template]], Template]


class TemplateStore:
    """세션별 디코드 템플릿 캐시.

    디코더가 돌려준 템플릿 목록으로 세션의 목록을 통째로 교체한다.
    디코더는 템플릿을 추가/교체만 하므로 목록은 줄어들지 않는다.
    세션이 살아 있는 동안(프로세스 수명) 삭제하지 않는다.
    """

    def __init__(self, decoder: Decoder = decode) -> None:
        self._decoder = decoder
        self._templates: dict[SessionKey, list[Template]] = {}

    def templates(self, session: SessionKey) -> list[Template]:
        """세션의 현재 템플릿 목록 (처음 보는 세션이면 빈 목록)."""
        return list(self._templates.get(session, []))

    def decode_and_update(self, session: SessionKey, packet: bytes) -> DecodeResult:
        """패킷을 디코드하고 세션의 템플릿 목록을 갱신한다.

        반환되는 errors에서 "template not found"는 제외된다. 새 템플릿을
        처음 받기 전의 데이터 셋에서 흔히 발생하는 일시적 상황이기 때문이다.
        """
        known = self._templates.get(session)
        if known is None:
            logger.info("New export session %s", session)
            known = []

        result = self._decoder(packet, known)
        self._templates[session] = result.templates

        if len(result.templates) != len(known):
            logger.debug(
                "Session %s now has %d templates", session, len(result.templates),
            )

        result.errors = [
            e for e in result.errors if e.code is not ErrorCode.TEMPLATE_NOT_FOUND
        ]
        return result

    @property
    def sessions(self) -> list[SessionKey]:
        return list(self._templates)


class OutputTemplateSelector:
    """세션별 출력 템플릿 캐시: 전달된 레코드의 set_id → 템플릿.

    처음 보는 set_id만 TemplateStore에서 찾고, 이후에는 캐시된 템플릿을
    그대로 쓴다. 익스포터가 같은 set_id로 레이아웃을 바꿔도 캐시는
    갱신되지 않는다. 찾지 못한 경우 None을 저장하고 다음 레코드에서 다시 찾는다.
    """

    def __init__(self, store: TemplateStore, search: Searcher = search_template) -> None:
        self._store  = store
        self._search = search
        self._cache: dict[SessionKey, dict[int, Template | None]] = {}

    def resolve(self, session: SessionKey, record: FlowRecord) -> Template | None:
        """레코드를 다시 인코드하는 데 필요한 템플릿을 반환한다."""
        cache = self._cache.setdefault(session, {})
        template = cache.get(record.set_id)
        if template is not None:
            return template

        try:
            template = self._search(record.set_id, self._store.templates(session))
        except TemplateNotFoundError as exc:
            logger.warning("%s: %s", session, exc)
            template = None
        cache[record.set_id] = template
        return template

    def templates(self, session: SessionKey) -> list[Template | None]:
        """세션의 출력 캐시에 있는 모든 템플릿 (해석 실패한 None 포함)."""
        return list(self._cache.get(session, {}).values())
