"""RelayProcessor — 수신 패킷 하나에 대한 릴레이 루프 한 단계."""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

from flowrelay.netflow.encoder import (
    DEFAULT_MAX_PACKET_SIZE,
    DEFAULT_TEMPLATE_RESEND_SECS,
    EncodeState,
    encode,
)
from flowrelay.netflow.models import (
    IPFIX,
    NETFLOW_V9,
    EncodeResult,
    FlowRecord,
    Template,
)
from flowrelay.relay.filters import RecordFilter
from flowrelay.relay.sequence import prepare_output_header
from flowrelay.relay.session import identify, packet_version
from flowrelay.relay.templates import OutputTemplateSelector, TemplateStore

logger = logging.getLogger("flowrelay.relay.processor")

Encoder = Callable[
    [EncodeState, Sequence[Optional[Template]], Sequence[FlowRecord], int], EncodeResult
]


class RelayProcessor:
    """수신 → 세션 식별 → 디코드 → 필터 → 템플릿 선택 → 헤더 보정 → 인코드.

    전송할 패킷 목록을 반환할 뿐 소켓은 다루지 않는다. 세션 테이블과
    인코더 상태를 단독으로 소유하므로 패킷은 도착 순서대로 한 번에 하나씩
    처리해야 한다.
    """

    def __init__(
        self,
        record_filter: RecordFilter,
        store: TemplateStore | None = None,
        selector: OutputTemplateSelector | None = None,
        encoder: Encoder = encode,
        max_packet_size: int = DEFAULT_MAX_PACKET_SIZE,
        template_resend_secs: float = DEFAULT_TEMPLATE_RESEND_SECS,
    ) -> None:
        self._filter   = record_filter
        self._store    = store if store is not None else TemplateStore()
        self._selector = selector if selector is not None else OutputTemplateSelector(self._store)
        self._encoder  = encoder
        self._max_packet_size = max_packet_size
        # 출력 스트림이 하나뿐이므로 모든 세션이 같은 인코더 상태를 공유한다
        self._state = EncodeState(template_resend_secs=template_resend_secs)

        self._packets_received  = 0
        self._packets_ignored   = 0
        self._records_decoded   = 0
        self._records_forwarded = 0
        self._packets_emitted   = 0

    def process(self, packet: bytes, sender: tuple[str, int]) -> list[bytes]:
        """패킷 하나를 처리하고 하류 컬렉터로 보낼 패킷들을 반환한다."""
        self._packets_received += 1

        version = packet_version(packet)
        if version not in (NETFLOW_V9, IPFIX):
            self._packets_ignored += 1
            logger.warning("v%d packet from %s:%d ignored", version, sender[0], sender[1])
            return []

        session = identify(packet, sender)
        decoded = self._store.decode_and_update(session, packet)
        for err in decoded.errors:
            logger.warning("%s: %s", session, err)
        self._records_decoded += len(decoded.records)

        forwardable = self._filter.select(decoded.records)
        if not forwardable:
            return []

        for record in forwardable:
            self._selector.resolve(session, record)

        state = prepare_output_header(decoded.header, self._state)
        result = self._encoder(
            state,
            self._selector.templates(session),
            forwardable,
            self._max_packet_size,
        )
        self._state = result.state
        for err in result.errors:
            logger.warning("%s: %s", session, err)

        self._records_forwarded += len(forwardable)
        self._packets_emitted   += len(result.packets)
        logger.debug(
            "%s: forwarding %d of %d records in %d packets",
            session, len(forwardable), len(decoded.records), len(result.packets),
        )
        return result.packets

    @property
    def encode_state(self) -> EncodeState:
        return self._state

    @property
    def store(self) -> TemplateStore:
        return self._store

    @property
    def selector(self) -> OutputTemplateSelector:
        return self._selector

    @property
    def packets_received(self) -> int:
        return self._packets_received

    @property
    def packets_ignored(self) -> int:
        """버전 검사에서 버려진 패킷 수."""
        return self._packets_ignored

    @property
    def records_decoded(self) -> int:
        return self._records_decoded

    @property
    def records_forwarded(self) -> int:
        return self._records_forwarded

    @property
    def packets_emitted(self) -> int:
        return self._packets_emitted
