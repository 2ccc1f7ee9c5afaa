"""메인 오케스트레이터: 필터, 릴레이 프로세서, UDP 수신/송신 통합 관리."""

from __future__ import annotations

import asyncio
import logging
import signal

from flowrelay.relay.collector import FlowForwarder, RelayCollector
from flowrelay.relay.filters import RecordFilter
from flowrelay.relay.processor import RelayProcessor
from flowrelay.utils.config import Config, ConfigError
from flowrelay.utils.logging_setup import setup_logging

logger = logging.getLogger("flowrelay.app")


class FlowRelay:
    """최상위 애플리케이션 오케스트레이터.

    컴포넌트 연결, 시작 순서 제어, 정상 종료만 담당한다.
    실제 패킷 처리는 RelayProcessor가 한다.
    """

    def __init__(self, config: Config) -> None:
        self.config = config
        self.processor: RelayProcessor | None = None
        self.collector: RelayCollector | None = None
        self.forwarder: FlowForwarder | None = None
        self.ready = asyncio.Event()
        self._stop_event = asyncio.Event()

    def build_filter(self) -> RecordFilter:
        names = self.config.get("filter.elements") or []
        try:
            return RecordFilter.from_names(names)
        except KeyError as exc:
            raise ConfigError(exc.args[0]) from None

    def stop(self) -> None:
        """run()을 종료시킨다."""
        self._stop_event.set()

    async def run(self) -> None:
        """메인 진입점: 모든 컴포넌트를 시작하고 종료 신호를 기다린다."""
        loop = asyncio.get_running_loop()

        setup_logging(self.config)
        logger.info("flowrelay starting...")

        # ── 필터 & 프로세서 ───────────────────────────────────────────────
        self.processor = RelayProcessor(
            self.build_filter(),
            max_packet_size      = self.config.get("relay.max_packet_size", 1468),
            template_resend_secs = self.config.get("relay.template_resend_secs", 3),
        )

        # ── 송신 소켓 (하류 컬렉터) ───────────────────────────────────────
        self.forwarder = FlowForwarder(
            host = self.config.get("destination.host", "127.0.0.1"),
            port = self.config.get("destination.port", 2055),
        )
        await self.forwarder.start()

        # ── 수신 소켓 ─────────────────────────────────────────────────────
        self.collector = RelayCollector(
            processor = self.processor,
            forwarder = self.forwarder,
            host      = self.config.get("bind.host", "127.0.0.2"),
            port      = self.config.get("bind.port", 2055),
        )
        try:
            await self.collector.start()
        except OSError:
            self.forwarder.stop()
            raise

        # ── 시그널 처리 ─────────────────────────────────────────────────
        def _signal_handler() -> None:
            logger.info("Shutdown signal received")
            self._stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _signal_handler)

        self.ready.set()
        try:
            await self._stop_event.wait()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)

            # ── 종료 ──────────────────────────────────────────────────────
            logger.info("Shutting down...")
            self.collector.stop()
            self.forwarder.stop()
            logger.info(
                "flowrelay stopped: %d packets received (%d ignored), "
                "%d/%d records forwarded, %d packets sent, %d send failures",
                self.processor.packets_received,
                self.processor.packets_ignored,
                self.processor.records_forwarded,
                self.processor.records_decoded,
                self.forwarder.sent,
                self.forwarder.failed,
            )
