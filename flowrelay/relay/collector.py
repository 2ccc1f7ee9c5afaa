"""RelayCollector / FlowForwarder — asyncio UDP 기반 NetFlow/IPFIX 수신 및 재전송."""

from __future__ import annotations

import asyncio
import logging

from flowrelay.relay.processor import RelayProcessor

logger = logging.getLogger("flowrelay.relay.collector")


class _ForwardProtocol(asyncio.DatagramProtocol):
    """하류 컬렉터 방향 UDP 소켓. 수신은 하지 않는다."""

    def error_received(self, exc: Exception) -> None:
        # ICMP port unreachable 등은 패킷 단위 실패로 보고 계속 진행
        logger.warning("Send to collector failed: %s", exc)


class FlowForwarder:
    """고정된 하나의 목적지로 패킷을 보내는 UDP 송신기."""

    def __init__(self, host: str = "127.0.0.1", port: int = 2055) -> None:
        self._host = host
        self._port = port
        self._transport: asyncio.DatagramTransport | None = None
        self._sent   = 0
        self._failed = 0

    async def start(self) -> None:
        """목적지에 연결된 UDP 소켓을 연다."""
        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            _ForwardProtocol,
            remote_addr=(self._host, self._port),
        )
        self._transport = transport
        logger.info("Forwarding to %s:%d", self._host, self._port)

    def send(self, packet: bytes) -> bool:
        """패킷 하나를 보낸다. 실패해도 예외를 던지지 않고 False를 반환한다."""
        if self._transport is None:
            self._failed += 1
            logger.warning("Forwarder not started; packet dropped")
            return False
        try:
            self._transport.sendto(packet)
        except OSError as exc:
            self._failed += 1
            logger.warning("Send to %s:%d failed: %s", self._host, self._port, exc)
            return False
        self._sent += 1
        return True

    def stop(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None

    @property
    def sent(self) -> int:
        return self._sent

    @property
    def failed(self) -> int:
        return self._failed


class _RelayProtocol(asyncio.DatagramProtocol):
    """수신된 데이터그램을 RelayProcessor로 처리하고 결과를 FlowForwarder로 보낸다.

    datagram_received 안에서 처리를 끝까지 마치므로 패킷은 도착 순서대로
    하나씩 처리된다.
    """

    def __init__(self, processor: RelayProcessor, forwarder: FlowForwarder) -> None:
        self._processor = processor
        self._forwarder = forwarder

    def connection_made(self, transport: asyncio.DatagramTransport) -> None:
        logger.debug("Relay UDP receiver started")

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        try:
            packets = self._processor.process(data, addr)
        except Exception:
            logger.exception("Failed to relay packet from %s:%d", addr[0], addr[1])
            return
        for packet in packets:
            self._forwarder.send(packet)

    def error_received(self, exc: Exception) -> None:
        logger.warning("Relay UDP receive error: %s", exc)

    def connection_lost(self, exc: Exception | None) -> None:
        logger.info("Relay UDP receiver stopped")


class RelayCollector:
    """익스포터로부터 패킷을 받아 릴레이하는 서비스.

    app.py에서 start() / stop()으로 수명주기를 관리한다.
    """

    def __init__(
        self,
        processor: RelayProcessor,
        forwarder: FlowForwarder,
        host: str = "127.0.0.2",
        port: int = 2055,
    ) -> None:
        self._processor = processor
        self._forwarder = forwarder
        self._host      = host
        self._port      = port
        self._transport: asyncio.DatagramTransport | None = None

    async def start(self) -> None:
        """UDP 소켓을 바인드하고 수신을 시작한다."""
        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _RelayProtocol(self._processor, self._forwarder),
            local_addr=(self._host, self._port),
        )
        self._transport = transport
        host, port = self.local_address
        logger.info("Relay listening on %s:%d", host, port)

    def stop(self) -> None:
        """UDP 소켓을 닫는다."""
        if self._transport is not None:
            self._transport.close()
            self._transport = None

    @property
    def local_address(self) -> tuple[str, int]:
        """실제로 바인드된 (주소, 포트). 포트 0으로 바인드한 경우에 유용하다."""
        if self._transport is None:
            return self._host, self._port
        sockname = self._transport.get_extra_info("sockname")
        return sockname[0], sockname[1]
