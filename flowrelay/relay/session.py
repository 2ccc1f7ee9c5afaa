"""패킷 헤더와 송신자 주소로 논리적 익스포트 세션을 식별한다."""

from __future__ import annotations

import struct
from typing import NamedTuple

from flowrelay.netflow.models import IPFIX, NETFLOW_V5, NETFLOW_V9

# v9 헤더: version, count, sys_uptime, unix_secs, sequence, source_id
_V9_SOURCE_ID_OFFSET = 16
# IPFIX 헤더: version, length, export_time, sequence, observation_domain_id
_IPFIX_DOMAIN_ID_OFFSET = 12


class SessionKey(NamedTuple):
    """익스포터 하나의 스트림: 송신 포트, 송신 주소, source/observation domain ID."""
    port:      int
    address:   str
    domain_id: int

    def __str__(self) -> str:
        return f"{self.address}:{self.port}/{self.domain_id}"


# v5는 템플릿이 없으므로 모든 송신자가 하나의 키를 공유한다
LEGACY_SESSION = SessionKey(0, "v5", 0)


def packet_version(packet: bytes) -> int:
    """첫 2바이트의 익스포트 포맷 버전. 2바이트 미만이면 0."""
    if len(packet) < 2:
        return 0
    return struct.unpack_from("!H", packet, 0)[0]


def _read_u32(packet: bytes, offset: int) -> int:
    if len(packet) < offset + 4:
        return 0
    return struct.unpack_from("!I", packet, offset)[0]


def identify(packet: bytes, sender: tuple[str, int]) -> SessionKey:
    """패킷이 속한 세션 키를 계산한다.

    Args:
        packet: 수신된 UDP 페이로드 (최소한 헤더 부분).
        sender: 송신자 (주소, 포트). IPv6 소켓의 4-튜플도 허용한다.

    Raises:
        ValueError: v5 / v9 / IPFIX가 아닌 버전. 호출 전에 걸러야 한다.
    """
    address, port = sender[0], sender[1]
    version = packet_version(packet)
    if version == NETFLOW_V9:
        return SessionKey(port, address, _read_u32(packet, _V9_SOURCE_ID_OFFSET))
    if version == IPFIX:
        return SessionKey(port, address, _read_u32(packet, _IPFIX_DOMAIN_ID_OFFSET))
    if version == NETFLOW_V5:
        return LEGACY_SESSION
    raise ValueError(f"Unsupported export version {version}")
