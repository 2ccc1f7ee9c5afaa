"""flowrelay 테스트 공용 픽스처: NetFlow v9 / IPFIX 패킷 생성기."""

from __future__ import annotations

import socket
import struct

import pytest

from flowrelay.relay.filters import RecordFilter


class PacketFactory:
    """테스트용 NetFlow v9 / IPFIX UDP 페이로드를 struct로 직접 만든다."""

    NAT_SET_ID   = 256
    PLAIN_SET_ID = 257

    # sourceIPv4Address, destinationIPv4Address,
    # postNATSourceIPv4Address, postNATDestinationIPv4Address
    NAT_FIELDS   = [(8, 4), (12, 4), (225, 4), (226, 4)]
    # sourceIPv4Address, destinationIPv4Address,
    # sourceTransportPort, destinationTransportPort
    PLAIN_FIELDS = [(8, 4), (12, 4), (7, 2), (11, 2)]

    @staticmethod
    def field_specs(fields) -> bytes:
        out = b""
        for spec in fields:
            if len(spec) == 3:
                ident, length, pen = spec
                out += struct.pack("!HHI", ident | 0x8000, length, pen)
            else:
                ident, length = spec
                out += struct.pack("!HH", ident, length)
        return out

    @staticmethod
    def _set(set_id: int, body: bytes, pad: bool) -> bytes:
        length = 4 + len(body)
        padding = (-length) % 4 if pad else 0
        return struct.pack("!HH", set_id, length + padding) + body + bytes(padding)

    def v9_template_set(self, *templates) -> bytes:
        body = b""
        for set_id, fields in templates:
            body += struct.pack("!HH", set_id, len(fields)) + self.field_specs(fields)
        return self._set(0, body, pad=True)

    def v9_options_template_set(self, set_id, scope_fields, option_fields) -> bytes:
        body = struct.pack("!HHH", set_id, len(scope_fields) * 4, len(option_fields) * 4)
        body += self.field_specs(scope_fields) + self.field_specs(option_fields)
        return self._set(1, body, pad=True)

    def ipfix_template_set(self, *templates) -> bytes:
        body = b""
        for set_id, fields in templates:
            body += struct.pack("!HH", set_id, len(fields)) + self.field_specs(fields)
        return self._set(2, body, pad=False)

    def ipfix_options_template_set(self, set_id, scope_fields, option_fields) -> bytes:
        count = len(scope_fields) + len(option_fields)
        body = struct.pack("!HHH", set_id, count, len(scope_fields))
        body += self.field_specs(scope_fields) + self.field_specs(option_fields)
        return self._set(3, body, pad=False)

    def data_set(self, set_id: int, records: list[bytes], pad: bool = True) -> bytes:
        return self._set(set_id, b"".join(records), pad=pad)

    @staticmethod
    def v9(
        *sets: bytes,
        sequence: int = 0,
        source_id: int = 0,
        count: int = 0,
        sys_uptime: int = 5000,
        unix_secs: int = 1_700_000_000,
    ) -> bytes:
        header = struct.pack("!HHIIII", 9, count, sys_uptime, unix_secs, sequence, source_id)
        return header + b"".join(sets)

    @staticmethod
    def ipfix(
        *sets: bytes,
        sequence: int = 0,
        domain_id: int = 0,
        export_time: int = 1_700_000_000,
    ) -> bytes:
        body = b"".join(sets)
        header = struct.pack("!HHIII", 10, 16 + len(body), export_time, sequence, domain_id)
        return header + body

    @staticmethod
    def v5(count: int = 0) -> bytes:
        header = struct.pack("!HHIIIIBBH", 5, count, 60000, 1_700_000_000, 0, 0, 0, 0, 0)
        return header + bytes(48 * count)

    @staticmethod
    def nat_record(
        src: str = "10.0.0.1",
        dst: str = "8.8.8.8",
        post_src: str = "203.0.113.5",
        post_dst: str = "8.8.8.8",
    ) -> bytes:
        return b"".join(socket.inet_aton(a) for a in (src, dst, post_src, post_dst))

    @staticmethod
    def plain_record(
        src: str = "10.0.0.2",
        dst: str = "1.1.1.1",
        src_port: int = 54321,
        dst_port: int = 443,
    ) -> bytes:
        return (
            socket.inet_aton(src) + socket.inet_aton(dst)
            + struct.pack("!HH", src_port, dst_port)
        )

    def v9_templates_packet(self, sequence: int = 0, source_id: int = 1) -> bytes:
        """NAT 템플릿(256)과 일반 템플릿(257)을 정의하는 v9 패킷."""
        return self.v9(
            self.v9_template_set(
                (self.NAT_SET_ID, self.NAT_FIELDS),
                (self.PLAIN_SET_ID, self.PLAIN_FIELDS),
            ),
            sequence=sequence, source_id=source_id, count=2,
        )

    def v9_mixed_data_packet(self, sequence: int = 1, source_id: int = 1) -> bytes:
        """NAT 레코드 하나와 일반 레코드 하나를 담은 v9 데이터 패킷."""
        return self.v9(
            self.data_set(self.NAT_SET_ID, [self.nat_record()]),
            self.data_set(self.PLAIN_SET_ID, [self.plain_record()]),
            sequence=sequence, source_id=source_id, count=2,
        )


@pytest.fixture
def packets() -> PacketFactory:
    return PacketFactory()


@pytest.fixture
def nat_filter() -> RecordFilter:
    return RecordFilter.from_names()


@pytest.fixture
def exporter() -> tuple[str, int]:
    return ("192.0.2.10", 40000)
