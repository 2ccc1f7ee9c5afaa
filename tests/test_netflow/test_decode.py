"""NetFlow v9 / IPFIX 디코더 단위 테스트."""

import socket
import struct

import pytest

from flowrelay.netflow.models import ErrorCode, Template, TemplateField
from flowrelay.netflow.parser import TemplateNotFoundError, decode, search_template


def _codes(result) -> list[ErrorCode]:
    return [e.code for e in result.errors]


class TestDecodeV9:
    def test_template_packet(self, packets):
        result = decode(packets.v9_templates_packet(sequence=10, source_id=1), [])
        assert result.errors == []
        assert result.records == []
        assert result.header == {
            "version":    9,
            "count":      2,
            "sys_uptime": 5000,
            "unix_secs":  1_700_000_000,
            "sequence":   10,
            "source_id":  1,
        }
        assert [t.set_id for t in result.templates] == [256, 257]
        assert result.templates[0].fields == (
            TemplateField(8, 4),
            TemplateField(12, 4),
            TemplateField(225, 4),
            TemplateField(226, 4),
        )
        assert result.templates[0].is_options is False

    def test_data_with_known_templates(self, packets):
        templates = decode(packets.v9_templates_packet(), []).templates
        result = decode(packets.v9_mixed_data_packet(), templates)

        assert result.errors == []
        assert len(result.records) == 2
        nat, plain = result.records
        assert nat.set_id == 256
        assert nat.fields[8] == socket.inet_aton("10.0.0.1")
        assert nat.fields[225] == socket.inet_aton("203.0.113.5")
        assert plain.set_id == 257
        assert plain.fields[7] == struct.pack("!H", 54321)
        assert plain.fields[11] == struct.pack("!H", 443)
        assert 225 not in plain

    def test_data_before_template_reports_not_found(self, packets):
        result = decode(packets.v9_mixed_data_packet(), [])
        assert result.records == []
        assert _codes(result) == [ErrorCode.TEMPLATE_NOT_FOUND] * 2
        assert "256" in str(result.errors[0])

    def test_template_and_data_in_same_packet(self, packets):
        raw = packets.v9(
            packets.v9_template_set((256, packets.NAT_FIELDS)),
            packets.data_set(256, [packets.nat_record(), packets.nat_record(src="10.0.0.9")]),
        )
        result = decode(raw, [])
        assert result.errors == []
        assert [r.fields[8] for r in result.records] == [
            socket.inet_aton("10.0.0.1"),
            socket.inet_aton("10.0.0.9"),
        ]

    def test_template_replaced_in_place(self, packets):
        known = decode(packets.v9_templates_packet(), []).templates
        raw = packets.v9(packets.v9_template_set((256, packets.PLAIN_FIELDS)))
        result = decode(raw, known)

        assert [t.set_id for t in result.templates] == [256, 257]
        assert result.templates[0].fields[2] == TemplateField(7, 2)
        # 입력 목록은 변경하지 않는다
        assert known[0].fields[2] == TemplateField(225, 4)

    def test_new_template_appended(self, packets):
        known = decode(packets.v9_templates_packet(), []).templates
        raw = packets.v9(packets.v9_template_set((300, [(4, 1)])))
        result = decode(raw, known)
        assert [t.set_id for t in result.templates] == [256, 257, 300]

    def test_data_packet_keeps_templates(self, packets):
        known = decode(packets.v9_templates_packet(), []).templates
        result = decode(packets.v9_mixed_data_packet(), known)
        assert result.templates == known

    def test_padding_not_decoded_as_record(self, packets):
        raw = packets.v9(
            packets.v9_template_set((300, [(7, 2)])),
            packets.data_set(300, [b"\x00\x50"]),
        )
        result = decode(raw, [])
        assert len(result.records) == 1
        assert result.records[0].fields[7] == b"\x00\x50"

    def test_repeated_element_becomes_list(self, packets):
        raw = packets.v9(
            packets.v9_template_set((258, [(8, 4), (8, 4)])),
            packets.data_set(258, [socket.inet_aton("1.2.3.4") + socket.inet_aton("5.6.7.8")]),
        )
        record = decode(raw, []).records[0]
        assert record.fields[8] == [socket.inet_aton("1.2.3.4"), socket.inet_aton("5.6.7.8")]

    def test_options_template(self, packets):
        raw = packets.v9(
            packets.v9_options_template_set(400, [(1, 4)], [(34, 4), (35, 1)]),
            packets.data_set(400, [struct.pack("!IIB", 7, 1000, 2)]),
        )
        result = decode(raw, [])
        assert result.errors == []
        template = result.templates[0]
        assert template == Template(
            400,
            (TemplateField(1, 4), TemplateField(34, 4), TemplateField(35, 1)),
            scope_count=1,
            is_options=True,
        )
        assert len(result.records) == 1
        assert result.records[0].fields[34] == struct.pack("!I", 1000)


class TestDecodeIPFIX:
    def test_header(self, packets):
        raw = packets.ipfix(sequence=77, domain_id=42, export_time=1_700_000_123)
        result = decode(raw, [])
        assert result.header == {
            "version":               10,
            "length":                16,
            "unix_secs":             1_700_000_123,
            "sequence":              77,
            "observation_domain_id": 42,
        }

    def test_enterprise_field(self, packets):
        raw = packets.ipfix(
            packets.ipfix_template_set((300, [(8, 4), (100, 4, 9)])),
            packets.data_set(300, [socket.inet_aton("10.1.1.1") + struct.pack("!I", 42)], pad=False),
        )
        result = decode(raw, [])
        assert result.errors == []
        assert result.templates[0].fields[1] == TemplateField(100, 4, enterprise=9)
        assert result.records[0].fields == {
            8:        socket.inet_aton("10.1.1.1"),
            (9, 100): struct.pack("!I", 42),
        }

    def test_variable_length_fields(self, packets):
        ip = socket.inet_aton("10.1.1.1")
        long_name = b"x" * 300
        raw = packets.ipfix(
            packets.ipfix_template_set((301, [(82, 65535), (8, 4)])),
            packets.data_set(301, [
                b"\x04eth0" + ip,
                b"\xff" + struct.pack("!H", 300) + long_name + ip,
            ], pad=False),
        )
        result = decode(raw, [])
        assert result.errors == []
        assert [r.fields[82] for r in result.records] == [b"eth0", long_name]
        assert all(r.fields[8] == ip for r in result.records)

    def test_truncated_variable_length_value(self, packets):
        raw = packets.ipfix(
            packets.ipfix_template_set((302, [(82, 65535)])),
            packets.data_set(302, [b"\x10abc"], pad=False),
        )
        result = decode(raw, [])
        assert result.records == []
        assert _codes(result) == [ErrorCode.MALFORMED]

    def test_options_template(self, packets):
        raw = packets.ipfix(packets.ipfix_options_template_set(401, [(149, 4)], [(41, 8)]))
        template = decode(raw, []).templates[0]
        assert template.is_options is True
        assert template.scope_count == 1
        assert template.fields == (TemplateField(149, 4), TemplateField(41, 8))

    def test_withdrawal_ignored(self, packets):
        known = decode(
            packets.ipfix(packets.ipfix_template_set((256, packets.NAT_FIELDS))), [],
        ).templates
        result = decode(packets.ipfix(packets.ipfix_template_set((256, []))), known)
        assert _codes(result) == [ErrorCode.TEMPLATE_WITHDRAWAL]
        assert result.templates == known

    def test_header_length_longer_than_packet(self, packets):
        raw = packets.ipfix(packets.ipfix_template_set((256, packets.NAT_FIELDS)))
        raw = raw[:2] + struct.pack("!H", len(raw) + 10) + raw[4:]
        result = decode(raw, [])
        assert _codes(result) == [ErrorCode.MALFORMED]
        # 받은 부분까지는 디코드한다
        assert [t.set_id for t in result.templates] == [256]

    def test_bytes_after_message_ignored(self, packets):
        raw = packets.ipfix(packets.ipfix_template_set((256, packets.NAT_FIELDS)))
        result = decode(raw + b"\x01\x02\x03\x04\x05", [])
        assert result.errors == []

    def test_data_without_template(self, packets):
        raw = packets.ipfix(packets.data_set(256, [packets.nat_record()], pad=False))
        result = decode(raw, [])
        assert _codes(result) == [ErrorCode.TEMPLATE_NOT_FOUND]


class TestDecodeErrors:
    def test_unsupported_version(self, packets):
        result = decode(packets.v5(count=1), [])
        assert result.header == {"version": 5}
        assert _codes(result) == [ErrorCode.UNSUPPORTED_VERSION]

    def test_empty_packet(self):
        result = decode(b"", [])
        assert _codes(result) == [ErrorCode.MALFORMED]

    def test_short_v9_header(self):
        result = decode(struct.pack("!HH", 9, 0), [])
        assert _codes(result) == [ErrorCode.MALFORMED]
        assert result.header == {"version": 9}

    def test_set_length_past_end(self, packets):
        raw = packets.v9(struct.pack("!HH", 256, 100) + bytes(8))
        result = decode(raw, [])
        assert _codes(result) == [ErrorCode.MALFORMED]

    def test_reserved_set_id(self, packets):
        raw = packets.v9(packets.data_set(5, [bytes(4)]))
        result = decode(raw, [])
        assert _codes(result) == [ErrorCode.MALFORMED]
        assert "Reserved" in str(result.errors[0])

    def test_truncated_template_keeps_earlier_templates(self, packets):
        body = (
            struct.pack("!HH", 256, 4) + packets.field_specs(packets.NAT_FIELDS)
            + struct.pack("!HH", 258, 3) + packets.field_specs([(8, 4)])
        )
        raw = packets.v9(struct.pack("!HH", 0, 4 + len(body)) + body)
        result = decode(raw, [])
        assert [t.set_id for t in result.templates] == [256]
        assert _codes(result) == [ErrorCode.MALFORMED]
        assert "Template 258" in str(result.errors[0])

    def test_bad_v9_options_template_keeps_earlier_ones(self, packets):
        body = (
            struct.pack("!HHH", 400, 4, 4) + packets.field_specs([(1, 4), (34, 4)])
            + struct.pack("!HHH", 401, 6, 4)
        )
        raw = packets.v9(struct.pack("!HH", 1, 4 + len(body)) + body)
        result = decode(raw, [])
        assert [t.set_id for t in result.templates] == [400]
        assert _codes(result) == [ErrorCode.MALFORMED]

    def test_truncated_ipfix_options_template_keeps_earlier_ones(self, packets):
        body = (
            struct.pack("!HHH", 400, 1, 1) + packets.field_specs([(149, 4)])
            + struct.pack("!HH", 401, 2)
        )
        raw = packets.ipfix(struct.pack("!HH", 3, 4 + len(body)) + body)
        result = decode(raw, [])
        assert [t.set_id for t in result.templates] == [400]
        assert _codes(result) == [ErrorCode.MALFORMED]
        assert "Options template 401" in str(result.errors[0])

    def test_known_templates_survive_errors(self, packets):
        known = decode(packets.v9_templates_packet(), []).templates
        result = decode(struct.pack("!HH", 9, 0), known)
        assert result.templates == known


class TestSearchTemplate:
    def test_found(self):
        templates = [Template(256, (TemplateField(8, 4),)), Template(257, ())]
        assert search_template(257, templates) is templates[1]

    def test_not_found(self):
        with pytest.raises(TemplateNotFoundError) as excinfo:
            search_template(999, [Template(256, ())])
        assert excinfo.value.set_id == 999
        assert isinstance(excinfo.value, LookupError)
