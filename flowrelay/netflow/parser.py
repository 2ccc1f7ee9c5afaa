"""NetFlow v9 / IPFIX UDP 페이로드 디코더.

템플릿 기반 포맷이므로 호출자가 이전까지 학습한 템플릿 목록을 넘기고,
이번 패킷에서 받은 템플릿이 반영된 목록을 돌려받는다.
오류는 예외가 아니라 CodecError 리스트로 반환한다.
"""

from __future__ import annotations

import logging
import struct
from typing import Iterable

from flowrelay.netflow.models import (
    COUNT,
    IPFIX,
    LENGTH,
    NETFLOW_V9,
    OBSERVATION_DOMAIN_ID,
    SEQUENCE,
    SOURCE_ID,
    SYS_UPTIME,
    UNIX_SECS,
    VERSION,
    CodecError,
    DecodeResult,
    ErrorCode,
    FlowRecord,
    Template,
    TemplateField,
)

logger = logging.getLogger("flowrelay.netflow.parser")

_V9_HEADER_FMT    = "!HHIIII"   # 20 bytes
_V9_HEADER_SIZE   = struct.calcsize(_V9_HEADER_FMT)

_IPFIX_HEADER_FMT  = "!HHIII"   # 16 bytes
_IPFIX_HEADER_SIZE = struct.calcsize(_IPFIX_HEADER_FMT)

_SET_HEADER_FMT  = "!HH"
_SET_HEADER_SIZE = 4

# 셋 ID (RFC 3954 §5.2, RFC 7011 §3.3.2)
V9_TEMPLATE_SET_ID            = 0
V9_OPTIONS_TEMPLATE_SET_ID    = 1
IPFIX_TEMPLATE_SET_ID         = 2
IPFIX_OPTIONS_TEMPLATE_SET_ID = 3
MIN_DATA_SET_ID               = 256

_ENTERPRISE_BIT = 0x8000


class ParseError(ValueError):
    """패킷 일부를 해석할 수 없음. 디코더 내부에서만 사용한다."""


class TemplateNotFoundError(LookupError):
    """set_id에 해당하는 템플릿이 없음."""

    def __init__(self, set_id: int) -> None:
        super().__init__(f"Template not found for set {set_id}")
        self.set_id = set_id


def search_template(set_id: int, templates: Iterable[Template]) -> Template:
    """템플릿 목록에서 set_id가 일치하는 템플릿을 찾는다.

    Raises:
        TemplateNotFoundError: 일치하는 템플릿이 없는 경우.
    """
    for template in templates:
        if template.set_id == set_id:
            return template
    raise TemplateNotFoundError(set_id)


def _parse_header(data: bytes) -> tuple[dict[str, int], int]:
    """헤더를 파싱하여 (헤더 dict, 헤더 길이)를 반환한다."""
    version = struct.unpack_from("!H", data, 0)[0]

    if version == NETFLOW_V9:
        if len(data) < _V9_HEADER_SIZE:
            raise ParseError(
                f"Packet too short: {len(data)} bytes (minimum {_V9_HEADER_SIZE})"
            )
        _, count, sys_uptime, unix_secs, sequence, source_id = struct.unpack_from(
            _V9_HEADER_FMT, data, 0
        )
        header = {
            VERSION:    version,
            COUNT:      count,
            SYS_UPTIME: sys_uptime,
            UNIX_SECS:  unix_secs,
            SEQUENCE:   sequence,
            SOURCE_ID:  source_id,
        }
        return header, _V9_HEADER_SIZE

    if len(data) < _IPFIX_HEADER_SIZE:
        raise ParseError(
            f"Packet too short: {len(data)} bytes (minimum {_IPFIX_HEADER_SIZE})"
        )
    _, length, export_time, sequence, domain_id = struct.unpack_from(
        _IPFIX_HEADER_FMT, data, 0
    )
    header = {
        VERSION:               version,
        LENGTH:                length,
        UNIX_SECS:             export_time,
        SEQUENCE:              sequence,
        OBSERVATION_DOMAIN_ID: domain_id,
    }
    return header, _IPFIX_HEADER_SIZE


def _parse_field_specs(
    body: bytes, offset: int, count: int, version: int,
) -> tuple[list[TemplateField], int]:
    """필드 명세 count개를 읽는다. IPFIX는 엔터프라이즈 비트를 해석한다."""
    fields: list[TemplateField] = []
    for _ in range(count):
        if offset + 4 > len(body):
            raise ParseError("Template field specifier truncated")
        ident, length = struct.unpack_from("!HH", body, offset)
        offset += 4
        enterprise = 0
        if version == IPFIX and ident & _ENTERPRISE_BIT:
            if offset + 4 > len(body):
                raise ParseError("Enterprise number truncated")
            enterprise = struct.unpack_from("!I", body, offset)[0]
            offset += 4
            ident &= ~_ENTERPRISE_BIT
        fields.append(TemplateField(ident, length, enterprise))
    return fields, offset


def _parse_template_set(
    body: bytes, version: int, errors: list[CodecError],
) -> list[Template]:
    """템플릿 셋을 읽는다. 잘린 템플릿 앞까지 읽은 템플릿은 그대로 반환한다."""
    templates: list[Template] = []
    offset = 0
    while offset + 4 <= len(body):
        template_id, count = struct.unpack_from("!HH", body, offset)
        offset += 4
        if template_id < MIN_DATA_SET_ID:
            # 0으로 채운 패딩이거나 잘못된 ID
            if template_id or count:
                errors.append(CodecError(
                    ErrorCode.MALFORMED, f"Invalid template id {template_id}",
                ))
            break
        if count == 0:
            errors.append(CodecError(
                ErrorCode.TEMPLATE_WITHDRAWAL,
                f"Template withdrawal for set {template_id} ignored",
            ))
            continue
        try:
            fields, offset = _parse_field_specs(body, offset, count, version)
        except ParseError as exc:
            errors.append(CodecError(
                ErrorCode.MALFORMED, f"Template {template_id}: {exc}",
            ))
            break
        templates.append(Template(template_id, tuple(fields)))
    return templates


def _parse_v9_options_template_set(
    body: bytes, errors: list[CodecError],
) -> list[Template]:
    templates: list[Template] = []
    offset = 0
    while offset + 6 <= len(body):
        template_id, scope_len, option_len = struct.unpack_from("!HHH", body, offset)
        offset += 6
        if template_id < MIN_DATA_SET_ID:
            if template_id or scope_len or option_len:
                errors.append(CodecError(
                    ErrorCode.MALFORMED, f"Invalid options template id {template_id}",
                ))
            break
        try:
            if scope_len % 4 or option_len % 4:
                raise ParseError("lengths not a multiple of 4")
            scope_count = scope_len // 4
            fields, offset = _parse_field_specs(
                body, offset, scope_count + option_len // 4, NETFLOW_V9,
            )
        except ParseError as exc:
            errors.append(CodecError(
                ErrorCode.MALFORMED, f"Options template {template_id}: {exc}",
            ))
            break
        templates.append(Template(
            template_id, tuple(fields), scope_count=scope_count, is_options=True,
        ))
    return templates


def _parse_ipfix_options_template_set(
    body: bytes, errors: list[CodecError],
) -> list[Template]:
    templates: list[Template] = []
    offset = 0
    while offset + 4 <= len(body):
        template_id, count = struct.unpack_from("!HH", body, offset)
        offset += 4
        if template_id < MIN_DATA_SET_ID:
            if template_id or count:
                errors.append(CodecError(
                    ErrorCode.MALFORMED, f"Invalid options template id {template_id}",
                ))
            break
        if count == 0:
            errors.append(CodecError(
                ErrorCode.TEMPLATE_WITHDRAWAL,
                f"Options template withdrawal for set {template_id} ignored",
            ))
            continue
        try:
            if offset + 2 > len(body):
                raise ParseError("scope field count truncated")
            scope_count = struct.unpack_from("!H", body, offset)[0]
            offset += 2
            fields, offset = _parse_field_specs(body, offset, count, IPFIX)
        except ParseError as exc:
            errors.append(CodecError(
                ErrorCode.MALFORMED, f"Options template {template_id}: {exc}",
            ))
            break
        templates.append(Template(
            template_id, tuple(fields), scope_count=scope_count, is_options=True,
        ))
    return templates


def _read_value(body: bytes, offset: int, spec: TemplateField) -> tuple[bytes, int]:
    length = spec.length
    if spec.is_variable:
        if offset + 1 > len(body):
            raise ParseError("Variable-length prefix truncated")
        length = body[offset]
        offset += 1
        if length == 255:
            if offset + 2 > len(body):
                raise ParseError("Variable-length prefix truncated")
            length = struct.unpack_from("!H", body, offset)[0]
            offset += 2
    if offset + length > len(body):
        raise ParseError(f"Field {spec.element_id} truncated")
    return body[offset:offset + length], offset + length


def _parse_data_set(
    body: bytes, template: Template, errors: list[CodecError],
) -> list[FlowRecord]:
    """데이터 셋의 레코드를 읽는다. 잘린 레코드 앞까지는 그대로 반환한다."""
    records: list[FlowRecord] = []
    min_length = template.min_record_length
    if min_length == 0:
        return records

    offset = 0
    while offset + min_length <= len(body):
        remainder = body[offset:]
        if len(remainder) < 4 and not any(remainder):
            # 4바이트 경계 패딩
            break
        record = FlowRecord(set_id=template.set_id)
        try:
            for spec in template.fields:
                value, offset = _read_value(body, offset, spec)
                key = spec.key
                if key not in record.fields:
                    record.fields[key] = value
                elif isinstance(record.fields[key], list):
                    record.fields[key].append(value)
                else:
                    record.fields[key] = [record.fields[key], value]
        except ParseError as exc:
            errors.append(CodecError(
                ErrorCode.MALFORMED, f"Set {template.set_id}: {exc}",
            ))
            break
        records.append(record)
    return records


def decode(packet: bytes, templates: Iterable[Template] = ()) -> DecodeResult:
    """NetFlow v9 / IPFIX 패킷을 디코드한다.

    Args:
        packet: 수신된 UDP 페이로드.
        templates: 이 세션에서 지금까지 학습한 템플릿.

    Returns:
        DecodeResult. templates에는 입력 목록에 이번 패킷의 템플릿이
        추가/교체된 결과가 담긴다 (제거는 없음).
    """
    known: dict[int, Template] = {t.set_id: t for t in templates}
    records: list[FlowRecord] = []
    errors:  list[CodecError] = []

    if len(packet) < 2:
        errors.append(CodecError(ErrorCode.MALFORMED, "Packet too short"))
        return DecodeResult({}, list(known.values()), records, errors)

    version = struct.unpack_from("!H", packet, 0)[0]
    if version not in (NETFLOW_V9, IPFIX):
        errors.append(CodecError(
            ErrorCode.UNSUPPORTED_VERSION, f"Unsupported NetFlow version: {version}",
        ))
        return DecodeResult({VERSION: version}, list(known.values()), records, errors)

    try:
        header, offset = _parse_header(packet)
    except ParseError as exc:
        errors.append(CodecError(ErrorCode.MALFORMED, str(exc)))
        return DecodeResult({VERSION: version}, list(known.values()), records, errors)

    end = len(packet)
    if version == IPFIX:
        if header[LENGTH] > end:
            errors.append(CodecError(
                ErrorCode.MALFORMED,
                f"Message truncated: header length {header[LENGTH]}, got {end}",
            ))
        else:
            end = header[LENGTH]

    template_set_ids = (
        (V9_TEMPLATE_SET_ID, V9_OPTIONS_TEMPLATE_SET_ID) if version == NETFLOW_V9
        else (IPFIX_TEMPLATE_SET_ID, IPFIX_OPTIONS_TEMPLATE_SET_ID)
    )

    while offset + _SET_HEADER_SIZE <= end:
        set_id, set_length = struct.unpack_from(_SET_HEADER_FMT, packet, offset)
        if set_length < _SET_HEADER_SIZE or offset + set_length > end:
            errors.append(CodecError(
                ErrorCode.MALFORMED,
                f"Set {set_id} has invalid length {set_length} at offset {offset}",
            ))
            break
        body = packet[offset + _SET_HEADER_SIZE:offset + set_length]
        offset += set_length

        if set_id == template_set_ids[0]:
            received = _parse_template_set(body, version, errors)
        elif set_id == template_set_ids[1]:
            if version == NETFLOW_V9:
                received = _parse_v9_options_template_set(body, errors)
            else:
                received = _parse_ipfix_options_template_set(body, errors)
        elif set_id >= MIN_DATA_SET_ID:
            template = known.get(set_id)
            if template is None:
                errors.append(CodecError(
                    ErrorCode.TEMPLATE_NOT_FOUND,
                    f"Template not found for set {set_id}",
                ))
            else:
                records.extend(_parse_data_set(body, template, errors))
            continue
        else:
            errors.append(CodecError(
                ErrorCode.MALFORMED, f"Reserved set id {set_id} skipped",
            ))
            continue

        for template in received:
            known[template.set_id] = template

    logger.debug(
        "Decoded v%d packet: %d records, %d templates known, %d errors",
        version, len(records), len(known), len(errors),
    )
    return DecodeResult(header, list(known.values()), records, errors)
