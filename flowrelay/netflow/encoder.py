"""NetFlow v9 / IPFIX 인코더.

EncodeState는 연속적으로 카운트하는 익스포터를 흉내 내기 위한 상태
(헤더, 시퀀스 번호, 템플릿 재전송 타이머)를 담는다. encode()는 상태를
변경하지 않고 갱신된 상태를 EncodeResult.state로 돌려준다.
"""

from __future__ import annotations

import dataclasses
import logging
import struct
import time
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from flowrelay.netflow.models import (
    IPFIX,
    NETFLOW_V9,
    OBSERVATION_DOMAIN_ID,
    SEQUENCE,
    SOURCE_ID,
    SYS_UPTIME,
    UNIX_SECS,
    VERSION,
    CodecError,
    EncodeResult,
    ErrorCode,
    FlowRecord,
    Template,
)
from flowrelay.netflow.parser import (
    IPFIX_OPTIONS_TEMPLATE_SET_ID,
    IPFIX_TEMPLATE_SET_ID,
    V9_OPTIONS_TEMPLATE_SET_ID,
    V9_TEMPLATE_SET_ID,
)

logger = logging.getLogger("flowrelay.netflow.encoder")

# 이더넷 MTU 1500 - IPv4(20) - UDP(8) - 여유분
DEFAULT_MAX_PACKET_SIZE      = 1468
DEFAULT_TEMPLATE_RESEND_SECS = 3

_HEADER_SIZE = {NETFLOW_V9: 20, IPFIX: 16}
_SET_HEADER_SIZE = 4
_SEQUENCE_MASK = 0xFFFFFFFF


@dataclass
class EncodeState:
    """인코더가 호출 간에 유지하는 상태.

    header의 값은 출력 패킷 헤더의 기본값이 되며, 시퀀스 번호는
    encode() 호출마다 1씩 증가한다. sent_template_ids는 이미 보낸
    템플릿을 (버전, source_id 또는 observation_domain_id, set_id)로 기억한다.
    """
    header:               dict[str, int] = field(default_factory=dict)
    template_resend_secs: float = DEFAULT_TEMPLATE_RESEND_SECS
    last_template_time:   float | None = None
    sent_template_ids:    frozenset[tuple[int, int, int]] = frozenset()

    @property
    def sequence(self) -> int:
        return self.header.get(SEQUENCE, 0)

    @property
    def stream(self) -> tuple[int, int]:
        """헤더가 가리키는 출력 스트림: (버전, source_id 또는 observation_domain_id)."""
        version = self.header.get(VERSION, NETFLOW_V9)
        domain_key = OBSERVATION_DOMAIN_ID if version == IPFIX else SOURCE_ID
        return version, self.header.get(domain_key, 0)

    def templates_due(self, set_ids: Iterable[int], now: float) -> bool:
        """템플릿을 이번 호출에 실어 보내야 하는지 판단한다."""
        if self.last_template_time is None:
            return True
        if now - self.last_template_time >= self.template_resend_secs:
            return True
        version, domain = self.stream
        return any(
            (version, domain, set_id) not in self.sent_template_ids for set_id in set_ids
        )


class _FieldLengthError(ValueError):
    pass


def _encode_varlen(value: bytes) -> bytes:
    if len(value) > 0xFFFF:
        raise _FieldLengthError(f"variable-length value of {len(value)} bytes")
    if len(value) < 255:
        return bytes([len(value)]) + value
    return b"\xff" + struct.pack("!H", len(value)) + value


def _encode_record(record: FlowRecord, template: Template) -> bytes:
    """템플릿 필드 순서대로 레코드 값을 직렬화한다. 없는 필드는 0으로 채운다."""
    out = bytearray()
    used: dict = {}
    for spec in template.fields:
        value = record.fields.get(spec.key)
        if isinstance(value, list):
            index = used.get(spec.key, 0)
            used[spec.key] = index + 1
            value = value[index] if index < len(value) else None
        if value is None:
            value = b"" if spec.is_variable else bytes(spec.length)

        if spec.is_variable:
            out += _encode_varlen(value)
        elif len(value) != spec.length:
            raise _FieldLengthError(
                f"element {spec.element_id} is {len(value)} bytes, "
                f"template {template.set_id} expects {spec.length}"
            )
        else:
            out += value
    return bytes(out)


def _encode_template(template: Template, version: int) -> bytes:
    count = len(template.fields)
    if template.is_options:
        if version == NETFLOW_V9:
            out = struct.pack(
                "!HHH",
                template.set_id,
                template.scope_count * 4,
                (count - template.scope_count) * 4,
            )
        else:
            out = struct.pack("!HHH", template.set_id, count, template.scope_count)
    else:
        out = struct.pack("!HH", template.set_id, count)

    for spec in template.fields:
        if version == IPFIX and spec.enterprise:
            out += struct.pack(
                "!HHI", spec.element_id | 0x8000, spec.length, spec.enterprise,
            )
        else:
            out += struct.pack("!HH", spec.element_id, spec.length)
    return out


def _template_set_id(template: Template, version: int) -> int:
    if version == NETFLOW_V9:
        return V9_OPTIONS_TEMPLATE_SET_ID if template.is_options else V9_TEMPLATE_SET_ID
    return IPFIX_OPTIONS_TEMPLATE_SET_ID if template.is_options else IPFIX_TEMPLATE_SET_ID


class _PacketBuilder:
    """셋 단위로 레코드를 모아 max_size 이하의 패킷을 만든다."""

    def __init__(self, version: int, max_size: int) -> None:
        self.version  = version
        self.max_size = max_size
        self.sets: list[tuple[int, list[bytes]]] = []
        self.count = 0
        self.size  = _HEADER_SIZE[version]

    def _set_size(self, body_length: int) -> int:
        size = _SET_HEADER_SIZE + body_length
        if self.version == NETFLOW_V9:
            size += (-size) % 4
        return size

    def _grown_size(self, set_id: int, payload: bytes) -> int:
        if self.sets and self.sets[-1][0] == set_id:
            body = sum(len(p) for p in self.sets[-1][1])
            return (
                self.size - self._set_size(body) + self._set_size(body + len(payload))
            )
        return self.size + self._set_size(len(payload))

    def fits_empty(self, payload: bytes) -> bool:
        return _HEADER_SIZE[self.version] + self._set_size(len(payload)) <= self.max_size

    def fits(self, set_id: int, payload: bytes) -> bool:
        return self._grown_size(set_id, payload) <= self.max_size

    def add(self, set_id: int, payload: bytes) -> None:
        self.size = self._grown_size(set_id, payload)
        if self.sets and self.sets[-1][0] == set_id:
            self.sets[-1][1].append(payload)
        else:
            self.sets.append((set_id, [payload]))
        self.count += 1

    def build(self, header: dict[str, int], now: float) -> bytes:
        body = bytearray()
        for set_id, payloads in self.sets:
            data = b"".join(payloads)
            length = self._set_size(len(data))
            body += struct.pack("!HH", set_id, length) + data
            body += bytes(length - _SET_HEADER_SIZE - len(data))

        unix_secs = header.get(UNIX_SECS, int(now))
        sequence  = header.get(SEQUENCE, 0)
        if self.version == NETFLOW_V9:
            head = struct.pack(
                "!HHIIII",
                NETFLOW_V9,
                self.count,
                header.get(SYS_UPTIME, 0),
                unix_secs,
                sequence,
                header.get(SOURCE_ID, 0),
            )
        else:
            head = struct.pack(
                "!HHIII",
                IPFIX,
                _HEADER_SIZE[IPFIX] + len(body),
                unix_secs,
                sequence,
                header.get(OBSERVATION_DOMAIN_ID, 0),
            )
        return head + bytes(body)


def encode(
    state: EncodeState,
    templates: Sequence[Template | None],
    records: Sequence[FlowRecord],
    max_size: int = DEFAULT_MAX_PACKET_SIZE,
    now: float | None = None,
) -> EncodeResult:
    """레코드를 하나 이상의 NetFlow v9 / IPFIX 패킷으로 인코드한다.

    Args:
        state: 이전 호출이 돌려준 인코더 상태. header[VERSION]이 출력 포맷을 정한다.
        templates: 레코드 인코드에 쓸 템플릿. None 항목은 무시한다.
        records: 인코드할 레코드.
        max_size: 패킷 최대 바이트 수.
        now: 현재 시각 (테스트용). 기본값은 time.time().

    Returns:
        EncodeResult. 만들 수 없는 레코드/템플릿은 errors에 남기고 건너뛴다.
    """
    if now is None:
        now = time.time()
    header = dict(state.header)
    errors: list[CodecError] = []

    version = header.get(VERSION, NETFLOW_V9)
    if version not in _HEADER_SIZE:
        errors.append(CodecError(
            ErrorCode.UNSUPPORTED_VERSION, f"Cannot encode NetFlow version {version}",
        ))
        return EncodeResult([], errors, state)

    available = {t.set_id: t for t in templates if t is not None}

    # (셋 ID, 직렬화된 레코드, 템플릿이면 그 set_id)
    items: list[tuple[int, bytes, int | None]] = []
    if available and state.templates_due(available, now):
        for template in available.values():
            items.append((
                _template_set_id(template, version),
                _encode_template(template, version),
                template.set_id,
            ))

    for record in records:
        template = available.get(record.set_id)
        if template is None:
            errors.append(CodecError(
                ErrorCode.TEMPLATE_NOT_FOUND,
                f"Template not found for set {record.set_id}",
            ))
            continue
        try:
            items.append((record.set_id, _encode_record(record, template), None))
        except _FieldLengthError as exc:
            errors.append(CodecError(ErrorCode.FIELD_LENGTH_MISMATCH, str(exc)))

    builders: list[_PacketBuilder] = []
    sent_templates: set[int] = set()
    builder = _PacketBuilder(version, max_size)

    for set_id, payload, template_id in items:
        if not builder.fits_empty(payload):
            if template_id is not None:
                errors.append(CodecError(
                    ErrorCode.TEMPLATE_TOO_LARGE,
                    f"Template {template_id} does not fit in {max_size} bytes",
                ))
            else:
                errors.append(CodecError(
                    ErrorCode.RECORD_TOO_LARGE,
                    f"Record of set {set_id} ({len(payload)} bytes) does not fit "
                    f"in {max_size} bytes",
                ))
            continue
        if not builder.fits(set_id, payload):
            builders.append(builder)
            builder = _PacketBuilder(version, max_size)
        builder.add(set_id, payload)
        if template_id is not None:
            sent_templates.add(template_id)

    if builder.count:
        builders.append(builder)

    # 시퀀스 번호는 호출당 한 번 증가하고, 나뉜 패킷들은 같은 번호를 쓴다
    if builders:
        header[SEQUENCE] = (header.get(SEQUENCE, 0) + 1) & _SEQUENCE_MASK
    packets = [b.build(header, now) for b in builders]

    new_state = dataclasses.replace(state, header=header)
    if sent_templates:
        _, domain = state.stream
        new_state = dataclasses.replace(
            new_state,
            last_template_time=now,
            sent_template_ids=state.sent_template_ids | frozenset(
                (version, domain, set_id) for set_id in sent_templates
            ),
        )

    logger.debug(
        "Encoded %d records into %d v%d packets (sequence now %d)",
        len(records), len(packets), version, header.get(SEQUENCE, 0),
    )
    return EncodeResult(packets, errors, new_state)
