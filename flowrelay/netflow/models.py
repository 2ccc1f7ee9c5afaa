"""NetFlow v9 / IPFIX 코덱 모델 — Template, FlowRecord, 코덱 결과."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Union

from flowrelay.netflow.elements import ElementKey

if TYPE_CHECKING:
    from flowrelay.netflow.encoder import EncodeState

NETFLOW_V5 = 5
NETFLOW_V9 = 9
IPFIX      = 10

# 헤더 필드 키 (v9/IPFIX 공통 이름은 하나로 통일)
VERSION               = "version"
COUNT                 = "count"
LENGTH                = "length"
SYS_UPTIME            = "sys_uptime"
UNIX_SECS             = "unix_secs"
SEQUENCE              = "sequence"
SOURCE_ID             = "source_id"
OBSERVATION_DOMAIN_ID = "observation_domain_id"

# 가변 길이 필드 표시 (RFC 7011 §7)
VARIABLE_LENGTH = 0xFFFF

FieldValue = Union[bytes, list[bytes]]


class ErrorCode(enum.Enum):
    """코덱 오류 분류."""
    TEMPLATE_NOT_FOUND    = "template not found"
    UNSUPPORTED_VERSION   = "unsupported version"
    MALFORMED             = "malformed packet"
    TEMPLATE_WITHDRAWAL   = "template withdrawal"
    RECORD_TOO_LARGE      = "record too large"
    TEMPLATE_TOO_LARGE    = "template too large"
    FIELD_LENGTH_MISMATCH = "field length mismatch"


@dataclass(frozen=True)
class CodecError:
    """decode/encode가 반환하는 복구 가능한 오류. 예외로 던지지 않는다."""
    code:    ErrorCode
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class TemplateField:
    """템플릿의 단일 필드 명세."""
    element_id: int
    length:     int
    enterprise: int = 0

    @property
    def key(self) -> ElementKey:
        """레코드 딕셔너리에서 이 필드를 가리키는 키."""
        if self.enterprise:
            return (self.enterprise, self.element_id)
        return self.element_id

    @property
    def is_variable(self) -> bool:
        return self.length == VARIABLE_LENGTH


@dataclass(frozen=True)
class Template:
    """세션 범위의 레코드 레이아웃 정의.

    set_id가 같은 데이터 셋을 디코드/인코드할 때 사용한다.
    옵션 템플릿은 scope_count > 0 (앞쪽 scope_count개 필드가 scope 필드).
    """
    set_id:      int
    fields:      tuple[TemplateField, ...]
    scope_count: int  = 0
    is_options:  bool = False

    @property
    def min_record_length(self) -> int:
        """레코드 최소 길이. 가변 길이 필드는 길이 접두어 1바이트로 계산한다."""
        return sum(1 if f.is_variable else f.length for f in self.fields)


@dataclass
class FlowRecord:
    """디코드된 플로우 레코드: 요소 키 → 원시 값(들).

    같은 요소가 템플릿에 여러 번 나타나면 값은 bytes 리스트가 된다.
    """
    set_id: int
    fields: dict[ElementKey, FieldValue] = field(default_factory=dict)

    def get(self, key: ElementKey) -> FieldValue | None:
        return self.fields.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self.fields


@dataclass
class DecodeResult:
    """decode() 결과."""
    header:    dict[str, int]
    templates: list[Template]
    records:   list[FlowRecord]
    errors:    list[CodecError]


@dataclass
class EncodeResult:
    """encode() 결과. state는 다음 호출에 그대로 넘겨야 하는 갱신된 인코더 상태."""
    packets: list[bytes]
    errors:  list[CodecError]
    state:   "EncodeState"
