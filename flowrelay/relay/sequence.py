"""출력 헤더의 시퀀스 번호 보정.

인코더는 패킷을 만들 때마다 시퀀스 번호를 1 증가시킨다. 릴레이는
원래 익스포터의 번호를 그대로 내보내야 하므로, 수신 헤더의 시퀀스 번호를
미리 1 줄여 인코더 상태에 병합한다. 0이면 언더플로를 피하려고 그대로 둔다.
"""

from __future__ import annotations

import dataclasses

from flowrelay.netflow.encoder import EncodeState
from flowrelay.netflow.models import SEQUENCE


def prepare_output_header(decoded_header: dict[str, int], state: EncodeState) -> EncodeState:
    """수신 헤더를 병합한 새 인코더 상태를 반환한다.

    수신 헤더의 필드가 같은 이름의 기존 필드를 덮어쓰고, 템플릿 재전송
    설정과 타이머는 그대로 유지된다. 인자로 받은 객체는 변경하지 않는다.
    """
    adjusted = dict(decoded_header)
    if adjusted.get(SEQUENCE):
        adjusted[SEQUENCE] -= 1
    return dataclasses.replace(state, header={**state.header, **adjusted})
