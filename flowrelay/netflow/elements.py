"""IANA IPFIX 정보 요소(Information Element) 레지스트리.

이름 → ID 조회를 문자열 딕셔너리가 아닌 IntEnum으로 제공한다.
NetFlow v9 필드 타입 번호는 1-127 범위에서 IPFIX와 동일하다.
"""

from __future__ import annotations

import enum
from typing import Iterable, Union

# 레코드 필드 키: IANA 요소는 int, 엔터프라이즈 요소는 (PEN, ID)
ElementKey = Union[int, tuple[int, int]]


class InformationElement(enum.IntEnum):
    """IANA IPFIX Information Element ID (RFC 5102 / IANA 레지스트리)."""
    octetDeltaCount                 = 1
    packetDeltaCount                = 2
    deltaFlowCount                  = 3
    protocolIdentifier              = 4
    ipClassOfService                = 5
    tcpControlBits                  = 6
    sourceTransportPort             = 7
    sourceIPv4Address               = 8
    sourceIPv4PrefixLength          = 9
    ingressInterface                = 10
    destinationTransportPort        = 11
    destinationIPv4Address          = 12
    destinationIPv4PrefixLength     = 13
    egressInterface                 = 14
    ipNextHopIPv4Address            = 15
    bgpSourceAsNumber               = 16
    bgpDestinationAsNumber          = 17
    bgpNextHopIPv4Address           = 18
    postMCastPacketDeltaCount       = 19
    postMCastOctetDeltaCount        = 20
    flowEndSysUpTime                = 21
    flowStartSysUpTime              = 22
    postOctetDeltaCount             = 23
    postPacketDeltaCount            = 24
    minimumIpTotalLength            = 25
    maximumIpTotalLength            = 26
    sourceIPv6Address               = 27
    destinationIPv6Address          = 28
    sourceIPv6PrefixLength          = 29
    destinationIPv6PrefixLength     = 30
    flowLabelIPv6                   = 31
    icmpTypeCodeIPv4                = 32
    igmpType                        = 33
    samplingInterval                = 34
    samplingAlgorithm               = 35
    flowActiveTimeout               = 36
    flowIdleTimeout                 = 37
    engineType                      = 38
    engineId                        = 39
    exportedOctetTotalCount         = 40
    exportedMessageTotalCount       = 41
    exportedFlowRecordTotalCount    = 42
    sourceIPv4Prefix                = 44
    destinationIPv4Prefix           = 45
    mplsTopLabelType                = 46
    mplsTopLabelIPv4Address         = 47
    samplerId                       = 48
    samplerMode                     = 49
    samplerRandomInterval           = 50
    classId                         = 51
    minimumTTL                      = 52
    maximumTTL                      = 53
    fragmentIdentification          = 54
    postIpClassOfService            = 55
    sourceMacAddress                = 56
    postDestinationMacAddress       = 57
    vlanId                          = 58
    postVlanId                      = 59
    ipVersion                       = 60
    flowDirection                   = 61
    ipNextHopIPv6Address            = 62
    bgpNextHopIPv6Address           = 63
    ipv6ExtensionHeaders            = 64
    mplsTopLabelStackSection        = 70
    mplsLabelStackSection2          = 71
    mplsLabelStackSection3          = 72
    mplsLabelStackSection4          = 73
    mplsLabelStackSection5          = 74
    mplsLabelStackSection6          = 75
    mplsLabelStackSection7          = 76
    mplsLabelStackSection8          = 77
    mplsLabelStackSection9          = 78
    mplsLabelStackSection10         = 79
    destinationMacAddress           = 80
    postSourceMacAddress            = 81
    interfaceName                   = 82
    interfaceDescription            = 83
    samplerName                     = 84
    octetTotalCount                 = 85
    packetTotalCount                = 86
    flagsAndSamplerId               = 87
    fragmentOffset                  = 88
    forwardingStatus                = 89
    mplsVpnRouteDistinguisher       = 90
    mplsTopLabelPrefixLength        = 91
    srcTrafficIndex                 = 92
    dstTrafficIndex                 = 93
    applicationDescription          = 94
    applicationId                   = 95
    applicationName                 = 96
    postIpDiffServCodePoint         = 98
    multicastReplicationFactor      = 99
    className                       = 100
    classificationEngineId          = 101
    layer2packetSectionOffset       = 102
    layer2packetSectionSize         = 103
    layer2packetSectionData         = 104
    bgpNextAdjacentAsNumber         = 128
    bgpPrevAdjacentAsNumber         = 129
    exporterIPv4Address             = 130
    exporterIPv6Address             = 131
    droppedOctetDeltaCount          = 132
    droppedPacketDeltaCount         = 133
    droppedOctetTotalCount          = 134
    droppedPacketTotalCount         = 135
    flowEndReason                   = 136
    commonPropertiesId              = 137
    observationPointId              = 138
    icmpTypeCodeIPv6                = 139
    mplsTopLabelIPv6Address         = 140
    lineCardId                      = 141
    portId                          = 142
    meteringProcessId               = 143
    exportingProcessId              = 144
    templateId                      = 145
    wlanChannelId                   = 146
    wlanSSID                        = 147
    flowId                          = 148
    observationDomainId             = 149
    flowStartSeconds                = 150
    flowEndSeconds                  = 151
    flowStartMilliseconds           = 152
    flowEndMilliseconds             = 153
    flowStartMicroseconds           = 154
    flowEndMicroseconds             = 155
    flowStartNanoseconds            = 156
    flowEndNanoseconds              = 157
    flowStartDeltaMicroseconds      = 158
    flowEndDeltaMicroseconds        = 159
    systemInitTimeMilliseconds      = 160
    flowDurationMilliseconds        = 161
    flowDurationMicroseconds        = 162
    observedFlowTotalCount          = 163
    ignoredPacketTotalCount         = 164
    ignoredOctetTotalCount          = 165
    notSentFlowTotalCount           = 166
    notSentPacketTotalCount         = 167
    notSentOctetTotalCount          = 168
    destinationIPv6Prefix           = 169
    sourceIPv6Prefix                = 170
    postOctetTotalCount             = 171
    postPacketTotalCount            = 172
    flowKeyIndicator                = 173
    postMCastPacketTotalCount       = 174
    postMCastOctetTotalCount        = 175
    icmpTypeIPv4                    = 176
    icmpCodeIPv4                    = 177
    icmpTypeIPv6                    = 178
    icmpCodeIPv6                    = 179
    udpSourcePort                   = 180
    udpDestinationPort              = 181
    tcpSourcePort                   = 182
    tcpDestinationPort              = 183
    tcpSequenceNumber               = 184
    tcpAcknowledgementNumber        = 185
    tcpWindowSize                   = 186
    tcpUrgentPointer                = 187
    tcpHeaderLength                 = 188
    ipHeaderLength                  = 189
    totalLengthIPv4                 = 190
    payloadLengthIPv6               = 191
    ipTTL                           = 192
    nextHeaderIPv6                  = 193
    mplsPayloadLength               = 194
    ipDiffServCodePoint             = 195
    ipPrecedence                    = 196
    fragmentFlags                   = 197
    octetDeltaSumOfSquares          = 198
    octetTotalSumOfSquares          = 199
    mplsTopLabelTTL                 = 200
    mplsLabelStackLength            = 201
    mplsLabelStackDepth             = 202
    mplsTopLabelExp                 = 203
    ipPayloadLength                 = 204
    udpMessageLength                = 205
    isMulticast                     = 206
    ipv4IHL                         = 207
    ipv4Options                     = 208
    tcpOptions                      = 209
    paddingOctets                   = 210
    collectorIPv4Address            = 211
    collectorIPv6Address            = 212
    exportInterface                 = 213
    exportProtocolVersion           = 214
    exportTransportProtocol         = 215
    collectorTransportPort          = 216
    exporterTransportPort           = 217
    tcpSynTotalCount                = 218
    tcpFinTotalCount                = 219
    tcpRstTotalCount                = 220
    tcpPshTotalCount                = 221
    tcpAckTotalCount                = 222
    tcpUrgTotalCount                = 223
    ipTotalLength                   = 224
    postNATSourceIPv4Address        = 225
    postNATDestinationIPv4Address   = 226
    postNAPTSourceTransportPort     = 227
    postNAPTDestinationTransportPort = 228
    natOriginatingAddressRealm      = 229
    natEvent                        = 230
    initiatorOctets                 = 231
    responderOctets                 = 232
    firewallEvent                   = 233
    ingressVRFID                    = 234
    egressVRFID                     = 235
    VRFname                         = 236
    postMplsTopLabelExp             = 237
    tcpWindowScale                  = 238
    biflowDirection                 = 239
    postNATSourceIPv6Address        = 281
    postNATDestinationIPv6Address   = 282
    natPoolId                       = 283
    natPoolName                     = 284
    observationTimeMilliseconds     = 323
    portRangeStart                  = 361
    portRangeEnd                    = 362
    portRangeStepSize               = 363
    portRangeNumPorts               = 364
    natQuotaExceededEvent           = 466

    @classmethod
    def from_int(cls, value: int) -> "InformationElement | None":
        """정수에서 InformationElement로 변환한다. 레지스트리에 없으면 None."""
        try:
            return cls(value)
        except ValueError:
            return None


# NAT 이벤트 레코드를 식별하는 기본 허용 목록
NAT_EVENT_ELEMENTS: tuple[str, ...] = (
    "postNATSourceIPv4Address",
    "postNATSourceIPv6Address",
    "postNATDestinationIPv4Address",
    "postNATDestinationIPv6Address",
)


def element_id(name: str) -> int:
    """요소 이름을 숫자 ID로 변환한다.

    Raises:
        KeyError: 레지스트리에 없는 이름.
    """
    try:
        return int(InformationElement[name])
    except KeyError:
        raise KeyError(f"Unknown information element: {name!r}") from None


def element_ids(names: Iterable[str]) -> frozenset[int]:
    """이름 목록을 ID 집합으로 변환한다."""
    return frozenset(element_id(name) for name in names)


def element_name(key: ElementKey) -> str:
    """표시용 요소 이름. 엔터프라이즈 요소는 "PEN.ID", 미등록 ID는 숫자 그대로."""
    if isinstance(key, tuple):
        enterprise, ident = key
        return f"{enterprise}.{ident}"
    member = InformationElement.from_int(key)
    return member.name if member is not None else str(key)
