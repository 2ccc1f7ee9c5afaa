"""flowdump — NetFlow v9 / IPFIX 패킷 내용을 사람이 읽을 수 있게 출력하는 점검 도구.

수신한 모든 패킷을 하나의 템플릿 목록으로 디코드하고 헤더, 알려진 템플릿,
디코드된 레코드를 출력한다. 요소 이름은 InformationElement로 표시한다.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Callable, TextIO

from flowrelay.netflow.elements import element_name
from flowrelay.netflow.models import DecodeResult, FlowRecord, Template
from flowrelay.netflow.parser import decode

logger = logging.getLogger("flowrelay.tools.flowdump")

IPFIX_PORT = 4739


def format_header(header: dict[str, int]) -> list[str]:
    lines = ["", "- Header Information -"]
    for key in sorted(header):
        lines.append(f" {key} = {header[key]:3d}")
    return lines


def format_template(template: Template) -> list[str]:
    lines = ["", "-- Template Information --"]
    lines.append(f"  set_id = {template.set_id}")
    lines.append(f"  field_count = {len(template.fields)}")
    if template.is_options:
        lines.append(f"  scope_count = {template.scope_count}")
    lines.append("  fields =")
    for spec in template.fields:
        line = f"   id={element_name(spec.key)} length={spec.length}"
        if spec.enterprise:
            line += f" enterprise={spec.enterprise}"
        lines.append(line)
    return lines


def format_record(record: FlowRecord) -> list[str]:
    lines = ["", "-- Flow Information --", f"  set_id={record.set_id}"]
    for key in sorted(record.fields, key=lambda k: (isinstance(k, tuple), k)):
        value = record.fields[key]
        if isinstance(value, list):
            rendered = ",".join(v.hex() for v in value)
        else:
            rendered = value.hex()
        lines.append(f"  id={element_name(key)} value={rendered}")
    return lines


class FlowDumper:
    """수신 패킷을 디코드하여 텍스트로 출력한다. 템플릿은 송신자 구분 없이 누적한다."""

    def __init__(self, out: TextIO | None = None) -> None:
        self._out = out if out is not None else sys.stdout
        self._templates: list[Template] = []

    @property
    def templates(self) -> list[Template]:
        return list(self._templates)

    def feed(self, packet: bytes) -> DecodeResult:
        result = decode(packet, self._templates)
        self._templates = result.templates

        lines = [str(err) for err in result.errors]
        lines += format_header(result.header)
        for template in result.templates:
            lines += format_template(template)
        for record in result.records:
            lines += format_record(record)

        self._out.write("\n".join(lines) + "\n")
        self._out.flush()
        return result


class _DumpProtocol(asyncio.DatagramProtocol):
    def __init__(self, on_packet: Callable[[bytes], object]) -> None:
        self._on_packet = on_packet

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        try:
            self._on_packet(data)
        except Exception:
            logger.exception("Failed to dump packet from %s:%d", addr[0], addr[1])

    def error_received(self, exc: Exception) -> None:
        logger.warning("flowdump UDP error: %s", exc)


async def _serve(host: str, port: int, dumper: FlowDumper) -> None:
    loop = asyncio.get_running_loop()
    transport, _ = await loop.create_datagram_endpoint(
        lambda: _DumpProtocol(dumper.feed),
        local_addr=(host, port),
    )
    try:
        await asyncio.Event().wait()
    finally:
        transport.close()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="flowdump",
        description="Print decoded NetFlow v9/IPFIX packets received over UDP.",
    )
    parser.add_argument("-b", "--bind", default="0.0.0.0", help="Local address (default: 0.0.0.0)")
    parser.add_argument(
        "-p", "--port", type=int, default=IPFIX_PORT,
        help=f"Local UDP port (default: {IPFIX_PORT})",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [%(levelname)-8s] %(name)-25s %(message)s",
        stream=sys.stderr,
    )
    try:
        asyncio.run(_serve(args.bind, args.port, FlowDumper()))
    except KeyboardInterrupt:
        pass
    except OSError as exc:
        sys.exit(f"flowdump: udp {args.bind}:{args.port}: {exc}")


if __name__ == "__main__":
    main()
