"""진입점: python -m flowrelay"""

from __future__ import annotations

import argparse
import asyncio
import ipaddress
import sys


def _ipv4(value: str) -> str:
    try:
        return str(ipaddress.IPv4Address(value))
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid IPv4 address: {value!r}") from None


def _port(value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port: {value!r}") from None
    if not 0 < port < 65536:
        raise argparse.ArgumentTypeError(f"port out of range: {port}")
    return port


def _target(value: str) -> tuple[str, int | None]:
    """TARGET_IPADDR[:PORT]를 (주소, 포트 또는 None)으로 해석한다."""
    host, sep, port = value.partition(":")
    return _ipv4(host), (_port(port) if sep else None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flowrelay",
        description=(
            "Relay NetFlow v9/IPFIX from BIND_IPADDR:INPORT to TARGET_IPADDR:PORT, "
            "forwarding only NAT event records."
        ),
    )
    parser.add_argument(
        "-c", "--config",
        default=None,
        help="Path to configuration YAML file (default: built-in settings)",
    )
    parser.add_argument(
        "-b", "--bind",
        type=_ipv4, default=None, metavar="BIND_IPADDR",
        help="Local address to receive on (default: 127.0.0.2)",
    )
    parser.add_argument(
        "-p", "--port",
        type=_port, default=None, metavar="INPORT",
        help="Local UDP port to receive on (default: 2055)",
    )
    parser.add_argument(
        "target",
        nargs="?", type=_target, default=None, metavar="TARGET_IPADDR[:PORT]",
        help="Collector to forward to (default: 127.0.0.1:2055)",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """flowrelay CLI 진입점. 설정을 로드하고 릴레이를 실행한다."""
    parser = build_parser()
    args = parser.parse_args(argv)

    from flowrelay.utils.config import Config, ConfigError
    from flowrelay.app import FlowRelay

    try:
        config = Config.load(args.config)
    except (FileNotFoundError, ConfigError) as exc:
        parser.error(str(exc))

    if args.bind is not None:
        config.set("bind.host", args.bind)
    if args.port is not None:
        config.set("bind.port", args.port)
    if args.target is not None:
        host, port = args.target
        config.set("destination.host", host)
        if port is not None:
            config.set("destination.port", port)

    try:
        asyncio.run(FlowRelay(config).run())
    except KeyboardInterrupt:
        pass
    except ConfigError as exc:
        sys.exit(f"flowrelay: {exc}")
    except OSError as exc:
        sys.exit(
            f"flowrelay: udp {config.get('bind.host')}:{config.get('bind.port')} -> "
            f"{config.get('destination.host')}:{config.get('destination.port')}: {exc}"
        )


if __name__ == "__main__":
    main()
