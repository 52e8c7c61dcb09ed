#!/usr/bin/env python3
"""
CLI entry point for the lq link-quality toolkit.

Defines the following commands:
  lq send -m MAC [-d DEVICE] [-H HOST] [-p PORT] [-i MS] [-c COUNT] [-v]
  lq stations [-d DEVICE]
  lq relay [-s SOCKET] [-p PORT] [-b ADDR] [-T TTL_MS] [--metrics KEYS] [-v]
  lq version
"""

import sys
from argparse import ArgumentParser, Namespace
from importlib.metadata import PackageNotFoundError, version as _get_version

from pydantic import ValidationError

from lq.errors import LinkQualityError
from lq.parsers.iw import IwStationSource, detect_default_interface, list_stations
from lq.sampler import run_sampler
from lq.server import run_relay
from lq.transport.sender import WireSender
from lq.utils.log import get_logger, set_verbosity
from lq.utils.signals import StopFlag
from lq.utils.validate import DEFAULT_PORT, DEFAULT_SOCKET, RelayConfig, SenderConfig

logger = get_logger(__name__)


def _config_errors(exc: ValidationError) -> str:
    return "; ".join(err["msg"].removeprefix("Value error, ") for err in exc.errors())


def _resolve_device(device: str | None) -> str:
    if device:
        return device
    device = detect_default_interface()
    logger.info("Detected interface: %s", device)
    return device


def send(args: Namespace) -> int:
    """
    Sample the station counters of one peer and send them to the relay.

    Parameters
    ----------
    args
        Parsed `lq send` arguments.

    Returns
    -------
    int
        Process exit status.
    """
    try:
        cfg = SenderConfig(
            device=args.device,
            mac=args.mac or "",
            host=args.host,
            port=args.port,
            interval_ms=args.interval,
            count=args.count,
        )
        device = _resolve_device(cfg.device)
    except ValidationError as e:
        logger.error("Invalid configuration: %s", _config_errors(e))
        return 1
    except LinkQualityError as e:
        logger.error("%s; use -d", e)
        return 1

    logger.info(
        "Send: device=%s, mac=%s, dest=%s:%d, interval=%dms, count=%d",
        device, cfg.mac, cfg.host, cfg.port, cfg.interval_ms, cfg.count,
    )
    run_sampler(
        cfg,
        IwStationSource(device),
        WireSender(cfg.host, cfg.port),
        stop=StopFlag().install(),
    )
    return 0


def stations(args: Namespace) -> int:
    """
    Print the MAC of every station associated on the interface.
    """
    try:
        device = _resolve_device(args.device)
        macs = list_stations(device)
    except LinkQualityError as e:
        logger.error("%s", e)
        return 1
    if not macs:
        logger.error("No stations found on %s", device)
        return 1
    for mac in macs:
        print(mac)
    return 0


def relay(args: Namespace) -> int:
    """
    Relay UDP link metrics to the display socket.

    Parameters
    ----------
    args
        Parsed `lq relay` arguments.

    Returns
    -------
    int
        Process exit status.
    """
    try:
        cfg = RelayConfig(
            socket_path=args.socket,
            bind=args.bind,
            port=args.port,
            ttl_ms=args.ttl,
            metrics=tuple(args.metrics.split(",")),
        )
    except ValidationError as e:
        logger.error("Invalid configuration: %s", _config_errors(e))
        return 1

    logger.info(
        "Relay: bind=%s:%d, socket=%s, ttl=%dms, metrics=%s",
        cfg.bind, cfg.port, cfg.socket_path, cfg.ttl_ms, ",".join(cfg.metrics),
    )
    try:
        run_relay(cfg)
    except OSError as e:
        logger.error("bind() failed: %s", e)
        return 1
    return 0


def version() -> int:
    """
    Print the installed lq package version.
    """
    try:
        ver = _get_version("lq")
    except PackageNotFoundError:
        ver = "unknown"
    logger.info("lq version %s", ver)
    return 0


def build_parser() -> ArgumentParser:
    """
    Build the argument parser with all subcommands.
    """
    parser = ArgumentParser(prog="lq")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # lq send
    p = subparsers.add_parser("send", help="Sample a peer and send metrics over UDP.")
    p.add_argument("-d", "--device", type=str, help="Wireless interface (default: auto-detect managed STA).")
    p.add_argument("-m", "--mac", type=str, help="Peer MAC address to track.")
    p.add_argument("-H", "--host", type=str, default="127.0.0.1", help="UDP receiver address.")
    p.add_argument("-p", "--port", type=int, default=DEFAULT_PORT, help="UDP receiver port.")
    p.add_argument("-i", "--interval", type=int, default=1000, help="Interval between sends (ms).")
    p.add_argument("-c", "--count", type=int, default=0, help="Number of packets to send (0 = infinite).")
    p.add_argument("-v", "--verbose", action="store_true", help="Log raw metrics for every tick.")

    # lq stations
    p = subparsers.add_parser("stations", help="List associated station MACs.")
    p.add_argument("-d", "--device", type=str, help="Wireless interface (default: auto-detect managed STA).")

    # lq relay
    p = subparsers.add_parser("relay", help="Relay UDP metrics to the display socket.")
    p.add_argument("-s", "--socket", type=str, default=DEFAULT_SOCKET, help="Path to UNIX DGRAM socket.")
    p.add_argument("-p", "--port", type=int, default=DEFAULT_PORT, help="UDP port to listen on.")
    p.add_argument("-b", "--bind", type=str, default="0.0.0.0", help="UDP bind address ('*' for any).")
    p.add_argument("-T", "--ttl", type=int, default=0, help="Include ttl_ms in messages (0 = omit).")
    p.add_argument(
        "--metrics", type=str, default="rssi,link",
        help="Comma-separated metric keys to relay (rssi, link, link_tx, link_rx).",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Log every forwarded message.")

    # lq version
    subparsers.add_parser("version", help="Show lq version and exit.")

    return parser


def main(argv: list[str] | None = None) -> int:
    """
    Entry point: dispatch to the selected subcommand.
    """
    args = build_parser().parse_args(argv)
    set_verbosity(getattr(args, "verbose", False))
    match args.command:
        case "send":
            return send(args)
        case "stations":
            return stations(args)
        case "relay":
            return relay(args)
        case "version":
            return version()
        case _:
            return 1


if __name__ == "__main__":
    sys.exit(main())
