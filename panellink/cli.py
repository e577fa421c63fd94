"""Command line front end: connect to a panel, send text or W12 frames, listen."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from typing import List, Optional

from .config import AppConfig, load_config
from .manager import ConnectionManager
from .settings import CONFIG_FILE, configure_logging, parse_level
from .transport import SerialConfig, TcpConfig, list_serial_ports
from .w12 import W12Frame, Semaphore, format_hex

logger = logging.getLogger(__name__)


def _escaped(value: str) -> str:
    """Turn shell-typed escapes such as ``\\r\\n`` into the characters."""
    try:
        return value.encode("latin-1", "backslashreplace").decode("unicode_escape")
    except UnicodeDecodeError as exc:
        raise argparse.ArgumentTypeError(f"invalid escape in {value!r}: {exc.reason}") from None


def _add_target_arguments(parser: argparse.ArgumentParser) -> None:
    target = parser.add_mutually_exclusive_group()
    target.add_argument("--serial", metavar="PORT", help="serial port (default from config)")
    target.add_argument("--tcp", metavar="HOST[:PORT]", help="TCP endpoint of the panel")
    parser.add_argument("--baud", type=int, help="serial baud rate")
    parser.add_argument("--parity", help="serial parity: n, e, o, m, s")
    parser.add_argument("--data-bits", type=int, help="serial data bits (5-8)")
    parser.add_argument("--stop-bits", help="serial stop bits: 1, 1.5, 2")
    parser.add_argument("--flow", help="flow control: none, rtscts, xonxoff, dsrdtr")
    parser.add_argument("--tls", action="store_true", help="wrap the TCP socket in TLS")
    parser.add_argument("--insecure", action="store_true", help="skip TLS certificate checks")
    parser.add_argument("--attempts", type=int, default=1, help="write attempts per payload")
    parser.add_argument(
        "--wait",
        type=float,
        default=0.0,
        help="seconds to keep printing replies after sending",
    )
    parser.add_argument("--stats", action="store_true", help="print transfer statistics at exit")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="panellink", description="Exercise a WT-DISPLAY panel over serial or TCP"
    )
    parser.add_argument("--config", default=CONFIG_FILE, help="JSON settings file")
    parser.add_argument("--log-dir", help="also write a session log file into this directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("ports", help="list serial ports")

    send = sub.add_parser("send", help="send a text command")
    send.add_argument("text", help="payload text")
    send.add_argument(
        "--terminator",
        type=_escaped,
        default="\r\n",
        help="appended to the text, backslash escapes allowed (default \\r\\n); pass '' for none",
    )
    _add_target_arguments(send)

    w12 = sub.add_parser("w12", help="send a W12 display frame")
    w12.add_argument("--language", type=int, default=0, help="0 PT, 1 EN, 2 ES")
    w12.add_argument("--message", type=int, default=0, help="0 weight, 1 stop, 2 wait, 3 go")
    w12.add_argument("--left", type=int, default=0, help="left light: 0 off, 1 green, 2 red, 3 yellow")
    w12.add_argument("--left-blink", action="store_true")
    w12.add_argument("--right", type=int, default=0, help="right light colour")
    w12.add_argument("--right-blink", action="store_true")
    w12.add_argument("--sign", default="+", choices=["+", "-"])
    w12.add_argument("--weight", default="0")
    w12.add_argument("--unit", default="kg")
    w12.add_argument("--bar-direction", type=int, default=0, help="0 left to right, 1 right to left")
    w12.add_argument("--bar-value", type=int, default=0, help="0-96")
    _add_target_arguments(w12)

    listen = sub.add_parser("listen", help="print whatever the panel sends")
    listen.add_argument("--seconds", type=float, default=0.0, help="0 means until Ctrl-C")
    _add_target_arguments(listen)
    return parser


def _serial_config(args: argparse.Namespace, cfg: AppConfig) -> SerialConfig:
    return SerialConfig(
        args.serial or cfg.serial_port,
        baudrate=args.baud or cfg.baud_rate,
        data_bits=args.data_bits or cfg.data_bits,
        stop_bits=args.stop_bits or cfg.stop_bits,
        parity=args.parity or cfg.parity,
        flow_control=args.flow or cfg.flow_control,
    )


def _tcp_config(args: argparse.Namespace, cfg: AppConfig) -> TcpConfig:
    return TcpConfig.from_address(
        args.tcp,
        default_port=cfg.tcp_port,
        use_tls=args.tls or cfg.use_tls,
        verify_tls=cfg.verify_tls and not args.insecure,
        connect_timeout=cfg.connect_timeout,
        read_timeout=cfg.read_timeout,
        auto_reconnect=cfg.tcp_auto_reconnect,
    )


def _connect(manager: ConnectionManager, args: argparse.Namespace, cfg: AppConfig) -> bool:
    try:
        if args.tcp:
            return manager.connect_tcp(_tcp_config(args, cfg))
        return manager.connect_serial(_serial_config(args, cfg))
    except ValueError as exc:
        logger.error("Invalid connection settings: %s", exc)
        return False


def _frame_from_args(args: argparse.Namespace) -> W12Frame:
    return W12Frame(
        language=args.language,
        message=args.message,
        left=Semaphore(args.left, args.left_blink),
        right=Semaphore(args.right, args.right_blink),
        sign=args.sign,
        weight=args.weight,
        unit=args.unit,
        bargraph_direction=args.bar_direction,
        bargraph_value=args.bar_value,
    )


def _print_received(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


def _linger(manager: ConnectionManager, seconds: float) -> None:
    deadline = time.monotonic() + seconds if seconds > 0 else None
    try:
        while deadline is None or time.monotonic() < deadline:
            if not manager.is_connected() and not manager.reconnect_pending:
                logger.info("Connection closed")
                return
            time.sleep(0.1)
    except KeyboardInterrupt:
        logger.info("Interrupted")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = load_config(args.config)
    level = logging.DEBUG if args.verbose else parse_level(cfg.log_level)
    configure_logging(level=level, log_dir=args.log_dir)

    if args.command == "ports":
        for port in list_serial_ports(with_description=True):
            print(port)
        return 0

    manager = ConnectionManager(
        auto_reconnect=cfg.auto_reconnect,
        max_reconnect_attempts=cfg.reconnect_attempts,
        reconnect_delay=cfg.reconnect_delay,
        health_check_interval=cfg.health_check_interval,
        replay_last_payload=cfg.replay_last_payload,
    )
    with manager:
        manager.add_data_callback(_print_received)
        if not _connect(manager, args, cfg):
            return 1

        ok = True
        if args.command == "send":
            ok = manager.send(f"{args.text}{args.terminator}", args.attempts)
        elif args.command == "w12":
            frame = _frame_from_args(args).to_bytes()
            logger.info("W12 frame: %s", format_hex(frame))
            ok = manager.send_frame(frame, args.attempts)

        if ok:
            wait = args.seconds if args.command == "listen" else args.wait
            if args.command == "listen" or wait > 0:
                _linger(manager, wait)
        if args.stats:
            print(manager.get_stats().summary())
        return 0 if ok else 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
