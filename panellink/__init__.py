"""panellink: serial and TCP link layer for WT-DISPLAY LED panels."""

from __future__ import annotations

from .errors import ConnectError, ConnectErrorKind, ReadError, SendError
from .events import ConnectionEvent, EventKind, TransportKind
from .manager import ConnectionManager
from .stats import ConnectionStats
from .transport import SerialConfig, SerialTransport, TcpConfig, TcpTransport
from .w12 import W12Frame, build_frame

__all__ = [
    "ConnectError",
    "ConnectErrorKind",
    "ConnectionEvent",
    "ConnectionManager",
    "ConnectionStats",
    "EventKind",
    "ReadError",
    "SendError",
    "SerialConfig",
    "SerialTransport",
    "TcpConfig",
    "TcpTransport",
    "TransportKind",
    "W12Frame",
    "build_frame",
    "main",
]


def main() -> None:
    """Run the panellink command line tool."""

    from .cli import main as _cli_main

    raise SystemExit(_cli_main())
