"""Transport layer for panellink: serial and TCP links behind one interface."""

from .base import (
    LogSink,
    Payload,
    Transport,
    escape_control,
    to_bytes,
)
from .serial_transport import (
    FlowControl,
    Parity,
    SerialConfig,
    SerialTransport,
    StopBits,
    list_serial_ports,
)
from .tcp_transport import TcpConfig, TcpTransport, reconnect_delay

__all__ = [
    "FlowControl",
    "LogSink",
    "Parity",
    "Payload",
    "SerialConfig",
    "SerialTransport",
    "StopBits",
    "TcpConfig",
    "TcpTransport",
    "Transport",
    "escape_control",
    "list_serial_ports",
    "reconnect_delay",
    "to_bytes",
]
