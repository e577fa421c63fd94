"""Exception types raised and reported by the panellink transports."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ConnectErrorKind(Enum):
    NOT_FOUND = "not_found"
    BUSY = "busy"
    TIMEOUT = "timeout"
    HANDSHAKE_FAILED = "handshake_failed"
    UNKNOWN = "unknown"


class ConnectError(Exception):
    """Raised when a transport cannot open its serial port or socket."""

    def __init__(
        self,
        kind: ConnectErrorKind,
        message: str,
        *,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        return f"{self.kind.name}: {self.message}"


class SendError(Exception):
    """A payload could not be written to the wire."""


class ReadError(Exception):
    """The background reader stopped because of an I/O failure."""

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause
