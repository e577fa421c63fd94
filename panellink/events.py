"""Connection events and the listener registry used to deliver them."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, List, TypeVar

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class TransportKind(Enum):
    NONE = "none"
    SERIAL = "serial"
    TCP = "tcp"


class EventKind(Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CONNECTION_LOST = "connection_lost"
    RECONNECTING = "reconnecting"
    RECONNECTED = "reconnected"
    SEND_SUCCESS = "send_success"
    SEND_FAILURE = "send_failure"


@dataclass(frozen=True)
class ConnectionEvent:
    """A state change or send outcome reported by a transport or manager.

    ``session`` numbers the transport session the event belongs to; events
    emitted by the manager itself carry 0.
    """

    kind: EventKind
    transport: TransportKind
    message: str = ""
    session: int = 0

    def __str__(self) -> str:
        return f"[{self.transport.value}] {self.kind.value}: {self.message}"


ConnectionListener = Callable[[ConnectionEvent], None]


class ListenerRegistry(Generic[T]):
    """Thread-safe list of callbacks invoked with a snapshot of the registrations.

    Callbacks may add or remove registrations while a dispatch is running; the
    change takes effect on the next dispatch. An exception raised by one
    callback is logged and does not prevent delivery to the others.
    """

    def __init__(self, name: str = "listener") -> None:
        self._name = name
        self._callbacks: List[Callable[[T], None]] = []
        self._lock = threading.Lock()

    def add(self, callback: Callable[[T], None]) -> None:
        if not callback:
            return
        with self._lock:
            self._callbacks.append(callback)

    def remove(self, callback: Callable[[T], None]) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

    def clear(self) -> None:
        with self._lock:
            self._callbacks.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._callbacks)

    def dispatch(self, value: T) -> None:
        with self._lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            try:
                callback(value)
            except Exception:
                _LOGGER.error("%s %r failed", self._name, callback, exc_info=True)
