"""Transport abstraction shared by the serial and TCP implementations."""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Protocol, Union

from ..errors import ReadError, SendError
from ..events import (
    ConnectionEvent,
    ConnectionListener,
    EventKind,
    ListenerRegistry,
    TransportKind,
)
from ..stats import ConnectionStats, StatsCounter

_LOGGER = logging.getLogger(__name__)

Payload = Union[bytes, bytearray, str]
DataCallback = Callable[[str], None]
ErrorCallback = Callable[[Exception], None]

SEND_RETRY_PAUSE = 0.1
READER_JOIN_TIMEOUT = 1.0
READ_CHUNK_SIZE = 4096


class LogSink(Protocol):
    """Anything accepting pre-formatted messages, a ``logging.Logger`` included."""

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> Any: ...

    def info(self, msg: str, *args: Any, **kwargs: Any) -> Any: ...

    def error(self, msg: str, *args: Any, **kwargs: Any) -> Any: ...


def escape_control(text: str) -> str:
    """Render CR and LF literally so a payload fits on one log line."""
    return text.replace("\r", "\\r").replace("\n", "\\n")


def to_bytes(payload: Payload) -> bytes:
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return bytes(payload)


class Transport(ABC):
    """One physical or network link with a background reader.

    Subclasses provide the handle-level primitives (``_open``, ``_write``,
    ``_read_chunk``, ``_close_handle``); this class owns the reader thread,
    send retries, statistics and event delivery.
    """

    kind: TransportKind = TransportKind.NONE

    def __init__(self, *, log: Optional[LogSink] = None) -> None:
        self._log: LogSink = log or _LOGGER
        self.config: Any = None
        self._stats = StatsCounter()
        self._listeners: ListenerRegistry[ConnectionEvent] = ListenerRegistry(
            "Connection listener"
        )
        self._data_callbacks: ListenerRegistry[str] = ListenerRegistry("Data callback")
        self._error_callbacks: ListenerRegistry[Exception] = ListenerRegistry(
            "Error callback"
        )
        self._lock = threading.RLock()
        self._write_lock = threading.Lock()
        self._stop_reader = threading.Event()
        self._reading = threading.Event()
        self._reader_thread: Optional[threading.Thread] = None
        self._loss_reported = False
        self._session = 0

    # -- handle primitives -------------------------------------------------

    @abstractmethod
    def _check_config(self, config: Any) -> None:
        """Raise ``TypeError`` when *config* does not belong to this transport."""

    @abstractmethod
    def _open(self) -> None:
        """Open the handle described by ``self.config`` or raise ``ConnectError``."""

    @abstractmethod
    def _handle_is_open(self) -> bool: ...

    @abstractmethod
    def _write(self, data: bytes) -> None:
        """Write and flush *data*, raising ``OSError`` or ``SendError``."""

    @abstractmethod
    def _read_chunk(self) -> Optional[bytes]:
        """Return received bytes, ``None`` on timeout or ``b""`` at end of stream."""

    @abstractmethod
    def _close_handle(self) -> None: ...

    @abstractmethod
    def describe(self) -> str: ...

    def _interrupt_reader(self) -> None:
        """Wake a reader blocked in ``_read_chunk``. Optional."""

    # -- registration ------------------------------------------------------

    def add_listener(self, listener: ConnectionListener) -> None:
        self._listeners.add(listener)

    def remove_listener(self, listener: ConnectionListener) -> None:
        self._listeners.remove(listener)

    def register_data_callback(self, callback: DataCallback) -> None:
        self._data_callbacks.add(callback)

    def unregister_data_callback(self, callback: DataCallback) -> None:
        self._data_callbacks.remove(callback)

    def register_error_callback(self, callback: ErrorCallback) -> None:
        self._error_callbacks.add(callback)

    def unregister_error_callback(self, callback: ErrorCallback) -> None:
        self._error_callbacks.remove(callback)

    # -- lifecycle ---------------------------------------------------------

    def connect(self, config: Any) -> None:
        """Open the link described by *config* and start the reader.

        Any previous session of this transport is closed first. Raises
        ``ConnectError`` and leaves the transport disconnected on failure.
        """
        self._check_config(config)
        self.disconnect()
        with self._lock:
            self.config = config
            self._open()
            self._start_reader()
        self._emit(EventKind.CONNECTED, f"Connected to {self.describe()}")

    def is_connected(self) -> bool:
        thread = self._reader_thread
        try:
            handle_open = self._handle_is_open()
        except Exception:
            return False
        return bool(
            handle_open
            and self._reading.is_set()
            and thread is not None
            and thread.is_alive()
        )

    def disconnect(self) -> None:
        """Stop the reader and release the handle. Safe to call repeatedly."""
        # Set before locking so a reconnect running on the reader sees it.
        self._stop_reader.set()
        with self._lock:
            stop = self._stop_reader
            thread = self._reader_thread
            stop.set()
            try:
                was_open = self._handle_is_open()
            except Exception:
                was_open = False
            if was_open:
                try:
                    self._interrupt_reader()
                except Exception as exc:
                    self._log.debug(f"{self.describe()}: reader interrupt failed: {exc}")
        if (
            thread is not None
            and thread is not threading.current_thread()
            and thread.is_alive()
        ):
            thread.join(READER_JOIN_TIMEOUT)
            if thread.is_alive():
                self._log.error(
                    f"{self.describe()}: reader did not stop within "
                    f"{READER_JOIN_TIMEOUT:.1f}s, abandoning it"
                )
        with self._lock:
            if self._reader_thread is thread:
                self._reader_thread = None
                self._reading.clear()
            try:
                self._close_handle()
            except Exception as exc:
                self._log.debug(f"{self.describe()}: close failed: {exc}")
        if was_open:
            self._log.info(f"{self.describe()} disconnected")
            self._emit(EventKind.DISCONNECTED, f"Disconnected from {self.describe()}")

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.disconnect()

    # -- sending -----------------------------------------------------------

    def send(self, payload: Payload, max_attempts: int = 1) -> bool:
        """Write *payload*, retrying up to *max_attempts* times.

        Returns ``True`` only when the whole payload was written and flushed.
        """
        data = to_bytes(payload)
        attempts = max(1, int(max_attempts))
        if not self.is_connected():
            error = SendError(
                f"Attempt to send without an active {self.kind.value} connection"
            )
            self._log.error(str(error))
            self._error_callbacks.dispatch(error)
            return False

        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                with self._write_lock:
                    self._write(data)
            except (OSError, SendError) as exc:
                last_error = exc
                self._log.debug(
                    f"{self.describe()}: write attempt {attempt}/{attempts} failed: {exc}"
                )
                if attempt < attempts:
                    time.sleep(SEND_RETRY_PAUSE)
                continue
            self._stats.record_send(len(data))
            text = escape_control(data.decode("utf-8", errors="replace"))
            self._log.debug(f"{self.describe()} >> {text}")
            self._emit(EventKind.SEND_SUCCESS, f"{len(data)} bytes sent")
            return True

        self._stats.record_failure()
        error = SendError(
            f"Send to {self.describe()} failed ({attempts}/{attempts}): {last_error}"
        )
        self._log.error(str(error))
        self._error_callbacks.dispatch(error)
        self._emit(EventKind.SEND_FAILURE, str(error))
        if not self.is_connected():
            self._report_loss(f"{self.describe()} became unusable while sending")
        return False

    def send_line(self, text: str, terminator: str = "\r\n") -> bool:
        return self.send(f"{text}{terminator}")

    # -- statistics --------------------------------------------------------

    def stats(self) -> ConnectionStats:
        return self._stats.snapshot(self.describe())

    def reset_stats(self) -> None:
        self._stats.reset()

    # -- reader ------------------------------------------------------------

    @property
    def session(self) -> int:
        """Number of the current reader session, bumped by every (re)open."""
        return self._session

    def _start_reader(self) -> None:
        stop = threading.Event()
        self._stop_reader = stop
        self._session += 1
        self._loss_reported = False
        self._reading.set()
        thread = threading.Thread(
            target=self._reader_loop,
            args=(stop, self._session),
            name=f"{type(self).__name__}[{self.describe()}]",
            daemon=True,
        )
        self._reader_thread = thread
        thread.start()

    def _reader_loop(self, stop: threading.Event, session: int) -> None:
        self._log.debug(f"{self.describe()}: reader started")
        error: Optional[ReadError] = None
        try:
            while not stop.is_set():
                try:
                    chunk = self._read_chunk()
                except Exception as exc:
                    if stop.is_set():
                        break
                    error = ReadError(f"{self.describe()} read failed: {exc}", cause=exc)
                    self._log.error(str(error))
                    break
                if chunk is None:
                    continue
                if not chunk:
                    if not stop.is_set():
                        self._log.info(f"{self.describe()} closed by peer")
                    break
                self._handle_chunk(chunk)
        finally:
            current = self._reader_thread is threading.current_thread()
            unexpected = current and not stop.is_set()
            if unexpected:
                self._reader_exiting()
            if current:
                self._reading.clear()
            self._log.debug(f"{self.describe()}: reader stopped")
        if error is not None:
            self._error_callbacks.dispatch(error)
        if unexpected:
            self._on_reader_stopped(stop, session)

    def _handle_chunk(self, chunk: bytes) -> None:
        self._stats.record_received(len(chunk))
        text = chunk.decode("utf-8", errors="replace")
        self._log.debug(f"{self.describe()} << {escape_control(text)}")
        self._data_callbacks.dispatch(text)

    def _reader_exiting(self) -> None:
        """Hook run on the reader thread before it reports itself stopped."""

    def _on_reader_stopped(self, stop: threading.Event, session: int) -> None:
        """Called from the reader thread when it ended without a stop request."""
        if stop.is_set():
            return
        self._report_loss(f"{self.describe()} connection lost", session)

    def _report_loss(self, message: str, session: Optional[int] = None) -> None:
        """Emit CONNECTION_LOST once per session; reports for older sessions are dropped."""
        with self._lock:
            if session is None:
                session = self._session
            elif session != self._session:
                self._log.debug(f"{self.describe()}: ignoring loss of session {session}")
                return
            if self._loss_reported:
                return
            self._loss_reported = True
        self._emit(EventKind.CONNECTION_LOST, message, session)

    def _emit(self, kind: EventKind, message: str, session: Optional[int] = None) -> None:
        if session is None:
            session = self._session
        self._listeners.dispatch(ConnectionEvent(kind, self.kind, message, session))
