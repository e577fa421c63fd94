"""Single entry point owning whichever transport is currently active."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Optional, Union

from .errors import ConnectError
from .events import (
    ConnectionEvent,
    ConnectionListener,
    EventKind,
    ListenerRegistry,
    TransportKind,
)
from .stats import ConnectionStats, StatsCounter
from .transport import (
    LogSink,
    Payload,
    SerialConfig,
    SerialTransport,
    TcpConfig,
    TcpTransport,
    Transport,
    to_bytes,
)
from .w12 import W12Frame, format_hex

_LOGGER = logging.getLogger(__name__)

HEALTH_CHECK_INTERVAL = 5.0
RECONNECT_DELAY = 2.0
MAX_RECONNECT_ATTEMPTS = 3
_JOIN_TIMEOUT = 1.0

TransportFactory = Callable[..., Transport]


class ConnectionManager:
    """Expose one send/is_connected surface over a serial or TCP transport.

    The manager activates at most one transport at a time, watches it with a
    periodic health check and, after a connection loss, retries the last
    configuration a bounded number of times. All changes of the active
    transport go through one lock.
    """

    def __init__(
        self,
        *,
        log: Optional[LogSink] = None,
        auto_reconnect: bool = True,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
        reconnect_delay: float = RECONNECT_DELAY,
        health_check_interval: Optional[float] = HEALTH_CHECK_INTERVAL,
        replay_last_payload: bool = False,
        serial_factory: TransportFactory = SerialTransport,
        tcp_factory: TransportFactory = TcpTransport,
    ) -> None:
        self._log: LogSink = log or _LOGGER
        self.auto_reconnect = auto_reconnect
        self.max_reconnect_attempts = max(0, int(max_reconnect_attempts))
        self.reconnect_delay = reconnect_delay
        self.replay_last_payload = replay_last_payload
        self._factories: Dict[TransportKind, TransportFactory] = {
            TransportKind.SERIAL: serial_factory,
            TransportKind.TCP: tcp_factory,
        }
        self._transition_lock = threading.RLock()
        self._transports: Dict[TransportKind, Transport] = {}
        self._active: Optional[Transport] = None
        self._active_kind = TransportKind.NONE
        self._last_kind = TransportKind.NONE
        self._last_config: Any = None
        self._episode_attempts = 0
        self._reconnect_timer: Optional[threading.Timer] = None
        self._last_payload: Optional[bytes] = None
        self._stats = StatsCounter()
        self._listeners: ListenerRegistry[ConnectionEvent] = ListenerRegistry(
            "Connection listener"
        )
        self._data_callbacks: ListenerRegistry[str] = ListenerRegistry("Data callback")
        self._error_callbacks: ListenerRegistry[Exception] = ListenerRegistry(
            "Error callback"
        )
        self._closed = threading.Event()
        self._health_interval = health_check_interval
        self._health_thread: Optional[threading.Thread] = None
        if health_check_interval:
            self._health_thread = threading.Thread(
                target=self._health_loop, name="ConnectionManager[health]", daemon=True
            )
            self._health_thread.start()

    # -- state -------------------------------------------------------------

    @property
    def active_kind(self) -> TransportKind:
        return self._active_kind

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_timer is not None

    def describe(self) -> str:
        transport = self._active
        return transport.describe() if transport is not None else "disconnected"

    # -- registration ------------------------------------------------------

    def add_listener(self, listener: ConnectionListener) -> None:
        self._listeners.add(listener)

    def remove_listener(self, listener: ConnectionListener) -> None:
        self._listeners.remove(listener)

    def add_data_callback(self, callback: Callable[[str], None]) -> None:
        self._data_callbacks.add(callback)

    def remove_data_callback(self, callback: Callable[[str], None]) -> None:
        self._data_callbacks.remove(callback)

    def add_error_callback(self, callback: Callable[[Exception], None]) -> None:
        self._error_callbacks.add(callback)

    def remove_error_callback(self, callback: Callable[[Exception], None]) -> None:
        self._error_callbacks.remove(callback)

    # -- connecting --------------------------------------------------------

    def connect_serial(self, config: Union[SerialConfig, str], **options: Any) -> bool:
        """Activate the serial transport; *config* may be a port name plus options."""
        try:
            if not isinstance(config, SerialConfig):
                config = SerialConfig(config, **options)
        except (TypeError, ValueError) as exc:
            self._log.error(f"Invalid serial settings: {exc}")
            return False
        return self._connect(TransportKind.SERIAL, config)

    def connect_tcp(
        self, config: Union[TcpConfig, str], port: Optional[int] = None, **options: Any
    ) -> bool:
        """Activate the TCP transport; *config* may be a host (or host:port)."""
        try:
            if not isinstance(config, TcpConfig):
                if port is None:
                    config = TcpConfig.from_address(config, **options)
                else:
                    config = TcpConfig(config, port, **options)
        except (TypeError, ValueError) as exc:
            self._log.error(f"Invalid TCP settings: {exc}")
            return False
        return self._connect(TransportKind.TCP, config)

    def _connect(self, kind: TransportKind, config: Any) -> bool:
        with self._transition_lock:
            if self._closed.is_set():
                self._log.error("Connection manager is closed")
                return False
            self._cancel_reconnect()
            previous = self._active_kind
            if self._teardown_active():
                self._log.info(f"Closed {previous.value} connection before switching")
            transport = self._transport_for(kind)
            try:
                transport.connect(config)
            except ConnectError as exc:
                self._log.debug(f"{kind.value} connect failed: {exc.kind.name}")
                return False
            self._active = transport
            self._active_kind = kind
            self._last_kind = kind
            self._last_config = config
            self._episode_attempts = 0
            description = transport.describe()
        self._log.info(f"Connected: {description}")
        self._emit(EventKind.CONNECTED, kind, f"Connected to {description}")
        self._replay_last_payload()
        return True

    def _transport_for(self, kind: TransportKind) -> Transport:
        transport = self._transports.get(kind)
        if transport is None:
            transport = self._factories[kind](log=self._log)
            transport.add_listener(self._on_transport_event)
            transport.register_data_callback(self._data_callbacks.dispatch)
            transport.register_error_callback(self._error_callbacks.dispatch)
            self._transports[kind] = transport
        return transport

    def _teardown_active(self) -> bool:
        """Release the active transport. Caller holds the transition lock."""
        transport = self._active
        if transport is None:
            return False
        self._active = None
        self._active_kind = TransportKind.NONE
        try:
            transport.disconnect()
        except Exception as exc:
            self._log.error(f"Error while closing {transport.describe()}: {exc}")
        return True

    def disconnect_all(self) -> None:
        """Close every transport. Emits DISCONNECTED only if one was active."""
        with self._transition_lock:
            self._cancel_reconnect()
            kind = self._active_kind
            was_active = self._teardown_active()
            self._last_config = None
            self._last_kind = TransportKind.NONE
            self._episode_attempts = 0
            for transport in list(self._transports.values()):
                try:
                    transport.disconnect()
                except Exception as exc:
                    self._log.error(f"Error while closing {transport.describe()}: {exc}")
        if was_active:
            self._log.info("All connections were closed")
            self._emit(EventKind.DISCONNECTED, kind, "Disconnected")

    # -- sending -----------------------------------------------------------

    def send(self, payload: Payload, max_attempts: int = 1) -> bool:
        transport = self._active
        if transport is None:
            self._log.error("Attempt to send without an active connection")
            self._emit(EventKind.SEND_FAILURE, TransportKind.NONE, "No active connection")
            return False
        data = to_bytes(payload)
        if transport.send(data, max_attempts):
            self._last_payload = data
            return True
        if not transport.is_connected() and not self._is_recovering(transport):
            self._handle_connection_lost(transport, f"{transport.describe()} failed while sending")
        return False

    def send_line(self, text: str, terminator: str = "\r\n") -> bool:
        return self.send(f"{text}{terminator}")

    def send_frame(self, frame: Union[W12Frame, bytes], max_attempts: int = 1) -> bool:
        data = frame.to_bytes() if isinstance(frame, W12Frame) else bytes(frame)
        self._log.debug(f"W12 >> {format_hex(data)}")
        return self.send(data, max_attempts)

    # -- health ------------------------------------------------------------

    def is_connected(self) -> bool:
        """Report the active transport's state, handling a loss found on the way."""
        transport = self._active
        if transport is None:
            return False
        if transport.is_connected():
            return True
        if not self._is_recovering(transport):
            self._handle_connection_lost(transport, f"{transport.describe()} is no longer connected")
        return False

    @staticmethod
    def _is_recovering(transport: Transport) -> bool:
        return bool(getattr(transport, "is_reconnecting", False))

    def _health_loop(self) -> None:
        interval = self._health_interval or HEALTH_CHECK_INTERVAL
        while not self._closed.wait(interval):
            try:
                self.is_connected()
            except Exception:
                _LOGGER.error("Health check failed", exc_info=True)

    def _on_transport_event(self, event: ConnectionEvent) -> None:
        if event.kind in (EventKind.CONNECTION_LOST, EventKind.DISCONNECTED):
            transport = self._transports.get(event.transport)
            if transport is None:
                return
            # Handled off the reporting thread: teardown joins that reader
            # while holding the transition lock.
            threading.Thread(
                target=self._handle_connection_lost,
                args=(transport, event.message, event.session),
                name="ConnectionManager[loss]",
                daemon=True,
            ).start()
            return
        if event.kind is EventKind.CONNECTED:
            return
        self._listeners.dispatch(event)

    # -- recovery ----------------------------------------------------------

    def _handle_connection_lost(
        self, transport: Transport, reason: str, session: Optional[int] = None
    ) -> None:
        """Tear down *transport* after a loss, once per episode.

        A loss reported for *session* is ignored when the transport has since
        been reopened; without a session the transport's state is re-checked.
        """
        with self._transition_lock:
            if transport is not self._active or self._active_kind is TransportKind.NONE:
                return
            if session is None:
                if transport.is_connected() or self._is_recovering(transport):
                    return
            elif session != transport.session:
                self._log.debug(
                    f"Ignoring stale loss of {transport.describe()} session {session}"
                )
                return
            kind = self._active_kind
            self._teardown_active()
        self._log.error(f"Connection lost: {reason}")
        self._emit(EventKind.CONNECTION_LOST, kind, reason)
        if not self.auto_reconnect:
            return
        with self._transition_lock:
            if self._active_kind is not TransportKind.NONE or self._closed.is_set():
                return
            scheduled = self._schedule_reconnect()
        if not scheduled:
            self._log.error("Automatic reconnection is disabled for this connection")

    def _schedule_reconnect(self) -> bool:
        """Arm the reconnect timer. Caller holds the transition lock."""
        if self._last_config is None or self._reconnect_timer is not None:
            return False
        if self._episode_attempts >= self.max_reconnect_attempts:
            return False
        timer = threading.Timer(self.reconnect_delay, self._attempt_reconnect)
        timer.daemon = True
        timer.name = "ConnectionManager[reconnect]"
        self._reconnect_timer = timer
        timer.start()
        return True

    def _cancel_reconnect(self) -> None:
        timer = self._reconnect_timer
        self._reconnect_timer = None
        if timer is not None:
            timer.cancel()

    def _attempt_reconnect(self) -> None:
        with self._transition_lock:
            if threading.current_thread() is not self._reconnect_timer:
                return
            self._reconnect_timer = None
            if (
                self._closed.is_set()
                or self._active_kind is not TransportKind.NONE
                or self._last_config is None
            ):
                return
            self._episode_attempts += 1
            attempt = self._episode_attempts
            kind = self._last_kind
            config = self._last_config
            self._stats.record_reconnect_attempt()
        limit = self.max_reconnect_attempts
        self._log.info(f"Reconnect attempt {attempt}/{limit} ({kind.value})")
        self._emit(EventKind.RECONNECTING, kind, f"Reconnect attempt {attempt}/{limit}")

        failure: Optional[ConnectError] = None
        more = False
        with self._transition_lock:
            if self._closed.is_set() or self._active_kind is not TransportKind.NONE:
                return
            transport = self._transport_for(kind)
            try:
                transport.connect(config)
            except ConnectError as exc:
                failure = exc
                more = self._schedule_reconnect()
            else:
                self._active = transport
                self._active_kind = kind
                self._episode_attempts = 0
                description = transport.describe()

        if failure is not None:
            self._log.error(f"Reconnect attempt {attempt}/{limit} failed: {failure}")
            if not more:
                self._log.error(f"Giving up after {attempt} reconnect attempts")
                self._emit(EventKind.DISCONNECTED, kind, "Reconnection attempts exhausted")
            return

        self._log.info(f"Reconnected: {description}")
        self._emit(EventKind.RECONNECTED, kind, f"Reconnected to {description}")
        self._replay_last_payload()

    def _replay_last_payload(self) -> None:
        payload = self._last_payload
        if self.replay_last_payload and payload is not None:
            self._log.info("Replaying last payload on the new connection")
            self.send(payload)

    def reset_reconnect_budget(self) -> None:
        """Allow a new round of reconnect attempts after the budget ran out."""
        with self._transition_lock:
            self._episode_attempts = 0
            if (
                self.auto_reconnect
                and not self._closed.is_set()
                and self._active_kind is TransportKind.NONE
            ):
                self._schedule_reconnect()

    # -- statistics --------------------------------------------------------

    def get_stats(self) -> ConnectionStats:
        with self._transition_lock:
            transports = list(self._transports.values())
            active = self._active
        total = self._stats.snapshot()
        for transport in transports:
            total = total + transport.stats()
        return total.with_address(active.describe() if active is not None else "")

    def reset_stats(self) -> None:
        with self._transition_lock:
            self._stats.reset()
            for transport in self._transports.values():
                transport.reset_stats()

    # -- shutdown ----------------------------------------------------------

    def close(self) -> None:
        """Stop the health check and release every transport. Idempotent."""
        with self._transition_lock:
            if self._closed.is_set():
                return
            self._closed.set()
            self._cancel_reconnect()
        thread = self._health_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(_JOIN_TIMEOUT)
        self._health_thread = None
        self.disconnect_all()
        self._log.info("Connection manager closed")

    def __enter__(self) -> "ConnectionManager":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _emit(self, kind: EventKind, transport: TransportKind, message: str) -> None:
        self._listeners.dispatch(ConnectionEvent(kind, transport, message))
