"""TCP (optionally TLS) transport with automatic reconnection."""

from __future__ import annotations

import logging
import socket
import ssl
import threading
from dataclasses import dataclass, replace
from typing import Any, Optional

from ..errors import ConnectError, ConnectErrorKind
from ..events import EventKind, TransportKind
from .base import READ_CHUNK_SIZE, LogSink, Transport

_LOGGER = logging.getLogger(__name__)

MAX_RECONNECT_ATTEMPTS = 5
INITIAL_RECONNECT_DELAY = 1.0
MAX_RECONNECT_DELAY = 30.0


def reconnect_delay(attempt: int) -> float:
    """Seconds to wait before reconnection *attempt* (1-based)."""
    return min(INITIAL_RECONNECT_DELAY * 2 ** (attempt - 1), MAX_RECONNECT_DELAY)


@dataclass(frozen=True)
class TcpConfig:
    host: str
    port: int = 5000
    use_tls: bool = False
    connect_timeout: float = 5.0
    read_timeout: float = 30.0
    auto_reconnect: bool = False
    verify_tls: bool = True
    server_hostname: Optional[str] = None

    def __post_init__(self) -> None:
        host = (self.host or "").strip()
        if not host:
            raise ValueError("TCP host is required")
        port = int(self.port)
        if not 0 < port < 65536:
            raise ValueError(f"TCP port out of range: {self.port!r}")
        if self.connect_timeout <= 0 or self.read_timeout <= 0:
            raise ValueError("TCP timeouts must be positive")
        object.__setattr__(self, "host", host)
        object.__setattr__(self, "port", port)

    @property
    def address(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}"

    @classmethod
    def from_address(cls, address: str, default_port: int = 5000, **kwargs: Any) -> "TcpConfig":
        """Build a config from ``host``, ``host:port`` or ``[ipv6]:port``.

        A bare IPv6 literal (more than one colon, no brackets) is taken as a
        host on *default_port*.
        """
        address = address.strip()
        if address.startswith("["):
            host, bracket, rest = address[1:].partition("]")
            if not bracket or (rest and not rest.startswith(":")):
                raise ValueError(f"Invalid TCP address {address!r}")
            if not rest:
                return cls(host, default_port, **kwargs)
            port = rest[1:]
        elif address.count(":") > 1:
            return cls(address, default_port, **kwargs)
        else:
            host, sep, port = address.rpartition(":")
            if not sep:
                return cls(address, default_port, **kwargs)
        try:
            port_number = int(port)
        except ValueError:
            raise ValueError(f"Invalid TCP port in {address!r}") from None
        return cls(host, port_number, **kwargs)


class TcpTransport(Transport):
    """TCP client socket with a background reader and backoff reconnection."""

    kind = TransportKind.TCP

    def __init__(
        self,
        config: Optional[TcpConfig] = None,
        *,
        log: Optional[LogSink] = None,
        ssl_context: Optional[ssl.SSLContext] = None,
    ) -> None:
        super().__init__(log=log or _LOGGER)
        self.config: Optional[TcpConfig] = config
        self._ssl_context = ssl_context
        self._sock: Optional[socket.socket] = None
        self._reconnecting = threading.Event()

    @property
    def is_reconnecting(self) -> bool:
        return self._reconnecting.is_set()

    @property
    def is_tls(self) -> bool:
        return bool(self.config and self.config.use_tls)

    def _check_config(self, config: Any) -> None:
        if not isinstance(config, TcpConfig):
            raise TypeError(f"TcpTransport needs a TcpConfig, got {type(config).__name__}")

    def describe(self) -> str:
        cfg = self.config
        if cfg is None:
            return "tcp (not configured)"
        scheme = "tls" if cfg.use_tls else "tcp"
        return f"{scheme}://{cfg.address}"

    def set_timeouts(self, connect_timeout: float, read_timeout: float) -> None:
        """Change the timeouts used for the next connect and the open socket."""
        if self.config is None:
            raise RuntimeError("TcpTransport has no configuration yet")
        self.config = replace(
            self.config, connect_timeout=connect_timeout, read_timeout=read_timeout
        )
        sock = self._sock
        if sock is not None:
            try:
                sock.settimeout(read_timeout)
            except OSError as exc:
                self._log.error(f"Could not apply read timeout to {self.describe()}: {exc}")

    def _context(self) -> ssl.SSLContext:
        if self._ssl_context is not None:
            return self._ssl_context
        context = ssl.create_default_context()
        if self.config is not None and not self.config.verify_tls:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _open(self) -> None:
        self._sock = self._create_socket()

    def _create_socket(self) -> socket.socket:
        """Connect (and handshake) a new socket without touching transport state."""
        cfg = self.config
        assert cfg is not None
        protocol = "SSL/TCP" if cfg.use_tls else "TCP"
        try:
            raw = socket.create_connection(
                (cfg.host, cfg.port), timeout=cfg.connect_timeout
            )
        except socket.timeout as exc:
            raise self._connect_error(ConnectErrorKind.TIMEOUT, "connection timed out", exc)
        except socket.gaierror as exc:
            raise self._connect_error(ConnectErrorKind.NOT_FOUND, f"unknown host ({exc})", exc)
        except ConnectionRefusedError as exc:
            raise self._connect_error(ConnectErrorKind.NOT_FOUND, "connection refused", exc)
        except OSError as exc:
            raise self._connect_error(ConnectErrorKind.UNKNOWN, str(exc), exc)

        sock: socket.socket = raw
        if cfg.use_tls:
            try:
                sock = self._context().wrap_socket(
                    raw, server_hostname=cfg.server_hostname or cfg.host
                )
            except socket.timeout as exc:
                raw.close()
                raise self._connect_error(ConnectErrorKind.TIMEOUT, "TLS handshake timed out", exc)
            except (ssl.SSLError, OSError) as exc:
                raw.close()
                raise self._connect_error(
                    ConnectErrorKind.HANDSHAKE_FAILED, f"TLS handshake failed: {exc}", exc
                )
        try:
            sock.settimeout(cfg.read_timeout)
        except OSError as exc:
            sock.close()
            raise self._connect_error(ConnectErrorKind.UNKNOWN, str(exc), exc)
        self._log.info(f"{protocol} connected: {cfg.address}")
        return sock

    def _connect_error(
        self, kind: ConnectErrorKind, reason: str, exc: BaseException
    ) -> ConnectError:
        cfg = self.config
        protocol = "SSL/TCP" if cfg is not None and cfg.use_tls else "TCP"
        address = cfg.address if cfg is not None else "?"
        error = ConnectError(kind, f"Could not connect {protocol} {address}: {reason}", cause=exc)
        self._log.error(str(error))
        return error

    def _handle_is_open(self) -> bool:
        sock = self._sock
        return bool(sock is not None and sock.fileno() != -1)

    def _write(self, data: bytes) -> None:
        sock = self._sock
        if sock is None:
            raise ConnectionResetError("TCP socket is not open")
        sock.sendall(data)

    def _read_chunk(self) -> Optional[bytes]:
        sock = self._sock
        if sock is None:
            return b""
        try:
            return sock.recv(READ_CHUNK_SIZE)
        except socket.timeout:
            return None

    def _interrupt_reader(self) -> None:
        sock = self._sock
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError as exc:
                # Already reset by the peer.
                self._log.debug(f"Socket shutdown on {self.describe()} failed: {exc}")

    def _close_handle(self) -> None:
        sock = self._sock
        self._sock = None
        if sock is not None:
            sock.close()

    def _reader_exiting(self) -> None:
        if self.config is not None and self.config.auto_reconnect:
            self._reconnecting.set()

    def _on_reader_stopped(self, stop: threading.Event, session: int) -> None:
        cfg = self.config
        if cfg is None or not cfg.auto_reconnect:
            super()._on_reader_stopped(stop, session)
            return
        self._auto_reconnect(stop, session)

    def _auto_reconnect(self, stop: threading.Event, session: int) -> None:
        """Reopen the socket with exponential backoff, on the exiting reader thread.

        Sockets are connected outside ``self._lock`` so ``disconnect()`` never
        waits for a connect timeout; a socket that completes after a stop
        request is closed instead of installed.
        """
        cfg = self.config
        assert cfg is not None
        self._reconnecting.set()
        try:
            with self._lock:
                if stop.is_set():
                    return
                try:
                    self._close_handle()
                except OSError as exc:
                    self._log.debug(f"Closing dead socket failed: {exc}")
            for attempt in range(1, MAX_RECONNECT_ATTEMPTS + 1):
                delay = reconnect_delay(attempt)
                self._log.info(
                    f"TCP reconnect attempt {attempt}/{MAX_RECONNECT_ATTEMPTS} "
                    f"in {delay * 1000:.0f}ms"
                )
                self._stats.record_reconnect_attempt()
                self._emit(
                    EventKind.RECONNECTING,
                    f"Reconnecting to {cfg.address} ({attempt}/{MAX_RECONNECT_ATTEMPTS})",
                    session,
                )
                if stop.wait(delay):
                    return
                try:
                    sock = self._create_socket()
                except ConnectError as exc:
                    self._log.error(f"TCP reconnect attempt {attempt} failed: {exc}")
                    continue
                with self._lock:
                    if stop.is_set():
                        sock.close()
                        self._log.debug(f"Discarding late reconnection to {cfg.address}")
                        return
                    self._sock = sock
                    self._start_reader()
                self._log.info(f"TCP reconnection to {cfg.address} succeeded")
                self._emit(EventKind.RECONNECTED, f"Reconnected to {self.describe()}")
                return
            self._log.error(f"All TCP reconnection attempts to {cfg.address} failed")
            self._emit(
                EventKind.DISCONNECTED,
                f"{cfg.address} unreachable after {MAX_RECONNECT_ATTEMPTS} attempts",
                session,
            )
        finally:
            self._reconnecting.clear()
