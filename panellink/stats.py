"""Transfer statistics kept by transports and the connection manager."""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace


@dataclass(frozen=True)
class ConnectionStats:
    """Immutable snapshot of transfer counters."""

    bytes_sent: int = 0
    bytes_received: int = 0
    successful_sends: int = 0
    failed_sends: int = 0
    reconnect_attempts: int = 0
    address: str = ""

    @property
    def success_rate(self) -> float:
        total = self.successful_sends + self.failed_sends
        if total == 0:
            return 100.0
        return self.successful_sends * 100.0 / total

    def __add__(self, other: "ConnectionStats") -> "ConnectionStats":
        if not isinstance(other, ConnectionStats):
            return NotImplemented
        return ConnectionStats(
            bytes_sent=self.bytes_sent + other.bytes_sent,
            bytes_received=self.bytes_received + other.bytes_received,
            successful_sends=self.successful_sends + other.successful_sends,
            failed_sends=self.failed_sends + other.failed_sends,
            reconnect_attempts=self.reconnect_attempts + other.reconnect_attempts,
            address=self.address or other.address,
        )

    def with_address(self, address: str) -> "ConnectionStats":
        return replace(self, address=address)

    def summary(self) -> str:
        return (
            f"address={self.address or '-'}, sent={self.bytes_sent}, "
            f"received={self.bytes_received}, success={self.success_rate:.1f}%, "
            f"errors={self.failed_sends}, reconnects={self.reconnect_attempts}"
        )


class StatsCounter:
    """Lock-protected counters owned by a single transport or manager."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._bytes_sent = 0
        self._bytes_received = 0
        self._successful_sends = 0
        self._failed_sends = 0
        self._reconnect_attempts = 0

    @staticmethod
    def _check(count: int) -> None:
        if count < 0:
            raise ValueError("Counters only move forward")

    def record_send(self, size: int) -> None:
        self._check(size)
        with self._lock:
            self._bytes_sent += size
            self._successful_sends += 1

    def record_failure(self) -> None:
        with self._lock:
            self._failed_sends += 1

    def record_received(self, size: int) -> None:
        self._check(size)
        with self._lock:
            self._bytes_received += size

    def record_reconnect_attempt(self) -> None:
        with self._lock:
            self._reconnect_attempts += 1

    def snapshot(self, address: str = "") -> ConnectionStats:
        with self._lock:
            return ConnectionStats(
                bytes_sent=self._bytes_sent,
                bytes_received=self._bytes_received,
                successful_sends=self._successful_sends,
                failed_sends=self._failed_sends,
                reconnect_attempts=self._reconnect_attempts,
                address=address,
            )

    def reset(self) -> None:
        with self._lock:
            self._bytes_sent = 0
            self._bytes_received = 0
            self._successful_sends = 0
            self._failed_sends = 0
            self._reconnect_attempts = 0
