import threading
import unittest

from panellink.errors import ConnectError, ConnectErrorKind
from panellink.events import ConnectionEvent, EventKind, ListenerRegistry, TransportKind
from panellink.stats import ConnectionStats, StatsCounter


class ListenerRegistryTests(unittest.TestCase):
    def test_dispatch_reaches_every_callback_despite_failures(self) -> None:
        registry = ListenerRegistry("test listener")
        seen = []

        def broken(value) -> None:
            raise RuntimeError("boom")

        registry.add(broken)
        registry.add(seen.append)

        with self.assertLogs("panellink.events", level="ERROR") as logs:
            registry.dispatch(1)
        self.assertEqual(seen, [1])
        self.assertIn("test listener", logs.output[0])

    def test_registration_during_dispatch_applies_next_time(self) -> None:
        registry = ListenerRegistry()
        seen = []

        def late(value) -> None:
            seen.append(("late", value))

        def first(value) -> None:
            seen.append(("first", value))
            registry.add(late)
            registry.remove(first)

        registry.add(first)
        registry.dispatch(1)
        registry.dispatch(2)
        self.assertEqual(seen, [("first", 1), ("late", 2)])

    def test_remove_unknown_and_clear(self) -> None:
        registry = ListenerRegistry()
        registry.remove(print)
        registry.add(print)
        registry.add(None)
        self.assertEqual(len(registry), 1)
        registry.clear()
        self.assertEqual(len(registry), 0)

    def test_event_text(self) -> None:
        event = ConnectionEvent(EventKind.RECONNECTING, TransportKind.TCP, "attempt 1/5")
        self.assertEqual(str(event), "[tcp] reconnecting: attempt 1/5")


class StatsTests(unittest.TestCase):
    def test_success_rate(self) -> None:
        self.assertEqual(ConnectionStats().success_rate, 100.0)
        stats = ConnectionStats(successful_sends=3, failed_sends=1)
        self.assertEqual(stats.success_rate, 75.0)

    def test_counter_snapshot_and_reset(self) -> None:
        counter = StatsCounter()
        counter.record_send(10)
        counter.record_send(5)
        counter.record_failure()
        counter.record_received(7)
        counter.record_reconnect_attempt()

        snap = counter.snapshot("COM3 @ 19200 8N1")
        self.assertEqual(
            snap,
            ConnectionStats(
                bytes_sent=15,
                bytes_received=7,
                successful_sends=2,
                failed_sends=1,
                reconnect_attempts=1,
                address="COM3 @ 19200 8N1",
            ),
        )
        self.assertIn("errors=1", snap.summary())

        counter.reset()
        self.assertEqual(counter.snapshot(), ConnectionStats())

    def test_counters_reject_negative_sizes(self) -> None:
        counter = StatsCounter()
        with self.assertRaises(ValueError):
            counter.record_send(-1)
        with self.assertRaises(ValueError):
            counter.record_received(-1)

    def test_concurrent_updates_are_not_lost(self) -> None:
        counter = StatsCounter()

        def work() -> None:
            for _ in range(1000):
                counter.record_send(1)

        threads = [threading.Thread(target=work) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        snap = counter.snapshot()
        self.assertEqual(snap.bytes_sent, 4000)
        self.assertEqual(snap.successful_sends, 4000)

    def test_addition_keeps_first_address(self) -> None:
        total = ConnectionStats(bytes_sent=1, address="a") + ConnectionStats(bytes_sent=2, address="b")
        self.assertEqual((total.bytes_sent, total.address), (3, "a"))
        self.assertEqual(total.with_address("c").address, "c")


class ErrorTests(unittest.TestCase):
    def test_connect_error_text_names_kind(self) -> None:
        error = ConnectError(ConnectErrorKind.BUSY, "COM3 in use")
        self.assertEqual(str(error), "BUSY: COM3 in use")
        self.assertIs(error.kind, ConnectErrorKind.BUSY)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
