import json
import logging
import tempfile
import unittest
from datetime import datetime
from pathlib import Path

from panellink.config import AppConfig, load_config, save_config
from panellink.settings import configure_logging, log_file_path, parse_level
from panellink.transport import FlowControl, Parity, StopBits


class ConfigTests(unittest.TestCase):
    def test_load_returns_defaults_when_missing(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "panellink.json"
            cfg = load_config(path)
        self.assertEqual(cfg, AppConfig())
        self.assertEqual((cfg.serial_port, cfg.baud_rate), ("COM3", 19200))
        self.assertEqual((cfg.tcp_host, cfg.tcp_port), ("127.0.0.1", 5000))
        self.assertEqual(cfg.reconnect_attempts, 3)

    def test_load_merges_and_coerces_values(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "panellink.json"
            payload = {
                # Legacy keys migrate to the current names
                "ip": "192.168.0.50",
                "port": "6000",
                "reconnectAttempts": "5",
                "use_tls": "yes",
                "read_timeout": "12.5",
            }
            path.write_text(json.dumps(payload), encoding="utf-8")
            cfg = load_config(path)
        self.assertEqual(cfg.tcp_host, "192.168.0.50")
        self.assertEqual(cfg.tcp_port, 6000)
        self.assertEqual(cfg.reconnect_attempts, 5)
        self.assertTrue(cfg.use_tls)
        self.assertEqual(cfg.read_timeout, 12.5)
        # Unspecified fields fall back to defaults
        self.assertEqual(cfg.serial_port, AppConfig().serial_port)

    def test_bad_values_fall_back_to_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "panellink.json"
            payload = {
                "baud_rate": "fast",
                "reconnect_attempts": -2,
                "health_check_interval": 0,
            }
            path.write_text(json.dumps(payload), encoding="utf-8")
            cfg = load_config(path)
        self.assertEqual(cfg.baud_rate, 19200)
        self.assertEqual(cfg.reconnect_attempts, 0)
        self.assertEqual(cfg.health_check_interval, 5.0)

    def test_invalid_json_returns_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "panellink.json"
            path.write_text("{not json", encoding="utf-8")
            with self.assertLogs("panellink.config", level="ERROR"):
                cfg = load_config(path)
        self.assertEqual(cfg, AppConfig())

    def test_save_and_reload_roundtrip(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "nested" / "panellink.json"
            cfg = AppConfig(
                serial_port="/dev/ttyUSB0",
                baud_rate=9600,
                parity="E",
                stop_bits="2",
                tcp_host="panel.local",
                tcp_port=5100,
                use_tls=True,
                auto_reconnect=False,
                replay_last_payload=True,
            )
            save_config(cfg, path)
            loaded = load_config(path)
        self.assertEqual(loaded, cfg)

    def test_transport_configs(self) -> None:
        cfg = AppConfig(parity="o", stop_bits="1.5", flow_control="rtscts", use_tls=True)
        serial_cfg = cfg.serial_config()
        self.assertEqual(serial_cfg.port, "COM3")
        self.assertIs(serial_cfg.parity, Parity.ODD)
        self.assertIs(serial_cfg.stop_bits, StopBits.ONE_POINT_FIVE)
        self.assertIs(serial_cfg.flow_control, FlowControl.RTS_CTS)
        tcp_cfg = cfg.tcp_config()
        self.assertEqual(tcp_cfg.address, "127.0.0.1:5000")
        self.assertTrue(tcp_cfg.use_tls)
        with self.assertRaises(ValueError):
            AppConfig(parity="?").serial_config()


class LoggingSetupTests(unittest.TestCase):
    def test_log_file_name(self) -> None:
        path = log_file_path("logs", now=datetime(2024, 3, 9, 14, 5, 7))
        self.assertEqual(path, Path("logs") / "logs_20240309_140507.txt")

    def test_parse_level(self) -> None:
        self.assertEqual(parse_level("debug"), logging.DEBUG)
        self.assertEqual(parse_level(logging.ERROR), logging.ERROR)
        self.assertEqual(parse_level("chatty"), logging.INFO)

    def test_file_handler_uses_bracketed_format(self) -> None:
        root = logging.getLogger()
        before = list(root.handlers)
        with tempfile.TemporaryDirectory() as tmp:
            path = configure_logging(log_dir=tmp)
            added = [handler for handler in root.handlers if handler not in before]
            try:
                self.assertIsNotNone(path)
                self.assertTrue(path.name.startswith("logs_"))
                logging.getLogger("panellink.test").error("Panel offline")
                for handler in added:
                    handler.flush()
                text = path.read_text(encoding="utf-8")
            finally:
                for handler in added:
                    root.removeHandler(handler)
                    handler.close()
        self.assertRegex(
            text, r"\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\]\[ERROR\] Panel offline"
        )


if __name__ == "__main__":
    unittest.main()
