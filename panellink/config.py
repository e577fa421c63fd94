"""Persisted connection defaults for panellink."""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from .settings import CONFIG_FILE
from .transport import SerialConfig, TcpConfig

logger = logging.getLogger(__name__)


def _ensure_parent(path: Path) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.debug("Could not create %s: %s", path.parent, exc)


def _coerce_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _coerce_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _coerce_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes", "on"):
            return True
        if lowered in ("false", "0", "no", "off"):
            return False
        return default
    if isinstance(value, (int, float)):
        return bool(value)
    return default


@dataclass
class AppConfig:
    serial_port: str = "COM3"
    baud_rate: int = 19200
    data_bits: int = 8
    stop_bits: str = "1"
    parity: str = "N"
    flow_control: str = "none"
    tcp_host: str = "127.0.0.1"
    tcp_port: int = 5000
    use_tls: bool = False
    verify_tls: bool = True
    connect_timeout: float = 5.0
    read_timeout: float = 30.0
    tcp_auto_reconnect: bool = False
    auto_reconnect: bool = True
    reconnect_attempts: int = 3
    reconnect_delay: float = 2.0
    health_check_interval: float = 5.0
    replay_last_payload: bool = False
    log_level: str = "INFO"
    log_dir: str = "logs"

    def serial_config(self) -> SerialConfig:
        """Validated serial line settings; raises ``ValueError`` on bad values."""
        return SerialConfig(
            self.serial_port,
            baudrate=self.baud_rate,
            data_bits=self.data_bits,
            stop_bits=self.stop_bits,
            parity=self.parity,
            flow_control=self.flow_control,
        )

    def tcp_config(self) -> TcpConfig:
        return TcpConfig(
            self.tcp_host,
            self.tcp_port,
            use_tls=self.use_tls,
            connect_timeout=self.connect_timeout,
            read_timeout=self.read_timeout,
            auto_reconnect=self.tcp_auto_reconnect,
            verify_tls=self.verify_tls,
        )


_STR_FIELDS = ("serial_port", "stop_bits", "parity", "flow_control", "tcp_host", "log_level", "log_dir")
_INT_FIELDS = ("baud_rate", "data_bits", "tcp_port", "reconnect_attempts")
_FLOAT_FIELDS = ("connect_timeout", "read_timeout", "reconnect_delay", "health_check_interval")
_BOOL_FIELDS = ("use_tls", "verify_tls", "tcp_auto_reconnect", "auto_reconnect", "replay_last_payload")


def load_config(path: str | Path = CONFIG_FILE) -> AppConfig:
    """Load configuration data from *path* or return defaults on failure."""

    defaults = AppConfig()
    cfg_path = Path(path)
    if not cfg_path.exists():
        return defaults

    try:
        raw = json.loads(cfg_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        logger.error("Config file %s contains invalid JSON: %s", cfg_path, exc)
        return defaults
    except OSError as exc:
        logger.error("Could not read config file %s: %s", cfg_path, exc)
        return defaults

    if not isinstance(raw, dict):
        logger.error("Config file %s did not contain an object", cfg_path)
        return defaults

    data = asdict(defaults)
    # Older files stored the TCP endpoint as "ip"/"port" and the attempts as "reconnectAttempts".
    for old, new in (("ip", "tcp_host"), ("port", "tcp_port"), ("reconnectAttempts", "reconnect_attempts")):
        if old in raw and new not in raw:
            raw[new] = raw[old]
    for name in _STR_FIELDS:
        if name in raw:
            data[name] = str(raw[name])
    for name in _INT_FIELDS:
        data[name] = _coerce_int(raw.get(name), data[name])
    for name in _FLOAT_FIELDS:
        data[name] = _coerce_float(raw.get(name), data[name])
    for name in _BOOL_FIELDS:
        data[name] = _coerce_bool(raw.get(name), data[name])
    data["reconnect_attempts"] = max(0, data["reconnect_attempts"])
    if data["health_check_interval"] <= 0:
        data["health_check_interval"] = defaults.health_check_interval

    return AppConfig(**data)


def save_config(config: AppConfig, path: str | Path = CONFIG_FILE) -> None:
    """Persist *config* to *path*, logging errors without raising."""

    cfg_path = Path(path)
    _ensure_parent(cfg_path)
    try:
        cfg_path.write_text(json.dumps(asdict(config), indent=4), encoding="utf-8")
    except OSError as exc:
        logger.error("Could not write config file %s: %s", cfg_path, exc)
