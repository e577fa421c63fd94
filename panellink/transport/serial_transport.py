"""Serial (RS-232/RS-485) transport for the display panel."""

from __future__ import annotations

import errno
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

import serial
import serial.tools.list_ports

from ..errors import ConnectError, ConnectErrorKind, SendError
from ..events import TransportKind
from .base import LogSink, Transport

_LOGGER = logging.getLogger(__name__)

_DEFAULT_BAUDRATE = 19200
_DATA_BITS = (5, 6, 7, 8)


class Parity(Enum):
    NONE = "none"
    EVEN = "even"
    ODD = "odd"
    MARK = "mark"
    SPACE = "space"

    @classmethod
    def from_code(cls, code: Union["Parity", str]) -> "Parity":
        """Accept a member, its name, or the one-letter code (``n``, ``e``, ...)."""
        if isinstance(code, Parity):
            return code
        key = str(code).strip().lower()
        if key in _PARITY_BY_LETTER:
            return _PARITY_BY_LETTER[key]
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown parity {code!r}") from None

    @property
    def code(self) -> str:
        return _PARITY_LETTERS[self]

    @property
    def serial_value(self) -> str:
        return _PARITY_SERIAL[self]


_PARITY_LETTERS: Dict[Parity, str] = {
    Parity.NONE: "N",
    Parity.EVEN: "E",
    Parity.ODD: "O",
    Parity.MARK: "M",
    Parity.SPACE: "S",
}
_PARITY_BY_LETTER = {letter.lower(): parity for parity, letter in _PARITY_LETTERS.items()}
_PARITY_SERIAL: Dict[Parity, str] = {
    Parity.NONE: serial.PARITY_NONE,
    Parity.EVEN: serial.PARITY_EVEN,
    Parity.ODD: serial.PARITY_ODD,
    Parity.MARK: serial.PARITY_MARK,
    Parity.SPACE: serial.PARITY_SPACE,
}


class StopBits(Enum):
    ONE = "1"
    ONE_POINT_FIVE = "1.5"
    TWO = "2"

    @classmethod
    def from_code(cls, code: Union["StopBits", str, int, float]) -> "StopBits":
        if isinstance(code, StopBits):
            return code
        if isinstance(code, (int, float)):
            key = f"{code:g}"
        else:
            key = str(code).strip()
        try:
            return cls(key)
        except ValueError:
            pass
        try:
            return cls[key.upper()]
        except KeyError:
            raise ValueError(f"Unknown stop bits {code!r}") from None

    @property
    def code(self) -> str:
        return self.value

    @property
    def serial_value(self) -> float:
        return _STOPBITS_SERIAL[self]


_STOPBITS_SERIAL: Dict[StopBits, float] = {
    StopBits.ONE: serial.STOPBITS_ONE,
    StopBits.ONE_POINT_FIVE: serial.STOPBITS_ONE_POINT_FIVE,
    StopBits.TWO: serial.STOPBITS_TWO,
}


class FlowControl(Enum):
    NONE = "none"
    RTS_CTS = "rtscts"
    XON_XOFF = "xonxoff"
    DSR_DTR = "dsrdtr"

    @classmethod
    def from_code(cls, code: Union["FlowControl", str]) -> "FlowControl":
        if isinstance(code, FlowControl):
            return code
        key = str(code).strip().lower()
        key = _FLOW_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown flow control {code!r}") from None

    @property
    def code(self) -> str:
        return self.value

    def serial_kwargs(self) -> Dict[str, bool]:
        return {
            "xonxoff": self is FlowControl.XON_XOFF,
            "rtscts": self is FlowControl.RTS_CTS,
            "dsrdtr": self is FlowControl.DSR_DTR,
        }


_FLOW_ALIASES = {
    "": "none",
    "off": "none",
    "ctsrts": "rtscts",
    "hardware": "rtscts",
    "software": "xonxoff",
    "dtrdsr": "dsrdtr",
}


@dataclass(frozen=True)
class SerialConfig:
    """Line parameters for a serial connection, validated on construction."""

    port: str
    baudrate: int = _DEFAULT_BAUDRATE
    data_bits: int = 8
    stop_bits: StopBits = StopBits.ONE
    parity: Parity = Parity.NONE
    flow_control: FlowControl = FlowControl.NONE
    read_timeout: float = 0.1
    write_timeout: float = 1.0

    def __post_init__(self) -> None:
        port = (self.port or "").strip()
        # Port pickers list entries as "COM3 - USB Serial Device".
        if " - " in port:
            port = port.split(" - ")[0].strip()
        if not port:
            raise ValueError("Serial port name is required")
        baudrate = int(self.baudrate)
        if baudrate <= 0:
            raise ValueError(f"Invalid baud rate {self.baudrate!r}")
        data_bits = int(self.data_bits)
        if data_bits not in _DATA_BITS:
            raise ValueError(f"Data bits must be one of {_DATA_BITS}, got {self.data_bits!r}")
        if self.read_timeout <= 0 or self.write_timeout <= 0:
            raise ValueError("Serial timeouts must be positive")
        object.__setattr__(self, "port", port)
        object.__setattr__(self, "baudrate", baudrate)
        object.__setattr__(self, "data_bits", data_bits)
        object.__setattr__(self, "stop_bits", StopBits.from_code(self.stop_bits))
        object.__setattr__(self, "parity", Parity.from_code(self.parity))
        object.__setattr__(self, "flow_control", FlowControl.from_code(self.flow_control))

    @property
    def framing(self) -> str:
        """Conventional short form such as ``8N1``."""
        return f"{self.data_bits}{self.parity.code}{self.stop_bits.code}"


def list_serial_ports(*, with_description: bool = False) -> List[str]:
    """Return the serial ports visible to the OS."""
    ports = []
    for info in serial.tools.list_ports.comports():
        device = getattr(info, "device", None)
        if not device:
            continue
        description = getattr(info, "description", "") or ""
        if with_description and description and description != "n/a":
            ports.append(f"{device} - {description}")
        else:
            ports.append(device)
    return ports


_NOT_FOUND_ERRNOS = {errno.ENOENT, errno.ENODEV, errno.ENXIO}
_BUSY_ERRNOS = {errno.EBUSY, errno.EACCES, errno.EAGAIN}


def _classify_open_error(port: str, exc: Exception) -> ConnectError:
    code = getattr(exc, "errno", None)
    lower = str(exc).lower()
    if isinstance(exc, serial.SerialTimeoutException):
        kind = ConnectErrorKind.TIMEOUT
    elif code in _NOT_FOUND_ERRNOS or "filenotfounderror" in lower or "no such file" in lower:
        kind = ConnectErrorKind.NOT_FOUND
    elif code in _BUSY_ERRNOS or "permissionerror" in lower or "access is denied" in lower or "busy" in lower:
        kind = ConnectErrorKind.BUSY
    else:
        kind = ConnectErrorKind.UNKNOWN
    return ConnectError(kind, f"Could not open serial port {port}: {exc}", cause=exc)


class SerialTransport(Transport):
    """Serial port with a continuous background reader."""

    kind = TransportKind.SERIAL

    def __init__(
        self, config: Optional[SerialConfig] = None, *, log: Optional[LogSink] = None
    ) -> None:
        super().__init__(log=log or _LOGGER)
        self.config: Optional[SerialConfig] = config
        self._serial: Optional[serial.Serial] = None

    def _check_config(self, config: Any) -> None:
        if not isinstance(config, SerialConfig):
            raise TypeError(f"SerialTransport needs a SerialConfig, got {type(config).__name__}")

    def describe(self) -> str:
        cfg = self.config
        if cfg is None:
            return "serial (not configured)"
        return f"{cfg.port} @ {cfg.baudrate} {cfg.framing}"

    def _open(self) -> None:
        cfg = self.config
        assert cfg is not None
        try:
            ser = serial.Serial(
                port=cfg.port,
                baudrate=cfg.baudrate,
                bytesize=cfg.data_bits,
                parity=cfg.parity.serial_value,
                stopbits=cfg.stop_bits.serial_value,
                timeout=cfg.read_timeout,
                write_timeout=cfg.write_timeout,
                **cfg.flow_control.serial_kwargs(),
            )
        except serial.SerialException as exc:
            error = _classify_open_error(cfg.port, exc)
            self._log.error(str(error))
            raise error from exc
        except ValueError as exc:
            error = ConnectError(
                ConnectErrorKind.UNKNOWN,
                f"Invalid serial parameters for {cfg.port}: {exc}",
                cause=exc,
            )
            self._log.error(str(error))
            raise error from exc
        self._serial = ser
        self._log.info(f"Serial connected: {cfg.port} @ {cfg.baudrate}bps {cfg.framing}")

    def _handle_is_open(self) -> bool:
        ser = self._serial
        return bool(ser is not None and ser.is_open)

    def _write(self, data: bytes) -> None:
        ser = self._serial
        if ser is None:
            raise SendError("Serial port is not open")
        written = ser.write(data)
        if isinstance(written, int) and written < len(data):
            raise SendError(f"Short write on {self.describe()}: {written}/{len(data)} bytes")
        ser.flush()

    def _read_chunk(self) -> Optional[bytes]:
        ser = self._serial
        if ser is None:
            return b""
        waiting = ser.in_waiting
        data = ser.read(waiting if isinstance(waiting, int) and waiting > 0 else 1)
        return data or None

    def _interrupt_reader(self) -> None:
        ser = self._serial
        cancel_read = getattr(ser, "cancel_read", None)
        if cancel_read is not None:
            cancel_read()

    def _close_handle(self) -> None:
        ser = self._serial
        self._serial = None
        if ser is not None:
            ser.close()
