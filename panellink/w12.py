"""Encoder for the 22-byte W12 display-update frame.

Layout (byte offsets), every byte not listed is an ASCII space::

    0      '0'
    1      language digit          (Language)
    2      message digit           (DisplayMessage)
    3      left semaphore          bits 0-1 colour, bit 7 blink
    4      right semaphore         same encoding
    6      weight sign             '+' or '-'
    7-12   weight                  right-justified, cut to 6 characters
    13-14  unit                    left-justified, cut to 2 characters
    16     bargraph direction      (BargraphDirection)
    17-18  bargraph value          two decimal digits, 0-96
    20-21  CR LF

The display parses this byte for byte, so nothing here may change. Callers
are responsible for sensible ranges; only the semaphore colour is masked.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable

FRAME_LENGTH = 22
TERMINATOR = b"\r\n"
BLINK_BIT = 0x80
COLOR_MASK = 0b11


class Language(IntEnum):
    PT = 0
    EN = 1
    ES = 2


class DisplayMessage(IntEnum):
    WEIGHT = 0
    STOP = 1
    WAIT = 2
    GO = 3


class SemaphoreColor(IntEnum):
    OFF = 0
    GREEN = 1
    RED = 2
    YELLOW = 3


class BargraphDirection(IntEnum):
    LEFT_TO_RIGHT = 0
    RIGHT_TO_LEFT = 1


@dataclass(frozen=True)
class Semaphore:
    color: int = SemaphoreColor.OFF
    blink: bool = False

    def to_byte(self) -> int:
        value = int(self.color) & COLOR_MASK
        if self.blink:
            value |= BLINK_BIT
        return value


def _digit(value: int) -> int:
    # Values outside 0-9 have no digit and are sent as NUL.
    value = int(value)
    if 0 <= value <= 9:
        return ord("0") + value
    return 0


def _ascii(text: str) -> bytes:
    return text.encode("ascii", errors="replace")


def build_frame(
    *,
    language: int = Language.PT,
    message: int = DisplayMessage.WEIGHT,
    left: Semaphore = Semaphore(),
    right: Semaphore = Semaphore(),
    sign: str = "+",
    weight: str = "",
    unit: str = "kg",
    bargraph_direction: int = BargraphDirection.LEFT_TO_RIGHT,
    bargraph_value: int = 0,
) -> bytes:
    """Return the 22-byte W12 frame for the given display state."""
    frame = bytearray(b" " * FRAME_LENGTH)
    frame[0] = ord("0")
    frame[1] = _digit(language)
    frame[2] = _digit(message)
    frame[3] = left.to_byte()
    frame[4] = right.to_byte()
    frame[6] = _ascii(sign[:1] or " ")[0]
    frame[7:13] = _ascii(str(weight).rjust(6)[:6])
    frame[13:15] = _ascii(str(unit).ljust(2)[:2])
    frame[16] = _digit(bargraph_direction)
    frame[17:19] = _ascii(f"{int(bargraph_value):02d}"[:2])
    frame[20:22] = TERMINATOR
    return bytes(frame)


@dataclass(frozen=True)
class W12Frame:
    """Display state that encodes to one W12 frame."""

    language: int = Language.PT
    message: int = DisplayMessage.WEIGHT
    left: Semaphore = field(default_factory=Semaphore)
    right: Semaphore = field(default_factory=Semaphore)
    sign: str = "+"
    weight: str = ""
    unit: str = "kg"
    bargraph_direction: int = BargraphDirection.LEFT_TO_RIGHT
    bargraph_value: int = 0

    def to_bytes(self) -> bytes:
        return build_frame(
            language=self.language,
            message=self.message,
            left=self.left,
            right=self.right,
            sign=self.sign,
            weight=self.weight,
            unit=self.unit,
            bargraph_direction=self.bargraph_direction,
            bargraph_value=self.bargraph_value,
        )


def format_hex(data: Iterable[int]) -> str:
    """Space separated upper-case hex, e.g. ``30 31 0D 0A``."""
    return " ".join(f"{byte:02X}" for byte in data)
