"""ESC/POS command builders and an append-only command buffer.

Only the handful of opcodes needed for 58 mm receipts are covered:

- ``ESC @``      initialize
- ``ESC a n``    alignment (0 left, 1 center, 2 right)
- ``GS ! n``     character size, width/height multiplier 1-8
- ``ESC E n``    emphasized (bold) on/off
- ``ESC d n``    print and feed n lines
- ``GS V 0``     full cut
"""

from __future__ import annotations

from typing import List, Tuple

from escpos.constants import CTL_LF, ESC, GS, HW_INIT, PAPER_FULL_CUT

ALIGN_LEFT = 0
ALIGN_CENTER = 1
ALIGN_RIGHT = 2

_ALIGNMENTS = (ALIGN_LEFT, ALIGN_CENTER, ALIGN_RIGHT)


def init() -> bytes:
    """ESC @ - clear the buffer and reset all modes."""
    return HW_INIT


def set_alignment(align: int) -> bytes:
    if align not in _ALIGNMENTS:
        raise ValueError(f"Unknown alignment: {align!r}")
    return ESC + b"a" + bytes((align,))


def set_text_size(width: int, height: int) -> bytes:
    """GS ! n - width multiplier in the high nibble, height in the low one."""
    if not 1 <= width <= 8 or not 1 <= height <= 8:
        raise ValueError(f"Text size must be within 1..8, got {width}x{height}")
    return GS + b"!" + bytes((((width - 1) << 4) | (height - 1),))


def set_bold(bold: bool) -> bytes:
    return ESC + b"E" + bytes((1 if bold else 0,))


def feed_lines(lines: int) -> bytes:
    if not 0 <= lines <= 255:
        raise ValueError(f"Feed count must be within 0..255, got {lines}")
    return ESC + b"d" + bytes((lines,))


def cut_paper() -> bytes:
    return PAPER_FULL_CUT


class CommandBuffer:
    """Ordered, append-only sequence of command and text segments."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding
        self._segments: List[bytes] = []

    def append(self, segment: bytes) -> "CommandBuffer":
        self._segments.append(bytes(segment))
        return self

    def text(self, text: str) -> "CommandBuffer":
        return self.append(text.encode(self.encoding, errors="replace"))

    def line(self, text: str = "") -> "CommandBuffer":
        if text:
            self.text(text)
        return self.append(CTL_LF)

    def separator(self, char: str = "-", width: int = 32) -> "CommandBuffer":
        return self.line(char * width)

    @property
    def segments(self) -> Tuple[bytes, ...]:
        return tuple(self._segments)

    def to_bytes(self) -> bytes:
        return b"".join(self._segments)

    def __len__(self) -> int:
        return sum(len(seg) for seg in self._segments)
