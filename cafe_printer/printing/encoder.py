"""
ESC/POS command encoder.

CommandEncoder is a builder: each call appends one self-contained fragment and
build() concatenates them verbatim, so encoding order is print order. Each
instance tracks its own style cursor (alignment, bold, size); there is no
shared styling state.

The raster helpers at the bottom let transports locate GS v 0 blocks inside a
finished buffer.
"""

from __future__ import annotations

import logging
import struct
from typing import List, Optional, Tuple

from escpos.constants import ESC, GS, HW_INIT

from cafe_printer.printing.raster import RasterBitmap, bytes_per_row

logger = logging.getLogger(__name__)

ALIGNMENTS = {"left": 0, "center": 1, "right": 2}

RASTER_OPCODE = GS + b"v0"
RASTER_MODE_NORMAL = 0
RASTER_HEADER_LEN = 8
FULL_CUT = GS + b"VA\x00"

# Printers choke on typographic punctuation outside their code page
_TEXT_REPLACEMENTS = {
    "“": '"',
    "”": '"',
    "‘": "'",
    "’": "'",
    "–": "-",
    "—": "-",
    "…": "...",
}


def normalize_text(text: str) -> str:
    for src, dst in _TEXT_REPLACEMENTS.items():
        text = text.replace(src, dst)
    return text


def raster_header(width_bytes: int, height_dots: int, mode: int = RASTER_MODE_NORMAL) -> bytes:
    """GS v 0 m xL xH yL yH."""
    if not 0 <= width_bytes <= 0xFFFF or not 0 <= height_dots <= 0xFFFF:
        raise ValueError(f"raster dimensions out of range: {width_bytes} bytes x {height_dots} dots")
    return RASTER_OPCODE + struct.pack("<BHH", mode, width_bytes, height_dots)


class CommandEncoder:
    def __init__(self, encoding: str = "cp437"):
        self.encoding = encoding
        self._fragments: List[bytes] = []
        self.alignment = "left"
        self.bold = False
        self.size: Tuple[int, int] = (1, 1)

    def _push(self, fragment: bytes) -> "CommandEncoder":
        self._fragments.append(bytes(fragment))
        return self

    def reset(self) -> "CommandEncoder":
        """ESC @: clear the printer buffer and restore power-on modes."""
        self.alignment = "left"
        self.bold = False
        self.size = (1, 1)
        return self._push(HW_INIT)

    def set_alignment(self, align: str) -> "CommandEncoder":
        try:
            code = ALIGNMENTS[align]
        except KeyError:
            raise ValueError(f"unknown alignment {align!r}; expected one of {sorted(ALIGNMENTS)}") from None
        self.alignment = align
        return self._push(ESC + b"a" + bytes([code]))

    def set_bold(self, on: bool = True) -> "CommandEncoder":
        self.bold = bool(on)
        return self._push(ESC + b"E" + (b"\x01" if on else b"\x00"))

    def set_text_size(self, width: int = 1, height: int = 1) -> "CommandEncoder":
        """GS !: character magnification, each multiplier clamped to 1..8."""
        w = max(1, min(8, int(width)))
        h = max(1, min(8, int(height)))
        self.size = (w, h)
        return self._push(GS + b"!" + bytes([((w - 1) << 4) | (h - 1)]))

    def set_absolute_position(self, dots: int) -> "CommandEncoder":
        """ESC $ nL nH: move the print position to `dots` from the left margin."""
        dots = max(0, min(0xFFFF, int(dots)))
        return self._push(ESC + b"$" + struct.pack("<H", dots))

    def append_text(self, text: str) -> "CommandEncoder":
        if not text:
            return self
        return self._push(normalize_text(text).encode(self.encoding, errors="replace"))

    def append_raster_image(self, packed_bits: bytes, width_dots: int, height_dots: int) -> "CommandEncoder":
        width_bytes = bytes_per_row(width_dots)
        expected = width_bytes * height_dots
        if len(packed_bits) != expected:
            raise ValueError(f"packed_bits is {len(packed_bits)} bytes, expected {expected}")
        logger.debug("Raster block: %d bytes/row x %d rows", width_bytes, height_dots)
        return self._push(raster_header(width_bytes, height_dots) + bytes(packed_bits))

    def append_bitmap(self, bitmap: RasterBitmap) -> "CommandEncoder":
        return self.append_raster_image(bitmap.packed_bits, bitmap.width_dots, bitmap.height_dots)

    def feed(self, lines: int = 1) -> "CommandEncoder":
        if lines <= 0:
            return self
        return self._push(b"\n" * lines)

    def cut(self) -> "CommandEncoder":
        """GS V A 0: feed to the cutter and perform a full cut."""
        return self._push(FULL_CUT)

    def build(self) -> bytes:
        return b"".join(self._fragments)

    @property
    def fragments(self) -> Tuple[bytes, ...]:
        return tuple(self._fragments)

    def __len__(self) -> int:
        return sum(len(f) for f in self._fragments)


def parse_raster_header(data: bytes, offset: int) -> Optional[Tuple[int, int]]:
    """
    Return (width_bytes, height_dots) for a GS v 0 header at offset, or None when
    the bytes there are not a complete header.
    """
    header = data[offset : offset + RASTER_HEADER_LEN]
    if len(header) < RASTER_HEADER_LEN or header[:3] != RASTER_OPCODE:
        return None
    _mode, width_bytes, height_dots = struct.unpack("<BHH", header[3:])
    return width_bytes, height_dots


def find_raster_blocks(data: bytes) -> List[Tuple[int, int]]:
    """
    Locate every raster block in a command buffer as (start, end) offsets.

    The block length comes from its own header; a block whose declared payload
    runs past the buffer is clamped to the buffer's end. Scanning resumes after
    each block so bitmap payload bytes are never mistaken for an opcode.
    """
    blocks: List[Tuple[int, int]] = []
    pos = 0
    while True:
        start = data.find(RASTER_OPCODE, pos)
        if start < 0:
            return blocks
        dims = parse_raster_header(data, start)
        if dims is None:
            pos = start + 1
            continue
        width_bytes, height_dots = dims
        end = min(len(data), start + RASTER_HEADER_LEN + width_bytes * height_dots)
        blocks.append((start, end))
        pos = end


__all__ = [
    "ALIGNMENTS",
    "CommandEncoder",
    "FULL_CUT",
    "RASTER_HEADER_LEN",
    "RASTER_OPCODE",
    "find_raster_blocks",
    "normalize_text",
    "parse_raster_header",
    "raster_header",
]
