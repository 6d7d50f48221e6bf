"""
Raster conversion for thermal print heads.

Turns an arbitrary uploaded photo into the packed 1-bit bitmap carried by a
raster image command:

- EXIF orientation is applied first so phone photos print upright
- Portrait images are scaled to exactly the dot width; landscape images are
  scaled down to fit it and never enlarged
- Grayscale uses 0.299R + 0.587G + 0.114B; mostly transparent pixels are white
- Floyd-Steinberg error diffusion with a tunable threshold and an optional
  power-curve contrast boost
- Bits are packed row-major, MSB first, 1 = black dot
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from PIL import Image, ImageOps, UnidentifiedImageError

from cafe_printer.printing.errors import PrinterError

logger = logging.getLogger(__name__)

DEFAULT_DOT_WIDTH = 576
DEFAULT_THRESHOLD = 128
ALPHA_OPAQUE_CUTOFF = 128
# GS v 0 carries the row count in two bytes
MAX_RASTER_HEIGHT = 0xFFFF

# Floyd-Steinberg neighbours as (dx, dy, weight)
_DIFFUSION: Tuple[Tuple[int, int, float], ...] = (
    (1, 0, 7 / 16),
    (-1, 1, 3 / 16),
    (0, 1, 5 / 16),
    (1, 1, 1 / 16),
)


class RasterError(PrinterError):
    """Base class for raster conversion failures."""


class ImageDecodeError(RasterError):
    """The input bytes are empty or not a decodable image."""


class ImageProcessError(RasterError):
    """The image decoded but could not be oriented, scaled, or converted."""


@dataclass(frozen=True)
class RasterBitmap:
    width_dots: int
    height_dots: int
    packed_bits: bytes

    @property
    def bytes_per_row(self) -> int:
        return bytes_per_row(self.width_dots)

    def __post_init__(self) -> None:
        expected = self.bytes_per_row * self.height_dots
        if len(self.packed_bits) != expected:
            raise ValueError(f"packed_bits is {len(self.packed_bits)} bytes, expected {expected}")


def bytes_per_row(width_dots: int) -> int:
    return (width_dots + 7) // 8


def decode_image(image_bytes: bytes) -> Image.Image:
    """
    Decode image bytes with Pillow and apply EXIF orientation.

    Raises:
        ImageDecodeError for empty or undecodable input.
        ImageProcessError when orientation metadata cannot be applied.
    """
    if not image_bytes:
        raise ImageDecodeError("empty image")
    try:
        img = Image.open(io.BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
        raise ImageDecodeError(f"cannot decode image: {e}") from e
    try:
        oriented = ImageOps.exif_transpose(img)
    except Exception as e:
        raise ImageProcessError(f"cannot apply orientation: {e}") from e
    return oriented if oriented is not None else img


def target_size(width: int, height: int, dot_width: int) -> Tuple[int, int]:
    """
    Choose the output size for an upright image.

    Portrait (taller than wide) always fills dot_width exactly.
    Landscape or square only shrinks when wider than dot_width.
    Aspect ratio is preserved; height never rounds below one dot.
    Heights that cannot fit one raster block raise ImageProcessError.
    """
    if width <= 0 or height <= 0:
        raise ImageProcessError(f"image has no pixels ({width}x{height})")
    if dot_width <= 0:
        raise ImageProcessError(f"invalid dot width {dot_width}")
    portrait = height > width
    if portrait or width > dot_width:
        new_width = dot_width
    else:
        new_width = width
    new_height = max(1, round(height * new_width / width))
    if new_height > MAX_RASTER_HEIGHT:
        raise ImageProcessError(f"image too tall to print: {new_height} dots (max {MAX_RASTER_HEIGHT})")
    return new_width, new_height


def _scale(img: Image.Image, dot_width: int) -> Image.Image:
    width, height = img.size
    new_size = target_size(width, height, dot_width)
    rgba = img.convert("RGBA")
    if new_size == (width, height):
        return rgba
    # BOX is area averaging when shrinking; enlarging portrait images needs an interpolating filter
    resample = Image.Resampling.BOX if new_size[0] < width else Image.Resampling.LANCZOS
    logger.info(
        "Scaling %s image %dx%d -> %dx%d",
        "portrait" if height > width else "landscape",
        width,
        height,
        new_size[0],
        new_size[1],
    )
    return rgba.resize(new_size, resample=resample)


def grayscale_levels(img: Image.Image) -> List[float]:
    """
    Per-pixel luminance (0..255) in row-major order; pixels under 50% opacity are white.
    """
    raw = img.convert("RGBA").tobytes()
    levels: List[float] = []
    append = levels.append
    for i in range(0, len(raw), 4):
        if raw[i + 3] < ALPHA_OPAQUE_CUTOFF:
            append(255.0)
        else:
            append(0.299 * raw[i] + 0.587 * raw[i + 1] + 0.114 * raw[i + 2])
    return levels


def apply_contrast(levels: List[float], gamma: Optional[float], threshold: float = DEFAULT_THRESHOLD) -> List[float]:
    """
    Darken grays below the threshold with a power curve (gamma > 1 darkens).
    Values at or above the threshold are left alone.
    """
    if not gamma or gamma == 1:
        return levels
    return [255.0 * (v / 255.0) ** gamma if v < threshold else v for v in levels]


def floyd_steinberg(levels: List[float], width: int, height: int, threshold: float = DEFAULT_THRESHOLD) -> bytearray:
    """
    Quantize levels to 0 (black) or 255 (white) with Floyd-Steinberg error diffusion.

    Processes strictly left-to-right, top-to-bottom, accumulating error in a float
    working copy. Returns one byte per pixel.
    """
    if len(levels) != width * height:
        raise ValueError(f"expected {width * height} levels, got {len(levels)}")
    work = [float(v) for v in levels]
    out = bytearray(width * height)
    for y in range(height):
        row = y * width
        last_row = y + 1 >= height
        for x in range(width):
            idx = row + x
            old = work[idx]
            new = 0 if old < threshold else 255
            out[idx] = new
            error = old - new
            if not error:
                continue
            for dx, dy, weight in _DIFFUSION:
                nx = x + dx
                if nx < 0 or nx >= width or (dy and last_row):
                    continue
                work[idx + dy * width + dx] += error * weight
    return out


def pack_bits(quantized: Union[bytes, bytearray], width: int, height: int) -> bytes:
    """
    Pack quantized pixels (0 = black) into MSB-first rows; padding bits stay white.
    """
    per_row = bytes_per_row(width)
    packed = bytearray(per_row * height)
    for y in range(height):
        src = y * width
        dst = y * per_row
        for x in range(width):
            if quantized[src + x] == 0:
                packed[dst + (x >> 3)] |= 0x80 >> (x & 7)
    return bytes(packed)


def rasterize_image(
    img: Image.Image,
    target_width_dots: int = DEFAULT_DOT_WIDTH,
    *,
    threshold: float = DEFAULT_THRESHOLD,
    contrast_gamma: Optional[float] = None,
) -> RasterBitmap:
    """
    Convert an already-decoded, upright Pillow image into a RasterBitmap.
    """
    width, height = img.size
    if width <= 0 or height <= 0:
        raise ImageProcessError(f"image has no pixels ({width}x{height})")
    try:
        scaled = _scale(img, target_width_dots)
        levels = grayscale_levels(scaled)
    except RasterError:
        raise
    except Exception as e:
        raise ImageProcessError(f"cannot convert image: {e}") from e
    out_w, out_h = scaled.size
    levels = apply_contrast(levels, contrast_gamma, threshold)
    quantized = floyd_steinberg(levels, out_w, out_h, threshold)
    packed = pack_bits(quantized, out_w, out_h)
    black = quantized.count(0)
    logger.info(
        "Rasterized %dx%d -> %d bytes/row x %d rows (%d black dots)",
        out_w,
        out_h,
        bytes_per_row(out_w),
        out_h,
        black,
    )
    if not black:
        logger.warning("Raster is entirely white; the image will print blank")
    return RasterBitmap(width_dots=out_w, height_dots=out_h, packed_bits=packed)


def rasterize(
    image_bytes: bytes,
    target_width_dots: int = DEFAULT_DOT_WIDTH,
    *,
    threshold: float = DEFAULT_THRESHOLD,
    contrast_gamma: Optional[float] = None,
) -> RasterBitmap:
    """
    Decode, orient, scale, dither, and pack an image for a print head target_width_dots wide.

    Raises:
        ImageDecodeError for zero-byte or undecodable input.
        ImageProcessError for images with no pixels or conversion failures.
    """
    logger.info("Processing image buffer: %d bytes", len(image_bytes or b""))
    img = decode_image(image_bytes)
    return rasterize_image(
        img,
        target_width_dots,
        threshold=threshold,
        contrast_gamma=contrast_gamma,
    )


__all__ = [
    "ALPHA_OPAQUE_CUTOFF",
    "DEFAULT_DOT_WIDTH",
    "DEFAULT_THRESHOLD",
    "MAX_RASTER_HEIGHT",
    "ImageDecodeError",
    "ImageProcessError",
    "RasterBitmap",
    "RasterError",
    "apply_contrast",
    "bytes_per_row",
    "decode_image",
    "floyd_steinberg",
    "grayscale_levels",
    "pack_bits",
    "rasterize",
    "rasterize_image",
    "target_size",
]
