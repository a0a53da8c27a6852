"""Exact color histograms and top color extraction."""

from __future__ import annotations

from dataclasses import dataclass
from typing import BinaryIO, Sequence

import numpy as np
from PIL import Image, UnidentifiedImageError
from PIL.Image import DecompressionBombError

from ..io.models import ColorHistogram, PixelColor, RankedColor, TopColors

TOP_N = 3
COMPATIBLE_MODES = frozenset({"RGB", "YCbCr"})


class DecodeError(Exception):
    """Raised when an image payload cannot be turned into a pixel grid."""


class IncompatibleColorModel(DecodeError):
    """Raised when a decoded image is not in a three-component color space."""

    def __init__(self, mode: str) -> None:
        super().__init__("incompatible color model")
        self.mode = mode


class InsufficientColors(ValueError):
    """Raised when a ranked sequence has no entries to pick from."""


@dataclass(slots=True)
class PixelGrid:
    """Decoded pixels in their native three-component color space."""

    mode: str
    pixels: np.ndarray

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


def decode_image(stream: BinaryIO) -> PixelGrid:
    """Decode *stream* and return its pixels, checking the color model first."""
    try:
        with Image.open(stream) as img:
            if img.format == "JPEG" and img.mode == "RGB":
                # keep libjpeg from converting; count the stored YCbCr triples
                img.draft("YCbCr", img.size)
            img.load()
            if img.mode not in COMPATIBLE_MODES:
                raise IncompatibleColorModel(img.mode)
            pixels = np.asarray(img, dtype=np.uint8)
            mode = img.mode
    except (UnidentifiedImageError, DecompressionBombError, OSError, ValueError) as exc:
        raise DecodeError(f"cannot decode image: {exc}") from exc
    if pixels.ndim != 3 or pixels.shape[2] != 3:
        raise IncompatibleColorModel(mode)
    return PixelGrid(mode=mode, pixels=pixels)


def count_colors(grid: PixelGrid) -> ColorHistogram:
    """Count every pixel of *grid* by exact color value."""
    flat = grid.pixels.reshape(-1, 3).astype(np.uint32)
    packed = (flat[:, 0] << 16) | (flat[:, 1] << 8) | flat[:, 2]
    values, counts = np.unique(packed, return_counts=True)
    histogram = ColorHistogram(mode=grid.mode, width=grid.width, height=grid.height)
    for value, count in zip(values.tolist(), counts.tolist()):
        color: PixelColor = ((value >> 16) & 0xFF, (value >> 8) & 0xFF, value & 0xFF)
        histogram.counts[color] = int(count)
    return histogram


def histogram(stream: BinaryIO) -> ColorHistogram:
    """Decode *stream* and return its exact color histogram."""
    return count_colors(decode_image(stream))


def rank(hist: ColorHistogram) -> list[RankedColor]:
    """Return all distinct colors of *hist* ordered ascending by count.

    Equal counts keep no defined relative order.
    """
    entries = [
        RankedColor(color=color, count=count, mode=hist.mode)
        for color, count in hist.counts.items()
    ]
    entries.sort(key=lambda entry: entry.count)
    return entries


def top_colors(ranked: Sequence[RankedColor], n: int = TOP_N) -> TopColors:
    """Return the hex strings of the *n* highest-count entries, highest first.

    Sequences shorter than *n* repeat their lowest-ranked entry to fill the
    remaining slots. An empty sequence raises :class:`InsufficientColors`.
    """
    if not ranked:
        raise InsufficientColors("a populated ranking should have at least one color")
    picked = list(reversed(ranked[-n:]))
    while len(picked) < n:
        picked.append(picked[-1])
    return tuple(color_hex(entry.color, entry.mode) for entry in picked)  # type: ignore[return-value]


def color_hex(color: PixelColor, mode: str = "RGB") -> str:
    """Render *color* as six lowercase hex digits of its RGB equivalent."""
    if mode == "YCbCr":
        r, g, b = ycbcr_to_rgb(*color)
    elif mode == "RGB":
        r, g, b = color
    else:
        raise IncompatibleColorModel(mode)
    return f"{r:02x}{g:02x}{b:02x}"


def ycbcr_to_rgb(y: int, cb: int, cr: int) -> tuple[int, int, int]:
    """Convert a full-range JFIF Y'CbCr triple to 8-bit RGB."""
    yy = y * 0x10101
    cb -= 128
    cr -= 128
    r = yy + 91881 * cr
    g = yy - 22554 * cb - 46802 * cr
    b = yy + 116130 * cb
    return _clamp(r >> 16), _clamp(g >> 16), _clamp(b >> 16)


def _clamp(value: int) -> int:
    return max(0, min(255, value))
