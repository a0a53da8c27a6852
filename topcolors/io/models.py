"""Data models shared across the topcolors pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Dict, Tuple, Union
from urllib.parse import SplitResult

PixelColor = Tuple[int, int, int]
TopColors = Tuple[str, str, str]

JPEG_EXTENSIONS = frozenset({".jpg", ".jpeg"})


@dataclass(frozen=True, slots=True)
class CandidateURL:
    """A parsed absolute URL read from the input list."""

    line: int
    url: str
    parts: SplitResult

    @property
    def looks_like_jpeg(self) -> bool:
        """Return True when the path component ends in ``.jpg`` or ``.jpeg``."""
        suffix = PurePosixPath(self.parts.path).suffix
        return suffix.lower() in JPEG_EXTENSIONS

    def __str__(self) -> str:
        return self.url


@dataclass(slots=True)
class ColorHistogram:
    """Exact pixel color counts for one decoded image."""

    mode: str
    width: int
    height: int
    counts: Dict[PixelColor, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def __len__(self) -> int:
        return len(self.counts)


@dataclass(frozen=True, slots=True)
class RankedColor:
    """A histogram entry paired with the color space it was decoded in."""

    color: PixelColor
    count: int
    mode: str = "RGB"


@dataclass(frozen=True, slots=True)
class Resolved:
    """Outcome for a URL whose top colors were computed."""

    candidate: CandidateURL
    colors: TopColors


@dataclass(frozen=True, slots=True)
class Failed:
    """Outcome for a URL that failed permanently."""

    candidate: CandidateURL
    reason: str


Outcome = Union[Resolved, Failed]


@dataclass(slots=True)
class RunSummary:
    """Counters describing how every admitted URL terminated."""

    admitted: int = 0
    resolved: int = 0
    failed: int = 0
    duplicates: int = 0
    written_resolved: int = 0
    written_failed: int = 0

    @property
    def finished(self) -> int:
        return self.resolved + self.failed + self.duplicates
