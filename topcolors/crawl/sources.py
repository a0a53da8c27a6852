"""Read candidate image URLs from newline separated text."""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator
from urllib.parse import urlsplit

from ..io.models import CandidateURL

logger = logging.getLogger(__name__)

_FORBIDDEN_CHARS = re.compile(r"[\s\x00-\x1f\x7f]")


class URLParseError(ValueError):
    """Raised when a line cannot be parsed as an absolute URL."""


def parse_candidate(text: str, line: int = 0) -> CandidateURL:
    """Parse *text* into a :class:`CandidateURL` or raise :class:`URLParseError`."""
    if _FORBIDDEN_CHARS.search(text):
        raise URLParseError("whitespace or control character in URL")
    try:
        parts = urlsplit(text)
        # port access validates the netloc
        parts.port
    except ValueError as exc:
        raise URLParseError(str(exc)) from exc
    if not parts.scheme:
        raise URLParseError("missing scheme")
    if not parts.netloc or not parts.hostname:
        raise URLParseError("missing host")
    return CandidateURL(line=line, url=parts.geturl(), parts=parts)


def read_candidates(lines: Iterable[str]) -> Iterator[CandidateURL]:
    """Yield a :class:`CandidateURL` for every parseable line in *lines*.

    Blank lines are skipped. Lines that fail to parse are logged with their line
    number and dropped.
    """
    for line_num, raw in enumerate(lines, start=1):
        text = raw.strip().lstrip("\ufeff")
        if not text:
            continue
        try:
            yield parse_candidate(text, line_num)
        except URLParseError as exc:
            logger.warning("parse error line %d: %s (%r)", line_num, exc, text)


@contextmanager
def open_candidates(path: Path) -> Iterator[Iterator[CandidateURL]]:
    """Open *path* and yield a lazy candidate iterator over its lines."""
    if not path.exists():
        raise FileNotFoundError(f"Input file does not exist: {path}")
    with path.open("r", encoding="utf-8-sig", errors="replace") as handle:
        yield read_candidates(handle)
