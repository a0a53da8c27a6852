"""Shared fixtures: generated images, a fake HTTP session and a fresh ledger."""

from __future__ import annotations

import io
import threading
import time
from pathlib import Path
from typing import Callable, Iterator, Mapping

import pytest
import pytest_mock
from PIL import Image

from topcolors.io.ledger import Ledger

RED = (255, 0, 0)
GREEN = (0, 255, 0)
BLUE = (0, 0, 255)
WHITE = (255, 255, 255)


def encode_image(img: Image.Image, fmt: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


def counted_image(counts: Mapping[tuple[int, int, int], int], fmt: str = "PNG") -> bytes:
    """Return a one-row image containing each color exactly ``counts[color]`` times."""
    pixels = [color for color, count in counts.items() for _ in range(count)]
    img = Image.new("RGB", (len(pixels), 1))
    img.putdata(pixels)
    return encode_image(img, fmt)


def four_color_image() -> bytes:
    """2x2 lossless image with four distinct colors."""
    img = Image.new("RGB", (2, 2))
    img.putdata([RED, GREEN, BLUE, WHITE])
    return encode_image(img)


class FakeResponse:
    """Minimal stand-in for a streamed ``requests.Response``."""

    def __init__(
        self,
        status_code: int = 200,
        body: bytes = b"",
        reason: str = "OK",
        delay: float = 0.0,
        step: int = 1024,
    ) -> None:
        self.status_code = status_code
        self.reason = reason
        self._body = body
        self._delay = delay
        self._step = step
        self.closed = False

    def iter_content(self, chunk_size: int = 1) -> Iterator[bytes]:
        for start in range(0, len(self._body), self._step):
            if self._delay:
                time.sleep(self._delay)
            yield self._body[start : start + self._step]

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Routes GET requests to canned responses and records every call."""

    def __init__(self, routes: Mapping[str, object]) -> None:
        self.routes = dict(routes)
        self.calls: list[str] = []
        self.kwargs: list[dict] = []
        self._lock = threading.Lock()

    def get(self, url: str, **kwargs: object) -> FakeResponse:
        with self._lock:
            self.calls.append(url)
            self.kwargs.append(dict(kwargs))
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(404, reason="Not Found")
        if isinstance(route, BaseException):
            raise route
        if isinstance(route, bytes):
            return FakeResponse(200, route)
        return route  # type: ignore[return-value]

    def close(self) -> None:
        pass


@pytest.fixture
def fake_session(
    mocker: pytest_mock.MockerFixture,
) -> Callable[[Mapping[str, object]], FakeSession]:
    def install(routes: Mapping[str, object]) -> FakeSession:
        session = FakeSession(routes)
        mocker.patch("topcolors.crawl.fetch._get_session", return_value=session)
        return session

    return install


@pytest.fixture
def ledger(tmp_path: Path) -> Iterator[Ledger]:
    store = Ledger(tmp_path / "ledger.db")
    store.initialize(require_fresh=True)
    yield store
    store.close()
