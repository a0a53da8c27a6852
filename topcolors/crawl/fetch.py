"""HTTP fetching for candidate images."""

from __future__ import annotations

import io
import logging
import socket
import time
from threading import Event, Lock, Timer
from typing import BinaryIO

import requests
from requests import Session
from urllib3.exceptions import HTTPError
from urllib3.util import Timeout

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
_CHUNK_SIZE = 64 * 1024
_USER_AGENT = "topcolors/0.1 (+https://github.com/topcolors/topcolors)"

_session_lock = Lock()
_session: Session | None = None


class FetchError(Exception):
    """Raised when an image could not be retrieved."""

    def __init__(self, url: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{url}: {message}")
        self.url = url
        self.status_code = status_code


def _get_session() -> Session:
    """Return a shared requests session configured with default headers."""
    global _session
    if _session is None:
        with _session_lock:
            if _session is None:
                session = requests.Session()
                session.headers.update(
                    {
                        "User-Agent": _USER_AGENT,
                        "Accept": "image/jpeg,image/*;q=0.9,*/*;q=0.5",
                    }
                )
                _session = session
    return _session


def close_session() -> None:
    """Close and forget the shared session."""
    global _session
    with _session_lock:
        if _session is not None:
            _session.close()
            _session = None


def _remaining(deadline: float, url: str) -> float:
    left = deadline - time.monotonic()
    if left <= 0:
        raise FetchError(url, "deadline exceeded")
    return left


def _sever(response: requests.Response, expired: Event) -> None:
    """Shut down the socket under *response* so a blocked read returns at once."""
    expired.set()
    connection = getattr(getattr(response, "raw", None), "connection", None)
    sock = getattr(connection, "sock", None)
    if sock is None:
        return
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        logger.debug("socket already closed for %s", response.url, exc_info=True)


def fetch_image(
    url: str,
    timeout: float = DEFAULT_TIMEOUT,
    max_bytes: int | None = None,
) -> BinaryIO:
    """Issue a single GET for *url* and return the body as a closable stream.

    *timeout* bounds the whole call, body transfer included. Connecting and
    waiting for headers share one urllib3 ``total`` budget; once headers are in,
    a timer severs the connection when the deadline passes, so a server that
    trickles bytes cannot hold the caller. Any status other than 200, any
    transport error and deadline expiry raise :class:`FetchError`. The request
    is never retried.
    """
    deadline = time.monotonic() + timeout
    session = _get_session()
    try:
        response = session.get(
            url,
            timeout=Timeout(connect=timeout, read=timeout, total=timeout),
            stream=True,
            allow_redirects=True,
        )
    except requests.Timeout as exc:
        raise FetchError(url, f"deadline exceeded: {exc}") from exc
    except requests.RequestException as exc:
        raise FetchError(url, f"request failed: {exc}") from exc

    expired = Event()
    timer: Timer | None = None
    try:
        if response.status_code != 200:
            raise FetchError(
                url,
                f"bad http status {response.status_code} {response.reason or ''}".rstrip(),
                status_code=response.status_code,
            )
        timer = Timer(_remaining(deadline, url), _sever, args=(response, expired))
        timer.daemon = True
        timer.start()
        buffer = io.BytesIO()
        for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
            _remaining(deadline, url)
            if not chunk:
                continue
            buffer.write(chunk)
            if max_bytes is not None and buffer.tell() > max_bytes:
                raise FetchError(url, f"body exceeds {max_bytes} bytes")
        if expired.is_set():
            raise FetchError(url, "deadline exceeded")
        _remaining(deadline, url)
    except (requests.RequestException, HTTPError, OSError) as exc:
        if expired.is_set():
            raise FetchError(url, "deadline exceeded") from exc
        raise FetchError(url, f"transfer failed: {exc}") from exc
    finally:
        if timer is not None:
            timer.cancel()
        response.close()

    logger.debug("fetched %s (%d bytes)", url, buffer.tell())
    buffer.seek(0)
    return buffer
