"""
=============================================================================
RESPONSE EMISSION
=============================================================================

Apps answer by calling the ``respond`` callback they were given:

    respond(200, {"Content-Type": "text/plain"}, "Hello")

That callback is a ``Responder``. It writes the status line and headers
right away, then the body:

    ┌──────────────────────────┬──────────────────────────────────────────┐
    │ body                     │ written as                               │
    ├──────────────────────────┼──────────────────────────────────────────┤
    │ str / bytes / None       │ one terminal chunk                       │
    │ object with read()       │ read(chunk_size) until b"", chunk by     │
    │                          │ chunk; resume() first if it has one      │
    │ other iterable           │ each item as it is produced              │
    └──────────────────────────┴──────────────────────────────────────────┘

Streamed bodies are pulled one chunk at a time and each chunk is fully
sent before the next is read, so a slow client slows the producer down
instead of filling memory. ``close()`` is called on the body afterwards.

=============================================================================
FRAMING
=============================================================================

    Content-Length given      body written as is
    one-piece body            Content-Length added
    streamed, HTTP/1.1        Transfer-Encoding: chunked
    streamed, HTTP/1.0        Connection: close, end of body = end of socket

HEAD requests and 1xx/204/304 responses send no body bytes.

=============================================================================
ONE SHOT
=============================================================================

A responder fires at most once. A second call raises
``ResponseAlreadySentError`` instead of corrupting the connection.
``wait()`` lets the server block until the app has answered, whichever
thread the app answers from.

=============================================================================
"""

import logging
import re
import threading
from datetime import datetime, timezone
from email.utils import format_datetime
from http import HTTPStatus
from typing import Any, Iterable, Iterator, Mapping, Optional

from ..errors import ResponseAlreadySentError
from ..utils import get_header, is_readable_stream, is_streaming_body, to_bytes


logger = logging.getLogger(__name__)

SERVER_SOFTWARE = "Link/0.3.3"

BODYLESS_STATUSES = (204, 304)

# A line break inside a name or value would start a new header (or the body).
UNSAFE_HEADER_CHARS = re.compile(r"[\r\n\0]")


def status_line(status: int, version: str = "HTTP/1.1") -> str:
    try:
        reason = HTTPStatus(status).phrase
    except ValueError:
        reason = "Unknown"
    return f"{version} {status} {reason}"


def format_http_date(dt: Optional[datetime] = None) -> str:
    """RFC 7231 date, e.g. "Wed, 01 Jan 2026 12:00:00 GMT"."""
    return format_datetime(dt or datetime.now(timezone.utc), usegmt=True)


def check_headers(headers: Mapping[str, Any]) -> None:
    """
    Raises:
        ValueError: If a header name or value contains CR, LF or NUL.
    """
    for name, value in headers.items():
        if UNSAFE_HEADER_CHARS.search(str(name)) or UNSAFE_HEADER_CHARS.search(str(value)):
            raise ValueError(f"Invalid character in response header {name!r}: {value!r}")


class Responder:
    """
    One-shot response callback bound to a single request on a connection.

    Args:
        connection: Anything with ``send(bytes) -> bool``.
        method: Request method (HEAD responses carry no body).
        version: Request HTTP version ("HTTP/1.0" or "HTTP/1.1").
        keep_alive: Whether the connection may be reused after this response.
        chunk_size: Read size for streamed file-like bodies.
    """

    def __init__(
        self,
        connection: Any,
        method: str = "GET",
        version: str = "HTTP/1.1",
        keep_alive: bool = True,
        chunk_size: int = 8192,
        server_software: str = SERVER_SOFTWARE,
    ):
        self.connection = connection
        self.method = method.upper()
        self.version = version
        self.keep_alive = keep_alive
        self.chunk_size = chunk_size
        self.server_software = server_software

        self.status: Optional[int] = None
        self.bytes_sent = 0

        self._called = False
        self._lock = threading.Lock()
        self._done = threading.Event()

    @property
    def started(self) -> bool:
        """True once the response callback has been invoked."""
        return self._called

    @property
    def finished(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the response has been written. False on timeout."""
        return self._done.wait(timeout)

    def __call__(self, status: int, headers: Optional[Mapping[str, str]] = None, body: Any = b"") -> None:
        headers = dict(headers or {})

        with self._lock:
            if self._called:
                raise ResponseAlreadySentError("Response has already been sent for this request")
            # Rejected before anything is marked sent, so fail() can still answer.
            check_headers(headers)
            self._called = True

        try:
            self._write(int(status), headers, body)
        except BaseException:
            self.keep_alive = False
            raise
        finally:
            self._done.set()

    def fail(self, status: int = 500, message: str = "Server Error") -> bool:
        """
        Answer with a bare plain-text error unless a response was already
        started. Returns True if this call produced the response.
        """
        with self._lock:
            if self._called:
                return False
            self._called = True

        self.keep_alive = False
        try:
            self._write(status, {"Content-Type": "text/plain"}, message)
        finally:
            self._done.set()
        return True

    # =========================================================================
    # WRITING
    # =========================================================================

    def _write(self, status: int, headers: dict, body: Any) -> None:
        self.status = status

        send_body = self.method != "HEAD" and status >= 200 and status not in BODYLESS_STATUSES
        streaming = is_streaming_body(body)
        has_length = get_header(headers, "Content-Length") is not None
        chunked = False
        data = b""

        # ─────────────────────────────────────────────────────────────────
        # FRAMING
        # ─────────────────────────────────────────────────────────────────
        if not streaming:
            data = to_bytes(body)
            if not has_length and status >= 200 and status not in BODYLESS_STATUSES:
                headers["Content-Length"] = str(len(data))
        elif not has_length and send_body:
            if self.version == "HTTP/1.1":
                headers["Transfer-Encoding"] = "chunked"
                chunked = True
            else:
                self.keep_alive = False

        connection = get_header(headers, "Connection")
        if connection is not None and connection.lower() == "close":
            self.keep_alive = False
        elif connection is None:
            headers["Connection"] = "keep-alive" if self.keep_alive else "close"

        if get_header(headers, "Date") is None:
            headers["Date"] = format_http_date()
        if get_header(headers, "Server") is None:
            headers["Server"] = self.server_software

        # ─────────────────────────────────────────────────────────────────
        # STATUS LINE + HEADERS (sent immediately)
        # ─────────────────────────────────────────────────────────────────
        lines = [status_line(status)]
        lines.extend(f"{name}: {value}" for name, value in headers.items())
        head = ("\r\n".join(lines) + "\r\n\r\n").encode("iso-8859-1")

        if not self._send(head):
            self._close_body(body)
            return

        # ─────────────────────────────────────────────────────────────────
        # BODY
        # ─────────────────────────────────────────────────────────────────
        if not streaming:
            if send_body and data:
                self._send(data)
            return

        self._pump(body, chunked, send_body)

    def _pump(self, body: Any, chunked: bool, send_body: bool) -> None:
        if callable(getattr(body, "resume", None)):
            body.resume()

        try:
            if not send_body:
                return

            for chunk in _iter_chunks(body, self.chunk_size):
                data = to_bytes(chunk)
                if not data:
                    continue
                if chunked:
                    data = f"{len(data):X}\r\n".encode("ascii") + data + b"\r\n"
                if not self._send(data):
                    return

            if chunked:
                self._send(b"0\r\n\r\n")
        finally:
            self._close_body(body)

    def _send(self, data: bytes) -> bool:
        if self.connection.send(data):
            self.bytes_sent += len(data)
            return True
        self.keep_alive = False
        return False

    @staticmethod
    def _close_body(body: Any) -> None:
        close = getattr(body, "close", None)
        if callable(close):
            close()


def _iter_chunks(body: Any, chunk_size: int) -> Iterator[Any]:
    if is_readable_stream(body):
        while True:
            chunk = body.read(chunk_size)
            if not chunk:
                return
            yield chunk
    else:
        iterable: Iterable[Any] = body
        yield from iterable
