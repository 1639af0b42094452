"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

Wraps an accepted client socket with what the server needs for HTTP:
buffered reads of the request head, a streaming reader for the body, and
a careful close.

=============================================================================
TCP IS A BYTE STREAM
=============================================================================

recv() returns whatever has arrived, not whole messages. The head of a
request ends at the first blank line; the body is exactly Content-Length
bytes after it. Anything past that already belongs to the next request on
a keep-alive connection, so it stays in the buffer:

    ┌──────────────────────────────┬────────────────┬──────────────────┐
    │ head ... \r\n\r\n            │ body (N bytes) │ next request ... │
    └──────────────────────────────┴────────────────┴──────────────────┘
      read_head()                    BodyReader        next read_head()

The body is never read eagerly. ``BodyReader`` pulls from the buffer first
and then from the socket, only as far as the app asks; ``drain()`` discards
the rest before the connection is reused.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    NEW ──► READING ──► PROCESSING ──► WRITING ──► KEEP_ALIVE ──┐
     │         │                          │                     │
     │         ▼                          ▼                     │
     └──────► CLOSING ◄───────────────────┴─────────────────────┘
                 │
                 ▼
               CLOSED

=============================================================================
"""

import socket
import ssl
import time
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


logger = logging.getLogger(__name__)

HEAD_TERMINATOR = b"\r\n\r\n"


class ConnectionState(Enum):
    NEW = "new"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    KEEP_ALIVE = "keep_alive"
    CLOSING = "closing"
    CLOSED = "closed"


class HeadTooLargeError(ValueError):
    """The request head grew past ``max_header_size`` without terminating."""


@dataclass
class Connection:
    """
    A client connection.

    Attributes:
        socket: The client socket (plain or SSL).
        address: Client's (ip, port); ("", 0) for Unix sockets.
        id: Short identifier used in log lines.
        state: Current connection state.
        requests_handled: Requests read so far on this connection.
    """

    socket: socket.socket
    address: Tuple[str, int] = ("", 0)
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    requests_handled: int = 0

    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    keep_alive_timeout: float = 5.0
    max_header_size: int = 64 * 1024

    _buffer: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        if not isinstance(self.address, tuple):
            # AF_UNIX peers come back as "" or a path
            self.address = ("", 0)
        self.socket.settimeout(self.timeout)

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def is_secure(self) -> bool:
        return isinstance(self.socket, ssl.SSLSocket)

    def handshake(self):
        """Finish the TLS handshake, if this is a TLS connection."""
        if self.is_secure:
            self.socket.do_handshake()

    # =========================================================================
    # READING
    # =========================================================================

    def read_head(self) -> Optional[bytes]:
        """
        Read up to and including the blank line that ends a request head.

        Returns:
            The head bytes (without the terminating blank line), or None if
            the client closed the connection or an idle keep-alive
            connection timed out.

        Raises:
            TimeoutError: If the first request does not arrive in time.
            HeadTooLargeError: If the head exceeds ``max_header_size``.
        """
        self.state = ConnectionState.READING
        if self.requests_handled > 0:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            while HEAD_TERMINATOR not in self._buffer:
                if len(self._buffer) > self.max_header_size:
                    raise HeadTooLargeError(f"Request head too large: {len(self._buffer)} bytes")
                chunk = self._recv(self.buffer_size)
                if not chunk:
                    return None
                self._buffer += chunk
        except socket.timeout:
            if self.requests_handled > 0 and not self._buffer:
                logger.debug(f"[{self.id}] Keep-alive timeout")
                return None
            raise TimeoutError("Request read timeout")
        finally:
            self.socket.settimeout(self.timeout)

        head_end = self._buffer.find(HEAD_TERMINATOR)
        if head_end > self.max_header_size:
            raise HeadTooLargeError(f"Request head too large: {head_end} bytes")

        head = self._buffer[:head_end]
        self._buffer = self._buffer[head_end + len(HEAD_TERMINATOR):]
        self.requests_handled += 1
        return head

    def read_some(self, size: int) -> bytes:
        """
        Return at most ``size`` body bytes: buffered data first, then one
        recv() from the socket. b"" means the peer closed.
        """
        if self._buffer:
            data, self._buffer = self._buffer[:size], self._buffer[size:]
            return data
        return self._recv(min(size, self.buffer_size), raise_errors=True)

    def body_reader(self, length: int) -> "BodyReader":
        return BodyReader(self, length)

    def _recv(self, size: int, raise_errors: bool = False) -> bytes:
        try:
            data = self.socket.recv(size)
        except (ConnectionResetError, BrokenPipeError):
            if raise_errors:
                raise
            return b""
        self.last_activity = time.time()
        return data

    # =========================================================================
    # WRITING
    # =========================================================================

    def send(self, data: bytes) -> bool:
        """
        Send all of ``data``.

        Returns:
            True on success, False if the client went away.
        """
        self.state = ConnectionState.WRITING
        try:
            self.socket.sendall(data)
        except OSError as e:
            logger.debug(f"[{self.id}] Send failed: {e}")
            return False
        self.last_activity = time.time()
        return True

    def set_keep_alive(self):
        self.state = ConnectionState.KEEP_ALIVE

    def close(self):
        """Half-close, drain briefly, then release the socket."""
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # already disconnected

        try:
            self.socket.settimeout(0.5)
            while self.socket.recv(1024):
                pass
        except OSError:
            pass

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED


class BodyReader:
    """
    File-like reader over exactly ``length`` bytes of request body.

    This is the stream handed to ``make_env`` as the request input.
    """

    def __init__(self, connection: Connection, length: int):
        self._connection = connection
        self.length = length
        self.remaining = length

    def read(self, size: int = -1) -> bytes:
        if self.remaining <= 0 or size == 0:
            return b""

        if size is None or size < 0:
            parts = []
            while self.remaining > 0:
                chunk = self.read(self._connection.buffer_size)
                if not chunk:
                    break
                parts.append(chunk)
            return b"".join(parts)

        data = self._connection.read_some(min(size, self.remaining))
        if not data:
            # Peer closed before sending the whole body.
            self.remaining = 0
            return b""
        self.remaining -= len(data)
        return data

    def readline(self, size: int = -1) -> bytes:
        line = bytearray()
        while self.remaining > 0 and (size is None or size < 0 or len(line) < size):
            byte = self.read(1)
            if not byte:
                break
            line += byte
            if byte == b"\n":
                break
        return bytes(line)

    def drain(self) -> int:
        """Discard whatever the app left unread. Returns the byte count."""
        discarded = 0
        while self.remaining > 0:
            chunk = self.read(self._connection.buffer_size)
            if not chunk:
                break
            discarded += len(chunk)
        return discarded

    @property
    def exhausted(self) -> bool:
        return self.remaining <= 0
