"""
=============================================================================
REQUEST BODY INPUT
=============================================================================

Every environment carries the request body under ``env["link.input"]`` as an
``Input``. Whatever the transport hands us (a socket body reader, a BytesIO
in tests, an open file), apps see the same interface:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  input.read(size=-1)      Up to ``size`` bytes, b"" at end           │
    │  input.readline()         One line including the newline            │
    │  for chunk in input:      Chunks of ``chunk_size`` bytes            │
    │  input.read_all()         The whole remaining body                  │
    │  input.pause() / resume() Flow-control flag for streaming consumers │
    └─────────────────────────────────────────────────────────────────────┘

Flow control is pull based: nothing is read from the transport until the
app asks for it. Errors from the underlying stream come back as
``InputError`` with the original exception as its cause.

=============================================================================
"""

from typing import Any, Iterator

from .errors import ConfigurationError, InputError
from .utils import is_readable_stream

DEFAULT_CHUNK_SIZE = 8192


class Input:
    """
    Uniform read interface over a readable stream.

    Args:
        stream: Any object with a callable ``read(size)``.
        chunk_size: Chunk size used when iterating.

    Raises:
        ConfigurationError: If ``stream`` cannot be read from.
    """

    def __init__(self, stream: Any, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if isinstance(stream, Input):
            stream = stream.stream

        if not is_readable_stream(stream):
            raise ConfigurationError("Input must be a readable stream")

        self.stream = stream
        self.chunk_size = chunk_size
        self.bytes_read = 0
        self.paused = False
        self._ended = False

    @property
    def ended(self) -> bool:
        """True once the underlying stream has reported end of data."""
        return self._ended

    def pause(self) -> None:
        self.paused = True
        if callable(getattr(self.stream, "pause", None)):
            self.stream.pause()

    def resume(self) -> None:
        self.paused = False
        if callable(getattr(self.stream, "resume", None)):
            self.stream.resume()

    def read(self, size: int = -1) -> bytes:
        """
        Read up to ``size`` bytes (everything when ``size`` is negative).

        Returns b"" once the body is exhausted.
        """
        if self._ended or size == 0:
            return b""

        try:
            data = self.stream.read(size)
        except OSError as e:
            raise InputError(f"Failed to read request body: {e}", cause=e) from e

        data = _as_bytes(data)
        if not data or size < 0:
            self._ended = True
        self.bytes_read += len(data)
        return data

    def readline(self, size: int = -1) -> bytes:
        if self._ended:
            return b""

        readline = getattr(self.stream, "readline", None)
        if not callable(readline):
            return self._readline_by_bytes(size)

        try:
            line = _as_bytes(readline(size))
        except OSError as e:
            raise InputError(f"Failed to read request body: {e}", cause=e) from e

        if not line:
            self._ended = True
        self.bytes_read += len(line)
        return line

    def _readline_by_bytes(self, size: int) -> bytes:
        # Streams without readline(); slow but correct.
        line = bytearray()
        while size < 0 or len(line) < size:
            byte = self.read(1)
            if not byte:
                break
            line += byte
            if byte == b"\n":
                break
        return bytes(line)

    def read_all(self) -> bytes:
        """Read and return the rest of the body."""
        return b"".join(self)

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self.read(self.chunk_size)
            if not chunk:
                return
            yield chunk

    def close(self) -> None:
        if callable(getattr(self.stream, "close", None)):
            self.stream.close()

    def __repr__(self) -> str:
        return f"<Input {self.stream!r} read={self.bytes_read}>"


def _as_bytes(data: Any) -> bytes:
    if data is None:
        return b""
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)
