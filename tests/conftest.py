"""
pytest configuration and fixtures.
"""

import io
import socket
from typing import Callable, Generator, List

import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from link import ServerConfig, Server, run


@pytest.fixture
def body_stream() -> Callable[[bytes], io.BytesIO]:
    """Factory for in-memory request bodies."""
    def make(data: bytes = b"") -> io.BytesIO:
        return io.BytesIO(data)
    return make


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class RecordingResponder:
    """A respond callback that records its call and fails on a second one."""

    def __init__(self):
        self.calls = []

    def __call__(self, status, headers=None, body=b""):
        if self.calls:
            pytest.fail(f"respond called twice: first {self.calls[0]!r}, then {(status, headers, body)!r}")
        self.calls.append((status, headers, body))

    @property
    def called(self) -> bool:
        return bool(self.calls)

    @property
    def status(self):
        return self.calls[0][0]

    @property
    def headers(self):
        return self.calls[0][1]

    @property
    def body(self):
        return self.calls[0][2]


@pytest.fixture
def respond() -> RecordingResponder:
    return RecordingResponder()


class FakeConnection:
    """Stands in for core.Connection when testing Responder."""

    def __init__(self, fail_after: int = None):
        self.sent: List[bytes] = []
        self.fail_after = fail_after

    def send(self, data: bytes) -> bool:
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            return False
        self.sent.append(bytes(data))
        return True

    @property
    def data(self) -> bytes:
        return b"".join(self.sent)

    @property
    def head(self) -> bytes:
        return self.data.split(b"\r\n\r\n", 1)[0]

    @property
    def body(self) -> bytes:
        return self.data.split(b"\r\n\r\n", 1)[1]

    def header_lines(self) -> List[str]:
        return self.head.decode("iso-8859-1").split("\r\n")[1:]


@pytest.fixture
def connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def dead_connection() -> FakeConnection:
    """A connection whose client has gone away."""
    return FakeConnection(fail_after=0)


@pytest.fixture
def config() -> ServerConfig:
    """Test server configuration on a port picked by the OS."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,
        min_workers=2,
        max_workers=4,
        timeout=5.0,
        keep_alive_timeout=1.0,
        log_level="WARNING",
    )


@pytest.fixture
def serve(config: ServerConfig) -> Generator[Callable[..., Server], None, None]:
    """
    Start a listening server for an app; every server started is closed
    when the test ends.

        server = serve(app)
        host, port = server.address
    """
    servers: List[Server] = []

    def start(app, **overrides) -> Server:
        for name, value in overrides.items():
            setattr(config, name, value)
        server = run(app, config)
        servers.append(server)
        return server

    yield start

    for server in servers:
        server.close(timeout=5.0)
