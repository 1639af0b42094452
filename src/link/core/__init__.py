"""
=============================================================================
CORE - sockets, connections, workers
=============================================================================

    SocketServer   listening socket + accept loop (TCP, Unix, TLS)
    Connection     one client socket: head reads, body reads, sends, close
    BodyReader     file-like view of one request body
    ThreadPool     workers that run one connection each

Nothing in here knows about environments or apps; see ``link.server``.

=============================================================================
"""

from .socket_server import SocketServer
from .connection import BodyReader, Connection, ConnectionState, HeadTooLargeError
from .thread_pool import ThreadPool

__all__ = [
    "SocketServer",
    "Connection",
    "ConnectionState",
    "BodyReader",
    "HeadTooLargeError",
    "ThreadPool",
]
