"""
=============================================================================
LISTENING SOCKET
=============================================================================

Owns the listening socket and the accept loop. Everything above it
(parsing, apps, responses) only ever sees ``Connection`` objects.

    ┌─────────────────────────────────────────────────────────────────────┐
    │  bind()         socket() → setsockopt() → bind() → listen()         │
    │                 AF_INET / AF_INET6 for host:port                    │
    │                 AF_UNIX for a socket path (stale file removed)      │
    │                 SSL-wrapped when an SSLContext is given             │
    │                                                                     │
    │  serve(handler) accept loop, one Connection per client,             │
    │                 handler(conn) for each; blocks until shutdown()     │
    │                                                                     │
    │  shutdown()     stop the loop; close the socket; unlink the path    │
    └─────────────────────────────────────────────────────────────────────┘

The accept socket has a one second timeout so the loop notices shutdown()
without needing a wake-up connection.

=============================================================================
"""

import os
import socket
import ssl
import signal
import logging
import threading
from typing import Callable, Optional, Tuple, Union

from ..config import ServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)

Address = Union[Tuple[str, int], str]


class SocketServer:
    """
    Low-level listening socket and accept loop.

    Usage:
        server = SocketServer(config)
        server.bind()
        server.serve(handle_connection)  # blocks until shutdown()
    """

    def __init__(self, config: ServerConfig, ssl_context: Optional[ssl.SSLContext] = None):
        self.config = config
        self.ssl_context = ssl_context
        self._socket: Optional[socket.socket] = None
        self._unix_path: Optional[str] = None
        self._running = False
        self._shutdown_event = threading.Event()
        self._original_handlers: dict = {}

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_bound(self) -> bool:
        return self._socket is not None

    @property
    def is_unix(self) -> bool:
        return self._unix_path is not None

    @property
    def address(self) -> Optional[Address]:
        """
        The bound address: (host, port) for TCP, the path for Unix sockets,
        None before bind().
        """
        if self._unix_path is not None:
            return self._unix_path
        if self._socket is None:
            return None
        host, port = self._socket.getsockname()[:2]
        return (host, port)

    def _create_socket(self, family: int) -> socket.socket:
        sock = socket.socket(family, socket.SOCK_STREAM)

        if family != socket.AF_UNIX:
            # Allow an immediate restart on the same port.
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        # Lets the accept loop poll the running flag.
        sock.settimeout(1.0)
        return sock

    def bind(self) -> Address:
        """
        Create, bind and listen. Uses ``config.socket`` when set, otherwise
        ``config.host``/``config.port``.

        Raises:
            OSError: If the address cannot be bound.
        """
        if self.config.socket:
            sock = self._create_socket(socket.AF_UNIX)
            path = self.config.socket
            if os.path.exists(path):
                os.unlink(path)  # stale socket file from a previous run
            target: Address = path
        else:
            family = socket.AF_INET6 if ":" in self.config.host else socket.AF_INET
            sock = self._create_socket(family)
            target = (self.config.host, self.config.port)

        try:
            sock.bind(target)
            sock.listen(self.config.backlog)
        except OSError as e:
            sock.close()
            logger.error(f"Failed to bind to {target}: {e}")
            raise

        if self.ssl_context is not None:
            # Handshakes run on worker threads, not in the accept loop.
            sock = self.ssl_context.wrap_socket(
                sock, server_side=True, do_handshake_on_connect=False
            )

        self._socket = sock
        self._unix_path = self.config.socket or None
        self._running = True
        self._shutdown_event.clear()

        logger.info(f"Listening on {self.address}")
        return self.address

    def serve(self, connection_handler: Callable[[Connection], None]):
        """Accept connections until shutdown(). Binds first if needed."""
        if self._socket is None:
            self.bind()

        try:
            self._accept_loop(connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except ssl.SSLError as e:
                logger.debug(f"TLS accept error: {e}")
                continue
            except OSError as e:
                if self._running:
                    logger.error(f"Accept error: {e}")
                break

            logger.debug(f"Accepted connection from {client_address}")

            conn = Connection(
                socket=client_socket,
                address=client_address if isinstance(client_address, tuple) else ("", 0),
                buffer_size=self.config.buffer_size,
                timeout=self.config.timeout,
                keep_alive_timeout=self.config.keep_alive_timeout,
                max_header_size=self.config.max_header_size,
            )
            connection_handler(conn)

    def shutdown(self):
        """Stop accepting. Safe to call more than once."""
        if self._running:
            logger.info("Shutting down listener...")
        self._running = False
        self._shutdown_event.set()

    def _cleanup(self):
        self.restore_signals()

        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None

        if self._unix_path and os.path.exists(self._unix_path):
            try:
                os.unlink(self._unix_path)
            except OSError:
                pass

        self._shutdown_event.set()
        logger.info("Listener stopped")

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        return self._shutdown_event.wait(timeout)

    # =========================================================================
    # SIGNALS
    # =========================================================================
    #
    # Only the main thread may install handlers, so this is opt-in and used
    # by the blocking serve_forever() path.
    #
    # =========================================================================

    def install_signals(self):
        def shutdown_handler(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}, initiating shutdown...")
            self.shutdown()

        for sig in (signal.SIGTERM, signal.SIGINT):
            self._original_handlers[sig] = signal.signal(sig, shutdown_handler)

    def restore_signals(self):
        if threading.current_thread() is not threading.main_thread():
            return
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()
