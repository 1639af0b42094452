"""
=============================================================================
SERVER ADAPTER
=============================================================================

Connects the wire to the app convention. For every request:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                     │
    │   Connection ──read_head()──► RequestParser ──► Request             │
    │                                                  │                  │
    │        scheme   config.force_https, else TLS?    │                  │
    │        name     config.server_name, else bound address              │
    │        port     config.server_port, else bound port                 │
    │                                                  ▼                  │
    │                                    make_env(BodyReader, ...)        │
    │                                                  │                  │
    │                                                  ▼                  │
    │                                     app(env, Responder)             │
    │                                                  │                  │
    │                         respond(status, headers, body)              │
    │                                                  │                  │
    │                                                  ▼                  │
    │                           status + headers + body on the socket     │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
FAILURES
=============================================================================

The adapter does not handle errors on the app's behalf; wrap the app in
``catch_errors`` (or call ``handle_error`` yourself) for that. What the
connection loop does, as the listener's last line of defence:

    app raises, nothing sent yet     log it, bare 500, close the connection
    app raises after responding      log it, close the connection
    app never calls respond          wait (config.response_timeout, default
                                     forever), then 500 and close

Each connection runs on its own worker thread, so none of this reaches
other requests.

=============================================================================
USAGE
=============================================================================

    from link import run

    def app(env, respond):
        respond(200, {"Content-Type": "text/plain"}, "Hello " + env["pathInfo"])

    server = run(app, {"port": 8080})
    server.serve_forever()

=============================================================================
"""

import logging
import ssl
import sys
import threading
from http import HTTPStatus
from typing import Any, Callable, List, Mapping, Optional, Union

from .config import DEFAULT_PORT, ServerConfig, TLSOptions
from .core import Connection, ConnectionState, HeadTooLargeError, SocketServer, ThreadPool
from .env import Environment, make_env
from .errors import ConfigurationError
from .http import HTTPParseError, Request, RequestParser, Responder


logger = logging.getLogger(__name__)

App = Callable[[Environment, Callable[..., None]], Any]
ListeningCallback = Callable[["Server"], Any]


def to_app(app: Any) -> App:
    """
    Return the callable behind ``app``.

    Objects with a ``to_app()`` method (such as a ``MiddlewarePipeline``)
    are converted first.

    Raises:
        ConfigurationError: If the result is not callable.
    """
    converter = getattr(app, "to_app", None)
    if callable(converter):
        app = converter()

    if not callable(app):
        raise ConfigurationError("App must be callable")

    return app


def _create_ssl_context(tls: TLSOptions) -> ssl.SSLContext:
    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    try:
        context.load_cert_chain(certfile=tls.cert, keyfile=tls.key)
    except (ssl.SSLError, OSError) as e:
        raise ConfigurationError(f"Cannot load TLS key/certificate: {e}", cause=e) from e
    return context


def _coerce_tls(tls: Any) -> Optional[TLSOptions]:
    if tls is None or isinstance(tls, TLSOptions):
        return tls
    if isinstance(tls, Mapping):
        try:
            return TLSOptions(key=tls["key"], cert=tls["cert"])
        except KeyError as e:
            raise ConfigurationError(f"TLS options need {e.args[0]!r}", cause=e) from e
    raise ConfigurationError("TLS options must be TLSOptions or a mapping with key and cert")


class Server:
    """
    A listenable server for one Link app.

    =========================================================================
    LIFECYCLE
    =========================================================================

        server = create_server(app)
        server.on_listening(lambda s: print("up on", s.address))
        server.listen(8080)          # binds, fires callbacks, returns
        ...                          # requests are served in the background
        server.close()

    Or block in the foreground (Ctrl+C / SIGTERM stop it):

        server.serve_forever()

    =========================================================================
    """

    def __init__(self, app: Any, tls: Any = None, config: Optional[ServerConfig] = None):
        self.app = to_app(app)
        self.config = config or ServerConfig()
        self.config.validate()

        self.tls = _coerce_tls(tls)
        self._ssl_context = _create_ssl_context(self.tls) if self.tls else None

        self._socket_server = SocketServer(self.config, self._ssl_context)
        self._thread_pool = ThreadPool(
            min_workers=self.config.min_workers,
            max_workers=self.config.max_workers,
        )
        self._parser = RequestParser(max_header_size=self.config.max_header_size)

        self._listening_callbacks: List[ListeningCallback] = []
        self._accept_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def secure(self) -> bool:
        return self._ssl_context is not None

    @property
    def listening(self) -> bool:
        return self._socket_server.is_running

    @property
    def address(self):
        """(host, port) for TCP, the socket path for Unix sockets."""
        return self._socket_server.address

    @property
    def stats(self) -> dict:
        return self._thread_pool.stats

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def on_listening(self, callback: ListeningCallback) -> "Server":
        """
        Call ``callback(server)`` once the server accepts connections.
        Called right away if it already does.
        """
        with self._lock:
            if not self.listening:
                self._listening_callbacks.append(callback)
                return self
        callback(self)
        return self

    def listen(
        self,
        port: Optional[int] = None,
        host: Optional[str] = None,
        socket_path: Optional[str] = None,
    ) -> "Server":
        """
        Bind and start accepting connections on a background thread.

        ``socket_path`` wins over ``host``/``port``. Arguments left out
        come from the config.

        Raises:
            OSError: If the address cannot be bound.
        """
        if socket_path is not None:
            self.config.socket = socket_path
        if port is not None:
            self.config.port = port
        if host is not None:
            self.config.host = host

        with self._lock:
            if self.listening:
                raise RuntimeError("Server is already listening")
            self._socket_server.bind()
            self._thread_pool.start()
            self._accept_thread = threading.Thread(
                target=self._socket_server.serve,
                args=(self._handle_connection,),
                name="link-accept",
                daemon=True,
            )
            self._accept_thread.start()
            callbacks, self._listening_callbacks = self._listening_callbacks, []

        scheme = "https" if self.secure else "http"
        logger.info(f"Link server ({scheme}) accepting connections on {self.address}")

        for callback in callbacks:
            callback(self)

        return self

    def serve_forever(self) -> None:
        """Listen (if not yet) and block until close() or SIGINT/SIGTERM."""
        if not self.listening:
            self.listen()

        in_main_thread = threading.current_thread() is threading.main_thread()
        if in_main_thread:
            self._socket_server.install_signals()

        try:
            while not self._socket_server.wait_for_shutdown(timeout=0.5):
                pass
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            if in_main_thread:
                self._socket_server.restore_signals()
            self.close()

    def close(self, timeout: float = 10.0) -> None:
        """Stop accepting, let in-flight connections finish, stop workers."""
        self._socket_server.shutdown()

        accept_thread = self._accept_thread
        if accept_thread is not None and accept_thread is not threading.current_thread():
            accept_thread.join(timeout=2.0)
        self._accept_thread = None

        self._thread_pool.shutdown(wait=True, timeout=timeout)
        logger.info("Link server stopped")

    def __enter__(self) -> "Server":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    def _handle_connection(self, conn: Connection) -> None:
        """Called on the accept thread: hand the connection to a worker."""
        try:
            submitted = self._thread_pool.submit(self._process_connection, args=(conn,))
        except RuntimeError:
            submitted = False

        if not submitted:
            logger.warning(f"[{conn.id}] Worker queue full, rejecting connection")
            self._send_error(conn, HTTPStatus.SERVICE_UNAVAILABLE, "Server overloaded")
            conn.close()

    def _process_connection(self, conn: Connection) -> None:
        """
        Keep-alive loop for one connection (runs on a worker thread).

        read head → parse → app → response → repeat or close
        """
        with conn:
            try:
                conn.handshake()
            except (ssl.SSLError, OSError) as e:
                logger.debug(f"[{conn.id}] TLS handshake failed: {e}")
                return

            while self._socket_server.is_running:
                try:
                    head = conn.read_head()
                    if head is None:
                        break

                    try:
                        request = self._parser.parse(head, conn.address)
                    except HTTPParseError as e:
                        self._send_error(conn, e.status_code, str(e))
                        break

                    if not self._handle_request(conn, request):
                        break

                    conn.set_keep_alive()

                except TimeoutError:
                    self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT, "Request timeout")
                    break

                except HeadTooLargeError as e:
                    self._send_error(conn, HTTPStatus.REQUEST_HEADER_FIELDS_TOO_LARGE, str(e))
                    break

                except Exception as e:
                    logger.exception(f"[{conn.id}] Connection error: {e}")
                    break

    def _handle_request(self, conn: Connection, request: Request) -> bool:
        """
        Run the app for one request.

        Returns:
            True if the connection can take another request.
        """
        if request.content_length > self.config.max_request_size:
            self._send_error(conn, HTTPStatus.REQUEST_ENTITY_TOO_LARGE, "Request body too large")
            return False

        body = conn.body_reader(request.content_length)
        env = self.make_env(request, body)
        responder = Responder(
            conn,
            method=request.method,
            version=request.version,
            keep_alive=self.config.keep_alive and request.is_keep_alive,
            chunk_size=self.config.buffer_size,
        )

        conn.state = ConnectionState.PROCESSING

        try:
            self.app(env, responder)
        except Exception:
            logger.exception(f"[{conn.id}] Unhandled error in app for {request.method} {request.target}")
            responder.fail(HTTPStatus.INTERNAL_SERVER_ERROR)
            return False

        if not responder.wait(self.config.response_timeout):
            logger.error(
                f"[{conn.id}] App did not respond to {request.method} {request.target} "
                f"within {self.config.response_timeout}s"
            )
            responder.fail(HTTPStatus.INTERNAL_SERVER_ERROR)
            return False

        logger.debug(
            f"[{conn.id}] {request.method} {request.target} -> "
            f"{responder.status} ({responder.bytes_sent} bytes)"
        )

        if not responder.keep_alive:
            return False

        body.drain()
        return True

    def make_env(self, request: Request, body: Any) -> Environment:
        """Build the environment for ``request`` with ``body`` as input."""
        if self.config.force_https or self.secure:
            protocol = "https:"
        else:
            protocol = "http:"

        address = self.address
        if isinstance(address, tuple):
            bound_name, bound_port = address[0], address[1]
        else:
            bound_name, bound_port = address or "", 0

        server_name = self.config.server_name or bound_name
        server_port = str(self.config.server_port or bound_port)

        env = make_env(
            body,
            protocol=protocol,
            protocolVersion=request.protocol_version,
            requestMethod=request.method,
            serverName=server_name,
            serverPort=server_port,
            pathInfo=request.path,
            queryString=request.query,
            headers=request.headers,
            error=self.config.error_stream or sys.stderr,
        )
        env["link.remoteAddress"] = request.client_address[0] if request.client_address else ""
        return env

    def _send_error(self, conn: Connection, status: int, message: str) -> None:
        """Bare error response for failures outside any app."""
        Responder(conn, keep_alive=False).fail(int(status), message)


def create_server(app: Any, tls: Any = None, config: Optional[ServerConfig] = None) -> Server:
    """
    Create a server for ``app``.

    Args:
        app: A Link app, or an object with a ``to_app()`` method.
        tls: ``TLSOptions`` (or {"key": ..., "cert": ...}) for HTTPS.
             Leave out for plain HTTP.
        config: Server configuration. Defaults are used when omitted.

    Raises:
        ConfigurationError: If the app is not callable, or the TLS material
            or config is invalid.
    """
    return Server(app, tls=tls, config=config)


def run(
    app: Any,
    options: Union[Mapping[str, Any], ServerConfig, Callable, None] = None,
    callback: Optional[ListeningCallback] = None,
) -> Server:
    """
    Create a server for ``app`` and start listening.

    ``options`` may hold any ``ServerConfig`` field; the usual ones are

        host     Address to accept connections on. Defaults to 0.0.0.0
        port     Port to listen on. Defaults to 1982
        socket   Unix socket file to listen on (trumps host/port)
        key      Private key file to use for HTTPS
        cert     Certificate file to use for HTTPS

    HTTPS is used when both key and cert are given. ``callback`` is called
    with the server once it accepts connections; it may also be passed in
    place of ``options``.

    Returns:
        The listening server. Call ``serve_forever()`` to block.
    """
    if callback is None and callable(options) and not isinstance(options, (Mapping, ServerConfig)):
        callback, options = options, None

    if isinstance(options, ServerConfig):
        config = options
    else:
        config = ServerConfig.from_options(options)

    server = create_server(app, tls=config.tls, config=config)

    if callback is not None:
        server.on_listening(callback)

    return server.listen()


def configure_logging(level: str = "INFO") -> None:
    """Console logging for the ``link`` loggers."""
    numeric = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=numeric,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("link").setLevel(numeric)


__all__ = [
    "DEFAULT_PORT",
    "Server",
    "configure_logging",
    "create_server",
    "run",
    "to_app",
]
