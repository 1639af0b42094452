"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Everything the server adapter and ``run`` need, in one dataclass.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │   Priority (highest to lowest):                                     │
    │                                                                     │
    │   1. Command-line arguments                                         │
    │      └── python -m link myapp:app --port 3000                       │
    │                                                                     │
    │   2. run() options                                                  │
    │      └── run(app, {"port": 3000, "socket": "/tmp/link.sock"})       │
    │                                                                     │
    │   3. Environment variables (ServerConfig.from_env)                  │
    │      └── LINK_PORT=3000 HTTPS=on python -m link myapp:app           │
    │                                                                     │
    │   4. Defaults                                                       │
    │      └── 0.0.0.0:1982                                               │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
PER-REQUEST OVERRIDES
=============================================================================

Behind a proxy the socket address is not what the client asked for. Three
fields override what ends up in every environment:

    force_https   protocol is "https:" even on a plain socket   (HTTPS)
    server_name   serverName instead of the bound address       (SERVER_NAME)
    server_port   serverPort instead of the bound port          (SERVER_PORT)

They are read from the process environment only by ``from_env()``. The
server itself never looks at ``os.environ`` while handling a request.

=============================================================================
"""

import os
from dataclasses import dataclass, fields
from typing import Any, Mapping, NamedTuple, Optional, TextIO

from .errors import ConfigurationError


DEFAULT_PORT = 1982

# Values of the HTTPS variable that turn the override on.
TRUTHY = ("yes", "on", "1")


class TLSOptions(NamedTuple):
    """Private key and certificate (PEM file paths) for HTTPS."""

    key: str
    cert: str


@dataclass
class ServerConfig:
    """
    Configuration for a Link server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    LISTENING
    - host, port, socket, backlog

    TLS
    - key, cert

    CONNECTIONS
    - buffer_size, timeout, keep_alive, keep_alive_timeout,
      max_header_size, max_request_size, response_timeout

    THREADING
    - min_workers, max_workers

    OVERRIDES
    - force_https, server_name, server_port

    OUTPUT
    - error_stream, log_level

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # LISTENING
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """Address to bind to. "0.0.0.0" accepts on every interface."""

    port: int = DEFAULT_PORT
    """TCP port. 0 lets the OS pick one (handy in tests)."""

    socket: Optional[str] = None
    """Unix domain socket path. When set, host and port are ignored."""

    backlog: int = 128
    """Connections the OS may queue before refusing new ones."""

    # ─────────────────────────────────────────────────────────────────────
    # TLS
    # ─────────────────────────────────────────────────────────────────────

    key: Optional[str] = None
    """Path to the PEM private key. HTTPS needs both key and cert."""

    cert: Optional[str] = None
    """Path to the PEM certificate chain."""

    # ─────────────────────────────────────────────────────────────────────
    # CONNECTIONS
    # ─────────────────────────────────────────────────────────────────────

    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    keep_alive: bool = True
    keep_alive_timeout: float = 5.0
    max_header_size: int = 64 * 1024
    max_request_size: int = 10 * 1024 * 1024  # 10 MB

    response_timeout: Optional[float] = None
    """
    How long a worker waits for the app to call ``respond``.
    None waits forever: an app that never responds holds its connection
    until the client gives up.
    """

    # ─────────────────────────────────────────────────────────────────────
    # THREAD POOL
    # ─────────────────────────────────────────────────────────────────────

    min_workers: int = 4
    max_workers: int = 16

    # ─────────────────────────────────────────────────────────────────────
    # OVERRIDES
    # ─────────────────────────────────────────────────────────────────────

    force_https: bool = False
    server_name: Optional[str] = None
    server_port: Optional[int] = None

    # ─────────────────────────────────────────────────────────────────────
    # OUTPUT
    # ─────────────────────────────────────────────────────────────────────

    error_stream: Optional[TextIO] = None
    """Becomes ``env["link.error"]``. None means sys.stderr."""

    log_level: str = "INFO"

    @property
    def tls(self) -> Optional[TLSOptions]:
        """TLS material when both key and cert are configured, else None."""
        if self.key and self.cert:
            return TLSOptions(key=self.key, cert=self.cert)
        return None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        LINK_HOST       Bind address (default: 0.0.0.0)
        LINK_PORT       Port (default: 1982)
        LINK_SOCKET     Unix socket path
        LINK_KEY        TLS private key file
        LINK_CERT       TLS certificate file
        LINK_WORKERS    Max worker threads (default: 16)
        LINK_LOG_LEVEL  Logging level (default: INFO)
        HTTPS           "yes", "on" or "1" forces protocol "https:"
        SERVER_NAME     Overrides serverName
        SERVER_PORT     Overrides serverPort

        =====================================================================
        """
        environ = os.environ if environ is None else environ

        try:
            port = int(environ.get("LINK_PORT", DEFAULT_PORT))
            max_workers = int(environ.get("LINK_WORKERS", "16"))
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}", cause=e) from e

        server_port = _parse_port(environ.get("SERVER_PORT"))

        return cls(
            host=environ.get("LINK_HOST", "0.0.0.0"),
            port=port,
            socket=environ.get("LINK_SOCKET") or None,
            key=environ.get("LINK_KEY") or None,
            cert=environ.get("LINK_CERT") or None,
            max_workers=max_workers,
            min_workers=min(4, max_workers),
            force_https=environ.get("HTTPS", "").lower() in TRUTHY,
            server_name=environ.get("SERVER_NAME") or None,
            server_port=server_port,
            log_level=environ.get("LINK_LOG_LEVEL", "INFO"),
        )

    @classmethod
    def from_options(
        cls,
        options: Optional[Mapping[str, Any]] = None,
        base: Optional["ServerConfig"] = None,
    ) -> "ServerConfig":
        """
        Build a config from ``run()`` style options.

        Unknown keys are rejected so a typo such as ``{"prot": 80}`` fails
        loudly instead of being ignored. ``port`` falls back to 1982 when
        missing or falsy; numeric strings such as ``"8080"`` are accepted.
        """
        known = {f.name for f in fields(cls)}
        values = {f.name: getattr(base, f.name) for f in fields(cls)} if base else {}

        for name, value in (options or {}).items():
            if name not in known:
                raise ConfigurationError(f"Unknown server option: {name!r}")
            values[name] = value

        if values.get("port"):
            try:
                values["port"] = int(values["port"])
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid port: {values['port']!r}", cause=e) from e
        if not values.get("port"):
            values["port"] = DEFAULT_PORT

        return cls(**values)

    def validate(self) -> None:
        """
        Validate configuration values.

        Fail fast: a bad value is reported at startup, not on the first
        request.
        """
        if self.socket is None and (not isinstance(self.port, int) or not 0 <= self.port < 65536):
            raise ConfigurationError(f"Invalid port: {self.port}. Must be 0-65535.")

        if bool(self.key) != bool(self.cert):
            raise ConfigurationError("HTTPS needs both key and cert")

        if self.min_workers < 1:
            raise ConfigurationError("min_workers must be >= 1")

        if self.max_workers < self.min_workers:
            raise ConfigurationError("max_workers must be >= min_workers")

        if self.buffer_size < 1024:
            raise ConfigurationError("buffer_size must be >= 1024")

        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError("timeout must be > 0")

        if self.response_timeout is not None and self.response_timeout <= 0:
            raise ConfigurationError("response_timeout must be > 0")


def _parse_port(value: Optional[str]) -> Optional[int]:
    # SERVER_PORT is advisory: a value that is not a number is ignored.
    if not value:
        return None
    try:
        return int(value, 10) or None
    except ValueError:
        return None
