"""
=============================================================================
LINK - a minimal HTTP app convention with a threaded server
=============================================================================

An app is any callable that takes an environment and a respond callback:

    def app(env, respond):
        respond(200, {"Content-Type": "text/plain"}, "Hello world!")

Link turns HTTP requests into environments, calls the app, and writes what
it responds with. Middleware are apps that wrap other apps.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    link/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m link module:app)
    ├── env.py               # make_env: the per-request environment
    ├── input.py             # Input: the request body stream
    ├── errors.py            # LinkError, full traces, handle_error
    ├── config.py            # ServerConfig dataclass
    ├── server.py            # Server, create_server, run
    ├── registry.py          # lazily loaded capabilities
    ├── utils.py             # header names, stream checks
    ├── core/                # sockets, connections, worker threads
    ├── http/                # request parsing, response writing
    └── middleware/          # pipeline, catch_errors, common_logger

=============================================================================
QUICK START
=============================================================================

    import link

    def app(env, respond):
        name = env["pathInfo"].strip("/") or "world"
        respond(200, {"Content-Type": "text/plain"}, f"Hello {name}!\\n")

    pipeline = link.MiddlewarePipeline()
    pipeline.use(link.common_logger)
    pipeline.use(link.catch_errors)
    pipeline.run(app)

    link.run(pipeline, {"port": 8080}).serve_forever()

=============================================================================
"""

# Defined before the submodule imports: env.py reads it at import time.
VERSION = (0, 3, 3)
__version__ = ".".join(str(part) for part in VERSION)

from .config import ServerConfig, TLSOptions
from .env import Environment, make_env
from .errors import (
    ApplicationError,
    ConfigurationError,
    InputError,
    LinkError,
    ResponseAlreadySentError,
    format_full_trace,
    handle_error,
)
from .registry import CapabilityRegistry
from .server import Server, configure_logging, create_server, run, to_app


# =============================================================================
# LAZY EXPORTS
# =============================================================================
# Middleware and helpers load on first attribute access (link.common_logger).

capabilities = CapabilityRegistry()
capabilities.register_module("Input", "link.input", "Input")
capabilities.register_module("Responder", "link.http.response", "Responder")
capabilities.register_module("MiddlewarePipeline", "link.middleware.base", "MiddlewarePipeline")
capabilities.register_module("catch_errors", "link.middleware.errors", "catch_errors")
capabilities.register_module("common_logger", "link.middleware.logging", "common_logger")
capabilities.register_module("utils", "link.utils")


def __getattr__(name):
    if name in capabilities:
        return capabilities.resolve(name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__():
    return sorted(set(globals()) | set(capabilities))


__all__ = [
    "VERSION",
    "__version__",
    "ApplicationError",
    "CapabilityRegistry",
    "ConfigurationError",
    "Environment",
    "InputError",
    "LinkError",
    "ResponseAlreadySentError",
    "Server",
    "ServerConfig",
    "TLSOptions",
    "capabilities",
    "configure_logging",
    "create_server",
    "format_full_trace",
    "handle_error",
    "make_env",
    "run",
    "to_app",
]
