"""
=============================================================================
LINK CLI ENTRY POINT
=============================================================================

Serve an app from the command line:

    python -m link myapp:app
    python -m link myapp:app --port 3000
    python -m link myapp:app --socket /tmp/myapp.sock
    python -m link myapp:app --key key.pem --cert cert.pem
    python -m link myapp.web:create_app --workers 32 --log-level DEBUG

``module:attribute`` names the app. The attribute may be dotted
(``myapp:site.app``); anything with ``to_app()`` works too. Without an
attribute, ``app`` is used.

Settings come from the flags first, then LINK_* environment variables
(see ``ServerConfig.from_env``), then defaults.

=============================================================================
"""

import argparse
import importlib
import logging
import os
import sys

from . import __version__
from .config import ServerConfig
from .errors import ConfigurationError
from .server import configure_logging, run


logger = logging.getLogger("link")


def load_app(target: str):
    """
    Import ``module:attribute`` and return the attribute.

    Raises:
        ConfigurationError: If the module or attribute cannot be found.
    """
    module_name, _, attribute = target.partition(":")
    attribute = attribute or "app"

    # Apps are usually next to where the command is run.
    if os.getcwd() not in sys.path:
        sys.path.insert(0, os.getcwd())

    try:
        obj = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import {module_name!r}: {e}", cause=e) from e

    for part in attribute.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise ConfigurationError(f"{module_name!r} has no attribute {attribute!r}", cause=e) from e

    return obj


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="link",
        description="Serve a Link app over HTTP or HTTPS",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m link myapp:app                      # 0.0.0.0:1982
  python -m link myapp:app --port 3000          # Custom port
  python -m link myapp:app --socket app.sock    # Unix socket
  python -m link myapp:app --key k.pem --cert c.pem   # HTTPS
        """,
    )

    parser.add_argument("app", help="The app to serve, as module:attribute")

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--host", "-H", help="Address to accept connections on (default: 0.0.0.0)")
    parser.add_argument("--port", "-p", type=int, help="Port to listen on (default: 1982)")
    parser.add_argument("--socket", "-s", help="Unix socket file to listen on (trumps host/port)")

    # ─────────────────────────────────────────────────────────────────────
    # HTTPS ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--key", help="Private key file (PEM) for HTTPS")
    parser.add_argument("--cert", help="Certificate file (PEM) for HTTPS")

    # ─────────────────────────────────────────────────────────────────────
    # PERFORMANCE / LOGGING
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--workers", "-w", type=int, help="Maximum worker threads (default: 16)")
    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    parser.add_argument("--version", "-v", action="version", version=f"Link {__version__}")

    return parser


def build_config(args: argparse.Namespace, environ=None) -> ServerConfig:
    """Environment defaults overridden by whatever flags were given."""
    config = ServerConfig.from_env(environ)

    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.socket is not None:
        config.socket = args.socket
    if args.key is not None:
        config.key = args.key
    if args.cert is not None:
        config.cert = args.cert
    if args.workers is not None:
        config.max_workers = args.workers
        config.min_workers = min(config.min_workers, args.workers)
    if args.log_level is not None:
        config.log_level = args.log_level

    return config


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = build_config(args)
        configure_logging(config.log_level)
        app = load_app(args.app)
        server = run(app, config)
    except (ConfigurationError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    logger.info(f"Serving {args.app} on {server.address} (Ctrl+C to stop)")
    server.serve_forever()
    return 0


if __name__ == "__main__":
    sys.exit(main())
