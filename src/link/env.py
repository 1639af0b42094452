"""
=============================================================================
THE ENVIRONMENT
=============================================================================

An app is any callable ``app(env, respond)``. ``env`` is a plain dict built
once per request by ``make_env``:

    ┌──────────────────┬──────────────┬─────────────────────────────────────┐
    │ key              │ default      │ notes                               │
    ├──────────────────┼──────────────┼─────────────────────────────────────┤
    │ protocol         │ "http:"      │ "http:" or "https:"                 │
    │ protocolVersion  │ "1.0"        │ e.g. "1.1"                          │
    │ requestMethod    │ "GET"        │ always upper case                   │
    │ serverName       │ ""           │                                     │
    │ serverPort       │ "80"/"443"   │ string; 443 when https              │
    │ scriptName       │ ""           │ mount point of the app              │
    │ pathInfo         │ ""           │ "/" when scriptName is also empty   │
    │ queryString      │ ""           │ raw, not decoded                    │
    │ contentType      │ ""           │ from the Content-Type header        │
    │ contentLength    │ "0"          │ from Content-Length, never negative │
    │ http<Header>     │              │ one key per request header          │
    │ link.version     │ VERSION      │ (major, minor, patch)               │
    │ link.input       │ (required)   │ Input around the request body       │
    │ link.error       │ sys.stderr   │ where errors get written            │
    └──────────────────┴──────────────┴─────────────────────────────────────┘

The keys are the contract between apps and middleware, so they keep their
camelCase names the way WSGI keeps REQUEST_METHOD.

The server adapter also sets ``link.remoteAddress`` (the client IP).

=============================================================================
"""

import sys
from typing import Any, Dict, Mapping, Optional, TextIO

from . import VERSION
from .input import Input
from .utils import http_property_name, parse_leading_int


Environment = Dict[str, Any]


def make_env(
    input: Any,
    *,
    protocol: Optional[str] = None,
    protocolVersion: Optional[str] = None,
    requestMethod: Optional[str] = None,
    serverName: Optional[str] = None,
    serverPort: Optional[str] = None,
    scriptName: Optional[str] = None,
    pathInfo: Optional[str] = None,
    queryString: Optional[str] = None,
    headers: Optional[Mapping[str, str]] = None,
    error: Optional[TextIO] = None,
) -> Environment:
    """
    Create an environment for a single request.

    Args:
        input: The request body. Anything with a callable ``read``.
        protocol: "http:" or "https:".
        protocolVersion: HTTP version without the "HTTP/" prefix.
        requestMethod: Request method, any case.
        serverName: Host name the request was made to.
        serverPort: Port the request was made on.
        scriptName: Virtual location of the app.
        pathInfo: Path of the request below ``scriptName``.
        queryString: Raw query string without the leading "?".
        headers: Request headers, name → value.
        error: Writable text stream for error output.

    Returns:
        A new dict; neither ``headers`` nor any other argument is modified.

    Raises:
        ConfigurationError: If ``input`` is not a readable stream.
    """
    # Fail before anything else is built.
    link_input = Input(input)

    env: Environment = {}

    env["protocol"] = protocol or "http:"
    env["protocolVersion"] = protocolVersion or "1.0"
    env["requestMethod"] = (requestMethod or "GET").upper()
    env["serverName"] = serverName or ""
    env["serverPort"] = str(serverPort or ("443" if env["protocol"] == "https:" else "80"))
    env["scriptName"] = scriptName or ""
    env["pathInfo"] = pathInfo or ""
    env["queryString"] = queryString or ""

    if env["pathInfo"] == "" and env["scriptName"] == "":
        env["pathInfo"] = "/"

    # ─────────────────────────────────────────────────────────────────────
    # HEADERS
    # ─────────────────────────────────────────────────────────────────────
    # One http* key per header; on a name collision the later header wins.
    if headers:
        for name, value in headers.items():
            env[http_property_name(name)] = value

    env["contentType"] = env.pop("httpContentType", None) or ""
    length = parse_leading_int(env.pop("httpContentLength", None))
    env["contentLength"] = str(max(length, 0))

    env["link.version"] = VERSION
    env["link.input"] = link_input
    env["link.error"] = error or sys.stderr

    return env
