"""
=============================================================================
REQUEST HEAD PARSING
=============================================================================

Turns the head of an HTTP/1.x request into a ``Request``. The body is not
touched here; the server hands it to the app as a stream.

    GET /users?page=2 HTTP/1.1\r\n          ← request line
    Host: example.com\r\n                   ← headers
    Content-Length: 0\r\n
    \r\n                                    ← (already stripped)

=============================================================================
WHAT THE PARSER DOES NOT CHECK
=============================================================================

Method names are not checked against a list: any RFC 7230 token is passed
to the app, which decides what it supports. Paths are passed through raw.
The parser only rejects what would make the connection unusable:

    400  malformed request line or header, bad Content-Length
    501  Transfer-Encoding (request bodies must carry a Content-Length)
    505  HTTP versions other than 1.0 and 1.1

=============================================================================
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Tuple
from urllib.parse import urlsplit


class HTTPParseError(Exception):
    """
    Raised when a request head cannot be parsed.

    Carries the status code the connection loop answers with.
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class Request:
    """
    A parsed request head.

    ``headers`` has lower-case names; repeated headers are joined with ", ".
    ``raw_headers`` keeps every header line as sent.
    """

    method: str
    target: str
    version: str = "HTTP/1.1"
    headers: Dict[str, str] = field(default_factory=dict)
    raw_headers: List[Tuple[str, str]] = field(default_factory=list)
    client_address: Tuple[str, int] = ("", 0)

    @property
    def protocol_version(self) -> str:
        """"1.1" for "HTTP/1.1"."""
        return self.version.split("/", 1)[1]

    @property
    def path(self) -> str:
        return urlsplit(self.target).path

    @property
    def query(self) -> str:
        return urlsplit(self.target).query

    @property
    def content_length(self) -> int:
        return int(self.headers.get("content-length", "0") or 0)

    @property
    def is_keep_alive(self) -> bool:
        """
        HTTP/1.1 keeps the connection unless told "close";
        HTTP/1.0 closes it unless told "keep-alive".
        """
        tokens = {t.strip().lower() for t in self.headers.get("connection", "").split(",")}
        if self.version == "HTTP/1.1":
            return "close" not in tokens
        return "keep-alive" in tokens

    def get_header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)


class RequestParser:
    """Parses request heads into ``Request`` objects."""

    # token SP request-target SP HTTP-version
    REQUEST_LINE_PATTERN = re.compile(r"^([!#$%&'*+.^_`|~0-9A-Za-z-]+) (\S+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([!#$%&'*+.^_`|~0-9A-Za-z-]+):[ \t]*(.*?)[ \t]*$")
    CONTENT_LENGTH_PATTERN = re.compile(r"[0-9]+")

    SUPPORTED_VERSIONS = ("HTTP/1.0", "HTTP/1.1")

    def __init__(self, max_header_size: int = 64 * 1024):
        self.max_header_size = max_header_size

    def parse(self, head: bytes, client_address: Tuple[str, int] = ("", 0)) -> Request:
        """
        Parse a request head (everything before the blank line).

        Raises:
            HTTPParseError: If the head is malformed or unsupported.
        """
        if len(head) > self.max_header_size:
            raise HTTPParseError(f"Request head too large: {len(head)} bytes", status_code=431)

        # ISO-8859-1 maps every byte, so decoding never fails.
        lines = head.decode("iso-8859-1").split("\r\n")

        # Tolerate blank lines before the request line (RFC 7230 3.5).
        while lines and not lines[0]:
            lines.pop(0)
        if not lines:
            raise HTTPParseError("Empty request")

        method, target, version = self._parse_request_line(lines[0])
        headers, raw_headers = self._parse_headers(lines[1:])

        if "transfer-encoding" in headers:
            raise HTTPParseError("Transfer-Encoding is not supported for requests", status_code=501)

        length = headers.get("content-length")
        if length is not None and not self.CONTENT_LENGTH_PATTERN.fullmatch(length):
            raise HTTPParseError(f"Invalid Content-Length: {length!r}")

        return Request(
            method=method,
            target=target,
            version=version,
            headers=headers,
            raw_headers=raw_headers,
            client_address=client_address,
        )

    def _parse_request_line(self, line: str) -> Tuple[str, str, str]:
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line!r}")

        method, target, version = match.groups()

        if version not in self.SUPPORTED_VERSIONS:
            raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)

        return method.upper(), target, version

    def _parse_headers(self, lines: List[str]) -> Tuple[Dict[str, str], List[Tuple[str, str]]]:
        headers: Dict[str, str] = {}
        raw: List[Tuple[str, str]] = []

        for line in lines:
            if not line:
                continue

            if line[0] in " \t":
                # Obsolete line folding: continue the previous header.
                if not raw:
                    raise HTTPParseError("Header continuation without a header")
                name, value = raw[-1]
                value = f"{value} {line.strip()}"
                raw[-1] = (name, value)
                headers[name.lower()] = value
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                raise HTTPParseError(f"Invalid header line: {line!r}")

            name, value = match.groups()
            raw.append((name, value))

            key = name.lower()
            if key in headers:
                if key == "content-length" and headers[key] != value:
                    raise HTTPParseError("Conflicting Content-Length headers")
                if key != "content-length":
                    headers[key] = f"{headers[key]}, {value}"
            else:
                headers[key] = value

        return headers, raw
