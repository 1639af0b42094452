"""
Small helpers shared across Link.

Header names become environment keys here:

    Content-Type    →  httpContentType
    x-request-id    →  httpXRequestId
    X_Forwarded_For →  httpXForwardedFor

The mapping is case-insensitive (so is HTTP) but not collision-free:
"X-Foo-Bar" and "X-FooBar" differ, while "X-Foo_Bar" and "X-Foo-Bar" do not.
When two headers land on the same key the later one wins.
"""

import re
from typing import Any, Mapping

# Segment separators inside a header name. Everything else stays put.
_SEPARATORS = re.compile(r"[-_]+")

# A leading (optionally signed) run of digits, like JavaScript's parseInt.
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def http_property_name(header_name: str) -> str:
    """Return the environment key for an HTTP header name."""
    words = [word for word in _SEPARATORS.split(header_name) if word]
    return "http" + "".join(word[:1].upper() + word[1:].lower() for word in words)


def parse_leading_int(value: Any) -> int:
    """
    Parse the leading integer of ``value``.

    "42", " 42 ", "42abc" all give 42. Anything without leading digits
    (including None) gives 0.
    """
    if value is None:
        return 0
    match = _LEADING_INT.match(str(value))
    if not match:
        return 0
    return int(match.group(1))


def is_readable_stream(obj: Any) -> bool:
    """True if ``obj`` can be pulled from like a file: it has a callable ``read``."""
    return callable(getattr(obj, "read", None))


def is_streaming_body(body: Any) -> bool:
    """
    True if a response body should be streamed chunk by chunk.

    Readable streams and non-string iterables (generators, lists of chunks)
    stream; ``str``, ``bytes`` and ``None`` are written in one piece.
    """
    if body is None or isinstance(body, (str, bytes, bytearray, memoryview)):
        return False
    if is_readable_stream(body):
        return True
    try:
        iter(body)
    except TypeError:
        return False
    return True


def to_bytes(chunk: Any, encoding: str = "utf-8") -> bytes:
    """Coerce a body chunk to bytes."""
    if chunk is None:
        return b""
    if isinstance(chunk, bytes):
        return chunk
    if isinstance(chunk, (bytearray, memoryview)):
        return bytes(chunk)
    return str(chunk).encode(encoding)


def get_header(headers: Mapping[str, str], name: str, default: Any = None) -> Any:
    """Case-insensitive lookup in a plain header mapping."""
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return default
