"""
=============================================================================
ACCESS LOGGING MIDDLEWARE
=============================================================================

``common_logger`` writes one line per response to the "link.access" logger
(or the logger you pass in).

    COMMON LOG FORMAT (default):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ 127.0.0.1 - - [10/Jun/2026:10:55:36 +0000] "GET /a?b=1 HTTP/1.1"    │
    │ 200 1234 5.02ms                                                     │
    │ ─────────   ──────────────────────────   ────────────────────────   │
    │ client      timestamp                    request line, status,      │
    │                                          size, duration             │
    └─────────────────────────────────────────────────────────────────────┘

    JSON (log_format="json"), one object per line for log aggregators.

The line is written when the app calls respond(), so the duration covers
the app up to the response head. Size is the Content-Length when known,
"-" for streamed bodies.

Configure it like any other logger:

    logging.getLogger("link.access").addHandler(file_handler)

=============================================================================
"""

import json
import time
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from ..utils import get_header, is_streaming_body, to_bytes


access_logger = logging.getLogger("link.access")


@dataclass
class RequestLog:
    """One access log entry."""

    client_ip: str
    method: str
    path: str
    query: str
    protocol_version: str
    status_code: int
    content_length: Optional[int]
    duration_ms: float
    timestamp: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data["duration_ms"] = round(self.duration_ms, 2)
        return data

    def to_text(self) -> str:
        target = self.path + ("?" + self.query if self.query else "")
        size = "-" if self.content_length is None else self.content_length
        return (
            f'{self.client_ip} - - [{self.timestamp}] '
            f'"{self.method} {target} HTTP/{self.protocol_version}" {self.status_code} '
            f'{size} {self.duration_ms:.2f}ms'
        )


def common_logger(
    app,
    logger: Optional[logging.Logger] = None,
    log_format: str = "text",
    level: int = logging.INFO,
    skip_paths: Optional[Iterable[str]] = None,
):
    """
    Wrap ``app`` so that every response is logged.

    Args:
        app: The app to wrap.
        logger: Where to log. Defaults to the "link.access" logger.
        log_format: "text" (common log format) or "json".
        level: Level for the log records.
        skip_paths: pathInfo values not to log (health checks, say).
    """
    if log_format not in ("text", "json"):
        raise ValueError(f"log_format must be 'text' or 'json', got {log_format!r}")

    log = logger or access_logger
    skipped = frozenset(skip_paths or ())

    def logged_app(env, respond):
        if env.get("pathInfo") in skipped:
            return app(env, respond)

        start = time.perf_counter()

        def logging_respond(status, headers=None, body=b""):
            entry = RequestLog(
                client_ip=env.get("link.remoteAddress") or "-",
                method=env.get("requestMethod", "-"),
                path=env.get("scriptName", "") + env.get("pathInfo", ""),
                query=env.get("queryString", ""),
                protocol_version=env.get("protocolVersion", "1.1"),
                status_code=int(status),
                content_length=_response_size(headers, body),
                duration_ms=(time.perf_counter() - start) * 1000,
                timestamp=datetime.now(timezone.utc).strftime("%d/%b/%Y:%H:%M:%S %z"),
            )

            if log_format == "json":
                log.log(level, json.dumps(entry.to_dict()))
            else:
                log.log(level, entry.to_text())

            return respond(status, headers, body)

        return app(env, logging_respond)

    return logged_app


def _response_size(headers: Any, body: Any) -> Optional[int]:
    length = get_header(headers or {}, "Content-Length")
    if length is not None:
        try:
            return int(length)
        except ValueError:
            return None
    if is_streaming_body(body):
        return None
    return len(to_bytes(body))
