"""
=============================================================================
HTTP - the wire side of Link
=============================================================================

    request.py    request head → Request (method, target, headers, ...)
    response.py   Responder: the one-shot ``respond`` callback given to apps

=============================================================================
"""

from .request import HTTPParseError, Request, RequestParser
from .response import Responder, format_http_date, status_line

__all__ = [
    "HTTPParseError",
    "Request",
    "RequestParser",
    "Responder",
    "format_http_date",
    "status_line",
]
