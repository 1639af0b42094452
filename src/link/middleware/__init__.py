"""
=============================================================================
MIDDLEWARE - app factories that wrap other apps
=============================================================================

    base.py      MiddlewarePipeline: use(mw, ...) / run(app) / to_app()
    errors.py    catch_errors: route app exceptions to handle_error
    logging.py   common_logger: one access log line per response

=============================================================================
"""

from .base import MiddlewarePipeline
from .errors import catch_errors
from .logging import RequestLog, common_logger

__all__ = [
    "MiddlewarePipeline",
    "RequestLog",
    "catch_errors",
    "common_logger",
]
