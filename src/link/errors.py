"""
=============================================================================
ERRORS
=============================================================================

Exception hierarchy for Link, plus the default unhandled-error responder.

=============================================================================
CAUSAL CHAINS
=============================================================================

A LinkError may carry a lower-level error that caused it. Each link of the
chain contributes its own trace to ``full_trace()``:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  ApplicationError: could not load profile                           │
    │  Caused by InputError: body read failed                             │
    │  Caused by ConnectionResetError: [Errno 104] reset by peer          │
    └─────────────────────────────────────────────────────────────────────┘

The cause is also stored as ``__cause__``, so ``raise LinkError(...) from e``
and ``LinkError(..., cause=e)`` produce the same chain.

=============================================================================
TAXONOMY
=============================================================================

    LinkError
    ├── ConfigurationError        Bad setup input. Raised at setup time.
    ├── ApplicationError          Raised by apps and middleware.
    ├── InputError                The request body stream failed.
    └── ResponseAlreadySentError  A responder was called twice.

=============================================================================
"""

import traceback
from typing import Any, Callable, Mapping, Optional


class LinkError(Exception):
    """
    An exception that is easy to subclass and can be nested.

    Args:
        message: Human-readable description.
        cause: The error that triggered this one at some lower level.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    @property
    def name(self) -> str:
        return type(self).__name__

    def trace(self) -> str:
        """Formatted traceback of this error alone, without its causes."""
        return _format_single(self)

    def full_trace(self) -> str:
        """
        This error's trace followed by ``Caused by`` + the trace of every
        error further down the chain.
        """
        return format_full_trace(self)

    def __str__(self) -> str:
        return self.message


class ConfigurationError(LinkError):
    """Invalid construction input: a non-callable app, a bad stream, bad config."""


class ApplicationError(LinkError):
    """Raised by application or middleware code while handling a request."""


class InputError(LinkError):
    """The underlying request body stream failed while being read."""


class ResponseAlreadySentError(LinkError):
    """A response callback was invoked more than once for the same request."""


def _cause_of(error: BaseException) -> Optional[BaseException]:
    cause = getattr(error, "cause", None)
    if cause is None:
        cause = error.__cause__
    return cause


def _format_single(error: BaseException) -> str:
    # Errors that were never raised have no traceback; format_exception
    # then yields just "Name: message".
    lines = traceback.format_exception(
        type(error), error, error.__traceback__, chain=False
    )
    return "".join(lines).rstrip("\n")


def format_full_trace(error: BaseException) -> str:
    """
    ``full_trace()`` for any exception, LinkError or not.

    A chain that loops back on itself ends with ``Caused by <cycle>``.
    """
    parts = [_format_single(error)]
    seen = {id(error)}
    cause = _cause_of(error)

    while cause is not None:
        if id(cause) in seen:
            parts.append("Caused by <cycle>")
            break
        seen.add(id(cause))
        parts.append("Caused by " + _format_single(cause))
        cause = _cause_of(cause)

    return "\n".join(parts)


# =============================================================================
# DEFAULT ERROR HANDLER
# =============================================================================
#
# IMPORTANT: the return value tells the caller whether a response was issued
# through ``respond``. A handler that returns False leaves the error for the
# caller to propagate; the default always responds and returns True.
#
# =============================================================================

SERVER_ERROR_MESSAGE = "Server Error"


def handle_error(
    error: BaseException,
    env: Mapping[str, Any],
    respond: Callable[..., None],
) -> bool:
    """
    Log the full trace to ``env["link.error"]`` and answer with a plain 500.

    Replace this function (same signature) for custom error handling.
    """
    env["link.error"].write("Unhandled error!\n" + format_full_trace(error) + "\n")

    respond(500, {
        "Content-Type": "text/plain",
        "Content-Length": str(len(SERVER_ERROR_MESSAGE)),
    }, SERVER_ERROR_MESSAGE)

    return True
