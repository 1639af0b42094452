"""
=============================================================================
MIDDLEWARE PIPELINE
=============================================================================

A Link middleware is a factory: it takes an app (plus any options) and
returns a new app that wraps it.

    def powered_by(app, name="Link"):
        def wrapper(env, respond):
            def add_header(status, headers, body=b""):
                headers = dict(headers or {}, **{"X-Powered-By": name})
                respond(status, headers, body)
            return app(env, add_header)
        return wrapper

``MiddlewarePipeline`` collects factories and applies them to an app:

    pipeline = MiddlewarePipeline()
    pipeline.use(common_logger)          # first added = outermost
    pipeline.use(catch_errors)
    pipeline.use(powered_by, name="Demo")
    pipeline.run(app)

    run(pipeline)                        # any object with to_app() will do

    ┌─────────────────────────────────────────────────────────┐
    │  common_logger                                          │
    │  ┌───────────────────────────────────────────────────┐  │
    │  │  catch_errors                                     │  │
    │  │  ┌─────────────────────────────────────────────┐  │  │
    │  │  │  powered_by                                 │  │  │
    │  │  │  ┌───────────────────────────────────┐      │  │  │
    │  │  │  │              APP                  │      │  │  │
    │  │  │  └───────────────────────────────────┘      │  │  │
    │  │  └─────────────────────────────────────────────┘  │  │
    │  └───────────────────────────────────────────────────┘  │
    └─────────────────────────────────────────────────────────┘

The env flows inward (outermost first); respond() calls flow outward.

=============================================================================
"""

import logging
from typing import Any, Callable, List, Optional, Tuple

from ..errors import ConfigurationError


logger = logging.getLogger(__name__)

App = Callable[..., Any]
Middleware = Callable[..., App]


class MiddlewarePipeline:
    """Builds an app out of middleware factories and an inner app."""

    def __init__(self, app: Optional[App] = None):
        self._middleware: List[Tuple[Middleware, tuple, dict]] = []
        self._app = app

    def use(self, middleware: Middleware, *args: Any, **kwargs: Any) -> "MiddlewarePipeline":
        """
        Add a middleware factory. It is called as
        ``middleware(app, *args, **kwargs)`` when the pipeline is built.

        Returns:
            Self for method chaining
        """
        if not callable(middleware):
            raise ConfigurationError(f"Middleware must be callable, got {middleware!r}")

        self._middleware.append((middleware, args, kwargs))
        logger.debug(f"Added middleware: {_name_of(middleware)}")
        return self

    def run(self, app: App) -> "MiddlewarePipeline":
        """Set the innermost app."""
        self._app = app
        return self

    def to_app(self) -> App:
        """
        Wrap the app in every middleware, last added innermost.

        Raises:
            ConfigurationError: If no app was given to run().
        """
        if self._app is None:
            raise ConfigurationError("MiddlewarePipeline has no app; call run(app) first")

        # Wrap in reverse so the first-added middleware ends up outermost.
        current = self._app
        for middleware, args, kwargs in reversed(self._middleware):
            current = middleware(current, *args, **kwargs)
            if not callable(current):
                raise ConfigurationError(f"{_name_of(middleware)} did not return an app")

        return current

    def __call__(self, env, respond):
        # Lets a pipeline be used where an app is expected. Rebuilds on
        # every call; prefer to_app() for serving.
        return self.to_app()(env, respond)

    def __len__(self) -> int:
        return len(self._middleware)

    def __repr__(self) -> str:
        names = ", ".join(_name_of(mw) for mw, _, _ in self._middleware)
        return f"MiddlewarePipeline([{names}])"


def _name_of(obj: Any) -> str:
    return getattr(obj, "__name__", obj.__class__.__name__)
