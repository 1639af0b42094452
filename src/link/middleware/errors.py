"""
=============================================================================
ERROR CATCHING MIDDLEWARE
=============================================================================

    pipeline.use(catch_errors)                     # handle_error: 500 + trace
    pipeline.use(catch_errors, handler=my_handler)

The handler is called as ``handler(error, env, respond)``. Returning False
means "not handled": the error is raised again for outer layers (and in
the end the server) to deal with. Anything else counts as handled.

Only errors raised while the app runs are caught. Errors raised by
respond() itself (a second call, a dead client) propagate.

=============================================================================
"""

import logging

from ..errors import ResponseAlreadySentError, handle_error


logger = logging.getLogger(__name__)


def catch_errors(app, handler=handle_error):
    """Wrap ``app`` so exceptions go to ``handler`` instead of the server."""

    def guarded_app(env, respond):
        try:
            return app(env, respond)
        except ResponseAlreadySentError:
            raise
        except Exception as error:
            logger.debug(f"Caught {error.__class__.__name__} from app: {error}")
            if handler(error, env, respond) is False:
                raise

    return guarded_app
