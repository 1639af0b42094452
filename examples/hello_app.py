"""
=============================================================================
EXAMPLE: HELLO APP
=============================================================================

A small Link app with the usual middleware stack.

    python examples/hello_app.py
    python -m link examples.hello_app:pipeline --port 8080

    curl http://localhost:1982/
    curl http://localhost:1982/stream
    curl -d 'some text' http://localhost:1982/echo
    curl http://localhost:1982/fail

=============================================================================
"""

import json
import time

import link
from link.middleware import MiddlewarePipeline, catch_errors, common_logger


def app(env, respond):
    path = env["pathInfo"]

    if path == "/":
        respond(200, {"Content-Type": "text/plain"}, "Hello world!\n")

    elif path == "/stream":
        # Chunked: each line goes out as soon as it is produced.
        def ticks():
            for i in range(5):
                yield f"tick {i}\n"
                time.sleep(0.2)
        respond(200, {"Content-Type": "text/plain"}, ticks())

    elif path == "/echo":
        body = env["link.input"].read()
        respond(200, {"Content-Type": env["contentType"] or "application/octet-stream"}, body)

    elif path == "/env":
        visible = {k: v for k, v in env.items() if isinstance(v, str)}
        respond(200, {"Content-Type": "application/json"}, json.dumps(visible, indent=2))

    elif path == "/fail":
        raise link.ApplicationError("this route always fails")

    else:
        respond(404, {"Content-Type": "text/plain"}, "Not Found\n")


pipeline = MiddlewarePipeline()
pipeline.use(common_logger)
pipeline.use(catch_errors)
pipeline.run(app)


if __name__ == "__main__":
    link.configure_logging("INFO")
    server = link.run(pipeline, {"host": "127.0.0.1"})
    server.serve_forever()
