"""
Server tests against a real listener on 127.0.0.1.
"""

import http.client
import io
import os
import socket
import tempfile
import threading
import time

import pytest

from link import ConfigurationError, create_server, run
from link.http import RequestParser
from link.middleware import MiddlewarePipeline, catch_errors
from link.server import to_app


def echo_env_app(env, respond):
    """Answers with a few environment values, one per line."""
    keys = ("protocol", "protocolVersion", "requestMethod", "serverName",
            "serverPort", "pathInfo", "queryString", "contentType", "contentLength")
    body = "\n".join(f"{key}={env[key]}" for key in keys)
    respond(200, {"Content-Type": "text/plain"}, body)


def parse_lines(body: bytes) -> dict:
    return dict(line.split("=", 1) for line in body.decode().splitlines())


def request(server, method="GET", target="/", body=None, headers=None):
    host, port = server.address
    conn = http.client.HTTPConnection(host, port, timeout=5)
    try:
        conn.request(method, target, body=body, headers=headers or {})
        response = conn.getresponse()
        return response.status, dict(response.getheaders()), response.read()
    finally:
        conn.close()


def raw_request(server, data: bytes) -> bytes:
    host, port = server.address
    with socket.create_connection((host, port), timeout=5) as sock:
        sock.sendall(data)
        chunks = []
        while True:
            chunk = sock.recv(4096)
            if not chunk:
                break
            chunks.append(chunk)
    return b"".join(chunks)


class TestToApp:
    def test_callable(self):
        assert to_app(echo_env_app) is echo_env_app

    def test_to_app_is_preferred(self):
        pipeline = MiddlewarePipeline().use(catch_errors).run(echo_env_app)
        app = to_app(pipeline)
        assert app is not pipeline
        assert callable(app)

    def test_not_callable(self):
        with pytest.raises(ConfigurationError):
            to_app("not an app")

    def test_create_server_rejects_non_callable(self):
        with pytest.raises(ConfigurationError):
            create_server(42)

    def test_missing_tls_files(self):
        with pytest.raises(ConfigurationError):
            create_server(echo_env_app, tls={"key": "/nonexistent/key.pem", "cert": "/nonexistent/cert.pem"})

    def test_incomplete_tls_mapping(self):
        with pytest.raises(ConfigurationError):
            create_server(echo_env_app, tls={"key": "key.pem"})


class TestEnvironment:
    def test_request_becomes_env(self, serve):
        server = serve(echo_env_app)
        host, port = server.address

        status, headers, body = request(server, "post", "/items/7?full=1", body=b"{}",
                                        headers={"Content-Type": "application/json"})
        values = parse_lines(body)

        assert status == 200
        assert values["protocol"] == "http:"
        assert values["protocolVersion"] == "1.1"
        assert values["requestMethod"] == "POST"
        assert values["serverName"] == host
        assert values["serverPort"] == str(port)
        assert values["pathInfo"] == "/items/7"
        assert values["queryString"] == "full=1"
        assert values["contentType"] == "application/json"
        assert values["contentLength"] == "2"

    def test_overrides(self, serve):
        server = serve(echo_env_app, force_https=True, server_name="example.com", server_port=8443)

        _, _, body = request(server)
        values = parse_lines(body)

        assert values["protocol"] == "https:"
        assert values["serverName"] == "example.com"
        assert values["serverPort"] == "8443"

    def test_headers_and_remote_address(self, serve):
        seen = {}

        def app(env, respond):
            seen.update(env)
            respond(204, {}, "")

        server = serve(app)
        request(server, headers={"X-Request-ID": "abc123"})

        assert seen["httpXRequestId"] == "abc123"
        assert seen["link.remoteAddress"] == "127.0.0.1"

    def test_header_name_casing_does_not_matter(self, config):
        """The parser lower-cases names; the env keys come out the same either way."""
        server = create_server(echo_env_app, config=config)
        parser = RequestParser()

        mixed = server.make_env(parser.parse(b"GET / HTTP/1.1\r\nX-Request-ID: abc"), io.BytesIO())
        lower = server.make_env(parser.parse(b"GET / HTTP/1.1\r\nx-request-id: abc"), io.BytesIO())

        assert mixed["httpXRequestId"] == lower["httpXRequestId"] == "abc"


class TestBodies:
    def test_request_body_is_streamed_to_app(self, serve):
        def upper(env, respond):
            data = env["link.input"].read()
            respond(200, {}, data.upper())

        server = serve(upper)
        status, _, body = request(server, "POST", "/", body=b"shout this")

        assert status == 200
        assert body == b"SHOUT THIS"

    def test_chunked_response(self, serve):
        def streaming(env, respond):
            respond(200, {"Content-Type": "text/plain"}, (f"line {i}\n" for i in range(3)))

        server = serve(streaming)
        status, headers, body = request(server)

        assert status == 200
        assert headers["Transfer-Encoding"] == "chunked"
        assert body == b"line 0\nline 1\nline 2\n"

    def test_file_like_response(self, serve):
        server = serve(lambda env, respond: respond(200, {}, io.BytesIO(b"x" * 20000)))
        _, _, body = request(server)
        assert body == b"x" * 20000

    def test_head_request(self, serve):
        server = serve(lambda env, respond: respond(200, {}, "body"))
        status, headers, body = request(server, "HEAD")

        assert status == 200
        assert headers["Content-Length"] == "4"
        assert body == b""


class TestKeepAlive:
    def test_requests_share_a_connection(self, serve):
        server = serve(echo_env_app)
        host, port = server.address
        conn = http.client.HTTPConnection(host, port, timeout=5)

        try:
            for path in ("/one", "/two", "/three"):
                conn.request("GET", path)
                response = conn.getresponse()
                assert parse_lines(response.read())["pathInfo"] == path
        finally:
            conn.close()

    def test_unread_body_is_drained(self, serve):
        server = serve(lambda env, respond: respond(200, {}, "ignored body"))
        host, port = server.address
        conn = http.client.HTTPConnection(host, port, timeout=5)

        try:
            conn.request("POST", "/", body=b"a" * 1000)
            assert conn.getresponse().read() == b"ignored body"
            conn.request("GET", "/")
            assert conn.getresponse().status == 200
        finally:
            conn.close()

    def test_http10_closes(self, serve):
        server = serve(lambda env, respond: respond(200, {}, "bye"))
        response = raw_request(server, b"GET / HTTP/1.0\r\n\r\n")

        assert response.startswith(b"HTTP/1.1 200 OK\r\n")
        assert b"Connection: close" in response
        assert response.endswith(b"\r\n\r\nbye")


class TestFailures:
    def test_app_exception_gives_500(self, serve):
        def broken(env, respond):
            raise RuntimeError("boom")

        server = serve(broken)
        status, _, body = request(server)

        assert status == 500
        assert body == b"Server Error"

    def test_catch_errors_writes_trace(self, serve):
        errors = io.StringIO()

        def broken(env, respond):
            raise RuntimeError("boom")

        server = serve(catch_errors(broken), error_stream=errors)
        status, headers, body = request(server)

        assert status == 500
        assert headers["Content-Type"] == "text/plain"
        assert "RuntimeError: boom" in errors.getvalue()

    def test_app_that_never_responds(self, serve):
        server = serve(lambda env, respond: None, response_timeout=0.2)
        status, _, _ = request(server)
        assert status == 500

    def test_respond_from_another_thread(self, serve):
        def later(env, respond):
            threading.Timer(0.05, respond, args=(200, {}, "done")).start()

        server = serve(later)
        _, _, body = request(server)
        assert body == b"done"

    def test_malformed_request(self, serve):
        server = serve(echo_env_app)
        response = raw_request(server, b"NOT A REQUEST\r\n\r\n")
        assert response.startswith(b"HTTP/1.1 400 ")

    def test_chunked_request_is_not_implemented(self, serve):
        server = serve(echo_env_app)
        response = raw_request(
            server,
            b"POST / HTTP/1.1\r\nTransfer-Encoding: chunked\r\n\r\n0\r\n\r\n",
        )
        assert response.startswith(b"HTTP/1.1 501 ")

    def test_non_ascii_content_length(self, serve):
        server = serve(echo_env_app)
        response = raw_request(server, b"POST / HTTP/1.1\r\nContent-Length: \xb2\r\n\r\n")
        assert response.startswith(b"HTTP/1.1 400 ")

    def test_header_injection_gives_500(self, serve):
        def splitting(env, respond):
            respond(302, {"Location": "/next\r\nSet-Cookie: session=stolen"}, "")

        server = serve(splitting)
        status, headers, _ = request(server)

        assert status == 500
        assert "Set-Cookie" not in headers

    def test_body_too_large(self, serve):
        server = serve(echo_env_app, max_request_size=10)
        response = raw_request(server, b"POST / HTTP/1.1\r\nContent-Length: 100\r\n\r\n")
        assert response.startswith(b"HTTP/1.1 413 ")


class TestRun:
    def test_callback_receives_server(self, config):
        called = []
        server = run(echo_env_app, config, lambda s: called.append(s))
        try:
            assert called == [server]
            assert server.listening
        finally:
            server.close()

    def test_callback_in_place_of_options(self, free_port, monkeypatch):
        # Default options: keep the test off the real default port.
        monkeypatch.setattr("link.config.DEFAULT_PORT", free_port)
        called = []

        server = run(echo_env_app, lambda s: called.append(s.address))
        server.close()

        assert called == [("0.0.0.0", free_port)]

    def test_options_mapping(self, free_port):
        server = run(echo_env_app, {"host": "127.0.0.1", "port": free_port})
        try:
            assert server.address == ("127.0.0.1", free_port)
            status, _, _ = request(server)
            assert status == 200
        finally:
            server.close()

    def test_unknown_option(self):
        with pytest.raises(ConfigurationError):
            run(echo_env_app, {"prot": 80})

    def test_string_port_option(self, free_port):
        server = run(echo_env_app, {"host": "127.0.0.1", "port": str(free_port)})
        try:
            assert server.address == ("127.0.0.1", free_port)
        finally:
            server.close()

    def test_bad_port_option(self):
        with pytest.raises(ConfigurationError):
            run(echo_env_app, {"port": "eighty"})

    def test_on_listening_after_listen(self, serve):
        server = serve(echo_env_app)
        called = []
        server.on_listening(called.append)
        assert called == [server]

    def test_close_stops_listening(self, config):
        server = run(echo_env_app, config)
        host, port = server.address
        server.close()

        assert not server.listening
        with pytest.raises(OSError):
            socket.create_connection((host, port), timeout=1).close()


@pytest.mark.skipif(not hasattr(socket, "AF_UNIX"), reason="Unix sockets not available")
class TestUnixSocket:
    def test_serves_over_unix_socket(self, serve):
        path = os.path.join(tempfile.mkdtemp(), "link.sock")
        server = serve(echo_env_app, socket=path)

        assert server.address == path

        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
            sock.settimeout(5)
            sock.connect(path)
            sock.sendall(b"GET /unix HTTP/1.0\r\n\r\n")
            data = b""
            while True:
                chunk = sock.recv(4096)
                if not chunk:
                    break
                data += chunk

        values = parse_lines(data.split(b"\r\n\r\n", 1)[1])
        assert values["pathInfo"] == "/unix"
        assert values["serverName"] == path
        assert values["serverPort"] == "0"

    def test_socket_file_is_removed_on_close(self, config):
        path = os.path.join(tempfile.mkdtemp(), "link.sock")
        config.socket = path
        server = run(echo_env_app, config)
        assert os.path.exists(path)

        server.close()
        time.sleep(0.1)
        assert not os.path.exists(path)
