"""
Unit tests for the connection wrapper and the thread pool.
"""

import socket
import threading
import time

import pytest

from link.core import Connection, HeadTooLargeError, ThreadPool


@pytest.fixture
def socket_pair():
    server_side, client_side = socket.socketpair()
    yield server_side, client_side
    for sock in (server_side, client_side):
        try:
            sock.close()
        except OSError:
            pass


def make_connection(sock, **kwargs) -> Connection:
    kwargs.setdefault("timeout", 2.0)
    return Connection(socket=sock, address=("127.0.0.1", 5000), **kwargs)


class TestConnection:
    def test_read_head_splits_off_body(self, socket_pair):
        server_side, client_side = socket_pair
        conn = make_connection(server_side)

        client_side.sendall(b"POST / HTTP/1.1\r\nContent-Length: 5\r\n\r\nhello")

        assert conn.read_head() == b"POST / HTTP/1.1\r\nContent-Length: 5"
        assert conn.body_reader(5).read() == b"hello"
        assert conn.requests_handled == 1

    def test_pipelined_heads(self, socket_pair):
        server_side, client_side = socket_pair
        conn = make_connection(server_side)

        client_side.sendall(b"GET /a HTTP/1.1\r\n\r\nGET /b HTTP/1.1\r\n\r\n")

        assert conn.read_head() == b"GET /a HTTP/1.1"
        assert conn.read_head() == b"GET /b HTTP/1.1"

    def test_client_close_returns_none(self, socket_pair):
        server_side, client_side = socket_pair
        conn = make_connection(server_side)

        client_side.close()
        assert conn.read_head() is None

    def test_first_request_timeout(self, socket_pair):
        server_side, _ = socket_pair
        conn = make_connection(server_side, timeout=0.1)

        with pytest.raises(TimeoutError):
            conn.read_head()

    def test_idle_keep_alive_returns_none(self, socket_pair):
        server_side, client_side = socket_pair
        conn = make_connection(server_side, keep_alive_timeout=0.1)

        client_side.sendall(b"GET / HTTP/1.1\r\n\r\n")
        assert conn.read_head() is not None
        assert conn.read_head() is None

    def test_head_too_large(self, socket_pair):
        server_side, client_side = socket_pair
        conn = make_connection(server_side, max_header_size=1024)

        client_side.sendall(b"GET / HTTP/1.1\r\nX-Big: " + b"x" * 4096)

        with pytest.raises(HeadTooLargeError):
            conn.read_head()

    def test_send(self, socket_pair):
        server_side, client_side = socket_pair
        conn = make_connection(server_side)

        assert conn.send(b"pong") is True
        assert client_side.recv(4) == b"pong"

    def test_close_is_idempotent(self, socket_pair):
        server_side, client_side = socket_pair
        client_side.close()
        conn = make_connection(server_side)

        conn.close()
        conn.close()
        assert conn.send(b"late") is False

    def test_non_tuple_address(self, socket_pair):
        server_side, _ = socket_pair
        conn = Connection(socket=server_side, address="")
        assert conn.address == ("", 0)


class TestBodyReader:
    def test_reads_exactly_length(self, socket_pair):
        server_side, client_side = socket_pair
        conn = make_connection(server_side)
        client_side.sendall(b"0123456789NEXT")

        body = conn.body_reader(10)

        assert body.read(4) == b"0123"
        assert body.read() == b"456789"
        assert body.read() == b""
        assert body.exhausted

    def test_read_zero(self, socket_pair):
        server_side, client_side = socket_pair
        conn = make_connection(server_side)
        client_side.sendall(b"abc")

        body = conn.body_reader(3)
        assert body.read(0) == b""
        assert not body.exhausted
        assert body.read() == b"abc"

    def test_readline(self, socket_pair):
        server_side, client_side = socket_pair
        conn = make_connection(server_side)
        client_side.sendall(b"one\ntwo")

        body = conn.body_reader(7)
        assert body.readline() == b"one\n"
        assert body.readline() == b"two"

    def test_drain(self, socket_pair):
        server_side, client_side = socket_pair
        conn = make_connection(server_side)
        client_side.sendall(b"x" * 100 + b"GET / HTTP/1.1\r\n\r\n")

        body = conn.body_reader(100)
        body.read(10)

        assert body.drain() == 90
        assert conn.read_head() == b"GET / HTTP/1.1"

    def test_peer_closes_early(self, socket_pair):
        server_side, client_side = socket_pair
        conn = make_connection(server_side)
        client_side.sendall(b"abc")
        client_side.close()

        body = conn.body_reader(10)
        assert body.read() == b"abc"
        assert body.exhausted


class TestThreadPool:
    def test_runs_tasks(self):
        pool = ThreadPool(min_workers=2, max_workers=2)
        pool.start()
        done = threading.Event()

        try:
            assert pool.submit(done.set) is True
            assert done.wait(timeout=5.0)
        finally:
            pool.shutdown()

    def test_failing_task_does_not_kill_worker(self):
        pool = ThreadPool(min_workers=1, max_workers=1)
        pool.start()
        done = threading.Event()

        def explode():
            raise RuntimeError("task failed")

        try:
            pool.submit(explode)
            pool.submit(done.set)
            assert done.wait(timeout=5.0)
            assert pool.stats["tasks"]["failed"] == 1
        finally:
            pool.shutdown()

    def test_submit_before_start(self):
        with pytest.raises(RuntimeError):
            ThreadPool().submit(lambda: None)

    def test_full_queue_rejects(self):
        pool = ThreadPool(min_workers=1, max_workers=1, queue_size=1)
        pool.start()
        release = threading.Event()

        try:
            pool.submit(release.wait)
            time.sleep(0.1)  # let the worker pick it up
            assert pool.submit(lambda: None) is True
            assert pool.submit(lambda: None) is False
        finally:
            release.set()
            pool.shutdown()

    def test_scales_up_to_max(self):
        pool = ThreadPool(min_workers=1, max_workers=3)
        pool.start()
        release = threading.Event()

        try:
            for _ in range(3):
                pool.submit(release.wait)
                time.sleep(0.05)
            assert pool.stats["workers"]["total"] <= 3
            assert pool.stats["workers"]["total"] > 1
        finally:
            release.set()
            pool.shutdown()

    def test_shutdown_stops_workers(self):
        pool = ThreadPool(min_workers=2, max_workers=2)
        pool.start()
        pool.shutdown()

        assert not pool.started
        assert pool.stats["workers"]["total"] == 0
