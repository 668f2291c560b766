"""
Unit tests for client connections.
"""

import socket

import pytest

from httpservice.core.connection import Connection


@pytest.fixture
def socket_pair():
    server_side, client_side = socket.socketpair()
    yield server_side, client_side
    server_side.close()
    client_side.close()


class TestConnection:
    """Tests for Connection."""

    def test_connections_are_hashable_by_identity(self, socket_pair):
        server_side, _ = socket_pair
        first = Connection(socket=server_side, address=("127.0.0.1", 1))
        second = Connection(socket=server_side, address=("127.0.0.1", 1), id=first.id)

        tracked = {first, second}

        assert len(tracked) == 2
        assert first != second
        tracked.discard(first)
        assert tracked == {second}

    def test_reads_one_request(self, socket_pair):
        server_side, client_side = socket_pair
        conn = Connection(socket=server_side, address=("127.0.0.1", 1), timeout=2.0)
        client_side.sendall(b"GET / HTTP/1.1\r\nHost: test\r\n\r\n")

        raw = conn.read_request()

        assert raw.startswith(b"GET / HTTP/1.1\r\n")
        assert raw.endswith(b"\r\n\r\n")
