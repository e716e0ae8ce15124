"""
Unit tests for the client Connection, using a socket pair as the "server".
"""

import socket

import pytest

from jsonpush.core.connection import Connection, ConnectionState
from jsonpush.errors import ConnectionClosedError, ProtocolViolation, TransportError, UsageError
from jsonpush.http.request import HTTPRequest


OK = b"HTTP/1.1 200 OK\r\nContent-Length: 2\r\n\r\nok"


def read_request(sock: socket.socket) -> bytes:
    """Read one request (headers plus Content-Length body) from the server end."""
    data = b""
    while b"\r\n\r\n" not in data:
        data += sock.recv(4096)

    head, _, body = data.partition(b"\r\n\r\n")
    length = 0
    for line in head.split(b"\r\n")[1:]:
        name, _, value = line.partition(b":")
        if name.strip().lower() == b"content-length":
            length = int(value)
    while len(body) < length:
        body += sock.recv(4096)
    return head + b"\r\n\r\n" + body


@pytest.fixture
def connection(socket_pair, recorder):
    client, _ = socket_pair
    conn = Connection("example.com", 8080, callbacks=recorder.callbacks, timeout=2.0, sock=client)
    yield conn
    conn.close()


@pytest.fixture
def server(socket_pair):
    _, server = socket_pair
    server.settimeout(2.0)
    return server


class TestSending:
    """Request composition and wire format."""

    def test_request_bytes(self, connection, server):
        """Host, Accept-Encoding and Content-Length are added automatically."""
        connection.request("POST", "/ingest?x=1", [("Content-Type", "application/json")], b'{"a":1}')

        raw = read_request(server)

        assert raw == (
            b"POST /ingest?x=1 HTTP/1.1\r\n"
            b"Host: example.com:8080\r\n"
            b"Accept-Encoding: identity\r\n"
            b"Content-Type: application/json\r\n"
            b"Content-Length: 7\r\n"
            b"\r\n"
            b'{"a":1}'
        )
        assert connection.state is ConnectionState.REQUEST_SENT
        assert connection.outstanding() == 1
        assert connection.requests_sent == 1

    def test_explicit_content_length_is_kept(self, connection, server):
        connection.request("POST", "/", {"Content-Length": 2}, b"hi")

        raw = read_request(server)

        assert raw.count(b"Content-Length") == 1

    def test_host_without_default_port(self, socket_pair, server):
        client, _ = socket_pair
        conn = Connection("example.com", 80, sock=client)
        conn.request("POST", "/", body=b"")

        raw = read_request(server)

        assert b"Host: example.com\r\n" in raw
        assert b"Content-Length: 0\r\n" in raw

    def test_send_request(self, connection, server):
        request = HTTPRequest("POST", "/events", (("Accept", "application/json"),), b"[]")

        connection.send_request(request)

        raw = read_request(server)
        assert raw.startswith(b"POST /events HTTP/1.1\r\n")
        assert raw.endswith(b"Accept: application/json\r\nContent-Length: 2\r\n\r\n[]")

    def test_send_request_uses_request_version(self, connection, server):
        request = HTTPRequest("POST", "/legacy", (), b"{}", version="HTTP/1.0")

        connection.send_request(request)

        assert read_request(server).startswith(b"POST /legacy HTTP/1.0\r\n")

    def test_ipv6_host_is_bracketed(self, socket_pair, server):
        """IPv6 literals keep their brackets in the Host header."""
        client, _ = socket_pair
        conn = Connection("::1", 8080, sock=client)
        conn.request("POST", "/", body=b"{}")

        raw = read_request(server)

        assert b"Host: [::1]:8080\r\n" in raw

    def test_ipv6_host_on_default_port(self, socket_pair, server):
        client, _ = socket_pair
        conn = Connection("::1", 80, sock=client)
        conn.request("POST", "/", body=b"{}")

        assert b"Host: [::1]\r\n" in read_request(server)

    def test_low_level_composition(self, connection, server):
        connection.begin_request("POST", "/")
        connection.add_header("X-Count", 3)
        connection.add_header("Content-Length", 2)
        connection.finalize_headers()
        connection.send_body("ab")

        raw = read_request(server)

        assert b"X-Count: 3\r\n" in raw
        assert raw.endswith(b"\r\n\r\nab")


class TestUsageOrder:
    """Composition calls out of order raise UsageError."""

    def test_add_header_without_begin(self, connection):
        with pytest.raises(UsageError):
            connection.add_header("X-A", "1")

    def test_finalize_without_begin(self, connection):
        with pytest.raises(UsageError):
            connection.finalize_headers()

    def test_send_body_before_finalize(self, connection):
        connection.begin_request("POST", "/")
        with pytest.raises(UsageError):
            connection.send_body(b"x")

    def test_begin_while_composing(self, connection):
        connection.begin_request("POST", "/")
        with pytest.raises(UsageError):
            connection.begin_request("POST", "/")

    def test_header_injection_rejected(self, connection):
        connection.begin_request("POST", "/")
        with pytest.raises(UsageError):
            connection.add_header("X-Tag", "a\r\nContent-Length: 0")

    def test_rejected_header_leaves_connection_usable(self, connection, server):
        """A bad header in request() does not block the next request."""
        with pytest.raises(UsageError):
            connection.request("POST", "/", {"X-Bad": "a\r\nb"}, b"{}")

        assert connection.state is ConnectionState.IDLE
        assert connection.outstanding() == 0

        connection.request("POST", "/", {"X-Ok": "1"}, b"{}")

        raw = read_request(server)
        assert raw.startswith(b"POST / HTTP/1.1\r\n")
        assert b"X-Ok: 1\r\n" in raw
        assert b"X-Bad" not in raw
        assert connection.outstanding() == 1

    def test_rejected_header_keeps_pipelined_requests(self, connection, server):
        connection.request("POST", "/one", body=b"1")

        with pytest.raises(UsageError):
            connection.request("POST", "/two", [("X-Bad:Name", "x")], b"2")

        assert connection.state is ConnectionState.REQUEST_SENT
        assert connection.outstanding() == 1

        connection.request("POST", "/three", body=b"3")

        assert read_request(server).startswith(b"POST /one ")
        assert read_request(server).startswith(b"POST /three ")
        assert connection.outstanding() == 2

    def test_pipelined_begin_allowed_after_send(self, connection, server):
        connection.request("POST", "/one", body=b"1")
        connection.request("POST", "/two", body=b"2")

        assert connection.outstanding() == 2


class TestPump:
    """Receiving responses."""

    def test_pump_without_data_returns_zero(self, connection):
        assert connection.pump() == 0

        connection.request("POST", "/", body=b"{}")

        assert connection.pump() == 0
        assert connection.outstanding() == 1

    def test_pump_completes_response(self, connection, server, recorder):
        connection.request("POST", "/", body=b"{}")
        read_request(server)
        server.sendall(OK)

        assert connection.pump() == len(OK)
        assert connection.outstanding() == 0
        assert recorder.body == b"ok"
        assert recorder.errors == [None]
        assert connection.is_connected

    @pytest.mark.parametrize("split", [1, 5, 17, 40])
    def test_pipelined_responses_complete_in_order(self, connection, server, recorder, split):
        """Three responses, arbitrarily fragmented, complete in send order."""
        for index in range(3):
            connection.request("POST", f"/{index}", body=b"{}")

        stream = b"".join(
            f"HTTP/1.1 200 OK\r\nContent-Length: 1\r\nX-Index: {index}\r\n\r\n{index}".encode()
            for index in range(3)
        )
        for start in range(0, len(stream), split):
            server.sendall(stream[start:start + split])
            connection.pump()

        order = [response.get_header("x-index") for response, _ in recorder.completed]
        assert order == ["0", "1", "2"]
        assert recorder.body == b"012"
        assert connection.outstanding() == 0

    def test_will_close_closes_connection(self, connection, server, recorder):
        connection.request("POST", "/", body=b"{}")
        connection.request("POST", "/", body=b"{}")
        server.sendall(b"HTTP/1.1 200 OK\r\nConnection: close\r\nContent-Length: 0\r\n\r\n")

        connection.pump()

        assert not connection.is_connected
        assert connection.outstanding() == 0
        assert recorder.errors[0] is None
        assert isinstance(recorder.errors[1], ConnectionClosedError)

    def test_framing_loss_closes_connection(self, connection, server, recorder):
        connection.request("POST", "/", body=b"{}")
        server.sendall(b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\nnothex\r\n")

        connection.pump()

        assert not connection.is_connected
        assert isinstance(recorder.errors[0], ProtocolViolation)

    def test_framing_loss_fails_later_pipelined_responses(self, connection, server, recorder):
        """Responses queued behind a broken one are failed, not left waiting."""
        connection.request("POST", "/one", body=b"{}")
        connection.request("POST", "/two", body=b"{}")
        server.sendall(b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\n0x2\r\nok\r\n")

        connection.pump()

        assert len(recorder.completed) == 2
        assert isinstance(recorder.errors[0], ProtocolViolation)
        assert isinstance(recorder.errors[1], ConnectionClosedError)
        assert connection.outstanding() == 0
        assert not connection.is_connected

    def test_eof_mid_chunk_fails_every_outstanding_response(self, connection, server, recorder):
        connection.request("POST", "/one", body=b"{}")
        connection.request("POST", "/two", body=b"{}")
        server.sendall(b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\n5\r\nhe")
        server.close()

        connection.pump()

        assert recorder.body == b"he"
        assert len(recorder.completed) == 2
        assert isinstance(recorder.errors[0], ProtocolViolation)
        assert isinstance(recorder.errors[1], ConnectionClosedError)
        assert connection.outstanding() == 0
        assert not connection.is_connected

    def test_eof_completes_until_close_response(self, connection, server, recorder):
        connection.request("POST", "/", body=b"{}")
        server.sendall(b"HTTP/1.0 200 OK\r\n\r\nstreamed")
        server.close()

        connection.pump()

        assert recorder.body == b"streamed"
        assert recorder.errors == [None]
        assert not connection.is_connected

    def test_eof_before_response(self, connection, server, recorder):
        connection.request("POST", "/", body=b"{}")
        server.close()

        connection.pump()

        assert isinstance(recorder.errors[0], ConnectionClosedError)
        assert connection.outstanding() == 0


class TestClose:
    """Closing with responses outstanding."""

    def test_close_notifies_each_outstanding_once(self, connection, recorder):
        connection.request("POST", "/", body=b"1")
        connection.request("POST", "/", body=b"2")

        connection.close()
        connection.close()

        assert len(recorder.completed) == 2
        assert all(isinstance(error, ConnectionClosedError) for error in recorder.errors)
        assert connection.outstanding() == 0
        assert connection.state is ConnectionState.IDLE

    def test_context_manager_closes(self, socket_pair):
        client, _ = socket_pair
        with Connection("example.com", 80, sock=client) as conn:
            assert conn.is_connected
        assert not conn.is_connected


class TestConnect:
    """Dialing out."""

    def test_connect_refused_raises_transport_error(self, free_port):
        conn = Connection("127.0.0.1", free_port, timeout=1.0)

        with pytest.raises(TransportError) as exc_info:
            conn.begin_request("POST", "/")

        assert exc_info.value.destination == f"127.0.0.1:{free_port}"
        assert conn.state is ConnectionState.IDLE
        assert not conn.is_connected

    def test_reconnects_after_server_closed_idle_connection(self, socket_pair, free_port):
        """A stale socket is dropped before the next request and a new one dialed."""
        client, server = socket_pair
        conn = Connection("127.0.0.1", free_port, timeout=1.0, sock=client)
        server.close()

        with pytest.raises(TransportError):
            conn.begin_request("POST", "/")

        assert not conn.is_connected
