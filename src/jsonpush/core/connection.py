"""
=============================================================================
CLIENT CONNECTION
=============================================================================

One keep-alive TCP connection to one HTTP server, driven from the client
side: requests go out with blocking sends, responses come back through a
non-blocking pump().

=============================================================================
PIPELINING: MANY REQUESTS, ONE SOCKET
=============================================================================

HTTP/1.1 lets a client send the next request before the previous response
has arrived. The server MUST answer in the same order, so the client only
needs a FIFO of "responses I am still waiting for":

    send POST #1 ──►  outstanding: [R1]
    send POST #2 ──►  outstanding: [R1, R2]
    send POST #3 ──►  outstanding: [R1, R2, R3]

    recv() bytes ──►  feed to R1 until it completes, pop it
                      leftover bytes ──► feed to R2 ...

    ┌──────────────────────────── socket byte stream ─────────────────────┐
    │ HTTP/1.1 201 ...\r\n\r\n{} │ HTTP/1.1 201 ...\r\n\r\n{} │ HTTP/1.1 2 │
    └────────────── R1 ──────────┴────────────── R2 ──────────┴─── R3 ... ┘
                                 ▲
               R1.feed() returns here, the rest belongs to R2

=============================================================================
REQUEST COMPOSITION STATE MACHINE
=============================================================================

    ┌──────┐  begin_request()  ┌─────────────────┐  finalize_headers()  ┌──────────────┐
    │ IDLE │ ────────────────► │ REQUEST_STARTED │ ───────────────────► │ REQUEST_SENT │
    └──────┘                   └─────────────────┘                      └──────────────┘
        ▲                            │    ▲                                   │    │
        │                            └────┘ add_header()        send_body()   └────┘
        │                                                                     │
        └────────────── close() ◄─────────────────────────────────────────────┤
                                                      begin_request() ────────┘
                                                      (next pipelined request)

Calling an operation out of order raises UsageError.

=============================================================================
READING WITHOUT BLOCKING
=============================================================================

pump() asks select() with a ZERO timeout whether bytes are waiting. If not,
it returns immediately. A single background thread can therefore sweep many
connections without ever getting stuck on a slow server.
=============================================================================
"""

import select
import socket
import time
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Iterable, Mapping, Optional, Tuple, Union

from ..errors import ConnectionClosedError, TransportError, UsageError
from ..http.request import HTTPRequest, HeaderValue, validate_header
from ..http.response import HTTPResponse, ResponseCallbacks


logger = logging.getLogger(__name__)


Headers = Union[Mapping[str, HeaderValue], Iterable[Tuple[str, HeaderValue]]]


class ConnectionState(Enum):
    """Where request composition stands."""
    IDLE = "idle"                        # Nothing being composed
    REQUEST_STARTED = "request_started"  # Request line buffered, adding headers
    REQUEST_SENT = "request_sent"        # Headers on the wire, body may follow


@dataclass
class Connection:
    """
    A client connection to host:port.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    Connection Responsibilities                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  1. LAZY CONNECT                                                     │
    │     └── The socket is opened by the first begin_request()           │
    │     └── and re-opened after the server closed it                     │
    │                                                                      │
    │  2. REQUEST COMPOSITION                                              │
    │     └── begin_request / add_header / finalize_headers / send_body   │
    │     └── Host and Accept-Encoding are added automatically            │
    │                                                                      │
    │  3. RESPONSE FIFO                                                    │
    │     └── One HTTPResponse per request, completed in send order       │
    │                                                                      │
    │  4. FAILURE NOTIFICATION                                             │
    │     └── close() completes every outstanding response exactly once   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Not thread-safe: the registry guards each connection with its own lock.

    Attributes:
        host: Server host name or IP.
        port: Server TCP port.
        callbacks: Response hooks shared by every response on this connection.
        timeout: Bound on connect and send, in seconds (None blocks forever).
        buffer_size: Bytes read per recv().
        sock: Already-connected socket to use instead of dialing out.
        id: Unique connection identifier (for logging).
        state: Current ConnectionState.
        requests_sent: Requests finalized on this connection.
    """

    # Required parameters
    host: str
    port: int

    callbacks: ResponseCallbacks = field(default_factory=ResponseCallbacks)
    timeout: Optional[float] = 5.0
    buffer_size: int = 8192
    sock: Optional[socket.socket] = None

    # Generated/default parameters
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.IDLE
    last_activity: float = field(default_factory=time.time)
    requests_sent: int = 0

    # Internal state (not shown in repr for cleaner logs)
    _method: str = field(default="", repr=False)
    _lines: list = field(default_factory=list, repr=False)
    _outstanding: Deque[HTTPResponse] = field(default_factory=deque, repr=False)

    def __post_init__(self):
        if self.sock is not None:
            self.sock.settimeout(self.timeout)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def destination(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def is_connected(self) -> bool:
        return self.sock is not None

    @property
    def idle_time(self) -> float:
        """Seconds since the last send or receive."""
        return time.time() - self.last_activity

    def outstanding(self) -> int:
        """Number of responses still expected on this connection."""
        return len(self._outstanding)

    # =========================================================================
    # CONNECTING
    # =========================================================================

    def connect(self) -> None:
        """
        Open the TCP connection if it is not open yet.

        Blocks for at most `timeout` seconds.

        Raises:
            TransportError: Name resolution or connect failed.
        """
        if self.sock is not None:
            return

        try:
            self.sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        except OSError as e:
            raise TransportError(f"Connect failed: {e}", self.destination) from e

        self.last_activity = time.time()
        logger.debug(f"[{self.id}] Connected to {self.destination}")

    def _discard_if_stale(self) -> None:
        """
        Drop a socket the server already closed while we were idle.

        Keep-alive servers close idle connections on their own schedule.
        Noticing that before sending avoids losing the next request.
        """
        if self.sock is None or self._outstanding or not self._data_waiting():
            return

        try:
            data = self.sock.recv(self.buffer_size)
        except OSError:
            data = b""

        if data:
            logger.warning(f"[{self.id}] Discarding {len(data)} unsolicited bytes from {self.destination}")
        else:
            logger.debug(
                f"[{self.id}] Server closed connection after {self.idle_time:.1f}s idle, reconnecting"
            )
            self.close()

    # =========================================================================
    # SENDING REQUESTS
    # =========================================================================

    def request(
        self,
        method: str,
        path: str,
        headers: Optional[Headers] = None,
        body: Optional[Union[bytes, str]] = None,
        version: str = "HTTP/1.1",
    ) -> None:
        """
        Send a complete request in one call.

        Content-Length is added when a body is given and the caller did
        not set one. Headers are checked before anything is composed, so a
        rejected header leaves the connection ready for the next request.
        """
        if isinstance(body, str):
            body = body.encode("utf-8")

        if headers is None:
            items = []
        elif isinstance(headers, Mapping):
            items = list(headers.items())
        else:
            items = list(headers)

        for name, value in items:
            validate_header(name, value)

        has_length = any(name.lower() == "content-length" for name, _ in items)

        self.begin_request(method, path, version)
        try:
            for name, value in items:
                self.add_header(name, value)
            if body is not None and not has_length:
                self.add_header("Content-Length", len(body))
        except UsageError:
            self._abandon_request()
            raise
        self.finalize_headers()

        if body:
            self.send_body(body)

    def send_request(self, request: HTTPRequest) -> None:
        """Send an HTTPRequest (see request())."""
        self.request(request.method, request.path, request.headers, request.body, request.version)

    def begin_request(self, method: str, path: str, version: str = "HTTP/1.1") -> None:
        """
        Start composing a request, connecting first if necessary.

        Raises:
            UsageError: Another request is still being composed.
            TransportError: Connecting failed.
        """
        if self.state is ConnectionState.REQUEST_STARTED:
            raise UsageError("begin_request() called while another request is being composed")

        self._discard_if_stale()
        self.connect()

        self._method = method.upper()
        self._lines = [f"{self._method} {path} {version}"]
        self.state = ConnectionState.REQUEST_STARTED

        # IPv6 literals are bracketed in Host, like in URLs
        host = f"[{self.host}]" if ":" in self.host else self.host
        if self.port != 80:
            host = f"{host}:{self.port}"
        self.add_header("Host", host)
        self.add_header("Accept-Encoding", "identity")

    def _abandon_request(self) -> None:
        """Discard a half-composed request; earlier requests stay outstanding."""
        self._lines = []
        self.state = ConnectionState.REQUEST_SENT if self._outstanding else ConnectionState.IDLE

    def add_header(self, name: str, value: HeaderValue) -> None:
        """
        Add a header to the request being composed.

        Raises:
            UsageError: No request started, or the header is malformed.
        """
        if self.state is not ConnectionState.REQUEST_STARTED:
            raise UsageError("add_header() called without begin_request()")

        text = validate_header(name, value)
        self._lines.append(f"{name}: {text}")

    def finalize_headers(self) -> None:
        """
        Put the request line and headers on the wire.

        A response for this request is queued in the FIFO.

        Raises:
            UsageError: No request started.
            TransportError: Sending failed (the connection is closed).
        """
        if self.state is not ConnectionState.REQUEST_STARTED:
            raise UsageError("finalize_headers() called without begin_request()")

        head = "\r\n".join(self._lines) + "\r\n\r\n"
        self._lines = []
        self.state = ConnectionState.REQUEST_SENT

        self._send(head.encode("utf-8"))

        self._outstanding.append(
            HTTPResponse(self._method, self.callbacks, destination=self.destination)
        )
        self.requests_sent += 1

    def send_body(self, data: Union[bytes, str]) -> None:
        """
        Send (part of) the request body.

        Raises:
            UsageError: Headers not finalized yet.
            TransportError: Sending failed (the connection is closed).
        """
        if self.state is not ConnectionState.REQUEST_SENT:
            raise UsageError("send_body() called before finalize_headers()")

        if isinstance(data, str):
            data = data.encode("utf-8")
        self._send(data)

    def _send(self, data: bytes) -> None:
        try:
            # sendall() blocks until ALL data is sent, bounded by the timeout
            self.sock.sendall(data)
        except OSError as e:
            self.close()
            raise TransportError(f"Send failed: {e}", self.destination) from e
        self.last_activity = time.time()

    # =========================================================================
    # RECEIVING RESPONSES
    # =========================================================================

    def pump(self) -> int:
        """
        Process whatever response bytes are waiting, without blocking.

        ┌─────────────────────────────────────────────────────────────────┐
        │                        pump() Flow                               │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │   while responses outstanding and select() says readable:       │
        │       data = recv()                                              │
        │       EOF?  → head.notify_connection_closed(), close()          │
        │       else  → feed data through the FIFO, popping completed     │
        │               responses; close on will_close / framing lost     │
        │                                                                  │
        └─────────────────────────────────────────────────────────────────┘

        Returns:
            Number of bytes received (0 when nothing was pending).

        Raises:
            TransportError: recv() failed (the connection is closed).
        """
        processed = 0

        while self._outstanding and self.sock is not None:
            if not self._data_waiting():
                break

            try:
                data = self.sock.recv(self.buffer_size)
            except BlockingIOError:
                break
            except OSError as e:
                self.close()
                raise TransportError(f"Receive failed: {e}", self.destination) from e

            if not data:
                self._handle_peer_closed()
                break

            processed += len(data)
            self.last_activity = time.time()
            self._dispatch(data)

        return processed

    def _data_waiting(self) -> bool:
        try:
            readable, _, _ = select.select([self.sock], [], [], 0)
        except (OSError, ValueError):
            return False
        return bool(readable)

    def _dispatch(self, data: bytes) -> None:
        """Feed received bytes to outstanding responses, in order."""
        offset = 0

        while offset < len(data) and self._outstanding:
            response = self._outstanding[0]
            used = response.feed(data[offset:])
            offset += used

            if not response.completed:
                break

            self._outstanding.popleft()

            if response.framing_lost or response.will_close:
                logger.debug(
                    f"[{self.id}] Closing after response "
                    f"(will_close={response.will_close}, framing_lost={response.framing_lost})"
                )
                self.close()
                return

        if offset < len(data):
            logger.warning(
                f"[{self.id}] Discarding {len(data) - offset} unexpected bytes from {self.destination}"
            )

    def _handle_peer_closed(self) -> None:
        logger.debug(f"[{self.id}] Server closed the connection")
        head = self._outstanding.popleft()
        head.notify_connection_closed()
        self.close()

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self) -> None:
        """
        Close the socket and fail every unfinished response.

        Safe to call repeatedly. The next begin_request() reconnects.
        """
        sock, self.sock = self.sock, None
        self.state = ConnectionState.IDLE
        self._lines = []

        if sock is not None:
            try:
                sock.close()
            except OSError:
                pass
            logger.debug(f"[{self.id}] Closed connection to {self.destination} after {self.requests_sent} requests")

        # Clear first so callbacks observe outstanding() == 0
        pending = list(self._outstanding)
        self._outstanding.clear()
        for response in pending:
            response.abort(ConnectionClosedError(
                "Connection closed with the response outstanding", self.destination
            ))

    # =========================================================================
    # CONTEXT MANAGER
    # =========================================================================

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
