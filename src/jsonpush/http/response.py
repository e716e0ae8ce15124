"""
=============================================================================
INCREMENTAL HTTP RESPONSE PARSER
=============================================================================

Parses the bytes of ONE HTTP/1.x response as they trickle in from a socket.
Implements the message framing rules of RFC 7230 for the client side.

=============================================================================
WHY INCREMENTAL?
=============================================================================

TCP is a byte stream. A single response might arrive in one recv() call,
or be split anywhere, even in the middle of "\r\n":

    recv() → b"HTTP/1.1 200 OK\r\nContent-Le"
    recv() → b"ngth: 5\r\n\r"
    recv() → b"\nhel"
    recv() → b"lo"

Instead of buffering until "everything" has arrived (we often cannot know
when that is), the parser is a STATE MACHINE. Each call to feed() advances
it as far as the given bytes allow and remembers where it stopped.

=============================================================================
STATE MACHINE
=============================================================================

    ┌─────────────┐   CRLF    ┌──────────┐  blank line
    │ STATUS_LINE │ ────────► │ HEADERS  │ ─────────────┬──────────────────┐
    └─────────────┘           └──────────┘              │                  │
           ▲                        │                   │ fixed length /   │ chunked
           │  "100 Continue"        │                   │ until close      │
           └────────────────────────┘                   ▼                  ▼
                                                  ┌──────────┐      ┌───────────┐
                                                  │   BODY   │      │ CHUNK_LEN │◄──┐
                                                  └──────────┘      └───────────┘   │
                                                        │             │       │      │
                                           length done  │     size 0  │       │ >0   │
                                           or conn      │             ▼       ▼      │
                                           closed       │     ┌──────────┐ ┌──────┐  │
                                                        │     │ TRAILERS │ │ BODY │  │
                                                        │     └──────────┘ └──────┘  │
                                                        │             │       │      │
                                                        ▼  blank line │       ▼      │
                                                  ┌──────────┐        │  ┌───────────┐
                                                  │ COMPLETE │◄───────┘  │ CHUNK_END │
                                                  └──────────┘           └───────────┘

=============================================================================
BODY FRAMING (how do we know where the body ends?)
=============================================================================

    ┌───────────────────────────────┬──────────────────────────────────────┐
    │ Headers                       │ Body ends...                          │
    ├───────────────────────────────┼──────────────────────────────────────┤
    │ Transfer-Encoding: chunked    │ after the zero-length chunk+trailers │
    │ Content-Length: N             │ after exactly N bytes                 │
    │ (neither)                     │ when the server closes the socket    │
    │ HEAD / 204 / 304 / 1xx        │ immediately, there is no body        │
    └───────────────────────────────┴──────────────────────────────────────┘

Chunked bodies look like this on the wire:

    1a\r\n                        ← chunk size in HEX (26 bytes)
    abcdefghijklmnopqrstuvwxyz\r\n
    5\r\n
    hello\r\n
    0\r\n                         ← last chunk
    X-Checksum: 1234\r\n          ← optional trailer headers
    \r\n                          ← end of message

=============================================================================
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from ..errors import ConnectionClosedError, JSONPushError, ProtocolViolation


class ResponseState(Enum):
    """Where the parser is inside the response."""
    STATUS_LINE = "status_line"  # Waiting for "HTTP/1.1 200 OK"
    HEADERS = "headers"          # Reading "Name: value" lines
    BODY = "body"                # Forwarding body bytes (whole body or one chunk)
    CHUNK_LEN = "chunk_len"      # Expecting a hex chunk size line
    CHUNK_END = "chunk_end"      # Expecting the CRLF after a chunk
    TRAILERS = "trailers"        # Reading headers after the last chunk
    COMPLETE = "complete"        # Done, feed() consumes nothing more


class BodyMode(Enum):
    """How the end of the body is detected."""
    FIXED = "fixed"              # Content-Length
    CHUNKED = "chunked"          # Transfer-Encoding: chunked
    UNTIL_CLOSE = "until_close"  # No length known, the server closes


@dataclass
class ResponseCallbacks:
    """
    Notification hooks for response progress.

    Bound once per Connection; every response created on that connection
    reports through the same callbacks:

        on_begin(response)              headers fully known
        on_data(response, data)         zero or more times, raw body bytes
        on_complete(response, error)    exactly once, error is None on success

    Any hook may be left as None.
    """
    on_begin: Optional[Callable[["HTTPResponse"], None]] = None
    on_data: Optional[Callable[["HTTPResponse", bytes], None]] = None
    on_complete: Optional[Callable[["HTTPResponse", Optional[JSONPushError]], None]] = None

    def begin(self, response: "HTTPResponse") -> None:
        if self.on_begin is not None:
            self.on_begin(response)

    def data(self, response: "HTTPResponse", data: bytes) -> None:
        if self.on_data is not None:
            self.on_data(response, data)

    def complete(self, response: "HTTPResponse", error: Optional[JSONPushError]) -> None:
        if self.on_complete is not None:
            self.on_complete(response, error)


class HTTPResponse:
    """
    One HTTP response, parsed incrementally.

    Responses are created by Connection.finalize_headers(), one per request,
    and queued in the connection's FIFO. The connection feeds socket bytes
    to the head of that FIFO until it completes.

    Usage:

        response = HTTPResponse("GET", ResponseCallbacks(on_data=collect))
        while not response.completed:
            used = response.feed(chunk)     # may use fewer bytes than given
            chunk = chunk[used:] or recv()  # leftovers belong to the NEXT response

    Attributes:
        method:         Method of the request this answers (HEAD has no body).
        state:          Current ResponseState.
        version:        Version string from the status line ("HTTP/1.1").
        version_info:   (major, minor) tuple.
        status:         Status code (0 until the status line is parsed).
        reason:         Reason phrase.
        headers:        Header map, names lowercased, last value wins.
        body_mode:      BodyMode, decided when the headers end.
        content_length: Declared length, or None.
        bytes_read:     Body bytes forwarded so far.
        chunk_left:     Bytes left in the current chunk.
        will_close:     The server will close the connection after this response.
        error:          The failure the response completed with, or None.
        framing_lost:   The byte stream can no longer be trusted after a
                        violation; the connection must be closed.
    """

    # HTTP-Version SP Status-Code [SP Reason-Phrase]
    STATUS_LINE_PATTERN = re.compile(r"^(HTTP/(\d+)\.(\d+))\s+(\d{3})(?:\s+(.*))?$")

    # 1*HEXDIG, nothing else (no sign, prefix or underscores)
    CHUNK_SIZE_PATTERN = re.compile(r"[0-9A-Fa-f]+")

    # Statuses that never carry a body (RFC 7230 section 3.3.3)
    NO_BODY_STATUSES = frozenset({204, 304})

    CONTINUE = 100

    def __init__(
        self,
        method: str = "GET",
        callbacks: Optional[ResponseCallbacks] = None,
        destination: str = "",
        max_line_size: int = 64 * 1024,
    ):
        self.method = method.upper()
        self.callbacks = callbacks or ResponseCallbacks()
        self.destination = destination
        self.max_line_size = max_line_size

        self.state = ResponseState.STATUS_LINE

        # Status line
        self.version = ""
        self.version_info: Tuple[int, int] = (1, 1)
        self.status = 0
        self.reason = ""

        # Headers (and trailers, merged in)
        self.headers: Dict[str, str] = {}

        # Body bookkeeping
        self.body_mode: Optional[BodyMode] = None
        self.content_length: Optional[int] = None
        self.bytes_read = 0
        self.chunk_left = 0
        self.will_close = False

        # Failure reporting
        self.error: Optional[JSONPushError] = None
        self.framing_lost = False

        self._line = bytearray()             # Partial line for line-based states
        self._header_accum: Optional[str] = None  # Header being folded
        self._received_any = False

    def __repr__(self) -> str:
        return (
            f"HTTPResponse(method={self.method!r}, status={self.status}, "
            f"state={self.state.value}, bytes_read={self.bytes_read})"
        )

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def completed(self) -> bool:
        return self.state is ResponseState.COMPLETE

    @property
    def ok(self) -> bool:
        """Completed without error and with a 2xx status."""
        return self.completed and self.error is None and 200 <= self.status < 300

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)

    # =========================================================================
    # FEEDING BYTES
    # =========================================================================

    def feed(self, data: bytes) -> int:
        """
        Consume as many bytes as this response needs.

        Args:
            data: Raw bytes from the socket.

        Returns:
            Number of bytes consumed. Less than len(data) when the response
            completed part way through (the rest belongs to the next
            response on the connection). Always 0 once COMPLETE.
        """
        if self.completed or not data:
            return 0

        data = bytes(data)
        self._received_any = True
        pos = 0
        size = len(data)

        while pos < size and not self.completed:
            if self.state is ResponseState.BODY:
                pos += self._consume_body(data, pos)
            else:
                pos = self._consume_line(data, pos)

        return pos

    def _consume_line(self, data: bytes, pos: int) -> int:
        """Accumulate up to the next LF; process the line if one completed."""
        newline = data.find(b"\n", pos)
        end = len(data) if newline == -1 else newline

        self._line += data[pos:end]
        if len(self._line) > self.max_line_size:
            self._abort_framing(
                ProtocolViolation(f"Line exceeds {self.max_line_size} bytes")
            )
            return len(data) if newline == -1 else newline + 1

        if newline == -1:
            return len(data)

        # CR is optional: accept bare LF line endings
        line = bytes(self._line).rstrip(b"\r").decode("latin-1")
        self._line.clear()

        self._process_line(line)
        return newline + 1

    def _process_line(self, line: str) -> None:
        if self.state is ResponseState.STATUS_LINE:
            # Tolerate stray blank lines between pipelined responses
            if line:
                self._process_status_line(line)
        elif self.state is ResponseState.HEADERS:
            self._process_header_line(line)
        elif self.state is ResponseState.CHUNK_LEN:
            self._process_chunk_len_line(line)
        elif self.state is ResponseState.CHUNK_END:
            if line:
                self._abort_framing(
                    ProtocolViolation(f"Expected CRLF after chunk, got {line[:40]!r}")
                )
            else:
                self.state = ResponseState.CHUNK_LEN
        elif self.state is ResponseState.TRAILERS:
            self._process_trailer_line(line)

    # =========================================================================
    # STATUS LINE AND HEADERS
    # =========================================================================

    def _process_status_line(self, line: str) -> None:
        """
        Parse "HTTP/1.1 200 OK".

        A malformed status line aborts this response, but parsing carries
        on through the headers and body: framing comes from the headers, so
        the bytes of the NEXT response can still be found.
        """
        match = self.STATUS_LINE_PATTERN.match(line.strip())
        if not match:
            self.error = ProtocolViolation(f"Malformed status line: {line[:80]!r}")
        else:
            version, major, minor, status, reason = match.groups()
            self.version = version
            self.version_info = (int(major), int(minor))
            self.status = int(status)
            self.reason = reason or ""

            if self.version_info[0] != 1:
                self.error = ProtocolViolation(f"Unsupported protocol version: {version}")

        self.state = ResponseState.HEADERS
        self._header_accum = None

    def _process_header_line(self, line: str) -> None:
        if not line:
            self._flush_header()

            # ─────────────────────────────────────────────────────────────
            # 100 Continue is an interim response: skip it and expect the
            # real status line next.
            # ─────────────────────────────────────────────────────────────
            if self.status == self.CONTINUE and self.error is None:
                self.headers.clear()
                self.status = 0
                self.reason = ""
                self.state = ResponseState.STATUS_LINE
                return

            self._begin_body()
            return

        self._accumulate_header(line)

    def _process_trailer_line(self, line: str) -> None:
        if not line:
            self._flush_header()
            self._finish()
            return
        self._accumulate_header(line)

    def _accumulate_header(self, line: str) -> None:
        # ─────────────────────────────────────────────────────────────────
        # Obsolete line folding: a line starting with whitespace continues
        # the previous header value.
        #
        #   X-Long: first part\r\n
        #       second part\r\n      → "first part second part"
        # ─────────────────────────────────────────────────────────────────
        if line[0] in (" ", "\t"):
            if self._header_accum is not None:
                self._header_accum += " " + line.strip()
            return

        self._flush_header()
        self._header_accum = line

    def _flush_header(self) -> None:
        if self._header_accum is None:
            return

        name, separator, value = self._header_accum.partition(":")
        self._header_accum = None
        if not separator:
            return  # Not "Name: value", skip (lenient parsing)

        self.headers[name.strip().lower()] = value.strip()

    def _begin_body(self) -> None:
        """
        Headers are complete: decide body framing and notify on_begin.

        Order of precedence (RFC 7230 section 3.3.3):
            1. Responses that never have a body
            2. Transfer-Encoding: chunked
            3. Content-Length
            4. Read until the server closes the connection
        """
        transfer_encoding = self.get_header("transfer-encoding", "")
        codings = [c.strip().lower() for c in transfer_encoding.split(",") if c.strip()]
        chunked = bool(codings) and codings[-1] == "chunked"

        length: Optional[int] = None
        content_length = self.get_header("content-length")
        if not chunked and content_length is not None and content_length.strip().isdigit():
            length = int(content_length.strip())

        if (
            self.method == "HEAD"
            or self.status in self.NO_BODY_STATUSES
            or 100 <= self.status < 200
        ):
            chunked = False
            length = 0

        if chunked:
            self.body_mode = BodyMode.CHUNKED
        elif length is not None:
            self.body_mode = BodyMode.FIXED
        else:
            self.body_mode = BodyMode.UNTIL_CLOSE

        self.content_length = length
        self.will_close = self._check_close()

        self.callbacks.begin(self)

        if self.body_mode is BodyMode.CHUNKED:
            self.state = ResponseState.CHUNK_LEN
        else:
            self.state = ResponseState.BODY
            if length == 0:
                self._finish()

    def _check_close(self) -> bool:
        """
        Will the server close the connection after this response?

            HTTP/1.1:   only with "Connection: close"
            HTTP/1.0:   unless "Connection: keep-alive"
        """
        tokens = {
            token.strip().lower()
            for token in self.get_header("connection", "").split(",")
        }

        if "close" in tokens:
            return True

        if self.version_info < (1, 1):
            return "keep-alive" not in tokens

        return False

    # =========================================================================
    # BODY
    # =========================================================================

    def _consume_body(self, data: bytes, pos: int) -> int:
        available = len(data) - pos

        if self.body_mode is BodyMode.CHUNKED:
            count = min(available, self.chunk_left)
        elif self.body_mode is BodyMode.FIXED:
            count = min(available, self.content_length - self.bytes_read)
        else:
            count = available

        if count:
            self.callbacks.data(self, data[pos:pos + count])
        self.bytes_read += count

        if self.body_mode is BodyMode.CHUNKED:
            self.chunk_left -= count
            if self.chunk_left == 0:
                # Chunk done, soak up its trailing CRLF next
                self.state = ResponseState.CHUNK_END
        elif self.body_mode is BodyMode.FIXED and self.bytes_read == self.content_length:
            self._finish()

        return count

    def _process_chunk_len_line(self, line: str) -> None:
        # "1a;name=value" - chunk extensions are ignored
        size_text = line.split(";", 1)[0].strip()
        if not self.CHUNK_SIZE_PATTERN.fullmatch(size_text):
            self._abort_framing(ProtocolViolation(f"Invalid chunk length: {line[:40]!r}"))
            return

        size = int(size_text, 16)

        if size == 0:
            self.state = ResponseState.TRAILERS
            self._header_accum = None
        else:
            self.chunk_left = size
            self.state = ResponseState.BODY

    # =========================================================================
    # COMPLETION
    # =========================================================================

    def notify_connection_closed(self) -> None:
        """
        The server closed the connection (EOF on the socket).

        For read-until-close bodies this IS the end of the response.
        Anywhere else it means the response was cut short.
        """
        if self.completed:
            return

        if self.state is ResponseState.BODY and self.body_mode is BodyMode.UNTIL_CLOSE:
            self._finish()
        elif not self._received_any:
            self._finish(ConnectionClosedError(
                "Connection closed before the response arrived", self.destination
            ))
        else:
            self.framing_lost = True
            self._finish(ProtocolViolation(
                f"Connection closed unexpectedly ({self.state.value}, "
                f"{self.bytes_read} body bytes read)"
            ))

    def abort(self, error: JSONPushError) -> None:
        """Complete the response with an error (no-op once COMPLETE)."""
        self._finish(error)

    def _abort_framing(self, error: ProtocolViolation) -> None:
        self.framing_lost = True
        self._finish(error)

    def _finish(self, error: Optional[JSONPushError] = None) -> None:
        if self.completed:
            return

        self.state = ResponseState.COMPLETE
        if error is not None and self.error is None:
            self.error = error

        self.callbacks.complete(self, self.error)
