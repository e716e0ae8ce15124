"""
=============================================================================
OUTGOING HTTP REQUEST
=============================================================================

The client only ever sends one shape of request:

    ┌─ REQUEST LINE ────────────────────────────────────────────────────┐
    │    POST /ingest?source=game HTTP/1.1\r\n                           │
    ├─ HEADERS ─────────────────────────────────────────────────────────┤
    │    Host: collector.local:8080\r\n           ← added by Connection   │
    │    Accept-Encoding: identity\r\n            ← added by Connection   │
    │    Accept: application/json\r\n                                    │
    │    Content-Type: application/json\r\n                              │
    │    charset: utf-8\r\n                                              │
    │    Content-Length: 17\r\n                   ← computed from body    │
    ├─ EMPTY LINE ──────────────────────────────────────────────────────┤
    │    \r\n                                                            │
    ├─ BODY ────────────────────────────────────────────────────────────┤
    │    {"kills": 12}                                                   │
    └───────────────────────────────────────────────────────────────────┘

HTTPRequest is an immutable description of that message. Connection turns
it into bytes through begin_request / add_header / finalize_headers /
send_body.

=============================================================================
SECURITY: HEADER INJECTION
=============================================================================

A header value containing "\r\n" would let a caller smuggle extra headers
(or a whole second request) onto the wire:

    add_header("X-Tag", "a\r\nContent-Length: 0")

validate_header() rejects CR, LF and NUL in names and values.
=============================================================================
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple, Union

from ..errors import UsageError
from .url import ParsedURL


HeaderValue = Union[str, int]

# Headers attached to every JSON post
JSON_HEADERS: Tuple[Tuple[str, str], ...] = (
    ("Accept", "application/json"),
    ("Content-Type", "application/json"),
    ("charset", "utf-8"),
)

_FORBIDDEN = ("\r", "\n", "\0")


def validate_header(name: str, value: HeaderValue) -> str:
    """
    Check a header for injection and return the value as a string.

    Raises:
        UsageError: Empty name, ':' in the name, or CR/LF/NUL anywhere.
    """
    if not name or ":" in name or name != name.strip():
        raise UsageError(f"Invalid header name: {name!r}")

    text = str(value)
    for char in _FORBIDDEN:
        if char in name or char in text:
            raise UsageError(f"Invalid character in header {name!r}")
    return text


@dataclass(frozen=True)
class HTTPRequest:
    """
    Immutable HTTP request.

    Attributes:
        method: HTTP method (POST for everything jsonpush sends)
        path: Origin-form request target ("/ingest?x=1")
        headers: (name, value) pairs in send order
        body: Raw body bytes, None for no body
        version: Protocol written on the request line
    """
    method: str
    path: str
    headers: Tuple[Tuple[str, str], ...] = ()
    body: Optional[bytes] = None
    version: str = "HTTP/1.1"

    def __post_init__(self):
        for name, value in self.headers:
            validate_header(name, value)

    @classmethod
    def json_post(
        cls,
        url: ParsedURL,
        payload: bytes,
        headers: Iterable[Tuple[str, str]] = JSON_HEADERS,
    ) -> "HTTPRequest":
        """Build the POST that delivers a serialized JSON document to url."""
        return cls(
            method="POST",
            path=url.target,
            headers=tuple(headers),
            body=payload,
        )

    @property
    def request_line(self) -> str:
        return f"{self.method} {self.path} {self.version}"

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive header lookup (first match)."""
        name = name.lower()
        for header_name, value in self.headers:
            if header_name.lower() == name:
                return value
        return default

    def __repr__(self) -> str:
        size = len(self.body) if self.body is not None else 0
        return f"HTTPRequest({self.method} {self.path}, body={size} bytes)"
