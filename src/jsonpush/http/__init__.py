"""
=============================================================================
HTTP MODULE - Client-side HTTP/1.x message handling
=============================================================================

    ┌─────────────────┬───────────────────────────────────────────────────┐
    │  url.py         │ Split "http://host:port/path?query"               │
    │  request.py     │ Immutable outgoing request, header validation     │
    │  response.py    │ Incremental response parser (state machine)       │
    └─────────────────┴───────────────────────────────────────────────────┘

Nothing in here touches a socket. The parser only ever sees the bytes it
is fed, which keeps it testable with plain byte strings.

=============================================================================
IMPORTS AND EXPORTS
=============================================================================
"""

from .url import ParsedURL, URLParseError, parse_url
from .request import HTTPRequest, JSON_HEADERS
from .response import BodyMode, HTTPResponse, ResponseCallbacks, ResponseState

__all__ = [
    "ParsedURL",          # Scheme, host, port, path, query
    "URLParseError",      # Raised for URLs that cannot be split
    "parse_url",          # str → ParsedURL
    "HTTPRequest",        # Outgoing request description
    "JSON_HEADERS",       # Headers sent with every JSON post
    "HTTPResponse",       # Incremental response parser
    "ResponseCallbacks",  # on_begin / on_data / on_complete hooks
    "ResponseState",      # Parser state machine states
    "BodyMode",           # How the body end is detected
]
