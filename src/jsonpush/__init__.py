"""
=============================================================================
JSONPUSH - Best-effort background JSON posts over HTTP/1.x
=============================================================================

A small client library for shipping JSON documents (metrics, events, game
statistics) to HTTP collectors without ever blocking the caller.

=============================================================================
PROJECT OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                       JSONPUSH ARCHITECTURE                         │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   bindings.py      post_json / to_json_string / timestamp          │
    │        │                                                             │
    │        ▼                                                             │
    │   dispatcher.py    work queue + post worker + pump worker           │
    │        │                                                             │
    │        ▼                                                             │
    │   core/registry    one pooled keep-alive connection per host:port   │
    │        │                                                             │
    │        ▼                                                             │
    │   core/connection  request composition, pipelining, non-blocking    │
    │        │           response pump                                    │
    │        ▼                                                             │
    │   http/response    incremental HTTP/1.x response parser             │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
QUICK START
=============================================================================

    from jsonpush import Dispatcher, DispatcherConfig

    with Dispatcher(DispatcherConfig(timeout=2.0)) as dispatcher:
        dispatcher.enqueue("http://localhost:8080/events", {"kills": 12})

Or from the shell:

    python -m jsonpush http://localhost:8080/events '{"kills": 12}'

=============================================================================
DELIVERY GUARANTEES
=============================================================================

None. Posts are attempted once; failures are logged and dropped. Use this
for telemetry that may be lost, never for data that must arrive.

=============================================================================
"""

__version__ = "1.0.0"

from .config import DispatcherConfig
from .dispatcher import Dispatcher
from .bindings import HostBindings, current_timestamp_iso8601
from .errors import (
    ConnectionClosedError,
    JSONPushError,
    ProtocolViolation,
    TransportError,
    UsageError,
)
from .values import to_json_string, to_json_value

__all__ = [
    "Dispatcher",
    "DispatcherConfig",
    "HostBindings",
    "current_timestamp_iso8601",
    "to_json_string",
    "to_json_value",
    "JSONPushError",
    "UsageError",
    "TransportError",
    "ConnectionClosedError",
    "ProtocolViolation",
    "__version__",
]
