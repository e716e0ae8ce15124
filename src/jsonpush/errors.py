"""
=============================================================================
ERROR KINDS
=============================================================================

Every failure jsonpush can report belongs to one of three families:

    ┌──────────────────────┬──────────────────────────────────────────────┐
    │  Kind                │ Where it surfaces                            │
    ├──────────────────────┼──────────────────────────────────────────────┤
    │  UsageError          │ Raised synchronously to the caller           │
    │                      │ (bad arguments, wrong composition order)     │
    │  TransportError      │ Caught in the post worker, logged, dropped   │
    │                      │ (resolve / connect / send / recv failures)   │
    │  ProtocolViolation   │ Delivered to the affected response only      │
    │                      │ (bad status line, bad chunk length, ...)     │
    └──────────────────────┴──────────────────────────────────────────────┘

There is no "fatal" kind. An unreachable collector degrades into repeated
warnings in the log; it never takes the host process down.
=============================================================================
"""

from typing import Optional


class JSONPushError(Exception):
    """Base class for everything jsonpush raises."""


class UsageError(JSONPushError):
    """
    Raised when the library is called the wrong way.

    Examples: wrong number of arguments to a host binding, adding a header
    before a request was begun, enqueueing on a dispatcher that was shut down.
    """


class TransportError(JSONPushError):
    """
    Raised when the socket layer fails.

    Carries the destination ("host:port") so the post worker can log
    where the failure happened without keeping extra context around.
    """

    def __init__(self, message: str, destination: Optional[str] = None):
        super().__init__(message)
        self.destination = destination

    def __str__(self) -> str:
        message = super().__str__()
        if self.destination:
            return f"{self.destination}: {message}"
        return message


class ConnectionClosedError(TransportError):
    """
    The connection went away while a response was still expected.

    Outstanding responses receive this through their completion callback
    when their connection is force-closed.
    """


class ProtocolViolation(JSONPushError):
    """
    The peer sent bytes that are not valid HTTP/1.x.

    Only the response being parsed is aborted. Whether the connection
    survives depends on whether framing could be kept (see
    ``HTTPResponse.framing_lost``).
    """
