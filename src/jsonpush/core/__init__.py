"""
=============================================================================
CORE MODULE - Sockets and connection pooling
=============================================================================

    ┌─────────────────┬───────────────────────────────────────────────────┐
    │  connection.py  │ One keep-alive client socket, pipelined requests  │
    │  registry.py    │ Thread-safe pool: one Connection per destination  │
    └─────────────────┴───────────────────────────────────────────────────┘

=============================================================================
IMPORTS AND EXPORTS
=============================================================================
"""

from .connection import Connection, ConnectionState
from .registry import ConnectionRegistry, PooledConnection

__all__ = [
    "Connection",          # Client socket wrapper - request/pump/close
    "ConnectionState",     # Request composition states
    "ConnectionRegistry",  # destination key → PooledConnection
    "PooledConnection",    # Connection + lock + last_used
]
