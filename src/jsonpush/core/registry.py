"""
=============================================================================
CONNECTION REGISTRY
=============================================================================

Keeps one pooled Connection per destination ("http://host:port") so that
repeated posts to the same collector reuse a keep-alive socket.

=============================================================================
LOCKING
=============================================================================

Two kinds of locks, never held in a blocking order that could deadlock:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  registry lock   guards the dict only; held for a lookup/insert     │
    │                  and NEVER while doing socket I/O                   │
    │                                                                      │
    │  entry lock      one per PooledConnection; guards its socket        │
    │                  post worker: held while sending                    │
    │                  pump worker: held while pumping                    │
    └─────────────────────────────────────────────────────────────────────┘

    post worker:  get_or_create() ─► release registry ─► with entry.lock: send
    pump worker:  snapshot()      ─► release registry ─► with entry.lock: pump
    eviction:     registry lock   ─► entry.lock.acquire(blocking=False)

Eviction only TRIES the entry lock, so it can never wait on a worker that
is itself waiting for the registry.

=============================================================================
IDLE EVICTION
=============================================================================

An entry is evicted when ALL of these hold:

    1. it has not been used for longer than max_idle seconds
    2. its lock is free right now
    3. no responses are outstanding on it

Evicted entries are flagged so that a post worker which looked the entry up
just before eviction notices and looks it up again.
=============================================================================
"""

import threading
import time
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .connection import Connection


logger = logging.getLogger(__name__)


ConnectionFactory = Callable[[str, int], Connection]


@dataclass
class PooledConnection:
    """A Connection plus the bookkeeping the registry needs."""
    key: str
    connection: Connection
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    last_used: float = field(default_factory=time.monotonic)
    evicted: bool = False

    def touch(self, now: Optional[float] = None) -> None:
        self.last_used = time.monotonic() if now is None else now

    def idle_for(self, now: Optional[float] = None) -> float:
        return (time.monotonic() if now is None else now) - self.last_used


class ConnectionRegistry:
    """
    Thread-safe map from destination key to PooledConnection.

    Example:
        registry = ConnectionRegistry(lambda host, port: Connection(host, port))
        entry = registry.get_or_create("http://example.com:80", "example.com", 80)
        with entry.lock:
            entry.connection.request("POST", "/", body=b"{}")
    """

    def __init__(self, factory: ConnectionFactory = Connection):
        self._factory = factory
        self._entries: Dict[str, PooledConnection] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def get_or_create(self, key: str, host: str, port: int) -> PooledConnection:
        """
        Return the entry for key, creating its Connection on first use.

        No socket is opened here; the connection dials out lazily on its
        first request.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = PooledConnection(key, self._factory(host, port))
                self._entries[key] = entry
                logger.debug(f"New connection entry for {key}")
            entry.touch()
            return entry

    def snapshot(self) -> List[PooledConnection]:
        """Copy of the current entries, safe to iterate without the lock."""
        with self._lock:
            return list(self._entries.values())

    def evict_idle(self, max_idle: float, now: Optional[float] = None) -> int:
        """
        Close and remove entries idle for longer than max_idle seconds.

        Returns:
            Number of entries evicted.
        """
        if now is None:
            now = time.monotonic()

        evicted = 0
        with self._lock:
            for key, entry in list(self._entries.items()):
                if entry.idle_for(now) <= max_idle:
                    continue
                if not entry.lock.acquire(blocking=False):
                    continue  # Busy, try again next sweep
                try:
                    if entry.connection.outstanding():
                        continue
                    entry.evicted = True
                    entry.connection.close()
                    del self._entries[key]
                    evicted += 1
                finally:
                    entry.lock.release()

        if evicted:
            logger.debug(f"Evicted {evicted} idle connection(s)")
        return evicted

    def close_all(self) -> None:
        """Close every connection and empty the registry."""
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()

        for entry in entries:
            with entry.lock:
                entry.evicted = True
                entry.connection.close()
