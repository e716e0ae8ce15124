"""
=============================================================================
BACKGROUND POST DISPATCHER
=============================================================================

Fire-and-forget delivery of JSON documents to HTTP collectors. Callers
enqueue and return immediately; two background threads do the rest.

=============================================================================
ARCHITECTURE
=============================================================================

    ┌──────────────┐  enqueue()   ┌────────────────┐
    │ caller       │ ───────────► │  work queue    │  (Condition-guarded list)
    │ threads      │              └───────┬────────┘
    └──────────────┘                      │ swap whole batch
                                          ▼
                                 ┌──────────────────┐
                                 │   post worker    │  parse URL, serialize,
                                 │                  │  send POST under the
                                 └───────┬──────────┘  entry lock
                                         │
                                         ▼
                            ┌───────────────────────────┐
                            │    ConnectionRegistry     │
                            │  http://a:80  → Connection│
                            │  http://b:8080→ Connection│
                            └───────────────────────────┘
                                         ▲
                                         │ every pump_interval
                                 ┌───────┴──────────┐
                                 │   pump worker    │  drain responses,
                                 │                  │  evict idle entries
                                 └──────────────────┘

=============================================================================
BEST EFFORT
=============================================================================

A post is attempted once. If the URL is bad, the collector is down or the
send times out, the failure is logged with the destination and the post is
dropped. Nothing is retried, nothing is persisted, and no failure ever
reaches the caller after enqueue() returned.

=============================================================================
SHUTDOWN
=============================================================================

    1. set the termination flag (enqueue() now raises UsageError)
    2. wake the post worker; it stops between two posts
    3. join both workers
    4. close every pooled connection

Posts still queued, or left in the batch being processed, are counted as
dropped.
=============================================================================
"""

import threading
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .config import DispatcherConfig
from .core.connection import Connection
from .core.registry import ConnectionRegistry, PooledConnection
from .errors import JSONPushError, UsageError
from .http.request import HTTPRequest, JSON_HEADERS
from .http.response import HTTPResponse, ResponseCallbacks
from .http.url import ParsedURL, URLParseError, parse_url
from .values import to_json_string


logger = logging.getLogger(__name__)


@dataclass
class Post:
    """One queued delivery."""
    url: str
    value: Any


class Dispatcher:
    """
    Queues JSON posts and delivers them from background threads.

    Example:
        with Dispatcher(DispatcherConfig(timeout=2.0)) as dispatcher:
            dispatcher.enqueue("http://collector.local/events", {"kills": 12})

    Args:
        config: Dispatcher configuration (defaults if None).
        callbacks: Response hooks for every pooled connection. By default
                   completed responses are logged and counted.
    """

    SUPPORTED_SCHEMES = ("http",)

    def __init__(
        self,
        config: Optional[DispatcherConfig] = None,
        callbacks: Optional[ResponseCallbacks] = None,
    ):
        self.config = config or DispatcherConfig()
        self.config.validate()

        self.callbacks = callbacks or ResponseCallbacks(on_complete=self._on_response_complete)
        self._registry = ConnectionRegistry(self._create_connection)

        # Work queue
        self._queue: List[Post] = []
        self._queue_lock = threading.Lock()
        self._items_present = threading.Condition(self._queue_lock)
        self._enqueued = 0

        # Lifecycle
        self._terminate = threading.Event()
        self._post_thread: Optional[threading.Thread] = None
        self._pump_thread: Optional[threading.Thread] = None
        self._started = False
        self._shutdown = False

        # Counters
        self._stats_lock = threading.Lock()
        self._counters: Dict[str, int] = {
            "sent": 0,
            "failed": 0,
            "dropped": 0,
            "responses": 0,
            "response_errors": 0,
        }

    def _create_connection(self, host: str, port: int) -> Connection:
        return Connection(
            host,
            port,
            callbacks=self.callbacks,
            timeout=self.config.timeout,
            buffer_size=self.config.buffer_size,
        )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """
        Start the post and pump workers.

        Raises:
            UsageError: The dispatcher was already shut down.
        """
        if self._shutdown:
            raise UsageError("Dispatcher has been shut down and cannot be restarted")
        if self._started:
            return

        self._post_thread = threading.Thread(
            target=self._post_loop, name="jsonpush-post", daemon=True
        )
        self._pump_thread = threading.Thread(
            target=self._pump_loop, name="jsonpush-pump", daemon=True
        )
        self._post_thread.start()
        self._pump_thread.start()
        self._started = True

        logger.debug(
            f"Dispatcher started (pump_interval={self.config.pump_interval}s, "
            f"timeout={self.config.timeout}s, idle_timeout={self.config.idle_timeout})"
        )

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Stop both workers and close every pooled connection.

        Idempotent. Queued posts that were not sent yet are dropped.

        Args:
            timeout: Per-thread join timeout (None waits until they exit;
                     a post in flight is bounded by the socket timeout).
        """
        with self._items_present:
            if self._shutdown:
                return
            self._shutdown = True
            self._terminate.set()
            pending = len(self._queue)
            self._queue.clear()
            self._items_present.notify_all()

        for thread in (self._post_thread, self._pump_thread):
            if thread is not None:
                thread.join(timeout)
                if thread.is_alive():
                    logger.warning(f"Worker {thread.name} did not stop within {timeout}s")

        self._registry.close_all()

        if pending:
            self._count("dropped", pending)
            logger.warning(f"Dropped {pending} queued post(s) at shutdown")

        logger.debug("Dispatcher shut down")

    @property
    def is_running(self) -> bool:
        return self._started and not self._shutdown

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False

    # =========================================================================
    # ENQUEUE
    # =========================================================================

    def enqueue(self, url: str, value: Any) -> None:
        """
        Queue value for delivery to url and return immediately.

        Never blocks beyond acquiring the queue lock, and never reports
        delivery failures (those are logged by the post worker).

        Raises:
            UsageError: The dispatcher was shut down.
        """
        post = Post(url, value)
        with self._items_present:
            if self._shutdown:
                raise UsageError("Cannot enqueue: dispatcher has been shut down")
            self._queue.append(post)
            self._enqueued += 1
            self._items_present.notify()

    # =========================================================================
    # POST WORKER
    # =========================================================================

    def _post_loop(self) -> None:
        """
        Main loop of the post worker.

        ┌─────────────────────────────────────────────────────────────────┐
        │   while not terminated:                                          │
        │       wait until the queue is non-empty (or terminated)         │
        │       batch, queue = queue, []        ← one lock acquisition    │
        │       deliver each post OUTSIDE the lock, in order              │
        └─────────────────────────────────────────────────────────────────┘
        """
        logger.debug("Post worker started")

        while not self._terminate.is_set():
            with self._items_present:
                while not self._queue and not self._terminate.is_set():
                    self._items_present.wait()
                if self._terminate.is_set():
                    break
                batch, self._queue = self._queue, []

            self._process_batch(batch)

        logger.debug("Post worker stopped")

    def _process_batch(self, batch: List[Post]) -> None:
        self._log_debug(f"Processing batch of {len(batch)} post(s)")

        for index, post in enumerate(batch):
            if self._terminate.is_set():
                abandoned = len(batch) - index
                self._count("dropped", abandoned)
                logger.warning(f"Abandoned {abandoned} post(s) at shutdown")
                return

            try:
                error = self._deliver(post)
            except Exception as e:
                # Keep the worker alive whatever happens to one post
                logger.exception(f"Unexpected error posting to {post.url}: {e}")
                error = e

            if error is None:
                self._count("sent")
            else:
                self._count("failed")
                logger.warning(f"Error sending to {post.url}: {error}")

    def _deliver(self, post: Post) -> Optional[Exception]:
        """
        Send one post.

        Returns:
            None on success, otherwise the error that prevented sending.
        """
        try:
            url = parse_url(post.url)
        except URLParseError as e:
            return e

        if url.scheme not in self.SUPPORTED_SCHEMES:
            return UsageError(f"Unsupported scheme {url.scheme!r} (only http is supported)")

        payload = to_json_string(post.value, pretty=self.config.pretty_json)
        self._log_debug(f"Posting to {post.url}:\n{payload}")

        request = HTTPRequest.json_post(url, payload.encode("utf-8"), JSON_HEADERS)
        return self._send(url, request)

    def _send(self, url: ParsedURL, request: HTTPRequest) -> Optional[Exception]:
        while True:
            entry = self._registry.get_or_create(url.destination_key, url.host, url.port)
            with entry.lock:
                if entry.evicted:
                    continue  # Evicted between lookup and lock, look up again
                try:
                    entry.connection.send_request(request)
                except JSONPushError as e:
                    return e
                finally:
                    entry.touch()
                return None

    # =========================================================================
    # PUMP WORKER
    # =========================================================================

    def _pump_loop(self) -> None:
        logger.debug("Pump worker started")

        while not self._terminate.wait(self.config.pump_interval):
            try:
                self._pump_all()
                if self.config.idle_timeout is not None:
                    self._registry.evict_idle(self.config.idle_timeout)
            except Exception as e:
                logger.exception(f"Unexpected error in pump worker: {e}")

        logger.debug("Pump worker stopped")

    def _pump_all(self) -> None:
        for entry in self._registry.snapshot():
            if self._terminate.is_set():
                return
            self._pump_entry(entry)

    def _pump_entry(self, entry: PooledConnection) -> None:
        with entry.lock:
            if entry.evicted:
                return
            try:
                if entry.connection.pump():
                    entry.touch()
            except (JSONPushError, OSError) as e:
                logger.warning(f"Error receiving from {entry.key}: {e}")

    # =========================================================================
    # RESPONSES
    # =========================================================================

    def _on_response_complete(self, response: HTTPResponse, error: Optional[JSONPushError]) -> None:
        if error is not None:
            self._count("response_errors")
            logger.warning(f"Response from {response.destination} failed: {error}")
        elif response.status >= 400:
            self._count("response_errors")
            logger.warning(
                f"{response.destination} answered {response.status} {response.reason}"
            )
        else:
            self._count("responses")
            logger.debug(f"{response.destination} answered {response.status} {response.reason}")

    # =========================================================================
    # MONITORING
    # =========================================================================

    def _count(self, name: str, amount: int = 1) -> None:
        with self._stats_lock:
            self._counters[name] += amount

    def _log_debug(self, message: str) -> None:
        if self.config.debug:
            logger.info(message)
        else:
            logger.debug(message)

    @property
    def stats(self) -> dict:
        """
        Snapshot of the dispatcher counters.

        Example:
            {"enqueued": 10, "queued": 0, "sent": 9, "failed": 1,
             "dropped": 0, "responses": 9, "response_errors": 0,
             "connections": 2}
        """
        with self._queue_lock:
            queued = len(self._queue)
            enqueued = self._enqueued
        with self._stats_lock:
            counters = dict(self._counters)

        return {
            "enqueued": enqueued,
            "queued": queued,
            **counters,
            "connections": len(self._registry),
        }
