"""
pytest configuration and fixtures.
"""

import json
import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Generator, List
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from jsonpush import DispatcherConfig
from jsonpush.http import ResponseCallbacks


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing (nothing listens on it afterwards)."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def socket_pair() -> Generator[tuple, None, None]:
    """(client, server) ends of a connected socket pair."""
    client, server = socket.socketpair()
    yield client, server
    for sock in (client, server):
        try:
            sock.close()
        except OSError:
            pass


class ResponseRecorder:
    """Collects everything an HTTPResponse reports through its callbacks."""

    def __init__(self):
        self.begun: List = []
        self.chunks: List[bytes] = []
        self.completed: List[tuple] = []

    @property
    def callbacks(self) -> ResponseCallbacks:
        return ResponseCallbacks(
            on_begin=self.begun.append,
            on_data=lambda response, data: self.chunks.append(data),
            on_complete=lambda response, error: self.completed.append((response, error)),
        )

    @property
    def body(self) -> bytes:
        return b"".join(self.chunks)

    @property
    def errors(self) -> list:
        return [error for _, error in self.completed]


@pytest.fixture
def recorder() -> ResponseRecorder:
    return ResponseRecorder()


@pytest.fixture
def fast_config() -> DispatcherConfig:
    """Dispatcher configuration with short timings for tests."""
    return DispatcherConfig(
        pump_interval=0.01,
        timeout=2.0,
        idle_timeout=None,
        pretty_json=False,
    )


class Collector:
    """
    HTTP collector that records every POST it receives.

    Runs a stdlib ThreadingHTTPServer speaking HTTP/1.1 keep-alive in a
    background thread.
    """

    def __init__(self, status: int = 200):
        self.status = status
        self.posts: List[dict] = []
        self._lock = threading.Lock()
        self._received = threading.Condition(self._lock)

        collector = self

        class Handler(BaseHTTPRequestHandler):
            protocol_version = "HTTP/1.1"

            def do_POST(self):
                length = int(self.headers.get("Content-Length", "0"))
                body = self.rfile.read(length)
                collector._record(self.path, dict(self.headers), body)

                reply = b'{"ok": true}'
                self.send_response(collector.status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(reply)))
                self.end_headers()
                self.wfile.write(reply)

            def log_message(self, format, *args):
                pass

        self.server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        self.server.daemon_threads = True
        self.port = self.server.server_address[1]
        self._thread = threading.Thread(target=self.server.serve_forever, daemon=True)

    def _record(self, path: str, headers: dict, body: bytes) -> None:
        with self._received:
            self.posts.append({
                "path": path,
                "headers": {name.lower(): value for name, value in headers.items()},
                "body": body,
                "json": json.loads(body) if body else None,
            })
            self._received.notify_all()

    def url(self, path: str = "/") -> str:
        return f"http://127.0.0.1:{self.port}{path}"

    def wait_for(self, count: int, timeout: float = 5.0) -> List[dict]:
        """Block until at least count posts arrived (or timeout)."""
        deadline = time.monotonic() + timeout
        with self._received:
            while len(self.posts) < count:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._received.wait(remaining)
            return list(self.posts)

    def start(self):
        self._thread.start()

    def stop(self):
        self.server.shutdown()
        self.server.server_close()
        self._thread.join(timeout=5.0)


@pytest.fixture
def collector() -> Generator[Collector, None, None]:
    """A running JSON collector."""
    server = Collector()
    server.start()

    yield server

    server.stop()
