"""
=============================================================================
JSONPUSH CLI ENTRY POINT
=============================================================================

Post JSON documents from the shell through the same background pipeline a
host application uses.

=============================================================================
USAGE
=============================================================================

    # One document
    python -m jsonpush http://localhost:8080/events '{"kills": 12}'

    # Several documents, each posted separately
    python -m jsonpush http://localhost:8080/events '{"a": 1}' '[1, 2, 3]'

    # One document per line from stdin
    tail -f stats.jsonl | python -m jsonpush http://localhost:8080/events

    # Stamp every object with the current UTC time
    python -m jsonpush --timestamp http://localhost:8080/events '{"a": 1}'

=============================================================================
EXIT CODES
=============================================================================

    0   every document was handed to the collector
    1   at least one post failed (see the log)
    2   bad arguments: invalid URL, invalid JSON, bad option value
=============================================================================
"""

import argparse
import json
import logging
import sys
import time
from typing import Any, Iterable, List, Optional

from . import __version__
from .bindings import HostBindings, current_timestamp_iso8601
from .config import DispatcherConfig, LOG_LEVELS
from .dispatcher import Dispatcher
from .errors import UsageError
from .http.url import parse_url


logger = logging.getLogger("jsonpush.cli")


EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def _setup_logging(level_name: str) -> None:
    """Configure logging the same way for every entry point."""
    level = getattr(logging, level_name.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    logging.getLogger("jsonpush").setLevel(level)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jsonpush",
        description="Post JSON documents to an HTTP collector (best effort)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  jsonpush http://localhost:8080/events '{"kills": 12}'
  jsonpush --timestamp http://localhost:8080/events '{"a": 1}'
  cat events.jsonl | jsonpush http://localhost:8080/events
        """
    )

    parser.add_argument("url", help="Destination URL (http://host[:port]/path)")
    parser.add_argument(
        "documents",
        nargs="*",
        help="JSON documents to post (default: one per line from stdin)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # PAYLOAD ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--timestamp", "-t",
        action="store_true",
        help="Add a 'timestamp' field (ISO-8601 UTC) to object documents"
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Connect/send timeout in seconds (default: 5, or JSONPUSH_TIMEOUT)"
    )
    parser.add_argument(
        "--linger",
        type=float,
        default=2.0,
        help="Seconds to wait for posts and responses before exiting (default: 2)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        choices=LOG_LEVELS,
        default=None,
        help="Logging level (default: INFO, or JSONPUSH_LOG_LEVEL)"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log every batch and payload"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"jsonpush {__version__}"
    )

    return parser


def _load_documents(texts: Iterable[str], timestamp: bool) -> List[Any]:
    """Parse JSON texts, skipping blank lines. Raises ValueError on bad JSON."""
    documents = []
    for text in texts:
        if not text.strip():
            continue
        document = json.loads(text)
        if timestamp and isinstance(document, dict):
            document.setdefault("timestamp", current_timestamp_iso8601())
        documents.append(document)
    return documents


def _wait_until_settled(dispatcher: Dispatcher, linger: float) -> dict:
    """Wait until every post was attempted and its response seen, or linger runs out."""
    deadline = time.monotonic() + linger
    while True:
        stats = dispatcher.stats
        attempted = stats["sent"] + stats["failed"]
        answered = stats["responses"] + stats["response_errors"]
        if attempted >= stats["enqueued"] and answered >= stats["sent"]:
            return stats
        if time.monotonic() >= deadline:
            return stats
        time.sleep(0.05)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Returns:
        Process exit code (see module docstring).
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    # =========================================================================
    # CREATE CONFIGURATION
    # =========================================================================
    # Environment first, command line on top

    try:
        config = DispatcherConfig.from_env()
        if args.timeout is not None:
            config.timeout = args.timeout
        if args.log_level is not None:
            config.log_level = args.log_level
        if args.debug:
            config.debug = True
        config.validate()
    except ValueError as e:
        print(f"jsonpush: invalid configuration: {e}", file=sys.stderr)
        return EXIT_USAGE

    _setup_logging(config.log_level)

    # =========================================================================
    # VALIDATE INPUT BEFORE STARTING ANY THREADS
    # =========================================================================

    try:
        parse_url(args.url)
    except UsageError as e:
        print(f"jsonpush: {e}", file=sys.stderr)
        return EXIT_USAGE

    texts = args.documents if args.documents else sys.stdin
    try:
        documents = _load_documents(texts, args.timestamp)
    except ValueError as e:
        print(f"jsonpush: invalid JSON document: {e}", file=sys.stderr)
        return EXIT_USAGE

    # =========================================================================
    # POST
    # =========================================================================

    with Dispatcher(config) as dispatcher:
        bindings = HostBindings(dispatcher)
        for document in documents:
            bindings.post_json(args.url, document)

        stats = _wait_until_settled(dispatcher, args.linger)

    logger.info(
        f"Posted {stats['sent']}/{stats['enqueued']} document(s), "
        f"{stats['failed']} failed, {stats['response_errors']} error response(s)"
    )

    if stats["failed"] or stats["sent"] < stats["enqueued"]:
        return EXIT_FAILED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
