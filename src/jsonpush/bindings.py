"""
Host-facing operations.

An embedding scripting layer registers these three functions and calls them
with whatever arguments the script passed. Argument counts are therefore
checked here, and a wrong call raises UsageError with a usage line:

    post_json(url, object)            queue object for delivery to url
    to_json_string(object)            serialize object, no I/O
    current_timestamp_iso8601()       "2024-03-09T17:04:05Z"
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from .dispatcher import Dispatcher
from .errors import UsageError
from .values import to_json_string, to_json_value


TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def current_timestamp_iso8601(now: Optional[datetime] = None) -> str:
    """Current UTC time as YYYY-MM-DDTHH:MM:SSZ."""
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime(TIMESTAMP_FORMAT)


class HostBindings:
    """
    The three operations exposed to the host, bound to one Dispatcher.

    Example:
        bindings = HostBindings(dispatcher)
        for name, function in bindings.exports().items():
            interpreter.register(name, function)
    """

    def __init__(self, dispatcher: Dispatcher):
        self.dispatcher = dispatcher

    def post_json(self, *args: Any) -> None:
        if len(args) != 2:
            raise UsageError("Invalid number of parameters. Usage: post_json(url, object)")

        url, value = args
        if not isinstance(url, str):
            raise UsageError(
                f"Invalid url parameter ({type(url).__name__}). Usage: post_json(url, object)"
            )

        # Snapshot now: the host may mutate the value after we return
        self.dispatcher.enqueue(url, to_json_value(value))

    def to_json_string(self, *args: Any) -> str:
        if len(args) != 1:
            raise UsageError("Invalid number of parameters. Usage: to_json_string(object)")
        return to_json_string(args[0], pretty=self.dispatcher.config.pretty_json)

    def current_timestamp_iso8601(self, *args: Any) -> str:
        if args:
            raise UsageError(
                "Function does not expect parameters. Usage: current_timestamp_iso8601()"
            )
        return current_timestamp_iso8601()

    def exports(self) -> Dict[str, Callable[..., Any]]:
        """Name → function map for registration with a scripting layer."""
        return {
            "post_json": self.post_json,
            "to_json_string": self.to_json_string,
            "current_timestamp_iso8601": self.current_timestamp_iso8601,
        }
