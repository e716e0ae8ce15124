"""
=============================================================================
DISPATCHER CONFIGURATION
=============================================================================

Every tunable of the post pipeline lives in one dataclass.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── jsonpush --timeout 2 http://collector/ '{"a": 1}'          │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── JSONPUSH_TIMEOUT=2 jsonpush ...                            │
    │                                                                      │
    │   3. Default values (in this dataclass)                             │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
TIMING KNOBS
=============================================================================

    pump_interval   How often the pump worker sweeps connections for
                    response bytes. Lower = responses drained sooner,
                    more wakeups.

    timeout         Upper bound for connect() and send(). This is also the
                    longest a single post can delay shutdown.

    idle_timeout    Connections unused for this long are closed by the
                    pump worker. None keeps them forever.
=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_optional_float(name: str, default: Optional[float]) -> Optional[float]:
    value = os.getenv(name)
    if value is None:
        return default
    if value.strip().lower() in ("", "none", "off"):
        return None
    return float(value)


@dataclass
class DispatcherConfig:
    """
    Configuration for a Dispatcher.

    Example:
        DispatcherConfig(
            timeout=2.0,         # Give up on slow collectors quickly
            idle_timeout=None,   # Never close pooled connections
            debug=True,          # Log every batch and payload
        )
    """

    # ─────────────────────────────────────────────────────────────────────
    # WORKERS
    # ─────────────────────────────────────────────────────────────────────

    pump_interval: float = 0.1
    """Seconds between pump sweeps over all pooled connections."""

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    timeout: Optional[float] = 5.0
    """
    Socket timeout in seconds for connect and send.

    None = blocking (a dead collector could then stall the post worker
    and shutdown indefinitely).
    """

    buffer_size: int = 8192
    """Bytes read per recv() when pumping responses."""

    idle_timeout: Optional[float] = 30.0
    """Seconds a pooled connection may sit unused before it is closed."""

    # ─────────────────────────────────────────────────────────────────────
    # PAYLOADS
    # ─────────────────────────────────────────────────────────────────────

    pretty_json: bool = True
    """Indent posted JSON documents (compact when False)."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    debug: bool = False
    """Log every batch size and payload at INFO level."""

    log_level: str = "INFO"
    """Logging level used by the command-line tool."""

    @classmethod
    def from_env(cls) -> "DispatcherConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        JSONPUSH_PUMP_INTERVAL  Pump sweep interval (default: 0.1)
        JSONPUSH_TIMEOUT        Connect/send timeout (default: 5)
        JSONPUSH_BUFFER_SIZE    Receive size (default: 8192)
        JSONPUSH_IDLE_TIMEOUT   Idle eviction, "none" disables (default: 30)
        JSONPUSH_DEBUG          Log batches and payloads (default: off)
        JSONPUSH_LOG_LEVEL      Logging level (default: INFO)

        =====================================================================
        """
        return cls(
            pump_interval=float(os.getenv("JSONPUSH_PUMP_INTERVAL", "0.1")),
            timeout=float(os.getenv("JSONPUSH_TIMEOUT", "5")),
            buffer_size=int(os.getenv("JSONPUSH_BUFFER_SIZE", "8192")),
            idle_timeout=_env_optional_float("JSONPUSH_IDLE_TIMEOUT", 30.0),
            debug=_env_bool("JSONPUSH_DEBUG", False),
            log_level=os.getenv("JSONPUSH_LOG_LEVEL", "INFO").upper(),
        )

    def validate(self) -> None:
        """
        Validate configuration values (fail fast at startup).

        Raises:
            ValueError: A value is out of range.
        """
        if self.pump_interval <= 0:
            raise ValueError(f"pump_interval must be > 0, got {self.pump_interval}")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")

        if self.buffer_size < 1:
            raise ValueError(f"buffer_size must be >= 1, got {self.buffer_size}")

        if self.idle_timeout is not None and self.idle_timeout < 0:
            raise ValueError(f"idle_timeout must be >= 0, got {self.idle_timeout}")

        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"Invalid log_level: {self.log_level}. Must be one of {', '.join(LOG_LEVELS)}.")
