"""
Wait and keepalive policy for MySQL named locks.

Example:
    >>> from mysqllock.config import KeepaliveMode, LockOptions
    >>>
    >>> # Fail fast, ping every 10 seconds (defaults)
    >>> options = LockOptions()
    >>>
    >>> # Wait up to 5 seconds, re-verify ownership every second
    >>> options = LockOptions(
    ...     wait_timeout=5.0,
    ...     keepalive_interval=1.0,
    ...     keepalive_mode=KeepaliveMode.VERIFY_OWNERSHIP,
    ... )
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

DEFAULT_KEEPALIVE_INTERVAL = 10.0
"""Seconds between keepalive probes while a lock is held."""

DEFAULT_RELEASE_TIMEOUT = 5.0
"""Seconds allowed for the release round trip."""


class KeepaliveMode(Enum):
    """
    How strictly a held lock is verified on every keepalive tick.

    Values:
        PING: Only prove the session is alive (``SELECT 1``). A live session
            cannot lose its lock except through an administrative action.
        VERIFY_OWNERSHIP: Ask the server whether this session still owns the
            lock (``IS_USED_LOCK(name) = CONNECTION_ID()``). Also detects a
            lock released out of band while the session stays alive.
    """

    PING = "ping"
    VERIFY_OWNERSHIP = "verify_ownership"


@dataclass(frozen=True)
class LockOptions:
    """
    Policy captured when a lock is acquired.

    Attributes:
        wait_timeout: Seconds to wait for a held lock. None or 0 fails
            immediately when the lock is unavailable (default: None)
        keepalive_interval: Seconds between keepalive probes (default: 10.0).
            Each probe must answer within half the interval, so a hung
            session is reported at most 1.5 intervals after the last
            successful probe
        keepalive_mode: Strictness of each probe (default: PING)
        hold_timeout: Release the lock cleanly after holding it this many
            seconds. None holds until released (default: None)
        release_timeout: Seconds allowed for the release round trip
            (default: 5.0)
        holder_id: Optional identifier for the lock holder (for debugging)
    """

    wait_timeout: float | None = None
    keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL
    keepalive_mode: KeepaliveMode = KeepaliveMode.PING
    hold_timeout: float | None = None
    release_timeout: float = DEFAULT_RELEASE_TIMEOUT
    holder_id: str | None = None

    def __post_init__(self) -> None:
        if self.wait_timeout is not None and self.wait_timeout < 0:
            raise ValueError(f"wait_timeout must be >= 0, got {self.wait_timeout}")
        if self.keepalive_interval <= 0:
            raise ValueError(f"keepalive_interval must be > 0, got {self.keepalive_interval}")
        if self.hold_timeout is not None and self.hold_timeout <= 0:
            raise ValueError(f"hold_timeout must be > 0, got {self.hold_timeout}")
        if self.release_timeout <= 0:
            raise ValueError(f"release_timeout must be > 0, got {self.release_timeout}")
        if not isinstance(self.keepalive_mode, KeepaliveMode):
            object.__setattr__(self, "keepalive_mode", KeepaliveMode(self.keepalive_mode))

    @property
    def probe_timeout(self) -> float:
        """Seconds a single keepalive probe may take."""
        return self.keepalive_interval / 2

    @property
    def waits(self) -> bool:
        """True if acquisition should wait for a held lock."""
        return bool(self.wait_timeout)


__all__ = [
    "DEFAULT_KEEPALIVE_INTERVAL",
    "DEFAULT_RELEASE_TIMEOUT",
    "KeepaliveMode",
    "LockOptions",
]
