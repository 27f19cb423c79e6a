"""
mysqllock - distributed mutual exclusion on MySQL named locks.

A lock's state of truth lives in a MySQL-compatible server (``GET_LOCK``),
so independent processes on different machines can coordinate exclusive
access to a named resource. Each lock holds one dedicated connection, keeps
it alive in the background, detects loss of the lock or the connection, and
releases deterministically on every exit path.

Example:
    >>> from mysqllock import MySQLLockManager, acquire_lock, create_lock_engine
    >>>
    >>> engine = create_lock_engine("mysql://app:secret@db:3306/app")
    >>>
    >>> # Low-level: acquire, then watch the completion future
    >>> held = await acquire_lock(engine, "reports:nightly", wait_timeout=5.0)
    >>> ...
    >>> error = await held.release()
    >>>
    >>> # Managed: released when the block exits
    >>> lock_manager = MySQLLockManager(engine, holder_id="worker-1")
    >>> async with lock_manager.acquire("reports:nightly"):
    ...     await generate_reports()
"""

from mysqllock.benign import is_benign_error
from mysqllock.config import (
    DEFAULT_KEEPALIVE_INTERVAL,
    DEFAULT_RELEASE_TIMEOUT,
    KeepaliveMode,
    LockOptions,
)
from mysqllock.engine import create_lock_engine, normalize_lock_url
from mysqllock.exceptions import (
    LockAcquisitionError,
    LockLostError,
    LockNotHeldError,
    LockReleaseError,
    LockUnavailableError,
    MySQLLockError,
)
from mysqllock.lock import (
    HeldLock,
    LockInfo,
    LockState,
    acquire_lock,
    acquire_with_options,
)
from mysqllock.manager import MySQLLockManager
from mysqllock.session import LockSession, normalize_lock_name

__version__ = "0.1.0"

__all__ = [
    # Acquisition
    "acquire_lock",
    "acquire_with_options",
    "HeldLock",
    "LockInfo",
    "LockState",
    "MySQLLockManager",
    # Configuration
    "DEFAULT_KEEPALIVE_INTERVAL",
    "DEFAULT_RELEASE_TIMEOUT",
    "KeepaliveMode",
    "LockOptions",
    # Session primitives
    "LockSession",
    "normalize_lock_name",
    # Engine
    "create_lock_engine",
    "normalize_lock_url",
    # Errors
    "MySQLLockError",
    "LockAcquisitionError",
    "LockUnavailableError",
    "LockLostError",
    "LockReleaseError",
    "LockNotHeldError",
    "is_benign_error",
]
