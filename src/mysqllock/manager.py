"""
Lock manager keeping track of the MySQL named locks held by one component.

Usage:
    >>> lock_manager = MySQLLockManager(engine, holder_id="worker-1")
    >>> async with lock_manager.acquire("reports:nightly", wait_timeout=5.0):
    ...     # Only one process in the fleet gets here at a time
    ...     await generate_reports()
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from mysqllock.config import LockOptions
from mysqllock.exceptions import (
    LockLostError,
    LockNotHeldError,
    LockUnavailableError,
)
from mysqllock.lock import HeldLock, acquire_with_options
from mysqllock.observability import Tracer, create_tracer
from mysqllock.session import normalize_lock_name

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


class MySQLLockManager:
    """
    Manages MySQL named locks for distributed coordination.

    Each lock uses its own dedicated connection, because MySQL user locks
    are session-level: they persist until explicitly released or the
    session ends. Consider connection pool sizing when holding many locks
    at once.

    Per-call keyword overrides (``wait_timeout``, ``keepalive_interval``,
    ``keepalive_mode``, ``hold_timeout``, ``release_timeout``) are applied
    on top of the manager's default LockOptions.

    Example:
        >>> lock_manager = MySQLLockManager(engine, holder_id="billing-1")
        >>> held = await lock_manager.try_acquire("invoices:2024-06")
        >>> if held is not None:  # otherwise another worker is closing the month
        ...     try:
        ...         await close_month()
        ...     finally:
        ...         await lock_manager.release("invoices:2024-06")
    """

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        options: LockOptions | None = None,
        holder_id: str | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ):
        """
        Create a manager bound to one engine.

        Args:
            engine: SQLAlchemy async engine used as the connection pool
            options: Default policy for every lock (default: LockOptions())
            holder_id: Optional identifier for this lock holder (for debugging).
                       Overrides options.holder_id when given.
            tracer: Tracer shared by every lock of this manager
            enable_tracing: Emit OpenTelemetry spans when no tracer is given
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._engine = engine
        options = options or LockOptions()
        if holder_id is not None:
            options = dataclasses.replace(options, holder_id=holder_id)
        self._options = options
        self._held_locks: dict[str, HeldLock] = {}
        self._lock = asyncio.Lock()

    @property
    def options(self) -> LockOptions:
        """Default policy applied to every lock."""
        return self._options

    def _resolve_options(self, overrides: dict[str, Any]) -> LockOptions:
        if not overrides:
            return self._options
        return dataclasses.replace(self._options, **overrides)

    async def lock(self, name: str, **overrides: Any) -> HeldLock:
        """
        Acquire a lock and keep holding it in the background.

        Args:
            name: Lock name
            **overrides: LockOptions fields to override for this lock

        Returns:
            HeldLock; call its release() when done

        Raises:
            LockAcquisitionError: If the lock cannot be acquired
        """
        options = self._resolve_options(overrides)
        held = await acquire_with_options(
            self._engine,
            name,
            options,
            tracer=self._tracer,
        )

        async with self._lock:
            self._held_locks[held.name] = held
        held.done.add_done_callback(lambda _: self._forget(held))
        return held

    def _forget(self, held: HeldLock) -> None:
        # Runs on the event loop thread once the lock is fully released
        if self._held_locks.get(held.name) is held:
            del self._held_locks[held.name]

    async def try_acquire(self, name: str, **overrides: Any) -> HeldLock | None:
        """
        Try to acquire a lock without waiting.

        Args:
            name: Lock name
            **overrides: LockOptions fields to override; wait_timeout is
                always disabled

        Returns:
            HeldLock if acquired, None if the lock is held by another session

        Raises:
            LockAcquisitionError: If the attempt failed for any other reason,
                such as no connection being available
        """
        overrides["wait_timeout"] = None
        try:
            return await self.lock(name, **overrides)
        except LockUnavailableError:
            return None

    @asynccontextmanager
    async def acquire(self, name: str, **overrides: Any) -> AsyncIterator[HeldLock]:
        """
        Acquire a lock as a context manager.

        The lock is released when the context exits, whether normally or
        due to an exception. If the lock was lost while the block ran and
        the block itself did not fail, LockLostError is raised on exit.

        Args:
            name: Lock name
            **overrides: LockOptions fields to override for this lock

        Yields:
            HeldLock for the acquired lock

        Raises:
            LockAcquisitionError: If the lock cannot be acquired
            LockLostError: If the lock was lost inside the block
        """
        held = await self.lock(name, **overrides)
        body_failed = True
        try:
            yield held
            body_failed = False
        finally:
            error = await held.release()
            if isinstance(error, LockLostError) and not body_failed:
                raise error
            if error is not None:
                logger.warning(
                    "Error releasing lock: name=%s, error=%s",
                    held.name,
                    error,
                )

    async def release(self, name: str) -> Exception | None:
        """
        Release a lock this manager acquired and wait for the release.

        Args:
            name: Lock name

        Returns:
            None after a clean release, otherwise the error that ended the hold

        Raises:
            LockNotHeldError: If this manager holds no lock by that name
        """
        lock_name = normalize_lock_name(name)
        async with self._lock:
            held = self._held_locks.get(lock_name)
        if held is None:
            raise LockNotHeldError(lock_name)
        return await held.release()

    async def is_held(self, name: str) -> bool:
        """
        Whether this manager holds the lock and no release is pending.

        Args:
            name: Lock name

        Returns:
            True while the lock is held
        """
        lock_name = normalize_lock_name(name)
        async with self._lock:
            held = self._held_locks.get(lock_name)
        return held is not None and held.is_active

    async def release_all(self) -> int:
        """
        Release every lock the manager still holds, one after the other.

        Meant for shutdown paths. Errors ending individual locks are logged.

        Returns:
            How many locks were released
        """
        async with self._lock:
            names = list(self._held_locks.keys())

        released = 0
        for name in names:
            try:
                error = await self.release(name)
            except LockNotHeldError:
                # Ended on its own since the snapshot
                continue
            released += 1
            if error is not None:
                logger.warning(
                    "Error releasing lock during release_all: name=%s, error=%s",
                    name,
                    error,
                )

        return released

    @property
    def held_lock_count(self) -> int:
        """Number of locks in the registry (a snapshot)."""
        return len(self._held_locks)


__all__ = ["MySQLLockManager"]
