"""
Acquire a MySQL named lock and hold it in the background.

A lock is held on one dedicated session for as long as it lives. After
acquisition an independent task keeps the session alive, watches for a
release request, and on the first terminating condition releases the lock,
closes the session and resolves the lock's completion future exactly once:
with None after a clean release, or with the error that ended the hold.

Example:
    >>> held = await acquire_lock(engine, "reports:nightly", wait_timeout=5.0)
    >>> try:
    ...     await generate_reports()
    ... finally:
    ...     error = await held.release()
    >>> if error is not None:
    ...     logger.warning("Lock ended with error: %s", error)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

from mysqllock.config import (
    DEFAULT_KEEPALIVE_INTERVAL,
    DEFAULT_RELEASE_TIMEOUT,
    KeepaliveMode,
    LockOptions,
)
from mysqllock.exceptions import (
    LockAcquisitionError,
    LockLostError,
    LockReleaseError,
    LockUnavailableError,
)
from mysqllock.observability import (
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_ERROR_TYPE,
    ATTR_LOCK_ACQUIRED,
    ATTR_LOCK_HELD_SECONDS,
    ATTR_LOCK_HOLDER_ID,
    ATTR_LOCK_KEEPALIVE_MODE,
    ATTR_LOCK_NAME,
    ATTR_LOCK_WAIT_TIMEOUT,
    Tracer,
    create_tracer,
)
from mysqllock.session import LockSession, normalize_lock_name

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


class LockState(Enum):
    """Lifecycle of a held lock. Transitions only move forward."""

    HOLDING = "holding"
    RELEASING = "releasing"
    CLOSED = "closed"


@dataclass(frozen=True)
class LockInfo:
    """
    Information about an acquired lock.

    Attributes:
        name: The lock name as sent to the server
        acquired_at: When the lock was acquired
        holder_id: Optional identifier for the lock holder (for debugging)
    """

    name: str
    acquired_at: datetime
    holder_id: str | None = None


class HeldLock:
    """
    A lock currently or formerly held on a dedicated session.

    Created only by a successful acquisition. The hold task is the only
    code that touches the session after that point.

    The completion future (``done``) behaves like a one-shot channel: it is
    resolved exactly once, with None or an Exception instance, after the
    release attempt and the session close have both finished.
    """

    def __init__(
        self,
        session: LockSession,
        name: str,
        options: LockOptions,
        tracer: Tracer,
    ) -> None:
        loop = asyncio.get_running_loop()
        self._session = session
        self._name = name
        self._options = options
        self._tracer = tracer
        self._state = LockState.HOLDING
        self._info = LockInfo(
            name=name,
            acquired_at=datetime.now(UTC),
            holder_id=options.holder_id,
        )
        self._acquired_monotonic = loop.time()
        self._stop = asyncio.Event()
        self._done: asyncio.Future[Exception | None] = loop.create_future()
        self._error: Exception | None = None
        self._task: asyncio.Task[None] | None = None
        self._cleanup_task: asyncio.Task[None] | None = None

    def _start(self) -> None:
        self._task = asyncio.create_task(self._hold(), name=f"mysqllock:{self._name}")
        self._task.add_done_callback(self._on_hold_done)

    def _on_hold_done(self, task: asyncio.Task[None]) -> None:
        if self._done.done():
            return
        # Cancelled before its first step: _hold never ran, so release here
        logger.debug("Hold task ended before holding, releasing lock: name=%s", self._name)
        self._cleanup_task = asyncio.get_running_loop().create_task(
            self._release(), name=f"mysqllock:{self._name}:release"
        )

    def __repr__(self) -> str:
        return f"HeldLock(name={self._name!r}, state={self._state.value})"

    @property
    def name(self) -> str:
        """Lock name as sent to the server."""
        return self._name

    @property
    def info(self) -> LockInfo:
        """Acquisition details."""
        return self._info

    @property
    def options(self) -> LockOptions:
        """Policy the lock was acquired with."""
        return self._options

    @property
    def state(self) -> LockState:
        """Current lifecycle state."""
        return self._state

    @property
    def is_active(self) -> bool:
        """True while the lock is held and no release has been requested."""
        return self._state is LockState.HOLDING and not self._stop.is_set()

    @property
    def done(self) -> asyncio.Future[Exception | None]:
        """Completion future, resolved once the lock is fully released."""
        return self._done

    def request_release(self) -> None:
        """Ask the hold task to release the lock. Returns immediately."""
        self._stop.set()

    async def wait(self) -> Exception | None:
        """
        Wait until the lock has been released.

        Cancelling the waiter does not affect the lock.

        Returns:
            None after a clean release, otherwise the error that ended the
            hold (LockLostError or LockReleaseError)
        """
        return await asyncio.shield(self._done)

    async def release(self) -> Exception | None:
        """
        Release the lock and wait for the release to finish. Idempotent.

        Returns:
            Same as wait()
        """
        self.request_release()
        return await self.wait()

    async def _hold(self) -> None:
        try:
            await self._keep_alive()
        except asyncio.CancelledError:
            logger.debug("Hold task cancelled, releasing lock: name=%s", self._name)
            await self._release()
            raise
        await self._release()

    async def _keep_alive(self) -> None:
        loop = asyncio.get_running_loop()
        interval = self._options.keepalive_interval
        deadline = None
        if self._options.hold_timeout is not None:
            deadline = self._acquired_monotonic + self._options.hold_timeout

        while True:
            wait = interval
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    logger.debug("Hold timeout reached: name=%s", self._name)
                    return
                wait = min(wait, remaining)

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=wait)
                return
            except TimeoutError:
                pass

            if deadline is not None and loop.time() >= deadline:
                continue

            try:
                await asyncio.wait_for(self._probe(), timeout=self._options.probe_timeout)
            except Exception as e:
                if self._stop.is_set():
                    # Release was requested while probing; shut down cleanly
                    logger.debug(
                        "Discarding keepalive failure after release request: name=%s, error=%r",
                        self._name,
                        e,
                    )
                    return
                self._record(self._lost_error(e), e)
                logger.warning("Lost lock: name=%s, error=%s", self._name, self._error)
                return

    async def _probe(self) -> None:
        if self._options.keepalive_mode is KeepaliveMode.VERIFY_OWNERSHIP:
            if not await self._session.is_held_by_self(self._name):
                raise LockLostError(self._name, "session no longer owns the lock")
        else:
            await self._session.ping()

    def _lost_error(self, error: Exception) -> LockLostError:
        if isinstance(error, LockLostError):
            return error
        if isinstance(error, TimeoutError):
            return LockLostError(
                self._name,
                f"keepalive probe timed out after {self._options.probe_timeout}s",
            )
        return LockLostError(self._name, f"keepalive probe failed: {error}")

    def _record(self, error: Exception, cause: BaseException | None = None) -> None:
        # Only the first terminating cause is reported
        if self._error is not None:
            return
        if cause is not None and cause is not error:
            error.__cause__ = cause
        self._error = error

    async def _release(self) -> None:
        self._state = LockState.RELEASING
        loop = asyncio.get_running_loop()
        attributes = {
            ATTR_DB_SYSTEM: "mysql",
            ATTR_DB_OPERATION: "RELEASE_LOCK",
            ATTR_LOCK_NAME: self._name,
            ATTR_LOCK_HELD_SECONDS: loop.time() - self._acquired_monotonic,
        }
        try:
            with self._tracer.span("mysqllock.release", attributes) as span:
                confirmed = False
                try:
                    confirmed = await self._session.release(
                        self._name,
                        timeout=self._options.release_timeout,
                    )
                except Exception as e:
                    self._record(LockReleaseError(self._name, f"RELEASE_LOCK failed: {e}"), e)
                finally:
                    try:
                        await self._session.close(invalidate=not confirmed)
                    except Exception as e:
                        self._record(
                            LockReleaseError(self._name, f"closing the session failed: {e}"),
                            e,
                        )
                if span is not None and self._error is not None:
                    span.set_attribute(ATTR_ERROR_TYPE, type(self._error).__name__)
        finally:
            self._state = LockState.CLOSED
            if not self._done.done():
                self._done.set_result(self._error)

        if self._error is None:
            logger.debug("Released lock: name=%s", self._name)
        else:
            logger.warning(
                "Lock ended with error: name=%s, error_type=%s, error=%s",
                self._name,
                type(self._error).__name__,
                self._error,
            )


async def _discard(session: LockSession, *, invalidate: bool) -> None:
    try:
        await session.close(invalidate=invalidate)
    except Exception as e:
        logger.warning("Error closing session after failed acquisition: error=%s", e)


async def acquire_with_options(
    engine: AsyncEngine,
    name: str,
    options: LockOptions,
    *,
    tracer: Tracer | None = None,
    enable_tracing: bool = True,
) -> HeldLock:
    """
    Acquire a named lock with a prepared policy.

    See acquire_lock() for the behavior; this variant takes a LockOptions
    instance instead of individual settings.
    """
    tracer = tracer or create_tracer(__name__, enable_tracing)
    lock_name = normalize_lock_name(name)
    attributes = {
        ATTR_DB_SYSTEM: "mysql",
        ATTR_DB_OPERATION: "GET_LOCK",
        ATTR_LOCK_NAME: lock_name,
        ATTR_LOCK_WAIT_TIMEOUT: options.wait_timeout if options.waits else -1,
        ATTR_LOCK_KEEPALIVE_MODE: options.keepalive_mode.value,
    }
    if options.holder_id is not None:
        attributes[ATTR_LOCK_HOLDER_ID] = options.holder_id

    with tracer.span("mysqllock.acquire", attributes) as span:
        try:
            session = await LockSession.open(engine)
        except Exception as e:
            raise LockAcquisitionError(
                lock_name,
                f"could not obtain connection: {e}",
                timeout=options.wait_timeout,
            ) from e

        try:
            acquired = await session.try_acquire(lock_name, options.wait_timeout)
        except Exception as e:
            await _discard(session, invalidate=True)
            raise LockAcquisitionError(
                lock_name,
                f"database error: {e}",
                timeout=options.wait_timeout,
            ) from e
        except asyncio.CancelledError:
            await _discard(session, invalidate=True)
            raise

        if span is not None:
            span.set_attribute(ATTR_LOCK_ACQUIRED, acquired)

        if not acquired:
            await _discard(session, invalidate=False)
            if options.waits:
                reason = f"timeout after {options.wait_timeout}s"
            else:
                reason = "lock is held by another session"
            if span is not None:
                span.set_attribute(ATTR_ERROR_TYPE, LockUnavailableError.__name__)
            raise LockUnavailableError(lock_name, reason, timeout=options.wait_timeout)

    held = HeldLock(session, lock_name, options, tracer)
    held._start()
    logger.debug(
        "Acquired lock: name=%s, keepalive_interval=%s, keepalive_mode=%s",
        lock_name,
        options.keepalive_interval,
        options.keepalive_mode.value,
    )
    return held


async def acquire_lock(
    engine: AsyncEngine,
    name: str,
    *,
    wait_timeout: float | None = None,
    keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL,
    keepalive_mode: KeepaliveMode = KeepaliveMode.PING,
    hold_timeout: float | None = None,
    release_timeout: float = DEFAULT_RELEASE_TIMEOUT,
    holder_id: str | None = None,
    tracer: Tracer | None = None,
    enable_tracing: bool = True,
) -> HeldLock:
    """
    Acquire a MySQL named lock and hold it until released.

    A dedicated connection is checked out of the engine's pool and kept for
    the lifetime of the lock. Once the server grants the lock a background
    task keeps the session alive every ``keepalive_interval`` seconds and
    this function returns immediately; the caller never waits on the hold.

    Args:
        engine: SQLAlchemy async engine for a MySQL-compatible server
        name: Lock name; names over 64 characters are normalized
        wait_timeout: Seconds to wait if the lock is held elsewhere.
            None or 0 fails immediately (default: None)
        keepalive_interval: Seconds between keepalive probes (default: 10.0)
        keepalive_mode: PING proves the session is alive; VERIFY_OWNERSHIP
            also asks the server whether this session still owns the lock
        hold_timeout: Release cleanly after this many seconds (default: never)
        release_timeout: Seconds allowed for the release round trip
        holder_id: Optional identifier for the lock holder (for debugging)
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing.
            Ignored if tracer is explicitly provided.

    Returns:
        HeldLock whose ``done`` future resolves once the lock is released

    Raises:
        LockAcquisitionError: If no connection could be obtained, the lock
            is unavailable within the wait policy, or the server call failed.
            No lock is held and nothing needs to be released.
        ValueError: If the name or any setting is invalid
    """
    options = LockOptions(
        wait_timeout=wait_timeout,
        keepalive_interval=keepalive_interval,
        keepalive_mode=keepalive_mode,
        hold_timeout=hold_timeout,
        release_timeout=release_timeout,
        holder_id=holder_id,
    )
    return await acquire_with_options(
        engine,
        name,
        options,
        tracer=tracer,
        enable_tracing=enable_tracing,
    )


__all__ = [
    "HeldLock",
    "LockInfo",
    "LockState",
    "acquire_lock",
    "acquire_with_options",
]
