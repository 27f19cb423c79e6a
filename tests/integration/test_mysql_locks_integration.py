"""
Integration tests for MySQL named locks.

These tests require a real MySQL server and verify:
- Mutual exclusion between sessions
- Wait timeouts measured against the server
- Loss detection when the server kills the holding session
- Release on every exit path
- MySQLLockManager against a real server
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
from sqlalchemy import text

from mysqllock import (
    HeldLock,
    KeepaliveMode,
    LockLostError,
    LockUnavailableError,
    MySQLLockManager,
    acquire_lock,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

# Mark all tests in this module as integration tests requiring MySQL
pytestmark = [pytest.mark.integration, pytest.mark.mysql]


# =============================================================================
# Helpers
# =============================================================================


@pytest.fixture
def lock_name() -> str:
    """A lock name unique to the test."""
    return f"test:{uuid4().hex}"


async def lock_owner(engine: AsyncEngine, name: str) -> int | None:
    """Connection id holding the lock, as seen from another session."""
    async with engine.connect() as conn:
        result = await conn.execute(text("SELECT IS_USED_LOCK(:name)"), {"name": name})
        return result.scalar()


async def kill_session(engine: AsyncEngine, connection_id: int) -> None:
    """Terminate a server session from another connection."""
    async with engine.connect() as conn:
        await conn.execute(text(f"KILL {int(connection_id)}"))


# =============================================================================
# Acquisition
# =============================================================================


class TestAcquisition:
    """Tests for acquiring locks on a real server."""

    async def test_acquire_and_release(self, mysql_engine: AsyncEngine, lock_name: str) -> None:
        """A lock is visible on the server while held and gone after release."""
        held = await acquire_lock(mysql_engine, lock_name, enable_tracing=False)

        assert await lock_owner(mysql_engine, lock_name) is not None

        assert await held.release() is None
        assert await lock_owner(mysql_engine, lock_name) is None

    async def test_relock_after_release(self, mysql_engine: AsyncEngine, lock_name: str) -> None:
        """A released lock can be acquired again at once."""
        held = await acquire_lock(mysql_engine, lock_name, enable_tracing=False)
        assert await held.release() is None

        again = await acquire_lock(mysql_engine, lock_name, enable_tracing=False)
        assert await again.release() is None

    async def test_contention_grants_exactly_one(
        self, mysql_engine: AsyncEngine, lock_name: str
    ) -> None:
        """Concurrent fail-fast attempts produce exactly one holder."""
        results = await asyncio.gather(
            *(acquire_lock(mysql_engine, lock_name, enable_tracing=False) for _ in range(5)),
            return_exceptions=True,
        )

        held = [r for r in results if isinstance(r, HeldLock)]
        assert len(held) == 1
        assert all(isinstance(r, LockUnavailableError) for r in results if r is not held[0])

        await held[0].release()

    async def test_wait_timeout_elapses(self, mysql_engine: AsyncEngine, lock_name: str) -> None:
        """Waiting on a lock that is never released fails after the timeout."""
        held = await acquire_lock(mysql_engine, lock_name, enable_tracing=False)
        loop = asyncio.get_running_loop()

        started = loop.time()
        with pytest.raises(LockUnavailableError):
            await acquire_lock(mysql_engine, lock_name, wait_timeout=1.0, enable_tracing=False)

        assert loop.time() - started >= 0.95

        await held.release()

    async def test_wait_succeeds_when_released_in_time(
        self, mysql_engine: AsyncEngine, lock_name: str
    ) -> None:
        """A waiter is granted the lock when the holder releases it."""
        held = await acquire_lock(mysql_engine, lock_name, enable_tracing=False)

        waiter = asyncio.create_task(
            acquire_lock(mysql_engine, lock_name, wait_timeout=5.0, enable_tracing=False)
        )
        await asyncio.sleep(0.2)
        assert not waiter.done()

        await held.release()
        second = await asyncio.wait_for(waiter, timeout=5.0)

        assert await second.release() is None

    async def test_fail_fast_is_fast(self, mysql_engine: AsyncEngine, lock_name: str) -> None:
        """A fail-fast attempt returns promptly whatever the keepalive interval."""
        held = await acquire_lock(mysql_engine, lock_name, enable_tracing=False)
        loop = asyncio.get_running_loop()

        started = loop.time()
        with pytest.raises(LockUnavailableError):
            await acquire_lock(
                mysql_engine, lock_name, keepalive_interval=60.0, enable_tracing=False
            )

        assert loop.time() - started < 1.0

        await held.release()

    async def test_long_name(self, mysql_engine: AsyncEngine) -> None:
        """Names over the server limit are accepted through normalization."""
        name = f"tenant:{uuid4().hex}:" + "x" * 100

        held = await acquire_lock(mysql_engine, name, enable_tracing=False)

        assert await lock_owner(mysql_engine, held.name) is not None
        assert await held.release() is None


# =============================================================================
# Loss detection
# =============================================================================


class TestLossDetection:
    """Tests for detecting a lost lock."""

    async def test_killed_session_is_lost(
        self, mysql_engine: AsyncEngine, lock_name: str
    ) -> None:
        """Killing the holding session is reported as a lost lock."""
        held = await acquire_lock(
            mysql_engine, lock_name, keepalive_interval=0.2, enable_tracing=False
        )
        owner = await lock_owner(mysql_engine, lock_name)

        await kill_session(mysql_engine, owner)
        error = await asyncio.wait_for(held.wait(), timeout=5.0)

        assert isinstance(error, LockLostError)
        assert await lock_owner(mysql_engine, lock_name) is None

        # The lock can be taken by someone else straight away
        again = await acquire_lock(mysql_engine, lock_name, enable_tracing=False)
        assert await again.release() is None

    async def test_release_after_kill_is_clean(
        self, mysql_engine: AsyncEngine, lock_name: str
    ) -> None:
        """Releasing a lock whose session is already gone reports no error."""
        held = await acquire_lock(
            mysql_engine, lock_name, keepalive_interval=60.0, enable_tracing=False
        )
        owner = await lock_owner(mysql_engine, lock_name)
        await kill_session(mysql_engine, owner)

        assert await held.release() is None

    async def test_verify_ownership_keeps_lock(
        self, mysql_engine: AsyncEngine, lock_name: str
    ) -> None:
        """VERIFY_OWNERSHIP passes while the session owns the lock."""
        held = await acquire_lock(
            mysql_engine,
            lock_name,
            keepalive_interval=0.1,
            keepalive_mode=KeepaliveMode.VERIFY_OWNERSHIP,
            enable_tracing=False,
        )

        await asyncio.sleep(0.5)

        assert held.is_active
        assert await held.release() is None

    async def test_hold_timeout(self, mysql_engine: AsyncEngine, lock_name: str) -> None:
        """The lock is released once the hold timeout passes."""
        held = await acquire_lock(
            mysql_engine, lock_name, hold_timeout=0.3, enable_tracing=False
        )

        assert await asyncio.wait_for(held.wait(), timeout=5.0) is None
        assert await lock_owner(mysql_engine, lock_name) is None


# =============================================================================
# Manager
# =============================================================================


class TestManager:
    """Tests for MySQLLockManager against a real server."""

    async def test_context_manager_excludes(
        self, mysql_engine: AsyncEngine, lock_name: str
    ) -> None:
        """A second manager cannot enter while the first holds the lock."""
        first = MySQLLockManager(mysql_engine, holder_id="worker-1", enable_tracing=False)
        second = MySQLLockManager(mysql_engine, holder_id="worker-2", enable_tracing=False)

        async with first.acquire(lock_name):
            assert await second.try_acquire(lock_name) is None

        held = await second.try_acquire(lock_name)
        assert held is not None
        assert await second.release(lock_name) is None

    async def test_concurrent_critical_sections(
        self, mysql_engine: AsyncEngine, lock_name: str
    ) -> None:
        """Waiting holders run their critical sections one at a time."""
        active = 0
        peak = 0

        async def worker(index: int) -> None:
            nonlocal active, peak
            manager = MySQLLockManager(
                mysql_engine, holder_id=f"worker-{index}", enable_tracing=False
            )
            async with manager.acquire(lock_name, wait_timeout=10.0):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.05)
                active -= 1

        await asyncio.gather(*(worker(i) for i in range(4)))

        assert peak == 1

    async def test_release_all(self, mysql_engine: AsyncEngine) -> None:
        """release_all frees every lock on the server."""
        manager = MySQLLockManager(mysql_engine, enable_tracing=False)
        names = [f"test:{uuid4().hex}" for _ in range(3)]
        for name in names:
            await manager.lock(name)

        assert await manager.release_all() == 3

        for name in names:
            assert await lock_owner(mysql_engine, name) is None
