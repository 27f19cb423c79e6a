"""
Named-lock primitives on a single dedicated MySQL session.

MySQL user locks (``GET_LOCK``) are session-level:
- They belong to the connection that took them, not to the caller
- They persist until explicitly released or the session ends
- They are automatically released when the connection is closed

Every operation here is one round trip on the same connection, which is
why a ``LockSession`` must never be shared with other traffic.

Usage:
    >>> session = await LockSession.open(engine)
    >>> if await session.try_acquire("reports:nightly"):
    ...     try:
    ...         await generate_reports()
    ...     finally:
    ...         await session.release("reports:nightly")
    >>> await session.close()
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
from typing import TYPE_CHECKING, Any

from sqlalchemy import text

from mysqllock.benign import is_benign_error
from mysqllock.config import DEFAULT_RELEASE_TIMEOUT

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

logger = logging.getLogger(__name__)

MAX_LOCK_NAME_LENGTH = 64
"""Longest user lock name MySQL accepts."""

GET_LOCK_SQL = text("SELECT GET_LOCK(:name, :timeout)")
RELEASE_LOCK_SQL = text("SELECT RELEASE_LOCK(:name)")
IS_HELD_BY_SELF_SQL = text("SELECT IS_USED_LOCK(:name) = CONNECTION_ID()")
PING_SQL = text("SELECT 1")


def normalize_lock_name(name: str) -> str:
    """
    Map an arbitrary lock name onto a name MySQL accepts.

    Names up to 64 characters are used unchanged. Longer names keep a
    readable prefix followed by a SHA-256 digest of the full name, so the
    mapping is stable across processes.

    Args:
        name: Lock name chosen by the caller

    Returns:
        A lock name of at most 64 characters

    Raises:
        ValueError: If the name is empty

    Example:
        >>> normalize_lock_name("reports:nightly")
        'reports:nightly'
    """
    if not name:
        raise ValueError("Lock name must not be empty")
    if len(name) <= MAX_LOCK_NAME_LENGTH:
        return name
    digest = hashlib.sha256(name.encode()).hexdigest()[:40]
    prefix = name[: MAX_LOCK_NAME_LENGTH - len(digest) - 1]
    return f"{prefix}:{digest}"


def _as_bool(value: Any) -> bool:
    # NULL means "not acquired" / "not held", never an error
    return value is not None and bool(value)


class LockSession:
    """
    Wraps one dedicated connection and the server's named-lock functions.

    The connection runs in AUTOCOMMIT mode so that holding a lock never
    keeps a transaction open.

    Args:
        connection: A started SQLAlchemy async connection owned by this session
    """

    def __init__(self, connection: AsyncConnection) -> None:
        self._connection = connection
        self._closed = False

    @classmethod
    async def open(cls, engine: AsyncEngine) -> LockSession:
        """
        Check out a dedicated connection from the engine's pool.

        Args:
            engine: SQLAlchemy async engine for a MySQL-compatible server

        Returns:
            A new LockSession owning the connection
        """
        connection = await engine.connect()
        try:
            await connection.execution_options(isolation_level="AUTOCOMMIT")
        except BaseException:
            await connection.close()
            raise
        return cls(connection)

    @property
    def closed(self) -> bool:
        """True once the session has been closed or invalidated."""
        return self._closed

    async def _scalar(self, statement: Any, params: dict[str, Any] | None = None) -> Any:
        result = await self._connection.execute(statement, params or {})
        return result.scalar()

    async def try_acquire(self, name: str, wait_timeout: float | None = None) -> bool:
        """
        Issue ``GET_LOCK`` for the name.

        Without a wait timeout the server answers immediately. With one, the
        server waits up to the timeout rounded up to whole seconds, and the
        client gives up after exactly ``wait_timeout`` seconds. A client-side
        give-up leaves the query in flight, so the connection is invalidated.

        Args:
            name: Lock name
            wait_timeout: Seconds to wait; None or 0 means do not wait

        Returns:
            True only if the server granted the lock
        """
        if not wait_timeout:
            value = await self._scalar(GET_LOCK_SQL, {"name": name, "timeout": 0})
            return _as_bool(value)

        try:
            value = await asyncio.wait_for(
                self._scalar(
                    GET_LOCK_SQL,
                    {"name": name, "timeout": math.ceil(wait_timeout)},
                ),
                timeout=wait_timeout,
            )
        except TimeoutError:
            logger.debug(
                "GET_LOCK wait expired on client: name=%s, wait_timeout=%s",
                name,
                wait_timeout,
            )
            await self.close(invalidate=True)
            return False
        return _as_bool(value)

    async def is_held_by_self(self, name: str) -> bool:
        """
        Ask whether this session is the current holder of the lock.

        Args:
            name: Lock name

        Returns:
            True if the lock is held by this very connection
        """
        return _as_bool(await self._scalar(IS_HELD_BY_SELF_SQL, {"name": name}))

    async def ping(self) -> None:
        """Prove the session is alive with a trivial round trip."""
        await self._scalar(PING_SQL)

    async def release(self, name: str, timeout: float = DEFAULT_RELEASE_TIMEOUT) -> bool:
        """
        Issue ``RELEASE_LOCK`` under its own deadline.

        If the connection is already unusable the server has ended the
        session and released the lock with it, so that outcome is swallowed.

        Args:
            name: Lock name
            timeout: Seconds allowed for the round trip

        Returns:
            True if the server confirmed this session no longer holds the
            lock, False if the session was already gone

        Raises:
            Exception: Any failure not classified as benign
        """
        if self._closed:
            return False
        try:
            value = await asyncio.wait_for(
                self._scalar(RELEASE_LOCK_SQL, {"name": name}),
                timeout=timeout,
            )
        except Exception as e:
            if not is_benign_error(e):
                raise
            logger.debug("Lock already gone with its session: name=%s, error=%r", name, e)
            return False

        if value != 1:
            # 0: held by another session, NULL: no such lock
            logger.warning(
                "RELEASE_LOCK did not find the lock held by this session: name=%s, result=%s",
                name,
                value,
            )
        return True

    async def close(self, *, invalidate: bool = False) -> None:
        """
        Close the session. Idempotent.

        Args:
            invalidate: Discard the underlying DBAPI connection instead of
                returning it to the pool. Used whenever a release was not
                confirmed, so a pooled connection never carries a stale lock.

        Raises:
            Exception: Any failure not classified as benign
        """
        if self._closed:
            return
        self._closed = True
        try:
            try:
                if invalidate:
                    await self._connection.invalidate()
            finally:
                await self._connection.close()
        except Exception as e:
            if not is_benign_error(e):
                raise
            logger.debug("Session already closed: error=%r", e)


__all__ = [
    "GET_LOCK_SQL",
    "IS_HELD_BY_SELF_SQL",
    "LockSession",
    "MAX_LOCK_NAME_LENGTH",
    "PING_SQL",
    "RELEASE_LOCK_SQL",
    "normalize_lock_name",
]
