"""
Engine construction for MySQL named locks.

Locks need an async SQLAlchemy engine on the ``mysql+aiomysql`` dialect.
URLs written for the synchronous drivers are rewritten so configuration
shared with synchronous code can be reused as is.

Example:
    >>> engine = create_lock_engine("mysql://app:secret@db:3306/app")
    >>> engine.url.drivername
    'mysql+aiomysql'
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

ASYNC_DRIVERNAME = "mysql+aiomysql"

_SYNC_DRIVERNAMES = frozenset({"mysql", "mysql+pymysql", "mysql+mysqldb", "mariadb", "mariadb+pymysql"})


def normalize_lock_url(url: str | URL) -> URL:
    """
    Rewrite a MySQL URL to use the aiomysql driver.

    Args:
        url: Database URL as a string or SQLAlchemy URL

    Returns:
        URL whose driver is ``mysql+aiomysql``

    Raises:
        ValueError: If the URL does not point at a MySQL-compatible server
    """
    parsed = make_url(url)
    if parsed.drivername == ASYNC_DRIVERNAME:
        return parsed
    if parsed.drivername not in _SYNC_DRIVERNAMES:
        raise ValueError(f"Unsupported database URL for MySQL named locks: {parsed.drivername}")
    return parsed.set(drivername=ASYNC_DRIVERNAME)


def create_lock_engine(url: str | URL, **engine_kwargs: Any) -> AsyncEngine:
    """
    Create an async engine suitable for holding named locks.

    ``pool_pre_ping`` is enabled by default so a lock is never attempted on
    a connection the server has already dropped.

    Args:
        url: Database URL; sync MySQL driver names are rewritten
        **engine_kwargs: Passed through to create_async_engine

    Returns:
        AsyncEngine used as the connection pool for locks
    """
    engine_kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(normalize_lock_url(url), **engine_kwargs)


__all__ = [
    "ASYNC_DRIVERNAME",
    "create_lock_engine",
    "normalize_lock_url",
]
