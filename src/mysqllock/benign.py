"""
Classification of errors that mean "the lock is already gone".

MySQL user locks are tied to the session that took them. Once the session
has ended, the server has already released the lock, so failures caused by
a dead or closed connection during release are expected and must not be
reported as release failures. The same applies to deadline and
cancellation errors raised while tearing down.

Every rule lives in this module so the policy can be audited and tested
in one place.

Example:
    >>> from mysqllock.benign import is_benign_error
    >>> is_benign_error(TimeoutError())
    True
    >>> is_benign_error(ValueError("boom"))
    False
"""

from __future__ import annotations

import asyncio

from pymysql.constants import CR
from pymysql.err import MySQLError
from sqlalchemy import exc as sa_exc

BENIGN_ERROR_TYPES: tuple[type[BaseException], ...] = (
    asyncio.CancelledError,
    TimeoutError,
    sa_exc.ResourceClosedError,
    sa_exc.DisconnectionError,
    sa_exc.InterfaceError,
)
"""Exception types that always indicate a finished or unusable session."""

BENIGN_MYSQL_ERROR_CODES: frozenset[int] = frozenset(
    {
        CR.CR_SERVER_GONE_ERROR,  # 2006
        CR.CR_SERVER_LOST,  # 2013
        CR.CR_SERVER_LOST_EXTENDED,  # 2055
    }
)
"""MySQL client error codes reporting that the connection has gone away."""


def mysql_error_code(error: BaseException) -> int | None:
    """
    Extract the MySQL error code from a driver or SQLAlchemy error.

    Only errors raised by the MySQL driver carry a code; any other
    exception yields None.

    Args:
        error: The raised exception

    Returns:
        The numeric code, or None if the error carries none
    """
    orig = error.orig if isinstance(error, sa_exc.DBAPIError) else error
    if isinstance(orig, MySQLError) and orig.args and isinstance(orig.args[0], int):
        return orig.args[0]
    return None


def is_benign_error(error: BaseException) -> bool:
    """
    Return True if the error only means the session (and its lock) is gone.

    Args:
        error: The exception raised by a release or close round trip

    Returns:
        True if the error should be swallowed during teardown
    """
    if isinstance(error, BENIGN_ERROR_TYPES):
        return True
    if isinstance(error, sa_exc.DBAPIError) and error.connection_invalidated:
        return True
    return mysql_error_code(error) in BENIGN_MYSQL_ERROR_CODES


__all__ = [
    "BENIGN_ERROR_TYPES",
    "BENIGN_MYSQL_ERROR_CODES",
    "is_benign_error",
    "mysql_error_code",
]
