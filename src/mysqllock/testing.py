"""
In-memory stand-in for a MySQL server's user-lock functions.

Lets lock code be exercised without a database. The fake implements just
enough of the SQLAlchemy async engine/connection surface used by
``LockSession`` and the server semantics of ``GET_LOCK``,
``RELEASE_LOCK``, ``IS_USED_LOCK`` and ``CONNECTION_ID``:

- Locks belong to a connection id, not to the caller
- A lock taken again by its own session is granted
- Locks survive a connection returned to the pool (close), and vanish when
  the session ends (invalidate or drop)

Example:
    >>> server = FakeLockServer()
    >>> engine = server.engine()
    >>> held = await acquire_lock(engine, "jobs", keepalive_interval=0.01)
    >>> server.holder("jobs") is not None
    True

Note:
    This module is intended for test code only. It should not be imported
    in production code paths.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any

from pymysql.constants import CR
from pymysql.err import OperationalError as PyMySQLOperationalError
from sqlalchemy import exc as sa_exc

GET_LOCK = "GET_LOCK"
RELEASE_LOCK = "RELEASE_LOCK"
IS_USED_LOCK = "IS_USED_LOCK"
PING = "PING"


def lost_connection_error(statement: str = "") -> sa_exc.OperationalError:
    """Build the error SQLAlchemy raises when the server connection is lost."""
    return sa_exc.OperationalError(
        statement,
        {},
        PyMySQLOperationalError(CR.CR_SERVER_LOST, "Lost connection to MySQL server during query"),
        connection_invalidated=True,
    )


def _operation(sql: str) -> str:
    for name in (GET_LOCK, RELEASE_LOCK, IS_USED_LOCK):
        if name in sql:
            return name
    if sql.strip().upper() == "SELECT 1":
        return PING
    raise NotImplementedError(f"FakeLockServer does not understand: {sql}")


class FakeResult:
    """Single-value result as returned by ``AsyncConnection.execute``."""

    def __init__(self, value: Any) -> None:
        self._value = value

    def scalar(self) -> Any:
        return self._value


class FakeConnection:
    """
    One session on a FakeLockServer.

    Attributes:
        connection_id: Server-side session id (as CONNECTION_ID() would return)
        operations: Names of the lock functions executed, in order
        calls: (operation, parameters) pairs, in order
        failures: Operation name -> exception raised instead of executing.
            Checked before the server-wide FakeLockServer.failures.
        delays: Operation name -> seconds to sleep before executing
    """

    def __init__(self, server: FakeLockServer, connection_id: int) -> None:
        self.server = server
        self.connection_id = connection_id
        self.operations: list[str] = []
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.failures: dict[str, BaseException] = {}
        self.delays: dict[str, float] = {}
        self.execution_opts: dict[str, Any] = {}
        self.closed = False
        self.invalidated = False
        self.dropped = False

    def __await__(self) -> Any:
        return self._start().__await__()

    async def _start(self) -> FakeConnection:
        self.server._check_connect()
        return self

    async def execution_options(self, **opts: Any) -> FakeConnection:
        self.execution_opts.update(opts)
        return self

    async def execute(self, statement: Any, params: dict[str, Any] | None = None) -> FakeResult:
        sql = str(statement)
        if self.closed:
            raise sa_exc.ResourceClosedError("This Connection is closed")
        if self.dropped:
            raise lost_connection_error(sql)

        params = params or {}
        operation = _operation(sql)
        self.operations.append(operation)
        self.calls.append((operation, dict(params)))
        delay = self.delays.get(operation, self.server.delays.get(operation))
        if delay is not None:
            await asyncio.sleep(delay)
        failure = self.failures.get(operation, self.server.failures.get(operation))
        if failure is not None:
            raise failure

        if operation == GET_LOCK:
            value = await self.server._get_lock(self.connection_id, params["name"], params["timeout"])
        elif operation == RELEASE_LOCK:
            value = self.server._release_lock(self.connection_id, params["name"])
        elif operation == IS_USED_LOCK:
            owner = self.server.holder(params["name"])
            value = None if owner is None else int(owner == self.connection_id)
        else:
            value = 1
        return FakeResult(value)

    async def invalidate(self) -> None:
        self.invalidated = True
        self.server._end_session(self.connection_id)

    async def close(self) -> None:
        # Returned to the pool unless invalidated: the server session, and
        # any lock it still holds, live on
        self.closed = True

    def drop(self) -> None:
        """Simulate the network connection dying; the server ends the session."""
        self.dropped = True
        self.server._end_session(self.connection_id)


class FakeEngine:
    """Connection pool facade over a FakeLockServer."""

    def __init__(self, server: FakeLockServer) -> None:
        self.server = server

    def connect(self) -> FakeConnection:
        return self.server._new_connection()

    async def dispose(self) -> None:
        return None


class FakeLockServer:
    """
    Server-side user-lock table shared by every FakeEngine connection.

    Attributes:
        connections: Every connection opened, in order
        failures: Operation name -> exception raised on every connection
        delays: Operation name -> seconds every connection sleeps first
    """

    def __init__(self) -> None:
        self._owners: dict[str, int] = {}
        self._ids = itertools.count(1)
        self._changed = asyncio.Condition()
        self._connect_errors: list[BaseException] = []
        self._pending: set[asyncio.Task[None]] = set()
        self.connections: list[FakeConnection] = []
        self.failures: dict[str, BaseException] = {}
        self.delays: dict[str, float] = {}

    def engine(self) -> FakeEngine:
        return FakeEngine(self)

    def holder(self, name: str) -> int | None:
        """Connection id currently holding the lock, as IS_USED_LOCK() reports."""
        return self._owners.get(name)

    def fail_next_connect(self, error: BaseException) -> None:
        """Make the next connection checkout raise the given error."""
        self._connect_errors.append(error)

    def force_release(self, name: str) -> None:
        """Drop a lock out of band, as an administrator killing it would."""
        self._owners.pop(name, None)
        self._notify()

    def _new_connection(self) -> FakeConnection:
        connection = FakeConnection(self, next(self._ids))
        self.connections.append(connection)
        return connection

    def _check_connect(self) -> None:
        if self._connect_errors:
            raise self._connect_errors.pop(0)

    def _notify(self) -> None:
        async def notify() -> None:
            async with self._changed:
                self._changed.notify_all()

        task = asyncio.get_running_loop().create_task(notify())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _get_lock(self, connection_id: int, name: str, timeout: int) -> int:
        owner = self._owners.get(name)
        if owner is None or owner == connection_id:
            self._owners[name] = connection_id
            return 1
        if timeout == 0:
            return 0

        async with self._changed:
            try:
                await asyncio.wait_for(
                    self._changed.wait_for(lambda: self._owners.get(name) is None),
                    timeout=None if timeout < 0 else timeout,
                )
            except TimeoutError:
                return 0
            self._owners[name] = connection_id
            return 1

    def _release_lock(self, connection_id: int, name: str) -> int | None:
        owner = self._owners.get(name)
        if owner is None:
            return None
        if owner != connection_id:
            return 0
        del self._owners[name]
        self._notify()
        return 1

    def _end_session(self, connection_id: int) -> None:
        for name, owner in list(self._owners.items()):
            if owner == connection_id:
                del self._owners[name]
        self._notify()


__all__ = [
    "FakeConnection",
    "FakeEngine",
    "FakeLockServer",
    "FakeResult",
    "lost_connection_error",
]
