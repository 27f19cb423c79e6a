"""
Shared pytest fixtures for the mysqllock test suite.

Unit tests run against the in-memory FakeLockServer from mysqllock.testing;
integration tests (tests/integration) use a real MySQL container.
"""

from __future__ import annotations

import pytest

from mysqllock.observability import MockTracer
from mysqllock.testing import FakeEngine, FakeLockServer


@pytest.fixture
def lock_server() -> FakeLockServer:
    """A fresh in-memory lock server per test."""
    return FakeLockServer()


@pytest.fixture
def engine(lock_server: FakeLockServer) -> FakeEngine:
    """Connection pool facade over the lock server."""
    return lock_server.engine()


@pytest.fixture
def mock_tracer() -> MockTracer:
    """Tracer that records spans for assertions."""
    return MockTracer()
