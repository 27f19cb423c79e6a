"""
Shared pytest fixtures for integration tests.

Provides a MySQL server through testcontainers. If testcontainers or
Docker is not available, tests are automatically skipped.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Generator
from typing import TYPE_CHECKING, Any

import pytest

from mysqllock import create_lock_engine

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for integration tests."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (may require docker)"
    )
    config.addinivalue_line("markers", "mysql: marks tests that require MySQL")


# ============================================================================
# Testcontainers Detection
# ============================================================================

TESTCONTAINERS_AVAILABLE = False

try:
    from testcontainers.mysql import MySqlContainer

    TESTCONTAINERS_AVAILABLE = True
except ImportError:
    MySqlContainer = None  # type: ignore[assignment, misc]


def is_docker_available() -> bool:
    """Check if Docker is available for running containers."""
    import subprocess

    try:
        result = subprocess.run(
            ["docker", "info"],
            capture_output=True,
            timeout=5,
        )
        return result.returncode == 0
    except (subprocess.TimeoutExpired, OSError):
        return False


DOCKER_AVAILABLE = is_docker_available()


# ============================================================================
# Skip Conditions
# ============================================================================

skip_if_no_mysql_infra = pytest.mark.skipif(
    not (TESTCONTAINERS_AVAILABLE and DOCKER_AVAILABLE),
    reason="MySQL test infrastructure not available",
)


# ============================================================================
# MySQL Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def mysql_container() -> Generator[Any, None, None]:
    """
    Provide MySQL container for integration tests.

    Container is shared across all tests in the session for efficiency.
    """
    if not TESTCONTAINERS_AVAILABLE or not DOCKER_AVAILABLE:
        pytest.skip("MySQL testcontainer not available")

    container = MySqlContainer("mysql:8.0")
    container.start()

    yield container

    container.stop()


@pytest.fixture(scope="session")
def mysql_connection_url(mysql_container: Any) -> str:
    """Get MySQL connection URL from container (pymysql driver)."""
    return mysql_container.get_connection_url()


@pytest.fixture
async def mysql_engine(mysql_connection_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """
    Provide a lock engine connected to the MySQL container.

    Created per test so that every test runs on its own event loop.
    """
    engine = create_lock_engine(mysql_connection_url, pool_size=10, max_overflow=10)

    yield engine

    await engine.dispose()
