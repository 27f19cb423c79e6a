"""
Standard span attributes for mysqllock.

These follow OpenTelemetry semantic conventions where applicable.
"""

# =============================================================================
# Database Attributes (OpenTelemetry semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (always 'mysql')."""

ATTR_DB_OPERATION = "db.operation"
"""Server function issued (e.g., 'GET_LOCK', 'RELEASE_LOCK')."""

# =============================================================================
# Lock Attributes
# =============================================================================

ATTR_LOCK_NAME = "mysqllock.lock.name"
"""Lock name as sent to the server (string)."""

ATTR_LOCK_WAIT_TIMEOUT = "mysqllock.lock.wait_timeout"
"""Acquisition wait timeout in seconds, -1 when not waiting (float)."""

ATTR_LOCK_KEEPALIVE_MODE = "mysqllock.lock.keepalive_mode"
"""Keepalive strictness (string)."""

ATTR_LOCK_ACQUIRED = "mysqllock.lock.acquired"
"""Whether the lock was acquired (boolean)."""

ATTR_LOCK_HOLDER_ID = "mysqllock.lock.holder_id"
"""Optional identifier of the lock holder (string)."""

ATTR_LOCK_HELD_SECONDS = "mysqllock.lock.held_seconds"
"""How long the lock was held before release (float)."""

# =============================================================================
# Error Attributes
# =============================================================================

ATTR_ERROR_TYPE = "error.type"
"""Class name of the terminal error, if any (string)."""

__all__ = [
    "ATTR_DB_SYSTEM",
    "ATTR_DB_OPERATION",
    "ATTR_LOCK_NAME",
    "ATTR_LOCK_WAIT_TIMEOUT",
    "ATTR_LOCK_KEEPALIVE_MODE",
    "ATTR_LOCK_ACQUIRED",
    "ATTR_LOCK_HOLDER_ID",
    "ATTR_LOCK_HELD_SECONDS",
    "ATTR_ERROR_TYPE",
]
