"""Library exceptions for the mysqllock package."""


class MySQLLockError(Exception):
    """Base exception for mysqllock library."""

    pass


class LockAcquisitionError(MySQLLockError):
    """
    Raised when a lock cannot be acquired.

    Attributes:
        name: The lock name that could not be acquired
        reason: Description of why acquisition failed
        timeout: The wait timeout if waiting was requested
    """

    def __init__(
        self,
        name: str,
        reason: str,
        timeout: float | None = None,
    ) -> None:
        self.name = name
        self.reason = reason
        self.timeout = timeout
        super().__init__(f"Could not obtain lock '{name}': {reason}")


class LockUnavailableError(LockAcquisitionError):
    """
    Raised when the server answered but did not grant the lock.

    The lock is held by another session, either right now (no wait) or
    for the whole wait timeout.
    """

    pass


class LockLostError(MySQLLockError):
    """
    Raised when a held lock can no longer be proven to be held.

    Delivered through a lock's completion future, never raised from
    the hold loop itself.

    Attributes:
        name: The lock name that was lost
        reason: Description of how the loss was detected
    """

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"Lost lock '{name}': {reason}")


class LockReleaseError(MySQLLockError):
    """
    Raised when releasing a lock or closing its session fails.

    Attributes:
        name: The lock name being released
        reason: Description of the failure
    """

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"Failed to release lock '{name}': {reason}")


class LockNotHeldError(MySQLLockError):
    """
    Raised when attempting to release a lock not held.

    Attributes:
        name: The lock name that was not held
    """

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Lock '{name}' is not held by this manager")


__all__ = [
    "MySQLLockError",
    "LockAcquisitionError",
    "LockUnavailableError",
    "LockLostError",
    "LockReleaseError",
    "LockNotHeldError",
]
