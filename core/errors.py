# ============================================================================
# ERROR TAXONOMY
# ============================================================================
# STATUS: Foundation - Exception hierarchy
# PURPOSE: Distinguish configuration, election, process and cleanup failures
# CREATED: 19 OCT 2026
# ============================================================================
"""
Error Taxonomy

Every failure a caller can observe from a lock run is one of:

- InvalidConfiguration: bad identity, timings, labels or argv (raised early)
- ElectionTimeout: the wait bound elapsed before leadership was acquired
- ExternalCancellation: the caller's stop event fired before acquisition
- SubprocessFailure: the protected command exited non-zero or was killed
- CleanupFailure: the lease could not be deleted after the run

A run that fails for more than one reason raises LockErrorGroup so that
no cause is lost. Use find_error() to look for a specific cause.
"""

from typing import List, Optional, Sequence, Type, TypeVar

E = TypeVar("E", bound=BaseException)


class LeaseLockError(Exception):
    """Base class for all leaselock errors."""


class InvalidConfiguration(LeaseLockError, ValueError):
    """Raised when a locker, elector or process is misconfigured."""


class ElectionTimeout(LeaseLockError):
    """Raised when leadership was not acquired within the wait bound."""

    def __init__(self, timeout: float, lock: str = ""):
        self.timeout = timeout
        self.lock = lock
        suffix = f" ({lock})" if lock else ""
        super().__init__(f"Leader election timed out after {timeout}s{suffix}")


class ExternalCancellation(LeaseLockError):
    """Raised when the surrounding stop event fires before acquisition."""


class SubprocessFailure(LeaseLockError):
    """
    Raised when the supervised command did not exit cleanly.

    Carries the ProcessResult so the exit status can be forwarded.
    """

    def __init__(self, result):
        self.result = result
        super().__init__(result.describe())

    @property
    def exit_code(self) -> int:
        return self.result.exit_code


class CleanupFailure(LeaseLockError):
    """Raised when the lease could not be deleted after the run."""


class LockErrorGroup(ExceptionGroup):
    """Multiple independent failures from a single lock run."""


def join_errors(errors: Sequence[BaseException], message: str = "lock run failed") -> Optional[BaseException]:
    """
    Combine errors into a single raisable value.

    Args:
        errors: Errors collected during a run (order is preserved)
        message: Message for the group when there is more than one

    Returns:
        None when empty, the error itself when alone, else a LockErrorGroup
    """
    errors = [e for e in errors if e is not None]
    if not errors:
        return None
    if len(errors) == 1:
        return errors[0]
    return LockErrorGroup(message, list(errors))


def find_error(exc: Optional[BaseException], cls: Type[E]) -> Optional[E]:
    """Find the first error of type cls in exc, searching exception groups."""
    if exc is None:
        return None
    if isinstance(exc, cls):
        return exc
    if isinstance(exc, BaseExceptionGroup):
        for inner in exc.exceptions:
            found = find_error(inner, cls)
            if found is not None:
                return found
    return None


def flatten_errors(exc: Optional[BaseException]) -> List[BaseException]:
    """List the leaf errors of exc."""
    if exc is None:
        return []
    if isinstance(exc, BaseExceptionGroup):
        leaves: List[BaseException] = []
        for inner in exc.exceptions:
            leaves.extend(flatten_errors(inner))
        return leaves
    return [exc]


__all__ = [
    "LeaseLockError",
    "InvalidConfiguration",
    "ElectionTimeout",
    "ExternalCancellation",
    "SubprocessFailure",
    "CleanupFailure",
    "LockErrorGroup",
    "join_errors",
    "find_error",
    "flatten_errors",
]
