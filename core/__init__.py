# ============================================================================
# CORE MODULE
# ============================================================================
# STATUS: Core module initialization
# PURPOSE: Export core contracts, models and errors
# CREATED: 19 OCT 2026
# ============================================================================

from core.contracts import LockState, ElectionOutcome
from core.errors import (
    LeaseLockError,
    InvalidConfiguration,
    ElectionTimeout,
    ExternalCancellation,
    SubprocessFailure,
    CleanupFailure,
    LockErrorGroup,
    find_error,
)
from core.models import LockIdentity, LeaseRecord, ProcessResult

__all__ = [
    # Enums
    "LockState",
    "ElectionOutcome",
    # Errors
    "LeaseLockError",
    "InvalidConfiguration",
    "ElectionTimeout",
    "ExternalCancellation",
    "SubprocessFailure",
    "CleanupFailure",
    "LockErrorGroup",
    "find_error",
    # Models
    "LockIdentity",
    "LeaseRecord",
    "ProcessResult",
]
