# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# STATUS: Core - Default configuration values
# PURPOSE: Centralized defaults for election timings, process and CLI
# CREATED: 19 OCT 2026
# ============================================================================
"""
Configuration Defaults

Provides the policy constants of the lock.

Design:
- Immutable dataclasses for defaults
- Environment variable overrides
- Type-safe access

The election timings bound how long a crashed holder blocks everyone
else: a lease that is no longer renewed becomes acquirable once
lease_duration has passed since it was last observed to change.
"""

import os
import socket
from dataclasses import dataclass, field
from typing import Optional

from core.errors import InvalidConfiguration


# Jitter applied to the retry period between acquisition attempts
JITTER_FACTOR = 1.2

# Lease timings (seconds)
DEFAULT_LEASE_DURATION_SEC = 15.0
DEFAULT_RENEW_DEADLINE_SEC = 10.0
DEFAULT_RETRY_PERIOD_SEC = 2.0

# Lease duration written when a holder gives the lease up
RELEASED_LEASE_DURATION_SEC = 1

# Exit statuses
EXIT_CODE_FAILURE = 1


@dataclass(frozen=True)
class ElectionTimings:
    """
    Leader election protocol parameters.

    lease_duration: how long a non-renewed lease stays valid for others
    renew_deadline: how long the leader keeps retrying a renewal
    retry_period: interval between acquisition/renewal attempts
    """
    lease_duration: float = DEFAULT_LEASE_DURATION_SEC
    renew_deadline: float = DEFAULT_RENEW_DEADLINE_SEC
    retry_period: float = DEFAULT_RETRY_PERIOD_SEC

    def validate(self) -> "ElectionTimings":
        """
        Check the ordering the protocol relies on.

        Raises:
            InvalidConfiguration if any constraint is violated
        """
        if self.retry_period <= 0:
            raise InvalidConfiguration("retry_period must be greater than zero")
        if self.lease_duration <= self.renew_deadline:
            raise InvalidConfiguration("lease_duration must be greater than renew_deadline")
        if self.renew_deadline <= JITTER_FACTOR * self.retry_period:
            raise InvalidConfiguration(
                f"renew_deadline must be greater than retry_period*{JITTER_FACTOR}"
            )
        return self

    @property
    def max_recovery_seconds(self) -> float:
        """Worst-case wait before a crashed holder's lease can be taken over."""
        return self.lease_duration + self.retry_period * (1 + JITTER_FACTOR)

    @classmethod
    def from_env(cls) -> "ElectionTimings":
        """Create from environment variables."""
        return cls(
            lease_duration=float(os.getenv("LEASELOCK_LEASE_DURATION", DEFAULT_LEASE_DURATION_SEC)),
            renew_deadline=float(os.getenv("LEASELOCK_RENEW_DEADLINE", DEFAULT_RENEW_DEADLINE_SEC)),
            retry_period=float(os.getenv("LEASELOCK_RETRY_PERIOD", DEFAULT_RETRY_PERIOD_SEC)),
        ).validate()


@dataclass(frozen=True)
class ProcessDefaults:
    """
    Defaults for the supervised command.

    kill_after of 0 means: after the cancel signal, wait for the
    command however long it takes.
    """
    cancel_signal: str = "TERM"
    kill_after_sec: float = 0.0

    @classmethod
    def from_env(cls) -> "ProcessDefaults":
        """Create from environment variables."""
        return cls(
            cancel_signal=os.getenv("LEASELOCK_SIGNAL", "TERM"),
            kill_after_sec=float(os.getenv("LEASELOCK_KILL_AFTER", 0.0)),
        )


@dataclass(frozen=True)
class LockDefaults:
    """Defaults for the lock identity and the lock run."""
    namespace: str = "default"
    lease_name: str = "leaselock"
    conflict_exit_code: int = EXIT_CODE_FAILURE
    lease_delete_timeout_sec: float = 5.0

    @staticmethod
    def default_identity() -> str:
        """Holder identity unique among concurrent contenders on one host."""
        return f"{socket.gethostname()}-{os.getpid()}"

    @classmethod
    def from_env(cls) -> "LockDefaults":
        """Create from environment variables."""
        return cls(
            namespace=os.getenv("LEASELOCK_NAMESPACE", "default"),
            lease_name=os.getenv("LEASELOCK_LEASE", "leaselock"),
            conflict_exit_code=int(os.getenv("LEASELOCK_CONFLICT_EXIT_CODE", EXIT_CODE_FAILURE)),
        )


@dataclass(frozen=True)
class Defaults:
    """Container for all defaults."""
    timings: ElectionTimings = field(default_factory=ElectionTimings)
    process: ProcessDefaults = field(default_factory=ProcessDefaults)
    lock: LockDefaults = field(default_factory=LockDefaults)

    @classmethod
    def from_env(cls) -> "Defaults":
        """Create all defaults from environment variables."""
        return cls(
            timings=ElectionTimings.from_env(),
            process=ProcessDefaults.from_env(),
            lock=LockDefaults.from_env(),
        )


_defaults: Optional[Defaults] = None


def get_defaults() -> Defaults:
    """Get global defaults instance."""
    global _defaults
    if _defaults is None:
        _defaults = Defaults.from_env()
    return _defaults


def reset_defaults() -> None:
    """Reset defaults (for testing)."""
    global _defaults
    _defaults = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "JITTER_FACTOR",
    "DEFAULT_LEASE_DURATION_SEC",
    "DEFAULT_RENEW_DEADLINE_SEC",
    "DEFAULT_RETRY_PERIOD_SEC",
    "RELEASED_LEASE_DURATION_SEC",
    "EXIT_CODE_FAILURE",
    "ElectionTimings",
    "ProcessDefaults",
    "LockDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
