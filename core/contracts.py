# ============================================================================
# BASE CONTRACTS & ENUMS
# ============================================================================
# STATUS: Foundation - Core enums
# PURPOSE: Define lock run states and election outcomes
# CREATED: 19 OCT 2026
# EXPORTS: LockState, ElectionOutcome
# DEPENDENCIES: enum
# ============================================================================
"""
Base contracts for leaselock.

A lock run is a small state machine. It starts ELECTING, becomes
LEADING when the lease is acquired and the protected function starts,
and ends DONE. Exactly one ElectionOutcome is decided per run.
"""

from enum import Enum


# ============================================================================
# STATUS ENUMS
# ============================================================================

class LockState(str, Enum):
    """
    Lock run states.

    State transitions:
        ELECTING -> LEADING -> DONE
                 -> DONE (timed out or cancelled before acquisition)
    """
    ELECTING = "electing"        # Waiting for the lease
    LEADING = "leading"          # Lease held, protected function running
    DONE = "done"                # Terminal

    def is_terminal(self) -> bool:
        """Check if this is a terminal state (no further transitions)."""
        return self is LockState.DONE

    def can_transition_to(self, target: "LockState") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS = {
    LockState.ELECTING: {LockState.LEADING, LockState.DONE},
    LockState.LEADING: {LockState.DONE},
    LockState.DONE: set(),
}


class ElectionOutcome(str, Enum):
    """First completion source of the acquisition race."""
    SUCCEEDED = "succeeded"      # Leadership acquired
    TIMED_OUT = "timed_out"      # Wait bound elapsed first
    CANCELED = "canceled"        # External stop fired first
