# ============================================================================
# ORCHESTRATOR MODULE
# ============================================================================
# STATUS: Core - Leader election and lock orchestration
# PURPOSE: Run a function while holding a lease
# CREATED: 19 OCT 2026
# ============================================================================
"""
Orchestrator Module

Leader election over a lease store, and the locker that races it
against a timeout and external cancellation.

Usage:
    from orchestrator import Locker

    locker = Locker("default", "backup", "host-1", repository)
    await locker.acquire_and_run(fn, wait_timeout=30)
"""

from .election import LeaderCallbacks, LeaderElector
from .locker import Locker

__all__ = ["LeaderCallbacks", "LeaderElector", "Locker"]
