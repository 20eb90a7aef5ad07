# ============================================================================
# SERVICES MODULE
# ============================================================================
# STATUS: Core - Business logic layer
# PURPOSE: Lease observation and cleanup
# CREATED: 19 OCT 2026
# ============================================================================
"""
Services Module

Services coordinate between the orchestrator and repositories.

Usage:
    from services import LeaseCoordinator

    coordinator = LeaseCoordinator(lease_repo)
    await coordinator.delete_released(identity)
"""

from .lease_service import LeaseCoordinator

__all__ = [
    "LeaseCoordinator",
]
