# ============================================================================
# REPOSITORIES MODULE
# ============================================================================
# STATUS: Core - Lease storage layer
# PURPOSE: Lease record storage with optimistic concurrency
# CREATED: 19 OCT 2026
# ============================================================================
"""
Repositories Module

Provides storage for lease records.
Uses psycopg3 async with connection pooling, or an in-memory store.

Usage:
    from repositories import PostgresLeaseRepository, DatabasePool

    async with DatabasePool() as pool:
        lease_repo = PostgresLeaseRepository(pool)
        lease = await lease_repo.get("default", "backup")
"""

from .database import close_pool, DatabasePool
from .lease_repo import (
    LeaseStoreError,
    LeaseNotFound,
    LeaseConflict,
    LeaseRepository,
    PostgresLeaseRepository,
    MemoryLeaseRepository,
)

__all__ = [
    "close_pool",
    "DatabasePool",
    "LeaseStoreError",
    "LeaseNotFound",
    "LeaseConflict",
    "LeaseRepository",
    "PostgresLeaseRepository",
    "MemoryLeaseRepository",
]
