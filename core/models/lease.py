# ============================================================================
# LEASE MODEL
# ============================================================================
# STATUS: Core - Lease-based lock coordination
# PURPOSE: Lease record with TTL and version token for leader election
# CREATED: 19 OCT 2026
# ============================================================================
"""
Lease Model

A lease is a row in the coordination store naming the current holder of
a lock. The holder renews it periodically; if renewals stop, the lease
expires and another contender may take it over.

Key properties:
- uid is assigned when the lease is created and never changes
- resource_version changes on every successful write (optimistic locking)
- An empty holder_identity means the lease was released
- Crash recovery is bounded by lease_duration_seconds
"""

from datetime import datetime, timedelta, timezone
from typing import ClassVar, Dict, List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class LockIdentity(BaseModel):
    """
    Who is locking what.

    holder_id must be unique among concurrent contenders for the same
    lease; it does not need to be unique over time.
    """
    namespace: str = Field(..., min_length=1, max_length=253)
    name: str = Field(..., min_length=1, max_length=253)
    holder_id: str = Field(..., min_length=1, max_length=253)

    model_config = {"frozen": True}

    def __str__(self) -> str:
        return f"namespace={self.namespace} name={self.name} id={self.holder_id}"


class LeaseRecord(BaseModel):
    """
    Lease record as stored in the coordination store.

    Table: leaselock.leases (one row per namespace/name)
    """

    # SQL DDL Metadata
    __sql_table__: ClassVar[str] = "leases"
    __sql_schema__: ClassVar[str] = "leaselock"
    __sql_primary_key__: ClassVar[List[str]] = ["namespace", "name"]

    namespace: str = Field(..., max_length=253)
    name: str = Field(..., max_length=253)
    holder_identity: str = Field(
        default="",
        max_length=253,
        description="Current holder; empty once released"
    )
    lease_duration_seconds: int = Field(
        default=15,
        ge=1,
        description="How long the lease stays valid without renewal"
    )
    acquire_time: Optional[datetime] = Field(
        default=None,
        description="When the current holder acquired the lease"
    )
    renew_time: Optional[datetime] = Field(
        default=None,
        description="Last renewal by the current holder"
    )
    lease_transitions: int = Field(
        default=0,
        ge=0,
        description="Number of times the holder changed"
    )
    uid: str = Field(
        default="",
        max_length=64,
        description="Assigned by the store on creation"
    )
    resource_version: int = Field(
        default=0,
        ge=0,
        description="Assigned by the store; changes on every write"
    )
    labels: Dict[str, str] = Field(default_factory=dict)

    @property
    def is_held(self) -> bool:
        """True if the record names a holder."""
        return bool(self.holder_identity)

    def is_held_by(self, identity: str) -> bool:
        return self.holder_identity == identity

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """
        Check if the lease has expired by its own renew_time.

        The elector does not rely on this (clocks of different hosts may
        disagree); it only logs it when refusing a lease held by another
        contender.

        Args:
            now: Current time (defaults to utcnow)

        Returns:
            True if renew_time + lease_duration_seconds < now
        """
        if self.renew_time is None:
            return True
        if now is None:
            now = utcnow()
        expiry = self.renew_time + timedelta(seconds=self.lease_duration_seconds)
        return now > expiry


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["LockIdentity", "LeaseRecord", "utcnow"]
