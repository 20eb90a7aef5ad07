# ============================================================================
# MODELS MODULE
# ============================================================================
# STATUS: Model exports
# PURPOSE: Central export point for all Pydantic models
# CREATED: 19 OCT 2026
# ============================================================================
"""
Models Module - Central Export Point

Pydantic models for leaselock. LeaseRecord carries __sql_* ClassVar
metadata describing the table it is stored in.
"""

from core.models.lease import LockIdentity, LeaseRecord, utcnow
from core.models.process import ProcessResult

__all__ = [
    # Lease
    "LockIdentity",
    "LeaseRecord",
    "utcnow",
    # Process
    "ProcessResult",
]
