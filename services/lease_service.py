# ============================================================================
# LEASE SERVICE
# ============================================================================
# STATUS: Core - Lease observation and cleanup
# PURPOSE: Read lease records and delete them with compare-and-delete
# CREATED: 19 OCT 2026
# ============================================================================
"""
Lease Service

Thin accessor used by the locker after a run:

- Read the current lease record
- Delete it only if nobody else holds it, conditioned on the uid and
  resource_version just read, so a lease that another contender has
  re-created or taken over in the meantime is never destroyed

Deletion errors are reported as CleanupFailure and never retried.
"""

import asyncio
import logging
from typing import Optional

from core.errors import CleanupFailure
from core.models import LeaseRecord, LockIdentity
from repositories import LeaseConflict, LeaseNotFound, LeaseRepository, LeaseStoreError

logger = logging.getLogger(__name__)

DEFAULT_DELETE_TIMEOUT_SEC = 5.0


class LeaseCoordinator:
    """Read and conditionally delete lease records."""

    def __init__(self, repository: LeaseRepository, delete_timeout: float = DEFAULT_DELETE_TIMEOUT_SEC):
        """
        Initialize lease coordinator.

        Args:
            repository: Lease storage
            delete_timeout: Upper bound on read+delete during cleanup
        """
        self.repository = repository
        self.delete_timeout = delete_timeout

    async def get(self, namespace: str, name: str) -> Optional[LeaseRecord]:
        """Current lease record, or None."""
        return await self.repository.get(namespace, name)

    async def delete_released(self, identity: LockIdentity) -> bool:
        """
        Delete the lease unless another holder owns it.

        Args:
            identity: The lock whose lease should go away

        Returns:
            True if a lease was deleted, False if there was none

        Raises:
            CleanupFailure if the lease is held by someone else, was
            modified or deleted between read and delete, or the store
            failed
        """
        try:
            return await asyncio.wait_for(self._delete_released(identity), self.delete_timeout)
        except asyncio.TimeoutError as e:
            raise CleanupFailure(
                f"failed to cleanup lease: timed out after {self.delete_timeout}s: {identity}"
            ) from e

    async def _delete_released(self, identity: LockIdentity) -> bool:
        try:
            lease = await self.repository.get(identity.namespace, identity.name)
        except LeaseStoreError as e:
            raise CleanupFailure(f"failed to cleanup lease: {e}: {identity}") from e

        if lease is None:
            logger.debug(f"Lease {identity.namespace}/{identity.name} already gone")
            return False

        if lease.is_held and not lease.is_held_by(identity.holder_id):
            raise CleanupFailure(
                f"failed to cleanup lease: held by {lease.holder_identity}: {identity}"
            )

        try:
            await self.repository.delete(
                identity.namespace,
                identity.name,
                uid=lease.uid,
                resource_version=lease.resource_version,
            )
        except (LeaseNotFound, LeaseConflict, LeaseStoreError) as e:
            raise CleanupFailure(f"failed to cleanup lease: {e}: {identity}") from e

        logger.info(f"Deleted lease {identity.namespace}/{identity.name}")
        return True


__all__ = ["LeaseCoordinator", "DEFAULT_DELETE_TIMEOUT_SEC"]
