# ============================================================================
# LEASE REPOSITORY
# ============================================================================
# STATUS: Core - Lease record storage
# PURPOSE: Read, create, compare-and-swap and compare-and-delete leases
# CREATED: 19 OCT 2026
# ============================================================================
"""
Lease Repository

Storage for lease records with optimistic concurrency:

- create() fails with LeaseConflict if the lease already exists
- update() succeeds only if uid and resource_version still match
- delete() succeeds only if uid (and resource_version, when given) match

Two implementations share these semantics:

- PostgresLeaseRepository: leaselock.leases table via psycopg3
- MemoryLeaseRepository: process-local dict, for a single host and tests
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, Optional, Tuple

import psycopg
from psycopg import sql
from psycopg.types.json import Json
from psycopg_pool import AsyncConnectionPool

from core.models import LeaseRecord
from .database import LEASES_PRIMARY_KEY, SCHEMA, TABLE_LEASES

logger = logging.getLogger(__name__)


# ============================================================================
# ERRORS
# ============================================================================

class LeaseStoreError(Exception):
    """The lease store could not complete a request."""


class LeaseNotFound(LeaseStoreError):
    """The lease does not exist."""

    def __init__(self, namespace: str, name: str):
        self.namespace = namespace
        self.name = name
        super().__init__(f"lease {namespace}/{name} not found")


class LeaseConflict(LeaseStoreError):
    """A precondition (existence, uid or resource_version) did not hold."""

    def __init__(self, namespace: str, name: str, reason: str):
        self.namespace = namespace
        self.name = name
        self.reason = reason
        super().__init__(f"lease {namespace}/{name}: {reason}")


# ============================================================================
# INTERFACE
# ============================================================================

class LeaseRepository(ABC):
    """Storage interface for lease records."""

    @abstractmethod
    async def get(self, namespace: str, name: str) -> Optional[LeaseRecord]:
        """Return the lease or None if it does not exist."""

    @abstractmethod
    async def create(self, lease: LeaseRecord) -> LeaseRecord:
        """
        Create a lease. uid and resource_version are assigned by the store.

        Raises:
            LeaseConflict if the lease already exists
        """

    @abstractmethod
    async def update(self, lease: LeaseRecord) -> LeaseRecord:
        """
        Replace a lease if lease.uid and lease.resource_version are current.

        Raises:
            LeaseNotFound if the lease does not exist
            LeaseConflict if it was modified or re-created since it was read
        """

    @abstractmethod
    async def delete(
        self,
        namespace: str,
        name: str,
        uid: str,
        resource_version: Optional[int] = None,
    ) -> None:
        """
        Delete a lease if its uid (and resource_version, if given) match.

        Raises:
            LeaseNotFound if the lease does not exist
            LeaseConflict if a precondition does not hold
        """


# ============================================================================
# POSTGRESQL
# ============================================================================

@contextmanager
def _store_errors(operation: str, namespace: str, name: str):
    """Translate psycopg errors into LeaseStoreError."""
    try:
        yield
    except psycopg.Error as e:
        raise LeaseStoreError(f"{operation} lease {namespace}/{name} failed: {e}") from e


class PostgresLeaseRepository(LeaseRepository):
    """Repository for lease records in PostgreSQL."""

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    async def ensure_schema(self) -> None:
        """Create the schema and leases table if they do not exist."""
        async with self.pool.connection() as conn:
            await conn.execute(
                sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(sql.Identifier(SCHEMA))
            )
            await conn.execute(
                sql.SQL("""
                CREATE TABLE IF NOT EXISTS {} (
                    namespace VARCHAR(253) NOT NULL,
                    name VARCHAR(253) NOT NULL,
                    holder_identity VARCHAR(253) NOT NULL DEFAULT '',
                    lease_duration_seconds INTEGER NOT NULL,
                    acquire_time TIMESTAMPTZ,
                    renew_time TIMESTAMPTZ,
                    lease_transitions INTEGER NOT NULL DEFAULT 0,
                    uid VARCHAR(64) NOT NULL,
                    resource_version BIGINT NOT NULL,
                    labels JSONB NOT NULL DEFAULT '{{}}'::jsonb,
                    PRIMARY KEY ({})
                )
                """).format(TABLE_LEASES, LEASES_PRIMARY_KEY)
            )
        logger.info(f"Ensured lease table {SCHEMA}.{LeaseRecord.__sql_table__}")

    async def get(self, namespace: str, name: str) -> Optional[LeaseRecord]:
        with _store_errors("get", namespace, name):
            async with self.pool.connection() as conn:
                result = await conn.execute(
                    sql.SQL("SELECT * FROM {} WHERE namespace = %s AND name = %s").format(TABLE_LEASES),
                    (namespace, name),
                )
                row = await result.fetchone()
        if row is None:
            return None
        return self._row_to_lease(row)

    async def create(self, lease: LeaseRecord) -> LeaseRecord:
        with _store_errors("create", lease.namespace, lease.name):
            async with self.pool.connection() as conn:
                result = await conn.execute(
                    sql.SQL("""
                    INSERT INTO {} (
                        namespace, name, holder_identity, lease_duration_seconds,
                        acquire_time, renew_time, lease_transitions, uid,
                        resource_version, labels
                    ) VALUES (
                        %(namespace)s, %(name)s, %(holder_identity)s,
                        %(lease_duration_seconds)s, %(acquire_time)s,
                        %(renew_time)s, %(lease_transitions)s, %(uid)s,
                        1, %(labels)s
                    )
                    ON CONFLICT (namespace, name) DO NOTHING
                    RETURNING *
                    """).format(TABLE_LEASES),
                    {
                        "namespace": lease.namespace,
                        "name": lease.name,
                        "holder_identity": lease.holder_identity,
                        "lease_duration_seconds": lease.lease_duration_seconds,
                        "acquire_time": lease.acquire_time,
                        "renew_time": lease.renew_time,
                        "lease_transitions": lease.lease_transitions,
                        "uid": str(uuid.uuid4()),
                        "labels": Json(lease.labels),
                    },
                )
                row = await result.fetchone()
        if row is None:
            raise LeaseConflict(lease.namespace, lease.name, "already exists")
        logger.debug(f"Created lease {lease.namespace}/{lease.name} for {lease.holder_identity}")
        return self._row_to_lease(row)

    async def update(self, lease: LeaseRecord) -> LeaseRecord:
        with _store_errors("update", lease.namespace, lease.name):
            async with self.pool.connection() as conn:
                result = await conn.execute(
                    sql.SQL("""
                    UPDATE {} SET
                        holder_identity = %(holder_identity)s,
                        lease_duration_seconds = %(lease_duration_seconds)s,
                        acquire_time = %(acquire_time)s,
                        renew_time = %(renew_time)s,
                        lease_transitions = %(lease_transitions)s,
                        labels = %(labels)s,
                        resource_version = resource_version + 1
                    WHERE namespace = %(namespace)s
                      AND name = %(name)s
                      AND uid = %(uid)s
                      AND resource_version = %(resource_version)s
                    RETURNING *
                    """).format(TABLE_LEASES),
                    {
                        "namespace": lease.namespace,
                        "name": lease.name,
                        "holder_identity": lease.holder_identity,
                        "lease_duration_seconds": lease.lease_duration_seconds,
                        "acquire_time": lease.acquire_time,
                        "renew_time": lease.renew_time,
                        "lease_transitions": lease.lease_transitions,
                        "labels": Json(lease.labels),
                        "uid": lease.uid,
                        "resource_version": lease.resource_version,
                    },
                )
                row = await result.fetchone()
        if row is None:
            await self._raise_precondition_failure(lease.namespace, lease.name)
        return self._row_to_lease(row)

    async def delete(
        self,
        namespace: str,
        name: str,
        uid: str,
        resource_version: Optional[int] = None,
    ) -> None:
        with _store_errors("delete", namespace, name):
            async with self.pool.connection() as conn:
                result = await conn.execute(
                    sql.SQL("""
                    DELETE FROM {}
                    WHERE namespace = %(namespace)s
                      AND name = %(name)s
                      AND uid = %(uid)s
                      AND (%(resource_version)s::bigint IS NULL
                           OR resource_version = %(resource_version)s)
                    RETURNING uid
                    """).format(TABLE_LEASES),
                    {
                        "namespace": namespace,
                        "name": name,
                        "uid": uid,
                        "resource_version": resource_version,
                    },
                )
                row = await result.fetchone()
        if row is None:
            await self._raise_precondition_failure(namespace, name)
        logger.debug(f"Deleted lease {namespace}/{name} (uid={uid})")

    async def _raise_precondition_failure(self, namespace: str, name: str) -> None:
        """Raise LeaseNotFound or LeaseConflict after a write matched no row."""
        if await self.get(namespace, name) is None:
            raise LeaseNotFound(namespace, name)
        raise LeaseConflict(namespace, name, "uid or resource_version precondition failed")

    @staticmethod
    def _row_to_lease(row: Dict) -> LeaseRecord:
        return LeaseRecord(
            namespace=row["namespace"],
            name=row["name"],
            holder_identity=row["holder_identity"] or "",
            lease_duration_seconds=row["lease_duration_seconds"],
            acquire_time=row["acquire_time"],
            renew_time=row["renew_time"],
            lease_transitions=row["lease_transitions"],
            uid=row["uid"],
            resource_version=row["resource_version"],
            labels=row["labels"] or {},
        )


# ============================================================================
# IN-MEMORY
# ============================================================================

class MemoryLeaseRepository(LeaseRepository):
    """
    Process-local lease store.

    Contenders sharing one instance get the same optimistic-concurrency
    behavior as with PostgreSQL; contenders in different processes do not
    see each other.
    """

    def __init__(self):
        self._store: Dict[Tuple[str, str], LeaseRecord] = {}
        self._lock = threading.Lock()
        self._next_version = 1

    def _bump_version(self) -> int:
        version = self._next_version
        self._next_version += 1
        return version

    async def get(self, namespace: str, name: str) -> Optional[LeaseRecord]:
        with self._lock:
            lease = self._store.get((namespace, name))
            return lease.model_copy(deep=True) if lease else None

    async def create(self, lease: LeaseRecord) -> LeaseRecord:
        key = (lease.namespace, lease.name)
        with self._lock:
            if key in self._store:
                raise LeaseConflict(lease.namespace, lease.name, "already exists")
            stored = lease.model_copy(
                update={"uid": str(uuid.uuid4()), "resource_version": self._bump_version()},
                deep=True,
            )
            self._store[key] = stored
            return stored.model_copy(deep=True)

    async def update(self, lease: LeaseRecord) -> LeaseRecord:
        key = (lease.namespace, lease.name)
        with self._lock:
            current = self._store.get(key)
            if current is None:
                raise LeaseNotFound(lease.namespace, lease.name)
            if current.uid != lease.uid or current.resource_version != lease.resource_version:
                raise LeaseConflict(lease.namespace, lease.name, "uid or resource_version precondition failed")
            stored = lease.model_copy(update={"resource_version": self._bump_version()}, deep=True)
            self._store[key] = stored
            return stored.model_copy(deep=True)

    async def delete(
        self,
        namespace: str,
        name: str,
        uid: str,
        resource_version: Optional[int] = None,
    ) -> None:
        key = (namespace, name)
        with self._lock:
            current = self._store.get(key)
            if current is None:
                raise LeaseNotFound(namespace, name)
            if current.uid != uid:
                raise LeaseConflict(namespace, name, "uid precondition failed")
            if resource_version is not None and current.resource_version != resource_version:
                raise LeaseConflict(namespace, name, "resource_version precondition failed")
            del self._store[key]


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "LeaseStoreError",
    "LeaseNotFound",
    "LeaseConflict",
    "LeaseRepository",
    "PostgresLeaseRepository",
    "MemoryLeaseRepository",
]
