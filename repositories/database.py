# ============================================================================
# DATABASE CONNECTION POOL
# ============================================================================
# STATUS: Core - Async PostgreSQL connection management
# PURPOSE: Provide connection pooling for psycopg3 async
# CREATED: 19 OCT 2026
# ============================================================================
"""
Database Connection Pool

Manages async PostgreSQL connections using psycopg3 and psycopg_pool.
Singleton pattern ensures one pool per process.

Connection string resolution:
1. Explicit argument (--database-url)
2. LEASELOCK_DATABASE_URL or DATABASE_URL environment variable
3. Individual POSTGRES_* components

Usage:
    from repositories.database import DatabasePool

    async with DatabasePool() as pool:
        async with pool.connection() as conn:
            result = await conn.execute("SELECT 1")
"""

import os
import logging
from typing import Optional

from psycopg import sql as psycopg_sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from core.models import LeaseRecord

logger = logging.getLogger(__name__)

# Global pool instance
_pool: Optional[AsyncConnectionPool] = None


def get_connection_string() -> str:
    """
    Get database connection string from environment.

    Returns:
        PostgreSQL connection string
    """
    for var in ("LEASELOCK_DATABASE_URL", "DATABASE_URL"):
        if url := os.environ.get(var):
            return url

    host = os.environ.get("POSTGRES_HOST", "localhost")
    port = os.environ.get("POSTGRES_PORT", "5432")
    name = os.environ.get("POSTGRES_DB", "postgres")
    user = os.environ.get("POSTGRES_USER", "postgres")
    password = os.environ.get("POSTGRES_PASSWORD", "")
    sslmode = os.environ.get("POSTGRES_SSLMODE", "prefer")

    return f"postgresql://{user}:{password}@{host}:{port}/{name}?sslmode={sslmode}"


def mask_connection_string(conninfo: str) -> str:
    """Strip credentials from a connection string for logging."""
    if "@" in conninfo:
        return conninfo.split("@")[-1]
    if "password=" in conninfo:
        return conninfo.split("password=")[0] + "password=***"
    return conninfo


async def init_pool(
    min_size: int = 1,
    max_size: int = 4,
    connection_string: Optional[str] = None,
) -> AsyncConnectionPool:
    """
    Initialize the global connection pool.

    Args:
        min_size: Minimum connections to maintain
        max_size: Maximum connections allowed
        connection_string: Override connection string (defaults to env)

    Returns:
        AsyncConnectionPool instance
    """
    global _pool

    if _pool is not None:
        logger.warning("Pool already initialized, returning existing pool")
        return _pool

    conninfo = connection_string or get_connection_string()
    logger.debug(f"Initializing connection pool: {mask_connection_string(conninfo)}")

    _pool = AsyncConnectionPool(
        conninfo=conninfo,
        min_size=min_size,
        max_size=max_size,
        kwargs={"autocommit": True, "row_factory": dict_row},
        open=False,  # We'll open it explicitly
    )

    await _pool.open()
    logger.debug(f"Connection pool opened (min={min_size}, max={max_size})")

    return _pool


async def close_pool() -> None:
    """Close the global connection pool."""
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.debug("Connection pool closed")


class DatabasePool:
    """
    Context manager for pool lifecycle.

    Usage:
        async with DatabasePool() as pool:
            async with pool.connection() as conn:
                ...
    """

    def __init__(
        self,
        min_size: int = 1,
        max_size: int = 4,
        connection_string: Optional[str] = None,
    ):
        self.min_size = min_size
        self.max_size = max_size
        self.connection_string = connection_string
        self._pool: Optional[AsyncConnectionPool] = None

    async def __aenter__(self) -> AsyncConnectionPool:
        self._pool = await init_pool(
            min_size=self.min_size,
            max_size=self.max_size,
            connection_string=self.connection_string,
        )
        return self._pool

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await close_pool()


# ============================================================================
# SCHEMA CONSTANTS
# ============================================================================

SCHEMA = LeaseRecord.__sql_schema__

# Table identifiers, used with psycopg sql.SQL().format()
TABLE_LEASES = psycopg_sql.Identifier(SCHEMA, LeaseRecord.__sql_table__)
LEASES_PRIMARY_KEY = psycopg_sql.SQL(", ").join(
    psycopg_sql.Identifier(column) for column in LeaseRecord.__sql_primary_key__
)
