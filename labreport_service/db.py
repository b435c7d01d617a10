"""Async database connection pool shared by the record store and report writer.

- `connection()` acquires a pooled connection for single-statement work
  (claim, commit, restore are each one statement).
- `transaction()` acquires a connection wrapped in a transaction; used when
  several statements must commit together (lab report + its items).

Connections identify themselves as ``lab-extractor`` in pg_stat_activity so
claims held by a worker can be traced back to it.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import asyncpg

logger = logging.getLogger(__name__)

_pool: asyncpg.Pool | None = None

_DEFAULT_DB = "labreport"


class DatabaseConfig:
    """Resolves the Postgres DSN for the current environment.

    Order: DATABASE_URL, then the managed instance on Cloud Run
    (ALLOYDB_*), then local DB_* variables. Alembic reuses this with a
    different driver scheme.
    """

    @staticmethod
    def is_cloud_run() -> bool:
        return bool(os.environ.get("K_SERVICE") or os.environ.get("CLOUD_RUN_JOB"))

    @classmethod
    def get_connection_string(cls, scheme: str = "postgresql") -> str:
        if url := os.environ.get("DATABASE_URL"):
            if scheme != "postgresql" and url.startswith("postgresql://"):
                url = url.replace("postgresql://", f"{scheme}://", 1)
            return url

        if cls.is_cloud_run():
            host = os.environ.get("ALLOYDB_HOST")
            if not host:
                raise ValueError("ALLOYDB_HOST must be set on Cloud Run")
            user = os.environ.get("ALLOYDB_USER", _DEFAULT_DB)
            password = os.environ.get("ALLOYDB_PASSWORD", "")
            db = os.environ.get("ALLOYDB_DB", _DEFAULT_DB)
            return f"{scheme}://{user}:{password}@{host}/{db}"

        user = os.environ.get("DB_USER", _DEFAULT_DB)
        password = os.environ.get("DB_PASSWORD", _DEFAULT_DB)
        host = os.environ.get("DB_HOST", "localhost")
        port = os.environ.get("DB_PORT", "5432")
        db = os.environ.get("DB_NAME", _DEFAULT_DB)
        sslmode = os.environ.get("DB_SSLMODE", "disable")
        return f"{scheme}://{user}:{password}@{host}:{port}/{db}?sslmode={sslmode}"


async def get_pool() -> asyncpg.Pool:
    """Return the process-wide pool, creating it on first use."""
    global _pool  # noqa: PLW0603
    if _pool is None:
        max_size = int(os.environ.get("DB_POOL_MAX", "5"))
        logger.info("Creating database pool (max_size=%d)", max_size)
        _pool = await asyncpg.create_pool(
            dsn=DatabaseConfig.get_connection_string(),
            min_size=1,
            max_size=max_size,
            command_timeout=float(os.environ.get("DB_COMMAND_TIMEOUT", "30")),
            server_settings={"application_name": os.environ.get("DB_APPLICATION_NAME", "lab-extractor")},
        )
    return _pool


async def close_pool() -> None:
    global _pool  # noqa: PLW0603
    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


async def check_db_connection() -> bool:
    """Readiness check: True if a pooled connection can run a query."""
    try:
        pool = await get_pool()
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
        return True
    except Exception:
        logger.exception("Database health check failed")
        return False


@asynccontextmanager
async def connection() -> AsyncIterator[asyncpg.Connection]:
    """Pooled connection; each statement commits on its own."""
    pool = await get_pool()
    async with pool.acquire() as conn:
        yield conn


@asynccontextmanager
async def transaction() -> AsyncIterator[asyncpg.Connection]:
    """Pooled connection inside a transaction.

    Commits when the block exits normally, rolls back if it raises.
    """
    pool = await get_pool()
    async with pool.acquire() as conn, conn.transaction():
        yield conn
