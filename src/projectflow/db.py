"""Database provisioning, schema bootstrap and connection pool management."""

from __future__ import annotations

import logging
import os
from typing import Any
from urllib.parse import parse_qs, urlparse

import asyncpg

logger = logging.getLogger(__name__)

_VALID_SSL_MODES = {"disable", "prefer", "allow", "require", "verify-ca", "verify-full"}
_SSL_UPGRADE_CONNECTION_LOST = "unexpected connection_lost() call"

# Idempotent DDL applied by ensure_schema(). The unique index on
# notifications enforces one notification per (user, type, entity).
SCHEMA_DDL: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id              TEXT PRIMARY KEY,
        title           TEXT,
        description     TEXT,
        due_date        TEXT,
        status          TEXT NOT NULL DEFAULT 'todo',
        google_event_id TEXT,
        assigned_to     TEXT,
        created_by      TEXT,
        project_id      TEXT,
        created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at      TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_tasks_assigned_status ON tasks (assigned_to, status)",
    "CREATE INDEX IF NOT EXISTS ix_tasks_created_status ON tasks (created_by, status)",
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id                TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
        user_id           TEXT NOT NULL,
        type              TEXT NOT NULL,
        related_entity_id TEXT,
        title             TEXT NOT NULL,
        message           TEXT NOT NULL,
        action_url        TEXT,
        read              BOOLEAN NOT NULL DEFAULT false,
        created_at        TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS ux_notifications_user_type_entity
    ON notifications (user_id, type, related_entity_id)
    """,
    """
    CREATE TABLE IF NOT EXISTS calendar_events (
        id              TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
        title           TEXT NOT NULL,
        description     TEXT NOT NULL DEFAULT '',
        start_datetime  TIMESTAMP NOT NULL,
        end_datetime    TIMESTAMP NOT NULL,
        category        TEXT NOT NULL DEFAULT 'work',
        google_event_id TEXT NOT NULL,
        created_by      TEXT NOT NULL,
        UNIQUE (created_by, google_event_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS integration_tokens (
        provider     TEXT PRIMARY KEY,
        access_token TEXT NOT NULL,
        expires_at   TIMESTAMPTZ,
        updated_at   TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_sessions (
        token      TEXT PRIMARY KEY,
        user_id    TEXT NOT NULL,
        email      TEXT,
        expires_at TIMESTAMPTZ
    )
    """,
)


def _normalize_ssl_mode(value: str | None) -> str | None:
    """Normalize an SSL mode value for asyncpg or return None if unset/invalid."""
    if value is None:
        return None
    normalized = value.strip().lower()
    if not normalized:
        return None
    if normalized in _VALID_SSL_MODES:
        return normalized
    logger.warning("Ignoring invalid PostgreSQL sslmode value: %s", value)
    return None


def _db_params_from_database_url(database_url: str) -> dict[str, str | int | None]:
    """Parse connection params from a libpq-style DATABASE_URL."""
    parsed = urlparse(database_url)
    sslmode = _normalize_ssl_mode(parse_qs(parsed.query).get("sslmode", [None])[0])
    return {
        "host": parsed.hostname or "localhost",
        "port": parsed.port or 5432,
        "user": parsed.username or "projectflow",
        "password": parsed.password or "projectflow",
        "ssl": sslmode,
    }


def should_retry_with_ssl_disable(exc: Exception, configured_ssl: str | None) -> bool:
    """Return True when asyncpg SSL STARTTLS fallback should retry with ssl=disable."""
    return (
        configured_ssl is None
        and isinstance(exc, ConnectionError)
        and _SSL_UPGRADE_CONNECTION_LOST in str(exc)
    )


def db_params_from_env() -> dict[str, str | int | None]:
    """Read DB connection params from environment variables."""
    database_url = os.environ.get("DATABASE_URL")
    if database_url:
        return _db_params_from_database_url(database_url)
    return {
        "host": os.environ.get("POSTGRES_HOST", "localhost"),
        "port": int(os.environ.get("POSTGRES_PORT", "5432")),
        "user": os.environ.get("POSTGRES_USER", "projectflow"),
        "password": os.environ.get("POSTGRES_PASSWORD", "projectflow"),
        "ssl": _normalize_ssl_mode(os.environ.get("POSTGRES_SSLMODE")),
    }


class Database:
    """Manages the asyncpg pool and one-off database provisioning."""

    def __init__(
        self,
        db_name: str,
        host: str = "localhost",
        port: int = 5432,
        user: str = "postgres",
        password: str = "postgres",
        ssl: str | None = None,
        min_pool_size: int = 1,
        max_pool_size: int = 10,
    ) -> None:
        self.db_name = db_name
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.ssl = ssl
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.pool: asyncpg.Pool | None = None

    def _connect_kwargs(self, database: str) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "database": database,
        }
        if self.ssl is not None:
            kwargs["ssl"] = self.ssl
        return kwargs

    async def provision(self) -> None:
        """Create the database if it doesn't exist.

        Connects to the 'postgres' maintenance database to check for and
        optionally create the application database.
        """
        connect_kwargs = self._connect_kwargs("postgres")
        try:
            conn = await asyncpg.connect(**connect_kwargs)
        except Exception as exc:
            if not should_retry_with_ssl_disable(exc, self.ssl):
                raise
            logger.info(
                "Retrying PostgreSQL provision connection with ssl=disable after SSL upgrade loss"
            )
            conn = await asyncpg.connect(**{**connect_kwargs, "ssl": "disable"})
        try:
            exists = await conn.fetchval(
                "SELECT 1 FROM pg_database WHERE datname = $1",
                self.db_name,
            )
            if not exists:
                # CREATE DATABASE cannot be parameterized.
                safe_name = self.db_name.replace('"', '""')
                await conn.execute(f'CREATE DATABASE "{safe_name}" TEMPLATE template0')
                logger.info("Created database: %s", self.db_name)
            else:
                logger.info("Database already exists: %s", self.db_name)
        finally:
            await conn.close()

    async def connect(self) -> asyncpg.Pool:
        """Create and return a connection pool to the application database."""
        pool_kwargs = self._connect_kwargs(self.db_name)
        pool_kwargs["min_size"] = self.min_pool_size
        pool_kwargs["max_size"] = self.max_pool_size
        try:
            self.pool = await asyncpg.create_pool(**pool_kwargs)
        except Exception as exc:
            if not should_retry_with_ssl_disable(exc, self.ssl):
                raise
            logger.info("Retrying PostgreSQL pool creation with ssl=disable after SSL upgrade loss")
            self.pool = await asyncpg.create_pool(**{**pool_kwargs, "ssl": "disable"})
        logger.info("Connection pool created for: %s", self.db_name)
        return self.pool

    async def ensure_schema(self) -> None:
        """Create application tables and indexes if missing."""
        pool = self.require_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                for statement in SCHEMA_DDL:
                    await conn.execute(statement)
        logger.info("Schema ensured for: %s", self.db_name)

    async def close(self) -> None:
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("Connection pool closed for: %s", self.db_name)

    def require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise RuntimeError(f"Database '{self.db_name}' has no active connection pool")
        return self.pool

    @classmethod
    def from_env(cls, db_name: str) -> Database:
        """Create a Database from ``DATABASE_URL`` or the ``POSTGRES_*`` variables."""
        params = db_params_from_env()
        return cls(
            db_name=db_name,
            host=str(params["host"]),
            port=int(params["port"]),
            user=str(params["user"]),
            password=str(params["password"]),
            ssl=params["ssl"] if isinstance(params["ssl"], str) else None,
        )
