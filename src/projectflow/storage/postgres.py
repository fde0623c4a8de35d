"""asyncpg-backed implementations of the storage protocols.

Filters are equality checks (plus optional ``IS NOT NULL`` columns) limited
to a per-table column whitelist, so caller-supplied keys never reach the SQL
text unchecked.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from projectflow.errors import AuthenticationError
from projectflow.models import CalendarEventRecord, Notification, Task, User

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)

_TASK_COLUMNS = frozenset(
    {
        "id",
        "title",
        "description",
        "due_date",
        "status",
        "google_event_id",
        "assigned_to",
        "created_by",
        "project_id",
        "created_at",
        "updated_at",
    }
)
_TASK_MUTABLE_COLUMNS = _TASK_COLUMNS - {"id", "created_at", "updated_at"}
_NOTIFICATION_COLUMNS = frozenset(
    {
        "id",
        "user_id",
        "type",
        "related_entity_id",
        "title",
        "message",
        "action_url",
        "read",
        "created_at",
    }
)
_NOTIFICATION_MUTABLE_COLUMNS = frozenset({"read", "title", "message", "action_url"})
_CALENDAR_EVENT_COLUMNS = frozenset(
    {
        "id",
        "title",
        "description",
        "start_datetime",
        "end_datetime",
        "category",
        "google_event_id",
        "created_by",
    }
)


def _check_columns(names: Iterable[str], allowed: frozenset[str], table: str) -> None:
    unknown = sorted(set(names) - allowed)
    if unknown:
        raise ValueError(f"Unknown {table} column(s): {', '.join(unknown)}")


def _build_where(
    filters: Mapping[str, Any],
    allowed: frozenset[str],
    table: str,
    not_null: Iterable[str] = (),
) -> tuple[str, list[Any]]:
    """Build an equality WHERE clause; ``None`` values match SQL NULL."""
    not_null = list(not_null)
    _check_columns([*filters.keys(), *not_null], allowed, table)
    conditions: list[str] = []
    args: list[Any] = []
    for column, value in filters.items():
        if value is None:
            conditions.append(f"{column} IS NULL")
            continue
        args.append(value)
        conditions.append(f"{column} = ${len(args)}")
    conditions.extend(f"{column} IS NOT NULL" for column in not_null)
    where_clause = (" WHERE " + " AND ".join(conditions)) if conditions else ""
    return where_clause, args


def _build_set(
    fields: Mapping[str, Any],
    allowed: frozenset[str],
    table: str,
    *,
    offset: int,
) -> tuple[str, list[Any]]:
    if not fields:
        raise ValueError(f"No {table} fields to update")
    _check_columns(fields.keys(), allowed, table)
    assignments: list[str] = []
    args: list[Any] = []
    for column, value in fields.items():
        args.append(value)
        assignments.append(f"{column} = ${offset + len(args)}")
    return ", ".join(assignments), args


def _order_clause(order: str | None, allowed: frozenset[str]) -> str:
    if not order:
        return ""
    descending = order.startswith("-")
    column = order.lstrip("-")
    if column not in allowed:
        raise ValueError(f"Unknown order column: {column}")
    return f" ORDER BY {column} {'DESC' if descending else 'ASC'}"


class PostgresTaskStore:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def find(
        self,
        filters: Mapping[str, Any],
        *,
        order: str | None = None,
        limit: int | None = None,
        not_null: Iterable[str] = (),
    ) -> list[Task]:
        where_clause, args = _build_where(filters, _TASK_COLUMNS, "tasks", not_null)
        sql = f"SELECT * FROM tasks{where_clause}{_order_clause(order, _TASK_COLUMNS)}"
        if limit is not None:
            if limit < 1:
                raise ValueError("limit must be at least 1")
            args.append(limit)
            sql += f" LIMIT ${len(args)}"
        rows = await self.pool.fetch(sql, *args)
        return [Task.model_validate(dict(row)) for row in rows]

    async def update(self, task_id: str, fields: Mapping[str, Any]) -> Task:
        assignments, args = _build_set(fields, _TASK_MUTABLE_COLUMNS, "tasks", offset=1)
        row = await self.pool.fetchrow(
            f"UPDATE tasks SET {assignments}, updated_at = now() WHERE id = $1 RETURNING *",
            task_id,
            *args,
        )
        if row is None:
            raise KeyError(task_id)
        return Task.model_validate(dict(row))


class PostgresNotificationStore:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def find(self, filters: Mapping[str, Any]) -> list[Notification]:
        where_clause, args = _build_where(filters, _NOTIFICATION_COLUMNS, "notifications")
        rows = await self.pool.fetch(
            f"SELECT * FROM notifications{where_clause} ORDER BY created_at DESC",
            *args,
        )
        return [Notification.model_validate(dict(row)) for row in rows]

    async def create(self, fields: Mapping[str, Any]) -> Notification | None:
        _check_columns(fields.keys(), _NOTIFICATION_COLUMNS - {"id", "created_at"}, "notifications")
        columns = list(fields.keys())
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        row = await self.pool.fetchrow(
            f"""
            INSERT INTO notifications ({", ".join(columns)})
            VALUES ({placeholders})
            ON CONFLICT (user_id, type, related_entity_id) DO NOTHING
            RETURNING *
            """,
            *fields.values(),
        )
        if row is None:
            return None
        return Notification.model_validate(dict(row))

    async def update(self, notification_id: str, fields: Mapping[str, Any]) -> Notification:
        assignments, args = _build_set(
            fields, _NOTIFICATION_MUTABLE_COLUMNS, "notifications", offset=1
        )
        row = await self.pool.fetchrow(
            f"UPDATE notifications SET {assignments} WHERE id = $1 RETURNING *",
            notification_id,
            *args,
        )
        if row is None:
            raise KeyError(notification_id)
        return Notification.model_validate(dict(row))


def _naive_utc(value: datetime) -> datetime:
    """Convert to the UTC wall clock stored in ``TIMESTAMP`` columns.

    Naive values (all-day events) are already calendar-local and pass through.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


class PostgresCalendarEventStore:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def find(self, filters: Mapping[str, Any]) -> list[CalendarEventRecord]:
        where_clause, args = _build_where(filters, _CALENDAR_EVENT_COLUMNS, "calendar_events")
        rows = await self.pool.fetch(f"SELECT * FROM calendar_events{where_clause}", *args)
        return [CalendarEventRecord.model_validate(dict(row)) for row in rows]

    async def create(self, record: CalendarEventRecord) -> CalendarEventRecord:
        row = await self.pool.fetchrow(
            """
            INSERT INTO calendar_events
                (title, description, start_datetime, end_datetime,
                 category, google_event_id, created_by)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (created_by, google_event_id) DO UPDATE SET
                title = EXCLUDED.title
            RETURNING *
            """,
            record.title,
            record.description,
            _naive_utc(record.start_datetime),
            _naive_utc(record.end_datetime),
            record.category,
            record.google_event_id,
            record.created_by,
        )
        return CalendarEventRecord.model_validate(dict(row))


class TokenCredentialProvider:
    """Resolves integration access tokens, DB first, then environment.

    The environment fallback reads ``{PROVIDER}_ACCESS_TOKEN`` (upper-cased),
    e.g. ``GOOGLECALENDAR_ACCESS_TOKEN``. Expired DB rows are ignored.
    """

    def __init__(self, pool: asyncpg.Pool, *, env_fallback: bool = True) -> None:
        self.pool = pool
        self._env_fallback = env_fallback

    async def get_access_token(self, provider_name: str) -> str | None:
        row = await self.pool.fetchrow(
            "SELECT access_token, expires_at FROM integration_tokens WHERE provider = $1",
            provider_name,
        )
        if row is not None:
            expires_at = row["expires_at"]
            if expires_at is None or expires_at > datetime.now(UTC):
                # Never log the token value.
                logger.debug("Resolved %s access token from database", provider_name)
                return row["access_token"]
            logger.info("Stored %s access token has expired", provider_name)

        if self._env_fallback:
            value = os.environ.get(f"{provider_name.upper()}_ACCESS_TOKEN")
            if value and value.strip():
                logger.debug("Resolved %s access token from environment", provider_name)
                return value.strip()
        return None


class PostgresSessionAuthenticator:
    """Maps bearer session tokens to users via the ``user_sessions`` table."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def authenticate(self, token: str | None) -> User:
        if not token or not token.strip():
            raise AuthenticationError("Missing session token")
        row = await self.pool.fetchrow(
            "SELECT user_id, email, expires_at FROM user_sessions WHERE token = $1",
            token.strip(),
        )
        if row is None:
            raise AuthenticationError("Unknown session token")
        expires_at = row["expires_at"]
        if expires_at is not None and expires_at <= datetime.now(UTC):
            raise AuthenticationError("Session has expired")
        return User(id=row["user_id"], email=row["email"])
