"""Collaborator protocols consumed by the sync and notification services.

The services never talk to a database directly; they go through these
narrow interfaces so that the backing store can be swapped (Postgres in
production, in-memory fakes in tests).
"""

from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from projectflow.models import CalendarEventRecord, Notification, Task, User


class TaskStore(Protocol):
    """Read/patch access to tasks."""

    async def find(
        self,
        filters: Mapping[str, Any],
        *,
        order: str | None = None,
        limit: int | None = None,
        not_null: Iterable[str] = (),
    ) -> list[Task]:
        """Return tasks whose columns equal every value in *filters*.

        Args:
            filters: Column/value pairs, e.g. ``{"assigned_to": uid, "status": "todo"}``.
            not_null: Columns that must additionally be non-null.
            order: Optional column name; prefix with ``-`` for descending.
            limit: Optional maximum number of rows.
        """
        ...

    async def update(self, task_id: str, fields: Mapping[str, Any]) -> Task:
        """Patch *fields* on the task and return the updated record."""
        ...


class NotificationStore(Protocol):
    """Notification persistence."""

    async def find(self, filters: Mapping[str, Any]) -> list[Notification]: ...

    async def create(self, fields: Mapping[str, Any]) -> Notification | None:
        """Insert a notification.

        Returns ``None`` when a notification with the same
        ``(user_id, type, related_entity_id)`` already exists.
        """
        ...

    async def update(self, notification_id: str, fields: Mapping[str, Any]) -> Notification: ...


class CalendarEventStore(Protocol):
    """Local copies of events imported from the external calendar."""

    async def find(self, filters: Mapping[str, Any]) -> list[CalendarEventRecord]: ...

    async def create(self, record: CalendarEventRecord) -> CalendarEventRecord: ...


class CredentialProvider(Protocol):
    """Resolves OAuth access tokens for connected integrations."""

    async def get_access_token(self, provider_name: str) -> str | None:
        """Return the current access token, or ``None`` when not connected."""
        ...


class SessionAuthenticator(Protocol):
    """Maps a caller's session token to a user."""

    async def authenticate(self, token: str | None) -> User:
        """Return the caller. Raises ``AuthenticationError`` for bad sessions."""
        ...
