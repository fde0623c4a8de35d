"""Shared fixtures: in-memory stores, a fake calendar provider and an API client.

The fakes implement the storage protocols and ``CalendarProvider`` closely
enough that reconciler, notification and API tests exercise real service code
without Postgres or Google.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterable, Mapping
from datetime import datetime
from typing import Any

import httpx
import pytest

from projectflow.api.app import create_app
from projectflow.api.deps import AppServices
from projectflow.calendar.provider import CalendarProvider
from projectflow.config import AppConfig
from projectflow.errors import (
    AuthenticationError,
    ExternalApiError,
    IntegrationNotConnectedError,
    NotFoundDriftError,
)
from projectflow.models import (
    CalendarEventDraft,
    CalendarEventRecord,
    ExternalEvent,
    Notification,
    Task,
    User,
)

# ---------------------------------------------------------------------------
# In-memory stores
# ---------------------------------------------------------------------------


def _matches(record: Any, filters: Mapping[str, Any]) -> bool:
    return all(getattr(record, key) == value for key, value in filters.items())


class InMemoryTaskStore:
    def __init__(self) -> None:
        self.rows: dict[str, Task] = {}
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.find_calls: list[dict[str, Any]] = []

    def add(self, **fields: Any) -> Task:
        fields.setdefault("id", f"task-{len(self.rows) + 1}")
        task = Task(**fields)
        self.rows[task.id] = task
        return task

    async def find(
        self,
        filters: Mapping[str, Any],
        *,
        order: str | None = None,
        limit: int | None = None,
        not_null: Iterable[str] = (),
    ) -> list[Task]:
        not_null = list(not_null)
        self.find_calls.append(
            {"filters": dict(filters), "order": order, "limit": limit, "not_null": not_null}
        )
        rows = [
            task
            for task in self.rows.values()
            if _matches(task, filters) and all(getattr(task, c) is not None for c in not_null)
        ]
        return rows[:limit] if limit is not None else rows

    async def update(self, task_id: str, fields: Mapping[str, Any]) -> Task:
        if task_id not in self.rows:
            raise KeyError(task_id)
        updated = self.rows[task_id].model_copy(update=dict(fields))
        self.rows[task_id] = updated
        self.updates.append((task_id, dict(fields)))
        return updated


class InMemoryNotificationStore:
    """Enforces one notification per (user_id, type, related_entity_id)."""

    def __init__(self) -> None:
        self.rows: dict[str, Notification] = {}

    async def find(self, filters: Mapping[str, Any]) -> list[Notification]:
        return [row for row in self.rows.values() if _matches(row, filters)]

    async def create(self, fields: Mapping[str, Any]) -> Notification | None:
        triple = (fields["user_id"], fields["type"], fields.get("related_entity_id"))
        for row in self.rows.values():
            if (row.user_id, row.type, row.related_entity_id) == triple:
                return None
        notification = Notification(id=f"n-{len(self.rows) + 1}", **fields)
        self.rows[notification.id] = notification
        return notification

    async def update(self, notification_id: str, fields: Mapping[str, Any]) -> Notification:
        if notification_id not in self.rows:
            raise KeyError(notification_id)
        updated = self.rows[notification_id].model_copy(update=dict(fields))
        self.rows[notification_id] = updated
        return updated


class InMemoryCalendarEventStore:
    def __init__(self) -> None:
        self.rows: list[CalendarEventRecord] = []

    async def find(self, filters: Mapping[str, Any]) -> list[CalendarEventRecord]:
        return [row for row in self.rows if _matches(row, filters)]

    async def create(self, record: CalendarEventRecord) -> CalendarEventRecord:
        stored = record.model_copy(update={"id": f"ce-{len(self.rows) + 1}"})
        self.rows.append(stored)
        return stored


class StaticCredentialProvider:
    def __init__(self, token: str | None = "access-token") -> None:
        self.token = token
        self.requested: list[str] = []

    async def get_access_token(self, provider_name: str) -> str | None:
        self.requested.append(provider_name)
        return self.token


class StaticAuthenticator:
    def __init__(self, sessions: dict[str, User]) -> None:
        self.sessions = sessions

    async def authenticate(self, token: str | None) -> User:
        if token is None or token not in self.sessions:
            raise AuthenticationError("Unknown session token")
        return self.sessions[token]


# ---------------------------------------------------------------------------
# Fake calendar provider
# ---------------------------------------------------------------------------


class FakeCalendarProvider(CalendarProvider):
    """Keeps events in a dict and records every call.

    ``fail_summaries`` makes create/replace raise ``ExternalApiError(500)`` for
    drafts with a matching summary.
    """

    def __init__(self) -> None:
        self.events: dict[str, CalendarEventDraft] = {}
        self.calls: list[tuple[str, str | None]] = []
        self.fail_summaries: set[str] = set()
        self.fail_deletes = False
        self.listed: list[ExternalEvent] = []
        self.list_window: tuple[datetime, datetime] | None = None
        self.closed = False
        self._next_id = 0

    @property
    def name(self) -> str:
        return "fake"

    def _maybe_fail(self, draft: CalendarEventDraft) -> None:
        if draft.summary in self.fail_summaries:
            raise ExternalApiError(status_code=500, message="Backend Error")

    async def create_event(self, draft: CalendarEventDraft) -> str:
        self.calls.append(("create", None))
        self._maybe_fail(draft)
        self._next_id += 1
        event_id = f"evt-{self._next_id}"
        self.events[event_id] = draft
        return event_id

    async def replace_event(self, event_id: str, draft: CalendarEventDraft) -> None:
        self.calls.append(("replace", event_id))
        self._maybe_fail(draft)
        if event_id not in self.events:
            raise NotFoundDriftError(event_id)
        self.events[event_id] = draft

    async def delete_event(self, event_id: str) -> None:
        self.calls.append(("delete", event_id))
        if self.fail_deletes:
            raise ExternalApiError(status_code=403, message="Forbidden")
        self.events.pop(event_id, None)

    async def list_events(self, start_at: datetime, end_at: datetime) -> list[ExternalEvent]:
        self.calls.append(("list", None))
        self.list_window = (start_at, end_at)
        return list(self.listed)

    async def aclose(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def user() -> User:
    return User(id="user-1", email="ada@example.com")


@pytest.fixture
def task_store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def notification_store() -> InMemoryNotificationStore:
    return InMemoryNotificationStore()


@pytest.fixture
def calendar_store() -> InMemoryCalendarEventStore:
    return InMemoryCalendarEventStore()


@pytest.fixture
def fake_provider() -> FakeCalendarProvider:
    return FakeCalendarProvider()


@pytest.fixture
def credentials() -> StaticCredentialProvider:
    return StaticCredentialProvider()


@pytest.fixture
def app_services(
    user: User,
    task_store: InMemoryTaskStore,
    notification_store: InMemoryNotificationStore,
    calendar_store: InMemoryCalendarEventStore,
    credentials: StaticCredentialProvider,
    fake_provider: FakeCalendarProvider,
) -> AppServices:
    async def _open_fake() -> CalendarProvider:
        if credentials.token is None:
            raise IntegrationNotConnectedError("googlecalendar")
        return fake_provider

    return AppServices(
        config=AppConfig(),
        tasks=task_store,
        notifications=notification_store,
        calendar_events=calendar_store,
        credentials=credentials,
        authenticator=StaticAuthenticator({"session-token": user}),
        provider_factory=_open_fake,
    )


@pytest.fixture
async def api_client(app_services: AppServices) -> AsyncIterator[httpx.AsyncClient]:
    app = create_app(services=app_services)
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": "Bearer session-token"},
    ) as client:
        yield client
