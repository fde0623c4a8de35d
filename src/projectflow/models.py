"""Domain models for tasks, notifications and calendar events.

The task and notification stores own these records; the sync and
notification services only read them and patch a handful of fields.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

GOOGLE_CALENDAR_PROVIDER = "googlecalendar"
NOTIFICATION_TYPE_DUE_TOMORROW = "task_due_tomorrow"


class TaskStatus(StrEnum):
    """Task workflow states. Only ``todo`` tasks are sync-eligible."""

    todo = "todo"
    in_progress = "in_progress"
    review = "review"
    done = "done"


class SyncAction(StrEnum):
    """Caller intent for a single-task calendar sync."""

    create = "create"
    update = "update"
    delete = "delete"


# ---------------------------------------------------------------------------
# Link state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Unlinked:
    """The task has no external calendar event."""


@dataclass(frozen=True)
class Linked:
    """The task was linked to ``event_id`` by a previous create.

    The remote event may have been deleted out-of-band since.
    """

    event_id: str


LinkState = Unlinked | Linked


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class User(BaseModel):
    """Authenticated caller."""

    id: str
    email: str | None = None


class Task(BaseModel):
    """Task as stored by the task store.

    ``due_date`` is kept as the raw ISO string the store hands back so that a
    malformed value surfaces as ``MalformedDateError`` at mapping time rather
    than at load time.
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    title: str | None = None
    description: str | None = None
    due_date: str | None = None
    status: str = TaskStatus.todo
    google_event_id: str | None = None
    assigned_to: str | None = None
    created_by: str | None = None
    project_id: str | None = None

    @field_validator("due_date", mode="before")
    @classmethod
    def _coerce_due_date(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.date().isoformat()
        if isinstance(value, date):
            return value.isoformat()
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("google_event_id", mode="before")
    @classmethod
    def _normalize_event_id(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def link_state(self) -> LinkState:
        if self.google_event_id:
            return Linked(self.google_event_id)
        return Unlinked()

    @property
    def is_sync_eligible(self) -> bool:
        return self.status == TaskStatus.todo and self.due_date is not None


class Notification(BaseModel):
    """In-app notification. At most one exists per (user, type, entity)."""

    id: str
    user_id: str
    type: str
    related_entity_id: str | None = None
    title: str
    message: str
    action_url: str | None = None
    read: bool = False
    created_at: datetime | None = None


class CalendarEventDraft(BaseModel):
    """All-day event as written to the external calendar.

    ``end_date`` is exclusive: a one-day event ends on the following day.
    """

    summary: str
    description: str = ""
    start_date: date
    end_date: date


class ExternalEvent(BaseModel):
    """Event as returned by the calendar provider."""

    id: str
    summary: str | None = None
    description: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    all_day: bool = False


class CalendarEventRecord(BaseModel):
    """Local copy of an external event imported into the user's calendar."""

    id: str | None = None
    title: str
    description: str = ""
    start_datetime: datetime
    end_datetime: datetime
    category: str = "work"
    google_event_id: str
    created_by: str


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class SyncResult(BaseModel):
    """Outcome of a single-task sync. Exactly one flag is set."""

    created: bool = False
    updated: bool = False
    deleted: bool = False
    skipped: bool = False
    event_id: str | None = None
    warning: str | None = None


class BatchSyncResult(BaseModel):
    synced: int = 0
    total: int = 0
    failed: list[dict[str, str]] = Field(default_factory=list)


class NotificationCheckResult(BaseModel):
    created: int = 0


class ImportResult(BaseModel):
    imported: int = 0
    total: int = 0
