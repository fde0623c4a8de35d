"""Translate a task's due date into an all-day calendar event."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any

from projectflow.errors import MalformedDateError
from projectflow.models import CalendarEventDraft, Task


def parse_due_date(value: str | date) -> date:
    """Parse an ISO calendar date, tolerating a trailing time component.

    Raises :class:`MalformedDateError` for anything else.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise MalformedDateError(value)

    normalized = value.strip()
    try:
        return date.fromisoformat(normalized)
    except ValueError:
        pass
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"
    try:
        return datetime.fromisoformat(normalized).date()
    except ValueError as exc:
        raise MalformedDateError(value) from exc


def build_event(task: Task, *, title_prefix: str = "") -> CalendarEventDraft:
    """Build the all-day event for *task*.

    The caller must check that the task has a due date first.
    """
    if task.due_date is None:
        raise ValueError(f"Task {task.id!r} has no due date and cannot be mapped")

    start = parse_due_date(task.due_date)
    return CalendarEventDraft(
        summary=f"{title_prefix}{task.title or ''}",
        description=task.description or "",
        start_date=start,
        end_date=start + timedelta(days=1),
    )


def to_google_body(draft: CalendarEventDraft) -> dict[str, Any]:
    """Render *draft* as a Google Calendar all-day event body."""
    return {
        "summary": draft.summary,
        "description": draft.description,
        "start": {"date": draft.start_date.isoformat()},
        "end": {"date": draft.end_date.isoformat()},
    }
