"""Import external calendar events into the user's local calendar.

Events are matched on ``google_event_id``; an event imported once is never
imported again, so the import can be re-run freely.
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta

from projectflow.calendar.provider import CalendarProvider
from projectflow.models import CalendarEventRecord, ExternalEvent, ImportResult, User
from projectflow.storage.base import CalendarEventStore

logger = logging.getLogger(__name__)

DEFAULT_IMPORT_WINDOW_MONTHS = 2
UNTITLED_EVENT = "Untitled Event"


def import_window(
    now: datetime,
    months: int = DEFAULT_IMPORT_WINDOW_MONTHS,
) -> tuple[datetime, datetime]:
    """Return ``[start, end)`` from the first day of *now*'s month, *months* long."""
    if months < 1:
        raise ValueError("months must be at least 1")
    start = datetime.combine(now.date().replace(day=1), time.min, tzinfo=now.tzinfo)
    total = start.month - 1 + months
    end = start.replace(year=start.year + total // 12, month=total % 12 + 1)
    return start, end


def _to_record(event: ExternalEvent, user: User) -> CalendarEventRecord | None:
    if event.start is None:
        return None
    start = event.start
    if event.all_day:
        # All-day end dates are exclusive; store the last second of the final day.
        last_day = (event.end or start + timedelta(days=1)) - timedelta(days=1)
        end = datetime.combine(max(last_day, start).date(), time(23, 59, 59))
    else:
        end = event.end or start
    return CalendarEventRecord(
        title=event.summary or UNTITLED_EVENT,
        description=event.description or "",
        start_datetime=start,
        end_datetime=end,
        google_event_id=event.id,
        created_by=user.email or user.id,
    )


async def import_events(
    user: User,
    provider: CalendarProvider,
    events: CalendarEventStore,
    *,
    now: datetime | None = None,
    window_months: int = DEFAULT_IMPORT_WINDOW_MONTHS,
) -> ImportResult:
    """Copy events in the import window that the user has not imported yet."""
    start, end = import_window(now or datetime.now().astimezone(), window_months)
    remote_events = await provider.list_events(start, end)

    owner = user.email or user.id
    existing = await events.find({"created_by": owner})
    known_ids = {record.google_event_id for record in existing if record.google_event_id}

    imported = 0
    for event in remote_events:
        if event.id in known_ids:
            continue
        record = _to_record(event, user)
        if record is None:
            logger.debug("Skipping calendar event %s without a start", event.id)
            continue
        await events.create(record)
        known_ids.add(event.id)
        imported += 1

    logger.info(
        "Imported %d of %d calendar events for %s",
        imported,
        len(remote_events),
        owner,
    )
    return ImportResult(imported=imported, total=len(remote_events))
