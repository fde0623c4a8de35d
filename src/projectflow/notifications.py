"""Due-date notifications with per-(user, type, task) deduplication.

Due dates are calendar dates with no time of day, so alerting works at day
granularity only: a task is "due tomorrow" when its due date is the day after
the evaluating process's local date.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from opentelemetry import trace

from projectflow.calendar.mapper import parse_due_date
from projectflow.core.locks import UserLocks
from projectflow.errors import MalformedDateError
from projectflow.models import (
    NOTIFICATION_TYPE_DUE_TOMORROW,
    NotificationCheckResult,
    Task,
    TaskStatus,
    User,
)
from projectflow.storage.base import NotificationStore, TaskStore

logger = logging.getLogger(__name__)

DEFAULT_DUE_TOMORROW_TITLE = "Task Due Tomorrow"
DEFAULT_ACTION_URL_TEMPLATE = "/ProjectDetails?id={project_id}"


@dataclass(frozen=True)
class NotificationCandidate:
    user_id: str
    type: str
    related_entity_id: str
    title: str
    message: str
    action_url: str | None = None

    def as_fields(self) -> dict[str, object]:
        return {
            "user_id": self.user_id,
            "type": self.type,
            "related_entity_id": self.related_entity_id,
            "title": self.title,
            "message": self.message,
            "action_url": self.action_url,
            "read": False,
        }


def is_due_tomorrow(due_date: str | date, now: datetime) -> bool:
    """True when *due_date* falls on the calendar day after ``now.date()``."""
    return parse_due_date(due_date) == now.date() + timedelta(days=1)


class NotificationDeduplicator:
    """Emits at most one notification per ``(user_id, type, related_entity_id)``."""

    def __init__(self, notifications: NotificationStore) -> None:
        self._notifications = notifications

    async def emit(self, candidate: NotificationCandidate) -> bool:
        """Create *candidate* unless a matching notification exists.

        Returns True only when a new notification was created. The store's
        uniqueness constraint catches concurrent creators that both pass the
        existence check; ``create`` then returns ``None``.
        """
        existing = await self._notifications.find(
            {
                "user_id": candidate.user_id,
                "type": candidate.type,
                "related_entity_id": candidate.related_entity_id,
            }
        )
        if existing:
            return False

        created = await self._notifications.create(candidate.as_fields())
        if created is None:
            logger.debug(
                "Notification %s for %s already created concurrently",
                candidate.type,
                candidate.related_entity_id,
            )
            return False
        return True


class NotificationService:
    """Heartbeat-driven due-date notifications for one user at a time."""

    def __init__(
        self,
        tasks: TaskStore,
        notifications: NotificationStore,
        *,
        due_tomorrow_title: str = DEFAULT_DUE_TOMORROW_TITLE,
        action_url_template: str = DEFAULT_ACTION_URL_TEMPLATE,
        locks: UserLocks | None = None,
    ) -> None:
        self._tasks = tasks
        self._notifications = notifications
        self._dedup = NotificationDeduplicator(notifications)
        self._due_tomorrow_title = due_tomorrow_title
        self._action_url_template = action_url_template
        self._locks = locks or UserLocks()

    def _due_tomorrow_candidate(self, user: User, task: Task) -> NotificationCandidate:
        return NotificationCandidate(
            user_id=user.id,
            type=NOTIFICATION_TYPE_DUE_TOMORROW,
            related_entity_id=task.id,
            title=self._due_tomorrow_title,
            message=f'Task "{task.title or ""}" is due tomorrow.',
            action_url=self._action_url_template.format(project_id=task.project_id or ""),
        )

    async def check_notifications(
        self,
        user: User,
        *,
        now: datetime | None = None,
    ) -> NotificationCheckResult:
        """Create a due-tomorrow notification for each eligible task.

        Returns the number of notifications actually created, not the number
        of tasks examined.
        """
        reference = now or datetime.now()
        tracer = trace.get_tracer("projectflow")
        async with self._locks.hold(user.id):
            with tracer.start_as_current_span("notifications.check") as span:
                tasks = await self._tasks.find(
                    {"assigned_to": user.id, "status": TaskStatus.todo.value}
                )

                created = 0
                for task in tasks:
                    if task.due_date is None:
                        continue
                    try:
                        due_tomorrow = is_due_tomorrow(task.due_date, reference)
                    except MalformedDateError:
                        logger.warning(
                            "Skipping task %s with malformed due date %r",
                            task.id,
                            task.due_date,
                        )
                        continue
                    if not due_tomorrow:
                        continue
                    if await self._dedup.emit(self._due_tomorrow_candidate(user, task)):
                        created += 1

                span.set_attribute("tasks_examined", len(tasks))
                span.set_attribute("notifications_created", created)

        if created:
            logger.info("Created %d due-tomorrow notification(s) for user %s", created, user.id)
        return NotificationCheckResult(created=created)

    async def mark_read(self, user: User, notification_ids: Iterable[str]) -> bool:
        """Mark the listed notifications read. Ids the user does not own are ignored."""
        for notification_id in notification_ids:
            owned = await self._notifications.find({"id": notification_id, "user_id": user.id})
            if not owned:
                logger.info(
                    "Ignoring mark-read for notification %s not owned by %s",
                    notification_id,
                    user.id,
                )
                continue
            await self._notifications.update(notification_id, {"read": True})
        return True
