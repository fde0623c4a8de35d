"""Keep each task's external calendar event consistent with its due date.

A task is either ``Unlinked`` or ``Linked(event_id)``; the link lives in the
task's ``google_event_id`` column. Transitions:

- ``Unlinked --create--> Linked``
- ``Linked --update (due date set)--> Linked``
- ``Linked --update (due date cleared)--> Unlinked`` (remote event deleted)
- ``Linked --update (remote 404)--> Unlinked`` (link drift repaired)
- ``Linked --delete (own event)--> Unlinked``

Single-task operations propagate :class:`ExternalApiError`. The batch sync
isolates failures per task and reports counts instead.
"""

from __future__ import annotations

import logging

from opentelemetry import trace

from projectflow.calendar.mapper import build_event
from projectflow.calendar.provider import CalendarProvider
from projectflow.core.locks import UserLocks
from projectflow.errors import ExternalApiError, NotFoundDriftError
from projectflow.models import (
    BatchSyncResult,
    Linked,
    SyncAction,
    SyncResult,
    Task,
    TaskStatus,
    Unlinked,
    User,
)
from projectflow.storage.base import TaskStore

logger = logging.getLogger(__name__)

DEFAULT_BATCH_LIMIT = 200
DRIFT_WARNING = "Event not found in calendar"


class SyncReconciler:
    """Drives create/update/delete of external events for tasks."""

    def __init__(
        self,
        tasks: TaskStore,
        provider: CalendarProvider,
        *,
        title_prefix: str = "",
        batch_limit: int = DEFAULT_BATCH_LIMIT,
        locks: UserLocks | None = None,
    ) -> None:
        self._tasks = tasks
        self._provider = provider
        self._title_prefix = title_prefix
        self._batch_limit = batch_limit
        self._locks = locks or UserLocks()

    async def sync_event(
        self,
        action: SyncAction | str,
        task: Task | None,
        external_event_id: str | None = None,
    ) -> SyncResult:
        """Dispatch a single-task sync for the caller's *action*."""
        action = SyncAction(action)
        if action is SyncAction.delete:
            return await self.delete(task, external_event_id)
        if task is None:
            raise ValueError(f"A task is required for action {action.value!r}")
        if action is SyncAction.create:
            return await self.create(task)
        return await self.update(task, external_event_id)

    async def create(self, task: Task) -> SyncResult:
        if task.due_date is None:
            logger.debug("Task %s has no due date; skipping event creation", task.id)
            return SyncResult(skipped=True)

        draft = build_event(task, title_prefix=self._title_prefix)
        event_id = await self._provider.create_event(draft)
        try:
            await self._tasks.update(task.id, {"google_event_id": event_id})
        except Exception:
            # The new event would have no task pointing at it.
            await self._discard_event(event_id, task.id)
            raise
        logger.info("Linked task %s to calendar event %s", task.id, event_id)
        return SyncResult(created=True, event_id=event_id)

    async def update(self, task: Task, external_event_id: str | None = None) -> SyncResult:
        match task.link_state:
            case Linked(event_id=event_id):
                pass
            case Unlinked() if external_event_id:
                event_id = external_event_id
            case _:
                raise ValueError(f"Task {task.id!r} has no calendar event id to update")

        if task.due_date is None:
            # A task without a due date keeps no calendar entry.
            await self._provider.delete_event(event_id)
            await self._clear_link(task)
            logger.info("Due date cleared on task %s; deleted event %s", task.id, event_id)
            return SyncResult(deleted=True, event_id=event_id)

        draft = build_event(task, title_prefix=self._title_prefix)
        try:
            await self._provider.replace_event(event_id, draft)
        except NotFoundDriftError:
            await self._clear_link(task)
            logger.warning(
                "Calendar event %s for task %s no longer exists; link cleared",
                event_id,
                task.id,
            )
            return SyncResult(warning=DRIFT_WARNING, event_id=event_id)

        return SyncResult(updated=True, event_id=event_id)

    async def delete(self, task: Task | None, external_event_id: str | None = None) -> SyncResult:
        linked_id = task.google_event_id if task is not None else None
        event_id = external_event_id or linked_id
        if event_id:
            await self._provider.delete_event(event_id)
        if linked_id is not None and event_id == linked_id:
            await self._clear_link(task)
        elif linked_id is not None:
            logger.info(
                "Deleted event %s; task %s stays linked to %s", event_id, task.id, linked_id
            )
        return SyncResult(deleted=True, event_id=event_id)

    async def run_batch_sync(self, user: User) -> BatchSyncResult:
        """Create events for every unlinked, sync-eligible task the user owns.

        Tasks are processed one at a time; a failure on one task is logged and
        counted, never raised. Running the batch again after a partial failure
        converges because eligibility is re-derived from current task state.
        """
        tracer = trace.get_tracer("projectflow")
        async with self._locks.hold(user.id):
            with tracer.start_as_current_span("calendar.batch_sync") as span:
                candidates = await self._tasks.find(
                    {
                        "created_by": user.id,
                        "status": TaskStatus.todo.value,
                        "google_event_id": None,
                    },
                    not_null=["due_date"],
                    order="created_at",
                    limit=self._batch_limit,
                )
                eligible = [
                    t for t in candidates if t.is_sync_eligible and t.link_state == Unlinked()
                ]

                result = BatchSyncResult(total=len(eligible))
                for task in eligible:
                    try:
                        outcome = await self.create(task)
                    except Exception as exc:
                        error_msg = f"{type(exc).__name__}: {exc}"
                        result.failed.append({"task_id": task.id, "error": error_msg})
                        logger.warning("Failed to sync task %s: %s", task.id, error_msg)
                        continue
                    if outcome.created:
                        result.synced += 1

                span.set_attribute("tasks_total", result.total)
                span.set_attribute("tasks_synced", result.synced)
                span.set_attribute("failures", len(result.failed))

        logger.info(
            "Batch calendar sync for user %s: %d/%d synced",
            user.id,
            result.synced,
            result.total,
        )
        return result

    async def _clear_link(self, task: Task) -> None:
        await self._tasks.update(task.id, {"google_event_id": None})

    async def _discard_event(self, event_id: str, task_id: str) -> None:
        try:
            await self._provider.delete_event(event_id)
        except ExternalApiError:
            logger.exception(
                "Could not remove calendar event %s after failing to link task %s",
                event_id,
                task_id,
            )
