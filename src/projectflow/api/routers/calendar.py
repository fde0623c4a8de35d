"""Calendar sync endpoints.

- ``POST /api/calendar/events``: create/update/delete one task's event
- ``POST /api/calendar/sync``: batch-create events for unlinked todo tasks
- ``POST /api/calendar/import``: copy external events into the local calendar
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from projectflow.api.deps import AppServices, get_current_user, get_services
from projectflow.api.models import SyncEventRequest
from projectflow.calendar.importer import import_events
from projectflow.models import BatchSyncResult, ImportResult, SyncResult, User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/calendar", tags=["calendar"])


@router.post("/events", response_model=SyncResult)
async def sync_event(
    body: SyncEventRequest,
    user: User = Depends(get_current_user),
    services: AppServices = Depends(get_services),
) -> SyncResult:
    """Reconcile one task's calendar event. External failures fail the request."""
    provider = await services.open_calendar()
    try:
        return await services.reconciler(provider).sync_event(
            body.action, body.task, body.google_event_id
        )
    finally:
        await provider.aclose()


@router.post("/sync", response_model=BatchSyncResult)
async def run_batch_sync(
    user: User = Depends(get_current_user),
    services: AppServices = Depends(get_services),
) -> BatchSyncResult:
    provider = await services.open_calendar()
    try:
        return await services.reconciler(provider).run_batch_sync(user)
    finally:
        await provider.aclose()


@router.post("/import", response_model=ImportResult)
async def import_calendar_events(
    user: User = Depends(get_current_user),
    services: AppServices = Depends(get_services),
) -> ImportResult:
    provider = await services.open_calendar()
    try:
        return await import_events(
            user,
            provider,
            services.calendar_events,
            window_months=services.config.calendar.import_window_months,
        )
    finally:
        await provider.aclose()
