"""Notification endpoint: heartbeat check and mark-read.

``POST /api/notifications`` dispatches on ``action``:

- ``check_notifications`` → ``{"created": n}``
- ``mark_read`` → ``{"success": true}``
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from projectflow.api.deps import AppServices, get_current_user, get_services
from projectflow.api.models import MarkReadResponse, NotificationActionRequest
from projectflow.models import NotificationCheckResult, User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])

ACTION_CHECK = "check_notifications"
ACTION_MARK_READ = "mark_read"


@router.post("", response_model=None)
async def notification_action(
    body: NotificationActionRequest,
    user: User = Depends(get_current_user),
    services: AppServices = Depends(get_services),
) -> NotificationCheckResult | MarkReadResponse:
    service = services.notification_service()
    if body.action == ACTION_CHECK:
        return await service.check_notifications(user)
    if body.action == ACTION_MARK_READ:
        success = await service.mark_read(user, body.notification_ids)
        return MarkReadResponse(success=success)
    raise ValueError(f"Invalid action: {body.action!r}")
