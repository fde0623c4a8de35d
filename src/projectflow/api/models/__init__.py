"""Pydantic request/response models for the HTTP API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from projectflow.models import SyncAction, Task


class ErrorDetail(BaseModel):
    """Structured error payload."""

    code: str
    message: str
    details: dict | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    error: ErrorDetail


class NotConnectedResponse(BaseModel):
    """Returned with HTTP 200 when the calendar integration is not connected."""

    connected: bool = False
    provider: str
    message: str


class SyncEventRequest(BaseModel):
    """Body of ``POST /api/calendar/events``."""

    model_config = ConfigDict(populate_by_name=True)

    action: SyncAction
    task: Task | None = None
    google_event_id: str | None = Field(default=None, alias="googleEventId")


class NotificationActionRequest(BaseModel):
    """Body of ``POST /api/notifications``."""

    model_config = ConfigDict(populate_by_name=True)

    action: str
    notification_ids: list[str] = Field(default_factory=list, alias="notificationIds")


class MarkReadResponse(BaseModel):
    success: bool = True
