"""Calendar provider contract and the Google Calendar implementation.

Every request is a single attempt bounded by the client timeout. A 404 on
delete counts as success; a 404 on replace surfaces as
:class:`NotFoundDriftError` so the reconciler can repair the task link.
"""

from __future__ import annotations

import abc
import logging
from datetime import UTC, date, datetime, time
from typing import Any
from urllib.parse import quote

import httpx

from projectflow.calendar.mapper import to_google_body
from projectflow.errors import (
    ExternalApiError,
    IntegrationNotConnectedError,
    NotFoundDriftError,
    sanitize_error_message,
)
from projectflow.models import GOOGLE_CALENDAR_PROVIDER, CalendarEventDraft, ExternalEvent
from projectflow.storage.base import CredentialProvider

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
DEFAULT_CALENDAR_ID = "primary"
DEFAULT_REQUEST_TIMEOUT_S = 30.0
LIST_EVENTS_MAX_RESULTS = 2500


class CalendarProvider(abc.ABC):
    """Operations the sync services need from an external calendar."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Provider name."""

    @abc.abstractmethod
    async def create_event(self, draft: CalendarEventDraft) -> str:
        """Create an event and return the provider-assigned id."""

    @abc.abstractmethod
    async def replace_event(self, event_id: str, draft: CalendarEventDraft) -> None:
        """Fully replace an existing event. Raises NotFoundDriftError on 404."""

    @abc.abstractmethod
    async def delete_event(self, event_id: str) -> None:
        """Delete an event. A missing event is not an error."""

    @abc.abstractmethod
    async def list_events(self, start_at: datetime, end_at: datetime) -> list[ExternalEvent]:
        """List single (expanded) events overlapping the window."""

    async def aclose(self) -> None:  # noqa: B027
        """Release provider resources. Default: no-op."""


def _safe_google_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return sanitize_error_message(message)
        if isinstance(error_payload, str) and error_payload.strip():
            return sanitize_error_message(error_payload)

    raw_text = response.text.strip()
    if raw_text:
        return sanitize_error_message(raw_text)
    return "Request failed without an error payload"


def _google_rfc3339(value: datetime) -> str:
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return normalized.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _parse_google_boundary(payload: Any) -> tuple[datetime | None, bool]:
    """Return ``(value, all_day)`` for a Google ``start``/``end`` object."""
    if not isinstance(payload, dict):
        return None, False
    raw_datetime = payload.get("dateTime")
    if isinstance(raw_datetime, str) and raw_datetime.strip():
        normalized = raw_datetime.strip()
        if normalized.endswith("Z"):
            normalized = f"{normalized[:-1]}+00:00"
        try:
            return datetime.fromisoformat(normalized), False
        except ValueError:
            return None, False
    raw_date = payload.get("date")
    if isinstance(raw_date, str) and raw_date.strip():
        try:
            return datetime.combine(date.fromisoformat(raw_date.strip()), time.min), True
        except ValueError:
            return None, True
    return None, False


def _google_event_to_external_event(payload: dict[str, Any]) -> ExternalEvent | None:
    event_id = payload.get("id")
    if not isinstance(event_id, str) or not event_id:
        return None
    if payload.get("status") == "cancelled":
        return None
    start, all_day = _parse_google_boundary(payload.get("start"))
    end, _ = _parse_google_boundary(payload.get("end"))
    return ExternalEvent(
        id=event_id,
        summary=payload.get("summary"),
        description=payload.get("description"),
        start=start,
        end=end,
        all_day=all_day,
    )


class GoogleCalendarProvider(CalendarProvider):
    """Google Calendar v3 over httpx with a caller-supplied bearer token."""

    def __init__(
        self,
        access_token: str,
        *,
        calendar_id: str = DEFAULT_CALENDAR_ID,
        http_client: httpx.AsyncClient | None = None,
        timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S,
    ) -> None:
        if not access_token or not access_token.strip():
            raise ValueError("access_token must be a non-empty string")
        self._access_token = access_token.strip()
        self._calendar_id = calendar_id
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout_s)

    @property
    def name(self) -> str:
        return "google"

    def _events_path(self, event_id: str | None = None) -> str:
        path = f"/calendars/{quote(self._calendar_id, safe='')}/events"
        if event_id is None:
            return path
        normalized_event_id = event_id.strip()
        if not normalized_event_id:
            raise ValueError("event_id must be a non-empty string")
        return f"{path}/{quote(normalized_event_id, safe='')}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }
        try:
            return await self._http_client.request(
                method,
                f"{GOOGLE_CALENDAR_API_BASE_URL}{path}",
                params=params,
                json=json_body,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise ExternalApiError(
                status_code=None,
                message=sanitize_error_message(f"{type(exc).__name__}: {exc}"),
            ) from exc

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.status_code < 200 or response.status_code >= 300:
            raise ExternalApiError(
                status_code=response.status_code,
                message=_safe_google_error_message(response),
            )

    @staticmethod
    def _json_object(response: httpx.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise ExternalApiError(
                status_code=response.status_code,
                message="Google Calendar API returned invalid JSON for a successful response",
            ) from exc
        if not isinstance(payload, dict):
            raise ExternalApiError(
                status_code=response.status_code,
                message="Google Calendar API returned an unexpected JSON payload shape",
            )
        return payload

    async def create_event(self, draft: CalendarEventDraft) -> str:
        response = await self._request("POST", self._events_path(), json_body=to_google_body(draft))
        self._raise_for_status(response)
        payload = self._json_object(response)
        event_id = payload.get("id")
        if not isinstance(event_id, str) or not event_id:
            raise ExternalApiError(
                status_code=response.status_code,
                message="Google Calendar create response is missing an event id",
            )
        logger.debug("Created calendar event %s", event_id)
        return event_id

    async def replace_event(self, event_id: str, draft: CalendarEventDraft) -> None:
        response = await self._request(
            "PUT", self._events_path(event_id), json_body=to_google_body(draft)
        )
        if response.status_code == 404:
            raise NotFoundDriftError(event_id)
        self._raise_for_status(response)

    async def delete_event(self, event_id: str) -> None:
        response = await self._request("DELETE", self._events_path(event_id))

        # 404/410 means the event is already gone.
        if response.status_code in (404, 410):
            logger.debug("delete_event: event %r already deleted; treating as success", event_id)
            return
        self._raise_for_status(response)

    async def list_events(self, start_at: datetime, end_at: datetime) -> list[ExternalEvent]:
        params: dict[str, Any] = {
            "timeMin": _google_rfc3339(start_at),
            "timeMax": _google_rfc3339(end_at),
            "singleEvents": True,
            "orderBy": "startTime",
            "maxResults": LIST_EVENTS_MAX_RESULTS,
        }
        response = await self._request("GET", self._events_path(), params=params)
        self._raise_for_status(response)
        items = self._json_object(response).get("items") or []
        if not isinstance(items, list):
            raise ExternalApiError(
                status_code=response.status_code,
                message="Google Calendar list response has a non-list items field",
            )

        events: list[ExternalEvent] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            event = _google_event_to_external_event(item)
            if event is not None:
                events.append(event)
        return events

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()


async def open_google_provider(
    credentials: CredentialProvider,
    *,
    calendar_id: str = DEFAULT_CALENDAR_ID,
    timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S,
    http_client: httpx.AsyncClient | None = None,
) -> GoogleCalendarProvider:
    """Build a Google provider for the caller's connected calendar.

    Raises :class:`IntegrationNotConnectedError` when no token is available.
    """
    access_token = await credentials.get_access_token(GOOGLE_CALENDAR_PROVIDER)
    if not access_token:
        raise IntegrationNotConnectedError(GOOGLE_CALENDAR_PROVIDER)
    return GoogleCalendarProvider(
        access_token,
        calendar_id=calendar_id,
        http_client=http_client,
        timeout_s=timeout_s,
    )
