"""Unit tests for GoogleCalendarProvider.

Covers:
- Event create/replace/delete request shapes
- 404 on replace surfacing as NotFoundDriftError
- 404/410 on delete treated as success
- Non-2xx and transport failures as ExternalApiError
- List parsing (all-day, timed, cancelled, malformed items)
- open_google_provider with and without a stored token
- Credential redaction in error messages
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from projectflow.calendar.provider import (
    GOOGLE_CALENDAR_API_BASE_URL,
    GoogleCalendarProvider,
    open_google_provider,
)
from projectflow.errors import (
    ExternalApiError,
    IntegrationNotConnectedError,
    NotFoundDriftError,
    sanitize_error_message,
)
from projectflow.models import CalendarEventDraft

pytestmark = pytest.mark.unit

EVENTS_URL = f"{GOOGLE_CALENDAR_API_BASE_URL}/calendars/primary/events"


# ---------------------------------------------------------------------------
# Fixtures and helpers
# ---------------------------------------------------------------------------


def _mock_response(
    *,
    status_code: int,
    url: str = EVENTS_URL,
    method: str = "GET",
    json_body: dict | None = None,
    text: str = "",
) -> httpx.Response:
    request = httpx.Request(method, url)
    if json_body is not None:
        return httpx.Response(status_code=status_code, json=json_body, request=request)
    return httpx.Response(status_code=status_code, text=text, request=request)


def _make_provider(
    response: httpx.Response | None = None,
) -> tuple[GoogleCalendarProvider, MagicMock]:
    mock_client = MagicMock(spec=httpx.AsyncClient)
    mock_client.request = AsyncMock(return_value=response)
    provider = GoogleCalendarProvider("token-abc", http_client=mock_client)
    return provider, mock_client


def _draft() -> CalendarEventDraft:
    return CalendarEventDraft(
        summary="Ship report",
        description="Q2",
        start_date=date(2025, 3, 10),
        end_date=date(2025, 3, 11),
    )


# ---------------------------------------------------------------------------
# create_event
# ---------------------------------------------------------------------------


async def test_create_event_posts_all_day_body():
    provider, client = _make_provider(
        _mock_response(status_code=200, method="POST", json_body={"id": "evt-1"})
    )

    event_id = await provider.create_event(_draft())

    assert event_id == "evt-1"
    client.request.assert_awaited_once()
    args, kwargs = client.request.call_args
    assert args == ("POST", EVENTS_URL)
    assert kwargs["json"] == {
        "summary": "Ship report",
        "description": "Q2",
        "start": {"date": "2025-03-10"},
        "end": {"date": "2025-03-11"},
    }
    assert kwargs["headers"]["Authorization"] == "Bearer token-abc"


async def test_create_event_quotes_calendar_id():
    mock_client = MagicMock(spec=httpx.AsyncClient)
    mock_client.request = AsyncMock(
        return_value=_mock_response(status_code=200, method="POST", json_body={"id": "evt-1"})
    )
    provider = GoogleCalendarProvider(
        "token-abc", calendar_id="team@group.calendar.google.com", http_client=mock_client
    )

    await provider.create_event(_draft())

    url = mock_client.request.call_args.args[1]
    assert url.endswith("/calendars/team%40group.calendar.google.com/events")


async def test_create_event_missing_id_raises():
    provider, _ = _make_provider(_mock_response(status_code=200, method="POST", json_body={}))
    with pytest.raises(ExternalApiError, match="missing an event id"):
        await provider.create_event(_draft())


async def test_create_event_error_status_raises_with_google_message():
    provider, _ = _make_provider(
        _mock_response(
            status_code=403,
            method="POST",
            json_body={"error": {"message": "Insufficient Permission"}},
        )
    )
    with pytest.raises(ExternalApiError) as exc_info:
        await provider.create_event(_draft())
    assert exc_info.value.status_code == 403
    assert exc_info.value.message == "Insufficient Permission"


async def test_transport_error_becomes_external_api_error():
    mock_client = MagicMock(spec=httpx.AsyncClient)
    mock_client.request = AsyncMock(side_effect=httpx.ReadTimeout("timed out"))
    provider = GoogleCalendarProvider("token-abc", http_client=mock_client)

    with pytest.raises(ExternalApiError) as exc_info:
        await provider.create_event(_draft())

    assert exc_info.value.status_code is None
    assert "ReadTimeout" in exc_info.value.message
    # A single attempt per call.
    assert mock_client.request.await_count == 1


# ---------------------------------------------------------------------------
# replace_event
# ---------------------------------------------------------------------------


async def test_replace_event_puts_to_event_url():
    provider, client = _make_provider(
        _mock_response(status_code=200, method="PUT", json_body={"id": "evt-1"})
    )

    await provider.replace_event("evt-1", _draft())

    args, kwargs = client.request.call_args
    assert args == ("PUT", f"{EVENTS_URL}/evt-1")
    assert kwargs["json"]["start"] == {"date": "2025-03-10"}


async def test_replace_event_404_raises_drift():
    provider, _ = _make_provider(_mock_response(status_code=404, method="PUT", text="Not Found"))
    with pytest.raises(NotFoundDriftError) as exc_info:
        await provider.replace_event("evt-gone", _draft())
    assert exc_info.value.event_id == "evt-gone"
    assert exc_info.value.status_code == 404


async def test_replace_event_500_raises_external_api_error():
    provider, _ = _make_provider(_mock_response(status_code=500, method="PUT", text="Backend"))
    with pytest.raises(ExternalApiError) as exc_info:
        await provider.replace_event("evt-1", _draft())
    assert not isinstance(exc_info.value, NotFoundDriftError)
    assert exc_info.value.status_code == 500


async def test_replace_event_rejects_blank_event_id():
    provider, client = _make_provider()
    with pytest.raises(ValueError, match="event_id"):
        await provider.replace_event("  ", _draft())
    client.request.assert_not_awaited()


# ---------------------------------------------------------------------------
# delete_event
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("status_code", [200, 204, 404, 410])
async def test_delete_event_success_and_already_gone(status_code):
    provider, client = _make_provider(_mock_response(status_code=status_code, method="DELETE"))

    await provider.delete_event("evt-1")

    assert client.request.call_args.args == ("DELETE", f"{EVENTS_URL}/evt-1")


async def test_delete_event_500_raises():
    provider, _ = _make_provider(_mock_response(status_code=500, method="DELETE", text="boom"))
    with pytest.raises(ExternalApiError) as exc_info:
        await provider.delete_event("evt-1")
    assert exc_info.value.status_code == 500


# ---------------------------------------------------------------------------
# list_events
# ---------------------------------------------------------------------------


async def test_list_events_parses_items_and_sends_window():
    payload = {
        "items": [
            {
                "id": "all-day",
                "summary": "Offsite",
                "start": {"date": "2025-06-02"},
                "end": {"date": "2025-06-04"},
            },
            {
                "id": "timed",
                "summary": "Standup",
                "description": "daily",
                "start": {"dateTime": "2025-06-03T09:00:00Z"},
                "end": {"dateTime": "2025-06-03T09:15:00Z"},
            },
            {"id": "gone", "status": "cancelled"},
            {"summary": "no id"},
            "not-a-dict",
        ]
    }
    provider, client = _make_provider(_mock_response(status_code=200, json_body=payload))

    events = await provider.list_events(
        datetime(2025, 6, 1, tzinfo=UTC), datetime(2025, 8, 1, tzinfo=UTC)
    )

    assert [event.id for event in events] == ["all-day", "timed"]
    all_day, timed = events
    assert all_day.all_day is True
    assert all_day.start == datetime(2025, 6, 2)
    assert all_day.end == datetime(2025, 6, 4)
    assert timed.all_day is False
    assert timed.start == datetime(2025, 6, 3, 9, 0, tzinfo=UTC)
    assert timed.description == "daily"

    params = client.request.call_args.kwargs["params"]
    assert params["timeMin"] == "2025-06-01T00:00:00Z"
    assert params["timeMax"] == "2025-08-01T00:00:00Z"
    assert params["singleEvents"] is True
    assert params["orderBy"] == "startTime"


async def test_list_events_empty_payload():
    provider, _ = _make_provider(_mock_response(status_code=200, json_body={}))
    events = await provider.list_events(
        datetime(2025, 6, 1, tzinfo=UTC), datetime(2025, 8, 1, tzinfo=UTC)
    )
    assert events == []


async def test_list_events_invalid_json_raises():
    provider, _ = _make_provider(_mock_response(status_code=200, text="<html>"))
    with pytest.raises(ExternalApiError, match="invalid JSON"):
        await provider.list_events(
            datetime(2025, 6, 1, tzinfo=UTC), datetime(2025, 8, 1, tzinfo=UTC)
        )


# ---------------------------------------------------------------------------
# Construction and lifecycle
# ---------------------------------------------------------------------------


def test_blank_access_token_rejected():
    with pytest.raises(ValueError, match="access_token"):
        GoogleCalendarProvider("   ")


async def test_aclose_leaves_shared_client_open():
    provider, client = _make_provider()
    await provider.aclose()
    client.aclose.assert_not_called()


async def test_open_google_provider_requires_token(credentials):
    credentials.token = None
    with pytest.raises(IntegrationNotConnectedError) as exc_info:
        await open_google_provider(credentials)
    assert exc_info.value.provider == "googlecalendar"
    assert credentials.requested == ["googlecalendar"]


async def test_open_google_provider_uses_shared_client(credentials):
    client = MagicMock(spec=httpx.AsyncClient)
    provider = await open_google_provider(credentials, calendar_id="work", http_client=client)
    assert isinstance(provider, GoogleCalendarProvider)
    assert provider.name == "google"
    await provider.aclose()
    client.aclose.assert_not_called()


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------


class TestSanitizeErrorMessage:
    def test_redacts_key_value_pairs(self):
        message = sanitize_error_message("failed: access_token=abc123 refresh_token=xyz")
        assert "abc123" not in message
        assert "xyz" not in message
        assert "access_token=[REDACTED]" in message

    def test_redacts_json_values(self):
        message = sanitize_error_message('{"client_secret": "s3cret", "code": 1}')
        assert "s3cret" not in message
        assert '"client_secret": "[REDACTED]"' in message

    def test_redacts_bearer_tokens(self):
        assert sanitize_error_message("Authorization: Bearer ya29.abc") == (
            "Authorization: Bearer [REDACTED]"
        )

    def test_collapses_whitespace_and_truncates(self):
        message = sanitize_error_message("a\n\n  b " + "x" * 500, limit=20)
        assert message.startswith("a b ")
        assert len(message) == 20


async def test_error_message_from_response_is_redacted():
    provider, _ = _make_provider(
        _mock_response(
            status_code=401,
            method="POST",
            json_body={"error": {"message": "Invalid Credentials access_token=leaked"}},
        )
    )
    with pytest.raises(ExternalApiError) as exc_info:
        await provider.create_event(_draft())
    assert "leaked" not in str(exc_info.value)
