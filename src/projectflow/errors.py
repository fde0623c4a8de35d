"""Error taxonomy shared by the calendar and notification services.

Status code mapping used by the API layer (see ``projectflow.api.middleware``):

- ``AuthenticationError`` → 401
- ``IntegrationNotConnectedError`` → 200 with ``connected: false``
- ``ExternalApiError`` → 502
- ``ValueError`` (incl. ``MalformedDateError``) → 400
"""

from __future__ import annotations

import re


class ProjectFlowError(Exception):
    """Base class for ProjectFlow domain errors."""


class AuthenticationError(ProjectFlowError):
    """Raised when a request carries no valid caller session."""


class IntegrationNotConnectedError(ProjectFlowError):
    """Raised when the credential provider holds no token for an integration."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Integration {provider!r} is not connected")


class ExternalApiError(ProjectFlowError):
    """Raised when the external calendar API fails.

    ``status_code`` is ``None`` for transport failures (timeouts, connection
    errors) where no HTTP response was received.
    """

    def __init__(self, *, status_code: int | None, message: str) -> None:
        self.status_code = status_code
        self.message = message
        if status_code is None:
            super().__init__(f"Calendar API request failed: {message}")
        else:
            super().__init__(f"Calendar API request failed ({status_code}): {message}")


class NotFoundDriftError(ExternalApiError):
    """Raised when the provider no longer knows an event we hold a link to."""

    def __init__(self, event_id: str) -> None:
        self.event_id = event_id
        super().__init__(status_code=404, message=f"Event {event_id!r} not found")


class MalformedDateError(ProjectFlowError, ValueError):
    """Raised when a due date cannot be parsed as a calendar date."""

    def __init__(self, value: object) -> None:
        self.value = value
        super().__init__(f"Malformed due date: {value!r}")


_CREDENTIAL_PATTERNS = (
    (
        re.compile(r"(?i)\b(client_secret|refresh_token|access_token|token)\s*=\s*([^\s,;]+)"),
        r"\1=[REDACTED]",
    ),
    (
        re.compile(
            r"""(?i)(['"]?(?:client_secret|refresh_token|access_token|token)['"]?"""
            r"""\s*:\s*)(['"]).*?\2"""
        ),
        r'\1"[REDACTED]"',
    ),
    (
        re.compile(r"(?i)\b(Bearer)\s+[A-Za-z0-9._~+/=-]+"),
        r"\1 [REDACTED]",
    ),
)


def sanitize_error_message(message: str, *, limit: int = 200) -> str:
    """Redact credential values, collapse whitespace and truncate *message*."""
    redacted = message
    for pattern, replacement in _CREDENTIAL_PATTERNS:
        redacted = pattern.sub(replacement, redacted)
    return " ".join(redacted.split())[:limit]
