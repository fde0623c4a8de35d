"""API error handling: consistent error responses.

Registers FastAPI exception handlers that convert domain exceptions into
standardised ``{"error": {"code": "...", "message": "..."}}`` JSON responses.

Status code mapping:
- ``AuthenticationError`` → 401 Unauthorized
- ``IntegrationNotConnectedError`` → 200 with ``{"connected": false, ...}``
- ``ExternalApiError`` → 502 Bad Gateway
- ``KeyError`` (unknown record) → 404 Not Found
- ``ValueError`` (incl. ``MalformedDateError``) → 400 Bad Request
- Any other ``Exception`` → 500 Internal Server Error
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from projectflow.api.models import ErrorDetail, ErrorResponse, NotConnectedResponse
from projectflow.errors import (
    AuthenticationError,
    ExternalApiError,
    IntegrationNotConnectedError,
    sanitize_error_message,
)

logger = logging.getLogger(__name__)


def _error(status_code: int, code: str, message: str, details: dict | None = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, details=details))
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def _handle_authentication_error(request: Request, exc: AuthenticationError) -> JSONResponse:
    logger.info("Rejected unauthenticated request to %s: %s", request.url.path, exc)
    return _error(401, "UNAUTHORIZED", "Unauthorized")


async def _handle_not_connected(
    request: Request,
    exc: IntegrationNotConnectedError,
) -> JSONResponse:
    logger.info("Integration %s not connected for %s", exc.provider, request.url.path)
    body = NotConnectedResponse(
        provider=exc.provider,
        message="Google Calendar not connected",
    )
    return JSONResponse(status_code=200, content=body.model_dump())


async def _handle_external_api_error(request: Request, exc: ExternalApiError) -> JSONResponse:
    logger.warning("External calendar API failure on %s: %s", request.url.path, exc)
    return _error(
        502,
        "EXTERNAL_API_ERROR",
        sanitize_error_message(str(exc)),
        details={"status_code": exc.status_code},
    )


async def _handle_key_error(request: Request, exc: KeyError) -> JSONResponse:
    record_id = exc.args[0] if exc.args else None
    logger.info("Record not found: %s", record_id)
    return _error(404, "NOT_FOUND", f"Record not found: {record_id}")


async def _handle_value_error(request: Request, exc: ValueError) -> JSONResponse:
    logger.info("Validation error: %s", exc)
    return _error(400, "VALIDATION_ERROR", str(exc))


class CatchAllErrorMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that catches any unhandled exception and returns a 500.

    Ensures exceptions not covered by ``add_exception_handler`` still produce
    the standard error envelope rather than a plain-text 500.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.error(
                "Unhandled exception on %s %s",
                request.method,
                request.url.path,
                exc_info=True,
            )
            return _error(500, "INTERNAL_ERROR", "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI application."""
    app.add_exception_handler(AuthenticationError, _handle_authentication_error)  # type: ignore[arg-type]
    app.add_exception_handler(IntegrationNotConnectedError, _handle_not_connected)  # type: ignore[arg-type]
    app.add_exception_handler(ExternalApiError, _handle_external_api_error)  # type: ignore[arg-type]
    app.add_exception_handler(KeyError, _handle_key_error)  # type: ignore[arg-type]
    app.add_exception_handler(ValueError, _handle_value_error)  # type: ignore[arg-type]
    app.add_middleware(CatchAllErrorMiddleware)
