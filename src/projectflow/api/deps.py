"""Service wiring and FastAPI dependencies for the HTTP API.

``AppServices`` bundles the stores and collaborators a request needs. The
app factory either receives a ready-made instance (tests, embedding) or
builds a Postgres-backed one in its lifespan handler.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import httpx
from fastapi import Header, Request

from projectflow.calendar.provider import CalendarProvider, open_google_provider
from projectflow.calendar.reconciler import SyncReconciler
from projectflow.config import AppConfig
from projectflow.core.locks import UserLocks
from projectflow.core.logging import set_user_context
from projectflow.db import Database
from projectflow.models import User
from projectflow.notifications import NotificationService
from projectflow.storage import (
    CalendarEventStore,
    CredentialProvider,
    NotificationStore,
    PostgresCalendarEventStore,
    PostgresNotificationStore,
    PostgresSessionAuthenticator,
    PostgresTaskStore,
    SessionAuthenticator,
    TaskStore,
    TokenCredentialProvider,
)

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[], Awaitable[CalendarProvider]]


@dataclass
class AppServices:
    """Stores and collaborators shared by all requests."""

    config: AppConfig
    tasks: TaskStore
    notifications: NotificationStore
    calendar_events: CalendarEventStore
    credentials: CredentialProvider
    authenticator: SessionAuthenticator
    locks: UserLocks = field(default_factory=UserLocks)
    http_client: httpx.AsyncClient | None = None
    provider_factory: ProviderFactory | None = None

    async def open_calendar(self) -> CalendarProvider:
        """Open the caller's calendar; raises IntegrationNotConnectedError."""
        if self.provider_factory is not None:
            return await self.provider_factory()
        return await open_google_provider(
            self.credentials,
            calendar_id=self.config.calendar.calendar_id,
            timeout_s=self.config.calendar.request_timeout_s,
            http_client=self.http_client,
        )

    def reconciler(self, provider: CalendarProvider) -> SyncReconciler:
        return SyncReconciler(
            self.tasks,
            provider,
            title_prefix=self.config.calendar.title_prefix,
            batch_limit=self.config.calendar.batch_limit,
            locks=self.locks,
        )

    def notification_service(self) -> NotificationService:
        return NotificationService(
            self.tasks,
            self.notifications,
            due_tomorrow_title=self.config.notifications.due_tomorrow_title,
            action_url_template=self.config.notifications.action_url_template,
            locks=self.locks,
        )


def build_postgres_services(
    config: AppConfig,
    db: Database,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> AppServices:
    """Wire Postgres-backed stores around *db*'s open pool."""
    pool = db.require_pool()
    return AppServices(
        config=config,
        tasks=PostgresTaskStore(pool),
        notifications=PostgresNotificationStore(pool),
        calendar_events=PostgresCalendarEventStore(pool),
        credentials=TokenCredentialProvider(pool),
        authenticator=PostgresSessionAuthenticator(pool),
        http_client=http_client,
    )


def get_services(request: Request) -> AppServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Application services not initialized")
    return services


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


async def get_current_user(
    request: Request,
    authorization: str | None = Header(default=None),
) -> User:
    """Authenticate the caller before any work begins."""
    services = get_services(request)
    user = await services.authenticator.authenticate(_bearer_token(authorization))
    set_user_context(user.id)
    return user
