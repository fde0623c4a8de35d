"""Storage protocols and their Postgres implementations."""

from projectflow.storage.base import (
    CalendarEventStore,
    CredentialProvider,
    NotificationStore,
    SessionAuthenticator,
    TaskStore,
)
from projectflow.storage.postgres import (
    PostgresCalendarEventStore,
    PostgresNotificationStore,
    PostgresSessionAuthenticator,
    PostgresTaskStore,
    TokenCredentialProvider,
)

__all__ = [
    "CalendarEventStore",
    "CredentialProvider",
    "NotificationStore",
    "PostgresCalendarEventStore",
    "PostgresNotificationStore",
    "PostgresSessionAuthenticator",
    "PostgresTaskStore",
    "SessionAuthenticator",
    "TaskStore",
    "TokenCredentialProvider",
]
