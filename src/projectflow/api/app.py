"""HTTP API: FastAPI application factory.

The app factory creates a FastAPI instance with:
- CORS middleware (origins from ``[api].cors_origins``)
- Lifespan handler that opens the DB pool, ensures the schema and shares
  one bounded-timeout httpx client across requests
- Health endpoint at GET /api/health
- Calendar and notification routers
"""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from projectflow.api.deps import AppServices, build_postgres_services
from projectflow.api.middleware import register_error_handlers
from projectflow.api.routers.calendar import router as calendar_router
from projectflow.api.routers.notifications import router as notifications_router
from projectflow.config import AppConfig, load_config
from projectflow.db import Database

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build Postgres-backed services unless the factory was given some."""
    if getattr(app.state, "services", None) is not None:
        yield
        return

    config: AppConfig = app.state.config
    db = Database.from_env(config.db_name)
    await db.connect()
    await db.ensure_schema()
    http_client = httpx.AsyncClient(timeout=config.calendar.request_timeout_s)
    app.state.services = build_postgres_services(config, db, http_client=http_client)
    logger.info("Services initialized for database %s", config.db_name)

    try:
        yield
    finally:
        app.state.services = None
        await http_client.aclose()
        await db.close()


def create_app(
    config: AppConfig | None = None,
    services: AppServices | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    config:
        Application config. Loaded from ``$PROJECTFLOW_CONFIG_DIR`` when None.
    services:
        Pre-built services. When set, the lifespan handler does not touch
        the database.
    """
    if config is None:
        config = services.config if services is not None else load_config()

    app = FastAPI(
        title="ProjectFlow API",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.router.redirect_slashes = False
    app.state.config = config
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(calendar_router)
    app.include_router(notifications_router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    return app
