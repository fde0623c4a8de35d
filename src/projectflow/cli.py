"""CLI for ProjectFlow: serve the API and run heartbeat jobs from a scheduler."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import click
import httpx

from projectflow.api.deps import AppServices, build_postgres_services
from projectflow.calendar.importer import import_events
from projectflow.config import AppConfig, ConfigError, load_config
from projectflow.core.logging import configure_logging, set_user_context
from projectflow.db import Database
from projectflow.errors import ExternalApiError, IntegrationNotConnectedError
from projectflow.models import User

logger = logging.getLogger(__name__)


@click.group()
@click.version_option(version="0.1.0")
@click.option(
    "--config-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Directory containing projectflow.toml (default: $PROJECTFLOW_CONFIG_DIR)",
)
@click.pass_context
def cli(ctx: click.Context, config_dir: Path | None) -> None:
    """ProjectFlow: calendar sync and due-date notifications."""
    try:
        config = load_config(config_dir)
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_root=config.logging.log_root,
        app_name=config.name,
    )
    ctx.obj = config


@cli.command()
@click.option("--host", default=None, help="Bind address (default: [api].host)")
@click.option("--port", type=int, default=None, help="Bind port (default: [api].port)")
@click.pass_obj
def serve(config: AppConfig, host: str | None, port: int | None) -> None:
    """Run the HTTP API."""
    import uvicorn

    from projectflow.api.app import create_app

    uvicorn.run(
        create_app(config),
        host=host or config.api.host,
        port=port or config.api.port,
        log_config=None,
    )


@cli.command("init-db")
@click.pass_obj
def init_db(config: AppConfig) -> None:
    """Create the database and tables if missing."""

    async def _init() -> None:
        db = Database.from_env(config.db_name)
        await db.provision()
        await db.connect()
        try:
            await db.ensure_schema()
        finally:
            await db.close()

    asyncio.run(_init())
    click.echo(f"Database {config.db_name} is ready")


def _run_for_user(
    config: AppConfig,
    user: User,
    job: Callable[[AppServices, User], Awaitable[Any]],
) -> Any:
    """Open services, run *job* for *user*, and map expected failures to exit codes."""

    async def _run() -> Any:
        db = Database.from_env(config.db_name)
        await db.connect()
        async with httpx.AsyncClient(timeout=config.calendar.request_timeout_s) as http_client:
            try:
                services = build_postgres_services(config, db, http_client=http_client)
                set_user_context(user.id)
                return await job(services, user)
            finally:
                await db.close()

    try:
        return asyncio.run(_run())
    except IntegrationNotConnectedError as exc:
        click.echo(f"Not connected: {exc}", err=True)
        sys.exit(2)
    except ExternalApiError as exc:
        click.echo(f"Calendar API error: {exc}", err=True)
        sys.exit(1)


def _user_options(fn: Callable) -> Callable:
    fn = click.option("--email", default=None, help="User email (owner of imported events)")(fn)
    return click.option("--user", "user_id", required=True, help="User id to run for")(fn)


@cli.command()
@_user_options
@click.pass_obj
def sync(config: AppConfig, user_id: str, email: str | None) -> None:
    """Create calendar events for the user's unlinked todo tasks."""

    async def _job(services: AppServices, user: User) -> Any:
        provider = await services.open_calendar()
        try:
            return await services.reconciler(provider).run_batch_sync(user)
        finally:
            await provider.aclose()

    result = _run_for_user(config, User(id=user_id, email=email), _job)
    click.echo(json.dumps(result.model_dump()))


@cli.command("check-notifications")
@_user_options
@click.pass_obj
def check_notifications(config: AppConfig, user_id: str, email: str | None) -> None:
    """Create due-tomorrow notifications for the user."""

    async def _job(services: AppServices, user: User) -> Any:
        return await services.notification_service().check_notifications(user)

    result = _run_for_user(config, User(id=user_id, email=email), _job)
    click.echo(json.dumps(result.model_dump()))


@cli.command("import-events")
@_user_options
@click.pass_obj
def import_events_cmd(config: AppConfig, user_id: str, email: str | None) -> None:
    """Import the user's external calendar events."""

    async def _job(services: AppServices, user: User) -> Any:
        provider = await services.open_calendar()
        try:
            return await import_events(
                user,
                provider,
                services.calendar_events,
                window_months=config.calendar.import_window_months,
            )
        finally:
            await provider.aclose()

    result = _run_for_user(config, User(id=user_id, email=email), _job)
    click.echo(json.dumps(result.model_dump()))


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
