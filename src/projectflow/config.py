"""Application configuration loading and validation.

Reads ``projectflow.toml`` from a config directory, resolves ``${VAR}``
environment references, and returns a validated ``AppConfig`` dataclass.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from projectflow.calendar.importer import DEFAULT_IMPORT_WINDOW_MONTHS
from projectflow.calendar.provider import DEFAULT_CALENDAR_ID, DEFAULT_REQUEST_TIMEOUT_S
from projectflow.calendar.reconciler import DEFAULT_BATCH_LIMIT
from projectflow.notifications import DEFAULT_ACTION_URL_TEMPLATE, DEFAULT_DUE_TOMORROW_TITLE

CONFIG_FILENAME = "projectflow.toml"
CONFIG_DIR_ENV = "PROJECTFLOW_CONFIG_DIR"

# Pattern matching ${VAR_NAME}: supports alphanumeric + underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_SUPPORTED_PROVIDERS = ("google",)


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [projectflow.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class CalendarConfig:
    """Calendar sync configuration from the [calendar] section.

    ``title_prefix`` is empty by default so event summaries mirror task
    titles exactly. Set it (e.g. ``"ProjectFlow: "``) to mark synced events.
    """

    provider: str = "google"
    calendar_id: str = DEFAULT_CALENDAR_ID
    request_timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S
    title_prefix: str = ""
    batch_limit: int = DEFAULT_BATCH_LIMIT
    import_window_months: int = DEFAULT_IMPORT_WINDOW_MONTHS


@dataclass
class NotificationConfig:
    """Display payload for generated notifications from [notifications]."""

    due_tomorrow_title: str = DEFAULT_DUE_TOMORROW_TITLE
    action_url_template: str = DEFAULT_ACTION_URL_TEMPLATE


@dataclass
class ApiConfig:
    """HTTP surface configuration from [api]."""

    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:5173"])


@dataclass
class AppConfig:
    """Parsed and validated application configuration."""

    name: str = "projectflow"
    db_name: str = "projectflow"
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    calendar: CalendarConfig = field(default_factory=CalendarConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    api: ApiConfig = field(default_factory=ApiConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values (int, bool,
    float, None) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _section(data: dict[str, Any], key: str, parent: str | None = None) -> dict[str, Any]:
    section = data.get(key, {})
    if not isinstance(section, dict):
        name = f"{parent}.{key}" if parent else key
        raise ConfigError(f"[{name}] must be a table")
    return section


def _positive_int(value: Any, name: str) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {name}: {value!r}. Must be a positive integer.") from exc
    if parsed <= 0:
        raise ConfigError(f"Invalid {name}: {value!r}. Must be a positive integer.")
    return parsed


def _parse_calendar(section: dict[str, Any]) -> CalendarConfig:
    provider = str(section.get("provider", "google")).strip().lower()
    if provider not in _SUPPORTED_PROVIDERS:
        raise ConfigError(
            f"Invalid calendar.provider: {provider!r}. Expected one of {_SUPPORTED_PROVIDERS}."
        )
    calendar_id = str(section.get("calendar_id", DEFAULT_CALENDAR_ID)).strip()
    if not calendar_id:
        raise ConfigError("calendar.calendar_id must be a non-empty string")

    try:
        timeout = float(section.get("request_timeout_s", DEFAULT_REQUEST_TIMEOUT_S))
    except (TypeError, ValueError) as exc:
        raise ConfigError("calendar.request_timeout_s must be a number") from exc
    if timeout <= 0:
        raise ConfigError(f"Invalid calendar.request_timeout_s: {timeout!r}. Must be positive.")

    return CalendarConfig(
        provider=provider,
        calendar_id=calendar_id,
        request_timeout_s=timeout,
        title_prefix=str(section.get("title_prefix", "")),
        batch_limit=_positive_int(
            section.get("batch_limit", DEFAULT_BATCH_LIMIT), "calendar.batch_limit"
        ),
        import_window_months=_positive_int(
            section.get("import_window_months", DEFAULT_IMPORT_WINDOW_MONTHS),
            "calendar.import_window_months",
        ),
    )


def parse_config(data: dict[str, Any]) -> AppConfig:
    """Validate a decoded TOML document into an ``AppConfig``."""
    data = resolve_env_vars(data)

    app_section = _section(data, "projectflow")
    name = str(app_section.get("name", "projectflow")).strip() or "projectflow"

    db_section = _section(app_section, "db", "projectflow")
    db_name = str(db_section.get("name", name)).strip()
    if not db_name:
        raise ConfigError("projectflow.db.name must be a non-empty string")

    logging_section = _section(app_section, "logging", "projectflow")
    log_format = str(logging_section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(
            f"Invalid projectflow.logging.format: {log_format!r}. Expected 'text' or 'json'."
        )
    logging_config = LoggingConfig(
        level=str(logging_section.get("level", "INFO")).upper(),
        format=log_format,
        log_root=logging_section.get("log_root"),
    )

    notifications_section = _section(data, "notifications")
    notifications = NotificationConfig(
        due_tomorrow_title=str(
            notifications_section.get("due_tomorrow_title", DEFAULT_DUE_TOMORROW_TITLE)
        ),
        action_url_template=str(
            notifications_section.get("action_url_template", DEFAULT_ACTION_URL_TEMPLATE)
        ),
    )

    api_section = _section(data, "api")
    raw_origins = api_section.get("cors_origins", ["http://localhost:5173"])
    if not isinstance(raw_origins, list):
        raise ConfigError("api.cors_origins must be a list of strings")
    api = ApiConfig(
        host=str(api_section.get("host", "127.0.0.1")),
        port=_positive_int(api_section.get("port", 8000), "api.port"),
        cors_origins=[str(origin).strip() for origin in raw_origins if str(origin).strip()],
    )

    return AppConfig(
        name=name,
        db_name=db_name,
        logging=logging_config,
        calendar=_parse_calendar(_section(data, "calendar")),
        notifications=notifications,
        api=api,
    )


def load_config(config_dir: Path | None = None) -> AppConfig:
    """Load ``projectflow.toml`` from *config_dir*.

    When *config_dir* is None, ``$PROJECTFLOW_CONFIG_DIR`` is used; when that
    is unset too, defaults are returned.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or has invalid values.
    """
    if config_dir is None:
        env_dir = os.environ.get(CONFIG_DIR_ENV)
        if not env_dir:
            return AppConfig()
        config_dir = Path(env_dir)

    toml_path = config_dir / CONFIG_FILENAME
    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    return parse_config(data)
