"""Process-wide logging over structlog's ProcessorFormatter.

Every module logs through ``logging.getLogger(__name__)``; this module only
decides how those records are rendered. Each record carries the deployment
name, the user the current request or CLI run acts for, and the ids of the
active OTel span.

``fmt="text"`` renders a colored console line, ``fmt="json"`` one JSON
object per line. With ``log_root`` set, a JSON copy of everything also goes
to ``{log_root}/{app_name}.log``.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from pathlib import Path

import structlog
from opentelemetry import trace

_app_name: ContextVar[str | None] = ContextVar("app_name", default=None)
_user_id: ContextVar[str | None] = ContextVar("user_id", default=None)

# Transport loggers that are only interesting when something goes wrong.
QUIET_LOGGERS = ("uvicorn.access", "uvicorn.error", "httpx", "httpcore")


def set_user_context(user_id: str | None) -> None:
    """Attribute subsequent records in this async context to *user_id*."""
    _user_id.set(user_id)


def add_request_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    event_dict["app"] = _app_name.get()
    event_dict["user_id"] = _user_id.get()
    span_context = trace.get_current_span().get_span_context()
    if span_context.trace_id:
        event_dict["trace_id"] = format(span_context.trace_id, "032x")
        event_dict["span_id"] = format(span_context.span_id, "016x")
    return event_dict


def _formatter(renderer: structlog.types.Processor, time_fmt: str) -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt=time_fmt),
            add_request_context,
            structlog.stdlib.ExtraAdder(),
        ],
    )


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | str | None = None,
    app_name: str | None = None,
) -> None:
    """Install the console (and optional file) handler on the root logger.

    Safe to call more than once; earlier handlers are replaced.
    """
    if app_name:
        _app_name.set(app_name)

    if fmt == "json":
        console_formatter = _formatter(structlog.processors.JSONRenderer(), "iso")
    else:
        console_formatter = _formatter(structlog.dev.ConsoleRenderer(), "%H:%M:%S")

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(console_formatter)

    root = logging.getLogger()
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()
    root.addHandler(console_handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_root is not None:
        log_dir = Path(log_root)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / f"{app_name or 'projectflow'}.log")
        file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer(), "iso"))
        root.addHandler(file_handler)
