"""
Structured logging for Tollgate.

structlog renders JSON in production and colored console output in
development. Log lines emitted while a mutation holds its workspace lock
carry the workspace and actor through ``mutation_context``; the request id
bound by the API middleware is merged the same way.
"""

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import structlog
from structlog.types import EventDict, Processor

# Libraries that log every statement or connection at INFO
_NOISY_LOGGERS = ("asyncio", "aiosqlite", "sqlalchemy.engine", "redis")

_app_name = "tollgate-api"


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["app"] = _app_name
    return event_dict


def utc_timestamper(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add an ISO8601 UTC timestamp with millisecond precision."""
    now = datetime.now(UTC)
    event_dict["timestamp"] = now.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
    return event_dict


def stringify_identifiers(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Render role/group/entry ids and audit enums as plain strings."""
    for key, value in event_dict.items():
        if isinstance(value, uuid.UUID):
            event_dict[key] = str(value)
        elif isinstance(value, Enum):
            event_dict[key] = value.value
    return event_dict


def reorder_keys(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Put level, timestamp and workspace first so JSON lines scan easily."""
    ordered: EventDict = {}
    for key in ("level", "timestamp", "workspace_id"):
        if key in event_dict:
            ordered[key] = event_dict.pop(key)
    ordered.update(event_dict)
    return ordered


def _final_processors(json_logs: bool) -> list[Processor]:
    if json_logs:
        return [reorder_keys, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=True)]


def configure_logging(
    json_logs: bool = True, log_level: str = "INFO", app_name: str = "tollgate-api"
) -> None:
    """Route structlog and stdlib logging through one formatter on stdout."""
    global _app_name  # noqa: PLW0603
    _app_name = app_name
    level = getattr(logging, log_level.upper(), logging.INFO)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        utc_timestamper,
        structlog.processors.StackInfoRenderer(),
        add_app_context,
        stringify_identifiers,
    ]

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *_final_processors(json_logs),
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def mutation_context(workspace_id: str, actor_id: str) -> Iterator[None]:
    """Bind the workspace and actor to every log line inside a mutation."""
    with structlog.contextvars.bound_contextvars(workspace_id=workspace_id, actor=actor_id):
        yield


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
