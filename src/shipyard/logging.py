"""structlog setup for Shipyard.

Every module logs through ``get_logger(__name__)`` with snake_case event
names and keyword context. Log emission goes through structlog; stdlib
``logging`` only owns the handlers, so uvicorn, SQLAlchemy and httpx
records end up in the same stream or rotating file.

Per-request context:
    The web middleware sets the correlation id, and the identity
    dependency binds ``actor_id`` and ``team_id``. Both are merged into
    every event logged while the request is being handled.

Example:
    >>> from shipyard.config import LoggingConfig
    >>> from shipyard.logging import setup_logging, get_logger, bind_request_context
    >>>
    >>> setup_logging(LoggingConfig(level="INFO", format="json"))
    >>> bind_request_context(actor_id="alice", team_id="7f0c...")
    >>> get_logger(__name__).info("stage_approved", stage_id="...")
"""

from __future__ import annotations

import contextvars
import logging
import logging.handlers
import sys
from typing import Any

import structlog

from shipyard.config import LoggingConfig

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "shipyard_correlation_id", default=None
)

# Chatty third-party loggers, held at WARNING unless running at DEBUG.
_LIBRARY_LOGGERS = ("httpx", "httpcore", "aiosqlite", "asyncio")


def add_correlation_id(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """structlog processor copying the current correlation id into the event."""
    correlation_id = _correlation_id.get()
    if correlation_id is not None:
        event_dict["correlation_id"] = correlation_id
    return event_dict


def set_correlation_id(correlation_id: str | None) -> None:
    """Set (or clear, with None) the correlation id of the current request."""
    _correlation_id.set(correlation_id)


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def bind_request_context(actor_id: str, team_id: str | None = None) -> None:
    """Attach the acting identity to every event logged in this context.

    Args:
        actor_id: Identity supplied by the upstream identity layer
        team_id: Team the request is scoped to, if the caller named one
    """
    structlog.contextvars.bind_contextvars(actor_id=actor_id, team_id=team_id)


def clear_request_context() -> None:
    """Drop the identity bound by bind_request_context."""
    structlog.contextvars.unbind_contextvars("actor_id", "team_id")


def _build_handler(config: LoggingConfig) -> logging.Handler:
    if config.file is None:
        return logging.StreamHandler(sys.stdout)

    config.file.parent.mkdir(parents=True, exist_ok=True)
    return logging.handlers.RotatingFileHandler(
        filename=config.file,
        maxBytes=config.rotation_size_mb * 1024 * 1024,
        backupCount=config.retention_count,
        encoding="utf-8",
    )


def setup_logging(config: LoggingConfig) -> None:
    """Install the root handler and the structlog processor chain.

    Replaces any handlers already on the root logger, so calling it again
    (the CLI does so once per invocation) reconfigures rather than
    duplicates output. Rendering happens in the handler's
    ProcessorFormatter, so records from stdlib loggers get the same
    fields and exceptions are rendered inside the entry rather than
    appended after it.

    Args:
        config: The ``[logging]`` section of ShipyardConfig
    """
    level = getattr(logging, config.level)

    shared_processors: list[Any] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.contextvars.merge_contextvars,
        add_correlation_id,
        structlog.processors.StackInfoRenderer(),
    ]

    render_processors: list[Any]
    if config.format == "json":
        render_processors = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        render_processors = [structlog.dev.ConsoleRenderer()]

    handler = _build_handler(config)
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *render_processors,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    library_level = level if level == logging.DEBUG else max(level, logging.WARNING)
    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger named after the calling module."""
    return structlog.get_logger(name)
