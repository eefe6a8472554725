"""
Structured logging shared by the admin service and worker processes.
"""

import logging
import sys
from typing import Any

import structlog

from .settings import Settings
from .settings import settings as default_settings

# Driver and HTTP client loggers stay at WARNING unless running at DEBUG
NOISY_LOGGERS = (
    "aiosqlite",
    "asyncio",
    "httpcore",
    "httpx",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
)


def _static_fields(**fields: Any):
    """Processor stamping fixed fields onto every event."""

    def processor(_logger: Any, _method: str, event_dict: dict[str, Any]):
        for key, value in fields.items():
            event_dict.setdefault(key, value)
        return event_dict

    return processor


def setup_logging(settings: Settings | None = None, component: str = "admin") -> None:
    """Configure stdlib logging and structlog for this process.

    ``component`` ("admin" or "worker") is attached to every event so one
    log stream can carry both kinds of process.
    """
    settings = settings or default_settings
    level = getattr(logging, settings.log_level)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _static_fields(component=component, environment=settings.environment),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.add_log_level,
    ]
    if settings.debug:
        processors += [
            structlog.processors.CallsiteParameterAdder(
                parameters=[structlog.processors.CallsiteParameter.FUNC_NAME]
            ),
            structlog.dev.ConsoleRenderer(),
        ]
    else:
        processors += [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def add_request_context(request_id: str, **context: Any) -> None:
    """Start a fresh log context for one admin API request."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, **context)


def bind_worker_context(worker_id: str, **context: Any) -> None:
    """Tag every log line emitted from this worker's tasks with its id."""
    structlog.contextvars.bind_contextvars(worker_id=worker_id, **context)
