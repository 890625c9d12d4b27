"""Structured logging for encoder-ops.

Every module logs snake_case events through ``get_logger(__name__)``.
``configure_logging()`` routes them through the stdlib root logger, rendered
as JSON lines or, with ``ENV=development``, as colored console output.

Aid operations run inside ``job_context()`` so that events emitted deeper in
the stack (store adapters, normalizer) carry the job and encoder ids without
passing them around.

Configuration:
    LOG_LEVEL: Default level when ``configure_logging`` gets none (INFO).
    ENV: "development" for console output, otherwise JSON.
"""

import logging
import os
from contextlib import contextmanager
from typing import Iterator

import structlog

# Driver loggers that report every server selection and heartbeat at DEBUG/INFO.
QUIET_LOGGERS = ("pymongo", "pymongo.serverSelection", "pymongo.connection")


def _level(name: str | None) -> int:
    level = logging.getLevelName((name or os.getenv("LOG_LEVEL") or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def _renderer() -> structlog.types.Processor:
    if os.getenv("ENV", "production") == "development":
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def configure_logging(level: str | None = None) -> None:
    """Configure structlog and the root logger. Called by the CLI entry point.

    Args:
        level: Level name from Settings; falls back to LOG_LEVEL.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(),
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(_level(level))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def job_context(job_id: str, encoder_id: str | None = None) -> Iterator[None]:
    """Bind ``job_id`` (and ``encoder_id``) to every event logged inside."""
    with structlog.contextvars.bound_contextvars(job_id=job_id, encoder_id=encoder_id):
        yield


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, typically ``get_logger(__name__)``."""
    return structlog.get_logger(name)
