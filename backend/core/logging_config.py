"""Structured logging configuration using structlog.

The API process, Celery workers and the standalone poll loop all call
``setup_logging()`` once at startup. Runs bind their identity with
``execution_context`` so every line emitted while a workflow executes
(task, template, webhook) carries ``workflow_id`` and ``execution_id``.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog

from app.config import get_settings

# stdlib loggers that are too chatty at the root level
_QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "celery.app.trace": logging.WARNING,
}

_SHARED_PROCESSORS: list = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
]


def _renderer(settings):
    if settings.is_development or settings.LOG_FORMAT == "text":
        return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    return structlog.processors.JSONRenderer()


def setup_logging(level: Optional[str] = None) -> None:
    """Route structlog and stdlib records through one renderer on stdout.

    ``LOG_FORMAT=text`` (or development) renders for humans, anything
    else one JSON object per line.
    """
    settings = get_settings()

    structlog.configure(
        processors=[
            *_SHARED_PROCESSORS,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(settings),
        ],
        foreign_pre_chain=_SHARED_PROCESSORS,
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))

    for name, logger_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(logger_level)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.SQLALCHEMY_ECHO else logging.WARNING
    )


@contextmanager
def execution_context(workflow_id: str, execution_id: str, **extra) -> Iterator[None]:
    """Bind a run's identity to every structlog line in the current task."""
    with structlog.contextvars.bound_contextvars(
        workflow_id=workflow_id, execution_id=execution_id, **extra
    ):
        yield
