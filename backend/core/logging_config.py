"""Structured logging for the engine, using structlog over stdlib logging.

Every record carries the execution context bound by the engine
(``execution_id``, ``workflow_id``) through structlog contextvars.
Text output is meant for a terminal, JSON output for log collectors.
"""

import logging
import sys
from typing import Optional, TextIO

import structlog
from app.config import Settings, get_settings

# Libraries used by the built-in steps; they log per request
QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite")


def _renderer(settings: Settings):
    if settings.is_development or settings.LOG_FORMAT == "text":
        return structlog.dev.ConsoleRenderer(colors=settings.is_development)
    return structlog.processors.JSONRenderer()


def _pre_chain() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def setup_logging(stream: Optional[TextIO] = None, level: Optional[str] = None) -> None:
    """Route structlog and stdlib records through one handler.

    Args:
        stream: Destination of the rendered records (default: stdout).
            The command-line runner passes stderr so stdout stays JSON.
        level: Overrides ``LOG_LEVEL`` from settings.
    """
    settings = get_settings()
    pre_chain = _pre_chain()

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, _renderer(settings)],
            foreign_pre_chain=pre_chain,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    # Database Query step echoes SQL only in debug mode
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.DEBUG else logging.WARNING)
