"""Structured logging for the month-end review service.

Log output always goes to stderr; stdout is reserved for command results.
"""

import logging
import sys
from typing import Literal

import structlog

from monthend.config.settings import get_settings

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console"]

# Request lines from these libraries carry realm ids and query strings.
_QUIET_LOGGERS = ("httpx", "httpcore")


def _renderer(log_format: LogFormat) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer(sort_keys=True)
    return structlog.dev.ConsoleRenderer(
        colors=sys.stderr.isatty(),
        exception_formatter=structlog.dev.plain_traceback,
    )


def configure_logging(level: LogLevel | None = None, format: LogFormat | None = None) -> None:
    """Route structlog through stdlib logging on stderr.

    Args:
        level: Minimum level. Defaults to ``LOG_LEVEL``.
        format: ``json`` for machine-readable lines, ``console`` for humans.
            Defaults to ``LOG_FORMAT``.
    """
    settings = get_settings()
    log_level = getattr(logging, level or settings.log_level)

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=log_level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _renderer(format or settings.log_format),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_command_context(command: str, org_id: str | None = None) -> None:
    """Attach the running command and org to every log line until cleared."""
    structlog.contextvars.clear_contextvars()
    context = {"command": command}
    if org_id:
        context["org_id"] = org_id
    structlog.contextvars.bind_contextvars(**context)
