"""Structured logging for DataAccessHub, built on structlog.

Every module obtains its logger through :func:`get_logger` and emits dotted
event names with keyword context, for example::

    logger.info("bulk.insert.completed", table="orders", rows_affected=120)

Output is one JSON document per event with an ISO-8601 timestamp, the level,
the logger name and the bound context. Credentials never reach the output:
values under credential-like keys are replaced outright, and passwords
embedded in DSN strings anywhere in the event are masked.

The level comes from ``LOG_LEVEL`` in :mod:`data_access_hub.config.settings`.
Set ``LOG_TO_FILE=1`` to also write a daily rotated file under ``LOG_FILE_DIR``.
"""

import logging
import os
import re
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, MutableMapping

import structlog
from pydantic import ValidationError
from structlog.types import EventDict, Processor

from data_access_hub.config import get_settings, mask_url

# Keys whose values are dropped entirely
CREDENTIAL_KEY = re.compile(
    r"password|passwd|token|secret|^dsn$|^database_url$|^connection_url$",
    re.IGNORECASE,
)

REDACTED_VALUE = "[REDACTED]"

_URL_WITH_PASSWORD = re.compile(r"\b[a-z][a-z0-9+.-]*://[^\s/@:]*:[^\s/@]*@\S+", re.IGNORECASE)

LOG_FILE_PREFIX = "data-access-hub"


def _scrub(value: Any) -> Any:
    if isinstance(value, dict):
        return sanitize_for_logging(value)
    if isinstance(value, (list, tuple)):
        return type(value)(_scrub(item) for item in value)
    if isinstance(value, str) and "@" in value:
        return _URL_WITH_PASSWORD.sub(lambda m: mask_url(m.group(0)), value)
    return value


def sanitize_for_logging(data: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``data`` that is safe to log.

    Example:
        >>> sanitize_for_logging({"password": "secret123", "table": "orders"})
        {'password': '[REDACTED]', 'table': 'orders'}
        >>> sanitize_for_logging({"error": "could not reach postgresql://app:pw@db/x"})
        {'error': 'could not reach postgresql://app:***@db/x'}
    """
    return {
        key: REDACTED_VALUE if CREDENTIAL_KEY.search(str(key)) else _scrub(value)
        for key, value in data.items()
    }


def sanitization_processor(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> MutableMapping[str, Any]:
    return sanitize_for_logging(dict(event_dict))


def resolve_log_level() -> int:
    """Numeric level from settings; falls back to ``LOG_LEVEL`` or INFO when settings fail."""
    try:
        level_name = get_settings().LOG_LEVEL
    except ValidationError:
        level_name = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(level_name)
    return level if isinstance(level, int) else logging.INFO


def _file_handler(level: int) -> logging.Handler:
    log_dir = Path(os.getenv("LOG_FILE_DIR", "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        filename=str(log_dir / f"{LOG_FILE_PREFIX}-{datetime.now():%Y%m%d}.log"),
        when="midnight",
        backupCount=int(os.getenv("LOG_FILE_BACKUPS", "14")),
        encoding="utf-8",
    )
    handler.setLevel(level)
    return handler


def _configure_structlog() -> None:
    level = resolve_log_level()
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if os.getenv("LOG_TO_FILE", "").lower() in ("1", "true", "yes"):
        handlers.append(_file_handler(level))
    logging.basicConfig(format="%(message)s", level=level, handlers=handlers)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        sanitization_processor,
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(default=str),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


_configure_structlog()


def get_logger(name: str) -> Any:
    """Get a structlog BoundLogger for ``name`` (usually ``__name__``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> Any:
    """Create a logger with context fields already bound.

    Example:
        >>> logger = bind_context(execution_id="3f2a", table="orders")
        >>> logger.info("bulk.batch.item_failed", index=0)
    """
    return structlog.get_logger().bind(**kwargs)
