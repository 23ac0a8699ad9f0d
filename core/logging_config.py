"""
Structlog logging configuration

Both structlog loggers and stdlib loggers (uvicorn, sqlalchemy, celery) end
up in the same processor chain, rendered for the console in DEBUG and as
JSON lines everywhere else.
"""
import json
import logging
import re
from typing import Any, List

import structlog
from structlog.contextvars import merge_contextvars
from structlog.dev import ConsoleRenderer
from structlog.processors import JSONRenderer, TimeStamper, add_log_level
from structlog.stdlib import ProcessorFormatter

from core.config import settings


# event keys that may carry customer addresses
EMAIL_KEYS = frozenset({"to", "email", "customer_email", "to_address"})

_EMAIL_RE = re.compile(r"^([^@\s]{1,2})[^@\s]*(@.+)$")


def _mask(value: Any) -> Any:
    if isinstance(value, str):
        return _EMAIL_RE.sub(r"\1***\2", value)
    if isinstance(value, (list, tuple)):
        return [_mask(v) for v in value]
    return value


def mask_customer_emails(_, __, event_dict: dict) -> dict:
    """Keep the domain, hide the local part: alice@example.com -> al***@example.com"""
    for key in EMAIL_KEYS.intersection(event_dict):
        event_dict[key] = _mask(event_dict[key])
    return event_dict


def add_service_context(_, __, event_dict: dict) -> dict:
    event_dict.setdefault("service", settings.PROJECT_NAME)
    event_dict.setdefault("environment", settings.ENVIRONMENT)
    return event_dict


def get_renderer() -> Any:
    if settings.DEBUG:
        return ConsoleRenderer(colors=True)

    # structlog hands default/sort_keys through to the serializer
    def _dumps(obj, default=None, **kwargs):
        return json.dumps(obj, ensure_ascii=False, default=default or str, **kwargs)
    return JSONRenderer(serializer=_dumps)


def configure_logging() -> None:
    """Configure structlog and route stdlib logging through the same chain."""
    shared_pre_chain: List[Any] = [
        merge_contextvars,
        add_log_level,
        structlog.stdlib.add_logger_name,
        TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        mask_customer_emails,
    ]

    structlog.configure(
        processors=[
            *shared_pre_chain,
            ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = ProcessorFormatter(
        foreign_pre_chain=shared_pre_chain,
        processors=[
            add_service_context,
            ProcessorFormatter.remove_processors_meta,
            get_renderer(),
        ],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    level = settings.LOG_LEVEL or ("DEBUG" if settings.DEBUG else "INFO")
    root.setLevel(level.upper())
    # SQL echo is controlled by the engine, keep the logger quiet otherwise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
