"""
Structured logging configuration using structlog.

Every line carries the service name and broadcaster stream id, plus whatever
the current task bound with bind_context(): the request id for HTTP calls,
the connection id for WebSocket watchers, the component for the sweeper.
"""

import logging
import sys

import structlog

from app.core.config import get_settings

_NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "asyncio")

_static_fields: dict = {}


def _add_static_fields(logger, method_name, event_dict):
    for key, value in _static_fields.items():
        event_dict.setdefault(key, value)
    return event_dict


def setup_logging(**static_fields) -> None:
    """
    Route structlog and stdlib logging through one handler on stdout.
    Safe to call more than once; the previous handler is replaced.
    """
    settings = get_settings()
    _static_fields.clear()
    _static_fields.update(service=settings.APP_NAME, **static_fields)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        _add_static_fields,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.ENVIRONMENT == "production":
        shared_processors.append(structlog.processors.dict_tracebacks)
        renderer = structlog.processors.JSONRenderer(default=str)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    ))
    handler.set_name("seat_booking_engine")

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if existing.get_name() == handler.get_name():
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**values) -> None:
    """Attach values to every log line emitted from the current task."""
    structlog.contextvars.bind_contextvars(**values)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
