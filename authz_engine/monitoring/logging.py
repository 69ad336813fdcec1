"""
Structured Logging Configuration

Configures structlog over the standard library logging module so every engine
module can log key/value events through `structlog.get_logger(__name__)`.
Events pass through a fixed processor chain (level filtering, logger name,
level, ISO timestamps, correlation id, exception formatting) and are rendered
as JSON lines or as human-readable console output.

A correlation id bound with `bind_correlation_id` is attached to every event
logged from the same task or thread, which lets a caller trace the cache and
storage activity behind one authorization decision.
"""

import logging
import logging.config
import uuid
from contextvars import ContextVar
from typing import Callable, Optional

import structlog

from authz_engine.config.settings import EngineSettings

APPLICATION_NAME = 'authz_engine'

correlation_id_context: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)


def bind_correlation_id(correlation_id: Optional[str] = None) -> str:
    """
    Set the correlation id for the current context, generating one if None.

    Returns:
        The correlation id that was set
    """
    if correlation_id is None:
        correlation_id = uuid.uuid4().hex
    correlation_id_context.set(correlation_id)
    return correlation_id


def clear_correlation_id() -> None:
    correlation_id_context.set(None)


def create_correlation_processor() -> Callable:
    """Create structlog processor adding the current correlation id."""
    def processor(logger, method_name, event_dict):
        correlation_id = correlation_id_context.get()
        if correlation_id:
            event_dict['correlation_id'] = correlation_id
        return event_dict

    return processor


def setup_structured_logging(
    settings: Optional[EngineSettings] = None
) -> structlog.stdlib.BoundLogger:
    """
    Configure structlog and the standard library root logger.

    Args:
        settings: Engine settings supplying LOG_LEVEL and LOG_FORMAT;
            defaults are used when None

    Returns:
        Configured structured logger instance
    """
    settings = settings or EngineSettings()

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="ISO"),
        create_correlation_processor(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.log_format == 'console':
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging_config = {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'json': {
                'format': '%(message)s'
            },
            'console': {
                'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            }
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': 'json' if settings.log_format == 'json' else 'console',
                'stream': 'ext://sys.stdout'
            }
        },
        'loggers': {
            '': {
                'handlers': ['console'],
                'level': settings.log_level,
                'propagate': False
            }
        }
    }
    logging.config.dictConfig(logging_config)

    logger = structlog.get_logger(APPLICATION_NAME)
    logger.info(
        "Structured logging initialized",
        log_level=settings.log_level,
        log_format=settings.log_format
    )
    return logger


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name or APPLICATION_NAME)
