"""Logging setup for the authorization engine."""

from authz_engine.monitoring.logging import (
    bind_correlation_id,
    clear_correlation_id,
    get_logger,
    setup_structured_logging,
)

__all__ = [
    'bind_correlation_id',
    'clear_correlation_id',
    'get_logger',
    'setup_structured_logging',
]
