"""
Prometheus metrics for authorization decisions and cache effectiveness.

Metrics are module-level collectors registered once per process on the
default prometheus_client registry.
"""

import time
from functools import wraps
from typing import Callable

import structlog
from prometheus_client import Counter, Histogram

logger = structlog.get_logger(__name__)

authz_decisions_total = Counter(
    'authz_engine_decisions_total',
    'Authorization decisions by decision path and outcome',
    ['path', 'decision']
)

authz_decision_reasons_total = Counter(
    'authz_engine_decision_reasons_total',
    'Resource authorization decisions by deciding step',
    ['reason']
)

cache_operations_total = Counter(
    'authz_engine_cache_operations_total',
    'Cache operations by type and result',
    ['operation', 'cache_type', 'result']
)

cache_operation_duration = Histogram(
    'authz_engine_cache_operation_duration_seconds',
    'Time spent on cache operations',
    ['operation', 'cache_type'],
    buckets=(0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0)
)

cache_lookups_total = Counter(
    'authz_engine_cache_lookups_total',
    'Cache lookups by key family and outcome',
    ['key_family', 'outcome']
)

cache_invalidations_total = Counter(
    'authz_engine_cache_invalidations_total',
    'Cache invalidations by reason',
    ['reason']
)


def key_family(key: str) -> str:
    """Metric label for a cache key: the segment before the first colon."""
    return key.split(':', 1)[0] if ':' in key else 'other'


def record_lookup(key: str, hit: bool) -> None:
    cache_lookups_total.labels(
        key_family=key_family(key),
        outcome='hit' if hit else 'miss'
    ).inc()


def record_decision(path: str, allowed: bool) -> None:
    authz_decisions_total.labels(
        path=path,
        decision='allow' if allowed else 'deny'
    ).inc()


def record_invalidation(reason: str, count: int = 1) -> None:
    if count > 0:
        cache_invalidations_total.labels(reason=reason).inc(count)


def cache_operation_metrics(operation: str, cache_type: str):
    """
    Decorator for cache operation metrics collection on coroutine methods.

    Args:
        operation: Type of cache operation (get, set, evict, ...)
        cache_type: Cache backend label (memory, redis)
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            operation_result = "success"

            try:
                return await func(*args, **kwargs)
            except BaseException:
                operation_result = "error"
                raise
            finally:
                duration = time.perf_counter() - start_time
                cache_operations_total.labels(
                    operation=operation,
                    cache_type=cache_type,
                    result=operation_result
                ).inc()
                cache_operation_duration.labels(
                    operation=operation,
                    cache_type=cache_type
                ).observe(duration)

        return wrapper
    return decorator
