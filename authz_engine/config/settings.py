"""
Authorization Engine Settings

Environment-driven configuration for cache expirations, the inheritance walk,
the cache backend and logging. Values are read with os.getenv after loading a
local .env file through python-dotenv, so deployments configure the engine
with plain environment variables:

- AUTHZ_PERMISSION_SLIDING_TTL / AUTHZ_PERMISSION_ABSOLUTE_TTL (seconds)
- AUTHZ_RESOURCE_SLIDING_TTL / AUTHZ_RESOURCE_ABSOLUTE_TTL (seconds)
- AUTHZ_MAX_INHERITANCE_DEPTH
- AUTHZ_CACHE_BACKEND (memory or redis)
- AUTHZ_REDIS_URL / AUTHZ_REDIS_KEY_PREFIX
- LOG_LEVEL / LOG_FORMAT (json or console)
"""

import os
from dataclasses import dataclass
from typing import List, Mapping, Optional

import structlog
from dotenv import load_dotenv

from authz_engine.auth.exceptions import AuthzErrorCode, ConfigurationException

logger = structlog.get_logger(__name__)

CACHE_BACKENDS = ('memory', 'redis')
LOG_FORMATS = ('json', 'console')
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


@dataclass(frozen=True)
class EngineSettings:
    """Validated engine configuration."""

    permission_sliding_ttl: float = 300
    permission_absolute_ttl: float = 1800
    resource_sliding_ttl: float = 120
    resource_absolute_ttl: float = 600
    max_inheritance_depth: int = 10
    cache_backend: str = 'memory'
    redis_url: Optional[str] = None
    redis_key_prefix: str = 'authz:'
    log_level: str = 'INFO'
    log_format: str = 'json'

    @classmethod
    def from_environment(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        dotenv: bool = True
    ) -> 'EngineSettings':
        """
        Build settings from environment variables.

        Args:
            environ: Variable mapping to read instead of os.environ
            dotenv: Load a .env file into os.environ first

        Raises:
            ConfigurationException: If a value cannot be parsed or fails validation
        """
        if dotenv and environ is None:
            load_dotenv()
        env = os.environ if environ is None else environ
        problems: List[str] = []

        def number(name: str, default: float, cast=float):
            raw = env.get(name)
            if raw is None or raw.strip() == '':
                return default
            try:
                return cast(raw)
            except ValueError:
                problems.append(f"{name} must be a number, got {raw!r}")
                return default

        settings = cls(
            permission_sliding_ttl=number('AUTHZ_PERMISSION_SLIDING_TTL', 300),
            permission_absolute_ttl=number('AUTHZ_PERMISSION_ABSOLUTE_TTL', 1800),
            resource_sliding_ttl=number('AUTHZ_RESOURCE_SLIDING_TTL', 120),
            resource_absolute_ttl=number('AUTHZ_RESOURCE_ABSOLUTE_TTL', 600),
            max_inheritance_depth=number('AUTHZ_MAX_INHERITANCE_DEPTH', 10, int),
            cache_backend=env.get('AUTHZ_CACHE_BACKEND', 'memory').strip().lower(),
            redis_url=env.get('AUTHZ_REDIS_URL') or None,
            redis_key_prefix=env.get('AUTHZ_REDIS_KEY_PREFIX', 'authz:'),
            log_level=env.get('LOG_LEVEL', 'INFO').strip().upper(),
            log_format=env.get('LOG_FORMAT', 'json').strip().lower()
        )

        problems.extend(validate_settings(settings))
        if problems:
            raise ConfigurationException(
                message=f"Engine configuration validation failed: {'; '.join(problems)}",
                error_code=_error_code_for(problems),
                problems=problems
            )
        return settings


def validate_settings(settings: EngineSettings) -> List[str]:
    """
    Validate settings and return the list of issues.

    Returns:
        List of validation error messages (empty if valid)
    """
    issues = []

    ttl_pairs = (
        ('AUTHZ_PERMISSION', settings.permission_sliding_ttl, settings.permission_absolute_ttl),
        ('AUTHZ_RESOURCE', settings.resource_sliding_ttl, settings.resource_absolute_ttl),
    )
    for prefix, sliding, absolute in ttl_pairs:
        if sliding <= 0:
            issues.append(f"{prefix}_SLIDING_TTL must be positive")
        if absolute <= 0:
            issues.append(f"{prefix}_ABSOLUTE_TTL must be positive")
        elif sliding > absolute:
            issues.append(f"{prefix}_SLIDING_TTL should not exceed {prefix}_ABSOLUTE_TTL")

    if settings.max_inheritance_depth < 1:
        issues.append("AUTHZ_MAX_INHERITANCE_DEPTH must be at least 1")

    if settings.cache_backend not in CACHE_BACKENDS:
        issues.append(f"AUTHZ_CACHE_BACKEND must be one of {', '.join(CACHE_BACKENDS)}")
    elif settings.cache_backend == 'redis' and not settings.redis_url:
        issues.append("AUTHZ_REDIS_URL is required when AUTHZ_CACHE_BACKEND is redis")

    if settings.log_level not in LOG_LEVELS:
        issues.append(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")
    if settings.log_format not in LOG_FORMATS:
        issues.append(f"LOG_FORMAT must be one of {', '.join(LOG_FORMATS)}")

    logger.debug(
        "Configuration validation completed",
        issues_found=len(issues),
        issues=issues
    )
    return issues


def _error_code_for(problems: List[str]) -> AuthzErrorCode:
    first = problems[0]
    if 'TTL' in first:
        return AuthzErrorCode.CFG_INVALID_TTL
    if 'DEPTH' in first:
        return AuthzErrorCode.CFG_INVALID_DEPTH
    if 'BACKEND' in first:
        return AuthzErrorCode.CFG_INVALID_BACKEND
    return AuthzErrorCode.CFG_MISSING_VALUE
