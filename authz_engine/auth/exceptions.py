"""
Authorization Engine Exception Classes

This module defines the deliberately narrow error taxonomy of the authorization
decision engine. Authorization failures default to "deny" and are reported as
plain return values; exceptions are reserved for conditions that are genuinely
exceptional:

- Programmer errors at the call site (empty principal id on the resource path,
  missing resource, blank action or resource type) raise
  InvalidArgumentException immediately so misuse surfaces in testing.
- Invalid engine configuration raises ConfigurationException at start-up.
- Storage collaborator and cache backend failures are NOT wrapped here; they
  propagate to the caller unchanged so outages are never masked as denials.

The exception hierarchy keeps the shape of the security exception classes used
across the service: a standardized error code enum, a unique error identifier
for log correlation, a timestamp and a metadata dictionary for structured
logging.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
import uuid


class AuthzErrorCode(Enum):
    """
    Standardized error codes for the authorization engine.

    Codes are grouped by category so log aggregation and alerting can route
    them without parsing messages.
    """

    # Argument Error Codes (1000-1999)
    ARG_PRINCIPAL_MISSING = "ARG_1001"
    ARG_RESOURCE_MISSING = "ARG_1002"
    ARG_ACTION_MISSING = "ARG_1003"
    ARG_RESOURCE_TYPE_MISSING = "ARG_1004"
    ARG_RESOURCE_ID_MISSING = "ARG_1005"
    ARG_PERMISSION_MISSING = "ARG_1006"

    # Configuration Error Codes (2000-2999)
    CFG_INVALID_TTL = "CFG_2001"
    CFG_INVALID_BACKEND = "CFG_2002"
    CFG_INVALID_DEPTH = "CFG_2003"
    CFG_MISSING_VALUE = "CFG_2004"


class AuthorizationEngineException(Exception):
    """
    Base exception class for all authorization engine errors.

    Args:
        message: Human-readable error description for logging and debugging
        error_code: Standardized error code for categorization
        metadata: Additional context for structured logging
    """

    def __init__(
        self,
        message: str,
        error_code: AuthzErrorCode,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        super().__init__(message)

        self.error_id = str(uuid.uuid4())
        self.error_code = error_code
        self.metadata = metadata or {}
        self.timestamp = datetime.now(timezone.utc)

        self.metadata.update({
            'error_id': self.error_id,
            'error_code': self.error_code.value,
            'timestamp': self.timestamp.isoformat(),
            'exception_type': self.__class__.__name__
        })


class InvalidArgumentException(AuthorizationEngineException, ValueError):
    """
    Raised when an engine operation is called with a missing or blank argument.

    This is a precondition violation at the call site, not a data condition,
    and is never converted into a deny.

    Example:
        await service.authorize("", document, "read")
        # raises InvalidArgumentException(error_code=ARG_PRINCIPAL_MISSING)
    """

    def __init__(
        self,
        message: str,
        error_code: AuthzErrorCode,
        argument_name: Optional[str] = None,
        **kwargs
    ) -> None:
        super().__init__(message, error_code, **kwargs)
        self.argument_name = argument_name
        self.metadata['argument_name'] = argument_name


class ConfigurationException(AuthorizationEngineException):
    """Raised when engine settings fail validation."""

    def __init__(
        self,
        message: str,
        error_code: AuthzErrorCode = AuthzErrorCode.CFG_MISSING_VALUE,
        problems: Optional[list] = None,
        **kwargs
    ) -> None:
        super().__init__(message, error_code, **kwargs)
        self.problems = list(problems or [])
        self.metadata['problems'] = self.problems


def require_text(value: Any, argument_name: str, error_code: AuthzErrorCode) -> str:
    """
    Guard that a string argument is present and not blank.

    Args:
        value: Argument value to check
        argument_name: Parameter name reported in the exception
        error_code: Error code to raise with

    Returns:
        The value unchanged

    Raises:
        InvalidArgumentException: If value is None, not a string, or blank
    """
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentException(
            message=f"Argument '{argument_name}' must be a non-empty string",
            error_code=error_code,
            argument_name=argument_name
        )
    return value


def require_present(value: Any, argument_name: str, error_code: AuthzErrorCode) -> Any:
    """Guard that an argument is not None."""
    if value is None:
        raise InvalidArgumentException(
            message=f"Argument '{argument_name}' must not be None",
            error_code=error_code,
            argument_name=argument_name
        )
    return value


def get_error_category(error_code: AuthzErrorCode) -> str:
    """
    Get the category for an engine error code.

    Example:
        get_error_category(AuthzErrorCode.ARG_ACTION_MISSING)
        # Returns: "invalid_argument"
    """
    if error_code.value.startswith("ARG_"):
        return "invalid_argument"
    if error_code.value.startswith("CFG_"):
        return "configuration"
    return "unknown"
