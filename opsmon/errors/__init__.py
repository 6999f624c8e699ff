"""Error taxonomy for the alerting core and the operator commands."""

from opsmon.errors.config import (
    EXIT_CODE_MAP,
    EXIT_CONFIG,
    EXIT_FAILURE,
    EXIT_OK,
    EXIT_STORE,
    EXIT_USAGE,
    ErrorCode,
)
from opsmon.errors.exceptions import (
    AlertingError,
    ConfigError,
    InvalidTransitionError,
    NotFoundError,
    StoreError,
    ValidationError,
)

__all__ = [
    # Config
    "ErrorCode",
    "EXIT_CODE_MAP",
    "EXIT_OK",
    "EXIT_FAILURE",
    "EXIT_USAGE",
    "EXIT_STORE",
    "EXIT_CONFIG",
    # Exceptions
    "AlertingError",
    "ConfigError",
    "InvalidTransitionError",
    "NotFoundError",
    "StoreError",
    "ValidationError",
]
