"""Error Configuration.

Defines error codes and the mapping from error codes to process exit
statuses for opsmon commands.
"""

from enum import Enum
from typing import Dict


class ErrorCode(Enum):
    """Standardized error codes for alerting operations."""

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_LEVEL = "INVALID_LEVEL"
    INVALID_STATUS = "INVALID_STATUS"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"

    # Not found errors
    ALERT_NOT_FOUND = "ALERT_NOT_FOUND"
    RULE_NOT_FOUND = "RULE_NOT_FOUND"
    TEMPLATE_NOT_FOUND = "TEMPLATE_NOT_FOUND"

    # State transition errors
    INVALID_TRANSITION = "INVALID_TRANSITION"
    INVALID_ESCALATION = "INVALID_ESCALATION"

    # Store errors
    STORE_ERROR = "STORE_ERROR"

    # Configuration errors
    CONFIG_ERROR = "CONFIG_ERROR"


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_STORE = 3
EXIT_CONFIG = 4

# Map error codes to process exit statuses
EXIT_CODE_MAP: Dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: EXIT_FAILURE,
    ErrorCode.INVALID_LEVEL: EXIT_FAILURE,
    ErrorCode.INVALID_STATUS: EXIT_FAILURE,
    ErrorCode.MISSING_REQUIRED_FIELD: EXIT_FAILURE,
    ErrorCode.ALERT_NOT_FOUND: EXIT_FAILURE,
    ErrorCode.RULE_NOT_FOUND: EXIT_FAILURE,
    ErrorCode.TEMPLATE_NOT_FOUND: EXIT_FAILURE,
    ErrorCode.INVALID_TRANSITION: EXIT_FAILURE,
    ErrorCode.INVALID_ESCALATION: EXIT_FAILURE,
    ErrorCode.STORE_ERROR: EXIT_STORE,
    ErrorCode.CONFIG_ERROR: EXIT_CONFIG,
}
