"""Custom Exception Hierarchy.

Typed exceptions for the alerting core. Each carries an error code that
maps to a process exit status, so the command layer can report any of
them with a single handler.
"""

from typing import Any, Dict, Optional

from opsmon.errors.config import EXIT_CODE_MAP, EXIT_FAILURE, ErrorCode


class AlertingError(Exception):
    """Base exception for all alerting errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.exit_code = EXIT_CODE_MAP.get(error_code, EXIT_FAILURE)
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_code.value,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(AlertingError):
    """Raised when operation input fails validation."""

    def __init__(
        self,
        message: str = "Validation failed",
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        field: Optional[str] = None,
    ):
        details = {"field": field} if field else None
        super().__init__(message, error_code, details)


class NotFoundError(AlertingError):
    """Raised when an alert, rule or template does not exist."""

    def __init__(
        self,
        message: str = "Resource not found",
        error_code: ErrorCode = ErrorCode.ALERT_NOT_FOUND,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ):
        details = None
        if resource_type or resource_id:
            details = {"resource_type": resource_type, "resource_id": resource_id}
        super().__init__(message, error_code, details)


class InvalidTransitionError(AlertingError):
    """Raised when a status or escalation-level rule would be violated."""

    def __init__(
        self,
        message: str = "Invalid state transition",
        error_code: ErrorCode = ErrorCode.INVALID_TRANSITION,
        alert_id: Optional[str] = None,
        current: Optional[Any] = None,
        requested: Optional[Any] = None,
    ):
        details = {}
        if alert_id:
            details["alert_id"] = alert_id
        if current is not None:
            details["current"] = current
        if requested is not None:
            details["requested"] = requested
        super().__init__(message, error_code, details)


class StoreError(AlertingError):
    """Raised when the relational store cannot be reached or a statement fails.

    Never retried in-process; the external scheduler retries on its next run.
    """

    def __init__(self, message: str = "Alert store unavailable", cause: Optional[BaseException] = None):
        details = {"cause": type(cause).__name__} if cause is not None else None
        super().__init__(message, ErrorCode.STORE_ERROR, details)
        self.cause = cause


class ConfigError(AlertingError):
    """Raised when a rule or template source is malformed."""

    def __init__(self, message: str = "Invalid configuration", source: Optional[str] = None):
        details = {"source": source} if source else None
        super().__init__(message, ErrorCode.CONFIG_ERROR, details)
