"""
Custom exception hierarchy for the experimentation engine.

Provides a structured exception hierarchy for the error categories the
engine surfaces to callers:
- Validation errors (malformed test definitions, bad event payloads)
- State errors (operation not allowed in the test's current status)
- Lookup errors (unknown test or variant)
- Configuration errors (invalid settings)

All of them are synchronous and non-retryable. Storage-layer failures are
not wrapped and reach the caller unchanged.
"""

from __future__ import annotations

from typing import Any, Iterable


class ExperimentError(Exception):
    """Base exception for all experimentation engine errors.

    Provides structured error information including error code, message,
    and additional context.
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message.
            error_code: Optional error code for programmatic handling.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}

    def __str__(self) -> str:
        """Return formatted error string."""
        if self.details:
            return f"[{self.error_code}] {self.message} - Details: {self.details}"
        return f"[{self.error_code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(ExperimentError):
    """Raised when a test definition or event payload is rejected.

    Collects every violated constraint so the caller can fix them all at
    once instead of resubmitting one error at a time.

    Examples:
        - Traffic splits not summing to 100
        - Fewer than two variants
        - Unknown event type or negative revenue value
    """

    def __init__(
        self,
        message: str,
        violations: Iterable[str] | None = None,
        field_name: str | None = None,
        invalid_value: Any = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        violation_list = list(violations) if violations else [message]
        details["violations"] = violation_list
        if field_name:
            details["field_name"] = field_name
        if invalid_value is not None:
            details["invalid_value"] = str(invalid_value)
        super().__init__(message, error_code="VALIDATION_ERROR", details=details, **kwargs)
        self.violations = violation_list
        self.field_name = field_name
        self.invalid_value = invalid_value


# =============================================================================
# Lifecycle Errors
# =============================================================================


class InvalidStateError(ExperimentError):
    """Raised when an operation is not permitted in the test's status.

    Examples:
        - Recording an event on a DRAFT or COMPLETED test
        - Starting a test that already ran
        - Deleting a RUNNING test
    """

    def __init__(
        self,
        message: str,
        test_id: str | None = None,
        current_status: str | None = None,
        operation: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if test_id:
            details["test_id"] = test_id
        if current_status:
            details["current_status"] = current_status
        if operation:
            details["operation"] = operation
        super().__init__(message, error_code="INVALID_STATE", details=details, **kwargs)
        self.test_id = test_id
        self.current_status = current_status
        self.operation = operation


class NotFoundError(ExperimentError):
    """Raised when a referenced test or variant does not exist."""

    def __init__(
        self,
        message: str,
        resource_type: str | None = None,
        resource_id: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if resource_type:
            details["resource_type"] = resource_type
        if resource_id:
            details["resource_id"] = resource_id
        super().__init__(message, error_code="NOT_FOUND", details=details, **kwargs)
        self.resource_type = resource_type
        self.resource_id = resource_id


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(ExperimentError):
    """Base exception for configuration-related errors."""

    pass


class InvalidConfigError(ConfigurationError):
    """Raised when configuration is invalid.

    Examples:
        - Unknown storage backend
        - Unknown p-value method
    """

    def __init__(
        self,
        message: str,
        config_key: str | None = None,
        value: Any = None,
        expected: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if value is not None:
            details["value"] = str(value)
        if expected:
            details["expected"] = expected
        super().__init__(message, details=details, **kwargs)
        self.config_key = config_key
        self.value = value
        self.expected = expected


__all__ = [
    "ExperimentError",
    "ValidationError",
    "InvalidStateError",
    "NotFoundError",
    "ConfigurationError",
    "InvalidConfigError",
]
