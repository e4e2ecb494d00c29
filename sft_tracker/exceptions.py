"""
Custom exception hierarchy for the SFT tracker.
Provides structured error handling with user-friendly messages and proper categorization.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(str, Enum):
    """Error severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """Error categories for classification."""

    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    VALIDATION = "validation"
    BUSINESS_LOGIC = "business_logic"
    STORAGE = "storage"
    SYSTEM = "system"


class SFTError(Exception):
    """
    Base error carrying a user-facing message, a category, a severity and
    structured details for logging.
    """

    def __init__(
        self,
        message: str,
        *,
        user_message: Optional[str] = None,
        category: Optional[ErrorCategory] = None,
        severity: Optional[ErrorSeverity] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)

        self.message = message
        self.user_message = user_message or "An unexpected error occurred. Please try again."
        self.category = category or ErrorCategory.SYSTEM
        self.severity = severity or ErrorSeverity.MEDIUM
        self.details = details or {}
        self.cause = cause

    @property
    def error_code(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "user_message": self.user_message,
            "category": self.category.value,
            "severity": self.severity.value,
            "details": self.details,
            "cause": str(self.cause) if self.cause else None,
        }


# Authentication and Authorization Errors
class AuthenticationError(SFTError):
    """Base class for authentication errors."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("user_message", "Authentication failed. Please check your credentials.")
        super().__init__(
            message,
            category=ErrorCategory.AUTHENTICATION,
            severity=ErrorSeverity.MEDIUM,
            **kwargs,
        )


class NoSuchUserError(AuthenticationError):
    """No profile is registered under the given email."""

    def __init__(self, email: str, **kwargs):
        super().__init__(
            f"No registered user with email '{email}'",
            user_message="No registered user found with that email. Please register first.",
            details={"email": email},
            **kwargs,
        )
        self.email = email


class DuplicateEmailError(AuthenticationError):
    """A profile already exists for the normalized email."""

    def __init__(self, email: str, **kwargs):
        super().__init__(
            f"A profile for '{email}' already exists",
            user_message="An account with this email already exists. Please log in.",
            details={"email": email},
            **kwargs,
        )
        self.email = email


class InvalidCredentialError(AuthenticationError):
    """Password does not match the stored credential."""

    def __init__(self, **kwargs):
        super().__init__(
            "Invalid email or password provided",
            user_message="Email or password is incorrect.",
            **kwargs,
        )


class UnauthorizedError(SFTError):
    """The active session lacks the privilege required for an operation."""

    def __init__(self, message: str = "Admin privileges required", **kwargs):
        kwargs.setdefault("user_message", "Only admins can perform this action.")
        super().__init__(
            message,
            category=ErrorCategory.AUTHORIZATION,
            severity=ErrorSeverity.MEDIUM,
            **kwargs,
        )


class AuthenticationRequiredError(UnauthorizedError):
    """No active session exists."""

    def __init__(self, **kwargs):
        super().__init__(
            "No active session",
            user_message="Please log in to continue.",
            **kwargs,
        )


# Validation Errors
class ValidationError(SFTError):
    """Base class for validation errors."""

    def __init__(self, message: str, field: str | None = None, **kwargs):
        kwargs.setdefault(
            "user_message", "Invalid input provided. Please check your data and try again."
        )
        details = {"field": field} if field else {}
        details.update(kwargs.pop("details", {}))
        super().__init__(
            message,
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.LOW,
            details=details,
            **kwargs,
        )


class MissingRequiredFieldError(ValidationError):
    """Required field is missing."""

    def __init__(self, field: str, **kwargs):
        super().__init__(
            f"Required field '{field}' is missing",
            field=field,
            user_message=f"Please provide a value for {field}.",
            **kwargs,
        )


class IncompleteAnswersError(ValidationError):
    """Health questionnaire submitted with unanswered questions."""

    def __init__(self, unanswered: list[int], **kwargs):
        super().__init__(
            f"Unanswered questions: {[i + 1 for i in unanswered]}",
            field="answers",
            user_message="Please answer all questions before submitting.",
            details={"unanswered_indices": list(unanswered)},
            **kwargs,
        )
        self.unanswered = list(unanswered)


# Business Logic Errors
class BusinessLogicError(SFTError):
    """Base class for business logic errors."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message, category=ErrorCategory.BUSINESS_LOGIC, severity=ErrorSeverity.LOW, **kwargs
        )


class SessionAlreadyActiveError(BusinessLogicError):
    """An open training session already exists for the owner."""

    def __init__(self, owner_email: str, **kwargs):
        super().__init__(
            f"Training session already active for '{owner_email}'",
            user_message="You already have an active session.",
            details={"owner_email": owner_email},
            **kwargs,
        )


class NoActiveSessionError(BusinessLogicError):
    """No open training session exists to end."""

    def __init__(self, owner_email: str | None = None, **kwargs):
        super().__init__(
            "No active training session",
            user_message="Please start a session first.",
            details={"owner_email": owner_email} if owner_email else {},
            **kwargs,
        )


class HealthCheckError(BusinessLogicError):
    """Base class for health declaration gate failures."""


class HealthCheckRequiredError(HealthCheckError):
    """No complete, fit health declaration is on file."""

    def __init__(self, **kwargs):
        super().__init__(
            "Health declaration missing or incomplete",
            user_message="Please complete the Health Declaration before starting training.",
            **kwargs,
        )


class HealthCheckStaleError(HealthCheckError):
    """The health declaration is older than the freshness window."""

    def __init__(self, age_seconds: float | None, window_minutes: int, **kwargs):
        super().__init__(
            f"Health declaration older than {window_minutes} minutes",
            user_message=(
                f"Your Health Declaration is older than {window_minutes} minutes. "
                "Please complete a new declaration before starting."
            ),
            details={"age_seconds": age_seconds, "window_minutes": window_minutes},
            **kwargs,
        )


# Storage Errors
class StorageUnavailableError(SFTError):
    """The key-value store could not be read or written."""

    def __init__(self, operation: str, key: str | None = None, **kwargs):
        super().__init__(
            f"Storage {operation} failed" + (f" for key '{key}'" if key else ""),
            user_message="Failed to access storage. Please try again.",
            category=ErrorCategory.STORAGE,
            severity=ErrorSeverity.HIGH,
            details={"operation": operation, "key": key},
            **kwargs,
        )


# System Errors
class ConfigurationError(SFTError):
    """System configuration error."""

    def __init__(self, setting: str, reason: str = "", **kwargs):
        super().__init__(
            f"Invalid configuration for setting: {setting}" + (f" ({reason})" if reason else ""),
            user_message="System configuration error. Please contact support.",
            category=ErrorCategory.SYSTEM,
            severity=ErrorSeverity.CRITICAL,
            details={"setting": setting},
            **kwargs,
        )
