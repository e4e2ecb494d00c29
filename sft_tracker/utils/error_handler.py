"""
Error handling at the operation boundary.
Converts exceptions into structured, PII-redacted log records and user-visible messages.
"""

from __future__ import annotations

import logging
import re
import sys
import traceback
from collections.abc import Awaitable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from sft_tracker.exceptions import ErrorCategory, ErrorSeverity, SFTError, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PIIRedactor:
    """Helper class to redact PII from log messages."""

    EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b", re.IGNORECASE)
    HASH_PATTERN = re.compile(r"\b[0-9a-f]{64}\b", re.IGNORECASE)
    PHONE_PATTERN = re.compile(r"(?<!\w)\+?\d[\d\s-]{6,}\d\b")
    # (prefix)(value): only the value is replaced
    TOKEN_PATTERN = re.compile(r"(\b(?:token|key|secret|password)[\"']?\s*[:=]\s*[\"']?)([^\s\"']+)", re.IGNORECASE)

    @classmethod
    def redact(cls, text: str) -> str:
        """Redact PII from text."""
        if not isinstance(text, str):
            text = str(text)

        text = cls.EMAIL_PATTERN.sub("[EMAIL_REDACTED]", text)
        text = cls.HASH_PATTERN.sub("[HASH_REDACTED]", text)
        text = cls.TOKEN_PATTERN.sub(r"\1[TOKEN_REDACTED]", text)
        text = cls.PHONE_PATTERN.sub("[PHONE_REDACTED]", text)
        return text

    @classmethod
    def redact_obj(cls, obj: Any) -> Any:
        if isinstance(obj, dict):
            return {k: cls.redact_obj(v) for k, v in obj.items()}
        if isinstance(obj, list):
            return [cls.redact_obj(v) for v in obj]
        if isinstance(obj, str):
            return cls.redact(obj)
        return obj


class ErrorHandler:
    """Centralized error handling and logging."""

    def handle_error(
        self,
        error: Exception,
        context: dict[str, Any] | None = None,
        user_id: str | None = None,
        request_id: str | None = None,
        *,
        component: str = "unknown",
    ) -> dict[str, Any]:
        """
        Log an error and build its record.

        Args:
            error: The exception raised by an operation
            context: Additional context for the record
            user_id: Email of the acting user, if known
            request_id: Correlation id; generated when absent
            component: Name of the calling component

        Returns:
            dict: Error record including the user-facing message
        """
        sft_error = self.convert(error)
        record = self._create_error_record(
            sft_error, context=context, user_id=user_id, request_id=request_id or str(uuid4())
        )
        record["component"] = component or (context or {}).get("component") or "unknown"
        record["user_message"] = sft_error.user_message

        self._log_error(record)
        return record

    @staticmethod
    def convert(error: Exception) -> SFTError:
        """Map any exception onto the SFTError hierarchy."""
        if isinstance(error, SFTError):
            return error
        if isinstance(error, PydanticValidationError):
            first = error.errors()[0] if error.error_count() else {}
            field = ".".join(str(part) for part in first.get("loc", ())) or None
            return ValidationError(
                f"Invalid input: {first.get('msg', error)}",
                field=field,
                cause=error,
            )
        if isinstance(error, ValueError):
            return ValidationError(str(error), cause=error, user_message=str(error))
        return SFTError(
            f"Unexpected {type(error).__name__}: {error}",
            category=ErrorCategory.SYSTEM,
            severity=ErrorSeverity.HIGH,
            details={"original_type": type(error).__name__},
            cause=error,
        )

    def _create_error_record(
        self,
        error: SFTError,
        context: dict[str, Any] | None,
        user_id: str | None,
        request_id: str,
    ) -> dict[str, Any]:
        exc_for_tb = error.cause or error
        tb = "".join(traceback.TracebackException.from_exception(exc_for_tb).format())

        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request_id": request_id,
            "user_id": user_id,
            "error": error.to_dict(),
            "context": context or {},
            "traceback": tb,
            "system_info": {"python_version": sys.version, "platform": sys.platform},
        }

    def _log_error(self, error_record: dict[str, Any]) -> None:
        """Log error with a level matching its severity."""
        error_info = error_record["error"]
        severity = ErrorSeverity(error_info.get("severity", ErrorSeverity.MEDIUM.value))

        log_data = {
            "request_id": error_record["request_id"],
            "user": PIIRedactor.redact(error_record["user_id"] or ""),
            "error_code": error_info.get("error_code"),
            "category": error_info.get("category"),
            "error_message": PIIRedactor.redact(error_info.get("message") or ""),
            "details": PIIRedactor.redact_obj(error_info.get("details")),
            "component": error_record.get("component", "unknown"),
        }
        message = f"{log_data['error_code']}: {log_data['error_message']}"

        if severity == ErrorSeverity.CRITICAL:
            logger.critical(message, extra=log_data)
        elif severity == ErrorSeverity.HIGH:
            logger.error(message, extra=log_data)
        elif severity == ErrorSeverity.MEDIUM:
            logger.warning(message, extra=log_data)
        else:
            logger.info(message, extra=log_data)

        if severity in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL):
            logger.debug("Full traceback for %s: %s", error_record["request_id"], error_record["traceback"])

# Global error handler instance
error_handler = ErrorHandler()


@dataclass
class OperationResult(Generic[T]):
    """Outcome of an operation run through the boundary."""

    value: T | None = None
    error: SFTError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def message(self) -> str | None:
        return self.error.user_message if self.error else None


class ErrorBoundary:
    """
    Async context manager that handles and suppresses errors raised inside it.

    The converted error is available as ``boundary.error`` afterwards.
    """

    def __init__(
        self,
        context: dict[str, Any] | None = None,
        user_id: str | None = None,
        component: str = "operation",
        handler: ErrorHandler | None = None,
    ):
        self.context = context
        self.user_id = user_id
        self.component = component
        self.handler = handler or error_handler
        self.error: SFTError | None = None
        self.record: dict[str, Any] | None = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None or not issubclass(exc_type, Exception):
            return False
        self.record = self.handler.handle_error(
            exc_val, context=self.context, user_id=self.user_id, component=self.component
        )
        self.error = self.handler.convert(exc_val)
        return True

    @property
    def user_message(self) -> str | None:
        return self.error.user_message if self.error else None


async def run_operation(
    operation: Awaitable[T],
    *,
    context: dict[str, Any] | None = None,
    user_id: str | None = None,
    component: str = "operation",
    handler: ErrorHandler | None = None,
) -> OperationResult[T]:
    """
    Await an operation and capture any error as a user-visible result.

    There is no retry; a failed operation must be re-issued by the caller.
    """
    async with ErrorBoundary(context=context, user_id=user_id, component=component, handler=handler) as boundary:
        return OperationResult(value=await operation)
    return OperationResult(error=boundary.error)

