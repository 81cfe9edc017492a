"""Error taxonomy and user-facing error classification."""

from enum import Enum
from typing import Any, TypeVar

import pydantic
from pydantic import BaseModel


M = TypeVar("M", bound=BaseModel)


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    ERR_AUTHENTICATION_REQUIRED = "ERR_AUTHENTICATION_REQUIRED"
    ERR_PERMISSION_DENIED = "ERR_PERMISSION_DENIED"
    ERR_VALIDATION = "ERR_VALIDATION"
    ERR_NOT_FOUND = "ERR_NOT_FOUND"
    ERR_CONFLICT = "ERR_CONFLICT"

    # Generic errors
    ERR_UNKNOWN = "ERR_UNKNOWN"


GENERIC_ERROR_MESSAGE = "Something went wrong. Please try again."
PERMISSION_DENIED_MESSAGE = "You don't have permission for this action."


class ActionError(Exception):
    """Base class for expected failures reported back to the caller."""

    code: str = ErrorCode.ERR_UNKNOWN
    severity: ErrorSeverity = ErrorSeverity.LOW

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class AuthenticationError(ActionError):
    """No verified subject is attached to the request."""

    code = ErrorCode.ERR_AUTHENTICATION_REQUIRED
    severity = ErrorSeverity.MEDIUM


class PermissionDeniedError(ActionError, PermissionError):
    """Caller lacks the role required for the operation."""

    code = ErrorCode.ERR_PERMISSION_DENIED
    severity = ErrorSeverity.MEDIUM


class ValidationError(ActionError, ValueError):
    """Input violates a bound or required-field rule."""

    code = ErrorCode.ERR_VALIDATION


class NotFoundError(ActionError, LookupError):
    """Referenced task or profile does not exist (or is not visible)."""

    code = ErrorCode.ERR_NOT_FOUND


class ConflictError(ActionError):
    """Status precondition not met, duplicate row, or a lost race."""

    code = ErrorCode.ERR_CONFLICT


def validation_error_from(exc: pydantic.ValidationError) -> ValidationError:
    """Convert a pydantic validation failure into a ValidationError with a readable message.

    Messages raised by our own field validators are passed through unchanged;
    other failures (wrong type, unknown enum value) name the offending field.
    """
    first = exc.errors()[0]
    ctx_error = first.get("ctx", {}).get("error")
    if first["type"] == "value_error" and ctx_error is not None:
        return ValidationError(str(ctx_error))

    field = ".".join(str(part) for part in first["loc"]) or "input"
    if first["type"] == "missing":
        return ValidationError(f"{field.replace('_', ' ').capitalize()} is required")
    return ValidationError(f"Invalid {field.replace('_', ' ')}")


def parse_payload(model: type[M], data: Any) -> M:
    """Validate input into a payload model, raising ValidationError on failure."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        raise validation_error_from(e) from e


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    message: str
    severity: ErrorSeverity


def classify_error(exception: Exception) -> ErrorResponse:
    """Map any exception to a short, non-leaking response.

    Expected failures keep their own message. Permission failures raised below
    the handler layer get a fixed message. Everything else (store and infra
    errors included) collapses into a generic retryable message.

    Args:
        exception: The exception raised while handling an action

    Returns:
        ErrorResponse with code, message and severity
    """
    if isinstance(exception, ActionError):
        return ErrorResponse(code=exception.code, message=exception.message, severity=exception.severity)

    if isinstance(exception, PermissionError):
        return ErrorResponse(
            code=ErrorCode.ERR_PERMISSION_DENIED,
            message=PERMISSION_DENIED_MESSAGE,
            severity=ErrorSeverity.HIGH,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        message=GENERIC_ERROR_MESSAGE,
        severity=ErrorSeverity.HIGH,
    )
