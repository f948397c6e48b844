"""Onboarding error types and classification utilities."""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel


class ErrorCategory(Enum):
    """Categories of errors that can occur while handling an onboarding event."""

    VALIDATION = "validation"
    PERMISSION_DENIED = "permission_denied"
    SESSION_EXPIRED = "session_expired"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    CONFLICT = "conflict"
    AMBIGUOUS_MATCH = "ambiguous_match"
    EXTERNAL_SERVICE = "external_service"
    NETWORK_ERROR = "network_error"
    AUTHENTICATION_FAILED = "authentication_failed"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    ERR_VALIDATION = "ERR_VALIDATION"
    ERR_PERMISSION_DENIED = "ERR_PERMISSION_DENIED"
    ERR_SESSION_EXPIRED = "ERR_SESSION_EXPIRED"
    ERR_INVALID_STATE_TRANSITION = "ERR_INVALID_STATE_TRANSITION"
    ERR_CONFLICT = "ERR_CONFLICT"
    ERR_AMBIGUOUS_MATCH = "ERR_AMBIGUOUS_MATCH"
    ERR_EXTERNAL_SERVICE = "ERR_EXTERNAL_SERVICE"
    ERR_NETWORK_ERROR = "ERR_NETWORK_ERROR"
    ERR_AUTHENTICATION_FAILED = "ERR_AUTHENTICATION_FAILED"
    ERR_UNKNOWN = "ERR_UNKNOWN"


class FailureKind(str, Enum):
    """How an external call failed."""

    TRANSPORT = "transport"
    STATUS = "status"
    DECODE = "decode"


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    category: ErrorCategory
    message: str
    suggestion: str
    severity: ErrorSeverity


class OnboardingError(Exception):
    """Base class for errors raised by the onboarding workflow."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    user_message: str = "Something went wrong. Try again."
    suggestion: str = "Please try again later. If the problem persists, contact a mod."

    def __init__(self, message: str = "", *, user_message: str | None = None) -> None:
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class InvalidIdentifierError(OnboardingError, ValueError):
    """Submitted email does not have a valid shape."""

    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.LOW
    user_message = "Please enter a valid email."
    suggestion = "Use the address you registered with, e.g. you@example.edu."


class ActorMismatchError(OnboardingError, PermissionError):
    """An actor pressed a control that belongs to someone else."""

    category = ErrorCategory.PERMISSION_DENIED
    severity = ErrorSeverity.LOW
    user_message = "This button is not for you."
    suggestion = "Use the controls in your own verification channel."


class OperatorPermissionError(OnboardingError, PermissionError):
    """A non-operator attempted an operator-only action."""

    category = ErrorCategory.PERMISSION_DENIED
    user_message = "You lack permission to do this."
    suggestion = "Ask an admin to review this application."


class SessionNotFoundError(OnboardingError, KeyError):
    """No live session exists for the referenced actor."""

    category = ErrorCategory.SESSION_EXPIRED
    severity = ErrorSeverity.LOW
    user_message = "This verification session has expired. Please rejoin the server or contact a mod."
    suggestion = "Rejoin the server to start a new verification session."

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else self.user_message


class SessionAlreadyExistsError(OnboardingError):
    """A live session already exists for the actor."""

    category = ErrorCategory.CONFLICT
    user_message = "A verification session is already in progress for you."


class CorrelationConflictError(OnboardingError):
    """The email is already linked to a different actor."""

    category = ErrorCategory.CONFLICT
    severity = ErrorSeverity.LOW
    user_message = "That email is already linked to another member. Please contact a mod."


class InvalidStageError(OnboardingError, ValueError):
    """The session is not in a stage that accepts this event."""

    category = ErrorCategory.INVALID_STATE_TRANSITION
    severity = ErrorSeverity.LOW
    user_message = "This step has already been completed."
    suggestion = "Follow the latest instructions in your verification channel."


class StaleSessionError(InvalidStageError):
    """The session changed stage while the handler was suspended."""

    user_message = "This request was already handled."


class FieldOverwriteError(OnboardingError, ValueError):
    """A stage tried to overwrite a collected field."""

    category = ErrorCategory.INVALID_STATE_TRANSITION


class DecisionInProgressError(OnboardingError):
    """A decision for the same record is already being processed."""

    category = ErrorCategory.INVALID_STATE_TRANSITION
    severity = ErrorSeverity.LOW
    user_message = "A decision for this application is already being processed."


class WorkflowAPIError(OnboardingError, RuntimeError):
    """The member directory API call failed."""

    category = ErrorCategory.EXTERNAL_SERVICE
    severity = ErrorSeverity.HIGH
    user_message = "The member directory could not be reached. Please try again shortly."

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        failure_kind: FailureKind,
        status_code: int | None = None,
        raw_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.failure_kind = failure_kind
        self.status_code = status_code
        self.raw_body = raw_body


class RecordNotFoundError(OnboardingError, LookupError):
    """No approved record could be resolved."""

    category = ErrorCategory.EXTERNAL_SERVICE
    user_message = "The approved profile could not be found in the member directory."


class AmbiguousMatchError(OnboardingError, LookupError):
    """No exact record match; a candidate needs operator confirmation."""

    category = ErrorCategory.AMBIGUOUS_MATCH
    user_message = "No exact profile match was found. Please confirm the suggested record."

    def __init__(self, message: str, *, record_key: str, candidate: Any) -> None:  # noqa: ANN401
        super().__init__(message)
        self.record_key = record_key
        self.candidate = candidate


_ERROR_PATTERNS: dict[
    Literal["auth", "network"],
    dict[str, list[str] | set[str]],
] = {
    "auth": {
        "phrases": [
            "authentication failed",
            "unauthorized",
            "invalid token",
            "401",
            "403",
        ],
        "exception_types": {"AuthenticationError"},
    },
    "network": {
        "phrases": [
            "connection",
            "timeout",
            "timed out",
            "network",
            "503",
            "502",
            "504",
            "unreachable",
        ],
        "exception_types": {"ConnectionError", "TimeoutError", "ConnectError", "ReadTimeout"},
    },
}


def _match_error_pattern(*, error_str: str, exception_type: str, pattern_type: Literal["auth", "network"]) -> bool:
    """Return True if the error matches the configured pattern type."""
    patterns = _ERROR_PATTERNS[pattern_type]
    return any(phrase in error_str for phrase in patterns["phrases"]) or exception_type in patterns["exception_types"]


def classify_error_with_response(exception: Exception) -> ErrorResponse:
    """Classify an error and return a structured response with recovery suggestions.

    Onboarding errors carry their own category and message. Anything else is
    matched against known phrases before falling back to a generic message.

    Args:
        exception: The exception raised while handling an event

    Returns:
        ErrorResponse with code, category, message, suggestion, and severity
    """
    if isinstance(exception, OnboardingError):
        return ErrorResponse(
            code=f"ERR_{exception.category.name}",
            category=exception.category,
            message=exception.user_message,
            suggestion=exception.suggestion,
            severity=exception.severity,
        )

    error_str = str(exception).lower()
    exception_type = type(exception).__name__

    if _match_error_pattern(error_str=error_str, exception_type=exception_type, pattern_type="auth"):
        return ErrorResponse(
            code=ErrorCode.ERR_AUTHENTICATION_FAILED,
            category=ErrorCategory.AUTHENTICATION_FAILED,
            message="Service authentication failed.",
            suggestion="Please contact a mod.",
            severity=ErrorSeverity.CRITICAL,
        )

    if _match_error_pattern(error_str=error_str, exception_type=exception_type, pattern_type="network"):
        return ErrorResponse(
            code=ErrorCode.ERR_NETWORK_ERROR,
            category=ErrorCategory.NETWORK_ERROR,
            message="Network error occurred.",
            suggestion="Please try again in a moment.",
            severity=ErrorSeverity.MEDIUM,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        category=ErrorCategory.UNKNOWN,
        message="Something went wrong. Try again.",
        suggestion="Please try again later. If the problem persists, contact a mod.",
        severity=ErrorSeverity.MEDIUM,
    )
