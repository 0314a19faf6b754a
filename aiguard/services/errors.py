"""
Error taxonomy for outbound AI calls.

Every failure the reliability layer raises is an AIError subclass tagged with
an ErrorKind. The `retryable` flag is fixed at construction and is what the
retry policy and circuit breaker act on.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Closed set of failure kinds."""

    API = "API"
    AUTHENTICATION = "AUTHENTICATION"
    VALIDATION = "VALIDATION"
    RATE_LIMITED = "RATE_LIMITED"
    TIMEOUT = "TIMEOUT"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    NETWORK = "NETWORK"
    RESPONSE_PARSING = "RESPONSE_PARSING"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    MAX_RETRIES_EXCEEDED = "MAX_RETRIES_EXCEEDED"
    INVALID_GENERATION = "INVALID_GENERATION"


class AIError(Exception):
    """Base exception for all AI service errors."""

    kind: ErrorKind = ErrorKind.API

    def __init__(
        self,
        message: str,
        *,
        correlation_id: str | None = None,
        status_code: int | None = None,
        retryable: bool | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.timestamp = datetime.now(timezone.utc)
        self.correlation_id = correlation_id
        self.status_code = status_code
        self._retryable = (
            retryable if retryable is not None else self._default_retryable()
        )
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def _default_retryable(self) -> bool:
        return False

    @property
    def retryable(self) -> bool:
        return self._retryable

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "kind": self.kind.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "correlation_id": self.correlation_id,
            "status_code": self.status_code,
            "retryable": self.retryable,
            "cause": repr(self.cause) if self.cause is not None else None,
        }


class APIError(AIError):
    """Generic API failure; retryable when the status code is 5xx."""

    kind = ErrorKind.API

    def _default_retryable(self) -> bool:
        return self.status_code is not None and 500 <= self.status_code <= 599


class AuthenticationError(APIError):
    """Credential missing or rejected."""

    kind = ErrorKind.AUTHENTICATION

    def __init__(
        self,
        message: str,
        *,
        correlation_id: str | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(
            message,
            correlation_id=correlation_id,
            status_code=401,
            retryable=False,
            cause=cause,
        )


class ValidationError(APIError):
    """Malformed caller input."""

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        validation_errors: list[str] | None = None,
        *,
        correlation_id: str | None = None,
        cause: BaseException | None = None,
    ):
        self.validation_errors = list(validation_errors or [])
        super().__init__(
            message,
            correlation_id=correlation_id,
            status_code=400,
            retryable=False,
            cause=cause,
        )


class RateLimitError(APIError):
    """Rate limit exceeded."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(
        self,
        message: str,
        *,
        retry_after_seconds: float | None = None,
        correlation_id: str | None = None,
        cause: BaseException | None = None,
    ):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            message,
            correlation_id=correlation_id,
            status_code=429,
            retryable=True,
            cause=cause,
        )


class RequestTimeoutError(APIError):
    """Request timed out."""

    kind = ErrorKind.TIMEOUT

    def __init__(
        self,
        message: str,
        timeout_ms: int,
        *,
        correlation_id: str | None = None,
        cause: BaseException | None = None,
    ):
        self.timeout_ms = timeout_ms
        super().__init__(
            message,
            correlation_id=correlation_id,
            status_code=408,
            retryable=True,
            cause=cause,
        )


class ServiceUnavailableError(APIError):
    """Upstream service is temporarily unavailable."""

    kind = ErrorKind.SERVICE_UNAVAILABLE

    def __init__(
        self,
        message: str,
        *,
        correlation_id: str | None = None,
        status_code: int = 503,
        cause: BaseException | None = None,
    ):
        super().__init__(
            message,
            correlation_id=correlation_id,
            status_code=status_code,
            retryable=True,
            cause=cause,
        )


class NetworkError(AIError):
    """Transport-level failure (DNS, connection reset, ...)."""

    kind = ErrorKind.NETWORK

    def __init__(
        self,
        message: str,
        *,
        correlation_id: str | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(
            message, correlation_id=correlation_id, retryable=True, cause=cause
        )


class ResponseParsingError(AIError):
    """Transport succeeded but the payload could not be understood."""

    kind = ErrorKind.RESPONSE_PARSING

    def __init__(
        self,
        message: str,
        response_data: Any = None,
        *,
        correlation_id: str | None = None,
        cause: BaseException | None = None,
    ):
        self.response_data = response_data
        super().__init__(
            message, correlation_id=correlation_id, retryable=False, cause=cause
        )


class InvalidGenerationError(AIError):
    """The model produced content that failed validation."""

    kind = ErrorKind.INVALID_GENERATION

    def __init__(
        self,
        message: str,
        generated_content: str = "",
        *,
        correlation_id: str | None = None,
        cause: BaseException | None = None,
    ):
        self.generated_content = generated_content
        super().__init__(
            message, correlation_id=correlation_id, retryable=True, cause=cause
        )


class CircuitOpenError(AIError):
    """Circuit breaker is open, request blocked."""

    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(
        self,
        service_name: str,
        reset_after_seconds: float,
        *,
        correlation_id: str | None = None,
    ):
        self.service_name = service_name
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker open for service '{service_name}', "
            f"retry after {reset_after_seconds:.1f}s",
            correlation_id=correlation_id,
            retryable=False,
        )


class MaxRetriesExceededError(AIError):
    """All retry attempts failed; wraps the last underlying error."""

    kind = ErrorKind.MAX_RETRIES_EXCEEDED

    def __init__(
        self,
        max_retries: int,
        original_error: BaseException,
        *,
        correlation_id: str | None = None,
    ):
        self.max_retries = max_retries
        self.original_error = original_error
        super().__init__(
            f"Maximum number of retries ({max_retries}) exceeded: {original_error}",
            correlation_id=correlation_id,
            retryable=False,
            cause=original_error,
        )


def root_cause(error: BaseException) -> BaseException:
    """Unwrap MaxRetriesExceededError down to the error that ended the retries."""
    while isinstance(error, MaxRetriesExceededError):
        error = error.original_error
    return error


def is_retryable_error(error: BaseException) -> bool:
    """Default retry predicate: only taxonomy errors marked retryable."""
    return isinstance(error, AIError) and error.retryable


_BREAKER_FAILURE_KINDS = {
    ErrorKind.SERVICE_UNAVAILABLE,
    ErrorKind.NETWORK,
    ErrorKind.TIMEOUT,
}


def is_breaker_failure(error: BaseException) -> bool:
    """Default circuit breaker predicate: upstream health failures only."""
    error = root_cause(error)
    if not isinstance(error, AIError):
        return False
    if error.kind in _BREAKER_FAILURE_KINDS:
        return True
    return (
        error.kind == ErrorKind.API
        and error.status_code is not None
        and 500 <= error.status_code <= 599
    )


_USER_MESSAGES = {
    ErrorKind.AUTHENTICATION: (
        "I apologize, but the AI service is not configured correctly. "
        "Please contact the administrator."
    ),
    ErrorKind.VALIDATION: (
        "I apologize, but there was an issue with the input provided. "
        "Please check your request and try again."
    ),
    ErrorKind.RATE_LIMITED: (
        "I apologize, but we've reached our API rate limit. "
        "Please try again in a few moments."
    ),
    ErrorKind.TIMEOUT: (
        "I apologize, but the request timed out. "
        "Please try again with a simpler query."
    ),
    ErrorKind.NETWORK: (
        "I apologize, but there was a network issue connecting to the AI service. "
        "Please check your connection and try again."
    ),
    ErrorKind.SERVICE_UNAVAILABLE: (
        "I apologize, but there was a network issue connecting to the AI service. "
        "Please check your connection and try again."
    ),
    ErrorKind.CIRCUIT_OPEN: (
        "I apologize, but the AI service is temporarily unavailable. "
        "Please try again shortly."
    ),
}

DEFAULT_USER_MESSAGE = (
    "I apologize, but I encountered an error while processing your request. "
    "Please try again."
)


def user_message_for(error: BaseException) -> str:
    """Map an error to a short message that is safe to show to end users."""
    error = root_cause(error)
    if isinstance(error, AIError):
        return _USER_MESSAGES.get(error.kind, DEFAULT_USER_MESSAGE)
    return DEFAULT_USER_MESSAGE
