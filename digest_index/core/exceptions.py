"""
Custom exceptions for the indexing client.
Follows fail-fast principle with clear, actionable error messages.
Includes the error taxonomy used to decide what gets retried.
"""
from typing import Optional, Dict, Any, Callable, TypeVar
from functools import wraps
import asyncio
import openai
from fastapi import status

from digest_index.core.logging import get_logger

# Type hint for decorated functions
F = TypeVar('F', bound=Callable[..., Any])

logger = get_logger(__name__)


class BaseAppException(Exception):
    """Base exception for all client exceptions."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(BaseAppException):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details
        )


# ============================================================================
# VALIDATION ERRORS - never retried, raised before any network call
# ============================================================================

class ValidationError(BaseAppException):
    """Raised when input validation fails."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None,
        error_code: str = "VALIDATION_ERROR"
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)

        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class SchemaError(ValidationError):
    """Raised when metadata does not match the declared schema."""


class MissingRequiredFieldError(SchemaError):
    """Raised when a required metadata field is absent."""

    def __init__(self, field: str):
        super().__init__(
            f"Required metadata field missing: {field}",
            field=field,
            error_code="MISSING_REQUIRED_FIELD"
        )


class UnexpectedFieldError(SchemaError):
    """Raised when metadata carries a key outside the schema."""

    def __init__(self, field: str):
        super().__init__(
            f"Extra metadata field not allowed: {field}",
            field=field,
            error_code="UNEXPECTED_FIELD"
        )


class DimensionMismatchError(ValidationError):
    """Raised when a vector's length differs from the configured dimension."""

    def __init__(self, expected: int, actual: int, vector_id: Optional[str] = None):
        super().__init__(
            f"Vector dimensions mismatch: expected {expected}, got {actual}",
            field="values",
            error_code="DIMENSION_MISMATCH"
        )
        self.expected = expected
        self.actual = actual
        self.details["expected"] = expected
        self.details["actual"] = actual
        if vector_id is not None:
            self.details["vector_id"] = vector_id


class InvalidVectorError(ValidationError):
    """Raised when a vector is structurally invalid."""

    def __init__(self, message: str, vector_id: Optional[str] = None):
        super().__init__(message, field="vector", value=vector_id, error_code="INVALID_VECTOR")


class InvalidRequestError(ValidationError):
    """Raised when an upstream service rejects a request as malformed (4xx)."""

    def __init__(self, message: str, service: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, error_code="INVALID_REQUEST")
        if service:
            self.details["service"] = service
        if status_code:
            self.details["service_status_code"] = status_code


# ============================================================================
# NETWORK ERRORS - retried by the RetryExecutor
# ============================================================================

class TransientNetworkError(BaseAppException):
    """Raised for connection resets, timeouts and 5xx responses."""

    retryable = True

    def __init__(self, message: str, service: Optional[str] = None, status_code: Optional[int] = None):
        details: Dict[str, Any] = {}
        if service:
            details["service"] = service
        if status_code:
            details["service_status_code"] = status_code
        super().__init__(
            message=message,
            error_code="TRANSIENT_NETWORK_ERROR",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details
        )


class OperationTimeoutError(TransientNetworkError):
    """Raised when a single attempt exceeds its timeout."""

    def __init__(self, operation: str, timeout_ms: float):
        super().__init__(f"Operation '{operation}' timed out after {timeout_ms:.0f}ms")
        self.error_code = "OPERATION_TIMEOUT"
        self.status_code = status.HTTP_504_GATEWAY_TIMEOUT
        self.details.update({"operation": operation, "timeout_ms": timeout_ms})


class RateLimitError(BaseAppException):
    """Raised when an upstream rate limit is exceeded."""

    retryable = True

    def __init__(self, message: str, retry_after: Optional[int] = None):
        details = {"retry_after": retry_after} if retry_after else {}
        super().__init__(
            message=message,
            error_code="RATE_LIMIT_EXCEEDED",
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            details=details
        )


class AuthenticationError(BaseAppException):
    """Raised when credentials are rejected. Retrying cannot fix this."""

    def __init__(self, message: str = "Authentication failed", service: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="AUTHENTICATION_ERROR",
            status_code=status.HTTP_401_UNAUTHORIZED,
            details={"service": service} if service else {}
        )


# ============================================================================
# PERSISTENT FAILURES - raised after retry exhaustion
# ============================================================================

class PersistentFailureError(BaseAppException):
    """Raised after retries are exhausted; wraps the last observed error."""

    def __init__(
        self,
        operation: str,
        last_error: Optional[BaseException] = None,
        message: Optional[str] = None,
        error_code: str = "PERSISTENT_FAILURE"
    ):
        details: Dict[str, Any] = {"operation": operation}
        if last_error is not None:
            details["last_error"] = str(last_error)
            details["last_error_type"] = type(last_error).__name__
        super().__init__(
            message=message or f"{operation} failed: {last_error}",
            error_code=error_code,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details
        )
        self.operation = operation
        self.last_error = last_error


class EmbeddingAPIError(PersistentFailureError):
    """Raised when embedding generation fails after all retries."""

    def __init__(self, last_error: Optional[BaseException] = None, model: Optional[str] = None):
        super().__init__(
            "generate_embeddings",
            last_error,
            message=f"Embedding generation failed: {last_error}",
            error_code="EMBEDDING_API_ERROR"
        )
        if model:
            self.details["model"] = model


class VectorStoreError(PersistentFailureError):
    """Raised when vector store operations fail."""

    def __init__(self, message: str, operation: Optional[str] = None, last_error: Optional[BaseException] = None):
        super().__init__(
            operation or "vector_store",
            last_error,
            message=message,
            error_code="VECTOR_STORE_ERROR"
        )


# ============================================================================
# CLASSIFICATION
# ============================================================================

def _status_of(error: BaseException) -> Optional[int]:
    """Pull an HTTP status out of SDK exceptions that expose one."""
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def classify_error(error: BaseException, service: Optional[str] = None) -> BaseException:
    """
    Map a third-party exception onto the client's error taxonomy.

    Client exceptions are returned unchanged. Other 4xx responses become
    InvalidRequestError and are never retried. Errors that cannot be
    classified are returned as-is and treated as retryable.
    """
    if isinstance(error, BaseAppException):
        return error

    if isinstance(error, (asyncio.TimeoutError, TimeoutError, openai.APITimeoutError)):
        return TransientNetworkError(f"Request timed out: {error}", service=service)

    if isinstance(error, openai.AuthenticationError):
        return AuthenticationError(str(error), service=service)
    if isinstance(error, openai.RateLimitError):
        return RateLimitError(str(error))
    if isinstance(error, (openai.BadRequestError, openai.NotFoundError, openai.UnprocessableEntityError)):
        return InvalidRequestError(str(error), service=service, status_code=_status_of(error))
    if isinstance(error, (openai.APIConnectionError, ConnectionError)):
        return TransientNetworkError(f"Connection error: {error}", service=service)

    code = _status_of(error)
    if code in (401, 403):
        return AuthenticationError(str(error), service=service)
    if code == 429:
        return RateLimitError(str(error))
    if code is not None and (code == 408 or code >= 500):
        return TransientNetworkError(str(error), service=service, status_code=code)
    if code is not None and 400 <= code < 500:
        return InvalidRequestError(str(error), service=service, status_code=code)

    return error


def is_retryable(error: BaseException) -> bool:
    """Validation, authentication and configuration errors are never retried."""
    return not isinstance(error, (ValidationError, AuthenticationError, ConfigurationError))


# ============================================================================
# COMMON ERROR HANDLING PATTERNS
# ============================================================================

def handle_service_error(
    operation: str,
    error: Exception,
    context: Optional[Dict[str, Any]] = None,
    raise_as: Optional[type] = None
) -> None:
    """
    Consolidated error handling pattern for services.
    Replaces repeated try-catch-log-raise patterns.

    Args:
        operation: Description of operation that failed
        error: The original exception
        context: Additional context for logging
        raise_as: Exception class to raise (defaults to VectorStoreError)
    """
    error_context = dict(context or {})
    error_context.update({
        "operation": operation,
        "error": str(error),
        "error_type": type(error).__name__
    })

    logger.error(f"{operation}_failed", **error_context, exc_info=True)

    if raise_as:
        raise raise_as(f"{operation} failed: {str(error)}") from error
    raise VectorStoreError(f"{operation} failed: {str(error)}", operation, error) from error


def with_error_handling(
    operation: str,
    context: Optional[Dict[str, Any]] = None,
    raise_as: Optional[type] = None,
    reraise_if: Optional[tuple] = None
):
    """
    Decorator to add consistent error handling to service methods.

    Args:
        operation: Description of operation for logging
        context: Additional context for logging
        raise_as: Exception class to raise on error
        reraise_if: Tuple of exception types to reraise without modification
    """
    def decorator(func: F) -> F:
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if reraise_if and isinstance(e, reraise_if):
                    raise

                handle_service_error(operation, e, context, raise_as)

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if reraise_if and isinstance(e, reraise_if):
                    raise

                handle_service_error(operation, e, context, raise_as)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        else:
            return sync_wrapper

    return decorator
