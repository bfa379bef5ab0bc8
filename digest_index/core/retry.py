"""
Retry logic with exponential backoff for network operations.

Every call to the embedding API and the vector index goes through one
RetryExecutor so upsert, query, delete, fetch and embedding calls share
identical semantics:

- each attempt is raced against a per-attempt timeout
- failed attempts are followed by min(initial * multiplier^attempt, max) ms of sleep
- validation, authentication and configuration errors are raised immediately
- after the last attempt the most recent error is raised
"""
import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from digest_index.core.common import get_service_logger
from digest_index.core.exceptions import (
    OperationTimeoutError,
    classify_error,
    is_retryable,
)

T = TypeVar("T")

logger = get_service_logger("retry")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Configuration for retry behavior.

    Attributes:
        max_retries: Total number of attempts (including the first try)
        initial_delay_ms: Delay after the first failed attempt
        backoff_multiplier: Multiplier applied per attempt
        max_delay_ms: Ceiling for any single delay
        timeout_ms: Per-attempt timeout, None disables it
    """
    max_retries: int = 3
    initial_delay_ms: float = 1000.0
    backoff_multiplier: float = 2.0
    max_delay_ms: float = 30000.0
    timeout_ms: Optional[float] = 60000.0

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if self.initial_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("Retry delays must be non-negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")
        if self.timeout_ms is not None and self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")


def calculate_delay(attempt: int, policy: RetryPolicy) -> float:
    """
    Calculate the sleep after a failed attempt.

    Args:
        attempt: Attempt number (0-based)
        policy: Retry policy

    Returns:
        Delay in seconds
    """
    delay_ms = min(
        policy.initial_delay_ms * (policy.backoff_multiplier ** attempt),
        policy.max_delay_ms
    )
    return delay_ms / 1000.0


class RetryExecutor:
    """
    Bounded retry with backoff and per-attempt timeout.

    Holds no per-call state, so one executor can be shared by concurrent
    batch workers.

    Example:
        >>> executor = RetryExecutor(RetryPolicy(max_retries=3))
        >>> stats = await executor.execute(lambda: backend.describe_index_stats(),
        ...                                operation_name="describe_index_stats")
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        service: Optional[str] = None,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self.service = service

    async def _attempt(self, operation: Callable[[], Awaitable[T]], operation_name: str, policy: RetryPolicy) -> T:
        if policy.timeout_ms is None:
            return await operation()
        try:
            return await asyncio.wait_for(operation(), timeout=policy.timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            raise OperationTimeoutError(operation_name, policy.timeout_ms)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = "operation",
        policy: Optional[RetryPolicy] = None,
        retry_on: Callable[[BaseException], bool] = is_retryable,
    ) -> T:
        """
        Run ``operation`` until it succeeds or the policy is exhausted.

        Args:
            operation: Zero-argument callable returning an awaitable
            operation_name: Name for logging and timeout errors
            policy: Overrides the executor's policy for this call
            retry_on: Predicate deciding whether an error is worth retrying

        Returns:
            The operation's result

        Raises:
            The most recent error once attempts are exhausted, or the first
            non-retryable error.
        """
        policy = policy or self.policy
        last_error: Optional[BaseException] = None

        for attempt in range(policy.max_retries):
            try:
                result = await self._attempt(operation, operation_name, policy)
                if attempt > 0:
                    logger.info(
                        "retry_succeeded",
                        operation=operation_name,
                        attempts=attempt + 1
                    )
                return result

            except Exception as raw:
                error = classify_error(raw, service=self.service)
                if error is not raw:
                    error.__cause__ = raw
                last_error = error

                if not retry_on(error):
                    logger.error(
                        "retry_aborted_non_retryable",
                        operation=operation_name,
                        attempt=attempt + 1,
                        error=str(error),
                        error_type=type(error).__name__
                    )
                    raise error

                if attempt == policy.max_retries - 1:
                    break

                delay = calculate_delay(attempt, policy)
                logger.warning(
                    "retry_attempt_failed",
                    operation=operation_name,
                    attempt=attempt + 1,
                    max_retries=policy.max_retries,
                    retry_in_ms=int(delay * 1000),
                    error=str(error),
                    error_type=type(error).__name__
                )
                await self._sleep(delay)

        logger.error(
            "retry_exhausted",
            operation=operation_name,
            attempts=policy.max_retries,
            error=str(last_error),
            error_type=type(last_error).__name__
        )
        raise last_error
