"""
Retry logic with exponential backoff using tenacity.
"""
from dataclasses import dataclass
from typing import Callable, Optional

import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)

from reminder_orchestrator.core.exceptions import (
    ExternalServiceAuthenticationError,
    ExternalServiceError,
    ExternalServiceRateLimitError,
    ExternalServiceTimeoutError,
)

logger = structlog.get_logger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry logic."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0


def is_retryable_error(error: BaseException) -> bool:
    """
    Decide whether an external call failure is worth repeating in-process.

    Timeouts, rate limits, network errors and 5xx responses are transient.
    Authentication failures and other 4xx responses are not.
    """
    if isinstance(error, (ExternalServiceTimeoutError, ExternalServiceRateLimitError)):
        return True
    if isinstance(error, ExternalServiceAuthenticationError):
        return False
    if isinstance(error, ExternalServiceError):
        return error.status_code is None or error.status_code >= 500
    return isinstance(error, (ConnectionError, TimeoutError))


def create_async_retry_decorator(
    config: Optional[RetryConfig] = None,
    service_name: str = "Unknown Service",
) -> Callable:
    """Create a retry decorator for async functions."""

    config = config or RetryConfig()

    def _before_sleep(retry_state: RetryCallState) -> None:
        """Log retry attempts."""
        logger.warning(
            "Retrying failed async operation",
            service=service_name,
            attempt=retry_state.attempt_number,
            max_attempts=config.max_attempts,
            delay=retry_state.next_action.sleep,
            exception=str(retry_state.outcome.exception()),
        )

    return retry(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_random_exponential(
            multiplier=config.base_delay,
            max=config.max_delay,
        ),
        retry=retry_if_exception(is_retryable_error),
        before_sleep=_before_sleep,
        reraise=True,
    )


def get_external_service_retry_config() -> RetryConfig:
    """Get retry configuration for read-only calls to external services."""
    return RetryConfig(
        max_attempts=3,
        base_delay=2.0,
        max_delay=30.0,
    )
