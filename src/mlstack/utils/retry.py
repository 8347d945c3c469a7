"""Retry strategy with exponential backoff for provider operations."""

import time
import random
from typing import Callable, TypeVar, Optional

from mlstack.utils.errors import DeploymentError, TransientProviderError
from mlstack.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


class RetryStrategy:
    """Implements exponential backoff retry strategy for transient errors.

    Only TransientProviderError is retried. Every other exception is raised
    on the first attempt.
    """

    def __init__(
        self,
        max_retries: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        sleep: Optional[Callable[[float], None]] = None
    ):
        """Initialize retry strategy.

        Args:
            max_retries: Total number of attempts before giving up (at least 1)
            base_delay: Delay in seconds before the second attempt
            max_delay: Maximum delay in seconds between attempts
            exponential_base: Base for exponential backoff calculation
            jitter: Whether to add random jitter to delay
            sleep: Function used to wait between attempts
        """
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.sleep = sleep or time.sleep

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """Determine if an error should trigger a retry.

        Args:
            error: The exception that occurred
            attempt: Current attempt number (0-indexed)

        Returns:
            True if the error is transient and attempts remain
        """
        if attempt + 1 >= self.max_retries:
            return False

        return isinstance(error, TransientProviderError)

    def get_delay(self, attempt: int) -> float:
        """Calculate delay before next attempt using exponential backoff.

        Args:
            attempt: Attempt number that just failed (0-indexed)

        Returns:
            Delay in seconds, never above max_delay
        """
        delay = min(
            self.base_delay * (self.exponential_base ** attempt),
            self.max_delay
        )

        # Jitter stays inside the ceiling
        if self.jitter and delay > 0:
            jitter_amount = random.uniform(0, delay * 0.1)
            delay = min(delay + jitter_amount, self.max_delay)

        return delay

    def execute_with_retry(
        self,
        func: Callable[..., T],
        *args,
        **kwargs
    ) -> T:
        """Execute a function with retry logic.

        Args:
            func: Function to execute
            *args: Positional arguments for the function
            **kwargs: Keyword arguments for the function

        Returns:
            Result of the function call

        Raises:
            The last exception if all attempts are exhausted, or the first
            non-transient exception
        """
        for attempt in range(self.max_retries):
            try:
                result = func(*args, **kwargs)

                if attempt > 0:
                    logger.info(f"Operation succeeded after {attempt} retries")

                return result

            except Exception as e:
                if not self.should_retry(e, attempt):
                    if isinstance(e, TransientProviderError):
                        logger.error(f"All {self.max_retries} attempts exhausted: {e}")
                    else:
                        logger.debug(f"Error is not retryable: {e}")
                    raise

                delay = self.get_delay(attempt)

                logger.warning(
                    f"Attempt {attempt + 1}/{self.max_retries} failed: {self._get_error_info(e)}. "
                    f"Retrying in {delay:.2f}s..."
                )

                self.sleep(delay)

        # Unreachable: the last attempt either returns or raises
        raise RuntimeError("retry loop exited without result")

    def _get_error_info(self, error: Exception) -> str:
        """Extract useful error information for logging."""
        if isinstance(error, DeploymentError):
            return f"{error.error_class}: {error.message}"

        return f"{type(error).__name__}: {str(error)}"
