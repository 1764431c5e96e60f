"""Retry strategies for process creation.

A fork that fails with ``EAGAIN`` or ``ENOMEM`` usually succeeds once other
processes have exited, so the dispatcher retries the same job after a fixed
pause. The strategy only answers "again?" and "how long to wait?"; the waiting
itself is done by the caller so that a termination signal can cut it short.

Example:
    >>> strategy = ConstantBackoff(max_retries=3, delay=5.0)
    >>> strategy.should_retry(0), strategy.next_delay(0)
    (True, 5.0)
    >>> strategy.should_retry(3)
    False
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from forkqueue.core.errors import is_retryable


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Calculate delay before next retry attempt.

        Args:
            attempt: Zero-based attempt number (0 = first retry)

        Returns:
            Delay in seconds before next attempt
        """
        ...

    @abstractmethod
    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """Determine if another retry should be attempted.

        Args:
            attempt: Number of retries already made
            error: The exception that caused the failure

        Returns:
            True if should retry, False otherwise
        """
        ...


@dataclass
class ConstantBackoff(RetryStrategy):
    """Constant delay between a bounded number of retries.

    Errors that are not retryable (see :func:`forkqueue.core.errors.is_retryable`)
    are never retried, however many retries remain.
    """

    max_retries: int = 10
    delay: float = 5.0

    def next_delay(self, attempt: int) -> float:
        """Return constant delay."""
        return self.delay

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        if error is not None and not is_retryable(error):
            return False
        return attempt < self.max_retries
