"""
Bounded retry policy for context cache creation.
"""

from typing import Callable, Optional

from library_rag.utils.exceptions import StaleReferenceError, ValidationError


def is_stale_reference(error: Exception) -> bool:
    return isinstance(error, StaleReferenceError)


class RetryPolicy:
    """Decides whether a failed cache creation is repaired and attempted again."""

    def __init__(
        self,
        max_retries: int = 1,
        is_retryable: Optional[Callable[[Exception], bool]] = None
    ):
        """
        Initialize retry policy.

        Args:
            max_retries: Retries after the first attempt; at most one
            is_retryable: Error predicate; defaults to stale file references only

        Raises:
            ValidationError: If max_retries is outside [0, 1]
        """
        if max_retries < 0 or max_retries > 1:
            raise ValidationError(f"max_retries must be 0 or 1, got {max_retries}")
        self.max_retries = max_retries
        self.is_retryable = is_retryable or is_stale_reference

    def should_retry(self, error: Exception, retries_done: int) -> bool:
        return retries_done < self.max_retries and self.is_retryable(error)

    def __repr__(self) -> str:
        return f"RetryPolicy(max_retries={self.max_retries})"
