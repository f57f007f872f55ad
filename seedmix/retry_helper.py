"""
Retry Helper - exponential backoff for collaborator calls

Only errors flagged ``retryable`` (see seedmix.errors) are retried; anything
else propagates on the first failure.
"""
import time
import logging
from functools import wraps
from typing import Callable, Tuple, Type

from .errors import PipelineError

logger = logging.getLogger(__name__)


def is_retryable(exc: BaseException) -> bool:
    """True for typed pipeline errors marked retryable."""
    return isinstance(exc, PipelineError) and exc.retryable


def retry_with_backoff(
    max_retries: int = 2,
    initial_delay: float = 1.0,
    backoff_multiplier: float = 2.0,
    max_delay: float = 10.0,
    exceptions: Tuple[Type[BaseException], ...] = (PipelineError,),
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Decorator that retries a function with exponential backoff

    Args:
        max_retries: Maximum number of retry attempts
        initial_delay: Delay in seconds before the first retry
        backoff_multiplier: Multiplier for delay after each retry
        max_delay: Maximum delay between retries in seconds
        exceptions: Exception types considered for retry (still filtered by is_retryable)
        sleep: Sleep function (injectable for tests)

    Example:
        @retry_with_backoff(max_retries=2, initial_delay=0.5)
        def complete(prompt):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            delay = initial_delay

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if not is_retryable(e) or attempt == max_retries:
                        if attempt:
                            logger.error(f"{func.__name__} failed after {attempt} retries: {e}")
                        raise

                    logger.warning(
                        f"{func.__name__} failed (attempt {attempt + 1}/{max_retries + 1}), "
                        f"retrying in {delay:.1f}s: {e}"
                    )
                    sleep(delay)
                    delay = min(delay * backoff_multiplier, max_delay)

        return wrapper
    return decorator
