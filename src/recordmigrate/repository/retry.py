"""Retry decorators for repository calls with exponential back-off."""

from collections.abc import Callable
from functools import wraps
from typing import TypeVar

from tenacity import (
    retry,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from recordmigrate.constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY_SECONDS,
    DEFAULT_RETRY_MAX_WAIT_SECONDS,
)
from recordmigrate.exceptions import AuthenticationError, ObjectNotFoundError, RepositoryError

T = TypeVar("T")

NEVER_RETRIED = (ObjectNotFoundError, AuthenticationError)


def with_retry(
    max_attempts: int = DEFAULT_MAX_RETRIES,
    min_wait: float = DEFAULT_RETRY_DELAY_SECONDS,
    max_wait: float = DEFAULT_RETRY_MAX_WAIT_SECONDS,
    multiplier: float = 2,
    exceptions: tuple[type[BaseException], ...] = (RepositoryError,),
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator to add retry logic with exponential back-off.

    ObjectNotFoundError and AuthenticationError are never retried: a missing
    object stays missing and rejected credentials stay rejected.

    Args:
        max_attempts: Maximum number of attempts (including the first)
        min_wait: Minimum wait time in seconds
        max_wait: Maximum wait time in seconds
        multiplier: Exponential multiplier for back-off
        exceptions: Exception types that trigger another attempt

    Returns:
        Decorated function with retry logic
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        @retry(
            retry=retry_if_exception_type(exceptions) & retry_if_not_exception_type(NEVER_RETRIED),
            wait=wait_exponential(multiplier=multiplier, min=min_wait, max=max_wait),
            stop=stop_after_attempt(max_attempts),
            reraise=True,
        )
        def wrapper(*args, **kwargs) -> T:
            return func(*args, **kwargs)

        return wrapper

    return decorator
