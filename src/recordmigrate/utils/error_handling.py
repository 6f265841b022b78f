"""Error handling helpers for best-effort repository calls."""

from collections.abc import Callable
from logging import getLogger
from typing import TypeVar

from recordmigrate.exceptions import RepositoryError

logger = getLogger(__name__)

T = TypeVar("T")


def safe_execute(
    func: Callable[..., T],
    *args: object,
    default_return: T | None = None,
    log_message: str | None = None,
    **kwargs: object,
) -> T | None:
    """Call a repository function whose failure should not fail the caller.

    Only repository errors are absorbed; anything else propagates.

    Args:
        func: Function to execute
        *args: Positional arguments for func
        default_return: Value to return when func raises a repository error
        log_message: Warning prefix (the function name is used if omitted)
        **kwargs: Keyword arguments for func

    Returns:
        Function result or default_return

    Example:
        >>> folder = safe_execute(session.fetch, folder_id, log_message="Verification fetch failed")
    """
    try:
        return func(*args, **kwargs)
    except RepositoryError as e:
        prefix = log_message or f"Error in {getattr(func, '__name__', repr(func))}"
        logger.warning(f"{prefix}: {e}")
        return default_return
