"""Time-bounded execution of content and save calls."""

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from types import TracebackType
from typing import Any, TypeVar

from recordmigrate.constants import DEFAULT_CONTENT_TIMEOUT_SECONDS
from recordmigrate.exceptions import ContentOperationTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TimeoutRunner:
    """Runs blocking repository calls on a helper pool so they can time out.

    The helper pool exists only to bound waiting; calls are submitted one at a
    time. A call that times out is cancelled (best effort) and its thread may
    keep running, so the pool keeps a few spare workers for later calls.

    Example:
        >>> with TimeoutRunner(timeout=300) as runner:
        ...     runner.run("save", session.save, document, target="letter.pdf")
    """

    def __init__(self, timeout: float = DEFAULT_CONTENT_TIMEOUT_SECONDS, max_workers: int = 4):
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="content-op")
        self.timeouts = 0

    def run(self, operation: str, func: Callable[..., T], *args: Any, target: str = "") -> T:
        """Call ``func(*args)`` and wait at most ``timeout`` seconds.

        Raises:
            ContentOperationTimeout: If the call does not finish in time
            Exception: Whatever ``func`` raises, unchanged
        """
        future = self._executor.submit(func, *args)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError as e:
            future.cancel()
            self.timeouts += 1
            logger.error(f"{operation} did not finish within {self.timeout:g}s ({target or 'unknown target'})")
            raise ContentOperationTimeout(operation, self.timeout, target) from e

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "TimeoutRunner":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.shutdown()
