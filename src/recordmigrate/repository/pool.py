"""Bounded pool of authenticated repository sessions."""

import logging
import queue
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from tenacity import Retrying, stop_after_attempt, wait_exponential

from recordmigrate.constants import (
    DEFAULT_ACQUIRE_TIMEOUT_SECONDS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY_SECONDS,
    DEFAULT_RETRY_MAX_WAIT_SECONDS,
    MAX_POOL_SIZE,
)
from recordmigrate.exceptions import PoolExhaustedError, RepositoryConnectionError
from recordmigrate.repository.base import RepositorySession

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], RepositorySession]


class SessionPool:
    """Fixed-size pool of repository sessions shared by worker threads.

    Sessions are created eagerly; each is lent to exactly one caller at a time.
    A session that comes back disconnected is replaced from the factory before
    it re-enters the pool. If the replacement cannot be made the slot is lost
    and the pool shrinks.

    Example:
        >>> pool = SessionPool(repo.connect, size=4)
        >>> with pool.session() as session:
        ...     session.fetch(object_id)
        >>> pool.shutdown()
    """

    def __init__(
        self,
        factory: SessionFactory,
        size: int,
        acquire_timeout: float = DEFAULT_ACQUIRE_TIMEOUT_SECONDS,
        replace_attempts: int = DEFAULT_MAX_RETRIES,
        retry_wait: float = DEFAULT_RETRY_DELAY_SECONDS,
    ):
        """Create the pool and open ``size`` sessions.

        Args:
            factory: Callable returning a new connected session
            size: Number of sessions to hold (1 to MAX_POOL_SIZE)
            acquire_timeout: Default seconds to wait in :meth:`acquire`
            replace_attempts: Factory attempts when replacing a dead session
            retry_wait: Base back-off between replacement attempts

        Raises:
            ValueError: If size is out of range
            RepositoryConnectionError: If any initial session cannot be created
        """
        if not 1 <= size <= MAX_POOL_SIZE:
            raise ValueError(f"Pool size must be between 1 and {MAX_POOL_SIZE}, got {size}")

        self.factory = factory
        self.size = size
        self.acquire_timeout = acquire_timeout
        self.replace_attempts = replace_attempts
        self.retry_wait = retry_wait

        self._idle: queue.Queue[RepositorySession] = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self._lost_slots = 0
        self._borrowed = 0

        created: list[RepositorySession] = []
        try:
            for _ in range(size):
                created.append(factory())
        except Exception as e:
            for session in created:
                session.disconnect()
            raise RepositoryConnectionError(f"Failed to open session pool: {e}") from e

        for session in created:
            self._idle.put(session)
        logger.debug(f"Session pool ready with {size} sessions")

    @property
    def lost_slots(self) -> int:
        with self._lock:
            return self._lost_slots

    @property
    def available(self) -> int:
        return self._idle.qsize()

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def acquire(self, timeout: float | None = None) -> RepositorySession:
        """Borrow a session, blocking until one is free.

        Args:
            timeout: Seconds to wait (defaults to the pool's acquire_timeout)

        Returns:
            A connected session owned by the caller until released

        Raises:
            PoolExhaustedError: If no session became free in time, or the pool is shut down
        """
        with self._lock:
            if self._closed:
                raise PoolExhaustedError("Session pool is shut down")

        wait = self.acquire_timeout if timeout is None else timeout
        try:
            session = self._idle.get(timeout=wait)
        except queue.Empty:
            raise PoolExhaustedError(timeout=wait) from None

        with self._lock:
            self._borrowed += 1
        return session

    def release(self, session: RepositorySession) -> None:
        """Return a borrowed session, replacing it first if it has disconnected."""
        with self._lock:
            self._borrowed = max(self._borrowed - 1, 0)
            closed = self._closed

        if closed:
            session.disconnect()
            return

        if session.is_connected():
            self._idle.put(session)
            return

        logger.warning("Pooled session disconnected, opening a replacement")
        try:
            replacement = self._replace()
        except Exception as e:
            with self._lock:
                self._lost_slots += 1
                remaining = self.size - self._lost_slots
            logger.error(f"Could not replace session ({e}); pool shrinks to {remaining}")
            return

        with self._lock:
            if self._closed:
                replacement.disconnect()
                return
        self._idle.put(replacement)

    def _replace(self) -> RepositorySession:
        for attempt in Retrying(
            stop=stop_after_attempt(self.replace_attempts),
            wait=wait_exponential(
                multiplier=self.retry_wait, min=self.retry_wait, max=DEFAULT_RETRY_MAX_WAIT_SECONDS
            ),
            reraise=True,
        ):
            with attempt:
                return self.factory()
        raise RepositoryConnectionError("Session replacement exhausted retries")

    @contextmanager
    def session(self, timeout: float | None = None) -> Iterator[RepositorySession]:
        """Borrow a session for the duration of a ``with`` block."""
        session = self.acquire(timeout)
        try:
            yield session
        finally:
            self.release(session)

    def shutdown(self) -> None:
        """Disconnect all idle sessions. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

        closed = 0
        while True:
            try:
                session = self._idle.get_nowait()
            except queue.Empty:
                break
            try:
                session.disconnect()
            except Exception as e:
                logger.warning(f"Error disconnecting pooled session: {e}")
            closed += 1
        logger.debug(f"Session pool shut down ({closed} idle sessions closed)")


class SessionPoolRegistry:
    """Owns one lazily created pool per repository identity.

    Example:
        >>> registry = SessionPoolRegistry()
        >>> pool = registry.get(config.target.identity, factory, size=8)
        >>> registry.get(config.target.identity, factory, size=8) is pool
        True
        >>> registry.shutdown_all()
    """

    def __init__(self) -> None:
        self._pools: dict[str, SessionPool] = {}
        self._lock = threading.Lock()
        self._shut_down = False

    def get(
        self,
        identity: str,
        factory: SessionFactory,
        size: int,
        timeout: float = DEFAULT_ACQUIRE_TIMEOUT_SECONDS,
    ) -> SessionPool:
        with self._lock:
            if self._shut_down:
                raise PoolExhaustedError("Session pool registry is shut down")
            pool = self._pools.get(identity)
            if pool is None:
                logger.info(f"Opening session pool for {identity} ({size} sessions)")
                pool = SessionPool(factory, size=size, acquire_timeout=timeout)
                self._pools[identity] = pool
            return pool

    def shutdown_all(self) -> None:
        with self._lock:
            if self._shut_down:
                return
            self._shut_down = True
            pools = list(self._pools.values())
            self._pools.clear()
        for pool in pools:
            pool.shutdown()
