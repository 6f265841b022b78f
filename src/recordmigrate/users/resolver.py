"""Display name to login name resolution against the target user directory."""

import logging
import re
import threading
from collections.abc import Iterable
from dataclasses import dataclass

from recordmigrate.constants import DEFAULT_USER_BATCH_SIZE, USER_TYPE
from recordmigrate.repository.base import RepositorySession
from recordmigrate.repository.query import Eq, IEq, In, Query, chunked

logger = logging.getLogger(__name__)

_HONORIFIC = re.compile(r"^(Shri|Smt|Ms\.|Mr\.|Dr\.)\s+", re.IGNORECASE)


@dataclass(frozen=True)
class UserMatch:
    """A resolved user: ``user_name`` is the ACL accessor, ``login_name`` the login."""

    user_name: str
    login_name: str


def login_variations(display_name: str) -> list[str]:
    """Candidate login names for a display name, most likely first.

    Examples:
        >>> login_variations("Shri Ravi Kumar")
        ['ravikumar', 'ravi.kumar', 'rkumar', 'kumarr']
        >>> login_variations("Anita")
        ['anita']
    """
    cleaned = _HONORIFIC.sub("", display_name.strip()).strip()
    parts = cleaned.lower().split()
    if not parts:
        return []
    if len(parts) == 1:
        return [parts[0]]

    first, last = parts[0], parts[-1]
    variations = [f"{first}{last}", f"{first}.{last}", f"{first[0]}{last}"]
    if len(parts) == 2:
        variations.append(f"{last}{first[0]}")
    return list(dict.fromkeys(variations))


class UserLoginResolver:
    """Resolves legacy display names to target users, caching hits and misses.

    Lookup order per name: cache, exact ``user_name``, batched ``IN`` match
    (case-insensitive against the batch result), then login name variations.

    Example:
        >>> resolver = UserLoginResolver()
        >>> resolver.resolve(session, "Dr. Meera Iyer")
        'miyer'
    """

    def __init__(self, batch_size: int = DEFAULT_USER_BATCH_SIZE):
        self.batch_size = batch_size
        self._cache: dict[str, UserMatch] = {}
        self._not_found: set[str] = set()
        self._lock = threading.Lock()

    def _cached(self, name: str) -> tuple[bool, UserMatch | None]:
        with self._lock:
            if name in self._cache:
                return True, self._cache[name]
            if name in self._not_found:
                return True, None
        return False, None

    def _remember(self, name: str, match: UserMatch | None) -> None:
        with self._lock:
            if match is None:
                self._not_found.add(name)
            else:
                self._cache[name] = match
                self._cache.setdefault(match.user_name, match)

    def lookup(self, session: RepositorySession, display_name: str) -> UserMatch | None:
        """Resolve one display name to a full user match, or None."""
        name = (display_name or "").strip()
        if not name:
            return None
        hit, match = self._cached(name)
        if hit:
            return match

        match = self._exact(session, name) or self._by_variations(session, name)
        if match is None:
            logger.warning(f"User not found in target repository: '{name}'")
        else:
            logger.debug(f"Resolved user '{name}' to login '{match.login_name}'")
        self._remember(name, match)
        return match

    def resolve(self, session: RepositorySession, display_name: str) -> str | None:
        """Login name for a display name, or None when no user matches."""
        match = self.lookup(session, display_name)
        return match.login_name if match else None

    def resolve_many(self, session: RepositorySession, display_names: Iterable[str]) -> dict[str, UserMatch]:
        """Resolve many names with batched ``IN`` queries.

        Returns:
            Display name -> match, for every name that resolved
        """
        results: dict[str, UserMatch] = {}
        pending: list[str] = []
        for raw in display_names:
            name = (raw or "").strip()
            if not name or name in results or name in pending:
                continue
            hit, match = self._cached(name)
            if not hit:
                pending.append(name)
            elif match is not None:
                results[name] = match

        for batch in chunked(pending, self.batch_size):
            rows = session.query(Query(USER_TYPE, ("user_name", "user_login_name"), (In("user_name", batch),)))
            found = {
                str(row["user_name"]): UserMatch(str(row["user_name"]), str(row.get("user_login_name") or ""))
                for row in rows
                if row.get("user_name")
            }
            lowered = {user_name.lower(): match for user_name, match in found.items()}

            for name in batch:
                match = found.get(name) or lowered.get(name.lower())
                if match is None:
                    match = self._by_variations(session, name)
                if match is None:
                    logger.warning(f"User not found in target repository: '{name}'")
                else:
                    results[name] = match
                self._remember(name, match)

        return results

    def _exact(self, session: RepositorySession, name: str) -> UserMatch | None:
        rows = session.query(Query(USER_TYPE, ("user_name", "user_login_name"), (Eq("user_name", name),)))
        if not rows:
            return None
        return UserMatch(str(rows[0]["user_name"]), str(rows[0].get("user_login_name") or ""))

    def _by_variations(self, session: RepositorySession, name: str) -> UserMatch | None:
        for variation in login_variations(name):
            rows = session.query(
                Query(USER_TYPE, ("user_name", "user_login_name"), (IEq("user_login_name", variation),))
            )
            if rows:
                return UserMatch(str(rows[0]["user_name"]), str(rows[0].get("user_login_name") or ""))
        return None
