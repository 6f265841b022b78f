"""ACL reconciliation: per-record workflow ACLs and best-effort application to folders.

Applying an ACL never fails the folder it is applied to. Three mechanisms
are tried in order:

1. set ``acl_name``/``acl_domain`` on the fetched folder and save
2. re-fetch the folder and point it at the ACL object by reference, then save
3. an update statement setting both attributes by id

Whichever tier succeeds, the folder is re-fetched and its ACL name checked.
"""

import logging
import threading

from recordmigrate.acl.models import AclDescriptor
from recordmigrate.config.models import AclConfig
from recordmigrate.constants import ACL_TYPE, GROUP_TYPE, USER_TYPE
from recordmigrate.exceptions import (
    AccessorNotFound,
    AclApplicationFailed,
    RepositoryError,
    RepositoryOperationFailed,
)
from recordmigrate.repository.base import RepositoryObject, RepositorySession
from recordmigrate.repository.query import Eq, Query, UpdateObject
from recordmigrate.utils.error_handling import safe_execute

logger = logging.getLogger(__name__)


def grant(acl: RepositoryObject, accessor: str, permit: int) -> None:
    """Grant a permit on an unsaved ACL object, replacing an existing grant for the accessor."""
    names = acl.values("r_accessor_name")
    permits = acl.values("r_accessor_permit")
    if accessor in names:
        permits[names.index(accessor)] = permit
        acl.set("r_accessor_permit", permits)
        return
    acl.append_value("r_accessor_name", accessor)
    acl.append_value("r_accessor_permit", permit)


class AclService:
    """Creates, reuses and applies ACLs on the target repository.

    Example:
        >>> service = AclService(config.acl)
        >>> acl = service.create_workflow_user_acl(session, folder_id, "0901e24080001234", ["rkumar"])
        >>> service.acl_for_folder(folder_id) == acl.acl_id
        True
    """

    def __init__(self, config: AclConfig | None = None):
        self.config = config or AclConfig()
        self._applied: dict[str, str] = {}
        self._lock = threading.Lock()

    def acl_for_folder(self, folder_id: str) -> str | None:
        with self._lock:
            return self._applied.get(folder_id)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_acl(self, session: RepositorySession, name: str, domain: str | None = None) -> RepositoryObject | None:
        conditions = [Eq("object_name", name)]
        if domain:
            conditions.append(Eq("owner_name", domain))
        rows = session.query(Query(ACL_TYPE, ("r_object_id",), tuple(conditions)))
        if not rows:
            return None
        return session.fetch(str(rows[0]["r_object_id"]))

    def is_base_accessor(self, accessor: str) -> bool:
        """System and administrative accessors carried over from a template ACL."""
        return (
            any(accessor.startswith(prefix) for prefix in self.config.base_accessor_prefixes)
            or accessor in self.config.base_accessor_names
            or any(part in accessor for part in self.config.base_accessor_substrings)
        )

    def base_grants(self, session: RepositorySession, folder: RepositoryObject) -> list[tuple[str, int]]:
        """Grants of the folder's current ACL that are kept on a new per-record ACL."""
        acl_name = folder.get("acl_name")
        if not acl_name:
            return []
        template = self.find_acl(session, str(acl_name), folder.get("acl_domain"))
        if template is None:
            logger.warning(f"Template ACL {acl_name} of folder {folder.object_id} not found")
            return []
        return [
            (accessor, permit)
            for accessor, permit in AclDescriptor.from_object(template).grants
            if self.is_base_accessor(accessor)
        ]

    def accessor_exists(self, session: RepositorySession, accessor: str) -> bool:
        if session.query(Query(USER_TYPE, ("user_name",), (Eq("user_name", accessor),))):
            return True
        return bool(session.query(Query(GROUP_TYPE, ("group_name",), (Eq("group_name", accessor),))))

    def _grant_valid(self, session: RepositorySession, acl: RepositoryObject, accessors: list[str]) -> int:
        granted = 0
        for accessor in dict.fromkeys(a.strip() for a in accessors if a and a.strip()):
            if not self.accessor_exists(session, accessor):
                error = AccessorNotFound(f"Accessor '{accessor}' not found as user or group; skipping")
                logger.warning(str(error))
                continue
            grant(acl, accessor, self.config.read_permit)
            granted += 1
        return granted

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_workflow_user_acl(
        self,
        session: RepositorySession,
        folder_id: str,
        migrated_id: str,
        accessors: list[str],
    ) -> AclDescriptor:
        """Create (or reuse) the per-record ACL and apply it to the folder.

        Args:
            session: Target session
            folder_id: Folder receiving the ACL
            migrated_id: Source record id, used to name the ACL
            accessors: User or group names to grant read access

        Returns:
            Descriptor of the saved ACL (whether or not applying it succeeded)

        Raises:
            RepositoryError: If the folder cannot be read or the ACL cannot be saved
        """
        folder = session.fetch(folder_id)
        base = self.base_grants(session, folder)
        domain = self.config.domain or str(folder.get("acl_domain") or "")
        name = f"{self.config.name_prefix}{migrated_id}"

        acl = self.find_acl(session, name, domain)
        if acl is not None:
            logger.debug(f"Reusing ACL {name}; clearing its accessors")
            acl.remove_all("r_accessor_name")
            acl.remove_all("r_accessor_permit")
        else:
            acl = session.new_object(ACL_TYPE)
            acl.set("object_name", name)
            acl.set("owner_name", domain)
            acl.set("description", f"Workflow users ACL for migrated folder {migrated_id}")

        for accessor, permit in base:
            grant(acl, accessor, permit)
        granted = self._grant_valid(session, acl, accessors)
        saved = session.save(acl)
        descriptor = AclDescriptor.from_object(saved)
        logger.info(f"Saved ACL {name}: {granted} workflow accessors, {len(base)} base grants")

        self.apply_acl(session, folder_id, descriptor)
        return descriptor

    def apply_existing_acl(
        self,
        session: RepositorySession,
        folder_id: str,
        acl_name: str,
        groups: list[str],
    ) -> AclDescriptor | None:
        """Grant read on a pre-existing ACL to workflow groups, then apply it.

        Returns:
            Descriptor of the ACL, or None if no ACL with that name exists
        """
        acl = self.find_acl(session, acl_name, self.config.domain)
        if acl is None:
            logger.error(f"Pre-existing ACL {acl_name} not found; folder {folder_id} keeps its ACL")
            return None

        self._grant_valid(session, acl, groups)
        descriptor = AclDescriptor.from_object(session.save(acl))
        self.apply_acl(session, folder_id, descriptor)
        return descriptor

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    def apply_acl(self, session: RepositorySession, folder_id: str, acl: AclDescriptor) -> bool:
        """Point a folder at an ACL, trying each tier in order.

        Returns:
            True if a tier succeeded, False if all three failed
        """
        tiers = (
            ("attributes", self._apply_by_attributes),
            ("reference", self._apply_by_reference),
            ("statement", self._apply_by_statement),
        )
        for label, tier in tiers:
            try:
                tier(session, folder_id, acl)
            except RepositoryError as e:
                logger.warning(f"ACL {acl.name} via {label} failed for folder {folder_id}: {e}")
                continue
            logger.debug(f"Applied ACL {acl.name} to folder {folder_id} via {label}")
            with self._lock:
                self._applied[folder_id] = acl.acl_id
            self._verify(session, folder_id, acl)
            return True

        error = AclApplicationFailed(f"All ACL apply tiers failed for folder {folder_id} (ACL {acl.name})")
        logger.error(str(error))
        return False

    def _apply_by_attributes(self, session: RepositorySession, folder_id: str, acl: AclDescriptor) -> None:
        folder = session.fetch(folder_id)
        folder.set("acl_domain", acl.domain)
        folder.set("acl_name", acl.name)
        session.save(folder)

    def _apply_by_reference(self, session: RepositorySession, folder_id: str, acl: AclDescriptor) -> None:
        folder = session.fetch(folder_id)
        session.set_acl(folder, session.fetch(acl.acl_id))
        session.save(folder)

    def _apply_by_statement(self, session: RepositorySession, folder_id: str, acl: AclDescriptor) -> None:
        statement = UpdateObject(
            object_type="dm_sysobject",
            object_id=folder_id,
            set_values={"acl_name": acl.name, "acl_domain": acl.domain},
        )
        if session.execute(statement) == 0:
            raise RepositoryOperationFailed(f"ACL update statement affected no objects for {folder_id}")

    def _verify(self, session: RepositorySession, folder_id: str, acl: AclDescriptor) -> None:
        folder = safe_execute(session.fetch, folder_id, log_message=f"ACL verification fetch failed for {folder_id}")
        if folder is None:
            return
        applied = folder.get("acl_name")
        if applied != acl.name:
            logger.error(f"ACL verification failed for folder {folder_id}: expected {acl.name}, found {applied}")