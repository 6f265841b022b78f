"""Workflow ACL rules for imported record folders.

=========  ==========================================  ==================================
Folder     ACL                                         Workflow groups
=========  ==========================================  ==================================
group      named by the first subletter group found    one per subletter (HO or RO/TE)
HO         ``ecm_legacy_digidak_ho``                   ``ecm_ho_<region>``
RO / TE    ``ecm_legacy_digidak_<short code>``         ``ecm_legacy_digidak_<short code>``
other      per-record ``acl_digidak_<source id>``      resolved ``workflow_users`` values
=========  ==========================================  ==================================
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from recordmigrate.acl.models import AclDescriptor
from recordmigrate.acl.service import AclService
from recordmigrate.config.models import AclConfig
from recordmigrate.constants import HO_GROUP_PREFIX, REGION_GROUP_PREFIX
from recordmigrate.exceptions import RecordMigrateError
from recordmigrate.export.keywords import KeywordMap
from recordmigrate.export.kinds import RecordKind, layout_for
from recordmigrate.folder.hierarchy import FolderHierarchyBuilder
from recordmigrate.folder.models import normalize_folder_name
from recordmigrate.ledger.csv_ledger import read_table
from recordmigrate.repository.base import RepositorySession
from recordmigrate.repository.query import UpdateObject
from recordmigrate.users.resolver import UserLoginResolver

logger = logging.getLogger(__name__)

OFFICE_TYPE_COLUMN = "ho_ro_te"
REGION_COLUMN = "from_dept_ro_te"
WORKFLOW_USERS = "workflow_users"

REGION_SHORT_CODES = {
    "andaman and nicobar": "an",
    "andhra pradesh": "ad",
    "arunachal pradesh": "ar",
    "assam": "as",
    "bihar": "br",
    "bird kolkata": "bk",
    "bird lucknow": "bl",
    "bird mangalore": "bm",
    "chhattisgarh": "ch",
    "goa": "ga",
    "gujarat": "gj",
    "haryana": "hr",
    "himachal pradesh": "hp",
    "jammu and kashmir": "jk",
    "jharkhand": "jh",
    "karnataka": "ka",
    "kerala": "kl",
    "madhya pradesh": "mp",
    "maharashtra": "mh",
    "manipur": "mn",
    "meghalaya": "ml",
    "mizoram": "mz",
    "nagaland": "nl",
    "nbsc lucknow": "nc",
    "new delhi": "dl",
    "odisha": "or",
    "punjab": "pn",
    "rajasthan": "rj",
    "sikkim": "sk",
    "tamilnadu": "tn",
    "telangana": "tg",
    "tripura": "tr",
    "uttar pradesh": "up",
    "uttarakhand": "uk",
    "west bengal": "wb",
}


def office_group(office_type: str, region: str) -> tuple[str, str] | None:
    """(ACL name, workflow group) for an HO or RO/TE office, or None.

    Examples:
        >>> office_group("HO", "Mumbai")
        ('ecm_legacy_digidak_ho', 'ecm_ho_mumbai')
        >>> office_group("RO", "West Bengal")
        ('ecm_legacy_digidak_wb', 'ecm_legacy_digidak_wb')
    """
    office = office_type.strip().upper()
    region = region.strip()
    if office == "HO" and region:
        return f"{REGION_GROUP_PREFIX}ho", f"{HO_GROUP_PREFIX}{region.lower()}"
    if office in ("RO", "TE"):
        code = REGION_SHORT_CODES.get(region.lower())
        if code is None:
            logger.warning(f"No short code for region '{region}'")
            return None
        group = f"{REGION_GROUP_PREFIX}{code}"
        return group, group
    return None


@dataclass
class AclPlan:
    """What to apply to one folder.

    Attributes:
        acl_name: Pre-existing ACL to apply (None means a per-record ACL)
        groups: Workflow groups granted on a pre-existing ACL
        users: Display names of workflow users for a per-record ACL
    """

    acl_name: str | None = None
    groups: list[str] = field(default_factory=list)
    users: list[str] = field(default_factory=list)

    @property
    def uses_existing_acl(self) -> bool:
        return self.acl_name is not None


class WorkflowAclPlanner:
    """Decides and applies the workflow ACL of each imported folder.

    Failures are logged and reported as False; they never propagate into the
    import of the folder.
    """

    def __init__(
        self,
        service: AclService,
        resolver: UserLoginResolver,
        builder: FolderHierarchyBuilder,
        keywords: KeywordMap | None = None,
        config: AclConfig | None = None,
        folder_type: str = "dm_sysobject",
        groups_attribute: str = "workflow_groups",
    ):
        self.service = service
        self.resolver = resolver
        self.builder = builder
        self.keywords = keywords if keywords is not None else KeywordMap()
        self.config = config or service.config
        self.folder_type = folder_type
        self.groups_attribute = groups_attribute
        self._subletters: list[dict[str, str]] | None = None

    @property
    def export_dir(self) -> Path:
        return self.builder.export_dir

    def _subletter_rows(self) -> list[dict[str, str]]:
        if self._subletters is None:
            csv_path = self.export_dir / layout_for(RecordKind.SUBLETTER).csv_name
            self._subletters = read_table(csv_path)[1] if csv_path.exists() else []
        return self._subletters

    def subletters_of(self, group_name: str) -> list[dict[str, str]]:
        """Exported subletter rows whose parent group is ``group_name``."""
        target = normalize_folder_name(group_name)
        members = []
        for row in self._subletter_rows():
            name = row.get("object_name", "").strip()
            if name and self.builder.subletter_group(name) == target:
                members.append(row)
        return members

    def plan(self, kind: RecordKind, row: dict[str, str]) -> AclPlan:
        """Work out the ACL rule for a record row from its export columns."""
        if RecordKind(kind) == RecordKind.GROUP:
            plan = AclPlan()
            for subletter in self.subletters_of(row.get("object_name", "")):
                found = office_group(subletter.get(OFFICE_TYPE_COLUMN, ""), subletter.get(REGION_COLUMN, ""))
                if found is None:
                    continue
                acl_name, group = found
                plan.acl_name = plan.acl_name or acl_name
                if group not in plan.groups:
                    plan.groups.append(group)
            return plan

        found = office_group(row.get(OFFICE_TYPE_COLUMN, ""), row.get(REGION_COLUMN, ""))
        if found is not None:
            acl_name, group = found
            return AclPlan(acl_name=acl_name, groups=[group])

        source_id = row.get("r_object_id", "").strip()
        return AclPlan(users=self.keywords.values(source_id, WORKFLOW_USERS) if source_id else [])

    def apply(self, session: RepositorySession, folder_id: str, kind: RecordKind, row: dict[str, str]) -> bool:
        """Apply the planned ACL to a folder.

        Returns:
            True if an ACL was applied
        """
        name = row.get("object_name", folder_id)
        try:
            plan = self.plan(kind, row)
            if RecordKind(kind) == RecordKind.GROUP and not plan.groups:
                logger.info(f"No workflow groups found for group folder {name}; ACL unchanged")
                return False

            if plan.uses_existing_acl:
                self._set_workflow_groups(session, folder_id, plan.groups)
                acl = self.service.apply_existing_acl(session, folder_id, plan.acl_name, plan.groups)
            else:
                acl = self._per_record_acl(session, folder_id, row, plan.users)
            return acl is not None and self.service.acl_for_folder(folder_id) == acl.acl_id
        except (RecordMigrateError, OSError) as e:
            logger.error(f"Workflow ACL for folder {name} failed: {e}")
            return False

    def _per_record_acl(
        self, session: RepositorySession, folder_id: str, row: dict[str, str], users: list[str]
    ) -> AclDescriptor:
        matches = self.resolver.resolve_many(session, users)
        accessors = [matches[user].user_name for user in users if user in matches]
        if users and not accessors:
            logger.warning(f"None of {len(users)} workflow users resolved for {row.get('object_name', folder_id)}")
        migrated_id = row.get("r_object_id", "").strip() or folder_id
        return self.service.create_workflow_user_acl(session, folder_id, migrated_id, accessors)

    def _set_workflow_groups(self, session: RepositorySession, folder_id: str, groups: list[str]) -> None:
        try:
            session.execute(
                UpdateObject(
                    object_type=self.folder_type,
                    object_id=folder_id,
                    append_values={self.groups_attribute: list(groups)},
                    truncate=(self.groups_attribute,),
                )
            )
        except RecordMigrateError as e:
            logger.warning(f"Could not update {self.groups_attribute} on {folder_id}: {e}")
