"""Unit tests for ACL reconciliation and the workflow ACL planner."""

from pathlib import Path

import pytest

from recordmigrate.acl.models import AclDescriptor
from recordmigrate.acl.service import AclService
from recordmigrate.acl.workflow import AclPlan, WorkflowAclPlanner, office_group
from recordmigrate.config.models import AclConfig
from recordmigrate.constants import ACL_TYPE, TARGET_FOLDER_TYPE
from recordmigrate.exceptions import RepositoryOperationFailed
from recordmigrate.export.keywords import KeywordMap
from recordmigrate.export.kinds import RecordKind
from recordmigrate.folder.hierarchy import FolderHierarchyBuilder
from recordmigrate.repository.memory import InMemoryRepository
from recordmigrate.users.resolver import UserLoginResolver
from tests.conftest import create_test_export, create_test_export_row

SOURCE_ID = "0b0100000000000001"


@pytest.fixture
def service() -> AclService:
    """ACL service for the demo domain.

    Returns:
        AclService: Service with default base accessor rules.
    """
    return AclService(AclConfig(domain="ecm_admin"))


def add_record_folder(target_repo: InMemoryRepository, name: str = "4200-2024-25") -> str:
    cabinet_id = target_repo.make_path("/Digidak Legacy")
    return target_repo.add_object(
        TARGET_FOLDER_TYPE,
        {"object_name": name, "acl_name": "dm_acl_template", "acl_domain": "ecm_admin"},
        [cabinet_id],
    )


def existing_acl(service: AclService, target_repo: InMemoryRepository, name: str) -> AclDescriptor:
    return AclDescriptor.from_object(service.find_acl(target_repo.connect(), name, "ecm_admin"))


class TestAclService:
    """Tests for ACL creation and tiered application."""

    def test_is_base_accessor(self, service: AclService) -> None:
        """Test which template accessors survive onto a per-record ACL."""
        assert service.is_base_accessor("dm_world")
        assert service.is_base_accessor("docu")
        assert service.is_base_accessor("ecm_admin_group")
        assert not service.is_base_accessor("rkumar")

    def test_apply_acl_first_tier(self, service: AclService, target_repo: InMemoryRepository) -> None:
        """Test applying an ACL by setting folder attributes."""
        folder_id = add_record_folder(target_repo)
        acl = existing_acl(service, target_repo, "ecm_legacy_digidak_wb")
        session = target_repo.connect()

        assert service.apply_acl(session, folder_id, acl) is True
        assert session.fetch(folder_id).get("acl_name") == "ecm_legacy_digidak_wb"
        assert service.acl_for_folder(folder_id) == acl.acl_id
        assert target_repo.operation_count("execute") == 0

    def test_apply_acl_falls_back_to_statement(self, service: AclService, target_repo: InMemoryRepository) -> None:
        """Test that the update statement is used when both save tiers fail."""
        folder_id = add_record_folder(target_repo)
        acl = existing_acl(service, target_repo, "ecm_legacy_digidak_kl")
        target_repo.fail_next("save", RepositoryOperationFailed("object is locked"), times=2)
        session = target_repo.connect()

        assert service.apply_acl(session, folder_id, acl) is True
        assert target_repo.operation_count("execute") == 1
        folder = session.fetch(folder_id)
        assert (folder.get("acl_name"), folder.get("acl_domain")) == ("ecm_legacy_digidak_kl", "ecm_admin")

    def test_apply_acl_all_tiers_fail(self, service: AclService, target_repo: InMemoryRepository) -> None:
        """Test that exhausting every tier reports failure without raising."""
        folder_id = add_record_folder(target_repo)
        acl = existing_acl(service, target_repo, "ecm_legacy_digidak_kl")
        target_repo.fail_next("save", RepositoryOperationFailed("object is locked"), times=2)
        target_repo.fail_next("execute", RepositoryOperationFailed("statement rejected"))

        assert service.apply_acl(target_repo.connect(), folder_id, acl) is False
        assert service.acl_for_folder(folder_id) is None

    @pytest.mark.parametrize(
        "save_failures,execute_failures,applied,counts",
        [
            (0, 0, True, {"save": 1, "set_acl": 0, "execute": 0}),
            (1, 0, True, {"save": 2, "set_acl": 1, "execute": 0}),
            (2, 0, True, {"save": 2, "set_acl": 1, "execute": 1}),
            (2, 1, False, {"save": 2, "set_acl": 1, "execute": 1}),
        ],
        ids=["attributes", "reference", "statement", "exhausted"],
    )
    def test_apply_acl_tier_order(
        self,
        service: AclService,
        target_repo: InMemoryRepository,
        save_failures: int,
        execute_failures: int,
        applied: bool,
        counts: dict[str, int],
    ) -> None:
        """Test that each tier runs once, only after the previous one failed."""
        folder_id = add_record_folder(target_repo)
        acl = existing_acl(service, target_repo, "ecm_legacy_digidak_kl")
        if save_failures:
            target_repo.fail_next("save", RepositoryOperationFailed("object is locked"), times=save_failures)
        if execute_failures:
            target_repo.fail_next("execute", RepositoryOperationFailed("statement rejected"))
        before = {operation: target_repo.operation_count(operation) for operation in counts}

        assert service.apply_acl(target_repo.connect(), folder_id, acl) is applied

        after = {operation: target_repo.operation_count(operation) - before[operation] for operation in counts}
        assert after == counts
        expected_acl = "ecm_legacy_digidak_kl" if applied else "dm_acl_template"
        assert target_repo.connect().fetch(folder_id).get("acl_name") == expected_acl

    def test_create_workflow_user_acl(self, service: AclService, target_repo: InMemoryRepository) -> None:
        """Test a per-record ACL keeping base grants and skipping unknown accessors."""
        folder_id = add_record_folder(target_repo)
        session = target_repo.connect()

        acl = service.create_workflow_user_acl(session, folder_id, SOURCE_ID, ["Rahul Kumar", "Ghost User", ""])

        assert acl.name == f"acl_digidak_{SOURCE_ID}"
        assert acl.domain == "ecm_admin"
        assert acl.grants == [("dm_world", 1), ("dm_owner", 7), ("ecm_admin_group", 7), ("Rahul Kumar", 3)]
        assert session.fetch(folder_id).get("acl_name") == acl.name

    def test_create_workflow_user_acl_reuses_existing(
        self, service: AclService, target_repo: InMemoryRepository
    ) -> None:
        """Test that a rerun clears and refills the ACL instead of creating another."""
        folder_id = add_record_folder(target_repo)
        session = target_repo.connect()
        first = service.create_workflow_user_acl(session, folder_id, SOURCE_ID, ["Rahul Kumar"])
        acl_count = len(target_repo.objects_of_type(ACL_TYPE))

        again = service.create_workflow_user_acl(session, folder_id, SOURCE_ID, ["Anita Desai"])

        assert again.acl_id == first.acl_id
        assert again.accessors[-1] == "Anita Desai"
        assert "Rahul Kumar" not in again.accessors
        assert len(target_repo.objects_of_type(ACL_TYPE)) == acl_count

    def test_apply_existing_acl_missing(self, service: AclService, target_repo: InMemoryRepository) -> None:
        """Test that a missing pre-existing ACL leaves the folder alone."""
        folder_id = add_record_folder(target_repo)

        assert service.apply_existing_acl(target_repo.connect(), folder_id, "ecm_legacy_digidak_zz", []) is None


@pytest.mark.parametrize(
    "office_type,region,expected",
    [
        ("HO", "Mumbai", ("ecm_legacy_digidak_ho", "ecm_ho_mumbai")),
        ("ro", "West Bengal", ("ecm_legacy_digidak_wb", "ecm_legacy_digidak_wb")),
        ("TE", " kerala ", ("ecm_legacy_digidak_kl", "ecm_legacy_digidak_kl")),
        ("RO", "Atlantis", None),
        ("HO", "", None),
        ("", "Punjab", None),
    ],
)
def test_office_group(office_type: str, region: str, expected: tuple[str, str] | None) -> None:
    """Test ACL and workflow group selection by office type and region."""
    assert office_group(office_type, region) == expected


class TestWorkflowAclPlanner:
    """Tests for per-folder ACL planning and application."""

    @pytest.fixture
    def keywords(self) -> KeywordMap:
        """Keyword map with workflow users for one record.

        Returns:
            KeywordMap: Workflow users by source id.
        """
        keywords = KeywordMap(["workflow_users"])
        keywords.add(SOURCE_ID, "workflow_users", "Rahul Kumar")
        return keywords

    @pytest.fixture
    def planner(
        self, service: AclService, builder: FolderHierarchyBuilder, keywords: KeywordMap
    ) -> WorkflowAclPlanner:
        """Planner over the shared builder.

        Returns:
            WorkflowAclPlanner: Planner using the demo ACL configuration.
        """
        return WorkflowAclPlanner(service, UserLoginResolver(), builder, keywords)

    def test_plan_for_office_rows(self, planner: WorkflowAclPlanner) -> None:
        """Test plans for HO, RO and plain single records."""
        assert planner.plan(RecordKind.SINGLE, {"ho_ro_te": "HO", "from_dept_ro_te": "Mumbai"}) == AclPlan(
            "ecm_legacy_digidak_ho", ["ecm_ho_mumbai"]
        )
        assert planner.plan(RecordKind.SUBLETTER, {"ho_ro_te": "RO", "from_dept_ro_te": "Punjab"}) == AclPlan(
            "ecm_legacy_digidak_pn", ["ecm_legacy_digidak_pn"]
        )
        plain = planner.plan(RecordKind.SINGLE, {"r_object_id": SOURCE_ID})
        assert plain == AclPlan(users=["Rahul Kumar"])
        assert not plain.uses_existing_acl

    def test_plan_for_group_uses_only_its_subletters(self, planner: WorkflowAclPlanner, export_dir: Path) -> None:
        """Test that a group collects workflow groups from its own subletters."""
        create_test_export(
            export_dir,
            RecordKind.SUBLETTER,
            [
                create_test_export_row("4245-2024-25", ho_ro_te="RO", from_dept_ro_te="Kerala"),
                create_test_export_row("4246-2024-25", ho_ro_te="HO", from_dept_ro_te="Delhi", group_id="G67/2024-25"),
                create_test_export_row("5000-2024-25", ho_ro_te="RO", from_dept_ro_te="Punjab", group_id="G70/2024-25"),
            ],
        )

        plan = planner.plan(RecordKind.GROUP, {"object_name": "G67/2024-25"})

        assert plan.acl_name == "ecm_legacy_digidak_kl"
        assert plan.groups == ["ecm_legacy_digidak_kl", "ecm_ho_delhi"]

    def test_apply_regional_acl(self, planner: WorkflowAclPlanner, target_repo: InMemoryRepository) -> None:
        """Test applying a pre-existing regional ACL and setting workflow groups."""
        folder_id = add_record_folder(target_repo)
        session = target_repo.connect()

        applied = planner.apply(
            session, folder_id, RecordKind.SINGLE, {"object_name": "4200-2024-25", "ho_ro_te": "RO",
                                                    "from_dept_ro_te": "West Bengal"}
        )

        assert applied is True
        folder = session.fetch(folder_id)
        assert folder.get("acl_name") == "ecm_legacy_digidak_wb"
        assert folder.values("workflow_groups") == ["ecm_legacy_digidak_wb"]
        acl = existing_acl(planner.service, target_repo, "ecm_legacy_digidak_wb")
        assert ("ecm_legacy_digidak_wb", 3) in acl.grants

    def test_apply_per_record_acl(self, planner: WorkflowAclPlanner, target_repo: InMemoryRepository) -> None:
        """Test a per-record ACL built from resolved workflow users."""
        folder_id = add_record_folder(target_repo)
        session = target_repo.connect()

        applied = planner.apply(session, folder_id, RecordKind.SINGLE, {"object_name": "4200-2024-25",
                                                                         "r_object_id": SOURCE_ID})

        assert applied is True
        assert session.fetch(folder_id).get("acl_name") == f"acl_digidak_{SOURCE_ID}"
        assert "Rahul Kumar" in existing_acl(planner.service, target_repo, f"acl_digidak_{SOURCE_ID}").accessors

    def test_group_without_subletters_is_unchanged(
        self, planner: WorkflowAclPlanner, target_repo: InMemoryRepository
    ) -> None:
        """Test that a group folder with no subletter groups keeps its ACL."""
        folder_id = add_record_folder(target_repo, "G67-2024-25")

        assert planner.apply(target_repo.connect(), folder_id, RecordKind.GROUP, {"object_name": "G67/2024-25"}) is False
        assert target_repo.connect().fetch(folder_id).get("acl_name") == "dm_acl_template"

    def test_repository_failure_is_reported_not_raised(
        self, planner: WorkflowAclPlanner, target_repo: InMemoryRepository
    ) -> None:
        """Test that a repository error while building the ACL returns False."""
        folder_id = add_record_folder(target_repo)
        target_repo.fail_next("query", RepositoryOperationFailed("query server unavailable"), times=10)

        assert planner.apply(target_repo.connect(), folder_id, RecordKind.SINGLE, {"object_name": "x"}) is False
