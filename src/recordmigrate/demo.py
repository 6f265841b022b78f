"""Seeded in-memory source and target repositories for the ``demo`` command."""

import logging
from datetime import datetime, timedelta
from pathlib import Path

from recordmigrate.config.models import MigrationConfig
from recordmigrate.constants import (
    BASE_FOLDER_TYPE,
    SOURCE_DOCUMENT_TYPE,
    SOURCE_FOLDER_TYPE,
    SOURCE_MOVEMENT_TYPE,
    TARGET_DOCUMENT_TYPE,
    TARGET_FOLDER_TYPE,
    TARGET_MOVEMENT_TYPE,
)
from recordmigrate.repository.memory import InMemoryRepository

logger = logging.getLogger(__name__)

SOURCE_CABINET = "/Digidak"
DEMO_USERS = [("Rahul Kumar", "rkumar"), ("Anita Desai", "anita.desai"), ("Registry Clerk", "registry")]
DEMO_REGIONS = ["West Bengal", "Kerala", "Punjab"]

SOURCE_REPEATING = {"office_type", "response_to_ioms_id", "vertical_users", "ddm_vertical_users", "workflow_users"}
TARGET_REPEATING = {"source_vertical", "responding_uid", "vertical_users", "ddm_users", "workflow_groups"}
TARGET_DATES = {"entry_date", "due_date"}


def register_target_types(repository: InMemoryRepository) -> None:
    """Register the target folder, movement and document types."""
    repository.register_type(TARGET_FOLDER_TYPE, super_type=BASE_FOLDER_TYPE, is_folder=True,
                             repeating=TARGET_REPEATING, dates=TARGET_DATES)
    repository.register_type(TARGET_MOVEMENT_TYPE, repeating={"assigned_user"},
                             dates={"completed_date", "received_date"})
    repository.register_type(TARGET_DOCUMENT_TYPE, super_type="dm_document")


def build_target(domain: str = "ecm_admin") -> InMemoryRepository:
    """Target repository with the wrapper-guarded folder type, users, groups and shared ACLs."""
    target = InMemoryRepository(wrapped_types={TARGET_FOLDER_TYPE})
    register_target_types(target)
    target.add_format("msw12", "docx")
    target.add_format("pdf", "pdf")
    for user_name, login in DEMO_USERS:
        target.add_user(user_name, login)
    target.add_acl("dm_acl_template", domain, [("dm_world", 1), ("dm_owner", 7), ("ecm_admin_group", 7)])
    target.add_acl("ecm_legacy_digidak_ho", domain, [("dm_world", 1)])
    for code in ("wb", "kl", "pn"):
        target.add_acl(f"ecm_legacy_digidak_{code}", domain, [("dm_world", 1)])
        target.add_group(f"ecm_legacy_digidak_{code}")
    return target


def build_source(records: int = 3) -> InMemoryRepository:
    """Source repository with ``records`` single letters, one group and one subletter.

    Each single letter carries a movement entry and a document with content.
    """
    source = InMemoryRepository()
    source.register_type(SOURCE_FOLDER_TYPE, super_type=BASE_FOLDER_TYPE, is_folder=True, repeating=SOURCE_REPEATING)
    source.register_type(SOURCE_MOVEMENT_TYPE, repeating={"send_to"})
    source.register_type(SOURCE_DOCUMENT_TYPE, super_type="dm_document")
    source.add_format("msw12", "docx")
    cabinet_id = source.make_path(SOURCE_CABINET)
    created = datetime(2024, 6, 1, 10, 30)

    def add_letter(name: str, uid: str, index: int, **attributes: object) -> str:
        region = DEMO_REGIONS[index % len(DEMO_REGIONS)]
        user_name, _ = DEMO_USERS[index % len(DEMO_USERS)]
        values: dict[str, object] = {
            "object_name": name,
            "subjects": f"Demo letter {name}",
            "uid_number": uid,
            "r_creator_name": user_name,
            "r_creation_date": created + timedelta(days=index),
            "status": "Open",
            "ho_ro_te": "RO",
            "from_dept_ro_te": region,
            "group_letter_id": False,
            "bulk_letter": "false",
            "workflow_users": [user_name],
            "office_type": ["Regional"],
        }
        values.update(attributes)
        folder_id = source.add_object(SOURCE_FOLDER_TYPE, values, [cabinet_id])
        source.add_object(
            SOURCE_MOVEMENT_TYPE,
            {
                "object_name": f"movement-{uid}",
                "letter_number": uid,
                "status": "Closed",
                "modified_from": user_name,
                "completion_date": (created + timedelta(days=index + 1)).strftime("%m/%d/%Y %H:%M:%S"),
                "send_to": [DEMO_USERS[(index + 1) % len(DEMO_USERS)][0]],
            },
        )
        return folder_id

    for index in range(records):
        folder_id = add_letter(f"{4200 + index}-2024-25", f"UID{index:04d}", index)
        source.add_object(
            SOURCE_DOCUMENT_TYPE,
            {"object_name": f"letter_{index}.docx", "document_type": "Inward", "a_content_type": "msw12"},
            [folder_id],
            content=f"Demo content {index}".encode(),
        )

    add_letter("G67/2024-25", "UIDG67", records, group_letter_id=True)
    add_letter("4245-2024-25", "UID4245", records + 1, bulk_letter="true")
    logger.info(f"Seeded demo source with {records} single letters, 1 group and 1 subletter")
    return source


def demo_config(work_dir: Path, pool_size: int = 2) -> MigrationConfig:
    """Configuration pointing export and import at ``work_dir``."""
    export_dir = str(Path(work_dir) / "export")
    return MigrationConfig.model_validate(
        {
            "pool": {"size": pool_size, "acquire_timeout": 10},
            "export": {"output_dir": export_dir, "threads": pool_size},
            "import": {"export_dir": export_dir, "content_timeout": 30},
            "folders": {"subletter_parents": {"4245-2024-25": "G67/2024-25"}},
            "acl": {"domain": "ecm_admin"},
        }
    )
