"""Pydantic models for migration configuration."""

import os
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, model_validator

from recordmigrate.constants import (
    ACL_NAME_PREFIX,
    BASE_FOLDER_TYPE,
    DEFAULT_ACQUIRE_TIMEOUT_SECONDS,
    DEFAULT_CABINET_NAME,
    DEFAULT_CONTENT_TIMEOUT_SECONDS,
    DEFAULT_DRAIN_TIMEOUT_SECONDS,
    DEFAULT_EXPORT_DIR,
    DEFAULT_EXPORT_THREADS,
    DEFAULT_GROUP_FOLDER,
    DEFAULT_USER_BATCH_SIZE,
    HO_ACL_NAME,
    MAX_POOL_SIZE,
    PERMIT_READ,
    SOURCE_DOCUMENT_TYPE,
    SOURCE_FOLDER_TYPE,
    SOURCE_MOVEMENT_TYPE,
    TARGET_DOCUMENT_TYPE,
    TARGET_FOLDER_TYPE,
    TARGET_MOVEMENT_TYPE,
)

# Legacy export column -> target folder attribute(s)
DEFAULT_FOLDER_MAPPING: dict[str, str | list[str]] = {
    "object_name": "object_name",
    "subjects": "letter_subject",
    "priority": "priority",
    "uid_number": "uid_number",
    "r_creator_name": "initiator",
    "r_creation_date": "entry_date",
    "mode_of_receipt": "mode_of_receipt",
    "state_of_recipient": "state_of_sender",
    "sent_to": "decision",
    "office_region": "selected_region",
    "group_letter_id": "is_group",
    "language_type": "languages",
    "address_of_recipient": "address_of_sender",
    "sensitivity": "secrecy",
    "region": "region",
    "letter_no": "letter_no",
    "financial_year": "financial_year",
    "received_from": "received_from",
    "sub_type": "nature_of_correspondence",
    "category_type": "type_category",
    "file_no": "file_number",
    "bulk_letter": "is_bulk_letter",
    "type_mode": "entry_type",
    "ho_ro_te": "login_office_type",
    "from_dept_ro_te": "login_region",
    "vertical_head_group": "vertical_head_display_name",
    "endorse_group_id": "endorse_uid",
    "letter_case_number": "case_number",
    "foward_group_id": "forward_group_uid",
    "inward_ref_number": "inward_ref_number",
    "is_endorsed": ["is_endorsed", "is_endorsed_letter"],
    "is_forward": "is_forward",
    "assigned_cgm_group": "selected_cgm_group",
    "due_date_action": "due_date",
    "is_ddm": "is_ddm",
    "r_object_id": "migrated_id",
}

DEFAULT_MOVEMENT_MAPPING: dict[str, str | list[str]] = {
    "object_name": "object_name",
    "status": "status",
    "letter_subject": "letter_subject",
    "completion_date": ["completed_date", "received_date"],
    "modified_from": ["performer", "owner_name"],
    "letter_category": "type_category",
    "letter_number": "letter_number",
    "r_object_id": "migrated_id",
    "i_folder_id": "i_folder_id",
}

DEFAULT_DOCUMENT_MAPPING: dict[str, str | list[str]] = {
    "object_name": "object_name",
    "document_type": "document_type",
    "r_object_id": "migrated_id",
}

# Legacy repeating attribute -> target repeating attribute
DEFAULT_REPEATING_ATTRIBUTES: dict[str, str] = {
    "office_type": "source_vertical",
    "response_to_ioms_id": "responding_uid",
    "vertical_users": "vertical_users",
    "ddm_vertical_users": "ddm_users",
    "workflow_users": "workflow_groups",
    "send_to": "assigned_user",
}

DEFAULT_DATE_FORMATS = [
    "%d/%m/%Y, %I:%M:%S %p",
    "%m/%d/%Y, %I:%M:%S %p",
    "%m/%d/%Y %H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%d/%m/%Y %H:%M:%S",
    "%m/%d/%Y",
    "%Y-%m-%d",
]


class RepositoryConfig(BaseModel):
    """Connection settings for one content repository."""

    url: HttpUrl | None = None
    repository: str = ""
    username: str = ""
    password: str = ""
    timeout: int = Field(default=120, ge=5, le=600)
    verify_ssl: bool = True

    @property
    def identity(self) -> str:
        """Key identifying the repository instance (one session pool per identity)."""
        return f"{self.url}#{self.repository}@{self.username}"


class PoolConfig(BaseModel):
    """Session pool sizing.

    Examples:
        >>> PoolConfig(size=4, acquire_timeout=10)
    """

    size: int = Field(
        default_factory=lambda: min((os.cpu_count() or 1) * 2, 32),
        ge=1,
        le=MAX_POOL_SIZE,
        description="Number of sessions held open per repository",
    )
    acquire_timeout: float = Field(
        default=DEFAULT_ACQUIRE_TIMEOUT_SECONDS,
        gt=0,
        description="Seconds to wait for a free session before failing the task",
    )


class ExportConfig(BaseModel):
    """Settings for the record exporter."""

    output_dir: str = DEFAULT_EXPORT_DIR
    threads: int = Field(default=DEFAULT_EXPORT_THREADS, ge=1, le=64)
    drain_timeout: float = Field(default=DEFAULT_DRAIN_TIMEOUT_SECONDS, gt=0)
    resume: bool = True
    export_documents: bool = True
    folder_type: str = SOURCE_FOLDER_TYPE
    movement_type: str = SOURCE_MOVEMENT_TYPE
    document_type: str = SOURCE_DOCUMENT_TYPE
    keyword_attributes: list[str] = Field(
        default_factory=lambda: [
            "office_type",
            "response_to_ioms_id",
            "vertical_users",
            "ddm_vertical_users",
            "workflow_users",
        ]
    )
    movement_keyword_attributes: list[str] = Field(default_factory=lambda: ["send_to"])

    @model_validator(mode="after")
    def validate_output_dir(self) -> "ExportConfig":
        """Ensure the exporter is not configured with a blank output directory.

        Returns:
            Validated ExportConfig instance

        Raises:
            ValueError: If output_dir is blank
        """
        if not self.output_dir.strip():
            raise ValueError("export.output_dir must not be empty")
        return self


class ImportConfig(BaseModel):
    """Settings for the record importer."""

    export_dir: str = DEFAULT_EXPORT_DIR
    folder_type: str = TARGET_FOLDER_TYPE
    base_type: str = BASE_FOLDER_TYPE
    two_phase_types: list[str] = Field(default_factory=lambda: [TARGET_FOLDER_TYPE])
    movement_type: str = TARGET_MOVEMENT_TYPE
    document_type: str = TARGET_DOCUMENT_TYPE
    mapping: dict[str, str | list[str]] = Field(default_factory=lambda: dict(DEFAULT_FOLDER_MAPPING))
    constants: dict[str, str] = Field(default_factory=lambda: {"status": "Closed"})
    movement_mapping: dict[str, str | list[str]] = Field(
        default_factory=lambda: dict(DEFAULT_MOVEMENT_MAPPING)
    )
    movement_constants: dict[str, str] = Field(default_factory=dict)
    document_mapping: dict[str, str | list[str]] = Field(
        default_factory=lambda: dict(DEFAULT_DOCUMENT_MAPPING)
    )
    repeating_attributes: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_REPEATING_ATTRIBUTES)
    )
    format_mapping: dict[str, str] = Field(default_factory=dict)
    date_formats: list[str] = Field(default_factory=lambda: list(DEFAULT_DATE_FORMATS))
    content_timeout: float = Field(default=DEFAULT_CONTENT_TIMEOUT_SECONDS, gt=0)
    cleanup_mode: Literal["unlink", "delete"] = "unlink"
    import_documents: bool = True
    import_movements: bool = True
    import_log: str | None = None
    resolve_user_attributes: list[str] = Field(
        default_factory=lambda: ["performer", "owner_name", "assigned_user"]
    )

    @model_validator(mode="after")
    def validate_types(self) -> "ImportConfig":
        """Ensure the two-phase base type is not itself a two-phase type.

        Returns:
            Validated ImportConfig instance

        Raises:
            ValueError: If base_type appears in two_phase_types
        """
        if self.base_type in self.two_phase_types:
            raise ValueError(
                f"base_type ({self.base_type}) cannot be one of two_phase_types "
                f"({', '.join(self.two_phase_types)})"
            )
        self.format_mapping = {k.lower().lstrip("."): v for k, v in self.format_mapping.items()}
        return self


class FolderConfig(BaseModel):
    """Settings for the folder hierarchy builder."""

    cabinet_name: str = DEFAULT_CABINET_NAME
    subletter_parents: dict[str, str] = Field(default_factory=dict)
    default_group: str = DEFAULT_GROUP_FOLDER

    @property
    def cabinet_path(self) -> str:
        """Absolute repository path of the cabinet."""
        return f"/{self.cabinet_name}"


class AclConfig(BaseModel):
    """Settings for ACL reconciliation."""

    domain: str | None = None
    read_permit: int = Field(default=PERMIT_READ, ge=1, le=7)
    name_prefix: str = ACL_NAME_PREFIX
    base_accessor_prefixes: list[str] = Field(default_factory=lambda: ["dm_"])
    base_accessor_names: list[str] = Field(default_factory=lambda: ["docu"])
    base_accessor_substrings: list[str] = Field(default_factory=lambda: ["admin"])
    ho_acl_name: str = HO_ACL_NAME
    apply_workflow_acls: bool = True


class UserConfig(BaseModel):
    """Settings for the user login resolver."""

    batch_size: int = Field(default=DEFAULT_USER_BATCH_SIZE, ge=1, le=500)


class OutputConfig(BaseModel):
    """Output formatting preferences for CLI commands."""

    default_format: Literal["table", "json"] = "table"
    color_enabled: bool = True


class MigrationConfig(BaseModel):
    """Complete recordmigrate configuration."""

    model_config = ConfigDict(populate_by_name=True)

    config_version: str = "1.0"
    source: RepositoryConfig = Field(default_factory=RepositoryConfig)
    target: RepositoryConfig = Field(default_factory=RepositoryConfig)
    pool: PoolConfig = Field(default_factory=PoolConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
    import_: ImportConfig = Field(default_factory=ImportConfig, alias="import")
    folders: FolderConfig = Field(default_factory=FolderConfig)
    acl: AclConfig = Field(default_factory=AclConfig)
    users: UserConfig = Field(default_factory=UserConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)


class CheckItem(BaseModel):
    """Individual readiness check result."""

    name: str
    status: Literal["pass", "fail", "warning"]
    message: str


class ReadinessCheckResult(BaseModel):
    """Result of a configuration and connectivity readiness check."""

    ready: bool
    checks: list[CheckItem]
    timestamp: datetime = Field(default_factory=datetime.now)
