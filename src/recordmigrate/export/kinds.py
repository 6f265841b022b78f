"""Record kinds, their export filters and CSV layouts."""

from dataclasses import dataclass
from enum import StrEnum

from recordmigrate.constants import EXPORT_ERROR_COLUMN, EXPORT_STATUS_COLUMN
from recordmigrate.repository.query import Condition, Eq, Ne


class RecordKind(StrEnum):
    """The three kinds of letter record, exported and imported separately."""

    SINGLE = "single"
    GROUP = "group"
    SUBLETTER = "subletter"


@dataclass(frozen=True)
class KindLayout:
    """Where a record kind lives on disk and how it is selected at the source.

    Attributes:
        kind: Record kind
        records_dir: Directory (under the export root) holding one sub-directory per record
        csv_name: Top-level ledger file name
        where: Source query conditions selecting records of this kind
        exports_documents: Whether document metadata and content are exported
    """

    kind: RecordKind
    records_dir: str
    csv_name: str
    where: tuple[Condition, ...]
    exports_documents: bool = True


LAYOUTS: dict[RecordKind, KindLayout] = {
    RecordKind.SINGLE: KindLayout(
        kind=RecordKind.SINGLE,
        records_dir="digidak_single_records",
        csv_name="DigidakSingleRecords_Export.csv",
        where=(Eq("group_letter_id", False), Ne("bulk_letter", "true")),
    ),
    RecordKind.GROUP: KindLayout(
        kind=RecordKind.GROUP,
        records_dir="digidak_group_records",
        csv_name="DigidakGroupRecords_Export.csv",
        where=(Eq("group_letter_id", True),),
    ),
    RecordKind.SUBLETTER: KindLayout(
        kind=RecordKind.SUBLETTER,
        records_dir="digidak_subletter_records",
        csv_name="DigidakSubletterRecords_Export.csv",
        where=(Eq("group_letter_id", False), Eq("bulk_letter", "true")),
        exports_documents=False,
    ),
}

# Import order matters: group folders must exist before their subletters
IMPORT_ORDER = (RecordKind.SINGLE, RecordKind.GROUP, RecordKind.SUBLETTER)


def layout_for(kind: RecordKind | str) -> KindLayout:
    return LAYOUTS[RecordKind(kind)]


FOLDER_COLUMNS = [
    "r_object_id",
    "object_name",
    "subject",
    "r_creator_name",
    "r_creation_date",
    "status",
    "priority",
    "uid_number",
    "office_type",
    "mode_of_receipt",
    "state_of_recipient",
    "sent_to",
    "office_region",
    "group_letter_id",
    "crds_flag",
    "responded_object_id",
    "language_type",
    "address_of_recipient",
    "sensitivity",
    "region",
    "ref_number",
    "src_vertical_users",
    "letter_no",
    "financial_year",
    "received_from",
    "sub_type",
    "category_external",
    "subjects",
    "category_type",
    "bulk_letter",
    "file_no",
    "type_mode",
    "ho_ro_te",
    "from_dept_ro_te",
]

# Read from the source only to compute derived flags
FLAG_SOURCE_COLUMNS = ["endorse_group_id", "foward_group_id"]

DERIVED_COLUMNS = ["is_endorsed", "is_forward", "is_group", "is_bulk"]

EXPORT_HEADER = FOLDER_COLUMNS + DERIVED_COLUMNS + [EXPORT_STATUS_COLUMN, EXPORT_ERROR_COLUMN]

MOVEMENT_COLUMNS = [
    "r_object_id",
    "object_name",
    "modified_from",
    "letter_subject",
    "acl_name",
    "status",
    "letter_category",
    "completion_date",
    "letter_number",
    "send_to",
]

DOCUMENT_COLUMNS = [
    "r_object_id",
    "object_name",
    "r_object_type",
    "i_folder_id",
    "r_folder_path",
    "r_creator_name",
    "r_creation_date",
    "document_type",
    "a_content_type",
]


def _is_true(value: object) -> bool:
    return str(value or "").strip().lower() == "true"


def _has_value(value: object) -> bool:
    if isinstance(value, list):
        return any(str(v).strip() for v in value if v is not None)
    return bool(str(value or "").strip())


def derive_flags(record: dict[str, object]) -> dict[str, str]:
    """Compute the derived boolean columns for one source record.

    Examples:
        >>> derive_flags({"endorse_group_id": "E1", "group_letter_id": "TRUE"})["is_group"]
        'true'
    """
    flags = {
        "is_endorsed": _has_value(record.get("endorse_group_id")),
        "is_forward": _has_value(record.get("foward_group_id")),
        "is_group": _is_true(record.get("group_letter_id")),
        "is_bulk": _is_true(record.get("bulk_letter")),
    }
    return {name: "true" if value else "false" for name, value in flags.items()}
