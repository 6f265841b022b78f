"""Movement register import: one object per row of a record's movement register."""

import logging
from pathlib import Path
from typing import Any

from recordmigrate.config.models import ImportConfig
from recordmigrate.constants import MOVEMENT_REGISTER_CSV, MOVEMENT_REGISTER_UPDATED_CSV
from recordmigrate.exceptions import ContentOperationTimeout, RepositoryError
from recordmigrate.export.keywords import KeywordMap
from recordmigrate.folder.metadata import AttributeMapper
from recordmigrate.importer.timeouts import TimeoutRunner
from recordmigrate.ledger.csv_ledger import read_table, write_table
from recordmigrate.metrics import MigrationResult
from recordmigrate.repository.base import RepositorySession
from recordmigrate.users.resolver import UserLoginResolver

logger = logging.getLogger(__name__)

SEND_TO = "send_to"


def write_updated_register(record_dir: Path, folder_id: str) -> Path | None:
    """Copy the movement register with an ``i_folder_id`` column pointing at the new folder.

    Rows that already carry a folder id keep it.

    Returns:
        Path of ``movement_register_updated.csv``, or None if the record has no register
    """
    source = record_dir / MOVEMENT_REGISTER_CSV
    if not source.exists():
        return None

    header, rows = read_table(source)
    if "i_folder_id" not in header:
        header = header + ["i_folder_id"]
    for row in rows:
        if not row.get("i_folder_id"):
            row["i_folder_id"] = folder_id

    target = record_dir / MOVEMENT_REGISTER_UPDATED_CSV
    write_table(target, header, rows)
    return target


class MovementImporter:
    """Creates movement register entries for an imported record.

    Display names in ``resolve_user_attributes`` are replaced by login names
    when the user directory knows them; ``send_to`` values (from the keyword
    map, or the row itself) become the repeating ``assigned_user`` attribute.
    """

    def __init__(
        self,
        config: ImportConfig,
        runner: TimeoutRunner,
        result: MigrationResult,
        resolver: UserLoginResolver,
        keywords: KeywordMap | None = None,
    ):
        self.config = config
        self.runner = runner
        self.result = result
        self.resolver = resolver
        self.keywords = keywords if keywords is not None else KeywordMap()
        mapping = dict(config.movement_mapping)
        mapping.setdefault("i_folder_id", "i_folder_id")
        self.mapper = AttributeMapper(mapping, config.movement_constants, config.date_formats)
        self.assigned_attribute = config.repeating_attributes.get(SEND_TO, "assigned_user")

    def import_movements(self, session: RepositorySession, folder_id: str, record_dir: Path) -> int:
        """Import a record's movement register.

        Returns:
            Number of movement entries created

        Raises:
            ContentOperationTimeout: If a save hangs
        """
        register = write_updated_register(record_dir, folder_id)
        if register is None:
            logger.debug(f"No {MOVEMENT_REGISTER_CSV} in {record_dir.name}")
            return 0

        _, rows = read_table(register)
        created = 0
        for number, row in enumerate(rows, start=1):
            try:
                self._import_entry(session, row)
            except ContentOperationTimeout:
                raise
            except (RepositoryError, ValueError) as e:
                self.result.record_error(f"{record_dir.name} movement {number}: {e}")
                logger.error(f"Failed to import movement row {number} for {record_dir.name}: {e}")
                continue
            created += 1
            self.result.increment("movement_registers_created")

        logger.info(f"Imported {created} of {len(rows)} movement entries for {record_dir.name}")
        return created

    def _resolve(self, session: RepositorySession, name: str, value: Any) -> Any:
        if name not in self.config.resolve_user_attributes or not isinstance(value, str):
            return value
        login = self.resolver.resolve(session, value)
        return login or value

    def _import_entry(self, session: RepositorySession, row: dict[str, str]) -> None:
        movement_type = self.config.movement_type
        attributes = self.mapper.map_row(session, movement_type, row)
        entry = session.new_object(movement_type)
        for name, value in attributes.items():
            entry.set(name, self._resolve(session, name, value))

        source_id = row.get("r_object_id", "").strip()
        recipients = self.keywords.values(source_id, SEND_TO) if source_id else []
        if not recipients and row.get(SEND_TO, "").strip():
            recipients = [row[SEND_TO].strip()]
        if recipients:
            resolved = [self._resolve(session, self.assigned_attribute, name) for name in recipients]
            info = session.describe_attribute(movement_type, self.assigned_attribute)
            if info is None:
                logger.debug(f"Type {movement_type} has no attribute {self.assigned_attribute}")
            elif info.repeating:
                entry.remove_all(self.assigned_attribute)
                for value in resolved:
                    entry.append_value(self.assigned_attribute, value)
            else:
                entry.set(self.assigned_attribute, resolved[0])

        self.runner.run("save", session.save, entry, target=entry.name)
