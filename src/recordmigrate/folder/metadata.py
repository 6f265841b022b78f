"""Mapping of export CSV columns onto target object attributes."""

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from recordmigrate.repository.base import AttributeType, RepositorySession
from recordmigrate.utils.dates import parse_repository_date

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"true", "t", "1", "yes", "y"}


class RowLike(Protocol):
    def get(self, column: str, default: str = "") -> str: ...


def target_names(targets: str | Sequence[str]) -> list[str]:
    """A mapping value names one attribute or a list of attributes."""
    if isinstance(targets, str):
        return [targets]
    return list(targets)


class AttributeMapper:
    """Builds the attribute set for one target object from a CSV row.

    Non-empty mapped columns are applied first, then the constants (which
    win), then ``is_migrated``. Values are converted according to the target
    type's schema: time attributes are parsed with the configured formats and
    kept as the raw string when no format matches, booleans become ``bool``,
    and attributes the type does not have are dropped.

    Example:
        >>> mapper = AttributeMapper({"subjects": "letter_subject"}, {"status": "Closed"}, ["%m/%d/%Y"])
        >>> mapper.map_row(session, "cms_digidak_folder", {"subjects": "Grant"})
        {'letter_subject': 'Grant', 'status': 'Closed', 'is_migrated': True}
    """

    def __init__(
        self,
        mapping: Mapping[str, str | Sequence[str]],
        constants: Mapping[str, Any] | None = None,
        date_formats: Sequence[str] = (),
        mark_migrated: bool = True,
    ):
        self.mapping = dict(mapping)
        self.constants = dict(constants or {})
        self.date_formats = list(date_formats)
        self.mark_migrated = mark_migrated

    def raw_values(self, row: RowLike | Mapping[str, str]) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for column, targets in self.mapping.items():
            value = (row.get(column, "") or "").strip()
            if not value:
                continue
            for name in target_names(targets):
                values[name] = value
        values.update(self.constants)
        if self.mark_migrated:
            values["is_migrated"] = True
        return values

    def map_row(
        self,
        session: RepositorySession,
        object_type: str,
        row: RowLike | Mapping[str, str],
        skip: Sequence[str] = (),
    ) -> dict[str, Any]:
        """Mapped, type-converted attributes for a row.

        Args:
            session: Session used for schema lookups
            object_type: Target type the attributes are for
            row: CSV row (case-insensitive ledger row or plain dict)
            skip: Attribute names to leave out (e.g. ones set elsewhere)
        """
        converted: dict[str, Any] = {}
        for name, value in self.raw_values(row).items():
            if name in skip:
                continue
            info = session.describe_attribute(object_type, name)
            if info is None:
                logger.debug(f"Type {object_type} has no attribute {name}; skipping")
                continue
            converted[name] = self.convert(name, value, info.data_type)
        return converted

    def convert(self, name: str, value: Any, data_type: AttributeType) -> Any:
        if not isinstance(value, str):
            return value
        if data_type == AttributeType.TIME:
            parsed = parse_repository_date(value, self.date_formats, field_name=name)
            if parsed is None:
                logger.warning(f"Unparseable date for {name}: '{value}'; keeping raw value")
                return value
            return parsed
        if data_type == AttributeType.BOOLEAN:
            return value.strip().lower() in _TRUE_VALUES
        if data_type == AttributeType.INTEGER:
            try:
                return int(value)
            except ValueError:
                logger.warning(f"Non-integer value for {name}: '{value}'; keeping raw value")
                return value
        if value.lower() in ("true", "false"):
            return value.lower()
        return value
