"""Keyword/group map: repeating attribute values per source record."""

import logging
import threading
from collections import defaultdict
from collections.abc import Iterable
from pathlib import Path

from recordmigrate.constants import REPEATING_FILE_PREFIX
from recordmigrate.ledger.csv_ledger import read_table, write_table
from recordmigrate.repository.base import RepositoryObject

logger = logging.getLogger(__name__)


def repeating_file(export_dir: Path, attribute: str) -> Path:
    return Path(export_dir) / f"{REPEATING_FILE_PREFIX}{attribute}.csv"


class KeywordMap:
    """Maps source record id -> attribute -> ordered values.

    Values are gathered slot by slot from each object (count, then value at
    index) because repeating attributes cannot be joined in a flat query.

    Example:
        >>> keywords = KeywordMap(["office_type"])
        >>> keywords.collect(folder)
        >>> keywords.values(folder.object_id, "office_type")
        ['HO', 'RO']
    """

    def __init__(self, attributes: Iterable[str] = ()):
        self.attributes = list(dict.fromkeys(attributes))
        self._values: dict[str, dict[str, list[str]]] = defaultdict(dict)
        self._lock = threading.Lock()

    def collect(self, obj: RepositoryObject, attributes: Iterable[str] | None = None) -> int:
        """Walk an object's repeating slots, replacing what was held for it.

        Returns:
            Number of values collected
        """
        if obj.object_id is None:
            return 0
        names = list(attributes) if attributes is not None else self.attributes
        gathered: dict[str, list[str]] = {}
        for name in names:
            values = []
            for index in range(obj.value_count(name)):
                value = obj.value_at(name, index)
                if value is not None and str(value).strip():
                    values.append(str(value).strip())
            gathered[name] = values

        with self._lock:
            for name in names:
                if name not in self.attributes:
                    self.attributes.append(name)
                if gathered[name]:
                    self._values[obj.object_id][name] = gathered[name]
                else:
                    self._values[obj.object_id].pop(name, None)
        return sum(len(v) for v in gathered.values())

    def add(self, record_id: str, attribute: str, value: str) -> None:
        with self._lock:
            if attribute not in self.attributes:
                self.attributes.append(attribute)
            self._values[record_id].setdefault(attribute, []).append(value)

    def values(self, record_id: str, attribute: str) -> list[str]:
        with self._lock:
            return list(self._values.get(record_id, {}).get(attribute, []))

    def for_record(self, record_id: str) -> dict[str, list[str]]:
        with self._lock:
            return {name: list(values) for name, values in self._values.get(record_id, {}).items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)

    def write(self, export_dir: Path) -> list[Path]:
        """Write one ``repeating_<attribute>.csv`` per attribute, rows ordered by record id."""
        export_dir = Path(export_dir)
        export_dir.mkdir(parents=True, exist_ok=True)
        with self._lock:
            snapshot = {rid: dict(attrs) for rid, attrs in self._values.items()}
            attributes = list(self.attributes)

        written = []
        for name in attributes:
            rows = [
                {"r_object_id": record_id, name: value}
                for record_id, attrs in sorted(snapshot.items())
                for value in attrs.get(name, [])
            ]
            path = repeating_file(export_dir, name)
            write_table(path, ["r_object_id", name], rows)
            written.append(path)
            logger.debug(f"Wrote {len(rows)} values to {path.name}")
        return written

    @classmethod
    def load(cls, export_dir: Path, attributes: Iterable[str] | None = None) -> "KeywordMap":
        """Load repeating files from an export directory.

        Args:
            export_dir: Export root
            attributes: Attributes to load (default: every repeating_*.csv present)
        """
        export_dir = Path(export_dir)
        if attributes is None:
            names = sorted(
                p.stem[len(REPEATING_FILE_PREFIX) :] for p in export_dir.glob(f"{REPEATING_FILE_PREFIX}*.csv")
            )
        else:
            names = list(attributes)

        keywords = cls(names)
        for name in names:
            path = repeating_file(export_dir, name)
            if not path.exists():
                continue
            header, rows = read_table(path)
            value_column = name if name in header else (header[1] if len(header) > 1 else None)
            if value_column is None:
                logger.warning(f"Repeating file {path.name} has no value column")
                continue
            for row in rows:
                record_id = row.get("r_object_id", "").strip()
                value = row.get(value_column, "").strip()
                if record_id and value:
                    keywords.add(record_id, name, value)
        return keywords
