"""CSV checkpoint ledger: row status tracking with atomic commit.

A ledger is an ordinary CSV file with a status column (and optionally an
error column). Processing a ledger rewrites it row by row into ``<file>.tmp``
and replaces the original only when the pass ends, so a crash mid-pass leaves
the original untouched while every completed row is already on disk in the
temporary copy.
"""

import csv
import logging
import os
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any

from recordmigrate.constants import STATUS_SUCCESS

logger = logging.getLogger(__name__)


def _open_read(path: Path) -> IO[str]:
    # utf-8-sig strips a BOM if present and reads plain UTF-8 otherwise
    return path.open("r", newline="", encoding="utf-8-sig")


def _open_write(path: Path) -> IO[str]:
    return path.open("w", newline="", encoding="utf-8")


def _tmp_path(path: Path) -> Path:
    return path.with_name(path.name + ".tmp")


def _column_index(header: Sequence[str]) -> dict[str, int]:
    index: dict[str, int] = {}
    for position, name in enumerate(header):
        index.setdefault(name.strip().lower(), position)
    return index


def fit_width(values: Sequence[str], width: int) -> list[str]:
    """Pad with empty strings or truncate so a row matches the header width."""
    row = list(values[:width])
    if len(row) < width:
        row.extend([""] * (width - len(row)))
    return row


class LedgerRow:
    """One CSV data row with case-insensitive column access.

    Attributes:
        values: Cell values, always exactly as wide as the header
        number: 1-based position among data rows (header excluded)
    """

    def __init__(
        self,
        header: list[str],
        values: Sequence[str],
        number: int,
        status_column: str,
        error_column: str | None = None,
        index: dict[str, int] | None = None,
    ):
        self.header = header
        self.values = fit_width(values, len(header))
        self.number = number
        self.status_column = status_column
        self.error_column = error_column
        self._index = index if index is not None else _column_index(header)

    def has(self, column: str) -> bool:
        return column.lower() in self._index

    def get(self, column: str, default: str = "") -> str:
        position = self._index.get(column.lower())
        if position is None:
            return default
        return self.values[position]

    def set(self, column: str, value: Any) -> None:
        position = self._index.get(column.lower())
        if position is None:
            raise KeyError(f"Column '{column}' not in ledger header")
        self.values[position] = "" if value is None else str(value)

    @property
    def status(self) -> str:
        return self.get(self.status_column)

    @property
    def error(self) -> str:
        return self.get(self.error_column) if self.error_column else ""

    @property
    def is_success(self) -> bool:
        return self.status.strip().upper() == STATUS_SUCCESS

    def set_status(self, status: str, error: str = "") -> None:
        """Set the terminal status, and the error column when the ledger has one."""
        self.set(self.status_column, status)
        if self.error_column:
            self.set(self.error_column, error)

    def as_dict(self) -> dict[str, str]:
        return dict(zip(self.header, self.values, strict=True))

    def __repr__(self) -> str:
        return f"LedgerRow(number={self.number}, status={self.status!r})"


class LedgerTransaction:
    """A single pass over a ledger, yielded by :meth:`CheckpointLedger.transaction`.

    Rows must be written in file order; any row not written when the pass
    ends is copied through unchanged.
    """

    def __init__(self, header: list[str], rows: list[LedgerRow], writer: Any, stream: IO[str]):
        self.header = header
        self.rows = rows
        self._writer = writer
        self._stream = stream
        self._next = 0

    def __iter__(self) -> Iterator[LedgerRow]:
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)

    def write(self, row: LedgerRow) -> None:
        """Write a row (with its updated status) and flush it to disk.

        Rows skipped over since the previous write are copied unchanged first.

        Raises:
            ValueError: If the row was already written or is out of order
        """
        position = row.number - 1
        if position < self._next:
            raise ValueError(f"Ledger row {row.number} already written")
        while self._next < position:
            self._writer.writerow(self.rows[self._next].values)
            self._next += 1
        self._writer.writerow(row.values)
        self._next += 1
        self._stream.flush()

    def skip(self, row: LedgerRow) -> None:
        """Copy a row through unchanged."""
        self.write(row)

    @property
    def written(self) -> int:
        return self._next

    def copy_remaining(self) -> int:
        copied = 0
        while self._next < len(self.rows):
            self._writer.writerow(self.rows[self._next].values)
            self._next += 1
            copied += 1
        self._stream.flush()
        return copied


class CheckpointLedger:
    """A CSV file whose rows carry a resumable status column.

    Example:
        >>> ledger = CheckpointLedger(Path("records.csv"), "import_status", "import_error")
        >>> with ledger.transaction() as txn:
        ...     for row in txn:
        ...         if row.is_success:
        ...             txn.skip(row)
        ...             continue
        ...         row.set_status("SUCCESS")
        ...         txn.write(row)
    """

    def __init__(self, path: Path, status_column: str, error_column: str | None = None):
        self.path = Path(path)
        self.status_column = status_column
        self.error_column = error_column

    def read(self) -> tuple[list[str], list[LedgerRow]]:
        """Read the header and all data rows.

        The status and error columns are appended to the header when absent,
        and every row is padded or truncated to the header width. Blank lines
        are ignored.

        Raises:
            FileNotFoundError: If the ledger file does not exist
            ValueError: If the file has no header row
        """
        with _open_read(self.path) as f:
            records = [record for record in csv.reader(f) if record]

        if not records:
            raise ValueError(f"Ledger {self.path} has no header row")

        header = [name.strip() for name in records[0]]
        lowered = {name.lower() for name in header}
        for column in (self.status_column, self.error_column):
            if column and column.lower() not in lowered:
                header.append(column)
                lowered.add(column.lower())

        index = _column_index(header)
        rows = [
            LedgerRow(header, values, number, self.status_column, self.error_column, index)
            for number, values in enumerate(records[1:], start=1)
        ]
        return header, rows

    @contextmanager
    def transaction(self) -> Iterator[LedgerTransaction]:
        """Rewrite the ledger row by row, committing with an atomic replace.

        The replace also happens when the body raises, so rows already
        processed keep their new status; the exception then propagates.
        """
        header, rows = self.read()
        tmp = _tmp_path(self.path)
        with _open_write(tmp) as f:
            writer = csv.writer(f)
            writer.writerow(header)
            f.flush()
            txn = LedgerTransaction(header, rows, writer, f)
            try:
                yield txn
            finally:
                copied = txn.copy_remaining()
                f.close()
                os.replace(tmp, self.path)
                if copied:
                    logger.debug(f"Copied {copied} unprocessed rows unchanged into {self.path.name}")

    def statuses(self) -> list[str]:
        _, rows = self.read()
        return [row.status for row in rows]


class LedgerWriter:
    """Thread-safe appender for a new ledger, committed atomically on close.

    Rows written after :meth:`close` are dropped and logged, which lets an
    exporter stop waiting on stragglers without corrupting its output.
    """

    def __init__(self, path: Path, header: Sequence[str]):
        self.path = Path(path)
        self.header = list(header)
        self._tmp = _tmp_path(self.path)
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._stream = _open_write(self._tmp)
        self._writer = csv.writer(self._stream)
        self._writer.writerow(self.header)
        self._stream.flush()
        self._closed = False
        self.rows_written = 0
        self.rows_dropped = 0

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def write(self, values: Sequence[Any]) -> bool:
        """Append one row and flush.

        Returns:
            True if written, False if the writer was already closed
        """
        row = fit_width(["" if v is None else str(v) for v in values], len(self.header))
        with self._lock:
            if self._closed:
                self.rows_dropped += 1
                logger.warning(f"Dropped late write to closed ledger {self.path.name}: {row[:2]}")
                return False
            self._writer.writerow(row)
            self._stream.flush()
            self.rows_written += 1
            return True

    def write_dict(self, row: dict[str, Any]) -> bool:
        index = _column_index(self.header)
        values = [""] * len(self.header)
        for key, value in row.items():
            position = index.get(key.lower())
            if position is not None:
                values[position] = value
        return self.write(values)

    def close(self) -> None:
        """Close and atomically move the file into place. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._stream.close()
        os.replace(self._tmp, self.path)

    def __enter__(self) -> "LedgerWriter":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def read_table(path: Path) -> tuple[list[str], list[dict[str, str]]]:
    """Read a plain CSV file into its header and a list of row dicts.

    Rows shorter than the header are padded with empty strings.
    """
    with _open_read(Path(path)) as f:
        records = [record for record in csv.reader(f) if record]
    if not records:
        return [], []
    header = [name.strip() for name in records[0]]
    rows = [dict(zip(header, fit_width(values, len(header)), strict=True)) for values in records[1:]]
    return header, rows


def write_table(path: Path, header: Sequence[str], rows: list[dict[str, Any]]) -> None:
    """Write row dicts as a CSV file, replacing any existing file atomically."""
    path = Path(path)
    tmp = _tmp_path(path)
    with _open_write(tmp) as f:
        writer = csv.writer(f)
        writer.writerow(header)
        for row in rows:
            writer.writerow(["" if row.get(c) is None else str(row.get(c)) for c in header])
    os.replace(tmp, path)
