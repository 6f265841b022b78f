"""Per-run CSV import log."""

import csv
import logging
import threading
from datetime import datetime
from pathlib import Path
from types import TracebackType

from recordmigrate.constants import STATUS_SKIPPED, STATUS_SUCCESS

logger = logging.getLogger(__name__)

LOG_COLUMNS = [
    "Timestamp",
    "Row_Number",
    "Object_Name",
    "R_Object_ID",
    "Status",
    "Error_Message",
    "Movements_Imported",
    "Documents_Imported",
]


class ImportLog:
    """Appends one line per processed row and a summary block on close.

    Example:
        >>> with ImportLog(Path("import_log.csv")) as log:
        ...     log.log(1, "4245-2024-25", "0b00000180000001", "SUCCESS", movements=3)
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._stream = self.path.open("w", newline="", encoding="utf-8")
        self._writer = csv.writer(self._stream)
        self._writer.writerow(LOG_COLUMNS)
        self._stream.flush()
        self._started = datetime.now()
        self._counts = {"total": 0, "success": 0, "failed": 0, "skipped": 0}
        self._closed = False

    def log(
        self,
        row_number: int,
        object_name: str,
        object_id: str | None,
        status: str,
        error: str = "",
        movements: int = 0,
        documents: int = 0,
    ) -> None:
        with self._lock:
            if self._closed:
                return
            self._writer.writerow(
                [
                    datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
                    row_number,
                    object_name,
                    object_id or "",
                    status,
                    error,
                    movements,
                    documents,
                ]
            )
            self._stream.flush()
            self._counts["total"] += 1
            if status == STATUS_SUCCESS:
                self._counts["success"] += 1
            elif status == STATUS_SKIPPED:
                self._counts["skipped"] += 1
            else:
                self._counts["failed"] += 1

    def close(self) -> None:
        """Write the summary block and close the file. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            duration = (datetime.now() - self._started).total_seconds()
            self._writer.writerow([])
            self._writer.writerow(["Summary"])
            self._writer.writerow(["Total Rows", self._counts["total"]])
            self._writer.writerow(["Success", self._counts["success"]])
            self._writer.writerow(["Failed", self._counts["failed"]])
            self._writer.writerow(["Skipped", self._counts["skipped"]])
            self._writer.writerow(["Duration (s)", f"{duration:.2f}"])
            self._stream.close()
        logger.info(f"Import log written to {self.path}")

    def __enter__(self) -> "ImportLog":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
