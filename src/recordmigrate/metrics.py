"""Thread-safe migration result counters."""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

# Counter names accepted by MigrationResult.increment
COUNTERS = (
    "total_documents",
    "successful_imports",
    "failed_imports",
    "folders_created",
    "movement_registers_created",
    "skipped_rows",
    "exported_records",
    "failed_exports",
    "imported_records",
    "failed_records",
    "acls_applied",
    "acl_failures",
)


@dataclass
class MigrationResult:
    """Counters and error list shared by every worker of a phase.

    All mutation goes through one lock, so workers may call any method
    concurrently. ``successful_imports`` and ``failed_imports`` count
    documents, so ``total_documents`` always equals their sum.

    Example:
        >>> result = MigrationResult(phase="import")
        >>> result.increment("folders_created")
        >>> result.record_error("4245-2024-25: cleanup failed")
        >>> result.finish()
        >>> result.snapshot()["errors"]
        1
    """

    phase: str = "migration"
    total_documents: int = 0
    successful_imports: int = 0
    failed_imports: int = 0
    folders_created: int = 0
    movement_registers_created: int = 0
    skipped_rows: int = 0
    exported_records: int = 0
    failed_exports: int = 0
    imported_records: int = 0
    failed_records: int = 0
    acls_applied: int = 0
    acl_failures: int = 0
    errors: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: datetime | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def increment(self, counter: str, count: int = 1) -> None:
        """Thread-safe increment of a named counter.

        Raises:
            ValueError: If counter is not one of COUNTERS
        """
        if counter not in COUNTERS:
            raise ValueError(f"Unknown counter: {counter}")
        with self._lock:
            setattr(self, counter, getattr(self, counter) + count)

    def record_document(self, success: bool) -> None:
        """Count one document import attempt."""
        with self._lock:
            self.total_documents += 1
            if success:
                self.successful_imports += 1
            else:
                self.failed_imports += 1

    def record_error(self, message: str) -> None:
        with self._lock:
            self.errors.append(message)

    def finish(self) -> None:
        with self._lock:
            if self.ended_at is None:
                self.ended_at = datetime.now()

    def merge(self, other: "MigrationResult") -> None:
        """Add another result's counters and errors into this one."""
        snapshot = other.snapshot()
        with self._lock:
            for counter in COUNTERS:
                setattr(self, counter, getattr(self, counter) + snapshot[counter])
            self.errors.extend(snapshot["error_list"])

    def snapshot(self) -> dict[str, Any]:
        """Thread-safe atomic read of all counters.

        Returns:
            Dictionary with every counter plus:
                - errors: Number of recorded errors
                - error_list: Copy of the error messages
                - duration_seconds: Elapsed time (until finish, or now)
                - items_per_second: Records handled per second
        """
        with self._lock:
            end = self.ended_at or datetime.now()
            duration = (end - self.started_at).total_seconds()
            handled = (
                self.skipped_rows
                + self.exported_records
                + self.failed_exports
                + self.imported_records
                + self.failed_records
            )
            data: dict[str, Any] = {counter: getattr(self, counter) for counter in COUNTERS}
            data.update(
                {
                    "phase": self.phase,
                    "errors": len(self.errors),
                    "error_list": list(self.errors),
                    "duration_seconds": duration,
                    "items_per_second": handled / duration if duration > 0 else 0.0,
                }
            )
            return data

    def __str__(self) -> str:
        snapshot = self.snapshot()
        return (
            f"MigrationResult(phase={snapshot['phase']}, "
            f"folders={snapshot['folders_created']}, "
            f"documents={snapshot['successful_imports']}/{snapshot['total_documents']}, "
            f"errors={snapshot['errors']})"
        )
