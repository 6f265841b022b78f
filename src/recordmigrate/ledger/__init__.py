"""CSV checkpoint ledgers and import logs."""

from recordmigrate.ledger.csv_ledger import (
    CheckpointLedger,
    LedgerRow,
    LedgerTransaction,
    LedgerWriter,
    read_table,
    write_table,
)
from recordmigrate.ledger.import_log import LOG_COLUMNS, ImportLog

__all__ = [
    "CheckpointLedger",
    "ImportLog",
    "LOG_COLUMNS",
    "LedgerRow",
    "LedgerTransaction",
    "LedgerWriter",
    "read_table",
    "write_table",
]
