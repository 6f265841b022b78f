"""Shared utility functions for recordmigrate."""

from recordmigrate.utils.dates import format_repository_date, parse_repository_date
from recordmigrate.utils.error_handling import safe_execute
from recordmigrate.utils.path_utils import clean_object_name, sanitize_record_name

__all__ = [
    "parse_repository_date",
    "format_repository_date",
    "safe_execute",
    "sanitize_record_name",
    "clean_object_name",
]
