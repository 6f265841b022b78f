"""Path sanitization utilities for per-record export directories and content files."""

from __future__ import annotations

import re
import shutil
import tempfile
import unicodedata
from pathlib import Path

from pathvalidate import Platform, sanitize_filename

from recordmigrate.constants import MAX_CLEANABLE_EXTENSION_LENGTH, MAX_CONTENT_PATH_BYTES

# Characters the legacy repository allows in object names but filesystems do not
_ILLEGAL_CHARS = re.compile(r'[\\/:*?"<>|]')


def sanitize_record_name(name: str, max_length: int = 255) -> str:
    """Sanitize a repository object name for use as a file or directory name.

    Illegal path characters are replaced with ``_`` before platform sanitization,
    so ``G67/2024-25`` becomes ``G67_2024-25`` rather than losing the separator.

    Args:
        name: Original object name from the repository
        max_length: Maximum length in bytes (default: 255 for most filesystems)

    Returns:
        Sanitized name safe for cross-platform use

    Raises:
        ValueError: If name is empty after sanitization
    """
    normalized = unicodedata.normalize("NFC", name)
    replaced = _ILLEGAL_CHARS.sub("_", normalized)

    safe_name = sanitize_filename(
        replaced,
        platform=Platform.WINDOWS,  # Most restrictive for max compatibility
        max_len=max_length,
        replacement_text="_",
    )

    if not safe_name or not safe_name.strip():
        raise ValueError(f"Object name '{name}' resulted in empty string after sanitization")

    return safe_name


def clean_object_name(name: str) -> str:
    """Strip repeated short trailing extensions from a document name.

    ``letter.pdf.pdf`` and ``letter.pdf`` both become ``letter``; a long
    dotted suffix such as ``report.final_version`` is kept.
    """
    if not name:
        return name

    cleaned = name
    while True:
        dot = cleaned.rfind(".")
        if dot <= 0 or len(cleaned) - dot > MAX_CLEANABLE_EXTENSION_LENGTH:
            break
        cleaned = cleaned[:dot]
    return cleaned


def stage_short_path(path: Path) -> tuple[Path, bool]:
    """Return a path short enough for content upload, copying if needed.

    Args:
        path: Local content file

    Returns:
        Tuple of (path to upload, whether it is a temporary copy the caller must delete)
    """
    if len(str(path.resolve()).encode("utf-8")) <= MAX_CONTENT_PATH_BYTES:
        return path, False

    fd, temp_name = tempfile.mkstemp(prefix="rm_", suffix=path.suffix)
    with open(fd, "wb") as dst, path.open("rb") as src:
        shutil.copyfileobj(src, dst)
    return Path(temp_name), True
