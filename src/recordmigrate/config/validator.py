"""Configuration validation and readiness checks."""

import importlib.util
import os
import sys
from datetime import datetime
from pathlib import Path

from recordmigrate.config.loader import get_config_path, load_config
from recordmigrate.config.models import CheckItem, MigrationConfig, ReadinessCheckResult, RepositoryConfig
from recordmigrate.exceptions import ConfigError, RecordMigrateError
from recordmigrate.repository.rest import RestRepository

# (distribution name, import name)
REQUIRED_PACKAGES = (
    ("pydantic", "pydantic"),
    ("tenacity", "tenacity"),
    ("requests", "requests"),
    ("typer", "typer"),
    ("rich", "rich"),
    ("msgspec", "msgspec"),
    ("pathvalidate", "pathvalidate"),
)


def check_config_file(config_path: Path | None = None) -> CheckItem:
    """
    Check if configuration file exists.

    Args:
        config_path: Optional path to config file

    Returns:
        CheckItem with result
    """
    path = get_config_path(config_path)
    if path.exists():
        return CheckItem(name="Configuration File Found", status="pass", message=f"Found at {path}")

    if os.getenv("RECORDMIGRATE_SOURCE_URL") or os.getenv("RECORDMIGRATE_TARGET_URL"):
        return CheckItem(
            name="Configuration File Found",
            status="warning",
            message=f"Not found at {path}, using environment variables",
        )
    return CheckItem(
        name="Configuration File Found",
        status="fail",
        message=f"Not found at {path} and RECORDMIGRATE_SOURCE_URL / RECORDMIGRATE_TARGET_URL not set",
    )


def check_config_valid(config_path: Path | None = None) -> tuple[CheckItem, MigrationConfig | None]:
    """
    Check if configuration is valid.

    Returns:
        CheckItem with result, and the loaded config when valid
    """
    try:
        config = load_config(config_path)
    except ConfigError as e:
        return CheckItem(name="Configuration Valid", status="fail", message=str(e)), None

    if get_config_path(config_path).exists():
        message = "TOML syntax and schema valid"
    else:
        message = "Configuration built from environment variables"
    return CheckItem(name="Configuration Valid", status="pass", message=message), config


def check_repository(role: str, repository: RepositoryConfig, connect: bool = False) -> CheckItem:
    """
    Check that a repository is configured, and optionally that a session can be opened.

    Args:
        role: "Source" or "Target"
        repository: Repository connection settings
        connect: Open (and close) one session to verify connectivity

    Returns:
        CheckItem with result
    """
    name = f"{role} Repository"
    missing = [
        field
        for field, value in (
            ("url", repository.url),
            ("repository", repository.repository),
            ("username", repository.username),
            ("password", repository.password),
        )
        if not value
    ]
    if missing:
        return CheckItem(name=name, status="warning", message=f"Not set: {', '.join(missing)}")
    if not connect:
        return CheckItem(name=name, status="pass", message=f"{repository.repository} at {repository.url}")

    try:
        session = RestRepository(repository).connect()
        session.disconnect()
    except RecordMigrateError as e:
        return CheckItem(name=name, status="fail", message=f"Connection failed: {e}")
    return CheckItem(name=name, status="pass", message=f"Connected to {repository.repository}")


def check_python_version() -> CheckItem:
    """
    Check if Python version meets requirements.

    Returns:
        CheckItem with result
    """
    version = sys.version_info
    version_str = f"{version.major}.{version.minor}.{version.micro}"
    if (version.major, version.minor) >= (3, 11):
        return CheckItem(name="Python Version", status="pass", message=version_str)
    return CheckItem(name="Python Version", status="warning", message=f"{version_str} (Python 3.11+ required)")


def check_dependencies() -> CheckItem:
    missing = [dist for dist, module in REQUIRED_PACKAGES if importlib.util.find_spec(module) is None]
    if missing:
        return CheckItem(name="Required Dependencies", status="fail", message=f"Missing: {', '.join(missing)}")
    return CheckItem(name="Required Dependencies", status="pass", message="All dependencies available")


def check_export_dir(config: MigrationConfig) -> CheckItem:
    export_dir = Path(config.import_.export_dir)
    if export_dir.is_dir():
        ledgers = sorted(p.name for p in export_dir.glob("*_Export.csv"))
        message = f"{export_dir} ({len(ledgers)} export ledgers)"
        return CheckItem(name="Export Directory", status="pass", message=message)
    return CheckItem(
        name="Export Directory",
        status="warning",
        message=f"{export_dir} does not exist yet (created by export)",
    )


def perform_readiness_check(config_path: Path | None = None, connect: bool = False) -> ReadinessCheckResult:
    """
    Perform all readiness checks.

    Args:
        config_path: Optional path to config file
        connect: Also open a session against each configured repository

    Returns:
        ReadinessCheckResult with all check results
    """
    valid, config = check_config_valid(config_path)
    checks = [check_config_file(config_path), valid]
    if config is not None:
        checks.append(check_repository("Source", config.source, connect))
        checks.append(check_repository("Target", config.target, connect))
        checks.append(check_export_dir(config))
    checks.extend([check_python_version(), check_dependencies()])

    # Warnings are allowed; any failure means not ready
    ready = not any(check.status == "fail" for check in checks)
    return ReadinessCheckResult(ready=ready, checks=checks, timestamp=datetime.now())
