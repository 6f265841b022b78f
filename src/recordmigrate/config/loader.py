"""Configuration loading with environment variable merging."""

import os
import tomllib
from pathlib import Path
from typing import Any

import typer

from recordmigrate.config.models import MigrationConfig
from recordmigrate.exceptions import ConfigError

# (environment variable suffix, config key) pairs applied to [source] and [target]
_REPOSITORY_ENV_KEYS = (
    ("URL", "url"),
    ("REPOSITORY", "repository"),
    ("USERNAME", "username"),
    ("PASSWORD", "password"),
)


def get_config_path(config_arg: Path | None = None) -> Path:
    """
    Get configuration file path with priority order.

    Priority:
    1. Command-line argument
    2. RECORDMIGRATE_CONFIG environment variable
    3. ~/.config/recordmigrate/config.toml (typer app dir)
    4. ./recordmigrate.toml (current working directory)

    Args:
        config_arg: Optional path from command-line argument

    Returns:
        Path to configuration file (may not exist)
    """
    # 1. Command-line argument
    if config_arg:
        return config_arg

    # 2. Environment variable
    env_config = os.getenv("RECORDMIGRATE_CONFIG")
    if env_config:
        return Path(env_config)

    # 3. User app directory
    app_dir = Path(typer.get_app_dir("recordmigrate"))
    user_config = app_dir / "config.toml"
    if user_config.exists():
        return user_config

    # 4. Current directory
    cwd_config = Path("recordmigrate.toml")
    if cwd_config.exists():
        return cwd_config

    # Default (may not exist)
    return user_config


def _apply_repository_env(data: dict[str, Any], section: str) -> None:
    """Overlay RECORDMIGRATE_<SECTION>_* variables onto a repository section."""
    prefix = f"RECORDMIGRATE_{section.upper()}_"
    overrides = {
        key: value
        for suffix, key in _REPOSITORY_ENV_KEYS
        if (value := os.getenv(prefix + suffix))
    }
    if overrides:
        data.setdefault(section, {}).update(overrides)


def _apply_int_env(data: dict[str, Any], section: str, key: str, env_name: str) -> None:
    """Overlay an integer environment variable, rejecting non-numeric values."""
    if value := os.getenv(env_name):
        try:
            data.setdefault(section, {})[key] = int(value)
        except ValueError:
            raise ConfigError(f"Invalid {env_name} value: {value}") from None


def load_config(config_path: Path | None = None) -> MigrationConfig:
    """
    Load and validate configuration from TOML file and environment variables.

    Environment variables override config file values (or provide all values if no file exists):
    - RECORDMIGRATE_SOURCE_URL / _REPOSITORY / _USERNAME / _PASSWORD
    - RECORDMIGRATE_TARGET_URL / _REPOSITORY / _USERNAME / _PASSWORD
    - RECORDMIGRATE_POOL_SIZE (optional)
    - RECORDMIGRATE_EXPORT_THREADS (optional)
    - RECORDMIGRATE_EXPORT_DIR (optional, applies to both export and import)

    Args:
        config_path: Optional path to config file

    Returns:
        Validated MigrationConfig object

    Raises:
        ConfigError: If config file invalid or values fail validation
    """
    path = get_config_path(config_path)

    data: dict[str, Any] = {}
    if path.exists():
        try:
            with path.open("rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML syntax in {path}: {e}") from e
    elif config_path is not None:
        raise ConfigError(f"Config file not found: {config_path}")

    _apply_repository_env(data, "source")
    _apply_repository_env(data, "target")
    _apply_int_env(data, "pool", "size", "RECORDMIGRATE_POOL_SIZE")
    _apply_int_env(data, "export", "threads", "RECORDMIGRATE_EXPORT_THREADS")

    if export_dir := os.getenv("RECORDMIGRATE_EXPORT_DIR"):
        data.setdefault("export", {})["output_dir"] = export_dir
        data.setdefault("import", {})["export_dir"] = export_dir

    try:
        return MigrationConfig.model_validate(data)
    except Exception as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
