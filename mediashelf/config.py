"""
Configuration management for catalog stores.

The configuration is stored as a TOML file in the store directory. It
names the database file, sets write-time reference checking, and may
override the default settings seeded into a new catalog.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import tomli_w


CONFIG_FILENAME = "mediashelf.toml"
CONFIG_VERSION = 1
DEFAULT_DATABASE = "catalog.db"
STORE_PATH_ENV = "MEDIASHELF_STORE_PATH"


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    # Database file name, relative to the store directory, or ":memory:"
    database: str = DEFAULT_DATABASE
    # Reject unknown category/tag ids when items are written
    strict_references: bool = False
    # Overrides for the default settings seeded into a new catalog
    settings: dict[str, Any] = field(default_factory=dict)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def database_path(self) -> str:
        if self.database == ":memory:":
            return self.database
        return str(self.path / self.database)

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_default_store_path() -> Path:
    """
    Store directory when none is given.

    Priority:
    1. MEDIASHELF_STORE_PATH environment variable
    2. ~/.mediashelf
    """
    env_path = os.environ.get(STORE_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser().resolve()
    return Path.home() / ".mediashelf"


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid config {config_path}: {e}") from e

    store = data.get("store", {})
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    catalog = data.get("catalog", {})
    strict = catalog.get("strict_references", False)
    if not isinstance(strict, bool):
        raise ValueError(f"catalog.strict_references must be true or false, got {strict!r}")
    settings = data.get("settings", {})
    if not isinstance(settings, dict):
        raise ValueError("[settings] must be a table")

    return StoreConfig(
        path=store_path,
        version=version,
        created=store.get("created", ""),
        database=store.get("database", DEFAULT_DATABASE),
        strict_references=strict,
        settings=settings,
    )


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data: dict[str, Any] = {
        "store": {
            "version": config.version,
            "created": config.created,
            "database": config.database,
        },
        "catalog": {
            "strict_references": config.strict_references,
        },
    }
    if config.settings:
        data["settings"] = config.settings

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    else:
        config = StoreConfig(path=store_path)
        save_config(config)
        return config
