"""Project path constants - single source of truth for all file paths.

The project root is the directory holding pyproject.toml. Set
AUTH_DATASET_ROOT to work against another directory (tests do this).
"""

import os
from pathlib import Path

import pyrootutils

ROOT_ENV_VAR = "AUTH_DATASET_ROOT"
DEFAULT_DB_NAME = "auth.db"


def project_root() -> Path:
    """Find the project root, honouring the AUTH_DATASET_ROOT override."""
    if override := os.environ.get(ROOT_ENV_VAR):
        return Path(override)
    try:
        return pyrootutils.find_root(search_from=__file__, indicator="pyproject.toml")
    except FileNotFoundError:
        # Installed outside a checkout
        return Path.cwd()


def data_dir() -> Path:
    return project_root() / "data"


def default_db() -> Path:
    """The dataset built by ``auth-dataset generate`` with no --output."""
    return data_dir() / DEFAULT_DB_NAME


def backups_dir() -> Path:
    return data_dir() / "backups"


def scenarios_dir() -> Path:
    return data_dir() / "scenarios"


def exports_dir() -> Path:
    return data_dir() / "exports"


def config_toml() -> Path:
    return project_root() / "config.toml"


def env_file() -> Path:
    return project_root() / ".env"


def ensure_dirs() -> None:
    """Ensure backup and scenario directories exist."""
    backups_dir().mkdir(parents=True, exist_ok=True)
    scenarios_dir().mkdir(parents=True, exist_ok=True)
