"""Read and write config.toml.

config.toml is optional. Recognised tables:

    [database]
    path = "data/scenarios/dirty_flags.db"   # active dataset, relative to root

    [generate]
    users = 200
    seed = 42

The active database falls back to DATABASE_PATH in .env, then data/auth.db.
"""

import tomllib
from pathlib import Path
from typing import Any

import structlog
import tomlkit

from . import paths

logger = structlog.get_logger(__name__)


def load_config() -> dict[str, Any]:
    """Load config.toml, or an empty dict when it is absent or unreadable."""
    path = paths.config_toml()
    if not path.exists():
        return {}
    with open(path, "rb") as f:
        try:
            return tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.warning("config_unreadable", path=str(path), error=str(e))
            return {}


def _read_env_path() -> str | None:
    env_file = paths.env_file()
    if not env_file.exists():
        return None
    with open(env_file) as f:
        for line in f:
            line = line.strip()
            if line.startswith("DATABASE_PATH="):
                return line.split("=", 1)[1].strip().strip('"').strip("'")
    return None


def get_active_db() -> Path:
    """Get the currently active database path."""
    root = paths.project_root()

    # Priority 1: config.toml
    if path := load_config().get("database", {}).get("path"):
        return root / path

    # Priority 2: .env
    if path := _read_env_path():
        return root / path

    return paths.default_db()


def set_active_db(db_path: Path | None) -> None:
    """Point config.toml at ``db_path``, or drop the override when None.

    Other tables and comments in config.toml are preserved.
    """
    path = paths.config_toml()
    if path.exists():
        with open(path, "r") as f:
            doc = tomlkit.load(f)
    else:
        doc = tomlkit.document()

    if db_path is None:
        if "database" not in doc:
            return
        del doc["database"]
    else:
        try:
            rel_path = db_path.relative_to(paths.project_root())
        except ValueError:
            rel_path = db_path
        table = tomlkit.table()
        table["path"] = rel_path.as_posix()
        doc["database"] = table

    with open(path, "w") as f:
        tomlkit.dump(doc, f)


def generate_defaults() -> dict[str, int]:
    """Defaults for ``generate`` from the [generate] table."""
    section = load_config().get("generate", {})
    return {key: int(section[key]) for key in ("users", "seed") if key in section}
