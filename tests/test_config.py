"""Tests for config.toml / .env handling and project paths."""

import pytest

from auth_dataset import paths
from auth_dataset.config import generate_defaults, get_active_db, load_config, set_active_db


@pytest.fixture
def root(tmp_path, monkeypatch):
    monkeypatch.setenv(paths.ROOT_ENV_VAR, str(tmp_path))
    return tmp_path


class TestPaths:
    """Tests for path helpers."""

    def test_root_override(self, root):
        assert paths.project_root() == root
        assert paths.default_db() == root / "data" / "auth.db"

    def test_ensure_dirs(self, root):
        paths.ensure_dirs()
        assert (root / "data" / "backups").is_dir()
        assert (root / "data" / "scenarios").is_dir()


class TestActiveDatabase:
    """Priority: config.toml, then .env, then the default."""

    def test_default(self, root):
        assert get_active_db() == root / "data" / "auth.db"

    def test_config_toml(self, root):
        (root / "config.toml").write_text('[database]\npath = "data/scenarios/x.db"\n')
        assert get_active_db() == root / "data" / "scenarios" / "x.db"

    def test_env_file(self, root):
        (root / ".env").write_text('OTHER=1\nDATABASE_PATH="data/y.db"\n')
        assert get_active_db() == root / "data" / "y.db"

    def test_config_wins_over_env(self, root):
        (root / ".env").write_text("DATABASE_PATH=data/y.db\n")
        (root / "config.toml").write_text('[database]\npath = "data/x.db"\n')
        assert get_active_db() == root / "data" / "x.db"

    def test_unreadable_config_is_ignored(self, root):
        (root / "config.toml").write_text("[database\npath = \n")
        assert load_config() == {}
        assert get_active_db() == root / "data" / "auth.db"


class TestSetActiveDb:
    """config.toml is rewritten without losing other content."""

    def test_set_and_clear(self, root):
        target = root / "data" / "scenarios" / "orphans.db"
        set_active_db(target)
        assert get_active_db() == target
        assert 'path = "data/scenarios/orphans.db"' in (root / "config.toml").read_text()

        set_active_db(None)
        assert get_active_db() == root / "data" / "auth.db"

    def test_preserves_other_tables_and_comments(self, root):
        config = root / "config.toml"
        config.write_text("# dataset settings\n[generate]\nusers = 50\n")
        set_active_db(root / "data" / "x.db")
        set_active_db(None)

        text = config.read_text()
        assert "# dataset settings" in text
        assert "[database]" not in text
        assert generate_defaults() == {"users": 50}

    def test_clear_without_config_is_noop(self, root):
        set_active_db(None)
        assert not (root / "config.toml").exists()


class TestGenerateDefaults:
    """Tests for the [generate] table."""

    def test_empty(self, root):
        assert generate_defaults() == {}

    def test_values(self, root):
        (root / "config.toml").write_text("[generate]\nusers = 25\nseed = 3\nunused = 1\n")
        assert generate_defaults() == {"users": 25, "seed": 3}
