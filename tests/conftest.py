"""Shared fixtures: one small generated dataset per test session.

Argon2 cost is dropped to the minimum so generation takes well under a
second; nothing in the tests depends on hash strength.
"""

import shutil
from pathlib import Path

import pytest
import structlog

from auth_dataset.fixtures import GenerationConfig, generate_dataset, write_dataset
from auth_dataset.loader import load_dataset

FAST_HASHING = {"hash_time_cost": 1, "hash_memory_cost": 8}


@pytest.fixture(autouse=True)
def _reset_structlog():
    """CLI runs bind structlog to a captured stream; undo that after each test."""
    yield
    structlog.reset_defaults()


@pytest.fixture(scope="session")
def small_config() -> GenerationConfig:
    return GenerationConfig(users=60, seed=7, **FAST_HASHING)


@pytest.fixture(scope="session")
def dataset(small_config):
    return generate_dataset(small_config)


@pytest.fixture(scope="session")
def dataset_db(tmp_path_factory, dataset) -> Path:
    """A clean dataset file. Read-only: copy it before modifying."""
    path = tmp_path_factory.mktemp("data") / "auth.db"
    write_dataset(dataset, path)
    return path


@pytest.fixture
def db_copy(dataset_db, tmp_path) -> Path:
    """A private copy of the clean dataset that a test may modify."""
    path = tmp_path / "copy.db"
    shutil.copy2(dataset_db, path)
    return path


@pytest.fixture(scope="session")
def frames(dataset_db):
    return load_dataset(dataset_db)
