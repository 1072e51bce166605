"""Common test fixtures for readlist-vault."""

import tempfile
from pathlib import Path

import pytest

from readlist_vault.models.db_models import init_db
from readlist_vault.models.schema import FolderLayout, Record, SyncConfig
from readlist_vault.services.sync_service import SyncService
from readlist_vault.storage.record_repository import RecordRepository


@pytest.fixture
def temp_dirs():
    """Create temporary directories for the vault and the database."""
    with tempfile.TemporaryDirectory() as vault_dir:
        with tempfile.TemporaryDirectory() as db_dir:
            yield Path(vault_dir), Path(db_dir)


@pytest.fixture
def vault_dir(temp_dirs):
    return temp_dirs[0]


@pytest.fixture
def engine(temp_dirs):
    """A real SQLite engine on a throwaway database file."""
    _, db_dir = temp_dirs
    engine = init_db(f"sqlite:///{db_dir / 'test_readlist.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def repository(engine):
    """Create a test record repository."""
    return RecordRepository(engine=engine)


@pytest.fixture
def make_record(repository):
    """Factory that stores a record and returns it with its ID."""
    counter = {"n": 0}

    def _make(**overrides) -> Record:
        counter["n"] += 1
        n = counter["n"]
        fields = {
            "url": f"https://example.com/article-{n}",
            "title": f"Article {n}",
            "content": f"<p>Body of article {n}</p>",
            "domain": "example.com",
        }
        fields.update(overrides)
        return repository.create(Record(**fields))

    return _make


@pytest.fixture
def sync_config(vault_dir):
    """Flat layout keeps file paths predictable; no backups unless asked."""
    return SyncConfig(
        vault_path=vault_dir,
        layout=FolderLayout.FLAT,
        backup_before_sync=False,
    )


@pytest.fixture
def sync_service(repository, sync_config):
    return SyncService(repository, sync_config)
