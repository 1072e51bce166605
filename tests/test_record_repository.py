"""Tests for the SQLite record repository."""
import time

import pytest
from sqlalchemy.exc import OperationalError

from readlist_vault.exceptions import (
    ErrorCode,
    RecordNotFoundError,
    StorageError,
    ValidationError,
)
from readlist_vault.models.schema import Highlight, Record, utc_now


class TestRecordRepository:
    def test_create_and_fetch(self, repository):
        created = repository.create(
            Record(
                url="https://example.com/a",
                title="A",
                tags=["zeta", "alpha", "zeta"],
                notes="n",
            )
        )
        assert created.id is not None

        fetched = repository.fetch_by_id(created.id)
        assert fetched.title == "A"
        assert fetched.tags == ["alpha", "zeta"]
        assert fetched.notes == "n"
        assert fetched.created_at.tzinfo is not None
        assert fetched.vault_synced_at is None

    def test_fetch_missing(self, repository):
        assert repository.fetch_by_id(12345) is None

    def test_duplicate_url(self, repository, make_record):
        make_record(url="https://example.com/dup")
        with pytest.raises(ValidationError) as exc_info:
            make_record(url="https://example.com/dup")
        assert exc_info.value.code == ErrorCode.RECORD_ALREADY_EXISTS

    def test_fetch_all_newest_first(self, repository, make_record):
        first = make_record()
        second = make_record()
        assert [r.id for r in repository.fetch_all()] == [second.id, first.id]

    def test_fetch_unsynced(self, repository, make_record):
        synced = make_record()
        pending = make_record()
        repository.update_fields(synced.id, {"vault_synced_at": utc_now()})
        assert [r.id for r in repository.fetch_unsynced()] == [pending.id]

    def test_update_fields_bumps_updated_at(self, repository, make_record):
        record = make_record()
        time.sleep(0.01)
        assert repository.update_fields(record.id, {"is_read": True, "notes": "x"}) == 1
        updated = repository.fetch_by_id(record.id)
        assert updated.is_read is True
        assert updated.notes == "x"
        assert updated.updated_at > record.updated_at

    def test_update_tags(self, repository, make_record):
        record = make_record(tags=["a"])
        repository.update_fields(record.id, {"tags": ["b", "c"]})
        assert repository.fetch_by_id(record.id).tags == ["b", "c"]

    def test_update_missing_record(self, repository):
        assert repository.update_fields(999, {"is_read": True}) == 0

    def test_update_rejects_unknown_and_empty(self, repository, make_record):
        record = make_record()
        with pytest.raises(ValidationError):
            repository.update_fields(record.id, {"id": 5})
        with pytest.raises(ValidationError):
            repository.update_fields(record.id, {})

    def test_update_rejects_out_of_range_progress(self, repository, make_record):
        record = make_record()
        with pytest.raises(ValidationError):
            repository.update_fields(record.id, {"reading_progress": 1.5})
        assert repository.fetch_by_id(record.id).reading_progress == 0.0

    def test_delete(self, repository, make_record):
        record = make_record()
        repository.delete(record.id)
        assert repository.fetch_by_id(record.id) is None
        with pytest.raises(RecordNotFoundError):
            repository.delete(record.id)

    def test_highlights(self, repository, make_record):
        record = make_record()
        repository.add_highlight(Highlight(record_id=record.id, text="quoted", note="why"))
        highlights = repository.get_highlights(record.id)
        assert [(h.text, h.note) for h in highlights] == [("quoted", "why")]

        with pytest.raises(RecordNotFoundError):
            repository.add_highlight(Highlight(record_id=999, text="x"))

    def test_delete_cascades_highlights(self, repository, make_record):
        record = make_record()
        repository.add_highlight(Highlight(record_id=record.id, text="quoted"))
        repository.delete(record.id)
        assert repository.get_highlights(record.id) == []

    def test_tag_counts(self, repository, make_record):
        make_record(tags=["python", "ai"])
        make_record(tags=["python"])
        assert repository.get_tags() == {"ai": 1, "python": 2}

    def test_count(self, repository, make_record):
        assert repository.count() == 0
        make_record()
        assert repository.count() == 1

    @pytest.mark.parametrize(
        "call",
        [
            lambda repo: repo.fetch_all(),
            lambda repo: repo.fetch_by_id(1),
            lambda repo: repo.fetch_unsynced(),
            lambda repo: repo.get_highlights(1),
            lambda repo: repo.get_tags(),
        ],
    )
    def test_read_failures_raise_storage_error(self, repository, monkeypatch, call):
        def locked_session():
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(repository, "session_factory", locked_session)
        with pytest.raises(StorageError) as exc_info:
            call(repository)
        assert exc_info.value.code == ErrorCode.STORAGE_READ_FAILED
