"""Tests for vault file naming and folder layout."""
import datetime
from pathlib import Path

import pytest

from readlist_vault.models.schema import FolderLayout, Record, SyncConfig
from readlist_vault.vault.layout import (
    ensure_folder,
    file_name,
    folder_path,
    target_path,
)
from readlist_vault.vault.renderer import render


def _record(**overrides):
    fields = {
        "id": 1,
        "url": "https://example.com/a",
        "title": "A Title",
        "domain": "example.com",
        "created_at": datetime.datetime(2024, 3, 5, tzinfo=datetime.timezone.utc),
    }
    fields.update(overrides)
    return Record(**fields)


class TestFileName:
    def test_illegal_characters_removed(self):
        name = file_name("My: Cool/Title??")
        assert name == "My CoolTitle.md"
        assert not any(c in name[:-3] for c in '<>:"/\\|?*')

    def test_whitespace_collapsed(self):
        assert file_name("  lots   of\t\nspace  ") == "lots of space.md"

    def test_truncated_to_100(self):
        name = file_name("x" * 300)
        assert name == "x" * 100 + ".md"
        assert len(name) <= 103

    def test_untitled_fallback(self):
        assert file_name("") == "untitled.md"
        assert file_name("???") == "untitled.md"


class TestFolderPath:
    @pytest.fixture
    def config(self, tmp_path):
        return SyncConfig(vault_path=tmp_path)

    def test_by_date(self, config):
        assert folder_path(_record(), config) == Path("Reading List") / "2024" / "03"

    def test_by_domain(self, config):
        config.layout = FolderLayout.BY_DOMAIN
        assert folder_path(_record(), config) == Path("Reading List") / "example.com"

    def test_by_domain_without_domain(self, config):
        config.layout = FolderLayout.BY_DOMAIN
        assert folder_path(_record(domain=""), config) == Path("Reading List")
        assert folder_path(_record(domain=None), config) == Path("Reading List")

    def test_flat(self, config):
        config.layout = "flat"
        assert folder_path(_record(), config) == Path("Reading List")

    def test_empty_folder_is_vault_root(self, config):
        config.folder = ""
        config.layout = FolderLayout.FLAT
        assert folder_path(_record(), config) == Path()


def test_ensure_folder_is_idempotent(tmp_path):
    first = ensure_folder(tmp_path, Path("a") / "b")
    second = ensure_folder(tmp_path, Path("a") / "b")
    assert first == second == tmp_path / "a" / "b"
    assert first.is_dir()


class TestTargetPath:
    @pytest.fixture
    def config(self, tmp_path):
        return SyncConfig(vault_path=tmp_path, layout=FolderLayout.FLAT)

    def test_new_record(self, tmp_path, config):
        path = target_path(tmp_path, _record(), config)
        assert path == tmp_path / "Reading List" / "A Title.md"

    def test_existing_file_of_same_record_is_reused(self, tmp_path, config):
        record = _record()
        path = target_path(tmp_path, record, config)
        path.parent.mkdir(parents=True)
        path.write_text(render(record), encoding="utf-8")
        assert target_path(tmp_path, record, config) == path

    def test_collision_with_other_record_gets_suffix(self, tmp_path, config):
        other = _record(id=99, url="https://example.com/b")
        taken = target_path(tmp_path, other, config)
        taken.parent.mkdir(parents=True)
        taken.write_text(render(other), encoding="utf-8")

        path = target_path(tmp_path, _record(id=2), config)
        assert path == tmp_path / "Reading List" / "A Title (2).md"

    def test_collision_with_unmanaged_file_gets_suffix(self, tmp_path, config):
        taken = tmp_path / "Reading List" / "A Title.md"
        taken.parent.mkdir(parents=True)
        taken.write_text("# my own note", encoding="utf-8")
        assert target_path(tmp_path, _record(), config).name == "A Title (1).md"

    def test_previous_vault_path_is_kept(self, tmp_path, config):
        record = _record(vault_path="Old/Place.md")
        assert target_path(tmp_path, record, config) == tmp_path / "Old" / "Place.md"

    def test_vault_path_outside_vault_is_ignored(self, tmp_path, config):
        record = _record(vault_path="../escape.md")
        assert target_path(tmp_path, record, config) == (
            tmp_path / "Reading List" / "A Title.md"
        )
