"""Tests for FileCredentialStore."""

from __future__ import annotations

import json
import stat
from pathlib import Path

import pytest

from taskcred.auth.stores import FileCredentialStore
from taskcred.exceptions import ConfigError, CorruptCredentialError
from taskcred.models import Credential


@pytest.fixture
def store(tmp_path: Path) -> FileCredentialStore:
    return FileCredentialStore(tmp_path / "cfg" / "rtm_token.json")


class TestConstruction:
    def test_creates_owner_only_directory(self, tmp_path: Path):
        store = FileCredentialStore(tmp_path / "nested" / "dir" / "token.json")
        directory = store.path.parent
        assert directory.is_dir()
        assert stat.S_IMODE(directory.stat().st_mode) & 0o077 == 0

    def test_unusable_directory_raises_config_error(self, tmp_path: Path):
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not dir")
        with pytest.raises(ConfigError, match="Cannot create credential directory"):
            FileCredentialStore(blocker / "token.json")

    def test_name_and_description(self, store: FileCredentialStore):
        assert store.name == "file"
        assert store.description == str(store.path)
        assert "FileCredentialStore" in repr(store)

    def test_is_available(self, store: FileCredentialStore):
        assert store.is_available() is True


class TestSaveLoad:
    def test_empty_store_loads_nothing(self, store: FileCredentialStore):
        assert store.load() == ""
        assert store.get_record() is None

    def test_save_then_load(self, store: FileCredentialStore):
        record = store.save("tok123", "42", "alice")
        assert store.load() == "tok123"
        assert record.user_id == "42"
        assert store.get_record() == record

    def test_file_is_owner_only(self, store: FileCredentialStore):
        store.save("tok123")
        assert stat.S_IMODE(store.path.stat().st_mode) == 0o600

    def test_wire_format(self, store: FileCredentialStore):
        store.save("tok123", "42", "alice")
        data = json.loads(store.path.read_text())
        assert set(data) == {"token", "userID", "username", "createdAt", "updatedAt"}
        assert data["createdAt"].endswith("Z")

    def test_save_overwrites(self, store: FileCredentialStore):
        store.save("first")
        store.save("second", "7", "bob")
        assert store.load() == "second"
        assert store.get_record().username == "bob"

    def test_empty_token_rejected(self, store: FileCredentialStore):
        with pytest.raises(ValueError):
            store.save("")
        assert not store.path.exists()

    def test_no_temp_files_left(self, store: FileCredentialStore):
        store.save("tok")
        assert [p.name for p in store.path.parent.iterdir()] == ["rtm_token.json"]


class TestUpdate:
    def test_update_preserves_created_at(self, store: FileCredentialStore):
        old = Credential(
            token="old",
            created_at="2020-01-01T00:00:00Z",
            updated_at="2020-01-02T00:00:00Z",
        )
        store.path.write_text(old.to_json())

        updated = store.update("new", "1", "alice")
        assert updated.token == "new"
        assert updated.created_at == old.created_at
        assert updated.updated_at > old.updated_at
        assert store.get_record() == updated

    def test_update_without_record_saves(self, store: FileCredentialStore):
        record = store.update("fresh")
        assert record.created_at == record.updated_at
        assert store.load() == "fresh"

    def test_update_over_corrupt_record_saves(self, store: FileCredentialStore):
        store.path.write_text("garbage")
        assert store.update("fresh").token == "fresh"
        assert store.load() == "fresh"


class TestCorruption:
    @pytest.mark.parametrize(
        "content",
        ["not json", "[]", json.dumps({"token": ""}), json.dumps({"userID": "1"})],
    )
    def test_corrupt_record_is_purged(self, store: FileCredentialStore, content: str):
        store.path.write_text(content)
        with pytest.raises(CorruptCredentialError):
            store.get_record()
        assert not store.path.exists()
        assert store.load() == ""

    def test_timestamps_out_of_order_are_corrupt(self, store: FileCredentialStore):
        store.path.write_text(
            json.dumps(
                {
                    "token": "t",
                    "createdAt": "2024-05-02T00:00:00Z",
                    "updatedAt": "2024-05-01T00:00:00Z",
                }
            )
        )
        with pytest.raises(CorruptCredentialError):
            store.load()


class TestDelete:
    def test_delete_removes_record(self, store: FileCredentialStore):
        store.save("tok")
        store.delete()
        assert store.load() == ""

    def test_delete_is_idempotent(self, store: FileCredentialStore):
        store.delete()
        store.delete()
        assert not store.path.exists()
