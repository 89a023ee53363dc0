"""Tests for credential discovery and persistence."""

from __future__ import annotations

import logging
import threading
from pathlib import Path

import httpx
import pytest

from taskcred.auth.discovery import CredentialDiscovery, persist_credential, read_token_file
from taskcred.auth.stores import FileCredentialStore, SecureCredentialStore
from taskcred.client import ServiceClient
from taskcred.exceptions import CredentialNotFoundError, OperationCancelled, StorageError


ENV_VARS = ["RTM_AUTH_TOKEN", "RTM_TEST_TOKEN"]


@pytest.fixture
def paths(tmp_path: Path) -> list[Path]:
    return [tmp_path / "cwd" / "rtm_token.json", tmp_path / "home" / ".rtm_token.json"]


def _discovery(client, paths, environ=None, store=None) -> CredentialDiscovery:
    return CredentialDiscovery(
        client, env_vars=ENV_VARS, search_paths=paths, store=store, environ=environ or {}
    )


class TestReadTokenFile:
    def test_valid(self, tmp_path, write_token_file):
        path = write_token_file(tmp_path / "t.json", "abc")
        assert read_token_file(path) == "abc"

    def test_invalid_content(self, tmp_path):
        path = tmp_path / "t.json"
        path.write_text("{}")
        with pytest.raises(ValueError):
            read_token_file(path)


class TestSearchOrder:
    def test_nothing_found(self, client, paths, fake_rtm):
        with pytest.raises(CredentialNotFoundError):
            _discovery(client, paths).discover()
        assert fake_rtm.calls == []

    def test_env_var_wins_over_files(self, client, paths, fake_rtm, write_token_file):
        fake_rtm.add_token("env-tok", "1", "envuser")
        fake_rtm.add_token("file-tok", "2", "fileuser")
        write_token_file(paths[0], "file-tok")
        found = _discovery(client, paths, {"RTM_AUTH_TOKEN": "env-tok"}).discover()
        assert found.source == "env:RTM_AUTH_TOKEN"
        assert found.username == "envuser"
        assert client.auth_token == "env-tok"

    def test_env_vars_checked_in_order(self, client, paths, fake_rtm):
        fake_rtm.add_token("second")
        environ = {"RTM_AUTH_TOKEN": "stale", "RTM_TEST_TOKEN": "second"}
        found = _discovery(client, paths, environ).discover()
        assert found.source == "env:RTM_TEST_TOKEN"

    def test_blank_env_var_is_skipped(self, client, paths, fake_rtm):
        with pytest.raises(CredentialNotFoundError):
            _discovery(client, paths, {"RTM_AUTH_TOKEN": "   "}).discover()
        assert fake_rtm.calls == []

    def test_rejected_env_var_falls_through_to_file(self, client, paths, fake_rtm, write_token_file):
        fake_rtm.add_token("file-tok", "2", "fileuser")
        write_token_file(paths[1], "file-tok")
        found = _discovery(client, paths, {"RTM_AUTH_TOKEN": "stale"}).discover()
        assert found.source == f"file:{paths[1]}"
        assert found.token == "file-tok"
        assert fake_rtm.methods() == ["rtm.auth.checkToken", "rtm.auth.checkToken"]

    def test_store_checked_before_files(self, client, paths, fake_rtm, tmp_path, write_token_file):
        store = FileCredentialStore(tmp_path / "store" / "rtm_token.json")
        store.save("store-tok")
        fake_rtm.add_token("store-tok")
        fake_rtm.add_token("file-tok")
        write_token_file(paths[0], "file-tok")
        found = _discovery(client, paths, store=store).discover()
        assert found.source == "store:file"

    def test_file_order(self, client, paths, fake_rtm, write_token_file):
        fake_rtm.add_token("a")
        fake_rtm.add_token("b")
        write_token_file(paths[0], "a")
        write_token_file(paths[1], "b")
        assert _discovery(client, paths).discover().token == "a"

    def test_identity_comes_from_service(self, client, paths, fake_rtm, write_token_file):
        fake_rtm.add_token("tok", "99", "realname")
        write_token_file(paths[0], "tok", user_id="1", username="stale")
        found = _discovery(client, paths).discover()
        assert (found.user_id, found.username) == ("99", "realname")


class TestFailureHandling:
    def test_rejected_token_is_cleared(self, client, paths, write_token_file):
        write_token_file(paths[0], "bad")
        with pytest.raises(CredentialNotFoundError):
            _discovery(client, paths).discover()
        assert client.auth_token == ""

    def test_failed_check_keeps_previous_token(self, client, paths, write_token_file):
        client.set_auth_token("previous")
        write_token_file(paths[0], "bad")
        with pytest.raises(CredentialNotFoundError):
            _discovery(client, paths).discover()
        assert client.auth_token == "previous"

    def test_rejected_file_is_not_modified(self, client, paths, write_token_file):
        path = write_token_file(paths[0], "bad")
        before = path.read_text()
        with pytest.raises(CredentialNotFoundError):
            _discovery(client, paths).discover()
        assert path.read_text() == before

    def test_unreadable_file_is_skipped(self, client, paths, fake_rtm, write_token_file, caplog):
        caplog.set_level(logging.WARNING, logger="taskcred")
        paths[0].parent.mkdir(parents=True)
        paths[0].write_text("garbage")
        fake_rtm.add_token("good")
        write_token_file(paths[1], "good")
        assert _discovery(client, paths).discover().token == "good"
        assert paths[0].exists()
        assert "Skipping unreadable token file" in caplog.text

    def test_network_failure_moves_to_next_candidate(self, settings, paths, write_token_file):
        def handler(request):
            params = dict(request.url.params)
            if params.get("auth_token") == "unreachable":
                raise httpx.ConnectError("down", request=request)
            return httpx.Response(
                200,
                json={
                    "rsp": {
                        "stat": "ok",
                        "auth": {"token": params["auth_token"], "perms": "read", "user": {"id": "1"}},
                    }
                },
            )

        client = ServiceClient(settings, transport=httpx.MockTransport(handler))
        write_token_file(paths[1], "reachable")
        found = _discovery(client, paths, {"RTM_AUTH_TOKEN": "unreachable"}).discover()
        assert found.token == "reachable"

    def test_dropped_connection_is_not_fatal(self, settings, paths, fake_rtm, write_token_file):
        def handler(request):
            if request.url.params.get("auth_token") == "dropped":
                raise httpx.RemoteProtocolError("Server disconnected", request=request)
            return fake_rtm.handle(request)

        fake_rtm.add_token("reachable")
        client = ServiceClient(settings, transport=httpx.MockTransport(handler))
        write_token_file(paths[1], "reachable")
        environ = {"RTM_AUTH_TOKEN": "dropped"}
        assert _discovery(client, paths, environ).discover().token == "reachable"

        paths[1].unlink()
        with pytest.raises(CredentialNotFoundError):
            _discovery(client, paths, environ).discover()

    def test_cancellation_propagates(self, client, paths, write_token_file):
        write_token_file(paths[0], "tok")
        cancel = threading.Event()
        cancel.set()
        client.set_auth_token("previous")
        with pytest.raises(OperationCancelled):
            _discovery(client, paths).discover(cancel=cancel)
        assert client.auth_token == "previous"


    def test_cancelled_store_read_propagates(self, client, paths, memory_keyring):
        store = SecureCredentialStore(backend=memory_keyring)
        store.save("tok")
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(OperationCancelled):
            _discovery(client, paths, store=store).discover(cancel=cancel)

    def test_hanging_store_is_skipped(self, client, paths, fake_rtm, broken_keyring, write_token_file):
        release = threading.Event()
        store = SecureCredentialStore(backend=broken_keyring(block=release), probe_timeout=0.1)
        fake_rtm.add_token("file-tok")
        write_token_file(paths[0], "file-tok")
        try:
            found = _discovery(client, paths, store=store).discover()
        finally:
            release.set()
        assert found.source == f"file:{paths[0]}"


class _FailingStore(FileCredentialStore):
    def _write(self, record, cancel=None):
        raise StorageError("disk full")


class TestPersistCredential:
    def test_writes_every_store(self, tmp_path):
        a = FileCredentialStore(tmp_path / "a" / "t.json")
        b = FileCredentialStore(tmp_path / "b" / "t.json")
        assert persist_credential([a, b], "tok", "1", "alice") == 2
        assert a.load() == b.load() == "tok"

    def test_one_failure_does_not_stop_others(self, tmp_path, caplog):
        caplog.set_level(logging.ERROR, logger="taskcred")
        bad = _FailingStore(tmp_path / "bad" / "t.json")
        good = FileCredentialStore(tmp_path / "good" / "t.json")
        assert persist_credential([bad, good], "tok") == 1
        assert good.load() == "tok"
        assert "disk full" in caplog.text

    def test_all_failing_warns(self, tmp_path, caplog):
        caplog.set_level(logging.WARNING, logger="taskcred")
        bad = _FailingStore(tmp_path / "bad" / "t.json")
        assert persist_credential([bad], "tok") == 0
        assert "only be used for this session" in caplog.text

    def test_no_stores(self):
        assert persist_credential([], "tok") == 0
