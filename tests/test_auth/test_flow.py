"""Tests for the frob/token authorization handshake."""

from __future__ import annotations

import threading
from urllib.parse import parse_qsl, urlsplit

import pytest

from taskcred.auth.flow import AuthorizationFlow
from taskcred.auth.retry import RetryExecutor
from taskcred.auth.signing import sign_params
from taskcred.auth.stores import FileCredentialStore
from taskcred.exceptions import (
    OperationCancelled,
    RemoteAPIError,
    RetryExhaustedError,
    StorageError,
    TicketRejectedError,
)
from taskcred.models import Permission


@pytest.fixture
def store(tmp_path) -> FileCredentialStore:
    return FileCredentialStore(tmp_path / "cfg" / "rtm_token.json")


@pytest.fixture
def flow(client, store) -> AuthorizationFlow:
    return AuthorizationFlow(client, stores=[store], retry=RetryExecutor(max_attempts=3, base_delay=0))


class TestAuthorizationUrl:
    def test_url_is_signed_over_key_perms_frob(self, flow, settings):
        url = flow.build_authorization_url("frob123", Permission.WRITE)
        parts = urlsplit(url)
        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == settings.auth_url
        params = dict(parse_qsl(parts.query))
        assert set(params) == {"api_key", "perms", "frob", "api_sig"}
        assert params["perms"] == "write"
        expected = sign_params(
            settings.shared_secret,
            {"api_key": settings.api_key, "perms": "write", "frob": "frob123"},
        )
        assert params["api_sig"] == expected

    def test_accepts_permission_string(self, flow):
        assert "perms=read" in flow.build_authorization_url("f", "read")

    def test_unknown_permission_rejected(self, flow):
        with pytest.raises(ValueError):
            flow.build_authorization_url("f", "admin")


class TestRequestTicket:
    def test_ticket_recorded(self, flow):
        ticket = flow.request_ticket(Permission.DELETE)
        assert ticket.frob == "frob0001"
        assert ticket.permission == Permission.DELETE
        assert "frob=frob0001" in ticket.url
        assert flow.pending_tickets() == {"frob0001": Permission.DELETE}
        assert flow.permission_for("frob0001") == Permission.DELETE

    def test_transient_failure_retried(self, flow, fake_rtm):
        fake_rtm.fail_next = 2
        ticket = flow.request_ticket()
        assert ticket.frob
        assert fake_rtm.methods().count("rtm.auth.getFrob") == 3

    def test_exhausted_retries_record_nothing(self, flow, fake_rtm):
        fake_rtm.fail_next = 10
        with pytest.raises(RetryExhaustedError):
            flow.request_ticket()
        assert flow.pending_tickets() == {}

    def test_remote_refusal_not_retried(self, settings, fake_rtm, client, store):
        fake_rtm.api_key = "some-other-key"
        flow = AuthorizationFlow(client, stores=[store], retry=RetryExecutor(base_delay=0))
        with pytest.raises(RemoteAPIError):
            flow.request_ticket()
        assert len(fake_rtm.calls) == 1

    def test_cancelled(self, flow, fake_rtm):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(OperationCancelled):
            flow.request_ticket(cancel=cancel)
        assert fake_rtm.calls == []


class TestCompleteAuthorization:
    def test_success_installs_and_persists(self, flow, fake_rtm, client, store):
        ticket = flow.request_ticket()
        fake_rtm.approve(ticket.frob, "perm-token", "5", "dana")

        grant = flow.complete_authorization(ticket.frob)

        assert grant.token == "perm-token"
        assert client.auth_token == "perm-token"
        record = store.get_record()
        assert (record.token, record.user_id, record.username) == ("perm-token", "5", "dana")
        assert flow.pending_tickets() == {}

    def test_unapproved_frob_rejected_and_forgotten(self, flow, client, store):
        ticket = flow.request_ticket()
        with pytest.raises(TicketRejectedError):
            flow.complete_authorization(ticket.frob)
        assert flow.pending_tickets() == {}
        assert client.auth_token == ""
        assert store.load() == ""

    def test_transient_exhaustion_keeps_ticket(self, flow, fake_rtm):
        ticket = flow.request_ticket()
        fake_rtm.approve(ticket.frob, "tok")
        fake_rtm.fail_next = 10
        with pytest.raises(RetryExhaustedError):
            flow.complete_authorization(ticket.frob)
        assert ticket.frob in flow.pending_tickets()

        fake_rtm.fail_next = 0
        assert flow.complete_authorization(ticket.frob).token == "tok"

    def test_frob_from_another_process(self, flow, fake_rtm, client):
        fake_rtm.approve("external", "ext-token")
        assert flow.complete_authorization("external").token == "ext-token"
        assert client.auth_token == "ext-token"

    def test_storage_failure_still_authenticates(self, client, fake_rtm, tmp_path):
        class Broken(FileCredentialStore):
            def _write(self, record, cancel=None):
                raise StorageError("read-only")

        flow = AuthorizationFlow(
            client, stores=[Broken(tmp_path / "b" / "t.json")], retry=RetryExecutor(base_delay=0)
        )
        fake_rtm.approve("f", "tok")
        assert flow.complete_authorization("f").token == "tok"
        assert client.auth_token == "tok"

    def test_concurrent_tickets_tracked(self, flow):
        results = []

        def worker():
            results.append(flow.request_ticket().frob)

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert set(flow.pending_tickets()) == set(results)
        assert len(results) == 5
