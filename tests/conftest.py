"""Shared test fixtures for taskcred.

Provides reusable fixtures for isolated config environments, in-memory
keyring backends, a fake Remember The Milk endpoint, output state and CLI
invocation. These fixtures are automatically discovered by pytest and
available to all test modules without explicit imports.

No test touches the real OS keyring or the network.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import parse_qsl, urlsplit

import httpx
import keyring
import pytest
from keyring.backend import KeyringBackend
from keyring.errors import KeyringLocked, PasswordDeleteError

from taskcred.auth.signing import sign_params
from taskcred.client import ServiceClient
from taskcred.models import Credential, RetrySettings, Settings
from taskcred.output import reset_output


API_KEY = "test-api-key"
SHARED_SECRET = "BANANAS"


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time.  When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale.
    Resetting forces a fresh manager to be created on next use.
    """
    yield
    reset_output()


@pytest.fixture(autouse=True)
def _reset_cli_logging() -> None:
    """Drop the Rich handler the CLI callback attaches to the ``taskcred`` logger."""
    yield
    logger = logging.getLogger("taskcred")
    for handler in list(logger.handlers):
        if getattr(handler, "_taskcred_cli", False):
            logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration and home directory to a temporary directory.

    Sets HOME, XDG_CONFIG_HOME and XDG_DATA_HOME under tmp_path so that
    tests never touch real user files, clears all RTM_* and TASKCRED_*
    environment variables, and changes the working directory to
    ``tmp_path / "work"``.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    home = tmp_path / "home"
    work = tmp_path / "work"
    home.mkdir()
    work.mkdir()

    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))

    for var in [
        "RTM_AUTH_TOKEN",
        "RTM_TEST_TOKEN",
        "RTM_API_KEY",
        "RTM_SHARED_SECRET",
        "TASKCRED_API_KEY",
        "TASKCRED_SHARED_SECRET",
        "TASKCRED_BASE_URL",
        "TASKCRED_PERMISSION",
        "TASKCRED_NO_KEYRING",
    ]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(work)
    return tmp_path


@pytest.fixture
def settings() -> Settings:
    """Settings with test credentials and instant retries."""
    return Settings(
        api_key=API_KEY,
        shared_secret=SHARED_SECRET,
        retry=RetrySettings(max_attempts=3, base_delay=0.0),
        probe_timeout=2.0,
    )


# ---------------------------------------------------------------------------
# Keyring backends
# ---------------------------------------------------------------------------


class MemoryKeyring(KeyringBackend):
    """Dict-backed keyring used in place of the OS secret service."""

    priority = 1  # type: ignore[assignment]

    def __init__(self) -> None:
        super().__init__()
        self.entries: dict[tuple[str, str], str] = {}
        self.set_calls = 0
        self.fail_sets = 0

    def get_password(self, service: str, username: str) -> Optional[str]:
        return self.entries.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self.set_calls += 1
        if self.fail_sets > 0:
            self.fail_sets -= 1
            raise KeyringLocked("keyring is busy")
        self.entries[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        try:
            del self.entries[(service, username)]
        except KeyError:
            raise PasswordDeleteError("not found") from None


class BrokenKeyring(KeyringBackend):
    """Keyring whose every call raises *error*, or blocks until released."""

    priority = 1  # type: ignore[assignment]

    def __init__(self, error: Optional[Exception] = None, block: Optional[threading.Event] = None):
        super().__init__()
        self.error = error
        self.block = block

    def _fail(self) -> None:
        if self.block is not None:
            self.block.wait(10)
        if self.error is not None:
            raise self.error

    def get_password(self, service: str, username: str) -> Optional[str]:
        self._fail()
        return None

    def set_password(self, service: str, username: str, password: str) -> None:
        self._fail()

    def delete_password(self, service: str, username: str) -> None:
        self._fail()


@pytest.fixture
def memory_keyring() -> MemoryKeyring:
    return MemoryKeyring()


@pytest.fixture
def broken_keyring() -> Callable[..., BrokenKeyring]:
    """Factory for failing keyrings, e.g. ``broken_keyring(NoKeyringError())``."""
    return BrokenKeyring


@pytest.fixture
def global_memory_keyring(memory_keyring: MemoryKeyring) -> MemoryKeyring:
    """Install a MemoryKeyring as the process-wide keyring for CLI tests."""
    previous = keyring.get_keyring()
    keyring.set_keyring(memory_keyring)
    yield memory_keyring
    keyring.set_keyring(previous)


# ---------------------------------------------------------------------------
# Fake Remember The Milk endpoint
# ---------------------------------------------------------------------------


class FakeRTM:
    """In-process emulation of the RTM auth methods behind httpx.MockTransport.

    Every request's ``api_sig`` is recomputed and a mismatch is answered with
    error 96, exactly as the real service does.

    Attributes:
        tokens: token -> (user_id, username) accepted by checkToken.
        frobs: frob -> token once approved; ``None`` while pending.
        calls: (method, params) for every request received.
        fail_next: number of upcoming requests answered with HTTP 503.
        auto_approve: when set, every new frob is approved for this token,
            as if the user clicked through the browser page instantly.
        unreachable: hosts whose requests fail with a connection error.
        heads: URLs of HEAD requests, which are answered 200 and not
            recorded in ``calls``.
    """

    def __init__(self, api_key: str = API_KEY, secret: str = SHARED_SECRET) -> None:
        self.api_key = api_key
        self.secret = secret
        self.tokens: dict[str, tuple[str, str]] = {}
        self.frobs: dict[str, Optional[str]] = {}
        self.calls: list[tuple[str, dict[str, str]]] = []
        self.fail_next = 0
        self.auto_approve: Optional[str] = None
        self.unreachable: set[str] = set()
        self.heads: list[str] = []
        self._frob_counter = 0
        self._lock = threading.Lock()
        self.transport = httpx.MockTransport(self.handle)

    # -- test helpers -----------------------------------------------------

    def add_token(self, token: str, user_id: str = "1", username: str = "alice") -> None:
        self.tokens[token] = (user_id, username)

    def approve(self, frob: str, token: str, user_id: str = "1", username: str = "alice") -> None:
        self.frobs[frob] = token
        self.add_token(token, user_id, username)

    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]

    # -- transport --------------------------------------------------------

    @staticmethod
    def _ok(payload: dict[str, Any]) -> httpx.Response:
        return httpx.Response(200, json={"rsp": {"stat": "ok", **payload}})

    @staticmethod
    def _fail(code: str, msg: str) -> httpx.Response:
        return httpx.Response(200, json={"rsp": {"stat": "fail", "err": {"code": code, "msg": msg}}})

    def _auth_block(self, token: str) -> dict[str, Any]:
        user_id, username = self.tokens[token]
        return {
            "auth": {
                "token": token,
                "perms": "delete",
                "user": {"id": user_id, "username": username, "fullname": username.title()},
            }
        }

    def handle(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            return self._handle(request)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        if request.url.host in self.unreachable:
            raise httpx.ConnectError("unreachable", request=request)
        if request.method == "HEAD":
            self.heads.append(str(request.url))
            return httpx.Response(200)

        params = dict(parse_qsl(urlsplit(str(request.url)).query))
        method = params.get("method", "")
        self.calls.append((method, dict(params)))

        if self.fail_next > 0:
            self.fail_next -= 1
            return httpx.Response(503, text="Service Unavailable")

        if params.get("api_key") != self.api_key:
            return self._fail("100", "Invalid API Key")
        sig = params.pop("api_sig", "")
        if sig != sign_params(self.secret, params):
            return self._fail("96", "Invalid signature")

        if method == "rtm.auth.checkToken":
            token = params.get("auth_token", "")
            if token not in self.tokens:
                return self._fail("98", "Login failed / Invalid auth token")
            return self._ok(self._auth_block(token))

        if method == "rtm.auth.getFrob":
            self._frob_counter += 1
            frob = f"frob{self._frob_counter:04d}"
            self.frobs[frob] = self.auto_approve
            if self.auto_approve:
                self.tokens.setdefault(self.auto_approve, ("1", "alice"))
            return self._ok({"frob": frob})

        if method == "rtm.auth.getToken":
            if "auth_token" in params:
                return self._fail("96", "auth_token not allowed here")
            token = self.frobs.get(params.get("frob", ""))
            if token is None:
                return self._fail("101", "Invalid frob - did you authenticate?")
            return self._ok(self._auth_block(token))

        if method == "rtm.test.echo":
            return self._ok(params)

        return self._fail("112", f"Method \"{method}\" not found")


@pytest.fixture
def fake_rtm() -> FakeRTM:
    return FakeRTM()


@pytest.fixture
def client(settings: Settings, fake_rtm: FakeRTM) -> ServiceClient:
    """ServiceClient wired to the fake RTM endpoint."""
    svc = ServiceClient(settings, transport=fake_rtm.transport)
    yield svc
    svc.close()


@pytest.fixture
def write_token_file() -> Callable[..., Path]:
    """Write a credential JSON record to *path* and return the path."""

    def _write(path: Path, token: str, user_id: str = "1", username: str = "alice") -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        record = Credential.issue(token, user_id, username)
        path.write_text(record.to_json(), encoding="utf-8")
        return path

    return _write


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
