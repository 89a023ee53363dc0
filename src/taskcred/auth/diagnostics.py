"""Operator diagnostics for the keyring and the RTM connection.

:func:`run_self_test` writes a throwaway value to the keyring, reads it back,
and deletes it, recording each step as a
:class:`~taskcred.models.StoreProbeResult`. Every backend call goes through
:meth:`~taskcred.auth.stores.secure_store.SecureCredentialStore.call_backend`,
so a keyring waiting on a prompt cannot hang the command. The real credential
entry is never touched. :func:`diagnostic_advice` turns the results into
platform-specific hints for ``taskcred auth diagnose``.

:func:`run_connectivity_check` walks the network path step by step: internet
reachability, the REST endpoint, an ``rtm.test.echo`` call that exercises the
API key and shared secret, and finally the credential itself. A failed step
stops the later ones, since they could only fail for the same reason.
"""

from __future__ import annotations

import logging
import platform
import secrets
import threading
import time
from collections.abc import Sequence
from typing import TYPE_CHECKING, Callable, Optional, Union

from keyring.errors import KeyringError

from taskcred.auth.stores.secure_store import PROBE_ACCOUNT_SUFFIX, SecureCredentialStore
from taskcred.exceptions import (
    CredentialNotFoundError,
    OperationCancelled,
    StoreUnavailableError,
    TaskcredError,
)
from taskcred.models import DiagnosticResult, StoreProbeResult

if TYPE_CHECKING:
    from taskcred.auth.discovery import CredentialDiscovery
    from taskcred.client import ServiceClient

logger = logging.getLogger(__name__)

SELF_TEST_SUFFIX = ".selftest"
ECHO_METHOD = "rtm.test.echo"
ECHO_PARAM = "test_param"
ECHO_VALUE = "taskcred_echo"

STEP_INTERNET = "internet"
STEP_ENDPOINT = "rtm_endpoint"
STEP_ECHO = "api_echo"
STEP_AUTH = "authentication"

_BACKEND_ERRORS = (KeyringError, OSError, StoreUnavailableError)


def _error_text(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


def run_self_test(
    store: SecureCredentialStore, cancel: Optional[threading.Event] = None
) -> list[StoreProbeResult]:
    """Run a set/get/delete cycle against *store*'s keyring backend.

    Every step is attempted even when an earlier one fails, so the operator
    sees the full picture. Each step is bounded by the store's timeout.

    Returns:
        Results for ``set``, ``get``, ``get_value_match`` and ``delete``.

    Raises:
        OperationCancelled: If *cancel* is set while a step is waiting.
    """
    backend = store.backend
    service = store.service
    account = store.account + PROBE_ACCOUNT_SUFFIX + SELF_TEST_SUFFIX
    value = f"selftest-{secrets.token_hex(8)}"
    results: list[StoreProbeResult] = []

    try:
        store.call_backend("set", backend.set_password, service, account, value, cancel=cancel)
    except _BACKEND_ERRORS as exc:
        results.append(StoreProbeResult(operation="set", success=False, error=_error_text(exc)))
    else:
        results.append(StoreProbeResult(operation="set", success=True))

    read_back = None
    try:
        read_back = store.call_backend(
            "get", backend.get_password, service, account, cancel=cancel
        )
    except _BACKEND_ERRORS as exc:
        results.append(StoreProbeResult(operation="get", success=False, error=_error_text(exc)))
    else:
        results.append(
            StoreProbeResult(
                operation="get",
                success=read_back is not None,
                error=None if read_back is not None else "value not found",
                value=read_back,
            )
        )
    results.append(
        StoreProbeResult(
            operation="get_value_match",
            success=read_back == value,
            error=None if read_back == value else "read value differs from written value",
        )
    )

    try:
        store.call_backend("delete", backend.delete_password, service, account, cancel=cancel)
    except _BACKEND_ERRORS as exc:
        results.append(
            StoreProbeResult(operation="delete", success=False, error=_error_text(exc))
        )
    else:
        results.append(StoreProbeResult(operation="delete", success=True))

    for result in results:
        logger.debug("keyring self test %s: %s", result.operation, result.success)
    return results


# --------------------------------------------------------------------------- #
# Connectivity
# --------------------------------------------------------------------------- #


def _run_step(
    name: str,
    check: Callable[[], tuple[bool, str]],
    failure: str,
) -> DiagnosticResult:
    started = time.monotonic()
    try:
        success, description = check()
        error = None
    except OperationCancelled:
        raise
    except TaskcredError as exc:
        success, description, error = False, failure, _error_text(exc)
    result = DiagnosticResult(
        name=name,
        success=success,
        description=description,
        error=error,
        duration_ms=int((time.monotonic() - started) * 1000),
    )
    if result.success:
        logger.info("Diagnostic %s: OK (%s)", name, description)
    else:
        logger.warning("Diagnostic %s: FAIL (%s) %s", name, description, error or "")
    return result


def run_connectivity_check(
    client: ServiceClient,
    discovery: Optional[CredentialDiscovery] = None,
    internet_url: Optional[str] = None,
    cancel: Optional[threading.Event] = None,
) -> list[DiagnosticResult]:
    """Check each hop between this process and an authenticated RTM session.

    Steps, in order: ``internet`` (HEAD *internet_url*), ``rtm_endpoint``
    (HEAD the REST endpoint; any HTTP status proves reachability),
    ``api_echo`` (signed ``rtm.test.echo``) and ``authentication``. The
    first three stop the run when they fail.

    Args:
        client: Client whose settings and installed token are checked.
        discovery: When given, the authentication step runs discovery
            instead of re-checking the token already on *client*.
        internet_url: Reachability target. Defaults to
            ``settings.internet_check_url``.
        cancel: Optional cancellation event.

    Raises:
        OperationCancelled: If *cancel* fires during a step.
    """
    url = internet_url or client.settings.internet_check_url
    results: list[DiagnosticResult] = []

    def _internet() -> tuple[bool, str]:
        status = client.head(url, cancel=cancel)
        if status >= 400:
            return False, f"{url} answered HTTP {status}"
        return True, f"Connected to {url}"

    def _endpoint() -> tuple[bool, str]:
        status = client.head(cancel=cancel)
        return True, f"Endpoint reachable (HTTP {status})"

    def _echo() -> tuple[bool, str]:
        rsp = client.call(ECHO_METHOD, {ECHO_PARAM: ECHO_VALUE}, cancel=cancel)
        if rsp.get(ECHO_PARAM) != ECHO_VALUE:
            return False, "Unexpected echo response"
        return True, "API key and shared secret accepted"

    def _auth() -> tuple[bool, str]:
        if discovery is not None:
            try:
                found = discovery.discover(cancel=cancel)
            except CredentialNotFoundError:
                return False, "Not currently authenticated"
            return True, f"Authenticated as {found.username!r} via {found.source}"
        if not client.is_authenticated:
            return False, "Not currently authenticated"
        grant = client.check_token(cancel=cancel)
        return True, f"Authenticated as {grant.user.username!r}"

    gated = [
        (STEP_INTERNET, _internet, "Internet is not reachable"),
        (STEP_ENDPOINT, _endpoint, "RTM endpoint is not reachable"),
        (STEP_ECHO, _echo, "API key or shared secret was rejected"),
    ]
    for name, check, failure in gated:
        result = _run_step(name, check, failure)
        results.append(result)
        if not result.success:
            return results

    results.append(_run_step(STEP_AUTH, _auth, "Could not check authentication"))
    return results


def all_passed(results: Sequence[Union[StoreProbeResult, DiagnosticResult]]) -> bool:
    return bool(results) and all(r.success for r in results)


def diagnostic_advice(results: list[StoreProbeResult], system: str | None = None) -> str:
    """Return troubleshooting text for the given self-test results."""
    if all_passed(results):
        return "The keyring is working. Credentials will be stored securely."

    system = system or platform.system()
    lines = ["The keyring is not fully usable; taskcred will fall back to a file store."]
    if system == "Darwin":
        lines += [
            "- Open Keychain Access and make sure the login keychain is unlocked.",
            "- If a permission prompt appeared, choose 'Always Allow' for this program.",
            "- Remove stale 'taskcred' entries from the login keychain and retry.",
        ]
    elif system == "Linux":
        lines += [
            "- Make sure a Secret Service provider (GNOME Keyring or KWallet) is running.",
            "- Over SSH or in containers, start a D-Bus session or set TASKCRED_NO_KEYRING=1.",
            "- Run 'keyring --list-backends' to see which backends are installed.",
        ]
    elif system == "Windows":
        lines += [
            "- Check that Windows Credential Manager is accessible for this user.",
        ]
    lines.append("- Alternatively export RTM_AUTH_TOKEN to supply the token directly.")
    return "\n".join(lines)
