"""Credential store backed by the OS secret service.

Uses the :mod:`keyring` library to keep the credential record in the
platform credential manager (macOS Keychain, GNOME Keyring / KWallet via
Secret Service, Windows Credential Locker). The record is stored as the
JSON form of :class:`~taskcred.models.Credential` under a single
``(service, account)`` pair.

Secret services can be slow, locked, or waiting on a user prompt, so:

* Every backend call runs in a worker thread bounded by ``probe_timeout``
  and honours an optional cancellation event. A call that runs out of time
  raises :class:`~taskcred.exceptions.StoreUnavailableError`.
* :meth:`SecureCredentialStore.is_available` runs a disposable
  set/get/delete cycle and treats every failure as *unavailable* rather than
  raising.
* Writes are retried by a :class:`~taskcred.auth.retry.RetryExecutor`
  (3 attempts, linear back-off by default).
* A stored value that fails to parse is deleted before
  :class:`~taskcred.exceptions.CorruptCredentialError` is raised, so the next
  read starts clean.
"""

from __future__ import annotations

import concurrent.futures
import json
import logging
import secrets
import threading
import time
from typing import Any, Callable, Optional, TypeVar

import keyring
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, KeyringLocked, NoKeyringError, PasswordDeleteError
from pydantic import ValidationError

from taskcred.auth.retry import RetryExecutor
from taskcred.auth.stores.base import CredentialStore
from taskcred.exceptions import (
    CorruptCredentialError,
    OperationCancelled,
    StorageError,
    StoreUnavailableError,
)
from taskcred.models import Credential, RetryStrategy

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SERVICE = "taskcred"
DEFAULT_ACCOUNT = "rtm-auth-token"
PROBE_ACCOUNT_SUFFIX = ".probe"

# How often a waiting caller re-checks its cancellation event.
_POLL_INTERVAL = 0.05


class SecureCredentialStore(CredentialStore):
    """Keyring-backed credential store.

    Args:
        service: Keyring service name.
        account: Keyring account (user name) under which the record lives.
        backend: Explicit :class:`keyring.backend.KeyringBackend`. Defaults
            to whatever :func:`keyring.get_keyring` resolves.
        probe_timeout: Seconds allowed for any single backend call,
            including the availability probe.
        retry: Executor used to retry writes.
    """

    def __init__(
        self,
        service: str = DEFAULT_SERVICE,
        account: str = DEFAULT_ACCOUNT,
        backend: Optional[KeyringBackend] = None,
        probe_timeout: float = 5.0,
        retry: Optional[RetryExecutor] = None,
    ) -> None:
        self._service = service
        self._account = account
        self._backend = backend
        self._probe_timeout = probe_timeout
        self._retry = retry or RetryExecutor(
            max_attempts=3, base_delay=0.5, strategy=RetryStrategy.LINEAR
        )

    @property
    def name(self) -> str:
        return "keyring"

    @property
    def description(self) -> str:
        return f"{self._service}/{self._account} in {type(self.backend).__name__}"

    @property
    def backend(self) -> KeyringBackend:
        """The keyring backend in use."""
        if self._backend is None:
            self._backend = keyring.get_keyring()
        return self._backend

    @property
    def service(self) -> str:
        return self._service

    @property
    def account(self) -> str:
        return self._account

    # ------------------------------------------------------------------ #
    # Bounded backend access
    # ------------------------------------------------------------------ #

    def call_backend(
        self,
        operation: str,
        fn: Callable[..., T],
        *args: Any,
        cancel: Optional[threading.Event] = None,
    ) -> T:
        """Run ``fn(*args)`` in a worker thread and wait at most ``probe_timeout``.

        Exceptions raised by *fn* propagate unchanged. A worker that is still
        blocked when the caller gives up is abandoned, not joined.

        Raises:
            OperationCancelled: If *cancel* is set while waiting.
            StoreUnavailableError: If the call does not finish in time.
        """
        pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="keyring"
        )
        try:
            future = pool.submit(fn, *args)
            deadline = time.monotonic() + self._probe_timeout
            while True:
                if cancel is not None and cancel.is_set():
                    raise OperationCancelled(f"keyring {operation} cancelled")
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise StoreUnavailableError(
                        f"keyring {operation} timed out after {self._probe_timeout:.1f}s "
                        "(a system prompt may be waiting)"
                    )
                done, _ = concurrent.futures.wait(
                    [future], timeout=min(remaining, _POLL_INTERVAL)
                )
                if done:
                    return future.result()
        finally:
            pool.shutdown(wait=False)

    # ------------------------------------------------------------------ #
    # Availability
    # ------------------------------------------------------------------ #

    def is_available(self) -> bool:
        """Run a bounded, disposable set/get/delete cycle against the keyring.

        Returns:
            ``True`` when the cycle completes and the value reads back intact.
            ``False`` when the keyring is missing, locked, times out, or fails
            in any other way. Never raises.
        """
        try:
            return self.call_backend("probe", self._probe_cycle)
        except StoreUnavailableError as exc:
            logger.warning("Keyring probe failed: %s", exc)
        except KeyringLocked:
            logger.info("Keyring is locked; treating it as unavailable")
        except NoKeyringError:
            logger.info("No keyring backend is available")
        except KeyringError as exc:
            logger.info("Keyring probe failed: %s", exc)
        except Exception as exc:
            logger.warning("Unexpected keyring probe failure: %s", exc, exc_info=True)
        return False

    def _probe_cycle(self) -> bool:
        account = self._account + PROBE_ACCOUNT_SUFFIX
        value = f"probe-{secrets.token_hex(8)}"
        backend = self.backend
        backend.set_password(self._service, account, value)
        try:
            read_back = backend.get_password(self._service, account)
        finally:
            try:
                backend.delete_password(self._service, account)
            except PasswordDeleteError:
                pass
        if read_back != value:
            logger.info("Keyring probe read back a different value; treating it as unavailable")
            return False
        return True

    # ------------------------------------------------------------------ #
    # CredentialStore implementation
    # ------------------------------------------------------------------ #

    def _write(self, record: Credential, cancel: Optional[threading.Event] = None) -> Credential:
        payload = record.model_dump_json(by_alias=True)

        def _set() -> None:
            self.call_backend(
                "set", self.backend.set_password, self._service, self._account, payload,
                cancel=cancel,
            )

        self._retry.run("keyring.set_password", _set, cancel=cancel, retry_on=(KeyringError,))
        logger.debug("Saved credential for %r to keyring %s", record.username, self._service)
        return record

    def get_record(self, cancel: Optional[threading.Event] = None) -> Optional[Credential]:
        try:
            raw = self.call_backend(
                "get", self.backend.get_password, self._service, self._account, cancel=cancel
            )
        except KeyringError as exc:
            raise StoreUnavailableError(f"Cannot read from keyring: {exc}") from exc
        if raw is None:
            return None

        try:
            return Credential.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError, TypeError) as exc:
            logger.warning(
                "Keyring entry %s/%s is corrupted; purging it", self._service, self._account
            )
            self._purge()
            raise CorruptCredentialError(
                f"Corrupted keyring entry {self._service}/{self._account} was removed: {exc}"
            ) from exc

    def delete(self, cancel: Optional[threading.Event] = None) -> None:
        try:
            self.call_backend(
                "delete", self.backend.delete_password, self._service, self._account, cancel=cancel
            )
        except PasswordDeleteError:
            logger.debug("No keyring entry to delete for %s/%s", self._service, self._account)
        except KeyringError as exc:
            raise StorageError(f"Cannot delete keyring entry: {exc}") from exc

    def _purge(self) -> None:
        try:
            self.delete()
        except StorageError:
            logger.error("Could not purge corrupted keyring entry", exc_info=True)
