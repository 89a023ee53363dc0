"""Credential discovery: find an existing token and prove it works.

Nothing found in the environment or on disk is trusted until the remote
service confirms it. :class:`CredentialDiscovery` walks the candidate
sources in a fixed order and, for each one, installs the token on the shared
:class:`~taskcred.client.ServiceClient`, calls ``rtm.auth.checkToken``, and
either returns the verified credential or clears the token and moves on.

Search order (first verified candidate wins):

1. Environment variables, in configured order (``RTM_AUTH_TOKEN``,
   ``RTM_TEST_TOKEN``).
2. The selected credential store, when one is given.
3. Token files: working-directory names, then home-directory variants, then
   ``~/.config/<app>/rtm_token.json``.

The order lets an operator override a stale file with an environment
variable without deleting anything. A failed check never modifies any
stored credential.

:func:`persist_credential` writes a verified credential to every configured
store independently.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from pydantic import ValidationError

from taskcred.auth.stores.base import CredentialStore
from taskcred.exceptions import (
    AuthError,
    ConnectionError_,
    CredentialNotFoundError,
    OperationCancelled,
    RemoteAPIError,
    ServerError,
    TaskcredError,
)
from taskcred.models import AuthGrant, Credential

if TYPE_CHECKING:
    from taskcred.client import ServiceClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscoveredCredential:
    """A token that passed remote verification, and where it came from."""

    token: str
    username: str
    user_id: str
    source: str


def read_token_file(path: Path) -> str:
    """Return the token stored in a JSON credential file.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the content is not a valid credential record.
    """
    text = path.read_text(encoding="utf-8")
    try:
        return Credential.model_validate(json.loads(text)).token
    except (json.JSONDecodeError, ValidationError, TypeError) as exc:
        raise ValueError(f"not a valid credential record: {exc}") from exc


class CredentialDiscovery:
    """Locate and verify an existing RTM credential.

    Args:
        client: Shared client. A verified token is left installed on it; a
            rejected one is cleared.
        env_vars: Environment variable names, highest precedence first.
        search_paths: Token file paths, highest precedence first.
        store: Optional selected store, consulted between environment
            variables and files.
        environ: Mapping to read variables from (defaults to ``os.environ``).
    """

    def __init__(
        self,
        client: ServiceClient,
        env_vars: Sequence[str],
        search_paths: Sequence[Path],
        store: Optional[CredentialStore] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._client = client
        self._env_vars = list(env_vars)
        self._search_paths = [Path(p) for p in search_paths]
        self._store = store
        self._environ = environ if environ is not None else os.environ

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    def discover(self, cancel: Optional[threading.Event] = None) -> DiscoveredCredential:
        """Return the first candidate the remote service accepts.

        Raises:
            CredentialNotFoundError: If no candidate verifies.
            OperationCancelled: If *cancel* is set during a check or a store read.
            ConfigError: If the client has no API key or shared secret.
        """
        for source, token in self._candidates(cancel):
            found = self._verify(source, token, cancel)
            if found is not None:
                return found

        raise CredentialNotFoundError(
            "No valid RTM credential found in environment variables, the credential store, "
            "or token files"
        )

    def _candidates(self, cancel: Optional[threading.Event]) -> Iterable[tuple[str, str]]:
        for name in self._env_vars:
            value = self._environ.get(name, "").strip()
            if value:
                yield f"env:{name}", value

        if self._store is not None:
            try:
                token = self._store.load(cancel=cancel)
            except OperationCancelled:
                raise
            except TaskcredError as exc:
                logger.warning("Could not read %s store: %s", self._store.name, exc)
            else:
                if token:
                    yield f"store:{self._store.name}", token

        for path in self._search_paths:
            if not path.is_file():
                continue
            try:
                token = read_token_file(path)
            except (OSError, ValueError) as exc:
                logger.warning("Skipping unreadable token file %s: %s", path, exc)
                continue
            yield f"file:{path}", token

    def _verify(
        self, source: str, token: str, cancel: Optional[threading.Event]
    ) -> Optional[DiscoveredCredential]:
        previous = self._client.auth_token
        self._client.set_auth_token(token)
        try:
            grant: AuthGrant = self._client.check_token(cancel=cancel)
        except AuthError as exc:
            logger.info("Token from %s was rejected: %s", source, exc)
        except (ConnectionError_, ServerError, RemoteAPIError) as exc:
            logger.warning("Could not verify token from %s: %s", source, exc)
        except BaseException:
            self._restore(previous)
            raise
        else:
            logger.info("Verified token from %s for user %r", source, grant.user.username)
            return DiscoveredCredential(
                token=token,
                username=grant.user.username,
                user_id=grant.user.id,
                source=source,
            )

        self._restore(previous)
        return None

    def _restore(self, previous: str) -> None:
        if previous:
            self._client.set_auth_token(previous)
        else:
            self._client.clear_auth_token()


def persist_credential(
    stores: Iterable[CredentialStore],
    token: str,
    user_id: str = "",
    username: str = "",
    cancel: Optional[threading.Event] = None,
) -> int:
    """Write a verified credential to every store, independently.

    Each store is updated (keeping its original ``created_at``). A failure in
    one store is logged and does not stop the others. A cancellation stops
    the remaining writes and propagates.

    Returns:
        The number of stores that accepted the write. Zero means the
        credential lives only in memory for this session.
    """
    written = 0
    attempted = 0
    for store in stores:
        attempted += 1
        try:
            store.update(token, user_id, username, cancel=cancel)
        except OperationCancelled:
            raise
        except (TaskcredError, ValueError) as exc:
            logger.error("Failed to save credential to %s store: %s", store.name, exc)
            continue
        logger.info("Saved credential to %s store (%s)", store.name, store.description)
        written += 1

    if attempted and not written:
        logger.warning(
            "Credential could not be saved to any store; it will only be used for this session"
        )
    return written
