"""Auth manager -- the single entry point for obtaining an authorized client.

The :class:`AuthManager` wires the subsystem together:

- selects a :class:`~taskcred.auth.stores.CredentialStore` once, on first use;
- runs :class:`~taskcred.auth.discovery.CredentialDiscovery` and, when that
  finds nothing, starts an :class:`~taskcred.auth.flow.AuthorizationFlow`;
- keeps an :class:`~taskcred.models.AuthStatus` that collaborators can query
  without triggering network calls.

Discovery failures never escape :meth:`AuthManager.ensure_authenticated`;
they degrade to an unauthenticated status carrying an authorization URL.

For most use cases, call :func:`create_default_manager`.

See Also:
    :class:`~taskcred.client.ServiceClient` -- the authorized client handed
    to the rest of the application.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Optional

import httpx
from keyring.backend import KeyringBackend

from taskcred.auth.diagnostics import run_connectivity_check
from taskcred.auth.discovery import CredentialDiscovery, persist_credential
from taskcred.auth.flow import AuthorizationFlow
from taskcred.auth.retry import RetryExecutor
from taskcred.auth.stores import (
    CredentialStore,
    SecureCredentialStore,
    build_secure_store,
    select_store,
)
from taskcred.client import ServiceClient
from taskcred.config import credential_search_paths, resolve_settings
from taskcred.exceptions import (
    ConfigError,
    CredentialNotFoundError,
    InvalidCredentialError,
    OperationCancelled,
    TaskcredError,
)
from taskcred.models import (
    AuthGrant,
    AuthorizationTicket,
    AuthStatus,
    DiagnosticResult,
    Permission,
    Settings,
)

logger = logging.getLogger(__name__)


class AuthManager:
    """Coordinate discovery, authorization and persistence for one session.

    Args:
        settings: Effective settings.
        client: Shared client. Built from *settings* when omitted.
        store: Pre-selected store. When omitted, :func:`select_store` runs
            on first use.
        extra_stores: Additional stores that also receive every new
            credential (best effort).
        search_paths: Token files to probe. Defaults to
            :func:`~taskcred.config.credential_search_paths`.
        environ: Environment mapping for discovery (defaults to ``os.environ``).
        keyring_backend: Keyring backend passed to the store selector.
        transport: httpx transport for the default client.

    Example::

        manager = create_default_manager()
        status = manager.ensure_authenticated()
        if not status.authenticated:
            print("Visit", status.auth_url)
    """

    def __init__(
        self,
        settings: Settings,
        client: Optional[ServiceClient] = None,
        store: Optional[CredentialStore] = None,
        extra_stores: Sequence[CredentialStore] = (),
        search_paths: Optional[Sequence[Path]] = None,
        environ: Optional[Mapping[str, str]] = None,
        keyring_backend: Optional[KeyringBackend] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._client = client or ServiceClient(settings, transport=transport)
        self._store = store
        self._extra_stores = list(extra_stores)
        self._search_paths = (
            list(search_paths) if search_paths is not None else credential_search_paths(settings)
        )
        self._environ = environ
        self._keyring_backend = keyring_backend
        self._retry = RetryExecutor.from_settings(settings.retry)
        self._flow: Optional[AuthorizationFlow] = None
        self._status = AuthStatus()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Wiring
    # ------------------------------------------------------------------ #

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def client(self) -> ServiceClient:
        """The shared client; carries the token once authenticated."""
        return self._client

    @property
    def store(self) -> CredentialStore:
        """The session's credential store, selected once on first access.

        Raises:
            ConfigError: If no usable store can be constructed.
        """
        with self._lock:
            if self._store is None:
                self._store = select_store(self._settings, self._keyring_backend)
            return self._store

    @property
    def stores(self) -> list[CredentialStore]:
        """Every store a new credential is written to."""
        return [self.store, *self._extra_stores]

    @property
    def flow(self) -> AuthorizationFlow:
        """The handshake driver; redeemed tokens are written to :attr:`stores`."""
        stores = self.stores
        with self._lock:
            if self._flow is None:
                self._flow = AuthorizationFlow(self._client, stores=stores, retry=self._retry)
            return self._flow

    def _discovery(self) -> CredentialDiscovery:
        return CredentialDiscovery(
            self._client,
            env_vars=self._settings.token_env_vars,
            search_paths=self._search_paths,
            store=self.store,
            environ=self._environ,
        )

    def _set_status(self, status: AuthStatus) -> AuthStatus:
        with self._lock:
            self._status = status
        return status

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def status(self) -> AuthStatus:
        """Return the last known status without contacting the service."""
        with self._lock:
            return self._status.model_copy()

    def ensure_authenticated(
        self,
        permission: Permission | str | None = None,
        cancel: Optional[threading.Event] = None,
    ) -> AuthStatus:
        """Make the client usable, or explain how the user can authorize it.

        Runs discovery. A verified credential is installed on the client and
        written to every store. When nothing verifies, a fresh authorization
        ticket is requested so the returned status can carry its URL.

        Returns:
            The new :class:`~taskcred.models.AuthStatus`.

        Raises:
            ConfigError: If the API key, shared secret, or storage directory
                is unusable.
            OperationCancelled: If *cancel* fires.
        """
        store = self.store
        try:
            found = self._discovery().discover(cancel=cancel)
        except CredentialNotFoundError as exc:
            logger.info("%s", exc)
            return self._unauthenticated(permission, cancel, str(exc))

        stores = self.stores
        if found.source == f"store:{store.name}":
            stores = self._extra_stores
        persist_credential(
            stores, found.token, found.user_id, found.username, cancel=cancel
        )

        return self._set_status(
            AuthStatus(
                authenticated=True,
                username=found.username,
                user_id=found.user_id,
                source=found.source,
                storage=store.description,
            )
        )

    def _unauthenticated(
        self,
        permission: Permission | str | None,
        cancel: Optional[threading.Event],
        reason: str,
    ) -> AuthStatus:
        status = AuthStatus(authenticated=False, storage=self.store.description, message=reason)
        try:
            ticket = self.start_authorization(permission, cancel=cancel)
        except (ConfigError, OperationCancelled):
            raise
        except TaskcredError as exc:
            logger.warning("Could not start authorization: %s", exc)
            status.message = f"{reason}. Authorization could not be started: {exc}"
        else:
            status.auth_url = ticket.url
            status.frob = ticket.frob
        return self._set_status(status)

    def start_authorization(
        self,
        permission: Permission | str | None = None,
        cancel: Optional[threading.Event] = None,
    ) -> AuthorizationTicket:
        """Request a new ticket. Defaults to the configured permission."""
        return self.flow.request_ticket(permission or self._settings.permission, cancel=cancel)

    def complete_authorization(
        self, frob: str, cancel: Optional[threading.Event] = None
    ) -> AuthStatus:
        """Redeem *frob*, persist the token, and mark the session authenticated.

        Raises:
            TicketRejectedError: If the frob was rejected; the ticket is gone.
            RetryExhaustedError: On repeated transient failures; the ticket
                stays pending.
        """
        grant: AuthGrant = self.flow.complete_authorization(frob, cancel=cancel)
        return self._set_status(
            AuthStatus(
                authenticated=True,
                username=grant.user.username,
                user_id=grant.user.id,
                source="authorization",
                storage=self.store.description,
            )
        )

    def verify(self, cancel: Optional[threading.Event] = None) -> bool:
        """Re-check the installed token with the service.

        A rejected token only marks the session unauthenticated; stored
        credentials are left untouched.
        """
        if not self._client.is_authenticated:
            return False
        try:
            self._client.check_token(cancel=cancel)
        except InvalidCredentialError as exc:
            self.mark_unauthenticated(str(exc))
            return False
        return True

    def mark_unauthenticated(self, reason: str = "") -> AuthStatus:
        """Drop the in-memory credential without touching any store."""
        self._client.clear_auth_token()
        logger.info("Session marked unauthenticated%s", f": {reason}" if reason else "")
        return self._set_status(
            AuthStatus(authenticated=False, storage=self.store.description, message=reason)
        )

    def secure_store(self) -> SecureCredentialStore:
        """Build a keyring store on this session's backend, without probing it."""
        return build_secure_store(self._settings, self._keyring_backend)

    def connectivity_check(
        self, cancel: Optional[threading.Event] = None
    ) -> list[DiagnosticResult]:
        """Run the step-by-step connection diagnostic for this session.

        The authentication step runs discovery, so a verified token is left
        installed on the client but is not persisted.
        """
        return run_connectivity_check(self._client, discovery=self._discovery(), cancel=cancel)

    def logout(self) -> None:
        """Delete the stored credential and clear the session."""
        self.store.delete()
        self.mark_unauthenticated("logged out")

    def close(self) -> None:
        self._client.close()


def create_default_manager(settings: Optional[Settings] = None, **kwargs: object) -> AuthManager:
    """Create an :class:`AuthManager` from resolved settings.

    Args:
        settings: Effective settings. Resolved via
            :func:`~taskcred.config.resolve_settings` when omitted.
        **kwargs: Forwarded to :class:`AuthManager`.
    """
    return AuthManager(settings or resolve_settings(), **kwargs)  # type: ignore[arg-type]
