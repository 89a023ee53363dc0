"""Interactive authorization handshake (frob -> URL -> token).

Remember The Milk desktop-style authorization works in three steps:

1. :meth:`AuthorizationFlow.request_ticket` obtains a *frob* from
   ``rtm.auth.getFrob`` and builds the signed authorization URL.
2. The user opens the URL and approves the application in a browser.
3. :meth:`AuthorizationFlow.complete_authorization` redeems the frob with
   ``rtm.auth.getToken`` for a permanent token, installs it on the client,
   and writes it to every configured store.

Pending frobs live in a lock-guarded in-memory map for the lifetime of the
process and are never persisted. Their expiry is enforced by the service, so
the map is only bookkeeping.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from typing import TYPE_CHECKING, Optional
from urllib.parse import urlencode

from taskcred.auth.discovery import persist_credential
from taskcred.auth.retry import RetryExecutor
from taskcred.auth.stores.base import CredentialStore
from taskcred.client.sync_client import TRANSIENT_ERRORS
from taskcred.exceptions import TicketRejectedError
from taskcred.models import AuthGrant, AuthorizationTicket, Permission

if TYPE_CHECKING:
    from taskcred.client import ServiceClient

logger = logging.getLogger(__name__)


class AuthorizationFlow:
    """Drive the frob/token handshake for one client.

    Args:
        client: Shared client used for remote calls; receives the token on
            success.
        stores: Stores to persist a redeemed token to.
        retry: Executor used for the remote calls. Only transient
            connection and server failures are retried.
    """

    def __init__(
        self,
        client: ServiceClient,
        stores: Sequence[CredentialStore] = (),
        retry: Optional[RetryExecutor] = None,
    ) -> None:
        self._client = client
        self._stores = list(stores)
        self._retry = retry or RetryExecutor()
        self._tickets: dict[str, Permission] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Ticket bookkeeping
    # ------------------------------------------------------------------ #

    def pending_tickets(self) -> dict[str, Permission]:
        """Return a snapshot of frobs awaiting redemption."""
        with self._lock:
            return dict(self._tickets)

    def permission_for(self, frob: str) -> Optional[Permission]:
        with self._lock:
            return self._tickets.get(frob)

    def _remember(self, frob: str, permission: Permission) -> None:
        with self._lock:
            self._tickets[frob] = permission

    def _forget(self, frob: str) -> None:
        with self._lock:
            self._tickets.pop(frob, None)

    # ------------------------------------------------------------------ #
    # Handshake
    # ------------------------------------------------------------------ #

    def build_authorization_url(self, frob: str, permission: Permission | str) -> str:
        """Return the signed URL the user visits to approve *frob*.

        The signature covers exactly ``api_key``, ``perms`` and ``frob``.
        """
        perms = Permission(permission).value
        params = {
            "api_key": self._client.settings.api_key,
            "perms": perms,
            "frob": frob,
        }
        params["api_sig"] = self._client.sign(params)
        return f"{self._client.settings.auth_url}?{urlencode(params)}"

    def request_ticket(
        self,
        permission: Permission | str = Permission.DELETE,
        cancel: Optional[threading.Event] = None,
    ) -> AuthorizationTicket:
        """Obtain a fresh frob and its authorization URL.

        Nothing is recorded unless the remote call succeeds.

        Raises:
            RetryExhaustedError: If ``rtm.auth.getFrob`` keeps failing.
            RemoteAPIError: If the service refuses the request outright.
        """
        perm = Permission(permission)
        frob = self._retry.run(
            "rtm.auth.getFrob",
            lambda: self._client.get_frob(cancel=cancel),
            cancel=cancel,
            retry_on=TRANSIENT_ERRORS,
        )
        url = self.build_authorization_url(frob, perm)
        self._remember(frob, perm)
        logger.info("Issued authorization ticket with %s permission", perm.value)
        return AuthorizationTicket(frob=frob, permission=perm, url=url)

    def complete_authorization(
        self, frob: str, cancel: Optional[threading.Event] = None
    ) -> AuthGrant:
        """Redeem *frob* for a permanent token, install it, and persist it.

        On a transient failure the ticket stays pending so the caller can try
        again. If the service rejects the frob (invalid, expired, or not
        approved) the ticket is abandoned and removed.

        Raises:
            TicketRejectedError: The frob was rejected; start a new flow.
            RetryExhaustedError: The service could not be reached.
        """
        if self.permission_for(frob) is None:
            logger.debug("Redeeming a frob this process did not issue")

        try:
            grant = self._retry.run(
                "rtm.auth.getToken",
                lambda: self._client.get_token(frob, cancel=cancel),
                cancel=cancel,
                retry_on=TRANSIENT_ERRORS,
            )
        except TicketRejectedError:
            logger.info("Authorization ticket was rejected; abandoning it")
            self._forget(frob)
            raise

        self._forget(frob)
        self._client.set_auth_token(grant.token)
        logger.info("Authorized as %r", grant.user.username)
        persist_credential(
            self._stores, grant.token, grant.user.id, grant.user.username, cancel=cancel
        )
        return grant
