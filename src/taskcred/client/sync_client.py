"""Synchronous, signed HTTP client for the Remember The Milk REST API.

This module provides :class:`ServiceClient`, the shared client handed to the
rest of the application once a credential has been verified. It wraps
:class:`httpx.Client` and layers on:

- **Parameter preparation** -- ``method``, ``api_key``, ``format=json`` and,
  once installed, ``auth_token`` are added to every call.
- **Request signing** -- ``api_sig`` is computed over the final parameter set
  by :func:`~taskcred.auth.signing.sign_params`.
- **Credential installation** -- the auth token is swapped atomically under a
  lock, so concurrent callers never observe a half-installed value.
- **Error mapping** -- HTTP and network failures become
  :class:`~taskcred.exceptions.ServerError` /
  :class:`~taskcred.exceptions.ConnectionError_`; ``rsp.stat == "fail"``
  envelopes become the typed errors from :mod:`taskcred.client.response`.

The two bootstrap methods, ``rtm.auth.getFrob`` and ``rtm.auth.getToken``,
never carry ``auth_token``, so their signature excludes it.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

import httpx

from taskcred.auth.signing import sign_params
from taskcred.client.response import extract_auth, extract_frob, parse_envelope
from taskcred.exceptions import (
    ConfigError,
    ConnectionError_,
    NotAuthenticatedError,
    OperationCancelled,
    ServerError,
)
from taskcred.models import AuthGrant, Settings

logger = logging.getLogger(__name__)

METHOD_CHECK_TOKEN = "rtm.auth.checkToken"
METHOD_GET_FROB = "rtm.auth.getFrob"
METHOD_GET_TOKEN = "rtm.auth.getToken"

BOOTSTRAP_METHODS = frozenset({METHOD_GET_FROB, METHOD_GET_TOKEN})

TRANSIENT_ERRORS: tuple[type[Exception], ...] = (ConnectionError_, ServerError)
"""Failures worth retrying: the request may succeed if sent again."""


class ServiceClient:
    """Blocking RTM API client with signing and token installation.

    The underlying :class:`httpx.Client` is created lazily on first use and
    released by :meth:`close` (or on leaving a ``with`` block).

    Args:
        settings: Effective settings supplying ``api_key``, ``shared_secret``,
            ``base_url`` and ``timeout``.
        transport: Optional :class:`httpx.BaseTransport`, e.g. an
            :class:`httpx.MockTransport` in tests.

    Example::

        with ServiceClient(settings) as client:
            client.set_auth_token(token)
            grant = client.check_token()
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._client: Optional[httpx.Client] = None
        self._auth_token = ""
        self._token_lock = threading.Lock()
        self._client_lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Context manager
    # ------------------------------------------------------------------ #

    def __enter__(self) -> ServiceClient:
        self._ensure_client()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        with self._client_lock:
            if self._client:
                self._client.close()
                self._client = None

    def _ensure_client(self) -> httpx.Client:
        with self._client_lock:
            if self._client is None:
                self._client = httpx.Client(
                    timeout=self._settings.timeout,
                    follow_redirects=True,
                    transport=self._transport,
                    headers={"Accept": "application/json"},
                )
            return self._client

    # ------------------------------------------------------------------ #
    # Credential installation
    # ------------------------------------------------------------------ #

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def auth_token(self) -> str:
        """The currently installed auth token, or ``""``."""
        with self._token_lock:
            return self._auth_token

    @property
    def is_authenticated(self) -> bool:
        return bool(self.auth_token)

    def set_auth_token(self, token: str) -> None:
        """Install *token* for subsequent authenticated calls."""
        with self._token_lock:
            self._auth_token = token

    def clear_auth_token(self) -> None:
        """Remove any installed token."""
        with self._token_lock:
            self._auth_token = ""

    # ------------------------------------------------------------------ #
    # Signing
    # ------------------------------------------------------------------ #

    def sign(self, params: dict[str, str]) -> str:
        """Return ``api_sig`` for *params* using the configured shared secret."""
        if not self._settings.shared_secret:
            raise ConfigError(
                "No shared secret configured. Set TASKCRED_SHARED_SECRET or add "
                "'shared_secret' to config.json."
            )
        return sign_params(self._settings.shared_secret, params)

    def prepare_params(
        self, method: str, params: Optional[dict[str, Any]] = None
    ) -> dict[str, str]:
        """Build the complete, signed query parameters for *method*.

        Args:
            method: RTM method name, e.g. ``"rtm.auth.checkToken"``.
            params: Method-specific parameters. ``None`` values are dropped.

        Returns:
            A new dict including ``api_sig``.

        Raises:
            ConfigError: If the API key or shared secret is missing.
        """
        if not self._settings.api_key:
            raise ConfigError(
                "No API key configured. Set TASKCRED_API_KEY or add 'api_key' to config.json."
            )
        prepared: dict[str, str] = {
            k: str(v) for k, v in (params or {}).items() if v is not None
        }
        prepared["method"] = method
        prepared["api_key"] = self._settings.api_key
        prepared["format"] = "json"
        prepared.pop("api_sig", None)

        token = self.auth_token
        if method in BOOTSTRAP_METHODS:
            prepared.pop("auth_token", None)
        elif token and "auth_token" not in prepared:
            prepared["auth_token"] = token

        prepared["api_sig"] = self.sign(prepared)
        return prepared

    # ------------------------------------------------------------------ #
    # Transport
    # ------------------------------------------------------------------ #

    def call(
        self,
        method: str,
        params: Optional[dict[str, Any]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> dict[str, Any]:
        """Invoke an RTM method and return the unwrapped ``rsp`` object.

        Args:
            method: RTM method name.
            params: Method-specific parameters.
            cancel: Optional cancellation event checked before sending.

        Raises:
            OperationCancelled: If *cancel* is already set.
            ConnectionError_: On any transport failure (connect, timeout, dropped
                connection, proxy).
            ServerError: On HTTP errors or malformed bodies.
            AuthError / RemoteAPIError: On ``stat == "fail"`` envelopes.
        """
        if cancel is not None and cancel.is_set():
            raise OperationCancelled(f"{method} cancelled before sending")

        query = self.prepare_params(method, params)
        client = self._ensure_client()
        logger.debug("GET %s method=%s", self._settings.base_url, method)

        try:
            response = client.get(self._settings.base_url, params=query)
        except httpx.TransportError as exc:
            raise ConnectionError_(f"{method} failed: {exc}") from exc

        self._map_response_error(method, response)
        return parse_envelope(response)

    def head(self, url: Optional[str] = None, cancel: Optional[threading.Event] = None) -> int:
        """Send an unsigned HEAD request and return the HTTP status code.

        Used by connectivity checks. Defaults to the REST endpoint.

        Raises:
            OperationCancelled: If *cancel* is already set.
            ConnectionError_: If the host cannot be reached.
        """
        target = url or self._settings.base_url
        if cancel is not None and cancel.is_set():
            raise OperationCancelled(f"HEAD {target} cancelled before sending")
        try:
            response = self._ensure_client().head(target)
        except httpx.TransportError as exc:
            raise ConnectionError_(f"HEAD {target} failed: {exc}") from exc
        return response.status_code

    def _map_response_error(self, method: str, response: httpx.Response) -> None:
        """Raise :class:`ServerError` for non-2xx HTTP statuses."""
        status = response.status_code
        if status < 400:
            return
        text = response.text[:200] if response.text else ""
        msg = f"HTTP {status} from {method}"
        raise ServerError(f"{msg}: {text}" if text else msg)

    # ------------------------------------------------------------------ #
    # Auth methods
    # ------------------------------------------------------------------ #

    def check_token(self, cancel: Optional[threading.Event] = None) -> AuthGrant:
        """Verify the installed token with ``rtm.auth.checkToken``.

        Raises:
            NotAuthenticatedError: If no token is installed.
            InvalidCredentialError: If the service rejects the token.
        """
        if not self.is_authenticated:
            raise NotAuthenticatedError("No auth token installed")
        rsp = self.call(METHOD_CHECK_TOKEN, cancel=cancel)
        return extract_auth(rsp)

    def get_frob(self, cancel: Optional[threading.Event] = None) -> str:
        """Request a new frob with ``rtm.auth.getFrob``."""
        rsp = self.call(METHOD_GET_FROB, cancel=cancel)
        return extract_frob(rsp)

    def get_token(self, frob: str, cancel: Optional[threading.Event] = None) -> AuthGrant:
        """Redeem an approved *frob* with ``rtm.auth.getToken``.

        Raises:
            TicketRejectedError: If the frob is invalid, expired or not yet
                approved by the user.
        """
        rsp = self.call(METHOD_GET_TOKEN, {"frob": frob}, cancel=cancel)
        return extract_auth(rsp)
