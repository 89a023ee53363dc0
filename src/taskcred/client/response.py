"""Parsing of the Remember The Milk JSON response envelope.

Every REST response has the shape::

    {"rsp": {"stat": "ok", ...payload...}}
    {"rsp": {"stat": "fail", "err": {"code": "98", "msg": "Login failed / Invalid auth token"}}}

:func:`parse_envelope` unwraps the ``rsp`` object and turns ``fail`` into a
typed exception; :func:`extract_auth` and :func:`extract_frob` pull the
payloads used by the authorization handshake.
"""

from __future__ import annotations

from typing import Any

import httpx
from pydantic import ValidationError

from taskcred.exceptions import (
    InvalidCredentialError,
    RemoteAPIError,
    ServerError,
    TicketRejectedError,
)
from taskcred.models import AuthGrant

ERR_INVALID_AUTH_TOKEN = "98"
ERR_INVALID_FROB = "101"


def parse_envelope(response: httpx.Response) -> dict[str, Any]:
    """Return the ``rsp`` object of a successful response.

    Args:
        response: A response from the REST endpoint with a 2xx status.

    Raises:
        ServerError: If the body is not a JSON ``rsp`` envelope.
        InvalidCredentialError: On error code 98.
        TicketRejectedError: On error code 101.
        RemoteAPIError: On any other ``stat == "fail"``.
    """
    try:
        body = response.json()
    except ValueError as exc:
        raise ServerError(f"Response is not valid JSON: {response.text[:200]}") from exc

    rsp = body.get("rsp") if isinstance(body, dict) else None
    if not isinstance(rsp, dict):
        raise ServerError("Response is missing the 'rsp' envelope")

    if rsp.get("stat") == "ok":
        return rsp

    err = rsp.get("err") or {}
    code = str(err.get("code", ""))
    msg = str(err.get("msg", "unknown error"))
    if code == ERR_INVALID_AUTH_TOKEN:
        raise InvalidCredentialError(f"RTM rejected the auth token: {msg}")
    if code == ERR_INVALID_FROB:
        raise TicketRejectedError(f"RTM rejected the frob: {msg}")
    raise RemoteAPIError(msg, code=code)


def extract_auth(rsp: dict[str, Any]) -> AuthGrant:
    """Parse the ``auth`` block of a checkToken/getToken response."""
    try:
        return AuthGrant.model_validate(rsp["auth"])
    except (KeyError, TypeError, ValidationError) as exc:
        raise ServerError(f"Malformed auth block in response: {exc}") from exc


def extract_frob(rsp: dict[str, Any]) -> str:
    """Return the frob from a getFrob response."""
    frob = rsp.get("frob")
    if not isinstance(frob, str) or not frob:
        raise ServerError("getFrob response did not contain a frob")
    return frob
