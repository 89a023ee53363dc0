"""Canonical Pydantic models shared across all taskcred modules.

This is the single source of truth for data shapes in the project. The models
fall into three groups:

**Persisted records** -- written by the credential stores and read back by
discovery:
    :class:`Credential`.

**Handshake and status models** -- in-memory only, never persisted:
    :class:`Permission`, :class:`AuthorizationTicket`, :class:`RemoteUser`,
    :class:`AuthGrant`, :class:`AuthStatus`, and :class:`StoreProbeResult`.

**Configuration models** -- loaded from JSON config files and environment
variables by :func:`taskcred.config.resolve_settings`:
    :class:`RetryStrategy`, :class:`RetrySettings`, and :class:`Settings`.

All models use Pydantic v2. The :class:`Credential` JSON layout
(``token``, ``userID``, ``username``, ``createdAt``, ``updatedAt``) is shared
with token files written by other RTM tooling, so field aliases must not change.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime, truncated to seconds."""
    return datetime.now(timezone.utc).replace(microsecond=0)


# --- Persisted records ---


class Credential(BaseModel):
    """A verified RTM auth token together with the account it belongs to.

    Serialised as::

        {
          "token": "6410bde19b6dfb474fec71f186bc715831ea6842",
          "userID": "987654",
          "username": "bob",
          "createdAt": "2024-05-01T10:00:00Z",
          "updatedAt": "2024-05-01T10:00:00Z"
        }

    ``userId`` and ``user_id`` are accepted on input so that records written
    by older tools still load.
    """

    model_config = ConfigDict(populate_by_name=True)

    token: str = Field(min_length=1, description="Opaque RTM auth token")
    user_id: str = Field(
        default="",
        validation_alias=AliasChoices("userID", "userId", "user_id"),
        serialization_alias="userID",
        description="Numeric RTM user id (as a string)",
    )
    username: str = Field(default="", description="RTM username")
    created_at: datetime = Field(
        default_factory=utc_now,
        validation_alias=AliasChoices("createdAt", "created_at"),
        serialization_alias="createdAt",
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        validation_alias=AliasChoices("updatedAt", "updated_at"),
        serialization_alias="updatedAt",
    )

    @field_validator("created_at", "updated_at")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _check_timestamps(self) -> "Credential":
        if self.updated_at < self.created_at:
            raise ValueError("updatedAt must not be earlier than createdAt")
        return self

    @field_serializer("created_at", "updated_at")
    def _rfc3339(self, value: datetime) -> str:
        return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

    @classmethod
    def issue(
        cls,
        token: str,
        user_id: str = "",
        username: str = "",
        created_at: Optional[datetime] = None,
    ) -> "Credential":
        """Build a fresh record stamped with the current time.

        Args:
            token: The auth token. Must be non-empty.
            user_id: RTM user id.
            username: RTM username.
            created_at: Original creation time to carry over on update.
                Defaults to now.
        """
        now = utc_now()
        created = created_at or now
        if created > now:
            created = now
        return cls(
            token=token,
            user_id=user_id,
            username=username,
            created_at=created,
            updated_at=now,
        )

    def to_json(self) -> str:
        """Serialise with the wire aliases, pretty-printed."""
        return self.model_dump_json(by_alias=True, indent=2)

    def masked_token(self) -> str:
        """Return the token with everything but the last four characters hidden."""
        if len(self.token) <= 4:
            return "*" * len(self.token)
        return "*" * (len(self.token) - 4) + self.token[-4:]


# --- Handshake and status models ---


class Permission(str, enum.Enum):
    """Access level requested during authorization, in increasing order of scope."""

    READ = "read"
    WRITE = "write"
    DELETE = "delete"


class AuthorizationTicket(BaseModel):
    """A frob issued by ``rtm.auth.getFrob`` and awaiting user approval.

    Lives only in :class:`~taskcred.auth.flow.AuthorizationFlow`'s ticket map
    for the lifetime of the process.
    """

    frob: str = Field(description="Ticket value returned by rtm.auth.getFrob")
    permission: Permission = Field(description="Permission level being requested")
    url: str = Field(description="Signed URL the user must visit to approve the ticket")


class RemoteUser(BaseModel):
    """The ``user`` block of an RTM ``auth`` response."""

    id: str = ""
    username: str = ""
    fullname: str = ""


class AuthGrant(BaseModel):
    """The ``auth`` block returned by ``rtm.auth.checkToken`` and ``rtm.auth.getToken``."""

    token: str
    permission: Optional[Permission] = Field(default=None, alias="perms")
    user: RemoteUser = Field(default_factory=RemoteUser)

    model_config = ConfigDict(populate_by_name=True)


class AuthStatus(BaseModel):
    """Structured authentication status presented to collaborators.

    When ``authenticated`` is ``False`` the status carries an authorization
    URL (and the frob backing it) whenever one could be issued, so the caller
    can direct the user there instead of failing.
    """

    authenticated: bool = False
    username: str = ""
    user_id: str = ""
    source: Optional[str] = Field(
        default=None,
        description="Where the active credential came from (env var, store, file path, authorization)",
    )
    storage: Optional[str] = Field(
        default=None,
        description="Description of the selected persistence backend",
    )
    auth_url: Optional[str] = None
    frob: Optional[str] = None
    message: str = ""


class StoreProbeResult(BaseModel):
    """Outcome of one step of the secure-store self test."""

    operation: str = Field(description="Step name: set, get, get_value_match or delete")
    success: bool
    error: Optional[str] = None
    value: Optional[str] = None


class DiagnosticResult(BaseModel):
    """Outcome of one connectivity check step."""

    name: str
    success: bool
    description: str = ""
    error: Optional[str] = None
    duration_ms: int = 0


# --- Configuration models ---


class RetryStrategy(str, enum.Enum):
    """Back-off schedule used by :class:`~taskcred.auth.retry.RetryExecutor`."""

    FIXED = "fixed"
    LINEAR = "linear"


class RetrySettings(BaseModel):
    """Retry behaviour for transient remote and secret-store failures."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=0.5, ge=0, description="Seconds")
    strategy: RetryStrategy = RetryStrategy.LINEAR


DEFAULT_TOKEN_ENV_VARS = ["RTM_AUTH_TOKEN", "RTM_TEST_TOKEN"]
DEFAULT_CWD_TOKEN_FILES = [
    "rtm_token.json",
    ".rtm_token.json",
    "rtm_test_token.json",
    ".rtm_test_token.json",
]
DEFAULT_HOME_TOKEN_FILES = [".rtm_token.json", ".rtm_test_token.json"]


class Settings(BaseModel):
    """Effective configuration after precedence resolution.

    Example::

        Settings(api_key="abc123", shared_secret="BANANAS")
    """

    model_config = ConfigDict(extra="ignore")

    api_key: str = Field(default="", description="RTM application API key")
    shared_secret: str = Field(default="", description="RTM shared secret used for api_sig")
    app_name: str = Field(default="taskcred", description="Name used for the config subdirectory")
    base_url: str = "https://api.rememberthemilk.com/services/rest/"
    auth_url: str = "https://www.rememberthemilk.com/services/auth/"
    internet_check_url: str = "https://www.google.com"
    timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")
    permission: Permission = Permission.DELETE
    use_keyring: bool = True
    keyring_service: str = "taskcred"
    keyring_account: str = "rtm-auth-token"
    probe_timeout: float = Field(default=5.0, gt=0, description="Seconds allowed per keyring call")
    token_filename: str = "rtm_token.json"
    token_env_vars: list[str] = Field(default_factory=lambda: list(DEFAULT_TOKEN_ENV_VARS))
    cwd_token_files: list[str] = Field(default_factory=lambda: list(DEFAULT_CWD_TOKEN_FILES))
    home_token_files: list[str] = Field(default_factory=lambda: list(DEFAULT_HOME_TOKEN_FILES))
    retry: RetrySettings = Field(default_factory=RetrySettings)
