"""One-time selection of the credential store backend."""

from __future__ import annotations

import logging
from typing import Optional

from keyring.backend import KeyringBackend

from taskcred.auth.retry import RetryExecutor
from taskcred.auth.stores.base import CredentialStore
from taskcred.auth.stores.file_store import FileCredentialStore
from taskcred.auth.stores.secure_store import SecureCredentialStore
from taskcred.config import get_config_dir
from taskcred.models import Settings

logger = logging.getLogger(__name__)


def build_secure_store(
    settings: Settings, backend: Optional[KeyringBackend] = None
) -> SecureCredentialStore:
    """Construct the keyring store described by *settings* without probing it."""
    return SecureCredentialStore(
        service=settings.keyring_service,
        account=settings.keyring_account,
        backend=backend,
        probe_timeout=settings.probe_timeout,
        retry=RetryExecutor.from_settings(settings.retry),
    )


def build_file_store(settings: Settings) -> FileCredentialStore:
    """Construct the file store at ``<config dir>/<token_filename>``.

    Raises:
        ConfigError: If the configuration directory cannot be created.
    """
    return FileCredentialStore(get_config_dir(settings.app_name) / settings.token_filename)


def select_store(
    settings: Settings, keyring_backend: Optional[KeyringBackend] = None
) -> CredentialStore:
    """Probe the secure backend once and return the store to use for the session.

    The keyring store is chosen when ``settings.use_keyring`` is true and its
    probe succeeds; otherwise the file store is constructed (creating its
    directory). The caller keeps the returned store for the whole session:
    later failures are reported, not silently redirected to another backend.

    Args:
        settings: Effective settings.
        keyring_backend: Explicit keyring backend, mainly for tests.

    Raises:
        ConfigError: If the file store is needed and its directory cannot be
            created.
    """
    if settings.use_keyring:
        secure = build_secure_store(settings, keyring_backend)
        if secure.is_available():
            logger.info("Using keyring credential store (%s)", secure.description)
            return secure
        logger.info("Keyring unavailable; falling back to file credential store")
    else:
        logger.debug("Keyring disabled by configuration")

    store = build_file_store(settings)
    logger.info("Using file credential store (%s)", store.description)
    return store
