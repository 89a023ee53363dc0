"""File-backed credential store.

Stores the credential as a JSON :class:`~taskcred.models.Credential` record,
typically at ``~/.config/taskcred/rtm_token.json``. The containing directory
is created with ``0o700`` and the file is written atomically via
:func:`~taskcred.config._atomic_write` with ``0o600`` permissions so the
token is never world-readable, even momentarily.

This is the fallback used when the OS secret service is unavailable
(headless servers, containers, CI).
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from taskcred.auth.stores.base import CredentialStore
from taskcred.config import _atomic_write
from taskcred.exceptions import ConfigError, CorruptCredentialError, StorageError
from taskcred.models import Credential

logger = logging.getLogger(__name__)

_DIR_MODE = 0o700
_FILE_MODE = 0o600


class FileCredentialStore(CredentialStore):
    """Owner-only JSON file holding a single credential record.

    Args:
        path: Location of the record file. Its parent directory is created
            immediately.

    Raises:
        ConfigError: If the parent directory cannot be created. This is not
            retried.

    Example::

        store = FileCredentialStore(Path("~/.config/taskcred/rtm_token.json").expanduser())
        store.save("tok123", "42", "alice")
        assert store.load() == "tok123"
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        try:
            self._path.parent.mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)
        except OSError as exc:
            raise ConfigError(
                f"Cannot create credential directory {self._path.parent}: {exc}"
            ) from exc

    @property
    def name(self) -> str:
        return "file"

    @property
    def description(self) -> str:
        return str(self._path)

    @property
    def path(self) -> Path:
        """The filesystem path of the credential file."""
        return self._path

    # Local file I/O does not block on a prompt, so *cancel* is not consulted.

    def is_available(self) -> bool:
        """Return True if the credential directory exists and is writable."""
        directory = self._path.parent
        return directory.is_dir() and os.access(directory, os.W_OK)

    def _write(self, record: Credential, cancel: Optional[threading.Event] = None) -> Credential:
        try:
            _atomic_write(self._path, record.to_json() + "\n", mode=_FILE_MODE)
        except OSError as exc:
            raise StorageError(f"Cannot write credential file {self._path}: {exc}") from exc
        logger.debug("Saved credential for %r to %s", record.username, self._path)
        return record

    def get_record(self, cancel: Optional[threading.Event] = None) -> Optional[Credential]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Cannot read credential file {self._path}: {exc}") from exc

        try:
            return Credential.model_validate(json.loads(text))
        except (json.JSONDecodeError, ValidationError, TypeError) as exc:
            logger.warning("Credential file %s is corrupted; removing it", self._path)
            self._purge()
            raise CorruptCredentialError(
                f"Corrupted credential file {self._path} was removed: {exc}"
            ) from exc

    def delete(self, cancel: Optional[threading.Event] = None) -> None:
        try:
            self._path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot delete credential file {self._path}: {exc}") from exc

    def _purge(self) -> None:
        try:
            self._path.unlink(missing_ok=True)
        except OSError:
            logger.error("Could not remove corrupted credential file %s", self._path, exc_info=True)
