"""Abstract base class for credential stores.

A credential store persists exactly one :class:`~taskcred.models.Credential`.
Two implementations ship with taskcred:

- :class:`~taskcred.auth.stores.secure_store.SecureCredentialStore` -- the OS
  secret service via :mod:`keyring`.
- :class:`~taskcred.auth.stores.file_store.FileCredentialStore` -- an
  owner-only JSON file, used when no secret service is reachable.

:func:`~taskcred.auth.stores.selector.select_store` picks one of them once at
startup.

Contract shared by every store:

* :meth:`~CredentialStore.load` returns ``""`` when nothing is stored and
  raises only for genuine backend failures.
* :meth:`~CredentialStore.delete` is idempotent.
* A record that cannot be parsed is purged and reported with
  :class:`~taskcred.exceptions.CorruptCredentialError`; partially parsed data
  is never returned.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Optional

from taskcred.exceptions import CorruptCredentialError
from taskcred.models import Credential


class CredentialStore(ABC):
    """Persistence contract for the single active RTM credential."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier such as ``"keyring"`` or ``"file"``."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable location of the stored record."""
        ...

    @abstractmethod
    def is_available(self) -> bool:
        """Probe the backend without disturbing any stored credential.

        Must return within a bounded time. A backend that cannot be reached
        reports ``False`` rather than raising.
        """
        ...

    @abstractmethod
    def get_record(self, cancel: Optional[threading.Event] = None) -> Optional[Credential]:
        """Return the full stored record, or ``None`` when nothing is stored.

        Args:
            cancel: Optional event that abandons a slow backend call.

        Raises:
            CorruptCredentialError: If the stored record is unreadable. The
                record has been purged by the time this is raised.
            StorageError: On backend failure or timeout.
            OperationCancelled: If *cancel* fires first.
        """
        ...

    @abstractmethod
    def delete(self, cancel: Optional[threading.Event] = None) -> None:
        """Remove the stored record. Deleting nothing succeeds."""
        ...

    @abstractmethod
    def _write(self, record: Credential, cancel: Optional[threading.Event] = None) -> Credential:
        """Persist *record* verbatim, replacing whatever was stored.

        Raises:
            StorageError: If the backend rejects the write.
        """
        ...

    def save(
        self,
        token: str,
        user_id: str = "",
        username: str = "",
        cancel: Optional[threading.Event] = None,
    ) -> Credential:
        """Overwrite the stored record with *token* and fresh timestamps.

        Last write wins; nothing from a previous record is carried over.

        Returns:
            The record as written.

        Raises:
            ValueError: If *token* is empty.
            StorageError: If the backend rejects the write.
        """
        if not token:
            raise ValueError("refusing to store an empty token")
        return self._write(Credential.issue(token, user_id, username), cancel=cancel)

    def load(self, cancel: Optional[threading.Event] = None) -> str:
        """Return the stored token, or ``""`` if there is none."""
        record = self.get_record(cancel=cancel)
        return record.token if record is not None else ""

    def update(
        self,
        token: str,
        user_id: str = "",
        username: str = "",
        cancel: Optional[threading.Event] = None,
    ) -> Credential:
        """Replace the stored token while keeping the original ``created_at``.

        Falls back to a plain :meth:`save` when no readable record exists.
        """
        if not token:
            raise ValueError("refusing to store an empty token")
        try:
            existing = self.get_record(cancel=cancel)
        except CorruptCredentialError:
            existing = None
        if existing is None:
            return self.save(token, user_id, username, cancel=cancel)
        return self._write(
            Credential.issue(token, user_id, username, created_at=existing.created_at),
            cancel=cancel,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.description!r})"
