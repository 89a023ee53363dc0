"""Credential persistence backends.

- :class:`CredentialStore` -- the abstract contract.
- :class:`SecureCredentialStore` -- OS secret service via :mod:`keyring`.
- :class:`FileCredentialStore` -- owner-only JSON file fallback.
- :func:`select_store` -- picks one of the two at startup.
"""

from taskcred.auth.stores.base import CredentialStore
from taskcred.auth.stores.file_store import FileCredentialStore
from taskcred.auth.stores.secure_store import SecureCredentialStore
from taskcred.auth.stores.selector import build_file_store, build_secure_store, select_store

__all__ = [
    "CredentialStore",
    "FileCredentialStore",
    "SecureCredentialStore",
    "build_file_store",
    "build_secure_store",
    "select_store",
]
