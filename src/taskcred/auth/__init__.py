"""Credential acquisition, verification and persistence for taskcred.

The package is layered leaves-first:

- :mod:`~taskcred.auth.signing` -- ``api_sig`` computation.
- :mod:`~taskcred.auth.retry` -- :class:`RetryExecutor`.
- :mod:`~taskcred.auth.stores` -- keyring and file credential stores plus
  the startup selector.
- :mod:`~taskcred.auth.discovery` -- environment/store/file search with
  remote verification.
- :mod:`~taskcred.auth.flow` -- the frob/token authorization handshake.
- :mod:`~taskcred.auth.diagnostics` -- keyring self test and connectivity
  check.
- :mod:`~taskcred.auth.manager` -- :class:`AuthManager`, which ties the
  rest together.

Typical usage::

    from taskcred.auth.manager import create_default_manager

    manager = create_default_manager()
    status = manager.ensure_authenticated()

The manager, flow and discovery modules depend on :mod:`taskcred.client`,
which itself imports :mod:`taskcred.auth.signing`; import them by module path
rather than from this package.
"""

from taskcred.auth.retry import RetryExecutor
from taskcred.auth.signing import sign_params

__all__ = ["RetryExecutor", "sign_params"]
