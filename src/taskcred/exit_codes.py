"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~taskcred.exceptions.TaskcredError` subclass.
Shell wrappers can inspect the exit code to tell a missing credential from
an unreachable service without parsing stderr.

Example::

    $ taskcred auth status
    $ echo $?
    4   # EXIT_NOT_FOUND -- no usable credential was discovered
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_AUTH_FAILURE = 3
"""The remote service rejected a credential or an authorization ticket."""

EXIT_NOT_FOUND = 4
"""No usable credential was found in any searched location."""

EXIT_SERVER_ERROR = 5
"""The remote service returned an HTTP 5xx or an ``rsp.stat == "fail"`` envelope."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_STORAGE_ERROR = 7
"""A credential store could not be read, written, or was corrupted."""

EXIT_RETRY_EXHAUSTED = 8
"""An operation kept failing after every configured retry attempt."""

EXIT_CANCELLED = 130
"""The operation was cancelled (Ctrl-C or an external cancellation signal)."""
