"""Exception hierarchy for taskcred.

All exceptions inherit from :class:`TaskcredError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`taskcred.exit_codes`.
The top-level error handler in :func:`taskcred.app.main` catches
``TaskcredError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    TaskcredError (exit 1)
    +-- AuthError                 (exit 3)
    |   +-- InvalidCredentialError
    |   +-- TicketRejectedError
    |   +-- NotAuthenticatedError
    +-- CredentialNotFoundError   (exit 4)
    +-- ServerError               (exit 5)
    +-- RemoteAPIError            (exit 5)
    +-- ConnectionError_          (exit 6)
    +-- StorageError              (exit 7)
    |   +-- CorruptCredentialError
    |   +-- StoreUnavailableError
    +-- RetryExhaustedError       (exit 8)
    +-- OperationCancelled        (exit 130)
    +-- ConfigError               (exit 1)
"""

from __future__ import annotations

from typing import Optional

from taskcred.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_NOT_FOUND,
    EXIT_RETRY_EXHAUSTED,
    EXIT_SERVER_ERROR,
    EXIT_STORAGE_ERROR,
)


class TaskcredError(Exception):
    """Base exception for all taskcred errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`taskcred.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class AuthError(TaskcredError):
    """Raised when the remote service refuses to authenticate a request."""

    exit_code = EXIT_AUTH_FAILURE


class InvalidCredentialError(AuthError):
    """The remote service reported the auth token as invalid (RTM error 98)."""


class TicketRejectedError(AuthError):
    """The remote service refused to redeem a frob (invalid, expired or not yet authorized)."""


class NotAuthenticatedError(AuthError):
    """An authenticated call was attempted before any credential was installed."""


class CredentialNotFoundError(TaskcredError):
    """Raised when discovery exhausts every location without a verified credential.

    This is a search outcome rather than a failure: callers are expected to
    catch it and fall back to interactive authorization.
    """

    exit_code = EXIT_NOT_FOUND


class ServerError(TaskcredError):
    """Raised when the service returns HTTP 5xx or an unexpected response body."""

    exit_code = EXIT_SERVER_ERROR


class RemoteAPIError(TaskcredError):
    """Raised for an ``rsp.stat == "fail"`` envelope not covered by a narrower type.

    Unlike :class:`ServerError` this is a definitive answer from the service
    and is never retried.

    Args:
        message: The ``err.msg`` text from the envelope.
        code: The ``err.code`` value, kept as a string like the wire format.
    """

    exit_code = EXIT_SERVER_ERROR

    def __init__(self, message: str, code: str = ""):
        super().__init__(f"RTM API error {code}: {message}" if code else message)
        self.code = code


class ConnectionError_(TaskcredError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR


class StorageError(TaskcredError):
    """Raised when a credential store fails to read, write or delete."""

    exit_code = EXIT_STORAGE_ERROR


class CorruptCredentialError(StorageError):
    """A stored credential record could not be parsed and has been purged."""


class StoreUnavailableError(StorageError):
    """The backing secret service could not be reached."""


class RetryExhaustedError(TaskcredError):
    """Raised by :class:`~taskcred.auth.retry.RetryExecutor` after the final attempt fails.

    Args:
        operation: Name of the operation that was retried.
        attempts: Total number of attempts made, including the first.
        last_error: The exception raised by the final attempt.
    """

    exit_code = EXIT_RETRY_EXHAUSTED

    def __init__(
        self,
        operation: str,
        attempts: int,
        last_error: Optional[BaseException] = None,
    ):
        message = f"operation {operation} failed after {attempts} attempts"
        if last_error is not None:
            message = f"{message}: {last_error}"
        super().__init__(message)
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


class OperationCancelled(TaskcredError):
    """Raised when an external cancellation signal interrupts an operation."""

    exit_code = EXIT_CANCELLED


class ConfigError(TaskcredError):
    """Raised for configuration problems (invalid JSON, missing API key, unusable storage directory)."""

    exit_code = EXIT_GENERIC_FAILURE
