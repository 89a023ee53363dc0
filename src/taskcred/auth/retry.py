"""Cancellation-aware retry with linear or fixed back-off.

:class:`RetryExecutor` runs a callable up to ``max_attempts`` times. The first
attempt runs immediately; attempt *i* waits ``i * base_delay`` seconds
(``LINEAR``) or ``base_delay`` seconds (``FIXED``) before running. The wait is
performed with :meth:`threading.Event.wait`, so setting the caller's cancel
event aborts it immediately with :class:`~taskcred.exceptions.OperationCancelled`.

Example::

    retry = RetryExecutor(max_attempts=3, base_delay=0.5)
    frob = retry.run("getFrob", client.get_frob, cancel=stop_event)
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Optional, TypeVar

from taskcred.exceptions import OperationCancelled, RetryExhaustedError
from taskcred.models import RetrySettings, RetryStrategy

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExecutor:
    """Run named operations with bounded, cancellable retries.

    Per-operation attempt counters are kept for diagnostics. They are reset
    at the start of every :meth:`run` call and guarded by a lock, since
    several named operations may be in flight on different threads.

    Args:
        max_attempts: Total attempts including the first. Must be >= 1.
        base_delay: Delay unit in seconds.
        strategy: ``LINEAR`` waits ``attempt * base_delay``; ``FIXED`` waits
            ``base_delay`` before every retry.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        strategy: RetryStrategy = RetryStrategy.LINEAR,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if base_delay < 0:
            raise ValueError("base_delay must not be negative")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.strategy = strategy
        self._attempts: dict[str, int] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryExecutor":
        """Build an executor from a :class:`~taskcred.models.RetrySettings`."""
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay,
            strategy=settings.strategy,
        )

    def delay_for(self, attempt: int) -> float:
        """Return the wait before *attempt* (0-based). Attempt 0 never waits."""
        if attempt <= 0:
            return 0.0
        if self.strategy == RetryStrategy.FIXED:
            return self.base_delay
        return attempt * self.base_delay

    def attempts(self, operation: str) -> int:
        """Return how many attempts the latest run of *operation* has made."""
        with self._lock:
            return self._attempts.get(operation, 0)

    def _set_attempts(self, operation: str, value: int) -> None:
        with self._lock:
            self._attempts[operation] = value

    def run(
        self,
        operation: str,
        fn: Callable[[], T],
        cancel: Optional[threading.Event] = None,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
    ) -> T:
        """Call *fn* until it succeeds or the attempt budget is spent.

        Args:
            operation: Name used for counters, log lines and the final error.
            fn: Zero-argument callable to execute.
            cancel: Optional event; when set, any pending back-off wait
                returns immediately and :class:`OperationCancelled` is raised.
            retry_on: Exception types worth retrying. Anything else propagates
                on the spot.

        Returns:
            Whatever *fn* returns on its first successful attempt.

        Raises:
            OperationCancelled: If *cancel* is set before or during a wait.
            RetryExhaustedError: If every attempt raised a retryable error.
        """
        self._set_attempts(operation, 0)
        last_error: Optional[BaseException] = None

        for attempt in range(self.max_attempts):
            if attempt > 0:
                delay = self.delay_for(attempt)
                logger.debug(
                    "Retrying %s in %.2fs (attempt %d/%d): %s",
                    operation, delay, attempt + 1, self.max_attempts, last_error,
                )
                if cancel is not None:
                    if cancel.wait(delay):
                        raise OperationCancelled(f"operation {operation} cancelled during back-off")
                elif delay > 0:
                    time.sleep(delay)
            elif cancel is not None and cancel.is_set():
                raise OperationCancelled(f"operation {operation} cancelled")

            self._set_attempts(operation, attempt + 1)
            try:
                return fn()
            except OperationCancelled:
                raise
            except retry_on as exc:
                last_error = exc

        logger.warning("%s failed after %d attempts", operation, self.max_attempts)
        raise RetryExhaustedError(operation, self.max_attempts, last_error) from last_error
