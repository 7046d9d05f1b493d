"""
Retry policy engine.

Runs a fallible operation until it succeeds, the caller cancels, or the
policy's budget is exhausted. Attempts are strictly sequential and the
delay between them is spent waiting on the cancellation token, so a cancel
interrupts the wait immediately.

Usage::

    from winfeature.retry import CancellationToken, RetryPolicy, run

    token = CancellationToken()
    policy = RetryPolicy(retry_delay=5.0, start_timeout=300.0)
    run(policy, lambda token: communicator.upload(path, data), token)
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from winfeature.contracts.timeouts import DEFAULT_RETRY_DELAY_S
from winfeature.errors import CancelledError, RetryTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation signal shared by one provisioning run."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Block for up to ``seconds``. Returns True if cancelled meanwhile."""
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancelledError("provisioning cancelled")


@dataclass(frozen=True)
class RetryPolicy:
    """
    How a fallible operation should be retried.

    Args:
        retry_delay: Seconds to wait between attempts.
        start_timeout: Seconds since the first attempt after which a failure
            is no longer retried. ``None`` means unbounded.
        tries: Maximum number of attempts. ``0`` means unbounded.
        should_retry: Optional predicate; errors it rejects propagate as-is.
    """

    retry_delay: float = DEFAULT_RETRY_DELAY_S
    start_timeout: Optional[float] = None
    tries: int = 0
    should_retry: Optional[Callable[[Exception], bool]] = None

    def __post_init__(self) -> None:
        if self.retry_delay < 0:
            raise ValueError(f"retry_delay must be >= 0, got {self.retry_delay}")
        if self.start_timeout is not None and self.start_timeout < 0:
            raise ValueError(f"start_timeout must be >= 0, got {self.start_timeout}")
        if self.tries < 0:
            raise ValueError(f"tries must be >= 0, got {self.tries}")

    def with_delay(self, retry_delay: float) -> "RetryPolicy":
        return RetryPolicy(
            retry_delay=retry_delay,
            start_timeout=self.start_timeout,
            tries=self.tries,
            should_retry=self.should_retry,
        )


def run(
    policy: RetryPolicy,
    operation: Callable[[CancellationToken], T],
    token: Optional[CancellationToken] = None,
    *,
    clock: Callable[[], float] = time.monotonic,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
) -> T:
    """
    Run ``operation`` under ``policy``.

    Args:
        policy: Retry policy to apply.
        operation: Callable receiving the cancellation token.
        token: Cancellation token; a private one is used when omitted.
        clock: Monotonic time source, injectable for tests.
        on_retry: Called with (attempt, error) before each wait.

    Returns:
        Whatever ``operation`` returned on its first successful attempt.

    Raises:
        CancelledError: Cancellation was observed before an attempt, during
            the wait, or raised by the operation itself.
        RetryTimeoutError: The attempt bound or start timeout was exhausted.
    """
    token = token or CancellationToken()
    started = clock()
    attempt = 0

    while True:
        token.raise_if_cancelled()
        attempt += 1
        try:
            return operation(token)
        except CancelledError:
            raise
        except Exception as e:
            if policy.should_retry is not None and not policy.should_retry(e):
                raise
            last_error = e

        if policy.tries and attempt >= policy.tries:
            raise RetryTimeoutError(last_error, attempt, "tries") from last_error

        if policy.start_timeout is not None and clock() - started >= policy.start_timeout:
            raise RetryTimeoutError(last_error, attempt, "start_timeout") from last_error

        logger.warning(
            "Retryable error (attempt %d): %s; retrying in %.1fs",
            attempt,
            last_error,
            policy.retry_delay,
        )
        if on_retry is not None:
            on_retry(attempt, last_error)

        if token.wait(policy.retry_delay):
            raise CancelledError("provisioning cancelled") from last_error
