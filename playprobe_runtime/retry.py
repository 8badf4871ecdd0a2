"""Retry scheduling with exponential backoff and cooperative cancellation.

An operation is a zero-argument callable returning an awaitable. The scheduler
owns every sleep between attempts so business code never embeds its own
backoff loops; a :class:`CancellationToken` threads the caller's deadline
through each of those sleeps.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Optional, TypeVar

from .errors import (
    CategorizedError,
    ErrorCategory,
    OperationCancelledError,
    RetryExhaustedError,
    categorize,
)

Logger = logging.Logger
T = TypeVar("T")

DEFAULT_RETRYABLE_CATEGORIES: FrozenSet[ErrorCategory] = frozenset(
    {
        ErrorCategory.CONNECTIVITY,
        ErrorCategory.TIMEOUT,
        ErrorCategory.PERCEPTION_SERVICE,
    }
)


@dataclass(slots=True)
class RetryPolicy:
    """Backoff parameters and the allow-list of retryable categories."""

    max_attempts: int = 3
    initial_delay_s: float = 1.0
    max_delay_s: float = 30.0
    backoff_factor: float = 2.0
    retryable: FrozenSet[ErrorCategory] = DEFAULT_RETRYABLE_CATEGORIES

    def delay_for(self, attempt: int) -> float:
        """Return the pause after the zero-based ``attempt`` failed."""

        delay = self.initial_delay_s * (self.backoff_factor ** attempt)
        return min(delay, self.max_delay_s)

    def should_retry(self, error: CategorizedError) -> bool:
        return error.retryable and error.category in self.retryable


class CancellationToken:
    """Cooperative cancellation signal with an optional deadline.

    The deadline is measured on the monotonic clock. Every suspension point in
    the engine sleeps through :meth:`sleep`, so cancelling the token (or
    letting the deadline pass) interrupts the current wait immediately.
    """

    def __init__(self, deadline: Optional[float] = None) -> None:
        self._event = asyncio.Event()
        self._deadline = deadline
        self._reason = "cancelled"

    @classmethod
    def with_timeout(cls, seconds: Optional[float]) -> "CancellationToken":
        if seconds is None:
            return cls()
        return cls(deadline=time.monotonic() + seconds)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self._deadline_passed()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or ``None`` without a deadline."""

        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def cancel(self, reason: str = "cancelled") -> None:
        self._reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError(self._reason)
        if self._deadline_passed():
            raise OperationCancelledError("deadline expired", deadline_expired=True)

    async def sleep(self, seconds: float) -> None:
        """Wait ``seconds`` unless the token fires first.

        Raises:
            OperationCancelledError: If cancelled or the deadline passes while waiting.
        """
        self.raise_if_cancelled()
        timeout = max(0.0, seconds)
        remaining = self.remaining()
        deadline_bound = remaining is not None and remaining < timeout
        if deadline_bound:
            timeout = remaining  # type: ignore[assignment]

        if timeout <= 0.0 and not deadline_bound:
            await asyncio.sleep(0)
            return

        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            if deadline_bound:
                raise OperationCancelledError("deadline expired", deadline_expired=True) from None
            return
        raise OperationCancelledError(self._reason)

    def _deadline_passed(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline


@dataclass(slots=True)
class RetryStats:
    """Mutable counter filled in by :func:`retry`."""

    attempts: int = 0


@dataclass(slots=True)
class AttemptResult:
    """Structured outcome handed upward instead of an exception."""

    succeeded: bool
    category: Optional[ErrorCategory] = None
    message: str = ""
    retries_used: int = 0
    value: Any = None
    frame: Any = None  # latest Frame observed, when the caller has one
    outcome: Optional[str] = None  # classifier label for gameplay attempts
    perception_miss: bool = False

    @classmethod
    def failure(cls, error: CategorizedError, *, retries_used: int = 0) -> "AttemptResult":
        return cls(
            succeeded=False,
            category=error.category,
            message=str(error),
            retries_used=retries_used,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "category": self.category.value if self.category else None,
            "message": self.message,
            "retries_used": self.retries_used,
            "outcome": self.outcome,
            "perception_miss": self.perception_miss,
        }


_module_logger = logging.getLogger(__name__)


async def retry(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    token: Optional[CancellationToken] = None,
    logger: Optional[Logger] = None,
    description: str = "operation",
    stats: Optional[RetryStats] = None,
) -> T:
    """Run ``operation`` until it succeeds or the policy gives up.

    Args:
        operation: Zero-argument callable returning an awaitable.
        policy: Backoff and allow-list; defaults to :class:`RetryPolicy`.
        token: Cancellation token honoured before each attempt and at every sleep.
        logger: Optional logger instance.
        description: Human-readable label used in logs and terminal errors.
        stats: Optional counter receiving the number of invocations made.

    Returns:
        Whatever the operation returned on its successful attempt.

    Raises:
        CategorizedError: The operation's own (categorized) error when it is not retryable.
        RetryExhaustedError: When every permitted attempt failed.
        OperationCancelledError: When the token fires before or between attempts.
    """
    policy = policy or RetryPolicy()
    token = token or CancellationToken()
    log = logger or _module_logger
    stats = stats if stats is not None else RetryStats()
    max_attempts = max(1, policy.max_attempts)
    attempt = 0

    while True:
        token.raise_if_cancelled()
        stats.attempts += 1
        try:
            return await operation()
        except OperationCancelledError:
            raise
        except Exception as exc:
            error = categorize(exc)
            if not policy.should_retry(error):
                log.debug("%s failed with non-retryable error: %s", description, error)
                if error is exc:
                    raise
                raise error from exc

            attempt += 1
            if attempt >= max_attempts:
                raise RetryExhaustedError(description, error, stats.attempts) from error

            delay = policy.delay_for(attempt - 1)
            log.warning(
                "%s failed (%s); retrying in %.2fs (attempt %d/%d)",
                description,
                error,
                delay,
                attempt + 1,
                max_attempts,
            )
            await token.sleep(delay)


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    token: Optional[CancellationToken] = None,
    logger: Optional[Logger] = None,
    description: str = "operation",
) -> AttemptResult:
    """Non-raising form of :func:`retry` that returns an :class:`AttemptResult`.

    Cancellation still propagates as :class:`OperationCancelledError`.
    """
    stats = RetryStats()
    try:
        value = await retry(
            operation,
            policy,
            token=token,
            logger=logger,
            description=description,
            stats=stats,
        )
    except OperationCancelledError:
        raise
    except CategorizedError as exc:
        return AttemptResult.failure(exc, retries_used=max(stats.attempts - 1, 0))

    return AttemptResult(
        succeeded=True,
        message=f"{description} succeeded",
        retries_used=max(stats.attempts - 1, 0),
        value=value,
    )


__all__ = [
    "AttemptResult",
    "CancellationToken",
    "DEFAULT_RETRYABLE_CATEGORIES",
    "RetryPolicy",
    "RetryStats",
    "retry",
    "run_with_retry",
]
