"""Retry scheduling for remote calls.

Maps an error category to a bounded retry policy and runs async operations
under that policy with tenacity. The policy is derived from the FIRST failure
of an operation and kept for the rest of its attempts; later failures only
decide whether to keep going (they must still be transient).

Schedule:
- network / timeout: exponential backoff from 0.1s, factor 2, 3 retries,
  plus random jitter
- rate limited: fixed delay equal to the server's Retry-After when present,
  otherwise the exponential schedule
- everything else: no retry
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception

from .errors import ErrorTag, MirrorError, RateLimitedError, classify_error
from .metrics import transport_retries_total

logger = logging.getLogger("ji_mirror.retry")

__all__ = [
    "NO_RETRY",
    "RetryKind",
    "RetryPolicy",
    "RetrySettings",
    "run_with_retry",
    "schedule_for",
]

T = TypeVar("T")

_NEVER_RETRIED = frozenset(
    {
        ErrorTag.VALIDATION,
        ErrorTag.PARSE,
        ErrorTag.CONFIGURATION,
        ErrorTag.AUTHENTICATION_FAILED,
        ErrorTag.NOT_FOUND,
        ErrorTag.DATA_CONFLICT,
        ErrorTag.STORAGE,
    }
)


class RetryKind(str, Enum):
    NO_RETRY = "no_retry"
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


@dataclass(frozen=True)
class RetrySettings:
    """Tunable knobs for the exponential schedule.

    Attributes:
        base_delay: Delay before the first retry, in seconds
        factor: Multiplier applied per further retry
        max_retries: Retries after the initial attempt
        jitter: Upper bound of the random amount added to each delay
        max_delay: Cap applied before jitter
    """

    base_delay: float = 0.1
    factor: float = 2.0
    max_retries: int = 3
    jitter: float = 0.1
    max_delay: float = 30.0

    @classmethod
    def from_config(cls, config: Any) -> "RetrySettings":
        """Build settings from a MirrorConfig."""
        return cls(
            base_delay=config.retry_base_seconds,
            factor=config.retry_factor,
            max_retries=config.retry_max_retries,
            jitter=config.retry_jitter_seconds,
            max_delay=config.retry_max_delay_seconds,
        )


DEFAULT_SETTINGS = RetrySettings()


@dataclass(frozen=True)
class RetryPolicy:
    kind: RetryKind
    max_retries: int = 0
    base_delay: float = 0.0
    factor: float = 1.0
    jitter: float = 0.0
    max_delay: float = 0.0
    fixed_delay: float = 0.0

    @property
    def max_attempts(self) -> int:
        return 1 + self.max_retries

    def delay_for(self, retry_number: int) -> float:
        """Seconds to wait before retry number ``retry_number`` (1-based)."""
        if self.kind is RetryKind.FIXED:
            return self.fixed_delay
        if self.kind is RetryKind.EXPONENTIAL:
            delay = min(self.base_delay * self.factor ** (retry_number - 1), self.max_delay)
            return delay + random.uniform(0, self.jitter)
        return 0.0


NO_RETRY = RetryPolicy(RetryKind.NO_RETRY)


def _exponential(settings: RetrySettings) -> RetryPolicy:
    return RetryPolicy(
        kind=RetryKind.EXPONENTIAL,
        max_retries=settings.max_retries,
        base_delay=settings.base_delay,
        factor=settings.factor,
        jitter=settings.jitter,
        max_delay=settings.max_delay,
    )


def schedule_for(error: MirrorError, settings: RetrySettings = DEFAULT_SETTINGS) -> RetryPolicy:
    """Choose the retry policy for a categorized failure."""
    if error.tag in _NEVER_RETRIED:
        return NO_RETRY
    if isinstance(error, RateLimitedError) and error.retry_after is not None:
        return RetryPolicy(
            kind=RetryKind.FIXED,
            max_retries=settings.max_retries,
            fixed_delay=max(error.retry_after, 0.0),
        )
    return _exponential(settings)


class _PolicyHolder:
    """Remembers the policy chosen at the first failure of one operation."""

    def __init__(self, settings: RetrySettings) -> None:
        self.settings = settings
        self.policy: RetryPolicy | None = None

    def should_retry(self, exc: BaseException) -> bool:
        error = classify_error(exc)
        if self.policy is None:
            self.policy = schedule_for(error, self.settings)
        return self.policy.kind is not RetryKind.NO_RETRY and error.transient

    def should_stop(self, retry_state: RetryCallState) -> bool:
        if self.policy is None:
            return True
        return retry_state.attempt_number >= self.policy.max_attempts

    def wait(self, retry_state: RetryCallState) -> float:
        if self.policy is None:
            return 0.0
        return self.policy.delay_for(retry_state.attempt_number)


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    description: str = "remote_call",
    settings: RetrySettings = DEFAULT_SETTINGS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``operation`` with the retry policy of its first failure.

    Args:
        operation: Zero-argument coroutine factory, invoked once per attempt
        description: Label used in log lines
        settings: Exponential schedule knobs
        sleep: Awaitable sleep, injectable for tests

    Returns:
        The operation's result.

    Raises:
        MirrorError: The categorized final failure (never tenacity.RetryError)
    """
    holder = _PolicyHolder(settings)

    def _before_sleep(retry_state: RetryCallState) -> None:
        error = classify_error(retry_state.outcome.exception())
        transport_retries_total.labels(error_tag=error.tag.value).inc()
        logger.warning(
            "retry_scheduled",
            extra={
                "operation": description,
                "attempt": retry_state.attempt_number,
                "error_tag": error.tag.value,
                "policy": holder.policy.kind.value if holder.policy else None,
                "wait_seconds": retry_state.next_action.sleep,
            },
        )

    retrying = AsyncRetrying(
        stop=holder.should_stop,
        wait=holder.wait,
        retry=retry_if_exception(holder.should_retry),
        before_sleep=_before_sleep,
        sleep=sleep,
        reraise=True,
    )

    try:
        async for attempt in retrying:
            with attempt:
                return await operation()
    except Exception as exc:
        error = classify_error(exc)
        if error is exc:
            raise
        raise error from exc
    raise AssertionError("unreachable: retry loop exited without result")  # pragma: no cover
