"""Bounded-concurrency batch execution with per-item results.

``run_all`` never aborts on a failing item: every input gets exactly one
result, Success or Failure, in input order. Failures carry the categorized
error so callers can report "N succeeded, M failed" and list the first few.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from .errors import MirrorError, classify_error
from .metrics import batch_items_total

logger = logging.getLogger("ji_mirror.batch")

__all__ = ["BatchResult", "BatchSummary", "Failure", "Success", "run_all", "summarize"]

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class Success(Generic[R]):
    key: str
    value: R
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Failure:
    key: str
    error: MirrorError
    ok: bool = field(default=False, init=False)


BatchResult = Success[Any] | Failure


@dataclass(frozen=True)
class BatchSummary:
    succeeded: int
    failed: int
    first_failures: list[Failure]

    @property
    def total(self) -> int:
        return self.succeeded + self.failed

    def summary_line(self) -> str:
        return f"{self.succeeded} succeeded, {self.failed} failed"

    def failure_lines(self) -> list[str]:
        return [f"{f.key}: {f.error.tag.value}: {f.error.message}" for f in self.first_failures]


async def run_all(
    items: Iterable[T],
    operation: Callable[[T], Awaitable[R]],
    *,
    concurrency: int = 4,
    key: Callable[[T], str] = str,
) -> list[Success[R] | Failure]:
    """Apply ``operation`` to every item with at most ``concurrency`` in flight.

    Args:
        items: Inputs; consumed once
        operation: Coroutine function applied to each item
        concurrency: Maximum simultaneous operations (>= 1)
        key: Label for each item in its result

    Returns:
        One result per input, in input order.
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")

    inputs = list(items)
    semaphore = asyncio.Semaphore(concurrency)

    async def _run_one(item: T) -> Success[R] | Failure:
        label = key(item)
        async with semaphore:
            try:
                value = await operation(item)
            except Exception as e:
                error = classify_error(e)
                batch_items_total.labels(outcome="failure").inc()
                logger.warning(
                    "batch_item_failed",
                    extra={"item": label, "error_tag": error.tag.value, "error": error.message},
                )
                return Failure(key=label, error=error)
        batch_items_total.labels(outcome="success").inc()
        return Success(key=label, value=value)

    results = await asyncio.gather(*(_run_one(item) for item in inputs))

    failed = sum(1 for r in results if not r.ok)
    logger.info(
        "batch_complete",
        extra={"total": len(results), "succeeded": len(results) - failed, "failed": failed},
    )
    return list(results)


def summarize(results: Iterable[Success[Any] | Failure], max_failures: int = 5) -> BatchSummary:
    """Count outcomes and keep the first ``max_failures`` failures."""
    succeeded = 0
    failures: list[Failure] = []
    failed = 0
    for result in results:
        if result.ok:
            succeeded += 1
        else:
            failed += 1
            if len(failures) < max_failures:
                failures.append(result)
    return BatchSummary(succeeded=succeeded, failed=failed, first_failures=failures)
