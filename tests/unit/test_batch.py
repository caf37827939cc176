"""Unit tests for the batch executor.

Tests:
- One result per input, in input order
- Failures are categorized and never abort the batch
- Concurrency bound
- Summary line and first-failure listing
"""

import asyncio

import httpx
import pytest

from src.ji_mirror.batch import Failure, Success, run_all, summarize
from src.ji_mirror.errors import ErrorTag, NotFoundError


class TestRunAll:
    @pytest.mark.asyncio
    async def test_results_in_input_order(self):
        async def slow_double(n: int) -> int:
            await asyncio.sleep(0.001 * (5 - n))
            return n * 2

        results = await run_all(range(5), slow_double, concurrency=5)

        assert [r.key for r in results] == ["0", "1", "2", "3", "4"]
        assert [r.value for r in results] == [0, 2, 4, 6, 8]
        assert all(isinstance(r, Success) and r.ok for r in results)

    @pytest.mark.asyncio
    async def test_failures_do_not_abort(self):
        async def fetch(key: str) -> str:
            if key == "PROJ-2":
                raise NotFoundError(f"{key} missing")
            if key == "PROJ-3":
                raise httpx.ConnectError("refused")
            return key.lower()

        results = await run_all(["PROJ-1", "PROJ-2", "PROJ-3", "PROJ-4"], fetch)

        assert [r.ok for r in results] == [True, False, False, True]
        assert isinstance(results[1], Failure)
        assert results[1].error.tag is ErrorTag.NOT_FOUND
        assert results[2].error.tag is ErrorTag.NETWORK

    @pytest.mark.asyncio
    async def test_concurrency_bound(self):
        in_flight = 0
        peak = 0

        async def work(n: int) -> int:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.001)
            in_flight -= 1
            return n

        results = await run_all(range(20), work, concurrency=3)

        assert len(results) == 20
        assert peak <= 3

    @pytest.mark.asyncio
    async def test_custom_key(self):
        async def identity(item: dict) -> dict:
            return item

        results = await run_all([{"key": "PROJ-1"}], identity, key=lambda item: item["key"])
        assert results[0].key == "PROJ-1"

    @pytest.mark.asyncio
    async def test_empty_input(self):
        async def never(item):
            raise AssertionError("not called")

        assert await run_all([], never) == []

    @pytest.mark.asyncio
    async def test_invalid_concurrency(self):
        async def noop(item):
            return item

        with pytest.raises(ValueError):
            await run_all([1], noop, concurrency=0)


class TestSummarize:
    def test_counts_and_first_failures(self):
        results = [Success(key=f"ok-{n}", value=n) for n in range(3)] + [
            Failure(key=f"PROJ-{n}", error=NotFoundError(f"PROJ-{n} missing")) for n in range(8)
        ]

        summary = summarize(results, max_failures=5)

        assert summary.summary_line() == "3 succeeded, 8 failed"
        assert summary.total == 11
        assert [f.key for f in summary.first_failures] == [f"PROJ-{n}" for n in range(5)]
        assert summary.failure_lines()[0] == "PROJ-0: not_found: PROJ-0 missing"

    def test_all_succeeded(self):
        summary = summarize([Success(key="a", value=1)])
        assert summary.failed == 0
        assert summary.failure_lines() == []
