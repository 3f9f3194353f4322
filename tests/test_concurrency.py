"""Tests for the retry policy and bounded parallel runner."""

import asyncio

import pytest

from notionally.utils.concurrency import RetryPolicy, retry_async, run_bounded


class InFlightTracker:
    def __init__(self) -> None:
        self.current = 0
        self.high_water = 0

    async def worker(self, item: int, index: int) -> int:
        self.current += 1
        self.high_water = max(self.high_water, self.current)
        await asyncio.sleep(0.01)
        self.current -= 1
        return item * 10


class TestRunBounded:
    def test_never_exceeds_two_in_flight_for_six_items(self):
        tracker = InFlightTracker()

        results = asyncio.run(run_bounded(list(range(6)), tracker.worker, 2))

        assert tracker.high_water == 2
        assert results == [0, 10, 20, 30, 40, 50]

    def test_never_exceeds_five_in_flight_for_ten_items(self):
        tracker = InFlightTracker()

        asyncio.run(run_bounded(list(range(10)), tracker.worker, 5))

        assert tracker.high_water == 5

    def test_preserves_input_order_when_completion_order_differs(self):
        async def worker(delay: float, index: int) -> int:
            await asyncio.sleep(delay)
            return index

        results = asyncio.run(run_bounded([0.03, 0.0, 0.02, 0.01], worker, 4))

        assert results == [0, 1, 2, 3]

    def test_empty_input_returns_empty_list(self):
        async def worker(item, index):
            raise AssertionError("should not be called")

        assert asyncio.run(run_bounded([], worker, 2)) == []

    def test_rejects_non_positive_concurrency(self):
        async def worker(item, index):
            return item

        with pytest.raises(ValueError):
            asyncio.run(run_bounded([1], worker, 0))

    def test_worker_exceptions_propagate(self):
        async def worker(item, index):
            raise RuntimeError("worker failed")

        with pytest.raises(RuntimeError, match="worker failed"):
            asyncio.run(run_bounded([1, 2], worker, 2))


class TestRetryAsync:
    def test_succeeds_after_transient_failures_with_exponential_waits(self, sleep_recorder):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("transient")
            return "ok"

        result = asyncio.run(retry_async(flaky, RetryPolicy(attempts=3, base_delay=2.0), sleep=sleep_recorder))

        assert result == "ok"
        assert len(attempts) == 3
        assert sleep_recorder.calls == [2.0, 4.0]

    def test_reraises_last_error_when_attempts_exhausted(self, sleep_recorder):
        attempts = []

        async def always_fails():
            attempts.append(1)
            raise ConnectionError(f"failure {len(attempts)}")

        with pytest.raises(ConnectionError, match="failure 3"):
            asyncio.run(retry_async(always_fails, RetryPolicy(attempts=3), sleep=sleep_recorder))

        assert len(attempts) == 3
        assert len(sleep_recorder.calls) == 2

    def test_non_retryable_errors_stop_immediately(self, sleep_recorder):
        attempts = []

        async def fails():
            attempts.append(1)
            raise ValueError("permanent")

        with pytest.raises(ValueError):
            asyncio.run(
                retry_async(
                    fails,
                    RetryPolicy(attempts=3),
                    retryable=lambda exc: not isinstance(exc, ValueError),
                    sleep=sleep_recorder,
                )
            )

        assert len(attempts) == 1
        assert sleep_recorder.calls == []

    def test_waits_are_capped_by_max_delay(self, sleep_recorder):
        async def always_fails():
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            asyncio.run(
                retry_async(always_fails, RetryPolicy(attempts=4, base_delay=2.0, max_delay=5.0), sleep=sleep_recorder)
            )

        assert sleep_recorder.calls == [2.0, 4.0, 5.0]
