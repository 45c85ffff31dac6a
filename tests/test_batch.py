"""
Tests for BatchCoordinator.

These tests verify the coordinator correctly:
- Runs the executor once for any number of concurrent identical requests
- Merges compatible requests arriving within the window into one call
- Delivers a shared failure unchanged to every subscriber
- Closes a batch early at max_batch_size
- Keeps running a batch whose subscribers were cancelled
"""

import asyncio

import pytest

from kafka_query.batch import BatchCoordinator, BatchGroup, MissingBatchResultError
from kafka_query.exceptions import InvalidQueryError, ServiceUnavailableError


@pytest.fixture
def coordinator():
    """Coordinator with a short window so tests stay fast."""
    return BatchCoordinator(window_seconds=0.01, max_batch_size=10)


class CountingExecutor:
    """Zero-argument executor that counts invocations."""

    def __init__(self, value="result", error: Exception | None = None):
        self.value = value
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.value


class RecordingRunner:
    """Batch runner that doubles every payload and records each call."""

    def __init__(self):
        self.calls: list[dict] = []

    async def __call__(self, payloads):
        self.calls.append(dict(payloads))
        return {key: value * 2 for key, value in payloads.items()}


# =============================================================================
# Deduplication
# =============================================================================


class TestDeduplication:
    """Tests for in-flight request deduplication."""

    @pytest.mark.asyncio
    async def test_concurrent_identical_requests_execute_once(self, coordinator):
        """N concurrent schedule() calls for one key run the executor exactly once."""
        executor = CountingExecutor(value={"cpu": 42.0})

        results = await asyncio.gather(*(coordinator.schedule("k", executor) for _ in range(25)))

        assert executor.calls == 1
        assert all(r is results[0] for r in results)

    @pytest.mark.asyncio
    async def test_registry_is_cleared_after_settlement(self, coordinator):
        executor = CountingExecutor()
        task = asyncio.create_task(coordinator.schedule("k", executor))
        await asyncio.sleep(0)

        assert coordinator.is_in_flight("k")
        assert coordinator.in_flight_count == 1

        await task
        assert not coordinator.is_in_flight("k")
        assert coordinator.in_flight_count == 0

    @pytest.mark.asyncio
    async def test_sequential_requests_execute_again(self, coordinator):
        """Dedup only covers requests that overlap in time."""
        executor = CountingExecutor()
        await coordinator.schedule("k", executor)
        await coordinator.schedule("k", executor)
        assert executor.calls == 2

    @pytest.mark.asyncio
    async def test_registry_is_cleared_after_failure(self, coordinator):
        executor = CountingExecutor(error=ServiceUnavailableError("down"))
        with pytest.raises(ServiceUnavailableError):
            await coordinator.schedule("k", executor)
        assert coordinator.in_flight_count == 0

    @pytest.mark.asyncio
    async def test_failure_reaches_every_subscriber_unchanged(self, coordinator):
        """All subscribers see the very same error object."""
        error = ServiceUnavailableError("down", status_code=503)
        executor = CountingExecutor(error=error)

        results = await asyncio.gather(
            *(coordinator.schedule("k", executor) for _ in range(5)), return_exceptions=True
        )

        assert executor.calls == 1
        assert all(r is error for r in results)

    @pytest.mark.asyncio
    async def test_different_keys_execute_separately(self, coordinator):
        first = CountingExecutor("a")
        second = CountingExecutor("b")

        a, b = await asyncio.gather(
            coordinator.schedule("a", first), coordinator.schedule("b", second)
        )

        assert (a, b) == ("a", "b")
        assert first.calls == 1
        assert second.calls == 1


# =============================================================================
# Batching
# =============================================================================


class TestBatching:
    """Tests for merging compatible requests."""

    @pytest.mark.asyncio
    async def test_compatible_requests_are_merged(self, coordinator):
        """Requests of one group within the window share one run() call."""
        runner = RecordingRunner()
        group = BatchGroup("timeseries:cluster", runner)

        a, b, c = await asyncio.gather(
            coordinator.schedule_batched("a", 1, group),
            coordinator.schedule_batched("b", 2, group),
            coordinator.schedule_batched("c", 3, group),
        )

        assert (a, b, c) == (2, 4, 6)
        assert runner.calls == [{"a": 1, "b": 2, "c": 3}]

    @pytest.mark.asyncio
    async def test_different_groups_are_not_merged(self, coordinator):
        runner = RecordingRunner()
        clusters = BatchGroup("timeseries:cluster", runner)
        topics = BatchGroup("timeseries:topic", runner)

        await asyncio.gather(
            coordinator.schedule_batched("a", 1, clusters),
            coordinator.schedule_batched("b", 2, topics),
        )

        assert sorted(map(sorted, runner.calls)) == [["a"], ["b"]]

    @pytest.mark.asyncio
    async def test_duplicate_key_in_batch_runs_once(self, coordinator):
        runner = RecordingRunner()
        group = BatchGroup("g", runner)

        results = await asyncio.gather(
            *(coordinator.schedule_batched("a", 1, group) for _ in range(3))
        )

        assert results == [2, 2, 2]
        assert runner.calls == [{"a": 1}]

    @pytest.mark.asyncio
    async def test_full_batch_closes_before_window(self):
        """Reaching max_batch_size dispatches without waiting out the window."""
        coordinator = BatchCoordinator(window_seconds=30.0, max_batch_size=2)
        runner = RecordingRunner()
        group = BatchGroup("g", runner)

        results = await asyncio.wait_for(
            asyncio.gather(
                coordinator.schedule_batched("a", 1, group),
                coordinator.schedule_batched("b", 2, group),
            ),
            timeout=1.0,
        )

        assert results == [2, 4]
        assert runner.calls == [{"a": 1, "b": 2}]

    @pytest.mark.asyncio
    async def test_overflow_opens_a_new_batch(self):
        coordinator = BatchCoordinator(window_seconds=0.01, max_batch_size=2)
        runner = RecordingRunner()
        group = BatchGroup("g", runner)

        await asyncio.gather(
            *(coordinator.schedule_batched(key, 1, group) for key in ("a", "b", "c"))
        )

        assert runner.calls == [{"a": 1, "b": 1}, {"c": 1}]

    @pytest.mark.asyncio
    async def test_shared_failure_reaches_all_keys(self, coordinator):
        error = ServiceUnavailableError("down")

        async def failing(payloads):
            raise error

        group = BatchGroup("g", failing)
        results = await asyncio.gather(
            coordinator.schedule_batched("a", 1, group),
            coordinator.schedule_batched("b", 2, group),
            return_exceptions=True,
        )

        assert results == [error, error]

    @pytest.mark.asyncio
    async def test_per_key_errors_stay_per_key(self, coordinator):
        """A runner may report one key's failure without failing the others."""
        error = InvalidQueryError("bad query")

        async def partial(payloads):
            return {"a": "ok", "b": error}

        group = BatchGroup("g", partial)
        a, b = await asyncio.gather(
            coordinator.schedule_batched("a", 1, group),
            coordinator.schedule_batched("b", 2, group),
            return_exceptions=True,
        )

        assert a == "ok"
        assert b is error

    @pytest.mark.asyncio
    async def test_missing_result_is_an_error(self, coordinator):
        async def forgetful(payloads):
            return {}

        with pytest.raises(MissingBatchResultError):
            await coordinator.schedule_batched("a", 1, BatchGroup("g", forgetful))


# =============================================================================
# Cancellation
# =============================================================================


class TestCancellation:
    """Tests for cancelled subscribers."""

    @pytest.mark.asyncio
    async def test_cancelled_subscriber_does_not_affect_others(self, coordinator):
        executor = CountingExecutor()
        first = asyncio.create_task(coordinator.schedule("k", executor))
        second = asyncio.create_task(coordinator.schedule("k", executor))
        await asyncio.sleep(0)

        first.cancel()

        assert await second == "result"
        with pytest.raises(asyncio.CancelledError):
            await first
        assert executor.calls == 1

    @pytest.mark.asyncio
    async def test_batch_runs_after_last_subscriber_cancels(self, coordinator):
        """The debounce timer is not cancelled with the last subscriber."""
        executor = CountingExecutor()
        task = asyncio.create_task(coordinator.schedule("k", executor))
        await asyncio.sleep(0)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        await coordinator.drain()
        assert executor.calls == 1
        assert coordinator.in_flight_count == 0

    def test_max_batch_size_must_be_positive(self):
        with pytest.raises(ValueError):
            BatchCoordinator(max_batch_size=0)
