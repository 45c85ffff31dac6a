"""
Request deduplication and opportunistic batching.

The BatchCoordinator keeps a registry of in-flight requests, at most one per
cache key. A request for a key that is already in flight subscribes to the
existing request instead of starting a new execution. A request for a new
key opens (or joins) a batch that stays open for a short debounce window:

- schedule(key, executor): the batch holds only this key; the executor runs
  once when the window elapses, whatever the number of subscribers.
- schedule_batched(key, payload, group): compatible keys that share a
  BatchGroup name within the window are merged, and the group's run()
  receives all of their payloads in a single call.

A batch closes when its window elapses or it reaches max_batch_size. Once
closed no request can join it; its executor runs exactly once and every
subscriber of every key is settled with that key's result. A failure of the
shared call is delivered to every subscriber unchanged. A group run() may
instead report per-key failures by returning an exception as a key's value.

Cancellation: a subscriber cancelled before its batch closes is removed from
the subscriber list. The batch still runs even if nobody is left waiting.
Running executions are never cancelled.

Per the monitor loop pattern, the debounce uses Event.wait() with a timeout
so a full batch is dispatched without waiting out the window.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from kafka_query import metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")

BatchRunner = Callable[[dict[str, Any]], Awaitable[Mapping[str, Any]]]
"""Runs a closed batch: payloads keyed by cache key -> result (or exception) per key."""


@dataclass(frozen=True)
class BatchGroup:
    """
    A family of compatible requests that may be merged into one call.

    Attributes:
        name: Compatibility key (e.g. dialect plus entity kind)
        run: Executes all payloads of a closed batch in one call
    """

    name: str
    run: BatchRunner


@dataclass
class InFlightRequest:
    """
    Bookkeeping for one cache key between first request and settlement.

    Attributes:
        cache_key: Key being fetched
        payload: What the batch runner needs to fetch it
        created_at: Clock reading when the first request arrived
        subscribers: One future per waiting caller
    """

    cache_key: str
    payload: Any
    created_at: float
    subscribers: list[asyncio.Future] = field(default_factory=list)
    batch: _Batch | None = field(default=None, repr=False)


@dataclass
class _Batch:
    group: str | None
    run: BatchRunner
    requests: dict[str, InFlightRequest] = field(default_factory=dict)
    closed: bool = False
    full: asyncio.Event = field(default_factory=asyncio.Event)


class MissingBatchResultError(LookupError):
    """Raised to subscribers when a batch runner returns no result for their key."""

    def __init__(self, cache_key: str) -> None:
        self.cache_key = cache_key
        super().__init__(f"Batch returned no result for key {cache_key}")


class BatchCoordinator:
    """
    Collapses concurrent requests into single executions.

    Must be used from a single event loop. All registry mutation happens in
    synchronous sections between awaits, so no lock is required.

    Args:
        window_seconds: Debounce window a new batch stays open for
        max_batch_size: Distinct keys after which a batch closes early
        clock: Clock used for InFlightRequest.created_at

    Example:
        coordinator = BatchCoordinator(window_seconds=0.025)
        results = await asyncio.gather(
            *(coordinator.schedule("key", fetch) for _ in range(10))
        )
        # fetch() ran once, all ten callers got its result
    """

    def __init__(
        self,
        window_seconds: float = 0.025,
        max_batch_size: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_batch_size <= 0:
            raise ValueError(f"max_batch_size must be positive, got {max_batch_size}")
        self.window_seconds = window_seconds
        self.max_batch_size = max_batch_size
        self._clock = clock
        self._in_flight: dict[str, InFlightRequest] = {}
        self._open: dict[str, _Batch] = {}
        self._tasks: set[asyncio.Task] = set()

    async def schedule(self, key: str, executor: Callable[[], Awaitable[T]]) -> T:
        """
        Run executor for key, or join the request already in flight for key.

        Args:
            key: Cache key identifying the request
            executor: Zero-argument coroutine function producing the result

        Returns:
            The executor's result, shared by every subscriber

        Raises:
            Whatever the executor raised, unchanged
        """

        async def run(payloads: dict[str, Any]) -> dict[str, Any]:
            return {key: await executor()}

        return await self._submit(key, None, run, None)

    async def schedule_batched(self, key: str, payload: Any, group: BatchGroup) -> Any:
        """
        Fetch key as part of a merged batch for group.

        Args:
            key: Cache key identifying the request
            payload: Input handed to group.run() for this key
            group: Group whose open batch the request joins

        Returns:
            The result group.run() produced for key

        Raises:
            The exception group.run() raised, or the exception it returned
            for this key
        """
        return await self._submit(key, payload, group.run, group.name)

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    async def drain(self) -> None:
        """Wait until every scheduled batch has settled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _submit(
        self, key: str, payload: Any, run: BatchRunner, group: str | None
    ) -> Any:
        loop = asyncio.get_running_loop()

        request = self._in_flight.get(key)
        if request is not None:
            metrics.record_deduplicated()
            logger.debug("Joining in-flight request for %s", key)
        else:
            batch = self._open.get(group) if group is not None else None
            if batch is None:
                batch = self._open_batch(group, run)
            request = InFlightRequest(
                cache_key=key, payload=payload, created_at=self._clock(), batch=batch
            )
            self._in_flight[key] = request
            batch.requests[key] = request
            if len(batch.requests) >= self.max_batch_size:
                self._close(batch)
                batch.full.set()

        future: asyncio.Future = loop.create_future()
        request.subscribers.append(future)
        try:
            return await future
        except asyncio.CancelledError:
            if request.batch is not None and not request.batch.closed:
                if future in request.subscribers:
                    request.subscribers.remove(future)
            raise

    def _open_batch(self, group: str | None, run: BatchRunner) -> _Batch:
        batch = _Batch(group=group, run=run)
        if group is not None:
            self._open[group] = batch
        task = asyncio.ensure_future(self._dispatch(batch))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return batch

    def _close(self, batch: _Batch) -> None:
        batch.closed = True
        if batch.group is not None and self._open.get(batch.group) is batch:
            del self._open[batch.group]

    async def _dispatch(self, batch: _Batch) -> None:
        try:
            await asyncio.wait_for(batch.full.wait(), timeout=self.window_seconds)
        except asyncio.TimeoutError:
            pass  # Window elapsed before the batch filled up
        self._close(batch)

        payloads = {key: req.payload for key, req in batch.requests.items()}
        metrics.record_batch(len(payloads))
        logger.debug("Closing batch %s with %d key(s)", batch.group or "-", len(payloads))

        outcome: dict[str, Any] = {}
        try:
            results = await batch.run(payloads)
            for key in payloads:
                if key in results:
                    outcome[key] = results[key]
                else:
                    outcome[key] = MissingBatchResultError(key)
        except Exception as e:
            outcome = dict.fromkeys(payloads, e)
        finally:
            self._settle(batch, outcome)

    def _settle(self, batch: _Batch, outcome: dict[str, Any]) -> None:
        for key, request in batch.requests.items():
            if self._in_flight.get(key) is request:
                del self._in_flight[key]

            for future in request.subscribers:
                if future.done():
                    continue  # Subscriber was cancelled
                if key not in outcome:
                    future.cancel()
                    continue
                value = outcome[key]
                if isinstance(value, BaseException):
                    future.set_exception(value)
                else:
                    future.set_result(value)
