"""Core BatchQueue class."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from collections.abc import Sequence
from typing import Any, Callable

from runbatch.errors import QueueClosed
from runbatch.models import Pending, QueueConfig, QueueState, WorkItem

logger = logging.getLogger(__name__)


class BatchQueue:
    """
    Runs queued async work in batches, never more than ``concurrency`` at once.

    Results come back in the order work was added. The first failure stops
    the queue and is reported once; nothing after it is dispatched.

    Example:
        queue = runbatch.BatchQueue(concurrency=4)
        for url in urls:
            queue.add(lambda url=url: fetch(url))

        results = await queue.start()
    """

    def __init__(
        self,
        *,
        concurrency: int = 4,
        delay: float = 0.0,
        interval: float = 5.0,
        on_complete: Callable[[list[Any]], Any] | None = None,
        on_error: Callable[[BaseException], Any] | None = None,
        config: QueueConfig | None = None,
    ) -> None:
        self.config = config or QueueConfig(
            concurrency=concurrency,
            delay=delay,
            interval=interval,
        )

        # Callbacks
        self._on_complete_callback = on_complete
        self._on_error_callback = on_error

        # In-memory work storage
        self._queue: deque[WorkItem] = deque()   # Pending work, oldest first
        self._waiting: set[asyncio.Task] = set()  # Dispatch attempts parked until idle
        self._processed: list[Any] = []           # Results, in insertion order

        # Engine state
        self._working = False
        self._terminal: QueueState | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._batch_task: asyncio.Task | None = None
        self._future: asyncio.Future | None = None

    # --- Introspection ---

    @property
    def state(self) -> QueueState:
        """Current engine state, derived from the busy flag and waiters."""
        if self._terminal is not None:
            return self._terminal
        if self._waiting:
            return QueueState.AWAITING_RETRY
        if self._working:
            return QueueState.BATCH_IN_FLIGHT
        return QueueState.IDLE

    @property
    def busy(self) -> bool:
        return self._working

    @property
    def pending(self) -> int:
        """Number of items not yet dispatched."""
        return len(self._queue)

    @property
    def results(self) -> list[Any]:
        """Results collected so far, in insertion order."""
        return list(self._processed)

    def __len__(self) -> int:
        return len(self._queue)

    # --- Event Callbacks ---

    def on_complete(self, func):
        """
        Decorator to register the completion callback.

        Called once with the full result list when the queue empties.
        Replaced by ``start()``, which routes completion to its future.

        Example:
            @queue.on_complete
            def done(results):
                print(f"{len(results)} results")
        """
        self._on_complete_callback = func
        return func

    def on_error(self, func):
        """
        Decorator to register the error callback.

        Called once with the first failure. Replaced by ``start()``.

        Example:
            @queue.on_error
            def failed(error):
                alerting.send(f"Batch failed: {error}")
        """
        self._on_error_callback = func
        return func

    # --- Work Operations ---

    def add(self, work: Any) -> None:
        """
        Add work to the queue. Nothing runs until ``start()`` or ``drain()``.

        Args:
            work: A zero-argument callable returning an awaitable, an
                awaitable, or a list/tuple of those.

        Raises:
            InvalidWorkItem: If any item has neither shape. Nothing is added.
            QueueClosed: If the queue already completed or failed.
        """
        self._check_open()

        if isinstance(work, Sequence) and not isinstance(work, (str, bytes, bytearray)):
            items = [WorkItem.coerce(w) for w in work]
        else:
            items = [WorkItem.coerce(work)]

        self._queue.extend(items)
        logger.debug("Queued %d item(s), %d pending", len(items), len(self._queue))

    def add_now(self, work: Any) -> None:
        """
        Add work and dispatch right away if no batch is running.

        If a batch is in flight, the new work is picked up once it settles.
        Requires a running event loop.
        """
        asyncio.get_running_loop()
        self.add(work)
        if not self._working:
            self._dequeue()

    # --- Lifecycle ---

    def start(self) -> asyncio.Future:
        """
        Start processing and return a future for the ordered results.

        Dispatch begins on the next event loop turn, so callers can finish
        wiring things up first. The future rejects with the first failure.
        Calling ``start()`` again returns the same future.
        """
        self._check_open()
        if self._future is not None:
            return self._future

        loop = asyncio.get_running_loop()
        future = loop.create_future()

        def resolve(results: list[Any]) -> None:
            if not future.done():
                future.set_result(results)

        def reject(error: BaseException) -> None:
            if not future.done():
                future.set_exception(error)

        self._on_complete_callback = resolve
        self._on_error_callback = reject
        self._future = future

        loop.call_soon(self._dequeue)
        return future

    def drain(self) -> None:
        """
        Push everything queued through now, dropping parked dispatch attempts.

        Batches still respect ``concurrency`` and run one after another, so
        results keep their insertion order. Completion is reported through
        the callbacks; ``drain()`` itself returns immediately. Requires a
        running event loop.
        """
        self._check_open()
        asyncio.get_running_loop()
        if not self._queue:
            return

        try:
            for task in self._waiting:
                task.cancel()
            self._waiting.clear()

            batches = len(self._queue) // self.config.concurrency
            logger.debug(
                "Draining %d pending item(s): %d full batch(es)",
                len(self._queue),
                batches,
            )

            # An in-flight batch chains into the next one on its own once
            # no waiter is parked.
            if not self._working:
                self._dequeue()
        except Exception as e:
            self._fail(e)

    # --- Dispatch ---

    def _dequeue(self) -> None:
        """Dispatch the next batch, or park a waiter if one is running."""
        if self._terminal is not None:
            return

        batch: list[Any] = []
        try:
            if self._working:
                self._wait_for_idle()
                return

            self._working = True
            self._idle.clear()

            while self._queue and len(batch) < self.config.concurrency:
                batch.append(self._queue.popleft().resolve())

            if not batch:
                self._working = False
                self._idle.set()
                if not self._waiting:
                    self._complete()
                return

            logger.debug(
                "Dispatching batch of %d, %d still pending",
                len(batch),
                len(self._queue),
            )
            self._batch_task = asyncio.create_task(self._run_batch(batch))

        except Exception as e:
            # Don't leave half-built batches un-awaited
            for value in batch:
                _discard(value)
            self._working = False
            self._idle.set()
            self._fail(e)

    async def _run_batch(self, batch: list[Any]) -> None:
        """Wait for every unit in the batch, then hand results back."""
        try:
            results = await asyncio.gather(*(_settle(value) for value in batch))
            if self.config.delay:
                await asyncio.sleep(self.config.delay)
        except (Exception, asyncio.CancelledError) as e:
            # A cancelled unit fails the batch like any other error
            self._working = False
            self._idle.set()
            self._fail(e)
            return
        finally:
            self._batch_task = None

        self._batch_done(results)

    def _batch_done(self, results: list[Any]) -> None:
        if self._terminal is not None:
            logger.debug("Discarding %d result(s) from a finished queue", len(results))
            return

        self._processed.extend(results)
        self._working = False
        self._idle.set()
        logger.debug("Batch settled, %d result(s) so far", len(self._processed))

        if not self._queue and not self._waiting:
            self._complete()
        elif self._queue and not self._waiting:
            self._dequeue()
        # Otherwise a parked waiter picks up from here

    def _wait_for_idle(self) -> None:
        """Park a dispatch attempt until the running batch settles."""
        if self._waiting:
            return  # One parked attempt is enough

        task = asyncio.create_task(self._retry_when_idle())
        self._waiting.add(task)
        task.add_done_callback(self._waiting.discard)
        logger.debug("Queue busy, dispatch parked until idle")

    async def _retry_when_idle(self) -> None:
        interval = self.config.interval or None
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=interval)
        except asyncio.TimeoutError:
            logger.debug("Still busy after %.2fs, re-checking", interval)

        self._waiting.discard(asyncio.current_task())
        self._dequeue()

    # --- Terminal States ---

    def _complete(self) -> None:
        self._terminal = QueueState.COMPLETED
        results = list(self._processed)
        if self._on_complete_callback is None:
            logger.info("Queue completed with %d result(s), no on_complete registered", len(results))
            return
        logger.info("Queue completed with %d result(s)", len(results))
        self._emit(self._on_complete_callback, results)

    def _fail(self, error: BaseException) -> None:
        if self._terminal is not None:
            return
        self._terminal = QueueState.FAILED

        for task in self._waiting:
            task.cancel()
        self._waiting.clear()

        if self._queue:
            logger.debug("Discarding %d undispatched item(s)", len(self._queue))
        while self._queue:
            item = self._queue.popleft()
            if isinstance(item, Pending):
                _discard(item.awaitable)

        if self._on_error_callback is None:
            logger.warning("Queue failed, no on_error registered: %r", error)
            return
        logger.warning("Queue failed: %r", error)
        self._emit(self._on_error_callback, error)

    def _emit(self, callback: Callable, arg: Any) -> None:
        try:
            callback(arg)
        except Exception:
            # Callback errors must not affect flow
            logger.exception("Callback %r raised", callback)

    def _check_open(self) -> None:
        if self._terminal is not None:
            raise QueueClosed(self._terminal)


def _discard(value: Any) -> None:
    """Close or cancel an awaitable that will never be awaited."""
    if inspect.iscoroutine(value):
        value.close()
    elif isinstance(value, asyncio.Future) and not value.done():
        value.cancel()


async def _settle(value: Any) -> Any:
    """Await ``value`` if it's awaitable; plain values pass straight through."""
    if inspect.isawaitable(value):
        return await value
    return value
