"""Tests for failure propagation and callback handling."""

import asyncio
import gc
import logging
import warnings

import pytest

import runbatch
from runbatch import QueueState


async def value(v, sleep=0.0):
    if sleep:
        await asyncio.sleep(sleep)
    return v


async def fail(message, sleep=0.0):
    if sleep:
        await asyncio.sleep(sleep)
    raise RuntimeError(message)


def callbacks():
    """Return (queue kwargs, completions, errors, settled future)."""
    completions = []
    errors = []
    settled = asyncio.get_running_loop().create_future()

    def on_complete(results):
        completions.append(results)
        if not settled.done():
            settled.set_result(None)

    def on_error(error):
        errors.append(error)
        if not settled.done():
            settled.set_result(None)

    return {"on_complete": on_complete, "on_error": on_error}, completions, errors, settled


class TestFailurePropagation:
    """A failing unit fails the whole queue, once."""

    async def test_start_rejects_with_unit_error(self):
        queue = runbatch.BatchQueue()
        queue.add(lambda: fail("this failed"))

        with pytest.raises(RuntimeError) as exc_info:
            await queue.start()

        assert str(exc_info.value) == "this failed"
        assert queue.state == QueueState.FAILED

    async def test_error_is_propagated_unchanged(self):
        error = KeyError("missing")

        async def raises():
            raise error

        queue = runbatch.BatchQueue()
        queue.add([lambda: value(1), raises])

        with pytest.raises(KeyError) as exc_info:
            await queue.start()
        assert exc_info.value is error

    async def test_failure_among_successes(self):
        """One failing unit rejects; no completion fires."""
        kwargs, completions, errors, settled = callbacks()
        queue = runbatch.BatchQueue(concurrency=2, **kwargs)
        queue.add([
            lambda: value(1),
            lambda: value(2),
            lambda: fail("this failed", 0.01),
            lambda: value(4),
        ])
        queue.drain()

        await asyncio.wait_for(settled, 1)
        await asyncio.sleep(0.02)

        assert completions == []
        assert len(errors) == 1
        assert str(errors[0]) == "this failed"

    async def test_later_batches_not_dispatched(self):
        invoked = []

        def unit(i, ok=True):
            def factory():
                invoked.append(i)
                return value(i) if ok else fail(f"unit {i}")
            return factory

        queue = runbatch.BatchQueue(concurrency=2)
        queue.add([unit(0), unit(1, ok=False), unit(2), unit(3), unit(4)])

        with pytest.raises(RuntimeError, match="unit 1"):
            await queue.start()
        await asyncio.sleep(0.02)

        assert invoked == [0, 1]
        assert queue.pending == 0
        assert queue.results == []

    async def test_undispatched_coroutines_are_closed(self):
        """Coroutines still queued when the run fails never warn about being un-awaited."""
        queue = runbatch.BatchQueue(concurrency=1)
        queue.add([lambda: fail("first"), value("later")])

        with pytest.raises(RuntimeError, match="first"):
            await queue.start()
        assert queue.pending == 0

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            del queue
            gc.collect()

        assert not [w for w in caught if "never awaited" in str(w.message)]

    async def test_undispatched_futures_are_cancelled(self):
        waiting = asyncio.get_running_loop().create_future()
        queue = runbatch.BatchQueue(concurrency=1)
        queue.add([lambda: fail("first"), waiting])

        with pytest.raises(RuntimeError, match="first"):
            await queue.start()

        assert waiting.cancelled()

    async def test_error_fires_once_for_multiple_failures(self):
        kwargs, completions, errors, settled = callbacks()
        queue = runbatch.BatchQueue(**kwargs)
        queue.add([lambda: fail("first"), lambda: fail("second", 0.01)])
        queue.drain()

        await asyncio.wait_for(settled, 1)
        await asyncio.sleep(0.03)

        assert len(errors) == 1
        assert str(errors[0]) == "first"
        assert completions == []


class TestDispatchFaults:
    """Exceptions while building a batch go to the error callback."""

    async def test_factory_raising_synchronously(self):
        def boom():
            raise ValueError("bad factory")

        queue = runbatch.BatchQueue()
        queue.add([lambda: value(1), boom])

        with pytest.raises(ValueError, match="bad factory"):
            await queue.start()

    async def test_add_now_does_not_raise_to_caller(self):
        def boom():
            raise ValueError("bad factory")

        kwargs, completions, errors, settled = callbacks()
        queue = runbatch.BatchQueue(**kwargs)
        queue.add_now(boom)

        assert settled.done()
        assert [str(e) for e in errors] == ["bad factory"]
        assert not queue.busy
        assert queue.state == QueueState.FAILED

    async def test_half_built_batch_is_closed(self):
        """Coroutines produced before the failing factory are closed, not leaked."""
        produced = []

        def good():
            coro = value(1)
            produced.append(coro)
            return coro

        def boom():
            raise ValueError("bad factory")

        queue = runbatch.BatchQueue()
        queue.add([good, boom])

        with pytest.raises(ValueError):
            await queue.start()
        assert produced[0].cr_frame is None


class TestCallbacks:
    """Callback registration and robustness."""

    async def test_decorator_registration(self):
        queue = runbatch.BatchQueue()
        settled = asyncio.get_running_loop().create_future()

        @queue.on_complete
        def done(results):
            settled.set_result(results)

        @queue.on_error
        def failed(error):
            settled.set_exception(error)

        queue.add([lambda: value("a"), lambda: value("b")])
        queue.drain()

        assert await asyncio.wait_for(settled, 1) == ["a", "b"]

    async def test_callback_exception_is_logged(self, caplog):
        caplog.set_level(logging.DEBUG, logger="runbatch")
        queue = runbatch.BatchQueue()

        @queue.on_complete
        def done(results):
            raise RuntimeError("callback broke")

        queue.add_now(lambda: value(1))
        await asyncio.sleep(0.01)

        assert queue.state == QueueState.COMPLETED
        assert any(
            r.levelno == logging.ERROR and "raised" in r.getMessage()
            for r in caplog.records
        )

    async def test_failure_without_callback_is_logged(self, caplog):
        caplog.set_level(logging.WARNING, logger="runbatch")
        queue = runbatch.BatchQueue()
        queue.add_now(lambda: fail("nobody listening"))
        await asyncio.sleep(0.01)

        assert queue.state == QueueState.FAILED
        assert any("nobody listening" in r.getMessage() for r in caplog.records)

    async def test_start_replaces_callbacks(self):
        completions = []
        queue = runbatch.BatchQueue(on_complete=completions.append)
        queue.add(lambda: value(1))

        assert await queue.start() == [1]
        assert completions == []
