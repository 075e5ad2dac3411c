"""Simulation runner for runbatch-sim.

This module handles the actual simulation logic, decoupled from display.
It updates a SimulationState object that can be rendered by any display.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

import runbatch
from runbatch import QueueState

if TYPE_CHECKING:
    from runbatch_sim.display import SimulationState

logger = logging.getLogger(__name__)

MODES = ("start", "drain", "add_now")


@dataclass
class SimConfig:
    """Configuration for a simulation run."""

    count: int = 100
    latency_ms: int = 100
    latency_jitter: float = 0.2  # ±20% variance
    outlier_chance: float = 0.0  # Probability of outlier (0.0-1.0)
    outlier_multiplier: float = 5.0  # Outliers take this much longer
    error_rate: float = 0.0
    duration: float | None = None
    concurrency: int = 4
    delay: float = 0.0  # Seconds after each batch
    interval: float = 5.0  # Seconds between re-checks while busy
    mode: str = "start"
    submit_rate: float | None = None  # work/second, add_now mode only
    seed: int | None = None

    def __post_init__(self) -> None:
        if self.mode not in MODES:
            raise ValueError(f"Unknown mode: {self.mode}. Use one of: {', '.join(MODES)}.")


class SimulationRunner:
    """Runs simulations and updates state for display.

    This class is decoupled from display - it just updates state.
    The display polls state to render.

    Usage:
        config = SimConfig(count=100, latency_ms=50)
        state = SimulationState()
        runner = SimulationRunner(config, state)

        # In your event loop:
        results = await runner.run()
    """

    def __init__(
        self,
        config: SimConfig,
        state: "SimulationState",
        on_event: Callable[[str, str, str], None] | None = None,
    ):
        self.config = config
        self.state = state
        self.on_event = on_event or state.add_event

        self._queue: runbatch.BatchQueue | None = None
        self._running = False
        self._runs = 0

    async def run(self) -> list[Any]:
        """Run the simulation to completion and return the collected results."""
        if self.config.seed is not None:
            random.seed(self.config.seed)

        self._running = True
        self.state.start_time = time.time()
        self.state.mode = self.config.mode
        self.state.concurrency = self.config.concurrency
        self.state.target_count = self.config.count
        self.state.latency_ms = self.config.latency_ms
        self.state.latency_jitter = self.config.latency_jitter
        self.state.outlier_chance = self.config.outlier_chance
        self.state.error_rate = self.config.error_rate

        monitor = asyncio.create_task(self._monitor())
        results: list[Any] = []
        try:
            if self.config.mode == "add_now":
                pipeline = self._run_add_now()
            else:
                pipeline = self._run_batched()
            results = await asyncio.wait_for(pipeline, timeout=self.config.duration)
            self.state.in_order = results == sorted(results)
        except asyncio.TimeoutError:
            self.state.error = f"Duration limit of {self.config.duration}s reached"
            self.on_event("timeout", "queue", self.state.error)
        except Exception as e:
            self.state.error = f"{type(e).__name__}: {e}"
            self.on_event("failed", "queue", str(e))
            logger.debug("Simulation failed", exc_info=True)
        finally:
            self._running = False
            monitor.cancel()
            try:
                await monitor
            except asyncio.CancelledError:
                pass
            self._update_state()

        return results

    async def _run_batched(self) -> list[Any]:
        """Queue everything up front, then start() or drain()."""
        queue, done = self._new_queue()
        queue.add([self._make_unit(i) for i in range(self.config.count)])
        self.state.submitted = self.config.count
        self.on_event("queued", "queue", f"{self.config.count} items")

        if self.config.mode == "start":
            return await queue.start()

        queue.drain()
        return await done

    async def _run_add_now(self) -> list[Any]:
        """Trickle work in with add_now, opening a fresh queue after each completes."""
        results: list[Any] = []
        queue, done = self._new_queue()

        for i in range(self.config.count):
            if not self._running:
                break

            if queue.state in (QueueState.COMPLETED, QueueState.FAILED):
                results.extend(await done)
                queue, done = self._new_queue()

            queue.add_now(self._make_unit(i))
            self.state.submitted += 1
            self.on_event("queued", f"work_{i:04d}")

            if self.config.submit_rate:
                await asyncio.sleep(1.0 / self.config.submit_rate)

        results.extend(await done)
        return results

    def _new_queue(self) -> tuple[runbatch.BatchQueue, asyncio.Future]:
        """Create a queue whose callbacks settle the returned future."""
        done = asyncio.get_running_loop().create_future()

        def finished(results: list[Any]) -> None:
            if not done.done():
                done.set_result(results)

        def failed(error: BaseException) -> None:
            if not done.done():
                done.set_exception(error)

        self._queue = runbatch.BatchQueue(
            concurrency=self.config.concurrency,
            delay=self.config.delay,
            interval=self.config.interval,
            on_complete=finished,
            on_error=failed,
        )
        self._runs += 1
        return self._queue, done

    def _make_unit(self, index: int) -> Callable[[], Any]:
        work_id = f"work_{index:04d}"

        async def unit() -> int:
            if self.state.running == 0:
                self.state.batches += 1
                self.state.batch_size = 0
                self.on_event("batch", f"batch_{self.state.batches}")
            self.state.running += 1
            self.state.batch_size += 1
            self.state.peak_running = max(self.state.peak_running, self.state.running)
            self.on_event("started", work_id)
            started = time.time()

            try:
                # Calculate latency with jitter and possible outliers
                base_latency = self.config.latency_ms / 1000.0
                is_outlier = False

                if base_latency > 0:
                    if self.config.outlier_chance > 0 and random.random() < self.config.outlier_chance:
                        actual_latency = base_latency * self.config.outlier_multiplier
                        actual_latency *= random.uniform(0.8, 1.5)
                        is_outlier = True
                    else:
                        jitter = self.config.latency_jitter
                        actual_latency = base_latency * random.uniform(1 - jitter, 1 + jitter)

                    await asyncio.sleep(actual_latency)

                # Simulate errors
                if random.random() < self.config.error_rate:
                    raise RuntimeError(f"Simulated error in {work_id}")

                detail = f"{int((time.time() - started) * 1000)}ms"
                if is_outlier:
                    detail += " [outlier]"
                self.state.completed += 1
                self.on_event("completed", work_id, detail)
                return index

            except Exception as e:
                self.state.failed += 1
                self.on_event("failed", work_id, str(e))
                raise
            finally:
                self.state.running -= 1

        return unit

    async def _monitor(self) -> None:
        """Refresh queue-derived stats until the run ends."""
        while self._running:
            self._update_state()
            await asyncio.sleep(0.05)

    def _update_state(self) -> None:
        self.state.elapsed = self._elapsed
        if self._queue is None:
            return
        self.state.queued = self._queue.pending
        self.state.queue_state = self._queue.state.value
        self.state.parked = self._queue.state == QueueState.AWAITING_RETRY

    @property
    def runs(self) -> int:
        """Number of queues opened so far."""
        return self._runs

    @property
    def _elapsed(self) -> float:
        """Elapsed time since start."""
        return time.time() - self.state.start_time

    def stop(self) -> None:
        """Request simulation stop. Only add_now mode stops submitting early."""
        self._running = False
