"""Single-flight guard: concurrent callers share one in-flight cycle.

The guard memoizes the task of the running cycle. A caller arriving while it
runs awaits the same task and gets its result (or exception) instead of
starting a second claim. Once the task finishes the next call starts a fresh
cycle; nothing is queued.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from labreport_service.pipeline.orchestrator import ExtractionOrchestrator
from labreport_service.pipeline.types import CycleResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight(Generic[T]):
    def __init__(self) -> None:
        self._inflight: asyncio.Task[T] | None = None

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def run(self, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._inflight
        if task is None or task.done():
            task = asyncio.ensure_future(factory())
            task.add_done_callback(self._release)
            self._inflight = task
        else:
            logger.debug("Joining in-flight operation")
        # shield: a cancelled caller must not cancel the shared operation
        return await asyncio.shield(task)

    async def drain(self, *, timeout: float | None = None) -> None:
        """Wait for the in-flight operation; cancel it if ``timeout`` expires.

        Failures of the operation are logged, not raised: its callers have
        already received them.
        """
        task = self._inflight
        if task is None or task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except TimeoutError:
            if task.done():
                logger.warning("In-flight operation failed while draining: %r", task.exception())
                return
            logger.warning("In-flight operation still running after %ss; cancelling", timeout)
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        except Exception as e:
            logger.warning("In-flight operation failed while draining: %s: %s", type(e).__name__, e)

    def _release(self, task: asyncio.Task[T]) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled() and task.exception() is not None:
            # Marks the exception retrieved when every waiter was cancelled
            logger.debug("Shared operation failed: %r", task.exception())


class GuardedOrchestrator:
    """Entry point the scheduler and the trigger endpoint call.

    Binds a fixed batch size to the orchestrator and routes every call
    through one SingleFlight.
    """

    def __init__(self, orchestrator: ExtractionOrchestrator, *, batch_size: int) -> None:
        self._orchestrator = orchestrator
        self._batch_size = batch_size
        self._flight: SingleFlight[CycleResult] = SingleFlight()

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def in_flight(self) -> bool:
        return self._flight.in_flight

    async def run_cycle(self) -> CycleResult:
        return await self._flight.run(lambda: self._orchestrator.run_cycle(self._batch_size))

    async def drain(self, *, timeout: float | None = None) -> None:
        """Let a cycle started by any caller finish before the pool closes."""
        await self._flight.drain(timeout=timeout)

    async def next_delay_ms(self) -> int:
        result = await self.run_cycle()
        return result.delay_ms
