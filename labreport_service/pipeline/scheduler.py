"""Variable-interval polling loop.

The scheduled task returns the number of milliseconds to sleep before it
runs again. The loop is an explicit asyncio.Task owned by the scheduler:
``start()`` creates it, ``stop()`` wakes it from its sleep and waits for it
to exit. A run that is already in progress is allowed to finish so that no
claimed record is left behind by shutdown.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime

logger = logging.getLogger(__name__)

DEFAULT_ERROR_RETRY_DELAY_MS = 5000


@dataclass(frozen=True)
class SchedulerStatus:
    running: bool
    run_count: int
    started_at: datetime | None
    last_run_at: datetime | None
    last_delay_ms: int | None
    last_error: str | None


def _validate_delay(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ValueError(f"Task returned invalid delay {value!r}; expected a number >= 0")
    return int(value)


class PollingScheduler:
    def __init__(
        self,
        task: Callable[[], Awaitable[int]],
        *,
        name: str = "lab-extraction-poller",
        initial_delay_ms: int = 0,
        error_retry_delay_ms: int = DEFAULT_ERROR_RETRY_DELAY_MS,
        on_start: Callable[[], Awaitable[object]] | None = None,
    ) -> None:
        self._task_fn = task
        self._name = name
        self._initial_delay_ms = max(0, initial_delay_ms)
        self._error_retry_delay_ms = max(0, error_retry_delay_ms)
        self._on_start = on_start

        self._loop_task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._run_count = 0
        self._started_at: datetime | None = None
        self._last_run_at: datetime | None = None
        self._last_delay_ms: int | None = None
        self._last_error: str | None = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        if self.running:
            raise RuntimeError(f"Scheduler '{self._name}' is already running")

        self._stop_event = asyncio.Event()
        self._run_count = 0
        self._started_at = datetime.now(UTC)
        self._last_error = None
        self._loop_task = asyncio.create_task(self._run_forever(), name=self._name)
        logger.info(
            "Scheduler '%s' started (initial_delay_ms=%d)", self._name, self._initial_delay_ms
        )

    async def stop(self, *, timeout: float | None = None) -> None:
        """Stop after the current run; cancel only if ``timeout`` expires."""
        task = self._loop_task
        if task is None or task.done():
            logger.warning("Scheduler '%s' is not running", self._name)
            return

        self._stop_event.set()
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except TimeoutError:
            logger.warning("Scheduler '%s' did not stop within %ss; cancelling", self._name, timeout)
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        logger.info("Scheduler '%s' stopped after %d runs", self._name, self._run_count)

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            running=self.running,
            run_count=self._run_count,
            started_at=self._started_at,
            last_run_at=self._last_run_at,
            last_delay_ms=self._last_delay_ms,
            last_error=self._last_error,
        )

    async def _sleep(self, delay_ms: int) -> bool:
        """Sleep unless stopped first. Returns False when a stop was requested."""
        if self._stop_event.is_set():
            return False
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay_ms / 1000)
        except TimeoutError:
            return True
        return False

    async def _run_forever(self) -> None:
        if self._on_start is not None:
            try:
                await self._on_start()
            except Exception:
                logger.exception("Scheduler '%s' start hook failed; polling anyway", self._name)

        if self._initial_delay_ms and not await self._sleep(self._initial_delay_ms):
            return

        while not self._stop_event.is_set():
            self._run_count += 1
            self._last_run_at = datetime.now(UTC)
            try:
                delay_ms = _validate_delay(await self._task_fn())
                self._last_error = None
            except Exception as e:
                self._last_error = f"{type(e).__name__}: {e}"
                logger.exception(
                    "Scheduler '%s' run %d failed; retrying in %dms",
                    self._name,
                    self._run_count,
                    self._error_retry_delay_ms,
                )
                delay_ms = self._error_retry_delay_ms

            self._last_delay_ms = delay_ms
            logger.debug("Scheduler '%s' run %d next_delay_ms=%d", self._name, self._run_count, delay_ms)
            if not await self._sleep(delay_ms):
                break
