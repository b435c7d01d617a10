"""Unit tests for the variable-interval polling scheduler.

Delays are kept to a few milliseconds; assertions wait on events rather
than wall-clock time wherever possible.
"""

from __future__ import annotations

import asyncio

import pytest

from labreport_service.pipeline.scheduler import PollingScheduler


class ScriptedTask:
    """Returns scripted delays (or raises scripted errors) and records runs."""

    def __init__(self, outcomes: list[object], *, then: object = 0) -> None:
        self._outcomes = list(outcomes)
        self._then = then
        self.runs = 0
        self.reached: dict[int, asyncio.Event] = {}

    def wait_for_run(self, n: int) -> asyncio.Event:
        return self.reached.setdefault(n, asyncio.Event())

    async def __call__(self) -> int:
        self.runs += 1
        self.wait_for_run(self.runs).set()
        outcome = self._outcomes.pop(0) if self._outcomes else self._then
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome  # type: ignore[return-value]


async def _wait(event: asyncio.Event, timeout: float = 2.0) -> None:
    await asyncio.wait_for(event.wait(), timeout=timeout)


class TestPolling:
    async def test_runs_repeatedly_using_returned_delay(self):
        task = ScriptedTask([1, 1, 1], then=1)
        scheduler = PollingScheduler(task)

        scheduler.start()
        await _wait(task.wait_for_run(4))
        await scheduler.stop()

        assert task.runs >= 4
        assert scheduler.status().last_delay_ms == 1

    async def test_long_delay_is_interrupted_by_stop(self):
        task = ScriptedTask([30000])
        scheduler = PollingScheduler(task)

        scheduler.start()
        await _wait(task.wait_for_run(1))
        await asyncio.wait_for(scheduler.stop(), timeout=1.0)

        assert task.runs == 1
        assert scheduler.running is False

    async def test_initial_delay_postpones_first_run(self):
        task = ScriptedTask([], then=30000)
        scheduler = PollingScheduler(task, initial_delay_ms=30000)

        scheduler.start()
        await asyncio.sleep(0.02)
        await scheduler.stop()

        assert task.runs == 0

    async def test_on_start_runs_before_first_task(self):
        order: list[str] = []

        async def on_start() -> None:
            order.append("on_start")

        async def task() -> int:
            order.append("task")
            return 30000

        scheduler = PollingScheduler(task, on_start=on_start)
        scheduler.start()
        while "task" not in order:
            await asyncio.sleep(0)
        await scheduler.stop()

        assert order == ["on_start", "task"]

    async def test_failing_on_start_does_not_stop_polling(self):
        async def on_start() -> None:
            raise OSError("database unavailable")

        task = ScriptedTask([30000])
        scheduler = PollingScheduler(task, on_start=on_start)

        scheduler.start()
        await _wait(task.wait_for_run(1))
        await scheduler.stop()

        assert task.runs == 1


class TestErrors:
    async def test_error_uses_error_retry_delay(self):
        task = ScriptedTask([RuntimeError("db down")], then=30000)
        scheduler = PollingScheduler(task, error_retry_delay_ms=5)

        scheduler.start()
        await _wait(task.wait_for_run(2))
        status_after_error_retry = scheduler.status()
        await scheduler.stop()

        assert task.runs == 2
        assert status_after_error_retry.run_count == 2

    async def test_error_is_recorded_until_next_success(self):
        task = ScriptedTask([RuntimeError("db down")], then=30000)
        scheduler = PollingScheduler(task, error_retry_delay_ms=30000)

        scheduler.start()
        await _wait(task.wait_for_run(1))
        await asyncio.sleep(0.01)
        status = scheduler.status()
        await scheduler.stop()

        assert status.last_error == "RuntimeError: db down"
        assert status.last_delay_ms == 30000
        assert status.running is True

    @pytest.mark.parametrize("bad_delay", [-1, None, "100", True])
    async def test_invalid_delay_treated_as_error(self, bad_delay):
        task = ScriptedTask([bad_delay], then=30000)
        scheduler = PollingScheduler(task, error_retry_delay_ms=30000)

        scheduler.start()
        await _wait(task.wait_for_run(1))
        await asyncio.sleep(0.01)
        status = scheduler.status()
        await scheduler.stop()

        assert status.last_error is not None
        assert status.last_error.startswith("ValueError")
        assert status.last_delay_ms == 30000


class TestLifecycle:
    async def test_double_start_raises(self):
        scheduler = PollingScheduler(ScriptedTask([], then=30000))
        scheduler.start()
        try:
            with pytest.raises(RuntimeError, match="already running"):
                scheduler.start()
        finally:
            await scheduler.stop()

    async def test_can_restart_after_stop(self):
        task = ScriptedTask([], then=30000)
        scheduler = PollingScheduler(task)

        scheduler.start()
        await _wait(task.wait_for_run(1))
        await scheduler.stop()
        scheduler.start()
        await _wait(task.wait_for_run(2))
        await scheduler.stop()

        assert task.runs == 2
        assert scheduler.status().run_count == 1

    async def test_stop_when_not_running_is_noop(self):
        scheduler = PollingScheduler(ScriptedTask([]))
        await scheduler.stop()
        assert scheduler.running is False

    async def test_stop_waits_for_in_flight_run(self):
        entered = asyncio.Event()
        release = asyncio.Event()
        finished = False

        async def slow_task() -> int:
            nonlocal finished
            entered.set()
            await release.wait()
            finished = True
            return 30000

        scheduler = PollingScheduler(slow_task)
        scheduler.start()
        await _wait(entered)

        stopping = asyncio.create_task(scheduler.stop())
        await asyncio.sleep(0.01)
        assert stopping.done() is False

        release.set()
        await asyncio.wait_for(stopping, timeout=1.0)
        assert finished is True
        assert scheduler.running is False

    async def test_stop_timeout_cancels_run(self):
        entered = asyncio.Event()

        async def stuck_task() -> int:
            entered.set()
            await asyncio.Event().wait()
            return 0

        scheduler = PollingScheduler(stuck_task)
        scheduler.start()
        await _wait(entered)

        await asyncio.wait_for(scheduler.stop(timeout=0.01), timeout=1.0)

        assert scheduler.running is False

    async def test_status_reports_progress(self):
        task = ScriptedTask([30000])
        scheduler = PollingScheduler(task)
        assert scheduler.status().running is False
        assert scheduler.status().started_at is None

        scheduler.start()
        await _wait(task.wait_for_run(1))
        await asyncio.sleep(0.01)
        status = scheduler.status()
        await scheduler.stop()

        assert status.running is True
        assert status.run_count == 1
        assert status.started_at is not None
        assert status.last_run_at is not None
        assert status.last_delay_ms == 30000
        assert status.last_error is None
