"""
Serve Tracker Backend — Background Task Runner Tests
======================================================

What we test:
    ✅ Outcomes settle to succeeded/failed and keep the result or error
    ✅ A failing task never raises into the caller
    ✅ drain() waits for tasks started while draining
    ✅ shutdown() cancels what does not finish in time
    ✅ PeriodicJob keeps running past failures and stops promptly
"""

import asyncio

import pytest

from serve_tracker.schemas.common import TaskState
from serve_tracker.services.background import BackgroundTaskRunner, PeriodicJob


async def _value(value):
    await asyncio.sleep(0)
    return value


async def _boom():
    await asyncio.sleep(0)
    raise RuntimeError("smtp exploded")


class TestBackgroundTaskRunner:

    @pytest.mark.asyncio
    async def test_success_outcome(self):
        runner = BackgroundTaskRunner()

        task_id = runner.submit("resync", _value({"count": 3}))
        assert runner.outcome(task_id).state == TaskState.PENDING

        outcome = await runner.wait(task_id)

        assert outcome.state == TaskState.SUCCEEDED
        assert outcome.result == {"count": 3}
        assert outcome.finished_at is not None
        assert runner.pending_count == 0

    @pytest.mark.asyncio
    async def test_failure_is_recorded_not_raised(self):
        runner = BackgroundTaskRunner()

        outcome = await runner.wait(runner.submit("notify", _boom()))

        assert outcome.state == TaskState.FAILED
        assert outcome.error == "smtp exploded"

    @pytest.mark.asyncio
    async def test_drain_includes_tasks_started_meanwhile(self):
        runner = BackgroundTaskRunner()
        started = []

        async def chain():
            started.append(runner.submit("second", _value("late")))
            return "first"

        runner.submit("first", chain())
        outcomes = await runner.drain()

        assert {o.state for o in outcomes} == {TaskState.SUCCEEDED}
        assert runner.outcome(started[0]).result == "late"

    @pytest.mark.asyncio
    async def test_shutdown_cancels_slow_tasks(self):
        runner = BackgroundTaskRunner()

        task_id = runner.submit("slow", asyncio.sleep(30))
        await runner.shutdown(timeout=0.01)

        outcome = runner.outcome(task_id)
        assert outcome.state == TaskState.FAILED
        assert outcome.error == "cancelled"
        assert runner.pending_count == 0

    @pytest.mark.asyncio
    async def test_history_is_bounded(self):
        runner = BackgroundTaskRunner(max_history=2)

        ids = [runner.submit(f"t{i}", _value(i)) for i in range(4)]
        await runner.drain()
        runner.submit("t4", _value(4))
        await runner.drain()

        assert runner.outcome(ids[0]) is None
        assert runner.outcome(ids[3]) is not None

    @pytest.mark.asyncio
    async def test_unknown_task(self):
        runner = BackgroundTaskRunner()
        assert runner.outcome("nope") is None
        assert await runner.wait("nope") is None


class TestPeriodicJob:

    @pytest.mark.asyncio
    async def test_runs_until_stopped(self):
        calls = []

        async def job():
            calls.append(1)

        periodic = PeriodicJob("reconcile", job, interval=0.01)
        periodic.start()
        await asyncio.sleep(0.1)
        await periodic.stop()

        assert len(calls) >= 2
        assert periodic.running is False
        settled = len(calls)
        await asyncio.sleep(0.03)
        assert len(calls) == settled

    @pytest.mark.asyncio
    async def test_failures_do_not_end_the_loop(self):
        async def job():
            raise RuntimeError("remote down")

        periodic = PeriodicJob("reconcile", job, interval=0.01)
        periodic.start()
        await asyncio.sleep(0.1)
        await periodic.stop()

        assert periodic.runs >= 2

    @pytest.mark.asyncio
    async def test_stop_before_first_interval_skips_the_job(self):
        calls = []

        async def job():
            calls.append(1)

        periodic = PeriodicJob("reconcile", job, interval=30)
        periodic.start()
        await periodic.stop()

        assert calls == []
