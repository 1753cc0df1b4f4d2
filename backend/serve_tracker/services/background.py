"""
Serve Tracker Backend — Background Task Runner
================================================

What:  Runs post-write side effects (notification, cache resync) as named
       asyncio tasks whose outcomes stay queryable after they finish.
How:   `submit()` wraps a coroutine in `asyncio.create_task`, records a
       TaskOutcome as pending and settles it to succeeded/failed when the
       coroutine returns or raises. Exceptions are logged and stored on the
       outcome; they never propagate to whoever submitted the task.
Who:   ServeAttemptService submits; GET /api/tasks/{id} reads outcomes;
       tests call `drain()` to wait for everything in flight.

PeriodicJob drives the scheduled reconcile (replay queued records, then
refresh the read cache) between app startup and shutdown.
"""

import asyncio
import logging
import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from serve_tracker.schemas.common import TaskOutcome, TaskState

logger = logging.getLogger(__name__)


class BackgroundTaskRunner:
    """Registry of fire-after tasks with an observable result channel."""

    def __init__(self, max_history: int = 500):
        self.max_history = max_history
        self._outcomes: "OrderedDict[str, TaskOutcome]" = OrderedDict()
        self._tasks: Dict[str, asyncio.Task] = {}

    def submit(self, name: str, coro: Awaitable[Any]) -> str:
        """
        Start `coro` in the background.

        Returns:
            Task id usable with outcome() and wait().
        """
        task_id = uuid.uuid4().hex
        self._outcomes[task_id] = TaskOutcome(
            task_id=task_id,
            name=name,
            started_at=datetime.now(timezone.utc),
        )
        self._trim_history()
        self._tasks[task_id] = asyncio.create_task(
            self._run(task_id, name, coro), name=f"{name}-{task_id[:8]}"
        )
        logger.debug("Background task started: %s (%s)", name, task_id)
        return task_id

    async def _run(self, task_id: str, name: str, coro: Awaitable[Any]) -> None:
        outcome = self._outcomes.get(task_id)
        try:
            result = await coro
        except asyncio.CancelledError:
            if outcome:
                outcome.state = TaskState.FAILED
                outcome.error = "cancelled"
                outcome.finished_at = datetime.now(timezone.utc)
            raise
        except Exception as e:
            logger.error("Background task %s (%s) failed: %s", name, task_id, str(e),
                         exc_info=True)
            if outcome:
                outcome.state = TaskState.FAILED
                outcome.error = str(e) or type(e).__name__
                outcome.finished_at = datetime.now(timezone.utc)
        else:
            if outcome:
                outcome.state = TaskState.SUCCEEDED
                outcome.result = result
                outcome.finished_at = datetime.now(timezone.utc)
            logger.debug("Background task finished: %s (%s)", name, task_id)
        finally:
            self._tasks.pop(task_id, None)

    def outcome(self, task_id: str) -> Optional[TaskOutcome]:
        return self._outcomes.get(task_id)

    async def wait(self, task_id: str) -> Optional[TaskOutcome]:
        """Block until the task settles, then return its outcome."""
        task = self._tasks.get(task_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self._outcomes.get(task_id)

    async def drain(self) -> List[TaskOutcome]:
        """Wait for every in-flight task, including ones started meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
        return list(self._outcomes.values())

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Give in-flight tasks `timeout` seconds, then cancel the rest."""
        if not self._tasks:
            return
        logger.info("Waiting for %d background task(s) before shutdown", len(self._tasks))
        done, pending = await asyncio.wait(list(self._tasks.values()), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("Cancelled %d unfinished background task(s)", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)

    def _trim_history(self) -> None:
        while len(self._outcomes) > self.max_history:
            oldest_id = next(iter(self._outcomes))
            if oldest_id in self._tasks:
                break
            self._outcomes.pop(oldest_id)


class PeriodicJob:
    """
    Runs `job()` every `interval` seconds until stopped.

    The first run happens one interval after start(). A failing run is
    logged and the loop continues; stop() wakes the loop immediately.
    """

    def __init__(self, name: str, job: Callable[[], Awaitable[Any]], interval: float):
        self.name = name
        self.job = job
        self.interval = interval
        self.runs = 0
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._loop(), name=f"{self.name}-loop")
        logger.info("Periodic job '%s' started (every %ss)", self.name, self.interval)

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    async def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                await self.job()
            except Exception as e:
                logger.error("Periodic job '%s' failed: %s", self.name, str(e), exc_info=True)
            self.runs += 1
