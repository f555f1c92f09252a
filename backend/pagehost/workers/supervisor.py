"""Supervised pool for in-process background work.

Deployment runs are submitted here instead of being fired off as bare
tasks. The supervisor bounds concurrency, owns each task until it finishes,
logs crashes, and pushes them onto ``errors`` so nothing fails silently.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

TaskFactory = Callable[[asyncio.Event], Awaitable[None]]


@dataclass
class TaskFailure:
    key: str
    error: BaseException


class TaskSupervisor:
    def __init__(self, max_concurrency: int = 10):
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._tasks: dict[str, asyncio.Task] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}
        self.errors: asyncio.Queue[TaskFailure] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, key: str, factory: TaskFactory) -> asyncio.Task:
        """Start ``factory(cancel_event)`` under supervision.

        Raises ``RuntimeError`` when the supervisor is shut down or ``key``
        is already running. The task has been scheduled once this returns.
        """
        if self._closed:
            raise RuntimeError("Task supervisor is shut down")
        if key in self._tasks:
            raise RuntimeError(f"Task {key} is already running")

        cancel_event = asyncio.Event()
        task = asyncio.create_task(self._run(key, factory, cancel_event), name=f"supervised:{key}")
        self._tasks[key] = task
        self._cancel_events[key] = cancel_event
        task.add_done_callback(lambda _t, k=key: self._forget(k))
        return task

    async def _run(self, key: str, factory: TaskFactory, cancel_event: asyncio.Event) -> None:
        async with self._semaphore:
            try:
                await factory(cancel_event)
            except asyncio.CancelledError:
                logger.warning("Supervised task %s was cancelled", key)
                raise
            except Exception as exc:
                logger.exception("Supervised task %s crashed", key)
                self.errors.put_nowait(TaskFailure(key=key, error=exc))

    def _forget(self, key: str) -> None:
        self._tasks.pop(key, None)
        self._cancel_events.pop(key, None)

    def is_running(self, key: str) -> bool:
        return key in self._tasks

    def request_cancel(self, key: str) -> bool:
        """Set the cooperative cancel flag. False when no such task is live."""
        event = self._cancel_events.get(key)
        if event is None:
            return False
        event.set()
        return True

    async def wait(self, key: str) -> None:
        task = self._tasks.get(key)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Stop accepting work, ask live tasks to cancel, then wait for them."""
        self._closed = True
        if not self._tasks:
            return
        logger.info("Stopping %d supervised task(s)", len(self._tasks))
        for event in self._cancel_events.values():
            event.set()
        pending = list(self._tasks.values())
        done, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
