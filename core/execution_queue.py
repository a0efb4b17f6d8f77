"""
Single-runner FIFO queue for backend work.

Image and text generation share one GPU, so at most one task runs at a time.
Every waiting task is told its position on admission and again whenever the
queue moves. The head task is started as part of the notification that tells
it it reached position 0. Its completion, whether it succeeds or raises,
removes it and moves everybody else up.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from core.errors import SchedulerInvariantViolation
from core.models import ResourceClass

logger = logging.getLogger(__name__)

PositionCallback = Callable[[int], Awaitable[None]]
RunCallback = Callable[[], Awaitable[None]]


@dataclass(eq=False)
class QueuedTask:
    resource_class: ResourceClass
    on_position_changed: PositionCallback
    on_run: RunCallback
    task_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def is_exclusive_class(self) -> bool:
        return self.resource_class is ResourceClass.TEXT


class ExecutionQueue:
    def __init__(self) -> None:
        self._tasks: deque[QueuedTask] = deque()
        self._lock = asyncio.Lock()
        self._last_active_class = ResourceClass.IMAGE
        self._running: set[asyncio.Task[None]] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    def __len__(self) -> int:
        return len(self._tasks)

    @property
    def last_active_class(self) -> ResourceClass:
        """Resource class of the most recently finished task."""
        return self._last_active_class

    def position_of(self, task: QueuedTask) -> int | None:
        try:
            return self._tasks.index(task)
        except ValueError:
            return None

    async def register(
        self,
        resource_class: ResourceClass,
        on_position_changed: PositionCallback,
        on_run: RunCallback,
    ) -> QueuedTask:
        task = QueuedTask(resource_class, on_position_changed, on_run)
        await self.enqueue(task)
        return task

    async def enqueue(self, task: QueuedTask) -> None:
        """Admit a task the caller already holds, so it can be cancelled while
        its first position notification is still in flight."""
        async with self._lock:
            self._tasks.append(task)
            self._idle.clear()
            position = len(self._tasks) - 1
        logger.debug(
            "Queued %s task %s at position %d", task.resource_class.value, task.task_id, position
        )
        await self._notify(task, position, start=position == 0)

    async def cancel(self, task: QueuedTask) -> bool:
        """Drop a task that has not started yet. The running head stays."""
        async with self._lock:
            try:
                index = self._tasks.index(task)
            except ValueError:
                return False
            if index == 0:
                return False
            del self._tasks[index]
            behind = list(self._tasks)[index:]
        logger.debug("Cancelled queued task %s", task.task_id)
        await asyncio.gather(
            *(
                self._notify(item, position, start=False)
                for position, item in enumerate(behind, start=index)
            )
        )
        return True

    async def wait_idle(self) -> None:
        await self._idle.wait()

    async def _notify(self, task: QueuedTask, position: int, *, start: bool) -> None:
        try:
            await task.on_position_changed(position)
        except Exception:
            logger.warning(
                "Position callback of task %s failed", task.task_id, exc_info=True
            )
        if start:
            runner = asyncio.create_task(self._run(task))
            self._running.add(runner)
            runner.add_done_callback(self._running.discard)

    async def _run(self, task: QueuedTask) -> None:
        logger.debug("Running %s task %s", task.resource_class.value, task.task_id)
        try:
            await task.on_run()
        except Exception:
            logger.exception("Queued task %s failed", task.task_id)
        finally:
            await self._complete(task)

    async def _complete(self, task: QueuedTask) -> None:
        async with self._lock:
            if not self._tasks:
                raise SchedulerInvariantViolation("completion reported on an empty queue")
            if self._tasks[0] is not task:
                raise SchedulerInvariantViolation(
                    f"task {task.task_id} completed but is not at the head of the queue"
                )
            self._tasks.popleft()
            self._last_active_class = task.resource_class
            remaining = list(self._tasks)
            if not remaining:
                self._idle.set()
        await asyncio.gather(
            *(
                self._notify(item, position, start=position == 0)
                for position, item in enumerate(remaining)
            )
        )
