"""In-process FIFO task queue with in-place head retry (single event loop).

Semantics:
- Tasks run strictly one at a time in arrival order.
- A failing head task is retried in place after a fixed delay; tasks queued
  behind it wait (head-of-line blocking is accepted).
- After ``max_retries`` failed attempts the task is dropped and logged; the
  error is never re-raised to whoever queued it.

``add_task`` never blocks: it appends and, when the queue is idle, schedules
the processing loop on the running event loop. The ``_processing`` flag is
the only guard needed because nothing between the check and the set awaits.
"""
from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Optional

from musixbot.config import TASK_QUEUE_SETTINGS
from musixbot.utils.logger import StructuredLogger, get_logger

TaskOperation = Callable[[], Awaitable[object]]
Sleeper = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class Task:
    id: str
    operation: TaskOperation
    attempts: int = 0
    enqueued_at: float = 0.0


class TaskQueue:
    def __init__(
        self,
        *,
        max_retries: Optional[int] = None,
        retry_delay_seconds: Optional[float] = None,
        sleep: Sleeper = asyncio.sleep,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        self.max_retries = int(max_retries if max_retries is not None else TASK_QUEUE_SETTINGS["max_retries"])
        self.retry_delay = float(
            retry_delay_seconds if retry_delay_seconds is not None else TASK_QUEUE_SETTINGS["retry_delay_seconds"]
        )
        self._sleep = sleep
        self.logger = logger or get_logger(__name__)
        self._tasks: Deque[Task] = deque()
        self._processing = False
        self._runner: Optional[asyncio.Task] = None
        self._idle = asyncio.Event()
        self._idle.set()
        self.completed = 0
        self.dropped = 0

    # ----------------------------- public API ----------------------------- #
    def add_task(self, task_id: str, operation: TaskOperation) -> Task:
        task = Task(id=task_id, operation=operation, enqueued_at=time.time())
        self._tasks.append(task)
        self.logger.debug("Task queued", task_id=task_id, depth=len(self._tasks))
        if not self._processing:
            self._processing = True
            self._idle.clear()
            self._runner = asyncio.get_running_loop().create_task(self._process())
        return task

    async def drain(self) -> None:
        """Wait until every queued task has completed or been dropped."""
        await self._idle.wait()

    # ----------------------------- processing loop ----------------------------- #
    async def _process(self) -> None:
        try:
            while self._tasks:
                task = self._tasks[0]
                try:
                    await task.operation()
                except Exception as e:
                    task.attempts += 1
                    if task.attempts < self.max_retries:
                        self.logger.warning(
                            "Task failed, retrying",
                            task_id=task.id,
                            attempt=task.attempts,
                            max_retries=self.max_retries,
                            error=str(e),
                        )
                        await self._sleep(self.retry_delay)
                        continue
                    self.logger.error(
                        "Task dropped after max retries",
                        task_id=task.id,
                        attempts=task.attempts,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    self.dropped += 1
                else:
                    self.completed += 1
                    self.logger.debug("Task completed", task_id=task.id, attempts=task.attempts + 1)
                self._tasks.popleft()
        finally:
            self._processing = False
            self._runner = None
            self._idle.set()

    # ----------------------------- inspection ----------------------------- #
    @property
    def is_processing(self) -> bool:
        return self._processing

    def depth(self) -> int:
        return len(self._tasks)

    def __len__(self) -> int:  # pragma: no cover
        return self.depth()

    def snapshot(self) -> dict:
        return {
            "depth": self.depth(),
            "processing": self._processing,
            "head": self._tasks[0].id if self._tasks else None,
            "completed": self.completed,
            "dropped": self.dropped,
        }


__all__ = ["TaskQueue", "Task"]
