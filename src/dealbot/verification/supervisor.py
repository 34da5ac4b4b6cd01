"""
Supervision for detached background tasks.

The pipeline starts long-running work (IPNI verification) that nobody awaits.
TaskSupervisor keeps a strong reference to each task until it finishes so it
cannot be garbage collected mid-flight, and records and logs any crash so a
failure is never silently lost.
"""

import asyncio
from collections.abc import Coroutine
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..errors import error_message
from ..logging import get_logger
from ..utils import utcnow

logger = get_logger(__name__)


@dataclass
class TaskFailure:
    """A supervised task that ended with an exception."""

    name: str
    error: BaseException
    context: dict[str, Any] = field(default_factory=dict)
    failed_at: datetime = field(default_factory=utcnow)


class TaskSupervisor:
    """Owns fire-and-forget tasks for the lifetime of the process."""

    def __init__(self):
        self._tasks: dict[asyncio.Task, dict[str, Any]] = {}
        self.failures: list[TaskFailure] = []

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str, **log_context: Any) -> asyncio.Task:
        """
        Schedule a coroutine without awaiting it.

        Args:
            coro: The work to run
            name: Task name, used in logs and TaskFailure records
            **log_context: Extra fields attached to completion/failure logs

        Returns:
            The created task
        """
        task = asyncio.create_task(coro, name=name)
        self._tasks[task] = log_context
        task.add_done_callback(self._on_done)
        logger.debug('task_supervisor.spawned', task=name, active=len(self._tasks), **log_context)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        context = self._tasks.pop(task, {})
        name = task.get_name()

        if task.cancelled():
            logger.info('task_supervisor.task_cancelled', task=name, **context)
            return

        exc = task.exception()
        if exc is None:
            logger.debug('task_supervisor.task_completed', task=name, **context)
            return

        self.failures.append(TaskFailure(name=name, error=exc, context=dict(context)))
        logger.error(
            'task_supervisor.task_failed',
            task=name,
            error=error_message(exc),
            error_type=type(exc).__name__,
            exc_info=exc,
            **context,
        )

    async def wait_all(self, timeout: float | None = None) -> bool:
        """
        Wait for every supervised task, including ones spawned while waiting.

        Returns:
            True if all tasks finished, False if the timeout expired first
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        while self._tasks:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            _, pending = await asyncio.wait(list(self._tasks), timeout=remaining)
            if pending and deadline is not None and loop.time() >= deadline:
                return False
        return True

    async def cancel_all(self) -> None:
        """Cancel every supervised task and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info('task_supervisor.cancelled_all', count=len(tasks))
