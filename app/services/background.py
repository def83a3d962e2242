"""
Background Dispatcher - Fire-and-forget tasks detached from the response.

Tasks are held in a set until they finish so the event loop keeps a strong
reference to them. Failures are logged from the done-callback and never
reach the request that scheduled them.
"""

import asyncio
from collections.abc import Coroutine
from typing import Any

from structlog import get_logger

from app.observability.metrics import metrics

logger = get_logger(__name__)


class BackgroundDispatcher:
    """Tracks detached tasks and drains them at shutdown."""

    def __init__(self) -> None:
        self.pending_tasks: set[asyncio.Task[Any]] = set()

    def dispatch(self, operation: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        """
        Schedule a coroutine without awaiting it.

        Args:
            operation: Label used in logs and failure metrics
            coro: Coroutine to run
        """
        task = asyncio.create_task(coro, name=operation)
        self.pending_tasks.add(task)
        task.add_done_callback(self._handle_task_completion)
        return task

    def _handle_task_completion(self, task: asyncio.Task[Any]) -> None:
        """Drop the reference and report failures."""
        self.pending_tasks.discard(task)
        operation = task.get_name()

        if task.cancelled():
            logger.warning("background_task_cancelled", operation=operation)
            return

        exc = task.exception()
        if exc is not None:
            metrics.record_background_failure(operation)
            logger.error(
                "background_task_failed",
                operation=operation,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    @property
    def pending_count(self) -> int:
        """Number of tasks still running."""
        return len(self.pending_tasks)

    async def drain(self, timeout: float) -> None:
        """
        Wait up to `timeout` seconds for pending tasks, then cancel the rest.
        """
        if not self.pending_tasks:
            return

        tasks = list(self.pending_tasks)
        logger.info("background_drain_started", pending=len(tasks))
        _, still_pending = await asyncio.wait(tasks, timeout=timeout)

        for task in still_pending:
            task.cancel()
        if still_pending:
            await asyncio.gather(*still_pending, return_exceptions=True)
            logger.warning("background_drain_cancelled", cancelled=len(still_pending))
