import asyncio
import logging
from typing import Coroutine, Optional, Set

logger = logging.getLogger("toonmu-backend")


class TaskSupervisor:
    """Owns background generation tasks for the lifetime of the app."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background task %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task %s crashed", task.get_name(), exc_info=(type(exc), exc, exc.__traceback__)
            )

    async def join(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, timeout: float) -> None:
        """Wait for in-flight jobs, cancelling whatever outlives ``timeout``.

        Cancelled jobs are left ``pending`` in the store.
        """
        if not self._tasks:
            return
        logger.info("Waiting for %d background job(s) to finish", len(self._tasks))
        done, pending = await asyncio.wait(list(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("Abandoning %d unfinished job(s) in pending state", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)
