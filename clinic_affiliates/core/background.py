"""Registry for fire-and-forget tasks that must finish before shutdown."""
import asyncio
import logging
from typing import Coroutine, Set

logger = logging.getLogger(__name__)


class BackgroundTaskRegistry:
    """
    Holds references to running tasks until they complete.

    The application keeps one registry on app.state and drains it in the
    lifespan shutdown; services created outside a request get their own.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every outstanding task; task errors are not re-raised."""
        if not self._tasks:
            return
        logger.info(f"Waiting for {len(self._tasks)} background task(s)")
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
