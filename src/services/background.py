# src/services/background.py
import asyncio
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class PeriodicTask:
    """
    Runs ``job`` every ``interval_seconds`` on the event loop until stopped.

    The task is owned by whoever calls ``start``/``stop`` (the app lifecycle
    in production). Tests call ``run_once`` and never wait on real time.
    """

    def __init__(self, name: str, job: Callable[[], Awaitable[object]], interval_seconds: float):
        self.name = name
        self.job = job
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> object:
        try:
            return await self.job()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # keep the loop alive; the next tick retries
            logger.exception("periodic_task_failed", task=self.name, error=str(e))
            return None

    async def _loop(self) -> None:
        logger.info("periodic_task_started", task=self.name, interval=self.interval_seconds)
        while not self._stopping.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("periodic_task_stopped", task=self.name)

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._loop(), name=self.name)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        try:
            await asyncio.wait_for(self._task, timeout=self.interval_seconds + 5)
        except asyncio.TimeoutError:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
