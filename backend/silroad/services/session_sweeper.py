"""Periodic sweep of expired sessions.

Runs SessionManager.delete_expired() on a fixed interval as an asyncio task
owned by the application lifespan. A failing run is logged and the loop
continues with the next interval.
"""

import asyncio
import logging

from silroad.services.session_service import SessionManager

logger = logging.getLogger("silroad.sessions")


class SessionSweeper:
    def __init__(self, manager: SessionManager, interval_seconds: float):
        self.manager = manager
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            logger.warning("Session sweeper is already running")
            return
        self._task = asyncio.create_task(self._run_loop(), name="session-sweeper")
        logger.info("Session sweeper started (interval: %ss)", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Session sweeper stopped")

    async def run_once(self) -> int:
        removed = await self.manager.delete_expired()
        if removed:
            logger.info("Swept %d expired sessions", removed)
        return removed

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except Exception as e:
                logger.error("Error in session sweeper loop: %s", e, exc_info=True)
