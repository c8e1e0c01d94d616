"""Periodic deactivation of expired refresh tokens."""

import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.clock import Clock
from services.token_store import TokenStore

logger = logging.getLogger(__name__)


class RevocationSweeper:
    """
    Flips every active refresh token whose expiry has passed to inactive.

    Rows are kept for audit. Each cycle runs in its own session and commits
    on its own. If a cycle is still running when the next one is due, the
    new one is skipped instead of queued.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock,
        interval_seconds: int = 3600,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.interval_seconds = interval_seconds
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    async def sweep_expired(self) -> Optional[int]:
        """
        Run one cycle. Returns the number of rows deactivated, or None when
        another cycle was already in progress.
        """
        if self._lock.locked():
            logger.info("Token sweep already running, skipping this cycle")
            return None

        async with self._lock:
            async with self.session_factory() as db:
                try:
                    count = await TokenStore(db).bulk_expire(self.clock.now())
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise

        if count > 0:
            logger.info("Token sweep completed: %d expired refresh tokens deactivated", count)
        else:
            logger.debug("Token sweep completed: nothing to deactivate")
        return count

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval_seconds)
                await self.sweep_expired()
            except asyncio.CancelledError:
                logger.info("Token sweep task cancelled")
                break
            except Exception as e:
                # The next tick is the retry
                logger.error(f"Error in token sweep task: {e}")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run())
            logger.debug("Started periodic token sweep task")

    async def stop(self) -> None:
        if self.running:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            logger.debug("Stopped periodic token sweep task")
        self._task = None
