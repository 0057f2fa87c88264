"""SyncLoop — runs the guarded sync pass on a fixed cadence."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from tagmirror.engines.tag_sync.models import SyncResult

logger = structlog.get_logger(__name__)


class SyncLoop:
    """Call *run_fn* now, then every *interval* seconds until stopped.

    The run guard lives in ``run_fn`` (normally ``TagSyncRunner.run``); this
    loop only keeps time. A pass that raises is logged and the next tick
    still happens.
    """

    def __init__(
        self,
        run_fn: Callable[[], Awaitable[SyncResult]],
        interval: float,
    ) -> None:
        self.run_fn = run_fn
        self.interval = interval
        self._task: asyncio.Task[None] | None = None

    async def tick(self) -> SyncResult | None:
        """Run one pass and log its outcome. Returns None if it crashed."""
        try:
            result = await self.run_fn()
        except Exception:
            logger.exception("scheduler.pass_crashed")
            return None

        if result.skipped:
            logger.debug("scheduler.tick_skipped")
        else:
            logger.info(
                "scheduler.cycle",
                created=len(result.created),
                errors=len(result.errors),
            )
        return result

    async def _loop(self) -> None:
        while True:
            await self.tick()
            await asyncio.sleep(self.interval)

    async def start(self) -> None:
        """Start the loop as an asyncio task; the first tick runs immediately."""
        self._task = asyncio.create_task(self._loop(), name="tag-sync")
        logger.info("scheduler.started", interval=self.interval)

    async def stop(self) -> None:
        """Cancel the loop and wait for it to exit."""
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("scheduler.stopped")

    async def wait(self) -> None:
        """Block until the loop exits (normally only on cancellation)."""
        if self._task is not None:
            await self._task
