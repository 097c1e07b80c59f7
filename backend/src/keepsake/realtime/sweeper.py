"""Background task deleting ephemeral chat messages once they expire."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime

from app.monitoring.metrics import ephemeral_sweep_failures_total, mark_sweep_completed

from .dispatcher import Clock, utcnow
from .store import ChatStore, call_store

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Periodically purges ephemeral messages whose ``expires_at`` has passed.

    The first sweep runs as soon as the task starts, then every
    ``interval_seconds``. A failing tick is logged and the loop carries on.
    """

    def __init__(
        self,
        store: ChatStore,
        *,
        interval_seconds: float = 60.0,
        timeout_seconds: float | None = 10.0,
        clock: Clock = utcnow,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._store = store
        self._interval = float(interval_seconds)
        self._timeout = timeout_seconds
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now: datetime | None = None) -> int:
        """Delete every expired ephemeral message and return how many were removed."""

        cutoff = now or self._clock()
        deleted = await call_store(self._timeout, self._store.purge_expired_messages, cutoff)
        mark_sweep_completed(deleted)
        if deleted:
            logger.info("Removed %d expired ephemeral message(s)", deleted)
        return deleted

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="ephemeral-expiry-sweeper")
        logger.debug("Expiry sweeper started (interval %.1fs)", self._interval)

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.debug("Expiry sweeper stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                ephemeral_sweep_failures_total.inc()
                logger.exception("Ephemeral message sweep failed")
            await asyncio.sleep(self._interval)


__all__ = ["ExpirySweeper"]
