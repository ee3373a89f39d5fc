"""
Scheduled counter reconciliation.
"""

import asyncio
from typing import Optional

from shared.logging import get_logger

from .service import EntitlementService


class ReconciliationPoller:
    """Runs ``EntitlementService.reconcile`` on a fixed interval.

    Meant to live exactly as long as a metering-sensitive view: start it
    when the view appears (one reconciliation runs immediately) and stop
    it when the view goes away.

        async with ReconciliationPoller(service, interval=2.0):
            ...
    """

    def __init__(self, service: EntitlementService, interval: float = 2.0):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.service = service
        self.interval = interval
        self.logger = get_logger("entitlements.metering.reconciler")
        self.ticks = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        """Reconcile once now, then keep polling in the background."""
        if self.running:
            return
        await self._tick()
        self._task = asyncio.create_task(self._poll_loop())
        self.logger.info("Reconciliation poller started", interval=self.interval)

    async def stop(self):
        """Cancel the polling task and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.logger.info("Reconciliation poller stopped", ticks=self.ticks)

    async def _poll_loop(self):
        while True:
            await asyncio.sleep(self.interval)
            await self._tick()

    async def _tick(self):
        # reconcile() logs and swallows storage errors itself.
        await self.service.reconcile()
        self.ticks += 1

    async def __aenter__(self) -> "ReconciliationPoller":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()
