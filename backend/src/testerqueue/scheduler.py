"""Periodic tasks, serialized onto the event loop.

Each step is a plain method taking ``now`` so it can be driven directly in
tests. ``tick`` runs whichever steps are due; ``run`` calls ``tick`` forever.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from testerqueue.clock import Clock, utc_now
from testerqueue.infra.persistence import PersistentStore
from testerqueue.models.ticket import Ticket
from testerqueue.promotion import PromotionLoop
from testerqueue.store.confirmation import ConfirmationCoordinator

logger = logging.getLogger(__name__)


@dataclass
class ScheduledTask:
    name: str
    interval: timedelta
    step: Callable[[datetime], Awaitable[object]]
    last_run: datetime | None = None

    def is_due(self, now: datetime) -> bool:
        return self.last_run is None or now - self.last_run >= self.interval


class Scheduler:
    def __init__(
        self,
        confirmations: ConfirmationCoordinator,
        promotion: PromotionLoop,
        stores: list[PersistentStore],
        clock: Clock = utc_now,
        tick_seconds: float = 1.0,
        confirmation_check_seconds: float = 1.0,
        promotion_seconds: float = 5.0,
    ):
        self.confirmations = confirmations
        self.promotion = promotion
        self.stores = stores
        self._clock = clock
        self.tick_seconds = tick_seconds
        self._stopping = asyncio.Event()
        self.tasks = [
            ScheduledTask("confirmation_expiry", timedelta(seconds=confirmation_check_seconds), self.check_confirmations),
            ScheduledTask("promotion", timedelta(seconds=promotion_seconds), self.promote),
            ScheduledTask("flush", timedelta(0), self.flush),
        ]

    async def check_confirmations(self, now: datetime) -> list[str]:
        return self.confirmations.expire_due(now)

    async def promote(self, now: datetime) -> list[Ticket]:
        return await self.promotion.run_once()

    async def flush(self, now: datetime) -> int:
        return sum(1 for store in self.stores if store.flush())

    def emergency_flush(self) -> None:
        """Force every store to disk, continuing past individual failures."""
        for store in self.stores:
            store.flush(force=True)

    async def tick(self, now: datetime | None = None) -> list[str]:
        """Run every due step once. Returns the names of the steps that ran.

        A failing step is logged, all stores are force-flushed, and the
        remaining steps still run.
        """
        now = now or self._clock()
        ran = []
        for task in self.tasks:
            if not task.is_due(now):
                continue
            task.last_run = now
            try:
                await task.step(now)
            except Exception:
                logger.exception(f"Scheduled task {task.name} failed")
                self.emergency_flush()
            ran.append(task.name)
        return ran

    async def run(self) -> None:
        logger.info("Scheduler started")
        self._stopping.clear()
        while not self._stopping.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.tick_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Scheduler stopped")

    def stop(self) -> None:
        self._stopping.set()
