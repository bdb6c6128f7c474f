"""Polling trigger for the daily settlement job"""

import asyncio
import logging
from datetime import date, datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from canteen_ledger.domain.exceptions import JobExecutionError
from canteen_ledger.domain.models import SettlementResult
from canteen_ledger.services.settlement import SettlementJob
from canteen_ledger.utils.clock import Clock

logger = logging.getLogger(__name__)


class DailySettlementScheduler:
    """
    Fires the settlement job once per calendar day at or after the trigger hour.

    Without an external scheduler this polls every `tick_seconds`. Starting
    after the trigger hour runs the job straight away (catch-up). Duplicate
    firing across processes is harmless: the job's execution record turns
    every run after the first into a no-op.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock,
        trigger_hour: int = 6,
        tick_seconds: float = 60.0,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.trigger_hour = trigger_hour
        self.tick_seconds = tick_seconds
        self.last_fired: Optional[date] = None
        self._task: Optional[asyncio.Task] = None

    def is_due(self, now: datetime) -> bool:
        return now.hour >= self.trigger_hour and self.last_fired != now.date()

    def run_job(self) -> SettlementResult:
        """Run the job with a dedicated session"""
        db = self.session_factory()
        try:
            return SettlementJob(db, self.clock).run(executed_by="system")
        finally:
            db.close()

    async def tick(self) -> Optional[SettlementResult]:
        now = self.clock.now()
        if not self.is_due(now):
            return None
        self.last_fired = now.date()
        try:
            return await asyncio.to_thread(self.run_job)
        except JobExecutionError as e:
            # Recorded as failed; the next tick on the same day must not retry in a loop
            logger.error(f"Scheduled settlement failed: {e}")
            return None
        except Exception:
            # Unexpected crash; the loop keeps polling and retries tomorrow
            logger.exception("Scheduled settlement crashed")
            return None

    async def run_forever(self) -> None:
        logger.info(
            "Settlement scheduler started",
            extra={"trigger_hour": self.trigger_hour, "tick_seconds": self.tick_seconds},
        )
        while True:
            await self.tick()
            await asyncio.sleep(self.tick_seconds)

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            logger.info("Settlement scheduler is already running")
            return
        self._task = asyncio.get_running_loop().create_task(self.run_forever())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Settlement scheduler exited with an error")
        self._task = None
        logger.info("Settlement scheduler stopped")
