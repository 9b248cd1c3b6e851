"""
Context sweeper - periodic removal of expired conversations
"""

from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ...shared.constants import CONTEXT_CLEANUP_INTERVAL_MINUTES
from ...utils.logger import logger
from ..persistence.context_store import ConversationContextStore

SWEEP_JOB_ID = "moltbot_lark_context_sweep"


class ContextSweeper:
    """Runs ``sweep_expired`` on a fixed interval."""

    def __init__(
        self,
        store: ConversationContextStore,
        interval_minutes: float = CONTEXT_CLEANUP_INTERVAL_MINUTES,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive")
        self.store = store
        self.interval_minutes = interval_minutes
        self.scheduler = scheduler or AsyncIOScheduler()

    def sweep(self) -> int:
        try:
            removed = self.store.sweep_expired()
        except Exception as e:
            # A failed sweep is retried on the next tick
            logger.error(f"Context sweep failed: {e}")
            return 0
        logger.debug(
            f"Context sweep removed {removed}, {len(self.store.list_active())} active"
        )
        return removed

    def start(self) -> None:
        """Register the sweep job and start the scheduler. Needs a running loop."""
        self.scheduler.add_job(
            self.sweep,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=SWEEP_JOB_ID,
            replace_existing=True,
            misfire_grace_time=60,
            coalesce=True,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info(f"Context sweeper started (every {self.interval_minutes} min)")

    def shutdown(self) -> None:
        if self.scheduler.get_job(SWEEP_JOB_ID):
            self.scheduler.remove_job(SWEEP_JOB_ID)
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Context sweeper stopped")
