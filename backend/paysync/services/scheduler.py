"""
APScheduler Configuration for the Reconciliation Sweep

Runs the ReconciliationSweeper on a fixed interval inside the FastAPI event
loop. One job, one instance at a time: a sweep that outlives its interval
makes the next run coalesce instead of stacking up gateway calls.
"""
import logging
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.executors.asyncio import AsyncIOExecutor

from .reconciliation import ReconciliationSweeper

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "order_reconciliation_sweep"


class ReconciliationScheduler:
    """
    Owns the AsyncIOScheduler for the reconciliation job.

    Created by the service container and started/stopped in the FastAPI
    lifespan.
    """

    def __init__(self, sweeper: ReconciliationSweeper, interval_minutes: float = 5):
        self.sweeper = sweeper
        self.interval_minutes = interval_minutes
        self._scheduler: Optional[AsyncIOScheduler] = None

    def _initialize_scheduler(self) -> AsyncIOScheduler:
        """
        Configure APScheduler.

        Configuration:
        - AsyncIOScheduler so sweeps run on the application event loop
        - In-memory job store; the job is re-registered on every startup
        - Coalesce: True (collapse missed runs into one)
        - Max instances: 1 (never two sweeps from the scheduler at once)
        """
        executors = {
            'default': AsyncIOExecutor()
        }

        job_defaults = {
            'coalesce': True,
            'max_instances': 1,
            'misfire_grace_time': 300  # 5 minutes grace period for misfires
        }

        scheduler = AsyncIOScheduler(
            executors=executors,
            job_defaults=job_defaults,
            timezone='UTC'
        )
        logger.info("APScheduler initialized for order reconciliation")
        return scheduler

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self):
        """
        Start the scheduler and register the sweep job.

        Should be called during FastAPI app startup (needs a running loop).
        """
        if self.running:
            logger.warning("Scheduler already running")
            return

        self._scheduler = self._initialize_scheduler()
        self._scheduler.add_job(
            self.sweeper.run_scheduled,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=SWEEP_JOB_ID,
            name="Reconcile pending orders",
            replace_existing=True
        )
        self._scheduler.start()

        job = self._scheduler.get_job(SWEEP_JOB_ID)
        logger.info(
            f"Scheduler started: reconciliation every {self.interval_minutes}min, "
            f"next_run={job.next_run_time}"
        )

    def shutdown(self, wait: bool = True):
        """
        Shutdown the scheduler gracefully.

        Args:
            wait: Wait for a running sweep to complete before shutdown
        """
        if self.running:
            self._scheduler.shutdown(wait=wait)
            logger.info(f"Scheduler shutdown (wait={wait})")
        self._scheduler = None

    def get_job(self):
        """Return the APScheduler job for the sweep, or None when stopped."""
        if self._scheduler is None:
            return None
        return self._scheduler.get_job(SWEEP_JOB_ID)
