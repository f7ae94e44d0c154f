"""
APScheduler Engine - calendar and interval triggers for the billing engine.

One BillingScheduler object owns the scheduler lifecycle; nothing is kept
in module globals. The billing day is read from the settings store at
start time, so changing it requires restart().
"""

import logging
import os
import socket
import threading
from typing import Any, Dict, List, Optional

from apscheduler.events import (
    EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MISSED,
    EVENT_SCHEDULER_SHUTDOWN, EVENT_SCHEDULER_STARTED,
)
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from billing.exceptions import RunAlreadyInProgress
from billing.settings import load_billing_settings
from common.date_utils import utcnow
from common.session import SessionManager
from scheduler.config import SchedulerConfig
from scheduler.models import SchedulerState

logger = logging.getLogger(__name__)

BILLING_JOB_ID = 'monthly_billing'
FLUSH_JOB_ID = 'notification_flush'
LEASE_CHECK_JOB_ID = 'lease_expiry_check'
OVERDUE_CHECK_JOB_ID = 'overdue_rent_check'

HEARTBEAT_JOIN_TIMEOUT = 5


class BillingScheduler:
    """
    Scheduler for monthly billing and queue flushing.

    Responsibilities:
    - Run the Monthly Bill Generator on the configured billing day
    - Flush the SMS queue at a fixed interval
    - Run the daily lease-expiry and overdue-rent checks
    - Track lifecycle in the scheduler_state table
    """

    def __init__(
        self,
        config: SchedulerConfig,
        sessions: SessionManager,
        generator,
        dispatcher,
        checks=None,
    ):
        """
        Initialize scheduler.

        Args:
            config: Scheduler configuration
            sessions: Session manager for the ledger database
            generator: MonthlyBillGenerator
            dispatcher: NotificationDispatcher
            checks: DailyChecks (daily jobs are skipped when omitted)
        """
        self.config = config
        self.sessions = sessions
        self.generator = generator
        self.dispatcher = dispatcher
        self.checks = checks

        self._scheduler: Optional[BackgroundScheduler] = None
        self._running = False
        self._lifecycle_lock = threading.Lock()
        self._shutdown_event = threading.Event()
        self._heartbeat_thread: Optional[threading.Thread] = None

        self.billing_day: Optional[int] = None
        self.last_billing_run: Optional[Dict[str, Any]] = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _create_scheduler(self) -> BackgroundScheduler:
        scheduler = BackgroundScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={'default': ThreadPoolExecutor(max_workers=4)},
            job_defaults={
                'coalesce': self.config.coalesce,
                'max_instances': self.config.max_instances,
                'misfire_grace_time': self.config.misfire_grace_time,
            },
            timezone=self.config.timezone,
        )
        scheduler.add_listener(self._on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED)
        scheduler.add_listener(self._on_scheduler_event, EVENT_SCHEDULER_STARTED | EVENT_SCHEDULER_SHUTDOWN)
        return scheduler

    def start(self):
        """Start the scheduler and register all jobs."""
        from scheduler import __version__

        with self._lifecycle_lock:
            if self._running:
                logger.warning("Scheduler is already running")
                return

            logger.info(f"Starting Billing Scheduler v{__version__}...")
            self._update_state('starting')

            with self.sessions.session_scope() as session:
                self.billing_day = load_billing_settings(session).billing_day

            self._scheduler = self._create_scheduler()
            self._register_jobs()
            self._scheduler.start()

            self._running = True
            self._shutdown_event.clear()
            self._update_state('running')

            self._heartbeat_thread = threading.Thread(
                target=self._heartbeat_loop, daemon=True, name='SchedulerHeartbeat'
            )
            self._heartbeat_thread.start()

            logger.info(
                f"Scheduler started: billing on day {self.billing_day} at "
                f"{self.config.billing_hour:02d}:{self.config.billing_minute:02d} {self.config.timezone}, "
                f"queue flush every {self.config.flush_interval_minutes} min"
            )

    def stop(self, wait: bool = True):
        """
        Stop the scheduler.

        Args:
            wait: Whether to wait for running jobs to complete
        """
        with self._lifecycle_lock:
            if not self._running:
                logger.warning("Scheduler is not running")
                return

            logger.info("Stopping scheduler...")
            self._shutdown_event.set()
            self._update_state('stopping')

            if self._scheduler:
                self._scheduler.shutdown(wait=wait)
            self._scheduler = None

            if self._heartbeat_thread is not None:
                self._heartbeat_thread.join(timeout=HEARTBEAT_JOIN_TIMEOUT)
                self._heartbeat_thread = None

            self._running = False
            self._update_state('stopped')
            logger.info("Scheduler stopped")

    def restart(self):
        """Stop and start again, picking up a changed billing day."""
        self.stop()
        self.start()

    def _register_jobs(self):
        self._scheduler.add_job(
            func=self._run_billing_job,
            trigger=CronTrigger(
                day=self.billing_day,
                hour=self.config.billing_hour,
                minute=self.config.billing_minute,
                timezone=self.config.timezone,
            ),
            id=BILLING_JOB_ID,
            name='Monthly bill generation',
            replace_existing=True,
        )

        self._scheduler.add_job(
            func=self._run_flush_job,
            trigger=IntervalTrigger(minutes=self.config.flush_interval_minutes),
            id=FLUSH_JOB_ID,
            name='SMS queue flush',
            replace_existing=True,
        )

        if self.checks is not None and self.config.daily_checks_enabled:
            self._scheduler.add_job(
                func=self.checks.check_expiring_leases,
                trigger=CronTrigger(hour=self.config.lease_check_hour, minute=0, timezone=self.config.timezone),
                id=LEASE_CHECK_JOB_ID,
                name='Lease expiry check',
                replace_existing=True,
            )
            self._scheduler.add_job(
                func=self.checks.check_overdue_rent,
                trigger=CronTrigger(hour=self.config.overdue_check_hour, minute=0, timezone=self.config.timezone),
                id=OVERDUE_CHECK_JOB_ID,
                name='Overdue rent check',
                replace_existing=True,
            )

        logger.info(f"Registered {len(self._scheduler.get_jobs())} job(s)")

    # =========================================================================
    # Jobs
    # =========================================================================

    def _run_billing_job(self):
        """Entry point called by APScheduler on the billing day."""
        try:
            self._execute_billing(triggered_by='scheduler')
        except RunAlreadyInProgress as e:
            logger.warning(f"Scheduled billing run skipped: {e.message}")
        except Exception as e:
            # The generator has already recorded the run and alerted operators
            logger.error(f"Scheduled billing run failed: {e}")

    def _execute_billing(self, month: Optional[str] = None, triggered_by: str = 'manual') -> Dict[str, Any]:
        result = self.generator.generate(month, triggered_by=triggered_by)
        self.last_billing_run = {
            'month': result['month'],
            'runId': result['runId'],
            'completedAt': utcnow().isoformat(),
            'billsGenerated': result['billsGenerated'],
            'skipped': len(result['skipped']),
            'failed': result['billsFailed'],
        }
        self._update_state_fields(last_billing_run_at=utcnow())
        return result

    def _run_flush_job(self):
        result = self.dispatcher.flush()
        if result['processed']:
            self._update_state_fields(last_flush_at=utcnow())

    def trigger_manual_billing_run(self, month: Optional[str] = None, triggered_by: str = 'manual') -> Dict[str, Any]:
        """
        Run the generator now, outside the calendar.

        Raises:
            RunAlreadyInProgress: If a run is already executing
        """
        logger.info(f"Manual billing run requested for {month or 'current month'}")
        return self._execute_billing(month, triggered_by=triggered_by)

    # =========================================================================
    # Status
    # =========================================================================

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running

    def get_jobs(self) -> List[Dict[str, Any]]:
        """Get list of scheduled jobs."""
        if not self._scheduler:
            return []

        return [
            {
                'id': job.id,
                'name': job.name,
                'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
                'trigger': str(job.trigger),
            }
            for job in self._scheduler.get_jobs()
        ]

    def status(self) -> Dict[str, Any]:
        """Scheduler status for the CLI and API."""
        billing_job = self._scheduler.get_job(BILLING_JOB_ID) if self._scheduler else None
        next_run = billing_job.next_run_time.isoformat() if billing_job and billing_job.next_run_time else None

        last_run = self.last_billing_run
        if last_run is None:
            last_run = self.generator.last_run()

        return {
            'running': self._running,
            'jobActive': billing_job is not None,
            'billingInProgress': self.generator.is_running,
            'billingDay': self.billing_day,
            'lastBillingRun': last_run,
            'nextBillingRun': next_run,
            'timezone': self.config.timezone,
            'jobs': self.get_jobs(),
        }

    # =========================================================================
    # State table
    # =========================================================================

    def _update_state(self, status: str):
        """Update scheduler state in database."""
        from scheduler import __version__

        now = utcnow()
        try:
            with self.sessions.session_scope() as session:
                state = session.get(SchedulerState, 1)
                if state is None:
                    state = SchedulerState(id=1)
                    session.add(state)

                state.status = status
                if status == 'running':
                    state.started_at = now
                    state.billing_day = self.billing_day
                state.host_name = socket.gethostname()
                state.pid = os.getpid()
                state.version = __version__
                state.last_heartbeat = now
        except Exception as e:
            logger.error(f"Failed to update scheduler state: {e}")

    def _update_state_fields(self, **fields):
        try:
            with self.sessions.session_scope() as session:
                state = session.get(SchedulerState, 1)
                if state is not None:
                    for key, value in fields.items():
                        setattr(state, key, value)
        except Exception as e:
            logger.error(f"Failed to update scheduler state: {e}")

    def _heartbeat_loop(self):
        """Background thread for heartbeat updates."""
        while not self._shutdown_event.wait(timeout=self.config.heartbeat_interval_seconds):
            self._update_state_fields(last_heartbeat=utcnow())

    # =========================================================================
    # Events
    # =========================================================================

    def _on_job_event(self, event):
        """Handle APScheduler job events."""
        if event.code == EVENT_JOB_ERROR:
            logger.error(f"Job {event.job_id} error: {event.exception}")
        elif event.code == EVENT_JOB_MISSED:
            logger.warning(f"Job {event.job_id} missed its scheduled run time")
        elif event.code == EVENT_JOB_EXECUTED:
            logger.debug(f"Job {event.job_id} executed successfully")

    def _on_scheduler_event(self, event):
        """Handle APScheduler lifecycle events."""
        if event.code == EVENT_SCHEDULER_STARTED:
            logger.info("APScheduler started")
        elif event.code == EVENT_SCHEDULER_SHUTDOWN:
            logger.info("APScheduler shutdown")
