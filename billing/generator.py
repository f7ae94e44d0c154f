"""
Monthly Bill Generator.

Runs the Bill Calculator for every active allocation and queues a bill
notice for each tenant who owes something. At most one run executes at a
time across every process sharing the database.
"""

import logging
import os
import socket
import threading
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billing.arrears import close_months_through
from billing.calculator import BillCalculator
from billing.exceptions import BillingError, RunAlreadyInProgress
from billing.ledger import AllocationRef, LedgerReader
from billing.messages import build_bill_message
from billing.settings import BillingSettings, load_billing_settings
from common.date_utils import add_months, current_month, format_month, utcnow
from common.models import BillingRun
from common.session import SessionManager
from scheduler.config import BillingConfig
from scheduler.models import BillingRunLock

logger = logging.getLogger(__name__)

SKIP_NO_AMOUNT_DUE = 'no amount due'
SKIP_COVERED_BY_ADVANCE = 'covered by advance'
SKIP_ALREADY_BILLED = 'already billed'


class MonthlyBillGenerator:
    """
    Generates and queues bill notices for one target month.

    Example:
        generator = MonthlyBillGenerator(sessions, dispatcher, alerts)
        result = generator.generate('2024-05', triggered_by='cli')
    """

    def __init__(self, sessions: SessionManager, dispatcher, alert_manager=None,
                 config: BillingConfig = None, timezone: str = None):
        """
        Initialize generator.

        Args:
            sessions: Session manager for the ledger database
            dispatcher: NotificationDispatcher receiving bill notices
            alert_manager: AlertManager for operator summaries (optional)
            config: Arrears roll-over and run-lock settings
            timezone: Used to pick the current month when none is given
        """
        self.sessions = sessions
        self.dispatcher = dispatcher
        self.alert_manager = alert_manager
        self.config = config or BillingConfig()
        self.timezone = timezone
        self._local_lock = threading.Lock()
        self._holder = f"{socket.gethostname()}:{os.getpid()}"

    @property
    def is_running(self) -> bool:
        """True while this process is executing a run."""
        return self._local_lock.locked()

    # =========================================================================
    # Single-flight guard
    # =========================================================================

    def _ensure_lock_row(self):
        try:
            with self.sessions.session_scope() as session:
                if session.get(BillingRunLock, 1) is None:
                    session.add(BillingRunLock(id=1, locked=False))
        except IntegrityError:
            logger.debug("Billing run lock row created concurrently")

    def _acquire_run_lock(self, month: str) -> str:
        """
        Take the database run lock with a conditional update.

        Returns:
            str: Token identifying this holder

        Raises:
            RunAlreadyInProgress: If another live run holds the lock
        """
        self._ensure_lock_row()
        token = f"{self._holder}:{uuid.uuid4().hex[:8]}"
        now = utcnow()
        stale_before = now - timedelta(seconds=self.config.run_lock_timeout_seconds)

        with self.sessions.session_scope() as session:
            acquired = session.query(BillingRunLock).filter(
                BillingRunLock.id == 1,
                or_(BillingRunLock.locked.is_(False), BillingRunLock.locked_at < stale_before),
            ).update(
                {'locked': True, 'holder': token, 'target_month': month, 'locked_at': now},
                synchronize_session=False,
            )

        if not acquired:
            with self.sessions.session_scope() as session:
                current = session.get(BillingRunLock, 1)
                holder = current.holder if current else 'unknown'
                held_month = current.target_month if current else None
            raise RunAlreadyInProgress(
                f"A billing run for {held_month} is already in progress ({holder})",
                {'holder': holder, 'month': held_month},
            )

        return token

    def _release_run_lock(self, token: str):
        with self.sessions.session_scope() as session:
            session.query(BillingRunLock).filter(
                BillingRunLock.id == 1,
                BillingRunLock.holder == token,
            ).update({'locked': False, 'holder': None, 'locked_at': None}, synchronize_session=False)

    # =========================================================================
    # Run
    # =========================================================================

    def generate(self, month: Optional[str] = None, triggered_by: str = 'manual') -> Dict[str, Any]:
        """
        Generate bills for a month.

        Args:
            month: Target month 'YYYY-MM' (current month if omitted)
            triggered_by: scheduler, cli, api, manual

        Returns:
            dict: month, totalTenants, billsGenerated, billsFailed, skipped, bills, failed, runId

        Raises:
            RunAlreadyInProgress: If another run is executing
            ValueError: If month is malformed
        """
        target = format_month(month) if month else current_month(self.timezone)

        if not self._local_lock.acquire(blocking=False):
            raise RunAlreadyInProgress(f"A billing run is already in progress in this process (requested {target})")

        try:
            token = self._acquire_run_lock(target)
            try:
                return self._run(target, triggered_by)
            finally:
                self._release_run_lock(token)
        finally:
            self._local_lock.release()

    def _run(self, month: str, triggered_by: str) -> Dict[str, Any]:
        logger.info(f"Generating monthly bills for {month} (triggered by {triggered_by})")

        try:
            with self.sessions.session_scope() as session:
                settings = load_billing_settings(session)
                allocations = LedgerReader(session).list_active_allocations()

            logger.info(f"Found {len(allocations)} active tenant allocation(s)")

            if self.config.roll_arrears:
                self._roll_previous_month(allocations, month)

            bills: List[Dict[str, Any]] = []
            skipped: List[Dict[str, Any]] = []
            failed: List[Dict[str, Any]] = []

            for ref in allocations:
                try:
                    with self.sessions.session_scope() as session:
                        outcome, detail = self._bill_tenant(session, ref, month, settings)
                except Exception as e:
                    logger.error(f"Error generating bill for tenant {ref.tenant_id} ({ref.unit_code}): {e}")
                    failed.append({
                        'tenantId': ref.tenant_id,
                        'unitId': ref.unit_id,
                        'tenantName': ref.tenant_name,
                        'unitCode': ref.unit_code,
                        'error': e.message if isinstance(e, BillingError) else str(e),
                    })
                    continue

                if outcome == 'bill':
                    bills.append(detail)
                else:
                    skipped.append(detail)

            result = {
                'month': month,
                'totalTenants': len(allocations),
                'billsGenerated': len(bills),
                'billsFailed': len(failed),
                'skipped': skipped,
                'bills': bills,
                'failed': failed,
            }
            result['runId'] = self._record_run(result, triggered_by)

        except Exception as e:
            logger.exception(f"Billing run for {month} failed: {e}")
            run_id = self._record_failed_run(month, triggered_by, str(e))
            if self.alert_manager:
                self.alert_manager.send_billing_failure(month, str(e), run_id)
            raise

        logger.info(
            f"Billing run {result['runId']} for {month}: {result['billsGenerated']} queued, "
            f"{len(skipped)} skipped, {len(failed)} failed"
        )

        if self.alert_manager:
            self.alert_manager.send_billing_summary(result)

        return result

    def _bill_tenant(self, session: Session, ref: AllocationRef, month: str,
                     settings: BillingSettings):
        """
        Decide and queue one tenant's bill against the current ledger.

        The allocation row stays locked until the notice is queued, so a
        payment recorded concurrently is either fully visible or waits.

        Returns:
            (outcome, detail) where outcome is 'bill' or 'skip'
        """
        bill = BillCalculator(session).calculate(ref.tenant_id, ref.unit_id, month, lock=True)

        skip_base = {
            'tenantId': ref.tenant_id,
            'unitId': ref.unit_id,
            'tenantName': bill.tenant_name,
            'unitCode': bill.unit_code,
            'totalDue': str(bill.total_due),
        }

        if bill.total_due <= 0:
            return 'skip', dict(skip_base, reason=SKIP_NO_AMOUNT_DUE)

        if bill.covered_by_advance:
            return 'skip', dict(skip_base, reason=SKIP_COVERED_BY_ADVANCE, advanceAmount=str(bill.advance_amount))

        if self.dispatcher.has_active_notice(session, ref.tenant_id, ref.unit_id, month, 'bill_notification'):
            return 'skip', dict(skip_base, reason=SKIP_ALREADY_BILLED)

        if not bill.tenant_phone:
            raise BillingError(f"Tenant {ref.tenant_id} has no phone number")

        item_id = self.dispatcher.enqueue(
            bill.tenant_phone,
            build_bill_message(bill, settings),
            'bill_notification',
            billing_month=month,
            tenant_id=ref.tenant_id,
            unit_id=ref.unit_id,
            session=session,
        )

        detail = bill.to_dict()
        detail['queueItemId'] = item_id
        return 'bill', detail

    def _roll_previous_month(self, allocations: List[AllocationRef], month: str):
        """Close every open month before the target month for every allocation."""
        previous = format_month(add_months(month, -1))
        for ref in allocations:
            try:
                with self.sessions.session_scope() as session:
                    close_months_through(session, ref.tenant_id, ref.unit_id, previous)
            except BillingError as e:
                logger.warning(f"Could not close {previous} for tenant {ref.tenant_id}: {e.message}")

    def _record_run(self, result: Dict[str, Any], triggered_by: str) -> int:
        with self.sessions.session_scope() as session:
            run = BillingRun(
                month=result['month'],
                status='completed',
                total_tenants=result['totalTenants'],
                bills_sent=result['billsGenerated'],
                bills_failed=result['billsFailed'],
                skipped=len(result['skipped']),
                failed_details=result['failed'],
                skipped_details=result['skipped'],
                triggered_by=triggered_by,
            )
            session.add(run)
            session.flush()
            return run.id

    def _record_failed_run(self, month: str, triggered_by: str, error: str) -> Optional[int]:
        try:
            with self.sessions.session_scope() as session:
                run = BillingRun(month=month, status='failed', error_message=error, triggered_by=triggered_by)
                session.add(run)
                session.flush()
                return run.id
        except Exception as e:
            logger.error(f"Could not record failed billing run for {month}: {e}")
            return None

    # =========================================================================
    # History
    # =========================================================================

    def recent_runs(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Latest billing runs, newest first."""
        with self.sessions.session_scope() as session:
            runs = session.query(BillingRun).order_by(BillingRun.run_date.desc(), BillingRun.id.desc()).limit(limit).all()
            return [run.to_dict() for run in runs]

    def last_run(self) -> Optional[Dict[str, Any]]:
        runs = self.recent_runs(limit=1)
        return runs[0] if runs else None
