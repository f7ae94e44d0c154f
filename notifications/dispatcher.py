"""
Notification Dispatcher - durable outbound SMS queue.

Producers write SmsQueueItem rows (optionally inside their own
transaction). A periodic flush claims a batch of pending items, sends
them oldest-first with a fixed pause between sends, and records the
outcome of every attempt. Items that fail stay failed until an operator
resets them with retry_failed().
"""

import logging
import threading
import time
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from billing.exceptions import BillingError, DeliveryFailure
from common.date_utils import utcnow
from common.models import SmsQueueItem
from common.session import SessionManager
from notifications.channels import OutboundChannel, normalize_phone
from scheduler.config import DispatcherSettings

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3

# Statuses that mean a notice for the month has already gone out or is on its way
ACTIVE_STATUSES = ('pending', 'sending', 'sent')


class NotificationDispatcher:
    """
    Outbound SMS queue with bounded retry and rate limiting.

    Example:
        dispatcher = NotificationDispatcher(sessions, create_channel(config.sms))
        item_id = dispatcher.enqueue('0712345678', 'Hello', 'reminder')
        result = dispatcher.flush()
    """

    def __init__(
        self,
        sessions: SessionManager,
        channel: OutboundChannel,
        settings: DispatcherSettings = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize dispatcher.

        Args:
            sessions: Session manager for the ledger database
            channel: Outbound delivery channel
            settings: Batch size, send delay, attempt cap and claim timeout
            sleep: Pause function between sends (replaced in tests)
        """
        self.sessions = sessions
        self.channel = channel
        self.settings = settings or DispatcherSettings()
        self._sleep = sleep
        self._flush_lock = threading.Lock()

    @property
    def max_attempts(self) -> int:
        return self.settings.max_attempts or MAX_ATTEMPTS

    # =========================================================================
    # Producers
    # =========================================================================

    def enqueue(
        self,
        recipient: str,
        body: str,
        message_type: str,
        billing_month: Optional[str] = None,
        tenant_id: Optional[int] = None,
        unit_id: Optional[int] = None,
        session: Optional[Session] = None,
    ) -> int:
        """
        Queue a message for delivery.

        When a session is passed the insert joins the caller's transaction,
        so the message is only queued if the caller commits.

        Returns:
            int: Queue item ID

        Raises:
            BillingError: If recipient or body is empty
        """
        if not recipient or not str(recipient).strip():
            raise BillingError("Recipient phone number is required")
        if not body or not body.strip():
            raise BillingError("Message body is required")

        item = SmsQueueItem(
            recipient_phone=normalize_phone(recipient),
            message=body,
            message_type=message_type,
            status='pending',
            attempts=0,
            billing_month=billing_month,
            tenant_id=tenant_id,
            unit_id=unit_id,
        )

        if session is not None:
            session.add(item)
            session.flush()
            item_id = item.id
        else:
            with self.sessions.session_scope() as own_session:
                own_session.add(item)
                own_session.flush()
                item_id = item.id

        logger.info(f"Queued {message_type} #{item_id} for {item.recipient_phone}")
        return item_id

    def has_active_notice(self, session: Session, tenant_id: int, unit_id: int,
                          billing_month: str, message_type: str = 'bill_notification') -> bool:
        """Check for a pending, in-flight or sent notice of this type for the tenant/unit/month."""
        return session.query(SmsQueueItem.id).filter(
            SmsQueueItem.tenant_id == tenant_id,
            SmsQueueItem.unit_id == unit_id,
            SmsQueueItem.billing_month == billing_month,
            SmsQueueItem.message_type == message_type,
            SmsQueueItem.status.in_(ACTIVE_STATUSES),
        ).first() is not None

    # =========================================================================
    # Flush cycle
    # =========================================================================

    def flush(self, limit: Optional[int] = None) -> Dict[str, int]:
        """
        Send one batch of pending messages.

        Args:
            limit: Batch size override

        Returns:
            dict: processed, successful and failed counts
        """
        result = {'processed': 0, 'successful': 0, 'failed': 0}

        if not self._flush_lock.acquire(blocking=False):
            logger.info("Flush already running; skipping this cycle")
            return result

        try:
            self._release_stale_claims()
            batch = self._claim_batch(limit or self.settings.batch_size)
            if not batch:
                logger.debug("No pending messages")
                return result

            logger.info(f"Flushing {len(batch)} queued message(s)")

            for index, (item_id, recipient, body) in enumerate(batch):
                if index > 0 and self.settings.send_delay_seconds:
                    self._sleep(self.settings.send_delay_seconds)

                result['processed'] += 1
                if self._deliver(item_id, recipient, body):
                    result['successful'] += 1
                else:
                    result['failed'] += 1

            logger.info(
                f"Flush complete: {result['successful']} sent, {result['failed']} failed "
                f"of {result['processed']}"
            )
            return result

        finally:
            self._flush_lock.release()

    def _release_stale_claims(self):
        """Return items stuck in 'sending' (crashed flush) to the pending pool."""
        cutoff = utcnow() - timedelta(seconds=self.settings.claim_timeout_seconds)
        with self.sessions.session_scope() as session:
            released = session.query(SmsQueueItem).filter(
                SmsQueueItem.status == 'sending',
                SmsQueueItem.claimed_at < cutoff,
            ).update({'status': 'pending', 'claimed_at': None}, synchronize_session=False)

        if released:
            logger.warning(f"Released {released} stale claimed message(s) back to pending")

    def _claim_batch(self, size: int) -> List[Tuple[int, str, str]]:
        """
        Atomically move up to `size` pending items to 'sending'.

        Rows are locked with SKIP LOCKED where the database supports it and
        each claim is a conditional update, so two flushes never share an item.
        """
        now = utcnow()
        claimed = []

        with self.sessions.session_scope() as session:
            candidates = (
                session.query(SmsQueueItem)
                .filter(
                    SmsQueueItem.status == 'pending',
                    SmsQueueItem.attempts < self.max_attempts,
                )
                .order_by(SmsQueueItem.created_at, SmsQueueItem.id)
                .limit(size)
                .with_for_update(skip_locked=True)
                .all()
            )

            for item in candidates:
                updated = session.query(SmsQueueItem).filter(
                    SmsQueueItem.id == item.id,
                    SmsQueueItem.status == 'pending',
                ).update({'status': 'sending', 'claimed_at': now}, synchronize_session=False)
                if updated:
                    claimed.append((item.id, item.recipient_phone, item.message))

        return claimed

    def _deliver(self, item_id: int, recipient: str, body: str) -> bool:
        """Send one claimed item and record the outcome. Never raises."""
        try:
            receipt = self.channel.send(recipient, body)
        except DeliveryFailure as e:
            logger.warning(f"Message #{item_id} to {recipient} failed: {e.message}")
            self._record_attempt(item_id, success=False, error=e.message)
            return False
        except Exception as e:
            logger.error(f"Message #{item_id} to {recipient} raised {type(e).__name__}: {e}")
            self._record_attempt(item_id, success=False, error=f"{type(e).__name__}: {e}")
            return False

        self._record_attempt(item_id, success=True, provider_message_id=receipt.message_id)
        return True

    def _record_attempt(self, item_id: int, success: bool, error: str = None,
                        provider_message_id: str = None):
        now = utcnow()
        values = {
            'attempts': SmsQueueItem.attempts + 1,
            'last_attempt_at': now,
            'claimed_at': None,
        }
        if success:
            values.update(status='sent', sent_at=now, provider_message_id=provider_message_id, error_message=None)
        else:
            values.update(status='failed', error_message=(error or 'Unknown delivery error')[:2000])

        try:
            with self.sessions.session_scope() as session:
                session.query(SmsQueueItem).filter(
                    SmsQueueItem.id == item_id,
                    SmsQueueItem.status == 'sending',
                ).update(values, synchronize_session=False)
        except Exception as e:
            # Item stays 'sending' and is released by the next cycle's stale sweep
            logger.error(f"Could not record delivery outcome for message #{item_id}: {e}")

    # =========================================================================
    # Operator actions
    # =========================================================================

    def retry_failed(self, item_ids: Optional[Sequence[int]] = None) -> int:
        """
        Reset failed items to pending with a fresh attempt budget.

        Args:
            item_ids: Specific items to retry (all failed items if omitted)

        Returns:
            int: Number of items reset
        """
        with self.sessions.session_scope() as session:
            query = session.query(SmsQueueItem).filter(SmsQueueItem.status == 'failed')
            if item_ids:
                query = query.filter(SmsQueueItem.id.in_(list(item_ids)))
            count = query.update(
                {'status': 'pending', 'attempts': 0, 'error_message': None, 'claimed_at': None},
                synchronize_session=False,
            )

        logger.info(f"Reset {count} failed message(s) to pending")
        return count

    def queue_stats(self) -> Dict[str, Any]:
        """Counts per status plus how many pending items have exhausted their attempts."""
        with self.sessions.session_scope() as session:
            rows = session.query(SmsQueueItem.status, func.count(SmsQueueItem.id)).group_by(
                SmsQueueItem.status
            ).all()
            exhausted = session.query(func.count(SmsQueueItem.id)).filter(
                SmsQueueItem.status == 'pending',
                SmsQueueItem.attempts >= self.max_attempts,
            ).scalar()

        stats = {'pending': 0, 'sending': 0, 'sent': 0, 'failed': 0}
        for status, count in rows:
            stats[status] = count
        stats['total'] = sum(stats.values())
        stats['exhausted'] = exhausted or 0
        return stats

    def failed_items(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent failed items for the operator report."""
        with self.sessions.session_scope() as session:
            items = (
                session.query(SmsQueueItem)
                .filter(SmsQueueItem.status == 'failed')
                .order_by(SmsQueueItem.last_attempt_at.desc(), SmsQueueItem.id.desc())
                .limit(limit)
                .all()
            )
            return [item.to_dict() for item in items]
