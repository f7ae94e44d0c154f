"""
Payment recording.

One call records one physical payment. Reading the dues, computing the
split, writing the payment rows and queueing the tenant's confirmation
all happen in a single transaction; a failure anywhere leaves the ledger
untouched.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billing.allocator import PaymentAllocator, AllocationResult, validate_amount
from billing.exceptions import DuplicatePayment, NoActiveAllocation
from billing.ledger import LedgerReader
from billing.messages import build_payment_confirmation, build_advance_notice
from common.data_utils import to_money, clamp_zero, ZERO
from common.date_utils import parse_month, format_month, add_months, utcnow
from common.models import Payment, TenantAllocation
from common.session import SessionManager

logger = logging.getLogger(__name__)

# How far ahead an over-payment is spread before the remainder is parked on the last month
CARRY_FORWARD_HORIZON_MONTHS = 24


class PaymentService:
    """
    Records payments against the ledger.

    Example:
        service = PaymentService(sessions, dispatcher)
        result = service.record_payment(3, 7, '15000', '2024-05', receipt_number='QKX12ABC')
    """

    def __init__(self, sessions: SessionManager, dispatcher=None):
        """
        Args:
            sessions: Session manager for the ledger database
            dispatcher: NotificationDispatcher for confirmations (none sends no SMS)
        """
        self.sessions = sessions
        self.dispatcher = dispatcher

    def preview_allocation(self, tenant_id: int, unit_id: int, amount: Any,
                           month: Union[str, date]) -> AllocationResult:
        """Compute an allocation without writing anything."""
        with self.sessions.session_scope() as session:
            return PaymentAllocator(session).allocate(tenant_id, unit_id, amount, month)

    def record_payment(
        self,
        tenant_id: int,
        unit_id: int,
        amount: Any,
        month: Union[str, date],
        receipt_number: Optional[str] = None,
        payment_method: str = 'mpesa',
        payment_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Record a completed payment and its allocation.

        Args:
            tenant_id: Tenant ID
            unit_id: Unit ID
            amount: Amount received
            month: Month the payment is credited against
            receipt_number: Provider receipt (unique when given)
            payment_method: mpesa, cash, bank...
            payment_date: When the money was received (now if omitted)

        Returns:
            dict: payment id, allocation breakdown and carry-forward rows

        Raises:
            InvalidAmount: If amount <= 0 or not numeric
            NoActiveAllocation: If the tenant has no active lease on the unit
            DuplicatePayment: If the receipt number was already recorded
        """
        paid = validate_amount(amount)
        target = parse_month(month)

        with self.sessions.session_scope() as session:
            ledger = LedgerReader(session)

            if receipt_number and ledger.receipt_exists(receipt_number):
                raise DuplicatePayment(
                    f"Payment with receipt {receipt_number} already recorded",
                    {'receipt_number': receipt_number},
                )

            allocation = PaymentAllocator(session).allocate(tenant_id, unit_id, paid, target, lock=True)
            lease = ledger.get_active_allocation(tenant_id, unit_id)
            if lease is None:
                raise NoActiveAllocation(tenant_id, unit_id)

            received_at = payment_date or utcnow()
            primary = Payment(
                tenant_id=tenant_id,
                unit_id=unit_id,
                amount=allocation.applied_amount,
                received_amount=paid,
                payment_month=target,
                payment_date=received_at,
                status='completed',
                allocated_to_rent=allocation.to_rent,
                allocated_to_water=allocation.to_water,
                allocated_to_arrears=allocation.to_arrears,
                is_advance_payment=False,
                receipt_number=receipt_number,
                payment_method=payment_method,
            )
            session.add(primary)
            try:
                session.flush()
            except IntegrityError:
                # Concurrent insert of the same receipt
                raise DuplicatePayment(
                    f"Payment with receipt {receipt_number} already recorded",
                    {'receipt_number': receipt_number},
                )

            carry_forwards = []
            if allocation.to_advance > ZERO:
                carry_forwards = self._carry_forward(
                    session, ledger, lease, primary, allocation.to_advance, target, received_at
                )

            self._queue_confirmations(session, lease, primary, allocation, carry_forwards, target)

            logger.info(
                f"Recorded payment #{primary.id} of {paid} for tenant {tenant_id}, unit {unit_id} "
                f"({format_month(target)}); {len(carry_forwards)} carry-forward month(s)"
            )

            return {
                'paymentId': primary.id,
                'month': format_month(target),
                'receiptNumber': receipt_number,
                'allocation': allocation.to_dict(),
                'carryForwards': [
                    {'paymentId': row.id, 'month': format_month(row.payment_month), 'amount': str(row.amount)}
                    for row in carry_forwards
                ],
            }

    def _carry_forward(self, session: Session, ledger: LedgerReader, lease: TenantAllocation,
                       primary: Payment, advance: Decimal, target: date,
                       received_at: datetime) -> List[Payment]:
        """
        Spread advance credit over the following months as rent.

        Each month takes at most its unpaid rent; months already covered are
        skipped. Anything left after the horizon goes onto the last row.
        """
        monthly_rent = to_money(lease.monthly_rent)
        remaining = advance
        rows: List[Payment] = []

        for offset in range(1, CARRY_FORWARD_HORIZON_MONTHS + 1):
            if remaining <= ZERO:
                break

            month = add_months(target, offset)
            rent_paid, _ = ledger.month_paid(lease.tenant_id, lease.unit_id, month, include_carry_forward=True)
            capacity = clamp_zero(monthly_rent - rent_paid)
            if capacity <= ZERO:
                continue

            portion = min(remaining, capacity)
            rows.append(self._carry_forward_row(primary, month, portion, received_at))
            remaining -= portion

        if remaining > ZERO:
            if rows:
                last = rows[-1]
                last.amount = last.amount + remaining
                last.allocated_to_rent = last.allocated_to_rent + remaining
            else:
                rows.append(self._carry_forward_row(primary, add_months(target, 1), remaining, received_at))
            logger.warning(
                f"Advance for payment #{primary.id} exceeds {CARRY_FORWARD_HORIZON_MONTHS} months of rent; "
                f"{remaining} parked on {format_month(rows[-1].payment_month)}"
            )

        session.add_all(rows)
        session.flush()
        return rows

    @staticmethod
    def _carry_forward_row(primary: Payment, month: date, amount: Decimal, received_at: datetime) -> Payment:
        return Payment(
            tenant_id=primary.tenant_id,
            unit_id=primary.unit_id,
            amount=amount,
            payment_month=month,
            payment_date=received_at,
            status='completed',
            allocated_to_rent=amount,
            allocated_to_water=ZERO,
            allocated_to_arrears=ZERO,
            is_advance_payment=True,
            payment_method=primary.payment_method,
            original_payment_id=primary.id,
        )

    def _queue_confirmations(self, session: Session, lease: TenantAllocation, primary: Payment,
                             allocation: AllocationResult, carry_forwards: List[Payment], target: date):
        """Queue the confirmation (and advance notice) in the payment's transaction."""
        if self.dispatcher is None:
            return

        tenant = lease.tenant
        unit = lease.unit
        if tenant is None or not tenant.phone_number:
            logger.warning(f"Tenant {lease.tenant_id} has no phone number; payment confirmation not queued")
            return

        month_label = format_month(target)
        unit_code = unit.unit_code if unit else str(lease.unit_id)

        confirmation = build_payment_confirmation(
            tenant.full_name, unit_code, month_label, allocation.paid_amount,
            allocation.to_rent, allocation.to_water, allocation.to_arrears,
            allocation.remaining_balance,
        )
        self.dispatcher.enqueue(
            tenant.phone_number, confirmation, 'payment_confirmation',
            billing_month=month_label, tenant_id=lease.tenant_id, unit_id=lease.unit_id,
            session=session,
        )

        if carry_forwards:
            notice = build_advance_notice(
                tenant.full_name, unit_code, allocation.to_advance, len(carry_forwards)
            )
            self.dispatcher.enqueue(
                tenant.phone_number, notice, 'advance_payment',
                billing_month=month_label, tenant_id=lease.tenant_id, unit_id=lease.unit_id,
                session=session,
            )
