"""
Payment Allocator.

Splits an incoming payment over the liability streams in a fixed order:
arrears, then water, then rent. Whatever is left becomes advance credit
for future months. Decimal arithmetic throughout, so the parts always sum
exactly to the amount paid.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Union

from sqlalchemy.orm import Session

from billing.calculator import BillCalculator, BillBreakdown
from billing.exceptions import BillingError, InvalidAmount
from common.data_utils import to_money, ZERO

logger = logging.getLogger(__name__)


@dataclass
class AllocationResult:
    """How one payment is distributed, plus what remains owed afterwards."""
    to_arrears: Decimal
    to_water: Decimal
    to_rent: Decimal
    to_advance: Decimal
    remaining_arrears: Decimal
    remaining_water: Decimal
    remaining_rent: Decimal
    total_due: Decimal
    paid_amount: Decimal

    @property
    def applied_amount(self) -> Decimal:
        """Portion settled against the current month (everything but advance)."""
        return self.to_arrears + self.to_water + self.to_rent

    @property
    def remaining_balance(self) -> Decimal:
        return self.remaining_arrears + self.remaining_water + self.remaining_rent

    def to_dict(self) -> Dict[str, Any]:
        return {
            'toArrears': str(self.to_arrears),
            'toWater': str(self.to_water),
            'toRent': str(self.to_rent),
            'toAdvance': str(self.to_advance),
            'remainingArrears': str(self.remaining_arrears),
            'remainingWater': str(self.remaining_water),
            'remainingRent': str(self.remaining_rent),
            'totalDue': str(self.total_due),
            'paidAmount': str(self.paid_amount),
        }


def validate_amount(amount: Any) -> Decimal:
    """
    Parse a payment amount.

    Raises:
        InvalidAmount: If the amount is missing, not numeric or not positive
    """
    if amount is None or amount == '':
        raise InvalidAmount("Payment amount is required")
    try:
        value = to_money(amount)
    except ValueError:
        raise InvalidAmount(f"Payment amount is not a number: {amount!r}")
    if value <= ZERO:
        raise InvalidAmount(f"Payment amount must be greater than zero (got {value})")
    return value


def split_payment(amount: Decimal, bill: BillBreakdown) -> AllocationResult:
    """
    Apply the arrears -> water -> rent -> advance waterfall to a bill.

    Args:
        amount: Validated payment amount
        bill: Current dues

    Returns:
        AllocationResult
    """
    remaining = amount

    to_arrears = min(remaining, bill.arrears_due)
    remaining -= to_arrears

    to_water = min(remaining, bill.water_due)
    remaining -= to_water

    to_rent = min(remaining, bill.rent_due)
    remaining -= to_rent

    result = AllocationResult(
        to_arrears=to_arrears,
        to_water=to_water,
        to_rent=to_rent,
        to_advance=remaining,
        remaining_arrears=bill.arrears_due - to_arrears,
        remaining_water=bill.water_due - to_water,
        remaining_rent=bill.rent_due - to_rent,
        total_due=bill.total_due,
        paid_amount=amount,
    )

    if result.applied_amount + result.to_advance != amount:
        raise BillingError(f"Allocation of {amount} does not balance: {result.to_dict()}")
    return result


class PaymentAllocator:
    """Computes payment allocations against the live ledger."""

    def __init__(self, session: Session):
        self.session = session
        self.calculator = BillCalculator(session)

    def allocate(self, tenant_id: int, unit_id: int, amount: Any, month: Union[str, date],
                 lock: bool = False) -> AllocationResult:
        """
        Allocate a payment for a tenant/unit/month.

        Carry-forward rows already credited to the month count as paid, so a
        month prepaid by an earlier over-payment is not charged again.

        Args:
            tenant_id: Tenant ID
            unit_id: Unit ID
            amount: Amount received
            month: Month the payment is credited against
            lock: Lock the allocation row (used when the result is about to be persisted)

        Raises:
            InvalidAmount: If amount <= 0 or not numeric
            NoActiveAllocation: If the tenant has no active lease on the unit
        """
        paid = validate_amount(amount)
        bill = self.calculator.calculate(tenant_id, unit_id, month, include_carry_forward=True, lock=lock)
        result = split_payment(paid, bill)

        logger.info(
            f"Allocated {paid} for tenant {tenant_id}, unit {unit_id}, {bill.month}: "
            f"arrears {result.to_arrears}, water {result.to_water}, rent {result.to_rent}, "
            f"advance {result.to_advance}"
        )
        return result
