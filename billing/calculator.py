"""
Bill Calculator.

Computes what a tenant owes for one month across the three liability
streams (rent, water, arrears). Pure read: no row is written and calling
it twice without intervening writes yields the same breakdown.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Union
from datetime import date

from sqlalchemy.orm import Session

from billing.exceptions import NoActiveAllocation
from billing.ledger import LedgerReader
from common.data_utils import to_money, clamp_zero, ZERO
from common.date_utils import parse_month, format_month

logger = logging.getLogger(__name__)


@dataclass
class BillBreakdown:
    """Amounts, paid-to-date and due per stream for one tenant/unit/month."""
    tenant_id: int
    unit_id: int
    month: str
    tenant_name: str = ''
    tenant_phone: Optional[str] = None
    unit_code: str = ''
    property_name: str = ''
    rent_amount: Decimal = ZERO
    rent_paid: Decimal = ZERO
    rent_due: Decimal = ZERO
    water_amount: Decimal = ZERO
    water_paid: Decimal = ZERO
    water_due: Decimal = ZERO
    arrears_amount: Decimal = ZERO
    arrears_paid: Decimal = ZERO
    arrears_due: Decimal = ZERO
    total_due: Decimal = ZERO
    advance_amount: Decimal = ZERO
    covered_by_advance: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe representation (money as strings)."""
        return {
            'tenantId': self.tenant_id,
            'unitId': self.unit_id,
            'month': self.month,
            'tenantName': self.tenant_name,
            'tenantPhone': self.tenant_phone,
            'unitCode': self.unit_code,
            'propertyName': self.property_name,
            'rentAmount': str(self.rent_amount),
            'rentPaid': str(self.rent_paid),
            'rentDue': str(self.rent_due),
            'waterAmount': str(self.water_amount),
            'waterPaid': str(self.water_paid),
            'waterDue': str(self.water_due),
            'arrearsAmount': str(self.arrears_amount),
            'arrearsPaid': str(self.arrears_paid),
            'arrearsDue': str(self.arrears_due),
            'totalDue': str(self.total_due),
            'advanceAmount': str(self.advance_amount),
            'coveredByAdvance': self.covered_by_advance,
        }


class BillCalculator:
    """
    Calculates a tenant's bill from the ledger.

    Example:
        with sessions.session_scope() as session:
            bill = BillCalculator(session).calculate(tenant_id=3, unit_id=7, month='2024-05')
            print(bill.total_due, bill.covered_by_advance)
    """

    def __init__(self, session: Session):
        self.session = session
        self.ledger = LedgerReader(session)

    def calculate(
        self,
        tenant_id: int,
        unit_id: int,
        month: Union[str, date],
        include_carry_forward: bool = False,
        lock: bool = False,
    ) -> BillBreakdown:
        """
        Calculate the bill for one tenant/unit/month.

        Args:
            tenant_id: Tenant ID
            unit_id: Unit ID
            month: Target month ('YYYY-MM')
            include_carry_forward: Count carry-forward rows toward the month's rent paid
            lock: Hold the allocation row lock for the rest of the transaction

        Returns:
            BillBreakdown

        Raises:
            NoActiveAllocation: If the tenant has no active lease on the unit
            ValueError: If month is malformed
        """
        target = parse_month(month)

        allocation = self.ledger.get_active_allocation(tenant_id, unit_id, for_update=lock)
        if allocation is None:
            raise NoActiveAllocation(tenant_id, unit_id)

        rent_amount = to_money(allocation.monthly_rent)
        arrears_amount = to_money(allocation.arrears_balance)
        water_amount = self.ledger.water_bill_amount(tenant_id, unit_id, target)

        rent_paid, water_paid = self.ledger.month_paid(
            tenant_id, unit_id, target, include_carry_forward=include_carry_forward
        )
        arrears_paid = self.ledger.lifetime_arrears_paid(tenant_id, unit_id)

        if allocation.arrears_closed_through is not None and target <= allocation.arrears_closed_through:
            # Closed month: its unpaid rent and water already sit in arrears
            rent_due = water_due = ZERO
        else:
            rent_due = clamp_zero(rent_amount - rent_paid)
            water_due = clamp_zero(water_amount - water_paid)
        arrears_due = clamp_zero(arrears_amount - arrears_paid)
        total_due = rent_due + water_due + arrears_due

        advance_amount = self.ledger.advance_credit(tenant_id, unit_id, target)

        logger.debug(
            f"Bill for tenant {tenant_id}, unit {unit_id}, {format_month(target)}: "
            f"rent {rent_due} + water {water_due} + arrears {arrears_due} = {total_due} "
            f"(advance {advance_amount})"
        )

        tenant = allocation.tenant
        unit = allocation.unit

        return BillBreakdown(
            tenant_id=tenant_id,
            unit_id=unit_id,
            month=format_month(target),
            tenant_name=tenant.full_name if tenant else '',
            tenant_phone=tenant.phone_number if tenant else None,
            unit_code=unit.unit_code if unit else '',
            property_name=unit.property_name if unit else '',
            rent_amount=rent_amount,
            rent_paid=rent_paid,
            rent_due=rent_due,
            water_amount=water_amount,
            water_paid=water_paid,
            water_due=water_due,
            arrears_amount=arrears_amount,
            arrears_paid=arrears_paid,
            arrears_due=arrears_due,
            total_due=total_due,
            advance_amount=advance_amount,
            covered_by_advance=advance_amount >= total_due,
        )
