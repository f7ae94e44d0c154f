"""
Read-only ledger queries for one tenant/unit/month.

Every sum is taken over completed payments only. Carry-forward rows
(is_advance_payment) are excluded from month totals unless the caller
asks for them explicitly.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from common.data_utils import to_money, ZERO
from common.models import Payment, PropertyUnit, Tenant, TenantAllocation, WaterBill

logger = logging.getLogger(__name__)

COMPLETED = 'completed'


@dataclass
class AllocationRef:
    """Flat view of an active allocation used to drive billing runs."""
    allocation_id: int
    tenant_id: int
    unit_id: int
    tenant_name: str
    tenant_phone: Optional[str]
    unit_code: str
    property_name: str


class LedgerReader:
    """Queries against allocations, water bills and payments."""

    def __init__(self, session: Session):
        self.session = session

    def get_active_allocation(self, tenant_id: int, unit_id: int, for_update: bool = False) -> Optional[TenantAllocation]:
        """
        Find the active allocation for a tenant/unit pair.

        Args:
            tenant_id: Tenant ID
            unit_id: Unit ID
            for_update: Lock the row until the surrounding transaction ends

        Returns:
            TenantAllocation or None
        """
        query = self.session.query(TenantAllocation).filter(
            TenantAllocation.tenant_id == tenant_id,
            TenantAllocation.unit_id == unit_id,
            TenantAllocation.is_active.is_(True),
        )
        if for_update:
            query = query.with_for_update()
        return query.first()

    def list_active_allocations(self) -> List[AllocationRef]:
        """Every active allocation, ordered by property then unit code."""
        rows = (
            self.session.query(TenantAllocation, Tenant, PropertyUnit)
            .join(Tenant, TenantAllocation.tenant_id == Tenant.id)
            .join(PropertyUnit, TenantAllocation.unit_id == PropertyUnit.id)
            .filter(TenantAllocation.is_active.is_(True))
            .order_by(PropertyUnit.property_name, PropertyUnit.unit_code, TenantAllocation.id)
            .all()
        )
        return [
            AllocationRef(
                allocation_id=allocation.id,
                tenant_id=allocation.tenant_id,
                unit_id=allocation.unit_id,
                tenant_name=tenant.full_name,
                tenant_phone=tenant.phone_number,
                unit_code=unit.unit_code,
                property_name=unit.property_name,
            )
            for allocation, tenant, unit in rows
        ]

    def water_bill_amount(self, tenant_id: int, unit_id: int, month: date) -> Decimal:
        """
        Metered water charge for the month, or zero when none was recorded.

        A bill recorded against the unit wins over one recorded without a unit.
        """
        bills = self.session.query(WaterBill).filter(
            WaterBill.tenant_id == tenant_id,
            WaterBill.bill_month == month,
        ).all()

        for bill in bills:
            if bill.unit_id == unit_id:
                return to_money(bill.amount)
        for bill in bills:
            if bill.unit_id is None:
                return to_money(bill.amount)
        return ZERO

    def month_paid(self, tenant_id: int, unit_id: int, month: date,
                   include_carry_forward: bool = False) -> Tuple[Decimal, Decimal]:
        """
        Rent and water already paid for a month.

        Returns:
            (rent_paid, water_paid)
        """
        query = self.session.query(
            func.coalesce(func.sum(Payment.allocated_to_rent), 0),
            func.coalesce(func.sum(Payment.allocated_to_water), 0),
        ).filter(
            Payment.tenant_id == tenant_id,
            Payment.unit_id == unit_id,
            Payment.payment_month == month,
            Payment.status == COMPLETED,
        )
        if not include_carry_forward:
            query = query.filter(Payment.is_advance_payment.is_(False))

        rent_paid, water_paid = query.one()
        return to_money(rent_paid), to_money(water_paid)

    def lifetime_arrears_paid(self, tenant_id: int, unit_id: int) -> Decimal:
        """Everything ever allocated to arrears for this tenant/unit."""
        total = self.session.query(
            func.coalesce(func.sum(Payment.allocated_to_arrears), 0)
        ).filter(
            Payment.tenant_id == tenant_id,
            Payment.unit_id == unit_id,
            Payment.status == COMPLETED,
        ).scalar()
        return to_money(total)

    def advance_credit(self, tenant_id: int, unit_id: int, month: date) -> Decimal:
        """Standing advance: completed carry-forward amounts for this month onwards."""
        total = self.session.query(
            func.coalesce(func.sum(Payment.amount), 0)
        ).filter(
            Payment.tenant_id == tenant_id,
            Payment.unit_id == unit_id,
            Payment.status == COMPLETED,
            Payment.is_advance_payment.is_(True),
            Payment.payment_month >= month,
        ).scalar()
        return to_money(total)

    def receipt_exists(self, receipt_number: str) -> bool:
        return self.session.query(Payment.id).filter(
            Payment.receipt_number == receipt_number
        ).first() is not None
