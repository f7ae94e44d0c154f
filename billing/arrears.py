"""
Arrears roll-over.

When a month closes, whatever rent and water is still unpaid for it moves
into the allocation's arrears balance. Payments never touch the balance
directly; arrears still owed is the balance minus lifetime arrears paid.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Union

from sqlalchemy.orm import Session

from billing.exceptions import NoActiveAllocation
from billing.ledger import LedgerReader
from common.data_utils import to_money, clamp_zero, ZERO
from common.date_utils import add_months, parse_month, format_month

logger = logging.getLogger(__name__)


def close_month(session: Session, tenant_id: int, unit_id: int, month: Union[str, date]) -> Decimal:
    """
    Roll a month's unpaid rent and water into arrears.

    Idempotent: a month at or before the allocation's arrears_closed_through
    marker is left alone. Months before the lease start (or, without one,
    the allocation's creation) are skipped.

    Args:
        session: Open session (the allocation row is locked for the transaction)
        tenant_id: Tenant ID
        unit_id: Unit ID
        month: Month to close

    Returns:
        Decimal: Amount added to arrears (zero when nothing was rolled)

    Raises:
        NoActiveAllocation: If the tenant has no active lease on the unit
    """
    target = parse_month(month)
    ledger = LedgerReader(session)

    allocation = ledger.get_active_allocation(tenant_id, unit_id, for_update=True)
    if allocation is None:
        raise NoActiveAllocation(tenant_id, unit_id)

    if allocation.arrears_closed_through is not None and target <= allocation.arrears_closed_through:
        logger.debug(f"{format_month(target)} already closed for allocation {allocation.id}")
        return ZERO

    lease_start = allocation.lease_start_date or allocation.created_at
    if lease_start is not None and target < parse_month(lease_start):
        logger.debug(f"{format_month(target)} precedes lease start for allocation {allocation.id}")
        return ZERO

    rent_paid, water_paid = ledger.month_paid(tenant_id, unit_id, target, include_carry_forward=True)
    rent_unpaid = clamp_zero(to_money(allocation.monthly_rent) - rent_paid)
    water_unpaid = clamp_zero(ledger.water_bill_amount(tenant_id, unit_id, target) - water_paid)
    unpaid = rent_unpaid + water_unpaid

    allocation.arrears_balance = to_money(allocation.arrears_balance) + unpaid
    allocation.arrears_closed_through = target

    if unpaid > ZERO:
        logger.info(
            f"Rolled {unpaid} into arrears for tenant {tenant_id}, unit {unit_id} "
            f"({format_month(target)}); balance now {allocation.arrears_balance}"
        )
    return unpaid


def close_months_through(session: Session, tenant_id: int, unit_id: int, month: Union[str, date]) -> Decimal:
    """
    Close every open month up to and including the given month, oldest first.

    Starts at the month after arrears_closed_through, or at the lease start
    (allocation creation without one) for an allocation never closed, so a
    missed billing run never skips a month.

    Returns:
        Decimal: Total added to arrears

    Raises:
        NoActiveAllocation: If the tenant has no active lease on the unit
    """
    through = parse_month(month)
    ledger = LedgerReader(session)

    allocation = ledger.get_active_allocation(tenant_id, unit_id, for_update=True)
    if allocation is None:
        raise NoActiveAllocation(tenant_id, unit_id)

    if allocation.arrears_closed_through is not None:
        current = add_months(allocation.arrears_closed_through, 1)
    else:
        lease_start = allocation.lease_start_date or allocation.created_at
        current = parse_month(lease_start) if lease_start is not None else through

    total = ZERO
    while current <= through:
        total += close_month(session, tenant_id, unit_id, current)
        current = add_months(current, 1)
    return total
