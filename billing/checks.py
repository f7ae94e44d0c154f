"""
Daily operator checks: leases about to expire and rent past its grace period.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, Optional

import pytz

from common.data_utils import format_amount, to_money
from common.models import PropertyUnit, Tenant, TenantAllocation
from common.session import SessionManager
from billing.ledger import LedgerReader

logger = logging.getLogger(__name__)


class DailyChecks:
    """
    Scans active allocations and raises operator alerts.

    Example:
        checks = DailyChecks(sessions, alert_manager, timezone='Africa/Nairobi')
        checks.check_expiring_leases()
    """

    def __init__(self, sessions: SessionManager, alert_manager, timezone: str = 'Africa/Nairobi',
                 lease_expiry_days: int = 30):
        self.sessions = sessions
        self.alert_manager = alert_manager
        self.timezone = timezone
        self.lease_expiry_days = lease_expiry_days

    def _today(self) -> date:
        return datetime.now(pytz.timezone(self.timezone)).date()

    def check_expiring_leases(self, today: Optional[date] = None) -> Dict[str, Any]:
        """Alert on active leases ending within the expiry window."""
        today = today or self._today()
        horizon = today + timedelta(days=self.lease_expiry_days)

        with self.sessions.session_scope() as session:
            rows = (
                session.query(TenantAllocation, Tenant, PropertyUnit)
                .join(Tenant, TenantAllocation.tenant_id == Tenant.id)
                .join(PropertyUnit, TenantAllocation.unit_id == PropertyUnit.id)
                .filter(
                    TenantAllocation.is_active.is_(True),
                    TenantAllocation.lease_end_date.isnot(None),
                    TenantAllocation.lease_end_date >= today,
                    TenantAllocation.lease_end_date <= horizon,
                )
                .order_by(TenantAllocation.lease_end_date)
                .all()
            )
            expiring = [
                (allocation.id, tenant.full_name, unit.unit_code, unit.property_name, allocation.lease_end_date)
                for allocation, tenant, unit in rows
            ]

        logger.info(f"Found {len(expiring)} lease(s) expiring in the next {self.lease_expiry_days} days")

        for allocation_id, name, unit_code, property_name, end_date in expiring:
            days_remaining = (end_date - today).days
            self.alert_manager.send_operator_alert(
                title="Lease Expiring Soon",
                message=(
                    f"Lease for {name} at {unit_code} ({property_name}) expires on "
                    f"{end_date.strftime('%d/%m/%Y')}. {days_remaining} days remaining."
                ),
                notification_type='lease_expiring',
                severity='warning',
                related_entity_type='allocation',
                related_entity_id=allocation_id,
            )

        return {'count': len(expiring), 'notificationsSent': len(expiring)}

    def check_overdue_rent(self, today: Optional[date] = None) -> Dict[str, Any]:
        """Alert on tenants past due day plus grace period with rent still unpaid this month."""
        today = today or self._today()
        month = date(today.year, today.month, 1)
        overdue = []

        with self.sessions.session_scope() as session:
            ledger = LedgerReader(session)
            rows = (
                session.query(TenantAllocation, Tenant, PropertyUnit)
                .join(Tenant, TenantAllocation.tenant_id == Tenant.id)
                .join(PropertyUnit, TenantAllocation.unit_id == PropertyUnit.id)
                .filter(TenantAllocation.is_active.is_(True))
                .all()
            )

            for allocation, tenant, unit in rows:
                deadline = (allocation.rent_due_day or 1) + (allocation.grace_period_days or 5)
                if today.day <= deadline:
                    continue

                monthly_rent = to_money(allocation.monthly_rent)
                paid, _ = ledger.month_paid(
                    allocation.tenant_id, allocation.unit_id, month, include_carry_forward=True
                )
                if paid >= monthly_rent:
                    continue

                overdue.append((
                    allocation.id, tenant.full_name, unit.unit_code, unit.property_name,
                    monthly_rent - paid, today.day - deadline,
                ))

        logger.info(f"Found {len(overdue)} tenant(s) with overdue rent")

        for allocation_id, name, unit_code, property_name, balance, days_overdue in overdue:
            self.alert_manager.send_operator_alert(
                title="Rent Payment Overdue",
                message=(
                    f"Rent overdue: {name} ({unit_code} at {property_name}) owes KSh {format_amount(balance)} "
                    f"for {today.strftime('%B %Y')}. {days_overdue} days overdue."
                ),
                notification_type='rent_overdue',
                severity='warning',
                related_entity_type='allocation',
                related_entity_id=allocation_id,
            )

        return {'count': len(overdue), 'notificationsSent': len(overdue)}
