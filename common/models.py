"""
SQLAlchemy ORM models for the billing ledger.

Tenants and units belong to the wider property-management application;
they appear here only as the read side the billing engine depends on.
"""

from datetime import datetime, date
from decimal import Decimal
from typing import Dict, Any
from sqlalchemy import (
    Column, String, Integer, DateTime, Date, Boolean, Numeric, Text,
    ForeignKey, Index, UniqueConstraint, CheckConstraint, JSON
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

from common.date_utils import utcnow


# Declarative base for all models
Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), 'postgresql')

Money = Numeric(12, 2)


class TimestampMixin:
    """Mixin for automatic timestamp tracking"""
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class BaseModel:
    """Base model with common functionality"""

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert model instance to dictionary.

        Returns:
            dict: Dictionary representation with JSON-safe values
        """
        result = {}
        for column in self.__table__.columns:
            value = getattr(self, column.name)
            if isinstance(value, (datetime, date)):
                value = value.isoformat()
            elif isinstance(value, Decimal):
                value = str(value)
            result[column.name] = value
        return result

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(id={getattr(self, 'id', None)})>"


# ============================================================================
# Collaborator tables (read-only to the billing engine)
# ============================================================================


class Tenant(Base, BaseModel, TimestampMixin):
    """A person renting a unit."""
    __tablename__ = 'tenants'

    id = Column(Integer, primary_key=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False, default='')
    phone_number = Column(String(20))

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class PropertyUnit(Base, BaseModel, TimestampMixin):
    """A rentable unit; unit_code doubles as the paybill account reference."""
    __tablename__ = 'property_units'

    id = Column(Integer, primary_key=True)
    unit_code = Column(String(50), nullable=False)
    property_name = Column(String(200), nullable=False, default='')
    rent_amount = Column(Money, nullable=False, default=0)


# ============================================================================
# Ledger tables
# ============================================================================


class TenantAllocation(Base, BaseModel, TimestampMixin):
    """
    One lease binding a tenant to a unit.

    arrears_balance accumulates every unpaid amount rolled over from closed
    months; arrears payments are tracked on the payment rows, so the amount
    still owed is arrears_balance minus lifetime allocated_to_arrears.
    """
    __tablename__ = 'tenant_allocations'

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id'), nullable=False, index=True)
    unit_id = Column(Integer, ForeignKey('property_units.id'), nullable=False, index=True)
    monthly_rent = Column(Money, nullable=False)
    arrears_balance = Column(Money, nullable=False, default=0)
    arrears_closed_through = Column(Date)  # last month rolled into arrears
    lease_start_date = Column(Date)
    lease_end_date = Column(Date)
    rent_due_day = Column(Integer, default=1)
    grace_period_days = Column(Integer, default=5)
    is_active = Column(Boolean, nullable=False, default=True)

    tenant = relationship('Tenant')
    unit = relationship('PropertyUnit')

    __table_args__ = (
        # At most one active lease per (tenant, unit)
        Index(
            'uq_active_allocation', tenant_id, unit_id, unique=True,
            postgresql_where=(is_active.is_(True)),
            sqlite_where=(is_active.is_(True)),
        ),
    )


class WaterBill(Base, BaseModel, TimestampMixin):
    """One metered water charge for a tenant and month (upserted by agents)."""
    __tablename__ = 'water_bills'

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id'), nullable=False)
    unit_id = Column(Integer, ForeignKey('property_units.id'))
    amount = Column(Money, nullable=False)
    bill_month = Column(Date, nullable=False)
    notes = Column(Text)

    __table_args__ = (
        UniqueConstraint('tenant_id', 'bill_month', name='uq_water_bill_tenant_month'),
    )


class Payment(Base, BaseModel, TimestampMixin):
    """
    Money received and its allocation.

    A single over-payment produces one primary row for the paid month plus
    carry-forward rows (is_advance_payment=True) pointing back through
    original_payment_id. For completed rows the allocated_* fields sum to amount.
    """
    __tablename__ = 'rent_payments'

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id'), nullable=False, index=True)
    unit_id = Column(Integer, ForeignKey('property_units.id'), nullable=False, index=True)
    amount = Column(Money, nullable=False)
    received_amount = Column(Money)  # physical amount on the primary row
    payment_month = Column(Date, nullable=False, index=True)
    payment_date = Column(DateTime, default=utcnow, nullable=False)
    status = Column(String(20), nullable=False, default='pending')
    allocated_to_rent = Column(Money, nullable=False, default=0)
    allocated_to_water = Column(Money, nullable=False, default=0)
    allocated_to_arrears = Column(Money, nullable=False, default=0)
    is_advance_payment = Column(Boolean, nullable=False, default=False)
    receipt_number = Column(String(100), unique=True)
    payment_method = Column(String(30), default='mpesa')
    original_payment_id = Column(Integer, ForeignKey('rent_payments.id'))

    carry_forwards = relationship('Payment', order_by='Payment.payment_month')

    __table_args__ = (
        Index('idx_payments_tenant_unit_month', tenant_id, unit_id, payment_month),
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed')",
            name='chk_payment_status'
        ),
    )

    @property
    def allocated_total(self) -> Decimal:
        return (self.allocated_to_rent or 0) + (self.allocated_to_water or 0) + (self.allocated_to_arrears or 0)


class SmsQueueItem(Base, BaseModel, TimestampMixin):
    """
    One outbound message awaiting or having attempted delivery.

    status: pending -> sending (claimed by a flush) -> sent | failed.
    """
    __tablename__ = 'sms_queue'

    id = Column(Integer, primary_key=True)
    recipient_phone = Column(String(20), nullable=False)
    message = Column(Text, nullable=False)
    message_type = Column(String(50), nullable=False, index=True)
    status = Column(String(20), nullable=False, default='pending', index=True)
    attempts = Column(Integer, nullable=False, default=0)
    claimed_at = Column(DateTime)
    last_attempt_at = Column(DateTime)
    sent_at = Column(DateTime)
    provider_message_id = Column(String(100))
    error_message = Column(Text)
    billing_month = Column(String(7), index=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id'))
    unit_id = Column(Integer, ForeignKey('property_units.id'))

    __table_args__ = (
        Index('idx_sms_queue_status_created', 'status', 'created_at'),
        CheckConstraint(
            "status IN ('pending', 'sending', 'sent', 'failed')",
            name='chk_sms_status'
        ),
    )


class AdminSetting(Base, BaseModel, TimestampMixin):
    """Key/value settings maintained by administrators (billing_day, paybill_number, company_name)."""
    __tablename__ = 'admin_settings'

    id = Column(Integer, primary_key=True)
    setting_key = Column(String(100), nullable=False, unique=True)
    setting_value = Column(Text)


class OperatorNotification(Base, BaseModel, TimestampMixin):
    """In-app notification for administrators (run summaries, failures, lease and rent alerts)."""
    __tablename__ = 'operator_notifications'

    id = Column(Integer, primary_key=True)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    notification_type = Column(String(50), nullable=False, index=True)
    severity = Column(String(20), nullable=False, default='info')
    related_entity_type = Column(String(50))
    related_entity_id = Column(Integer)
    is_read = Column(Boolean, nullable=False, default=False)


class BillingRun(Base, BaseModel):
    """Append-only audit record of one Monthly Bill Generator execution."""
    __tablename__ = 'billing_runs'

    id = Column(Integer, primary_key=True)
    month = Column(String(7), nullable=False, index=True)
    status = Column(String(20), nullable=False, default='completed')
    total_tenants = Column(Integer, nullable=False, default=0)
    bills_sent = Column(Integer, nullable=False, default=0)
    bills_failed = Column(Integer, nullable=False, default=0)
    skipped = Column(Integer, nullable=False, default=0)
    failed_details = Column(JSONType)
    skipped_details = Column(JSONType)
    error_message = Column(Text)
    triggered_by = Column(String(50), default='scheduler')
    run_date = Column(DateTime, default=utcnow, nullable=False, index=True)

    __table_args__ = (
        CheckConstraint("status IN ('completed', 'failed')", name='chk_billing_run_status'),
    )
