"""
Shared fixtures: an in-memory ledger, a scripted SMS channel and a
recording operator-alert channel.
"""

from collections import namedtuple
from datetime import datetime
from decimal import Decimal

import pytest

from billing.exceptions import DeliveryFailure
from common.date_utils import parse_month
from common.engine import create_engine_from_url, init_db
from common.models import AdminSetting, Payment, PropertyUnit, Tenant, TenantAllocation, WaterBill
from common.session import SessionManager
from notifications.alert_manager import AlertChannel, AlertManager
from notifications.channels import DeliveryReceipt, OutboundChannel
from notifications.dispatcher import NotificationDispatcher
from scheduler.config import DispatcherSettings

Lease = namedtuple('Lease', ['tenant_id', 'unit_id', 'allocation_id'])


class FakeChannel(OutboundChannel):
    """Records sends; raises on the call numbers listed in fail_on (1-based)."""

    def __init__(self, fail_on=(), error=None):
        self.fail_on = set(fail_on)
        self.error = error
        self.calls = 0
        self.sent = []
        self.closed = False

    def send(self, recipient, message):
        self.calls += 1
        if self.calls in self.fail_on:
            raise self.error or DeliveryFailure("Simulated provider error", provider_code=1005)
        self.sent.append((recipient, message))
        return DeliveryReceipt(message_id=f"msg-{self.calls}")

    def close(self):
        self.closed = True


class RecordingAlertChannel(AlertChannel):
    def __init__(self):
        self.alerts = []

    def is_configured(self):
        return True

    def send(self, context, message):
        self.alerts.append((context, message))
        return True

    def titles(self):
        return [context.title for context, _ in self.alerts]


@pytest.fixture
def engine():
    engine = create_engine_from_url('sqlite://')
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sessions(engine):
    return SessionManager(engine)


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def dispatcher(sessions, channel):
    return NotificationDispatcher(sessions, channel, DispatcherSettings(), sleep=lambda seconds: None)


@pytest.fixture
def alert_channel():
    return RecordingAlertChannel()


@pytest.fixture
def alerts(sessions, alert_channel):
    manager = AlertManager(sessions)
    manager.add_channel(alert_channel)
    return manager


@pytest.fixture
def make_lease(sessions):
    """Create a tenant, a unit and an active allocation between them."""

    def _make(first_name='Jane', last_name='Wanjiku', phone='0712345678', unit_code='A1',
              property_name='Sunrise Court', rent='10000', arrears='0', **allocation_fields):
        with sessions.session_scope() as session:
            tenant = Tenant(first_name=first_name, last_name=last_name, phone_number=phone)
            unit = PropertyUnit(unit_code=unit_code, property_name=property_name, rent_amount=Decimal(rent))
            session.add_all([tenant, unit])
            session.flush()

            allocation = TenantAllocation(
                tenant_id=tenant.id,
                unit_id=unit.id,
                monthly_rent=Decimal(rent),
                arrears_balance=Decimal(arrears),
                **allocation_fields
            )
            session.add(allocation)
            session.flush()
            return Lease(tenant.id, unit.id, allocation.id)

    return _make


@pytest.fixture
def add_water_bill(sessions):
    def _add(lease, month, amount, unit_id='same'):
        with sessions.session_scope() as session:
            session.add(WaterBill(
                tenant_id=lease.tenant_id,
                unit_id=lease.unit_id if unit_id == 'same' else unit_id,
                amount=Decimal(amount),
                bill_month=parse_month(month),
            ))

    return _add


@pytest.fixture
def add_payment(sessions):
    """Insert a completed payment row directly, bypassing the allocator."""

    def _add(lease, month, rent='0', water='0', arrears='0', advance=False, status='completed'):
        rent, water, arrears = Decimal(rent), Decimal(water), Decimal(arrears)
        with sessions.session_scope() as session:
            payment = Payment(
                tenant_id=lease.tenant_id,
                unit_id=lease.unit_id,
                amount=rent + water + arrears,
                payment_month=parse_month(month),
                payment_date=datetime(2024, 1, 1),
                status=status,
                allocated_to_rent=rent,
                allocated_to_water=water,
                allocated_to_arrears=arrears,
                is_advance_payment=advance,
            )
            session.add(payment)
            session.flush()
            return payment.id

    return _add


@pytest.fixture
def set_setting(sessions):
    def _set(key, value):
        with sessions.session_scope() as session:
            session.add(AdminSetting(setting_key=key, setting_value=value))

    return _set
