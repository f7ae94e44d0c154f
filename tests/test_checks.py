"""Tests for the daily lease-expiry and overdue-rent checks."""

from datetime import date

import pytest

from billing.checks import DailyChecks
from common.models import OperatorNotification


@pytest.fixture
def checks(sessions, alerts):
    return DailyChecks(sessions, alerts, lease_expiry_days=30)


def notifications(sessions, notification_type):
    with sessions.session_scope() as session:
        return session.query(OperatorNotification).filter_by(notification_type=notification_type).all()


def test_lease_ending_within_window_is_reported(sessions, checks, alert_channel, make_lease):
    lease = make_lease(first_name='Jane', last_name='Wanjiku', unit_code='A1', lease_end_date=date(2024, 5, 20))
    make_lease(first_name='Later', unit_code='A2', lease_end_date=date(2024, 8, 1))
    make_lease(first_name='Ended', unit_code='A3', lease_end_date=date(2024, 4, 30))
    make_lease(first_name='Open', unit_code='A4')

    result = checks.check_expiring_leases(today=date(2024, 5, 1))

    assert result == {'count': 1, 'notificationsSent': 1}
    context, message = alert_channel.alerts[0]
    assert context.title == 'Lease Expiring Soon'
    assert context.related_entity_id == lease.allocation_id
    assert 'Jane Wanjiku at A1' in message
    assert '20/05/2024' in message
    assert '19 days remaining' in message

    row, = notifications(sessions, 'lease_expiring')
    assert row.severity == 'warning'


def test_overdue_rent_after_grace_period(sessions, checks, alert_channel, make_lease, add_payment):
    make_lease(first_name='Owes', unit_code='B1', rent='10000', rent_due_day=1, grace_period_days=5)
    paid = make_lease(first_name='Paid', unit_code='B2', rent='10000', rent_due_day=1, grace_period_days=5)
    add_payment(paid, '2024-05', rent='10000')

    result = checks.check_overdue_rent(today=date(2024, 5, 10))

    assert result['count'] == 1
    context, message = alert_channel.alerts[0]
    assert context.title == 'Rent Payment Overdue'
    assert 'B1' in message
    assert 'KSh 10,000' in message
    assert 'May 2024' in message
    assert '4 days overdue' in message
    assert len(notifications(sessions, 'rent_overdue')) == 1


def test_no_overdue_alert_inside_grace_period(checks, alert_channel, make_lease):
    make_lease(rent_due_day=1, grace_period_days=5)

    assert checks.check_overdue_rent(today=date(2024, 5, 6))['count'] == 0
    assert alert_channel.alerts == []


def test_partial_payment_reports_balance(checks, alert_channel, make_lease, add_payment):
    lease = make_lease(rent='10000', rent_due_day=1, grace_period_days=5)
    add_payment(lease, '2024-05', rent='6500')

    checks.check_overdue_rent(today=date(2024, 5, 15))

    _, message = alert_channel.alerts[0]
    assert 'KSh 3,500' in message


def test_carry_forward_counts_toward_current_month(checks, make_lease, add_payment):
    lease = make_lease(rent='10000', rent_due_day=1, grace_period_days=5)
    add_payment(lease, '2024-05', rent='10000', advance=True)

    assert checks.check_overdue_rent(today=date(2024, 5, 20))['count'] == 0


def test_arrears_payment_does_not_count_as_rent(checks, alert_channel, make_lease, add_payment):
    lease = make_lease(unit_code='C1', rent='10000', arrears='10000', rent_due_day=1, grace_period_days=5)
    add_payment(lease, '2024-05', arrears='10000')

    result = checks.check_overdue_rent(today=date(2024, 5, 12))

    assert result['count'] == 1
    _, message = alert_channel.alerts[0]
    assert 'KSh 10,000' in message
