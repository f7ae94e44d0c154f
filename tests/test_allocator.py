"""Tests for the Payment Allocator waterfall."""

from datetime import date
from decimal import Decimal

import pytest

from billing.allocator import PaymentAllocator, split_payment, validate_amount
from billing.arrears import close_month
from billing.calculator import BillBreakdown
from billing.exceptions import InvalidAmount, NoActiveAllocation


def allocate(sessions, lease, amount, month='2024-05'):
    with sessions.session_scope() as session:
        return PaymentAllocator(session).allocate(lease.tenant_id, lease.unit_id, amount, month)


def parts(result):
    return result.to_arrears, result.to_water, result.to_rent, result.to_advance


def test_overpayment_becomes_advance(sessions, make_lease):
    lease = make_lease(rent='10000')

    result = allocate(sessions, lease, 15000)

    assert result.to_rent == Decimal('10000.00')
    assert result.to_advance == Decimal('5000.00')
    assert result.remaining_balance == Decimal('0.00')


def test_arrears_then_water_then_rent(sessions, make_lease, add_water_bill):
    lease = make_lease(rent='8000', arrears='2000')
    add_water_bill(lease, '2024-05', '500')

    result = allocate(sessions, lease, 3000)

    assert parts(result) == (Decimal('2000.00'), Decimal('500.00'), Decimal('500.00'), Decimal('0.00'))
    assert result.remaining_arrears == Decimal('0.00')
    assert result.remaining_water == Decimal('0.00')
    assert result.remaining_rent == Decimal('7500.00')
    assert result.total_due == Decimal('10500.00')


def test_small_payment_goes_to_arrears_only(sessions, make_lease, add_water_bill):
    lease = make_lease(rent='8000', arrears='2000')
    add_water_bill(lease, '2024-05', '500')

    result = allocate(sessions, lease, '1200')

    assert parts(result) == (Decimal('1200.00'), Decimal('0.00'), Decimal('0.00'), Decimal('0.00'))
    assert result.remaining_arrears == Decimal('800.00')


def test_parts_sum_exactly_to_paid_amount(sessions, make_lease, add_water_bill):
    lease = make_lease(rent='9999.99', arrears='0.01')
    add_water_bill(lease, '2024-05', '333.33')

    for amount in ('0.01', '0.02', '333.35', '10333.33', '10333.34', '25000.10'):
        result = allocate(sessions, lease, amount)
        assert sum(parts(result)) == Decimal(amount)
        assert result.paid_amount == Decimal(amount)


def test_prepaid_month_sends_everything_to_advance(sessions, make_lease, add_payment):
    lease = make_lease(rent='10000')
    add_payment(lease, '2024-05', rent='10000', advance=True)

    result = allocate(sessions, lease, 4000)

    assert result.to_rent == Decimal('0.00')
    assert result.to_advance == Decimal('4000.00')


def test_float_amounts_do_not_leak_binary_noise(sessions, make_lease):
    lease = make_lease(rent='0.3')

    result = allocate(sessions, lease, 0.1 + 0.2)

    assert result.to_rent == Decimal('0.30')
    assert result.to_advance == Decimal('0.00')


@pytest.mark.parametrize('amount', [0, -50, '0', '-1', None, '', 'abc', True])
def test_invalid_amounts_rejected(amount):
    with pytest.raises(InvalidAmount):
        validate_amount(amount)


def test_invalid_amount_rejected_before_ledger_lookup(sessions, make_lease):
    lease = make_lease()

    with pytest.raises(InvalidAmount):
        allocate(sessions, lease, 0)


def test_missing_allocation_propagates(sessions, make_lease):
    lease = make_lease()

    with sessions.session_scope() as session:
        with pytest.raises(NoActiveAllocation):
            PaymentAllocator(session).allocate(lease.tenant_id + 5, lease.unit_id, 100, '2024-05')


def test_split_payment_against_a_plain_breakdown():
    bill = BillBreakdown(
        tenant_id=1, unit_id=1, month='2024-05',
        rent_due=Decimal('5000.00'), water_due=Decimal('0.00'), arrears_due=Decimal('1000.00'),
        total_due=Decimal('6000.00'),
    )

    result = split_payment(Decimal('7000.00'), bill)

    assert parts(result) == (Decimal('1000.00'), Decimal('0.00'), Decimal('5000.00'), Decimal('1000.00'))
    assert result.applied_amount == Decimal('6000.00')


def test_to_dict_keys(sessions, make_lease):
    lease = make_lease(rent='10000')

    data = allocate(sessions, lease, 15000).to_dict()

    assert data == {
        'toArrears': '0.00',
        'toWater': '0.00',
        'toRent': '10000.00',
        'toAdvance': '5000.00',
        'remainingArrears': '0.00',
        'remainingWater': '0.00',
        'remainingRent': '0.00',
        'totalDue': '10000.00',
        'paidAmount': '15000.00',
    }


def test_payment_to_closed_month_clears_arrears_once(sessions, make_lease):
    lease = make_lease(rent='10000', lease_start_date=date(2024, 4, 1))
    with sessions.session_scope() as session:
        close_month(session, lease.tenant_id, lease.unit_id, '2024-04')

    result = allocate(sessions, lease, '20000', month='2024-04')

    assert parts(result) == (Decimal('10000.00'), Decimal('0.00'), Decimal('0.00'), Decimal('10000.00'))
    assert result.total_due == Decimal('10000.00')
