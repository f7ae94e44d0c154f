"""Tests for the Bill Calculator."""

from decimal import Decimal

import pytest

from billing.calculator import BillCalculator
from billing.exceptions import NoActiveAllocation
from common.models import TenantAllocation


def calculate(sessions, lease, month='2024-05', **kwargs):
    with sessions.session_scope() as session:
        return BillCalculator(session).calculate(lease.tenant_id, lease.unit_id, month, **kwargs)


def test_rent_only_tenant_owes_full_rent(sessions, make_lease):
    lease = make_lease(rent='10000')

    bill = calculate(sessions, lease)

    assert bill.rent_due == Decimal('10000.00')
    assert bill.water_due == Decimal('0.00')
    assert bill.arrears_due == Decimal('0.00')
    assert bill.total_due == Decimal('10000.00')
    assert bill.advance_amount == Decimal('0.00')
    assert bill.covered_by_advance is False


def test_breakdown_carries_tenant_and_unit_details(sessions, make_lease):
    lease = make_lease(first_name='Amina', last_name='Otieno', unit_code='B7', property_name='Riverside')

    bill = calculate(sessions, lease)

    assert bill.tenant_name == 'Amina Otieno'
    assert bill.tenant_phone == '0712345678'
    assert bill.unit_code == 'B7'
    assert bill.property_name == 'Riverside'
    assert bill.month == '2024-05'


def test_all_three_streams_sum_to_total(sessions, make_lease, add_water_bill):
    lease = make_lease(rent='8000', arrears='2000')
    add_water_bill(lease, '2024-05', '500')

    bill = calculate(sessions, lease)

    assert (bill.rent_due, bill.water_due, bill.arrears_due) == (
        Decimal('8000.00'), Decimal('500.00'), Decimal('2000.00'))
    assert bill.total_due == Decimal('10500.00')


def test_partial_payments_reduce_each_stream(sessions, make_lease, add_water_bill, add_payment):
    lease = make_lease(rent='10000', arrears='3000')
    add_water_bill(lease, '2024-05', '800')
    add_payment(lease, '2024-05', rent='4000', water='300', arrears='1000')

    bill = calculate(sessions, lease)

    assert bill.rent_paid == Decimal('4000.00')
    assert bill.rent_due == Decimal('6000.00')
    assert bill.water_due == Decimal('500.00')
    assert bill.arrears_paid == Decimal('1000.00')
    assert bill.arrears_due == Decimal('2000.00')
    assert bill.total_due == Decimal('8500.00')


def test_arrears_paid_counts_every_month(sessions, make_lease, add_payment):
    lease = make_lease(arrears='3000')
    add_payment(lease, '2024-03', arrears='1000')
    add_payment(lease, '2024-04', arrears='500')

    bill = calculate(sessions, lease)

    assert bill.arrears_due == Decimal('1500.00')


def test_payments_for_other_months_do_not_count(sessions, make_lease, add_payment):
    lease = make_lease(rent='10000')
    add_payment(lease, '2024-04', rent='10000')

    bill = calculate(sessions, lease)

    assert bill.rent_due == Decimal('10000.00')


def test_only_completed_payments_count(sessions, make_lease, add_payment):
    lease = make_lease(rent='10000')
    add_payment(lease, '2024-05', rent='6000', status='pending')
    add_payment(lease, '2024-05', rent='2000', status='failed')

    bill = calculate(sessions, lease)

    assert bill.rent_due == Decimal('10000.00')


def test_dues_never_go_negative(sessions, make_lease, add_water_bill, add_payment):
    lease = make_lease(rent='10000')
    add_water_bill(lease, '2024-05', '500')
    add_payment(lease, '2024-05', rent='12000', water='900')

    bill = calculate(sessions, lease)

    assert bill.rent_due == Decimal('0.00')
    assert bill.water_due == Decimal('0.00')
    assert bill.total_due == Decimal('0.00')


def test_unit_specific_water_bill_wins(sessions, make_lease, add_water_bill):
    lease = make_lease()
    add_water_bill(lease, '2024-05', '750')

    bill = calculate(sessions, lease)
    assert bill.water_amount == Decimal('750.00')


def test_water_bill_without_unit_is_used_as_fallback(sessions, make_lease, add_water_bill):
    lease = make_lease()
    add_water_bill(lease, '2024-05', '420', unit_id=None)

    bill = calculate(sessions, lease)
    assert bill.water_due == Decimal('420.00')


def test_carry_forward_rows_are_advance_not_rent_paid(sessions, make_lease, add_payment):
    lease = make_lease(rent='10000')
    add_payment(lease, '2024-05', rent='10000', advance=True)
    add_payment(lease, '2024-06', rent='2000', advance=True)

    bill = calculate(sessions, lease)

    assert bill.rent_due == Decimal('10000.00')
    assert bill.advance_amount == Decimal('12000.00')
    assert bill.covered_by_advance is True


def test_carry_forward_included_on_request(sessions, make_lease, add_payment):
    lease = make_lease(rent='10000')
    add_payment(lease, '2024-05', rent='10000', advance=True)

    bill = calculate(sessions, lease, include_carry_forward=True)

    assert bill.rent_due == Decimal('0.00')
    assert bill.total_due == Decimal('0.00')


def test_advance_for_earlier_months_is_ignored(sessions, make_lease, add_payment):
    lease = make_lease(rent='10000')
    add_payment(lease, '2024-04', rent='10000', advance=True)

    bill = calculate(sessions, lease)

    assert bill.advance_amount == Decimal('0.00')


def test_small_advance_does_not_cover_bill(sessions, make_lease, add_payment):
    lease = make_lease(rent='10000')
    add_payment(lease, '2024-06', rent='3000', advance=True)

    bill = calculate(sessions, lease)

    assert bill.advance_amount == Decimal('3000.00')
    assert bill.covered_by_advance is False


def test_unknown_allocation_raises(sessions, make_lease):
    lease = make_lease()

    with sessions.session_scope() as session:
        with pytest.raises(NoActiveAllocation) as exc_info:
            BillCalculator(session).calculate(lease.tenant_id, lease.unit_id + 99, '2024-05')

    assert exc_info.value.status_code == 404


def test_inactive_allocation_raises(sessions, make_lease):
    lease = make_lease()
    with sessions.session_scope() as session:
        session.get(TenantAllocation, lease.allocation_id).is_active = False

    with pytest.raises(NoActiveAllocation):
        calculate(sessions, lease)


def test_malformed_month_raises_value_error(sessions, make_lease):
    lease = make_lease()

    with pytest.raises(ValueError):
        calculate(sessions, lease, month='May 2024')


def test_to_dict_uses_camel_case_and_string_money(sessions, make_lease):
    lease = make_lease(rent='10000')

    data = calculate(sessions, lease).to_dict()

    assert data['rentDue'] == '10000.00'
    assert data['totalDue'] == '10000.00'
    assert data['coveredByAdvance'] is False
    assert data['unitCode'] == 'A1'


def test_repeated_calculation_is_identical(sessions, make_lease, add_water_bill, add_payment):
    lease = make_lease(rent='10000', arrears='3000')
    add_water_bill(lease, '2024-05', '750')
    add_payment(lease, '2024-05', rent='4000', water='250', arrears='1000')
    add_payment(lease, '2024-06', rent='2500', advance=True)

    first = calculate(sessions, lease)
    second = calculate(sessions, lease)

    assert first.to_dict() == second.to_dict()
    assert first.total_due == Decimal('8500.00')
    assert first.advance_amount == Decimal('2500.00')
