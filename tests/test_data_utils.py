"""Tests for money and month helpers."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from common.data_utils import clamp_zero, format_amount, to_money
from common.date_utils import add_months, current_month, format_month, parse_month


@pytest.mark.parametrize('value, expected', [
    (None, Decimal('0.00')),
    ('', Decimal('0.00')),
    (10000, Decimal('10000.00')),
    ('1,250.5', Decimal('1250.50')),
    (0.1 + 0.2, Decimal('0.30')),
    (Decimal('2.005'), Decimal('2.01')),
    ('  99.994 ', Decimal('99.99')),
])
def test_to_money(value, expected):
    assert to_money(value) == expected


@pytest.mark.parametrize('value', ['abc', 'NaN', 'Infinity', True, [1]])
def test_to_money_rejects_non_numbers(value):
    with pytest.raises(ValueError):
        to_money(value)


def test_clamp_zero():
    assert clamp_zero(Decimal('-5.00')) == Decimal('0.00')
    assert clamp_zero(Decimal('5.00')) == Decimal('5.00')


def test_format_amount():
    assert format_amount('10000') == '10,000'
    assert format_amount('1250.5') == '1,250.50'


@pytest.mark.parametrize('value', ['2024-05', '2024-05-17', date(2024, 5, 17), datetime(2024, 5, 31, 23, 59)])
def test_parse_month_normalizes_to_first_day(value):
    assert parse_month(value) == date(2024, 5, 1)


@pytest.mark.parametrize('value', ['2024', '2024-13', 'May 2024', '', None, 202405])
def test_parse_month_rejects_bad_input(value):
    with pytest.raises(ValueError):
        parse_month(value)


def test_format_month():
    assert format_month('2024-5') == '2024-05'


@pytest.mark.parametrize('start, count, expected', [
    ('2024-05', 1, date(2024, 6, 1)),
    ('2024-12', 1, date(2025, 1, 1)),
    ('2024-01', -1, date(2023, 12, 1)),
    ('2024-01', 24, date(2026, 1, 1)),
])
def test_add_months(start, count, expected):
    assert add_months(start, count) == expected


def test_current_month_shape():
    month = current_month('Africa/Nairobi')
    assert parse_month(month).day == 1
    assert len(month) == 7
