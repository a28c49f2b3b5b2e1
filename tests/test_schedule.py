from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from loanspur.utils.helpers import (
    add_periods,
    allocate_repayment,
    generate_loan_schedule,
    get_derived_loan_status,
    get_number_of_installments,
    normalize_phone_number,
    summarize_schedule,
)

START = date(2026, 1, 15)


@pytest.mark.parametrize('phone', ['0712345678', '+254 712 345 678', '712345678', '254712345678'])
def test_normalize_phone_number(phone):
    assert normalize_phone_number(phone) == '254712345678'


def test_normalize_phone_number_airtel_prefix():
    assert normalize_phone_number('0112345678') == '254112345678'


def test_normalize_phone_number_unknown_format_keeps_digits():
    assert normalize_phone_number('+44 20 7946 0958') == '442079460958'


@pytest.mark.parametrize('term, frequency, expected', [
    (12, 'monthly', 12),
    (3, 'weekly', 13),
    (6, 'quarterly', 2),
    (1, 'bi-weekly', 3),
    (30, 'daily', 30),
])
def test_number_of_installments(term, frequency, expected):
    assert get_number_of_installments(term, frequency) == expected


def test_add_periods_month_end():
    assert add_periods(date(2026, 1, 31), 'monthly') == date(2026, 2, 28)
    assert add_periods(START, 'quarterly', 2) == date(2026, 7, 15)


def test_zero_rate_schedule_splits_principal_evenly():
    schedule = generate_loan_schedule(12000, 0, 12, START)

    assert len(schedule) == 12
    assert all(row['principal_amount'] == Decimal('1000.00') for row in schedule)
    assert all(row['interest_amount'] == Decimal('0.00') for row in schedule)
    assert schedule[0]['due_date'] == date(2026, 2, 15)
    assert schedule[-1]['due_date'] == date(2027, 1, 15)


def test_reducing_balance_equal_installments():
    schedule = generate_loan_schedule(10000, 12, 12, START)

    first = schedule[0]
    assert first['interest_amount'] == Decimal('100.00')
    assert first['principal_amount'] == Decimal('788.49')
    assert first['total_amount'] == Decimal('888.49')
    assert sum(row['principal_amount'] for row in schedule) == Decimal('10000.00')


def test_equal_principal_interest_declines():
    schedule = generate_loan_schedule(12000, 12, 12, START, amortization_method='equal_principal')

    assert schedule[0]['principal_amount'] == Decimal('1000.00')
    assert schedule[0]['interest_amount'] == Decimal('120.00')
    assert schedule[1]['interest_amount'] == Decimal('110.00')


def test_flat_rate_interest_uses_days_in_due_month():
    schedule = generate_loan_schedule(12000, 12, 12, START, calculation_method='flat_rate')

    # February 2026 has 28 days, March 31
    assert schedule[0]['interest_amount'] == Decimal('4.29')
    assert schedule[1]['interest_amount'] == Decimal('3.87')
    assert schedule[0]['principal_amount'] == Decimal('1000.00')


def test_last_installment_takes_remaining_principal():
    schedule = generate_loan_schedule(10000, 0, 3, START)

    assert [row['principal_amount'] for row in schedule] == [
        Decimal('3333.33'), Decimal('3333.33'), Decimal('3333.34'),
    ]


def test_fees_land_on_installments():
    schedule = generate_loan_schedule(
        12000, 0, 12, START, disbursement_fees=[Decimal('200')], installment_fees=[Decimal('50')],
    )

    assert schedule[0]['fee_amount'] == Decimal('250.00')
    assert all(row['fee_amount'] == Decimal('50.00') for row in schedule[1:])
    assert schedule[0]['total_amount'] == Decimal('1250.00')


def test_weekly_and_daily_due_dates():
    weekly = generate_loan_schedule(5000, 10, 3, START, frequency='weekly')
    daily = generate_loan_schedule(3000, 10, 30, START, frequency='daily')

    assert len(weekly) == 13
    assert weekly[1]['due_date'] == date(2026, 1, 29)
    assert len(daily) == 30
    assert daily[0]['due_date'] == date(2026, 1, 16)


def test_first_payment_date_override():
    schedule = generate_loan_schedule(1200, 0, 2, START, first_payment_date=date(2026, 3, 1))

    assert [row['due_date'] for row in schedule] == [date(2026, 3, 1), date(2026, 4, 1)]


def test_zero_term_gives_empty_schedule():
    assert generate_loan_schedule(1000, 12, 0, START) == []


def test_summarize_schedule():
    schedule = generate_loan_schedule(12000, 12, 12, START, amortization_method='equal_principal')
    summary = summarize_schedule(schedule)

    assert summary['installments'] == 12
    assert summary['total_principal'] == Decimal('12000.00')
    assert summary['total_interest'] == Decimal('780.00')
    assert summary['maturity_date'] == date(2027, 1, 15)


def test_allocation_default_strategy():
    balances = {'principal': 1000, 'interest': 100, 'fees': 50, 'penalties': 20}
    allocation = allocate_repayment(Decimal('150'), balances)

    assert allocation == {
        'penalties': Decimal('20'),
        'fees': Decimal('50'),
        'interest': Decimal('80'),
        'principal': Decimal('0.00'),
    }


def test_allocation_interest_first_strategy():
    balances = {'principal': 1000, 'interest': 100, 'fees': 50, 'penalties': 20}
    allocation = allocate_repayment(Decimal('150'), balances, 'interest_principal_penalties_fees')

    assert allocation['interest'] == Decimal('100')
    assert allocation['principal'] == Decimal('50')
    assert allocation['penalties'] == Decimal('0.00')


def test_allocation_unknown_strategy_and_excess():
    balances = {'principal': 100, 'interest': 0, 'fees': 0, 'penalties': 0}
    allocation = allocate_repayment(Decimal('250'), balances, 'no-such-strategy')

    assert allocation['principal'] == Decimal('100')
    assert sum(allocation.values()) == Decimal('100')


def test_derived_status_passes_through_application_statuses():
    loan = SimpleNamespace(status='pending')
    assert get_derived_loan_status(loan)['status'] == 'pending'
