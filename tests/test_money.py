from decimal import Decimal

from loanspur.models import FeeStructure
from loanspur.utils.money import MoneyCalculator, calculate_fee_amount, calculate_total_fees


def test_round_money_rounds_half_up():
    assert MoneyCalculator.round_money('2.345') == Decimal('2.35')
    assert MoneyCalculator.round_money(None) == Decimal('0.00')


def test_percentage_and_safe_divide():
    assert MoneyCalculator.calculate_percentage(10000, 3) == Decimal('300.00')
    assert MoneyCalculator.safe_divide(10, 0) == Decimal('0.00')
    assert MoneyCalculator.safe_divide(10, 4) == Decimal('2.50')


def test_is_zero_tolerates_one_cent():
    assert MoneyCalculator.is_zero('0.01')
    assert not MoneyCalculator.is_zero('0.02')


def test_pmt_without_interest_is_straight_division():
    assert MoneyCalculator.calculate_pmt(12000, 0, 12) == Decimal('1000')


def test_percentage_fee():
    result = calculate_fee_amount('percentage', 2, 10000)
    assert result == {'amount': Decimal('200.00'), 'applied_limit': None}


def test_fee_minimum_applied():
    result = calculate_fee_amount('percentage', 1, 1000, min_amount=50)
    assert result == {'amount': Decimal('50.00'), 'applied_limit': 'minimum'}


def test_fee_maximum_wins_over_minimum():
    result = calculate_fee_amount('percentage', 10, 100000, min_amount=500, max_amount=2000)
    assert result == {'amount': Decimal('2000.00'), 'applied_limit': 'maximum'}


def test_fixed_fee_ignores_base():
    assert calculate_fee_amount('fixed', 150, 999999)['amount'] == Decimal('150.00')


def test_total_fees_sums_every_structure():
    fees = [
        FeeStructure(name='Processing', calculation_type='percentage', amount=Decimal('2')),
        FeeStructure(name='Insurance', calculation_type='fixed', amount=Decimal('100')),
        FeeStructure(name='Appraisal', calculation_type='percentage', amount=Decimal('1'),
                     max_amount=Decimal('50')),
    ]
    result = calculate_total_fees(fees, Decimal('10000'))

    assert result['total'] == Decimal('350.00')
    assert result['has_limits_applied'] is True
    assert [item['amount'] for item in result['fees']] == [Decimal('200.00'), Decimal('100.00'), Decimal('50.00')]
