"""
Decimal and Money Calculation Utilities
========================================

Provides consistent rounding, fee and instalment calculations across the system
"""

from decimal import Decimal, ROUND_HALF_UP


class MoneyCalculator:
    """
    Consistent money calculations with proper rounding

    Usage:
        total = MoneyCalculator.round_money(123.456)  # 123.46
        fee = MoneyCalculator.calculate_percentage(1000, Decimal('2.5'))  # 25.00
    """

    TWO_PLACES = Decimal('0.01')
    FOUR_PLACES = Decimal('0.0001')
    TOLERANCE = Decimal('0.01')

    @staticmethod
    def to_decimal(value):
        if value is None or value == '':
            return Decimal('0.00')
        return Decimal(str(value))

    @staticmethod
    def round_money(amount, places=None, rounding=ROUND_HALF_UP):
        """
        Round amount to specified decimal places

        Args:
            amount: Amount to round (can be Decimal, int, float, str)
            places: Decimal precision (default: 2 places)
            rounding: Rounding mode (default: ROUND_HALF_UP)

        Returns:
            Decimal: Rounded amount
        """
        if amount is None:
            return Decimal('0.00')

        if places is None:
            places = MoneyCalculator.TWO_PLACES

        return Decimal(str(amount)).quantize(places, rounding=rounding)

    @staticmethod
    def calculate_percentage(amount, percent, places=None):
        """
        Calculate ``percent`` % of amount

        Example:
            >>> MoneyCalculator.calculate_percentage(10000, 3)
            Decimal('300.00')
        """
        if not amount or not percent:
            return Decimal('0.00')

        result = Decimal(str(amount)) * Decimal(str(percent)) / Decimal('100')
        return MoneyCalculator.round_money(result, places)

    @staticmethod
    def safe_divide(numerator, denominator, default=Decimal('0.00'), places=None):
        """Division that returns ``default`` when the divisor is zero"""
        if not denominator or Decimal(str(denominator)) == 0:
            return default

        result = Decimal(str(numerator)) / Decimal(str(denominator))
        return MoneyCalculator.round_money(result, places)

    @staticmethod
    def sum_amounts(*amounts):
        total = Decimal('0.00')
        for amount in amounts:
            if amount:
                total += Decimal(str(amount))
        return MoneyCalculator.round_money(total)

    @staticmethod
    def is_zero(amount):
        """Treat anything within one cent of zero as settled"""
        return abs(MoneyCalculator.to_decimal(amount)) <= MoneyCalculator.TOLERANCE

    @staticmethod
    def calculate_pmt(principal, periodic_rate, periods):
        """
        Equal instalment (annuity) payment

            PMT = P * r * (1 + r)^n / ((1 + r)^n - 1)

        Falls back to straight division when the rate is zero.
        """
        principal = Decimal(str(principal))
        periodic_rate = Decimal(str(periodic_rate))

        if periods <= 0:
            return Decimal('0.00')
        if periodic_rate == 0:
            return principal / periods

        factor = (1 + periodic_rate) ** periods
        return principal * periodic_rate * factor / (factor - 1)


# =============================================================================
# FEES
# =============================================================================

FEE_CALCULATION_FIXED = ('fixed', 'flat')
FEE_CALCULATION_PERCENTAGE = 'percentage'


def calculate_fee_amount(calculation_type, amount, base_amount=0, min_amount=None, max_amount=None):
    """
    Calculate a single fee with min/max enforcement

    Percentage fees take ``amount`` percent of ``base_amount``. The minimum is
    applied first, then the maximum, so a maximum always wins.

    Returns:
        dict: {'amount': Decimal, 'applied_limit': None | 'minimum' | 'maximum'}
    """
    amount = MoneyCalculator.to_decimal(amount)
    base_amount = MoneyCalculator.to_decimal(base_amount)

    if calculation_type == FEE_CALCULATION_PERCENTAGE:
        calculated = base_amount * amount / Decimal('100')
    else:
        calculated = amount

    applied_limit = None

    if min_amount and calculated < Decimal(str(min_amount)):
        calculated = Decimal(str(min_amount))
        applied_limit = 'minimum'

    if max_amount and calculated > Decimal(str(max_amount)):
        calculated = Decimal(str(max_amount))
        applied_limit = 'maximum'

    return {
        'amount': MoneyCalculator.round_money(calculated),
        'applied_limit': applied_limit,
    }


def calculate_total_fees(fees, base_amount=0):
    """
    Calculate every fee structure in ``fees`` against one base amount

    Returns:
        dict: {'total', 'fees': [{'fee', 'amount', 'applied_limit'}], 'has_limits_applied'}
    """
    calculated = []
    for fee in fees:
        result = fee.calculate(base_amount)
        calculated.append({
            'fee': fee,
            'amount': result['amount'],
            'applied_limit': result['applied_limit'],
        })

    total = MoneyCalculator.sum_amounts(*[item['amount'] for item in calculated])
    return {
        'total': total,
        'fees': calculated,
        'has_limits_applied': any(item['applied_limit'] for item in calculated),
    }
