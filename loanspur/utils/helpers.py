import calendar
import re
from datetime import timedelta
from decimal import Decimal

from dateutil.relativedelta import relativedelta
from django.utils import timezone

from loanspur.utils.money import MoneyCalculator


# =============================================================================
# FREQUENCIES
# =============================================================================

PAYMENTS_PER_YEAR = {
    'daily': 365,
    'weekly': 52,
    'bi-weekly': 26,
    'monthly': 12,
    'quarterly': 4,
}


def add_periods(start_date, frequency, periods=1):
    """Step ``periods`` repayment periods forward from ``start_date``"""
    if frequency == 'daily':
        return start_date + timedelta(days=periods)
    if frequency == 'weekly':
        return start_date + timedelta(weeks=periods)
    if frequency == 'bi-weekly':
        return start_date + timedelta(weeks=2 * periods)
    if frequency == 'quarterly':
        return start_date + relativedelta(months=3 * periods)
    return start_date + relativedelta(months=periods)


def get_days_in_year(days_in_year_type, reference_date):
    if days_in_year_type == '360':
        return 360
    if days_in_year_type == 'actual':
        return 366 if calendar.isleap(reference_date.year) else 365
    return 365


def get_number_of_installments(term, frequency):
    """
    Daily loans express their term in days; every other frequency
    expresses it in months.
    """
    if frequency == 'daily':
        return int(term)
    payments_per_year = PAYMENTS_PER_YEAR.get(frequency, 12)
    # ceil(term / 12 * payments_per_year) without float drift
    return -(-int(term) * payments_per_year // 12)


def normalize_phone_number(phone):
    """
    Normalise a Kenyan mobile number to 2547XXXXXXXX / 2541XXXXXXXX

    Accepts 07.., 01.., 7.., +254.. and 254.. forms. Anything else is
    returned stripped of non-digits.
    """
    digits = re.sub(r'\D', '', str(phone or ''))
    if digits.startswith('254') and len(digits) == 12:
        return digits
    if digits.startswith('0') and len(digits) == 10:
        return f"254{digits[1:]}"
    if digits[:1] in ('7', '1') and len(digits) == 9:
        return f"254{digits}"
    return digits


def get_periodic_rate(annual_rate, frequency, days_in_year):
    """``annual_rate`` is a percentage, e.g. 24 for 24% p.a."""
    rate = Decimal(str(annual_rate)) / Decimal('100')
    if frequency == 'daily':
        return rate / Decimal(days_in_year)
    return rate / Decimal(PAYMENTS_PER_YEAR.get(frequency, 12))


# =============================================================================
# LOAN SCHEDULE
# =============================================================================

def generate_loan_schedule(
    principal,
    annual_rate,
    term,
    start_date,
    frequency='monthly',
    calculation_method='reducing_balance',
    amortization_method='equal_installments',
    days_in_year_type='365',
    first_payment_date=None,
    disbursement_fees=None,
    installment_fees=None,
):
    """
    Build the repayment schedule for a loan

    Args:
        principal: Amount disbursed
        annual_rate: Nominal annual rate in percent
        term: Months, or days when frequency is 'daily'
        start_date: Disbursement date
        frequency: daily, weekly, bi-weekly, monthly or quarterly
        calculation_method: reducing_balance, declining_balance or flat_rate
        amortization_method: equal_installments or equal_principal
        disbursement_fees: amounts collected with the first instalment
        installment_fees: amounts collected with every instalment

    Returns:
        list: one dict per instalment, all amounts rounded to 2 places
    """
    principal = MoneyCalculator.to_decimal(principal)
    rate = Decimal(str(annual_rate)) / Decimal('100')
    periods = get_number_of_installments(term, frequency)
    if periods <= 0:
        return []

    days_in_year = get_days_in_year(days_in_year_type, start_date)
    periodic_rate = get_periodic_rate(annual_rate, frequency, days_in_year)

    first_due = first_payment_date or add_periods(start_date, frequency)

    upfront_fee = sum((MoneyCalculator.to_decimal(f) for f in (disbursement_fees or [])), Decimal('0'))
    recurring_fee = sum((MoneyCalculator.to_decimal(f) for f in (installment_fees or [])), Decimal('0'))

    pmt = MoneyCalculator.calculate_pmt(principal, periodic_rate, periods)
    remaining = principal
    schedule = []

    for number in range(1, periods + 1):
        due_date = add_periods(first_due, frequency, number - 1)
        is_last = number == periods

        if calculation_method == 'flat_rate':
            principal_amount = principal / periods
            days_in_month = calendar.monthrange(due_date.year, due_date.month)[1]
            interest_amount = principal * rate / (12 * days_in_month)
        elif periodic_rate > 0 and amortization_method == 'equal_installments':
            interest_amount = remaining * periodic_rate
            principal_amount = pmt - interest_amount
        else:
            principal_amount = principal / periods
            interest_amount = remaining * periodic_rate

        principal_amount = MoneyCalculator.round_money(principal_amount)
        if is_last or principal_amount > remaining:
            principal_amount = remaining
        interest_amount = MoneyCalculator.round_money(interest_amount)

        fee_amount = recurring_fee + (upfront_fee if number == 1 else Decimal('0'))
        fee_amount = MoneyCalculator.round_money(fee_amount)

        total_amount = principal_amount + interest_amount + fee_amount
        remaining = max(Decimal('0.00'), remaining - principal_amount)

        schedule.append({
            'installment_number': number,
            'due_date': due_date,
            'principal_amount': principal_amount,
            'interest_amount': interest_amount,
            'fee_amount': fee_amount,
            'total_amount': total_amount,
            'paid_amount': Decimal('0.00'),
            'outstanding_amount': total_amount,
            'status': 'unpaid',
        })

    return schedule


def summarize_schedule(schedule):
    """Totals of a generated schedule"""
    return {
        'total_principal': sum((row['principal_amount'] for row in schedule), Decimal('0.00')),
        'total_interest': sum((row['interest_amount'] for row in schedule), Decimal('0.00')),
        'total_fees': sum((row['fee_amount'] for row in schedule), Decimal('0.00')),
        'total_amount': sum((row['total_amount'] for row in schedule), Decimal('0.00')),
        'installments': len(schedule),
        'maturity_date': schedule[-1]['due_date'] if schedule else None,
    }


# =============================================================================
# REPAYMENT ALLOCATION
# =============================================================================

REPAYMENT_STRATEGY_ORDER = {
    'penalties_fees_interest_principal': ['penalties', 'fees', 'interest', 'principal'],
    'interest_principal_penalties_fees': ['interest', 'principal', 'penalties', 'fees'],
    'interest_penalties_fees_principal': ['interest', 'penalties', 'fees', 'principal'],
    'principal_interest_fees_penalties': ['principal', 'interest', 'fees', 'penalties'],
}

DEFAULT_REPAYMENT_STRATEGY = 'penalties_fees_interest_principal'


def allocate_repayment(amount, balances, strategy=DEFAULT_REPAYMENT_STRATEGY):
    """
    Split a payment across penalties, fees, interest and principal

    Args:
        amount: payment amount
        balances: dict with outstanding 'principal', 'interest', 'fees', 'penalties'
        strategy: one of REPAYMENT_STRATEGY_ORDER; unknown values use the default

    Returns:
        dict: allocated amount per component. Anything left over after every
        component is satisfied is not allocated.
    """
    remaining = MoneyCalculator.to_decimal(amount)
    order = REPAYMENT_STRATEGY_ORDER.get(strategy, REPAYMENT_STRATEGY_ORDER[DEFAULT_REPAYMENT_STRATEGY])
    allocation = {component: Decimal('0.00') for component in ('principal', 'interest', 'fees', 'penalties')}

    for component in order:
        if remaining <= 0:
            break
        available = max(Decimal('0.00'), MoneyCalculator.to_decimal(balances.get(component)))
        allocated = min(remaining, available)
        if allocated > 0:
            allocation[component] = allocated
            remaining -= allocated

    return allocation


# =============================================================================
# DERIVED LOAN STATUS
# =============================================================================

SERVICING_STATUSES = ('active', 'disbursed', 'overdue', 'closed')


def get_derived_loan_status(loan, today=None):
    """
    Compute the status a loan should be shown with

    Application-stage statuses pass through untouched. For loans in servicing
    the result is one of closed, active (possibly overpaid) or in_arrears.

    Returns:
        dict: {'status', 'days_in_arrears', 'overpaid_amount'}
    """
    today = today or timezone.now().date()
    raw_status = (loan.status or '').lower()
    result = {'status': raw_status or 'unknown', 'days_in_arrears': 0, 'overpaid_amount': Decimal('0.00')}

    if raw_status not in SERVICING_STATUSES:
        return result

    schedule = list(loan.schedule.all())
    total_paid = sum(
        (p.amount for p in loan.payments.filter(is_reversed=False)),
        Decimal('0.00')
    )
    # Charges applied after disbursement are owed but never scheduled
    total_due = (
        loan.total_principal + loan.total_interest + loan.total_fees + loan.total_penalties
        or sum((row.total_amount for row in schedule), Decimal('0.00'))
        or loan.principal_amount
    )

    if loan.outstanding_balance <= 0:
        overpaid = max(total_paid - total_due, -loan.outstanding_balance, Decimal('0.00'))
        if overpaid > 0:
            result.update(status='active', overpaid_amount=overpaid)
        else:
            result['status'] = 'closed'
        return result

    overdue = [row.due_date for row in schedule if row.due_date < today and row.status != 'paid']
    if overdue:
        result.update(status='in_arrears', days_in_arrears=max(1, (today - min(overdue)).days))
        return result

    if raw_status == 'disbursed':
        result['status'] = 'active'
    return result
