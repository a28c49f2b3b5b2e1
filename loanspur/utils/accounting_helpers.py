"""
Accounting Helper Functions for LoanspurCBS

This module provides utility functions for automatic journal entry creation
following double-entry bookkeeping principles, plus the financial reports
built from posted journals.

Loan products carry an ``accounting_type``:

- none: no journals are posted
- cash: interest, fee and penalty income is recognised when it is repaid
- accrual: scheduled interest and fees are recognised at disbursement and
  charges when applied; repayments then settle the receivables
"""

from datetime import timedelta
from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import ProtectedError, Sum
from django.utils import timezone
import logging

logger = logging.getLogger(__name__)

TOLERANCE = Decimal('0.01')


def _to_decimal(value):
    return Decimal(str(value or 0))


def validate_journal_lines(lines):
    """
    Validate a set of journal lines before anything is written

    Args:
        lines: List of dicts with 'debit' and 'credit' keys

    Raises:
        ValidationError: fewer than 2 lines, a line with both or neither
        side, a negative amount, or debits != credits beyond 0.01
    """
    if len(lines) < 2:
        raise ValidationError("Journal entry must have at least 2 lines")

    total_debits = Decimal('0')
    total_credits = Decimal('0')
    for line in lines:
        debit = _to_decimal(line.get('debit'))
        credit = _to_decimal(line.get('credit'))
        if debit < 0 or credit < 0:
            raise ValidationError("Line amounts cannot be negative")
        if debit > 0 and credit > 0:
            raise ValidationError("Line cannot have both debit and credit amounts")
        if debit == 0 and credit == 0:
            raise ValidationError("Line must have either debit or credit amount")
        total_debits += debit
        total_credits += credit

    if abs(total_debits - total_credits) > TOLERANCE:
        raise ValidationError(
            f"Journal entry not balanced: Debits {total_debits:,.2f} != Credits {total_credits:,.2f}"
        )
    return total_debits, total_credits


def get_account(tenant, account):
    """
    Resolve an account reference to an active account of ``tenant``

    ``account`` may be a ChartOfAccounts instance or an account code.
    """
    from loanspur.models import ChartOfAccounts

    if isinstance(account, ChartOfAccounts):
        if account.tenant_id != tenant.id:
            raise ValidationError(f"Account {account.account_code} belongs to another tenant")
        if not account.is_active:
            raise ValidationError(f"Account {account.account_code} is inactive")
        return account

    resolved = ChartOfAccounts.objects.for_tenant(tenant).filter(
        account_code=account,
        is_active=True
    ).first()
    if not resolved:
        raise ValidationError(f"Account {account} not found or inactive")
    return resolved


@transaction.atomic
def create_journal_entry(
    tenant,
    transaction_date,
    description,
    lines,
    created_by=None,
    entry_type='automatic',
    reference_type='',
    reference_id='',
    office=None,
    auto_post=True
):
    """
    Master function for creating journal entries with validation

    Args:
        tenant: Owning tenant
        transaction_date: Date of the transaction
        description: Journal entry description
        lines: List of dicts with format:
               [{'account': account_or_code, 'debit': 1000, 'credit': 0, 'description': '...'}]
        created_by: User creating the entry
        entry_type: manual, automatic, closing, accrual, provision or reversal
        reference_type / reference_id: what business event produced the entry
        auto_post: Post immediately (default: True)

    Returns:
        JournalEntry: Created journal entry object

    Raises:
        ValidationError: If validation fails
    """
    from loanspur.models import JournalEntry, JournalEntryLine

    total_debits, total_credits = validate_journal_lines(lines)
    resolved = [(get_account(tenant, line['account']), line) for line in lines]

    journal = JournalEntry.objects.create(
        tenant=tenant,
        transaction_date=transaction_date,
        description=description,
        entry_type=entry_type,
        reference_type=reference_type,
        reference_id=str(reference_id) if reference_id else '',
        office=office,
        total_debit=total_debits,
        total_credit=total_credits,
        created_by=created_by,
        status='posted' if auto_post else 'draft',
        posted_by=created_by if auto_post else None,
        posted_at=timezone.now() if auto_post else None,
    )

    for order, (account, line_data) in enumerate(resolved):
        JournalEntryLine.objects.create(
            journal_entry=journal,
            account=account,
            debit_amount=_to_decimal(line_data.get('debit')),
            credit_amount=_to_decimal(line_data.get('credit')),
            description=line_data.get('description', description),
            line_order=order,
        )

    logger.info(
        f"Journal entry created: {journal.entry_number} | "
        f"Type: {reference_type or entry_type} | Amount: {total_debits:,.2f}"
    )

    return journal


def require_account(account, label, product):
    if account is None:
        raise ValidationError(f"{label} account is not configured for product {product.name}")
    return account


def resolve_fund_source_account(product, product_type, payment_method):
    """
    Account money moves through for a payment method

    Lookup order:
        1. a mapping whose payment type code equals the method
        2. a mapping whose channel name loosely matches the method
        3. (savings) the legacy ``payment_type_mappings`` JSON
        4. the product default (fund source / savings reference account)
    """
    from loanspur.models import ProductFundSourceMapping, ChartOfAccounts

    method = (payment_method or '').strip().lower()
    mappings = list(
        ProductFundSourceMapping.objects.for_tenant(product.tenant).filter(
            product_type=product_type,
            product_id=product.id,
        ).select_related('payment_type', 'account')
    )

    for mapping in mappings:
        if mapping.payment_type and mapping.payment_type.code.lower() == method:
            return mapping.account

    if method:
        for mapping in mappings:
            channel = (mapping.channel_name or (mapping.payment_type.name if mapping.payment_type else '')).lower()
            if channel and (method in channel or channel in method):
                return mapping.account

    if product_type == 'savings':
        code = (product.payment_type_mappings or {}).get(method)
        if code:
            account = ChartOfAccounts.objects.for_tenant(product.tenant).filter(
                account_code=code, is_active=True
            ).first()
            if account:
                return account
        return product.savings_reference_account

    return product.fund_source_account


# =============================================================================
# LOAN POSTINGS
# =============================================================================

def _loan_line(account, debit, credit, description):
    return {'account': account, 'debit': debit, 'credit': credit, 'description': description}


def repayment_credit_accounts(product):
    """Which account each repaid component is credited to"""
    if product.accounting_type == 'accrual':
        return {
            'principal': require_account(product.loan_portfolio_account, 'Loan portfolio', product),
            'interest': require_account(product.interest_receivable_account, 'Interest receivable', product),
            'fees': require_account(product.loan_portfolio_account, 'Loan portfolio', product),
            'penalties': require_account(product.loan_portfolio_account, 'Loan portfolio', product),
        }
    return {
        'principal': require_account(product.loan_portfolio_account, 'Loan portfolio', product),
        'interest': require_account(product.interest_income_account, 'Interest income', product),
        'fees': require_account(product.fee_income_account, 'Fee income', product),
        'penalties': require_account(product.penalty_income_account, 'Penalty income', product),
    }


def post_loan_disbursement(loan, disbursed_by, payment_method='cash'):
    """
    Create journal entry for loan disbursement

    Journal Entry:
        Dr  Loan Portfolio                      principal
            Cr  Fund Source (by method)             principal

    Accrual products also recognise the scheduled income:
        Dr  Interest Receivable                 interest
            Cr  Interest Income                     interest
        Dr  Loan Portfolio                      fees
            Cr  Fee Income                          fees

    Returns:
        JournalEntry or None when accounting is disabled
    """
    product = loan.product
    if product.accounting_type == 'none':
        return None

    portfolio = require_account(product.loan_portfolio_account, 'Loan portfolio', product)
    fund_source = require_account(
        resolve_fund_source_account(product, 'loan', payment_method), 'Fund source', product
    )

    lines = [
        _loan_line(portfolio, loan.principal_amount, 0, f"Loan disbursement to {loan.client.get_full_name()}"),
        _loan_line(fund_source, 0, loan.principal_amount, f"Funds paid out for loan {loan.loan_number}"),
    ]

    if product.accounting_type == 'accrual':
        if loan.total_interest > 0:
            lines.append(_loan_line(
                require_account(product.interest_receivable_account, 'Interest receivable', product),
                loan.total_interest, 0, f"Scheduled interest on {loan.loan_number}"
            ))
            lines.append(_loan_line(
                require_account(product.interest_income_account, 'Interest income', product),
                0, loan.total_interest, f"Interest income on {loan.loan_number}"
            ))
        if loan.total_fees > 0:
            lines.append(_loan_line(portfolio, loan.total_fees, 0, f"Scheduled fees on {loan.loan_number}"))
            lines.append(_loan_line(
                require_account(product.fee_income_account, 'Fee income', product),
                0, loan.total_fees, f"Fee income on {loan.loan_number}"
            ))

    return create_journal_entry(
        tenant=loan.tenant,
        transaction_date=loan.disbursement_date or timezone.now().date(),
        description=f"Loan Disbursement: {loan.loan_number}",
        lines=lines,
        created_by=disbursed_by,
        reference_type='loan_disbursement',
        reference_id=loan.id,
        office=loan.office,
    )


def post_loan_repayment(loan, payment, processed_by):
    """
    Create journal entry for loan repayment

    One pair per non-zero component:
        Dr  Payment Account (by method)         component
            Cr  Component account                   component

    Returns:
        JournalEntry or None when accounting is disabled
    """
    product = loan.product
    if product.accounting_type == 'none':
        return None

    payment_account = require_account(
        resolve_fund_source_account(product, 'loan', payment.payment_method), 'Payment', product
    )
    credit_accounts = repayment_credit_accounts(product)
    portions = {
        'principal': payment.principal_amount,
        'interest': payment.interest_amount,
        'fees': payment.fee_amount,
        'penalties': payment.penalty_amount,
    }

    lines = []
    for component, amount in portions.items():
        if amount <= 0:
            continue
        lines.append(_loan_line(payment_account, amount, 0, f"{component.title()} received for {loan.loan_number}"))
        lines.append(_loan_line(credit_accounts[component], 0, amount, f"{component.title()} repayment on {loan.loan_number}"))

    return create_journal_entry(
        tenant=loan.tenant,
        transaction_date=payment.payment_date,
        description=f"Loan Repayment: {loan.loan_number}",
        lines=lines,
        created_by=processed_by,
        reference_type='loan_payment',
        reference_id=payment.id,
        office=loan.office,
    )


def post_loan_charge(loan, charge, created_by):
    """
    Create journal entry for a loan charge (accrual products only)

    Journal Entry:
        Dr  Interest Receivable / Loan Portfolio    amount
            Cr  Interest / Fee / Penalty Income         amount

    Cash products recognise the income when the charge is repaid, so no
    entry is made here.
    """
    product = loan.product
    if product.accounting_type != 'accrual':
        return None

    if charge.charge_type == 'interest':
        debit_account = require_account(product.interest_receivable_account, 'Interest receivable', product)
        credit_account = require_account(product.interest_income_account, 'Interest income', product)
    elif charge.charge_type == 'penalty':
        debit_account = require_account(product.loan_portfolio_account, 'Loan portfolio', product)
        credit_account = require_account(product.penalty_income_account, 'Penalty income', product)
    else:
        debit_account = require_account(product.loan_portfolio_account, 'Loan portfolio', product)
        credit_account = (charge.fee.income_account if charge.fee and charge.fee.income_account else None)
        credit_account = require_account(credit_account or product.fee_income_account, 'Fee income', product)

    return create_journal_entry(
        tenant=loan.tenant,
        transaction_date=charge.charge_date,
        description=f"Loan Charge: {loan.loan_number} - {charge.description}",
        lines=[
            _loan_line(debit_account, charge.amount, 0, charge.description),
            _loan_line(credit_account, 0, charge.amount, charge.description),
        ],
        created_by=created_by,
        reference_type='loan_charge',
        reference_id=charge.id,
        office=loan.office,
    )


def post_loan_write_off(loan, balances, written_off_by):
    """
    Create journal entry for a write-off

    Journal Entry:
        Dr  Write-off Expense                   total
            Cr  Loan Portfolio                      recognised principal/fees/penalties
            Cr  Interest Receivable (accrual)       interest
    """
    product = loan.product
    if product.accounting_type == 'none':
        return None

    expense = require_account(product.write_off_expense_account, 'Write-off expense', product)
    portfolio = require_account(product.loan_portfolio_account, 'Loan portfolio', product)

    if product.accounting_type == 'accrual':
        portfolio_amount = balances['principal'] + balances['fees'] + balances['penalties']
        interest_amount = balances['interest']
    else:
        portfolio_amount = balances['principal']
        interest_amount = Decimal('0')

    lines = []
    if portfolio_amount > 0:
        lines.append(_loan_line(portfolio, 0, portfolio_amount, f"Write-off of {loan.loan_number}"))
    if interest_amount > 0:
        lines.append(_loan_line(
            require_account(product.interest_receivable_account, 'Interest receivable', product),
            0, interest_amount, f"Interest written off on {loan.loan_number}"
        ))
    total = portfolio_amount + interest_amount
    if total <= 0:
        return None
    lines.insert(0, _loan_line(expense, total, 0, f"Loan loss on {loan.loan_number}"))

    return create_journal_entry(
        tenant=loan.tenant,
        transaction_date=timezone.now().date(),
        description=f"Loan Write-off: {loan.loan_number}",
        lines=lines,
        created_by=written_off_by,
        reference_type='loan_write_off',
        reference_id=loan.id,
        office=loan.office,
    )


# =============================================================================
# SAVINGS POSTINGS
# =============================================================================

def _savings_enabled(account):
    return account.product.accounting_method != 'none'


def post_savings_deposit(account, txn, processed_by):
    """
    Journal Entry:
        Dr  Fund Source (by method)             amount
            Cr  Savings Control                     amount
    """
    if not _savings_enabled(account):
        return None
    product = account.product
    fund_source = require_account(
        resolve_fund_source_account(product, 'savings', txn.payment_method), 'Savings reference', product
    )
    control = require_account(product.savings_control_account, 'Savings control', product)

    return create_journal_entry(
        tenant=account.tenant,
        transaction_date=txn.transaction_date,
        description=f"Savings Deposit: {account.account_number}",
        lines=[
            _loan_line(fund_source, txn.amount, 0, f"Deposit by {account.client.get_full_name()}"),
            _loan_line(control, 0, txn.amount, f"Deposit to {account.account_number}"),
        ],
        created_by=processed_by,
        reference_type='savings_deposit',
        reference_id=txn.id,
        office=account.office,
    )


def post_savings_withdrawal(account, txn, processed_by):
    """
    Journal Entry:
        Dr  Savings Control                     amount
            Cr  Fund Source (by method)             amount
    """
    if not _savings_enabled(account):
        return None
    product = account.product
    fund_source = require_account(
        resolve_fund_source_account(product, 'savings', txn.payment_method), 'Savings reference', product
    )
    control = require_account(product.savings_control_account, 'Savings control', product)

    return create_journal_entry(
        tenant=account.tenant,
        transaction_date=txn.transaction_date,
        description=f"Savings Withdrawal: {account.account_number}",
        lines=[
            _loan_line(control, txn.amount, 0, f"Withdrawal from {account.account_number}"),
            _loan_line(fund_source, 0, txn.amount, f"Paid to {account.client.get_full_name()}"),
        ],
        created_by=processed_by,
        reference_type='savings_withdrawal',
        reference_id=txn.id,
        office=account.office,
    )


def post_savings_fee(account, txn, processed_by, fee=None):
    """
    Journal Entry:
        Dr  Savings Control                     amount
            Cr  Fee Income (or penalty income)      amount
    """
    if not _savings_enabled(account):
        return None
    product = account.product
    control = require_account(product.savings_control_account, 'Savings control', product)

    if fee and fee.income_account:
        income = fee.income_account
    elif fee and fee.fee_type == 'penalty':
        income = require_account(product.income_from_penalties_account, 'Penalty income', product)
    else:
        income = require_account(product.income_from_fees_account, 'Fee income', product)

    return create_journal_entry(
        tenant=account.tenant,
        transaction_date=txn.transaction_date,
        description=f"Savings Fee: {account.account_number} - {txn.description}",
        lines=[
            _loan_line(control, txn.amount, 0, txn.description),
            _loan_line(income, 0, txn.amount, txn.description),
        ],
        created_by=processed_by,
        reference_type='savings_fee',
        reference_id=txn.id,
        office=account.office,
    )


def post_savings_interest(account, txn, processed_by):
    """
    Journal Entry:
        Dr  Interest on Savings (expense)       amount
            Cr  Savings Control                     amount
    """
    if not _savings_enabled(account):
        return None
    product = account.product
    expense = require_account(product.interest_on_savings_account, 'Interest on savings', product)
    control = require_account(product.savings_control_account, 'Savings control', product)

    return create_journal_entry(
        tenant=account.tenant,
        transaction_date=txn.transaction_date,
        description=f"Savings Interest: {account.account_number}",
        lines=[
            _loan_line(expense, txn.amount, 0, txn.description),
            _loan_line(control, 0, txn.amount, txn.description),
        ],
        created_by=processed_by,
        reference_type='savings_interest',
        reference_id=txn.id,
        office=account.office,
    )


# =============================================================================
# REPORTS
# =============================================================================

def _line_totals(account, date_from=None, date_to=None):
    lines = account.journal_lines.filter(journal_entry__status__in=['posted', 'reversed'])
    if date_from:
        lines = lines.filter(journal_entry__transaction_date__gte=date_from)
    if date_to:
        lines = lines.filter(journal_entry__transaction_date__lte=date_to)
    totals = lines.aggregate(debits=Sum('debit_amount'), credits=Sum('credit_amount'))
    return totals['debits'] or Decimal('0'), totals['credits'] or Decimal('0')


def _accounts(tenant, account_type=None):
    from loanspur.models import ChartOfAccounts

    accounts = ChartOfAccounts.objects.for_tenant(tenant).filter(is_active=True)
    if account_type:
        accounts = accounts.filter(account_type=account_type)
    return accounts.order_by('account_code')


def get_trial_balance(tenant, date_from=None, date_to=None, show_zero_balances=False):
    """
    Net debit or credit per account over the period

    Returns:
        dict: {'trial_balance': [{'account', 'debit', 'credit'}], 'total_debits',
               'total_credits', 'is_balanced', 'difference', 'date_from', 'date_to'}
    """
    trial_balance = []
    total_debits = Decimal('0')
    total_credits = Decimal('0')

    for account in _accounts(tenant):
        debit_sum, credit_sum = _line_totals(account, date_from, date_to)
        net_debit = debit_sum - credit_sum if debit_sum > credit_sum else Decimal('0')
        net_credit = credit_sum - debit_sum if credit_sum > debit_sum else Decimal('0')

        if not show_zero_balances and net_debit == 0 and net_credit == 0:
            continue

        trial_balance.append({'account': account, 'debit': net_debit, 'credit': net_credit})
        total_debits += net_debit
        total_credits += net_credit

    return {
        'trial_balance': trial_balance,
        'total_debits': total_debits,
        'total_credits': total_credits,
        'is_balanced': abs(total_debits - total_credits) <= TOLERANCE,
        'difference': total_debits - total_credits,
        'date_from': date_from,
        'date_to': date_to,
    }


def get_income_statement(tenant, date_from, date_to):
    """Income and expense activity for a period"""
    income_items = []
    total_income = Decimal('0')
    for account in _accounts(tenant, 'income'):
        amount = account.get_balance(as_of_date=date_to, date_from=date_from)
        if amount != 0:
            income_items.append({'account': account, 'amount': amount})
            total_income += amount

    expense_items = []
    total_expenses = Decimal('0')
    for account in _accounts(tenant, 'expense'):
        amount = account.get_balance(as_of_date=date_to, date_from=date_from)
        if amount != 0:
            expense_items.append({'account': account, 'amount': amount})
            total_expenses += amount

    return {
        'income_items': income_items,
        'expense_items': expense_items,
        'total_income': total_income,
        'total_expenses': total_expenses,
        'net_profit': total_income - total_expenses,
        'date_from': date_from,
        'date_to': date_to,
    }


def get_balance_sheet(tenant, as_of_date):
    """
    Assets against liabilities and equity as of a date

    Income and expense not yet closed into retained earnings is reported as
    current period earnings, so the sheet balances before a period close.
    """
    sections = {}
    totals = {}
    for account_type in ('asset', 'liability', 'equity'):
        rows = []
        total = Decimal('0')
        for account in _accounts(tenant, account_type):
            balance = account.get_balance(as_of_date=as_of_date)
            if balance != 0:
                rows.append({'account': account, 'balance': balance})
                total += balance
        sections[account_type] = rows
        totals[account_type] = total

    current_earnings = (
        sum((a.get_balance(as_of_date=as_of_date) for a in _accounts(tenant, 'income')), Decimal('0'))
        - sum((a.get_balance(as_of_date=as_of_date) for a in _accounts(tenant, 'expense')), Decimal('0'))
    )
    total_equity = totals['equity'] + current_earnings
    total_liabilities_equity = totals['liability'] + total_equity

    return {
        'assets': sections['asset'],
        'liabilities': sections['liability'],
        'equity': sections['equity'],
        'current_earnings': current_earnings,
        'total_assets': totals['asset'],
        'total_liabilities': totals['liability'],
        'total_equity': total_equity,
        'total_liabilities_equity': total_liabilities_equity,
        'is_balanced': abs(totals['asset'] - total_liabilities_equity) <= TOLERANCE,
        'as_of_date': as_of_date,
    }


def get_general_ledger(account, date_from=None, date_to=None):
    """Lines of one account with an opening and running balance"""
    from loanspur.models import JournalEntryLine

    opening = Decimal('0')
    if date_from:
        opening = account.get_balance(as_of_date=date_from - timedelta(days=1))

    lines = JournalEntryLine.objects.filter(
        account=account,
        journal_entry__status__in=['posted', 'reversed'],
    ).select_related('journal_entry').order_by('journal_entry__transaction_date', 'journal_entry__created_at', 'line_order')
    if date_from:
        lines = lines.filter(journal_entry__transaction_date__gte=date_from)
    if date_to:
        lines = lines.filter(journal_entry__transaction_date__lte=date_to)

    running = opening
    entries = []
    for line in lines:
        if account.normal_balance == 'debit':
            running += line.debit_amount - line.credit_amount
        else:
            running += line.credit_amount - line.debit_amount
        entries.append({
            'date': line.journal_entry.transaction_date,
            'entry_number': line.journal_entry.entry_number,
            'description': line.description or line.journal_entry.description,
            'debit': line.debit_amount,
            'credit': line.credit_amount,
            'balance': running,
        })

    return {
        'account': account,
        'opening_balance': opening,
        'entries': entries,
        'closing_balance': running,
        'date_from': date_from,
        'date_to': date_to,
    }


# =============================================================================
# PERIOD CLOSE
# =============================================================================

@transaction.atomic
def close_period(tenant, period_start, period_end, retained_earnings_account, closed_by):
    """
    Zero out income and expense for a period into retained earnings

        Dr  each Income account                 balance
            Cr  each Expense account                balance
            Cr/Dr  Retained Earnings                net income

    A period can be closed only once.
    """
    from loanspur.models import ClosingEntry

    if ClosingEntry.objects.for_tenant(tenant).filter(period_end=period_end).exists():
        raise ValidationError(f"Period ending {period_end} has already been closed")
    retained = get_account(tenant, retained_earnings_account)
    if retained.account_type != 'equity':
        raise ValidationError("Retained earnings must be an equity account")

    lines = []
    total_income = Decimal('0')
    total_expenses = Decimal('0')

    for account in _accounts(tenant, 'income'):
        balance = account.get_balance(as_of_date=period_end, date_from=period_start)
        if balance > 0:
            lines.append({'account': account, 'debit': balance, 'credit': 0, 'description': 'Close income'})
        elif balance < 0:
            lines.append({'account': account, 'debit': 0, 'credit': -balance, 'description': 'Close income'})
        total_income += balance

    for account in _accounts(tenant, 'expense'):
        balance = account.get_balance(as_of_date=period_end, date_from=period_start)
        if balance > 0:
            lines.append({'account': account, 'debit': 0, 'credit': balance, 'description': 'Close expense'})
        elif balance < 0:
            lines.append({'account': account, 'debit': -balance, 'credit': 0, 'description': 'Close expense'})
        total_expenses += balance

    net_income = total_income - total_expenses
    if net_income > 0:
        lines.append({'account': retained, 'debit': 0, 'credit': net_income, 'description': 'Net income'})
    elif net_income < 0:
        lines.append({'account': retained, 'debit': -net_income, 'credit': 0, 'description': 'Net loss'})

    if not lines:
        raise ValidationError("No income or expense activity to close for this period")

    closing = ClosingEntry.objects.create(
        tenant=tenant,
        period_start=period_start,
        period_end=period_end,
        retained_earnings_account=retained,
        total_income=total_income,
        total_expenses=total_expenses,
        net_income=net_income,
        closed_by=closed_by,
    )
    closing.journal_entry = create_journal_entry(
        tenant=tenant,
        transaction_date=period_end,
        description=f"Closing entry {period_start} to {period_end}",
        lines=lines,
        created_by=closed_by,
        entry_type='closing',
        reference_type='closing_entry',
        reference_id=closing.id,
    )
    closing.save(update_fields=['journal_entry', 'updated_at'])

    logger.info(f"Period closed: {period_start} - {period_end} | Net income: {net_income:,.2f}")
    return closing


# =============================================================================
# DEFAULT CHART OF ACCOUNTS
# =============================================================================

DEFAULT_CHART_OF_ACCOUNTS = [
    # (code, name, type, parent code)
    ('1000', 'Cash and Cash Equivalents', 'asset', None),
    ('1010', 'Cash In Hand', 'asset', '1000'),
    ('1020', 'Bank Account', 'asset', '1000'),
    ('1030', 'M-Pesa Paybill Account', 'asset', '1000'),
    ('1100', 'Loan Portfolio', 'asset', None),
    ('1110', 'Interest Receivable', 'asset', '1100'),
    ('1190', 'Allowance for Loan Losses', 'asset', '1100'),
    ('1200', 'Accrued Revenue Receivable', 'asset', None),
    ('2000', 'Client Savings Deposits', 'liability', None),
    ('2100', 'Accrued Expenses', 'liability', None),
    ('2200', 'Borrowings', 'liability', None),
    ('3000', 'Share Capital', 'equity', None),
    ('3100', 'Retained Earnings', 'equity', None),
    ('4000', 'Interest Income - Loans', 'income', None),
    ('4100', 'Fee Income', 'income', None),
    ('4200', 'Penalty Income', 'income', None),
    ('4300', 'Savings Fee Income', 'income', None),
    ('5000', 'Interest Expense - Savings', 'expense', None),
    ('5100', 'Loan Write-off Expense', 'expense', None),
    ('5200', 'Provision for Loan Losses', 'expense', None),
    ('5300', 'Operating Expenses', 'expense', None),
]

DEFAULT_PAYMENT_TYPES = [
    # (code, name, is_cash)
    ('cash', 'Cash', True),
    ('bank_transfer', 'Bank Transfer', False),
    ('mpesa', 'M-Pesa', False),
    ('cheque', 'Cheque', False),
]


@transaction.atomic
def seed_chart_of_accounts(tenant, reset=False):
    """
    Create the default chart for a tenant

    Existing codes are left alone unless ``reset`` is set, in which case
    accounts with no journal activity are removed first.

    Returns:
        int: number of accounts created
    """
    from loanspur.models import ChartOfAccounts

    if reset:
        for account in ChartOfAccounts.objects.for_tenant(tenant).filter(journal_lines__isnull=True).distinct():
            try:
                account.delete(hard=True)
            except ProtectedError:
                logger.info(f"Keeping {account.account_code} for {tenant}: still mapped on a product")

    created = 0
    by_code = {a.account_code: a for a in ChartOfAccounts.objects.for_tenant(tenant)}
    for code, name, account_type, parent_code in DEFAULT_CHART_OF_ACCOUNTS:
        if code in by_code:
            continue
        by_code[code] = ChartOfAccounts.objects.create(
            tenant=tenant,
            account_code=code,
            account_name=name,
            account_type=account_type,
            parent_account=by_code.get(parent_code),
        )
        created += 1

    logger.info(f"Chart of accounts seeded for {tenant}: {created} created")
    return created


def seed_payment_types(tenant):
    from loanspur.models import PaymentType

    created = 0
    for code, name, is_cash in DEFAULT_PAYMENT_TYPES:
        _, was_created = PaymentType.objects.get_or_create(
            tenant=tenant, code=code, defaults={'name': name, 'is_cash': is_cash}
        )
        created += int(was_created)
    return created
