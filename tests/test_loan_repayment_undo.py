"""
Undoing a loan repayment must restore balances, ledger and schedule exactly
"""

from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError

from loanspur.models import Loan, LoanPayment, Transaction

pytestmark = pytest.mark.django_db


@pytest.fixture
def repaid(active_loan, tenant_admin):
    payment = active_loan.record_repayment(Decimal('1000'), tenant_admin, reference='RCPT-001')
    return active_loan, payment


def test_undo_restores_balances(repaid, tenant_admin):
    loan, payment = repaid
    outstanding_before = loan.total_principal + loan.total_interest

    loan.undo_repayment(payment, tenant_admin, 'Cheque bounced')

    loan.refresh_from_db()
    assert loan.outstanding_balance == outstanding_before
    assert loan.principal_paid == 0
    assert loan.interest_paid == 0
    assert loan.amount_paid == 0


def test_undo_reverses_journal(repaid, tenant_admin, accounts):
    loan, payment = repaid
    reversal = loan.undo_repayment(payment, tenant_admin, 'Cheque bounced')

    payment.refresh_from_db()
    assert payment.is_reversed
    assert payment.reversal_journal_entry == reversal
    assert payment.journal_entry.status == 'reversed'
    assert reversal.reference_type == 'loan_payment_reversal'
    assert reversal.reversal_of == payment.journal_entry

    assert accounts['1100'].get_balance() == Decimal('10000.00')
    assert accounts['4000'].get_balance() == 0


def test_undo_records_reversal_and_undo_transactions(repaid, tenant_admin):
    loan, payment = repaid
    loan.undo_repayment(payment, tenant_admin, 'Cheque bounced')

    reversal_txn = Transaction.objects.get(loan=loan, transaction_type='loan_repayment_reversal')
    assert reversal_txn.amount == Decimal('-1000.00')
    assert reversal_txn.external_transaction_id == 'REV-RCPT-001'
    assert reversal_txn.transaction_id.startswith('LR-REV-')

    undo_txn = Transaction.objects.get(loan=loan, transaction_type='repayment_undo')
    assert undo_txn.amount == Decimal('1000.00')
    assert undo_txn.description == 'Cheque bounced'


def test_undo_twice_refused(repaid, tenant_admin):
    loan, payment = repaid
    loan.undo_repayment(payment, tenant_admin, 'Cheque bounced')

    with pytest.raises(ValidationError):
        loan.undo_repayment(payment, tenant_admin, 'Again')


def test_undo_refused_when_reversal_reference_exists(repaid, tenant, tenant_admin):
    loan, payment = repaid
    Transaction.objects.create(
        tenant=tenant, transaction_id='LR-REV-MANUAL', amount=Decimal('-1000'),
        transaction_type='loan_repayment_reversal', external_transaction_id='REV-RCPT-001',
    )

    with pytest.raises(ValidationError):
        loan.undo_repayment(payment, tenant_admin, 'Duplicate')


def test_undo_reopens_closed_loan(make_loan, tenant_admin):
    loan = make_loan(principal=Decimal('6000'), term=6, interest_rate=Decimal('0'))
    loan.approve(tenant_admin)
    loan.disburse(tenant_admin)
    payment = loan.record_repayment(Decimal('6000'), tenant_admin)
    assert loan.status == 'closed'

    loan.undo_repayment(payment, tenant_admin, 'Reversed by bank')

    assert loan.status == 'active'
    assert loan.closed_date is None
    assert loan.outstanding_balance == Decimal('6000.00')
    assert not loan.schedule.exclude(status='unpaid').exists()


def test_undo_walks_schedule_back_from_last_installment(make_loan, tenant_admin):
    loan = make_loan(principal=Decimal('12000'), interest_rate=Decimal('0'))
    loan.approve(tenant_admin)
    loan.disburse(tenant_admin)
    loan.record_repayment(Decimal('1000'), tenant_admin)
    second = loan.record_repayment(Decimal('500'), tenant_admin)

    loan.undo_repayment(second, tenant_admin, 'Wrong account')

    rows = loan.schedule.order_by('installment_number')
    assert rows[0].status == 'paid'
    assert rows[1].status == 'unpaid'
    assert rows[1].paid_amount == 0


def test_undo_refused_for_other_loan(repaid, make_loan, tenant_admin):
    _, payment = repaid
    other = make_loan()
    other.approve(tenant_admin)
    other.disburse(tenant_admin)

    with pytest.raises(ValidationError):
        other.undo_repayment(payment, tenant_admin, 'Wrong loan')


def test_undo_refused_on_written_off_loan(repaid, tenant_admin):
    loan, payment = repaid
    loan.write_off(tenant_admin, 'Uncollectable after 180 days')

    with pytest.raises(ValidationError):
        loan.undo_repayment(payment, tenant_admin, 'Too late')


def test_undo_refused_without_accounting(repaid, loan_product, tenant_admin):
    loan, payment = repaid
    loan_product.accounting_type = 'none'
    loan_product.save()
    loan.refresh_from_db()

    with pytest.raises(ValidationError):
        loan.undo_repayment(payment, tenant_admin, 'No ledger')


def test_undo_through_stale_copy_refused(repaid, tenant_admin):
    loan, payment = repaid
    stale_loan = Loan.objects.get(pk=loan.pk)
    stale_payment = LoanPayment.objects.get(pk=payment.pk)

    loan.undo_repayment(payment, tenant_admin, 'Cheque bounced')

    with pytest.raises(ValidationError):
        stale_loan.undo_repayment(stale_payment, tenant_admin, 'Cheque bounced')

    loan.refresh_from_db()
    assert loan.amount_paid == 0
    assert Transaction.objects.filter(loan=loan, transaction_type='repayment_undo').count() == 1


def test_undo_on_accrual_product_restores_receivable(make_loan, loan_product, tenant_admin, accounts):
    loan_product.accounting_type = 'accrual'
    loan_product.save()
    loan = make_loan()
    loan.approve(tenant_admin)
    loan.disburse(tenant_admin)
    payment = loan.record_repayment(Decimal('1000'), tenant_admin, reference='RCPT-ACC')
    assert payment.interest_amount > 0
    assert accounts['1110'].get_balance() == loan.total_interest - payment.interest_amount

    reversal = loan.undo_repayment(payment, tenant_admin, 'Cheque bounced')

    assert reversal.lines.get(account=accounts['1110']).debit_amount == payment.interest_amount
    assert not reversal.lines.filter(account=accounts['4000']).exists()
    assert accounts['1110'].get_balance() == loan.total_interest
    assert accounts['4000'].get_balance() == loan.total_interest
