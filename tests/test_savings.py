from datetime import timedelta
from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError
from django.utils import timezone

from loanspur.models import (
    FeeStructure, PaymentType, ProductFundSourceMapping, SavingsAccount, SavingsTransaction, Transaction,
)

pytestmark = pytest.mark.django_db


class TestLifecycle:

    def test_new_account_takes_product_rate(self, savings_account):
        assert savings_account.status == 'pending'
        assert savings_account.interest_rate == Decimal('6')
        assert savings_account.account_number.startswith('SA')

    def test_activate_with_opening_deposit(self, active_savings, accounts):
        assert active_savings.status == 'active'
        assert active_savings.account_balance == Decimal('1000.00')
        assert active_savings.transactions.get().description == 'Opening deposit'
        assert accounts['2000'].get_balance() == Decimal('1000.00')
        assert accounts['1010'].get_balance() == Decimal('1000.00')

    def test_activate_requires_approval(self, savings_account, tenant_admin):
        with pytest.raises(ValueError):
            savings_account.activate(tenant_admin, opening_deposit=Decimal('1000'))

    def test_opening_deposit_below_minimum(self, savings_account, tenant_admin):
        savings_account.approve(tenant_admin)
        with pytest.raises(ValidationError):
            savings_account.activate(tenant_admin, opening_deposit=Decimal('100'))

    def test_close_requires_zero_balance(self, active_savings, tenant_admin):
        with pytest.raises(ValidationError):
            active_savings.close(tenant_admin)

    def test_close_empty_account(self, savings_product, savings_account, tenant_admin):
        savings_product.min_required_opening_balance = Decimal('0')
        savings_product.save()
        savings_account.approve(tenant_admin)
        savings_account.activate(tenant_admin)

        savings_account.close(tenant_admin, 'Client relocated')
        assert savings_account.status == 'closed'

        with pytest.raises(ValueError):
            savings_account.deposit(Decimal('50'), tenant_admin)


class TestMoneyMovement:

    def test_deposit(self, active_savings, tenant_admin):
        txn = active_savings.deposit(Decimal('2500'), tenant_admin, reference='DEP-7')

        assert active_savings.account_balance == Decimal('3500.00')
        assert txn.balance_after == Decimal('3500.00')
        assert txn.ledger_transaction.transaction_type == 'savings_deposit'
        assert txn.ledger_transaction.transaction_id.startswith('SD-')
        assert txn.journal_entry.reference_type == 'savings_deposit'

    def test_movements_through_separate_copies_both_counted(self, active_savings, tenant_admin):
        first = SavingsAccount.objects.get(pk=active_savings.pk)
        second = SavingsAccount.objects.get(pk=active_savings.pk)

        first.deposit(Decimal('500'), tenant_admin)
        txn = second.withdraw(Decimal('200'), tenant_admin)

        assert txn.balance_after == Decimal('1300.00')
        active_savings.refresh_from_db()
        assert active_savings.account_balance == Decimal('1300.00')
        assert active_savings.total_deposits == Decimal('1500.00')
        assert active_savings.total_withdrawals == Decimal('200.00')

    def test_deposit_must_be_positive(self, active_savings, tenant_admin):
        with pytest.raises(ValidationError):
            active_savings.deposit(Decimal('0'), tenant_admin)

    def test_withdraw_down_to_minimum_balance(self, active_savings, tenant_admin, accounts):
        txn = active_savings.withdraw(Decimal('800'), tenant_admin)

        assert active_savings.account_balance == Decimal('200.00')
        assert txn.ledger_transaction.transaction_type == 'savings_withdrawal'
        assert accounts['2000'].get_balance() == Decimal('200.00')

    def test_withdraw_breaching_minimum_balance(self, active_savings, tenant_admin):
        allowed, message = active_savings.can_withdraw(Decimal('801'))
        assert not allowed
        assert 'minimum balance' in message

        with pytest.raises(ValidationError):
            active_savings.withdraw(Decimal('801'), tenant_admin)

    def test_withdraw_more_than_available(self, active_savings):
        allowed, message = active_savings.can_withdraw(Decimal('5000'))
        assert not allowed
        assert message.startswith('Insufficient funds')

    def test_charge_fee(self, active_savings, tenant, tenant_admin, accounts):
        fee = FeeStructure.objects.create(
            tenant=tenant, name='Ledger fee', fee_type='savings', calculation_type='fixed', amount=Decimal('50'),
            charge_time_type='monthly',
        )
        txn = active_savings.charge_fee(tenant_admin, fee=fee)

        assert txn.amount == Decimal('50.00')
        assert active_savings.account_balance == Decimal('950.00')
        assert accounts['4300'].get_balance() == Decimal('50.00')
        assert Transaction.objects.filter(savings_account=active_savings, transaction_type='savings_fee').exists()

    def test_charge_fee_needs_fee_or_amount(self, active_savings, tenant_admin):
        with pytest.raises(ValidationError):
            active_savings.charge_fee(tenant_admin)

    def test_mapped_payment_type_routes_to_account(self, active_savings, savings_product, tenant, tenant_admin, accounts):
        ProductFundSourceMapping.objects.create(
            tenant=tenant, product_type='savings', product_id=savings_product.id,
            payment_type=PaymentType.objects.for_tenant(tenant).get(code='mpesa'),
            account=accounts['1030'],
        )
        active_savings.deposit(Decimal('400'), tenant_admin, method='mpesa')

        assert accounts['1030'].get_balance() == Decimal('400.00')
        assert accounts['1010'].get_balance() == Decimal('1000.00')


class TestInterest:

    def test_calculate_and_post_interest(self, active_savings, tenant_admin, accounts):
        today = timezone.now().date()
        posting = active_savings.calculate_interest(today + timedelta(days=1), today + timedelta(days=30))

        assert posting.days == 30
        assert posting.average_balance == Decimal('1000.00')
        # 1000 * 6% * 30 / 365
        assert posting.interest_amount == Decimal('4.93')

        active_savings.post_interest(posting, tenant_admin)
        assert posting.is_posted
        assert active_savings.account_balance == Decimal('1004.93')
        assert accounts['5000'].get_balance() == Decimal('4.93')

        with pytest.raises(ValidationError):
            active_savings.post_interest(posting, tenant_admin)

    def test_same_period_calculated_once(self, active_savings):
        today = timezone.now().date()
        active_savings.calculate_interest(today, today + timedelta(days=9))

        with pytest.raises(ValidationError):
            active_savings.calculate_interest(today, today + timedelta(days=9))

    def test_inverted_period(self, active_savings):
        today = timezone.now().date()
        with pytest.raises(ValidationError):
            active_savings.calculate_interest(today, today - timedelta(days=1))


class TestReversal:

    def test_undo_deposit(self, active_savings, tenant_admin, accounts):
        txn = active_savings.deposit(Decimal('500'), tenant_admin, reference='DEP-9')
        reversal = active_savings.undo_transaction(txn, tenant_admin, 'Duplicate entry')

        txn.refresh_from_db()
        assert txn.is_reversed
        assert reversal.reversal_of == txn
        assert reversal.transaction_type == 'reversal'
        assert active_savings.account_balance == Decimal('1000.00')
        assert accounts['2000'].get_balance() == Decimal('1000.00')

        ledger = reversal.ledger_transaction
        assert ledger.amount == Decimal('-500.00')
        assert ledger.external_transaction_id == 'REV-DEP-9'

        with pytest.raises(ValidationError):
            active_savings.undo_transaction(txn, tenant_admin, 'Again')

    def test_undo_through_stale_copy_refused(self, active_savings, tenant_admin):
        txn = active_savings.deposit(Decimal('500'), tenant_admin, reference='DEP-11')
        stale = SavingsTransaction.objects.get(pk=txn.pk)
        active_savings.undo_transaction(txn, tenant_admin, 'Duplicate entry')

        with pytest.raises(ValidationError):
            active_savings.undo_transaction(stale, tenant_admin, 'Duplicate entry')
        assert active_savings.account_balance == Decimal('1000.00')

    def test_undo_withdrawal_restores_balance(self, active_savings, tenant_admin):
        txn = active_savings.withdraw(Decimal('300'), tenant_admin)
        active_savings.undo_transaction(txn, tenant_admin, 'Teller error')

        assert active_savings.account_balance == Decimal('1000.00')
        assert active_savings.total_withdrawals == 0

    def test_only_deposits_and_withdrawals_reversible(self, active_savings, tenant_admin):
        txn = active_savings.charge_fee(tenant_admin, amount=Decimal('20'))
        with pytest.raises(ValidationError):
            active_savings.undo_transaction(txn, tenant_admin, 'Fee waived')

    def test_statement(self, active_savings, tenant_admin):
        active_savings.withdraw(Decimal('300'), tenant_admin)
        rows = active_savings.get_statement()

        assert [(row['credit'], row['debit']) for row in rows] == [
            (Decimal('1000.00'), Decimal('0.00')),
            (Decimal('0.00'), Decimal('300.00')),
        ]
        assert rows[-1]['balance'] == Decimal('700.00')
