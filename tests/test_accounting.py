from datetime import date, timedelta
from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError
from django.utils import timezone

from loanspur.models import Accrual, ChartOfAccounts, JournalEntry, JournalEntryLine, Provision
from loanspur.utils.accounting_helpers import (
    DEFAULT_CHART_OF_ACCOUNTS,
    close_period,
    create_journal_entry,
    get_account,
    get_balance_sheet,
    get_general_ledger,
    get_income_statement,
    get_trial_balance,
    seed_chart_of_accounts,
    validate_journal_lines,
)

pytestmark = pytest.mark.django_db

TODAY = date(2026, 3, 31)


def _post(tenant, lines, day=TODAY, **kwargs):
    return create_journal_entry(tenant, day, 'Test entry', lines, **kwargs)


def _capital_injection(tenant, amount='50000'):
    return _post(tenant, [
        {'account': '1010', 'debit': Decimal(amount), 'credit': 0},
        {'account': '3000', 'debit': 0, 'credit': Decimal(amount)},
    ])


class TestJournalValidation:

    def test_requires_two_lines(self):
        with pytest.raises(ValidationError):
            validate_journal_lines([{'debit': 100, 'credit': 0}])

    @pytest.mark.parametrize('lines', [
        [{'debit': 100, 'credit': 0}, {'debit': 0, 'credit': 90}],
        [{'debit': 100, 'credit': 100}, {'debit': 0, 'credit': 0}],
        [{'debit': -5, 'credit': 0}, {'debit': 0, 'credit': -5}],
        [{'debit': 0, 'credit': 0}, {'debit': 0, 'credit': 0}],
    ])
    def test_rejects_invalid_lines(self, lines):
        with pytest.raises(ValidationError):
            validate_journal_lines(lines)

    def test_tolerates_one_cent(self):
        debits, credits = validate_journal_lines([
            {'debit': Decimal('100.00'), 'credit': 0},
            {'debit': 0, 'credit': Decimal('99.99')},
        ])
        assert debits - credits == Decimal('0.01')

    def test_line_with_both_sides_refused_on_save(self, tenant, accounts):
        entry = JournalEntry.objects.create(tenant=tenant, transaction_date=TODAY, description='Bad')
        with pytest.raises(ValidationError):
            JournalEntryLine.objects.create(
                journal_entry=entry, account=accounts['1010'],
                debit_amount=Decimal('10'), credit_amount=Decimal('10'),
            )


class TestAccounts:

    def test_registration_seeds_default_chart(self, tenant):
        codes = set(ChartOfAccounts.objects.for_tenant(tenant).values_list('account_code', flat=True))
        assert codes == {code for code, *_ in DEFAULT_CHART_OF_ACCOUNTS}

    def test_seeding_again_creates_nothing(self, tenant):
        assert seed_chart_of_accounts(tenant) == 0

    def test_get_account_by_code(self, tenant, accounts):
        assert get_account(tenant, '1100') == accounts['1100']

    def test_get_account_rejects_other_tenant(self, tenant, other_tenant):
        foreign = ChartOfAccounts.objects.for_tenant(other_tenant).get(account_code='1010')
        with pytest.raises(ValidationError):
            get_account(tenant, foreign)

    def test_get_account_rejects_inactive(self, tenant, accounts):
        accounts['1020'].is_active = False
        accounts['1020'].save()
        with pytest.raises(ValidationError):
            get_account(tenant, '1020')

    def test_balance_follows_normal_side(self, tenant, accounts):
        _capital_injection(tenant)

        assert accounts['1010'].get_balance() == Decimal('50000')
        assert accounts['3000'].get_balance() == Decimal('50000')

    def test_balance_as_of_date(self, tenant, accounts):
        _capital_injection(tenant)
        assert accounts['1010'].get_balance(as_of_date=TODAY - timedelta(days=1)) == 0


class TestJournalLifecycle:

    def test_auto_post_numbers_entry(self, tenant):
        entry = _capital_injection(tenant)

        assert entry.status == 'posted'
        assert entry.entry_number.startswith(f"JE-{timezone.now().year}-")
        assert entry.lines.count() == 2
        assert entry.total_debit == Decimal('50000')

    def test_draft_then_post(self, tenant, tenant_admin, accounts):
        entry = _post(tenant, [
            {'account': '5300', 'debit': 1500, 'credit': 0},
            {'account': '1010', 'debit': 0, 'credit': 1500},
        ], entry_type='manual', auto_post=False)

        assert entry.status == 'draft'
        assert accounts['5300'].get_balance() == 0

        entry.post(tenant_admin)
        assert entry.status == 'posted'
        assert accounts['5300'].get_balance() == Decimal('1500')

    def test_post_twice_refused(self, tenant):
        entry = _capital_injection(tenant)
        with pytest.raises(ValueError):
            entry.post()

    def test_reverse_swaps_lines(self, tenant, tenant_admin, accounts):
        entry = _capital_injection(tenant)
        reversal = entry.reverse(tenant_admin, 'Posted in error')

        entry.refresh_from_db()
        assert entry.status == 'reversed'
        assert reversal.entry_type == 'reversal'
        assert reversal.reversal_of == entry
        debit_line = reversal.lines.get(account=accounts['3000'])
        assert debit_line.debit_amount == Decimal('50000')
        assert accounts['1010'].get_balance() == 0
        assert accounts['3000'].get_balance() == 0

    def test_reverse_draft_refused(self, tenant):
        entry = _post(tenant, [
            {'account': '5300', 'debit': 10, 'credit': 0},
            {'account': '1010', 'debit': 0, 'credit': 10},
        ], auto_post=False)
        with pytest.raises(ValueError):
            entry.reverse(reason='nope')


class TestReports:

    @pytest.fixture
    def activity(self, tenant):
        _capital_injection(tenant)
        _post(tenant, [
            {'account': '1010', 'debit': 800, 'credit': 0},
            {'account': '4000', 'debit': 0, 'credit': 800},
        ])
        _post(tenant, [
            {'account': '5300', 'debit': 300, 'credit': 0},
            {'account': '1010', 'debit': 0, 'credit': 300},
        ])

    def test_trial_balance_balances(self, tenant, activity):
        report = get_trial_balance(tenant, date_to=TODAY)

        assert report['is_balanced']
        assert report['total_debits'] == Decimal('50800')
        rows = {row['account'].account_code: row for row in report['trial_balance']}
        assert rows['1010']['debit'] == Decimal('50500')
        assert rows['4000']['credit'] == Decimal('800')
        assert '2000' not in rows

    def test_trial_balance_with_zero_rows(self, tenant, activity):
        report = get_trial_balance(tenant, show_zero_balances=True)
        assert len(report['trial_balance']) == len(DEFAULT_CHART_OF_ACCOUNTS)

    def test_income_statement(self, tenant, activity):
        report = get_income_statement(tenant, date(2026, 3, 1), TODAY)

        assert report['total_income'] == Decimal('800')
        assert report['total_expenses'] == Decimal('300')
        assert report['net_profit'] == Decimal('500')

    def test_balance_sheet_includes_current_earnings(self, tenant, activity):
        report = get_balance_sheet(tenant, TODAY)

        assert report['total_assets'] == Decimal('50500')
        assert report['current_earnings'] == Decimal('500')
        assert report['total_equity'] == Decimal('50500')
        assert report['is_balanced']

    def test_general_ledger_running_balance(self, tenant, accounts, activity):
        ledger = get_general_ledger(accounts['1010'], TODAY, TODAY)

        assert ledger['opening_balance'] == 0
        assert [row['balance'] for row in ledger['entries']] == [
            Decimal('50000'), Decimal('50800'), Decimal('50500'),
        ]
        assert ledger['closing_balance'] == Decimal('50500')

    def test_close_period(self, tenant, tenant_admin, accounts, activity):
        closing = close_period(tenant, date(2026, 3, 1), TODAY, accounts['3100'], tenant_admin)

        assert closing.net_income == Decimal('500')
        assert closing.journal_entry.entry_type == 'closing'
        assert accounts['4000'].get_balance() == 0
        assert accounts['5300'].get_balance() == 0
        assert accounts['3100'].get_balance() == Decimal('500')

        with pytest.raises(ValidationError):
            close_period(tenant, date(2026, 3, 1), TODAY, accounts['3100'], tenant_admin)

    def test_close_period_requires_equity_account(self, tenant, tenant_admin, accounts, activity):
        with pytest.raises(ValidationError):
            close_period(tenant, date(2026, 3, 1), TODAY, accounts['1010'], tenant_admin)

    def test_close_period_without_activity(self, tenant, tenant_admin, accounts):
        with pytest.raises(ValidationError):
            close_period(tenant, date(2026, 1, 1), date(2026, 1, 31), accounts['3100'], tenant_admin)


class TestAccrualsAndProvisions:

    def test_expense_accrual_post_and_reverse(self, tenant, tenant_admin, accounts):
        accrual = Accrual.objects.create(
            tenant=tenant, accrual_type='expense', description='March rent', amount=Decimal('20000'),
            account=accounts['5300'], contra_account=accounts['2100'],
        )
        accrual.post(tenant_admin)

        assert accrual.status == 'posted'
        assert accounts['5300'].get_balance() == Decimal('20000')
        assert accounts['2100'].get_balance() == Decimal('20000')

        with pytest.raises(ValueError):
            accrual.post(tenant_admin)

        accrual.reverse(tenant_admin)
        assert accrual.status == 'reversed'
        assert accounts['2100'].get_balance() == 0

    def test_revenue_accrual_debits_receivable(self, tenant, tenant_admin, accounts):
        accrual = Accrual.objects.create(
            tenant=tenant, accrual_type='revenue', description='Consulting', amount=Decimal('700'),
            account=accounts['4100'], contra_account=accounts['1200'],
        )
        accrual.post(tenant_admin)

        assert accounts['1200'].get_balance() == Decimal('700')
        assert accounts['4100'].get_balance() == Decimal('700')

    def test_percentage_provision(self, tenant, tenant_admin, accounts):
        provision = Provision.objects.create(
            tenant=tenant, description='Q1 loan loss', base_amount=Decimal('200000'), rate=Decimal('2.5'),
            expense_account=accounts['5200'], provision_account=accounts['1190'],
        )
        assert provision.calculate() == Decimal('5000.00')

        provision.post(tenant_admin)
        assert provision.status == 'posted'
        assert accounts['5200'].get_balance() == Decimal('5000.00')
        assert accounts['1190'].get_balance() == Decimal('-5000.00')
