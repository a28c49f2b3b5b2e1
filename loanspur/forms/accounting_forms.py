"""
Accounting Forms
================

Forms for reports, manual journal entries, chart of accounts management,
accruals, provisions and period closing
"""

from django import forms
from django.core.exceptions import ValidationError
from django.utils import timezone
from decimal import Decimal, InvalidOperation
from datetime import date

from loanspur.forms.base_forms import TenantFormMixin
from loanspur.models import ChartOfAccounts, Accrual, Provision, Office
from loanspur.utils.accounting_helpers import validate_journal_lines


# =============================================================================
# REPORT PARAMETERS
# =============================================================================

class DateRangeForm(forms.Form):
    """Base form for date filtering in reports"""

    date_from = forms.DateField(required=False, label='From Date')
    date_to = forms.DateField(required=False, label='To Date')

    def clean(self):
        cleaned_data = super().clean()

        if not cleaned_data.get('date_to'):
            cleaned_data['date_to'] = timezone.localdate()

        if not cleaned_data.get('date_from'):
            # Default to start of current month
            today = timezone.localdate()
            cleaned_data['date_from'] = date(today.year, today.month, 1)

        if cleaned_data['date_from'] > cleaned_data['date_to']:
            raise ValidationError('From Date cannot be after To Date')

        return cleaned_data


class TrialBalanceForm(DateRangeForm):

    show_zero_balances = forms.BooleanField(required=False, initial=False)


class BalanceSheetForm(forms.Form):

    as_of_date = forms.DateField(required=False)

    def clean_as_of_date(self):
        return self.cleaned_data.get('as_of_date') or timezone.localdate()


class GeneralLedgerForm(TenantFormMixin, DateRangeForm):

    account = forms.ModelChoiceField(queryset=ChartOfAccounts.objects.all())


# =============================================================================
# CHART OF ACCOUNTS
# =============================================================================

class ChartOfAccountsForm(TenantFormMixin, forms.ModelForm):

    class Meta:
        model = ChartOfAccounts
        fields = ['account_code', 'account_name', 'account_type', 'parent_account',
                  'allows_manual_entries', 'description']

    def clean_account_code(self):
        code = self.cleaned_data['account_code'].strip()
        queryset = ChartOfAccounts.objects.for_tenant(self.tenant).filter(account_code=code)
        if self.instance and self.instance.pk:
            queryset = queryset.exclude(pk=self.instance.pk)
        if queryset.exists():
            raise ValidationError(f"Account code {code} already exists.")
        return code

    def clean(self):
        cleaned_data = super().clean()
        parent = cleaned_data.get('parent_account')
        account_type = cleaned_data.get('account_type')

        if parent and account_type and parent.account_type != account_type:
            self.add_error('parent_account', "Parent account must be of the same type")
        if parent and self.instance.pk and parent.pk == self.instance.pk:
            self.add_error('parent_account', "An account cannot be its own parent")

        return cleaned_data


# =============================================================================
# MANUAL JOURNAL ENTRY
# =============================================================================

class JournalEntryForm(TenantFormMixin, forms.Form):
    """
    Manual journal entry

    ``lines`` is a list of ``{"account": code, "debit": x, "credit": y,
    "description": "..."}``. Only accounts open to manual entries are allowed.
    """

    transaction_date = forms.DateField(required=False)
    description = forms.CharField()
    office = forms.ModelChoiceField(queryset=Office.objects.all(), required=False)
    lines = forms.JSONField()
    post = forms.BooleanField(required=False)

    def clean_transaction_date(self):
        return self.cleaned_data.get('transaction_date') or timezone.localdate()

    def clean_lines(self):
        lines = self.cleaned_data.get('lines')
        if not isinstance(lines, list):
            raise ValidationError("Lines must be a list")

        resolved = []
        for number, line in enumerate(lines, 1):
            if not isinstance(line, dict) or not line.get('account'):
                raise ValidationError(f"Line {number}: an account is required")
            account = ChartOfAccounts.objects.for_tenant(self.tenant).filter(
                account_code=str(line['account']), is_active=True
            ).first()
            if account is None:
                raise ValidationError(f"Line {number}: account {line['account']} not found or inactive")
            if not account.allows_manual_entries:
                raise ValidationError(f"Line {number}: account {account.account_code} does not allow manual entries")
            try:
                debit = Decimal(str(line.get('debit') or 0))
                credit = Decimal(str(line.get('credit') or 0))
            except InvalidOperation:
                raise ValidationError(f"Line {number}: amounts must be numbers")
            resolved.append({
                'account': account,
                'debit': debit,
                'credit': credit,
                'description': line.get('description', ''),
            })

        validate_journal_lines(resolved)
        return resolved


class JournalReversalForm(forms.Form):

    reason = forms.CharField(min_length=5)
    reversal_date = forms.DateField(required=False)


# =============================================================================
# ACCRUALS, PROVISIONS, CLOSING
# =============================================================================

class AccrualForm(TenantFormMixin, forms.ModelForm):

    class Meta:
        model = Accrual
        fields = ['accrual_type', 'description', 'amount', 'accrual_date', 'reversal_date',
                  'account', 'contra_account']

    def clean(self):
        cleaned_data = super().clean()
        if (cleaned_data.get('amount') or 0) <= 0:
            self.add_error('amount', "Amount must be greater than zero")
        accrual_date = cleaned_data.get('accrual_date')
        reversal_date = cleaned_data.get('reversal_date')
        if accrual_date and reversal_date and reversal_date < accrual_date:
            self.add_error('reversal_date', "Reversal date cannot be before the accrual date")
        if cleaned_data.get('account') and cleaned_data.get('account') == cleaned_data.get('contra_account'):
            self.add_error('contra_account', "Contra account must differ from the account")
        return cleaned_data


class AccrualReversalForm(forms.Form):
    """Defaults to the reversal date set on the accrual"""

    reversal_date = forms.DateField(required=False)


class ProvisionForm(TenantFormMixin, forms.ModelForm):

    class Meta:
        model = Provision
        fields = ['provision_type', 'description', 'calculation_method', 'base_amount', 'rate',
                  'amount', 'provision_date', 'expense_account', 'provision_account']

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['amount'].required = False
        self.fields['rate'].required = False
        self.fields['base_amount'].required = False

    def clean(self):
        cleaned_data = super().clean()
        method = cleaned_data.get('calculation_method')
        if method == 'percentage' and not cleaned_data.get('rate'):
            self.add_error('rate', "Rate is required for percentage provisions")
        if method == 'fixed' and not cleaned_data.get('amount'):
            self.add_error('amount', "Amount is required for fixed provisions")
        for name in ('amount', 'rate', 'base_amount'):
            if cleaned_data.get(name) is None:
                cleaned_data[name] = Decimal('0')
        expense_account = cleaned_data.get('expense_account')
        if expense_account and expense_account.account_type != 'expense':
            self.add_error('expense_account', "Must be an expense account")
        return cleaned_data


class ClosePeriodForm(TenantFormMixin, forms.Form):

    period_start = forms.DateField()
    period_end = forms.DateField()
    retained_earnings_account = forms.ModelChoiceField(
        queryset=ChartOfAccounts.objects.filter(account_type='equity', is_active=True)
    )

    def clean(self):
        cleaned_data = super().clean()
        start = cleaned_data.get('period_start')
        end = cleaned_data.get('period_end')
        if start and end and start > end:
            raise ValidationError("Period start cannot be after period end")
        if end and end > timezone.localdate():
            self.add_error('period_end', "Cannot close a period that has not ended")
        return cleaned_data
