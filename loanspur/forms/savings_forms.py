"""
Savings Forms
=============

Forms for opening savings accounts and posting savings transactions
"""

from django import forms
from django.core.exceptions import ValidationError
from decimal import Decimal

from loanspur.forms.base_forms import TenantFormMixin
from loanspur.forms.loan_forms import PAYMENT_METHOD_CHOICES
from loanspur.models import SavingsAccount, FeeStructure


class SavingsAccountForm(TenantFormMixin, forms.ModelForm):
    """Open a savings account for an approved client"""

    class Meta:
        model = SavingsAccount
        fields = ['client', 'product', 'office', 'interest_rate']

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['client'].queryset = self.fields['client'].queryset.filter(
            is_active=True, approval_status='approved'
        )
        self.fields['product'].queryset = self.fields['product'].queryset.filter(is_active=True)
        self.fields['office'].required = False
        self.fields['interest_rate'].required = False

    def clean(self):
        cleaned_data = super().clean()
        client = cleaned_data.get('client')
        product = cleaned_data.get('product')

        if client and not cleaned_data.get('office'):
            cleaned_data['office'] = client.office
        if product and cleaned_data.get('interest_rate') is None:
            cleaned_data['interest_rate'] = product.nominal_annual_interest_rate

        return cleaned_data


class SavingsActivationForm(forms.Form):

    opening_deposit = forms.DecimalField(max_digits=15, decimal_places=2, min_value=Decimal('0'), required=False)
    method = forms.ChoiceField(choices=PAYMENT_METHOD_CHOICES, initial='cash')
    reference = forms.CharField(max_length=100, required=False)

    def __init__(self, *args, **kwargs):
        self.account = kwargs.pop('account', None)
        super().__init__(*args, **kwargs)

    def clean_opening_deposit(self):
        amount = self.cleaned_data.get('opening_deposit') or Decimal('0')
        if self.account and amount < self.account.product.min_required_opening_balance:
            raise ValidationError(
                f"Opening deposit must be at least {self.account.product.min_required_opening_balance:,.2f}"
            )
        return amount


class SavingsTransactionForm(forms.Form):
    """Deposit or withdrawal posting"""

    amount = forms.DecimalField(max_digits=15, decimal_places=2, min_value=Decimal('0.01'))
    method = forms.ChoiceField(choices=PAYMENT_METHOD_CHOICES, initial='cash')
    reference = forms.CharField(max_length=100, required=False)
    description = forms.CharField(max_length=255, required=False)
    transaction_date = forms.DateField(required=False)


class SavingsWithdrawalForm(SavingsTransactionForm):

    def __init__(self, *args, **kwargs):
        self.account = kwargs.pop('account', None)
        super().__init__(*args, **kwargs)

    def clean_amount(self):
        amount = self.cleaned_data['amount']
        if self.account:
            allowed, message = self.account.can_withdraw(amount)
            if not allowed:
                raise ValidationError(message)
        return amount


class SavingsFeeForm(TenantFormMixin, forms.Form):

    fee = forms.ModelChoiceField(queryset=FeeStructure.objects.filter(is_active=True), required=False)
    amount = forms.DecimalField(max_digits=15, decimal_places=2, min_value=Decimal('0.01'), required=False)
    description = forms.CharField(max_length=255, required=False)

    def clean(self):
        cleaned_data = super().clean()
        if cleaned_data.get('fee') is None and cleaned_data.get('amount') is None:
            raise ValidationError("Enter an amount or choose a fee")
        return cleaned_data


class InterestPeriodForm(forms.Form):

    period_start = forms.DateField()
    period_end = forms.DateField()

    def clean(self):
        cleaned_data = super().clean()
        start = cleaned_data.get('period_start')
        end = cleaned_data.get('period_end')
        if start and end and start > end:
            raise ValidationError("Period start cannot be after period end")
        return cleaned_data


class AccountClosureForm(forms.Form):

    reason = forms.CharField(required=False)
