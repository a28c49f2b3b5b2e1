"""
Product Forms
=============

Forms for loan products, savings products, fees and payment channels
"""

from django import forms
from django.core.exceptions import ValidationError

from loanspur.forms.base_forms import TenantFormMixin
from loanspur.models import (
    LoanProduct, SavingsProduct, FeeStructure, PaymentType, ProductFundSourceMapping
)


LOAN_GL_FIELDS = {
    'loan_portfolio_account': 'asset',
    'fund_source_account': 'asset',
    'interest_income_account': 'income',
    'interest_receivable_account': 'asset',
    'fee_income_account': 'income',
    'penalty_income_account': 'income',
    'write_off_expense_account': 'expense',
}

SAVINGS_GL_FIELDS = {
    'savings_reference_account': 'asset',
    'savings_control_account': 'liability',
    'interest_on_savings_account': 'expense',
    'income_from_fees_account': 'income',
    'income_from_penalties_account': 'income',
}


def _check_account_types(form, mapping):
    for name, expected in mapping.items():
        account = form.cleaned_data.get(name)
        if account and account.account_type != expected:
            form.add_error(name, f"Expected an account of type '{expected}'")


class LoanProductForm(TenantFormMixin, forms.ModelForm):

    class Meta:
        model = LoanProduct
        fields = [
            'name', 'short_name', 'description', 'currency_code',
            'min_principal', 'max_principal', 'default_principal',
            'min_term', 'max_term', 'default_term',
            'default_nominal_interest_rate', 'interest_calculation_method', 'amortization_method',
            'repayment_frequency', 'repayment_strategy', 'days_in_year_type', 'accounting_type',
            *LOAN_GL_FIELDS,
            'fees',
        ]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['fees'].queryset = self.fields['fees'].queryset.filter(
            fee_type__in=['loan', 'penalty'], is_active=True
        )

    def clean(self):
        cleaned_data = super().clean()
        _check_account_types(self, LOAN_GL_FIELDS)

        accounting_type = cleaned_data.get('accounting_type')
        if accounting_type in ('cash', 'accrual'):
            required = ['loan_portfolio_account', 'fund_source_account', 'interest_income_account']
            if accounting_type == 'accrual':
                required.append('interest_receivable_account')
            for name in required:
                if not cleaned_data.get(name):
                    self.add_error(name, f"Required for {accounting_type} accounting")

        return cleaned_data


class SavingsProductForm(TenantFormMixin, forms.ModelForm):

    class Meta:
        model = SavingsProduct
        fields = [
            'name', 'short_name', 'description', 'currency_code',
            'nominal_annual_interest_rate', 'interest_posting_period',
            'min_required_opening_balance', 'minimum_balance', 'accounting_method',
            *SAVINGS_GL_FIELDS,
            'payment_type_mappings', 'fees',
        ]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['fees'].queryset = self.fields['fees'].queryset.exclude(fee_type='loan').filter(is_active=True)
        self.fields['payment_type_mappings'].required = False

    def clean(self):
        cleaned_data = super().clean()
        _check_account_types(self, SAVINGS_GL_FIELDS)

        if cleaned_data.get('accounting_method') == 'cash':
            for name in ('savings_reference_account', 'savings_control_account'):
                if not cleaned_data.get(name):
                    self.add_error(name, "Required for cash accounting")

        for name in ('min_required_opening_balance', 'minimum_balance'):
            if (cleaned_data.get(name) or 0) < 0:
                self.add_error(name, "Cannot be negative")

        return cleaned_data


class FeeStructureForm(TenantFormMixin, forms.ModelForm):

    class Meta:
        model = FeeStructure
        fields = [
            'name', 'fee_type', 'calculation_type', 'amount', 'min_amount', 'max_amount',
            'charge_time_type', 'income_account',
        ]

    def clean(self):
        cleaned_data = super().clean()
        min_amount = cleaned_data.get('min_amount')
        max_amount = cleaned_data.get('max_amount')

        if min_amount is not None and max_amount is not None and min_amount > max_amount:
            raise ValidationError("Minimum amount cannot exceed the maximum")

        if cleaned_data.get('calculation_type') == 'percentage' and (cleaned_data.get('amount') or 0) > 100:
            self.add_error('amount', "Percentage cannot exceed 100")

        account = cleaned_data.get('income_account')
        if account and account.account_type != 'income':
            self.add_error('income_account', "Must be an income account")

        return cleaned_data


class PaymentTypeForm(TenantFormMixin, forms.ModelForm):

    class Meta:
        model = PaymentType
        fields = ['code', 'name', 'is_cash']

    def clean_code(self):
        code = self.cleaned_data['code'].strip().lower()
        queryset = PaymentType.objects.for_tenant(self.tenant).filter(code__iexact=code)
        if self.instance and self.instance.pk:
            queryset = queryset.exclude(pk=self.instance.pk)
        if queryset.exists():
            raise ValidationError("A payment type with this code already exists.")
        return code


class FundSourceMappingForm(TenantFormMixin, forms.ModelForm):
    """Route one payment channel of a product to its own GL account"""

    class Meta:
        model = ProductFundSourceMapping
        fields = ['product_type', 'product_id', 'payment_type', 'channel_name', 'account']

    def clean(self):
        cleaned_data = super().clean()
        if not cleaned_data.get('payment_type') and not cleaned_data.get('channel_name'):
            raise ValidationError("Choose a payment type or enter a channel name")

        product_type = cleaned_data.get('product_type')
        product_id = cleaned_data.get('product_id')
        if product_type and product_id:
            model = LoanProduct if product_type == 'loan' else SavingsProduct
            if not model.objects.for_tenant(self.tenant).filter(id=product_id).exists():
                self.add_error('product_id', "Product not found")

        return cleaned_data
