"""
Loan Forms
==========

Forms for loan application, approval, disbursement, repayment posting,
charges and write-off
"""

from django import forms
from django.core.exceptions import ValidationError
from decimal import Decimal

from loanspur.forms.base_forms import TenantFormMixin
from loanspur.models import Loan, LoanCharge, LoanProduct, Client, FeeStructure


PAYMENT_METHOD_CHOICES = [
    ('cash', 'Cash'),
    ('bank_transfer', 'Bank Transfer'),
    ('mpesa', 'M-Pesa'),
    ('cheque', 'Cheque'),
]


class LoanApplicationForm(TenantFormMixin, forms.ModelForm):
    """
    Form for creating a new loan application

    Rate, frequency and methods fall back to the product's defaults.
    """

    class Meta:
        model = Loan
        fields = [
            'client', 'product', 'principal_amount', 'term', 'interest_rate',
            'repayment_frequency', 'interest_calculation_method', 'amortization_method',
            'purpose', 'loan_officer',
        ]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['client'].queryset = self.fields['client'].queryset.filter(
            is_active=True, approval_status='approved'
        )
        self.fields['product'].queryset = self.fields['product'].queryset.filter(is_active=True)
        for name in ('interest_rate', 'repayment_frequency', 'interest_calculation_method',
                     'amortization_method', 'loan_officer', 'term'):
            self.fields[name].required = False

    def clean(self):
        cleaned_data = super().clean()
        product = cleaned_data.get('product')
        principal_amount = cleaned_data.get('principal_amount')

        if not product:
            return cleaned_data

        if not cleaned_data.get('term'):
            cleaned_data['term'] = product.default_term
        if principal_amount is not None:
            try:
                product.validate_principal(principal_amount)
            except ValidationError as e:
                self.add_error('principal_amount', e)
        try:
            product.validate_term(cleaned_data['term'])
        except ValidationError as e:
            self.add_error('term', e)

        interest_rate = cleaned_data.get('interest_rate')
        if interest_rate is not None and interest_rate < 0:
            self.add_error('interest_rate', "Interest rate cannot be negative")

        client = cleaned_data.get('client')
        if client and not cleaned_data.get('loan_officer'):
            cleaned_data['loan_officer'] = client.loan_officer

        return cleaned_data

    def _post_clean(self):
        # the model fills blank choices from the product on save
        product = self.cleaned_data.get('product')
        if product:
            for name in ('repayment_frequency', 'interest_calculation_method', 'amortization_method'):
                if not self.cleaned_data.get(name):
                    self.cleaned_data[name] = getattr(product, name)
            if self.cleaned_data.get('interest_rate') is None:
                self.cleaned_data['interest_rate'] = product.default_nominal_interest_rate
        super()._post_clean()


class LoanApprovalForm(forms.Form):
    """Form for approving or rejecting loan applications"""

    DECISION_CHOICES = [
        ('approve', 'Approve Loan'),
        ('reject', 'Reject Loan'),
    ]

    decision = forms.ChoiceField(choices=DECISION_CHOICES)
    approved_amount = forms.DecimalField(max_digits=15, decimal_places=2, required=False)
    notes = forms.CharField(required=False)

    def __init__(self, *args, **kwargs):
        self.loan = kwargs.pop('loan', None)
        super().__init__(*args, **kwargs)

    def clean(self):
        cleaned_data = super().clean()
        decision = cleaned_data.get('decision')

        if not self.loan:
            raise ValidationError("Loan instance is required")

        if self.loan.status != 'pending':
            raise ValidationError(
                f"Cannot process loan with status: {self.loan.get_status_display()}"
            )

        if decision == 'reject':
            notes = cleaned_data.get('notes')
            if not notes or len(notes.strip()) < 10:
                self.add_error('notes', "Please provide a reason for rejection (minimum 10 characters)")

        approved_amount = cleaned_data.get('approved_amount')
        if decision == 'approve' and approved_amount is not None:
            try:
                self.loan.product.validate_principal(approved_amount)
            except ValidationError as e:
                self.add_error('approved_amount', e)

        return cleaned_data


class LoanDisbursementForm(forms.Form):
    """Form for disbursing approved loans"""

    method = forms.ChoiceField(choices=PAYMENT_METHOD_CHOICES, initial='cash')
    reference = forms.CharField(max_length=100, required=False)
    disbursement_date = forms.DateField(required=False)
    phone = forms.CharField(max_length=20, required=False, help_text="M-Pesa only, defaults to the client's phone")


class LoanRepaymentForm(forms.Form):
    """Repayment posting against an active loan"""

    amount = forms.DecimalField(max_digits=15, decimal_places=2, min_value=Decimal('0.01'))
    payment_date = forms.DateField(required=False)
    method = forms.ChoiceField(choices=PAYMENT_METHOD_CHOICES, initial='cash')
    reference = forms.CharField(max_length=100, required=False)
    description = forms.CharField(required=False)

    def __init__(self, *args, **kwargs):
        self.loan = kwargs.pop('loan', None)
        super().__init__(*args, **kwargs)

    def clean_amount(self):
        amount = self.cleaned_data['amount']
        if self.loan and amount > self.loan.outstanding_balance:
            raise ValidationError(
                f"Amount exceeds outstanding balance of {self.loan.outstanding_balance:,.2f}"
            )
        return amount


class ReversalForm(forms.Form):
    """Reason for undoing a posted payment or transaction"""

    reason = forms.CharField(min_length=5)


class LoanChargeForm(TenantFormMixin, forms.Form):
    """
    Apply a fee, penalty or interest charge

    Either an amount or a configured fee must be given. The fee's amount is
    calculated on the outstanding balance when no amount is entered.
    """

    charge_type = forms.ChoiceField(choices=LoanCharge.CHARGE_TYPE_CHOICES)
    amount = forms.DecimalField(max_digits=15, decimal_places=2, min_value=Decimal('0.01'), required=False)
    fee = forms.ModelChoiceField(queryset=FeeStructure.objects.filter(is_active=True), required=False)
    charge_date = forms.DateField(required=False)
    description = forms.CharField(max_length=255, required=False)

    def clean(self):
        cleaned_data = super().clean()
        if cleaned_data.get('amount') is None and cleaned_data.get('fee') is None:
            raise ValidationError("Enter an amount or choose a fee")
        return cleaned_data


class LoanWriteOffForm(forms.Form):

    reason = forms.CharField(min_length=10)


class LoanSearchForm(TenantFormMixin, forms.Form):
    """Filters for the loan list"""

    q = forms.CharField(required=False)
    status = forms.ChoiceField(choices=[('', 'All')] + Loan.STATUS_CHOICES, required=False)
    product = forms.ModelChoiceField(queryset=LoanProduct.objects.all(), required=False)
    client = forms.ModelChoiceField(queryset=Client.objects.all(), required=False)
