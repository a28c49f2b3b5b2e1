"""
M-Pesa Forms
============

Staff-initiated STK push and B2C disbursement requests
"""

from django import forms
from django.core.exceptions import ValidationError
from decimal import Decimal

from loanspur.forms.base_forms import TenantFormMixin
from loanspur.models import Loan, SavingsAccount


class MpesaRequestForm(TenantFormMixin, forms.Form):
    """
    ``stk_push`` needs an amount and a loan or savings account.
    ``b2c_disbursement`` needs an approved loan. The phone defaults to the
    client's.
    """

    ACTION_CHOICES = [
        ('stk_push', 'STK Push'),
        ('b2c_disbursement', 'B2C Disbursement'),
    ]

    action = forms.ChoiceField(choices=ACTION_CHOICES)
    phone = forms.CharField(max_length=20, required=False)
    amount = forms.DecimalField(max_digits=15, decimal_places=2, min_value=Decimal('1'), required=False)
    loan = forms.ModelChoiceField(queryset=Loan.objects.all(), required=False)
    savings_account = forms.ModelChoiceField(queryset=SavingsAccount.objects.all(), required=False)

    def clean(self):
        cleaned_data = super().clean()
        action = cleaned_data.get('action')
        loan = cleaned_data.get('loan')
        savings_account = cleaned_data.get('savings_account')

        if action == 'stk_push':
            if not loan and not savings_account:
                raise ValidationError("Choose a loan or a savings account to pay into")
            if loan and savings_account:
                raise ValidationError("Choose either a loan or a savings account, not both")
            if cleaned_data.get('amount') is None:
                self.add_error('amount', "Amount is required for an STK push")

        if action == 'b2c_disbursement' and not loan:
            self.add_error('loan', "A loan is required for a disbursement")

        return cleaned_data
