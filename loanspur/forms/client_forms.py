"""
Client Forms
============

Forms for client registration, updates, transfers and officer assignment
"""

from django import forms
from django.core.exceptions import ValidationError
from django.utils import timezone

from loanspur.forms.base_forms import TenantFormMixin
from loanspur.models import Client, NextOfKin, Office, User
from loanspur.utils.helpers import normalize_phone_number


class ClientForm(TenantFormMixin, forms.ModelForm):
    """
    Form for creating or updating a client

    The office defaults to the creating user's office when left empty.
    """

    class Meta:
        model = Client
        fields = [
            'office', 'first_name', 'middle_name', 'last_name', 'phone', 'email',
            'national_id', 'date_of_birth', 'gender', 'occupation', 'monthly_income',
            'address', 'loan_officer',
        ]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['office'].required = False
        self.fields['loan_officer'].required = False
        self.fields['loan_officer'].queryset = User.objects.loan_officers(self.tenant)

    def clean_phone(self):
        phone = normalize_phone_number(self.cleaned_data.get('phone'))
        if not phone.startswith('254') or len(phone) != 12:
            raise ValidationError("Enter a valid Kenyan mobile number, e.g. 0712345678")
        return phone

    def clean_date_of_birth(self):
        """Client must be at least 18 years old"""
        dob = self.cleaned_data.get('date_of_birth')

        if dob:
            today = timezone.localdate()
            age = today.year - dob.year - ((today.month, today.day) < (dob.month, dob.day))

            if age < 18:
                raise ValidationError("Client must be at least 18 years old.")

            if age > 100:
                raise ValidationError("Please enter a valid date of birth.")

        return dob

    def clean_national_id(self):
        national_id = (self.cleaned_data.get('national_id') or '').strip()
        if not national_id:
            return national_id

        queryset = Client.objects.for_tenant(self.tenant).filter(national_id=national_id)
        if self.instance and self.instance.pk:
            queryset = queryset.exclude(pk=self.instance.pk)
        if queryset.exists():
            raise ValidationError("A client with this national ID already exists.")
        return national_id


class NextOfKinForm(forms.ModelForm):

    class Meta:
        model = NextOfKin
        fields = ['full_name', 'relationship', 'phone', 'address']

    def clean_phone(self):
        return normalize_phone_number(self.cleaned_data.get('phone'))


class ClientSearchForm(forms.Form):
    """Filters for the client list"""

    q = forms.CharField(required=False)
    office = forms.UUIDField(required=False)
    approval_status = forms.ChoiceField(
        choices=[('', 'All')] + Client.APPROVAL_STATUS_CHOICES,
        required=False,
    )
    is_active = forms.NullBooleanField(required=False)


class ClientTransferForm(TenantFormMixin, forms.Form):
    """Move a client to another office"""

    office = forms.ModelChoiceField(queryset=Office.objects.filter(is_active=True))
    reason = forms.CharField(required=False)


class AssignLoanOfficerForm(TenantFormMixin, forms.Form):

    loan_officer = forms.ModelChoiceField(
        queryset=User.objects.filter(role='loan_officer', is_active=True)
    )


class RejectionForm(forms.Form):
    """Reason required when turning something down"""

    reason = forms.CharField(min_length=5)
