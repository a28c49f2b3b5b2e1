"""
Client Group Forms
==================

Forms for managing client groups, memberships, meeting collections and
bulk client import
"""

from django import forms
from django.core.exceptions import ValidationError
from decimal import Decimal

from loanspur.forms.base_forms import TenantFormMixin
from loanspur.forms.loan_forms import PAYMENT_METHOD_CHOICES
from loanspur.models import Client, ClientGroup, GroupMember, Office, User


class ClientGroupForm(TenantFormMixin, forms.ModelForm):
    """Form for creating/updating client groups"""

    class Meta:
        model = ClientGroup
        fields = [
            'name', 'description', 'group_type', 'office', 'loan_officer',
            'meeting_day', 'meeting_frequency', 'meeting_time', 'meeting_location',
            'max_members',
        ]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # left out of the data, these keep the model defaults
        self.fields['group_type'].required = False
        self.fields['meeting_frequency'].required = False
        self.fields['office'].required = False
        self.fields['office'].queryset = Office.objects.for_tenant(self.tenant).filter(is_active=True)
        self.fields['loan_officer'].required = False
        self.fields['loan_officer'].queryset = User.objects.loan_officers(self.tenant)

    def clean_name(self):
        name = (self.cleaned_data.get('name') or '').strip()
        queryset = ClientGroup.objects.for_tenant(self.tenant).filter(name__iexact=name)
        if self.instance and self.instance.pk:
            queryset = queryset.exclude(pk=self.instance.pk)
        if queryset.exists():
            raise ValidationError("A group with this name already exists.")
        return name

    def clean(self):
        cleaned_data = super().clean()

        office = cleaned_data.get('office')
        loan_officer = cleaned_data.get('loan_officer')
        if office and loan_officer and loan_officer.office_id and loan_officer.office_id != office.id:
            raise ValidationError({
                'loan_officer': "Loan officer must be from the same office as the group."
            })

        max_members = cleaned_data.get('max_members')
        if max_members is not None and max_members < 2:
            raise ValidationError({'max_members': "Maximum members must be at least 2."})

        return cleaned_data


class ClientGroupSearchForm(forms.Form):
    """Filters for the group list"""

    q = forms.CharField(required=False)
    office = forms.UUIDField(required=False)
    status = forms.ChoiceField(choices=[('', 'All')] + ClientGroup.STATUS_CHOICES, required=False)
    group_type = forms.ChoiceField(choices=[('', 'All')] + ClientGroup.GROUP_TYPE_CHOICES, required=False)


class GroupDecisionForm(forms.Form):
    """Approve or reject a pending group"""

    decision = forms.ChoiceField(choices=[('approve', 'Approve'), ('reject', 'Reject')])
    reason = forms.CharField(required=False)

    def clean(self):
        cleaned_data = super().clean()
        if cleaned_data.get('decision') == 'reject' and len(cleaned_data.get('reason', '').strip()) < 5:
            raise ValidationError({'reason': "Give a reason of at least 5 characters when rejecting."})
        return cleaned_data


class AddMemberForm(TenantFormMixin, forms.Form):
    """Add one approved client to a group"""

    client = forms.ModelChoiceField(queryset=Client.objects.filter(approval_status='approved', is_active=True))
    role = forms.ChoiceField(choices=GroupMember.ROLE_CHOICES, required=False)


class RemoveMemberForm(TenantFormMixin, forms.Form):

    client = forms.ModelChoiceField(queryset=Client.objects.all())
    reason = forms.CharField(min_length=5)


class MemberRoleForm(TenantFormMixin, forms.Form):

    client = forms.ModelChoiceField(queryset=Client.objects.all())
    role = forms.ChoiceField(choices=GroupMember.ROLE_CHOICES)


class GroupCollectionForm(forms.Form):
    """
    Header of a meeting's collection

    The per-member amounts arrive as a list next to these fields and are
    checked against ``total_amount`` when posted.
    """

    total_amount = forms.DecimalField(max_digits=15, decimal_places=2, min_value=Decimal('0.01'))
    method = forms.ChoiceField(choices=PAYMENT_METHOD_CHOICES, initial='cash')
    payment_date = forms.DateField(required=False)
    reference = forms.CharField(max_length=100, required=False)


class ClientImportForm(TenantFormMixin, forms.Form):
    """CSV or Excel file of clients, one per row"""

    ALLOWED_EXTENSIONS = ('.csv', '.xlsx')

    file = forms.FileField()
    office = forms.ModelChoiceField(queryset=Office.objects.filter(is_active=True), required=False)

    def clean_file(self):
        uploaded = self.cleaned_data['file']
        if not uploaded.name.lower().endswith(self.ALLOWED_EXTENSIONS):
            raise ValidationError("Upload a .csv or .xlsx file.")
        if uploaded.size > 5 * 1024 * 1024:
            raise ValidationError("File is larger than 5 MB.")
        return uploaded
