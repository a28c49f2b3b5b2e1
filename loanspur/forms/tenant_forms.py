"""
Tenant & Staff Forms
====================

Forms for organisation sign-up, tenant settings, offices and staff users
"""

from django import forms
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError

from loanspur.forms.base_forms import TenantFormMixin
from loanspur.models import Office, User, Currency, TenantCurrencySettings
from loanspur.tenancy import slugify_tenant_name, DEFAULT_CURRENCIES


class TenantRegistrationForm(forms.Form):
    """Public sign-up for a new organisation"""

    organisation_name = forms.CharField(max_length=200)
    subdomain = forms.CharField(max_length=63, required=False)
    admin_email = forms.EmailField()
    admin_password = forms.CharField(min_length=8)
    admin_first_name = forms.CharField(max_length=150, required=False)
    admin_last_name = forms.CharField(max_length=150, required=False)
    contact_phone = forms.CharField(max_length=20, required=False)
    country = forms.CharField(max_length=100, required=False)
    currency_code = forms.ChoiceField(choices=[(code, code) for code in DEFAULT_CURRENCIES], required=False)

    def clean_subdomain(self):
        subdomain = self.cleaned_data.get('subdomain')
        if subdomain and slugify_tenant_name(subdomain) != subdomain.lower():
            raise ValidationError("Use only letters, digits and dashes")
        return subdomain.lower() if subdomain else subdomain

    def clean_admin_email(self):
        email = self.cleaned_data['admin_email'].lower()
        if User.objects.filter(email__iexact=email).exists():
            raise ValidationError("A user with this email already exists")
        return email

    def clean_admin_password(self):
        password = self.cleaned_data['admin_password']
        validate_password(password)
        return password


class LoginForm(forms.Form):

    email = forms.EmailField()
    password = forms.CharField()


class TenantStatusForm(forms.Form):

    reason = forms.CharField(required=False)


class DomainForm(forms.Form):

    domain = forms.CharField(max_length=255)


class CurrencySettingsForm(forms.ModelForm):

    currency_code = forms.ChoiceField(choices=[(code, code) for code in DEFAULT_CURRENCIES])

    class Meta:
        model = TenantCurrencySettings
        fields = ['display_format', 'thousand_separator', 'decimal_separator', 'show_decimals']

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        if self.instance.pk and self.instance.currency_id:
            self.fields['currency_code'].initial = self.instance.currency.code

    def clean(self):
        cleaned_data = super().clean()
        if cleaned_data.get('thousand_separator') == cleaned_data.get('decimal_separator'):
            raise ValidationError("Thousand and decimal separators must differ")
        return cleaned_data

    def save(self, commit=True):
        code = self.cleaned_data['currency_code']
        name, symbol = DEFAULT_CURRENCIES[code]
        self.instance.currency, _ = Currency.objects.get_or_create(
            code=code, defaults={'name': name, 'symbol': symbol}
        )
        return super().save(commit=commit)


class MpesaSettingsForm(forms.Form):
    """Tenant overrides of the platform's Daraja credentials"""

    environment = forms.ChoiceField(choices=[('sandbox', 'Sandbox'), ('production', 'Production')], required=False)
    consumer_key = forms.CharField(required=False)
    consumer_secret = forms.CharField(required=False)
    shortcode = forms.CharField(max_length=20, required=False)
    passkey = forms.CharField(required=False)
    callback_url = forms.URLField(required=False)
    result_url = forms.URLField(required=False)
    timeout_url = forms.URLField(required=False)
    initiator_name = forms.CharField(required=False)
    security_credential = forms.CharField(required=False)

    def clean_shortcode(self):
        shortcode = self.cleaned_data.get('shortcode')
        if shortcode and not shortcode.isdigit():
            raise ValidationError("Shortcode must be numeric")
        return shortcode

    def get_settings(self):
        return {key: value for key, value in self.cleaned_data.items() if value}


class OfficeForm(TenantFormMixin, forms.ModelForm):

    class Meta:
        model = Office
        fields = ['name', 'code', 'parent', 'opening_date', 'address', 'phone']

    def clean_code(self):
        code = self.cleaned_data['code'].strip().upper()
        queryset = Office.objects.for_tenant(self.tenant).filter(code=code)
        if self.instance and self.instance.pk:
            queryset = queryset.exclude(pk=self.instance.pk)
        if queryset.exists():
            raise ValidationError("An office with this code already exists.")
        return code


class StaffUserForm(TenantFormMixin, forms.ModelForm):
    """Invite a staff member into the tenant"""

    class Meta:
        model = User
        fields = ['email', 'first_name', 'last_name', 'role', 'office', 'phone']

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['office'].required = False
        self.fields['role'].choices = [
            choice for choice in User.ROLE_CHOICES if choice[0] != 'super_admin'
        ]

    def clean_email(self):
        email = self.cleaned_data['email'].lower()
        queryset = User.objects.filter(email__iexact=email)
        if self.instance and self.instance.pk:
            queryset = queryset.exclude(pk=self.instance.pk)
        if queryset.exists():
            raise ValidationError("A user with this email already exists")
        return email
