from decimal import Decimal

import pytest
import requests
from django.core.exceptions import ValidationError

from loanspur import tenancy
from loanspur.models import ChartOfAccounts, PaymentType, Tenant
from loanspur.tenancy import (
    build_subdomain_url,
    create_domain_verification,
    format_currency,
    get_subdomain_from_hostname,
    register_tenant,
    resolve_tenant_for_host,
    slugify_tenant_name,
    verify_domain,
)

PASSWORD = 'S3cure-pass-123'


class FakeResponse:

    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def json(self):
        return self.payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def test_slugify_tenant_name():
    assert slugify_tenant_name('Acme Microfinance') == 'acme-microfinance'
    assert slugify_tenant_name('  Jamii Sacco Ltd. ') == 'jamii-sacco-ltd'


@pytest.mark.parametrize('host, expected', [
    ('acme.loanspurcbs.com', 'acme'),
    ('acme.loanspurcbs.com:8000', 'acme'),
    ('ACME.loanspur.online', 'acme'),
    ('loanspurcbs.com', None),
    ('www.loanspurcbs.com', None),
    ('localhost:8000', None),
    ('127.0.0.1', None),
    ('a.b.loanspurcbs.com', None),
    ('acme.example.com', None),
    ('', None),
])
def test_get_subdomain_from_hostname(host, expected):
    assert get_subdomain_from_hostname(host) == expected


def test_build_subdomain_url(settings):
    settings.DEBUG = False
    assert build_subdomain_url('acme', 'auth/login/') == 'https://acme.loanspurcbs.com/auth/login/'

    settings.DEBUG = True
    assert build_subdomain_url('acme') == 'http://acme.loanspurcbs.com/'


def test_format_currency_default():
    assert format_currency(Decimal('1234.5')) == 'KES 1,234.50'
    assert format_currency(None) == 'KES 0.00'


@pytest.mark.django_db
class TestRegistration:

    def test_registration_sets_up_tenant(self, tenant, tenant_admin):
        assert tenant.subdomain == 'acme-microfinance'
        assert tenant.status == 'active'
        assert tenant.is_in_trial
        assert tenant_admin.role == 'tenant_admin'
        assert tenant_admin.tenant == tenant
        assert tenant_admin.check_password(PASSWORD)
        assert tenant.currency_settings.currency.code == 'KES'
        assert ChartOfAccounts.objects.for_tenant(tenant).count() == 21
        assert set(PaymentType.objects.for_tenant(tenant).values_list('code', flat=True)) == {
            'cash', 'bank_transfer', 'mpesa', 'cheque',
        }

    def test_duplicate_name_refused(self, tenant):
        with pytest.raises(ValidationError):
            register_tenant('Acme  Microfinance', 'other@acme.test', PASSWORD, send_welcome=False)

    def test_duplicate_email_refused(self, tenant):
        with pytest.raises(ValidationError):
            register_tenant('Acme Two', 'ADMIN@acme.test', PASSWORD, send_welcome=False)

    def test_welcome_email_sent_after_commit(self, db, monkeypatch, django_capture_on_commit_callbacks):
        sent = []
        monkeypatch.setattr(
            'loanspur.email_service.send_tenant_welcome_email',
            lambda tenant, user: sent.append((tenant.subdomain, user.email)),
        )
        with django_capture_on_commit_callbacks(execute=True):
            register_tenant('Jamii Sacco', 'ops@jamii.test', PASSWORD)

        assert sent == [('jamii-sacco', 'ops@jamii.test')]

    def test_status_transitions(self, tenant):
        tenant.suspend('Unpaid invoice')
        assert tenant.status == 'suspended'
        assert not tenant.is_operational

        with pytest.raises(ValueError):
            tenant.suspend()

        tenant.activate()
        assert tenant.status == 'active'

        tenant.cancel('Closed business')
        assert tenant.subscription_ends_at is not None
        with pytest.raises(ValueError):
            tenant.activate()

    def test_mpesa_config_overrides(self, tenant, settings):
        settings.MPESA_SHORTCODE = '174379'
        tenant.mpesa_settings = {'shortcode': '600000', 'consumer_key': 'tenant-key'}

        config = tenant.get_mpesa_config()
        assert config['shortcode'] == '600000'
        assert config['consumer_key'] == 'tenant-key'
        assert config['environment'] == 'sandbox'

    def test_tenant_currency_format(self, tenant):
        currency_settings = tenant.currency_settings
        assert currency_settings.format_amount(Decimal('1234567.891')) == 'KSh 1,234,567.89'

        currency_settings.display_format = 'code_after'
        currency_settings.thousand_separator = ' '
        currency_settings.decimal_separator = ','
        assert currency_settings.format_amount(Decimal('-1500')) == '-1 500,00 KES'

        currency_settings.show_decimals = False
        currency_settings.display_format = 'symbol_after'
        assert currency_settings.format_amount(Decimal('999.5')) == '1 000 KSh'


@pytest.mark.django_db
class TestResolution:

    def test_resolve_by_subdomain(self, tenant):
        assert resolve_tenant_for_host('acme-microfinance.loanspurcbs.com') == tenant

    def test_inactive_tenant_only_when_asked(self, tenant):
        tenant.suspend('Audit')
        host = 'acme-microfinance.loanspurcbs.com'

        assert resolve_tenant_for_host(host) is None
        assert resolve_tenant_for_host(host, active_only=False) == tenant

    def test_resolve_by_verified_domain(self, tenant):
        verification = create_domain_verification(tenant, 'loans.acme.co.ke')
        assert resolve_tenant_for_host('loans.acme.co.ke') is None

        verification.is_verified = True
        verification.save()
        assert resolve_tenant_for_host('loans.acme.co.ke:443') == tenant

    def test_unknown_host(self, tenant):
        assert resolve_tenant_for_host('nobody.loanspurcbs.com') is None
        assert resolve_tenant_for_host('localhost') is None


@pytest.mark.django_db
class TestCustomDomains:

    def test_challenge_values(self, tenant):
        verification = create_domain_verification(tenant, ' Loans.Acme.co.ke. ')

        assert verification.domain == 'loans.acme.co.ke'
        assert verification.record_name == '_tenant-verification.loans.acme.co.ke'
        assert verification.record_value.startswith(f'tenant-verify-{tenant.id}-')
        assert not verification.is_verified

    @pytest.mark.parametrize('domain', ['not a domain', 'localhost', 'acme.loanspurcbs.com', 'loanspur.online'])
    def test_invalid_or_platform_domains(self, tenant, domain):
        with pytest.raises(ValidationError):
            create_domain_verification(tenant, domain)

    def test_domain_taken_by_other_tenant(self, tenant, other_tenant):
        other_tenant.domain = 'loans.acme.co.ke'
        other_tenant.save()

        with pytest.raises(ValidationError):
            create_domain_verification(tenant, 'loans.acme.co.ke')

    def test_verify_with_matching_txt_record(self, tenant, monkeypatch):
        verification = create_domain_verification(tenant, 'loans.acme.co.ke')
        calls = []

        def fake_get(url, params=None, headers=None, timeout=None):
            calls.append(params)
            return FakeResponse({'Answer': [
                {'type': 16, 'data': '"v=spf1 -all"'},
                {'type': 16, 'data': f'"{verification.record_value}"'},
            ]})

        monkeypatch.setattr(tenancy.requests, 'get', fake_get)

        assert verify_domain(verification) is True
        assert calls == [{'name': '_tenant-verification.loans.acme.co.ke', 'type': 'TXT'}]
        tenant.refresh_from_db()
        assert tenant.domain == 'loans.acme.co.ke'
        assert Tenant.objects.get(id=tenant.id).domain_verifications.get().is_verified

    def test_verify_without_record(self, tenant, monkeypatch):
        verification = create_domain_verification(tenant, 'loans.acme.co.ke')
        monkeypatch.setattr(tenancy.requests, 'get', lambda *a, **kw: FakeResponse({'Status': 3}))

        assert verify_domain(verification) is False
        assert verification.last_checked_at is not None
        assert not verification.is_verified

    def test_verify_when_resolver_fails(self, tenant, monkeypatch):
        verification = create_domain_verification(tenant, 'loans.acme.co.ke')
        monkeypatch.setattr(tenancy.requests, 'get', lambda *a, **kw: FakeResponse({}, status_code=503))

        assert verify_domain(verification) is False
