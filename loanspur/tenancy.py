"""
Tenant Registration, Resolution and Domains
===========================================

A tenant is reached on ``<subdomain>.<base domain>`` or on a custom domain
it has proven control of through a DNS TXT record.
"""

import re
import time
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP

import requests
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction as db_transaction
from django.utils import timezone
import logging

logger = logging.getLogger(__name__)


IGNORED_HOSTS = ('localhost', '127.0.0.1')

DEFAULT_CURRENCIES = {
    'KES': ('Kenyan Shilling', 'KSh'),
    'UGX': ('Ugandan Shilling', 'USh'),
    'TZS': ('Tanzanian Shilling', 'TSh'),
    'RWF': ('Rwandan Franc', 'FRw'),
    'USD': ('US Dollar', '$'),
}

VERIFICATION_PREFIX = '_tenant-verification'


# =============================================================================
# NAMES & HOSTS
# =============================================================================

def slugify_tenant_name(name):
    """'Acme Micro-Finance Ltd.' -> 'acme-micro-finance-ltd'"""
    slug = re.sub(r'[^a-z0-9]+', '-', (name or '').lower())
    return slug.strip('-')


def get_base_domains():
    return [domain.lower() for domain in settings.LOANSPUR_BASE_DOMAINS]


def get_subdomain_from_hostname(host):
    """
    Tenant subdomain encoded in a Host header, or None

    ``acme.loanspurcbs.com:8000`` -> ``acme``. Bare base domains, ``www``,
    localhost and loopback addresses carry no tenant.
    """
    if not host:
        return None
    hostname = host.split(':')[0].strip().lower().rstrip('.')
    if not hostname or hostname in IGNORED_HOSTS or hostname.startswith('www.'):
        return None

    for base in get_base_domains():
        if hostname == base:
            return None
        suffix = f'.{base}'
        if hostname.endswith(suffix):
            subdomain = hostname[:-len(suffix)]
            if subdomain and '.' not in subdomain and subdomain != 'www':
                return subdomain
            return None
    return None


def resolve_tenant_for_host(host, active_only=True):
    """Tenant served on ``host`` (subdomain first, then verified custom domain)"""
    from loanspur.models import Tenant, DomainVerification

    subdomain = get_subdomain_from_hostname(host)
    if subdomain:
        tenants = Tenant.objects.filter(subdomain=subdomain)
        if active_only:
            tenants = tenants.filter(status='active')
        tenant = tenants.first()
        if tenant:
            return tenant

    if not host:
        return None
    hostname = host.split(':')[0].strip().lower()
    if hostname in IGNORED_HOSTS or hostname in get_base_domains():
        return None

    verifications = DomainVerification.objects.filter(
        domain=hostname,
        is_verified=True,
        tenant__deleted_at__isnull=True,
    ).select_related('tenant')
    if active_only:
        verifications = verifications.filter(tenant__status='active')
    verification = verifications.first()
    return verification.tenant if verification else None


def build_subdomain_url(subdomain, path='/', base=None):
    base = base or get_base_domains()[0]
    scheme = 'https' if not settings.DEBUG else 'http'
    if not path.startswith('/'):
        path = f'/{path}'
    return f"{scheme}://{subdomain}.{base}{path}"


# =============================================================================
# REGISTRATION
# =============================================================================

@db_transaction.atomic
def register_tenant(
    name,
    admin_email,
    admin_password,
    admin_first_name='',
    admin_last_name='',
    subdomain=None,
    contact_phone='',
    country='Kenya',
    currency_code='KES',
    send_welcome=True,
):
    """
    Create a tenant with its admin user, currency settings, default chart of
    accounts and payment types

    Returns:
        tuple: (tenant, admin_user)
    """
    from loanspur.models import Tenant, User, Currency, TenantCurrencySettings
    from loanspur.utils.accounting_helpers import seed_chart_of_accounts, seed_payment_types

    slug = slugify_tenant_name(subdomain or name)
    if not slug:
        raise ValidationError("Organisation name must contain letters or digits")
    if Tenant.all_objects.filter(subdomain=slug).exists() or Tenant.all_objects.filter(slug=slug).exists():
        raise ValidationError(f"The name '{slug}' is already taken. Please choose another.")
    if User.objects.filter(email__iexact=admin_email).exists():
        raise ValidationError("A user with this email already exists")

    tenant = Tenant.objects.create(
        name=name,
        slug=slug,
        subdomain=slug,
        status='active',
        pricing_tier='starter',
        billing_cycle='monthly',
        trial_ends_at=timezone.now() + timedelta(days=settings.LOANSPUR_TRIAL_DAYS),
        contact_person_name=f"{admin_first_name} {admin_last_name}".strip(),
        contact_person_email=admin_email,
        contact_person_phone=contact_phone,
        country=country,
        currency_code=currency_code,
    )

    admin_user = User.objects.create_user(
        email=admin_email,
        password=admin_password,
        first_name=admin_first_name,
        last_name=admin_last_name,
        tenant=tenant,
        role='tenant_admin',
    )

    currency_name, symbol = DEFAULT_CURRENCIES.get(currency_code, (currency_code, currency_code))
    currency, _ = Currency.objects.get_or_create(
        code=currency_code,
        defaults={'name': currency_name, 'symbol': symbol},
    )
    TenantCurrencySettings.objects.create(tenant=tenant, currency=currency)

    seed_chart_of_accounts(tenant)
    seed_payment_types(tenant)

    if send_welcome:
        from loanspur.email_service import send_tenant_welcome_email
        db_transaction.on_commit(lambda: send_tenant_welcome_email(tenant, admin_user))

    logger.info(f"Tenant registered: {tenant.name} ({tenant.subdomain}) | Admin: {admin_email}")
    return tenant, admin_user


# =============================================================================
# CUSTOM DOMAINS
# =============================================================================

def create_domain_verification(tenant, domain):
    """Issue the TXT challenge a tenant must publish for ``domain``"""
    from loanspur.models import DomainVerification, Tenant

    domain = (domain or '').strip().lower().rstrip('.')
    if not re.match(r'^(?=.{4,253}$)([a-z0-9-]+\.)+[a-z]{2,}$', domain):
        raise ValidationError(f"'{domain}' is not a valid domain name")
    if any(domain == base or domain.endswith(f'.{base}') for base in get_base_domains()):
        raise ValidationError("Platform domains cannot be registered as custom domains")
    if Tenant.objects.filter(domain=domain).exclude(id=tenant.id).exists() or \
            DomainVerification.objects.filter(domain=domain, is_verified=True).exclude(tenant=tenant).exists():
        raise ValidationError("This domain is already in use by another organisation")

    verification = DomainVerification.objects.create(
        tenant=tenant,
        domain=domain,
        record_name=f"{VERIFICATION_PREFIX}.{domain}",
        record_value=f"tenant-verify-{tenant.id}-{int(time.time() * 1000)}",
    )
    logger.info(f"Domain verification issued: {domain} for {tenant.subdomain}")
    return verification


def lookup_txt_records(name):
    """TXT record values for ``name`` via DNS-over-HTTPS"""
    response = requests.get(
        settings.LOANSPUR_DNS_RESOLVER_URL,
        params={'name': name, 'type': 'TXT'},
        headers={'Accept': 'application/dns-json'},
        timeout=10,
    )
    response.raise_for_status()
    answers = response.json().get('Answer') or []
    return [answer.get('data', '').strip('"') for answer in answers if answer.get('type') == 16]


def verify_domain(verification):
    """
    Check the TXT record and, when the expected value is present, mark the
    domain verified and attach it to the tenant

    Returns:
        bool: whether the domain is verified
    """
    verification.last_checked_at = timezone.now()
    try:
        values = lookup_txt_records(verification.record_name)
    except requests.RequestException as e:
        logger.error(f"DNS lookup failed for {verification.record_name}: {e}")
        verification.save(update_fields=['last_checked_at', 'updated_at'])
        return False

    if verification.record_value not in values:
        verification.save(update_fields=['last_checked_at', 'updated_at'])
        logger.info(f"Domain not yet verified: {verification.domain}")
        return False

    with db_transaction.atomic():
        verification.is_verified = True
        verification.verified_at = timezone.now()
        verification.save(update_fields=['is_verified', 'verified_at', 'last_checked_at', 'updated_at'])
        tenant = verification.tenant
        tenant.domain = verification.domain
        tenant.save(update_fields=['domain', 'updated_at'])

    logger.info(f"Domain verified: {verification.domain} -> {verification.tenant.subdomain}")
    return True


# =============================================================================
# CURRENCY
# =============================================================================

def format_currency(amount, currency_settings=None):
    """
    Render an amount the way a tenant asked for

    Without settings the result is ``KES 1,234.56``.
    """
    amount = Decimal(str(amount or 0))
    if currency_settings is None:
        return f"KES {amount:,.2f}"

    currency = currency_settings.currency
    places = currency.decimal_places if currency_settings.show_decimals else 0
    quantum = Decimal(1).scaleb(-places)
    rounded = amount.quantize(quantum, rounding=ROUND_HALF_UP)

    sign = '-' if rounded < 0 else ''
    text = f"{abs(rounded):,.{places}f}"
    whole, _, fraction = text.partition('.')
    whole = whole.replace(',', currency_settings.thousand_separator)
    number = f"{whole}{currency_settings.decimal_separator}{fraction}" if fraction else whole

    display = currency_settings.display_format
    if display == 'symbol_after':
        return f"{sign}{number} {currency.symbol}"
    if display == 'code_before':
        return f"{sign}{currency.code} {number}"
    if display == 'code_after':
        return f"{sign}{number} {currency.code}"
    return f"{sign}{currency.symbol} {number}"
