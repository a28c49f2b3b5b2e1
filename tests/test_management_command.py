from io import StringIO

import pytest
from django.core.management import CommandError, call_command

from loanspur.models import ChartOfAccounts, PaymentType

pytestmark = pytest.mark.django_db


def run(*args):
    out = StringIO()
    call_command('init_chart_of_accounts', *args, stdout=out)
    return out.getvalue()


def test_requires_target():
    with pytest.raises(CommandError):
        run()


def test_unknown_tenant():
    with pytest.raises(CommandError):
        run('--tenant', 'nobody')


def test_recreates_missing_accounts(tenant):
    ChartOfAccounts.objects.for_tenant(tenant).filter(account_code='5300').delete()
    PaymentType.objects.for_tenant(tenant).filter(code='cheque').delete()

    output = run('--tenant', tenant.subdomain)

    assert 'Acme Microfinance: 1 accounts, 1 payment types created' in output
    assert '[SUCCESS] Chart of Accounts initialized successfully!' in output
    assert ChartOfAccounts.objects.for_tenant(tenant).filter(account_code='5300').exists()


def test_reset_keeps_accounts_with_activity(active_loan, tenant):
    output = run('--tenant', tenant.subdomain, '--reset')

    assert 'Removing unused accounts' in output
    assert ChartOfAccounts.objects.for_tenant(tenant).count() == 21
    assert active_loan.product.loan_portfolio_account.journal_lines.exists()


def test_all_tenants(tenant, other_tenant):
    output = run('--all')

    assert 'Acme Microfinance: 0 accounts' in output
    assert 'Other Sacco: 0 accounts' in output
