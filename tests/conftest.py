"""
Shared fixtures: a registered tenant with its staff, an approved borrower,
loan and savings products wired to the default chart of accounts
"""

from decimal import Decimal

import pytest

from loanspur import mpesa
from loanspur.models import (
    ChartOfAccounts, Client, Loan, LoanProduct, Office, SavingsAccount, SavingsProduct, User,
)
from loanspur.tenancy import register_tenant

PASSWORD = 'S3cure-pass-123'


@pytest.fixture(autouse=True)
def clear_mpesa_tokens():
    mpesa._token_cache.clear()
    yield
    mpesa._token_cache.clear()


@pytest.fixture
def registered(db):
    return register_tenant(
        'Acme Microfinance',
        'admin@acme.test',
        PASSWORD,
        admin_first_name='Amina',
        admin_last_name='Otieno',
        send_welcome=False,
    )


@pytest.fixture
def tenant(registered):
    return registered[0]


@pytest.fixture
def tenant_admin(registered):
    return registered[1]


@pytest.fixture
def other_tenant(db):
    tenant, _ = register_tenant('Other Sacco', 'admin@other.test', PASSWORD, send_welcome=False)
    return tenant


@pytest.fixture
def office(tenant):
    return Office.objects.create(tenant=tenant, name='Head Office', code='HQ')


@pytest.fixture
def branch(tenant):
    return Office.objects.create(tenant=tenant, name='Kisumu Branch', code='KSM')


def _staff(tenant, office, email, role):
    return User.objects.create_user(email, PASSWORD, tenant=tenant, office=office, role=role)


@pytest.fixture
def loan_officer(tenant, office):
    return _staff(tenant, office, 'officer@acme.test', 'loan_officer')


@pytest.fixture
def accountant(tenant, office):
    return _staff(tenant, office, 'accounts@acme.test', 'accountant')


@pytest.fixture
def cashier(tenant, office):
    return _staff(tenant, office, 'cashier@acme.test', 'cashier')


@pytest.fixture
def super_admin(db):
    return User.objects.create_superuser('root@loanspurcbs.com', PASSWORD)


@pytest.fixture
def accounts(tenant):
    return {account.account_code: account for account in ChartOfAccounts.objects.for_tenant(tenant)}


@pytest.fixture
def borrower(tenant, office, loan_officer, tenant_admin):
    return Client.objects.create(
        tenant=tenant,
        office=office,
        first_name='Wanjiru',
        last_name='Kamau',
        phone='0712345678',
        national_id='12345678',
        loan_officer=loan_officer,
        created_by=tenant_admin,
        approval_status='approved',
    )


@pytest.fixture
def loan_product(tenant, accounts):
    return LoanProduct.objects.create(
        tenant=tenant,
        name='Biashara Loan',
        short_name='BL',
        min_principal=Decimal('1000'),
        max_principal=Decimal('100000'),
        default_principal=Decimal('10000'),
        min_term=1,
        max_term=24,
        default_term=12,
        default_nominal_interest_rate=Decimal('12'),
        accounting_type='cash',
        loan_portfolio_account=accounts['1100'],
        fund_source_account=accounts['1010'],
        interest_income_account=accounts['4000'],
        interest_receivable_account=accounts['1110'],
        fee_income_account=accounts['4100'],
        penalty_income_account=accounts['4200'],
        write_off_expense_account=accounts['5100'],
    )


@pytest.fixture
def make_loan(tenant, office, borrower, loan_product, loan_officer, tenant_admin):
    def _make(principal=Decimal('10000'), term=12, product=None, client=None, **extra):
        return Loan.objects.create(
            tenant=tenant,
            client=client or borrower,
            product=product or loan_product,
            office=office,
            principal_amount=principal,
            term=term,
            loan_officer=loan_officer,
            created_by=tenant_admin,
            **extra
        )
    return _make


@pytest.fixture
def active_loan(make_loan, tenant_admin):
    loan = make_loan()
    loan.approve(tenant_admin)
    loan.disburse(tenant_admin, method='cash')
    return loan


@pytest.fixture
def savings_product(tenant, accounts):
    return SavingsProduct.objects.create(
        tenant=tenant,
        name='Jijenge Savings',
        short_name='JS',
        nominal_annual_interest_rate=Decimal('6'),
        min_required_opening_balance=Decimal('500'),
        minimum_balance=Decimal('200'),
        savings_reference_account=accounts['1010'],
        savings_control_account=accounts['2000'],
        interest_on_savings_account=accounts['5000'],
        income_from_fees_account=accounts['4300'],
        income_from_penalties_account=accounts['4200'],
    )


@pytest.fixture
def savings_account(tenant, office, borrower, savings_product, tenant_admin):
    return SavingsAccount.objects.create(
        tenant=tenant,
        client=borrower,
        product=savings_product,
        office=office,
        created_by=tenant_admin,
    )


@pytest.fixture
def active_savings(savings_account, tenant_admin):
    savings_account.approve(tenant_admin)
    savings_account.activate(tenant_admin, opening_deposit=Decimal('1000'))
    return savings_account


@pytest.fixture
def api(client, tenant_admin):
    client.force_login(tenant_admin)
    return client
