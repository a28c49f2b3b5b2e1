"""
JSON API round trips through the URL conf, middleware and permission checks
"""

from decimal import Decimal

import pytest

from loanspur.models import Client, Loan, Tenant

pytestmark = pytest.mark.django_db

PASSWORD = 'S3cure-pass-123'
XLSX = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


def post(client, url, data=None):
    return client.post(url, data or {}, content_type='application/json')


class TestAuth:

    def test_login_and_me(self, client, tenant_admin):
        assert 'csrf_token' in client.get('/auth/login/').json()

        response = post(client, '/auth/login/', {'email': 'ADMIN@acme.test', 'password': PASSWORD})
        assert response.status_code == 200
        assert response.json()['user']['email'] == 'admin@acme.test'

        me = client.get('/auth/me/').json()
        assert me['tenant']['name'] == 'Acme Microfinance'

    def test_bad_password(self, client, tenant_admin):
        response = post(client, '/auth/login/', {'email': 'admin@acme.test', 'password': 'wrong-password'})

        assert response.status_code == 401
        assert response.json() == {'error': 'Invalid email or password'}

    def test_suspended_tenant_cannot_log_in(self, client, tenant, tenant_admin):
        tenant.suspend('Unpaid invoice')

        response = post(client, '/auth/login/', {'email': 'admin@acme.test', 'password': PASSWORD})
        assert response.status_code == 403


class TestTenantViews:

    def test_register(self, client):
        response = post(client, '/tenants/register/', {
            'organisation_name': 'Jamii Sacco',
            'admin_email': 'ops@jamii.test',
            'admin_password': PASSWORD,
        })

        assert response.status_code == 201
        body = response.json()
        assert body['tenant']['subdomain'] == 'jamii-sacco'
        assert body['admin']['role'] == 'tenant_admin'
        assert body['login_url'].endswith('jamii-sacco.loanspurcbs.com/auth/login/')
        assert Tenant.objects.filter(subdomain='jamii-sacco').exists()

    def test_register_validation(self, client, tenant):
        response = post(client, '/tenants/register/', {
            'organisation_name': 'Copycat',
            'admin_email': 'admin@acme.test',
            'admin_password': 'short',
        })

        assert response.status_code == 400
        errors = response.json()['errors']
        assert set(errors) == {'admin_email', 'admin_password'}

    def test_tenant_list_for_platform_admins_only(self, api, client, super_admin, tenant, other_tenant):
        assert api.get('/tenants/').status_code == 403

        client.force_login(super_admin)
        names = [row['name'] for row in client.get('/tenants/').json()['results']]
        assert names == ['Acme Microfinance', 'Other Sacco']

    def test_mpesa_secrets_masked(self, api, tenant):
        tenant.mpesa_settings = {'shortcode': '600111', 'consumer_secret': 'very-secret'}
        tenant.save()

        settings = api.get('/tenants/mpesa/').json()['mpesa_settings']
        assert settings['shortcode'] == '600111'
        assert settings['consumer_secret'] is True


class TestClientViews:

    def test_create_and_approve(self, api, office):
        response = post(api, '/clients/', {
            'office': str(office.id),
            'first_name': 'Achieng',
            'last_name': 'Odhiambo',
            'phone': '0722 111 222',
        })
        assert response.status_code == 201
        client = response.json()['client']
        assert client['phone'] == '254722111222'
        assert client['approval_status'] == 'draft'

        post(api, f"/clients/{client['id']}/submit/")
        approved = post(api, f"/clients/{client['id']}/approve/").json()['client']
        assert approved['approval_status'] == 'approved'

    def test_create_validation(self, api):
        response = post(api, '/clients/', {'first_name': 'Achieng', 'phone': '12345'})

        assert response.status_code == 400
        assert response.json()['error'] == 'Please correct the errors below'
        assert {'last_name', 'phone'} <= set(response.json()['errors'])

    def test_list_scoped_to_loan_officer(self, client, loan_officer, borrower, branch, tenant, tenant_admin):
        Client.objects.create(
            tenant=tenant, office=branch, first_name='Otieno', last_name='Ouma', phone='254722000111',
            created_by=tenant_admin,
        )
        client.force_login(loan_officer)

        body = client.get('/clients/').json()
        assert body['count'] == 1
        assert body['results'][0]['id'] == str(borrower.id)


class TestLoanViews:

    def test_full_lifecycle(self, api, borrower, loan_product):
        response = post(api, '/loans/', {
            'client': str(borrower.id),
            'product': str(loan_product.id),
            'principal_amount': '10000',
        })
        assert response.status_code == 201
        loan = response.json()['loan']
        assert loan['status'] == 'pending'
        assert loan['term'] == 12
        assert Decimal(loan['interest_rate']) == Decimal('12')

        url = f"/loans/{loan['id']}"
        assert post(api, f'{url}/approve/', {'decision': 'approve'}).json()['loan']['status'] == 'approved'

        disbursed = post(api, f'{url}/disburse/', {'method': 'cash', 'reference': 'CHQ-1'}).json()
        assert disbursed['loan']['status'] == 'active'
        assert disbursed['transaction']['transaction_type'] == 'loan_disbursement'

        repaid = post(api, f'{url}/repay/', {'amount': '1000', 'method': 'cash', 'reference': 'RCPT-9'})
        assert repaid.status_code == 201
        payment = repaid.json()['payment']
        assert Decimal(payment['amount']) == Decimal('1000')

        undone = post(api, f"{url}/payments/{payment['id']}/undo/", {'reason': 'Cheque bounced'})
        assert undone.status_code == 200
        assert undone.json()['payment']['is_reversed'] is True
        assert Decimal(undone.json()['loan']['amount_paid']) == 0

        detail = api.get(f'{url}/').json()['loan']
        assert len(detail['schedule']) == 12
        assert detail['payments'][0]['is_reversed'] is True

    def test_principal_outside_product_limits(self, api, borrower, loan_product):
        response = post(api, '/loans/', {
            'client': str(borrower.id),
            'product': str(loan_product.id),
            'principal_amount': '500',
        })

        assert response.status_code == 400
        assert 'principal_amount' in response.json()['errors']

    def test_repay_more_than_outstanding(self, api, active_loan):
        response = post(api, f'/loans/{active_loan.id}/repay/', {'amount': '999999', 'method': 'cash'})

        assert response.status_code == 400
        assert 'amount' in response.json()['errors']

    def test_cashier_cannot_approve(self, client, cashier, make_loan):
        loan = make_loan()
        client.force_login(cashier)

        response = post(client, f'/loans/{loan.id}/approve/', {'decision': 'approve'})
        assert response.status_code == 403
        assert Loan.objects.get(id=loan.id).status == 'pending'

    def test_disbursing_twice_refused(self, api, active_loan):
        response = post(api, f'/loans/{active_loan.id}/disburse/', {'method': 'cash'})

        assert response.status_code == 400
        assert 'error' in response.json()

    def test_other_tenant_loan_not_found(self, client, other_tenant, active_loan):
        client.force_login(other_tenant.users.get())

        assert client.get(f'/loans/{active_loan.id}/').status_code == 404

    def test_schedule_preview_before_disbursement(self, api, make_loan):
        body = api.get(f'/loans/{make_loan(term=6).id}/schedule/').json()

        assert body['preview'] is True
        assert len(body['schedule']) == 6

    def test_portfolio_export(self, api, active_loan):
        response = api.get('/loans/export/')

        assert response.status_code == 200
        assert response['Content-Type'] == XLSX


class TestSavingsViews:

    def test_deposit_and_withdraw(self, api, active_savings):
        url = f'/savings/{active_savings.id}'

        deposit = post(api, f'{url}/deposit/', {'amount': '500', 'method': 'cash'})
        assert deposit.status_code == 201
        assert Decimal(deposit.json()['savings_account']['account_balance']) == Decimal('1500')

        refused = post(api, f'{url}/withdraw/', {'amount': '1400', 'method': 'cash'})
        assert refused.status_code == 400

        statement = api.get(f'{url}/statement/').json()
        assert len(statement['statement']) == 2


class TestAccountingViews:

    def test_trial_balance(self, api, active_loan):
        body = api.get('/accounting/trial-balance/').json()

        assert body['is_balanced'] is True
        codes = {row['account']['code'] for row in body['trial_balance']}
        assert {'1010', '1100'} <= codes

    def test_trial_balance_excel(self, api, active_loan):
        response = api.get('/accounting/trial-balance/', {'format': 'xlsx'})

        assert response['Content-Type'] == XLSX

    def test_reports_hidden_from_loan_officer(self, client, loan_officer):
        client.force_login(loan_officer)

        assert client.get('/accounting/trial-balance/').status_code == 403


class TestMpesaCallbacks:

    @pytest.mark.parametrize('url', ['/mpesa/callback/', '/mpesa/result/', '/mpesa/timeout/'])
    def test_always_acknowledged(self, client, db, url):
        for body in ('{"Body": {}}', 'not json'):
            response = client.post(url, body, content_type='application/json')
            assert response.status_code == 200
            assert response.json() == {'ResultCode': 0, 'ResultDesc': 'Success'}
