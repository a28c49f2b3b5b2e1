from decimal import Decimal

import pytest
import requests
from django.core.exceptions import ValidationError

from loanspur import mpesa
from loanspur.models import Transaction
from loanspur.mpesa import (
    MpesaClient,
    MpesaError,
    handle_b2c_result,
    handle_b2c_timeout,
    handle_stk_callback,
    initiate_b2c_disbursement,
    initiate_stk_push,
)

pytestmark = pytest.mark.django_db


class FakeResponse:

    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code
        self.text = str(payload)

    def json(self):
        return self.payload


class FakeDaraja:
    """Records requests and answers them like the sandbox would"""

    def __init__(self):
        self.token_requests = 0
        self.posts = []
        self.reply = {'ResponseCode': '0', 'CheckoutRequestID': 'ws_CO_001', 'MerchantRequestID': 'mr-1'}

    def get(self, url, params=None, auth=None, timeout=None):
        self.token_requests += 1
        return FakeResponse({'access_token': 'token-abc', 'expires_in': '3599'})

    def post(self, url, json=None, headers=None, timeout=None):
        self.posts.append((url, json, headers))
        return FakeResponse(self.reply)


@pytest.fixture
def daraja(monkeypatch):
    fake = FakeDaraja()
    monkeypatch.setattr(mpesa.requests, 'get', fake.get)
    monkeypatch.setattr(mpesa.requests, 'post', fake.post)
    return fake


@pytest.fixture
def mpesa_tenant(tenant):
    tenant.mpesa_settings = {
        'consumer_key': 'tenant-key',
        'consumer_secret': 'tenant-secret',
        'shortcode': '600111',
        'passkey': 'pass',
        'callback_url': 'https://acme.loanspurcbs.com/mpesa/callback/',
    }
    tenant.save()
    return tenant


def stk_callback(checkout_id, result_code=0, amount=None, receipt='QKL1ABC2DE'):
    callback = {
        'MerchantRequestID': 'mr-1',
        'CheckoutRequestID': checkout_id,
        'ResultCode': result_code,
        'ResultDesc': 'The service request is processed successfully.' if result_code == 0 else 'Request cancelled by user',
    }
    if result_code == 0:
        callback['CallbackMetadata'] = {'Item': [
            {'Name': 'Amount', 'Value': amount},
            {'Name': 'MpesaReceiptNumber', 'Value': receipt},
            {'Name': 'PhoneNumber', 'Value': 254712345678},
        ]}
    return {'Body': {'stkCallback': callback}}


class TestClient:

    def test_missing_credentials(self):
        with pytest.raises(MpesaError):
            MpesaClient({'environment': 'sandbox'}).get_access_token()

    def test_token_cached_per_key(self, daraja):
        client = MpesaClient({'environment': 'sandbox', 'consumer_key': 'k', 'consumer_secret': 's'})

        assert client.get_access_token() == 'token-abc'
        assert client.get_access_token() == 'token-abc'
        assert daraja.token_requests == 1

    def test_refused_request_raises(self, daraja):
        daraja.reply = {'errorCode': '400.002.02', 'errorMessage': 'Bad Request - Invalid PhoneNumber'}
        client = MpesaClient({
            'environment': 'sandbox', 'consumer_key': 'k', 'consumer_secret': 's',
            'shortcode': '600111', 'passkey': 'p', 'callback_url': 'https://x.test/cb',
        })

        with pytest.raises(MpesaError) as excinfo:
            client.stk_push('254700000000', 10, 'LN1', 'Repayment')
        assert str(excinfo.value) == 'Bad Request - Invalid PhoneNumber'
        assert excinfo.value.response['errorCode'] == '400.002.02'

    def test_network_error_raises(self, monkeypatch):
        def boom(*args, **kwargs):
            raise requests.ConnectionError('unreachable')

        monkeypatch.setattr(mpesa.requests, 'get', boom)
        client = MpesaClient({'environment': 'production', 'consumer_key': 'k', 'consumer_secret': 's'})

        assert client.base_url == mpesa.PRODUCTION_URL
        with pytest.raises(MpesaError):
            client.get_access_token()


class TestStkPush:

    def test_initiate_for_loan(self, daraja, mpesa_tenant, active_loan, tenant_admin):
        txn = initiate_stk_push(mpesa_tenant, '0712345678', Decimal('1500'), loan=active_loan, user=tenant_admin)

        assert txn.status == 'pending'
        assert txn.transaction_type == 'loan_repayment'
        assert txn.external_transaction_id == 'ws_CO_001'
        assert txn.phone_number == '254712345678'

        url, payload, headers = daraja.posts[0]
        assert url.endswith('/mpesa/stkpush/v1/processrequest')
        assert payload['BusinessShortCode'] == '600111'
        assert payload['Amount'] == 1500
        assert payload['AccountReference'] == active_loan.loan_number[:12]
        assert headers['Authorization'] == 'Bearer token-abc'

    def test_initiate_needs_target(self, mpesa_tenant):
        with pytest.raises(ValueError):
            initiate_stk_push(mpesa_tenant, '0712345678', Decimal('100'))

    def test_initiate_for_other_tenant_refused(self, daraja, other_tenant, active_loan):
        with pytest.raises(ValueError):
            initiate_stk_push(other_tenant, '0712345678', Decimal('100'), loan=active_loan)

    def test_successful_callback_applies_repayment(self, daraja, mpesa_tenant, active_loan, tenant_admin, accounts):
        txn = initiate_stk_push(mpesa_tenant, '0712345678', Decimal('1500'), loan=active_loan, user=tenant_admin)

        settled = handle_stk_callback(stk_callback('ws_CO_001', amount=1500))

        assert settled.id == txn.id
        assert settled.status == 'completed'
        assert settled.mpesa_receipt_number == 'QKL1ABC2DE'
        active_loan.refresh_from_db()
        assert active_loan.amount_paid == Decimal('1500.00')
        payment = active_loan.payments.get()
        assert payment.payment_method == 'mpesa'
        assert payment.transaction_id == txn.id
        assert Transaction.objects.filter(loan=active_loan, transaction_type='loan_repayment').count() == 1
        assert accounts['4000'].get_balance() == active_loan.interest_paid

    def test_callback_replay_ignored(self, daraja, mpesa_tenant, active_loan, tenant_admin):
        initiate_stk_push(mpesa_tenant, '0712345678', Decimal('1500'), loan=active_loan, user=tenant_admin)
        handle_stk_callback(stk_callback('ws_CO_001', amount=1500))
        handle_stk_callback(stk_callback('ws_CO_001', amount=1500))

        assert active_loan.payments.count() == 1

    def test_cancelled_payment_marks_failed(self, daraja, mpesa_tenant, active_loan, tenant_admin):
        initiate_stk_push(mpesa_tenant, '0712345678', Decimal('1500'), loan=active_loan, user=tenant_admin)

        txn = handle_stk_callback(stk_callback('ws_CO_001', result_code=1032))

        assert txn.status == 'failed'
        assert txn.failure_reason == 'Request cancelled by user'
        assert not active_loan.payments.exists()

    def test_unappliable_payment_left_pending(self, daraja, mpesa_tenant, active_loan, tenant_admin):
        initiate_stk_push(mpesa_tenant, '0712345678', Decimal('1500'), loan=active_loan, user=tenant_admin)
        too_much = active_loan.outstanding_balance + 100

        txn = handle_stk_callback(stk_callback('ws_CO_001', amount=str(too_much)))

        assert txn.status == 'pending'
        assert txn.mpesa_receipt_number == 'QKL1ABC2DE'
        assert txn.failure_reason.startswith('Received but not applied:')
        assert not active_loan.payments.exists()

    def test_unknown_checkout(self, daraja):
        assert handle_stk_callback(stk_callback('ws_CO_unknown', amount=10)) is None
        assert handle_stk_callback({}) is None

    def test_savings_deposit_callback(self, daraja, mpesa_tenant, active_savings, tenant_admin):
        txn = initiate_stk_push(mpesa_tenant, None, Decimal('700'), savings_account=active_savings, user=tenant_admin)
        assert txn.transaction_type == 'savings_deposit'
        assert txn.phone_number == '254712345678'

        handle_stk_callback(stk_callback('ws_CO_001', amount=700))

        active_savings.refresh_from_db()
        assert active_savings.account_balance == Decimal('1700.00')


class TestB2C:

    @pytest.fixture
    def pending_disbursement(self, daraja, mpesa_tenant, make_loan, tenant_admin):
        daraja.reply = {
            'ResponseCode': '0',
            'ConversationID': 'AG_20260101_0001',
            'OriginatorConversationID': '29115-34620561-1',
        }
        loan = make_loan()
        loan.approve(tenant_admin)
        return initiate_b2c_disbursement(loan, tenant_admin)

    @staticmethod
    def result(code, description='The service request is processed successfully.'):
        return {'Result': {
            'ResultType': 0,
            'ResultCode': code,
            'ResultDesc': description,
            'ConversationID': 'AG_20260101_0001',
            'TransactionID': 'QKL9XYZ',
        }}

    def test_initiate_disburses_with_pending_transaction(self, pending_disbursement, daraja):
        txn = pending_disbursement

        assert txn.status == 'pending'
        assert txn.payment_type == 'mpesa'
        assert txn.external_transaction_id == 'AG_20260101_0001'
        assert txn.loan.status == 'active'
        assert txn.loan.disbursement_reference == '29115-34620561-1'
        assert daraja.posts[0][1]['CommandID'] == 'BusinessPayment'

    def test_initiate_requires_approved_loan(self, daraja, mpesa_tenant, make_loan, tenant_admin):
        with pytest.raises(ValueError):
            initiate_b2c_disbursement(make_loan(), tenant_admin)

    def test_nothing_sent_when_disbursement_cannot_be_booked(
        self, daraja, mpesa_tenant, make_loan, loan_product, tenant_admin
    ):
        loan_product.fund_source_account = None
        loan_product.save()
        loan = make_loan()
        loan.approve(tenant_admin)

        with pytest.raises(ValidationError):
            initiate_b2c_disbursement(loan, tenant_admin)

        assert daraja.posts == []
        assert not Transaction.objects.filter(loan=loan).exists()
        loan.refresh_from_db()
        assert loan.status == 'approved'

    def test_refused_request_rolls_back_disbursement(self, daraja, mpesa_tenant, make_loan, tenant_admin, accounts):
        daraja.reply = {'ResponseCode': '1', 'errorMessage': 'Initiator credentials are invalid'}
        loan = make_loan()
        loan.approve(tenant_admin)

        with pytest.raises(MpesaError):
            initiate_b2c_disbursement(loan, tenant_admin)

        assert len(daraja.posts) == 1
        assert not Transaction.objects.filter(loan=loan).exists()
        assert accounts['1100'].get_balance() == 0
        loan.refresh_from_db()
        assert loan.status == 'approved'
        assert not loan.schedule.exists()

    def test_success_completes(self, pending_disbursement):
        txn = handle_b2c_result(self.result(0))

        assert txn.status == 'completed'
        assert txn.mpesa_receipt_number == 'QKL9XYZ'

    def test_failure_reverses_disbursement(self, pending_disbursement, accounts):
        txn = handle_b2c_result(self.result(2001, 'The initiator information is invalid.'))

        assert txn.status == 'failed'
        loan = txn.loan
        loan.refresh_from_db()
        assert loan.status == 'approved'
        assert accounts['1100'].get_balance() == 0

    def test_timeout_leaves_pending(self, pending_disbursement):
        txn = handle_b2c_timeout({'Result': {'ConversationID': 'AG_20260101_0001'}})

        assert txn.status == 'pending'
        assert txn.failure_reason == 'Gateway queue timeout'
        assert handle_b2c_timeout({'Result': {'ConversationID': 'nope'}}) is None
