"""
M-Pesa (Safaricom Daraja) Integration
=====================================

STK push collects repayments and deposits from a client's phone, B2C sends
loan disbursements to it. Both are asynchronous: the request leaves a pending
``Transaction`` and the gateway's callback settles it through the normal loan
and savings operations, so the journals are posted exactly as for cash.
"""

import base64
import time
from datetime import datetime
from decimal import Decimal

import requests
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction as db_transaction
import logging

from loanspur.models import Transaction, record_transaction
from loanspur.utils.helpers import normalize_phone_number
from loanspur.utils.money import MoneyCalculator

logger = logging.getLogger(__name__)


SANDBOX_URL = 'https://sandbox.safaricom.co.ke'
PRODUCTION_URL = 'https://api.safaricom.co.ke'

# seconds shaved off a token's lifetime before it is refreshed
TOKEN_EXPIRY_MARGIN = 60

ACKNOWLEDGEMENT = {'ResultCode': 0, 'ResultDesc': 'Success'}

_token_cache = {}


class MpesaError(Exception):
    """A Daraja request failed or was refused"""

    def __init__(self, message, response=None):
        super().__init__(message)
        self.response = response or {}


class MpesaClient:
    """Thin client over the Daraja REST API"""

    def __init__(self, config):
        self.config = config
        self.base_url = SANDBOX_URL if config.get('environment') == 'sandbox' else PRODUCTION_URL
        self.timeout = settings.MPESA_REQUEST_TIMEOUT

    def get_access_token(self):
        consumer_key = self.config.get('consumer_key')
        consumer_secret = self.config.get('consumer_secret')
        if not consumer_key or not consumer_secret:
            raise MpesaError("M-Pesa credentials not configured")

        cached = _token_cache.get(consumer_key)
        if cached and cached[1] > time.monotonic():
            return cached[0]

        try:
            response = requests.get(
                f"{self.base_url}/oauth/v1/generate",
                params={'grant_type': 'client_credentials'},
                auth=(consumer_key, consumer_secret),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"M-Pesa token request failed: {e}")
            raise MpesaError(f"Could not reach M-Pesa: {e}")

        data = self._json(response)
        if response.status_code != 200 or 'access_token' not in data:
            logger.error(f"M-Pesa token refused: {response.status_code} {data}")
            raise MpesaError("M-Pesa refused the access token request", data)

        lifetime = int(data.get('expires_in') or 3599)
        _token_cache[consumer_key] = (
            data['access_token'],
            time.monotonic() + max(lifetime - TOKEN_EXPIRY_MARGIN, 0),
        )
        return data['access_token']

    @staticmethod
    def _json(response):
        try:
            return response.json()
        except ValueError:
            return {'raw': response.text}

    def _post(self, path, payload):
        token = self.get_access_token()
        try:
            response = requests.post(
                f"{self.base_url}{path}",
                json=payload,
                headers={'Authorization': f'Bearer {token}'},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"M-Pesa request to {path} failed: {e}")
            raise MpesaError(f"Could not reach M-Pesa: {e}")

        data = self._json(response)
        if response.status_code != 200 or str(data.get('ResponseCode')) != '0':
            logger.error(f"M-Pesa request to {path} refused: {response.status_code} {data}")
            message = data.get('errorMessage') or data.get('ResponseDescription') or 'M-Pesa request failed'
            raise MpesaError(message, data)
        return data

    @staticmethod
    def get_timestamp():
        return datetime.now().strftime('%Y%m%d%H%M%S')

    def get_password(self, timestamp):
        raw = f"{self.config['shortcode']}{self.config['passkey']}{timestamp}"
        return base64.b64encode(raw.encode()).decode()

    def stk_push(self, phone, amount, account_reference, description):
        """Prompt the customer's phone to pay into the shortcode"""
        timestamp = self.get_timestamp()
        payload = {
            'BusinessShortCode': self.config['shortcode'],
            'Password': self.get_password(timestamp),
            'Timestamp': timestamp,
            'TransactionType': 'CustomerPayBillOnline',
            'Amount': int(amount),
            'PartyA': phone,
            'PartyB': self.config['shortcode'],
            'PhoneNumber': phone,
            'CallBackURL': self.config['callback_url'],
            'AccountReference': account_reference[:12],
            'TransactionDesc': description[:13],
        }
        logger.info(f"STK push: {phone} | Amount: {amount} | Ref: {account_reference}")
        return self._post('/mpesa/stkpush/v1/processrequest', payload)

    def b2c_payment(self, phone, amount, remarks, occasion=''):
        """Send money from the shortcode to a customer's phone"""
        payload = {
            'InitiatorName': self.config['initiator_name'],
            'SecurityCredential': self.config['security_credential'],
            'CommandID': 'BusinessPayment',
            'Amount': int(amount),
            'PartyA': self.config['shortcode'],
            'PartyB': phone,
            'Remarks': remarks,
            'QueueTimeOutURL': self.config['timeout_url'],
            'ResultURL': self.config['result_url'],
            'Occasion': occasion,
        }
        logger.info(f"B2C payment: {phone} | Amount: {amount} | Occasion: {occasion}")
        return self._post('/mpesa/b2c/v1/paymentrequest', payload)


# =============================================================================
# OUTBOUND REQUESTS
# =============================================================================

def initiate_stk_push(tenant, phone, amount, loan=None, savings_account=None, user=None):
    """
    Ask a client to pay a loan instalment or a savings deposit from their phone

    Returns:
        Transaction: pending until the callback arrives
    """
    if loan is None and savings_account is None:
        raise ValueError("An STK push needs a loan or a savings account")

    amount = MoneyCalculator.round_money(amount)
    if amount <= 0:
        raise ValueError("Amount must be greater than zero")

    target = loan if loan is not None else savings_account
    if target.tenant_id != tenant.id:
        raise ValueError("Account does not belong to this organisation")

    phone = normalize_phone_number(phone or target.client.phone)
    reference = loan.loan_number if loan is not None else savings_account.account_number

    client = MpesaClient(tenant.get_mpesa_config())
    response = client.stk_push(phone, amount, reference, 'Repayment' if loan is not None else 'Deposit')

    txn = record_transaction(
        'STK',
        tenant=tenant,
        client=target.client,
        loan=loan,
        savings_account=savings_account,
        amount=amount,
        transaction_type='loan_repayment' if loan is not None else 'savings_deposit',
        payment_type='mpesa',
        status='pending',
        external_transaction_id=response['CheckoutRequestID'],
        phone_number=phone,
        description=f"M-Pesa payment for {reference}",
        processed_by=user,
    )
    logger.info(f"STK push pending: {txn.transaction_id} | Checkout: {response['CheckoutRequestID']}")
    return txn


def initiate_b2c_disbursement(loan, user, phone=None):
    """
    Disburse an approved loan to the client's phone

    The loan is disbursed locally with a pending transaction before the B2C
    request is sent. A refused request rolls the disbursement back; a failed
    B2C result reverses it later.
    """
    if loan.status != 'approved':
        raise ValueError(f"Cannot disburse loan with status: {loan.get_status_display()}")

    phone = normalize_phone_number(phone or loan.client.phone)
    client = MpesaClient(loan.tenant.get_mpesa_config())

    with db_transaction.atomic():
        txn = loan.disburse(user, method='mpesa', transaction_status='pending')
        response = client.b2c_payment(
            phone,
            loan.principal_amount,
            f"Loan disbursement {loan.loan_number}",
            occasion=loan.loan_number,
        )

        txn.external_transaction_id = response['ConversationID']
        txn.phone_number = phone
        txn.save(update_fields=['external_transaction_id', 'phone_number', 'updated_at'])
        loan.disbursement_reference = response.get('OriginatorConversationID', '')
        loan.save(update_fields=['disbursement_reference', 'updated_at'])

    logger.info(f"B2C disbursement pending: {loan.loan_number} | Conversation: {response['ConversationID']}")
    return txn


# =============================================================================
# CALLBACKS
# =============================================================================

def _metadata(items, key_name='Name'):
    return {item.get(key_name): item.get('Value') for item in items or []}


def _pending(external_id, transaction_type=None):
    transactions = Transaction.all_objects.select_for_update().filter(
        external_transaction_id=external_id,
        payment_type='mpesa',
    )
    if transaction_type:
        transactions = transactions.filter(transaction_type=transaction_type)
    return transactions.first()


@db_transaction.atomic
def handle_stk_callback(payload):
    """
    Settle the pending transaction named by an STK callback

    Returns:
        Transaction or None when the callback matches nothing
    """
    callback = (payload.get('Body') or {}).get('stkCallback') or {}
    checkout_id = callback.get('CheckoutRequestID')
    result_code = callback.get('ResultCode')
    logger.info(f"STK callback: {checkout_id} | ResultCode: {result_code}")

    txn = _pending(checkout_id) if checkout_id else None
    if txn is None:
        logger.warning(f"STK callback for unknown checkout request: {checkout_id}")
        return None
    if txn.status != 'pending':
        logger.info(f"STK callback ignored, {txn.transaction_id} already {txn.status}")
        return txn

    if str(result_code) != '0':
        txn.mark_failed(callback.get('ResultDesc', 'Payment not completed'), payload)
        logger.info(f"STK payment failed: {txn.transaction_id} | {callback.get('ResultDesc')}")
        return txn

    metadata = _metadata((callback.get('CallbackMetadata') or {}).get('Item'))
    receipt = str(metadata.get('MpesaReceiptNumber') or '')
    amount = MoneyCalculator.round_money(Decimal(str(metadata.get('Amount') or txn.amount)))
    phone = str(metadata.get('PhoneNumber') or txn.phone_number)

    common = {
        'method': 'mpesa',
        'reference': receipt,
        'description': f"M-Pesa {receipt}",
        'external_transaction_id': checkout_id,
        'pending_transaction': txn,
    }
    txn.phone_number = phone
    try:
        with db_transaction.atomic():
            if txn.loan_id:
                txn.loan.record_repayment(amount, txn.processed_by, **common)
            elif txn.savings_account_id:
                txn.savings_account.deposit(amount, txn.processed_by, **common)
    except (ValidationError, ValueError) as e:
        # money arrived but cannot be applied; left pending for reconciliation
        message = e.messages[0] if isinstance(e, ValidationError) else str(e)
        txn.refresh_from_db()
        txn.mpesa_receipt_number = receipt
        txn.failure_reason = f"Received but not applied: {message}"
        txn.callback_payload = payload
        txn.save(update_fields=['mpesa_receipt_number', 'failure_reason', 'callback_payload', 'updated_at'])
        logger.error(f"STK payment {txn.transaction_id} ({receipt}) could not be applied: {message}")
        return txn

    txn.mark_completed(receipt, payload)
    logger.info(f"STK payment completed: {txn.transaction_id} | Receipt: {receipt} | Amount: {amount:,.2f}")
    return txn


@db_transaction.atomic
def handle_b2c_result(payload):
    """Complete or roll back a pending B2C disbursement"""
    result = payload.get('Result') or {}
    conversation_id = result.get('ConversationID')
    result_code = result.get('ResultCode')
    logger.info(f"B2C result: {conversation_id} | ResultCode: {result_code}")

    txn = _pending(conversation_id, 'loan_disbursement') if conversation_id else None
    if txn is None:
        logger.warning(f"B2C result for unknown conversation: {conversation_id}")
        return None
    if txn.status != 'pending':
        logger.info(f"B2C result ignored, {txn.transaction_id} already {txn.status}")
        return txn

    if str(result_code) == '0':
        parameters = _metadata((result.get('ResultParameters') or {}).get('ResultParameter'), 'Key')
        receipt = result.get('TransactionID') or parameters.get('TransactionReceipt') or ''
        txn.mark_completed(str(receipt), payload)
        logger.info(f"B2C disbursement completed: {txn.transaction_id} | Receipt: {receipt}")
        return txn

    reason = result.get('ResultDesc', 'Disbursement failed')
    txn.mark_failed(reason, payload)
    if txn.loan is not None:
        txn.loan.reverse_disbursement(txn.processed_by, f"M-Pesa B2C failed: {reason}")
    logger.warning(f"B2C disbursement failed: {txn.transaction_id} | {reason}")
    return txn


def handle_b2c_timeout(payload):
    """
    Note a B2C request the gateway timed out on

    The transaction stays pending so it can be reconciled against the
    shortcode statement.
    """
    result = payload.get('Result') or payload
    conversation_id = result.get('ConversationID')
    txn = Transaction.all_objects.filter(
        external_transaction_id=conversation_id, payment_type='mpesa', status='pending'
    ).first() if conversation_id else None

    if txn is None:
        logger.warning(f"B2C timeout for unknown conversation: {conversation_id}")
        return None

    txn.failure_reason = 'Gateway queue timeout'
    txn.callback_payload = payload
    txn.save(update_fields=['failure_reason', 'callback_payload', 'updated_at'])
    logger.warning(f"B2C timeout: {txn.transaction_id} left pending for reconciliation")
    return txn
