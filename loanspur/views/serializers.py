"""
JSON Serializers
================

Plain dict renderings of models for ``JsonResponse``. Decimals, dates and
UUIDs are left to ``DjangoJSONEncoder``.
"""


def _fields(instance, names):
    return {name: getattr(instance, name) for name in names}


# =============================================================================
# TENANCY & USERS
# =============================================================================

def serialize_tenant(tenant):
    data = _fields(tenant, [
        'id', 'name', 'slug', 'subdomain', 'domain', 'status', 'status_reason',
        'pricing_tier', 'billing_cycle', 'trial_ends_at', 'subscription_ends_at',
        'contact_person_name', 'contact_person_email', 'contact_person_phone',
        'country', 'time_zone', 'currency_code', 'logo_url', 'theme_colors',
    ])
    data['is_in_trial'] = tenant.is_in_trial
    return data


def serialize_domain_verification(verification):
    return _fields(verification, [
        'id', 'domain', 'verification_method', 'record_name', 'record_value',
        'is_verified', 'verified_at', 'last_checked_at', 'ssl_enabled',
    ])


def serialize_currency_settings(currency_settings):
    data = _fields(currency_settings, [
        'display_format', 'thousand_separator', 'decimal_separator', 'show_decimals',
    ])
    data['currency'] = {
        'code': currency_settings.currency.code,
        'name': currency_settings.currency.name,
        'symbol': currency_settings.currency.symbol,
        'decimal_places': currency_settings.currency.decimal_places,
    }
    return data


def serialize_office(office):
    return _fields(office, [
        'id', 'name', 'code', 'parent_id', 'opening_date', 'address', 'phone', 'is_active',
    ])


def serialize_user(user):
    data = _fields(user, [
        'id', 'email', 'first_name', 'last_name', 'role', 'tenant_id', 'office_id', 'phone', 'is_active',
    ])
    data['role_display'] = user.get_role_display()
    return data


# =============================================================================
# CLIENTS
# =============================================================================

def serialize_client(client):
    data = _fields(client, [
        'id', 'client_number', 'office_id', 'first_name', 'middle_name', 'last_name',
        'phone', 'email', 'national_id', 'date_of_birth', 'gender', 'occupation',
        'monthly_income', 'address', 'loan_officer_id', 'approval_status', 'approved_at',
        'rejection_reason', 'is_active', 'created_at',
    ])
    data['full_name'] = client.get_full_name()
    data['photo_url'] = client.photo.url if client.photo else None
    return data


def serialize_next_of_kin(kin):
    return _fields(kin, ['id', 'full_name', 'relationship', 'phone', 'address'])


def serialize_group(group):
    data = _fields(group, [
        'id', 'group_number', 'name', 'description', 'group_type', 'office_id', 'loan_officer_id',
        'registration_date', 'meeting_day', 'meeting_frequency', 'meeting_time', 'meeting_location',
        'max_members', 'status', 'approved_at', 'rejection_reason', 'closed_date', 'is_active',
        'total_members', 'active_members', 'total_savings', 'total_loans_outstanding',
    ])
    data['status_display'] = group.get_status_display()
    return data


def serialize_group_member(membership):
    data = _fields(membership, [
        'id', 'group_id', 'client_id', 'role', 'joined_date', 'is_active', 'left_date', 'exit_reason',
    ])
    data['client_name'] = membership.client.get_full_name()
    data['client_number'] = membership.client.client_number
    return data


# =============================================================================
# PRODUCTS
# =============================================================================

def serialize_fee(fee):
    return _fields(fee, [
        'id', 'name', 'fee_type', 'calculation_type', 'amount', 'min_amount', 'max_amount',
        'charge_time_type', 'income_account_id', 'is_active',
    ])


def serialize_payment_type(payment_type):
    return _fields(payment_type, ['id', 'code', 'name', 'is_cash', 'is_active'])


def serialize_loan_product(product):
    data = _fields(product, [
        'id', 'name', 'short_name', 'description', 'currency_code',
        'min_principal', 'max_principal', 'default_principal',
        'min_term', 'max_term', 'default_term',
        'default_nominal_interest_rate', 'interest_calculation_method', 'amortization_method',
        'repayment_frequency', 'repayment_strategy', 'days_in_year_type', 'accounting_type',
        'loan_portfolio_account_id', 'fund_source_account_id', 'interest_income_account_id',
        'interest_receivable_account_id', 'fee_income_account_id', 'penalty_income_account_id',
        'write_off_expense_account_id', 'is_active',
    ])
    data['fees'] = [serialize_fee(fee) for fee in product.fees.all()]
    return data


def serialize_savings_product(product):
    data = _fields(product, [
        'id', 'name', 'short_name', 'description', 'currency_code',
        'nominal_annual_interest_rate', 'interest_posting_period',
        'min_required_opening_balance', 'minimum_balance', 'accounting_method',
        'savings_reference_account_id', 'savings_control_account_id',
        'interest_on_savings_account_id', 'income_from_fees_account_id',
        'income_from_penalties_account_id', 'payment_type_mappings', 'is_active',
    ])
    data['fees'] = [serialize_fee(fee) for fee in product.fees.all()]
    return data


def serialize_fund_source_mapping(mapping):
    return _fields(mapping, [
        'id', 'product_type', 'product_id', 'payment_type_id', 'channel_name', 'account_id',
    ])


# =============================================================================
# LOANS
# =============================================================================

def serialize_loan(loan):
    data = _fields(loan, [
        'id', 'loan_number', 'client_id', 'product_id', 'office_id', 'loan_officer_id',
        'principal_amount', 'interest_rate', 'term', 'repayment_frequency',
        'interest_calculation_method', 'amortization_method', 'purpose', 'status',
        'application_date', 'approved_at', 'rejection_reason', 'disbursement_date',
        'disbursement_method', 'disbursement_reference', 'expected_maturity_date', 'closed_date',
        'total_principal', 'total_interest', 'total_fees', 'total_penalties',
        'principal_paid', 'interest_paid', 'fees_paid', 'penalties_paid',
        'amount_paid', 'outstanding_balance', 'written_off_amount', 'write_off_reason',
    ])
    data['client_name'] = loan.client.get_full_name()
    data['product_name'] = loan.product.name
    return data


def serialize_schedule_row(row):
    data = _fields(row, [
        'installment_number', 'due_date', 'principal_amount', 'interest_amount', 'fee_amount',
        'total_amount', 'paid_amount', 'outstanding_amount', 'status',
    ])
    data['is_overdue'] = row.is_overdue
    return data


def serialize_loan_payment(payment):
    return _fields(payment, [
        'id', 'amount', 'principal_amount', 'interest_amount', 'fee_amount', 'penalty_amount',
        'payment_date', 'payment_method', 'reference_number', 'journal_entry_id', 'transaction_id',
        'recorded_by_id', 'is_reversed', 'reversed_at', 'reversal_reason', 'reversal_journal_entry_id',
    ])


def serialize_loan_charge(charge):
    return _fields(charge, [
        'id', 'charge_type', 'fee_id', 'amount', 'charge_date', 'description',
        'journal_entry_id', 'is_waived', 'waived_at',
    ])


# =============================================================================
# SAVINGS
# =============================================================================

def serialize_savings_account(account):
    data = _fields(account, [
        'id', 'account_number', 'client_id', 'product_id', 'office_id',
        'account_balance', 'available_balance', 'interest_rate', 'status',
        'opened_date', 'approved_at', 'activated_date', 'closed_date', 'closure_reason',
        'total_deposits', 'total_withdrawals', 'total_interest_posted', 'total_fees_charged',
    ])
    data['client_name'] = account.client.get_full_name()
    data['product_name'] = account.product.name
    return data


def serialize_savings_transaction(txn):
    return _fields(txn, [
        'id', 'transaction_type', 'amount', 'balance_after', 'transaction_date', 'payment_method',
        'reference_number', 'description', 'journal_entry_id', 'ledger_transaction_id',
        'is_reversed', 'reversed_at', 'reversal_reason', 'reversal_of_id',
    ])


def serialize_interest_posting(posting):
    return _fields(posting, [
        'id', 'period_start', 'period_end', 'days', 'average_balance', 'interest_rate',
        'interest_amount', 'is_posted', 'posted_at',
    ])


# =============================================================================
# LEDGER & ACCOUNTING
# =============================================================================

def serialize_transaction(txn):
    return _fields(txn, [
        'id', 'transaction_id', 'external_transaction_id', 'client_id', 'loan_id', 'savings_account_id',
        'amount', 'transaction_type', 'payment_type', 'status', 'transaction_date', 'description',
        'mpesa_receipt_number', 'phone_number', 'failure_reason', 'reconciliation_status',
        'processed_by_id',
    ])


def serialize_account(account):
    return _fields(account, [
        'id', 'account_code', 'account_name', 'account_type', 'parent_account_id',
        'is_active', 'allows_manual_entries', 'description',
    ])


def serialize_journal_entry(entry, with_lines=True):
    data = _fields(entry, [
        'id', 'entry_number', 'transaction_date', 'description', 'entry_type', 'status',
        'reference_type', 'reference_id', 'office_id', 'posted_at', 'reversal_of_id',
        'reversed_at', 'reversal_reason',
    ])
    if with_lines:
        data['lines'] = [
            {
                'account_code': line.account.account_code,
                'account_name': line.account.account_name,
                'debit': line.debit_amount,
                'credit': line.credit_amount,
                'description': line.description,
            }
            for line in entry.lines.select_related('account').order_by('line_order')
        ]
    return data


def serialize_accrual(accrual):
    return _fields(accrual, [
        'id', 'accrual_type', 'description', 'amount', 'accrual_date', 'reversal_date',
        'account_id', 'contra_account_id', 'status', 'journal_entry_id', 'reversal_journal_entry_id',
    ])


def serialize_provision(provision):
    return _fields(provision, [
        'id', 'provision_type', 'description', 'calculation_method', 'base_amount', 'rate',
        'amount', 'provision_date', 'expense_account_id', 'provision_account_id', 'status',
        'journal_entry_id',
    ])


def serialize_closing_entry(closing):
    return _fields(closing, [
        'id', 'period_start', 'period_end', 'retained_earnings_account_id',
        'total_income', 'total_expenses', 'net_income', 'journal_entry_id',
    ])


def serialize_report(report):
    """Replace account instances in a report dict with their code and name"""
    if isinstance(report, dict):
        return {key: serialize_report(value) for key, value in report.items()}
    if isinstance(report, list):
        return [serialize_report(item) for item in report]
    if hasattr(report, 'account_code'):
        return {
            'id': report.id,
            'code': report.account_code,
            'name': report.account_name,
            'type': report.account_type,
        }
    return report
