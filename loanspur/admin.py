from django.contrib import admin
from .models import (
    Tenant, DomainVerification, Currency, TenantCurrencySettings,
    Office, User, Client, NextOfKin, ClientGroup, GroupMember,
    PaymentType, FeeStructure, LoanProduct, SavingsProduct, ProductFundSourceMapping,
    Loan, LoanSchedule, LoanPayment, LoanCharge,
    SavingsAccount, SavingsTransaction, SavingsInterestPosting,
    Transaction, ChartOfAccounts, JournalEntry, JournalEntryLine,
    Accrual, Provision, ClosingEntry,
)

# ==============================================================================
# TENANCY
# ==============================================================================

@admin.register(Tenant)
class TenantAdmin(admin.ModelAdmin):
    list_display = ['name', 'subdomain', 'domain', 'status', 'pricing_tier',
                   'trial_ends_at', 'created_at']
    list_filter = ['status', 'pricing_tier', 'billing_cycle', 'country']
    search_fields = ['name', 'subdomain', 'domain', 'contact_person_email']
    readonly_fields = ['slug', 'created_at', 'updated_at']

    fieldsets = (
        ('Organisation', {
            'fields': ('name', 'slug', 'subdomain', 'domain', 'country',
                      'time_zone', 'currency_code')
        }),
        ('Subscription', {
            'fields': ('status', 'status_reason', 'pricing_tier', 'billing_cycle',
                      'trial_ends_at', 'subscription_ends_at')
        }),
        ('Contact', {
            'fields': ('contact_person_name', 'contact_person_email', 'contact_person_phone')
        }),
        ('Branding & Integrations', {
            'fields': ('logo_url', 'theme_colors', 'mpesa_settings'),
            'classes': ('collapse',)
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )


@admin.register(DomainVerification)
class DomainVerificationAdmin(admin.ModelAdmin):
    list_display = ['domain', 'tenant', 'is_verified', 'verified_at', 'last_checked_at']
    list_filter = ['is_verified', 'ssl_enabled']
    search_fields = ['domain', 'tenant__name']
    readonly_fields = ['record_name', 'record_value', 'verified_at', 'last_checked_at']


@admin.register(Currency)
class CurrencyAdmin(admin.ModelAdmin):
    list_display = ['code', 'name', 'symbol', 'decimal_places', 'is_active']


@admin.register(TenantCurrencySettings)
class TenantCurrencySettingsAdmin(admin.ModelAdmin):
    list_display = ['tenant', 'currency', 'display_format', 'show_decimals']


# ==============================================================================
# OFFICES, USERS & CLIENTS
# ==============================================================================

@admin.register(Office)
class OfficeAdmin(admin.ModelAdmin):
    list_display = ['code', 'name', 'tenant', 'parent', 'is_active', 'created_at']
    list_filter = ['is_active', 'tenant']
    search_fields = ['code', 'name']
    readonly_fields = ['created_at', 'updated_at']


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ['email', 'get_full_name', 'role', 'tenant', 'office', 'is_active']
    list_filter = ['role', 'is_active', 'tenant']
    search_fields = ['email', 'first_name', 'last_name', 'phone']
    readonly_fields = ['date_joined', 'last_login']

    fieldsets = (
        ('Authentication', {
            'fields': ('email', 'password')
        }),
        ('Personal Info', {
            'fields': ('first_name', 'last_name', 'phone')
        }),
        ('Organisation', {
            'fields': ('tenant', 'role', 'office')
        }),
        ('Permissions', {
            'fields': ('is_active', 'is_staff', 'is_superuser')
        }),
        ('Timestamps', {
            'fields': ('date_joined', 'last_login'),
            'classes': ('collapse',)
        }),
    )


class NextOfKinInline(admin.TabularInline):
    model = NextOfKin
    extra = 0


@admin.register(Client)
class ClientAdmin(admin.ModelAdmin):
    list_display = ['client_number', 'get_full_name', 'phone', 'office',
                   'loan_officer', 'approval_status', 'is_active']
    list_filter = ['approval_status', 'is_active', 'tenant', 'office']
    search_fields = ['client_number', 'first_name', 'last_name', 'phone', 'national_id']
    readonly_fields = ['client_number', 'created_at', 'updated_at']
    inlines = [NextOfKinInline]


class GroupMemberInline(admin.TabularInline):
    model = GroupMember
    extra = 0
    fields = ['client', 'role', 'joined_date', 'is_active', 'left_date', 'exit_reason']
    readonly_fields = ['client', 'joined_date', 'left_date']

    def has_add_permission(self, request, obj=None):
        # members join through ClientGroup.add_member
        return False


@admin.register(ClientGroup)
class ClientGroupAdmin(admin.ModelAdmin):
    list_display = ['group_number', 'name', 'office', 'loan_officer', 'status',
                   'total_members', 'total_loans_outstanding']
    list_filter = ['status', 'group_type', 'tenant', 'office']
    search_fields = ['group_number', 'name']
    readonly_fields = ['group_number', 'total_members', 'active_members', 'total_savings',
                       'total_loans_outstanding', 'created_at', 'updated_at']
    inlines = [GroupMemberInline]


# ==============================================================================
# PRODUCTS
# ==============================================================================

@admin.register(PaymentType)
class PaymentTypeAdmin(admin.ModelAdmin):
    list_display = ['code', 'name', 'tenant', 'is_cash', 'is_active']
    list_filter = ['is_cash', 'is_active', 'tenant']


@admin.register(FeeStructure)
class FeeStructureAdmin(admin.ModelAdmin):
    list_display = ['name', 'tenant', 'fee_type', 'calculation_type', 'amount',
                   'charge_time_type', 'is_active']
    list_filter = ['fee_type', 'calculation_type', 'charge_time_type', 'is_active']
    search_fields = ['name']


@admin.register(LoanProduct)
class LoanProductAdmin(admin.ModelAdmin):
    list_display = ['name', 'short_name', 'tenant', 'default_nominal_interest_rate',
                   'interest_calculation_method', 'accounting_type', 'is_active']
    list_filter = ['interest_calculation_method', 'amortization_method',
                  'repayment_frequency', 'accounting_type', 'is_active']
    search_fields = ['name', 'short_name']
    filter_horizontal = ['fees']

    fieldsets = (
        ('Basic Information', {
            'fields': ('tenant', 'name', 'short_name', 'description', 'currency_code', 'is_active')
        }),
        ('Terms', {
            'fields': ('min_principal', 'max_principal', 'default_principal',
                      'min_term', 'max_term', 'default_term')
        }),
        ('Interest & Repayment', {
            'fields': ('default_nominal_interest_rate', 'interest_calculation_method',
                      'amortization_method', 'repayment_frequency', 'repayment_strategy',
                      'days_in_year_type')
        }),
        ('Accounting', {
            'fields': ('accounting_type', 'loan_portfolio_account', 'fund_source_account',
                      'interest_income_account', 'interest_receivable_account',
                      'fee_income_account', 'penalty_income_account',
                      'write_off_expense_account')
        }),
        ('Fees', {
            'fields': ('fees',)
        }),
    )


@admin.register(SavingsProduct)
class SavingsProductAdmin(admin.ModelAdmin):
    list_display = ['name', 'short_name', 'tenant', 'nominal_annual_interest_rate',
                   'interest_posting_period', 'accounting_method', 'is_active']
    list_filter = ['interest_posting_period', 'accounting_method', 'is_active']
    search_fields = ['name', 'short_name']
    filter_horizontal = ['fees']


@admin.register(ProductFundSourceMapping)
class ProductFundSourceMappingAdmin(admin.ModelAdmin):
    list_display = ['product_type', 'product_id', 'payment_type', 'channel_name', 'account']
    list_filter = ['product_type', 'tenant']


# ==============================================================================
# LOANS
# ==============================================================================

class LoanScheduleInline(admin.TabularInline):
    model = LoanSchedule
    extra = 0
    readonly_fields = ['installment_number', 'due_date', 'principal_amount', 'interest_amount',
                      'fee_amount', 'total_amount', 'paid_amount', 'outstanding_amount', 'status']
    can_delete = False


@admin.register(Loan)
class LoanAdmin(admin.ModelAdmin):
    list_display = ['loan_number', 'client', 'product', 'principal_amount',
                   'outstanding_balance', 'status', 'disbursement_date']
    list_filter = ['status', 'repayment_frequency', 'tenant', 'office']
    search_fields = ['loan_number', 'client__first_name', 'client__last_name',
                    'client__client_number']
    readonly_fields = ['loan_number', 'total_principal', 'total_interest', 'total_fees',
                      'total_penalties', 'principal_paid', 'interest_paid', 'fees_paid',
                      'penalties_paid', 'amount_paid', 'outstanding_balance']
    date_hierarchy = 'application_date'
    inlines = [LoanScheduleInline]

    fieldsets = (
        ('Loan', {
            'fields': ('loan_number', 'client', 'product', 'office', 'loan_officer', 'purpose')
        }),
        ('Terms', {
            'fields': ('principal_amount', 'interest_rate', 'term', 'repayment_frequency',
                      'interest_calculation_method', 'amortization_method')
        }),
        ('Status & Dates', {
            'fields': ('status', 'application_date', 'approved_at', 'disbursement_date',
                      'expected_maturity_date', 'closed_date', 'written_off_at')
        }),
        ('Balances', {
            'fields': ('total_principal', 'total_interest', 'total_fees', 'total_penalties',
                      'principal_paid', 'interest_paid', 'fees_paid', 'penalties_paid',
                      'amount_paid', 'outstanding_balance')
        }),
    )


@admin.register(LoanPayment)
class LoanPaymentAdmin(admin.ModelAdmin):
    list_display = ['loan', 'amount', 'payment_date', 'payment_method', 'is_reversed']
    list_filter = ['payment_method', 'is_reversed']
    search_fields = ['loan__loan_number', 'reference_number']
    readonly_fields = ['principal_amount', 'interest_amount', 'fee_amount', 'penalty_amount',
                      'journal_entry', 'reversal_journal_entry', 'reversed_at']


@admin.register(LoanCharge)
class LoanChargeAdmin(admin.ModelAdmin):
    list_display = ['loan', 'charge_type', 'amount', 'charge_date', 'is_waived']
    list_filter = ['charge_type', 'is_waived']
    search_fields = ['loan__loan_number', 'description']


# ==============================================================================
# SAVINGS
# ==============================================================================

@admin.register(SavingsAccount)
class SavingsAccountAdmin(admin.ModelAdmin):
    list_display = ['account_number', 'client', 'product', 'account_balance',
                   'available_balance', 'status', 'opened_date']
    list_filter = ['status', 'product', 'tenant']
    search_fields = ['account_number', 'client__first_name', 'client__last_name']
    readonly_fields = ['account_number', 'account_balance', 'available_balance',
                      'total_deposits', 'total_withdrawals', 'total_interest_posted',
                      'total_fees_charged']


@admin.register(SavingsTransaction)
class SavingsTransactionAdmin(admin.ModelAdmin):
    list_display = ['savings_account', 'transaction_type', 'amount', 'balance_after',
                   'transaction_date', 'is_reversed']
    list_filter = ['transaction_type', 'is_reversed']
    search_fields = ['savings_account__account_number', 'reference_number']
    date_hierarchy = 'transaction_date'


@admin.register(SavingsInterestPosting)
class SavingsInterestPostingAdmin(admin.ModelAdmin):
    list_display = ['savings_account', 'period_start', 'period_end', 'interest_amount', 'is_posted']
    list_filter = ['is_posted']


# ==============================================================================
# TRANSACTION & ACCOUNTING
# ==============================================================================

@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = ['transaction_id', 'transaction_type', 'amount', 'client',
                   'payment_type', 'status', 'transaction_date']
    list_filter = ['transaction_type', 'status', 'payment_type', 'reconciliation_status', 'tenant']
    search_fields = ['transaction_id', 'mpesa_receipt_number', 'external_transaction_id',
                    'client__first_name', 'client__last_name']
    readonly_fields = ['transaction_id', 'callback_payload', 'created_at']
    date_hierarchy = 'transaction_date'


@admin.register(ChartOfAccounts)
class ChartOfAccountsAdmin(admin.ModelAdmin):
    list_display = ['account_code', 'account_name', 'account_type', 'tenant',
                   'is_active', 'allows_manual_entries']
    list_filter = ['account_type', 'is_active', 'tenant']
    search_fields = ['account_code', 'account_name']


class JournalEntryLineInline(admin.TabularInline):
    model = JournalEntryLine
    extra = 0
    readonly_fields = ['account', 'debit_amount', 'credit_amount', 'description']
    can_delete = False


@admin.register(JournalEntry)
class JournalEntryAdmin(admin.ModelAdmin):
    list_display = ['entry_number', 'entry_type', 'transaction_date', 'total_debit',
                   'total_credit', 'status', 'tenant']
    list_filter = ['entry_type', 'status', 'tenant']
    search_fields = ['entry_number', 'description', 'reference_type']
    readonly_fields = ['entry_number', 'total_debit', 'total_credit', 'posted_at',
                      'reversed_at', 'created_at']
    date_hierarchy = 'transaction_date'
    inlines = [JournalEntryLineInline]


@admin.register(Accrual)
class AccrualAdmin(admin.ModelAdmin):
    list_display = ['accrual_type', 'amount', 'accrual_date', 'reversal_date', 'status']
    list_filter = ['accrual_type', 'status']
    search_fields = ['description']


@admin.register(Provision)
class ProvisionAdmin(admin.ModelAdmin):
    list_display = ['provision_type', 'calculation_method', 'rate', 'base_amount',
                   'amount', 'provision_date', 'status']
    list_filter = ['provision_type', 'status']


@admin.register(ClosingEntry)
class ClosingEntryAdmin(admin.ModelAdmin):
    list_display = ['period_start', 'period_end', 'total_income', 'total_expenses',
                   'net_income', 'closed_by']
    list_filter = ['tenant']
