"""
LoanspurCBS - Models Package
============================

This file imports and exposes all models for Django.
"""

from .base import (
    BaseModel,
    TenantScopedModel,
    ApprovalWorkflowMixin,
    StatusTrackingMixin,
)

from .all_models import (
    # Helpers
    generate_reference,
    record_transaction,
    settle_transaction,

    # Tenancy
    Tenant,
    DomainVerification,
    Currency,
    TenantCurrencySettings,

    # Offices & Users
    Office,
    User,
    UserManager,

    # Clients
    Client,
    NextOfKin,
    ClientGroup,
    GroupMember,

    # Products
    PaymentType,
    FeeStructure,
    LoanProduct,
    SavingsProduct,
    ProductFundSourceMapping,

    # Loans
    Loan,
    LoanSchedule,
    LoanPayment,
    LoanCharge,

    # Savings
    SavingsAccount,
    SavingsTransaction,
    SavingsInterestPosting,

    # Transaction & Accounting
    Transaction,
    ChartOfAccounts,
    JournalEntry,
    JournalEntryLine,
    Accrual,
    Provision,
    ClosingEntry,
)

__all__ = [
    # Base Classes
    'BaseModel',
    'TenantScopedModel',
    'ApprovalWorkflowMixin',
    'StatusTrackingMixin',

    'generate_reference',
    'record_transaction',
    'settle_transaction',

    # Tenancy
    'Tenant',
    'DomainVerification',
    'Currency',
    'TenantCurrencySettings',

    # Offices & Users
    'Office',
    'User',
    'UserManager',

    # Clients
    'Client',
    'NextOfKin',
    'ClientGroup',
    'GroupMember',

    # Products
    'PaymentType',
    'FeeStructure',
    'LoanProduct',
    'SavingsProduct',
    'ProductFundSourceMapping',

    # Loans
    'Loan',
    'LoanSchedule',
    'LoanPayment',
    'LoanCharge',

    # Savings
    'SavingsAccount',
    'SavingsTransaction',
    'SavingsInterestPosting',

    # Transaction & Accounting
    'Transaction',
    'ChartOfAccounts',
    'JournalEntry',
    'JournalEntryLine',
    'Accrual',
    'Provision',
    'ClosingEntry',
]
