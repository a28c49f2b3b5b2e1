from .auth_views import (
    login_view,
    logout_view,
    me_view,
)

from .dashboard import (
    dashboard_view,
)

from .tenant_views import (
    tenant_register,
    tenant_current,
    tenant_list,
    tenant_suspend,
    tenant_activate,
    tenant_cancel,
    domain_list,
    domain_verify,
    currency_settings,
    mpesa_settings,
    office_list,
    office_update,
    user_list,
    user_deactivate,
)

from .client_views import (
    client_list,
    client_detail,
    client_update,
    client_delete,
    client_submit,
    client_approve,
    client_reject,
    client_activate,
    client_deactivate,
    client_transfer,
    client_assign_officer,
    client_next_of_kin,
    client_import,
)

from .group_views import (
    group_list,
    group_detail,
    group_update,
    group_approve,
    group_close,
    group_members,
    group_member_remove,
    group_member_role,
    group_collection_sheet,
    group_collect,
)

from .product_views import (
    loan_product_list,
    loan_product_detail,
    loan_product_update,
    loan_product_activate,
    loan_product_deactivate,
    savings_product_list,
    savings_product_detail,
    savings_product_update,
    savings_product_activate,
    savings_product_deactivate,
    fee_list,
    fee_update,
    payment_type_list,
    fund_source_mapping_list,
    fund_source_mapping_delete,
)

from .loan_views import (
    loan_list,
    loan_detail,
    loan_approve,
    loan_withdraw,
    loan_disburse,
    loan_repay,
    loan_payment_undo,
    loan_charge,
    loan_charge_waive,
    loan_write_off,
    loan_schedule,
    loan_statement,
    loan_portfolio_export,
)

from .savings_views import (
    savings_list,
    savings_detail,
    savings_approve,
    savings_activate,
    savings_close,
    savings_deposit,
    savings_withdraw,
    savings_charge_fee,
    savings_transaction_undo,
    savings_calculate_interest,
    savings_post_interest,
    savings_statement,
)

from .accounting_views import (
    chart_of_accounts,
    chart_account_update,
    journal_list,
    journal_detail,
    journal_post,
    journal_reverse,
    trial_balance,
    income_statement,
    balance_sheet,
    general_ledger,
    accrual_list,
    accrual_post,
    accrual_reverse,
    provision_list,
    provision_post,
    close_period,
)

from .transaction_views import (
    transaction_list,
    transaction_detail,
    transaction_reconcile,
)

from .mpesa_views import (
    mpesa_request,
    mpesa_callback,
    mpesa_result,
    mpesa_timeout,
)

__all__ = [
    # Auth Views
    "login_view",
    "logout_view",
    "me_view",
    # Dashboard
    "dashboard_view",
    # Tenant Views
    "tenant_register",
    "tenant_current",
    "tenant_list",
    "tenant_suspend",
    "tenant_activate",
    "tenant_cancel",
    "domain_list",
    "domain_verify",
    "currency_settings",
    "mpesa_settings",
    "office_list",
    "office_update",
    "user_list",
    "user_deactivate",
    # Client Views
    "client_list",
    "client_detail",
    "client_update",
    "client_delete",
    "client_submit",
    "client_approve",
    "client_reject",
    "client_activate",
    "client_deactivate",
    "client_transfer",
    "client_assign_officer",
    "client_next_of_kin",
    "client_import",
    # Group Views
    "group_list",
    "group_detail",
    "group_update",
    "group_approve",
    "group_close",
    "group_members",
    "group_member_remove",
    "group_member_role",
    "group_collection_sheet",
    "group_collect",
    # Product Views
    "loan_product_list",
    "loan_product_detail",
    "loan_product_update",
    "loan_product_activate",
    "loan_product_deactivate",
    "savings_product_list",
    "savings_product_detail",
    "savings_product_update",
    "savings_product_activate",
    "savings_product_deactivate",
    "fee_list",
    "fee_update",
    "payment_type_list",
    "fund_source_mapping_list",
    "fund_source_mapping_delete",
    # Loan Views
    "loan_list",
    "loan_detail",
    "loan_approve",
    "loan_withdraw",
    "loan_disburse",
    "loan_repay",
    "loan_payment_undo",
    "loan_charge",
    "loan_charge_waive",
    "loan_write_off",
    "loan_schedule",
    "loan_statement",
    "loan_portfolio_export",
    # Savings Views
    "savings_list",
    "savings_detail",
    "savings_approve",
    "savings_activate",
    "savings_close",
    "savings_deposit",
    "savings_withdraw",
    "savings_charge_fee",
    "savings_transaction_undo",
    "savings_calculate_interest",
    "savings_post_interest",
    "savings_statement",
    # Accounting Views
    "chart_of_accounts",
    "chart_account_update",
    "journal_list",
    "journal_detail",
    "journal_post",
    "journal_reverse",
    "trial_balance",
    "income_statement",
    "balance_sheet",
    "general_ledger",
    "accrual_list",
    "accrual_post",
    "accrual_reverse",
    "provision_list",
    "provision_post",
    "close_period",
    # Transaction Views
    "transaction_list",
    "transaction_detail",
    "transaction_reconcile",
    # M-Pesa Views
    "mpesa_request",
    "mpesa_callback",
    "mpesa_result",
    "mpesa_timeout",
]
