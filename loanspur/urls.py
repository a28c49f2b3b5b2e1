from django.urls import path

from loanspur.views import (
    login_view,
    logout_view,
    me_view,
    dashboard_view,
)

from loanspur.views.tenant_views import (
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

from loanspur.views.client_views import (
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

from loanspur.views.group_views import (
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

from loanspur.views.product_views import (
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

from loanspur.views.loan_views import (
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

from loanspur.views.savings_views import (
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

from loanspur.views.accounting_views import (
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

from loanspur.views.transaction_views import (
    transaction_list,
    transaction_detail,
    transaction_reconcile,
)

from loanspur.views.mpesa_views import (
    mpesa_request,
    mpesa_callback,
    mpesa_result,
    mpesa_timeout,
)

app_name = "loanspur"

urlpatterns = [
    # =========================================================================
    # AUTHENTICATION
    # =========================================================================
    path('auth/login/', login_view, name='login'),
    path('auth/logout/', logout_view, name='logout'),
    path('auth/me/', me_view, name='me'),

    # =========================================================================
    # DASHBOARD
    # =========================================================================
    path('', dashboard_view, name='dashboard'),
    path('dashboard/', dashboard_view, name='dashboard_alt'),

    # =========================================================================
    # TENANTS
    # =========================================================================
    path('tenants/register/', tenant_register, name='tenant_register'),
    path('tenants/current/', tenant_current, name='tenant_current'),
    path('tenants/', tenant_list, name='tenant_list'),
    path('tenants/<uuid:tenant_id>/suspend/', tenant_suspend, name='tenant_suspend'),
    path('tenants/<uuid:tenant_id>/activate/', tenant_activate, name='tenant_activate'),
    path('tenants/<uuid:tenant_id>/cancel/', tenant_cancel, name='tenant_cancel'),
    path('tenants/domains/', domain_list, name='domain_list'),
    path('tenants/domains/<uuid:verification_id>/verify/', domain_verify, name='domain_verify'),
    path('tenants/currency/', currency_settings, name='currency_settings'),
    path('tenants/mpesa/', mpesa_settings, name='mpesa_settings'),
    path('tenants/offices/', office_list, name='office_list'),
    path('tenants/offices/<uuid:office_id>/', office_update, name='office_update'),
    path('tenants/users/', user_list, name='user_list'),
    path('tenants/users/<uuid:user_id>/deactivate/', user_deactivate, name='user_deactivate'),

    # =========================================================================
    # CLIENTS
    # =========================================================================
    path('clients/', client_list, name='client_list'),
    path('clients/import/', client_import, name='client_import'),
    path('clients/<uuid:client_id>/', client_detail, name='client_detail'),
    path('clients/<uuid:client_id>/edit/', client_update, name='client_update'),
    path('clients/<uuid:client_id>/delete/', client_delete, name='client_delete'),
    path('clients/<uuid:client_id>/submit/', client_submit, name='client_submit'),
    path('clients/<uuid:client_id>/approve/', client_approve, name='client_approve'),
    path('clients/<uuid:client_id>/reject/', client_reject, name='client_reject'),
    path('clients/<uuid:client_id>/activate/', client_activate, name='client_activate'),
    path('clients/<uuid:client_id>/deactivate/', client_deactivate, name='client_deactivate'),
    path('clients/<uuid:client_id>/transfer/', client_transfer, name='client_transfer'),
    path('clients/<uuid:client_id>/assign-officer/', client_assign_officer, name='client_assign_officer'),
    path('clients/<uuid:client_id>/next-of-kin/', client_next_of_kin, name='client_next_of_kin'),

    # =========================================================================
    # CLIENT GROUPS
    # =========================================================================
    path('groups/', group_list, name='group_list'),
    path('groups/<uuid:group_id>/', group_detail, name='group_detail'),
    path('groups/<uuid:group_id>/edit/', group_update, name='group_update'),
    path('groups/<uuid:group_id>/approve/', group_approve, name='group_approve'),
    path('groups/<uuid:group_id>/close/', group_close, name='group_close'),
    path('groups/<uuid:group_id>/members/', group_members, name='group_members'),
    path('groups/<uuid:group_id>/members/remove/', group_member_remove, name='group_member_remove'),
    path('groups/<uuid:group_id>/members/role/', group_member_role, name='group_member_role'),
    path('groups/<uuid:group_id>/collection-sheet/', group_collection_sheet, name='group_collection_sheet'),
    path('groups/<uuid:group_id>/collect/', group_collect, name='group_collect'),

    # =========================================================================
    # LOAN PRODUCTS
    # =========================================================================
    path('products/loan/', loan_product_list, name='loan_product_list'),
    path('products/loan/<uuid:product_id>/', loan_product_detail, name='loan_product_detail'),
    path('products/loan/<uuid:product_id>/edit/', loan_product_update, name='loan_product_update'),
    path('products/loan/<uuid:product_id>/activate/', loan_product_activate, name='loan_product_activate'),
    path('products/loan/<uuid:product_id>/deactivate/', loan_product_deactivate, name='loan_product_deactivate'),

    # =========================================================================
    # SAVINGS PRODUCTS
    # =========================================================================
    path('products/savings/', savings_product_list, name='savings_product_list'),
    path('products/savings/<uuid:product_id>/', savings_product_detail, name='savings_product_detail'),
    path('products/savings/<uuid:product_id>/edit/', savings_product_update, name='savings_product_update'),
    path('products/savings/<uuid:product_id>/activate/', savings_product_activate, name='savings_product_activate'),
    path('products/savings/<uuid:product_id>/deactivate/', savings_product_deactivate, name='savings_product_deactivate'),

    # =========================================================================
    # FEES, PAYMENT TYPES & FUND SOURCES
    # =========================================================================
    path('products/fees/', fee_list, name='fee_list'),
    path('products/fees/<uuid:fee_id>/', fee_update, name='fee_update'),
    path('products/payment-types/', payment_type_list, name='payment_type_list'),
    path('products/fund-sources/', fund_source_mapping_list, name='fund_source_mapping_list'),
    path('products/fund-sources/<uuid:mapping_id>/delete/', fund_source_mapping_delete, name='fund_source_mapping_delete'),

    # =========================================================================
    # LOANS
    # =========================================================================
    path('loans/', loan_list, name='loan_list'),
    path('loans/export/', loan_portfolio_export, name='loan_portfolio_export'),
    path('loans/<uuid:loan_id>/', loan_detail, name='loan_detail'),
    path('loans/<uuid:loan_id>/approve/', loan_approve, name='loan_approve'),
    path('loans/<uuid:loan_id>/withdraw/', loan_withdraw, name='loan_withdraw'),
    path('loans/<uuid:loan_id>/disburse/', loan_disburse, name='loan_disburse'),
    path('loans/<uuid:loan_id>/repay/', loan_repay, name='loan_repay'),
    path('loans/<uuid:loan_id>/payments/<uuid:payment_id>/undo/', loan_payment_undo, name='loan_payment_undo'),
    path('loans/<uuid:loan_id>/charges/', loan_charge, name='loan_charge'),
    path('loans/<uuid:loan_id>/charges/<uuid:charge_id>/waive/', loan_charge_waive, name='loan_charge_waive'),
    path('loans/<uuid:loan_id>/write-off/', loan_write_off, name='loan_write_off'),
    path('loans/<uuid:loan_id>/schedule/', loan_schedule, name='loan_schedule'),
    path('loans/<uuid:loan_id>/statement/', loan_statement, name='loan_statement'),

    # =========================================================================
    # SAVINGS ACCOUNTS
    # =========================================================================
    path('savings/', savings_list, name='savings_list'),
    path('savings/<uuid:account_id>/', savings_detail, name='savings_detail'),
    path('savings/<uuid:account_id>/approve/', savings_approve, name='savings_approve'),
    path('savings/<uuid:account_id>/activate/', savings_activate, name='savings_activate'),
    path('savings/<uuid:account_id>/close/', savings_close, name='savings_close'),
    path('savings/<uuid:account_id>/deposit/', savings_deposit, name='savings_deposit'),
    path('savings/<uuid:account_id>/withdraw/', savings_withdraw, name='savings_withdraw'),
    path('savings/<uuid:account_id>/charge-fee/', savings_charge_fee, name='savings_charge_fee'),
    path('savings/<uuid:account_id>/transactions/<uuid:transaction_id>/undo/', savings_transaction_undo, name='savings_transaction_undo'),
    path('savings/<uuid:account_id>/interest/', savings_calculate_interest, name='savings_calculate_interest'),
    path('savings/<uuid:account_id>/interest/<uuid:posting_id>/post/', savings_post_interest, name='savings_post_interest'),
    path('savings/<uuid:account_id>/statement/', savings_statement, name='savings_statement'),

    # =========================================================================
    # ACCOUNTING
    # =========================================================================
    path('accounting/accounts/', chart_of_accounts, name='chart_of_accounts'),
    path('accounting/accounts/<uuid:account_id>/', chart_account_update, name='chart_account_update'),
    path('accounting/journals/', journal_list, name='journal_list'),
    path('accounting/journals/<uuid:entry_id>/', journal_detail, name='journal_detail'),
    path('accounting/journals/<uuid:entry_id>/post/', journal_post, name='journal_post'),
    path('accounting/journals/<uuid:entry_id>/reverse/', journal_reverse, name='journal_reverse'),
    path('accounting/trial-balance/', trial_balance, name='trial_balance'),
    path('accounting/income-statement/', income_statement, name='income_statement'),
    path('accounting/balance-sheet/', balance_sheet, name='balance_sheet'),
    path('accounting/general-ledger/', general_ledger, name='general_ledger'),
    path('accounting/accruals/', accrual_list, name='accrual_list'),
    path('accounting/accruals/<uuid:accrual_id>/post/', accrual_post, name='accrual_post'),
    path('accounting/accruals/<uuid:accrual_id>/reverse/', accrual_reverse, name='accrual_reverse'),
    path('accounting/provisions/', provision_list, name='provision_list'),
    path('accounting/provisions/<uuid:provision_id>/post/', provision_post, name='provision_post'),
    path('accounting/close-period/', close_period, name='close_period'),

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================
    path('transactions/', transaction_list, name='transaction_list'),
    path('transactions/<uuid:transaction_id>/', transaction_detail, name='transaction_detail'),
    path('transactions/<uuid:transaction_id>/reconcile/', transaction_reconcile, name='transaction_reconcile'),

    # =========================================================================
    # M-PESA
    # =========================================================================
    path('mpesa/', mpesa_request, name='mpesa_request'),
    path('mpesa/callback/', mpesa_callback, name='mpesa_callback'),
    path('mpesa/result/', mpesa_result, name='mpesa_result'),
    path('mpesa/timeout/', mpesa_timeout, name='mpesa_timeout'),
]
