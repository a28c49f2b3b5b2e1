"""
Permission System – Role-based Access Control
==============================================

Roles:   client  →  cashier / loan_officer / accountant  →  tenant_admin  →  super_admin

Every row is owned by a tenant. A user only ever sees rows of their own
tenant; super admins operate the platform and may act inside any tenant.

Every view that mutates state should:
    checker = PermissionChecker(request.user)
    if not checker.<method>(...):  raise PermissionDenied
"""

from functools import wraps
from django.core.exceptions import PermissionDenied
from django.db.models import Q
from django.http import JsonResponse


# =============================================================================
# CONSTANTS
# =============================================================================

class Roles:
    SUPER_ADMIN  = 'super_admin'
    TENANT_ADMIN = 'tenant_admin'
    LOAN_OFFICER = 'loan_officer'
    ACCOUNTANT   = 'accountant'
    CASHIER      = 'cashier'
    CLIENT       = 'client'


class Permissions:
    """Single source of truth.  Views must never hard-code role lists."""

    # ── visibility ───────────────────────────────────────────────────
    VIEW_WHOLE_TENANT  = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN, Roles.ACCOUNTANT]
    VIEW_OWN_OFFICE    = [Roles.CASHIER]
    VIEW_ASSIGNED_ONLY = [Roles.LOAN_OFFICER]

    # ── approvals ────────────────────────────────────────────────────
    CAN_APPROVE_CLIENTS = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN]
    CAN_APPROVE_LOANS   = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN]
    CAN_APPROVE_SAVINGS = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN]

    # ── management ───────────────────────────────────────────────────
    CAN_MANAGE_TENANTS           = [Roles.SUPER_ADMIN]
    CAN_MANAGE_TENANT_SETTINGS   = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN]
    CAN_MANAGE_OFFICES           = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN]
    CAN_MANAGE_USERS             = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN]
    CAN_MANAGE_PRODUCTS          = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN]
    CAN_MANAGE_CHART_OF_ACCOUNTS = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN, Roles.ACCOUNTANT]

    # ── financial ────────────────────────────────────────────────────
    CAN_DISBURSE_LOANS    = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN, Roles.ACCOUNTANT]
    CAN_RECORD_PAYMENTS   = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN, Roles.ACCOUNTANT,
                             Roles.CASHIER, Roles.LOAN_OFFICER]
    CAN_REVERSE_PAYMENTS  = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN, Roles.ACCOUNTANT]
    CAN_APPLY_CHARGES     = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN, Roles.ACCOUNTANT, Roles.LOAN_OFFICER]
    CAN_WRITE_OFF_LOANS   = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN]
    CAN_PROCESS_SAVINGS   = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN, Roles.ACCOUNTANT,
                             Roles.CASHIER, Roles.LOAN_OFFICER]
    CAN_POST_INTEREST     = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN, Roles.ACCOUNTANT]
    CAN_MANAGE_JOURNALS   = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN, Roles.ACCOUNTANT]
    CAN_VIEW_FINANCIALS   = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN, Roles.ACCOUNTANT]

    # ── creation ─────────────────────────────────────────────────────
    CAN_CREATE_CLIENTS = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN, Roles.LOAN_OFFICER, Roles.CASHIER]
    CAN_CREATE_LOANS   = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN, Roles.LOAN_OFFICER]
    CAN_OPEN_SAVINGS   = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN, Roles.LOAN_OFFICER, Roles.CASHIER]

    # ── client lifecycle  ────────────────────────────────────────────
    CAN_EDIT_CLIENT        = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN, Roles.LOAN_OFFICER]
    CAN_DELETE_CLIENT      = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN]
    CAN_TRANSFER_CLIENT    = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN]
    CAN_ASSIGN_LOAN_OFFICER = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN]
    CAN_IMPORT_CLIENTS     = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN]

    # ── groups ───────────────────────────────────────────────────────
    CAN_MANAGE_GROUPS  = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN, Roles.LOAN_OFFICER]
    CAN_APPROVE_GROUPS = [Roles.SUPER_ADMIN, Roles.TENANT_ADMIN]


# =============================================================================
# PERMISSION CHECKER
# =============================================================================

class PermissionChecker:

    def __init__(self, user, tenant=None):
        self.user   = user
        self.role   = user.role if user.is_authenticated else None
        self.tenant = getattr(user, 'tenant', None) if user.is_authenticated else None
        self.office = getattr(user, 'office', None) if user.is_authenticated else None
        # super admins work inside whichever tenant the request resolved to
        if tenant is not None and self.role == Roles.SUPER_ADMIN:
            self.tenant = tenant

    # ── role helpers ─────────────────────────────────────────────────
    def is_super_admin(self):  return self.role == Roles.SUPER_ADMIN
    def is_tenant_admin(self): return self.role == Roles.TENANT_ADMIN
    def is_loan_officer(self): return self.role == Roles.LOAN_OFFICER
    def is_accountant(self):   return self.role == Roles.ACCOUNTANT
    def is_cashier(self):      return self.role == Roles.CASHIER
    def is_client(self):       return self.role == Roles.CLIENT

    # =========================================================================
    # TENANT BOUNDARY
    # =========================================================================

    def can_access_tenant(self, tenant):
        if tenant is None:
            return False
        if self.is_super_admin():
            return True
        return self.tenant is not None and self.tenant.id == tenant.id

    def can_access_object(self, obj):
        return self.can_access_tenant(getattr(obj, 'tenant', None))

    # =========================================================================
    # VIEW / READ
    # =========================================================================

    def can_view_whole_tenant(self):
        return self.role in Permissions.VIEW_WHOLE_TENANT

    def can_view_client(self, client):
        if not self.can_access_object(client):
            return False
        if self.can_view_whole_tenant():
            return True
        if self.is_cashier():
            return self.office is not None and client.office_id == self.office.id
        if self.is_loan_officer():
            return client.loan_officer_id == self.user.id or client.created_by_id == self.user.id
        return False

    def can_view_loan(self, loan):
        if self.can_view_client(loan.client):
            return True
        return self.can_access_object(loan) and (
            loan.created_by_id == self.user.id or loan.loan_officer_id == self.user.id
        )

    def can_view_savings_account(self, account):
        return self.can_view_client(account.client)

    def can_view_group(self, group):
        if not self.can_access_object(group):
            return False
        if self.can_view_whole_tenant():
            return True
        if self.is_cashier():
            return self.office is not None and group.office_id == self.office.id
        if self.is_loan_officer():
            return group.loan_officer_id == self.user.id or group.created_by_id == self.user.id
        return False

    # =========================================================================
    # ACTIONS
    # =========================================================================

    def can_approve_clients(self):          return self.role in Permissions.CAN_APPROVE_CLIENTS
    def can_approve_loans(self):            return self.role in Permissions.CAN_APPROVE_LOANS
    def can_approve_savings(self):          return self.role in Permissions.CAN_APPROVE_SAVINGS

    def can_manage_tenants(self):           return self.role in Permissions.CAN_MANAGE_TENANTS
    def can_manage_tenant_settings(self):   return self.role in Permissions.CAN_MANAGE_TENANT_SETTINGS
    def can_manage_offices(self):           return self.role in Permissions.CAN_MANAGE_OFFICES
    def can_manage_users(self):             return self.role in Permissions.CAN_MANAGE_USERS
    def can_manage_products(self):          return self.role in Permissions.CAN_MANAGE_PRODUCTS
    def can_manage_chart_of_accounts(self): return self.role in Permissions.CAN_MANAGE_CHART_OF_ACCOUNTS

    def can_disburse_loans(self):           return self.role in Permissions.CAN_DISBURSE_LOANS
    def can_record_payments(self):          return self.role in Permissions.CAN_RECORD_PAYMENTS
    def can_reverse_payments(self):         return self.role in Permissions.CAN_REVERSE_PAYMENTS
    def can_apply_charges(self):            return self.role in Permissions.CAN_APPLY_CHARGES
    def can_write_off_loans(self):          return self.role in Permissions.CAN_WRITE_OFF_LOANS
    def can_process_savings(self):          return self.role in Permissions.CAN_PROCESS_SAVINGS
    def can_post_interest(self):            return self.role in Permissions.CAN_POST_INTEREST
    def can_manage_journals(self):          return self.role in Permissions.CAN_MANAGE_JOURNALS
    def can_view_financials(self):          return self.role in Permissions.CAN_VIEW_FINANCIALS

    def can_create_client(self):            return self.role in Permissions.CAN_CREATE_CLIENTS
    def can_create_loan(self):              return self.role in Permissions.CAN_CREATE_LOANS
    def can_open_savings(self):             return self.role in Permissions.CAN_OPEN_SAVINGS

    def can_edit_client(self, client=None):
        if self.role not in Permissions.CAN_EDIT_CLIENT:
            return False
        if client is None:
            return True
        return self.can_view_client(client)

    def can_delete_client(self, client=None):
        if self.role not in Permissions.CAN_DELETE_CLIENT:
            return False
        return client is None or self.can_access_object(client)

    def can_transfer_client(self):          return self.role in Permissions.CAN_TRANSFER_CLIENT
    def can_assign_loan_officer(self):      return self.role in Permissions.CAN_ASSIGN_LOAN_OFFICER
    def can_import_clients(self):           return self.role in Permissions.CAN_IMPORT_CLIENTS

    def can_create_group(self):             return self.role in Permissions.CAN_MANAGE_GROUPS
    def can_approve_groups(self):           return self.role in Permissions.CAN_APPROVE_GROUPS

    def can_edit_group(self, group):
        return self.role in Permissions.CAN_MANAGE_GROUPS and self.can_view_group(group)

    def can_collect_for_group(self, group):
        return self.can_record_payments() and self.can_view_group(group)

    # =========================================================================
    # QUERYSET FILTERS
    # =========================================================================

    def _scope(self, queryset):
        """Rows of the user's tenant (or nothing)"""
        return queryset.for_tenant(self.tenant)

    def filter_clients(self, queryset):
        queryset = self._scope(queryset)
        if self.can_view_whole_tenant():
            return queryset
        if self.is_cashier() and self.office:
            return queryset.filter(office=self.office)
        if self.is_loan_officer():
            return queryset.filter(Q(loan_officer=self.user) | Q(created_by=self.user))
        return queryset.none()

    def filter_loans(self, queryset):
        queryset = self._scope(queryset)
        if self.can_view_whole_tenant():
            return queryset
        if self.is_cashier() and self.office:
            return queryset.filter(client__office=self.office)
        if self.is_loan_officer():
            return queryset.filter(
                Q(client__loan_officer=self.user) | Q(loan_officer=self.user) | Q(created_by=self.user)
            )
        return queryset.none()

    def filter_savings_accounts(self, queryset):
        queryset = self._scope(queryset)
        if self.can_view_whole_tenant():
            return queryset
        if self.is_cashier() and self.office:
            return queryset.filter(client__office=self.office)
        if self.is_loan_officer():
            return queryset.filter(Q(client__loan_officer=self.user) | Q(created_by=self.user))
        return queryset.none()

    def filter_groups(self, queryset):
        queryset = self._scope(queryset)
        if self.can_view_whole_tenant():
            return queryset
        if self.is_cashier() and self.office:
            return queryset.filter(office=self.office)
        if self.is_loan_officer():
            return queryset.filter(Q(loan_officer=self.user) | Q(created_by=self.user))
        return queryset.none()

    def filter_transactions(self, queryset):
        queryset = self._scope(queryset)
        if self.can_view_whole_tenant():
            return queryset
        if self.is_cashier() and self.office:
            return queryset.filter(Q(client__office=self.office) | Q(processed_by=self.user))
        if self.is_loan_officer():
            return queryset.filter(Q(client__loan_officer=self.user) | Q(processed_by=self.user))
        return queryset.none()


# =============================================================================
# DECORATORS
# =============================================================================

def tenant_required(view_func):
    """Reject requests with no resolved tenant, or a tenant the user may not act in"""
    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        tenant = getattr(request, 'tenant', None) or getattr(request.user, 'tenant', None)
        if tenant is None:
            return JsonResponse({'error': 'No tenant could be resolved for this request'}, status=400)
        if not PermissionChecker(request.user).can_access_tenant(tenant):
            raise PermissionDenied
        request.tenant = tenant
        return view_func(request, *args, **kwargs)
    return wrapper

