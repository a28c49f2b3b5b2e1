"""
Custom QuerySets and Managers
==============================

Every manager here hides soft-deleted rows and knows how to narrow
itself to a single tenant.
"""

from django.db import models
from django.db.models import Q, Sum
from django.utils import timezone
from decimal import Decimal


class TenantQuerySet(models.QuerySet):
    """QuerySet with tenant filtering support"""

    def for_tenant(self, tenant):
        if tenant is None:
            return self.none()
        return self.filter(tenant=tenant)

    def for_office(self, office):
        return self.filter(office=office)


class ActiveInactiveQuerySet(models.QuerySet):

    def active(self):
        return self.filter(is_active=True)

    def inactive(self):
        return self.filter(is_active=False)


class ApprovalQuerySet(models.QuerySet):

    def pending_approval(self):
        return self.filter(approval_status='pending')

    def approved(self):
        return self.filter(approval_status='approved')

    def rejected(self):
        return self.filter(approval_status='rejected')


class SoftDeleteTenantManager(models.Manager):
    """Hides soft-deleted rows; queryset methods come from from_queryset()"""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)


TenantManager = SoftDeleteTenantManager.from_queryset(TenantQuerySet)


class ClientQuerySet(TenantQuerySet, ActiveInactiveQuerySet, ApprovalQuerySet):
    """Custom QuerySet for Client model"""

    def search(self, term):
        if not term:
            return self
        return self.filter(
            Q(first_name__icontains=term) |
            Q(last_name__icontains=term) |
            Q(client_number__icontains=term) |
            Q(phone__icontains=term) |
            Q(national_id__icontains=term)
        )

    def with_active_loans(self):
        return self.filter(loans__status__in=['active', 'disbursed']).distinct()

    def get_statistics(self):
        return {
            'total': self.count(),
            'active': self.active().count(),
            'approved': self.approved().count(),
            'pending_approval': self.pending_approval().count(),
            'with_active_loans': self.with_active_loans().count(),
        }


ClientManager = SoftDeleteTenantManager.from_queryset(ClientQuerySet)


class ClientGroupQuerySet(TenantQuerySet, ActiveInactiveQuerySet):
    """Custom QuerySet for ClientGroup model"""

    def pending_approval(self):
        return self.filter(status='pending')

    def operating(self):
        return self.filter(status='active')

    def for_officer(self, officer):
        return self.filter(loan_officer=officer)

    def by_meeting_day(self, day):
        return self.filter(meeting_day=day)

    def search(self, term):
        if not term:
            return self
        return self.filter(Q(name__icontains=term) | Q(group_number__icontains=term))

    def at_capacity(self):
        return self.filter(max_members__isnull=False, total_members__gte=models.F('max_members'))


ClientGroupManager = SoftDeleteTenantManager.from_queryset(ClientGroupQuerySet)


class LoanQuerySet(TenantQuerySet):
    """Custom QuerySet for Loan model"""

    SERVICING_STATUSES = ['active', 'disbursed']

    def pending(self):
        return self.filter(status='pending')

    def approved(self):
        return self.filter(status='approved')

    def servicing(self):
        return self.filter(status__in=self.SERVICING_STATUSES)

    def closed(self):
        return self.filter(status='closed')

    def written_off(self):
        return self.filter(status='written_off')

    def with_overdue_installments(self):
        today = timezone.now().date()
        return self.servicing().filter(
            schedule__due_date__lt=today,
            schedule__deleted_at__isnull=True,
            schedule__status__in=['unpaid', 'partial'],
        ).distinct()

    def total_outstanding(self):
        return self.servicing().aggregate(
            total=Sum('outstanding_balance')
        )['total'] or Decimal('0.00')

    def total_disbursed(self):
        return self.exclude(disbursement_date__isnull=True).aggregate(
            total=Sum('principal_amount')
        )['total'] or Decimal('0.00')


LoanManager = SoftDeleteTenantManager.from_queryset(LoanQuerySet)


class SavingsAccountQuerySet(TenantQuerySet):

    def active(self):
        return self.filter(status='active')

    def total_balance(self):
        return self.active().aggregate(
            total=Sum('account_balance')
        )['total'] or Decimal('0.00')


SavingsAccountManager = SoftDeleteTenantManager.from_queryset(SavingsAccountQuerySet)


class TransactionQuerySet(TenantQuerySet):
    """Custom QuerySet for Transaction model"""

    def completed(self):
        return self.filter(status='completed')

    def pending(self):
        return self.filter(status='pending')

    def of_type(self, transaction_type):
        return self.filter(transaction_type=transaction_type)

    def mpesa(self):
        return self.filter(payment_type='mpesa')

    def in_period(self, date_from=None, date_to=None):
        qs = self
        if date_from:
            qs = qs.filter(transaction_date__date__gte=date_from)
        if date_to:
            qs = qs.filter(transaction_date__date__lte=date_to)
        return qs

    def total_amount(self):
        return self.aggregate(total=Sum('amount'))['total'] or Decimal('0.00')


TransactionManager = SoftDeleteTenantManager.from_queryset(TransactionQuerySet)


class JournalEntryQuerySet(TenantQuerySet):

    def posted(self):
        return self.filter(status='posted')

    def for_reference(self, reference_type, reference_id):
        return self.filter(reference_type=reference_type, reference_id=str(reference_id))


JournalEntryManager = SoftDeleteTenantManager.from_queryset(JournalEntryQuerySet)
