"""
Base Models and Mixins for LoanspurCBS
======================================

Provides:
- UUID primary keys and timestamp fields
- Soft delete functionality
- Tenant scoping for every business row
- Approval workflow and active/inactive tracking
"""

from django.db import models
from django.utils import timezone
import uuid

from loanspur.managers import TenantManager


class SoftDeleteManager(models.Manager):
    """Manager that excludes soft-deleted records by default"""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)


class BaseModel(models.Model):
    """
    Base model with common fields and soft delete support

    Two managers are available: ``objects`` hides soft-deleted rows,
    ``all_objects`` returns everything.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False
    )

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="When this record was created"
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When this record was last updated"
    )
    deleted_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When this record was soft-deleted (null = not deleted)"
    )

    objects = SoftDeleteManager()
    all_objects = models.Manager()

    class Meta:
        abstract = True
        ordering = ['-created_at']

    def delete(self, using=None, keep_parents=False, hard=False):
        """
        Soft delete by default, unless hard=True

        Usage:
            instance.delete()  # Soft delete
            instance.delete(hard=True)  # Hard delete
        """
        if hard:
            return super().delete(using=using, keep_parents=keep_parents)
        self.deleted_at = timezone.now()
        self.save(update_fields=['deleted_at'])

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    def lock_fields(self, *fields):
        """
        Lock this row with ``SELECT ... FOR UPDATE`` and reload ``fields`` from it

        Must run inside ``transaction.atomic``. Running totals are updated
        from the locked values, not from whatever the caller loaded earlier.
        """
        locked = type(self).all_objects.select_for_update().get(pk=self.pk)
        for name in fields:
            setattr(self, name, getattr(locked, name))
        return locked


class TenantScopedModel(BaseModel):
    """
    Base model for rows owned by a single tenant

    Every query issued on behalf of a user must go through
    ``Model.objects.for_tenant(tenant)``.
    """

    tenant = models.ForeignKey(
        'loanspur.Tenant',
        on_delete=models.CASCADE,
        related_name='%(class)s_set',
        help_text="Owning tenant"
    )

    objects = TenantManager()
    all_objects = models.Manager()

    class Meta:
        abstract = True
        ordering = ['-created_at']


class ApprovalWorkflowMixin(models.Model):
    """
    Mixin for models requiring approval workflow

    draft -> pending -> approved / rejected
    """

    APPROVAL_STATUS_CHOICES = [
        ('draft', 'Draft'),
        ('pending', 'Pending Approval'),
        ('approved', 'Approved'),
        ('rejected', 'Rejected'),
    ]

    approval_status = models.CharField(
        max_length=20,
        choices=APPROVAL_STATUS_CHOICES,
        default='draft',
        db_index=True
    )

    approved_by = models.ForeignKey(
        'loanspur.User',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='%(class)s_approved',
        help_text="User who approved this record"
    )

    approved_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When this record was approved"
    )

    rejection_reason = models.TextField(
        blank=True,
        help_text="Reason for rejection"
    )

    class Meta:
        abstract = True

    def submit_for_approval(self):
        """Submit for approval"""
        if self.approval_status != 'draft':
            raise ValueError(f"Cannot submit for approval from status: {self.approval_status}")
        self.approval_status = 'pending'
        self.save(update_fields=['approval_status', 'updated_at'])

    def approve(self, approved_by):
        """Approve the record"""
        if self.approval_status != 'pending':
            raise ValueError(f"Cannot approve from status: {self.approval_status}")
        self.approval_status = 'approved'
        self.approved_by = approved_by
        self.approved_at = timezone.now()
        self.save(update_fields=['approval_status', 'approved_by', 'approved_at', 'updated_at'])

    def reject(self, rejected_by, reason=''):
        """Reject the record"""
        if self.approval_status != 'pending':
            raise ValueError(f"Cannot reject from status: {self.approval_status}")
        self.approval_status = 'rejected'
        self.approved_by = rejected_by
        self.approved_at = timezone.now()
        self.rejection_reason = reason
        self.save(update_fields=[
            'approval_status', 'approved_by', 'approved_at', 'rejection_reason', 'updated_at'
        ])

class StatusTrackingMixin(models.Model):
    """
    Mixin for models that can be switched on and off
    """

    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Is this record active?"
    )

    deactivated_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When this record was deactivated"
    )

    deactivation_reason = models.TextField(
        blank=True,
        help_text="Reason for deactivation"
    )

    class Meta:
        abstract = True

    def activate(self):
        """Activate the record"""
        self.is_active = True
        self.deactivated_at = None
        self.deactivation_reason = ''
        self.save(update_fields=['is_active', 'deactivated_at', 'deactivation_reason', 'updated_at'])

    def deactivate(self, reason=''):
        """Deactivate the record"""
        self.is_active = False
        self.deactivated_at = timezone.now()
        self.deactivation_reason = reason
        self.save(update_fields=['is_active', 'deactivated_at', 'deactivation_reason', 'updated_at'])
