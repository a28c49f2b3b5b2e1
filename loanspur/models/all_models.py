"""
LoanspurCBS - Consolidated Models
=================================

Tenancy, users, clients, products, loans, savings, accounting and the
transaction ledger. Financial workflows live on the models as atomic
methods and post their journals through ``loanspur.utils.accounting_helpers``.
"""

from django.conf import settings
from django.contrib.auth.models import AbstractUser, BaseUserManager
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models, transaction as db_transaction
from django.db.models import Q, Sum
from django.utils import timezone
from django.utils.crypto import get_random_string
from cloudinary.models import CloudinaryField
from datetime import timedelta
from decimal import Decimal
import logging
import uuid

from .base import (
    BaseModel, TenantScopedModel, ApprovalWorkflowMixin, StatusTrackingMixin
)
from loanspur.managers import (
    ClientManager, ClientGroupManager, LoanManager, SavingsAccountManager,
    TransactionManager, JournalEntryManager,
)
from loanspur.utils.money import MoneyCalculator, calculate_fee_amount
from loanspur.utils.helpers import (
    generate_loan_schedule, summarize_schedule, allocate_repayment,
    normalize_phone_number, DEFAULT_REPAYMENT_STRATEGY,
)
from loanspur.utils import accounting_helpers

logger = logging.getLogger(__name__)


ZERO = Decimal('0.00')


def generate_reference(prefix, length=6):
    """PREFIX-YYYYMMDDHHMMSS-NNNNNN"""
    return f"{prefix}-{timezone.now().strftime('%Y%m%d%H%M%S')}-{get_random_string(length, '0123456789')}"


def money_field(**kwargs):
    kwargs.setdefault('max_digits', 15)
    kwargs.setdefault('decimal_places', 2)
    kwargs.setdefault('default', ZERO)
    return models.DecimalField(**kwargs)


# =============================================================================
# TENANCY
# =============================================================================

class Tenant(BaseModel):
    """
    An organisation renting the platform

    Each tenant is reached on ``<subdomain>.<base domain>`` or on a verified
    custom domain.
    """

    STATUS_CHOICES = [
        ('active', 'Active'),
        ('suspended', 'Suspended'),
        ('cancelled', 'Cancelled'),
    ]

    PRICING_TIER_CHOICES = [
        ('starter', 'Starter'),
        ('professional', 'Professional'),
        ('enterprise', 'Enterprise'),
        ('scale', 'Scale'),
    ]

    BILLING_CYCLE_CHOICES = [
        ('monthly', 'Monthly'),
        ('quarterly', 'Quarterly'),
        ('annually', 'Annually'),
    ]

    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=100, unique=True)
    subdomain = models.CharField(max_length=100, unique=True, db_index=True)
    domain = models.CharField(
        max_length=255,
        blank=True,
        db_index=True,
        help_text="Custom domain, usable once verified"
    )

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='active', db_index=True)
    pricing_tier = models.CharField(max_length=20, choices=PRICING_TIER_CHOICES, default='starter')
    billing_cycle = models.CharField(max_length=20, choices=BILLING_CYCLE_CHOICES, default='monthly')
    trial_ends_at = models.DateTimeField(null=True, blank=True)
    subscription_ends_at = models.DateTimeField(null=True, blank=True)
    status_reason = models.TextField(blank=True)

    contact_person_name = models.CharField(max_length=200, blank=True)
    contact_person_email = models.EmailField(blank=True)
    contact_person_phone = models.CharField(max_length=20, blank=True)
    country = models.CharField(max_length=100, default='Kenya')
    time_zone = models.CharField(max_length=64, default='Africa/Nairobi')
    currency_code = models.CharField(max_length=3, default='KES')

    logo_url = models.URLField(blank=True)
    theme_colors = models.JSONField(default=dict, blank=True)

    mpesa_settings = models.JSONField(
        default=dict,
        blank=True,
        help_text="Per-tenant Daraja credentials; missing keys fall back to global settings"
    )

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name

    @property
    def is_operational(self):
        return self.status == 'active'

    @property
    def is_in_trial(self):
        return bool(self.trial_ends_at and self.trial_ends_at > timezone.now())

    def suspend(self, reason=''):
        if self.status != 'active':
            raise ValueError(f"Cannot suspend tenant with status: {self.get_status_display()}")
        self.status = 'suspended'
        self.status_reason = reason
        self.save(update_fields=['status', 'status_reason', 'updated_at'])
        logger.info(f"Tenant suspended: {self.subdomain} | Reason: {reason}")

    def activate(self):
        if self.status == 'cancelled':
            raise ValueError("A cancelled tenant cannot be reactivated")
        self.status = 'active'
        self.status_reason = ''
        self.save(update_fields=['status', 'status_reason', 'updated_at'])
        logger.info(f"Tenant activated: {self.subdomain}")

    def cancel(self, reason=''):
        self.status = 'cancelled'
        self.status_reason = reason
        self.subscription_ends_at = timezone.now()
        self.save(update_fields=['status', 'status_reason', 'subscription_ends_at', 'updated_at'])
        logger.info(f"Tenant cancelled: {self.subdomain} | Reason: {reason}")

    def get_mpesa_config(self):
        """Daraja configuration with tenant overrides applied"""
        overrides = self.mpesa_settings or {}
        return {
            'environment': overrides.get('environment') or settings.MPESA_ENVIRONMENT,
            'consumer_key': overrides.get('consumer_key') or settings.MPESA_CONSUMER_KEY,
            'consumer_secret': overrides.get('consumer_secret') or settings.MPESA_CONSUMER_SECRET,
            'shortcode': overrides.get('shortcode') or settings.MPESA_SHORTCODE,
            'passkey': overrides.get('passkey') or settings.MPESA_PASSKEY,
            'callback_url': overrides.get('callback_url') or settings.MPESA_CALLBACK_URL,
            'result_url': overrides.get('result_url') or settings.MPESA_RESULT_URL,
            'timeout_url': overrides.get('timeout_url') or settings.MPESA_TIMEOUT_URL,
            'initiator_name': overrides.get('initiator_name') or settings.MPESA_INITIATOR_NAME,
            'security_credential': overrides.get('security_credential') or settings.MPESA_SECURITY_CREDENTIAL,
        }


class DomainVerification(BaseModel):
    """DNS TXT challenge proving a tenant controls a custom domain"""

    METHOD_CHOICES = [
        ('dns_txt', 'DNS TXT Record'),
    ]

    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name='domain_verifications')
    domain = models.CharField(max_length=255, db_index=True)
    verification_method = models.CharField(max_length=20, choices=METHOD_CHOICES, default='dns_txt')
    record_name = models.CharField(max_length=300)
    record_value = models.CharField(max_length=300)

    is_verified = models.BooleanField(default=False, db_index=True)
    verified_at = models.DateTimeField(null=True, blank=True)
    last_checked_at = models.DateTimeField(null=True, blank=True)
    ssl_enabled = models.BooleanField(default=False)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        state = 'verified' if self.is_verified else 'pending'
        return f"{self.domain} ({state})"


class Currency(BaseModel):
    code = models.CharField(max_length=3, unique=True)
    name = models.CharField(max_length=100)
    symbol = models.CharField(max_length=10)
    decimal_places = models.PositiveSmallIntegerField(default=2)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['code']
        verbose_name_plural = "Currencies"

    def __str__(self):
        return f"{self.code} ({self.symbol})"


class TenantCurrencySettings(BaseModel):
    """How a tenant wants money rendered"""

    DISPLAY_FORMAT_CHOICES = [
        ('symbol_before', 'Symbol before amount (KSh 1,000.00)'),
        ('symbol_after', 'Symbol after amount (1,000.00 KSh)'),
        ('code_before', 'Code before amount (KES 1,000.00)'),
        ('code_after', 'Code after amount (1,000.00 KES)'),
    ]

    tenant = models.OneToOneField(Tenant, on_delete=models.CASCADE, related_name='currency_settings')
    currency = models.ForeignKey(Currency, on_delete=models.PROTECT, related_name='tenant_settings')
    display_format = models.CharField(max_length=20, choices=DISPLAY_FORMAT_CHOICES, default='symbol_before')
    thousand_separator = models.CharField(max_length=3, default=',', blank=True)
    decimal_separator = models.CharField(max_length=3, default='.')
    show_decimals = models.BooleanField(default=True)

    class Meta:
        verbose_name_plural = "Tenant currency settings"

    def __str__(self):
        return f"{self.tenant} - {self.currency.code}"

    def format_amount(self, amount):
        from loanspur.tenancy import format_currency
        return format_currency(amount, self)


# =============================================================================
# OFFICES & USERS
# =============================================================================

class Office(TenantScopedModel, StatusTrackingMixin):
    """A branch of a tenant organisation"""

    name = models.CharField(max_length=200)
    code = models.CharField(max_length=20)
    parent = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='children'
    )
    opening_date = models.DateField(default=timezone.localdate)
    address = models.TextField(blank=True)
    phone = models.CharField(max_length=20, blank=True)

    class Meta:
        ordering = ['name']
        constraints = [
            models.UniqueConstraint(
                fields=['tenant', 'code'],
                condition=Q(deleted_at__isnull=True),
                name='unique_office_code_per_tenant'
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.code})"

    def clean(self):
        super().clean()
        if self.parent_id and self.parent_id == self.id:
            raise ValidationError({'parent': "An office cannot be its own parent"})
        if self.parent and self.parent.tenant_id != self.tenant_id:
            raise ValidationError({'parent': "Parent office belongs to another tenant"})


class UserManager(BaseUserManager):
    """Email-based user manager"""

    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError('Email address is required')
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('is_active', True)
        extra_fields.setdefault('role', 'super_admin')
        return self.create_user(email, password, **extra_fields)

    def for_tenant(self, tenant):
        return self.filter(tenant=tenant)

    def loan_officers(self, tenant):
        return self.filter(tenant=tenant, role='loan_officer', is_active=True)


class User(AbstractUser):
    """
    Platform user

    Super admins have no tenant. Everyone else belongs to exactly one tenant
    and optionally to one office.
    """

    ROLE_CHOICES = [
        ('super_admin', 'Super Admin'),
        ('tenant_admin', 'Tenant Admin'),
        ('loan_officer', 'Loan Officer'),
        ('accountant', 'Accountant'),
        ('cashier', 'Cashier'),
        ('client', 'Client'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    username = None
    email = models.EmailField(unique=True)

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='users'
    )
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default='loan_officer', db_index=True)
    office = models.ForeignKey(
        Office,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='staff'
    )
    phone = models.CharField(max_length=20, blank=True)

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        ordering = ['email']

    def __str__(self):
        return self.get_full_name() or self.email

    def clean(self):
        super().clean()
        if self.role != 'super_admin' and not self.tenant_id:
            raise ValidationError({'tenant': "Only super admins may exist without a tenant"})
        if self.office_id and self.office.tenant_id != self.tenant_id:
            raise ValidationError({'office': "Office belongs to another tenant"})


# =============================================================================
# CLIENTS
# =============================================================================

class Client(TenantScopedModel, StatusTrackingMixin, ApprovalWorkflowMixin):
    """A borrower / saver of a tenant"""

    GENDER_CHOICES = [
        ('male', 'Male'),
        ('female', 'Female'),
        ('other', 'Other'),
    ]

    client_number = models.CharField(max_length=30, unique=True, db_index=True)
    office = models.ForeignKey(
        Office,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='clients'
    )

    first_name = models.CharField(max_length=100)
    middle_name = models.CharField(max_length=100, blank=True)
    last_name = models.CharField(max_length=100)
    phone = models.CharField(max_length=20, help_text="Stored as 2547XXXXXXXX")
    email = models.EmailField(blank=True)
    national_id = models.CharField(max_length=30, blank=True, db_index=True)
    date_of_birth = models.DateField(null=True, blank=True)
    gender = models.CharField(max_length=10, choices=GENDER_CHOICES, blank=True)
    occupation = models.CharField(max_length=150, blank=True)
    monthly_income = money_field(null=True, blank=True, default=None)
    address = models.TextField(blank=True)

    loan_officer = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='assigned_clients'
    )

    photo = CloudinaryField('image', null=True, blank=True)
    id_document = CloudinaryField('image', null=True, blank=True)

    created_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='created_clients'
    )

    objects = ClientManager()

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['tenant', 'national_id'],
                condition=Q(deleted_at__isnull=True) & ~Q(national_id=''),
                name='unique_client_national_id_per_tenant'
            ),
        ]

    def __str__(self):
        return f"{self.get_full_name()} ({self.client_number})"

    def save(self, *args, **kwargs):
        if not self.client_number:
            self.client_number = self.generate_client_number()
        if self.phone:
            self.phone = normalize_phone_number(self.phone)
        super().save(*args, **kwargs)

    @staticmethod
    def generate_client_number():
        """CL + YYMMDD + 5 random digits"""
        prefix = f"CL{timezone.now().strftime('%y%m%d')}"
        number = f"{prefix}{get_random_string(5, '0123456789')}"
        while Client.all_objects.filter(client_number=number).exists():
            number = f"{prefix}{get_random_string(5, '0123456789')}"
        return number

    def get_full_name(self):
        return ' '.join(part for part in [self.first_name, self.middle_name, self.last_name] if part)

    @property
    def full_name(self):
        return self.get_full_name()

    def get_active_loans(self):
        return self.loans.filter(status__in=['active', 'disbursed'], deleted_at__isnull=True)

    def get_total_savings_balance(self):
        return self.savings_accounts.filter(deleted_at__isnull=True).aggregate(
            total=Sum('account_balance')
        )['total'] or ZERO

    def can_be_deleted(self):
        """A client may go only once it owes nothing and holds nothing"""
        if self.get_active_loans().exists():
            return False, "Client has active loans"
        if self.savings_accounts.filter(deleted_at__isnull=True).exclude(account_balance=0).exists():
            return False, "Client has savings accounts with a balance"
        return True, ""

    def delete(self, using=None, keep_parents=False, hard=False):
        allowed, reason = self.can_be_deleted()
        if not allowed:
            raise ValidationError(f"Cannot delete client: {reason}")
        return super().delete(using=using, keep_parents=keep_parents, hard=hard)

    def transfer_to_office(self, office, transferred_by=None):
        if office.tenant_id != self.tenant_id:
            raise ValidationError("Target office belongs to another tenant")
        if not office.is_active:
            raise ValidationError("Target office is not active")
        previous = self.office
        self.office = office
        if self.loan_officer and self.loan_officer.office_id and self.loan_officer.office_id != office.id:
            self.loan_officer = None
        self.save(update_fields=['office', 'loan_officer', 'updated_at'])
        logger.info(
            f"Client {self.client_number} transferred from {previous} to {office} "
            f"by {transferred_by}"
        )

    def assign_loan_officer(self, officer):
        if officer.tenant_id != self.tenant_id or officer.role != 'loan_officer':
            raise ValidationError("Selected user is not a loan officer of this tenant")
        self.loan_officer = officer
        self.save(update_fields=['loan_officer', 'updated_at'])


class NextOfKin(BaseModel):
    client = models.ForeignKey(Client, on_delete=models.CASCADE, related_name='next_of_kin')
    full_name = models.CharField(max_length=200)
    relationship = models.CharField(max_length=50)
    phone = models.CharField(max_length=20)
    address = models.TextField(blank=True)

    def __str__(self):
        return f"{self.full_name} ({self.relationship})"


# =============================================================================
# CLIENT GROUPS
# =============================================================================

class ClientGroup(TenantScopedModel, StatusTrackingMixin):
    """
    A solidarity group of clients that meets and repays together

    pending -> active -> closed
            -> rejected

    A client belongs to at most one group at a time. Members join only while
    the group is active.
    """

    GROUP_TYPE_CHOICES = [
        ('lending', 'Lending Group'),
        ('savings', 'Savings Group'),
        ('mixed', 'Mixed (Lending & Savings)'),
    ]

    DAY_CHOICES = [
        ('monday', 'Monday'),
        ('tuesday', 'Tuesday'),
        ('wednesday', 'Wednesday'),
        ('thursday', 'Thursday'),
        ('friday', 'Friday'),
        ('saturday', 'Saturday'),
        ('sunday', 'Sunday'),
    ]

    FREQUENCY_CHOICES = [
        ('weekly', 'Weekly'),
        ('fortnightly', 'Fortnightly'),
        ('monthly', 'Monthly'),
    ]

    STATUS_CHOICES = [
        ('pending', 'Pending Approval'),
        ('active', 'Active'),
        ('rejected', 'Rejected'),
        ('closed', 'Closed'),
    ]

    group_number = models.CharField(max_length=30, unique=True, db_index=True)
    name = models.CharField(max_length=150)
    description = models.TextField(blank=True)
    group_type = models.CharField(max_length=20, choices=GROUP_TYPE_CHOICES, default='mixed')
    office = models.ForeignKey(Office, on_delete=models.PROTECT, related_name='client_groups')
    loan_officer = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name='managed_groups'
    )

    registration_date = models.DateField(default=timezone.localdate)
    meeting_day = models.CharField(max_length=10, choices=DAY_CHOICES, blank=True)
    meeting_frequency = models.CharField(max_length=20, choices=FREQUENCY_CHOICES, default='weekly')
    meeting_time = models.TimeField(null=True, blank=True)
    meeting_location = models.CharField(max_length=200, blank=True)
    max_members = models.PositiveIntegerField(
        null=True, blank=True, help_text="Leave empty for no limit"
    )

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending', db_index=True)
    approved_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name='approved_groups'
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.TextField(blank=True)
    closed_date = models.DateField(null=True, blank=True)

    # Recomputed by update_statistics()
    total_members = models.PositiveIntegerField(default=0)
    active_members = models.PositiveIntegerField(default=0)
    total_savings = money_field()
    total_loans_outstanding = money_field()

    created_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name='created_groups'
    )

    objects = ClientGroupManager()

    class Meta:
        ordering = ['name']
        constraints = [
            models.UniqueConstraint(
                fields=['tenant', 'name'],
                condition=Q(deleted_at__isnull=True),
                name='unique_group_name_per_tenant'
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.group_number})"

    def save(self, *args, **kwargs):
        if not self.group_number:
            self.group_number = self.generate_group_number()
        super().save(*args, **kwargs)

    def generate_group_number(self):
        """GRP + office code + 5 random digits"""
        office_code = self.office.code[:3].upper() if self.office_id else 'GEN'
        number = f"GRP-{office_code}-{get_random_string(5, '0123456789')}"
        while ClientGroup.all_objects.filter(group_number=number).exists():
            number = f"GRP-{office_code}-{get_random_string(5, '0123456789')}"
        return number

    def clean(self):
        errors = {}
        if self.office_id and self.tenant_id and self.office.tenant_id != self.tenant_id:
            errors['office'] = "Office belongs to another tenant"
        if self.loan_officer_id and self.office_id:
            if self.loan_officer.office_id and self.loan_officer.office_id != self.office_id:
                errors['loan_officer'] = "Loan officer must be from the same office"
        if self.max_members is not None and self.max_members < 2:
            errors['max_members'] = "Maximum members must be at least 2"
        if errors:
            raise ValidationError(errors)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def approve(self, approved_by):
        if self.status != 'pending':
            raise ValueError(f"Cannot approve group with status: {self.get_status_display()}")
        self.status = 'active'
        self.approved_by = approved_by
        self.approved_at = timezone.now()
        self.save(update_fields=['status', 'approved_by', 'approved_at', 'updated_at'])
        logger.info(f"Group approved: {self.group_number} by {approved_by}")

    def reject(self, rejected_by, reason=''):
        if self.status != 'pending':
            raise ValueError(f"Cannot reject group with status: {self.get_status_display()}")
        self.status = 'rejected'
        self.approved_by = rejected_by
        self.approved_at = timezone.now()
        self.rejection_reason = reason
        self.save(update_fields=['status', 'approved_by', 'approved_at', 'rejection_reason', 'updated_at'])

    @db_transaction.atomic
    def close(self, closed_by, reason=''):
        """Close the group and release its members"""
        if self.status == 'closed':
            raise ValueError("Group is already closed")

        today = timezone.now().date()
        self.memberships.filter(is_active=True).update(
            is_active=False, left_date=today, exit_reason=reason or 'Group closed', updated_at=timezone.now()
        )
        self.status = 'closed'
        self.closed_date = today
        self.is_active = False
        self.deactivated_at = timezone.now()
        self.deactivation_reason = reason
        self.save(update_fields=[
            'status', 'closed_date', 'is_active', 'deactivated_at', 'deactivation_reason', 'updated_at'
        ])
        self.update_statistics()
        logger.info(f"Group closed: {self.group_number} by {closed_by} | Reason: {reason}")

    # =========================================================================
    # MEMBERSHIP
    # =========================================================================

    def get_active_members(self):
        return self.memberships.filter(is_active=True).select_related('client')

    def can_add_member(self, client, role='member'):
        """Returns (allowed, reason)"""
        if self.status != 'active':
            return False, "Group is not active"
        if client.tenant_id != self.tenant_id:
            return False, "Client belongs to another organisation"
        if client.approval_status != 'approved' or not client.is_active:
            return False, "Only approved, active clients can join a group"

        current = client.group_memberships.filter(is_active=True).select_related('group').first()
        if current is not None:
            if current.group_id == self.id:
                return False, "Client is already a member of this group"
            return False, f"Client already belongs to {current.group.name}"

        if client.office_id and client.office_id != self.office_id:
            return False, "Client must be from the same office as the group"
        if self.max_members and self.memberships.filter(is_active=True).count() >= self.max_members:
            return False, f"Group has reached maximum capacity ({self.max_members} members)"
        if role != 'member' and self.memberships.filter(is_active=True, role=role).exists():
            return False, f"This group already has a {dict(GroupMember.ROLE_CHOICES)[role].lower()}"
        return True, ""

    @db_transaction.atomic
    def add_member(self, client, role='member', added_by=None):
        allowed, reason = self.can_add_member(client, role)
        if not allowed:
            raise ValidationError(reason)

        membership = GroupMember.objects.create(
            tenant=self.tenant,
            group=self,
            client=client,
            role=role,
            added_by=added_by,
        )
        self.update_statistics()
        logger.info(f"Group member added: {client.client_number} -> {self.group_number} ({role})")
        return membership

    def _membership(self, client):
        membership = self.memberships.filter(client=client, is_active=True).first()
        if membership is None:
            raise ValidationError(f"{client.get_full_name()} is not a member of {self.name}")
        return membership

    @db_transaction.atomic
    def remove_member(self, client, removed_by=None, reason=''):
        membership = self._membership(client)
        membership.is_active = False
        membership.left_date = timezone.now().date()
        membership.exit_reason = reason
        membership.save(update_fields=['is_active', 'left_date', 'exit_reason', 'updated_at'])
        self.update_statistics()
        logger.info(f"Group member removed: {client.client_number} from {self.group_number} by {removed_by}")
        return membership

    def change_member_role(self, client, role):
        membership = self._membership(client)
        if role not in dict(GroupMember.ROLE_CHOICES):
            raise ValidationError(f"Unknown group role: {role}")
        if role != 'member' and self.memberships.filter(is_active=True, role=role).exclude(pk=membership.pk).exists():
            raise ValidationError(f"This group already has a {dict(GroupMember.ROLE_CHOICES)[role].lower()}")
        membership.role = role
        membership.save(update_fields=['role', 'updated_at'])
        return membership

    def update_statistics(self):
        """Recompute member counts and the members' savings and loan totals"""
        members = self.memberships.filter(is_active=True)
        client_ids = list(members.values_list('client_id', flat=True))

        self.total_members = len(client_ids)
        self.active_members = members.filter(client__is_active=True, client__approval_status='approved').count()
        self.total_savings = SavingsAccount.objects.filter(
            client_id__in=client_ids, status='active'
        ).aggregate(total=Sum('account_balance'))['total'] or ZERO
        self.total_loans_outstanding = Loan.objects.servicing().filter(
            client_id__in=client_ids
        ).aggregate(total=Sum('outstanding_balance'))['total'] or ZERO
        self.save(update_fields=[
            'total_members', 'active_members', 'total_savings', 'total_loans_outstanding', 'updated_at'
        ])

    # =========================================================================
    # COLLECTIONS
    # =========================================================================

    def get_collection_sheet(self, as_of=None):
        """
        Members' servicing loans with what has fallen due by ``as_of``

        Returns:
            list: rows of {'client', 'loan', 'amount_due', 'outstanding_balance'}
        """
        as_of = as_of or timezone.now().date()
        client_ids = self.memberships.filter(is_active=True).values_list('client_id', flat=True)
        loans = Loan.objects.servicing().filter(client_id__in=client_ids).select_related('client')

        rows = []
        for loan in loans.order_by('client__first_name', 'client__last_name', 'loan_number'):
            amount_due = loan.schedule.filter(due_date__lte=as_of).exclude(status='paid').aggregate(
                total=Sum('outstanding_amount')
            )['total'] or ZERO
            rows.append({
                'client': loan.client,
                'loan': loan,
                'amount_due': amount_due,
                'outstanding_balance': loan.outstanding_balance,
            })
        return rows

    @db_transaction.atomic
    def collect_repayments(self, collections, total_amount, collected_by, method='cash',
                           payment_date=None, reference=''):
        """
        Post one meeting's repayments for several members at once

        ``collections`` is a list of ``(loan, amount)`` pairs. Their amounts
        must add up to ``total_amount``. Any refused repayment rolls the whole
        batch back.

        Returns:
            list: LoanPayment rows
        """
        if self.status != 'active':
            raise ValidationError("Group is not active")

        total_amount = MoneyCalculator.round_money(total_amount)
        items = [(loan, MoneyCalculator.round_money(amount)) for loan, amount in collections if amount]
        if not items:
            raise ValidationError("No amounts were entered for any member")
        if any(amount <= 0 for _, amount in items):
            raise ValidationError("Collected amounts must be greater than zero")

        collected = sum((amount for _, amount in items), ZERO)
        if collected != total_amount:
            raise ValidationError(
                f"Member amounts add up to {collected:,.2f} but {total_amount:,.2f} was collected"
            )

        member_ids = set(self.memberships.filter(is_active=True).values_list('client_id', flat=True))
        payments = []
        for loan, amount in items:
            if loan.client_id not in member_ids:
                raise ValidationError(f"Loan {loan.loan_number} does not belong to a member of {self.name}")
            payments.append(loan.record_repayment(
                amount,
                collected_by,
                payment_date=payment_date,
                method=method,
                reference=reference,
                description=f"Group collection: {self.name}",
            ))

        self.update_statistics()
        logger.info(
            f"Group collection posted: {self.group_number} | Members: {len(payments)} | "
            f"Total: {total_amount:,.2f} | By: {collected_by}"
        )
        return payments


class GroupMember(TenantScopedModel):
    """A client's membership of a group, kept after they leave"""

    ROLE_CHOICES = [
        ('member', 'Member'),
        ('chairperson', 'Chairperson'),
        ('secretary', 'Secretary'),
        ('treasurer', 'Treasurer'),
    ]

    group = models.ForeignKey(ClientGroup, on_delete=models.CASCADE, related_name='memberships')
    client = models.ForeignKey(Client, on_delete=models.PROTECT, related_name='group_memberships')
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default='member')
    joined_date = models.DateField(default=timezone.localdate)
    is_active = models.BooleanField(default=True, db_index=True)
    left_date = models.DateField(null=True, blank=True)
    exit_reason = models.TextField(blank=True)
    added_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name='added_group_members'
    )

    class Meta:
        ordering = ['joined_date', 'created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['client'],
                condition=Q(is_active=True, deleted_at__isnull=True),
                name='one_active_group_per_client'
            ),
        ]

    def __str__(self):
        return f"{self.client.get_full_name()} - {self.group.name} ({self.get_role_display()})"


# =============================================================================
# CHART OF ACCOUNTS & JOURNALS
# =============================================================================

class ChartOfAccounts(TenantScopedModel):
    """General ledger account"""

    ACCOUNT_TYPE_CHOICES = [
        ('asset', 'Asset'),
        ('liability', 'Liability'),
        ('equity', 'Equity'),
        ('income', 'Income'),
        ('expense', 'Expense'),
    ]

    NORMAL_BALANCE = {
        'asset': 'debit',
        'expense': 'debit',
        'liability': 'credit',
        'equity': 'credit',
        'income': 'credit',
    }

    account_code = models.CharField(max_length=20, db_index=True)
    account_name = models.CharField(max_length=200)
    account_type = models.CharField(max_length=20, choices=ACCOUNT_TYPE_CHOICES, db_index=True)
    parent_account = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='sub_accounts'
    )
    is_active = models.BooleanField(default=True)
    allows_manual_entries = models.BooleanField(default=True)
    description = models.TextField(blank=True)

    class Meta:
        verbose_name = "Chart of Account"
        verbose_name_plural = "Chart of Accounts"
        ordering = ['account_code']
        constraints = [
            models.UniqueConstraint(
                fields=['tenant', 'account_code'],
                condition=Q(deleted_at__isnull=True),
                name='unique_account_code_per_tenant'
            ),
        ]

    def __str__(self):
        return f"{self.account_code} - {self.account_name}"

    @property
    def normal_balance(self):
        return self.NORMAL_BALANCE[self.account_type]

    def get_balance(self, as_of_date=None, date_from=None):
        """
        Balance on the account's normal side over posted and reversed entries

        Reversed entries stay in the ledger next to their reversal, so both
        are included and cancel out.
        """
        lines = JournalEntryLine.objects.filter(
            account=self,
            journal_entry__status__in=['posted', 'reversed'],
        )
        if as_of_date:
            lines = lines.filter(journal_entry__transaction_date__lte=as_of_date)
        if date_from:
            lines = lines.filter(journal_entry__transaction_date__gte=date_from)

        totals = lines.aggregate(debits=Sum('debit_amount'), credits=Sum('credit_amount'))
        debits = totals['debits'] or ZERO
        credits = totals['credits'] or ZERO

        if self.normal_balance == 'debit':
            return debits - credits
        return credits - debits


class JournalEntry(TenantScopedModel):
    """
    Journal entry header

    Every entry carries at least two lines and total debits equal total
    credits within 0.01.
    """

    STATUS_CHOICES = [
        ('draft', 'Draft'),
        ('posted', 'Posted'),
        ('reversed', 'Reversed'),
    ]

    ENTRY_TYPE_CHOICES = [
        ('manual', 'Manual Entry'),
        ('automatic', 'System Generated'),
        ('adjusting', 'Adjusting Entry'),
        ('closing', 'Closing Entry'),
        ('accrual', 'Accrual'),
        ('provision', 'Provision'),
        ('reversal', 'Reversal Entry'),
    ]

    entry_number = models.CharField(max_length=30, unique=True, db_index=True)
    transaction_date = models.DateField(db_index=True)
    description = models.TextField()
    entry_type = models.CharField(max_length=20, choices=ENTRY_TYPE_CHOICES, default='automatic')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='draft', db_index=True)

    reference_type = models.CharField(max_length=50, blank=True, db_index=True)
    reference_id = models.CharField(max_length=64, blank=True, db_index=True)

    total_debit = money_field()
    total_credit = money_field()

    office = models.ForeignKey(
        Office,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='journal_entries'
    )

    created_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='created_journals'
    )
    posted_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='posted_journals'
    )
    posted_at = models.DateTimeField(null=True, blank=True)

    reversal_of = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='reversals',
        help_text="Original entry this reversal cancels"
    )
    reversed_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='reversed_journals'
    )
    reversed_at = models.DateTimeField(null=True, blank=True)
    reversal_reason = models.TextField(blank=True)

    objects = JournalEntryManager()

    class Meta:
        verbose_name = "Journal Entry"
        verbose_name_plural = "Journal Entries"
        ordering = ['-transaction_date', '-created_at']

    def __str__(self):
        return f"{self.entry_number} - {self.transaction_date}"

    def save(self, *args, **kwargs):
        if not self.entry_number:
            self.entry_number = self.generate_entry_number()
        super().save(*args, **kwargs)

    @staticmethod
    def generate_entry_number():
        """JE-YYYY-NNNNNN"""
        year = timezone.now().year
        number = f"JE-{year}-{get_random_string(6, '0123456789')}"
        while JournalEntry.all_objects.filter(entry_number=number).exists():
            number = f"JE-{year}-{get_random_string(6, '0123456789')}"
        return number

    def get_total_debits(self):
        return self.lines.aggregate(total=Sum('debit_amount'))['total'] or ZERO

    def get_total_credits(self):
        return self.lines.aggregate(total=Sum('credit_amount'))['total'] or ZERO

    def is_balanced(self):
        return abs(self.get_total_debits() - self.get_total_credits()) <= MoneyCalculator.TOLERANCE

    @db_transaction.atomic
    def post(self, posted_by=None):
        """Post a draft entry"""
        if self.status != 'draft':
            raise ValueError(f"Cannot post journal with status: {self.get_status_display()}")
        if self.lines.count() < 2:
            raise ValueError("Journal must have at least 2 lines")
        if not self.is_balanced():
            raise ValueError(
                f"Journal is not balanced. Debits: {self.get_total_debits()}, "
                f"Credits: {self.get_total_credits()}"
            )

        self.status = 'posted'
        self.posted_by = posted_by
        self.posted_at = timezone.now()
        self.save(update_fields=['status', 'posted_by', 'posted_at', 'updated_at'])
        logger.info(f"Journal posted: {self.entry_number}")

    @db_transaction.atomic
    def reverse(self, reversed_by=None, reason='', reversal_date=None, reference_type=None):
        """
        Post a mirror entry with every line's sides swapped and mark this
        entry reversed

        Returns:
            JournalEntry: the reversal entry
        """
        if self.status != 'posted':
            raise ValueError("Only posted journals can be reversed")

        lines = [
            {
                'account': line.account,
                'debit': line.credit_amount,
                'credit': line.debit_amount,
                'description': f"Reversal: {line.description}",
            }
            for line in self.lines.select_related('account').order_by('line_order')
        ]

        reversal = accounting_helpers.create_journal_entry(
            tenant=self.tenant,
            transaction_date=reversal_date or timezone.now().date(),
            description=f"Reversal of {self.entry_number}: {reason}".strip(),
            lines=lines,
            created_by=reversed_by,
            entry_type='reversal',
            reference_type=reference_type or f"{self.reference_type or 'journal'}_reversal",
            reference_id=self.reference_id or str(self.id),
            office=self.office,
        )
        reversal.reversal_of = self
        reversal.save(update_fields=['reversal_of', 'updated_at'])

        self.status = 'reversed'
        self.reversed_by = reversed_by
        self.reversed_at = timezone.now()
        self.reversal_reason = reason
        self.save(update_fields=['status', 'reversed_by', 'reversed_at', 'reversal_reason', 'updated_at'])

        logger.info(f"Journal reversed: {self.entry_number} -> {reversal.entry_number}")
        return reversal


class JournalEntryLine(BaseModel):
    """One debit or credit line of a journal entry"""

    journal_entry = models.ForeignKey(JournalEntry, on_delete=models.CASCADE, related_name='lines')
    account = models.ForeignKey(ChartOfAccounts, on_delete=models.PROTECT, related_name='journal_lines')
    debit_amount = money_field()
    credit_amount = money_field()
    description = models.TextField(blank=True)
    line_order = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['line_order']
        constraints = [
            models.CheckConstraint(
                condition=Q(debit_amount__gte=0),
                name='journalline_debit_positive'
            ),
            models.CheckConstraint(
                condition=Q(credit_amount__gte=0),
                name='journalline_credit_positive'
            ),
        ]

    def __str__(self):
        if self.debit_amount > 0:
            return f"{self.account.account_code} - Dr: {self.debit_amount:,.2f}"
        return f"{self.account.account_code} - Cr: {self.credit_amount:,.2f}"

    def clean(self):
        super().clean()
        if self.debit_amount > 0 and self.credit_amount > 0:
            raise ValidationError("A line cannot have both debit and credit amounts")
        if self.debit_amount == 0 and self.credit_amount == 0:
            raise ValidationError("A line must have either a debit or credit amount")

    def save(self, *args, **kwargs):
        self.clean()
        super().save(*args, **kwargs)


# =============================================================================
# PRODUCTS & FEES
# =============================================================================

class PaymentType(TenantScopedModel, StatusTrackingMixin):
    """A channel money arrives or leaves through (cash, bank, M-Pesa...)"""

    code = models.CharField(max_length=30)
    name = models.CharField(max_length=100)
    is_cash = models.BooleanField(default=False)

    class Meta:
        ordering = ['name']
        constraints = [
            models.UniqueConstraint(
                fields=['tenant', 'code'],
                condition=Q(deleted_at__isnull=True),
                name='unique_payment_type_code_per_tenant'
            ),
        ]

    def __str__(self):
        return self.name


class FeeStructure(TenantScopedModel, StatusTrackingMixin):
    """A configurable charge"""

    CALCULATION_TYPE_CHOICES = [
        ('fixed', 'Fixed Amount'),
        ('percentage', 'Percentage'),
    ]

    FEE_TYPE_CHOICES = [
        ('loan', 'Loan Fee'),
        ('savings', 'Savings Fee'),
        ('account', 'Account Fee'),
        ('transaction', 'Transaction Fee'),
        ('penalty', 'Penalty'),
    ]

    CHARGE_TIME_CHOICES = [
        ('disbursement', 'At Disbursement'),
        ('installment', 'Every Installment'),
        ('specified_due_date', 'Specified Due Date'),
        ('withdrawal', 'On Withdrawal'),
        ('monthly', 'Monthly'),
    ]

    name = models.CharField(max_length=150)
    fee_type = models.CharField(max_length=20, choices=FEE_TYPE_CHOICES, default='loan')
    calculation_type = models.CharField(max_length=20, choices=CALCULATION_TYPE_CHOICES, default='fixed')
    amount = money_field(help_text="Fixed amount, or percent of the base for percentage fees")
    min_amount = money_field(null=True, blank=True, default=None)
    max_amount = money_field(null=True, blank=True, default=None)
    charge_time_type = models.CharField(max_length=30, choices=CHARGE_TIME_CHOICES, default='disbursement')
    income_account = models.ForeignKey(
        ChartOfAccounts,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='+',
        help_text="Overrides the product's fee income account"
    )

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name

    def clean(self):
        super().clean()
        if self.min_amount and self.max_amount and self.min_amount > self.max_amount:
            raise ValidationError({'max_amount': "Maximum must not be below the minimum"})
        if self.calculation_type == 'percentage' and self.amount > 100:
            raise ValidationError({'amount': "A percentage fee cannot exceed 100%"})

    def calculate(self, base_amount=0):
        return calculate_fee_amount(
            self.calculation_type, self.amount, base_amount, self.min_amount, self.max_amount
        )


class LoanProduct(TenantScopedModel, StatusTrackingMixin):
    """Loan product definition with its accounting links"""

    INTEREST_METHOD_CHOICES = [
        ('reducing_balance', 'Reducing Balance'),
        ('declining_balance', 'Declining Balance'),
        ('flat_rate', 'Flat Rate'),
    ]

    AMORTIZATION_CHOICES = [
        ('equal_installments', 'Equal Installments'),
        ('equal_principal', 'Equal Principal'),
    ]

    FREQUENCY_CHOICES = [
        ('daily', 'Daily'),
        ('weekly', 'Weekly'),
        ('bi-weekly', 'Bi-Weekly'),
        ('monthly', 'Monthly'),
        ('quarterly', 'Quarterly'),
    ]

    REPAYMENT_STRATEGY_CHOICES = [
        ('penalties_fees_interest_principal', 'Penalties, Fees, Interest, Principal'),
        ('interest_principal_penalties_fees', 'Interest, Principal, Penalties, Fees'),
        ('interest_penalties_fees_principal', 'Interest, Penalties, Fees, Principal'),
        ('principal_interest_fees_penalties', 'Principal, Interest, Fees, Penalties'),
    ]

    DAYS_IN_YEAR_CHOICES = [
        ('360', '360 Days'),
        ('365', '365 Days'),
        ('actual', 'Actual'),
    ]

    ACCOUNTING_TYPE_CHOICES = [
        ('none', 'None'),
        ('cash', 'Cash Based'),
        ('accrual', 'Accrual (Upfront)'),
    ]

    name = models.CharField(max_length=150)
    short_name = models.CharField(max_length=10)
    description = models.TextField(blank=True)
    currency_code = models.CharField(max_length=3, default='KES')

    min_principal = money_field()
    max_principal = money_field()
    default_principal = money_field()
    min_term = models.PositiveIntegerField(default=1, help_text="Months (days for daily products)")
    max_term = models.PositiveIntegerField(default=12)
    default_term = models.PositiveIntegerField(default=12)

    default_nominal_interest_rate = models.DecimalField(
        max_digits=7,
        decimal_places=4,
        default=Decimal('0'),
        validators=[MinValueValidator(0), MaxValueValidator(1000)],
        help_text="Annual nominal rate in percent"
    )
    interest_calculation_method = models.CharField(
        max_length=30, choices=INTEREST_METHOD_CHOICES, default='reducing_balance'
    )
    amortization_method = models.CharField(
        max_length=30, choices=AMORTIZATION_CHOICES, default='equal_installments'
    )
    repayment_frequency = models.CharField(max_length=20, choices=FREQUENCY_CHOICES, default='monthly')
    repayment_strategy = models.CharField(
        max_length=50, choices=REPAYMENT_STRATEGY_CHOICES, default=DEFAULT_REPAYMENT_STRATEGY
    )
    days_in_year_type = models.CharField(max_length=10, choices=DAYS_IN_YEAR_CHOICES, default='365')

    accounting_type = models.CharField(max_length=20, choices=ACCOUNTING_TYPE_CHOICES, default='cash')
    loan_portfolio_account = models.ForeignKey(
        ChartOfAccounts, on_delete=models.PROTECT, null=True, blank=True, related_name='+'
    )
    fund_source_account = models.ForeignKey(
        ChartOfAccounts, on_delete=models.PROTECT, null=True, blank=True, related_name='+'
    )
    interest_income_account = models.ForeignKey(
        ChartOfAccounts, on_delete=models.PROTECT, null=True, blank=True, related_name='+'
    )
    interest_receivable_account = models.ForeignKey(
        ChartOfAccounts, on_delete=models.PROTECT, null=True, blank=True, related_name='+'
    )
    fee_income_account = models.ForeignKey(
        ChartOfAccounts, on_delete=models.PROTECT, null=True, blank=True, related_name='+'
    )
    penalty_income_account = models.ForeignKey(
        ChartOfAccounts, on_delete=models.PROTECT, null=True, blank=True, related_name='+'
    )
    write_off_expense_account = models.ForeignKey(
        ChartOfAccounts, on_delete=models.PROTECT, null=True, blank=True, related_name='+'
    )

    fees = models.ManyToManyField(FeeStructure, blank=True, related_name='loan_products')

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name

    def clean(self):
        super().clean()
        errors = {}
        if self.min_principal > self.max_principal:
            errors['max_principal'] = "Maximum principal must be at least the minimum"
        elif self.default_principal and not (self.min_principal <= self.default_principal <= self.max_principal):
            errors['default_principal'] = "Default principal must lie within the allowed range"
        if self.min_term > self.max_term:
            errors['max_term'] = "Maximum term must be at least the minimum"
        if errors:
            raise ValidationError(errors)

    def validate_principal(self, amount):
        amount = Decimal(str(amount))
        if amount < self.min_principal or amount > self.max_principal:
            raise ValidationError(
                f"Principal must be between {self.min_principal:,.2f} and {self.max_principal:,.2f}"
            )

    def validate_term(self, term):
        if term < self.min_term or term > self.max_term:
            raise ValidationError(f"Term must be between {self.min_term} and {self.max_term}")

    def get_fees(self, charge_time_type):
        return self.fees.filter(charge_time_type=charge_time_type, is_active=True, deleted_at__isnull=True)


class SavingsProduct(TenantScopedModel, StatusTrackingMixin):
    """Savings product definition with its accounting links"""

    POSTING_PERIOD_CHOICES = [
        ('monthly', 'Monthly'),
        ('quarterly', 'Quarterly'),
        ('annually', 'Annually'),
    ]

    ACCOUNTING_METHOD_CHOICES = [
        ('none', 'None'),
        ('cash', 'Cash Based'),
    ]

    name = models.CharField(max_length=150)
    short_name = models.CharField(max_length=10)
    description = models.TextField(blank=True)
    currency_code = models.CharField(max_length=3, default='KES')

    nominal_annual_interest_rate = models.DecimalField(
        max_digits=7,
        decimal_places=4,
        default=Decimal('0'),
        validators=[MinValueValidator(0), MaxValueValidator(100)],
    )
    interest_posting_period = models.CharField(max_length=20, choices=POSTING_PERIOD_CHOICES, default='monthly')
    min_required_opening_balance = money_field()
    minimum_balance = money_field(help_text="Balance that must remain after a withdrawal")

    accounting_method = models.CharField(max_length=20, choices=ACCOUNTING_METHOD_CHOICES, default='cash')
    savings_reference_account = models.ForeignKey(
        ChartOfAccounts, on_delete=models.PROTECT, null=True, blank=True, related_name='+',
        help_text="Asset account cash is held in"
    )
    savings_control_account = models.ForeignKey(
        ChartOfAccounts, on_delete=models.PROTECT, null=True, blank=True, related_name='+',
        help_text="Liability account for client deposits"
    )
    interest_on_savings_account = models.ForeignKey(
        ChartOfAccounts, on_delete=models.PROTECT, null=True, blank=True, related_name='+'
    )
    income_from_fees_account = models.ForeignKey(
        ChartOfAccounts, on_delete=models.PROTECT, null=True, blank=True, related_name='+'
    )
    income_from_penalties_account = models.ForeignKey(
        ChartOfAccounts, on_delete=models.PROTECT, null=True, blank=True, related_name='+'
    )
    payment_type_mappings = models.JSONField(
        default=dict,
        blank=True,
        help_text="Legacy {payment method code: account code} map"
    )

    fees = models.ManyToManyField(FeeStructure, blank=True, related_name='savings_products')

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class ProductFundSourceMapping(TenantScopedModel):
    """Routes a payment channel of a product to a specific GL account"""

    PRODUCT_TYPE_CHOICES = [
        ('loan', 'Loan'),
        ('savings', 'Savings'),
    ]

    product_type = models.CharField(max_length=20, choices=PRODUCT_TYPE_CHOICES)
    product_id = models.UUIDField(db_index=True)
    payment_type = models.ForeignKey(
        PaymentType, on_delete=models.CASCADE, null=True, blank=True, related_name='fund_source_mappings'
    )
    channel_name = models.CharField(max_length=100, blank=True)
    account = models.ForeignKey(ChartOfAccounts, on_delete=models.PROTECT, related_name='+')

    class Meta:
        ordering = ['product_type', 'channel_name']

    def __str__(self):
        channel = self.payment_type.code if self.payment_type else self.channel_name
        return f"{self.product_type}:{self.product_id} {channel} -> {self.account.account_code}"


# =============================================================================
# TRANSACTION LEDGER
# =============================================================================

class Transaction(TenantScopedModel):
    """Money movement record, one per business event"""

    TRANSACTION_TYPE_CHOICES = [
        ('loan_disbursement', 'Loan Disbursement'),
        ('loan_repayment', 'Loan Repayment'),
        ('loan_repayment_reversal', 'Loan Repayment Reversal'),
        ('repayment_undo', 'Repayment Undo Record'),
        ('loan_charge', 'Loan Charge'),
        ('loan_write_off', 'Loan Write-off'),
        ('savings_deposit', 'Savings Deposit'),
        ('savings_withdrawal', 'Savings Withdrawal'),
        ('savings_fee', 'Savings Fee'),
        ('interest_posting', 'Savings Interest Posting'),
        ('savings_reversal', 'Savings Reversal'),
    ]

    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('completed', 'Completed'),
        ('failed', 'Failed'),
        ('cancelled', 'Cancelled'),
    ]

    RECONCILIATION_CHOICES = [
        ('unreconciled', 'Unreconciled'),
        ('reconciled', 'Reconciled'),
    ]

    transaction_id = models.CharField(max_length=100, unique=True, db_index=True)
    external_transaction_id = models.CharField(max_length=100, blank=True, db_index=True)

    client = models.ForeignKey(
        Client, on_delete=models.SET_NULL, null=True, blank=True, related_name='transactions'
    )
    loan = models.ForeignKey(
        'Loan', on_delete=models.SET_NULL, null=True, blank=True, related_name='transactions'
    )
    savings_account = models.ForeignKey(
        'SavingsAccount', on_delete=models.SET_NULL, null=True, blank=True, related_name='ledger_transactions'
    )

    amount = models.DecimalField(max_digits=15, decimal_places=2, help_text="Negative for reversals")
    transaction_type = models.CharField(max_length=30, choices=TRANSACTION_TYPE_CHOICES, db_index=True)
    payment_type = models.CharField(max_length=30, default='cash')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending', db_index=True)
    transaction_date = models.DateTimeField(default=timezone.now, db_index=True)
    description = models.TextField(blank=True)

    mpesa_receipt_number = models.CharField(max_length=50, blank=True, db_index=True)
    phone_number = models.CharField(max_length=20, blank=True)
    callback_payload = models.JSONField(default=dict, blank=True)
    failure_reason = models.TextField(blank=True)

    reconciliation_status = models.CharField(
        max_length=20, choices=RECONCILIATION_CHOICES, default='unreconciled'
    )
    processed_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name='processed_transactions'
    )

    objects = TransactionManager()

    class Meta:
        ordering = ['-transaction_date']

    def __str__(self):
        return f"{self.transaction_id} - {self.get_transaction_type_display()} - {self.amount:,.2f}"

    def mark_completed(self, receipt_number='', payload=None):
        self.status = 'completed'
        if receipt_number:
            self.mpesa_receipt_number = receipt_number
        if payload is not None:
            self.callback_payload = payload
        self.save(update_fields=['status', 'mpesa_receipt_number', 'callback_payload', 'updated_at'])

    def mark_failed(self, reason='', payload=None):
        self.status = 'failed'
        self.failure_reason = reason
        if payload is not None:
            self.callback_payload = payload
        self.save(update_fields=['status', 'failure_reason', 'callback_payload', 'updated_at'])

    def reconcile(self):
        self.reconciliation_status = 'reconciled'
        self.save(update_fields=['reconciliation_status', 'updated_at'])


def record_transaction(prefix, **fields):
    """Create a ledger row with a freshly generated transaction id"""
    transaction_id = generate_reference(prefix)
    while Transaction.all_objects.filter(transaction_id=transaction_id).exists():
        transaction_id = generate_reference(prefix)
    fields.setdefault('status', 'completed')
    return Transaction.objects.create(transaction_id=transaction_id, **fields)


def settle_transaction(pending, prefix, **fields):
    """
    Complete a pending gateway transaction with the operation's details, or
    record a new one when there is nothing pending
    """
    if pending is None:
        return record_transaction(prefix, **fields)
    for name, value in fields.items():
        setattr(pending, name, value)
    pending.status = 'completed'
    pending.save()
    return pending


# =============================================================================
# LOANS
# =============================================================================

class Loan(TenantScopedModel):
    """
    A loan from application to closure

    pending -> approved -> active -> closed
            -> rejected / withdrawn
    active  -> written_off

    ``outstanding_balance`` is always the sum of what is still owed across
    principal, interest, fees and penalties.
    """

    STATUS_CHOICES = [
        ('pending', 'Pending Approval'),
        ('approved', 'Approved'),
        ('rejected', 'Rejected'),
        ('withdrawn', 'Withdrawn'),
        ('disbursed', 'Disbursed'),
        ('active', 'Active'),
        ('closed', 'Closed'),
        ('written_off', 'Written Off'),
    ]

    SERVICING_STATUSES = ('active', 'disbursed')
    BALANCE_FIELDS = (
        'status', 'closed_date', 'total_principal', 'total_interest', 'total_fees', 'total_penalties',
        'principal_paid', 'interest_paid', 'fees_paid', 'penalties_paid', 'amount_paid', 'outstanding_balance',
    )

    loan_number = models.CharField(max_length=30, unique=True, db_index=True)
    client = models.ForeignKey(Client, on_delete=models.PROTECT, related_name='loans')
    product = models.ForeignKey(LoanProduct, on_delete=models.PROTECT, related_name='loans')
    office = models.ForeignKey(Office, on_delete=models.SET_NULL, null=True, blank=True, related_name='loans')
    loan_officer = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name='managed_loans'
    )

    principal_amount = money_field()
    interest_rate = models.DecimalField(max_digits=7, decimal_places=4, help_text="Annual nominal rate in percent")
    term = models.PositiveIntegerField(help_text="Months (days for daily frequency)")
    repayment_frequency = models.CharField(max_length=20, choices=LoanProduct.FREQUENCY_CHOICES)
    interest_calculation_method = models.CharField(max_length=30, choices=LoanProduct.INTEREST_METHOD_CHOICES)
    amortization_method = models.CharField(max_length=30, choices=LoanProduct.AMORTIZATION_CHOICES)
    purpose = models.CharField(max_length=255, blank=True)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending', db_index=True)
    application_date = models.DateField(default=timezone.localdate)
    approved_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name='approved_loans'
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.TextField(blank=True)

    disbursed_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name='disbursed_loans'
    )
    disbursement_date = models.DateField(null=True, blank=True)
    disbursement_method = models.CharField(max_length=30, blank=True)
    disbursement_reference = models.CharField(max_length=100, blank=True)
    expected_maturity_date = models.DateField(null=True, blank=True)
    closed_date = models.DateField(null=True, blank=True)

    total_principal = money_field()
    total_interest = money_field()
    total_fees = money_field()
    total_penalties = money_field()
    principal_paid = money_field()
    interest_paid = money_field()
    fees_paid = money_field()
    penalties_paid = money_field()
    amount_paid = money_field()
    outstanding_balance = money_field()

    written_off_amount = money_field()
    written_off_at = models.DateTimeField(null=True, blank=True)
    write_off_reason = models.TextField(blank=True)

    created_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name='created_loans'
    )

    objects = LoanManager()

    class Meta:
        ordering = ['-application_date', '-created_at']

    def __str__(self):
        return f"{self.loan_number} - {self.client.get_full_name()}"

    def save(self, *args, **kwargs):
        if not self.loan_number:
            self.loan_number = self.generate_loan_number()
        if self.product_id:
            if self.interest_rate is None:
                self.interest_rate = self.product.default_nominal_interest_rate
            self.repayment_frequency = self.repayment_frequency or self.product.repayment_frequency
            self.interest_calculation_method = (
                self.interest_calculation_method or self.product.interest_calculation_method
            )
            self.amortization_method = self.amortization_method or self.product.amortization_method
        super().save(*args, **kwargs)

    @staticmethod
    def generate_loan_number():
        prefix = f"LN{timezone.now().strftime('%Y%m%d')}"
        number = f"{prefix}{get_random_string(6, '0123456789')}"
        while Loan.all_objects.filter(loan_number=number).exists():
            number = f"{prefix}{get_random_string(6, '0123456789')}"
        return number

    def clean(self):
        super().clean()
        if self.client_id and self.client.tenant_id != self.tenant_id:
            raise ValidationError({'client': "Client belongs to another tenant"})
        if self.product_id:
            if self.product.tenant_id != self.tenant_id:
                raise ValidationError({'product': "Product belongs to another tenant"})
            self.product.validate_principal(self.principal_amount)
            self.product.validate_term(self.term)

    # =========================================================================
    # BALANCES
    # =========================================================================

    @property
    def is_servicing(self):
        return self.status in self.SERVICING_STATUSES

    def get_outstanding_balances(self):
        return {
            'principal': self.total_principal - self.principal_paid,
            'interest': self.total_interest - self.interest_paid,
            'fees': self.total_fees - self.fees_paid,
            'penalties': self.total_penalties - self.penalties_paid,
        }

    def _refresh_outstanding(self):
        self.outstanding_balance = MoneyCalculator.round_money(sum(self.get_outstanding_balances().values()))

    def build_schedule(self, start_date):
        """Schedule rows for this loan without saving them"""
        disbursement_fees = [
            fee.calculate(self.principal_amount)['amount']
            for fee in self.product.get_fees('disbursement')
        ]
        installment_fees = [
            fee.calculate(self.principal_amount)['amount']
            for fee in self.product.get_fees('installment')
        ]
        return generate_loan_schedule(
            principal=self.principal_amount,
            annual_rate=self.interest_rate,
            term=self.term,
            start_date=start_date,
            frequency=self.repayment_frequency,
            calculation_method=self.interest_calculation_method,
            amortization_method=self.amortization_method,
            days_in_year_type=self.product.days_in_year_type,
            disbursement_fees=disbursement_fees,
            installment_fees=installment_fees,
        )

    # =========================================================================
    # APPLICATION WORKFLOW
    # =========================================================================

    @db_transaction.atomic
    def approve(self, approved_by, approved_amount=None):
        if self.status != 'pending':
            raise ValueError(f"Cannot approve loan with status: {self.get_status_display()}")
        if approved_amount is not None:
            self.product.validate_principal(approved_amount)
            self.principal_amount = Decimal(str(approved_amount))

        self.status = 'approved'
        self.approved_by = approved_by
        self.approved_at = timezone.now()
        self.save(update_fields=['status', 'principal_amount', 'approved_by', 'approved_at', 'updated_at'])
        logger.info(f"Loan approved: {self.loan_number} by {approved_by}")

    @db_transaction.atomic
    def reject(self, rejected_by, reason=''):
        if self.status not in ('pending', 'approved'):
            raise ValueError(f"Cannot reject loan with status: {self.get_status_display()}")
        self.status = 'rejected'
        self.approved_by = rejected_by
        self.approved_at = timezone.now()
        self.rejection_reason = reason
        self.save(update_fields=['status', 'approved_by', 'approved_at', 'rejection_reason', 'updated_at'])
        logger.info(f"Loan rejected: {self.loan_number} | Reason: {reason}")

    def withdraw(self, reason=''):
        if self.status not in ('pending', 'approved'):
            raise ValueError(f"Cannot withdraw loan with status: {self.get_status_display()}")
        self.status = 'withdrawn'
        self.rejection_reason = reason
        self.save(update_fields=['status', 'rejection_reason', 'updated_at'])

    @db_transaction.atomic
    def disburse(self, disbursed_by, method='cash', reference='', disbursement_date=None,
                 transaction_status='completed', external_transaction_id=''):
        """
        Disburse an approved loan

        Generates the schedule, posts the disbursement journal and records the
        ``loan_disbursement`` transaction. M-Pesa disbursements pass
        ``transaction_status='pending'`` until the B2C result arrives.

        Returns:
            Transaction: the disbursement record
        """
        if self.status != 'approved':
            raise ValueError(f"Cannot disburse loan with status: {self.get_status_display()}")

        disbursement_date = disbursement_date or timezone.now().date()
        rows = self.build_schedule(disbursement_date)
        if not rows:
            raise ValidationError("Loan term produces an empty repayment schedule")

        self.schedule.all().delete()
        LoanSchedule.objects.bulk_create([LoanSchedule(loan=self, **row) for row in rows])

        totals = summarize_schedule(rows)
        self.total_principal = totals['total_principal']
        self.total_interest = totals['total_interest']
        self.total_fees = totals['total_fees']
        self.expected_maturity_date = totals['maturity_date']
        self._refresh_outstanding()

        self.status = 'active'
        self.disbursed_by = disbursed_by
        self.disbursement_date = disbursement_date
        self.disbursement_method = method
        self.disbursement_reference = reference
        self.save()

        accounting_helpers.post_loan_disbursement(self, disbursed_by, method)

        txn = record_transaction(
            'LD',
            tenant=self.tenant,
            client=self.client,
            loan=self,
            amount=self.principal_amount,
            transaction_type='loan_disbursement',
            payment_type=method,
            status=transaction_status,
            external_transaction_id=external_transaction_id or reference,
            description=f"Loan disbursement: {self.loan_number}",
            processed_by=disbursed_by,
        )

        logger.info(
            f"Loan disbursed: {self.loan_number} | Amount: {self.principal_amount:,.2f} | "
            f"Method: {method} | Installments: {len(rows)}"
        )
        return txn

    @db_transaction.atomic
    def reverse_disbursement(self, reversed_by=None, reason=''):
        """Undo a disbursement that never reached the client"""
        if self.status not in self.SERVICING_STATUSES:
            raise ValueError(f"Cannot reverse disbursement of loan with status: {self.get_status_display()}")
        if self.payments.filter(is_reversed=False).exists():
            raise ValidationError("Loan has repayments; reverse them first")

        for entry in JournalEntry.objects.for_tenant(self.tenant).for_reference(
            'loan_disbursement', self.id
        ).posted():
            entry.reverse(reversed_by, reason)

        self.schedule.all().delete()
        for field in ('total_principal', 'total_interest', 'total_fees', 'total_penalties',
                      'principal_paid', 'interest_paid', 'fees_paid', 'penalties_paid',
                      'amount_paid', 'outstanding_balance'):
            setattr(self, field, ZERO)
        self.status = 'approved'
        self.disbursement_date = None
        self.expected_maturity_date = None
        self.save()
        logger.warning(f"Loan disbursement reversed: {self.loan_number} | Reason: {reason}")

    # =========================================================================
    # REPAYMENTS
    # =========================================================================

    def _apply_to_schedule(self, amount):
        remaining = amount
        for row in self.schedule.exclude(status='paid').order_by('installment_number'):
            if remaining <= 0:
                break
            taken = min(remaining, row.outstanding_amount)
            row.paid_amount += taken
            row.refresh_status()
            row.save(update_fields=['paid_amount', 'outstanding_amount', 'status', 'updated_at'])
            remaining -= taken

    def _unapply_from_schedule(self, amount):
        """Walk back from the last instalment removing what was paid"""
        remaining = amount
        for row in self.schedule.filter(paid_amount__gt=0).order_by('-installment_number'):
            if remaining <= 0:
                break
            taken = min(remaining, row.paid_amount)
            row.paid_amount -= taken
            row.refresh_status()
            row.save(update_fields=['paid_amount', 'outstanding_amount', 'status', 'updated_at'])
            remaining -= taken

    @db_transaction.atomic
    def record_repayment(self, amount, processed_by, payment_date=None, method='cash',
                         reference='', description='', external_transaction_id='',
                         pending_transaction=None):
        """
        Record a repayment

        The amount is split across penalties, fees, interest and principal
        using the product's repayment strategy, the journal is posted, and the
        schedule is settled oldest instalment first.
        A ``pending_transaction`` (an M-Pesa request) is completed in place of
        a new ledger row.

        Returns:
            LoanPayment
        """
        self.lock_fields(*self.BALANCE_FIELDS)
        if not self.is_servicing:
            raise ValueError(f"Cannot record repayment for loan with status: {self.get_status_display()}")

        amount = MoneyCalculator.round_money(amount)
        if amount <= 0:
            raise ValidationError("Repayment amount must be greater than zero")
        if amount > self.outstanding_balance:
            raise ValidationError(
                f"Amount exceeds outstanding balance of {self.outstanding_balance:,.2f}"
            )

        payment_date = payment_date or timezone.now().date()
        allocation = allocate_repayment(amount, self.get_outstanding_balances(), self.product.repayment_strategy)

        payment = LoanPayment.objects.create(
            tenant=self.tenant,
            loan=self,
            amount=amount,
            principal_amount=allocation['principal'],
            interest_amount=allocation['interest'],
            fee_amount=allocation['fees'],
            penalty_amount=allocation['penalties'],
            payment_date=payment_date,
            payment_method=method,
            reference_number=reference,
            recorded_by=processed_by,
        )

        self.principal_paid += allocation['principal']
        self.interest_paid += allocation['interest']
        self.fees_paid += allocation['fees']
        self.penalties_paid += allocation['penalties']
        self.amount_paid += amount
        self._refresh_outstanding()

        if MoneyCalculator.is_zero(self.outstanding_balance):
            self.outstanding_balance = ZERO
            self.status = 'closed'
            self.closed_date = payment_date
        self.save()

        self._apply_to_schedule(amount - allocation['penalties'])

        payment.journal_entry = accounting_helpers.post_loan_repayment(self, payment, processed_by)
        payment.transaction = settle_transaction(
            pending_transaction,
            'LR',
            tenant=self.tenant,
            client=self.client,
            loan=self,
            amount=amount,
            transaction_type='loan_repayment',
            payment_type=method,
            external_transaction_id=external_transaction_id or reference,
            transaction_date=timezone.now(),
            description=description or f"Repayment for {self.loan_number}",
            processed_by=processed_by,
        )
        payment.save(update_fields=['journal_entry', 'transaction', 'updated_at'])

        logger.info(
            f"Repayment recorded: {self.loan_number} | Amount: {amount:,.2f} | "
            f"P={allocation['principal']} I={allocation['interest']} "
            f"F={allocation['fees']} Pen={allocation['penalties']}"
        )
        return payment

    @db_transaction.atomic
    def undo_repayment(self, payment, reversed_by, reason=''):
        """
        Reverse a repayment

        Posts the swapped journal, writes the negative reversal transaction
        and the undo record, restores the balance (reopening a closed loan) and
        walks the schedule back from the last instalment.

        Returns:
            JournalEntry: the reversal journal
        """
        if payment.loan_id != self.id:
            raise ValidationError("Payment does not belong to this loan")
        self.lock_fields(*self.BALANCE_FIELDS)
        payment.lock_fields('is_reversed', 'reversed_at')
        if self.status == 'written_off':
            raise ValidationError("Cannot reverse payments on a written-off loan")
        if self.product.accounting_type == 'none':
            raise ValidationError("Accounting is disabled for this loan product; payment cannot be reversed")

        external_id = f"REV-{payment.reference_number or payment.id}"
        if payment.is_reversed or Transaction.objects.filter(
            tenant=self.tenant, external_transaction_id=external_id
        ).exists():
            raise ValidationError("This payment has already been reversed")
        if not payment.journal_entry or payment.journal_entry.status != 'posted':
            raise ValidationError("Payment has no posted journal entry to reverse")

        reversal = payment.journal_entry.reverse(
            reversed_by, reason, reference_type='loan_payment_reversal'
        )

        self.principal_paid -= payment.principal_amount
        self.interest_paid -= payment.interest_amount
        self.fees_paid -= payment.fee_amount
        self.penalties_paid -= payment.penalty_amount
        self.amount_paid -= payment.amount
        self._refresh_outstanding()
        if self.status == 'closed':
            self.status = 'active'
            self.closed_date = None
        self.save()

        self._unapply_from_schedule(payment.amount - payment.penalty_amount)

        record_transaction(
            'LR-REV',
            tenant=self.tenant,
            client=self.client,
            loan=self,
            amount=-payment.amount,
            transaction_type='loan_repayment_reversal',
            payment_type=payment.payment_method,
            external_transaction_id=external_id,
            description=f"Reversal of repayment {payment.reference_number or payment.id}: {reason}",
            processed_by=reversed_by,
        )
        record_transaction(
            'UNDO',
            tenant=self.tenant,
            client=self.client,
            loan=self,
            amount=payment.amount,
            transaction_type='repayment_undo',
            payment_type=payment.payment_method,
            description=reason or 'Repayment undone',
            processed_by=reversed_by,
        )

        payment.is_reversed = True
        payment.reversed_at = timezone.now()
        payment.reversed_by = reversed_by
        payment.reversal_reason = reason
        payment.reversal_journal_entry = reversal
        payment.save(update_fields=[
            'is_reversed', 'reversed_at', 'reversed_by', 'reversal_reason',
            'reversal_journal_entry', 'updated_at'
        ])

        logger.info(
            f"Repayment reversed: {self.loan_number} | Amount: {payment.amount:,.2f} | "
            f"New balance: {self.outstanding_balance:,.2f} | Reason: {reason}"
        )
        return reversal

    # =========================================================================
    # CHARGES & WRITE-OFF
    # =========================================================================

    @db_transaction.atomic
    def apply_charge(self, charge_type, amount, created_by, charge_date=None, description='', fee=None):
        """Add a fee, penalty or interest charge to the loan balance"""
        self.lock_fields(*self.BALANCE_FIELDS)
        if not self.is_servicing:
            raise ValueError(f"Cannot charge loan with status: {self.get_status_display()}")
        if charge_type not in dict(LoanCharge.CHARGE_TYPE_CHOICES):
            raise ValidationError(f"Unknown charge type: {charge_type}")

        if amount is None and fee is not None:
            amount = fee.calculate(self.outstanding_balance)['amount']
        amount = MoneyCalculator.round_money(amount)
        if amount <= 0:
            raise ValidationError("Charge amount must be greater than zero")

        charge = LoanCharge.objects.create(
            tenant=self.tenant,
            loan=self,
            charge_type=charge_type,
            fee=fee,
            amount=amount,
            charge_date=charge_date or timezone.now().date(),
            description=description or (fee.name if fee else f"{charge_type.title()} charge"),
            created_by=created_by,
        )

        if charge_type == 'interest':
            self.total_interest += amount
        elif charge_type == 'penalty':
            self.total_penalties += amount
        else:
            self.total_fees += amount
        self._refresh_outstanding()
        self.save()

        charge.journal_entry = accounting_helpers.post_loan_charge(self, charge, created_by)
        charge.save(update_fields=['journal_entry', 'updated_at'])

        record_transaction(
            'LC',
            tenant=self.tenant,
            client=self.client,
            loan=self,
            amount=amount,
            transaction_type='loan_charge',
            payment_type='internal',
            description=charge.description,
            processed_by=created_by,
        )
        logger.info(f"Charge applied: {self.loan_number} | {charge_type} {amount:,.2f}")
        return charge

    @db_transaction.atomic
    def write_off(self, written_off_by, reason=''):
        self.lock_fields(*self.BALANCE_FIELDS)
        if not self.is_servicing:
            raise ValueError(f"Cannot write off loan with status: {self.get_status_display()}")
        if self.outstanding_balance <= 0:
            raise ValidationError("Loan has no outstanding balance to write off")

        balances = self.get_outstanding_balances()
        accounting_helpers.post_loan_write_off(self, balances, written_off_by)

        self.written_off_amount = self.outstanding_balance
        self.written_off_at = timezone.now()
        self.write_off_reason = reason
        self.status = 'written_off'
        self.closed_date = timezone.now().date()
        self.save()

        record_transaction(
            'LW',
            tenant=self.tenant,
            client=self.client,
            loan=self,
            amount=self.written_off_amount,
            transaction_type='loan_write_off',
            payment_type='internal',
            description=reason or f"Write-off of {self.loan_number}",
            processed_by=written_off_by,
        )
        logger.warning(f"Loan written off: {self.loan_number} | Amount: {self.written_off_amount:,.2f}")

    # =========================================================================
    # STATEMENT
    # =========================================================================

    def get_statement(self):
        """
        Chronological statement with running balance

        Returns:
            list: rows of {'date', 'description', 'debit', 'credit', 'balance'}
        """
        events = []
        if self.disbursement_date:
            events.append((self.disbursement_date, 0, 'Disbursement', self.total_principal, ZERO))
            totals = self.schedule.aggregate(interest=Sum('interest_amount'), fees=Sum('fee_amount'))
            scheduled = (totals['interest'] or ZERO) + (totals['fees'] or ZERO)
            if scheduled:
                events.append((self.disbursement_date, 1, 'Scheduled interest and fees', scheduled, ZERO))

        for charge in self.charges.all():
            events.append((charge.charge_date, 2, charge.description, charge.amount, ZERO))
            if charge.is_waived:
                events.append((charge.waived_at.date(), 3, f"Waived: {charge.description}", ZERO, charge.amount))

        for payment in self.payments.all():
            events.append((payment.payment_date, 4, f"Repayment {payment.reference_number}".strip(), ZERO, payment.amount))
            if payment.is_reversed:
                events.append((payment.reversed_at.date(), 5, 'Repayment reversed', payment.amount, ZERO))

        events.sort(key=lambda event: (event[0], event[1]))

        balance = ZERO
        rows = []
        for event_date, _, description, debit, credit in events:
            balance += debit - credit
            rows.append({
                'date': event_date,
                'description': description,
                'debit': debit,
                'credit': credit,
                'balance': balance,
            })
        return rows


class LoanSchedule(BaseModel):
    STATUS_CHOICES = [
        ('unpaid', 'Unpaid'),
        ('partial', 'Partially Paid'),
        ('paid', 'Paid'),
    ]

    loan = models.ForeignKey(Loan, on_delete=models.CASCADE, related_name='schedule')
    installment_number = models.PositiveIntegerField()
    due_date = models.DateField(db_index=True)
    principal_amount = money_field()
    interest_amount = money_field()
    fee_amount = money_field()
    total_amount = money_field()
    paid_amount = money_field()
    outstanding_amount = money_field()
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='unpaid')

    class Meta:
        ordering = ['installment_number']
        constraints = [
            models.UniqueConstraint(
                fields=['loan', 'installment_number'],
                condition=Q(deleted_at__isnull=True),
                name='unique_installment_per_loan'
            ),
        ]

    def __str__(self):
        return f"{self.loan.loan_number} #{self.installment_number} due {self.due_date}"

    def refresh_status(self):
        if self.paid_amount <= MoneyCalculator.TOLERANCE:
            self.paid_amount = ZERO
        self.outstanding_amount = max(ZERO, self.total_amount - self.paid_amount)
        if self.paid_amount == 0:
            self.status = 'unpaid'
        elif self.outstanding_amount <= MoneyCalculator.TOLERANCE:
            self.status = 'paid'
        else:
            self.status = 'partial'

    @property
    def is_overdue(self):
        return self.status != 'paid' and self.due_date < timezone.now().date()


class LoanPayment(TenantScopedModel):
    loan = models.ForeignKey(Loan, on_delete=models.PROTECT, related_name='payments')
    amount = money_field()
    principal_amount = money_field()
    interest_amount = money_field()
    fee_amount = money_field()
    penalty_amount = money_field()
    payment_date = models.DateField(default=timezone.localdate)
    payment_method = models.CharField(max_length=30, default='cash')
    reference_number = models.CharField(max_length=100, blank=True, db_index=True)

    journal_entry = models.ForeignKey(
        JournalEntry, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    transaction = models.ForeignKey(
        Transaction, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    recorded_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name='recorded_payments'
    )

    is_reversed = models.BooleanField(default=False, db_index=True)
    reversed_at = models.DateTimeField(null=True, blank=True)
    reversed_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name='reversed_payments'
    )
    reversal_reason = models.TextField(blank=True)
    reversal_journal_entry = models.ForeignKey(
        JournalEntry, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )

    class Meta:
        ordering = ['-payment_date', '-created_at']

    def __str__(self):
        return f"{self.loan.loan_number} payment {self.amount:,.2f} on {self.payment_date}"


class LoanCharge(TenantScopedModel):
    CHARGE_TYPE_CHOICES = [
        ('fee', 'Fee'),
        ('penalty', 'Penalty'),
        ('interest', 'Interest'),
    ]

    loan = models.ForeignKey(Loan, on_delete=models.CASCADE, related_name='charges')
    charge_type = models.CharField(max_length=20, choices=CHARGE_TYPE_CHOICES)
    fee = models.ForeignKey(FeeStructure, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    amount = money_field()
    charge_date = models.DateField(default=timezone.localdate)
    description = models.CharField(max_length=255, blank=True)
    journal_entry = models.ForeignKey(
        JournalEntry, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    is_waived = models.BooleanField(default=False)
    waived_at = models.DateTimeField(null=True, blank=True)
    waived_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    created_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )

    class Meta:
        ordering = ['charge_date', 'created_at']

    def __str__(self):
        return f"{self.get_charge_type_display()} {self.amount:,.2f} on {self.loan.loan_number}"

    @db_transaction.atomic
    def waive(self, waived_by):
        """Cancel an unpaid charge"""
        self.lock_fields('is_waived')
        if self.is_waived:
            raise ValidationError("Charge has already been waived")

        loan = self.loan
        loan.lock_fields(*loan.BALANCE_FIELDS)
        component = {'interest': 'interest', 'penalty': 'penalties', 'fee': 'fees'}[self.charge_type]
        if loan.get_outstanding_balances()[component] < self.amount:
            raise ValidationError("Charge has already been paid and cannot be waived")

        if self.charge_type == 'interest':
            loan.total_interest -= self.amount
        elif self.charge_type == 'penalty':
            loan.total_penalties -= self.amount
        else:
            loan.total_fees -= self.amount
        loan._refresh_outstanding()
        loan.save()

        if self.journal_entry and self.journal_entry.status == 'posted':
            self.journal_entry.reverse(waived_by, f"Waiver of {self.description}")

        self.is_waived = True
        self.waived_at = timezone.now()
        self.waived_by = waived_by
        self.save(update_fields=['is_waived', 'waived_at', 'waived_by', 'updated_at'])
        logger.info(f"Charge waived: {loan.loan_number} | {self.charge_type} {self.amount:,.2f}")


# =============================================================================
# SAVINGS
# =============================================================================

class SavingsAccount(TenantScopedModel):
    """
    A client's savings account

    pending -> approved -> active <-> dormant -> closed
    """

    STATUS_CHOICES = [
        ('pending', 'Pending Approval'),
        ('approved', 'Approved'),
        ('active', 'Active'),
        ('dormant', 'Dormant'),
        ('closed', 'Closed'),
    ]

    BALANCE_FIELDS = (
        'status', 'account_balance', 'available_balance', 'total_deposits', 'total_withdrawals',
        'total_interest_posted', 'total_fees_charged',
    )

    account_number = models.CharField(max_length=30, unique=True, db_index=True)
    client = models.ForeignKey(Client, on_delete=models.PROTECT, related_name='savings_accounts')
    product = models.ForeignKey(SavingsProduct, on_delete=models.PROTECT, related_name='accounts')
    office = models.ForeignKey(Office, on_delete=models.SET_NULL, null=True, blank=True, related_name='savings_accounts')

    account_balance = money_field()
    available_balance = money_field()
    interest_rate = models.DecimalField(max_digits=7, decimal_places=4, default=Decimal('0'))
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending', db_index=True)

    opened_date = models.DateField(default=timezone.localdate)
    approved_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name='approved_savings'
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    activated_date = models.DateField(null=True, blank=True)
    closed_date = models.DateField(null=True, blank=True)
    closure_reason = models.TextField(blank=True)

    total_deposits = money_field()
    total_withdrawals = money_field()
    total_interest_posted = money_field()
    total_fees_charged = money_field()

    created_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name='created_savings'
    )

    objects = SavingsAccountManager()

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.account_number} - {self.client.get_full_name()}"

    def save(self, *args, **kwargs):
        if not self.account_number:
            self.account_number = self.generate_account_number()
        if self._state.adding and not self.interest_rate and self.product_id:
            self.interest_rate = self.product.nominal_annual_interest_rate
        super().save(*args, **kwargs)

    @staticmethod
    def generate_account_number():
        prefix = f"SA{timezone.now().strftime('%y%m%d')}"
        number = f"{prefix}{get_random_string(6, '0123456789')}"
        while SavingsAccount.all_objects.filter(account_number=number).exists():
            number = f"{prefix}{get_random_string(6, '0123456789')}"
        return number

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def approve(self, approved_by):
        if self.status != 'pending':
            raise ValueError(f"Cannot approve savings account with status: {self.get_status_display()}")
        self.status = 'approved'
        self.approved_by = approved_by
        self.approved_at = timezone.now()
        self.save(update_fields=['status', 'approved_by', 'approved_at', 'updated_at'])

    @db_transaction.atomic
    def activate(self, activated_by, opening_deposit=0, method='cash', reference=''):
        """Activate an approved account, taking the opening deposit"""
        if self.status != 'approved':
            raise ValueError(f"Cannot activate savings account with status: {self.get_status_display()}")
        opening_deposit = MoneyCalculator.round_money(opening_deposit)
        minimum = self.product.min_required_opening_balance
        if opening_deposit < minimum:
            raise ValidationError(f"Opening deposit must be at least {minimum:,.2f}")

        self.status = 'active'
        self.activated_date = timezone.now().date()
        self.save(update_fields=['status', 'activated_date', 'updated_at'])

        if opening_deposit > 0:
            self.deposit(opening_deposit, activated_by, method=method, reference=reference,
                         description='Opening deposit')

    @db_transaction.atomic
    def close(self, closed_by, reason=''):
        if self.status == 'closed':
            raise ValueError("Account is already closed")
        if self.account_balance != 0:
            raise ValidationError("Only accounts with a zero balance can be closed")
        self.status = 'closed'
        self.closed_date = timezone.now().date()
        self.closure_reason = reason
        self.save(update_fields=['status', 'closed_date', 'closure_reason', 'updated_at'])
        logger.info(f"Savings account closed: {self.account_number} by {closed_by}")

    def _ensure_transactable(self):
        if self.status == 'dormant':
            self.status = 'active'
        if self.status != 'active':
            raise ValueError(f"Account is not active (status: {self.get_status_display()})")

    # =========================================================================
    # MONEY MOVEMENT
    # =========================================================================

    @db_transaction.atomic
    def deposit(self, amount, processed_by, method='cash', reference='', description='',
                transaction_date=None, external_transaction_id='',
                pending_transaction=None):
        """
        Credit the account

        Journal: Dr fund source (by payment method) / Cr savings control

        Returns:
            SavingsTransaction
        """
        self.lock_fields(*self.BALANCE_FIELDS)
        self._ensure_transactable()
        amount = MoneyCalculator.round_money(amount)
        if amount <= 0:
            raise ValidationError("Deposit amount must be greater than zero")

        self.account_balance += amount
        self.available_balance += amount
        self.total_deposits += amount
        self.save(update_fields=['status', 'account_balance', 'available_balance', 'total_deposits', 'updated_at'])

        txn = SavingsTransaction.objects.create(
            tenant=self.tenant,
            savings_account=self,
            transaction_type='deposit',
            amount=amount,
            balance_after=self.account_balance,
            transaction_date=transaction_date or timezone.now().date(),
            payment_method=method,
            reference_number=reference,
            description=description or 'Deposit',
            processed_by=processed_by,
        )
        txn.journal_entry = accounting_helpers.post_savings_deposit(self, txn, processed_by)
        txn.ledger_transaction = settle_transaction(
            pending_transaction,
            'SD',
            tenant=self.tenant,
            client=self.client,
            savings_account=self,
            amount=amount,
            transaction_type='savings_deposit',
            payment_type=method,
            external_transaction_id=external_transaction_id or reference,
            description=txn.description,
            processed_by=processed_by,
        )
        txn.save(update_fields=['journal_entry', 'ledger_transaction', 'updated_at'])

        logger.info(f"Savings deposit: {self.account_number} | Amount: {amount:,.2f} | Balance: {self.account_balance:,.2f}")
        return txn

    def can_withdraw(self, amount):
        amount = Decimal(str(amount))
        if amount > self.available_balance:
            return False, f"Insufficient funds. Available balance: {self.available_balance:,.2f}"
        if self.account_balance - amount < self.product.minimum_balance:
            return False, f"Withdrawal would breach the minimum balance of {self.product.minimum_balance:,.2f}"
        return True, ""

    @db_transaction.atomic
    def withdraw(self, amount, processed_by, method='cash', reference='', description='', transaction_date=None):
        """
        Debit the account

        Journal: Dr savings control / Cr fund source
        """
        self.lock_fields(*self.BALANCE_FIELDS)
        self._ensure_transactable()
        amount = MoneyCalculator.round_money(amount)
        if amount <= 0:
            raise ValidationError("Withdrawal amount must be greater than zero")
        allowed, message = self.can_withdraw(amount)
        if not allowed:
            raise ValidationError(message)

        self.account_balance -= amount
        self.available_balance -= amount
        self.total_withdrawals += amount
        self.save(update_fields=['status', 'account_balance', 'available_balance', 'total_withdrawals', 'updated_at'])

        txn = SavingsTransaction.objects.create(
            tenant=self.tenant,
            savings_account=self,
            transaction_type='withdrawal',
            amount=amount,
            balance_after=self.account_balance,
            transaction_date=transaction_date or timezone.now().date(),
            payment_method=method,
            reference_number=reference,
            description=description or 'Withdrawal',
            processed_by=processed_by,
        )
        txn.journal_entry = accounting_helpers.post_savings_withdrawal(self, txn, processed_by)
        txn.ledger_transaction = record_transaction(
            'SW',
            tenant=self.tenant,
            client=self.client,
            savings_account=self,
            amount=amount,
            transaction_type='savings_withdrawal',
            payment_type=method,
            external_transaction_id=reference,
            description=txn.description,
            processed_by=processed_by,
        )
        txn.save(update_fields=['journal_entry', 'ledger_transaction', 'updated_at'])

        logger.info(f"Savings withdrawal: {self.account_number} | Amount: {amount:,.2f} | Balance: {self.account_balance:,.2f}")
        return txn

    @db_transaction.atomic
    def charge_fee(self, processed_by, fee=None, amount=None, description=''):
        """
        Charge a fee against the balance

        Journal: Dr savings control / Cr fee (or penalty) income
        """
        self.lock_fields(*self.BALANCE_FIELDS)
        self._ensure_transactable()
        if amount is None:
            if fee is None:
                raise ValidationError("Either a fee or an amount is required")
            amount = fee.calculate(self.account_balance)['amount']
        amount = MoneyCalculator.round_money(amount)
        if amount <= 0:
            raise ValidationError("Fee amount must be greater than zero")
        if amount > self.account_balance:
            raise ValidationError(f"Fee exceeds account balance of {self.account_balance:,.2f}")

        self.account_balance -= amount
        self.available_balance = max(ZERO, self.available_balance - amount)
        self.total_fees_charged += amount
        self.save(update_fields=['status', 'account_balance', 'available_balance', 'total_fees_charged', 'updated_at'])

        txn = SavingsTransaction.objects.create(
            tenant=self.tenant,
            savings_account=self,
            transaction_type='fee_charge',
            amount=amount,
            balance_after=self.account_balance,
            transaction_date=timezone.now().date(),
            payment_method='internal',
            description=description or (fee.name if fee else 'Account fee'),
            fee=fee,
            processed_by=processed_by,
        )
        txn.journal_entry = accounting_helpers.post_savings_fee(self, txn, processed_by, fee=fee)
        txn.ledger_transaction = record_transaction(
            'SF',
            tenant=self.tenant,
            client=self.client,
            savings_account=self,
            amount=amount,
            transaction_type='savings_fee',
            payment_type='internal',
            description=txn.description,
            processed_by=processed_by,
        )
        txn.save(update_fields=['journal_entry', 'ledger_transaction', 'updated_at'])
        return txn

    # =========================================================================
    # INTEREST
    # =========================================================================

    def get_balance_on(self, day):
        """End-of-day balance replayed from the transaction history"""
        last = self.transactions.filter(
            transaction_date__lte=day
        ).order_by('-transaction_date', '-created_at').first()
        return last.balance_after if last else ZERO

    def get_average_daily_balance(self, period_start, period_end):
        days = (period_end - period_start).days + 1
        if days <= 0:
            return ZERO

        balance = self.get_balance_on(period_start - timedelta(days=1))
        by_day = {}
        for txn in self.transactions.filter(
            transaction_date__gte=period_start, transaction_date__lte=period_end
        ).order_by('transaction_date', 'created_at'):
            by_day[txn.transaction_date] = txn.balance_after

        total = ZERO
        day = period_start
        while day <= period_end:
            balance = by_day.get(day, balance)
            total += balance
            day += timedelta(days=1)
        return MoneyCalculator.round_money(total / days)

    def calculate_interest(self, period_start, period_end):
        """
        Compute (not post) interest for a period

            interest = average balance * rate / 100 * days / 365

        Returns:
            SavingsInterestPosting
        """
        if period_end < period_start:
            raise ValidationError("Period end must not precede period start")
        if self.interest_postings.filter(period_start=period_start, period_end=period_end).exists():
            raise ValidationError("Interest has already been calculated for this period")

        days = (period_end - period_start).days + 1
        average_balance = self.get_average_daily_balance(period_start, period_end)
        interest = MoneyCalculator.round_money(
            average_balance * self.interest_rate / Decimal('100') * days / Decimal('365')
        )
        return SavingsInterestPosting.objects.create(
            savings_account=self,
            period_start=period_start,
            period_end=period_end,
            days=days,
            average_balance=average_balance,
            interest_rate=self.interest_rate,
            interest_amount=interest,
        )

    @db_transaction.atomic
    def post_interest(self, posting, processed_by):
        """
        Credit calculated interest to the account

        Journal: Dr interest on savings (expense) / Cr savings control
        """
        self.lock_fields(*self.BALANCE_FIELDS)
        if posting.savings_account_id != self.id:
            raise ValidationError("Interest posting belongs to another account")
        posting.lock_fields('is_posted', 'posted_at')
        if posting.is_posted:
            raise ValidationError("Interest has already been posted")
        self._ensure_transactable()

        amount = posting.interest_amount
        if amount > 0:
            self.account_balance += amount
            self.available_balance += amount
            self.total_interest_posted += amount
            self.save(update_fields=[
                'status', 'account_balance', 'available_balance', 'total_interest_posted', 'updated_at'
            ])

            txn = SavingsTransaction.objects.create(
                tenant=self.tenant,
                savings_account=self,
                transaction_type='interest_posting',
                amount=amount,
                balance_after=self.account_balance,
                transaction_date=posting.period_end,
                payment_method='internal',
                description=f"Interest {posting.period_start} to {posting.period_end}",
                processed_by=processed_by,
            )
            txn.journal_entry = accounting_helpers.post_savings_interest(self, txn, processed_by)
            txn.ledger_transaction = record_transaction(
                'SI',
                tenant=self.tenant,
                client=self.client,
                savings_account=self,
                amount=amount,
                transaction_type='interest_posting',
                payment_type='internal',
                description=txn.description,
                processed_by=processed_by,
            )
            txn.save(update_fields=['journal_entry', 'ledger_transaction', 'updated_at'])
            posting.transaction = txn

        posting.is_posted = True
        posting.posted_at = timezone.now()
        posting.save(update_fields=['is_posted', 'posted_at', 'transaction', 'updated_at'])
        logger.info(f"Savings interest posted: {self.account_number} | Amount: {amount:,.2f}")
        return posting

    # =========================================================================
    # REVERSAL
    # =========================================================================

    @db_transaction.atomic
    def undo_transaction(self, txn, reversed_by, reason=''):
        """
        Reverse a deposit or withdrawal

        Returns:
            SavingsTransaction: the reversal row
        """
        if txn.savings_account_id != self.id:
            raise ValidationError("Transaction belongs to another account")
        self.lock_fields(*self.BALANCE_FIELDS)
        txn.lock_fields('is_reversed', 'reversed_at')
        if txn.transaction_type not in ('deposit', 'withdrawal'):
            raise ValidationError("Only deposits and withdrawals can be reversed")
        if txn.is_reversed:
            raise ValidationError("This transaction has already been reversed")
        if self.status == 'closed':
            raise ValidationError("Cannot reverse transactions on a closed account")

        if txn.transaction_type == 'deposit':
            if txn.amount > self.account_balance:
                raise ValidationError("Reversing this deposit would overdraw the account")
            delta = -txn.amount
            self.total_deposits -= txn.amount
        else:
            delta = txn.amount
            self.total_withdrawals -= txn.amount

        self.account_balance += delta
        self.available_balance = max(ZERO, self.available_balance + delta)
        self.save(update_fields=[
            'account_balance', 'available_balance', 'total_deposits', 'total_withdrawals', 'updated_at'
        ])

        reversal_journal = None
        if txn.journal_entry and txn.journal_entry.status == 'posted':
            reversal_journal = txn.journal_entry.reverse(
                reversed_by, reason, reference_type='savings_transaction_reversal'
            )

        reversal = SavingsTransaction.objects.create(
            tenant=self.tenant,
            savings_account=self,
            transaction_type='reversal',
            amount=txn.amount,
            balance_after=self.account_balance,
            transaction_date=timezone.now().date(),
            payment_method=txn.payment_method,
            reference_number=f"REV-{txn.reference_number or txn.id}",
            description=f"Reversal of {txn.get_transaction_type_display().lower()}: {reason}",
            journal_entry=reversal_journal,
            reversal_of=txn,
            processed_by=reversed_by,
        )
        reversal.ledger_transaction = record_transaction(
            'SR-REV',
            tenant=self.tenant,
            client=self.client,
            savings_account=self,
            amount=-txn.amount,
            transaction_type='savings_reversal',
            payment_type=txn.payment_method,
            external_transaction_id=f"REV-{txn.reference_number or txn.id}",
            description=reversal.description,
            processed_by=reversed_by,
        )
        reversal.save(update_fields=['ledger_transaction', 'updated_at'])

        txn.is_reversed = True
        txn.reversed_at = timezone.now()
        txn.reversal_reason = reason
        txn.save(update_fields=['is_reversed', 'reversed_at', 'reversal_reason', 'updated_at'])

        logger.info(
            f"Savings {txn.transaction_type} reversed: {self.account_number} | "
            f"Amount: {txn.amount:,.2f} | Balance: {self.account_balance:,.2f}"
        )
        return reversal

    def get_statement(self, date_from=None, date_to=None):
        txns = self.transactions.all().order_by('transaction_date', 'created_at')
        if date_from:
            txns = txns.filter(transaction_date__gte=date_from)
        if date_to:
            txns = txns.filter(transaction_date__lte=date_to)
        credit_types = ('deposit', 'interest_posting')
        rows = []
        for txn in txns:
            if txn.transaction_type == 'reversal':
                is_credit = txn.reversal_of and txn.reversal_of.transaction_type == 'withdrawal'
            else:
                is_credit = txn.transaction_type in credit_types
            rows.append({
                'date': txn.transaction_date,
                'description': txn.description,
                'debit': ZERO if is_credit else txn.amount,
                'credit': txn.amount if is_credit else ZERO,
                'balance': txn.balance_after,
            })
        return rows


class SavingsTransaction(TenantScopedModel):
    TRANSACTION_TYPE_CHOICES = [
        ('deposit', 'Deposit'),
        ('withdrawal', 'Withdrawal'),
        ('interest_posting', 'Interest Posting'),
        ('fee_charge', 'Fee Charge'),
        ('reversal', 'Reversal'),
    ]

    savings_account = models.ForeignKey(SavingsAccount, on_delete=models.PROTECT, related_name='transactions')
    transaction_type = models.CharField(max_length=20, choices=TRANSACTION_TYPE_CHOICES, db_index=True)
    amount = money_field()
    balance_after = money_field()
    transaction_date = models.DateField(default=timezone.localdate, db_index=True)
    payment_method = models.CharField(max_length=30, default='cash')
    reference_number = models.CharField(max_length=100, blank=True)
    description = models.CharField(max_length=255, blank=True)
    fee = models.ForeignKey(FeeStructure, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')

    journal_entry = models.ForeignKey(
        JournalEntry, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    ledger_transaction = models.ForeignKey(
        Transaction, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    processed_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )

    is_reversed = models.BooleanField(default=False)
    reversed_at = models.DateTimeField(null=True, blank=True)
    reversal_reason = models.TextField(blank=True)
    reversal_of = models.ForeignKey(
        'self', on_delete=models.SET_NULL, null=True, blank=True, related_name='reversals'
    )

    class Meta:
        ordering = ['-transaction_date', '-created_at']

    def __str__(self):
        return f"{self.savings_account.account_number} {self.transaction_type} {self.amount:,.2f}"


class SavingsInterestPosting(BaseModel):
    savings_account = models.ForeignKey(SavingsAccount, on_delete=models.CASCADE, related_name='interest_postings')
    period_start = models.DateField()
    period_end = models.DateField()
    days = models.PositiveIntegerField()
    average_balance = money_field()
    interest_rate = models.DecimalField(max_digits=7, decimal_places=4)
    interest_amount = money_field()
    is_posted = models.BooleanField(default=False)
    posted_at = models.DateTimeField(null=True, blank=True)
    transaction = models.ForeignKey(
        SavingsTransaction, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )

    class Meta:
        ordering = ['-period_end']

    def __str__(self):
        return f"{self.savings_account.account_number} interest {self.period_start} - {self.period_end}"


# =============================================================================
# ACCRUALS, PROVISIONS, PERIOD CLOSE
# =============================================================================

class Accrual(TenantScopedModel):
    """
    An expense or revenue recognised before cash moves

    expense: Dr expense account / Cr accrued liability (contra)
    revenue: Dr accrued receivable (contra) / Cr revenue account
    """

    ACCRUAL_TYPE_CHOICES = [
        ('expense', 'Expense Accrual'),
        ('revenue', 'Revenue Accrual'),
    ]

    STATUS_CHOICES = [
        ('draft', 'Draft'),
        ('posted', 'Posted'),
        ('reversed', 'Reversed'),
    ]

    accrual_type = models.CharField(max_length=20, choices=ACCRUAL_TYPE_CHOICES)
    description = models.CharField(max_length=255)
    amount = money_field()
    accrual_date = models.DateField(default=timezone.localdate)
    reversal_date = models.DateField(null=True, blank=True)
    account = models.ForeignKey(ChartOfAccounts, on_delete=models.PROTECT, related_name='+')
    contra_account = models.ForeignKey(ChartOfAccounts, on_delete=models.PROTECT, related_name='+')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='draft')
    journal_entry = models.ForeignKey(
        JournalEntry, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    reversal_journal_entry = models.ForeignKey(
        JournalEntry, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')

    class Meta:
        ordering = ['-accrual_date']

    def __str__(self):
        return f"{self.get_accrual_type_display()}: {self.description}"

    @db_transaction.atomic
    def post(self, posted_by):
        if self.status != 'draft':
            raise ValueError(f"Cannot post accrual with status: {self.get_status_display()}")
        if self.amount <= 0:
            raise ValidationError("Accrual amount must be greater than zero")

        if self.accrual_type == 'expense':
            debit_account, credit_account = self.account, self.contra_account
        else:
            debit_account, credit_account = self.contra_account, self.account

        self.journal_entry = accounting_helpers.create_journal_entry(
            tenant=self.tenant,
            transaction_date=self.accrual_date,
            description=f"Accrual: {self.description}",
            lines=[
                {'account': debit_account, 'debit': self.amount, 'credit': 0},
                {'account': credit_account, 'debit': 0, 'credit': self.amount},
            ],
            created_by=posted_by,
            entry_type='accrual',
            reference_type='accrual',
            reference_id=str(self.id),
        )
        self.status = 'posted'
        self.save(update_fields=['journal_entry', 'status', 'updated_at'])

    @db_transaction.atomic
    def reverse(self, reversed_by, reversal_date=None):
        if self.status != 'posted':
            raise ValueError("Only posted accruals can be reversed")
        reversal_date = reversal_date or self.reversal_date or timezone.now().date()
        self.reversal_journal_entry = self.journal_entry.reverse(
            reversed_by, f"Accrual reversal: {self.description}", reversal_date=reversal_date
        )
        self.reversal_date = reversal_date
        self.status = 'reversed'
        self.save(update_fields=['reversal_journal_entry', 'reversal_date', 'status', 'updated_at'])


class Provision(TenantScopedModel):
    """
    A provision such as loan-loss

    Journal: Dr provision expense / Cr provision (contra asset or liability)
    """

    PROVISION_TYPE_CHOICES = [
        ('loan_loss', 'Loan Loss Provision'),
        ('bad_debt', 'Bad Debt Provision'),
        ('other', 'Other'),
    ]

    CALCULATION_METHOD_CHOICES = [
        ('percentage', 'Percentage of Base'),
        ('fixed', 'Fixed Amount'),
    ]

    STATUS_CHOICES = [
        ('draft', 'Draft'),
        ('posted', 'Posted'),
        ('reversed', 'Reversed'),
    ]

    provision_type = models.CharField(max_length=20, choices=PROVISION_TYPE_CHOICES, default='loan_loss')
    description = models.CharField(max_length=255)
    calculation_method = models.CharField(max_length=20, choices=CALCULATION_METHOD_CHOICES, default='percentage')
    base_amount = money_field()
    rate = models.DecimalField(max_digits=7, decimal_places=4, default=Decimal('0'))
    amount = money_field()
    provision_date = models.DateField(default=timezone.localdate)
    expense_account = models.ForeignKey(ChartOfAccounts, on_delete=models.PROTECT, related_name='+')
    provision_account = models.ForeignKey(ChartOfAccounts, on_delete=models.PROTECT, related_name='+')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='draft')
    journal_entry = models.ForeignKey(
        JournalEntry, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')

    class Meta:
        ordering = ['-provision_date']

    def __str__(self):
        return f"{self.get_provision_type_display()}: {self.amount:,.2f}"

    def calculate(self):
        if self.calculation_method == 'percentage':
            self.amount = MoneyCalculator.calculate_percentage(self.base_amount, self.rate)
        return self.amount

    @db_transaction.atomic
    def post(self, posted_by):
        if self.status != 'draft':
            raise ValueError(f"Cannot post provision with status: {self.get_status_display()}")
        self.calculate()
        if self.amount <= 0:
            raise ValidationError("Provision amount must be greater than zero")

        self.journal_entry = accounting_helpers.create_journal_entry(
            tenant=self.tenant,
            transaction_date=self.provision_date,
            description=f"Provision: {self.description}",
            lines=[
                {'account': self.expense_account, 'debit': self.amount, 'credit': 0},
                {'account': self.provision_account, 'debit': 0, 'credit': self.amount},
            ],
            created_by=posted_by,
            entry_type='provision',
            reference_type='provision',
            reference_id=str(self.id),
        )
        self.status = 'posted'
        self.save(update_fields=['amount', 'journal_entry', 'status', 'updated_at'])


class ClosingEntry(TenantScopedModel):
    """Closing of income and expense balances into retained earnings"""

    period_start = models.DateField()
    period_end = models.DateField()
    retained_earnings_account = models.ForeignKey(ChartOfAccounts, on_delete=models.PROTECT, related_name='+')
    total_income = money_field()
    total_expenses = money_field()
    net_income = money_field()
    journal_entry = models.ForeignKey(
        JournalEntry, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    closed_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')

    class Meta:
        ordering = ['-period_end']
        verbose_name_plural = "Closing entries"
        constraints = [
            models.UniqueConstraint(
                fields=['tenant', 'period_end'],
                condition=Q(deleted_at__isnull=True),
                name='unique_closing_per_period'
            ),
        ]

    def __str__(self):
        return f"Closing {self.period_start} - {self.period_end}: {self.net_income:,.2f}"
