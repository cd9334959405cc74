"""
SDA Back Office - Core Data Models
Houses, Plan Managers, Residents, Contacts, Funding Contracts, Audit Log,
Notifications and Rendered Documents. Every record belongs to one
Organization.
"""
import uuid
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone

from config.encryption import EncryptedCharField


# ---------------------------------------------------------------------------
# House
# ---------------------------------------------------------------------------
class House(models.Model):
    """An SDA dwelling operated by the organization."""

    class State(models.TextChoices):
        ACT = "ACT", "Australian Capital Territory"
        NSW = "NSW", "New South Wales"
        NT = "NT", "Northern Territory"
        QLD = "QLD", "Queensland"
        SA = "SA", "South Australia"
        TAS = "TAS", "Tasmania"
        VIC = "VIC", "Victoria"
        WA = "WA", "Western Australia"

    class Status(models.TextChoices):
        ACTIVE = "Active", "Active"
        VACANT = "Vacant", "Vacant"
        MAINTENANCE = "Under maintenance", "Under maintenance"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    organization = models.ForeignKey(
        "accounts.Organization", on_delete=models.CASCADE, related_name="houses"
    )
    descriptor = models.CharField(max_length=255, blank=True)
    address1 = models.CharField(max_length=255)
    unit = models.CharField(max_length=50, blank=True)
    suburb = models.CharField(max_length=100)
    state = models.CharField(max_length=3, choices=State.choices)
    postcode = models.CharField(max_length=4)
    country = models.CharField(max_length=100, default="Australia")
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.ACTIVE)
    go_live_date = models.DateField(null=True, blank=True)
    bedroom_count = models.PositiveSmallIntegerField(default=0)
    notes = models.TextField(blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return self.display_name

    @property
    def display_name(self):
        return self.descriptor or self.address1

    @property
    def full_address(self):
        street = f"{self.unit}/{self.address1}" if self.unit else self.address1
        return f"{street}, {self.suburb} {self.state} {self.postcode}"

    @property
    def occupancy_rate(self):
        """Active residents as a percentage of bedrooms (0 when bedrooms are unknown)."""
        if not self.bedroom_count:
            return 0.0
        active = self.residents.filter(status=Resident.Status.ACTIVE).count()
        return round(min(active / self.bedroom_count, 1) * 100, 1)


# ---------------------------------------------------------------------------
# Plan Manager
# ---------------------------------------------------------------------------
class PlanManager(models.Model):
    """A plan management provider that pays claims for plan-managed residents."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    organization = models.ForeignKey(
        "accounts.Organization", on_delete=models.CASCADE, related_name="plan_managers"
    )
    name = models.CharField(max_length=100)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=50, blank=True)
    billing_email = models.EmailField(blank=True)
    notes = models.CharField(max_length=500, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


# ---------------------------------------------------------------------------
# Resident
# ---------------------------------------------------------------------------
class Resident(models.Model):
    """An NDIS participant living in (or moving into) one of the houses."""

    class Status(models.TextChoices):
        PROSPECT = "Prospect", "Prospect"
        ACTIVE = "Active", "Active"
        DEACTIVATED = "Deactivated", "Deactivated"

    class Gender(models.TextChoices):
        MALE = "Male", "Male"
        FEMALE = "Female", "Female"
        NON_BINARY = "Non-binary", "Non-binary"
        NOT_STATED = "Prefer not to say", "Prefer not to say"

    class FundingManagement(models.TextChoices):
        NDIA = "ndia", "NDIA Managed"
        PLAN_MANAGED = "plan_managed", "Plan Managed"
        SELF_MANAGED = "self_managed", "Self Managed"
        UNKNOWN = "unknown", "Unknown"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    organization = models.ForeignKey(
        "accounts.Organization", on_delete=models.CASCADE, related_name="residents"
    )
    house = models.ForeignKey(
        House, on_delete=models.SET_NULL, null=True, blank=True, related_name="residents"
    )
    room_label = models.CharField(max_length=50, blank=True)
    move_in_date = models.DateField(null=True, blank=True)
    move_out_date = models.DateField(null=True, blank=True)
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    date_of_birth = models.DateField(null=True, blank=True)
    gender = models.CharField(max_length=20, choices=Gender.choices, blank=True)
    phone = models.CharField(max_length=50, blank=True)
    email = models.EmailField(blank=True)
    ndis_id = EncryptedCharField(
        max_length=255, blank=True, verbose_name="NDIS number",
        help_text="Encrypted at rest",
    )
    funding_management_type = models.CharField(
        max_length=20, choices=FundingManagement.choices, default=FundingManagement.UNKNOWN,
    )
    plan_manager = models.ForeignKey(
        PlanManager, on_delete=models.SET_NULL, null=True, blank=True, related_name="residents"
    )
    notes = models.TextField(blank=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PROSPECT)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["last_name", "first_name"]

    def __str__(self):
        return self.full_name

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------
class Contact(models.Model):
    """A family member, guardian, support coordinator or other person linked to residents."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    organization = models.ForeignKey(
        "accounts.Organization", on_delete=models.CASCADE, related_name="contacts"
    )
    name = models.CharField(max_length=255)
    role = models.CharField(max_length=100, blank=True)
    phone = models.CharField(max_length=50, blank=True)
    email = models.EmailField(blank=True)
    description = models.CharField(max_length=255, blank=True)
    note = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["organization", "name"], name="contact_org_name_idx"),
        ]

    def __str__(self):
        return self.name


class ResidentContact(models.Model):
    """Links a contact to a resident. One contact may be shared by several residents."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    resident = models.ForeignKey(Resident, on_delete=models.CASCADE, related_name="contact_links")
    contact = models.ForeignKey(Contact, on_delete=models.CASCADE, related_name="resident_links")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at"]
        constraints = [
            models.UniqueConstraint(fields=["resident", "contact"], name="unique_resident_contact"),
        ]

    def __str__(self):
        return f"{self.contact} - {self.resident}"


# ---------------------------------------------------------------------------
# Funding Contract
# ---------------------------------------------------------------------------
class FundingContract(models.Model):
    """
    An NDIS funding agreement for a resident. The current balance is drawn
    down by generated transactions and must never become negative.
    """

    class ContractType(models.TextChoices):
        DRAW_DOWN = "Draw Down", "Draw Down"
        CAPTURE_AND_INVOICE = "Capture & Invoice", "Capture & Invoice"
        HYBRID = "Hybrid", "Hybrid"

    class Status(models.TextChoices):
        DRAFT = "Draft", "Draft"
        ACTIVE = "Active", "Active"
        EXPIRED = "Expired", "Expired"
        CANCELLED = "Cancelled", "Cancelled"
        RENEWED = "Renewed", "Renewed"

    class Frequency(models.TextChoices):
        DAILY = "daily", "Daily"
        WEEKLY = "weekly", "Weekly"
        FORTNIGHTLY = "fortnightly", "Fortnightly"

    # Allowed lifecycle transitions
    TRANSITIONS = {
        Status.DRAFT: (Status.ACTIVE, Status.CANCELLED),
        Status.ACTIVE: (Status.EXPIRED, Status.CANCELLED),
        Status.EXPIRED: (Status.RENEWED, Status.CANCELLED),
        Status.CANCELLED: (),
        Status.RENEWED: (Status.ACTIVE,),
    }

    MAX_AMOUNT = Decimal("999999.99")
    EXPIRING_SOON_DAYS = 30

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    organization = models.ForeignKey(
        "accounts.Organization", on_delete=models.CASCADE, related_name="funding_contracts"
    )
    resident = models.ForeignKey(
        Resident, on_delete=models.CASCADE, related_name="funding_contracts"
    )
    contract_type = models.CharField(
        max_length=20, choices=ContractType.choices, default=ContractType.DRAW_DOWN,
    )
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.DRAFT)
    original_amount = models.DecimalField(
        max_digits=10, decimal_places=2,
        validators=[MinValueValidator(Decimal("0")), MaxValueValidator(MAX_AMOUNT)],
    )
    current_balance = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))
    start_date = models.DateField()
    end_date = models.DateField(null=True, blank=True)
    description = models.CharField(max_length=200, blank=True)
    support_item_code = models.CharField(max_length=50, blank=True)

    # Automated drawdown
    daily_support_item_cost = models.DecimalField(
        max_digits=10, decimal_places=2, null=True, blank=True,
    )
    auto_billing_enabled = models.BooleanField(default=False)
    automated_drawdown_frequency = models.CharField(
        max_length=12, choices=Frequency.choices, blank=True,
    )
    first_run_date = models.DateField(null=True, blank=True)
    next_run_date = models.DateField(null=True, blank=True)
    last_drawdown_date = models.DateTimeField(null=True, blank=True)

    parent_contract = models.ForeignKey(
        "self", on_delete=models.SET_NULL, null=True, blank=True, related_name="renewals",
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-start_date", "-created_at"]
        indexes = [
            models.Index(fields=["organization", "status", "auto_billing_enabled"], name="contract_org_status_auto_idx"),
        ]

    def __str__(self):
        return f"{self.resident} - {self.contract_type} ({self.status})"

    @property
    def drawn_down(self):
        return self.original_amount - self.current_balance

    @property
    def duration_days(self):
        if not self.end_date:
            return None
        return (self.end_date - self.start_date).days + 1

    def can_transition_to(self, new_status):
        return new_status in self.TRANSITIONS.get(self.status, ())

    def is_expiring_soon(self, today=None):
        today = today or timezone.localdate()
        return (
            self.status == self.Status.ACTIVE
            and self.end_date is not None
            and today <= self.end_date <= today + timedelta(days=self.EXPIRING_SOON_DAYS)
        )


# ---------------------------------------------------------------------------
# Audit Log
# ---------------------------------------------------------------------------
class AuditLog(models.Model):
    """
    Tracks every significant action for compliance and audit trail.
    Entries written by the billing run have no user.
    """

    class Action(models.TextChoices):
        LOGIN = "login", "User Login"
        LOGOUT = "logout", "User Logout"
        CREATE = "create", "Record Created"
        UPDATE = "update", "Record Updated"
        DELETE = "delete", "Record Deleted"
        STATUS_CHANGE = "status_change", "Status Changed"
        BALANCE_CHANGE = "balance_change", "Balance Changed"
        AUTOMATED_TRANSACTION = "automated_transaction_created", "Automated Transaction Created"
        GENERATE = "generate", "Document Generated"
        CLAIM_EXPORT = "claim_export", "Claim Exported"
        CLAIM_RECONCILE = "claim_reconcile", "Claim Response Reconciled"
        USER_CHANGE = "user_change", "User Modified"
        SETTINGS_CHANGE = "settings_change", "Settings Changed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    organization = models.ForeignKey(
        "accounts.Organization",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="audit_logs",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="audit_logs",
    )
    action = models.CharField(max_length=40, choices=Action.choices)
    description = models.TextField()
    affected_object_type = models.CharField(max_length=100, blank=True)
    affected_object_id = models.CharField(max_length=100, blank=True)
    metadata = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    timestamp = models.DateTimeField(auto_now_add=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)

    class Meta:
        ordering = ["-timestamp"]
        indexes = [
            models.Index(fields=["affected_object_type", "affected_object_id"], name="audit_object_idx"),
        ]

    def __str__(self):
        actor = self.user or "system"
        return f"{self.timestamp:%Y-%m-%d %H:%M} - {actor} - {self.get_action_display()}"


# ---------------------------------------------------------------------------
# Notification
# ---------------------------------------------------------------------------
class Notification(models.Model):
    """In-app notification. Without a user it is visible to the whole organization."""

    class Category(models.TextChoices):
        SYSTEM = "system", "System"
        AUTOMATION = "automation", "Automation"
        BILLING = "billing", "Billing"
        USER = "user", "User"
        OTHER = "other", "Other"

    class Priority(models.TextChoices):
        LOW = "low", "Low"
        MEDIUM = "medium", "Medium"
        HIGH = "high", "High"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    organization = models.ForeignKey(
        "accounts.Organization", on_delete=models.CASCADE, related_name="notifications"
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="notifications",
    )
    title = models.CharField(max_length=255)
    message = models.TextField(blank=True)
    category = models.CharField(max_length=20, choices=Category.choices, default=Category.SYSTEM)
    priority = models.CharField(max_length=10, choices=Priority.choices, default=Priority.MEDIUM)
    action_url = models.CharField(max_length=500, blank=True)
    metadata = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return self.title


# ---------------------------------------------------------------------------
# Rendered Document
# ---------------------------------------------------------------------------
class RenderedDocument(models.Model):
    """Audit record for a generated contract PDF."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    organization = models.ForeignKey(
        "accounts.Organization", on_delete=models.CASCADE, related_name="rendered_documents"
    )
    contract = models.ForeignKey(
        FundingContract, on_delete=models.CASCADE, related_name="rendered_documents"
    )
    resident = models.ForeignKey(
        Resident, on_delete=models.CASCADE, related_name="rendered_documents"
    )
    template_id = models.CharField(max_length=100)
    template_version = models.CharField(max_length=20)
    storage_path = models.CharField(max_length=500)
    signed_url_last = models.TextField(blank=True)
    signed_url_expires_at = models.DateTimeField(null=True, blank=True)
    data_hash_sha256 = models.CharField(max_length=64)
    render_ms = models.PositiveIntegerField(default=0)
    file_size_bytes = models.PositiveIntegerField(default=0)
    rendered_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name="rendered_documents",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.template_id}-{self.template_version} for {self.contract_id} ({self.created_at:%Y-%m-%d})"
