"""SDA Back Office - Organizations (tenants), Users with Roles, and Invitations"""
import uuid
import secrets
from datetime import timedelta

from django.contrib.auth.models import AbstractUser
from django.db import models, transaction
from django.db.models import F
from django.utils import timezone
from django.utils.text import slugify


# Plan definitions with limits
PLAN_LIMITS = {
    "free": {"max_houses": 5, "max_residents": 20, "max_users": 2},
    "starter": {"max_houses": 20, "max_residents": 100, "max_users": 5},
    "pro": {"max_houses": 100, "max_residents": 500, "max_users": 20},
    "enterprise": {"max_houses": 999999, "max_residents": 999999, "max_users": 999999},
}


# ---------------------------------------------------------------------------
# Organization
# ---------------------------------------------------------------------------
class Organization(models.Model):
    """
    A tenant: one SDA provider. Every house, resident, contract,
    transaction and claim belongs to exactly one organization.
    """

    class Plan(models.TextChoices):
        FREE = "free", "Free"
        STARTER = "starter", "Starter"
        PRO = "pro", "Pro"
        ENTERPRISE = "enterprise", "Enterprise"

    class SubscriptionStatus(models.TextChoices):
        TRIAL = "trial", "Trial"
        ACTIVE = "active", "Active"
        PAST_DUE = "past_due", "Past Due"
        CANCELED = "canceled", "Canceled"
        SUSPENDED = "suspended", "Suspended"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=80, unique=True)
    subscription_plan = models.CharField(
        max_length=20, choices=Plan.choices, default=Plan.FREE,
    )
    subscription_status = models.CharField(
        max_length=20, choices=SubscriptionStatus.choices, default=SubscriptionStatus.TRIAL,
    )
    max_houses = models.PositiveIntegerField(default=PLAN_LIMITS["free"]["max_houses"])
    max_residents = models.PositiveIntegerField(default=PLAN_LIMITS["free"]["max_residents"])
    max_users = models.PositiveIntegerField(default=PLAN_LIMITS["free"]["max_users"])

    # Provider details printed on service agreements
    abn = models.CharField(max_length=11, blank=True, verbose_name="ABN")
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=50, blank=True)
    address_line1 = models.CharField(max_length=255, blank=True)
    address_line2 = models.CharField(max_length=255, blank=True)
    suburb = models.CharField(max_length=100, blank=True)
    state = models.CharField(max_length=3, blank=True)
    postcode = models.CharField(max_length=4, blank=True)
    country = models.CharField(max_length=100, default="Australia")

    # Per-organization counters for human-readable identifiers
    txn_sequence = models.PositiveBigIntegerField(default=0)
    claim_sequence = models.PositiveBigIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = self._unique_slug()
        super().save(*args, **kwargs)

    def _unique_slug(self):
        base = slugify(self.name)[:70] or "organization"
        slug = base
        n = 2
        while Organization.objects.filter(slug=slug).exclude(pk=self.pk).exists():
            slug = f"{base}-{n}"
            n += 1
        return slug

    def apply_plan(self, plan):
        limits = PLAN_LIMITS[plan]
        self.subscription_plan = plan
        self.max_houses = limits["max_houses"]
        self.max_residents = limits["max_residents"]
        self.max_users = limits["max_users"]

    def check_limit(self, limit_type):
        """Return whether another house/resident/user may be added under the plan."""
        if limit_type == "houses":
            current, maximum = self.houses.count(), self.max_houses
        elif limit_type == "residents":
            current, maximum = self.residents.count(), self.max_residents
        elif limit_type == "users":
            current = self.users.filter(is_active=True).count()
            current += self.invitations.filter(status=Invitation.Status.PENDING).count()
            maximum = self.max_users
        else:
            raise ValueError(f"Unknown limit type: {limit_type}")
        return {
            "allowed": current < maximum,
            "current": current,
            "max": maximum,
            "limit_type": limit_type,
        }

    @property
    def id_prefix(self):
        return str(self.pk).replace("-", "")[:6].upper()

    def next_sequence(self, field):
        """Atomically increment one of the sequence counters and return the new value."""
        with transaction.atomic():
            Organization.objects.select_for_update().filter(pk=self.pk).update(
                **{field: F(field) + 1}
            )
            value = Organization.objects.values_list(field, flat=True).get(pk=self.pk)
        setattr(self, field, value)
        return value


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------
class User(AbstractUser):
    """
    Staff member of an SDA provider.
    Extends Django AbstractUser with an organization and role-based access.
    """

    class Role(models.TextChoices):
        ADMIN = "admin", "Administrator"
        MANAGER = "manager", "Manager"
        STAFF = "staff", "Staff"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    organization = models.ForeignKey(
        Organization,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="users",
    )
    role = models.CharField(
        max_length=20,
        choices=Role.choices,
        default=Role.STAFF,
    )
    phone = models.CharField(max_length=50, blank=True)

    class Meta:
        ordering = ["last_name", "first_name"]

    def __str__(self):
        name = self.get_full_name() or self.username
        return f"{name} ({self.get_role_display()})"

    @property
    def is_admin(self):
        return self.role == self.Role.ADMIN

    @property
    def can_approve(self):
        return self.role in (self.Role.ADMIN, self.Role.MANAGER)


def _default_token():
    return secrets.token_urlsafe(48)


def _default_expiry():
    return timezone.now() + timedelta(days=7)


class Invitation(models.Model):
    """
    Invitation to join an organization. The invitee receives a signup link
    and chooses a username and password when accepting.
    """

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        ACCEPTED = "accepted", "Accepted"
        EXPIRED = "expired", "Expired"
        REVOKED = "revoked", "Revoked"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    organization = models.ForeignKey(
        Organization,
        on_delete=models.CASCADE,
        related_name="invitations",
    )
    email = models.EmailField()
    first_name = models.CharField(max_length=150)
    last_name = models.CharField(max_length=150)
    role = models.CharField(
        max_length=20,
        choices=User.Role.choices,
        default=User.Role.STAFF,
    )
    token = models.CharField(max_length=128, unique=True, default=_default_token)
    status = models.CharField(
        max_length=10,
        choices=Status.choices,
        default=Status.PENDING,
    )
    invited_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="invitations_sent",
    )
    created_user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="invitation",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    expires_at = models.DateTimeField(default=_default_expiry)
    accepted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"Invitation for {self.first_name} {self.last_name} ({self.email}) - {self.status}"

    @property
    def is_valid(self):
        """Whether the invitation can still be accepted."""
        return self.status == self.Status.PENDING and self.expires_at > timezone.now()

    def mark_expired(self):
        if self.status == self.Status.PENDING and self.expires_at <= timezone.now():
            self.status = self.Status.EXPIRED
            self.save(update_fields=["status"])
