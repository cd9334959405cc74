"""
SDA Back Office - Billing Models
Transactions drawn against funding contracts, the per-organization
automation settings and the log written by each billing run.
"""
import uuid
from datetime import time
from decimal import Decimal

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.utils import timezone


def _default_notification_settings():
    return {"frequency": "endOfRun", "includeLogs": False}


def _default_error_handling():
    return {"continueOnError": True}


def _default_timezone():
    return settings.DEFAULT_AUTOMATION_TIMEZONE


# ---------------------------------------------------------------------------
# Transaction
# ---------------------------------------------------------------------------
class Transaction(models.Model):
    """
    A charge against a funding contract. ``balance_applied`` records
    whether the amount has already been deducted from the contract balance.
    """

    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        POSTED = "posted", "Posted"
        VOIDED = "voided", "Voided"
        PICKED_UP = "picked_up", "Picked Up"
        SUBMITTED = "submitted", "Submitted"
        PAID = "paid", "Paid"
        REJECTED = "rejected", "Rejected"
        ERROR = "error", "Error"

    class DrawdownStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        VALIDATED = "validated", "Validated"
        POSTED = "posted", "Posted"
        REJECTED = "rejected", "Rejected"
        VOIDED = "voided", "Voided"

    # Statuses a transaction may have when it is added to a claim
    CLAIMABLE_STATUSES = (Status.DRAFT, Status.POSTED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    organization = models.ForeignKey(
        "accounts.Organization", on_delete=models.CASCADE, related_name="transactions"
    )
    txn_id = models.CharField(max_length=30, verbose_name="Transaction ID")
    resident = models.ForeignKey(
        "core.Resident", on_delete=models.CASCADE, related_name="transactions"
    )
    contract = models.ForeignKey(
        "core.FundingContract", on_delete=models.CASCADE, related_name="transactions"
    )
    claim = models.ForeignKey(
        "claims.Claim",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="transactions",
    )
    occurred_at = models.DateTimeField(default=timezone.now)
    service_code = models.CharField(max_length=50, blank=True)
    description = models.TextField(blank=True)
    quantity = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("1"))
    unit_price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    note = models.TextField(blank=True)
    status = models.CharField(max_length=12, choices=Status.choices, default=Status.DRAFT)
    drawdown_status = models.CharField(
        max_length=12, choices=DrawdownStatus.choices, blank=True,
    )
    is_drawdown_transaction = models.BooleanField(default=False)
    is_automated = models.BooleanField(default=False)
    balance_applied = models.BooleanField(default=False)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    posted_at = models.DateTimeField(null=True, blank=True)
    posted_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    voided_at = models.DateTimeField(null=True, blank=True)
    voided_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    void_reason = models.TextField(blank=True)

    class Meta:
        ordering = ["-occurred_at", "-created_at"]
        constraints = [
            models.UniqueConstraint(fields=["organization", "txn_id"], name="unique_txn_id_per_org"),
        ]
        indexes = [
            models.Index(fields=["organization", "status"], name="txn_org_status_idx"),
            models.Index(fields=["contract", "occurred_at"], name="txn_contract_occurred_idx"),
        ]

    def __str__(self):
        return f"{self.txn_id} ${self.amount} ({self.status})"

    @staticmethod
    def format_txn_id(organization, sequence):
        """TXN-{ORG6}-{letter}{6 digits}; the letter advances every 999999 numbers."""
        letter = chr(ord("A") + (sequence - 1) // 999999)
        number = (sequence - 1) % 999999 + 1
        return f"TXN-{organization.id_prefix}-{letter}{number:06d}"

    def save(self, *args, **kwargs):
        if not self.txn_id:
            sequence = self.organization.next_sequence("txn_sequence")
            self.txn_id = self.format_txn_id(self.organization, sequence)
        super().save(*args, **kwargs)


# ---------------------------------------------------------------------------
# Automation settings and run log
# ---------------------------------------------------------------------------
class AutomationSettings(models.Model):
    """Billing run configuration for one organization."""

    class NotificationFrequency(models.TextChoices):
        END_OF_RUN = "endOfRun", "End of run"
        END_OF_WEEK = "endOfWeek", "End of week"
        OFF = "off", "Off"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    organization = models.OneToOneField(
        "accounts.Organization", on_delete=models.CASCADE, related_name="automation_settings"
    )
    enabled = models.BooleanField(default=False)
    run_time = models.TimeField(default=time(2, 0))
    timezone = models.CharField(max_length=64, default=_default_timezone)
    admin_emails = models.JSONField(default=list, blank=True)
    notification_settings = models.JSONField(default=_default_notification_settings, blank=True)
    error_handling = models.JSONField(default=_default_error_handling, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = "automation settings"

    def __str__(self):
        state = "enabled" if self.enabled else "disabled"
        return f"Automation for {self.organization} ({state})"

    @property
    def notification_frequency(self):
        return (self.notification_settings or {}).get("frequency", self.NotificationFrequency.END_OF_RUN)

    @property
    def include_logs(self):
        return bool((self.notification_settings or {}).get("includeLogs", False))

    @property
    def continue_on_error(self):
        return bool((self.error_handling or {}).get("continueOnError", True))


class AutomationLog(models.Model):
    """One row per organization per billing run."""

    class Status(models.TextChoices):
        SUCCESS = "success", "Success"
        PARTIAL = "partial", "Partial"
        FAILED = "failed", "Failed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    organization = models.ForeignKey(
        "accounts.Organization", on_delete=models.CASCADE, related_name="automation_logs"
    )
    run_date = models.DateTimeField(default=timezone.now)
    status = models.CharField(max_length=10, choices=Status.choices)
    contracts_processed = models.PositiveIntegerField(default=0)
    contracts_skipped = models.PositiveIntegerField(default=0)
    contracts_failed = models.PositiveIntegerField(default=0)
    execution_time_ms = models.PositiveIntegerField(default=0)
    errors = models.JSONField(default=list, blank=True, encoder=DjangoJSONEncoder)
    summary = models.TextField(blank=True)

    class Meta:
        ordering = ["-run_date"]

    def __str__(self):
        return f"{self.organization} {self.run_date:%Y-%m-%d %H:%M} ({self.status})"
