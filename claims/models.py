"""
SDA Back Office - Claims
A claim batches transactions for submission to the funding body. The
response file returned for a claim is reconciled line by line.
"""
import uuid
from decimal import Decimal

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models


class Claim(models.Model):

    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        IN_PROGRESS = "in_progress", "In Progress"
        PROCESSED = "processed", "Processed"
        SUBMITTED = "submitted", "Submitted"
        PAID = "paid", "Paid"
        REJECTED = "rejected", "Rejected"
        PARTIALLY_PAID = "partially_paid", "Partially Paid"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    organization = models.ForeignKey(
        "accounts.Organization", on_delete=models.CASCADE, related_name="claims"
    )
    claim_number = models.CharField(max_length=20)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    filters_json = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    transaction_count = models.PositiveIntegerField(default=0)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0"))
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.DRAFT)
    submitted_at = models.DateTimeField(null=True, blank=True)
    submitted_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    file_path = models.CharField(max_length=500, blank=True)
    file_generated_at = models.DateTimeField(null=True, blank=True)
    file_generated_by = models.ForeignKey(
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
        constraints = [
            models.UniqueConstraint(fields=["organization", "claim_number"], name="unique_claim_number_per_org"),
        ]

    def __str__(self):
        return f"{self.claim_number} ({self.get_status_display()})"

    def save(self, *args, **kwargs):
        if not self.claim_number:
            sequence = self.organization.next_sequence("claim_sequence")
            self.claim_number = f"CLM-{sequence:07d}"
        super().save(*args, **kwargs)


class ClaimReconciliation(models.Model):
    """Outcome of one uploaded response file."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    claim = models.ForeignKey(Claim, on_delete=models.CASCADE, related_name="reconciliations")
    uploaded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    file_name = models.CharField(max_length=255)
    file_path = models.CharField(max_length=500)
    results_json = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    total_processed = models.PositiveIntegerField(default=0)
    total_paid = models.PositiveIntegerField(default=0)
    total_rejected = models.PositiveIntegerField(default=0)
    total_errors = models.PositiveIntegerField(default=0)
    total_unmatched = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.claim.claim_number}: {self.file_name}"
