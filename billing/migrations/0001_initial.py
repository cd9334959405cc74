import datetime
import uuid
from decimal import Decimal

import billing.models
import django.core.serializers.json
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("accounts", "0001_initial"),
        ("claims", "0001_initial"),
        ("core", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Transaction",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("txn_id", models.CharField(max_length=30, verbose_name="Transaction ID")),
                ("occurred_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("service_code", models.CharField(blank=True, max_length=50)),
                ("description", models.TextField(blank=True)),
                ("quantity", models.DecimalField(decimal_places=2, default=Decimal("1"), max_digits=10)),
                ("unit_price", models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=10)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=10)),
                ("note", models.TextField(blank=True)),
                ("status", models.CharField(choices=[("draft", "Draft"), ("posted", "Posted"), ("voided", "Voided"), ("picked_up", "Picked Up"), ("submitted", "Submitted"), ("paid", "Paid"), ("rejected", "Rejected"), ("error", "Error")], default="draft", max_length=12)),
                ("drawdown_status", models.CharField(blank=True, choices=[("pending", "Pending"), ("validated", "Validated"), ("posted", "Posted"), ("rejected", "Rejected"), ("voided", "Voided")], max_length=12)),
                ("is_drawdown_transaction", models.BooleanField(default=False)),
                ("is_automated", models.BooleanField(default=False)),
                ("balance_applied", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("posted_at", models.DateTimeField(blank=True, null=True)),
                ("voided_at", models.DateTimeField(blank=True, null=True)),
                ("void_reason", models.TextField(blank=True)),
                ("claim", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="transactions", to="claims.claim")),
                ("contract", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="transactions", to="core.fundingcontract")),
                ("created_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="+", to=settings.AUTH_USER_MODEL)),
                ("organization", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="transactions", to="accounts.organization")),
                ("posted_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="+", to=settings.AUTH_USER_MODEL)),
                ("resident", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="transactions", to="core.resident")),
                ("voided_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="+", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-occurred_at", "-created_at"],
                "indexes": [
                    models.Index(fields=["organization", "status"], name="txn_org_status_idx"),
                    models.Index(fields=["contract", "occurred_at"], name="txn_contract_occurred_idx"),
                ],
                "constraints": [models.UniqueConstraint(fields=("organization", "txn_id"), name="unique_txn_id_per_org")],
            },
        ),
        migrations.CreateModel(
            name="AutomationSettings",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("enabled", models.BooleanField(default=False)),
                ("run_time", models.TimeField(default=datetime.time(2, 0))),
                ("timezone", models.CharField(default=billing.models._default_timezone, max_length=64)),
                ("admin_emails", models.JSONField(blank=True, default=list)),
                ("notification_settings", models.JSONField(blank=True, default=billing.models._default_notification_settings)),
                ("error_handling", models.JSONField(blank=True, default=billing.models._default_error_handling)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("organization", models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name="automation_settings", to="accounts.organization")),
            ],
            options={
                "verbose_name_plural": "automation settings",
            },
        ),
        migrations.CreateModel(
            name="AutomationLog",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("run_date", models.DateTimeField(default=django.utils.timezone.now)),
                ("status", models.CharField(choices=[("success", "Success"), ("partial", "Partial"), ("failed", "Failed")], max_length=10)),
                ("contracts_processed", models.PositiveIntegerField(default=0)),
                ("contracts_skipped", models.PositiveIntegerField(default=0)),
                ("contracts_failed", models.PositiveIntegerField(default=0)),
                ("execution_time_ms", models.PositiveIntegerField(default=0)),
                ("errors", models.JSONField(blank=True, default=list, encoder=django.core.serializers.json.DjangoJSONEncoder)),
                ("summary", models.TextField(blank=True)),
                ("organization", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="automation_logs", to="accounts.organization")),
            ],
            options={
                "ordering": ["-run_date"],
            },
        ),
    ]
