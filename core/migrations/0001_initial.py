import uuid
from decimal import Decimal

import config.encryption
import django.core.serializers.json
import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("accounts", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="House",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("descriptor", models.CharField(blank=True, max_length=255)),
                ("address1", models.CharField(max_length=255)),
                ("unit", models.CharField(blank=True, max_length=50)),
                ("suburb", models.CharField(max_length=100)),
                ("state", models.CharField(choices=[("ACT", "Australian Capital Territory"), ("NSW", "New South Wales"), ("NT", "Northern Territory"), ("QLD", "Queensland"), ("SA", "South Australia"), ("TAS", "Tasmania"), ("VIC", "Victoria"), ("WA", "Western Australia")], max_length=3)),
                ("postcode", models.CharField(max_length=4)),
                ("country", models.CharField(default="Australia", max_length=100)),
                ("status", models.CharField(choices=[("Active", "Active"), ("Vacant", "Vacant"), ("Under maintenance", "Under maintenance")], default="Active", max_length=20)),
                ("go_live_date", models.DateField(blank=True, null=True)),
                ("bedroom_count", models.PositiveSmallIntegerField(default=0)),
                ("notes", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("created_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="+", to=settings.AUTH_USER_MODEL)),
                ("organization", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="houses", to="accounts.organization")),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="Resident",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("first_name", models.CharField(max_length=100)),
                ("last_name", models.CharField(max_length=100)),
                ("date_of_birth", models.DateField(blank=True, null=True)),
                ("gender", models.CharField(blank=True, choices=[("Male", "Male"), ("Female", "Female"), ("Non-binary", "Non-binary"), ("Prefer not to say", "Prefer not to say")], max_length=20)),
                ("phone", models.CharField(blank=True, max_length=50)),
                ("email", models.EmailField(blank=True, max_length=254)),
                ("ndis_id", config.encryption.EncryptedCharField(blank=True, help_text="Encrypted at rest", max_length=255, verbose_name="NDIS number")),
                ("notes", models.TextField(blank=True)),
                ("status", models.CharField(choices=[("Prospect", "Prospect"), ("Active", "Active"), ("Deactivated", "Deactivated")], default="Prospect", max_length=20)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("created_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="+", to=settings.AUTH_USER_MODEL)),
                ("house", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="residents", to="core.house")),
                ("organization", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="residents", to="accounts.organization")),
            ],
            options={
                "ordering": ["last_name", "first_name"],
            },
        ),
        migrations.CreateModel(
            name="FundingContract",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("contract_type", models.CharField(choices=[("Draw Down", "Draw Down"), ("Capture & Invoice", "Capture & Invoice"), ("Hybrid", "Hybrid")], default="Draw Down", max_length=20)),
                ("status", models.CharField(choices=[("Draft", "Draft"), ("Active", "Active"), ("Expired", "Expired"), ("Cancelled", "Cancelled"), ("Renewed", "Renewed")], default="Draft", max_length=10)),
                ("original_amount", models.DecimalField(decimal_places=2, max_digits=10, validators=[django.core.validators.MinValueValidator(Decimal("0")), django.core.validators.MaxValueValidator(Decimal("999999.99"))])),
                ("current_balance", models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=10)),
                ("start_date", models.DateField()),
                ("end_date", models.DateField(blank=True, null=True)),
                ("description", models.CharField(blank=True, max_length=200)),
                ("support_item_code", models.CharField(blank=True, max_length=50)),
                ("daily_support_item_cost", models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ("auto_billing_enabled", models.BooleanField(default=False)),
                ("automated_drawdown_frequency", models.CharField(blank=True, choices=[("daily", "Daily"), ("weekly", "Weekly"), ("fortnightly", "Fortnightly")], max_length=12)),
                ("first_run_date", models.DateField(blank=True, null=True)),
                ("next_run_date", models.DateField(blank=True, null=True)),
                ("last_drawdown_date", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("created_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="+", to=settings.AUTH_USER_MODEL)),
                ("organization", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="funding_contracts", to="accounts.organization")),
                ("parent_contract", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="renewals", to="core.fundingcontract")),
                ("resident", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="funding_contracts", to="core.resident")),
            ],
            options={
                "ordering": ["-start_date", "-created_at"],
                "indexes": [models.Index(fields=["organization", "status", "auto_billing_enabled"], name="contract_org_status_auto_idx")],
            },
        ),
        migrations.CreateModel(
            name="AuditLog",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("action", models.CharField(choices=[("login", "User Login"), ("logout", "User Logout"), ("create", "Record Created"), ("update", "Record Updated"), ("delete", "Record Deleted"), ("status_change", "Status Changed"), ("balance_change", "Balance Changed"), ("automated_transaction_created", "Automated Transaction Created"), ("generate", "Document Generated"), ("claim_export", "Claim Exported"), ("claim_reconcile", "Claim Response Reconciled"), ("user_change", "User Modified"), ("settings_change", "Settings Changed")], max_length=40)),
                ("description", models.TextField()),
                ("affected_object_type", models.CharField(blank=True, max_length=100)),
                ("affected_object_id", models.CharField(blank=True, max_length=100)),
                ("metadata", models.JSONField(blank=True, default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder)),
                ("timestamp", models.DateTimeField(auto_now_add=True)),
                ("ip_address", models.GenericIPAddressField(blank=True, null=True)),
                ("organization", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name="audit_logs", to="accounts.organization")),
                ("user", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="audit_logs", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-timestamp"],
                "indexes": [models.Index(fields=["affected_object_type", "affected_object_id"], name="audit_object_idx")],
            },
        ),
        migrations.CreateModel(
            name="Notification",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("title", models.CharField(max_length=255)),
                ("message", models.TextField(blank=True)),
                ("category", models.CharField(choices=[("system", "System"), ("automation", "Automation"), ("billing", "Billing"), ("user", "User"), ("other", "Other")], default="system", max_length=20)),
                ("priority", models.CharField(choices=[("low", "Low"), ("medium", "Medium"), ("high", "High")], default="medium", max_length=10)),
                ("action_url", models.CharField(blank=True, max_length=500)),
                ("metadata", models.JSONField(blank=True, default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder)),
                ("is_read", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("organization", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="notifications", to="accounts.organization")),
                ("user", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name="notifications", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="RenderedDocument",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("template_id", models.CharField(max_length=100)),
                ("template_version", models.CharField(max_length=20)),
                ("storage_path", models.CharField(max_length=500)),
                ("signed_url_last", models.TextField(blank=True)),
                ("signed_url_expires_at", models.DateTimeField(blank=True, null=True)),
                ("data_hash_sha256", models.CharField(max_length=64)),
                ("render_ms", models.PositiveIntegerField(default=0)),
                ("file_size_bytes", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("contract", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="rendered_documents", to="core.fundingcontract")),
                ("organization", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="rendered_documents", to="accounts.organization")),
                ("rendered_by", models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="rendered_documents", to=settings.AUTH_USER_MODEL)),
                ("resident", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="rendered_documents", to="core.resident")),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
    ]
