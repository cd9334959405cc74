import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("accounts", "0001_initial"),
        ("core", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="PlanManager",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=100)),
                ("email", models.EmailField(blank=True, max_length=254)),
                ("phone", models.CharField(blank=True, max_length=50)),
                ("billing_email", models.EmailField(blank=True, max_length=254)),
                ("notes", models.CharField(blank=True, max_length=500)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("organization", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="plan_managers", to="accounts.organization")),
            ],
            options={"ordering": ["name"]},
        ),
        migrations.CreateModel(
            name="Contact",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255)),
                ("role", models.CharField(blank=True, max_length=100)),
                ("phone", models.CharField(blank=True, max_length=50)),
                ("email", models.EmailField(blank=True, max_length=254)),
                ("description", models.CharField(blank=True, max_length=255)),
                ("note", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("organization", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="contacts", to="accounts.organization")),
            ],
            options={
                "ordering": ["name"],
                "indexes": [models.Index(fields=["organization", "name"], name="contact_org_name_idx")],
            },
        ),
        migrations.AddField(
            model_name="resident",
            name="room_label",
            field=models.CharField(blank=True, max_length=50),
        ),
        migrations.AddField(
            model_name="resident",
            name="move_in_date",
            field=models.DateField(blank=True, null=True),
        ),
        migrations.AddField(
            model_name="resident",
            name="move_out_date",
            field=models.DateField(blank=True, null=True),
        ),
        migrations.AddField(
            model_name="resident",
            name="funding_management_type",
            field=models.CharField(choices=[("ndia", "NDIA Managed"), ("plan_managed", "Plan Managed"), ("self_managed", "Self Managed"), ("unknown", "Unknown")], default="unknown", max_length=20),
        ),
        migrations.AddField(
            model_name="resident",
            name="plan_manager",
            field=models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="residents", to="core.planmanager"),
        ),
        migrations.CreateModel(
            name="ResidentContact",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("contact", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="resident_links", to="core.contact")),
                ("resident", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="contact_links", to="core.resident")),
            ],
            options={
                "ordering": ["created_at"],
                "constraints": [models.UniqueConstraint(fields=("resident", "contact"), name="unique_resident_contact")],
            },
        ),
    ]
