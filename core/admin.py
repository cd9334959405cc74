from django.contrib import admin
from .models import (
    AuditLog, Contact, FundingContract, House, Notification, PlanManager, RenderedDocument, Resident,
    ResidentContact,
)


class ResidentInline(admin.TabularInline):
    model = Resident
    extra = 0
    fields = ("first_name", "last_name", "status")
    show_change_link = True


@admin.register(House)
class HouseAdmin(admin.ModelAdmin):
    list_display = ("display_name", "suburb", "state", "organization", "status", "bedroom_count")
    list_filter = ("status", "state", "organization")
    search_fields = ("descriptor", "address1", "suburb", "postcode")
    inlines = [ResidentInline]


class FundingContractInline(admin.TabularInline):
    model = FundingContract
    extra = 0
    fields = ("contract_type", "status", "original_amount", "current_balance", "start_date", "end_date")
    readonly_fields = ("current_balance",)
    show_change_link = True


@admin.register(Resident)
class ResidentAdmin(admin.ModelAdmin):
    list_display = ("full_name", "house", "room_label", "organization", "status", "funding_management_type")
    list_filter = ("status", "funding_management_type", "organization")
    search_fields = ("first_name", "last_name", "email")
    inlines = [FundingContractInline]


@admin.register(PlanManager)
class PlanManagerAdmin(admin.ModelAdmin):
    list_display = ("name", "organization", "email", "phone", "billing_email")
    list_filter = ("organization",)
    search_fields = ("name", "email")


class ResidentContactInline(admin.TabularInline):
    model = ResidentContact
    extra = 0
    raw_id_fields = ("resident",)


@admin.register(Contact)
class ContactAdmin(admin.ModelAdmin):
    list_display = ("name", "role", "organization", "phone", "email")
    list_filter = ("organization",)
    search_fields = ("name", "email", "phone")
    inlines = [ResidentContactInline]


@admin.register(FundingContract)
class FundingContractAdmin(admin.ModelAdmin):
    list_display = (
        "resident", "contract_type", "status", "original_amount", "current_balance",
        "auto_billing_enabled", "automated_drawdown_frequency", "next_run_date",
    )
    list_filter = ("status", "contract_type", "auto_billing_enabled", "automated_drawdown_frequency")
    search_fields = ("resident__first_name", "resident__last_name", "support_item_code")
    raw_id_fields = ("resident", "parent_contract")
    readonly_fields = ("last_drawdown_date", "created_at", "updated_at")


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ("timestamp", "organization", "user", "action", "affected_object_type", "description")
    list_filter = ("action", "affected_object_type", "organization")
    search_fields = ("description", "affected_object_id")
    readonly_fields = (
        "organization", "user", "action", "description", "affected_object_type",
        "affected_object_id", "metadata", "timestamp", "ip_address",
    )


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("title", "organization", "user", "category", "priority", "is_read", "created_at")
    list_filter = ("category", "priority", "is_read")
    search_fields = ("title", "message")


@admin.register(RenderedDocument)
class RenderedDocumentAdmin(admin.ModelAdmin):
    list_display = ("template_id", "template_version", "contract", "rendered_by", "file_size_bytes", "created_at")
    list_filter = ("template_id", "template_version")
    readonly_fields = ("data_hash_sha256", "render_ms", "file_size_bytes", "storage_path", "signed_url_last")
