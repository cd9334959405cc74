from django.contrib import admin
from .models import Claim, ClaimReconciliation


class ClaimReconciliationInline(admin.TabularInline):
    model = ClaimReconciliation
    extra = 0
    fields = ("file_name", "total_processed", "total_paid", "total_rejected", "total_errors", "created_at")
    readonly_fields = fields


@admin.register(Claim)
class ClaimAdmin(admin.ModelAdmin):
    list_display = ("claim_number", "organization", "status", "transaction_count", "total_amount", "created_at")
    list_filter = ("status", "organization")
    search_fields = ("claim_number",)
    readonly_fields = ("claim_number", "transaction_count", "total_amount", "file_path", "file_generated_at")
    inlines = [ClaimReconciliationInline]


@admin.register(ClaimReconciliation)
class ClaimReconciliationAdmin(admin.ModelAdmin):
    list_display = ("claim", "file_name", "total_paid", "total_rejected", "total_errors", "total_unmatched", "created_at")
    search_fields = ("claim__claim_number", "file_name")
