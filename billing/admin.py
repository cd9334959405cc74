from django.contrib import admin
from .models import AutomationLog, AutomationSettings, Transaction


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = ("txn_id", "resident", "amount", "status", "drawdown_status", "is_automated", "occurred_at")
    list_filter = ("status", "drawdown_status", "is_automated", "organization")
    search_fields = ("txn_id", "description", "resident__first_name", "resident__last_name")
    raw_id_fields = ("resident", "contract", "claim")
    readonly_fields = ("txn_id", "balance_applied", "posted_at", "posted_by", "voided_at", "voided_by")


@admin.register(AutomationSettings)
class AutomationSettingsAdmin(admin.ModelAdmin):
    list_display = ("organization", "enabled", "run_time", "timezone", "updated_at")
    list_filter = ("enabled",)


@admin.register(AutomationLog)
class AutomationLogAdmin(admin.ModelAdmin):
    list_display = ("organization", "run_date", "status", "contracts_processed", "contracts_failed", "execution_time_ms")
    list_filter = ("status", "organization")
    readonly_fields = ("summary", "errors")
