"""SDA Back Office - Billing URL Configuration"""
from django.urls import path
from . import views

app_name = "billing"

urlpatterns = [
    # Transactions
    path("transactions/", views.transaction_list, name="transaction_list"),
    path("transactions/bulk/", views.transaction_bulk, name="transaction_bulk"),
    path("transactions/export/", views.transaction_export, name="transaction_export"),
    path("transactions/<uuid:pk>/", views.transaction_detail, name="transaction_detail"),
    path("transactions/<uuid:pk>/post/", views.transaction_post, name="transaction_post"),
    path("transactions/<uuid:pk>/void/", views.transaction_void, name="transaction_void"),

    # Per-contract automation
    path("contracts/<uuid:pk>/automation/", views.contract_automation, name="contract_automation"),

    # Per-resident claim history
    path("residents/<uuid:pk>/claim-summary/", views.resident_claim_summary_view, name="resident_claim_summary"),

    # Automation
    path("automation/settings/", views.automation_settings_view, name="automation_settings"),
    path("automation/eligible-contracts/", views.eligible_contracts, name="eligible_contracts"),
    path("automation/preview-3-days/", views.preview_three_days, name="preview_three_days"),
    path("automation/generate/", views.automation_generate, name="automation_generate"),
    path("automation/logs/", views.automation_logs, name="automation_logs"),
    path("automation/cron/", views.automation_cron, name="automation_cron"),
]
