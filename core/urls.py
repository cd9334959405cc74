"""SDA Back Office - Core URL Configuration"""
from django.urls import path
from . import views
from . import views_audit
from . import views_contacts

app_name = "core"

urlpatterns = [
    # Houses
    path("houses/", views.house_list, name="house_list"),
    path("houses/occupancy/", views.house_occupancy_all, name="house_occupancy_all"),
    path("houses/<uuid:pk>/", views.house_detail, name="house_detail"),
    path("houses/<uuid:pk>/residents/assign/", views.house_assign, name="house_assign"),
    path("houses/<uuid:pk>/residents/unassign/", views.house_unassign, name="house_unassign"),
    path("houses/<uuid:pk>/occupancy/", views.house_occupancy, name="house_occupancy"),

    # Residents
    path("residents/", views.resident_list, name="resident_list"),
    path("residents/<uuid:pk>/", views.resident_detail, name="resident_detail"),
    path("residents/<uuid:pk>/funding/", views.resident_funding, name="resident_funding"),
    path("residents/<uuid:pk>/billing-status/", views.resident_billing, name="resident_billing_status"),
    path("residents/<uuid:pk>/contacts/", views_contacts.resident_contacts, name="resident_contacts"),

    # Plan managers
    path("plan-managers/", views_contacts.plan_manager_list, name="plan_manager_list"),
    path("plan-managers/<uuid:pk>/", views_contacts.plan_manager_detail, name="plan_manager_detail"),

    # Contacts
    path("contacts/search/", views_contacts.contact_search, name="contact_search"),
    path("contacts/<uuid:pk>/", views_contacts.contact_detail, name="contact_detail"),

    # Funding contracts
    path("contracts/", views.contract_list, name="contract_list"),
    path("contracts/calculate-rates/", views.calculate_rates, name="calculate_rates"),
    path("contracts/<uuid:pk>/", views.contract_detail, name="contract_detail"),
    path("contracts/<uuid:pk>/status/", views.contract_status, name="contract_status"),
    path("contracts/<uuid:pk>/activate/", views.contract_activate, name="contract_activate"),
    path("contracts/<uuid:pk>/renew/", views.contract_renew, name="contract_renew"),
    path("contracts/<uuid:pk>/pdf/", views.contract_pdf, name="contract_pdf"),

    # Dashboard
    path("dashboard/stats/", views_audit.dashboard_stats_view, name="dashboard_stats"),

    # Notifications
    path("notifications/", views_audit.notification_list, name="notification_list"),
    path("notifications/<uuid:pk>/read/", views_audit.notification_mark_read, name="notification_mark_read"),
    path("notifications/read-all/", views_audit.notification_read_all, name="notification_read_all"),

    # Audit log
    path("audit-log/", views_audit.audit_log, name="audit_log"),
]
