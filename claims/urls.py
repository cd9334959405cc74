"""SDA Back Office - Claims URL Configuration"""
from django.urls import path
from . import views

app_name = "claims"

urlpatterns = [
    path("claims/", views.claim_list, name="claim_list"),
    path("claims/eligible-transactions/", views.eligible_transactions, name="eligible_transactions"),
    path("claims/<uuid:pk>/", views.claim_detail, name="claim_detail"),
    path("claims/<uuid:pk>/export/", views.claim_export, name="claim_export"),
    path("claims/<uuid:pk>/upload-response/", views.claim_upload_response, name="claim_upload_response"),
    path("claims/<uuid:pk>/history/", views.claim_history_view, name="claim_history"),
    path("claims/<uuid:pk>/simulate-completion/", views.claim_simulate_completion, name="claim_simulate_completion"),
]
