"""SDA Back Office - Accounts URL Configuration"""
from django.urls import path
from . import views

app_name = "accounts"

urlpatterns = [
    # Signup / session
    path("auth/signup/", views.signup, name="signup"),
    path("auth/login/", views.login_view, name="login"),
    path("auth/logout/", views.logout_view, name="logout"),
    path("auth/session/", views.session_view, name="session"),

    # Organization settings
    path("organization/", views.organization_settings, name="organization_settings"),
    path("organization/limits/", views.organization_limits, name="organization_limits"),

    # User management
    path("users/", views.user_list, name="user_list"),
    path("users/<uuid:pk>/", views.user_edit, name="user_edit"),

    # Invitations (admin only, acceptance is public)
    path("invitations/", views.invitation_list, name="invitation_list"),
    path("invitations/<uuid:pk>/revoke/", views.invitation_revoke, name="invitation_revoke"),
    path("invitations/<uuid:pk>/resend/", views.invitation_resend, name="invitation_resend"),
    path("invitations/accept/<str:token>/", views.invitation_accept, name="invitation_accept"),
]
