"""SDA Back Office - Account Views: signup, session, users, invitations, organization settings"""
import logging
from datetime import timedelta

from django.conf import settings
from django.contrib.auth import authenticate, login as auth_login, logout as auth_logout
from django.db import transaction
from django.forms.models import model_to_dict
from django.utils import timezone
from django.views.decorators.http import require_GET, require_http_methods, require_POST
from django_ratelimit.decorators import ratelimit

from config.api import api_login_required, form_errors, handles_api_errors, json_error, json_ok, parse_json_body
from config.authorization import get_object_for_user, get_organization, require_admin
from core.models import AuditLog
from core.audit import log_action
from core.emails import send_html_email

from .forms import (
    InvitationAcceptForm,
    InvitationForm,
    LoginForm,
    OrganizationSettingsForm,
    OrganizationSignupForm,
    UserEditForm,
)
from .models import Invitation, Organization, User

logger = logging.getLogger(__name__)


def _user_json(user):
    return {
        "id": str(user.pk),
        "username": user.username,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "role": user.role,
        "is_active": user.is_active,
        "organization_id": str(user.organization_id) if user.organization_id else None,
    }


def _organization_json(org):
    return {
        "id": str(org.pk),
        "name": org.name,
        "slug": org.slug,
        "subscription_plan": org.subscription_plan,
        "subscription_status": org.subscription_status,
        "max_houses": org.max_houses,
        "max_residents": org.max_residents,
        "max_users": org.max_users,
        "abn": org.abn,
        "email": org.email,
        "phone": org.phone,
        "address_line1": org.address_line1,
        "address_line2": org.address_line2,
        "suburb": org.suburb,
        "state": org.state,
        "postcode": org.postcode,
        "country": org.country,
    }


def _invitation_json(invitation):
    return {
        "id": str(invitation.pk),
        "email": invitation.email,
        "first_name": invitation.first_name,
        "last_name": invitation.last_name,
        "role": invitation.role,
        "status": invitation.status,
        "expires_at": invitation.expires_at.isoformat(),
    }


# ---------------------------------------------------------------------------
# Signup and session
# ---------------------------------------------------------------------------

@require_POST
@ratelimit(key="ip", rate="5/m", method="POST")
@handles_api_errors
def signup(request):
    """Create an organization and its first administrator, then log them in."""
    form = OrganizationSignupForm(parse_json_body(request))
    if not form.is_valid():
        return json_error("Validation failed", errors=form_errors(form))

    data = form.cleaned_data
    with transaction.atomic():
        org = Organization(name=data["organization_name"], email=data["email"])
        org.apply_plan(data["subscription_plan"])
        org.save()
        user = User.objects.create_user(
            username=data["username"],
            email=data["email"],
            password=data["password1"],
            first_name=data["first_name"],
            last_name=data["last_name"],
            organization=org,
            role=User.Role.ADMIN,
        )

    auth_login(request, user)
    request.organization = org
    log_action(request, AuditLog.Action.USER_CHANGE, f"Organization '{org.name}' created", org)
    logger.info("New organization signed up: %s", org.slug)

    send_html_email(
        f"Welcome to SDA Back Office, {user.first_name}",
        "accounts/email_welcome.html",
        {"user": user, "organization": org, "login_url": f"{settings.APP_BASE_URL}{settings.LOGIN_URL}"},
        [user.email],
    )
    return json_ok(status=201, user=_user_json(user), organization=_organization_json(org))


@require_POST
@ratelimit(key="ip", rate="10/m", method="POST")
@handles_api_errors
def login_view(request):
    form = LoginForm(parse_json_body(request))
    if not form.is_valid():
        return json_error("Validation failed", errors=form_errors(form))
    user = authenticate(
        request,
        username=form.cleaned_data["username"],
        password=form.cleaned_data["password"],
    )
    if user is None:
        return json_error("Invalid username or password", status=401)
    auth_login(request, user)
    request.organization = user.organization
    log_action(request, AuditLog.Action.LOGIN, "User logged in", user)
    return json_ok(user=_user_json(user))


@require_POST
def logout_view(request):
    if request.user.is_authenticated:
        log_action(request, AuditLog.Action.LOGOUT, "User logged out", request.user)
    auth_logout(request)
    return json_ok()


@api_login_required
@require_GET
def session_view(request):
    org = request.organization
    return json_ok(
        user=_user_json(request.user),
        organization=_organization_json(org) if org else None,
    )


# ---------------------------------------------------------------------------
# Organization settings
# ---------------------------------------------------------------------------

@api_login_required
@require_http_methods(["GET", "PUT", "PATCH"])
@handles_api_errors
def organization_settings(request):
    org = get_organization(request)
    if request.method == "GET":
        return json_ok(organization=_organization_json(org))

    require_admin(request)
    fields = list(OrganizationSettingsForm.Meta.fields)
    data = {**model_to_dict(org, fields=fields), **parse_json_body(request)}
    form = OrganizationSettingsForm(data, instance=org)
    if not form.is_valid():
        return json_error("Validation failed", errors=form_errors(form))
    form.save()
    log_action(request, AuditLog.Action.SETTINGS_CHANGE, "Organization settings updated", org)
    return json_ok(organization=_organization_json(org))


@api_login_required
@require_GET
@handles_api_errors
def organization_limits(request):
    org = get_organization(request)
    return json_ok(limits={kind: org.check_limit(kind) for kind in ("houses", "residents", "users")})


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------

@api_login_required
@require_GET
@handles_api_errors
def user_list(request):
    org = get_organization(request)
    users = org.users.order_by("last_name", "first_name")
    return json_ok(users=[_user_json(u) for u in users])


@api_login_required
@require_http_methods(["PUT", "PATCH"])
@handles_api_errors
def user_edit(request, pk):
    require_admin(request)
    user = get_object_for_user(request, User, pk=pk)
    fields = list(UserEditForm.Meta.fields)
    data = {**model_to_dict(user, fields=fields), **parse_json_body(request)}
    form = UserEditForm(data, instance=user)
    if not form.is_valid():
        return json_error("Validation failed", errors=form_errors(form))
    if user == request.user and (
        form.cleaned_data["role"] != User.Role.ADMIN or not form.cleaned_data["is_active"]
    ):
        return json_error("You cannot remove your own administrator access.")
    form.save()
    log_action(request, AuditLog.Action.USER_CHANGE, f"User {user.username} updated", user)
    return json_ok(user=_user_json(user))


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------

def _send_invitation_email(invitation):
    signup_url = f"{settings.APP_BASE_URL}/invite/{invitation.token}/"
    return send_html_email(
        f"You're invited to join {invitation.organization.name}",
        "accounts/email_invitation.html",
        {"invitation": invitation, "signup_url": signup_url},
        [invitation.email],
    )


@api_login_required
@require_http_methods(["GET", "POST"])
@handles_api_errors
def invitation_list(request):
    require_admin(request)
    org = get_organization(request)
    if request.method == "GET":
        for invitation in org.invitations.filter(status=Invitation.Status.PENDING):
            invitation.mark_expired()
        return json_ok(invitations=[_invitation_json(i) for i in org.invitations.all()])

    limit = org.check_limit("users")
    if not limit["allowed"]:
        return json_error(
            f"Your plan allows {limit['max']} users. Upgrade to invite more.",
            status=403,
            limit=limit,
        )

    form = InvitationForm(parse_json_body(request), organization=org)
    if not form.is_valid():
        return json_error("Validation failed", errors=form_errors(form))
    invitation = form.save(commit=False)
    invitation.organization = org
    invitation.invited_by = request.user
    invitation.save()
    email_sent = _send_invitation_email(invitation)
    log_action(request, AuditLog.Action.USER_CHANGE, f"Invitation sent to {invitation.email}", invitation)
    return json_ok(status=201, invitation=_invitation_json(invitation), email_sent=email_sent)


@api_login_required
@require_POST
@handles_api_errors
def invitation_revoke(request, pk):
    require_admin(request)
    invitation = get_object_for_user(request, Invitation, pk=pk)
    if invitation.status != Invitation.Status.PENDING:
        return json_error("Only pending invitations can be revoked.")
    invitation.status = Invitation.Status.REVOKED
    invitation.save(update_fields=["status"])
    return json_ok(invitation=_invitation_json(invitation))


@api_login_required
@require_POST
@handles_api_errors
def invitation_resend(request, pk):
    require_admin(request)
    invitation = get_object_for_user(request, Invitation, pk=pk)
    if invitation.status not in (Invitation.Status.PENDING, Invitation.Status.EXPIRED):
        return json_error("Only pending or expired invitations can be resent.")
    invitation.status = Invitation.Status.PENDING
    invitation.expires_at = timezone.now() + timedelta(days=7)
    invitation.save(update_fields=["status", "expires_at"])
    email_sent = _send_invitation_email(invitation)
    return json_ok(invitation=_invitation_json(invitation), email_sent=email_sent)


@require_http_methods(["GET", "POST"])
@ratelimit(key="ip", rate="10/m", method="POST")
@handles_api_errors
def invitation_accept(request, token):
    """Public endpoint: validate an invitation token, or accept it and create the user."""
    invitation = Invitation.objects.select_related("organization").filter(token=token).first()
    if invitation is None:
        return json_error("Invitation not found", status=404)
    invitation.mark_expired()
    if not invitation.is_valid:
        return json_error(f"This invitation is {invitation.get_status_display().lower()}.", status=410)

    if request.method == "GET":
        return json_ok(
            invitation=_invitation_json(invitation),
            organization={"id": str(invitation.organization_id), "name": invitation.organization.name},
        )

    form = InvitationAcceptForm(parse_json_body(request))
    if not form.is_valid():
        return json_error("Validation failed", errors=form_errors(form))

    with transaction.atomic():
        user = User.objects.create_user(
            username=form.cleaned_data["username"],
            email=invitation.email,
            password=form.cleaned_data["password1"],
            first_name=invitation.first_name,
            last_name=invitation.last_name,
            organization=invitation.organization,
            role=invitation.role,
        )
        invitation.status = Invitation.Status.ACCEPTED
        invitation.accepted_at = timezone.now()
        invitation.created_user = user
        invitation.save(update_fields=["status", "accepted_at", "created_user"])

    auth_login(request, user)
    request.organization = user.organization
    log_action(request, AuditLog.Action.USER_CHANGE, f"Invitation accepted by {user.username}", user)
    return json_ok(status=201, user=_user_json(user))
