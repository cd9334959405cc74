"""
Object-level authorization utilities.

Every tenant record carries an organization. Lookups made on behalf of a
user go through these helpers so that records belonging to another
organization are indistinguishable from missing ones (404), while role
violations inside the user's own organization are a 403.
"""
from django.core.exceptions import PermissionDenied, ValidationError
from django.http import Http404
from django.shortcuts import get_object_or_404


def get_organization(request):
    """Return the organization of the requesting user or raise PermissionDenied."""
    organization = getattr(request, "organization", None)
    if organization is None:
        raise PermissionDenied("Your account is not linked to an organization.")
    return organization


def scoped(request, queryset):
    """Restrict a queryset to the requesting user's organization."""
    return queryset.filter(organization=get_organization(request))


def get_object_for_user(request, queryset, **lookup):
    """
    Retrieve a single tenant object, verifying it belongs to the user's
    organization. Accepts a model class or a queryset.
    """
    if hasattr(queryset, "_default_manager"):
        queryset = queryset._default_manager.all()
    try:
        return get_object_or_404(scoped(request, queryset), **lookup)
    except (ValidationError, ValueError):
        # Malformed identifiers (e.g. not a UUID) read as not found
        raise Http404


def require_admin(request):
    if not request.user.is_admin:
        raise PermissionDenied("Only organization administrators can do this.")


def require_approver(request):
    """Posting, voiding, claiming and contract lifecycle changes need admin or manager."""
    if not request.user.can_approve:
        raise PermissionDenied("You do not have permission to perform this action.")
