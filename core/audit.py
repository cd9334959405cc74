"""Audit trail helpers."""
from .models import AuditLog


def log_action(request, action, description, obj=None, metadata=None):
    """Create an audit log entry for an action taken by the requesting user."""
    return AuditLog.objects.create(
        organization=getattr(request, "organization", None),
        user=request.user if request.user.is_authenticated else None,
        action=action,
        description=description,
        affected_object_type=type(obj).__name__ if obj else "",
        affected_object_id=str(obj.pk) if obj else "",
        metadata=metadata or {},
        ip_address=request.META.get("REMOTE_ADDR"),
    )


def log_system_action(organization, action, description, obj=None, metadata=None):
    """Create an audit log entry for work done by the billing run."""
    return AuditLog.objects.create(
        organization=organization,
        user=None,
        action=action,
        description=description,
        affected_object_type=type(obj).__name__ if obj else "",
        affected_object_id=str(obj.pk) if obj else "",
        metadata=metadata or {},
    )
