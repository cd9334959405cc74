"""
SDA Back Office - Audit Log, Notification and Dashboard Views
"""
import logging

from django.views.decorators.http import require_GET, require_POST
from django_ratelimit.decorators import ratelimit

from config.api import api_login_required, handles_api_errors, json_error, json_ok, paginate, parse_date
from config.authorization import get_organization, require_approver

from .dashboard import dashboard_stats
from .notifications import notifications_for

logger = logging.getLogger(__name__)


def _notification_json(notification):
    return {
        "id": str(notification.pk),
        "title": notification.title,
        "message": notification.message,
        "category": notification.category,
        "priority": notification.priority,
        "action_url": notification.action_url,
        "metadata": notification.metadata,
        "is_read": notification.is_read,
        "created_at": notification.created_at,
    }


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------
@api_login_required
@require_GET
@handles_api_errors
def dashboard_stats_view(request):
    return json_ok(stats=dashboard_stats(get_organization(request)))


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------
@api_login_required
@require_GET
@ratelimit(key="user", rate="120/m", method="GET")
@handles_api_errors
def notification_list(request):
    get_organization(request)
    notifications = notifications_for(request.user)
    if request.GET.get("unread") in ("true", "1"):
        notifications = notifications.filter(is_read=False)
    if request.GET.get("category"):
        notifications = notifications.filter(category=request.GET["category"])
    page, meta = paginate(request, notifications, per_page=20)
    return json_ok(
        notifications=[_notification_json(n) for n in page],
        unread_count=notifications_for(request.user).filter(is_read=False).count(),
        pagination=meta,
    )


@api_login_required
@require_POST
@ratelimit(key="user", rate="60/m", method="POST")
@handles_api_errors
def notification_mark_read(request, pk):
    get_organization(request)
    notification = notifications_for(request.user).filter(pk=pk).first()
    if notification is None:
        return json_error("Notification not found", status=404)
    if not notification.is_read:
        notification.is_read = True
        notification.save(update_fields=["is_read"])
    return json_ok(notification=_notification_json(notification))


@api_login_required
@require_POST
@ratelimit(key="user", rate="30/m", method="POST")
@handles_api_errors
def notification_read_all(request):
    get_organization(request)
    updated = notifications_for(request.user).filter(is_read=False).update(is_read=True)
    return json_ok(updated=updated)


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------
@api_login_required
@require_GET
@handles_api_errors
def audit_log(request):
    """Organization audit trail, newest first. Admins and managers only."""
    require_approver(request)
    org = get_organization(request)
    entries = org.audit_logs.select_related("user")
    if request.GET.get("action"):
        entries = entries.filter(action=request.GET["action"])
    if request.GET.get("object_type"):
        entries = entries.filter(affected_object_type=request.GET["object_type"])
    if request.GET.get("object_id"):
        entries = entries.filter(affected_object_id=request.GET["object_id"])
    date_from = parse_date(request.GET.get("date_from"), "date_from")
    date_to = parse_date(request.GET.get("date_to"), "date_to")
    if date_from:
        entries = entries.filter(timestamp__date__gte=date_from)
    if date_to:
        entries = entries.filter(timestamp__date__lte=date_to)

    page, meta = paginate(request, entries)
    return json_ok(
        entries=[
            {
                "id": str(entry.pk),
                "action": entry.action,
                "action_display": entry.get_action_display(),
                "description": entry.description,
                "user": entry.user.get_full_name() if entry.user else "System",
                "affected_object_type": entry.affected_object_type,
                "affected_object_id": entry.affected_object_id,
                "metadata": entry.metadata,
                "ip_address": entry.ip_address,
                "timestamp": entry.timestamp,
            }
            for entry in page
        ],
        pagination=meta,
    )
