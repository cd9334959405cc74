"""In-app notifications."""
from django.db.models import Q

from .models import Notification


def notify(organization, title, message="", category=Notification.Category.SYSTEM,
           priority=Notification.Priority.MEDIUM, user=None, action_url="", metadata=None):
    return Notification.objects.create(
        organization=organization,
        user=user,
        title=title,
        message=message,
        category=category,
        priority=priority,
        action_url=action_url,
        metadata=metadata or {},
    )


def notifications_for(user):
    """Notifications addressed to the user plus organization-wide ones."""
    return Notification.objects.filter(organization=user.organization).filter(
        Q(user=user) | Q(user__isnull=True)
    )
