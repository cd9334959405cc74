"""Transactional email helper shared by signup, invitations and the billing run."""
import logging

from django.conf import settings
from django.core.mail import send_mail
from django.template.loader import render_to_string
from django.utils.html import strip_tags

logger = logging.getLogger(__name__)


def send_html_email(subject, template, context, recipients):
    """
    Render ``template`` and send it as a multipart HTML email.
    Returns True when the backend accepted the message. Delivery failures
    are logged as warnings; the caller's work is never rolled back for them.
    """
    recipients = [r for r in recipients if r]
    if not recipients:
        return False

    html_message = render_to_string(template, context)
    try:
        send_mail(
            subject=subject,
            message=strip_tags(html_message),
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=recipients,
            html_message=html_message,
            fail_silently=False,
        )
    except Exception as e:
        logger.warning("Email '%s' could not be sent to %d recipient(s): %s", subject, len(recipients), e)
        return False
    return True
