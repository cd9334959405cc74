"""
Signed file serving.

Claim exports, claim response files and rendered contracts live in the
default storage and are never exposed by the web server. Callers receive a
signed link that stays valid for SIGNED_URL_MAX_AGE seconds (15 minutes).
"""
import mimetypes
import os
from datetime import timedelta

from django.conf import settings
from django.core import signing
from django.core.files.storage import default_storage
from django.http import FileResponse, Http404
from django.urls import reverse
from django.utils import timezone

SIGNING_SALT = "sda.signed-files"


def create_signed_url(storage_path, request=None):
    """
    Return ``(url, expires_at)`` for a stored file.
    The URL is absolute when a request is supplied.
    """
    token = signing.TimestampSigner(salt=SIGNING_SALT).sign_object({"path": storage_path})
    url = reverse("signed_file", args=[token])
    if request is not None:
        url = request.build_absolute_uri(url)
    expires_at = timezone.now() + timedelta(seconds=settings.SIGNED_URL_MAX_AGE)
    return url, expires_at


def serve_signed_file(request, token):
    """Serve a stored file if the link signature is valid and unexpired."""
    try:
        payload = signing.TimestampSigner(salt=SIGNING_SALT).unsign_object(
            token, max_age=settings.SIGNED_URL_MAX_AGE
        )
    except signing.SignatureExpired:
        raise Http404("This download link has expired.")
    except signing.BadSignature:
        raise Http404

    storage_path = payload.get("path", "")
    if not storage_path or ".." in storage_path.split("/"):
        raise Http404
    if not default_storage.exists(storage_path):
        raise Http404

    content_type, _ = mimetypes.guess_type(storage_path)
    response = FileResponse(
        default_storage.open(storage_path, "rb"),
        content_type=content_type or "application/octet-stream",
    )
    filename = os.path.basename(storage_path)
    response["Content-Disposition"] = f'attachment; filename="{filename}"'

    response["X-Content-Type-Options"] = "nosniff"
    response["Cache-Control"] = "private, no-cache, no-store"

    return response
