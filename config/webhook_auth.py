"""
Shared-secret guard for the scheduled billing trigger.

The scheduler proves it knows CRON_SECRET either by signing the request
body (HMAC-SHA256, hex digest in X-Cron-Signature, optionally prefixed
"sha256=") or by sending it as a Bearer token. A signature, when present,
is the only credential checked.
"""
import hashlib
import hmac
import logging

from django.conf import settings


logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Cron-Signature"


class CronAuthError(Exception):

    def __init__(self, message, status):
        super().__init__(message)
        self.message = message
        self.status = status


def _signature_matches(secret, body, signature):
    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature.lower(), expected)


def authenticate_cron(request):
    """Raise CronAuthError unless the request carries valid cron credentials."""
    secret = settings.CRON_SECRET
    if not secret:
        if settings.DEBUG:
            logger.warning("CRON_SECRET is empty; allowing cron call because DEBUG is on")
            return
        logger.error("CRON_SECRET is empty; cron endpoint disabled")
        raise CronAuthError("Cron endpoint is not configured", 503)

    signature = request.headers.get(SIGNATURE_HEADER, "").strip()
    if signature:
        if _signature_matches(secret, request.body, signature):
            return
        logger.warning("Rejected cron call with a bad signature from %s", request.META.get("REMOTE_ADDR"))
        raise CronAuthError("Invalid signature", 403)

    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token:
        if hmac.compare_digest(token.strip(), secret):
            return
        logger.warning("Rejected cron call with a bad token from %s", request.META.get("REMOTE_ADDR"))
        raise CronAuthError("Unauthorized", 403)

    raise CronAuthError("Unauthorized", 401)
