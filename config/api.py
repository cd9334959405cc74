"""
Helpers shared by the JSON API views.

Success responses use ``{"status": "ok", ...}``; failures use
``{"status": "error", "message": ...}`` with an HTTP status code.
"""
import json
import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from functools import wraps

from django.core.exceptions import PermissionDenied
from django.core.paginator import Paginator
from django.http import Http404, JsonResponse

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """A business-rule failure that maps directly onto a JSON error response."""

    status = 400

    def __init__(self, message, status=None, **extra):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status
        self.extra = extra


def json_ok(status=200, **payload):
    return JsonResponse({"status": "ok", **payload}, status=status)


def json_error(message, status=400, **extra):
    return JsonResponse({"status": "error", "message": message, **extra}, status=status)


def api_login_required(view):
    """Like login_required, but answers anonymous calls with a 401 instead of a redirect."""

    @wraps(view)
    def wrapper(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return json_error("Authentication required", status=401)
        return view(request, *args, **kwargs)

    return wrapper


def handles_api_errors(view):
    """
    Translate ApiError, Http404 and PermissionDenied raised inside a view
    into JSON error responses.
    """

    @wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            return view(request, *args, **kwargs)
        except ApiError as e:
            return json_error(e.message, status=e.status, **e.extra)
        except Http404:
            return json_error("Not found", status=404)
        except PermissionDenied as e:
            logger.info("Permission denied for %s on %s", request.user, request.path)
            return json_error(str(e) or "Permission denied", status=403)

    return wrapper


def not_found(request, exception=None):
    return json_error("Not found", status=404)


def permission_denied(request, exception=None):
    return json_error(str(exception) if exception and str(exception) else "Permission denied", status=403)


def parse_json_body(request):
    """Decode a JSON object request body, raising ApiError on anything else."""
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ApiError("Invalid JSON body")
    if not isinstance(data, dict):
        raise ApiError("Invalid JSON body")
    return data


def parse_date(value, field="date"):
    """Parse an ISO date (YYYY-MM-DD) or return None for blank values."""
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value)[:10], "%Y-%m-%d").date()
    except ValueError:
        raise ApiError(f"Invalid {field}: expected YYYY-MM-DD")


def money(value):
    """Serialise a Decimal amount as a float rounded to cents."""
    if value is None:
        return None
    return float(Decimal(value).quantize(Decimal("0.01")))


def form_errors(form):
    return {field: [e["message"] for e in errors] for field, errors in form.errors.get_json_data().items()}


def paginate(request, queryset, per_page=50):
    """Return ``(page_items, meta)`` for ?page= and ?page_size= query parameters."""
    try:
        per_page = min(max(int(request.GET.get("page_size", per_page)), 1), 500)
    except ValueError:
        per_page = 50
    page = Paginator(queryset, per_page).get_page(request.GET.get("page"))
    return page.object_list, {
        "page": page.number,
        "page_size": per_page,
        "total": page.paginator.count,
        "pages": page.paginator.num_pages,
    }


def parse_uuid(value, field="id"):
    """Parse one identifier, raising ApiError for anything that is not a UUID."""
    try:
        return uuid.UUID(str(value).strip())
    except (TypeError, ValueError, AttributeError):
        raise ApiError(f"Invalid {field}: expected a UUID")


def parse_uuid_list(values, field="ids"):
    """Parse a list (or comma-separated string) of identifiers."""
    if values in (None, ""):
        return []
    if isinstance(values, str):
        values = [v for v in values.split(",") if v.strip()]
    if not isinstance(values, (list, tuple)):
        raise ApiError(f"Invalid {field}: expected a list of UUIDs")
    return [parse_uuid(v, field) for v in values]
