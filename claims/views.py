"""
SDA Back Office - Claim Views
Create claims from eligible transactions, export the claim file, upload
the response file and review a claim's history.
"""
import logging

from django.views.decorators.http import require_GET, require_http_methods, require_POST

from billing.transactions import transaction_json
from config.api import (
    api_login_required, handles_api_errors, json_ok, money, paginate, parse_date, parse_json_body, parse_uuid,
)
from config.authorization import get_object_for_user, get_organization, require_approver

from .models import Claim
from .services import (
    claim_history, claim_json, claimable_transactions, create_claim, export_claim,
    parse_claim_filters, reconcile_response, simulate_completion,
)

logger = logging.getLogger(__name__)


def _reconciliation_json(reconciliation):
    return {
        "id": str(reconciliation.pk),
        "file_name": reconciliation.file_name,
        "total_processed": reconciliation.total_processed,
        "total_paid": reconciliation.total_paid,
        "total_rejected": reconciliation.total_rejected,
        "total_errors": reconciliation.total_errors,
        "total_unmatched": reconciliation.total_unmatched,
        "created_at": reconciliation.created_at,
    }


@api_login_required
@require_http_methods(["GET", "POST"])
@handles_api_errors
def claim_list(request):
    org = get_organization(request)
    if request.method == "GET":
        claims = org.claims.select_related("created_by")
        if request.GET.get("status"):
            claims = claims.filter(status=request.GET["status"])
        page, meta = paginate(request, claims, per_page=20)
        return json_ok(claims=[claim_json(c) for c in page], pagination=meta)

    require_approver(request)
    filters = parse_claim_filters(parse_json_body(request))
    claim, message = create_claim(request, filters)
    return json_ok(status=201, claim=claim_json(claim), message=message)


@api_login_required
@require_GET
@handles_api_errors
def claim_detail(request, pk):
    claim = get_object_for_user(request, Claim.objects.select_related("created_by"), pk=pk)
    transactions = claim.transactions.select_related("resident").order_by("occurred_at")
    return json_ok(
        claim=claim_json(claim),
        transactions=[transaction_json(t) for t in transactions],
        reconciliations=[_reconciliation_json(r) for r in claim.reconciliations.all()],
    )


@api_login_required
@require_POST
@handles_api_errors
def claim_export(request, pk):
    require_approver(request)
    claim = get_object_for_user(request, Claim, pk=pk)
    export = export_claim(request, claim)
    return json_ok(claim=claim_json(claim), **export)


@api_login_required
@require_POST
@handles_api_errors
def claim_upload_response(request, pk):
    require_approver(request)
    claim = get_object_for_user(request, Claim, pk=pk)
    reconciliation, results, message = reconcile_response(request, claim, request.FILES.get("file"))
    return json_ok(
        claim=claim_json(claim),
        reconciliation=_reconciliation_json(reconciliation),
        results=results,
        message=message,
    )


@api_login_required
@require_GET
@handles_api_errors
def claim_history_view(request, pk):
    claim = get_object_for_user(request, Claim, pk=pk)
    return json_ok(claim=claim_json(claim), **claim_history(claim, request))


@api_login_required
@require_POST
@handles_api_errors
def claim_simulate_completion(request, pk):
    """Mark picked-up transactions paid, standing in for the funding body's response."""
    require_approver(request)
    claim = get_object_for_user(request, Claim, pk=pk)
    updated = simulate_completion(request, claim)
    if not updated:
        return json_ok(updated=0, message="No transactions to update")
    return json_ok(updated=updated, message="Transactions updated successfully")


@api_login_required
@require_GET
@handles_api_errors
def eligible_transactions(request):
    org = get_organization(request)
    resident_id = request.GET.get("resident_id")
    transactions = claimable_transactions(
        org,
        resident_id=parse_uuid(resident_id, "resident_id") if resident_id else None,
        date_from=parse_date(request.GET.get("date_from"), "date_from"),
        date_to=parse_date(request.GET.get("date_to"), "date_to"),
    )
    items = list(transactions)
    return json_ok(
        transactions=[transaction_json(t) for t in items],
        count=len(items),
        total_amount=money(sum(t.amount for t in items)),
    )
