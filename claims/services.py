"""
Claim workflow: batch claimable transactions into a claim, export the
claim file, and reconcile the response file returned by the funding body.
"""
import csv
import io
import logging
import os
from datetime import datetime, time, timedelta
from decimal import Decimal, InvalidOperation

from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from django.db import transaction as db_transaction
from django.utils import timezone

from billing.models import Transaction
from config.api import ApiError, money, parse_date, parse_uuid
from config.media_serving import create_signed_url
from core.audit import log_action
from core.models import AuditLog

from .models import Claim, ClaimReconciliation

logger = logging.getLogger(__name__)

EXPORT_HEADER = [
    "Claim ID", "Transaction ID", "Resident Name", "Contract ID", "Service Date",
    "Amount", "Description", "Status", "Org ID", "Exported At",
]

PAID_STATUSES = ("success", "approved", "paid")
REJECTED_STATUSES = ("rejected", "denied")

UNMATCHED_NOTE = "[Error: Unmatched during upload - not found in response file]"


class ClaimError(ApiError):
    pass


def _plural(count, word):
    return f"{count} {word}{'s' if count != 1 else ''}"


def claim_json(claim):
    creator = claim.created_by
    return {
        "id": str(claim.pk),
        "claim_number": claim.claim_number,
        "created_by": creator.get_full_name() if creator else "System",
        "created_at": claim.created_at.isoformat(),
        "filters": claim.filters_json,
        "transaction_count": claim.transaction_count,
        "total_amount": money(claim.total_amount),
        "status": claim.status,
        "submitted_at": claim.submitted_at.isoformat() if claim.submitted_at else None,
        "file_path": claim.file_path,
        "file_generated_at": claim.file_generated_at.isoformat() if claim.file_generated_at else None,
        "updated_at": claim.updated_at.isoformat(),
    }


# ---------------------------------------------------------------------------
# Eligible transactions and claim creation
# ---------------------------------------------------------------------------

def claimable_transactions(organization, resident_id=None, date_from=None, date_to=None):
    """
    Transactions that can be added to a claim: draft or posted, amount
    already applied to the contract, and not on another claim. The date
    range covers whole days in the current timezone.
    """
    queryset = Transaction.objects.filter(
        organization=organization,
        status__in=Transaction.CLAIMABLE_STATUSES,
        balance_applied=True,
        claim__isnull=True,
    ).select_related("resident", "contract")
    if resident_id:
        queryset = queryset.filter(resident_id=resident_id)
    tz = timezone.get_current_timezone()
    if date_from:
        queryset = queryset.filter(occurred_at__gte=timezone.make_aware(datetime.combine(date_from, time.min), tz))
    if date_to:
        end = timezone.make_aware(datetime.combine(date_to + timedelta(days=1), time.min), tz)
        queryset = queryset.filter(occurred_at__lt=end)
    return queryset.order_by("occurred_at")


def parse_claim_filters(data):
    filters = {
        "resident_id": str(parse_uuid(data["resident_id"], "resident_id")) if data.get("resident_id") else None,
        "date_from": parse_date(data.get("date_from"), "date_from"),
        "date_to": parse_date(data.get("date_to"), "date_to"),
        "include_all": bool(data.get("include_all", False)),
    }
    if filters["date_from"] and filters["date_to"] and filters["date_to"] < filters["date_from"]:
        raise ClaimError("date_to must be on or after date_from")
    if filters["include_all"]:
        filters.update(resident_id=None, date_from=None, date_to=None)
    return filters


def create_claim(request, filters):
    organization = request.organization
    with db_transaction.atomic():
        eligible = list(
            claimable_transactions(
                organization,
                resident_id=filters["resident_id"],
                date_from=filters["date_from"],
                date_to=filters["date_to"],
            ).select_for_update(of=("self",))
        )
        if not eligible:
            raise ClaimError("No eligible transactions found for the selected filters")

        total = sum((txn.amount for txn in eligible), Decimal("0"))
        claim = Claim.objects.create(
            organization=organization,
            created_by=request.user,
            filters_json=filters,
            transaction_count=len(eligible),
            total_amount=total,
            status=Claim.Status.DRAFT,
        )
        Transaction.objects.filter(pk__in=[txn.pk for txn in eligible]).update(
            status=Transaction.Status.PICKED_UP,
            claim=claim,
            updated_at=timezone.now(),
        )

    log_action(
        request, AuditLog.Action.CREATE, f"Claim {claim.claim_number} created", claim,
        {"transaction_count": len(eligible), "total_amount": total, "filters": filters},
    )
    message = f"Claim {claim.claim_number} created with {_plural(len(eligible), 'transaction')}"
    return claim, message


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def build_export_csv(claim, transactions, exported_at):
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_HEADER)
    exported = exported_at.strftime("%Y-%m-%d %H:%M:%S")
    for txn in transactions:
        writer.writerow([
            claim.claim_number,
            txn.txn_id,
            txn.resident.full_name,
            str(txn.contract_id),
            timezone.localtime(txn.occurred_at).strftime("%Y-%m-%d"),
            f"{txn.amount:.2f}",
            txn.description or txn.note,
            txn.status,
            str(claim.organization_id),
            exported,
        ])
    return buffer.getvalue()


def export_claim(request, claim):
    transactions = list(claim.transactions.select_related("resident").order_by("occurred_at"))
    if not transactions:
        raise ClaimError("No transactions found for this claim")
    invalid = [txn for txn in transactions if txn.status != Transaction.Status.PICKED_UP]
    if invalid:
        raise ClaimError(
            f"Cannot export claim: {len(invalid)} transaction(s) have invalid status. "
            "All transactions must be in 'picked_up' status.",
            details=[{"id": txn.txn_id, "status": txn.status} for txn in invalid],
        )

    now = timezone.localtime()
    filename = f"CLAIM-{claim.claim_number}-{now:%Y%m%d-%H%M}.csv"
    content = build_export_csv(claim, transactions, now)
    storage_path = default_storage.save(
        f"exports/claims/{claim.claim_number}/{filename}",
        ContentFile(content.encode("utf-8")),
    )

    claim.file_path = storage_path
    claim.file_generated_at = timezone.now()
    claim.file_generated_by = request.user
    claim.status = Claim.Status.IN_PROGRESS
    claim.save(update_fields=["file_path", "file_generated_at", "file_generated_by", "status", "updated_at"])

    download_url, expires_at = create_signed_url(storage_path, request)
    total = sum((txn.amount for txn in transactions), Decimal("0"))
    log_action(
        request, AuditLog.Action.CLAIM_EXPORT, f"Claim file {filename} generated", claim,
        {"filename": filename, "transaction_count": len(transactions), "total_amount": total},
    )
    return {
        "filename": os.path.basename(storage_path),
        "download_url": download_url,
        "expires_at": expires_at,
        "transaction_count": len(transactions),
        "file_generated_at": claim.file_generated_at,
        "message": f"Claim file created successfully with {_plural(len(transactions), 'transaction')}",
    }


# ---------------------------------------------------------------------------
# Response reconciliation
# ---------------------------------------------------------------------------

def _read_response_rows(content):
    """Return (transaction id index, status index, amount index, rows)."""
    reader = csv.reader(io.StringIO(content))
    rows = [row for row in reader if any(cell.strip() for cell in row)]
    if len(rows) < 2:
        raise ClaimError("CSV file is empty or invalid")

    headers = [h.strip().lower() for h in rows[0]]
    txn_index = next((i for i, h in enumerate(headers) if "transaction" in h and "id" in h), None)
    status_index = next((i for i, h in enumerate(headers) if h == "status"), None)
    amount_index = next((i for i, h in enumerate(headers) if h == "amount"), None)
    if txn_index is None or status_index is None:
        raise ClaimError('CSV must contain "Transaction ID" and "Status" columns')
    return txn_index, status_index, amount_index, rows[1:]


def _cell(row, index):
    if index is None or index >= len(row):
        return ""
    return row[index].strip()


def _append_note(note, addition):
    return f"{note}\n{addition}" if note else addition


def _map_response_status(value):
    if value in PAID_STATUSES:
        return Transaction.Status.PAID
    if value in REJECTED_STATUSES:
        return Transaction.Status.REJECTED
    return Transaction.Status.ERROR


def claim_status_from_results(results, transaction_count):
    if results["total_paid"] == transaction_count:
        return Claim.Status.PAID
    if results["total_rejected"] == transaction_count:
        return Claim.Status.REJECTED
    if results["total_paid"] > 0 and (results["total_rejected"] > 0 or results["total_errors"] > 0):
        return Claim.Status.PARTIALLY_PAID
    return Claim.Status.PROCESSED


def reconcile_response(request, claim, uploaded_file):
    """
    Apply a response CSV to the claim's transactions. Transactions missing
    from the file are marked as errors. Rejected transactions keep their
    contract deduction.
    """
    if uploaded_file is None:
        raise ClaimError("No file provided")
    if not uploaded_file.name.lower().endswith(".csv"):
        raise ClaimError("Only CSV files are supported")

    transactions = {txn.txn_id: txn for txn in claim.transactions.all()}
    if not transactions:
        raise ClaimError("No transactions found for this claim")

    raw = uploaded_file.read()
    try:
        content = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ClaimError("CSV file must be UTF-8 encoded")
    txn_index, status_index, amount_index, rows = _read_response_rows(content)

    results = {
        "total_processed": 0,
        "total_paid": 0,
        "total_rejected": 0,
        "total_errors": 0,
        "total_unmatched": 0,
        "amount_mismatches": [],
        "unmatched_ids": [],
        "errors": [],
    }
    updated = {}

    for row in rows:
        txn_id = _cell(row, txn_index)
        if not txn_id:
            continue
        results["total_processed"] += 1

        txn = transactions.get(txn_id)
        if txn is None:
            results["total_unmatched"] += 1
            results["unmatched_ids"].append(txn_id)
            continue

        response_status = _cell(row, status_index).lower()
        new_status = _map_response_status(response_status)
        if new_status == Transaction.Status.PAID:
            results["total_paid"] += 1
        elif new_status == Transaction.Status.REJECTED:
            results["total_rejected"] += 1
        else:
            results["total_errors"] += 1
            if response_status != "error":
                results["errors"].append({"transaction_id": txn_id, "error": f"Unknown status: {response_status}"})

        response_amount = None
        raw_amount = _cell(row, amount_index)
        if raw_amount:
            try:
                response_amount = Decimal(raw_amount.replace("$", "").replace(",", ""))
            except InvalidOperation:
                results["errors"].append({"transaction_id": txn_id, "error": f"Invalid amount: {raw_amount}"})
        if response_amount is not None and abs(txn.amount - response_amount) > Decimal("0.01"):
            results["amount_mismatches"].append({
                "transaction_id": txn_id,
                "expected_amount": txn.amount,
                "response_amount": response_amount,
            })
            txn.note = _append_note(
                txn.note,
                f"[Warning: Amount mismatch - Expected: ${txn.amount}, Response: ${response_amount}]",
            )

        txn.status = new_status
        updated[txn_id] = txn

    for txn_id, txn in transactions.items():
        if txn_id not in updated:
            txn.status = Transaction.Status.ERROR
            txn.note = _append_note(txn.note, UNMATCHED_NOTE)
            results["total_errors"] += 1
            updated[txn_id] = txn

    now = timezone.localtime()
    response_name = f"RESPONSE-{claim.claim_number}-{now:%Y%m%d-%H%M}.csv"

    with db_transaction.atomic():
        for txn in updated.values():
            txn.save(update_fields=["status", "note", "updated_at"])
        claim.status = claim_status_from_results(results, len(transactions))
        claim.save(update_fields=["status", "updated_at"])
        storage_path = default_storage.save(
            f"exports/claims/{claim.claim_number}/responses/{response_name}",
            ContentFile(raw),
        )
        reconciliation = ClaimReconciliation.objects.create(
            claim=claim,
            uploaded_by=request.user,
            file_name=uploaded_file.name,
            file_path=storage_path,
            results_json=results,
            total_processed=results["total_processed"],
            total_paid=results["total_paid"],
            total_rejected=results["total_rejected"],
            total_errors=results["total_errors"],
            total_unmatched=results["total_unmatched"],
        )

    log_action(
        request, AuditLog.Action.CLAIM_RECONCILE,
        f"Response file {uploaded_file.name} processed for claim {claim.claim_number}", claim,
        {"file_name": uploaded_file.name, "results": results},
    )
    message = (
        f"Response processed: {results['total_paid']} paid, "
        f"{results['total_rejected']} rejected, {results['total_errors']} errors"
    )
    return reconciliation, results, message


# ---------------------------------------------------------------------------
# History and completion
# ---------------------------------------------------------------------------

def claim_history(claim, request=None):
    audit_entries = AuditLog.objects.filter(
        affected_object_type="Claim", affected_object_id=str(claim.pk)
    ).select_related("user")
    export = None
    if claim.file_path:
        url, expires_at = create_signed_url(claim.file_path, request)
        export = {
            "file_path": claim.file_path,
            "file_name": os.path.basename(claim.file_path),
            "generated_at": claim.file_generated_at,
            "download_url": url,
            "expires_at": expires_at,
        }
    return {
        "audit_log": [
            {
                "id": str(entry.pk),
                "action": entry.action,
                "description": entry.description,
                "user": entry.user.get_full_name() if entry.user else "System",
                "timestamp": entry.timestamp,
                "metadata": entry.metadata,
            }
            for entry in audit_entries
        ],
        "reconciliations": [
            {
                "id": str(r.pk),
                "file_name": r.file_name,
                "uploaded_at": r.created_at,
                "total_processed": r.total_processed,
                "total_paid": r.total_paid,
                "total_rejected": r.total_rejected,
                "total_errors": r.total_errors,
                "total_unmatched": r.total_unmatched,
            }
            for r in claim.reconciliations.all()
        ],
        "export": export,
    }


def simulate_completion(request, claim):
    """Mark every picked-up transaction on the claim as paid."""
    picked_up = claim.transactions.filter(status=Transaction.Status.PICKED_UP)
    count = picked_up.update(status=Transaction.Status.PAID, updated_at=timezone.now())
    if count:
        log_action(request, AuditLog.Action.STATUS_CHANGE,
                   f"{_plural(count, 'transaction')} on claim {claim.claim_number} marked paid", claim)
    return count
