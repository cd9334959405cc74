"""
Manual transaction workflow: create, edit, post, void, delete and export.

A draft's amount is deducted from its contract either when the draft is
generated by the billing run (``balance_applied`` is set at creation) or
when it is posted. Voiding or deleting a transaction whose amount was
applied gives the amount back to the contract.
"""
import csv
import io
import logging
from decimal import Decimal

import openpyxl
from openpyxl.styles import Font
from django.db import transaction as db_transaction
from django.db.models import Q
from django.utils import timezone

from config.api import ApiError, money, parse_date, parse_uuid_list
from core.audit import log_action
from core.models import AuditLog, FundingContract

from .models import Transaction

logger = logging.getLogger("billing")

EXPORT_HEADERS = [
    "Transaction ID", "Date", "Resident", "House", "Contract Type", "Service Code",
    "Description", "Quantity", "Unit Price", "Amount", "Status", "Drawdown Status",
    "Automated", "Note", "Created At", "Posted At", "Voided At", "Void Reason",
]


class InsufficientBalanceError(ApiError):
    pass


class TransactionStateError(ApiError):
    pass


def transaction_json(txn):
    return {
        "id": str(txn.pk),
        "txn_id": txn.txn_id,
        "resident_id": str(txn.resident_id),
        "resident_name": txn.resident.full_name,
        "contract_id": str(txn.contract_id),
        "claim_id": str(txn.claim_id) if txn.claim_id else None,
        "occurred_at": txn.occurred_at.isoformat(),
        "service_code": txn.service_code,
        "description": txn.description,
        "quantity": money(txn.quantity),
        "unit_price": money(txn.unit_price),
        "amount": money(txn.amount),
        "note": txn.note,
        "status": txn.status,
        "drawdown_status": txn.drawdown_status,
        "is_drawdown_transaction": txn.is_drawdown_transaction,
        "is_automated": txn.is_automated,
        "balance_applied": txn.balance_applied,
        "created_at": txn.created_at.isoformat(),
        "posted_at": txn.posted_at.isoformat() if txn.posted_at else None,
        "voided_at": txn.voided_at.isoformat() if txn.voided_at else None,
        "void_reason": txn.void_reason,
    }


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------

def _csv_list(value):
    return [v for v in (value or "").split(",") if v]


def filter_transactions(queryset, params):
    """
    Apply list filters from query parameters: date_from, date_to,
    resident_ids, contract_ids, house_ids, statuses, service_code, search.
    """
    date_from = parse_date(params.get("date_from"), "date_from")
    date_to = parse_date(params.get("date_to"), "date_to")
    if date_from:
        queryset = queryset.filter(occurred_at__date__gte=date_from)
    if date_to:
        queryset = queryset.filter(occurred_at__date__lte=date_to)
    if params.get("resident_ids"):
        queryset = queryset.filter(resident_id__in=parse_uuid_list(params["resident_ids"], "resident_ids"))
    if params.get("contract_ids"):
        queryset = queryset.filter(contract_id__in=parse_uuid_list(params["contract_ids"], "contract_ids"))
    if params.get("house_ids"):
        queryset = queryset.filter(resident__house_id__in=parse_uuid_list(params["house_ids"], "house_ids"))
    if params.get("statuses"):
        queryset = queryset.filter(status__in=_csv_list(params["statuses"]))
    if params.get("service_code"):
        queryset = queryset.filter(service_code__iexact=params["service_code"])
    if params.get("search"):
        term = params["search"].strip()
        queryset = queryset.filter(
            Q(txn_id__icontains=term)
            | Q(description__icontains=term)
            | Q(note__icontains=term)
            | Q(resident__first_name__icontains=term)
            | Q(resident__last_name__icontains=term)
        )
    return queryset


# ---------------------------------------------------------------------------
# Balance helpers
# ---------------------------------------------------------------------------

def _locked_contract(txn):
    return FundingContract.objects.select_for_update().get(pk=txn.contract_id)


def _deduct(contract, amount):
    if amount > contract.current_balance:
        excess = amount - contract.current_balance
        raise InsufficientBalanceError(f"Insufficient balance. Would exceed by ${excess:.2f}")
    contract.current_balance -= amount
    contract.save(update_fields=["current_balance", "updated_at"])


def _restore(contract, amount):
    contract.current_balance += amount
    contract.save(update_fields=["current_balance", "updated_at"])


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

def create_transaction(request, form):
    """Save a validated TransactionForm as a draft for the request's organization."""
    txn = form.save(commit=False)
    txn.organization = request.organization
    txn.created_by = request.user
    txn.status = Transaction.Status.DRAFT
    if txn.is_drawdown_transaction:
        txn.drawdown_status = Transaction.DrawdownStatus.PENDING
    txn.save()
    log_action(request, AuditLog.Action.CREATE, f"Transaction {txn.txn_id} created for ${txn.amount}", txn)
    return txn


def update_transaction(request, txn, form):
    """Save edits to a draft. Applied drafts move the contract balance by the difference."""
    if txn.status != Transaction.Status.DRAFT:
        raise TransactionStateError("Only draft transactions can be edited")
    old_amount = Transaction.objects.values_list("amount", flat=True).get(pk=txn.pk)
    with db_transaction.atomic():
        updated = form.save(commit=False)
        if updated.balance_applied and updated.amount != old_amount:
            contract = _locked_contract(updated)
            delta = updated.amount - old_amount
            if delta > 0:
                _deduct(contract, delta)
            else:
                _restore(contract, -delta)
        updated.save()
    log_action(request, AuditLog.Action.UPDATE, f"Transaction {updated.txn_id} updated", updated,
               {"old_amount": old_amount, "new_amount": updated.amount})
    return updated


def post_transaction(request, txn):
    if txn.status != Transaction.Status.DRAFT:
        raise TransactionStateError("Can only post draft transactions")
    with db_transaction.atomic():
        contract = _locked_contract(txn)
        if contract.status != FundingContract.Status.ACTIVE:
            raise TransactionStateError(
                f"Cannot post against a contract with status {contract.status}"
            )
        if not txn.balance_applied:
            _deduct(contract, txn.amount)
            txn.balance_applied = True
        txn.status = Transaction.Status.POSTED
        if txn.is_drawdown_transaction:
            txn.drawdown_status = Transaction.DrawdownStatus.POSTED
        txn.posted_at = timezone.now()
        txn.posted_by = request.user
        txn.save(update_fields=[
            "status", "drawdown_status", "balance_applied", "posted_at", "posted_by", "updated_at",
        ])
    log_action(request, AuditLog.Action.STATUS_CHANGE, f"Transaction {txn.txn_id} posted", txn,
               {"amount": txn.amount, "remaining_balance": contract.current_balance})
    return txn


def void_transaction(request, txn, reason):
    reason = (reason or "").strip()
    if not reason:
        raise TransactionStateError("Reason is required for voiding transactions")
    if txn.status != Transaction.Status.POSTED:
        raise TransactionStateError("Can only void posted transactions")
    with db_transaction.atomic():
        if txn.balance_applied:
            _restore(_locked_contract(txn), txn.amount)
            txn.balance_applied = False
        txn.status = Transaction.Status.VOIDED
        if txn.is_drawdown_transaction:
            txn.drawdown_status = Transaction.DrawdownStatus.VOIDED
        txn.voided_at = timezone.now()
        txn.voided_by = request.user
        txn.void_reason = reason
        txn.save(update_fields=[
            "status", "drawdown_status", "balance_applied", "voided_at", "voided_by",
            "void_reason", "updated_at",
        ])
    log_action(request, AuditLog.Action.STATUS_CHANGE, f"Transaction {txn.txn_id} voided: {reason}", txn,
               {"amount": txn.amount})
    return txn


def delete_transaction(request, txn):
    if txn.status != Transaction.Status.DRAFT:
        raise TransactionStateError("Only draft transactions can be deleted")
    txn_id, amount = txn.txn_id, txn.amount
    with db_transaction.atomic():
        if txn.balance_applied:
            _restore(_locked_contract(txn), amount)
        txn.delete()
    log_action(request, AuditLog.Action.DELETE, f"Draft transaction {txn_id} deleted (${amount})")


BULK_ACTIONS = ("post", "void")


def bulk_action(request, queryset, action, ids, reason=""):
    """Post or void several transactions; each one succeeds or fails on its own."""
    if action not in BULK_ACTIONS:
        raise ApiError(f"Unsupported bulk action: {action}")
    if not ids:
        raise ApiError("No transactions selected")

    found = {str(t.pk): t for t in queryset.filter(pk__in=ids).select_related("resident")}
    results = []
    for pk in ids:
        txn = found.get(str(pk))
        if txn is None:
            results.append({"id": str(pk), "success": False, "error": "Transaction not found"})
            continue
        try:
            if action == "post":
                post_transaction(request, txn)
            else:
                void_transaction(request, txn, reason)
        except ApiError as e:
            results.append({"id": str(pk), "txn_id": txn.txn_id, "success": False, "error": e.message})
        else:
            results.append({"id": str(pk), "txn_id": txn.txn_id, "success": True})

    succeeded = sum(1 for r in results if r["success"])
    return {
        "results": results,
        "succeeded": succeeded,
        "failed": len(results) - succeeded,
    }


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def _export_row(txn):
    house = txn.resident.house
    local_occurred = timezone.localtime(txn.occurred_at)
    return [
        txn.txn_id,
        local_occurred.date().isoformat(),
        txn.resident.full_name,
        house.display_name if house else "",
        txn.contract.contract_type,
        txn.service_code,
        txn.description,
        txn.quantity,
        txn.unit_price,
        txn.amount,
        txn.get_status_display(),
        txn.get_drawdown_status_display() if txn.drawdown_status else "",
        "Yes" if txn.is_automated else "No",
        txn.note,
        timezone.localtime(txn.created_at).strftime("%Y-%m-%d %H:%M:%S"),
        timezone.localtime(txn.posted_at).strftime("%Y-%m-%d %H:%M:%S") if txn.posted_at else "",
        timezone.localtime(txn.voided_at).strftime("%Y-%m-%d %H:%M:%S") if txn.voided_at else "",
        txn.void_reason,
    ]


def export_csv(transactions):
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_HEADERS)
    for txn in transactions:
        writer.writerow(_export_row(txn))
    return buffer.getvalue()


def export_xlsx(transactions):
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Transactions"

    for col, header in enumerate(EXPORT_HEADERS, 1):
        ws.cell(row=1, column=col, value=header).font = Font(bold=True)

    for row, txn in enumerate(transactions, 2):
        for col, value in enumerate(_export_row(txn), 1):
            if isinstance(value, Decimal):
                value = float(value)
            ws.cell(row=row, column=col, value=value)

    ws.freeze_panes = "A2"
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()
