"""
Funding contract lifecycle and balance reporting.
"""
import logging
from datetime import timedelta
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from config.api import ApiError

from .audit import log_action, log_system_action
from .models import AuditLog, FundingContract, Resident

logger = logging.getLogger(__name__)


class ContractStatusError(ApiError):
    pass


def change_status(contract, new_status, request=None):
    """Move a contract to ``new_status`` if the lifecycle allows it."""
    if new_status not in FundingContract.Status.values:
        raise ContractStatusError(f"Invalid status: {new_status}")
    if not contract.can_transition_to(new_status):
        raise ContractStatusError(
            f"Cannot change contract status from {contract.status} to {new_status}"
        )

    if new_status == FundingContract.Status.ACTIVE:
        return activate_contract(contract, request=request)

    old_status = contract.status
    contract.status = new_status
    update_fields = ["status", "updated_at"]
    if new_status == FundingContract.Status.EXPIRED:
        contract.current_balance = Decimal("0")
        update_fields.append("current_balance")
    contract.save(update_fields=update_fields)
    _log_status_change(contract, old_status, request)
    return contract


def activate_contract(contract, request=None, today=None):
    """
    Draft (or Renewed) to Active. The full original amount becomes the
    current balance. Automated contracts without a next run date start on
    the later of today and the contract start date.
    """
    if not contract.can_transition_to(FundingContract.Status.ACTIVE):
        raise ContractStatusError(
            f"Cannot activate a contract with status {contract.status}"
        )
    today = today or timezone.localdate()
    old_status = contract.status
    contract.status = FundingContract.Status.ACTIVE
    contract.current_balance = contract.original_amount
    if contract.auto_billing_enabled and contract.next_run_date is None:
        contract.next_run_date = max(today, contract.start_date)
    contract.save(update_fields=["status", "current_balance", "next_run_date", "updated_at"])
    _log_status_change(contract, old_status, request)
    return contract


@transaction.atomic
def renew_contract(contract, request=None, today=None):
    """
    Create a Draft successor for an Expired contract covering one year
    from today, and mark the original as Renewed.
    """
    if not contract.can_transition_to(FundingContract.Status.RENEWED):
        raise ContractStatusError(
            f"Only expired contracts can be renewed (current status: {contract.status})"
        )
    today = today or timezone.localdate()
    try:
        end_date = today.replace(year=today.year + 1)
    except ValueError:
        # 29 February
        end_date = today + timedelta(days=365)

    renewal = FundingContract.objects.create(
        organization=contract.organization,
        resident=contract.resident,
        contract_type=contract.contract_type,
        status=FundingContract.Status.DRAFT,
        original_amount=contract.original_amount,
        current_balance=contract.original_amount,
        start_date=today,
        end_date=end_date,
        description=contract.description,
        support_item_code=contract.support_item_code,
        automated_drawdown_frequency=contract.automated_drawdown_frequency,
        parent_contract=contract,
        created_by=request.user if request is not None else None,
    )

    old_status = contract.status
    contract.status = FundingContract.Status.RENEWED
    contract.save(update_fields=["status", "updated_at"])
    _log_status_change(contract, old_status, request)
    return renewal


def mark_expired_contracts(organization, today=None):
    """Expire Active contracts whose end date has passed. Returns the number expired."""
    today = today or timezone.localdate()
    expired = list(
        FundingContract.objects.filter(
            organization=organization,
            status=FundingContract.Status.ACTIVE,
            end_date__lt=today,
        )
    )
    for contract in expired:
        contract.status = FundingContract.Status.EXPIRED
        contract.current_balance = Decimal("0")
        contract.save(update_fields=["status", "current_balance", "updated_at"])
        log_system_action(
            organization,
            AuditLog.Action.STATUS_CHANGE,
            f"Contract expired on {contract.end_date:%d/%m/%Y}",
            contract,
            metadata={"old_status": FundingContract.Status.ACTIVE, "new_status": contract.status},
        )
    if expired:
        logger.info("Expired %d contract(s) for %s", len(expired), organization.slug)
    return len(expired)


def balance_summary(contracts, today=None):
    """Totals across a set of contracts."""
    today = today or timezone.localdate()
    total_original = Decimal("0")
    total_current = Decimal("0")
    active = 0
    expiring_soon = 0
    for contract in contracts:
        total_original += contract.original_amount
        total_current += contract.current_balance
        if contract.status == FundingContract.Status.ACTIVE:
            active += 1
        if contract.is_expiring_soon(today):
            expiring_soon += 1
    return {
        "total_original": total_original,
        "total_current": total_current,
        "total_drawn_down": total_original - total_current,
        "active_contracts": active,
        "expiring_soon": expiring_soon,
    }


def resident_billing_status(resident):
    """Whether the resident can be billed, with the reasons when not."""
    reasons = []
    if resident.status != Resident.Status.ACTIVE:
        reasons.append(f"Resident status is {resident.status}")
    if resident.house_id is None:
        reasons.append("Resident is not assigned to a house")

    active_contracts = resident.funding_contracts.filter(status=FundingContract.Status.ACTIVE)
    if not active_contracts.exists():
        reasons.append("Resident has no active funding contract")
    elif not active_contracts.filter(current_balance__gt=0).exists():
        reasons.append("Active funding contracts have no remaining balance")

    return {
        "ready": not reasons,
        "reasons": reasons,
        "active_contracts": active_contracts.count(),
    }


def _log_status_change(contract, old_status, request):
    description = f"Contract status changed from {old_status} to {contract.status}"
    metadata = {"old_status": old_status, "new_status": contract.status}
    if request is not None:
        log_action(request, AuditLog.Action.STATUS_CHANGE, description, contract, metadata)
    else:
        log_system_action(contract.organization, AuditLog.Action.STATUS_CHANGE, description, contract, metadata)
