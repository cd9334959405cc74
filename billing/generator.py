"""
Automated drawdown transaction generator.

For each eligible contract one draft drawdown transaction is created and
the amount is deducted from the contract balance in the same database
transaction. Failures are collected per contract so one bad contract never
stops the rest of the run.
"""
import logging
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from core.audit import log_system_action
from core.contract_rates import get_transaction_amount, next_run_date_after
from core.models import AuditLog, FundingContract

from .eligibility import get_eligible_contracts
from .models import Transaction

logger = logging.getLogger("billing")

DUPLICATE_RESIDENT = "Skipped: duplicate contract for same resident"


class GenerationError(Exception):
    """A contract could not be drawn down. Carries the reason shown to users."""

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


def _empty_result(processed=0):
    return {
        "success": True,
        "processed_contracts": processed,
        "successful": 0,
        "failed": 0,
        "skipped": 0,
        "stopped_early": False,
        "transactions": [],
        "errors": [],
        "summary": {
            "total_amount": Decimal("0"),
            "average_amount": Decimal("0"),
            "frequency_breakdown": {},
        },
    }


def generate_transactions(organization, today=None, catch_up=True, stop_on_error=False):
    """
    Draw down every contract of ``organization`` that is due on ``today``.
    Only one contract per resident is processed in a run. With
    ``stop_on_error`` the first failed contract ends the run and the
    contracts after it are counted as skipped.
    """
    today = today or timezone.localdate()
    contracts = get_eligible_contracts(organization, today=today, catch_up=catch_up)
    results = _empty_result(len(contracts))
    processed_residents = set()

    for index, contract in enumerate(contracts):
        if stop_on_error and results["failed"]:
            remaining = len(contracts) - index
            logger.warning("Stopping billing run for %s after a failure; %d contract(s) not processed",
                           organization.slug, remaining)
            results["skipped"] += remaining
            results["stopped_early"] = True
            break

        resident = contract.resident
        if resident.pk in processed_residents:
            logger.warning(
                "Skipping duplicate contract %s for resident %s in this run",
                contract.pk, resident.pk,
            )
            results["skipped"] += 1
            results["errors"].append({
                "contract_id": str(contract.pk),
                "resident_id": str(resident.pk),
                "error": DUPLICATE_RESIDENT,
                "details": {
                    "reason": "Another contract for this resident was already processed in this run. "
                              "Disable automation on the duplicate contract.",
                },
            })
            continue

        try:
            txn = generate_transaction_for_contract(contract, today)
        except GenerationError as e:
            logger.warning("Drawdown failed for contract %s: %s", contract.pk, e.message)
            results["failed"] += 1
            results["errors"].append({
                "contract_id": str(contract.pk),
                "resident_id": str(resident.pk),
                "error": e.message,
                "details": e.details,
            })
            continue
        except Exception as e:
            logger.exception("Unexpected error generating drawdown for contract %s", contract.pk)
            results["failed"] += 1
            results["errors"].append({
                "contract_id": str(contract.pk),
                "resident_id": str(resident.pk),
                "error": "Transaction generation failed",
                "details": {"message": str(e)},
            })
            continue

        processed_residents.add(resident.pk)
        frequency = contract.automated_drawdown_frequency
        results["successful"] += 1
        results["transactions"].append({
            "id": str(txn.pk),
            "txn_id": txn.txn_id,
            "contract_id": str(contract.pk),
            "resident_id": str(resident.pk),
            "resident_name": resident.full_name,
            "amount": txn.amount,
            "frequency": frequency,
            "transaction_date": txn.occurred_at,
            "description": txn.description,
            "remaining_balance": contract.current_balance,
        })
        summary = results["summary"]
        summary["total_amount"] += txn.amount
        summary["frequency_breakdown"][frequency] = summary["frequency_breakdown"].get(frequency, 0) + 1

    if results["successful"]:
        summary = results["summary"]
        summary["average_amount"] = (summary["total_amount"] / results["successful"]).quantize(Decimal("0.01"))
    return results


def generate_transaction_for_contract(contract, today=None):
    """
    Create one drawdown for ``contract`` and deduct it from the balance.
    Raises GenerationError when the drawdown is refused.
    """
    today = today or timezone.localdate()
    with transaction.atomic():
        # Re-read under lock so concurrent runs see the deducted balance
        locked = FundingContract.objects.select_for_update().get(pk=contract.pk)
        frequency = locked.automated_drawdown_frequency
        amount = get_transaction_amount(frequency, locked.daily_support_item_cost)

        if amount <= 0:
            raise GenerationError(
                "Invalid transaction amount",
                {"daily_rate": locked.daily_support_item_cost, "frequency": frequency},
            )
        if locked.current_balance < amount:
            raise GenerationError(
                "Insufficient contract balance",
                {"current_balance": locked.current_balance, "transaction_amount": amount},
            )
        existing = Transaction.objects.filter(
            resident_id=locked.resident_id,
            is_automated=True,
            occurred_at__date=today,
        )
        if existing.exists():
            raise GenerationError(
                "Duplicate prevented: automation transaction already exists for this resident today",
                {"existing_transactions": [t.txn_id for t in existing]},
            )

        now = timezone.now()
        txn = Transaction.objects.create(
            organization=locked.organization,
            resident_id=locked.resident_id,
            contract=locked,
            occurred_at=now,
            service_code=locked.support_item_code,
            description=f"Automated {frequency} drawdown - {locked.contract_type}",
            quantity=Decimal("1"),
            unit_price=amount,
            amount=amount,
            status=Transaction.Status.DRAFT,
            drawdown_status=Transaction.DrawdownStatus.PENDING,
            is_drawdown_transaction=True,
            is_automated=True,
            balance_applied=True,
        )

        old_balance = locked.current_balance
        locked.current_balance = old_balance - amount
        locked.next_run_date = next_run_date_after(locked.next_run_date or today, frequency)
        locked.last_drawdown_date = now
        locked.save(update_fields=["current_balance", "next_run_date", "last_drawdown_date", "updated_at"])

        log_system_action(
            locked.organization,
            AuditLog.Action.AUTOMATED_TRANSACTION,
            f"Automated {frequency} drawdown {txn.txn_id} of ${amount}",
            locked,
            metadata={
                "field": "current_balance",
                "old_value": str(old_balance),
                "new_value": str(locked.current_balance),
                "transaction_id": txn.txn_id,
                "frequency": frequency,
                "transaction_amount": str(amount),
            },
        )

    contract.current_balance = locked.current_balance
    contract.next_run_date = locked.next_run_date
    contract.last_drawdown_date = locked.last_drawdown_date
    return txn


def preview_generation(organization, today=None, catch_up=True):
    """What generate_transactions would do today, without writing anything."""
    today = today or timezone.localdate()
    items = []
    for contract in get_eligible_contracts(organization, today=today, catch_up=catch_up):
        frequency = contract.automated_drawdown_frequency
        amount = get_transaction_amount(frequency, contract.daily_support_item_cost)
        items.append({
            "contract_id": str(contract.pk),
            "resident_name": contract.resident.full_name,
            "amount": amount,
            "frequency": frequency,
            "current_balance": contract.current_balance,
            "new_balance": contract.current_balance - amount,
            "next_run_date": next_run_date_after(contract.next_run_date, frequency),
        })
    return {
        "eligible_contracts": len(items),
        "transactions": items,
        "total_amount": sum((item["amount"] for item in items), Decimal("0")),
    }
