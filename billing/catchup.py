"""
Catch-up billing for contracts whose next run date is in the past.

One draft transaction is created for every missed billing date, stepping
from the next run date to today by the contract's frequency.
"""
import logging
from datetime import datetime, time
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from core.audit import log_system_action
from core.contract_rates import FREQUENCY_DAYS, get_transaction_amount, next_run_date_after
from core.models import AuditLog, FundingContract

from .models import Transaction

logger = logging.getLogger("billing")

MAX_CATCHUP_RUNS = 50


class CatchUpRefused(Exception):
    """Raised by callers that must undo their own changes when catch-up is refused."""

    def __init__(self, result):
        super().__init__(result["error"])
        self.result = result


def catchup_billing_dates(next_run, frequency, today=None, limit=MAX_CATCHUP_RUNS):
    """Billing dates from ``next_run`` up to and including today."""
    today = today or timezone.localdate()
    dates = []
    current = next_run
    while current <= today and (limit is None or len(dates) < limit):
        dates.append(current)
        current = next_run_date_after(current, frequency)
    return dates


def validate_catchup_generation(contract, today=None):
    """Returns ``{"valid": bool, "error"?: str, "warning"?: str, "count": int}``."""
    today = today or timezone.localdate()
    next_run = contract.next_run_date
    frequency = contract.automated_drawdown_frequency

    if next_run is None:
        return {"valid": False, "error": "Next run date is not set", "count": 0}
    if frequency not in FREQUENCY_DAYS:
        return {"valid": False, "error": "Automation frequency is not set", "count": 0}
    if next_run < contract.start_date:
        return {"valid": False, "error": "Next run date cannot be before contract start date", "count": 0}
    if next_run >= today:
        return {
            "valid": True,
            "warning": "Next run date is not in the past. No catch-up transactions will be generated.",
            "count": 0,
        }

    count = len(catchup_billing_dates(next_run, frequency, today, limit=None))
    if count > MAX_CATCHUP_RUNS:
        return {
            "valid": False,
            "error": f"Too many catch-up transactions required ({count}). "
                     f"Maximum is {MAX_CATCHUP_RUNS}. Please adjust your next run date.",
            "count": count,
        }

    result = {"valid": True, "count": count}
    amount = get_transaction_amount(frequency, contract.daily_support_item_cost)
    total_required = amount * count
    if total_required > contract.current_balance:
        result["warning"] = (
            f"Insufficient balance: need ${total_required:.2f} but only "
            f"${contract.current_balance:.2f} available. Generation stops when the balance runs out."
        )
    return result


def generate_catchup_transactions(contract, today=None, user=None):
    """
    Create one draft drawdown per missed billing date (oldest first),
    stopping when the balance cannot cover another one.
    """
    today = today or timezone.localdate()
    check = validate_catchup_generation(contract, today)
    result = {
        "success": check["valid"],
        "transactions_created": 0,
        "transactions": [],
        "warnings": [check["warning"]] if check.get("warning") else [],
    }
    if not check["valid"]:
        result["error"] = check["error"]
        return result
    if check["count"] == 0:
        return result

    tz = timezone.get_current_timezone()
    with transaction.atomic():
        locked = FundingContract.objects.select_for_update().get(pk=contract.pk)
        frequency = locked.automated_drawdown_frequency
        amount = get_transaction_amount(frequency, locked.daily_support_item_cost)
        if amount <= 0:
            result["success"] = False
            result["error"] = "Invalid transaction amount"
            return result

        old_balance = locked.current_balance
        next_run = locked.next_run_date
        for billing_date in catchup_billing_dates(locked.next_run_date, frequency, today):
            if locked.current_balance < amount:
                result["warnings"].append(
                    f"Stopped at {billing_date:%d/%m/%Y}: insufficient contract balance"
                )
                break
            txn = Transaction.objects.create(
                organization=locked.organization,
                resident_id=locked.resident_id,
                contract=locked,
                occurred_at=timezone.make_aware(datetime.combine(billing_date, time(0, 0)), tz),
                service_code=locked.support_item_code,
                description=f"Automated {frequency} drawdown - {locked.contract_type}",
                note=f"Catch-up billing for {billing_date:%d/%m/%Y}",
                quantity=Decimal("1"),
                unit_price=amount,
                amount=amount,
                status=Transaction.Status.DRAFT,
                drawdown_status=Transaction.DrawdownStatus.PENDING,
                is_drawdown_transaction=True,
                balance_applied=True,
                created_by=user,
            )
            locked.current_balance -= amount
            next_run = next_run_date_after(billing_date, frequency)
            result["transactions"].append({
                "id": str(txn.pk),
                "txn_id": txn.txn_id,
                "date": billing_date,
                "amount": amount,
            })

        if result["transactions"]:
            locked.next_run_date = next_run
            locked.last_drawdown_date = timezone.now()
            locked.save(update_fields=["current_balance", "next_run_date", "last_drawdown_date", "updated_at"])
            log_system_action(
                locked.organization,
                AuditLog.Action.BALANCE_CHANGE,
                f"Catch-up billing created {len(result['transactions'])} transaction(s)",
                locked,
                metadata={
                    "field": "current_balance",
                    "old_value": str(old_balance),
                    "new_value": str(locked.current_balance),
                    "transaction_ids": [t["txn_id"] for t in result["transactions"]],
                },
            )

    result["transactions_created"] = len(result["transactions"])
    contract.current_balance = locked.current_balance
    contract.next_run_date = locked.next_run_date
    logger.info("Created %d catch-up transaction(s) for contract %s", result["transactions_created"], contract.pk)
    return result
