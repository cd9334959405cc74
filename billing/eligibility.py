"""
Contract eligibility for automated drawdown.

A contract is eligible on a given day when all five checks pass. Each
failed check contributes a human-readable reason so that the eligibility
report can explain why a contract was left out.
"""
from django.utils import timezone

from core.contract_rates import FREQUENCY_DAYS
from core.models import FundingContract


def _status_reasons(contract):
    reasons = []
    if contract.status != FundingContract.Status.ACTIVE:
        reasons.append(f"Contract status is '{contract.status}', must be 'Active'")
    resident_status = contract.resident.status or ""
    if resident_status.lower() != "active":
        reasons.append(f"Resident status is '{resident_status}', must be 'active'")
    return reasons


def _automation_reasons(contract):
    reasons = []
    if not contract.auto_billing_enabled:
        reasons.append("Automation is not enabled for this contract")
    frequency = contract.automated_drawdown_frequency
    if not frequency:
        reasons.append("Automation frequency is not set")
    elif frequency not in FREQUENCY_DAYS:
        reasons.append(f"Invalid automation frequency: '{frequency}'")
    return reasons


def _balance_reasons(contract):
    reasons = []
    if contract.current_balance <= 0:
        reasons.append("Contract has insufficient balance")
    daily_cost = contract.daily_support_item_cost
    if daily_cost and contract.current_balance < daily_cost:
        reasons.append(
            f"Balance (${contract.current_balance}) is less than daily cost (${daily_cost})"
        )
    return reasons


def _date_reasons(contract, today):
    reasons = []
    if today < contract.start_date:
        reasons.append(f"Contract has not started yet (starts {contract.start_date})")
    if contract.end_date and today > contract.end_date:
        reasons.append(f"Contract has expired (ended {contract.end_date})")
    return reasons


def _next_run_reasons(contract, today, catch_up):
    next_run = contract.next_run_date
    if next_run is None:
        return ["Next run date is not set"]
    if next_run > today:
        return [f"Next run date is scheduled for the future ({next_run}) - not due today"]
    if next_run < today and not catch_up:
        return [f"Next run date is in the past ({next_run}) - overdue, not scheduled for today"]
    return []


def check_contract_eligibility(contract, today=None, catch_up=False):
    """
    Run every check against one contract. In catch-up mode an overdue
    next run date still counts as due.
    """
    today = today or timezone.localdate()
    reason_groups = {
        "status_check": _status_reasons(contract),
        "automation_check": _automation_reasons(contract),
        "balance_check": _balance_reasons(contract),
        "date_check": _date_reasons(contract, today),
        "next_run_check": _next_run_reasons(contract, today, catch_up),
    }
    checks = {name: not reasons for name, reasons in reason_groups.items()}
    return {
        "contract": contract,
        "is_eligible": all(checks.values()),
        "checks": checks,
        "reasons": [reason for reasons in reason_groups.values() for reason in reasons],
    }


def automation_contracts(organization):
    return (
        FundingContract.objects.filter(organization=organization, auto_billing_enabled=True)
        .select_related("resident", "resident__house")
        .order_by("next_run_date", "created_at")
    )


def get_eligible_contracts(organization, today=None, catch_up=False):
    """Contracts of ``organization`` due for a drawdown on ``today``."""
    today = today or timezone.localdate()
    candidates = automation_contracts(organization).filter(
        status=FundingContract.Status.ACTIVE,
        next_run_date__isnull=False,
    )
    if catch_up:
        candidates = candidates.filter(next_run_date__lte=today)
    else:
        candidates = candidates.filter(next_run_date=today)
    return [
        contract for contract in candidates
        if check_contract_eligibility(contract, today, catch_up)["is_eligible"]
    ]


def eligibility_report(organization, today=None, catch_up=False):
    """Every automation-enabled contract with its check results."""
    today = today or timezone.localdate()
    return [
        check_contract_eligibility(contract, today, catch_up)
        for contract in automation_contracts(organization)
    ]
