"""
Contract rate calculator.

Spreads a funding contract's total amount evenly across its duration and
scales the daily rate to the drawdown frequency.
"""
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal

from config.api import ApiError

CENT = Decimal("0.01")

FREQUENCY_DAYS = {
    "daily": 1,
    "weekly": 7,
    "fortnightly": 14,
}


class ContractRateError(ApiError):
    pass


def to_cents(value):
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_contract_rates(amount, start_date, end_date):
    """
    Return the contract's day count and daily/weekly/fortnightly rates.

    Both dates are inclusive, so a contract running 1 July to 30 June
    covers 365 days.
    """
    amount = Decimal(amount or 0)
    if amount <= 0:
        raise ContractRateError("Contract amount must be greater than 0")
    if not start_date:
        raise ContractRateError("Contract start date is required")
    if not end_date:
        raise ContractRateError("Contract end date is required for automatic calculation")
    if end_date < start_date:
        raise ContractRateError("End date must be after start date")

    total_days = (end_date - start_date).days + 1
    daily = amount / total_days
    return {
        "total_days": total_days,
        "daily_rate": to_cents(daily),
        "weekly_rate": to_cents(daily * 7),
        "fortnightly_rate": to_cents(daily * 14),
    }


def get_transaction_amount(frequency, daily_rate):
    """Amount of one drawdown at the given frequency."""
    if frequency not in FREQUENCY_DAYS:
        raise ContractRateError(f"Unsupported drawdown frequency: {frequency}")
    return to_cents(Decimal(daily_rate or 0) * FREQUENCY_DAYS[frequency])


def next_run_date_after(run_date, frequency):
    return run_date + timedelta(days=FREQUENCY_DAYS[frequency])


def enable_contract_automation(contract, frequency, first_run_date=None):
    """
    Switch a contract to automated drawdown at ``frequency``.
    Sets the daily cost from the calculator; the caller saves the contract.
    """
    if frequency not in FREQUENCY_DAYS:
        raise ContractRateError(f"Unsupported drawdown frequency: {frequency}")
    rates = calculate_contract_rates(contract.original_amount, contract.start_date, contract.end_date)
    contract.auto_billing_enabled = True
    contract.automated_drawdown_frequency = frequency
    contract.daily_support_item_cost = rates["daily_rate"]
    if first_run_date is not None:
        contract.first_run_date = first_run_date
        contract.next_run_date = first_run_date
    elif contract.next_run_date is None:
        contract.next_run_date = contract.first_run_date or contract.start_date
    return rates


def disable_contract_automation(contract):
    contract.auto_billing_enabled = False
