"""Upcoming drawdowns for the next few days."""
from datetime import timedelta
from decimal import Decimal

from django.utils import timezone

from core.contract_rates import FREQUENCY_DAYS, get_transaction_amount, next_run_date_after
from core.models import FundingContract, House, Resident

PREVIEW_DAYS = 3


def _would_run_on(contract, check_date):
    # Daily contracts catch up, so they appear on every day from the next run date
    if contract.automated_drawdown_frequency == FundingContract.Frequency.DAILY:
        return check_date >= contract.next_run_date
    return check_date == contract.next_run_date


def preview_upcoming(organization, today=None, days=PREVIEW_DAYS):
    today = today or timezone.localdate()
    contracts = list(
        FundingContract.objects.filter(
            organization=organization,
            auto_billing_enabled=True,
            status=FundingContract.Status.ACTIVE,
            next_run_date__isnull=False,
            automated_drawdown_frequency__in=list(FREQUENCY_DAYS),
            resident__status=Resident.Status.ACTIVE,
            resident__house__status=House.Status.ACTIVE,
        ).select_related("resident", "resident__house")
    )

    contracts_by_day = {}
    for offset in range(days):
        check_date = today + timedelta(days=offset)
        scheduled = []
        for contract in contracts:
            if not _would_run_on(contract, check_date):
                continue
            frequency = contract.automated_drawdown_frequency
            amount = get_transaction_amount(frequency, contract.daily_support_item_cost)
            resident = contract.resident
            scheduled.append({
                "contract_id": str(contract.pk),
                "resident_id": str(resident.pk),
                "resident_name": resident.full_name,
                "house_name": resident.house.descriptor or f"{resident.house.address1}, {resident.house.suburb}",
                "contract_type": contract.contract_type,
                "frequency": frequency,
                "transaction_amount": amount,
                "current_balance": contract.current_balance,
                "balance_after_transaction": contract.current_balance - amount,
                "next_run_date_after": next_run_date_after(check_date, frequency),
                "has_sufficient_balance": contract.current_balance >= amount,
                "scheduled_run_date": check_date,
            })
        contracts_by_day[check_date.isoformat()] = scheduled

    all_runs = [item for items in contracts_by_day.values() for item in items]
    return {
        "contracts_by_day": contracts_by_day,
        "summary": {
            "total_scheduled_runs": len(all_runs),
            "unique_contracts": len({item["contract_id"] for item in all_runs}),
            "total_amount": sum((item["transaction_amount"] for item in all_runs), Decimal("0")),
            "days": len(contracts_by_day),
        },
    }
