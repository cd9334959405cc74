"""Dashboard statistics for one organization."""
from datetime import date, timedelta
from decimal import Decimal

from django.apps import apps
from django.db.models import Count, Q, Sum
from django.utils import timezone

from config.api import money

from .models import FundingContract, House, Resident

PERIODS = (("7d", 7), ("30d", 30), ("12m", 365))
TREND_MONTHS = 6
RECENT_ACTIVITY_LIMIT = 10


def _transactions(organization):
    Transaction = apps.get_model("billing", "Transaction")
    return Transaction.objects.filter(organization=organization).exclude(status=Transaction.Status.VOIDED)


def _totals(queryset):
    agg = queryset.aggregate(count=Count("id"), amount=Sum("amount"))
    return agg["count"], agg["amount"] or Decimal("0")


def trend_percentage(current, previous):
    """Change against the previous period; 100 when growing from nothing."""
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round(float((Decimal(current) - Decimal(previous)) / Decimal(previous) * 100), 1)


def portfolio_stats(organization):
    active_contracts = organization.funding_contracts.filter(status=FundingContract.Status.ACTIVE)
    return {
        "total_houses": organization.houses.count(),
        "active_houses": organization.houses.filter(status=House.Status.ACTIVE).count(),
        "total_residents": organization.residents.count(),
        "active_residents": organization.residents.filter(status=Resident.Status.ACTIVE).count(),
        "total_contracts": organization.funding_contracts.count(),
        "active_contracts": active_contracts.count(),
        "total_balance": money(active_contracts.aggregate(total=Sum("current_balance"))["total"] or 0),
    }


def claim_stats(organization):
    Transaction = apps.get_model("billing", "Transaction")
    claimed = Transaction.objects.filter(organization=organization, claim__isnull=False)
    paid_count, paid_amount = _totals(claimed.filter(status=Transaction.Status.PAID))
    outstanding_count, outstanding_amount = _totals(
        claimed.filter(status__in=(Transaction.Status.PICKED_UP, Transaction.Status.SUBMITTED))
    )
    return {
        "paid_amount": money(paid_amount),
        "paid_count": paid_count,
        "outstanding_amount": money(outstanding_amount),
        "outstanding_count": outstanding_count,
    }


def period_stats(organization, now=None):
    now = now or timezone.now()
    transactions = _transactions(organization)
    stats = {}
    for key, days in PERIODS:
        start = now - timedelta(days=days)
        previous_start = start - timedelta(days=days)
        count, amount = _totals(transactions.filter(occurred_at__gte=start, occurred_at__lte=now))
        previous_count, previous_amount = _totals(
            transactions.filter(occurred_at__gte=previous_start, occurred_at__lt=start)
        )
        stats[key] = {
            "count": count,
            "amount": money(amount),
            "previous_count": previous_count,
            "previous_amount": money(previous_amount),
            "count_trend": trend_percentage(count, previous_count),
            "amount_trend": trend_percentage(amount, previous_amount),
        }
    return stats


def _month_start(year, month):
    while month <= 0:
        month += 12
        year -= 1
    return date(year, month, 1)


def monthly_trends(organization, today=None, months=TREND_MONTHS):
    """Transaction count and amount per calendar month, oldest first."""
    today = today or timezone.localdate()
    transactions = _transactions(organization)
    trends = []
    for offset in range(months - 1, -1, -1):
        start = _month_start(today.year, today.month - offset)
        end = _month_start(start.year, start.month + 1) if start.month < 12 else date(start.year + 1, 1, 1)
        count, amount = _totals(transactions.filter(occurred_at__date__gte=start, occurred_at__date__lt=end))
        trends.append({
            "month": start.strftime("%Y-%m"),
            "label": start.strftime("%b %Y"),
            "count": count,
            "amount": money(amount),
        })
    return trends


def recent_activity(organization, limit=RECENT_ACTIVITY_LIMIT):
    latest = _transactions(organization).select_related("resident").order_by("-occurred_at")[:limit]
    return [
        {
            "id": str(txn.pk),
            "txn_id": txn.txn_id,
            "resident_name": txn.resident.full_name,
            "amount": money(txn.amount),
            "status": txn.status,
            "is_automated": txn.is_automated,
            "occurred_at": txn.occurred_at.isoformat(),
        }
        for txn in latest
    ]


def house_performance(organization, now=None):
    now = now or timezone.now()
    since = now - timedelta(days=30)
    active = FundingContract.Status.ACTIVE
    houses = organization.houses.filter(status__in=(House.Status.ACTIVE, House.Status.VACANT)).annotate(
        active_residents=Count(
            "residents", filter=Q(residents__status=Resident.Status.ACTIVE), distinct=True,
        ),
        active_contracts=Count(
            "residents__funding_contracts",
            filter=Q(residents__funding_contracts__status=active),
            distinct=True,
        ),
    )
    transactions = _transactions(organization)
    rows = []
    for house in houses:
        balance = FundingContract.objects.filter(resident__house=house, status=active).aggregate(
            total=Sum("current_balance")
        )["total"]
        count, revenue = _totals(transactions.filter(resident__house=house, occurred_at__gte=since))
        if house.bedroom_count:
            occupancy = round(min(house.active_residents / house.bedroom_count, 1) * 100, 1)
        else:
            occupancy = 0.0
        rows.append({
            "id": str(house.pk),
            "name": house.display_name,
            "status": house.status,
            "active_residents": house.active_residents,
            "active_contracts": house.active_contracts,
            "total_balance": money(balance or 0),
            "transactions_30d": count,
            "revenue_30d": money(revenue),
            "occupancy_rate": occupancy,
        })
    rows.sort(key=lambda row: row["revenue_30d"], reverse=True)
    return rows


def dashboard_stats(organization):
    now = timezone.now()
    return {
        "portfolio": portfolio_stats(organization),
        "claims": claim_stats(organization),
        "periods": period_stats(organization, now),
        "monthly_trends": monthly_trends(organization, timezone.localdate()),
        "recent_activity": recent_activity(organization),
        "house_performance": house_performance(organization, now),
    }
