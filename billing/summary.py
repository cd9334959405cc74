"""Monthly claim totals for one resident."""
from datetime import date
from decimal import Decimal

from django.db.models import Count, DateField, Sum
from django.db.models.functions import TruncMonth
from django.utils import timezone

from config.api import money

from .models import Transaction

SUMMARY_PERIODS = (0, 3, 6, 12)

# Transactions that never became a claim
EXCLUDED_STATUSES = (Transaction.Status.REJECTED, Transaction.Status.ERROR, Transaction.Status.VOIDED)


def _add_months(month_start, months):
    index = month_start.year * 12 + month_start.month - 1 + months
    return date(index // 12, index % 12 + 1, 1)


def _range_start(anchor, first_transaction, current_month, months):
    anchor_month = anchor.replace(day=1) if anchor else None
    if months:
        period_start = _add_months(current_month, -months)
        return max(anchor_month, period_start) if anchor_month else period_start
    if anchor_month:
        return anchor_month
    if first_transaction:
        return timezone.localtime(first_transaction.occurred_at).date().replace(day=1)
    return None


def resident_claim_summary(resident, months=0, today=None):
    """
    Claimed amount and count per calendar month, from the resident's
    move-in month (or the house go-live month) up to the current month.
    ``months`` limits the range to the last 3, 6 or 12 months; 0 is all time.
    """
    today = today or timezone.localdate()
    current_month = today.replace(day=1)
    anchor = resident.move_in_date or (resident.house.go_live_date if resident.house_id else None)
    transactions = resident.transactions.exclude(status__in=EXCLUDED_STATUSES)

    start = _range_start(anchor, transactions.order_by("occurred_at").first(), current_month, months)
    if start is None:
        return {"months": [], "totals": {"total_amount": 0.0, "total_claims": 0}}

    by_month = {
        row["month"]: row
        for row in transactions.filter(occurred_at__date__gte=start)
        .annotate(month=TruncMonth("occurred_at", output_field=DateField()))
        .values("month")
        .annotate(amount=Sum("amount"), count=Count("id"))
        .order_by("month")
    }

    rows = []
    total_amount = Decimal("0")
    month = start
    while month <= current_month:
        entry = by_month.get(month, {"amount": Decimal("0"), "count": 0})
        rows.append({
            "month": month.strftime("%Y-%m"),
            "label": month.strftime("%B %Y"),
            "short_label": month.strftime("%b %y"),
            "amount": money(entry["amount"]),
            "count": entry["count"],
        })
        total_amount += entry["amount"]
        month = _add_months(month, 1)

    return {
        "months": rows,
        "totals": {
            "total_amount": money(total_amount),
            "total_claims": sum(row["count"] for row in rows),
        },
    }
