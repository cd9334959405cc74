"""
House occupancy.

A bedroom counts as occupied when an Active resident of the house holds a
funding contract covering the day in question. The monthly history takes
its snapshot on the 15th so that mid-month moves count once.
"""
from datetime import date

from django.db.models import Count, Exists, OuterRef, Q
from django.utils import timezone

from .models import FundingContract, Resident

HISTORY_MONTHS = 12
SNAPSHOT_DAY = 15


def _rate(occupied, bedrooms):
    if not bedrooms:
        return 0.0
    return round(occupied / bedrooms * 100, 2)


def _occupancy(occupied, bedrooms):
    return {
        "occupied_bedrooms": occupied,
        "total_bedrooms": bedrooms,
        "occupancy_rate": _rate(occupied, bedrooms),
    }


def _current_contract_filter(today, prefix=""):
    return Q(**{f"{prefix}status": FundingContract.Status.ACTIVE}) & (
        Q(**{f"{prefix}end_date__isnull": True}) | Q(**{f"{prefix}end_date__gte": today})
    )


def current_occupancy(house, today=None):
    today = today or timezone.localdate()
    covered = FundingContract.objects.filter(
        _current_contract_filter(today), resident=OuterRef("pk"),
    )
    occupied = (
        house.residents.filter(status=Resident.Status.ACTIVE)
        .filter(Exists(covered))
        .count()
    )
    return _occupancy(occupied, house.bedroom_count)


def _snapshot_dates(today, months):
    year, month = today.year, today.month
    dates = []
    for _ in range(months):
        dates.append(date(year, month, SNAPSHOT_DAY))
        month -= 1
        if month == 0:
            month, year = 12, year - 1
    return list(reversed(dates))


def occupancy_history(house, today=None, months=HISTORY_MONTHS):
    """Occupied bedrooms on the 15th of each of the last ``months`` months, oldest first."""
    today = today or timezone.localdate()
    history = []
    for snapshot in _snapshot_dates(today, months):
        covered = FundingContract.objects.filter(
            Q(end_date__isnull=True) | Q(end_date__gte=snapshot),
            resident=OuterRef("pk"),
            status__in=(FundingContract.Status.ACTIVE, FundingContract.Status.EXPIRED),
            start_date__lte=snapshot,
        )
        occupied = (
            house.residents.filter(status=Resident.Status.ACTIVE)
            .filter(Q(move_in_date__isnull=True) | Q(move_in_date__lte=snapshot))
            .filter(Q(move_out_date__isnull=True) | Q(move_out_date__gte=snapshot))
            .filter(Exists(covered))
            .count()
        )
        history.append({
            "month_start": snapshot.replace(day=1),
            "month_name": snapshot.strftime("%b %Y"),
            **_occupancy(occupied, house.bedroom_count),
        })
    return history


def houses_occupancy(organization, today=None):
    """Current occupancy of every house in the organization, keyed by house id."""
    today = today or timezone.localdate()
    houses = organization.houses.annotate(
        occupied=Count(
            "residents",
            filter=Q(residents__status=Resident.Status.ACTIVE)
            & _current_contract_filter(today, prefix="residents__funding_contracts__"),
            distinct=True,
        ),
    )
    return {str(house.pk): _occupancy(house.occupied, house.bedroom_count) for house in houses}
