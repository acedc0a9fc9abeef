"""Calendar billing-period arithmetic."""
import calendar
from datetime import datetime

from entitlements.schemas.plan import PlanInterval


def add_months(moment: datetime, months: int) -> datetime:
    """Shift a datetime by whole calendar months, clamping the day to the target month's length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def period_end_for(start: datetime, interval: PlanInterval) -> datetime:
    """End of a billing period starting at ``start``."""
    if interval is PlanInterval.YEAR:
        return add_months(start, 12)
    return add_months(start, 1)


def next_period(previous_end: datetime, now: datetime, interval: PlanInterval) -> tuple[datetime, datetime]:
    """
    Boundaries of the period following one that ended at ``previous_end``.

    The new period starts at ``max(now, previous_end)`` so a late sweep never
    opens a period that is already over.
    """
    start = max(now, previous_end)
    return start, period_end_for(start, interval)
