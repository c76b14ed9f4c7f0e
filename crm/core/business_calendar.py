"""
Business-day arithmetic for follow-up scheduling.

Business days are Monday through Friday. No holiday calendar is applied.
"""

from datetime import datetime, timedelta


SATURDAY = 5


def is_business_day(moment: datetime) -> bool:
    """Return True if moment falls on Monday-Friday."""
    return moment.weekday() < SATURDAY


def add_business_days(start: datetime, days: int) -> datetime:
    """
    Add a number of business days to a timestamp.

    Steps forward one calendar day at a time and counts only the days that
    land on Monday-Friday. Time of day and tzinfo are preserved; month, year
    and leap-year rollover come from datetime arithmetic.

    A zero offset returns start unchanged, even on a weekend. Negative
    offsets are unsupported and also return start unchanged.

    Args:
        start: Moment to count from
        days: Number of business days to add

    Returns:
        The resulting moment
    """
    if days <= 0:
        return start

    result = start
    added = 0
    while added < days:
        result = result + timedelta(days=1)
        if is_business_day(result):
            added += 1

    return result
