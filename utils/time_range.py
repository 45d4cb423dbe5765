import calendar
from datetime import datetime, timedelta, timezone
from typing import Optional

from schemas import TimeRange


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def months_before(moment: datetime, months: int) -> datetime:
    """Same wall-clock time ``months`` calendar months earlier, day clamped to the month length"""
    index = moment.month - 1 - months
    year = moment.year + index // 12
    month = index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def start_of(time_range: Optional[TimeRange], now: Optional[datetime] = None) -> datetime:
    """Earliest interaction timestamp that counts towards a popularity window"""
    now = now or datetime.now(timezone.utc)
    if time_range == TimeRange.TODAY:
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if time_range == TimeRange.LAST_WEEK:
        return now - timedelta(days=7)
    if time_range == TimeRange.LAST_MONTH:
        return months_before(now, 1)
    if time_range == TimeRange.LAST_YEAR:
        return months_before(now, 12)
    return EPOCH
