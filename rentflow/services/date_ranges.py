from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterable
from zoneinfo import ZoneInfo

from rentflow.core.config import settings

ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class DateRange:
    """Closed day interval: both start and end are blocked/rented days."""
    start: date
    end: date

    def to_json(self) -> dict:
        return {"from": self.start.isoformat(), "to": self.end.isoformat()}


def merge_date_ranges(ranges: Iterable[DateRange]) -> list[DateRange]:
    """
    Merge overlapping or touching intervals into a sorted, disjoint list.

    Ranges on consecutive days ([1,3] and [4,6]) become one span, matching
    the inclusive overlap rule used when creating bookings.
    """
    merged: list[DateRange] = []
    for r in sorted(ranges, key=lambda x: (x.start, x.end)):
        if merged and r.start <= merged[-1].end + ONE_DAY:
            last = merged[-1]
            if r.end > last.end:
                merged[-1] = DateRange(last.start, r.end)
            continue
        merged.append(r)
    return merged


def ranges_overlap(a: DateRange, b: DateRange) -> bool:
    return a.start <= b.end and b.start <= a.end


def rental_days_inclusive(start: date, end: date) -> int:
    return (end - start).days + 1


def business_today(now: datetime | None = None) -> date:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(ZoneInfo(settings.BUSINESS_TIMEZONE)).date()
