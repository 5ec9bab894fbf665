from collections import defaultdict
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from rentflow.models.booking import Booking, BookingStatus
from rentflow.services.date_ranges import DateRange, business_today, merge_date_ranges

# Disabled ranges feed the date picker only. Booking creation re-checks
# overlap against the table inside its own transaction.


def _active_spans_query(today: date):
    return (
        select(Booking.machine_id, Booking.start_date, Booking.end_date)
        .where(
            Booking.status.in_(BookingStatus.ACTIVE),
            Booking.end_date >= today,
        )
    )


def get_disabled_ranges_for_machine(db: Session, machine_id: str, today: date | None = None) -> list[dict]:
    today = today or business_today()
    rows = db.execute(_active_spans_query(today).where(Booking.machine_id == machine_id)).all()
    merged = merge_date_ranges(DateRange(r.start_date, r.end_date) for r in rows)
    return [r.to_json() for r in merged]


def get_disabled_ranges_by_machine(db: Session, today: date | None = None) -> dict[str, list[dict]]:
    today = today or business_today()
    by_machine: dict[str, list[DateRange]] = defaultdict(list)
    for r in db.execute(_active_spans_query(today)).all():
        by_machine[r.machine_id].append(DateRange(r.start_date, r.end_date))
    return {
        machine_id: [r.to_json() for r in merge_date_ranges(spans)]
        for machine_id, spans in by_machine.items()
    }
