import logging
from datetime import timedelta

import requests
from sqlalchemy.orm import Session

from rentflow.core.config import settings
from rentflow.models.booking import Booking
from rentflow.models.machine import Machine

logger = logging.getLogger(__name__)


def sync_booking_to_calendar(db: Session, booking_id: str) -> bool:
    """Best-effort push of a confirmed booking span to the ops calendar. Never raises."""
    if not settings.CALENDAR_WEBHOOK_URL:
        return False
    booking = db.get(Booking, booking_id)
    if booking is None:
        return False
    machine = db.get(Machine, booking.machine_id)
    try:
        r = requests.post(
            settings.CALENDAR_WEBHOOK_URL,
            json={
                "booking_id": booking.id,
                "booking_ref": booking.booking_ref,
                "title": f"{machine.name if machine else booking.machine_id}: {booking.customer_name}",
                "start_date": booking.start_date.isoformat(),
                # all-day events use an exclusive end
                "end_date_exclusive": (booking.end_date + timedelta(days=1)).isoformat(),
                "status": booking.status,
            },
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
        r.raise_for_status()
    except requests.RequestException:
        logger.exception("Calendar sync failed for booking %s", booking_id)
        return False
    return True
