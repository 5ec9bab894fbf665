"""
Booking mails: customer confirmation, internal notice, invoice ready.

Each mail has a timestamp column on bookings. The sender first claims it
with ``UPDATE ... WHERE col IS NULL`` and only the caller whose update hit
one row sends. A send that fails after the claim is logged and left alone;
it is not retried.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from rentflow.core.config import settings
from rentflow.core.exceptions import EmailDeliveryError
from rentflow.models.booking import Booking, BookingStatus
from rentflow.models.machine import Machine
from rentflow.services.date_ranges import rental_days_inclusive
from rentflow.services.email_service import send_email

logger = logging.getLogger(__name__)

CLAIM_COLUMNS = {
    "confirmation": Booking.confirmation_email_sent_at,
    "internal": Booking.internal_email_sent_at,
    "invoice": Booking.invoice_email_sent_at,
}


@dataclass(frozen=True)
class LineItemView:
    name: str
    quantity: int
    unit_price_cents: int
    line_total_cents: int
    is_primary: bool


@dataclass(frozen=True)
class BookingNotificationView:
    booking_id: str
    booking_ref: str
    machine_name: str
    start_date: date
    end_date: date
    rental_days: int
    customer_name: str
    customer_email: str
    customer_phone: str
    subtotal_cents: Optional[int]
    tax_cents: Optional[int]
    total_cents: Optional[int]
    discount_percentage: Optional[str]
    original_subtotal_cents: Optional[int]
    line_items: tuple[LineItemView, ...]
    add_ons: tuple[str, ...]
    invoice_number: Optional[str] = None
    invoice_pdf_url: Optional[str] = None


def claim_notification(db: Session, booking_id: str, kind: str, now: datetime | None = None) -> bool:
    """True when this caller won the right to send ``kind`` for the booking. Commits the claim."""
    column = CLAIM_COLUMNS[kind]
    res = db.execute(
        update(Booking)
        .where(Booking.id == booking_id, column.is_(None))
        .values({column.key: now or datetime.now(timezone.utc)})
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return res.rowcount == 1


def build_notification_view(db: Session, booking: Booking) -> BookingNotificationView:
    machine = db.get(Machine, booking.machine_id)
    add_ons = tuple(name for name, on in (
        ("delivery", booking.delivery_selected),
        ("pickup", booking.pickup_selected),
        ("insurance", booking.insurance_selected),
        ("operator", booking.operator_selected),
    ) if on)
    return BookingNotificationView(
        booking_id=booking.id,
        booking_ref=booking.booking_ref,
        machine_name=machine.name if machine else "",
        start_date=booking.start_date,
        end_date=booking.end_date,
        rental_days=rental_days_inclusive(booking.start_date, booking.end_date),
        customer_name=booking.customer_name,
        customer_email=booking.customer_email,
        customer_phone=booking.customer_phone,
        subtotal_cents=booking.settled_subtotal_cents if booking.settled_subtotal_cents is not None else booking.quoted_total_cents,
        tax_cents=booking.settled_tax_cents,
        total_cents=booking.settled_total_cents,
        discount_percentage=str(booking.discount_percentage) if booking.discount_percentage else None,
        original_subtotal_cents=booking.original_subtotal_cents,
        line_items=tuple(
            LineItemView(i.name, i.quantity, i.unit_price_cents, i.line_total_cents, i.is_primary)
            for i in booking.items
        ),
        add_ons=add_ons,
        invoice_number=booking.invoice_number,
        invoice_pdf_url=booking.invoice_pdf_url,
    )


def _eur(cents: Optional[int]) -> str:
    return "-" if cents is None else f"EUR {cents / 100:,.2f}"


def render_text(view: BookingNotificationView, heading: str) -> str:
    lines = [
        heading,
        "",
        f"Booking: {view.booking_ref}",
        f"Machine: {view.machine_name}",
        f"Dates: {view.start_date.isoformat()} to {view.end_date.isoformat()} ({view.rental_days} days)",
        "",
    ]
    for item in view.line_items:
        lines.append(f"  {item.name} x{item.quantity}: {_eur(item.line_total_cents)}")
    if view.add_ons:
        lines.append(f"  Add-ons: {', '.join(view.add_ons)}")
    if view.discount_percentage:
        lines.append(f"  Discount: {view.discount_percentage}% (was {_eur(view.original_subtotal_cents)})")
    lines += [
        f"Subtotal: {_eur(view.subtotal_cents)}",
        f"VAT: {_eur(view.tax_cents)}",
        f"Total paid: {_eur(view.total_cents)}",
    ]
    if view.invoice_number:
        lines += ["", f"Invoice {view.invoice_number}: {view.invoice_pdf_url or ''}"]
    return "\n".join(lines)


def _send_claimed(db: Session, booking_id: str, kind: str, to_email: str, subject_fmt: str, heading: str,
                 reply_to: Optional[str] = None) -> bool:
    booking = db.get(Booking, booking_id)
    if booking is None or booking.status != BookingStatus.CONFIRMED:
        logger.warning("Not sending %s mail for booking %s: not confirmed", kind, booking_id)
        return False
    if not to_email:
        logger.warning("Not sending %s mail for booking %s: no recipient", kind, booking_id)
        return False
    if not claim_notification(db, booking_id, kind):
        logger.info("%s mail for booking %s already claimed", kind, booking_id)
        return False

    db.refresh(booking)
    view = build_notification_view(db, booking)
    try:
        send_email(to_email, subject_fmt.format(ref=view.booking_ref), render_text(view, heading), reply_to=reply_to)
    except EmailDeliveryError:
        logger.exception("Sending %s mail for booking %s failed after claim; not retrying", kind, booking_id)
        return False
    logger.info("Sent %s mail for booking %s", kind, booking_id)
    return True


def send_customer_confirmation(db: Session, booking_id: str) -> bool:
    booking = db.get(Booking, booking_id)
    return _send_claimed(db, booking_id, "confirmation", booking.customer_email if booking else "",
                         "Your booking {ref} is confirmed", "Thank you, your rental is confirmed.")


def send_internal_confirmation(db: Session, booking_id: str) -> bool:
    booking = db.get(Booking, booking_id)
    return _send_claimed(db, booking_id, "internal", settings.EMAIL_ADMIN_TO,
                         "New confirmed booking {ref}", "A booking was paid and confirmed.",
                         reply_to=booking.customer_email if booking else None)


def send_invoice_ready(db: Session, booking_id: str) -> bool:
    booking = db.get(Booking, booking_id)
    if booking is not None and not booking.invoice_number:
        logger.warning("Not sending invoice mail for booking %s: no invoice yet", booking_id)
        return False
    return _send_claimed(db, booking_id, "invoice", booking.customer_email if booking else "",
                         "Invoice for booking {ref}", "Your invoice is ready.")
