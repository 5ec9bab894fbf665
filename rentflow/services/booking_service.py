import logging
import random
import string
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rentflow.core.config import settings
from rentflow.core.exceptions import BookingValidationError, DatesUnavailableError
from rentflow.models.booking import Booking, BookingItem, BookingStatus, CheckoutFlow
from rentflow.models.machine import ItemType, Machine
from rentflow.services.audit_service import log_audit
from rentflow.services.date_ranges import business_today, rental_days_inclusive
from rentflow.services.discount_service import lookup_company_discount
from rentflow.services.pricing_service import (
    AddOnSelection,
    PriceBreakdown,
    PricingContext,
    PricingItem,
    compute_totals_from_items,
    from_cents,
    line_total,
    to_cents,
)

logger = logging.getLogger(__name__)


def make_booking_ref() -> str:
    return "RF-" + "".join(random.choices(string.ascii_uppercase + string.digits, k=6))


@dataclass
class AddonRequest:
    machine_id: str
    quantity: int = 1


@dataclass
class ReservationRequest:
    machine_id: str
    start_date: date
    end_date: date
    customer_email: str
    customer_name: str = ""
    customer_phone: str = ""
    delivery_selected: bool = False
    pickup_selected: bool = False
    insurance_selected: bool = False
    operator_selected: bool = False
    addons: list[AddonRequest] = field(default_factory=list)
    site_address_line1: Optional[str] = None
    site_postal_code: Optional[str] = None
    site_city: Optional[str] = None
    billing_is_business: bool = False
    billing_company_name: Optional[str] = None
    billing_tax_id: Optional[str] = None


@dataclass
class PricedLine:
    machine: Machine
    quantity: int
    is_primary: bool
    item: PricingItem


@dataclass
class Quote:
    rental_days: int
    lines: list[PricedLine]
    breakdown: PriceBreakdown
    discount_percentage: Decimal
    company_name: Optional[str] = None


def _validate_window(req: ReservationRequest, today: date) -> int:
    if not (req.customer_email or "").strip():
        raise BookingValidationError("customer_email is required")
    if req.start_date > req.end_date:
        raise BookingValidationError("start_date must be on or before end_date",
                                     {"start_date": req.start_date.isoformat(), "end_date": req.end_date.isoformat()})
    earliest = today + timedelta(days=1)
    if req.start_date < earliest:
        raise BookingValidationError("Earliest start is tomorrow. Same-day rentals are not available.",
                                     {"earliest_start": earliest.isoformat()})
    return rental_days_inclusive(req.start_date, req.end_date)


def _load_addon_lines(db: Session, addons: list[AddonRequest]) -> list[PricedLine]:
    lines = []
    for a in addons:
        m = db.get(Machine, a.machine_id)
        if not m or not m.active or m.item_type != ItemType.ADDON:
            raise BookingValidationError("Unknown add-on item", {"machine_id": a.machine_id})
        if a.quantity < 1:
            raise BookingValidationError("Add-on quantity must be at least 1", {"machine_id": a.machine_id})
        lines.append(PricedLine(
            machine=m,
            quantity=a.quantity,
            is_primary=False,
            item=PricingItem(unit_price=from_cents(m.daily_rate_cents), quantity=a.quantity,
                             charge_model=m.charge_model, time_unit=m.time_unit),
        ))
    return lines


def _price(db: Session, machine: Machine, req: ReservationRequest, rental_days: int) -> Quote:
    if rental_days < (machine.min_days or 1):
        raise BookingValidationError(f"Minimum rental for this machine is {machine.min_days} day(s)",
                                     {"min_days": machine.min_days, "rental_days": rental_days})

    primary = PricedLine(
        machine=machine,
        quantity=1,
        is_primary=True,
        item=PricingItem(unit_price=from_cents(machine.daily_rate_cents), quantity=1,
                         charge_model=machine.charge_model, time_unit=machine.time_unit),
    )
    lines = [primary] + _load_addon_lines(db, req.addons)

    discount_pct, company_name = Decimal("0"), None
    if req.billing_is_business:
        discount_pct, company_name = lookup_company_discount(db, req.billing_tax_id)

    context = PricingContext(
        rental_days=rental_days,
        add_ons=AddOnSelection(
            delivery_selected=req.delivery_selected,
            pickup_selected=req.pickup_selected,
            insurance_selected=req.insurance_selected,
            operator_selected=req.operator_selected,
            delivery_charge=from_cents(machine.delivery_charge_cents),
            pickup_charge=from_cents(machine.pickup_charge_cents),
            insurance_charge=from_cents(settings.INSURANCE_CHARGE_CENTS),
            operator_charge=from_cents(settings.OPERATOR_CHARGE_CENTS),
        ),
        discount_percentage=discount_pct,
    )
    breakdown = compute_totals_from_items(context, [l.item for l in lines])
    return Quote(rental_days=rental_days, lines=lines, breakdown=breakdown,
                 discount_percentage=discount_pct, company_name=company_name)


def quote_reservation(db: Session, req: ReservationRequest, today: date | None = None) -> Quote:
    """Validate and price a request without writing anything."""
    rental_days = _validate_window(req, today or business_today())
    machine = db.get(Machine, req.machine_id)
    if not machine or not machine.active or machine.item_type != ItemType.PRIMARY:
        raise BookingValidationError("Machine not available for booking", {"machine_id": req.machine_id})
    return _price(db, machine, req, rental_days)


def find_overlapping_booking(db: Session, machine_id: str, start: date, end: date) -> Optional[str]:
    """Inclusive overlap against active bookings: existing.start <= end AND existing.end >= start."""
    return db.execute(
        select(Booking.id)
        .where(
            Booking.machine_id == machine_id,
            Booking.status.in_(BookingStatus.ACTIVE),
            Booking.start_date <= end,
            Booking.end_date >= start,
        )
        .limit(1)
    ).scalar_one_or_none()


def _allocate_ref(db: Session) -> str:
    # booking_ref must be unique
    for _ in range(10):
        ref = make_booking_ref()
        if not db.query(Booking.id).filter(Booking.booking_ref == ref).first():
            return ref
    raise RuntimeError("could not allocate booking reference")


def create_pending_booking(db: Session, req: ReservationRequest, today: date | None = None,
                           now: datetime | None = None) -> tuple[Booking, Quote]:
    """
    Create a PENDING booking with a hold, or raise before writing anything.

    The machine row is locked so concurrent requests for the same machine
    serialize on the overlap check. On Postgres the exclusion constraint on
    bookings backs this up; its violation maps to DatesUnavailableError too.
    """
    now = now or datetime.now(timezone.utc)
    rental_days = _validate_window(req, today or business_today(now))

    machine = db.execute(
        select(Machine).where(Machine.id == req.machine_id).with_for_update()
    ).scalar_one_or_none()
    if not machine or not machine.active or machine.item_type != ItemType.PRIMARY:
        db.rollback()
        raise BookingValidationError("Machine not available for booking", {"machine_id": req.machine_id})

    try:
        quote = _price(db, machine, req, rental_days)
    except Exception:
        db.rollback()
        raise

    clash = find_overlapping_booking(db, machine.id, req.start_date, req.end_date)
    if clash:
        db.rollback()
        logger.info("Rejected booking for machine %s %s..%s: overlaps %s", machine.id, req.start_date, req.end_date, clash)
        raise DatesUnavailableError(details={"machine_id": machine.id})

    breakdown = quote.breakdown
    booking = Booking(
        id=str(uuid.uuid4()),
        booking_ref=_allocate_ref(db),
        machine_id=machine.id,
        start_date=req.start_date,
        end_date=req.end_date,
        customer_name=req.customer_name.strip(),
        customer_email=req.customer_email.strip().lower(),
        customer_phone=(req.customer_phone or "").strip(),
        site_address_line1=req.site_address_line1 or None,
        site_postal_code=req.site_postal_code or None,
        site_city=req.site_city or None,
        billing_is_business=req.billing_is_business,
        billing_company_name=req.billing_company_name or quote.company_name,
        billing_tax_id=req.billing_tax_id or None,
        status=BookingStatus.PENDING,
        paid=False,
        hold_expires_at=now + timedelta(minutes=settings.HOLD_MINUTES),
        flow=CheckoutFlow.FULL_UPFRONT.value,
        delivery_selected=req.delivery_selected,
        pickup_selected=req.pickup_selected,
        insurance_selected=req.insurance_selected,
        operator_selected=req.operator_selected,
        quoted_total_cents=to_cents(breakdown.total),
        discount_percentage=quote.discount_percentage if quote.discount_percentage > 0 else None,
    )
    db.add(booking)
    for pos, line in enumerate(quote.lines):
        db.add(BookingItem(
            id=str(uuid.uuid4()),
            booking_id=booking.id,
            machine_id=line.machine.id,
            position=pos,
            is_primary=line.is_primary,
            name=line.machine.name,
            item_type=line.machine.item_type,
            quantity=line.quantity,
            charge_model=line.machine.charge_model,
            time_unit=line.machine.time_unit,
            unit_price_cents=line.machine.daily_rate_cents,
            line_total_cents=to_cents(line_total(line.item, rental_days)),
        ))
    log_audit(db, "customer", "booking.created", "booking", booking.id, {
        "machine_id": machine.id,
        "start_date": req.start_date,
        "end_date": req.end_date,
        "quoted_total_cents": booking.quoted_total_cents,
    })

    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        # Postgres exclusion constraint: another transaction won the same dates
        if "no_overlapping_active_bookings" in str(e.orig):
            raise DatesUnavailableError(details={"machine_id": req.machine_id}) from e
        raise
    db.refresh(booking)
    logger.info("Created pending booking %s (%s) for machine %s", booking.id, booking.booking_ref, machine.id)
    return booking, quote
