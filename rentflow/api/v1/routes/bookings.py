import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from rentflow.api.deps import get_stripe_gateway
from rentflow.core.exceptions import DomainError
from rentflow.db.session import get_db
from rentflow.models.booking import Booking
from rentflow.schemas.booking import BookingCreate, BookingOut, BookingStatusOut, TotalsOut
from rentflow.services.booking_service import Quote, create_pending_booking, quote_reservation
from rentflow.services.checkout_service import create_checkout_for_booking
from rentflow.services.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)

router = APIRouter(tags=["bookings"])


def _totals(quote: Quote) -> TotalsOut:
    return TotalsOut(
        **quote.breakdown.to_cents_dict(),
        discountPercentage=str(quote.discount_percentage) if quote.discount_percentage > 0 else None,
    )


@router.post("/public/quote", response_model=TotalsOut)
def quote_booking(body: BookingCreate, db: Session = Depends(get_db)):
    try:
        return _totals(quote_reservation(db, body.to_request()))
    except DomainError as e:
        raise e.to_http_exception()


@router.post("/public/bookings", response_model=BookingOut)
def create_public_booking(body: BookingCreate, db: Session = Depends(get_db), gateway: StripeGateway = Depends(get_stripe_gateway)):
    try:
        booking, quote = create_pending_booking(db, body.to_request())
        checkout_url = create_checkout_for_booking(db, gateway, booking, quote)
    except DomainError as e:
        raise e.to_http_exception()
    return BookingOut(
        bookingId=booking.id,
        bookingRef=booking.booking_ref,
        status=booking.status,
        holdExpiresAt=booking.hold_expires_at.isoformat() if booking.hold_expires_at else None,
        totals=_totals(quote),
        checkoutUrl=checkout_url,
    )


@router.get("/public/bookings/{booking_id}", response_model=BookingStatusOut)
def get_booking_status(booking_id: str, db: Session = Depends(get_db)):
    b = db.get(Booking, booking_id)
    if not b:
        raise HTTPException(status_code=404, detail="Not found")
    return BookingStatusOut(
        bookingId=b.id,
        bookingRef=b.booking_ref,
        status=b.status,
        paid=b.paid,
        startDate=b.start_date,
        endDate=b.end_date,
        totalCents=b.settled_total_cents if b.settled_total_cents is not None else b.quoted_total_cents,
        invoiceNumber=b.invoice_number,
        balanceAuthorized=bool(b.authorized_payment_intent_id),
    )
