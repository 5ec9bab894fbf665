import enum
from sqlalchemy import String, Integer, Boolean, Date, DateTime, Numeric, JSON, ForeignKey, CheckConstraint, event, inspect
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import date, datetime, timezone
from decimal import Decimal
from rentflow.db.session import Base


class BookingStatus:
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"

    # statuses that block the machine's calendar
    ACTIVE = (PENDING, CONFIRMED)


class RefundStatus:
    NONE = "NONE"
    PARTIAL = "PARTIAL"
    FULL = "FULL"


class DisputeStatus:
    NONE = "NONE"
    OPEN = "OPEN"
    WON = "WON"
    LOST = "LOST"


class CheckoutFlow(str, enum.Enum):
    """Which kind of checkout a Stripe session/intent belongs to (metadata "flow")."""
    FULL_UPFRONT = "full_upfront"
    LEGACY_DEPOSIT = "legacy_deposit"
    BALANCE_AUTHORIZATION = "balance_authorize"

    @property
    def settles_booking(self) -> bool:
        return self is not CheckoutFlow.BALANCE_AUTHORIZATION


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("start_date <= end_date", name="ck_bookings_date_order"),
        CheckConstraint(
            "(status = 'PENDING' AND hold_expires_at IS NOT NULL) OR (status <> 'PENDING' AND hold_expires_at IS NULL)",
            name="ck_bookings_hold_only_pending",
        ),
        CheckConstraint(
            "(status = 'CONFIRMED' AND paid) OR (status <> 'CONFIRMED' AND NOT paid)",
            name="ck_bookings_paid_iff_confirmed",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_ref: Mapped[str] = mapped_column(String(20), unique=True, index=True)

    machine_id: Mapped[str] = mapped_column(String(36), ForeignKey("machines.id"), index=True)
    # inclusive civil dates in settings.BUSINESS_TIMEZONE
    start_date: Mapped[date] = mapped_column(Date, index=True)
    end_date: Mapped[date] = mapped_column(Date, index=True)

    customer_name: Mapped[str] = mapped_column(String(200), default="")
    customer_email: Mapped[str] = mapped_column(String(320))
    customer_phone: Mapped[str] = mapped_column(String(40), default="")

    site_address_line1: Mapped[str] = mapped_column(String(200), nullable=True)
    site_postal_code: Mapped[str] = mapped_column(String(20), nullable=True)
    site_city: Mapped[str] = mapped_column(String(100), nullable=True)

    billing_is_business: Mapped[bool] = mapped_column(Boolean, default=False)
    billing_company_name: Mapped[str] = mapped_column(String(200), nullable=True)
    billing_tax_id: Mapped[str] = mapped_column(String(20), nullable=True)  # NIF

    status: Mapped[str] = mapped_column(String(12), default=BookingStatus.PENDING, index=True)
    hold_expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    paid: Mapped[bool] = mapped_column(Boolean, default=False)
    flow: Mapped[str] = mapped_column(String(30), default=CheckoutFlow.FULL_UPFRONT.value)
    cancel_reason: Mapped[str] = mapped_column(String(60), nullable=True)

    stripe_checkout_session_id: Mapped[str] = mapped_column(String(255), nullable=True, index=True)
    stripe_payment_intent_id: Mapped[str] = mapped_column(String(255), nullable=True, unique=True)
    stripe_customer_id: Mapped[str] = mapped_column(String(255), nullable=True)

    delivery_selected: Mapped[bool] = mapped_column(Boolean, default=False)
    pickup_selected: Mapped[bool] = mapped_column(Boolean, default=False)
    insurance_selected: Mapped[bool] = mapped_column(Boolean, default=False)
    operator_selected: Mapped[bool] = mapped_column(Boolean, default=False)

    # pre-tax quote computed at creation
    quoted_total_cents: Mapped[int] = mapped_column(Integer, default=0)
    discount_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=True)

    # settlement snapshot, written once by the confirming event
    settled_subtotal_cents: Mapped[int] = mapped_column(Integer, nullable=True)
    settled_tax_cents: Mapped[int] = mapped_column(Integer, nullable=True)
    settled_total_cents: Mapped[int] = mapped_column(Integer, nullable=True)
    original_subtotal_cents: Mapped[int] = mapped_column(Integer, nullable=True)
    discounted_subtotal_cents: Mapped[int] = mapped_column(Integer, nullable=True)

    authorized_payment_intent_id: Mapped[str] = mapped_column(String(255), nullable=True)
    authorized_amount_cents: Mapped[int] = mapped_column(Integer, nullable=True)

    stripe_charge_id: Mapped[str] = mapped_column(String(255), nullable=True)
    refund_status: Mapped[str] = mapped_column(String(10), default=RefundStatus.NONE)
    refunded_amount_cents: Mapped[int] = mapped_column(Integer, default=0)
    refund_ids: Mapped[list] = mapped_column(JSON, default=list)

    dispute_status: Mapped[str] = mapped_column(String(10), default=DisputeStatus.NONE)
    dispute_id: Mapped[str] = mapped_column(String(255), nullable=True)
    dispute_reason: Mapped[str] = mapped_column(String(80), nullable=True)
    dispute_closed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

    invoice_provider: Mapped[str] = mapped_column(String(30), nullable=True)
    invoice_provider_id: Mapped[str] = mapped_column(String(80), nullable=True)
    invoice_number: Mapped[str] = mapped_column(String(80), nullable=True)
    invoice_pdf_url: Mapped[str] = mapped_column(String(1024), nullable=True)
    invoice_issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

    # claim tokens: set by conditional UPDATE before the matching mail is sent
    confirmation_email_sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    internal_email_sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    invoice_email_sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    items: Mapped[list["BookingItem"]] = relationship(back_populates="booking", order_by="BookingItem.position")


class BookingItem(Base):
    __tablename__ = "booking_items"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_booking_items_quantity"),
        CheckConstraint("unit_price_cents >= 0", name="ck_booking_items_price"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str] = mapped_column(String(36), ForeignKey("bookings.id"), index=True)
    machine_id: Mapped[str] = mapped_column(String(36), ForeignKey("machines.id"), index=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False)

    name: Mapped[str] = mapped_column(String(200), default="")
    item_type: Mapped[str] = mapped_column(String(12))
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    charge_model: Mapped[str] = mapped_column(String(20))
    time_unit: Mapped[str] = mapped_column(String(10))
    unit_price_cents: Mapped[int] = mapped_column(Integer)
    line_total_cents: Mapped[int] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    booking: Mapped[Booking] = relationship(back_populates="items")


_FROZEN_ITEM_FIELDS = ("quantity", "charge_model", "time_unit", "unit_price_cents", "line_total_cents", "machine_id")


@event.listens_for(BookingItem, "before_update")
def _reject_item_price_changes(mapper, connection, target):
    state = inspect(target)
    changed = [f for f in _FROZEN_ITEM_FIELDS if state.attrs[f].history.has_changes()]
    if changed:
        raise ValueError(f"booking item {target.id} is immutable; attempted to change {', '.join(changed)}")
