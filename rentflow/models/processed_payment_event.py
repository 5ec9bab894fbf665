from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from rentflow.db.session import Base

class ProcessedPaymentEvent(Base):
    """One row per Stripe event id ever handled. Insert-only; the unique event_id is the dedup lock."""
    __tablename__ = "processed_payment_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    event_id: Mapped[str] = mapped_column(String(255), unique=True)
    event_type: Mapped[str] = mapped_column(String(80), index=True)
    booking_id: Mapped[str] = mapped_column(String(36), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
