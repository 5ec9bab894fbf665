from sqlalchemy import String, Integer, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from rentflow.db.session import Base


class ItemType:
    PRIMARY = "PRIMARY"
    ADDON = "ADDON"


class Machine(Base):
    """Catalog entry. Prices here are current list prices; bookings snapshot them."""
    __tablename__ = "machines"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    code: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(200))
    item_type: Mapped[str] = mapped_column(String(12), default=ItemType.PRIMARY)  # PRIMARY|ADDON

    charge_model: Mapped[str] = mapped_column(String(20), default="PER_BOOKING")  # PER_BOOKING|PER_UNIT
    time_unit: Mapped[str] = mapped_column(String(10), default="DAY")  # DAY|HOUR|NONE

    daily_rate_cents: Mapped[int] = mapped_column(Integer, default=0)
    deposit_cents: Mapped[int] = mapped_column(Integer, default=0)
    # null = delivery/pickup not offered for this machine
    delivery_charge_cents: Mapped[int] = mapped_column(Integer, nullable=True)
    pickup_charge_cents: Mapped[int] = mapped_column(Integer, nullable=True)

    min_days: Mapped[int] = mapped_column(Integer, default=1)
    active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
