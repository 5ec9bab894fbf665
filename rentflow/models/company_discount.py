from sqlalchemy import String, Boolean, DateTime, Numeric
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from decimal import Decimal
from rentflow.db.session import Base

class CompanyDiscount(Base):
    """Negotiated percentage discount for a business customer, keyed by 9-digit NIF."""
    __tablename__ = "company_discounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    nif: Mapped[str] = mapped_column(String(9), unique=True, index=True)
    company_name: Mapped[str] = mapped_column(String(200), default="")
    discount_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2))
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
