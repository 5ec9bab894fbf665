import re
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from rentflow.models.company_discount import CompanyDiscount


def normalize_nif(nif: Optional[str]) -> Optional[str]:
    """Digits only; a Portuguese NIF has exactly nine."""
    if not nif:
        return None
    digits = re.sub(r"\D", "", nif)
    return digits if len(digits) == 9 else None


def lookup_company_discount(db: Session, nif: Optional[str]) -> tuple[Decimal, Optional[str]]:
    """(percentage, company name). 0 when the NIF is invalid, unknown or inactive."""
    normalized = normalize_nif(nif)
    if not normalized:
        return Decimal("0"), None
    row = db.query(CompanyDiscount).filter(CompanyDiscount.nif == normalized).first()
    if not row or not row.active:
        return Decimal("0"), None
    return Decimal(row.discount_percentage), row.company_name
