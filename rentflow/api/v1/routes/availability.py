from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from rentflow.db.session import get_db
from rentflow.models.machine import Machine
from rentflow.schemas.booking import DiscountOut
from rentflow.services.availability_service import get_disabled_ranges_by_machine, get_disabled_ranges_for_machine
from rentflow.services.discount_service import lookup_company_discount, normalize_nif

router = APIRouter(tags=["availability"])


@router.get("/public/machines/{machine_id}/disabled-ranges")
def machine_disabled_ranges(machine_id: str, db: Session = Depends(get_db)):
    if not db.get(Machine, machine_id):
        raise HTTPException(status_code=404, detail="Machine not found")
    return get_disabled_ranges_for_machine(db, machine_id)


@router.get("/public/disabled-ranges")
def all_disabled_ranges(db: Session = Depends(get_db)):
    return get_disabled_ranges_by_machine(db)


@router.get("/public/discounts", response_model=DiscountOut)
def check_discount(nif: str, db: Session = Depends(get_db)):
    if not normalize_nif(nif):
        raise HTTPException(status_code=400, detail="Invalid NIF parameter.")
    pct, company = lookup_company_discount(db, nif)
    return DiscountOut(discountPercentage=float(pct), companyName=company)
