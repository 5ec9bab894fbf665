import logging
import uuid
from decimal import Decimal

from sqlalchemy import text
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.orm import Session

from rentflow.db.session import SessionLocal
from rentflow.models.machine import Machine, ItemType
from rentflow.models.company_discount import CompanyDiscount

logger = logging.getLogger(__name__)

# code, name, item_type, charge_model, time_unit, daily_rate_cents, deposit_cents, delivery, pickup, min_days
MACHINES = [
    ("MINI-EXC-1T", "Mini excavator 1t", ItemType.PRIMARY, "PER_BOOKING", "DAY", 9500, 15000, 4500, 4500, 1),
    ("EXC-3T", "Excavator 3t", ItemType.PRIMARY, "PER_BOOKING", "DAY", 15000, 25000, 6000, 6000, 2),
    ("DUMPER-1T", "Track dumper 1t", ItemType.PRIMARY, "PER_BOOKING", "DAY", 7000, 10000, 4500, 4500, 1),
    ("BUCKET-300", "Trenching bucket 300mm", ItemType.ADDON, "PER_UNIT", "DAY", 1200, 0, None, None, 1),
    ("BREAKER", "Hydraulic breaker", ItemType.ADDON, "PER_UNIT", "DAY", 3500, 0, None, None, 1),
    ("CLEANING", "End-of-hire cleaning", ItemType.ADDON, "PER_BOOKING", "NONE", 2500, 0, None, None, 1),
]


def ensure_machine(db: Session, row) -> None:
    code, name, item_type, charge_model, time_unit, rate, deposit, delivery, pickup, min_days = row
    if db.query(Machine).filter(Machine.code == code).first():
        return
    db.add(
        Machine(
            id=str(uuid.uuid4()),
            code=code,
            name=name,
            item_type=item_type,
            charge_model=charge_model,
            time_unit=time_unit,
            daily_rate_cents=rate,
            deposit_cents=deposit,
            delivery_charge_cents=delivery,
            pickup_charge_cents=pickup,
            min_days=min_days,
            active=True,
        )
    )


def ensure_discount(db: Session, nif: str, company_name: str, percentage: str) -> None:
    if db.query(CompanyDiscount).filter(CompanyDiscount.nif == nif).first():
        return
    db.add(
        CompanyDiscount(
            id=str(uuid.uuid4()),
            nif=nif,
            company_name=company_name,
            discount_percentage=Decimal(percentage),
            active=True,
        )
    )


def run(db=None):
    owns_session = db is None
    if db is None:
        db = SessionLocal()
    try:
        # Seeding must not crash the API when migrations haven't been applied yet.
        try:
            db.execute(text("SELECT 1 FROM machines LIMIT 1"))
        except ProgrammingError:
            db.rollback()
            logger.warning("machines table not found yet; skipping seed (run alembic upgrade head)")
            return

        for row in MACHINES:
            ensure_machine(db, row)
        ensure_discount(db, "500000000", "Demo Construções Lda", "10")
        db.commit()
        logger.info("seed complete: %d machines", db.query(Machine).count())
    finally:
        if owns_session:
            db.close()


if __name__ == "__main__":
    from rentflow.core.logging import configure_logging

    configure_logging()
    run()
