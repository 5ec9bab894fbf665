from sqlalchemy.orm import Session
from sqlalchemy.exc import ProgrammingError
from rentflow.db.session import SessionLocal
from rentflow.services import booking_state
from rentflow.services.calendar_service import sync_booking_to_calendar
from rentflow.services.invoice_service import get_invoicing_client, issue_invoice_for_booking
from rentflow.services import notification_service


def expire_holds() -> dict:
    db: Session = SessionLocal()
    try:
        try:
            expired = booking_state.expire_holds(db)
        except ProgrammingError:
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
        db.commit()
        return {"expired": expired}
    finally:
        db.close()


def issue_invoice(booking_id: str) -> dict:
    db: Session = SessionLocal()
    try:
        return issue_invoice_for_booking(db, booking_id, client=get_invoicing_client())
    finally:
        db.close()


def send_booking_confirmation(booking_id: str, audience: str) -> dict:
    db: Session = SessionLocal()
    try:
        if audience == "customer":
            sent = notification_service.send_customer_confirmation(db, booking_id)
        elif audience == "internal":
            sent = notification_service.send_internal_confirmation(db, booking_id)
        else:
            raise ValueError(f"unknown audience {audience!r}")
        return {"sent": sent}
    finally:
        db.close()


def sync_calendar(booking_id: str) -> dict:
    db: Session = SessionLocal()
    try:
        return {"synced": sync_booking_to_calendar(db, booking_id)}
    finally:
        db.close()
