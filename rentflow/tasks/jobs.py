from rentflow.tasks.celery_app import celery
from rentflow.tasks import worker_jobs
from rentflow.services.invoice_service import InvoicingError

@celery.task(name="rentflow.tasks.jobs.expire_holds")
def expire_holds():
    return worker_jobs.expire_holds()

@celery.task(
    name="rentflow.tasks.jobs.issue_invoice",
    autoretry_for=(InvoicingError,),
    retry_backoff=30,
    max_retries=5,
)
def issue_invoice(booking_id: str):
    return worker_jobs.issue_invoice(booking_id)

@celery.task(name="rentflow.tasks.jobs.send_booking_confirmation")
def send_booking_confirmation(booking_id: str, audience: str):
    return worker_jobs.send_booking_confirmation(booking_id, audience)

@celery.task(name="rentflow.tasks.jobs.sync_calendar")
def sync_calendar(booking_id: str):
    return worker_jobs.sync_calendar(booking_id)
