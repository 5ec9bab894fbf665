import logging

logger = logging.getLogger(__name__)


def _task_calls(booking_id: str):
    from rentflow.tasks import jobs
    return {
        "issue_invoice": lambda: jobs.issue_invoice.delay(booking_id),
        "send_customer_confirmation": lambda: jobs.send_booking_confirmation.delay(booking_id, "customer"),
        "send_internal_confirmation": lambda: jobs.send_booking_confirmation.delay(booking_id, "internal"),
        "sync_calendar": lambda: jobs.sync_calendar.delay(booking_id),
    }


def enqueue_follow_ups(booking_id: str | None, follow_ups: list[str]) -> int:
    """Queue post-commit jobs. Broker failures are logged; the triggering transition stays committed."""
    if not booking_id or not follow_ups:
        return 0
    calls = _task_calls(booking_id)
    queued = 0
    for name in follow_ups:
        try:
            calls[name]()
            queued += 1
        except Exception:
            logger.exception("Could not enqueue %s for booking %s", name, booking_id)
    return queued
