from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from rentflow.models.booking import Booking, BookingStatus
from rentflow.services.followup_service import enqueue_follow_ups
from rentflow.services.webhook_service import CONFIRMATION_FOLLOW_UPS
from rentflow.tasks import jobs, worker_jobs
from rentflow.tasks.celery_app import _redis_url_for_celery, celery


@pytest.fixture()
def fake_tasks(monkeypatch):
    tasks = {name: MagicMock() for name in ("issue_invoice", "send_booking_confirmation", "sync_calendar")}
    for name, task in tasks.items():
        monkeypatch.setattr(jobs, name, task)
    return tasks


def test_follow_ups_map_to_tasks(fake_tasks):
    queued = enqueue_follow_ups("b-1", CONFIRMATION_FOLLOW_UPS)

    assert queued == 4
    fake_tasks["issue_invoice"].delay.assert_called_once_with("b-1")
    assert [c.args for c in fake_tasks["send_booking_confirmation"].delay.call_args_list] == [
        ("b-1", "customer"),
        ("b-1", "internal"),
    ]
    fake_tasks["sync_calendar"].delay.assert_called_once_with("b-1")


def test_broker_failure_does_not_raise(fake_tasks):
    fake_tasks["issue_invoice"].delay.side_effect = ConnectionError("redis down")
    assert enqueue_follow_ups("b-1", CONFIRMATION_FOLLOW_UPS) == 3


def test_nothing_to_enqueue(fake_tasks):
    assert enqueue_follow_ups(None, CONFIRMATION_FOLLOW_UPS) == 0
    assert enqueue_follow_ups("b-1", []) == 0
    fake_tasks["issue_invoice"].delay.assert_not_called()


def test_expire_holds_job(db, session_factory, machine, booking_factory, monkeypatch):
    stale = booking_factory(machine, date(2025, 9, 1), date(2025, 9, 1),
                            hold_expires_at=datetime.now(timezone.utc) - timedelta(hours=1))
    monkeypatch.setattr(worker_jobs, "SessionLocal", session_factory)

    assert worker_jobs.expire_holds() == {"expired": 1}
    db.expire_all()
    assert db.get(Booking, stale.id).status == BookingStatus.CANCELLED


def test_confirmation_job_rejects_unknown_audience(session_factory, monkeypatch):
    monkeypatch.setattr(worker_jobs, "SessionLocal", session_factory)
    with pytest.raises(ValueError):
        worker_jobs.send_booking_confirmation("b-1", "everyone")


def test_calendar_job_is_noop_without_webhook(session_factory, monkeypatch):
    monkeypatch.setattr(worker_jobs, "SessionLocal", session_factory)
    assert worker_jobs.sync_calendar("b-1") == {"synced": False}


def test_beat_schedule_expires_holds_every_minute():
    entry = celery.conf.beat_schedule["expire-holds-every-minute"]
    assert entry["task"] == "rentflow.tasks.jobs.expire_holds"
    assert entry["schedule"] == 60.0


def test_rediss_url_gets_cert_option():
    assert _redis_url_for_celery("redis://localhost:6379/0") == "redis://localhost:6379/0"
    assert "ssl_cert_reqs=CERT_NONE" in _redis_url_for_celery("rediss://default:pw@host:6379")


def test_rediss_url_keeps_explicit_cert_option():
    url = "rediss://default:pw@host:6379/0?ssl_cert_reqs=CERT_REQUIRED"
    assert _redis_url_for_celery(url) == url
    assert "ssl_cert_reqs=CERT_OPTIONAL" in _redis_url_for_celery("rediss://host:6379", "CERT_OPTIONAL")
