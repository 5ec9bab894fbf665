import logging
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from celery import Celery
from celery.signals import setup_logging
from rentflow.core.config import settings


def _redis_url_for_celery(url: str, cert_reqs: str = "CERT_NONE") -> str:
    """Celery refuses rediss:// URLs without ssl_cert_reqs; add it unless the URL already names one."""
    parsed = urlparse(url or "")
    if parsed.scheme.lower() != "rediss":
        return url
    qs = parse_qs(parsed.query)
    qs.setdefault("ssl_cert_reqs", [cert_reqs])
    return urlunparse(parsed._replace(query=urlencode(qs, doseq=True)))


_broker_url = _redis_url_for_celery(settings.REDIS_URL, settings.REDIS_SSL_CERT_REQS)

celery = Celery(
    "rentflow",
    broker=_broker_url,
    backend=_broker_url,
    include=["rentflow.tasks.jobs"],
)

celery.conf.timezone = settings.BUSINESS_TIMEZONE
celery.conf.task_acks_late = True


@setup_logging.connect
def configure_worker_logging(**kwargs):
    from rentflow.core.logging import configure_logging
    configure_logging()
    logging.getLogger(__name__).info("Celery logging configured")


# Hold expiry runs every minute; the remaining jobs are queued per booking after confirmation.
celery.conf.beat_schedule = {
    "expire-holds-every-minute": {
        "task": "rentflow.tasks.jobs.expire_holds",
        "schedule": 60.0,
    },
}
