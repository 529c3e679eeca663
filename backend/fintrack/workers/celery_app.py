"""Celery application factory for background CSV imports."""

import logging
import ssl

from celery import Celery
from celery.signals import worker_init, worker_shutting_down

from fintrack.core.config import get_settings
from fintrack.core.logging_setup import configure_logging
from fintrack.services.import_queue import IMPORT_QUEUE_NAME, IMPORT_TASK_NAME

logger = logging.getLogger(__name__)

settings = get_settings()

broker_url = settings.broker_url
backend_url = settings.result_backend_url

# Upstash only accepts TLS connections
if ".upstash.io" in broker_url and broker_url.startswith("redis://"):
    broker_url = broker_url.replace("redis://", "rediss://", 1)
if ".upstash.io" in backend_url and backend_url.startswith("redis://"):
    backend_url = backend_url.replace("redis://", "rediss://", 1)
is_ssl = broker_url.startswith("rediss://") or backend_url.startswith("rediss://")

# The Redis result backend reads ssl_cert_reqs from the URL during init,
# before conf.update() is applied
if is_ssl:
    ssl_param = "ssl_cert_reqs=none"
    if "ssl_cert_reqs" not in broker_url:
        separator = "&" if "?" in broker_url else "?"
        broker_url = f"{broker_url}{separator}{ssl_param}"
    if "ssl_cert_reqs" not in backend_url:
        separator = "&" if "?" in backend_url else "?"
        backend_url = f"{backend_url}{separator}{ssl_param}"

celery_app = Celery(
    "fintrack",
    broker=broker_url,
    backend=backend_url,
)

celery_config = {
    "task_serializer": "json",
    "accept_content": ["json"],
    "result_serializer": "json",
    "timezone": "UTC",
    "enable_utc": True,
    "task_acks_late": True,  # Acknowledge after the import finishes
    "task_reject_on_worker_lost": True,  # Redeliver if the worker dies mid-job
    "worker_prefetch_multiplier": 1,
    "worker_concurrency": settings.import_worker_concurrency,
    "task_track_started": True,
    "task_time_limit": 3600,
    "task_soft_time_limit": 3300,
    "result_expires": 86400,
    "broker_connection_retry_on_startup": True,
    "worker_hijack_root_logger": False,
    "result_backend_always_retry": True,
    "result_backend_max_retries": 3,
    "task_default_queue": IMPORT_QUEUE_NAME,
    "task_routes": {IMPORT_TASK_NAME: {"queue": IMPORT_QUEUE_NAME}},
}

if is_ssl:
    ssl_dict = {"ssl_cert_reqs": ssl.CERT_NONE}
    celery_config["broker_use_ssl"] = ssl_dict
    celery_config["redis_backend_use_ssl"] = ssl_dict

celery_app.conf.update(celery_config)


@worker_init.connect
def _configure_worker_logging(**kwargs):
    configure_logging(settings.log_level)
    logger.info("Starting CSV import worker...")


@worker_shutting_down.connect
def _log_shutdown(sig=None, how=None, exitcode=None, **kwargs):
    # Warm shutdown stops consuming and lets in-flight imports finish
    logger.info(f"Shutting down worker ({how} shutdown, signal {sig})")

# Register tasks with celery_app
from fintrack.workers.tasks import import_transactions  # noqa: E402,F401
