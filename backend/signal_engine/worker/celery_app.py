"""
Celery application for per-user scoring runs.

Broker/backend: Redis (REDIS_URL env).
Default queue: engine.
"""
from celery import Celery

from signal_engine.settings import get_app_config

settings = get_app_config()

celery_app = Celery(
    "signal_engine",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_time_limit=15 * 60,
    task_soft_time_limit=14 * 60,
    task_default_queue="engine",
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # must exceed task_time_limit or long runs are redelivered
    broker_transport_options={"visibility_timeout": 30 * 60},
)

celery_app.autodiscover_tasks(["signal_engine.worker"])
