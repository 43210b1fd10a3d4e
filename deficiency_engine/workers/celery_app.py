# deficiency_engine/workers/celery_app.py
from __future__ import annotations

import os

from celery import Celery
from celery.signals import setup_logging

from ..config import settings
from ..logging_config import configure_logging

BROKER = settings.celery_broker_url or os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
BACKEND = settings.celery_result_backend or os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")

celery_app = Celery(
    "deficiency_engine",
    broker=BROKER,
    backend=BACKEND,
    include=["deficiency_engine.workers.deficient_item_tasks"],
)

# At-least-once: ack after the handler returns, one message per worker slot
celery_app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    timezone="UTC",
)

celery_app.conf.task_routes = {
    "deficiency_engine.workers.deficient_item_tasks.*": {"queue": "deficient_items"},
}

# Periodic tick for the overdue sweep
celery_app.conf.beat_schedule = {
    "sync-overdue-deficient-items": {
        "task": "deficiency_engine.workers.deficient_item_tasks.sync_overdue_deficient_items",
        "schedule": float(settings.overdue_sweep_interval_seconds),
    },
}


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    # replaces celery's own handlers with the JSON line formatter
    configure_logging()
