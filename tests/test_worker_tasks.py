from __future__ import annotations

from deficiency_engine.services.inspection_source import InspectionSource
from deficiency_engine.workers import deficient_item_tasks
from deficiency_engine.workers.celery_app import celery_app


def test_celery_defaults_are_at_least_once():
    conf = celery_app.conf

    assert conf.task_acks_late is True
    assert conf.worker_prefetch_multiplier == 1
    assert "sync-overdue-deficient-items" in conf.beat_schedule
    assert conf.task_routes["deficiency_engine.workers.deficient_item_tasks.*"] == {"queue": "deficient_items"}


def test_backoff_is_bounded():
    for retries in range(10):
        delay = deficient_item_tasks._backoff_seconds(retries)
        assert 1 <= delay <= 144


def test_inspection_write_task_reconciles_latest_document(stores, make_inspection):
    operational, _ = stores
    InspectionSource(operational).save(make_inspection())

    out = deficient_item_tasks.handle_inspection_write.apply(
        args=[{"inspection_id": "inspection-1", "before": None, "after": {"id": "inspection-1"}}]
    ).get()

    assert out["ok"] is True
    assert len(out["created"]) == 1


def test_archive_toggle_task_for_missing_item(stores):
    out = deficient_item_tasks.handle_archive_toggle.apply(
        args=[{"property_id": "property-1", "deficient_item_id": "missing", "archiving": True}]
    ).get()

    assert out == {"ok": False, "reason": "not_found"}
