# deficiency_engine/workers/deficient_item_tasks.py
from __future__ import annotations

import logging
import random

from pydantic import ValidationError

from ..clients.ticket_board import TicketBoardClient
from ..config import settings
from ..db import store_sessions
from ..errors import DeficiencyEngineError, NotFoundError
from ..invocation import invocation_scope
from ..schemas import ArchiveToggleEvent, InspectionWriteEvent, StateChangeEvent
from ..services.deficient_item_events import handle_archive_toggle as _handle_archive_toggle
from ..services.deficient_item_events import handle_state_change as _handle_state_change
from ..services.deficient_item_repository import DeficientItemRepository
from ..services.inspection_lifecycle import process_inspection_write
from ..services.inspection_source import InspectionSource
from ..services.overdue_sweep import sync_overdue_deficient_items as _sync_overdue
from ..services.status_publisher import CeleryStatusPublisher
from .celery_app import celery_app

log = logging.getLogger("deficiency.tasks")


def _backoff_seconds(retries: int) -> int:
    """
    Exponential backoff with jitter.
    retries is the current retry count (0 for first retry attempt).
    """
    base = int(settings.task_retry_base_seconds or 5)
    cap = int(settings.task_retry_max_seconds or 120)

    delay = min(cap, base * (2 ** max(0, int(retries))))

    # jitter: +/- 20%
    jitter = int(delay * 0.2)
    if jitter > 0:
        delay = max(1, delay + random.randint(-jitter, jitter))
    return delay


def _repository(operational, analytic) -> DeficientItemRepository:
    return DeficientItemRepository(operational=operational, analytic=analytic, ticket_board=TicketBoardClient())


def _retry_or_raise(task, exc: Exception, name: str):
    """Contract violations fail immediately; everything else is retried with backoff."""
    if isinstance(exc, ValidationError) or (isinstance(exc, DeficiencyEngineError) and not exc.retryable):
        log.error("task_failed_not_retryable err=%s", exc, extra={"task": name})
        raise exc
    retries = int(getattr(task.request, "retries", 0) or 0)
    log.warning("task_retrying attempt=%s err=%s", retries + 1, exc, extra={"task": name})
    raise task.retry(exc=exc, countdown=_backoff_seconds(retries))


@celery_app.task(
    bind=True,
    max_retries=settings.task_max_retries,
    name="deficiency_engine.workers.deficient_item_tasks.handle_inspection_write",
)
def handle_inspection_write(self, event: dict) -> dict:
    """
    Inspection created/updated/deleted.

    The event snapshot only tells us which inspection moved; the current
    document is re-read so a late or duplicate delivery reconciles against
    the latest state.
    """
    name = "handle_inspection_write"
    with invocation_scope(self.request.id):
        try:
            evt = InspectionWriteEvent.model_validate(event)
            with store_sessions() as (operational, analytic):
                inspection = InspectionSource(operational).find(evt.inspection_id)
                if inspection is None and not evt.deleted:
                    log.info("inspection_gone_treating_as_deleted", extra={"task": name, "inspection_id": evt.inspection_id})
                result = process_inspection_write(_repository(operational, analytic), evt.inspection_id, inspection)
            return {"ok": True, **result.as_dict()}
        except Exception as e:
            _retry_or_raise(self, e, name)


@celery_app.task(
    bind=True,
    max_retries=settings.task_max_retries,
    name="deficiency_engine.workers.deficient_item_tasks.handle_archive_toggle",
)
def handle_archive_toggle(self, event: dict) -> dict:
    name = "handle_archive_toggle"
    with invocation_scope(self.request.id):
        try:
            evt = ArchiveToggleEvent.model_validate(event)
            with store_sessions() as (operational, analytic):
                result = _handle_archive_toggle(
                    _repository(operational, analytic),
                    evt.property_id,
                    evt.deficient_item_id,
                    evt.archiving,
                )
            return {
                "ok": True,
                "archived": result.archived,
                "changed": result.changed,
                "external_card_changed": result.external_card_changed,
            }
        except NotFoundError as e:
            log.info("archive_toggle_target_missing err=%s", e, extra={"task": name})
            return {"ok": False, "reason": "not_found"}
        except Exception as e:
            _retry_or_raise(self, e, name)


@celery_app.task(
    bind=True,
    max_retries=settings.task_max_retries,
    name="deficiency_engine.workers.deficient_item_tasks.handle_state_change",
)
def handle_state_change(self, event: dict) -> dict:
    name = "handle_state_change"
    with invocation_scope(self.request.id):
        try:
            evt = StateChangeEvent.model_validate(event)
            with store_sessions() as (operational, analytic):
                out = _handle_state_change(
                    _repository(operational, analytic),
                    CeleryStatusPublisher(celery_app),
                    evt.property_id,
                    evt.deficient_item_id,
                    evt.before_state,
                    evt.after_state,
                )
            return {"ok": True, **out}
        except Exception as e:
            _retry_or_raise(self, e, name)


@celery_app.task(
    bind=True,
    max_retries=settings.task_max_retries,
    name="deficiency_engine.workers.deficient_item_tasks.sync_overdue_deficient_items",
)
def sync_overdue_deficient_items(self) -> dict:
    name = "sync_overdue_deficient_items"
    with invocation_scope(self.request.id):
        try:
            with store_sessions() as (operational, analytic):
                result = _sync_overdue(_repository(operational, analytic), CeleryStatusPublisher(celery_app))
            return {"ok": True, **result.as_dict()}
        except Exception as e:
            _retry_or_raise(self, e, name)
