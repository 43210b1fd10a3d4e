# deficiency_engine/services/status_publisher.py
from __future__ import annotations

import logging
from typing import Optional, Protocol

from ..config import settings

log = logging.getLogger("deficiency.publisher")

PUBLISH_TASK_NAME = "deficiency_engine.status_updates.publish"


def status_message(property_id: str, deficient_item_id: str, state: str) -> str:
    return f"{property_id}/{deficient_item_id}/state/{state}"


class StatusPublisher(Protocol):
    def publish(self, property_id: str, deficient_item_id: str, state: str) -> None: ...


class CeleryStatusPublisher:
    """
    Sends the status message to the topic queue as a named Celery message.
    Consumers live outside this package; nothing here waits for them.
    """

    def __init__(self, app=None, *, topic: Optional[str] = None) -> None:
        if app is None:
            from ..workers.celery_app import celery_app

            app = celery_app
        self.app = app
        self.topic = topic or settings.status_update_topic

    def publish(self, property_id: str, deficient_item_id: str, state: str) -> None:
        self.app.send_task(
            PUBLISH_TASK_NAME,
            args=[status_message(property_id, deficient_item_id, state)],
            queue=self.topic,
            retry=False,
        )


def publish_state_change(
    publisher: Optional[StatusPublisher],
    property_id: str,
    deficient_item_id: str,
    state: str,
) -> bool:
    """Best-effort: failures are logged and never retried here."""
    if publisher is None:
        return False
    extra = {"property_id": property_id, "deficient_item_id": deficient_item_id, "state": state}
    try:
        publisher.publish(property_id, deficient_item_id, state)
    except Exception as e:
        log.warning("status_publish_failed err=%s", e, extra=extra)
        return False
    log.info("status_published", extra=extra)
    return True
