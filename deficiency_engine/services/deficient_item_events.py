# deficiency_engine/services/deficient_item_events.py
from __future__ import annotations

import logging
from typing import Optional

from ..domain.deficient_items import changes_rollup_class
from ..errors import PreconditionViolation
from .deficient_item_repository import ArchiveResult, DeficientItemRef, DeficientItemRepository
from .property_meta_service import refresh_property_meta
from .status_publisher import StatusPublisher, publish_state_change

log = logging.getLogger("deficiency.events")


def handle_archive_toggle(
    repository: DeficientItemRepository,
    property_id: str,
    deficient_item_id: str,
    archiving: bool,
    *,
    refresh_meta: bool = True,
) -> ArchiveResult:
    """
    A user (un)archived a DI. Repository errors propagate so the trigger
    is retried; the move itself is idempotent.
    """
    if not isinstance(archiving, bool):
        raise PreconditionViolation(f"archive toggle for {deficient_item_id}: archiving must be a bool")

    ref = DeficientItemRef(str(property_id), str(deficient_item_id))
    extra = {"property_id": ref.property_id, "deficient_item_id": ref.deficient_item_id}

    result = repository.toggle_archive(ref, archiving)

    if not result.changed:
        log.info("archive_toggle_noop archived=%s", result.archived, extra=extra)
        return result

    if result.external_card_changed:
        log.info(
            "ticket_board_card_%s card=%s",
            "archived" if archiving else "unarchived",
            result.external_card_changed,
            extra=extra,
        )

    if refresh_meta:
        refresh_property_meta(repository.operational, repository.analytic, ref.property_id)
    return result


def handle_state_change(
    repository: DeficientItemRepository,
    publisher: Optional[StatusPublisher],
    property_id: str,
    deficient_item_id: str,
    before_state: Optional[str],
    after_state: Optional[str],
    *,
    refresh_meta: bool = True,
) -> dict:
    """
    A DI state was written. Publishes the status message when it changed and
    recomputes property rollups when it moved between rollup classes.
    Failures here are logged only.
    """
    extra = {
        "property_id": property_id,
        "deficient_item_id": deficient_item_id,
        "state": after_state,
        "previous_state": before_state,
    }
    if before_state == after_state or not after_state:
        log.debug("state_unchanged", extra=extra)
        return {"published": False, "refreshed": False}

    published = publish_state_change(publisher, property_id, deficient_item_id, after_state)

    refreshed = False
    if refresh_meta and changes_rollup_class(before_state, after_state):
        refreshed = refresh_property_meta(repository.operational, repository.analytic, property_id)

    log.info("state_change_handled", extra=extra)
    return {"published": published, "refreshed": refreshed}
