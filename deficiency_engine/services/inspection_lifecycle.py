# deficiency_engine/services/inspection_lifecycle.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from ..domain.deficient_items import (
    compute_proxy_updates,
    derive_deficient_items,
    find_matching,
    find_missing,
    has_deficient_item_tracking,
)
from ..errors import NotFoundError, PreconditionViolation, RepositoryWriteError
from .deficient_item_repository import DeficientItemRepository, StoredDeficientItem
from .property_meta_service import refresh_property_meta

log = logging.getLogger("deficiency.lifecycle")

# Item-level failures: log, skip the item, keep going.
# Anything else propagates so the trigger is retried as a whole.
ITEM_ERRORS = (RepositoryWriteError, NotFoundError)


@dataclass(frozen=True)
class LifecycleResult:
    inspection_id: str
    property_id: Optional[str] = None
    archived: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    created: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped_reason: Optional[str] = None

    @property
    def changed(self) -> bool:
        return bool(self.archived or self.updated or self.created)

    def as_dict(self) -> dict:
        return {
            "inspection_id": self.inspection_id,
            "property_id": self.property_id,
            "archived": list(self.archived),
            "updated": list(self.updated),
            "created": list(self.created),
            "failed": list(self.failed),
            "skipped_reason": self.skipped_reason,
        }


def _archive_all(
    repository: DeficientItemRepository,
    inspection_id: str,
    items: list[StoredDeficientItem],
    result: LifecycleResult,
) -> None:
    for di in items:
        extra = {"property_id": di.property_id, "inspection_id": inspection_id, "deficient_item_id": di.id}
        try:
            outcome = repository.toggle_archive(di.ref, True)
        except ITEM_ERRORS as e:
            log.warning("deficient_item_archive_failed err=%s", e, extra=extra)
            result.failed.append(di.id)
            continue
        if outcome.changed:
            result.archived.append(di.id)


def process_inspection_write(
    repository: DeficientItemRepository,
    inspection_id: str,
    inspection: Optional[dict[str, Any]],
    *,
    now: Optional[float] = None,
    refresh_meta: bool = True,
) -> LifecycleResult:
    """
    Reconcile the stored DIs of one inspection with what its template says.

    `inspection is None` means the inspection was deleted: every active DI
    it owns is archived. An inspection that is incomplete or does not track
    deficient items is left alone. Otherwise:

      1) archive DIs whose item is no longer deficient
      2) sync proxy attributes of DIs that still are (non-empty deltas only)
      3) create DIs for newly deficient items

    Each loop is sequential; safe to re-run for the same inspection.
    """
    ts = float(now) if now is not None else time.time()
    inspection_id = str(inspection_id)

    if inspection is None:
        current = repository.find_all_by_inspection(inspection_id)
        property_id = current[0].property_id if current else None
        result = LifecycleResult(inspection_id=inspection_id, property_id=property_id)
        _archive_all(repository, inspection_id, current, result)
        log.info(
            "inspection_deleted archived=%s failed=%s",
            len(result.archived),
            len(result.failed),
            extra={"inspection_id": inspection_id, "property_id": property_id},
        )
        _refresh(repository, result, refresh_meta)
        return result

    if not has_deficient_item_tracking(inspection):
        log.debug("inspection_not_tracking_deficient_items", extra={"inspection_id": inspection_id})
        return LifecycleResult(inspection_id=inspection_id, skipped_reason="not_tracking")

    property_id = inspection.get("property")
    if not property_id:
        raise PreconditionViolation(f"inspection {inspection_id} has no property")
    property_id = str(property_id)

    expected = derive_deficient_items({**inspection, "id": inspection_id}, now=ts)
    stored = {di.id: di for di in repository.find_all_by_inspection(inspection_id)}
    current = {di_id: di.data for di_id, di in stored.items()}
    source_items = (inspection.get("template") or {}).get("items") or {}

    result = LifecycleResult(inspection_id=inspection_id, property_id=property_id)

    # 1) archive
    _archive_all(repository, inspection_id, [stored[k] for k in find_missing(current, expected)], result)

    # 2) update
    for di_id in find_matching(current, expected):
        di = stored[di_id]
        item_id = di.data.get("item")
        # the item stays under the property it was created for
        extra = {"property_id": di.property_id, "inspection_id": inspection_id, "deficient_item_id": di_id}

        updates = compute_proxy_updates(expected[item_id], di.data, source_item=source_items.get(item_id))
        # a carried-forward itemScore alone is not a change
        if all(di.data.get(k) == v for k, v in updates.items()):
            try:
                repository.repair_analytic(di_id)
            except ITEM_ERRORS as e:
                log.warning("deficient_item_analytic_repair_failed err=%s", e, extra=extra)
                result.failed.append(di_id)
            continue

        updates["updatedAt"] = ts
        try:
            repository.update(di.property_id, di_id, updates)
        except ITEM_ERRORS as e:
            log.warning("deficient_item_update_failed err=%s", e, extra=extra)
            result.failed.append(di_id)
            continue
        di.data.update(updates)
        result.updated.append(di_id)

    # 3) create
    for item_id in find_missing(expected, current):
        extra = {"property_id": property_id, "inspection_id": inspection_id}
        try:
            di_id = repository.create(property_id, expected[item_id])
        except ITEM_ERRORS as e:
            log.warning("deficient_item_create_failed item=%s err=%s", item_id, e, extra=extra)
            result.failed.append(item_id)
            continue
        result.created.append(di_id)

    log.info(
        "inspection_reconciled archived=%s updated=%s created=%s failed=%s",
        len(result.archived),
        len(result.updated),
        len(result.created),
        len(result.failed),
        extra={"property_id": property_id, "inspection_id": inspection_id},
    )
    _refresh(repository, result, refresh_meta)
    return result


def _refresh(repository: DeficientItemRepository, result: LifecycleResult, refresh_meta: bool) -> None:
    if refresh_meta and result.changed and result.property_id:
        refresh_property_meta(repository.operational, repository.analytic, result.property_id)
