# deficiency_engine/services/overdue_sweep.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from ..domain.deficient_items import changes_rollup_class, next_state
from ..errors import NotFoundError, RepositoryWriteError
from .deficient_item_repository import DeficientItemRepository
from .property_meta_service import refresh_property_meta
from .status_publisher import StatusPublisher, publish_state_change

log = logging.getLogger("deficiency.sweep")


@dataclass(frozen=True)
class Transition:
    property_id: str
    deficient_item_id: str
    previous_state: str
    state: str


@dataclass(frozen=True)
class SweepResult:
    transitions: list[Transition] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)
    properties_refreshed: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "transitions": [
                {"property_id": t.property_id, "deficient_item_id": t.deficient_item_id, "from": t.previous_state, "to": t.state}
                for t in self.transitions
            ],
            "failures": list(self.failures),
            "properties_refreshed": list(self.properties_refreshed),
        }


def _sweep_property(
    repository: DeficientItemRepository,
    publisher: Optional[StatusPublisher],
    property_id: str,
    now: float,
    result: SweepResult,
) -> bool:
    """Advance one property's DIs in order; True when its rollups need a recompute."""
    needs_refresh = False

    for di in repository.find_all_by_property(property_id):
        target = next_state(di.data, now=now)
        if target is None:
            continue

        previous = di.state
        extra = {"property_id": property_id, "deficient_item_id": di.id, "state": target, "previous_state": previous}
        try:
            moved = repository.update_state(di.ref, target, expected_state=previous, now=now)
        except (RepositoryWriteError, NotFoundError) as e:
            log.warning("sweep_transition_failed err=%s", e, extra=extra)
            result.failures.append(di.id)
            continue

        if not moved:
            # someone else changed or archived it since we read it
            log.info("sweep_transition_superseded", extra=extra)
            continue

        log.info("sweep_transition", extra=extra)
        result.transitions.append(Transition(property_id, di.id, previous, target))
        publish_state_change(publisher, property_id, di.id, target)
        if changes_rollup_class(previous, target):
            needs_refresh = True

    return needs_refresh


def sync_overdue_deficient_items(
    repository: DeficientItemRepository,
    publisher: Optional[StatusPublisher] = None,
    *,
    now: Optional[float] = None,
    refresh_meta: bool = True,
) -> SweepResult:
    """
    Periodic tick: move pending/progress DIs to requires-progress-update or
    overdue as their due dates approach or pass.

    Properties and their DIs are processed sequentially. A failing DI or
    property is logged and skipped. Transitions are guarded by the current
    state, so re-running the sweep is a no-op for DIs already advanced.
    """
    ts = float(now) if now is not None else time.time()
    result = SweepResult()

    for property_id in repository.list_property_ids():
        try:
            needs_refresh = _sweep_property(repository, publisher, property_id, ts, result)
        except (RepositoryWriteError, NotFoundError) as e:
            log.warning("sweep_property_failed err=%s", e, extra={"property_id": property_id})
            result.failures.append(property_id)
            continue

        if needs_refresh and refresh_meta:
            if refresh_property_meta(repository.operational, repository.analytic, property_id):
                result.properties_refreshed.append(property_id)

    log.info(
        "sweep_done transitions=%s failures=%s refreshed=%s",
        len(result.transitions),
        len(result.failures),
        len(result.properties_refreshed),
    )
    return result
