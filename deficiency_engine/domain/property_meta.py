# deficiency_engine/domain/property_meta.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping, Optional

from ..config import settings
from .deficient_items.derive import derive_deficient_items, has_deficient_item_tracking

# -----------------------------------------------------------------------------
# Property rollups
# -----------------------------------------------------------------------------
# Every stage is a pure function MetaContext -> MetaContext that only adds to
# `updates`. Keys are property attribute names; the service layer turns them
# into `/properties/{id}/{attr}` paths.
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class MetaContext:
    property_id: str
    inspections: list[dict[str, Any]]
    deficient_items: list[dict[str, Any]]
    updates: dict[str, Any] = field(default_factory=dict)

    def with_updates(self, **attrs: Any) -> "MetaContext":
        return replace(self, updates={**self.updates, **attrs})


def _completed(inspections: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [i for i in inspections if i.get("inspectionCompleted")]


def update_num_of_inspections(ctx: MetaContext) -> MetaContext:
    return ctx.with_updates(numOfInspections=len(_completed(ctx.inspections)))


def update_last_inspection_attrs(ctx: MetaContext) -> MetaContext:
    completed = sorted(
        _completed(ctx.inspections),
        key=lambda i: i.get("creationDate") or 0,
        reverse=True,
    )
    if not completed:
        return ctx

    latest = completed[0]
    return ctx.with_updates(
        lastInspectionScore=latest.get("score"),
        lastInspectionDate=latest.get("creationDate"),
    )


def _derived_population(ctx: MetaContext, now: Optional[float]) -> list[dict[str, Any]]:
    """
    DIs re-derived from every tracking inspection, each merged with its stored
    counterpart (matched on item + inspection) when one exists.
    """
    stored = {(d.get("item"), d.get("inspection")): d for d in ctx.deficient_items}

    population: list[dict[str, Any]] = []
    for inspection in ctx.inspections:
        if not has_deficient_item_tracking(inspection):
            continue
        for item_id, derived in derive_deficient_items(inspection, now=now).items():
            existing = stored.get((item_id, inspection.get("id")))
            population.append({**derived, **existing} if existing else derived)
    return population


def update_deficient_items_attrs(ctx: MetaContext, *, now: Optional[float] = None) -> MetaContext:
    population = _derived_population(ctx, now)

    excluded = set(settings.di_excluded_num_of_deficient_items_states)
    required = set(settings.di_required_action_states)
    follow_up = set(settings.di_follow_up_action_states)

    return ctx.with_updates(
        numOfDeficientItems=sum(1 for d in population if d.get("state") not in excluded),
        numOfRequiredActionsForDeficientItems=sum(1 for d in population if d.get("state") in required),
        numOfFollowUpActionsForDeficientItems=sum(1 for d in population if d.get("state") in follow_up),
    )


STAGES: tuple[Callable[[MetaContext], MetaContext], ...] = (
    update_num_of_inspections,
    update_last_inspection_attrs,
    update_deficient_items_attrs,
)


def property_meta_updates(ctx: MetaContext) -> dict[str, Any]:
    for stage in STAGES:
        ctx = stage(ctx)
    return dict(ctx.updates)


def to_property_paths(property_id: str, updates: Mapping[str, Any]) -> dict[str, Any]:
    return {f"/properties/{property_id}/{attr}": value for attr, value in updates.items()}
