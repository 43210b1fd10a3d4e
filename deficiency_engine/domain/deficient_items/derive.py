# deficiency_engine/domain/deficient_items/derive.py
from __future__ import annotations

import copy
import time
from typing import Any, Mapping, Optional

from ...config import settings
from ...errors import PreconditionViolation

ITEM_VALUE_NAMES = (
    "mainInputZeroValue",
    "mainInputOneValue",
    "mainInputTwoValue",
    "mainInputThreeValue",
    "mainInputFourValue",
)

# May legitimately be falsy (selection 0, no photos) and must survive pruning
WHITELISTED_FALSEY_ATTRS = frozenset({"itemMainInputSelection", "hasItemPhotoData"})


def default_deficient_item() -> dict[str, Any]:
    """A brand new DI record. Built per call; never share the result."""
    return {
        "createdAt": 0,
        "updatedAt": 0,
        "startDates": None,
        "currentStartDate": 0,
        "stateHistory": None,
        "state": "requires-action",
        "dueDates": None,
        "currentDueDate": 0,
        "plansToFix": None,
        "currentPlanToFix": "",
        "responsibilityGroups": None,
        "currentResponsibilityGroup": "",
        "progressNotes": None,
        "reasonsIncomplete": None,
        "currentReasonIncomplete": "",
        "completedPhotos": None,
        "itemDataLastUpdatedDate": 0,
        "sectionTitle": "",
        "sectionSubtitle": "",
        "sectionType": "",
        "itemAdminEdits": None,
        "itemInspectorNotes": "",
        "itemTitle": "",
        "itemMainInputType": "",
        "itemScore": 0,
        "itemMainInputSelection": 0,
        "itemPhotosData": None,
        "willRequireProgressNote": False,
    }


def has_deficient_item_tracking(inspection: Optional[Mapping[str, Any]]) -> bool:
    """Completed, has a template with items, and the template tracks deficient items."""
    if not inspection or not inspection.get("inspectionCompleted"):
        return False
    template = inspection.get("template") or {}
    return bool(template.get("trackDeficientItems")) and bool(template.get("items"))


def is_deficient_item(
    item: Mapping[str, Any],
    *,
    eligibility: Optional[Mapping[str, list[bool]]] = None,
) -> bool:
    matrix = settings.di_eligibility_matrix if eligibility is None else eligibility
    row = matrix.get(str(item.get("mainInputType") or "").lower())
    if not row:
        return False

    selection = item.get("mainInputSelection")
    if isinstance(selection, bool) or not isinstance(selection, int):
        return False
    if selection < 0 or selection >= len(row):
        return False
    return bool(row[selection])


def latest_admin_edit_timestamp(item: Optional[Mapping[str, Any]]) -> float:
    """Newest `edit_date` across an item's admin edits, 0 when there are none."""
    edits = (item or {}).get("adminEdits") or {}
    dates = [
        e.get("edit_date")
        for e in edits.values()
        if isinstance(e, Mapping) and isinstance(e.get("edit_date"), (int, float))
    ]
    if not dates:
        return 0
    return sorted(dates, reverse=True)[0]


def item_score(item: Mapping[str, Any]) -> float:
    selection = item.get("mainInputSelection")
    if isinstance(selection, bool) or not isinstance(selection, int):
        return 0
    if selection < 0 or selection >= len(ITEM_VALUE_NAMES):
        return 0
    return item.get(ITEM_VALUE_NAMES[selection]) or 0


def has_valid_photos_data(photos_data: Optional[Mapping[str, Any]]) -> bool:
    return any(
        isinstance(p, Mapping) and bool(p.get("downloadURL"))
        for p in (photos_data or {}).values()
    )


def cleaned_photos_data(photos_data: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    """Deep clone keeping only photos that were actually uploaded."""
    return {
        photo_id: copy.deepcopy(dict(p))
        for photo_id, p in (photos_data or {}).items()
        if isinstance(p, Mapping) and p.get("downloadURL")
    }


def _section_items(section_id: str, items: Mapping[str, Mapping[str, Any]]) -> list[Mapping[str, Any]]:
    siblings = [it for it in items.values() if it.get("sectionId") == section_id]
    return sorted(siblings, key=lambda it: it.get("index") or 0)


def _section_subtitle(section_id: str, items: Mapping[str, Mapping[str, Any]]) -> Optional[str]:
    siblings = _section_items(section_id, items)
    if not siblings:
        return None
    first = siblings[0]
    if first.get("itemType") == "text_input" and first.get("textInputValue"):
        return first["textInputValue"]
    return None


def _prune_falsey(record: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in record.items() if v or k in WHITELISTED_FALSEY_ATTRS}


def _assert_derivable(inspection: Mapping[str, Any]) -> None:
    if not isinstance(inspection, Mapping):
        raise PreconditionViolation("derive: inspection must be a mapping")
    if not inspection.get("id"):
        raise PreconditionViolation("derive: inspection has no id")
    if not inspection.get("inspectionCompleted"):
        raise PreconditionViolation(f"derive: inspection {inspection['id']} is not completed")
    template = inspection.get("template")
    if not template:
        raise PreconditionViolation(f"derive: inspection {inspection['id']} has no template")
    if not template.get("items"):
        raise PreconditionViolation(f"derive: inspection {inspection['id']} template has no items")
    if not template.get("trackDeficientItems"):
        raise PreconditionViolation(f"derive: inspection {inspection['id']} does not track deficient items")


def derive_deficient_items(
    inspection: Mapping[str, Any],
    *,
    now: Optional[float] = None,
    eligibility: Optional[Mapping[str, list[bool]]] = None,
) -> dict[str, dict[str, Any]]:
    """
    Expected deficient items of a completed inspection, keyed by inspection item id.

    Callers must guard with `has_deficient_item_tracking`; a non-derivable
    inspection raises PreconditionViolation.
    """
    _assert_derivable(inspection)

    ts = float(now) if now is not None else time.time()
    template = inspection["template"]
    sections = template.get("sections") or {}
    items = {item_id: {"id": item_id, **raw} for item_id, raw in template["items"].items()}

    result: dict[str, dict[str, Any]] = {}

    for item_id, item in items.items():
        if not is_deficient_item(item, eligibility=eligibility):
            continue

        section = sections.get(item.get("sectionId")) or {}
        section_type = section.get("section_type") or "single"

        section_subtitle = None
        if section_type == "multi" and item.get("sectionId"):
            section_subtitle = _section_subtitle(item["sectionId"], items)

        has_photos = has_valid_photos_data(item.get("photosData"))

        record = default_deficient_item()
        record.update(
            {
                "property": inspection.get("property"),
                "inspection": inspection["id"],
                "item": item_id,
                "createdAt": ts,
                "updatedAt": ts,
                "itemMainInputType": item.get("mainInputType"),
                "sectionTitle": section.get("title"),
                "itemTitle": item.get("title"),
                "itemInspectorNotes": item.get("inspectorNotes"),
                "itemAdminEdits": copy.deepcopy(item["adminEdits"]) if item.get("adminEdits") else None,
                "itemPhotosData": cleaned_photos_data(item.get("photosData")) if has_photos else None,
                "hasItemPhotoData": has_photos,
                "itemMainInputSelection": item.get("mainInputSelection"),
                "itemDataLastUpdatedDate": latest_admin_edit_timestamp(item) or inspection.get("updatedLastDate"),
                "sectionSubtitle": section_subtitle,
                "sectionType": section_type,
                "itemScore": item_score(item),
            }
        )

        result[item_id] = _prune_falsey(record)

    return result
