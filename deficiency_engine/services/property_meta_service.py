# deficiency_engine/services/property_meta_service.py
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..domain.property_meta import MetaContext, property_meta_updates, to_property_paths
from ..models import PropertyDocument, PropertyRow
from .deficient_item_repository import DeficientItemRepository
from .inspection_source import InspectionSource

log = logging.getLogger("deficiency.property_meta")

# property document attribute -> PropertyRow column
PROPERTY_COLUMNS = {
    "numOfInspections": "num_of_inspections",
    "lastInspectionScore": "last_inspection_score",
    "lastInspectionDate": "last_inspection_date",
    "numOfDeficientItems": "num_of_deficient_items",
    "numOfRequiredActionsForDeficientItems": "num_of_required_actions_for_deficient_items",
    "numOfFollowUpActionsForDeficientItems": "num_of_follow_up_actions_for_deficient_items",
}

_PATH_RE = re.compile(r"^/properties/(?P<property_id>[^/]+)/(?P<attr>[^/]+)$")


def _utcnow() -> datetime:
    return datetime.utcnow()


@dataclass(frozen=True)
class PropertyMetaResult:
    property_id: str
    updates: dict[str, Any]
    written: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def write_property_paths(db: Session, paths: dict[str, Any]) -> tuple[list[str], list[str]]:
    """
    Persist each `/properties/{id}/{attr}` path independently.

    A failing path is logged and skipped; earlier paths stay written.
    """
    written: list[str] = []
    failed: list[str] = []

    for path, value in paths.items():
        m = _PATH_RE.match(path)
        column = PROPERTY_COLUMNS.get(m.group("attr")) if m else None
        if column is None:
            log.warning("property_path_unknown path=%s", path)
            failed.append(path)
            continue

        property_id = m.group("property_id")
        try:
            row = db.get(PropertyRow, property_id)
            if row is None:
                row = PropertyRow(id=property_id)
            setattr(row, column, value)
            row.updated_at = _utcnow()
            db.add(row)
            db.commit()
            written.append(path)
        except SQLAlchemyError as e:
            db.rollback()
            log.warning("property_path_write_failed path=%s err=%s", path, e, extra={"property_id": property_id})
            failed.append(path)

    return written, failed


def _upsert_property_document(db: Session, property_id: str, updates: dict[str, Any]) -> None:
    try:
        doc = db.get(PropertyDocument, property_id)
        if doc is None:
            doc = PropertyDocument(id=property_id)
        try:
            current = json.loads(doc.doc_json or "{}")
        except ValueError:
            current = {}
        current.update(updates)
        doc.doc_json = json.dumps(current, separators=(",", ":"), sort_keys=True, default=str)
        doc.updated_at = _utcnow()
        db.add(doc)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.warning("property_document_write_failed err=%s", e, extra={"property_id": property_id})


def process_property_meta(
    operational: Session,
    analytic: Session,
    property_id: str,
) -> PropertyMetaResult:
    """Recompute and persist one property's inspection and deficient item rollups."""
    inspections = InspectionSource(operational).query_by_property(property_id)
    repository = DeficientItemRepository(operational=operational, analytic=analytic)
    deficient_items = [
        {**d.data, "id": d.id}
        for d in repository.find_all_by_property(property_id)
        if d.data.get("state")
    ]

    updates = property_meta_updates(
        MetaContext(property_id=str(property_id), inspections=inspections, deficient_items=deficient_items)
    )
    written, failed = write_property_paths(operational, to_property_paths(str(property_id), updates))
    _upsert_property_document(analytic, str(property_id), updates)

    log.info(
        "property_meta_updated written=%s failed=%s",
        len(written),
        len(failed),
        extra={"property_id": property_id},
    )
    return PropertyMetaResult(property_id=str(property_id), updates=updates, written=written, failed=failed)


def refresh_property_meta(operational: Session, analytic: Session, property_id: str) -> bool:
    """Best-effort wrapper for callers whose own work already succeeded."""
    try:
        process_property_meta(operational, analytic, property_id)
        return True
    except Exception:
        log.warning("property_meta_refresh_failed", exc_info=True, extra={"property_id": property_id})
        return False
