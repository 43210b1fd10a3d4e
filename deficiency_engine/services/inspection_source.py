# deficiency_engine/services/inspection_source.py
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import InspectionRow


def _loads(s: Optional[str]) -> Optional[dict]:
    if not s:
        return None
    try:
        x = json.loads(s)
        return x if isinstance(x, dict) else None
    except Exception:
        return None


def _dumps(x: Optional[dict]) -> Optional[str]:
    if x is None:
        return None
    return json.dumps(x, separators=(",", ":"), sort_keys=True)


def inspection_document(row: InspectionRow) -> dict[str, Any]:
    """Row -> the inspection document shape the derivation engine reads."""
    doc: dict[str, Any] = {
        "id": row.id,
        "property": row.property_id,
        "inspectionCompleted": bool(row.inspection_completed),
        "creationDate": row.creation_date,
        "updatedLastDate": row.updated_last_date,
        "score": row.score,
    }
    template = _loads(row.template_json)
    if template is not None:
        doc["template"] = template
    return doc


class InspectionSource:
    """Read side of the external inspection store."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def find(self, inspection_id: str) -> Optional[dict[str, Any]]:
        row = self.db.get(InspectionRow, str(inspection_id))
        return inspection_document(row) if row is not None else None

    def query_by_property(self, property_id: str) -> list[dict[str, Any]]:
        rows = self.db.scalars(
            select(InspectionRow)
            .where(InspectionRow.property_id == str(property_id))
            .order_by(InspectionRow.creation_date.desc())
        ).all()
        return [inspection_document(r) for r in rows]

    def save(self, inspection: dict[str, Any]) -> InspectionRow:
        """Upsert from a document (seeding, CLI and tests)."""
        iid = str(inspection["id"])
        row = self.db.get(InspectionRow, iid)
        if row is None:
            row = InspectionRow(id=iid, property_id=str(inspection["property"]))

        row.property_id = str(inspection["property"])
        row.inspection_completed = bool(inspection.get("inspectionCompleted"))
        row.creation_date = inspection.get("creationDate")
        row.updated_last_date = inspection.get("updatedLastDate")
        row.score = inspection.get("score")
        row.template_json = _dumps(inspection.get("template"))
        row.updated_at = datetime.utcnow()

        self.db.add(row)
        self.db.commit()
        return row
