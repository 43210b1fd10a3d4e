# deficiency_engine/schemas.py
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, StrictBool


# -------------------- Trigger events --------------------

class InspectionWriteEvent(BaseModel):
    """Create/update/delete of one inspection. `after is None` means deleted."""

    model_config = ConfigDict(extra="ignore")

    inspection_id: str
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None

    @property
    def deleted(self) -> bool:
        return self.after is None


class ArchiveToggleEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    property_id: str
    deficient_item_id: str
    # strict: a client writing "true" or 1 is not an archive request
    archiving: StrictBool


class StateChangeEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    property_id: str
    deficient_item_id: str
    before_state: Optional[str] = None
    after_state: Optional[str] = None
