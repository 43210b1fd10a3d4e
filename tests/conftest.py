from __future__ import annotations

import os
import tempfile

# Point both stores at throwaway sqlite files before the package reads settings
_TMP = tempfile.mkdtemp(prefix="deficiency-tests-")
os.environ["OPERATIONAL_DATABASE_URL"] = f"sqlite:///{_TMP}/operational.db"
os.environ["ANALYTIC_DATABASE_URL"] = f"sqlite:///{_TMP}/analytic.db"
os.environ["APP_ENV"] = "test"
os.environ.pop("TICKET_BOARD_API_KEY", None)
os.environ.pop("TICKET_BOARD_AUTH_TOKEN", None)

import pytest  # noqa: E402

from deficiency_engine import models  # noqa: E402,F401
from deficiency_engine.db import (  # noqa: E402
    AnalyticBase,
    AnalyticSession,
    OperationalBase,
    OperationalSession,
    analytic_engine,
    operational_engine,
)
from deficiency_engine.services.deficient_item_repository import DeficientItemRepository  # noqa: E402
from deficiency_engine.services.status_publisher import status_message  # noqa: E402

NOW = 1_700_000_000.0
DAY = 24 * 60 * 60


class RecordingPublisher:
    def __init__(self, fail: bool = False) -> None:
        self.messages: list[str] = []
        self.fail = fail

    def publish(self, property_id: str, deficient_item_id: str, state: str) -> None:
        if self.fail:
            raise RuntimeError("broker unavailable")
        self.messages.append(status_message(property_id, deficient_item_id, state))


@pytest.fixture()
def stores():
    OperationalBase.metadata.drop_all(operational_engine)
    AnalyticBase.metadata.drop_all(analytic_engine)
    OperationalBase.metadata.create_all(operational_engine)
    AnalyticBase.metadata.create_all(analytic_engine)

    operational = OperationalSession()
    analytic = AnalyticSession()
    try:
        yield operational, analytic
    finally:
        operational.close()
        analytic.close()


@pytest.fixture()
def repository(stores):
    operational, analytic = stores
    return DeficientItemRepository(operational=operational, analytic=analytic)


@pytest.fixture()
def publisher():
    return RecordingPublisher()


@pytest.fixture()
def failing_publisher():
    return RecordingPublisher(fail=True)


@pytest.fixture()
def make_item():
    def _make(
        *,
        main_input_type: str = "twoactions_checkmarkx",
        selection=1,
        section_id: str = "section-1",
        index: int = 1,
        **overrides,
    ) -> dict:
        item = {
            "sectionId": section_id,
            "index": index,
            "itemType": "main",
            "mainInputType": main_input_type,
            "mainInputSelection": selection,
            "mainInputZeroValue": 0,
            "mainInputOneValue": 55,
            "title": "Smoke detector",
            "inspectorNotes": "Missing battery",
        }
        item.update(overrides)
        return item

    return _make


@pytest.fixture()
def make_inspection(make_item):
    def _make(
        *,
        inspection_id: str = "inspection-1",
        property_id: str = "property-1",
        items: dict | None = None,
        sections: dict | None = None,
        completed: bool = True,
        track: bool = True,
        creation_date: float = NOW - 10 * DAY,
        updated_last_date: float = NOW - 9 * DAY,
        score: float = 88.0,
    ) -> dict:
        if items is None:
            items = {
                "item-1": make_item(),
                "item-2": make_item(selection=0, index=2, title="Sink"),
            }
        if sections is None:
            sections = {"section-1": {"title": "Kitchen", "section_type": "single"}}
        return {
            "id": inspection_id,
            "property": property_id,
            "inspectionCompleted": completed,
            "creationDate": creation_date,
            "updatedLastDate": updated_last_date,
            "score": score,
            "template": {
                "trackDeficientItems": track,
                "items": items,
                "sections": sections,
            },
        }

    return _make
