from __future__ import annotations

from deficiency_engine.errors import RepositoryWriteError
from deficiency_engine.models import DeficientItemDocument, PropertyRow
from deficiency_engine.services.deficient_item_repository import DeficientItemRef
from deficiency_engine.services.inspection_lifecycle import process_inspection_write
from deficiency_engine.services.inspection_source import InspectionSource

NOW = 1_700_000_000.0


def test_first_write_creates_deficient_items(repository, make_inspection):
    result = process_inspection_write(repository, "inspection-1", make_inspection(), now=NOW, refresh_meta=False)

    assert len(result.created) == 1
    assert result.archived == [] and result.updated == [] and result.failed == []
    [di] = repository.find_all_by_inspection("inspection-1")
    assert di.data["item"] == "item-1"
    assert di.data["itemScore"] == 55
    assert di.state == "requires-action"


def test_rerun_on_unchanged_inspection_is_a_no_op(repository, make_inspection):
    inspection = make_inspection()
    process_inspection_write(repository, "inspection-1", inspection, now=NOW, refresh_meta=False)
    [before] = repository.find_all_by_inspection("inspection-1")

    result = process_inspection_write(repository, "inspection-1", inspection, now=NOW + 60, refresh_meta=False)

    assert not result.changed
    [after] = repository.find_all_by_inspection("inspection-1")
    assert after.version == before.version


def test_deleted_inspection_archives_every_live_item(repository, make_inspection, make_item):
    inspection = make_inspection(items={"item-1": make_item(), "item-2": make_item(index=2)})
    process_inspection_write(repository, "inspection-1", inspection, now=NOW, refresh_meta=False)
    assert len(repository.find_all_by_inspection("inspection-1")) == 2

    result = process_inspection_write(repository, "inspection-1", None, now=NOW, refresh_meta=False)

    assert len(result.archived) == 2
    assert result.created == [] and result.updated == []
    assert result.property_id == "property-1"
    assert repository.find_all_by_inspection("inspection-1") == []


def test_item_fixed_is_archived_and_newly_failed_item_is_created(repository, make_inspection, make_item):
    process_inspection_write(repository, "inspection-1", make_inspection(), now=NOW, refresh_meta=False)
    [original] = repository.find_all_by_inspection("inspection-1")

    changed = make_inspection(
        items={
            "item-1": make_item(selection=0),
            "item-2": make_item(index=2, title="Sink"),
        }
    )
    result = process_inspection_write(repository, "inspection-1", changed, now=NOW + 60, refresh_meta=False)

    assert result.archived == [original.id]
    assert len(result.created) == 1
    [current] = repository.find_all_by_inspection("inspection-1")
    assert current.data["item"] == "item-2"


def test_proxy_update_keeps_workflow_state(repository, make_inspection, make_item):
    process_inspection_write(repository, "inspection-1", make_inspection(), now=NOW, refresh_meta=False)
    [di] = repository.find_all_by_inspection("inspection-1")
    repository.update_state(di.ref, "pending", expected_state="requires-action", now=NOW)

    edited = make_inspection(
        items={
            "item-1": make_item(title="Smoke detector (hallway)", mainInputOneValue=0),
            "item-2": make_item(selection=0, index=2),
        }
    )
    result = process_inspection_write(repository, "inspection-1", edited, now=NOW + 60, refresh_meta=False)

    assert result.updated == [di.id]
    stored = repository.find_record(DeficientItemRef("property-1", di.id))
    assert stored.state == "pending"
    assert stored.data["itemTitle"] == "Smoke detector (hallway)"
    assert stored.data["itemScore"] == 55
    assert stored.data["updatedAt"] == NOW + 60


def test_incomplete_inspection_is_left_alone(repository, make_inspection):
    result = process_inspection_write(repository, "inspection-1", make_inspection(completed=False), now=NOW)

    assert result.skipped_reason == "not_tracking"
    assert repository.find_all_by_inspection("inspection-1") == []


def test_failed_item_does_not_block_siblings(repository, make_inspection, make_item, monkeypatch):
    inspection = make_inspection(items={"item-1": make_item(), "item-2": make_item(index=2)})
    real_create = repository.create

    def flaky_create(property_id, payload):
        if payload["item"] == "item-1":
            raise RepositoryWriteError("analytic down", store="analytic")
        return real_create(property_id, payload)

    monkeypatch.setattr(repository, "create", flaky_create)

    result = process_inspection_write(repository, "inspection-1", inspection, now=NOW, refresh_meta=False)

    assert result.failed == ["item-1"]
    assert len(result.created) == 1
    [di] = repository.find_all_by_inspection("inspection-1")
    assert di.data["item"] == "item-2"


def test_changes_refresh_property_rollups(repository, stores, make_inspection):
    operational, _ = stores
    inspection = make_inspection()
    InspectionSource(operational).save(inspection)

    process_inspection_write(repository, "inspection-1", inspection, now=NOW)

    row = operational.get(PropertyRow, "property-1")
    assert row.num_of_inspections == 1
    assert row.num_of_deficient_items == 1
    assert row.num_of_required_actions_for_deficient_items == 1
    assert row.last_inspection_score == 88.0


def test_failed_analytic_write_converges_on_next_pass(repository, stores, make_inspection, monkeypatch):
    _, analytic = stores
    inspection = make_inspection()
    real_write = repository._write_analytic
    calls = {"n": 0}

    def write_once_down(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RepositoryWriteError("analytic down", store="analytic")
        return real_write(*args, **kwargs)

    monkeypatch.setattr(repository, "_write_analytic", write_once_down)

    first = process_inspection_write(repository, "inspection-1", inspection, now=NOW, refresh_meta=False)
    assert first.failed == ["item-1"]
    [di] = repository.find_all_by_inspection("inspection-1")
    assert analytic.get(DeficientItemDocument, di.id) is None

    second = process_inspection_write(repository, "inspection-1", inspection, now=NOW + 60, refresh_meta=False)

    assert second.failed == []
    doc = analytic.get(DeficientItemDocument, di.id, populate_existing=True)
    assert doc is not None
    assert doc.archive is False
    assert doc.item_id == "item-1"
    [after] = repository.find_all_by_inspection("inspection-1")
    assert after.version == di.version


def test_items_keep_their_property_after_inspection_is_reassigned(repository, make_inspection, make_item):
    process_inspection_write(repository, "inspection-1", make_inspection(), now=NOW, refresh_meta=False)
    [di] = repository.find_all_by_inspection("inspection-1")

    moved = make_inspection(
        property_id="property-2",
        items={"item-1": make_item(title="New title"), "item-2": make_item(selection=0, index=2)},
    )
    result = process_inspection_write(repository, "inspection-1", moved, now=NOW + 60, refresh_meta=False)

    assert result.failed == []
    assert result.updated == [di.id]
    stored = repository.find_record(DeficientItemRef("property-1", di.id))
    assert stored.data["itemTitle"] == "New title"
