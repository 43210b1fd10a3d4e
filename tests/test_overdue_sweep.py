from __future__ import annotations

from deficiency_engine.errors import RepositoryWriteError
from deficiency_engine.models import PropertyRow
from deficiency_engine.services.deficient_item_repository import DeficientItemRef
from deficiency_engine.services.inspection_source import InspectionSource
from deficiency_engine.services.overdue_sweep import sync_overdue_deficient_items

NOW = 1_700_000_000.0
DAY = 24 * 60 * 60


def _pending(repository, property_id="property-1", item="item-1", *, start, due, inspection="inspection-1"):
    return repository.create(
        property_id,
        {
            "inspection": inspection,
            "item": item,
            "state": "pending",
            "currentStartDate": start,
            "currentDueDate": due,
        },
    )


def test_past_due_pending_item_goes_overdue_and_refreshes_property(repository, stores, publisher, make_inspection):
    operational, _ = stores
    InspectionSource(operational).save(make_inspection())
    di_id = _pending(repository, start=NOW - 10 * DAY, due=NOW - 1)

    result = sync_overdue_deficient_items(repository, publisher, now=NOW)

    assert [(t.deficient_item_id, t.previous_state, t.state) for t in result.transitions] == [
        (di_id, "pending", "overdue")
    ]
    assert publisher.messages == [f"property-1/{di_id}/state/overdue"]
    assert result.properties_refreshed == ["property-1"]
    assert repository.find_record(DeficientItemRef("property-1", di_id)).state == "overdue"
    assert operational.get(PropertyRow, "property-1") is not None


def test_rerunning_the_sweep_is_a_no_op(repository, publisher):
    _pending(repository, start=NOW - 10 * DAY, due=NOW - 1)
    sync_overdue_deficient_items(repository, publisher, now=NOW, refresh_meta=False)

    again = sync_overdue_deficient_items(repository, publisher, now=NOW + 60, refresh_meta=False)

    assert again.transitions == []
    assert len(publisher.messages) == 1


def test_progress_update_then_overdue(repository, publisher):
    start = NOW - 6 * DAY
    di_id = _pending(repository, start=start, due=start + 10 * DAY)

    first = sync_overdue_deficient_items(repository, publisher, now=NOW, refresh_meta=False)
    second = sync_overdue_deficient_items(repository, publisher, now=start + 10 * DAY, refresh_meta=False)

    assert [t.state for t in first.transitions] == ["requires-progress-update"]
    assert [t.state for t in second.transitions] == ["overdue"]
    stored = repository.find_record(DeficientItemRef("property-1", di_id))
    assert [h["state"] for h in stored.data["stateHistory"]] == ["requires-progress-update", "overdue"]


def test_short_span_pending_item_is_never_nudged(repository, publisher):
    start = NOW - 3 * DAY
    _pending(repository, start=start, due=start + 4 * DAY)

    result = sync_overdue_deficient_items(repository, publisher, now=NOW, refresh_meta=False)

    assert result.transitions == []


def test_publish_failure_does_not_undo_transition(repository, failing_publisher):
    di_id = _pending(repository, start=NOW - 10 * DAY, due=NOW - 1)

    result = sync_overdue_deficient_items(repository, failing_publisher, now=NOW, refresh_meta=False)

    assert len(result.transitions) == 1
    assert repository.find_record(DeficientItemRef("property-1", di_id)).state == "overdue"


def test_failing_item_does_not_block_siblings(repository, publisher, monkeypatch):
    bad = _pending(repository, item="item-1", start=NOW - 10 * DAY, due=NOW - 1)
    good = _pending(repository, property_id="property-2", item="item-2", inspection="inspection-2", start=NOW - 10 * DAY, due=NOW - 1)
    real_update_state = repository.update_state

    def flaky_update_state(ref, new_state, **kwargs):
        if ref.deficient_item_id == bad:
            raise RepositoryWriteError("analytic down", store="analytic")
        return real_update_state(ref, new_state, **kwargs)

    monkeypatch.setattr(repository, "update_state", flaky_update_state)

    result = sync_overdue_deficient_items(repository, publisher, now=NOW, refresh_meta=False)

    assert result.failures == [bad]
    assert [t.deficient_item_id for t in result.transitions] == [good]
