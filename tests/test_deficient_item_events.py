from __future__ import annotations

import pytest

from deficiency_engine.errors import PreconditionViolation
from deficiency_engine.models import PropertyRow
from deficiency_engine.services.deficient_item_events import handle_archive_toggle, handle_state_change


def _create(repository, state="requires-action"):
    return repository.create("property-1", {"inspection": "inspection-1", "item": "item-1", "state": state})


def test_state_change_publishes_and_refreshes_across_classes(repository, stores, publisher):
    operational, _ = stores
    di_id = _create(repository)

    out = handle_state_change(repository, publisher, "property-1", di_id, "requires-action", "completed")

    assert out == {"published": True, "refreshed": True}
    assert publisher.messages == [f"property-1/{di_id}/state/completed"]
    assert operational.get(PropertyRow, "property-1") is not None


def test_state_change_within_required_class_skips_refresh(repository, publisher):
    di_id = _create(repository, state="overdue")

    out = handle_state_change(repository, publisher, "property-1", di_id, "requires-progress-update", "overdue")

    assert out == {"published": True, "refreshed": False}


def test_unchanged_state_does_nothing(repository, publisher):
    out = handle_state_change(repository, publisher, "property-1", "di-1", "pending", "pending")

    assert out == {"published": False, "refreshed": False}
    assert publisher.messages == []


def test_publish_failure_is_swallowed(repository, failing_publisher):
    out = handle_state_change(repository, failing_publisher, "property-1", "di-1", "pending", "overdue", refresh_meta=False)

    assert out["published"] is False


def test_archive_toggle_moves_and_repeats_as_no_op(repository, stores):
    operational, _ = stores
    di_id = _create(repository)

    first = handle_archive_toggle(repository, "property-1", di_id, True)
    second = handle_archive_toggle(repository, "property-1", di_id, True)

    assert first.changed is True
    assert second.changed is False
    assert repository.find_all_by_property("property-1") == []
    assert operational.get(PropertyRow, "property-1").num_of_deficient_items == 0


def test_archive_toggle_requires_bool(repository):
    with pytest.raises(PreconditionViolation):
        handle_archive_toggle(repository, "property-1", "di-1", "yes")
