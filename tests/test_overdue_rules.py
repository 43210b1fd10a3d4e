from __future__ import annotations

from deficiency_engine.domain.deficient_items import (
    changes_rollup_class,
    create_state_history_entry,
    next_state,
)

NOW = 1_700_000_000.0
DAY = 24 * 60 * 60


def _di(state, *, start, due, **extra):
    return {"state": state, "currentStartDate": start, "currentDueDate": due, **extra}


def test_pending_past_due_becomes_overdue():
    assert next_state(_di("pending", start=NOW - 10 * DAY, due=NOW - 1), now=NOW) == "overdue"


def test_progress_update_past_due_becomes_overdue():
    di = _di("requires-progress-update", start=NOW - 10 * DAY, due=NOW)
    assert next_state(di, now=NOW) == "overdue"


def test_already_overdue_is_a_no_op():
    assert next_state(_di("overdue", start=NOW - 10 * DAY, due=NOW - DAY), now=NOW) is None


def test_requires_action_is_not_overdue_eligible():
    assert next_state(_di("requires-action", start=NOW - 10 * DAY, due=NOW - DAY), now=NOW) is None


def test_pending_past_half_of_long_span_requires_progress_update():
    start = NOW - 6 * DAY
    di = _di("pending", start=start, due=start + 10 * DAY)

    assert next_state(di, now=NOW) == "requires-progress-update"


def test_pending_before_half_of_span_stays():
    start = NOW - 4 * DAY
    di = _di("pending", start=start, due=start + 10 * DAY)

    assert next_state(di, now=NOW) is None


def test_four_day_span_never_requires_progress_update():
    start = NOW - 4 * DAY
    due = start + 4 * DAY
    for elapsed in (0.5 * DAY, 2.5 * DAY, 3.9 * DAY, 4 * DAY - 1):
        assert next_state(_di("pending", start=start, due=due), now=start + elapsed) is None


def test_progress_note_flag_requires_will_require_progress_note():
    start = NOW - 6 * DAY
    di = _di("pending", start=start, due=start + 10 * DAY)

    assert next_state(di, now=NOW, requires_note_flag=True) is None
    assert next_state({**di, "willRequireProgressNote": True}, now=NOW, requires_note_flag=True) == "requires-progress-update"


def test_missing_due_date_never_transitions():
    assert next_state({"state": "pending", "currentStartDate": NOW - DAY}, now=NOW) is None


def test_rollup_class_changes():
    assert changes_rollup_class("pending", "overdue") is True
    assert changes_rollup_class("requires-progress-update", "overdue") is False
    assert changes_rollup_class("completed", "incomplete") is False
    assert changes_rollup_class("overdue", "completed") is True
    assert changes_rollup_class(None, "requires-action") is True


def test_state_history_entry():
    entry = create_state_history_entry("overdue", now=NOW)
    assert entry == {"state": "overdue", "createdAt": NOW}

    entry = create_state_history_entry("pending", now=NOW, start_date=NOW - DAY, user="user-1")
    assert entry["startDate"] == NOW - DAY
    assert entry["user"] == "user-1"
