# deficiency_engine/domain/deficient_items/overdue.py
from __future__ import annotations

import time
from typing import Any, Iterable, Mapping, Optional

from ...config import settings

OVERDUE = "overdue"
PENDING = "pending"
REQUIRES_PROGRESS_UPDATE = "requires-progress-update"


def _num(v: Any) -> Optional[float]:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return None
    return float(v)


def next_state(
    di: Mapping[str, Any],
    *,
    now: float,
    overdue_eligible_states: Optional[Iterable[str]] = None,
    min_span_seconds: Optional[float] = None,
    requires_note_flag: Optional[bool] = None,
) -> Optional[str]:
    """
    State the sweep should move `di` to at `now`, or None.

    - overdue: state is overdue-eligible and the due date has passed
    - requires-progress-update: pending, span of at least 5 days and less
      than half of it left
    Both guards are false once the target state is reached, so a re-run
    never transitions twice.
    """
    eligible = set(settings.di_overdue_eligible_states if overdue_eligible_states is None else overdue_eligible_states)
    min_span = settings.di_progress_update_min_seconds if min_span_seconds is None else min_span_seconds
    needs_note = settings.di_progress_update_requires_note_flag if requires_note_flag is None else requires_note_flag

    state = di.get("state")
    due = _num(di.get("currentDueDate"))
    if due is None:
        return None

    if state in eligible and now >= due:
        return OVERDUE

    if state != PENDING:
        return None

    start = _num(di.get("currentStartDate"))
    if start is None:
        return None

    span = due - start
    if span < min_span:
        return None
    if needs_note and not di.get("willRequireProgressNote"):
        return None
    if (due - now) < span / 2:
        return REQUIRES_PROGRESS_UPDATE
    return None


def rollup_class(state: Optional[str]) -> Optional[str]:
    if state in settings.di_required_action_states:
        return "required"
    if state in settings.di_follow_up_action_states:
        return "follow_up"
    return None


def changes_rollup_class(before: Optional[str], after: Optional[str]) -> bool:
    """False only when both states are required-action, or both are follow-up."""
    b = rollup_class(before)
    return b is None or b != rollup_class(after)


def create_state_history_entry(
    state: str,
    *,
    now: Optional[float] = None,
    start_date: Optional[float] = None,
    user: Optional[str] = None,
) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "state": state,
        "createdAt": float(now) if now is not None else time.time(),
    }
    if start_date:
        entry["startDate"] = start_date
    if user:
        entry["user"] = user
    return entry
