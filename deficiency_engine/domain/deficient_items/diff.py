# deficiency_engine/domain/deficient_items/diff.py
from __future__ import annotations

from typing import Any, Mapping

Keyed = Mapping[str, Mapping[str, Any]]


def _has_item(records: Keyed, item: Any) -> bool:
    return any(r.get("item") == item for r in records.values())


def find_missing(source: Keyed, target: Keyed) -> list[str]:
    """
    Keys of `source` whose `item` appears nowhere in `target`.

    (current, expected) -> DI ids to archive.
    (expected, current) -> inspection item ids needing a new DI.
    """
    return [key for key, record in source.items() if not _has_item(target, record.get("item"))]


def find_matching(current: Keyed, expected: Keyed) -> list[str]:
    """Keys of `current` whose `item` also appears in `expected`."""
    return [key for key, record in current.items() if _has_item(expected, record.get("item"))]
