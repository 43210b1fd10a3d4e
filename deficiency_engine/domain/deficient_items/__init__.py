# deficiency_engine/domain/deficient_items/__init__.py
from .derive import (
    ITEM_VALUE_NAMES,
    WHITELISTED_FALSEY_ATTRS,
    cleaned_photos_data,
    default_deficient_item,
    derive_deficient_items,
    has_deficient_item_tracking,
    has_valid_photos_data,
    is_deficient_item,
    item_score,
    latest_admin_edit_timestamp,
)
from .diff import find_matching, find_missing
from .overdue import (
    changes_rollup_class,
    create_state_history_entry,
    next_state,
    rollup_class,
)
from .proxy_sync import compute_proxy_updates

__all__ = [
    "ITEM_VALUE_NAMES",
    "WHITELISTED_FALSEY_ATTRS",
    "cleaned_photos_data",
    "default_deficient_item",
    "derive_deficient_items",
    "has_deficient_item_tracking",
    "has_valid_photos_data",
    "is_deficient_item",
    "item_score",
    "latest_admin_edit_timestamp",
    "find_matching",
    "find_missing",
    "changes_rollup_class",
    "create_state_history_entry",
    "next_state",
    "rollup_class",
    "compute_proxy_updates",
]
