# deficiency_engine/domain/deficient_items/proxy_sync.py
from __future__ import annotations

import copy
from typing import Any, Iterable, Mapping, Optional

from ...config import settings
from .derive import latest_admin_edit_timestamp


def compute_proxy_updates(
    expected: Mapping[str, Any],
    stored: Mapping[str, Any],
    *,
    source_item: Optional[Mapping[str, Any]] = None,
    proxy_attrs: Optional[Iterable[str]] = None,
) -> dict[str, Any]:
    """
    Sparse delta bringing a stored DI's proxy attributes in line with its
    freshly derived counterpart. `{}` means nothing to write.

    Rules:
      - only whitelisted proxy attrs; absent == None
      - a stored non-zero itemScore is always carried in the delta, taking
        the expected score when it has one, never regressing to 0
      - the source item's latest admin edit wins over an older
        itemDataLastUpdatedDate
    """
    attrs = settings.di_proxy_attrs if proxy_attrs is None else list(proxy_attrs)

    updates: dict[str, Any] = {}
    for attr in attrs:
        value = expected.get(attr)
        if value != stored.get(attr):
            updates[attr] = copy.deepcopy(value)

    if stored.get("itemScore"):
        updates["itemScore"] = expected.get("itemScore") or stored["itemScore"]

    latest_edit = latest_admin_edit_timestamp(source_item)
    if latest_edit and latest_edit > (stored.get("itemDataLastUpdatedDate") or 0):
        updates["itemDataLastUpdatedDate"] = latest_edit

    return updates
