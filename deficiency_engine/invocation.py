# deficiency_engine/invocation.py
from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

invocation_id_ctx: ContextVar[str | None] = ContextVar("invocation_id", default=None)


def get_invocation_id() -> str | None:
    return invocation_id_ctx.get()


@contextmanager
def invocation_scope(invocation_id: str | None = None) -> Iterator[str]:
    """
    Tags everything logged inside the block with one invocation id.

    Celery passes its task id (stable across retries of the same message),
    so duplicate deliveries of one trigger event can be correlated in logs.
    Anything else (CLI, tests) gets a fresh UUID4.
    """
    iid = invocation_id or str(uuid.uuid4())
    token = invocation_id_ctx.set(iid)
    try:
        yield iid
    finally:
        invocation_id_ctx.reset(token)
