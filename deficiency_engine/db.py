# deficiency_engine/db.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import settings

log = logging.getLogger("deficiency.db")


class OperationalBase(DeclarativeBase):
    pass


class AnalyticBase(DeclarativeBase):
    pass


operational_engine = create_engine(
    settings.operational_database_url,
    pool_pre_ping=True,
    future=True,
)

analytic_engine = create_engine(
    settings.analytic_database_url,
    pool_pre_ping=True,
    future=True,
)

OperationalSession = sessionmaker(bind=operational_engine, autoflush=False)
AnalyticSession = sessionmaker(bind=analytic_engine, autoflush=False)


def init_db() -> None:
    """Create all tables in both stores (idempotent)."""
    from . import models  # noqa: F401  (registers mappers)

    OperationalBase.metadata.create_all(operational_engine)
    AnalyticBase.metadata.create_all(analytic_engine)


@contextmanager
def store_sessions() -> Iterator[tuple[Session, Session]]:
    """
    Yields (operational, analytic) sessions for one unit of work.

    The two stores are never committed together. On an exception each
    session is rolled back independently so a failed statement in one does
    not leave the other in an aborted transaction.
    """
    operational = OperationalSession()
    analytic = AnalyticSession()
    try:
        yield operational, analytic
    except Exception:
        for s in (operational, analytic):
            try:
                s.rollback()
            except Exception:
                log.warning("session_rollback_failed", exc_info=True)
        raise
    finally:
        operational.close()
        analytic.close()
