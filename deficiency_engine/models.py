# deficiency_engine/models.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .db import AnalyticBase, OperationalBase


# -----------------------------
# Operational store: deficient items
# -----------------------------
class DeficientItemRow(OperationalBase):
    """Active path. One row per live DI; the unique key enforces one active DI per inspection item."""

    __tablename__ = "deficient_items"
    __table_args__ = (UniqueConstraint("inspection_id", "item_id", name="uq_deficient_items_inspection_item"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    property_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    inspection_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    item_id: Mapped[str] = mapped_column(String(64), nullable=False)

    state: Mapped[Optional[str]] = mapped_column(String(40), nullable=True, index=True)
    data_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    # bumped on every write; compare-and-set guard for concurrent invocations
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class ArchivedDeficientItemRow(OperationalBase):
    """Archive path. A DI lives in exactly one of the two tables."""

    __tablename__ = "archived_deficient_items"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    property_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    inspection_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    item_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    state: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    data_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    archived_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class TicketBoardCard(OperationalBase):
    __tablename__ = "ticket_board_cards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    property_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    deficient_item_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    card_id: Mapped[str] = mapped_column(String(64), nullable=False)
    card_url: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


# -----------------------------
# Operational store: inspection source + properties
# -----------------------------
class InspectionRow(OperationalBase):
    __tablename__ = "inspections"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    property_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    inspection_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # UNIX seconds, mirrored from the inspection document
    creation_date: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    updated_last_date: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    template_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class PropertyRow(OperationalBase):
    __tablename__ = "properties"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)

    # rollup counters (written path-by-path by the metadata aggregator)
    num_of_inspections: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_inspection_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    last_inspection_date: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    num_of_deficient_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    num_of_required_actions_for_deficient_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    num_of_follow_up_actions_for_deficient_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


# -----------------------------
# Analytic store
# -----------------------------
class DeficientItemDocument(AnalyticBase):
    __tablename__ = "deficient_item_documents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    property_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    inspection_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    item_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    state: Mapped[Optional[str]] = mapped_column(String(40), nullable=True, index=True)
    archive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)

    doc_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class PropertyDocument(AnalyticBase):
    __tablename__ = "property_documents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    doc_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
