# deficiency_engine/services/deficient_item_repository.py
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..clients.ticket_board import TicketBoardClient
from ..domain.deficient_items.overdue import create_state_history_entry
from ..errors import NotFoundError, PreconditionViolation, RepositoryWriteError, TicketBoardError
from ..models import ArchivedDeficientItemRow, DeficientItemDocument, DeficientItemRow, TicketBoardCard

log = logging.getLogger("deficiency.repository")

# -----------------------------------------------------------------------------
# Dual-store DI repository
# -----------------------------------------------------------------------------
# Operational store: `deficient_items` (active path) and
# `archived_deficient_items` (archive path). A DI lives in exactly one.
# Analytic store: one document per DI carrying an `archive` flag.
#
# Writes go operational first, analytic second, and are NOT transactional
# across stores. A failed analytic write raises RepositoryWriteError and
# leaves the operational write in place; the next pass converges.
#
# Every operational write is guarded by `version` (compare-and-set).
# -----------------------------------------------------------------------------

CAS_ATTEMPTS = 3


def _utcnow() -> datetime:
    return datetime.utcnow()


def _loads(s: Optional[str]) -> dict:
    if not s:
        return {}
    try:
        x = json.loads(s)
        return x if isinstance(x, dict) else {}
    except Exception:
        return {}


def _dumps(x: Optional[dict]) -> str:
    return json.dumps(x or {}, separators=(",", ":"), sort_keys=True, default=str)


@dataclass(frozen=True)
class DeficientItemRef:
    property_id: str
    deficient_item_id: str


@dataclass(frozen=True)
class StoredDeficientItem:
    id: str
    property_id: str
    data: dict[str, Any] = field(default_factory=dict)
    archived: bool = False
    version: int = 1

    @property
    def ref(self) -> DeficientItemRef:
        return DeficientItemRef(self.property_id, self.id)

    @property
    def state(self) -> Optional[str]:
        return self.data.get("state")


@dataclass(frozen=True)
class ArchiveResult:
    archived: bool  # where the DI is now
    changed: bool  # whether this call moved it
    external_card_changed: Optional[str] = None  # id of the ticket-board card that followed


def _stored(row: DeficientItemRow | ArchivedDeficientItemRow, *, archived: bool) -> StoredDeficientItem:
    return StoredDeficientItem(
        id=row.id,
        property_id=row.property_id,
        data=_loads(row.data_json),
        archived=archived,
        version=int(row.version or 1),
    )


class DeficientItemRepository:
    def __init__(
        self,
        *,
        operational: Session,
        analytic: Session,
        ticket_board: Optional[TicketBoardClient] = None,
    ) -> None:
        if operational is None or analytic is None:
            raise PreconditionViolation("DeficientItemRepository requires both store sessions")
        self.operational = operational
        self.analytic = analytic
        self.ticket_board = ticket_board

    # ---------------- reads ----------------

    def _active_row(self, deficient_item_id: str) -> Optional[DeficientItemRow]:
        return self.operational.scalar(
            select(DeficientItemRow)
            .where(DeficientItemRow.id == str(deficient_item_id))
            .execution_options(populate_existing=True)
        )

    def _archived_row(self, deficient_item_id: str) -> Optional[ArchivedDeficientItemRow]:
        return self.operational.scalar(
            select(ArchivedDeficientItemRow)
            .where(ArchivedDeficientItemRow.id == str(deficient_item_id))
            .execution_options(populate_existing=True)
        )

    def find_all_by_inspection(self, inspection_id: str) -> list[StoredDeficientItem]:
        rows = self.operational.scalars(
            select(DeficientItemRow)
            .where(DeficientItemRow.inspection_id == str(inspection_id))
            .order_by(DeficientItemRow.created_at.asc(), DeficientItemRow.id.asc())
        ).all()
        return [_stored(r, archived=False) for r in rows]

    def find_all_by_property(self, property_id: str) -> list[StoredDeficientItem]:
        rows = self.operational.scalars(
            select(DeficientItemRow)
            .where(DeficientItemRow.property_id == str(property_id))
            .order_by(DeficientItemRow.created_at.asc(), DeficientItemRow.id.asc())
        ).all()
        return [_stored(r, archived=False) for r in rows]

    def find_record(self, ref: DeficientItemRef) -> Optional[StoredDeficientItem]:
        """Active or archived; None if the DI is in neither path."""
        row = self._active_row(ref.deficient_item_id)
        if row is not None and row.property_id == ref.property_id:
            return _stored(row, archived=False)
        arow = self._archived_row(ref.deficient_item_id)
        if arow is not None and arow.property_id == ref.property_id:
            return _stored(arow, archived=True)
        return None

    def list_property_ids(self) -> list[str]:
        """Properties that currently have active DIs."""
        return list(
            self.operational.scalars(
                select(DeficientItemRow.property_id).distinct().order_by(DeficientItemRow.property_id)
            ).all()
        )

    # ---------------- store helpers ----------------

    def _commit_operational(self, what: str) -> None:
        try:
            self.operational.commit()
        except OperationalError:
            self.operational.rollback()
            raise
        except SQLAlchemyError as e:
            self.operational.rollback()
            raise RepositoryWriteError(f"{what}: operational write failed: {e}", store="operational") from e

    def _write_analytic(self, deficient_item_id: str, data: dict[str, Any], *, archive: bool) -> None:
        try:
            doc = self.analytic.get(DeficientItemDocument, str(deficient_item_id))
            if doc is None:
                doc = DeficientItemDocument(id=str(deficient_item_id))
            doc.property_id = str(data.get("property") or "")
            doc.inspection_id = str(data.get("inspection") or "")
            doc.item_id = str(data.get("item") or "")
            doc.state = data.get("state")
            doc.archive = bool(archive)
            doc.doc_json = _dumps({**data, "archive": bool(archive)})
            doc.updated_at = _utcnow()
            self.analytic.add(doc)
            self.analytic.commit()
        except SQLAlchemyError as e:
            self.analytic.rollback()
            raise RepositoryWriteError(
                f"analytic write failed for deficient item {deficient_item_id}: {e}",
                store="analytic",
            ) from e

    # ---------------- create / update ----------------

    def create(self, property_id: str, payload: dict[str, Any]) -> str:
        """
        Create a DI in both stores and return its id.

        Duplicate deliveries return the id of the active DI already holding
        (inspection, item). An archived DI for the same (property,
        inspection, item) is recovered under its own id with its stored
        workflow fields winning over `payload`.
        """
        inspection_id = payload.get("inspection")
        item_id = payload.get("item")
        if not property_id or not inspection_id or not item_id:
            raise PreconditionViolation("create: property, inspection and item are required")

        existing = self.operational.scalar(
            select(DeficientItemRow).where(
                DeficientItemRow.inspection_id == str(inspection_id),
                DeficientItemRow.item_id == str(item_id),
            )
        )
        if existing is not None:
            log.info(
                "deficient_item_exists",
                extra={"property_id": property_id, "inspection_id": inspection_id, "deficient_item_id": existing.id},
            )
            self.repair_analytic(existing.id)
            return existing.id

        archived = self.operational.scalar(
            select(ArchivedDeficientItemRow)
            .where(
                ArchivedDeficientItemRow.property_id == str(property_id),
                ArchivedDeficientItemRow.inspection_id == str(inspection_id),
                ArchivedDeficientItemRow.item_id == str(item_id),
            )
            .order_by(ArchivedDeficientItemRow.archived_at.desc())
        )

        if archived is not None:
            di_id = archived.id
            data = {**payload, **_loads(archived.data_json), "property": str(property_id)}
            version = int(archived.version or 1) + 1
            created_at = archived.created_at
            self.operational.delete(archived)
        else:
            di_id = uuid.uuid4().hex
            data = {**payload, "property": str(property_id)}
            version = 1
            created_at = _utcnow()

        self.operational.add(
            DeficientItemRow(
                id=di_id,
                property_id=str(property_id),
                inspection_id=str(inspection_id),
                item_id=str(item_id),
                state=data.get("state"),
                data_json=_dumps(data),
                version=version,
                created_at=created_at,
                updated_at=_utcnow(),
            )
        )

        try:
            self.operational.commit()
        except IntegrityError:
            # lost the race against a concurrent create for the same item
            self.operational.rollback()
            winner = self.operational.scalar(
                select(DeficientItemRow.id).where(
                    DeficientItemRow.inspection_id == str(inspection_id),
                    DeficientItemRow.item_id == str(item_id),
                )
            )
            if winner is None:
                raise RepositoryWriteError(
                    f"create: conflicting write for item {item_id} of inspection {inspection_id}",
                    store="operational",
                )
            return winner
        except OperationalError:
            self.operational.rollback()
            raise
        except SQLAlchemyError as e:
            self.operational.rollback()
            raise RepositoryWriteError(f"create: operational write failed: {e}", store="operational") from e

        if archived is not None:
            log.info(
                "deficient_item_recovered_from_archive",
                extra={"property_id": property_id, "inspection_id": inspection_id, "deficient_item_id": di_id},
            )

        self._write_analytic(di_id, data, archive=False)
        return di_id

    def update(self, property_id: str, deficient_item_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Merge `payload` into the active DI in both stores; returns the merged record."""
        for _ in range(CAS_ATTEMPTS):
            row = self._active_row(deficient_item_id)
            if row is None or row.property_id != str(property_id):
                raise NotFoundError(f"active deficient item {deficient_item_id} not found")

            merged = {**_loads(row.data_json), **payload}
            result = self.operational.execute(
                update(DeficientItemRow)
                .where(DeficientItemRow.id == row.id, DeficientItemRow.version == row.version)
                .values(
                    data_json=_dumps(merged),
                    state=merged.get("state"),
                    version=DeficientItemRow.version + 1,
                    updated_at=_utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.operational.rollback()
                continue

            self._commit_operational(f"update {deficient_item_id}")
            self._write_analytic(str(deficient_item_id), merged, archive=False)
            return merged

        raise RepositoryWriteError(
            f"update {deficient_item_id}: concurrent writes, gave up after {CAS_ATTEMPTS} attempts",
            store="operational",
        )

    def update_state(
        self,
        ref: DeficientItemRef,
        new_state: str,
        *,
        expected_state: str,
        now: float,
        user: Optional[str] = None,
    ) -> bool:
        """
        Compare-and-set the DI state from `expected_state` to `new_state`,
        appending a stateHistory entry. False when the DI is no longer active
        or someone else moved its state first.
        """
        for _ in range(CAS_ATTEMPTS):
            row = self._active_row(ref.deficient_item_id)
            if row is None or row.property_id != ref.property_id:
                return False

            data = _loads(row.data_json)
            if data.get("state") != expected_state:
                return False

            history = list(data.get("stateHistory") or [])
            history.append(create_state_history_entry(new_state, now=now, user=user))
            data.update({"state": new_state, "stateHistory": history, "updatedAt": now})

            result = self.operational.execute(
                update(DeficientItemRow)
                .where(DeficientItemRow.id == row.id, DeficientItemRow.version == row.version)
                .values(
                    data_json=_dumps(data),
                    state=new_state,
                    version=DeficientItemRow.version + 1,
                    updated_at=_utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.operational.rollback()
                continue

            self._commit_operational(f"update_state {ref.deficient_item_id}")
            self._write_analytic(ref.deficient_item_id, data, archive=False)
            return True

        return False

    # ---------------- archive ----------------

    def toggle_archive(self, ref: DeficientItemRef, archiving: bool) -> ArchiveResult:
        """
        Move a DI between the active and archive paths.

        Decided against where the record actually is, so repeating a request
        is a no-op. The ticket-board card follows best-effort; its failures
        never undo the move.
        """
        if not isinstance(archiving, bool):
            raise PreconditionViolation("toggle_archive: archiving must be a bool")

        for _ in range(CAS_ATTEMPTS):
            active = self._active_row(ref.deficient_item_id)
            archived = self._archived_row(ref.deficient_item_id)

            if active is not None and active.property_id != ref.property_id:
                active = None
            if archived is not None and archived.property_id != ref.property_id:
                archived = None

            if active is None and archived is None:
                raise NotFoundError(f"deficient item {ref.deficient_item_id} not found")

            source = active if archiving else archived
            if source is None:
                self._repair_analytic_flag(active or archived, archive=archiving)
                return ArchiveResult(archived=archiving, changed=False)

            if not self._move(source, archiving=archiving):
                continue

            data = _loads(source.data_json)
            self._write_analytic(ref.deficient_item_id, data, archive=archiving)
            log.info(
                "deficient_item_archived" if archiving else "deficient_item_unarchived",
                extra={
                    "property_id": ref.property_id,
                    "inspection_id": data.get("inspection"),
                    "deficient_item_id": ref.deficient_item_id,
                },
            )

            card_changed = self._sync_ticket_board_card(ref, archiving)
            return ArchiveResult(archived=archiving, changed=True, external_card_changed=card_changed)

        raise RepositoryWriteError(
            f"toggle_archive {ref.deficient_item_id}: concurrent writes, gave up after {CAS_ATTEMPTS} attempts",
            store="operational",
        )

    def _move(self, source: DeficientItemRow | ArchivedDeficientItemRow, *, archiving: bool) -> bool:
        """Delete from one path and insert into the other in one operational transaction."""
        src_model = DeficientItemRow if archiving else ArchivedDeficientItemRow
        deleted = self.operational.execute(
            delete(src_model)
            .where(src_model.id == source.id, src_model.version == source.version)
            .execution_options(synchronize_session=False)
        )
        if deleted.rowcount != 1:
            self.operational.rollback()
            return False

        common = dict(
            id=source.id,
            property_id=source.property_id,
            inspection_id=source.inspection_id,
            item_id=source.item_id,
            state=source.state,
            data_json=source.data_json,
            version=int(source.version or 1) + 1,
            created_at=source.created_at,
        )
        self.operational.expunge(source)
        if archiving:
            self.operational.add(ArchivedDeficientItemRow(**common, archived_at=_utcnow()))
        else:
            self.operational.add(DeficientItemRow(**common, updated_at=_utcnow()))

        try:
            self.operational.commit()
        except IntegrityError as e:
            self.operational.rollback()
            raise RepositoryWriteError(
                f"unarchive {source.id}: another active deficient item holds item {source.item_id}",
                store="operational",
            ) from e
        except OperationalError:
            self.operational.rollback()
            raise
        except SQLAlchemyError as e:
            self.operational.rollback()
            raise RepositoryWriteError(f"move {source.id}: operational write failed: {e}", store="operational") from e
        return True

    def _repair_analytic_flag(self, row: DeficientItemRow | ArchivedDeficientItemRow, *, archive: bool) -> None:
        """Converge the analytic document after an earlier half-applied toggle."""
        doc = self.analytic.get(DeficientItemDocument, row.id)
        if doc is not None and bool(doc.archive) == archive:
            return
        log.info("deficient_item_analytic_repaired", extra={"property_id": row.property_id, "deficient_item_id": row.id})
        self._write_analytic(row.id, _loads(row.data_json), archive=archive)

    def repair_analytic(self, deficient_item_id: str) -> bool:
        """
        Rewrite the analytic document of an active DI when it is missing or
        differs from the operational record. True when a write happened.
        """
        row = self._active_row(deficient_item_id)
        if row is None:
            return False
        data = _loads(row.data_json)
        doc = self.analytic.get(DeficientItemDocument, row.id, populate_existing=True)
        if doc is not None and not doc.archive and doc.doc_json == _dumps({**data, "archive": False}):
            return False
        log.info("deficient_item_analytic_repaired", extra={"property_id": row.property_id, "deficient_item_id": row.id})
        self._write_analytic(row.id, data, archive=False)
        return True

    def _sync_ticket_board_card(self, ref: DeficientItemRef, archiving: bool) -> Optional[str]:
        card = self.find_card(ref)
        if card is None:
            return None
        if self.ticket_board is None or not self.ticket_board.enabled():
            log.debug("ticket_board_not_configured", extra={"deficient_item_id": ref.deficient_item_id})
            return None

        try:
            self.ticket_board.archive_card(card.card_id, archiving)
            return card.card_id
        except TicketBoardError as e:
            extra = {"property_id": ref.property_id, "deficient_item_id": ref.deficient_item_id}
            if e.removed_upstream:
                log.info("ticket_board_card_already_deleted", extra=extra)
                self._remove_card_reference(card)
            else:
                log.warning("ticket_board_card_archive_failed kind=%s err=%s", e.kind.value, e, extra=extra)
            return None

    def _remove_card_reference(self, card: TicketBoardCard) -> None:
        try:
            self.operational.delete(card)
            self.operational.commit()
        except SQLAlchemyError:
            self.operational.rollback()
            log.warning("ticket_board_card_cleanup_failed", exc_info=True, extra={"deficient_item_id": card.deficient_item_id})

    # ---------------- card references ----------------

    def attach_card(self, ref: DeficientItemRef, card_id: str, card_url: Optional[str] = None) -> TicketBoardCard:
        card = self.find_card(ref)
        if card is None:
            card = TicketBoardCard(property_id=ref.property_id, deficient_item_id=ref.deficient_item_id, card_id=card_id)
        card.card_id = card_id
        card.card_url = card_url
        self.operational.add(card)
        self._commit_operational(f"attach_card {ref.deficient_item_id}")
        return card

    def find_card(self, ref: DeficientItemRef) -> Optional[TicketBoardCard]:
        return self.operational.scalar(
            select(TicketBoardCard).where(TicketBoardCard.deficient_item_id == ref.deficient_item_id)
        )
