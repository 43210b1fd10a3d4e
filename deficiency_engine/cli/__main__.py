# deficiency_engine/cli/__main__.py
from __future__ import annotations

import argparse
import json

from deficiency_engine.clients.ticket_board import TicketBoardClient
from deficiency_engine.db import init_db, store_sessions
from deficiency_engine.invocation import invocation_scope
from deficiency_engine.logging_config import configure_logging
from deficiency_engine.services.deficient_item_repository import DeficientItemRepository
from deficiency_engine.services.inspection_lifecycle import process_inspection_write
from deficiency_engine.services.inspection_source import InspectionSource
from deficiency_engine.services.overdue_sweep import sync_overdue_deficient_items
from deficiency_engine.services.property_meta_service import process_property_meta


def _print(out: dict) -> None:
    print(json.dumps(out, indent=2, default=str))


def _reconcile(args: argparse.Namespace) -> dict:
    with store_sessions() as (operational, analytic):
        repository = DeficientItemRepository(operational=operational, analytic=analytic, ticket_board=TicketBoardClient())
        inspection = InspectionSource(operational).find(args.inspection_id)
        result = process_inspection_write(repository, args.inspection_id, inspection)
    return {"ok": True, **result.as_dict()}


def _sync_overdue(args: argparse.Namespace) -> dict:
    with store_sessions() as (operational, analytic):
        repository = DeficientItemRepository(operational=operational, analytic=analytic, ticket_board=TicketBoardClient())
        publisher = None
        if args.publish:
            from deficiency_engine.services.status_publisher import CeleryStatusPublisher

            publisher = CeleryStatusPublisher()
        result = sync_overdue_deficient_items(repository, publisher)
    return {"ok": True, **result.as_dict()}


def _process_meta(args: argparse.Namespace) -> dict:
    with store_sessions() as (operational, analytic):
        result = process_property_meta(operational, analytic, args.property_id)
    return {"ok": True, "property_id": result.property_id, "updates": result.updates, "failed": result.failed}


def main() -> None:
    p = argparse.ArgumentParser(prog="deficiency-engine")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="create tables in both stores")

    rp = sub.add_parser("reconcile", help="reconcile deficient items of one inspection")
    rp.add_argument("--inspection-id", required=True)

    sp = sub.add_parser("sync-overdue", help="run the overdue sweep once")
    sp.add_argument("--publish", action="store_true", help="send status messages through celery")

    mp = sub.add_parser("process-meta", help="recompute one property's rollups")
    mp.add_argument("--property-id", required=True)

    args = p.parse_args()
    configure_logging()

    with invocation_scope():
        if args.command == "init-db":
            init_db()
            _print({"ok": True})
        elif args.command == "reconcile":
            _print(_reconcile(args))
        elif args.command == "sync-overdue":
            _print(_sync_overdue(args))
        elif args.command == "process-meta":
            _print(_process_meta(args))


if __name__ == "__main__":
    main()
