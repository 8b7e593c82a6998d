"""
Clinic scheduler administrator CLI.

Usage:
  # Create tables in the configured database
  python -m clinic_scheduler.cli init-db

  # Auto-assign shifts for a date range
  python -m clinic_scheduler.cli assign --clinic 1 --start 2025-11-01 --end 2025-11-30

  # Re-evaluate held leave for one date
  python -m clinic_scheduler.cli reconcile --clinic 1 --date 2025-11-21

  # Slot status, optionally exported to Excel
  python -m clinic_scheduler.cli capacity --clinic 1 --start 2025-11-01 --end 2025-11-30 --out capacity.xlsx

  # Deploy a month; applies the fairness ledger update once
  python -m clinic_scheduler.cli deploy --clinic 1 --year 2025 --month 11 --actor admin
"""

import argparse
import logging
import sys
from datetime import date

import pandas as pd

from . import models  # noqa: F401
from .assignment import assign_range, warnings_of
from .database import Base, SerializableSession, SessionLocal, engine
from .deployment import deploy_schedule, find_schedule
from .errors import SchedulingError
from .reconcile import reconcile
from .slots import capacity_status

logger = logging.getLogger(__name__)

CAPACITY_COLUMNS = ["date", "category", "required", "total_staff", "allowed", "available", "approved", "onHold"]


def _date(s: str) -> date:
    try:
        return date.fromisoformat(s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO date: {s}")


def capacity_frame(status: dict) -> pd.DataFrame:
    rows = [
        {"date": d, "category": cat, **vals}
        for d, cats in status.items()
        for cat, vals in cats.items()
    ]
    return pd.DataFrame(rows, columns=CAPACITY_COLUMNS)


def cmd_init_db(args):
    Base.metadata.create_all(bind=engine)
    print(f"Tables created on {engine.url}")


def cmd_assign(args):
    results = assign_range(SerializableSession, args.clinic, args.start, args.end or args.start)
    for r in results:
        print(f"{r.date.isoformat()} [{r.dimension}] working={len(r.working)} leave={len(r.on_leave)} off={len(r.off)}")
    warnings = warnings_of(results)
    if warnings:
        print("\nWarnings:")
        for w in warnings:
            print(f"  {w}")


def cmd_reconcile(args):
    result = reconcile(SerializableSession, args.clinic, args.date)
    print(f"{result.date.isoformat()}: promoted {result.promoted}, still held {result.still_held}")


def cmd_capacity(args):
    db = SessionLocal()
    try:
        status = capacity_status(db, args.clinic, args.start, args.end or args.start)
    finally:
        db.close()
    df = capacity_frame(status)
    if args.out:
        with pd.ExcelWriter(args.out, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name="Capacity", index=False)
            if not df.empty:
                df.pivot(index="date", columns="category", values="available").to_excel(writer, sheet_name="Available")
        print(f"Wrote {len(df)} rows to {args.out}")
    else:
        print(df.to_string(index=False))


def cmd_deploy(args):
    db = SessionLocal()
    try:
        schedule_id = find_schedule(db, args.clinic, args.year, args.month).id
    finally:
        db.close()
    result = deploy_schedule(SerializableSession, args.clinic, schedule_id, actor=args.actor)
    print(f"Deployed {result.year}-{result.month:02d}; fairness updated for {len(result.deltas)} staff")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Clinic Scheduler administration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", help="Command")

    sub.add_parser("init-db", help="Create database tables")

    p_assign = sub.add_parser("assign", help="Auto-assign shifts")
    p_assign.add_argument("--clinic", type=int, required=True)
    p_assign.add_argument("--start", type=_date, required=True)
    p_assign.add_argument("--end", type=_date, default=None)

    p_rec = sub.add_parser("reconcile", help="Promote held leave where capacity allows")
    p_rec.add_argument("--clinic", type=int, required=True)
    p_rec.add_argument("--date", type=_date, required=True)

    p_cap = sub.add_parser("capacity", help="Show or export leave slot status")
    p_cap.add_argument("--clinic", type=int, required=True)
    p_cap.add_argument("--start", type=_date, required=True)
    p_cap.add_argument("--end", type=_date, default=None)
    p_cap.add_argument("--out", default=None, help="Excel output path")

    p_dep = sub.add_parser("deploy", help="Deploy a month's schedule")
    p_dep.add_argument("--clinic", type=int, required=True)
    p_dep.add_argument("--year", type=int, required=True)
    p_dep.add_argument("--month", type=int, required=True)
    p_dep.add_argument("--actor", default="cli")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not args.command:
        parser.print_help()
        sys.exit(1)

    dispatch = {
        "init-db": cmd_init_db,
        "assign": cmd_assign,
        "reconcile": cmd_reconcile,
        "capacity": cmd_capacity,
        "deploy": cmd_deploy,
    }
    try:
        dispatch[args.command](args)
    except SchedulingError as exc:
        logger.error("%s: %s", exc.reason.value, exc.message)
        sys.exit(2)


if __name__ == "__main__":
    main()
