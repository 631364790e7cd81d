#!/usr/bin/env python3
"""Check and fix how dates are stored on bills.

Bills should hold createdAt, date, dueDate and updatedAt as native
timestamps. Some older bills hold a plain {seconds, nanoseconds} map, a
string, or a bare date instead. This tool:

  1. Reports the stored type of each date field on every bill (--check
     stops here).
  2. Plans a conversion for every non-native field, keeping the same
     instant (maps are rebuilt exactly, strings are parsed as calendar
     dates, naive values are read as UTC).
  3. Asks for confirmation, then updates one bill at a time. Fields that
     are already native or absent are left alone; a bill with a value
     that cannot be converted is reported as failed and not written.
     Values of an unknown shape (a bare number, say) are reported by
     --check but never rewritten.
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from billtools.helpers.bill_common import EXIT_FATAL, EXIT_INTERRUPTED, EXIT_OK, eprint, rule, setup_logger, truncate
from billtools.helpers.bills import BILL_ID_FIELD, TIME_FIELDS
from billtools.helpers.record_store import RecordStore, StoreError
from billtools.helpers.reconcile import (
    ApplyResult,
    ConfirmFn,
    RepairOutcome,
    UpdateEntry,
    apply_updates,
    assume_yes,
    console_confirm,
    exit_code_for,
    print_result,
    run_repair,
    write_audit,
)
from billtools.helpers.store_config import ConfigError, add_store_arguments, config_from_args, open_store
from billtools.helpers.timestamps import (
    AbsentTime,
    TimeKind,
    Timestamp,
    TimestampParseError,
    UnrecognizedTime,
    classify_time_value,
    needs_fix,
    normalize_time,
)
from billtools.maintenance.diagnose_bills import ScanFailure

LOG = logging.getLogger("fix_date_formats")


@dataclass
class TimestampRow:
    doc_id: str
    bill_id: str
    kinds: Dict[str, TimeKind]

    @property
    def needs_fix(self) -> bool:
        return any(needs_fix(k) for k in self.kinds.values())


@dataclass
class TimestampReport:
    total: int
    needs_fix: int
    correct: int
    rows: List[TimestampRow] = field(default_factory=list)


@dataclass
class TimestampFix:
    doc_id: str
    bill_id: str
    conversions: Dict[str, Timestamp] = field(default_factory=dict)
    originals: Dict[str, TimeKind] = field(default_factory=dict)
    unconvertible: Dict[str, str] = field(default_factory=dict)
    left_as_is: Dict[str, TimeKind] = field(default_factory=dict)


@dataclass
class TimestampPlan:
    entries: List[TimestampFix] = field(default_factory=list)

    def work(self) -> List[TimestampFix]:
        return [e for e in self.entries if e.conversions or e.unconvertible]

    def __len__(self) -> int:
        return len(self.work())


def check_timestamps(store: RecordStore) -> TimestampReport:
    """Read-only: the stored kind of every date field on every bill."""
    try:
        docs = store.list_all()
    except StoreError as e:
        raise ScanFailure(f"Failed to read bills from {store.describe()}: {e}") from e

    rows: List[TimestampRow] = []
    for doc in docs:
        kinds = {name: classify_time_value(doc.data.get(name)) for name in TIME_FIELDS}
        rows.append(TimestampRow(doc.id, doc.data.get(BILL_ID_FIELD) or doc.id, kinds))
    fix_count = sum(1 for r in rows if r.needs_fix)
    return TimestampReport(total=len(rows), needs_fix=fix_count, correct=len(rows) - fix_count, rows=rows)


def plan_timestamp_fixes(report: TimestampReport) -> TimestampPlan:
    plan = TimestampPlan()
    for row in report.rows:
        fix = TimestampFix(row.doc_id, row.bill_id)
        for name, kind in row.kinds.items():
            if not needs_fix(kind):
                continue
            if isinstance(kind, UnrecognizedTime):
                # Reported by --check, never rewritten
                fix.left_as_is[name] = kind
                continue
            fix.originals[name] = kind
            try:
                fix.conversions[name] = normalize_time(kind)
            except TimestampParseError as e:
                fix.unconvertible[name] = str(e)
        plan.entries.append(fix)
    return plan


def timestamp_updates(plan: TimestampPlan) -> List[UpdateEntry]:
    entries = []
    for fix in plan.entries:
        if fix.unconvertible:
            reasons = "; ".join(f"{k}: {v}" for k, v in sorted(fix.unconvertible.items()))
            entries.append(UpdateEntry(fix.doc_id, fix.bill_id, error=reasons))
        elif fix.conversions:
            names = ", ".join(fix.conversions)
            entries.append(UpdateEntry(fix.doc_id, fix.bill_id, dict(fix.conversions), f"Converted {names} to Timestamp"))
        else:
            entries.append(UpdateEntry(fix.doc_id, fix.bill_id, note="Dates already in correct format"))
    return entries


def _audit_rows(plan: TimestampPlan) -> List[dict]:
    rows = []
    for fix in plan.work():
        rows.append({
            "doc_id": fix.doc_id,
            "bill_id": fix.bill_id,
            "fields": {
                name: {
                    "old": repr(kind),
                    "new": fix.conversions[name].to_rfc3339() if name in fix.conversions else None,
                }
                for name, kind in fix.originals.items()
            },
        })
    return rows


def fix_timestamps(
    store: RecordStore,
    confirm: ConfirmFn,
    audit_dir: Optional[str] = None,
    report: bool = False,
) -> RepairOutcome:
    def _scan() -> TimestampReport:
        r = check_timestamps(store)
        if report:
            print_timestamp_report(r)
        return r

    def _apply(plan: TimestampPlan) -> ApplyResult:
        store.backup()
        result = apply_updates(store, timestamp_updates(plan))
        if audit_dir:
            write_audit(audit_dir, "fix_date_formats", {"store": store.describe()}, _audit_rows(plan), result)
        return result

    return run_repair(
        "Date format fix",
        scan=_scan,
        make_plan=plan_timestamp_fixes,
        confirm=confirm,
        apply=_apply,
        render=print_timestamp_plan if report else None,
    )


# ----------------------------
# Reporting
# ----------------------------
def _kind_cell(kind: TimeKind) -> str:
    if isinstance(kind, AbsentTime):
        return "-"
    return kind.label if not needs_fix(kind) else f"{kind.label} (fix)"


def print_timestamp_report(report: TimestampReport) -> None:
    print()
    print("=== Date Format Check ===")
    print(f"Total bills:        {report.total}")
    print(f"Bills needing fix:  {report.needs_fix}")
    print(f"Bills correct:      {report.correct}")
    print()
    if not report.needs_fix:
        print("All dates are stored as timestamps.")
        print()
        return
    print(rule(96))
    header = f"{'Firestore ID':<22}| {'billId':<12}" + "".join(f"| {name:<14}" for name in TIME_FIELDS)
    print(header)
    print(rule(96))
    for row in report.rows:
        if not row.needs_fix:
            continue
        cells = "".join(f"| {_kind_cell(row.kinds[name]):<14}" for name in TIME_FIELDS)
        print(f"{truncate(row.doc_id, 20):<22}| {truncate(row.bill_id, 10):<12}{cells}")
    print(rule(96))
    print()


def print_timestamp_plan(plan: TimestampPlan) -> None:
    work = plan.work()
    print()
    print("=== Plan (date formats) ===")
    print(f"Bills to update: {len(work)} of {len(plan.entries)}")
    for fix in work:
        for name, kind in fix.originals.items():
            if name in fix.conversions:
                print(f"  {fix.bill_id}: {name} {kind.label} -> {fix.conversions[name].to_rfc3339()}")
            else:
                print(f"  {fix.bill_id}: {name} {kind.label} -> cannot convert ({fix.unconvertible[name]})")
    for fix in plan.entries:
        for name, kind in fix.left_as_is.items():
            print(f"  {fix.bill_id}: {name} {kind.label} ({type(kind.value).__name__}) left as-is")
    print()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Check and convert bill dates to native timestamps.")
    add_store_arguments(parser)
    parser.add_argument("--check", action="store_true", help="Only report date formats; never prompt or write.")
    parser.add_argument("--dry-run", action="store_true", help="Print the conversion plan only; never prompt or write.")
    parser.add_argument("-y", "--yes", action="store_true", help="Assume yes to the confirmation prompt.")
    args = parser.parse_args(argv)

    setup_logger(verbose=args.verbose)

    try:
        return _run(args)
    except KeyboardInterrupt:
        print("\n[info] cancelled")
        return EXIT_INTERRUPTED


def _run(args: argparse.Namespace) -> int:
    try:
        cfg = config_from_args(args)
        store = open_store(cfg)
        if args.check or args.dry_run:
            report = check_timestamps(store)
            print_timestamp_report(report)
            if args.dry_run:
                print_timestamp_plan(plan_timestamp_fixes(report))
            return EXIT_OK

        confirm = assume_yes if args.yes else console_confirm("Proceed with these changes?")
        outcome = fix_timestamps(store, confirm, audit_dir=cfg.audit_dir, report=True)
    except (ScanFailure, ConfigError, StoreError, OSError) as exc:
        eprint(f"ERROR: {exc}")
        return EXIT_FATAL

    if outcome.result is not None:
        print_result(outcome.result)
    return exit_code_for(outcome)


if __name__ == "__main__":
    sys.exit(main())
