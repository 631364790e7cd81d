#!/usr/bin/env python3
"""Give bills that share a billId fresh, unique numbers.

Unlike renumber_bills.py this only touches the clashing bills:

  - every bill in a duplicate group gets a new number, starting after the
    highest number held by any other bill, in date order within the group
  - groups are handled in ascending billId order, each continuing from the
    numbers handed out to the previous group
  - every other bill keeps its billId and billNumber

Use --bill-id to repair a single group (e.g. --bill-id Bill096) and
--include-missing to also number bills that have no billId at all.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from billtools.helpers.bill_common import EXIT_FATAL, EXIT_INTERRUPTED, EXIT_OK, eprint, setup_logger
from billtools.helpers.record_store import RecordStore, StoreError
from billtools.helpers.reconcile import (
    ApplyResult,
    ConfirmFn,
    RepairOutcome,
    apply_plan,
    assume_yes,
    console_confirm,
    exit_code_for,
    print_result,
    run_repair,
    write_audit,
)
from billtools.helpers.sequence_ids import DEFAULT_PREFIX
from billtools.helpers.sequence_planner import SequencePlan, plan_duplicate_repair, print_plan
from billtools.helpers.store_config import ConfigError, add_order_argument, add_store_arguments, config_from_args, open_store
from billtools.maintenance.diagnose_bills import Diagnosis, ScanFailure, scan
from billtools.patch.renumber_bills import audit_rows

LOG = logging.getLogger("fix_duplicate_bills")


def print_duplicate_report(diagnosis: Diagnosis, only_bill_id: Optional[str] = None) -> None:
    print()
    print("=== Duplicate Bill ID Report ===")
    print(f"Total bills: {diagnosis.total}")
    print(f"Duplicate id groups: {len(diagnosis.duplicates)}")
    print(f"Total bills in duplicate groups: {sum(diagnosis.duplicates.values())}")
    print()
    for bid, count in diagnosis.duplicates.items():
        if only_bill_id is not None and bid != only_bill_id:
            continue
        print(f"- billId: {bid!r} (count={count})")
        members = [b for b in diagnosis.bills if b.bill_id == bid]
        for i, b in enumerate(members, start=1):
            print(f"    {i}. id={b.doc_id}, billNumber={b.bill_number}, customer={b.customer}")
        print()


def make_plan(diagnosis: Diagnosis, prefix: str = DEFAULT_PREFIX, only_bill_id: Optional[str] = None,
              include_missing: bool = False) -> SequencePlan:
    return plan_duplicate_repair(diagnosis.bills, prefix, only_bill_id=only_bill_id, include_missing=include_missing)


def preview(store: RecordStore, order_field: str = "date", prefix: str = DEFAULT_PREFIX,
            only_bill_id: Optional[str] = None, include_missing: bool = False) -> SequencePlan:
    """Scan and plan only. Never prompts and never writes."""
    return make_plan(scan(store, order_field, prefix), prefix, only_bill_id, include_missing)


def fix_duplicates(
    store: RecordStore,
    confirm: ConfirmFn,
    order_field: str = "date",
    prefix: str = DEFAULT_PREFIX,
    only_bill_id: Optional[str] = None,
    include_missing: bool = False,
    audit_dir: Optional[str] = None,
    report: bool = False,
) -> RepairOutcome:
    def _scan() -> Diagnosis:
        diagnosis = scan(store, order_field, prefix)
        if report:
            print_duplicate_report(diagnosis, only_bill_id)
        return diagnosis

    def _apply(plan: SequencePlan) -> ApplyResult:
        store.backup()
        result = apply_plan(store, plan, stamp_updated_at=True)
        if audit_dir:
            meta = {"store": store.describe(), "order_by": order_field, "bill_id": only_bill_id}
            write_audit(audit_dir, "fix_duplicate_bills", meta, audit_rows(plan), result)
        return result

    return run_repair(
        "Duplicate bill repair",
        scan=_scan,
        make_plan=lambda d: make_plan(d, prefix, only_bill_id, include_missing),
        confirm=confirm,
        apply=_apply,
        render=print_plan if report else None,
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Reassign unique numbers to bills that share a billId.")
    add_store_arguments(parser)
    add_order_argument(parser)
    parser.add_argument("--bill-id", help="Only repair this duplicated billId (e.g. Bill096).")
    parser.add_argument("--include-missing", action="store_true", help="Also number bills that have no billId.")
    parser.add_argument("--dry-run", action="store_true", help="Print the plan only; never prompt or write.")
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
        if args.dry_run:
            plan = preview(store, args.order_by, cfg.prefix, args.bill_id, args.include_missing)
            print_plan(plan)
            LOG.info("[info] Dry run: %d bill(s) would be renumbered. No changes were made.", len(plan.entries))
            return EXIT_OK

        confirm = assume_yes if args.yes else console_confirm("Proceed to renumber these bills?")
        outcome = fix_duplicates(
            store,
            confirm,
            args.order_by,
            cfg.prefix,
            only_bill_id=args.bill_id,
            include_missing=args.include_missing,
            audit_dir=cfg.audit_dir,
            report=True,
        )
    except (ScanFailure, ConfigError, StoreError, OSError) as exc:
        eprint(f"ERROR: {exc}")
        return EXIT_FATAL

    if outcome.result is not None:
        print_result(outcome.result)
    return exit_code_for(outcome)


if __name__ == "__main__":
    sys.exit(main())
