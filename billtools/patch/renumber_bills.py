#!/usr/bin/env python3
"""Renumber every bill sequentially: Bill001, Bill002, Bill003...

This script:
  1. Reads all bills and orders them by bill date (or creation time with
     --order-by createdAt). The oldest bills get the lowest numbers.
  2. Prints the diagnosis and the full old -> new plan.
  3. Asks for confirmation. Only the exact answer "yes" proceeds.
  4. Backs up the store where the backend supports it, then rewrites
     billId and billNumber on every bill, one bill at a time.
  5. Prints each update, the summary counts, and writes an audit file.

A failed update is reported and the remaining bills are still updated.
Re-running the same renumbering is safe: the writes set absolute values.

Run from the repo root, e.g.:

    python -m billtools.patch.renumber_bills --dry-run
    python -m billtools.patch.renumber_bills --order-by createdAt
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
    RepairState,
    apply_plan,
    assume_yes,
    console_confirm,
    exit_code_for,
    print_result,
    run_repair,
    write_audit,
)
from billtools.helpers.sequence_ids import DEFAULT_PREFIX
from billtools.helpers.sequence_planner import SequencePlan, plan_full_renumber, print_plan
from billtools.helpers.store_config import ConfigError, add_order_argument, add_store_arguments, config_from_args, open_store
from billtools.maintenance.diagnose_bills import ScanFailure, print_diagnosis, scan

LOG = logging.getLogger("renumber_bills")


def preview(store: RecordStore, order_field: str = "date", prefix: str = DEFAULT_PREFIX) -> SequencePlan:
    """Scan and plan only. Never prompts and never writes."""
    return plan_full_renumber(scan(store, order_field, prefix).bills, prefix)


def audit_rows(plan: SequencePlan) -> List[dict]:
    return [
        {
            "doc_id": e.doc_id,
            "old_bill_id": e.old_bill_id,
            "new_bill_id": e.new_bill_id,
            "old_bill_number": e.old_bill_number,
            "new_bill_number": e.new_bill_number,
        }
        for e in plan.entries
    ]


def renumber(
    store: RecordStore,
    confirm: ConfirmFn,
    order_field: str = "date",
    prefix: str = DEFAULT_PREFIX,
    audit_dir: Optional[str] = None,
    report: bool = False,
) -> RepairOutcome:
    def _scan():
        diagnosis = scan(store, order_field, prefix)
        if report:
            print_diagnosis(diagnosis)
        return diagnosis

    def _apply(plan: SequencePlan) -> ApplyResult:
        store.backup()
        LOG.info("[info] Applying %d update(s)...", len(plan.entries))
        result = apply_plan(store, plan)
        if audit_dir:
            write_audit(audit_dir, "renumber_bills", {"store": store.describe(), "order_by": order_field}, audit_rows(plan), result)
        return result

    return run_repair(
        "Bill renumbering",
        scan=_scan,
        make_plan=lambda diagnosis: plan_full_renumber(diagnosis.bills, prefix),
        confirm=confirm,
        apply=_apply,
        render=print_plan if report else None,
        has_work=lambda plan: bool(plan.changed_entries()),
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Reassign every bill a sequential id (Bill001, Bill002, ...) by date.")
    add_store_arguments(parser)
    add_order_argument(parser)
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
            plan = preview(store, args.order_by, cfg.prefix)
            print_plan(plan)
            LOG.info("[info] Dry run: %d of %d bill(s) would change. No changes were made.",
                     len(plan.changed_entries()), len(plan.entries))
            return EXIT_OK

        print("WARNING: This will change existing bill IDs!")
        print("Every bill is renumbered from 1 in date order, whatever id it holds today.")
        print()
        confirm = assume_yes if args.yes else console_confirm("Proceed with these changes?")
        outcome = renumber(store, confirm, args.order_by, cfg.prefix, audit_dir=cfg.audit_dir, report=True)
    except (ScanFailure, ConfigError, StoreError, OSError) as exc:
        eprint(f"ERROR: {exc}")
        return EXIT_FATAL

    if outcome.result is not None:
        print_result(outcome.result)
    if outcome.state is RepairState.COMPLETED:
        print("Next steps:")
        print("   1. Verify bills show the expected sequential ids (bills-diagnose --by-number)")
        print("   2. Create a test bill to confirm the sequence continues")
    return exit_code_for(outcome)


if __name__ == "__main__":
    sys.exit(main())
