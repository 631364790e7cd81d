#!/usr/bin/env python3
"""
diagnose_bills.py

Read-only diagnosis of the bills collection: what bill ids exist, which
format each one is in, and which ids are shared by more than one bill.

This script is intentionally read-only. It does NOT modify any bills.

It will:
1. Read every bill (no filtering) and order them by bill date (or
   creation time with --order-by createdAt). Bills without a usable date
   keep their store order at the front.
2. Classify every billId as Bill001 format, hash format (#101), timestamp
   format (BILL215896) or missing/invalid.
3. Print the full listing, the per-format breakdown and the duplicates.

Usage:
  python -m billtools.maintenance.diagnose_bills
  python -m billtools.maintenance.diagnose_bills --find Bill096
  python -m billtools.maintenance.diagnose_bills --by-number

Exit code:
  0  - diagnosis ran (issues are reported, not enforced)
  1  - fatal error (store unreachable, bad settings, --find matched nothing)
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from billtools.helpers.bill_common import EXIT_FATAL, EXIT_INTERRUPTED, EXIT_OK, eprint, rule, setup_logger, truncate
from billtools.helpers.bills import BILL_ID_FIELD, Bill, bills_from_documents, next_bill_id, sort_bills
from billtools.helpers.record_store import RecordStore, StoreError
from billtools.helpers.sequence_ids import DEFAULT_PREFIX, FORMAT_LABELS, BillIdFormat, classify_bill_id
from billtools.helpers.store_config import ConfigError, add_order_argument, add_store_arguments, config_from_args, open_store

LOG = logging.getLogger("diagnose_bills")


class ScanFailure(RuntimeError):
    pass


@dataclass
class Diagnosis:
    total: int
    order_field: str
    bills: List[Bill]
    buckets: Dict[BillIdFormat, List[Bill]]
    duplicates: Dict[str, int]
    next_bill_id: str
    id_counts: Dict[str, int] = field(default_factory=dict)

    def format_counts(self) -> Dict[BillIdFormat, int]:
        return {fmt: len(self.buckets.get(fmt, [])) for fmt in BillIdFormat}

    @property
    def has_issues(self) -> bool:
        non_canonical = self.total - len(self.buckets.get(BillIdFormat.CANONICAL, []))
        return bool(self.duplicates) or non_canonical > 0


def _read_bills(store: RecordStore, order_field: str) -> List[Bill]:
    try:
        docs = store.list_all()
    except StoreError as e:
        raise ScanFailure(f"Failed to read bills from {store.describe()}: {e}") from e
    return bills_from_documents(docs, order_field)


def scan(store: RecordStore, order_field: str = "date", prefix: str = DEFAULT_PREFIX) -> Diagnosis:
    bills = sort_bills(_read_bills(store, order_field))

    buckets: Dict[BillIdFormat, List[Bill]] = {fmt: [] for fmt in BillIdFormat}
    for b in bills:
        buckets[classify_bill_id(b.bill_id, prefix)].append(b)

    id_counts = Counter(b.bill_id for b in bills if b.bill_id)
    duplicates = {bid: n for bid, n in sorted(id_counts.items()) if n > 1}

    LOG.info("[info] Scanned %d bill(s): %d duplicate id(s)", len(bills), len(duplicates))
    return Diagnosis(
        total=len(bills),
        order_field=order_field,
        bills=bills,
        buckets=buckets,
        duplicates=duplicates,
        next_bill_id=next_bill_id(bills, prefix),
        id_counts=dict(id_counts),
    )


def list_by_number(store: RecordStore, prefix: str = DEFAULT_PREFIX) -> List[Bill]:
    """Bills by bill number, highest first; bills without a number go last."""
    bills = _read_bills(store, "date")
    numbered = [b for b in bills if b.known_number(prefix) is not None]
    unnumbered = [b for b in bills if b.known_number(prefix) is None]
    numbered.sort(key=lambda b: b.known_number(prefix), reverse=True)
    return numbered + unnumbered


def find_bill(store: RecordStore, ref: str, order_field: str = "date") -> Optional[Bill]:
    """Look a bill up by document id, then billId, then either one ignoring case."""
    bills = _read_bills(store, order_field)
    for b in bills:
        if b.doc_id == ref:
            return b
    try:
        matches = store.find({BILL_ID_FIELD: ref})
    except StoreError as e:
        raise ScanFailure(f"billId lookup failed: {e}") from e
    if matches:
        wanted = matches[0].id
        for b in bills:
            if b.doc_id == wanted:
                return b
    low = ref.lower()
    for b in bills:
        if b.doc_id.lower() == low or (b.bill_id or "").lower() == low:
            return b
    return None


# ----------------------------
# Reporting
# ----------------------------
def _print_bill_table(bills: List[Bill]) -> None:
    print(rule(80))
    print(f"{'Firestore ID':<25}| {'billId':<18}| {'billNumber':<13}| Customer")
    print(rule(80))
    for b in bills:
        number = b.bill_number if b.bill_number is not None else "MISSING"
        print(
            f"{truncate(b.doc_id, 23):<25}| {truncate(b.bill_id or 'MISSING', 16):<18}"
            f"| {str(number):<13}| {truncate(b.customer, 30)}"
        )
    print(rule(80))


def print_diagnosis(diagnosis: Diagnosis) -> None:
    print()
    print("=== Bill Diagnosis ===")
    print(f"Total bills found: {diagnosis.total} (ordered by {diagnosis.order_field})")
    print()
    if diagnosis.total == 0:
        print("No bills found. Database is clean!")
        return

    _print_bill_table(diagnosis.bills)
    print()
    print("Bill ID formats")
    print("---------------")
    for fmt, count in diagnosis.format_counts().items():
        print(f"{FORMAT_LABELS[fmt] + ':':<32}{count}")
    for fmt in BillIdFormat:
        bucket = diagnosis.buckets.get(fmt) or []
        if fmt is BillIdFormat.CANONICAL or not bucket:
            continue
        print()
        print(f"{FORMAT_LABELS[fmt]}:")
        for b in bucket:
            print(f"  - {b.bill_id or 'MISSING'} ({b.doc_id}, {b.customer})")
    print()

    if diagnosis.duplicates:
        print("Duplicate bill IDs (id: count of bills):")
        for bid, count in diagnosis.duplicates.items():
            print(f"  {bid}: {count}")
        print()
    else:
        print("No duplicate bill IDs found.")
        print()

    print(f"Next bill id: {diagnosis.next_bill_id}")
    print()
    if diagnosis.has_issues:
        print("Recommendations:")
        if diagnosis.duplicates:
            print("   - Duplicates only: bills-fix-duplicates (renumbers just the clashing bills)")
        print("   - Inconsistent formats or gaps: bills-renumber (renumbers every bill)")
        print()


def print_by_number(bills: List[Bill]) -> None:
    print()
    print("=== Bills by bill number (highest first) ===")
    _print_bill_table(bills)
    print()


def print_bill(bill: Bill) -> None:
    print()
    print("=== Bill ===")
    print(f"Firestore ID : {bill.doc_id}")
    print(f"billId       : {bill.bill_id or 'MISSING'}")
    print(f"billNumber   : {bill.bill_number if bill.bill_number is not None else 'MISSING'}")
    print(f"Customer     : {bill.customer}")
    print(f"Ordering     : {bill.ordering!r}")
    print()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Diagnose bill ids: formats, duplicates and a full listing (read-only).")
    add_store_arguments(parser)
    add_order_argument(parser)
    parser.add_argument("--find", metavar="REF", help="Show one bill by document id or billId.")
    parser.add_argument("--by-number", action="store_true", help="List bills by bill number, highest first.")
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
        if args.find:
            bill = find_bill(store, args.find, args.order_by)
            if bill is None:
                eprint(f"No bill matches {args.find!r}.")
                return EXIT_FATAL
            print_bill(bill)
            return EXIT_OK
        if args.by_number:
            print_by_number(list_by_number(store, cfg.prefix))
            return EXIT_OK
        print_diagnosis(scan(store, args.order_by, cfg.prefix))
    except (ScanFailure, ConfigError) as exc:
        eprint(f"ERROR: {exc}")
        return EXIT_FATAL
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
