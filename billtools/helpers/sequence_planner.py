"""Bill number assignment plans.

Planning is pure: it takes bills that were already read from the store and
returns the old -> new mapping. Nothing here touches the store.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from billtools.helpers.bill_common import rule, truncate
from billtools.helpers.bills import Bill, sort_bills
from billtools.helpers.sequence_ids import DEFAULT_PREFIX, format_bill_id, max_known_number

FULL_RENUMBER = "full-renumber"
TARGETED_REPAIR = "targeted-repair"


@dataclass
class PlanEntry:
    doc_id: str
    old_bill_id: Optional[str]
    new_bill_id: str
    old_bill_number: Optional[int]
    new_bill_number: int
    customer: str

    @property
    def changed(self) -> bool:
        return self.old_bill_id != self.new_bill_id or self.old_bill_number != self.new_bill_number


@dataclass
class SequencePlan:
    mode: str
    entries: List[PlanEntry] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entries)

    def changed_entries(self) -> List[PlanEntry]:
        return [e for e in self.entries if e.changed]


def _entry(bill: Bill, number: int, prefix: str) -> PlanEntry:
    return PlanEntry(
        doc_id=bill.doc_id,
        old_bill_id=bill.bill_id,
        new_bill_id=format_bill_id(number, prefix),
        old_bill_number=bill.bill_number,
        new_bill_number=number,
        customer=bill.customer,
    )


def plan_full_renumber(bills: Iterable[Bill], prefix: str = DEFAULT_PREFIX) -> SequencePlan:
    """Number every bill 1..N in ordering order, whatever it holds today.

    Every bill is rewritten, valid or not: once any historical id is wrong,
    patching individual bills cannot restore a gapless sequence.
    """
    ordered = sort_bills(bills)
    return SequencePlan(FULL_RENUMBER, [_entry(b, i, prefix) for i, b in enumerate(ordered, start=1)])


def plan_targeted_repair(bills: Iterable[Bill], bad_doc_ids: Iterable[str], prefix: str = DEFAULT_PREFIX) -> SequencePlan:
    """Give the bad bills fresh numbers after the highest number held by any other bill."""
    bills = list(bills)
    bad = set(bad_doc_ids)
    start = max_known_number(b.known_number(prefix) for b in bills if b.doc_id not in bad) + 1
    targets = sort_bills(b for b in bills if b.doc_id in bad)
    return SequencePlan(TARGETED_REPAIR, [_entry(b, start + i, prefix) for i, b in enumerate(targets)])


def duplicate_groups(bills: Iterable[Bill]) -> Dict[str, List[Bill]]:
    """billId -> bills sharing it, for every id held by more than one bill."""
    bills = list(bills)
    counts = Counter(b.bill_id for b in bills if b.bill_id)
    groups: Dict[str, List[Bill]] = {}
    for b in bills:
        if b.bill_id and counts[b.bill_id] > 1:
            groups.setdefault(b.bill_id, []).append(b)
    return groups


def plan_duplicate_repair(
    bills: Iterable[Bill],
    prefix: str = DEFAULT_PREFIX,
    only_bill_id: Optional[str] = None,
    include_missing: bool = False,
) -> SequencePlan:
    """Targeted repair of every duplicate group, in ascending billId order.

    Each group starts after the highest number held outside it at that
    point, counting numbers already handed to earlier groups. Bills with no
    billId form one last group when include_missing is set.
    """
    bills = list(bills)
    groups = duplicate_groups(bills)
    order: List[List[Bill]] = []
    for bill_id in sorted(groups):
        if only_bill_id is None or bill_id == only_bill_id:
            order.append(groups[bill_id])
    if include_missing:
        missing = [b for b in bills if not b.bill_id]
        if missing:
            order.append(missing)

    current: Dict[str, Optional[int]] = {b.doc_id: b.known_number(prefix) for b in bills}
    entries: List[PlanEntry] = []
    for group in order:
        members: Set[str] = {b.doc_id for b in group}
        sub = plan_targeted_repair(
            bills=[_with_number(b, current[b.doc_id]) for b in bills],
            bad_doc_ids=members,
            prefix=prefix,
        )
        by_id = {b.doc_id: b for b in group}
        for e in sub.entries:
            original = by_id[e.doc_id]
            e.old_bill_id = original.bill_id
            e.old_bill_number = original.bill_number
            current[e.doc_id] = e.new_bill_number
            entries.append(e)
    return SequencePlan(TARGETED_REPAIR, entries)


def _with_number(bill: Bill, number: Optional[int]) -> Bill:
    if number == bill.bill_number:
        return bill
    return Bill(
        doc_id=bill.doc_id,
        bill_id=bill.bill_id,
        bill_number=number,
        customer=bill.customer,
        ordering=bill.ordering,
        store_index=bill.store_index,
        raw=bill.raw,
    )


def print_plan(plan: SequencePlan) -> None:
    print()
    print(f"=== Plan ({plan.mode}) ===")
    print(f"Bills in plan: {len(plan.entries)}")
    print(f"Bills that change: {len(plan.changed_entries())}")
    print(rule(78))
    print(f"{'Firestore ID':<25}| {'Old Bill ID':<18}| {'New Bill ID':<14}| Customer")
    print(rule(78))
    for e in plan.entries:
        print(
            f"{truncate(e.doc_id, 23):<25}| {truncate(e.old_bill_id or 'MISSING', 16):<18}"
            f"| {e.new_bill_id:<14}| {truncate(e.customer, 20)}"
        )
    print(rule(78))
    print()
