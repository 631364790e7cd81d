"""Applying repair plans to the bills collection.

Both repair flows (bill numbers and timestamps) run the same steps:

    SCANNED -> PLANNED -> AWAITING_CONFIRMATION -> APPLYING -> COMPLETED
                                              \\-> REJECTED

Writes are issued one bill at a time in plan order. A failed write is
recorded against its bill and the loop moves on; COMPLETED means every
entry was attempted, not that every entry succeeded.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from billtools.helpers.bill_common import EXIT_CANCELLED, EXIT_OK, EXIT_PARTIAL, now_ts_local
from billtools.helpers.bills import BILL_ID_FIELD, BILL_NUMBER_FIELD
from billtools.helpers.record_store import RecordStore
from billtools.helpers.sequence_planner import SequencePlan
from billtools.helpers.timestamps import Timestamp

LOG = logging.getLogger("reconcile")

ACCEPT_TOKEN = "yes"


class RepairState(str, Enum):
    SCANNED = "scanned"
    PLANNED = "planned"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    APPLYING = "applying"
    COMPLETED = "completed"
    REJECTED = "rejected"


_TRANSITIONS = {
    None: {RepairState.SCANNED},
    RepairState.SCANNED: {RepairState.PLANNED},
    RepairState.PLANNED: {RepairState.AWAITING_CONFIRMATION},
    RepairState.AWAITING_CONFIRMATION: {RepairState.APPLYING, RepairState.REJECTED},
    RepairState.APPLYING: {RepairState.COMPLETED},
}


class InvalidTransition(RuntimeError):
    pass


class RepairFlow:
    def __init__(self, name: str):
        self.name = name
        self.state: Optional[RepairState] = None
        self.history: List[RepairState] = []

    def advance(self, new_state: RepairState) -> None:
        allowed = _TRANSITIONS.get(self.state, set())
        if new_state not in allowed:
            current = self.state.value if self.state else "start"
            raise InvalidTransition(f"{self.name}: cannot go from {current} to {new_state.value}")
        LOG.trace("[trace] %s: %s -> %s", self.name, self.state.value if self.state else "start", new_state.value)
        self.state = new_state
        self.history.append(new_state)


# ----------------------------
# Per-bill updates
# ----------------------------
@dataclass
class UpdateEntry:
    doc_id: str
    label: str
    fields: Dict[str, Any] = field(default_factory=dict)
    note: str = ""
    error: Optional[str] = None


@dataclass
class ApplyDetail:
    doc_id: str
    label: str
    action: str  # fixed | skipped | failed
    reason: str = ""


@dataclass
class ApplyResult:
    success: int = 0
    failed: int = 0
    skipped: int = 0
    details: List[ApplyDetail] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.success + self.failed


def apply_updates(store: RecordStore, entries: List[UpdateEntry]) -> ApplyResult:
    result = ApplyResult()
    for entry in entries:
        if entry.error:
            result.failed += 1
            result.details.append(ApplyDetail(entry.doc_id, entry.label, "failed", entry.error))
            LOG.error("[error] Not updating %s: %s", entry.label, entry.error)
            continue
        if not entry.fields:
            result.skipped += 1
            result.details.append(ApplyDetail(entry.doc_id, entry.label, "skipped", entry.note or "nothing to change"))
            LOG.info("[skip] %s: %s", entry.label, entry.note or "nothing to change")
            continue
        try:
            store.update_partial(entry.doc_id, entry.fields)
        except Exception as e:
            result.failed += 1
            result.details.append(ApplyDetail(entry.doc_id, entry.label, "failed", str(e) or type(e).__name__))
            LOG.error("[error] Failed to update %s (%s): %s", entry.label, entry.doc_id, e)
            continue
        result.success += 1
        result.details.append(ApplyDetail(entry.doc_id, entry.label, "fixed", entry.note))
        LOG.info("[ok] %s... %s", entry.doc_id[:20], entry.note)
    return result


def sequence_updates(plan: SequencePlan, stamp_updated_at: bool = False) -> List[UpdateEntry]:
    """Absolute field writes for a bill number plan; re-applying them changes nothing."""
    entries = []
    for e in plan.entries:
        fields: Dict[str, Any] = {BILL_ID_FIELD: e.new_bill_id, BILL_NUMBER_FIELD: e.new_bill_number}
        if stamp_updated_at:
            fields["updatedAt"] = Timestamp.now()
        entries.append(UpdateEntry(
            doc_id=e.doc_id,
            label=e.old_bill_id or e.doc_id,
            fields=fields,
            note=f"{e.old_bill_id or 'MISSING'} -> {e.new_bill_id}",
        ))
    return entries


def apply_plan(store: RecordStore, plan: SequencePlan, stamp_updated_at: bool = False) -> ApplyResult:
    return apply_updates(store, sequence_updates(plan, stamp_updated_at))


# ----------------------------
# Confirmation gate
# ----------------------------
ConfirmFn = Callable[[Any], bool]


def console_confirm(question: str = "Proceed with these changes?") -> ConfirmFn:
    def _confirm(_plan: Any) -> bool:
        try:
            answer = input(f"{question} (yes/no): ")
        except EOFError:
            LOG.warning("[warn] No TTY available for confirmation; assuming 'no'. Use --yes to override.")
            return False
        return answer.strip().lower() == ACCEPT_TOKEN

    return _confirm


def assume_yes(_plan: Any) -> bool:
    LOG.info("[info] --yes supplied; proceeding without interactive confirmation.")
    return True


# ----------------------------
# Flow driver
# ----------------------------
@dataclass
class RepairOutcome:
    state: RepairState
    plan: Any = None
    result: Optional[ApplyResult] = None


def run_repair(
    name: str,
    scan: Callable[[], Any],
    make_plan: Callable[[Any], Any],
    confirm: ConfirmFn,
    apply: Callable[[Any], ApplyResult],
    render: Optional[Callable[[Any], None]] = None,
    has_work: Callable[[Any], bool] = bool,
) -> RepairOutcome:
    """Scan, plan, ask, apply.

    Stops at PLANNED with an empty result when the plan holds no work, so
    callers still print a (zero) summary.
    """
    flow = RepairFlow(name)
    scanned = scan()
    flow.advance(RepairState.SCANNED)

    plan = make_plan(scanned)
    flow.advance(RepairState.PLANNED)
    if render is not None:
        render(plan)
    if not has_work(plan):
        LOG.info("[info] %s: nothing to do.", name)
        return RepairOutcome(flow.state, plan, ApplyResult())

    flow.advance(RepairState.AWAITING_CONFIRMATION)
    if not confirm(plan):
        flow.advance(RepairState.REJECTED)
        LOG.info("[info] %s cancelled. No changes were made.", name)
        return RepairOutcome(flow.state, plan)

    flow.advance(RepairState.APPLYING)
    result = apply(plan)
    flow.advance(RepairState.COMPLETED)
    return RepairOutcome(flow.state, plan, result)


def exit_code_for(outcome: RepairOutcome) -> int:
    if outcome.state is RepairState.REJECTED:
        return EXIT_CANCELLED
    if outcome.result is not None and outcome.result.failed:
        return EXIT_PARTIAL
    return EXIT_OK


# ----------------------------
# Reporting
# ----------------------------
def print_result(result: ApplyResult, noun: str = "bills") -> None:
    print()
    print("=" * 70)
    if result.failed:
        print("Failed updates:")
        for d in result.details:
            if d.action == "failed":
                print(f"  - {d.label} ({d.doc_id}): {d.reason}")
        print()
    print("Run complete.")
    print(f"   - Successfully updated: {result.success} {noun}")
    print(f"   - Skipped: {result.skipped} {noun}")
    print(f"   - Errors: {result.failed} {noun}")
    print()


def write_audit(audit_dir: str, prefix: str, meta: Dict[str, Any], rows: List[Dict[str, Any]], result: ApplyResult) -> str:
    """Write the applied mapping and outcomes to <audit_dir>/<prefix>_audit_<ts>.json."""
    try:
        ts = now_ts_local()
        out_dir = os.path.abspath(os.path.expanduser(audit_dir))
        os.makedirs(out_dir, exist_ok=True)
        out_path = os.path.join(out_dir, f"{prefix}_audit_{ts}.json")
        payload = {
            "meta": dict(meta, timestamp=ts),
            "entries": rows,
            "result": {
                "success": result.success,
                "failed": result.failed,
                "skipped": result.skipped,
                "details": [asdict(d) for d in result.details],
            },
        }
        with open(out_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False, default=str)
        LOG.info("[info] Audit written: %s", out_path)
        return out_path
    except OSError as e:
        LOG.warning("[warn] Audit write failed: %s", e)
        return ""
