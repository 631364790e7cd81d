from __future__ import annotations

import builtins
import json

import pytest

from billtools.helpers.bill_common import EXIT_CANCELLED, EXIT_OK
from billtools.helpers.reconcile import RepairState, assume_yes
from billtools.helpers.timestamps import Timestamp
from billtools.patch.fix_duplicate_bills import fix_duplicates, main, preview


def test_preview_plans_only_the_duplicates(duplicate_store):
    plan = preview(duplicate_store)
    assert [(e.doc_id, e.new_bill_id) for e in plan.entries] == [
        ("dup-early", "Bill096"),
        ("dup-mid", "Bill097"),
        ("dup-late", "Bill098"),
    ]
    assert duplicate_store.writes == []


def test_fix_touches_only_the_group_and_stamps_updated_at(duplicate_store):
    before = {d["id"]: dict(d) for d in duplicate_store.docs}

    outcome = fix_duplicates(duplicate_store, assume_yes)

    assert outcome.state is RepairState.COMPLETED
    assert [w[0] for w in duplicate_store.writes] == ["dup-early", "dup-mid", "dup-late"]
    assert duplicate_store.get("dup-late")["billId"] == "Bill098"
    assert duplicate_store.get("dup-late")["billNumber"] == 98
    assert isinstance(duplicate_store.get("dup-mid")["updatedAt"], Timestamp)
    for doc in duplicate_store.docs:
        if not doc["id"].startswith("dup-"):
            assert doc == before[doc["id"]]
    assert duplicate_store.backups == 1


def test_no_duplicates_means_nothing_to_confirm(scenario_store):
    scenario_store.docs[0]["billId"] = "Bill003"

    def never(plan):
        raise AssertionError("should not ask")

    outcome = fix_duplicates(scenario_store, never)
    assert outcome.state is RepairState.PLANNED
    assert scenario_store.writes == []


@pytest.fixture
def dup_file(tmp_path, monkeypatch):
    for name in ("BILLS_BACKEND", "BILLS_JSON_PATH", "BILL_ID_PREFIX"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("BILLS_AUDIT_DIR", str(tmp_path / "audit"))
    path = tmp_path / "bills.json"
    path.write_text(json.dumps([
        {"id": "a", "billId": "Bill001", "billNumber": 1, "date": "2024-01-01"},
        {"id": "b", "billId": "Bill002", "billNumber": 2, "date": "2024-01-03"},
        {"id": "c", "billId": "Bill002", "billNumber": 2, "date": "2024-01-02"},
    ]), encoding="utf-8")
    return path


def test_cli_decline_then_accept(dup_file, monkeypatch, capsys):
    before = dup_file.read_text(encoding="utf-8")
    monkeypatch.setattr(builtins, "input", lambda prompt: "no")
    assert main(["--json-path", str(dup_file)]) == EXIT_CANCELLED
    assert dup_file.read_text(encoding="utf-8") == before

    monkeypatch.setattr(builtins, "input", lambda prompt: "yes")
    assert main(["--json-path", str(dup_file)]) == EXIT_OK
    saved = {b["id"]: b["billId"] for b in json.loads(dup_file.read_text(encoding="utf-8"))}
    assert saved == {"a": "Bill001", "c": "Bill002", "b": "Bill003"}
    assert "Duplicate Bill ID Report" in capsys.readouterr().out


def test_cli_dry_run(dup_file, capsys):
    before = dup_file.read_text(encoding="utf-8")
    assert main(["--json-path", str(dup_file), "--dry-run"]) == EXIT_OK
    assert dup_file.read_text(encoding="utf-8") == before
    assert "Bill003" in capsys.readouterr().out
