from __future__ import annotations

import json

import pytest

from billtools.helpers.record_store import JsonFileStore, StoreError
from billtools.helpers.timestamps import Timestamp


def _write(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")


def test_reads_versioned_root_and_decodes_timestamps(tmp_path):
    path = tmp_path / "bills.json"
    _write(path, {
        "version": 3,
        "bills": [
            {"id": "a", "billId": "Bill001", "date": {"__timestamp__": "2023-11-14T22:13:20Z"}},
            {"id": "b", "billId": "Bill002", "date": {"seconds": 1700000000, "nanoseconds": 0}},
            "not-a-bill",
        ],
    })
    docs = JsonFileStore(str(path)).list_all()
    assert [d.id for d in docs] == ["a", "b"]
    assert docs[0].data["date"] == Timestamp(1700000000, 0)
    # A plain map stays a plain map
    assert docs[1].data["date"] == {"seconds": 1700000000, "nanoseconds": 0}


def test_reads_legacy_list_root(tmp_path):
    path = tmp_path / "bills.json"
    _write(path, [{"id": "a", "billId": "#101"}])
    docs = JsonFileStore(str(path)).list_all()
    assert docs[0].data == {"billId": "#101"}


def test_update_partial_merges_and_bumps_version(tmp_path):
    path = tmp_path / "bills.json"
    _write(path, {"version": 1, "bills": [{"id": "a", "billId": "X", "customerName": "Asha"}]})
    store = JsonFileStore(str(path))

    store.update_partial("a", {"billId": "Bill001", "billNumber": 1, "date": Timestamp(1700000000, 5)})

    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["version"] == 2
    assert saved["bills"][0] == {
        "id": "a",
        "billId": "Bill001",
        "customerName": "Asha",
        "billNumber": 1,
        "date": {"__timestamp__": "2023-11-14T22:13:20.000000005Z"},
    }
    assert store.list_all()[0].data["date"] == Timestamp(1700000000, 5)


def test_update_of_unknown_document_is_an_error(tmp_path):
    path = tmp_path / "bills.json"
    _write(path, [{"id": "a"}])
    with pytest.raises(StoreError) as exc:
        JsonFileStore(str(path)).update_partial("zzz", {"billId": "Bill001"})
    assert exc.value.status == 404


def test_missing_or_malformed_file_is_a_store_error(tmp_path):
    with pytest.raises(StoreError):
        JsonFileStore(str(tmp_path / "nope.json")).list_all()
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(StoreError):
        JsonFileStore(str(bad)).list_all()
    _write(bad, {"orders": []})
    with pytest.raises(StoreError):
        JsonFileStore(str(bad)).list_all()


def test_find_and_ordering(tmp_path):
    path = tmp_path / "bills.json"
    _write(path, [
        {"id": "a", "billId": "Bill002", "customer": {"name": "Ravi"}, "createdAt": "2024-02-01"},
        {"id": "b", "billId": "Bill001", "customer": {"name": "Asha"}},
        {"id": "c", "billId": "Bill002", "createdAt": {"__timestamp__": "2024-01-01T00:00:00Z"}},
    ])
    store = JsonFileStore(str(path))
    assert [d.id for d in store.find({"billId": "Bill002"})] == ["a", "c"]
    assert [d.id for d in store.find({"customer.name": "Asha"})] == ["b"]
    assert [d.id for d in store.list_all(order_by="createdAt")] == ["c", "a", "b"]
    assert [d.id for d in store.list_all(order_by="createdAt", descending=True)] == ["a", "c", "b"]


def test_backup_copies_the_file(tmp_path):
    path = tmp_path / "bills.json"
    _write(path, [{"id": "a"}])
    backup = JsonFileStore(str(path)).backup()
    assert backup.startswith(str(path) + ".backup-")
    assert json.loads(open(backup, encoding="utf-8").read()) == [{"id": "a"}]
