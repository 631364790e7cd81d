from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

import pytest

from billtools.helpers.record_store import RecordStore, StoredDocument, StoreError, get_field
from billtools.helpers.timestamps import Timestamp

DAY = 86400
BASE_SECONDS = 1_700_000_000


def day(n: int) -> Timestamp:
    return Timestamp(BASE_SECONDS + n * DAY, 0)


class FakeStore(RecordStore):
    """In-memory collection that can be told to fail reads or particular writes."""

    def __init__(self, docs: Optional[List[Dict[str, Any]]] = None):
        self.docs: List[Dict[str, Any]] = [copy.deepcopy(d) for d in (docs or [])]
        self.fail_ids: set = set()
        self.fail_reads = False
        self.writes: List[tuple] = []
        self.backups = 0

    def describe(self) -> str:
        return "fake"

    def list_all(self, order_by=None, descending=False) -> List[StoredDocument]:
        if self.fail_reads:
            raise StoreError("store unreachable", status=503)
        out = [StoredDocument(d["id"], {k: copy.deepcopy(v) for k, v in d.items() if k != "id"}) for d in self.docs]
        if order_by:
            out = self.order_documents(out, order_by, descending)
        return out

    def find(self, filters):
        return [d for d in self.list_all() if all(get_field(d.data, k) == v for k, v in filters.items())]

    def update_partial(self, doc_id, fields) -> None:
        self.writes.append((doc_id, dict(fields)))
        if doc_id in self.fail_ids:
            raise StoreError(f"permission denied for {doc_id}", status=403)
        for d in self.docs:
            if d["id"] == doc_id:
                d.update(fields)
                return
        raise StoreError(f"document not found: {doc_id}", status=404)

    def backup(self):
        self.backups += 1
        return None

    def get(self, doc_id: str) -> Dict[str, Any]:
        for d in self.docs:
            if d["id"] == doc_id:
                return d
        raise KeyError(doc_id)


def bill_doc(doc_id: str, when: Any, bill_id: Any = None, number: Any = None, customer: str = "Asha") -> Dict[str, Any]:
    doc: Dict[str, Any] = {"id": doc_id, "date": when, "customerName": customer}
    if bill_id is not None:
        doc["billId"] = bill_id
    if number is not None:
        doc["billNumber"] = number
    return doc


@pytest.fixture
def scenario_store() -> FakeStore:
    # Unordered: day3 "X", day1 "#101", day2 "X"
    return FakeStore([
        bill_doc("doc-c", day(3), "X"),
        bill_doc("doc-a", day(1), "#101"),
        bill_doc("doc-b", day(2), "X"),
    ])


@pytest.fixture
def duplicate_store() -> FakeStore:
    docs = [bill_doc(f"doc-{n:03d}", day(n), f"Bill{n:03d}", n) for n in range(1, 96)]
    # Three bills all saved as Bill096, out of date order in the store
    docs.append(bill_doc("dup-late", day(120), "Bill096", 96, customer="Meena"))
    docs.append(bill_doc("dup-early", day(100), "Bill096", 96, customer="Kavya"))
    docs.append(bill_doc("dup-mid", day(110), "Bill096", 96, customer="Ravi"))
    return FakeStore(docs)
