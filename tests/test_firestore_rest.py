from __future__ import annotations

import json

import pytest
from requests.exceptions import ConnectionError, SSLError

from billtools.helpers.firestore_rest import FirestoreRestStore, decode_value, encode_value
from billtools.helpers.record_store import StoreError
from billtools.helpers.timestamps import Timestamp

DOCS = "https://firestore.example/v1/projects/shop/databases/(default)/documents"


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self.text = json.dumps(payload) if payload is not None else ""
        self.content = self.text.encode("utf-8")
        self._payload = payload

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        nxt = self.responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


def _store(session, **kw):
    return FirestoreRestStore("shop", base_url="https://firestore.example/v1", session=session, **kw)


def _doc(doc_id, **fields):
    return {"name": f"projects/shop/databases/(default)/documents/bills/{doc_id}",
            "fields": {k: encode_value(v) for k, v in fields.items()}}


def test_typed_values():
    assert encode_value(7) == {"integerValue": "7"}
    assert encode_value(True) == {"booleanValue": True}
    assert encode_value(Timestamp(1700000000, 5)) == {"timestampValue": "2023-11-14T22:13:20.000000005Z"}
    assert decode_value({"timestampValue": "2023-11-14T22:13:20Z"}) == Timestamp(1700000000, 0)
    struct = {"mapValue": {"fields": {"seconds": {"integerValue": "1700000000"}, "nanoseconds": {"integerValue": "0"}}}}
    assert decode_value(struct) == {"seconds": 1700000000, "nanoseconds": 0}
    assert decode_value({"nullValue": None}) is None


def test_list_all_follows_pages_and_orders_client_side():
    session = FakeSession([
        FakeResponse(payload={"documents": [_doc("b", billId="Bill002", date=Timestamp(20, 0))], "nextPageToken": "p2"}),
        FakeResponse(payload={"documents": [_doc("a", billId="Bill001", date=Timestamp(10, 0)), _doc("c", billId="X")]}),
    ])
    store = _store(session, token="tok")

    docs = store.list_all(order_by="date")

    assert [d.id for d in docs] == ["a", "b", "c"]
    assert docs[0].data["billId"] == "Bill001"
    first, second = session.calls
    assert first[1] == f"{DOCS}/bills"
    assert ("pageToken", "p2") in second[2]["params"]
    assert first[2]["headers"] == {"Authorization": "Bearer tok"}


def test_update_partial_uses_field_mask_and_requires_existing_document():
    session = FakeSession([FakeResponse(payload={})])
    store = _store(session, api_key="k")

    store.update_partial("doc-1", {"billId": "Bill001", "billNumber": 1})

    method, url, kw = session.calls[0]
    assert (method, url) == ("PATCH", f"{DOCS}/bills/doc-1")
    assert kw["params"] == [
        ("updateMask.fieldPaths", "billId"),
        ("updateMask.fieldPaths", "billNumber"),
        ("currentDocument.exists", "true"),
        ("key", "k"),
    ]
    assert kw["json"] == {"fields": {"billId": {"stringValue": "Bill001"}, "billNumber": {"integerValue": "1"}}}


def test_find_runs_structured_query():
    session = FakeSession([FakeResponse(payload=[{"document": _doc("x", billId="Bill042")}, {"readTime": "t"}])])
    store = _store(session)

    found = store.find({"billId": "Bill042"})

    assert [d.id for d in found] == ["x"]
    method, url, kw = session.calls[0]
    assert (method, url) == ("POST", f"{DOCS}:runQuery")
    where = kw["json"]["structuredQuery"]["where"]["fieldFilter"]
    assert where == {"field": {"fieldPath": "billId"}, "op": "EQUAL", "value": {"stringValue": "Bill042"}}


def test_http_errors_become_store_errors():
    store = _store(FakeSession([FakeResponse(403, {"error": "denied"})]))
    with pytest.raises(StoreError) as exc:
        store.update_partial("doc-1", {"billId": "Bill001"})
    assert exc.value.status == 403

    store = _store(FakeSession([ConnectionError("refused")]))
    with pytest.raises(StoreError):
        store.list_all()


def test_ssl_error_retries_over_http():
    session = FakeSession([SSLError("bad handshake"), FakeResponse(payload={"documents": []})])
    store = _store(session)

    assert store.list_all() == []
    assert session.calls[1][1].startswith("http://firestore.example/")
    assert store.base_url == "http://firestore.example/v1"
