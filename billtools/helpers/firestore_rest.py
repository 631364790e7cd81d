"""Firestore REST backend for the bills collection.

Talks to the v1 REST API (or a local emulator) with `requests`. Field
values are converted between Firestore's typed JSON values and plain
Python values; `timestampValue` becomes a `Timestamp` so the rest of the
tools can tell native timestamps apart from legacy shapes.
"""

from __future__ import annotations

import warnings

# Suppress the LibreSSL/OpenSSL compatibility warning from urllib3 v2
warnings.filterwarnings(
    "ignore",
    message="urllib3 v2 only supports OpenSSL 1.1.1+",
    module="urllib3",
)

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

import requests  # type: ignore
from requests.exceptions import SSLError  # type: ignore

from billtools.helpers.record_store import RecordStore, StoredDocument, StoreError
from billtools.helpers.timestamps import Timestamp, TimestampParseError

LOG = logging.getLogger("firestore_rest")

DEFAULT_BASE_URL = "https://firestore.googleapis.com/v1"


# ----------------------------
# Typed value conversion
# ----------------------------
def encode_value(v: Any) -> Dict[str, Any]:
    if v is None:
        return {"nullValue": None}
    if isinstance(v, bool):
        return {"booleanValue": v}
    if isinstance(v, int):
        return {"integerValue": str(v)}
    if isinstance(v, float):
        return {"doubleValue": v}
    if isinstance(v, Timestamp):
        return {"timestampValue": v.to_rfc3339()}
    if isinstance(v, datetime):
        return {"timestampValue": Timestamp.from_datetime(v).to_rfc3339()}
    if isinstance(v, date):
        return {"stringValue": v.isoformat()}
    if isinstance(v, str):
        return {"stringValue": v}
    if isinstance(v, dict):
        return {"mapValue": {"fields": {str(k): encode_value(x) for k, x in v.items()}}}
    if isinstance(v, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(x) for x in v]}}
    raise TypeError(f"cannot encode {type(v).__name__} as a Firestore value")


def decode_value(v: Dict[str, Any]) -> Any:
    if not isinstance(v, dict):
        return v
    if "nullValue" in v:
        return None
    if "booleanValue" in v:
        return bool(v["booleanValue"])
    if "integerValue" in v:
        return int(v["integerValue"])
    if "doubleValue" in v:
        return float(v["doubleValue"])
    if "timestampValue" in v:
        try:
            return Timestamp.from_rfc3339(v["timestampValue"])
        except TimestampParseError:
            LOG.warning("[warn] Unreadable timestampValue kept as string: %r", v["timestampValue"])
            return v["timestampValue"]
    if "stringValue" in v:
        return v["stringValue"]
    if "mapValue" in v:
        return decode_fields((v["mapValue"] or {}).get("fields") or {})
    if "arrayValue" in v:
        return [decode_value(x) for x in (v["arrayValue"] or {}).get("values") or []]
    if "referenceValue" in v:
        return v["referenceValue"]
    if "geoPointValue" in v:
        return dict(v["geoPointValue"])
    if "bytesValue" in v:
        return v["bytesValue"]
    return v


def decode_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: decode_value(x) for k, x in fields.items()}


def _nest_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Turn {'customer.name': x} into {'customer': {'name': x}}."""
    out: Dict[str, Any] = {}
    for path, value in fields.items():
        parts = path.split(".")
        cur = out
        for part in parts[:-1]:
            cur = cur.setdefault(part, {})
        cur[parts[-1]] = value
    return out


def _with_http_fallback(url: str) -> str:
    if url.startswith("https://"):
        return "http://" + url[len("https://"):]
    return url


class FirestoreRestStore(RecordStore):
    def __init__(
        self,
        project: str,
        collection: str = "bills",
        *,
        base_url: str = DEFAULT_BASE_URL,
        database: str = "(default)",
        token: Optional[str] = None,
        api_key: Optional[str] = None,
        verify_tls: bool = True,
        timeout: int = 30,
        page_size: int = 300,
        session: Optional[requests.Session] = None,
    ):
        self.project = project
        self.collection = collection.strip("/")
        self.base_url = base_url.rstrip("/")
        self.database = database
        self.token = token
        self.api_key = api_key
        self.verify_tls = verify_tls
        self.timeout = timeout
        self.page_size = page_size
        self.session = session or requests.Session()

    def describe(self) -> str:
        return f"firestore:{self.project}/{self.database}/{self.collection} @ {self.base_url}"

    def _documents_url(self) -> str:
        return f"{self.base_url}/projects/{self.project}/databases/{self.database}/documents"

    def _collection_parent(self) -> Tuple[str, str]:
        parts = self.collection.split("/")
        parent = self._documents_url()
        if len(parts) > 1:
            parent = parent + "/" + "/".join(parts[:-1])
        return parent, parts[-1]

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[List[Tuple[str, str]]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        params = list(params or [])
        if self.api_key:
            params.append(("key", self.api_key))
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}

        LOG.trace("[trace] %s %s params=%s", method, url, [k for k, _ in params])
        try:
            try:
                r = self.session.request(
                    method, url, params=params, json=json_body, headers=headers,
                    verify=self.verify_tls, timeout=self.timeout,
                )
            except SSLError as e:
                alt = _with_http_fallback(url)
                if alt == url:
                    raise
                LOG.warning("[firestore] SSL error calling %s (%s). Retrying as %s", url, e, alt)
                r = self.session.request(
                    method, alt, params=params, json=json_body, headers=headers,
                    verify=self.verify_tls, timeout=self.timeout,
                )
                # Keep the downgraded scheme for the rest of this run
                self.base_url = _with_http_fallback(self.base_url)
        except requests.RequestException as e:
            raise StoreError(f"Firestore {method} {url} failed: {e}") from e

        if r.status_code < 200 or r.status_code >= 300:
            raise StoreError(
                f"Firestore {method} failed: {r.status_code} {r.text[:200]} (url={url})",
                status=r.status_code,
            )
        if not r.content:
            return {}
        try:
            return r.json()
        except ValueError as e:
            raise StoreError(f"Firestore {method} returned non-JSON body: {r.text[:200]}") from e

    @staticmethod
    def _to_document(raw: Dict[str, Any]) -> StoredDocument:
        name = raw.get("name") or ""
        return StoredDocument(id=name.rsplit("/", 1)[-1], data=decode_fields(raw.get("fields") or {}))

    def list_all(self, order_by: Optional[str] = None, descending: bool = False) -> List[StoredDocument]:
        url = f"{self._documents_url()}/{self.collection}"
        docs: List[StoredDocument] = []
        page_token: Optional[str] = None
        while True:
            params = [("pageSize", str(self.page_size))]
            if page_token:
                params.append(("pageToken", page_token))
            data = self._request("GET", url, params=params)
            for raw in data.get("documents") or []:
                docs.append(self._to_document(raw))
            page_token = data.get("nextPageToken")
            if not page_token:
                break
        LOG.info("[firestore] Listed %d document(s) from %s", len(docs), self.collection)
        # Ordered client side: a server-side orderBy drops documents missing the field
        if order_by:
            docs = self.order_documents(docs, order_by, descending)
        return docs

    def find(self, filters: Dict[str, Any]) -> List[StoredDocument]:
        parent, collection_id = self._collection_parent()
        clauses = [
            {"fieldFilter": {"field": {"fieldPath": k}, "op": "EQUAL", "value": encode_value(v)}}
            for k, v in filters.items()
        ]
        query: Dict[str, Any] = {"from": [{"collectionId": collection_id}]}
        if len(clauses) == 1:
            query["where"] = clauses[0]
        elif clauses:
            query["where"] = {"compositeFilter": {"op": "AND", "filters": clauses}}
        rows = self._request("POST", f"{parent}:runQuery", json_body={"structuredQuery": query})
        if not isinstance(rows, list):
            rows = [rows]
        return [self._to_document(row["document"]) for row in rows if isinstance(row, dict) and row.get("document")]

    def update_partial(self, doc_id: str, fields: Dict[str, Any]) -> None:
        url = f"{self._documents_url()}/{self.collection}/{doc_id}"
        params = [("updateMask.fieldPaths", path) for path in fields]
        params.append(("currentDocument.exists", "true"))
        body = {"fields": {k: encode_value(v) for k, v in _nest_fields(fields).items()}}
        self._request("PATCH", url, params=params, json_body=body)
