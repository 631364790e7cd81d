"""Record store access for the bills collection.

Every tool talks to the collection through the small `RecordStore`
contract: list everything, filter by field equality, and merge named
fields into one existing document. `JsonFileStore` keeps the collection in
a local JSON file; the Firestore variant lives in firestore_rest.py.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from billtools.helpers.bill_common import now_ts_local, safe_write_json
from billtools.helpers.timestamps import Timestamp, TimestampParseError, instant_of

LOG = logging.getLogger("record_store")

TIMESTAMP_MARKER = "__timestamp__"


class StoreError(RuntimeError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


@dataclass
class StoredDocument:
    id: str
    data: Dict[str, Any] = field(default_factory=dict)

    def get(self, path: str, default: Any = None) -> Any:
        return get_field(self.data, path, default)


def get_field(data: Dict[str, Any], path: str, default: Any = None) -> Any:
    """Read a dotted field path such as 'customer.name'."""
    cur: Any = data
    for part in path.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return default
        cur = cur[part]
    return cur


def _set_field(data: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    cur = data
    for part in parts[:-1]:
        nxt = cur.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            cur[part] = nxt
        cur = nxt
    cur[parts[-1]] = value


def _order_key(value: Any) -> Tuple[int, Any]:
    inst = instant_of(value)
    if inst is not None:
        return (0, inst)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (1, value)
    if isinstance(value, str):
        return (2, value)
    return (3, 0)


class RecordStore:
    """Minimal collection contract shared by every backend."""

    def describe(self) -> str:
        raise NotImplementedError

    def list_all(self, order_by: Optional[str] = None, descending: bool = False) -> List[StoredDocument]:
        raise NotImplementedError

    def find(self, filters: Dict[str, Any]) -> List[StoredDocument]:
        raise NotImplementedError

    def update_partial(self, doc_id: str, fields: Dict[str, Any]) -> None:
        raise NotImplementedError

    def backup(self) -> Optional[str]:
        """Copy the collection aside before a mutating run; None if unsupported."""
        return None

    @staticmethod
    def order_documents(docs: List[StoredDocument], order_by: str, descending: bool = False) -> List[StoredDocument]:
        """Stable ordering by one field; documents lacking the field go last."""
        present = [d for d in docs if d.get(order_by) is not None]
        missing = [d for d in docs if d.get(order_by) is None]
        present.sort(key=lambda d: _order_key(d.get(order_by)), reverse=descending)
        return present + missing


# ----------------------------
# JSON value encoding
# ----------------------------
def decode_json_value(v: Any) -> Any:
    if isinstance(v, dict):
        if set(v.keys()) == {TIMESTAMP_MARKER} and isinstance(v[TIMESTAMP_MARKER], str):
            try:
                return Timestamp.from_rfc3339(v[TIMESTAMP_MARKER])
            except TimestampParseError:
                LOG.warning("[warn] Unreadable %s value kept as-is: %r", TIMESTAMP_MARKER, v)
                return v
        return {k: decode_json_value(val) for k, val in v.items()}
    if isinstance(v, list):
        return [decode_json_value(x) for x in v]
    return v


def encode_json_value(v: Any) -> Any:
    if isinstance(v, Timestamp):
        return {TIMESTAMP_MARKER: v.to_rfc3339()}
    if isinstance(v, (datetime, date)):
        return v.isoformat()
    if isinstance(v, dict):
        return {str(k): encode_json_value(val) for k, val in v.items()}
    if isinstance(v, (list, tuple)):
        return [encode_json_value(x) for x in v]
    return v


class JsonFileStore(RecordStore):
    """Bills kept in a JSON file.

    Supports both the versioned root {"version": n, "bills": [...]} and
    the older structure that is just a list of bill objects. Every bill
    object carries its internal id under "id".
    """

    def __init__(self, path: str, collection: str = "bills"):
        self.path = os.path.abspath(os.path.expanduser(path))
        self.collection = collection

    def describe(self) -> str:
        return f"json:{self.path} ({self.collection})"

    def _load(self) -> Tuple[Any, List[Any]]:
        if not os.path.isfile(self.path):
            raise StoreError(f"bills file not found: {self.path}", status=404)
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"failed to read {self.path}: {e}") from e

        if isinstance(data, dict) and isinstance(data.get(self.collection), list):
            return data, data[self.collection]
        if isinstance(data, list):
            return data, data
        raise StoreError(
            f"Unexpected structure in {self.path}: expected a dict with '{self.collection}' "
            "or a list of bill objects."
        )

    def _save(self, root: Any, docs: List[Any]) -> None:
        if isinstance(root, dict):
            root[self.collection] = docs
            version = root.get("version")
            if isinstance(version, int) and not isinstance(version, bool):
                root["version"] = version + 1
            safe_write_json(self.path, root)
        else:
            safe_write_json(self.path, docs)

    def list_all(self, order_by: Optional[str] = None, descending: bool = False) -> List[StoredDocument]:
        _, raw_docs = self._load()
        docs: List[StoredDocument] = []
        for idx, raw in enumerate(raw_docs):
            if not isinstance(raw, dict) or raw.get("id") in (None, ""):
                LOG.warning("[warn] Skipping entry %d in %s: not an object with an 'id'", idx, self.path)
                continue
            data = {k: decode_json_value(v) for k, v in raw.items() if k != "id"}
            docs.append(StoredDocument(id=str(raw["id"]), data=data))
        if order_by:
            docs = self.order_documents(docs, order_by, descending)
        return docs

    def find(self, filters: Dict[str, Any]) -> List[StoredDocument]:
        return [
            d for d in self.list_all()
            if all(d.get(k) == v for k, v in filters.items())
        ]

    def update_partial(self, doc_id: str, fields: Dict[str, Any]) -> None:
        root, raw_docs = self._load()
        for raw in raw_docs:
            if isinstance(raw, dict) and str(raw.get("id")) == doc_id:
                for path, value in fields.items():
                    _set_field(raw, path, encode_json_value(value))
                self._save(root, raw_docs)
                LOG.trace("[trace] updated %s fields=%s", doc_id, sorted(fields))
                return
        raise StoreError(f"document not found: {doc_id}", status=404)

    def backup(self) -> Optional[str]:
        backup_path = f"{self.path}.backup-{now_ts_local()}"
        shutil.copy2(self.path, backup_path)
        LOG.info("[info] Created backup: %s", backup_path)
        return backup_path
