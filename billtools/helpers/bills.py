"""Bill records as the sequence tools see them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from billtools.helpers.record_store import StoredDocument
from billtools.helpers.sequence_ids import DEFAULT_PREFIX, format_bill_id, max_known_number, parse_bill_number
from billtools.helpers.timestamps import instant_of

BILL_ID_FIELD = "billId"
BILL_NUMBER_FIELD = "billNumber"
TIME_FIELDS = ("createdAt", "date", "dueDate", "updatedAt")


@dataclass
class Bill:
    doc_id: str
    bill_id: Optional[str]
    bill_number: Optional[int]
    customer: str
    ordering: Any
    store_index: int
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    def known_number(self, prefix: str = DEFAULT_PREFIX) -> Optional[int]:
        """billNumber, or the number in a canonical billId when the field is unset."""
        if self.bill_number is not None:
            return self.bill_number
        return parse_bill_number(self.bill_id, prefix)

    def sort_key(self) -> Tuple[Tuple[int, int], int]:
        # Bills without a usable instant sort as the epoch, then by store order
        return (instant_of(self.ordering) or (0, 0), self.store_index)


def customer_label(data: Dict[str, Any]) -> str:
    customer = data.get("customer")
    if isinstance(customer, dict) and isinstance(customer.get("name"), str) and customer["name"]:
        return customer["name"]
    name = data.get("customerName")
    if isinstance(name, str) and name:
        return name
    return "Unknown"


def bill_from_document(doc: StoredDocument, index: int, order_field: str = "date") -> Bill:
    data = doc.data
    bill_id = data.get(BILL_ID_FIELD)
    if bill_id is not None and not isinstance(bill_id, str):
        bill_id = str(bill_id)
    number = data.get(BILL_NUMBER_FIELD)
    if isinstance(number, bool) or not isinstance(number, int):
        number = None
    return Bill(
        doc_id=doc.id,
        bill_id=bill_id or None,
        bill_number=number,
        customer=customer_label(data),
        ordering=data.get(order_field),
        store_index=index,
        raw=data,
    )


def bills_from_documents(docs: Iterable[StoredDocument], order_field: str = "date") -> List[Bill]:
    return [bill_from_document(d, i, order_field) for i, d in enumerate(docs)]


def sort_bills(bills: Iterable[Bill]) -> List[Bill]:
    return sorted(bills, key=lambda b: b.sort_key())


def next_bill_id(bills: Iterable[Bill], prefix: str = DEFAULT_PREFIX) -> str:
    """Id the next new bill should receive."""
    return format_bill_id(max_known_number(b.known_number(prefix) for b in bills) + 1, prefix)
