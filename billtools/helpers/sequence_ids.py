"""Bill id formats.

A canonical bill id is the prefix followed by a zero-padded number
(Bill001, Bill002, ... Bill1000). Older data also carries hash ids (#101)
and the timestamp ids the billing screen used to mint (BILL215896).
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Iterable, Optional

DEFAULT_PREFIX = "Bill"
PAD_WIDTH = 3

_TIMESTAMP_ID_RX = re.compile(r"^BILL\d{6}$")


class BillIdFormat(str, Enum):
    CANONICAL = "canonical"
    HASH = "hash"
    TIMESTAMP = "timestamp"
    MISSING = "missing"


FORMAT_LABELS = {
    BillIdFormat.CANONICAL: "Bill001 format",
    BillIdFormat.HASH: "Hash format (#101)",
    BillIdFormat.TIMESTAMP: "Timestamp format (BILL215896)",
    BillIdFormat.MISSING: "Missing/Invalid",
}


def _canonical_rx(prefix: str) -> "re.Pattern[str]":
    return re.compile(rf"^{re.escape(prefix)}(\d{{{PAD_WIDTH},}})$")


def format_bill_id(number: int, prefix: str = DEFAULT_PREFIX, width: int = PAD_WIDTH) -> str:
    """Zero-pad to at least `width` digits; larger numbers keep every digit."""
    if number < 1:
        raise ValueError(f"bill numbers start at 1, got {number}")
    return f"{prefix}{number:0{width}d}"


def classify_bill_id(value: object, prefix: str = DEFAULT_PREFIX) -> BillIdFormat:
    if not isinstance(value, str) or not value:
        return BillIdFormat.MISSING
    if _canonical_rx(prefix).match(value):
        return BillIdFormat.CANONICAL
    if value.startswith("#"):
        return BillIdFormat.HASH
    if _TIMESTAMP_ID_RX.match(value):
        return BillIdFormat.TIMESTAMP
    return BillIdFormat.MISSING


def parse_bill_number(value: object, prefix: str = DEFAULT_PREFIX) -> Optional[int]:
    """Number embedded in a canonical id, or None for any other format."""
    if not isinstance(value, str):
        return None
    m = _canonical_rx(prefix).match(value)
    if not m:
        return None
    return int(m.group(1))


def max_known_number(numbers: Iterable[Optional[int]]) -> int:
    highest = 0
    for n in numbers:
        if n is not None and n > highest:
            highest = n
    return highest
