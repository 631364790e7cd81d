"""Timestamp shapes found on bill documents.

The store's native timestamp type is represented here by `Timestamp`.
Older bills carry the same instant in other shapes: a plain
{seconds, nanoseconds} map, a string, or a bare datetime. Every value is
classified into exactly one tagged kind before anything is converted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional, Tuple, Union

NANOS_PER_SECOND = 1_000_000_000
# 0001-01-01T00:00:00Z and 9999-12-31T23:59:59Z, the range the store accepts
MIN_SECONDS = -62_135_596_800
MAX_SECONDS = 253_402_300_799
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_RFC3339_RX = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt ](\d{2}:\d{2}:\d{2})(?:\.(\d{1,9}))?([Zz]|[+-]\d{2}:\d{2})$"
)

# Calendar formats accepted after ISO 8601, month-first like the browser's Date parser
_FALLBACK_FORMATS = (
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%m-%d-%Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d %b %Y",
    "%d %B %Y",
    "%a %b %d %Y %H:%M:%S GMT%z",
    "%a %b %d %Y",
)
_JS_ZONE_NAME_RX = re.compile(r"\s*\([^)]*\)\s*$")


class TimestampParseError(ValueError):
    pass


@dataclass(frozen=True, order=True)
class Timestamp:
    """An instant as whole seconds since the epoch plus nanoseconds."""

    seconds: int
    nanoseconds: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.nanoseconds < NANOS_PER_SECOND:
            raise TimestampParseError(f"nanoseconds out of range: {self.nanoseconds}")
        if not MIN_SECONDS <= self.seconds <= MAX_SECONDS:
            raise TimestampParseError(f"seconds out of range: {self.seconds}")

    @classmethod
    def from_datetime(cls, value: datetime) -> "Timestamp":
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        delta = value - EPOCH
        return cls(delta.days * 86400 + delta.seconds, delta.microseconds * 1000)

    @classmethod
    def from_rfc3339(cls, text: str) -> "Timestamp":
        m = _RFC3339_RX.match(text.strip())
        if not m:
            raise TimestampParseError(f"not an RFC 3339 timestamp: {text!r}")
        day, clock, frac, zone = m.groups()
        base = datetime.strptime(f"{day}T{clock}", "%Y-%m-%dT%H:%M:%S").replace(tzinfo=timezone.utc)
        if zone not in ("Z", "z"):
            sign = 1 if zone[0] == "+" else -1
            hours, minutes = int(zone[1:3]), int(zone[4:6])
            base -= sign * timedelta(hours=hours, minutes=minutes)
        nanos = int((frac or "").ljust(9, "0"))
        return cls.from_datetime(base).with_nanoseconds(nanos)

    @classmethod
    def now(cls) -> "Timestamp":
        return cls.from_datetime(datetime.now(timezone.utc))

    def with_nanoseconds(self, nanoseconds: int) -> "Timestamp":
        return Timestamp(self.seconds, nanoseconds)

    def to_datetime(self) -> datetime:
        return EPOCH + timedelta(seconds=self.seconds, microseconds=self.nanoseconds // 1000)

    def to_rfc3339(self) -> str:
        whole = (EPOCH + timedelta(seconds=self.seconds)).replace(tzinfo=None).isoformat()
        if self.nanoseconds:
            return f"{whole}.{self.nanoseconds:09d}Z"
        return f"{whole}Z"

    def instant(self) -> Tuple[int, int]:
        return (self.seconds, self.nanoseconds)


# ----------------------------
# Tagged kinds
# ----------------------------
@dataclass(frozen=True)
class CanonicalTime:
    value: Timestamp
    label = "Timestamp"


@dataclass(frozen=True)
class LegacyStruct:
    seconds: int
    nanoseconds: int
    label = "Map"


@dataclass(frozen=True)
class LegacyString:
    text: str
    label = "String"


@dataclass(frozen=True)
class LegacyNative:
    value: date
    label = "Date"


@dataclass(frozen=True)
class AbsentTime:
    label = "missing"


@dataclass(frozen=True)
class UnrecognizedTime:
    value: Any
    label = "unknown"


TimeKind = Union[CanonicalTime, LegacyStruct, LegacyString, LegacyNative, AbsentTime, UnrecognizedTime]


def needs_fix(kind: TimeKind) -> bool:
    return not isinstance(kind, (CanonicalTime, AbsentTime))


def _whole_number(v: Any) -> Optional[int]:
    if isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    if isinstance(v, float) and v.is_integer():
        return int(v)
    return None


def classify_time_value(value: Any) -> TimeKind:
    if value is None or value == "":
        return AbsentTime()
    if isinstance(value, Timestamp):
        return CanonicalTime(value)
    if isinstance(value, dict):
        seconds = _whole_number(value.get("seconds"))
        nanos = _whole_number(value.get("nanoseconds"))
        if seconds is not None and nanos is not None:
            return LegacyStruct(seconds, nanos)
        return UnrecognizedTime(value)
    if isinstance(value, str):
        return LegacyString(value)
    if isinstance(value, date):
        return LegacyNative(value)
    return UnrecognizedTime(value)


def parse_time_string(text: str) -> Timestamp:
    s = text.strip()
    if not s:
        raise TimestampParseError("empty date string")
    try:
        return Timestamp.from_rfc3339(s)
    except TimestampParseError:
        pass
    try:
        return Timestamp.from_datetime(datetime.fromisoformat(s.replace("Z", "+00:00")))
    except ValueError:
        pass
    s = _JS_ZONE_NAME_RX.sub("", s)
    for fmt in _FALLBACK_FORMATS:
        try:
            return Timestamp.from_datetime(datetime.strptime(s, fmt))
        except ValueError:
            continue
    raise TimestampParseError(f"unparseable date string: {text!r}")


def normalize_time(kind: TimeKind) -> Optional[Timestamp]:
    """Canonical Timestamp for a classified value; None when absent."""
    if isinstance(kind, CanonicalTime):
        return kind.value
    if isinstance(kind, AbsentTime):
        return None
    if isinstance(kind, LegacyStruct):
        return Timestamp(kind.seconds, kind.nanoseconds)
    if isinstance(kind, LegacyString):
        return parse_time_string(kind.text)
    if isinstance(kind, LegacyNative):
        v = kind.value
        if not isinstance(v, datetime):
            v = datetime(v.year, v.month, v.day)
        return Timestamp.from_datetime(v)
    raise TimestampParseError(f"cannot convert {type(kind.value).__name__} value to a timestamp")


def instant_of(value: Any) -> Optional[Tuple[int, int]]:
    """(seconds, nanoseconds) for any representation, or None if unusable."""
    try:
        ts = normalize_time(classify_time_value(value))
    except TimestampParseError:
        return None
    return ts.instant() if ts is not None else None
