from __future__ import annotations

import pytest

from billtools.helpers.sequence_ids import (
    BillIdFormat,
    classify_bill_id,
    format_bill_id,
    max_known_number,
    parse_bill_number,
)


def test_format_pads_to_minimum_width_without_truncating():
    assert format_bill_id(1) == "Bill001"
    assert format_bill_id(42) == "Bill042"
    assert format_bill_id(999) == "Bill999"
    assert format_bill_id(1000) == "Bill1000"
    assert format_bill_id(12345, prefix="INV") == "INV12345"


def test_format_rejects_non_positive_numbers():
    with pytest.raises(ValueError):
        format_bill_id(0)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("Bill001", BillIdFormat.CANONICAL),
        ("Bill1200", BillIdFormat.CANONICAL),
        ("Bill01", BillIdFormat.MISSING),
        ("#101", BillIdFormat.HASH),
        ("BILL215896", BillIdFormat.TIMESTAMP),
        ("BILL21589", BillIdFormat.MISSING),
        ("X", BillIdFormat.MISSING),
        ("", BillIdFormat.MISSING),
        (None, BillIdFormat.MISSING),
        (17, BillIdFormat.MISSING),
    ],
)
def test_classify_bill_id(value, expected):
    assert classify_bill_id(value) is expected


def test_parse_bill_number_only_reads_canonical_ids():
    assert parse_bill_number("Bill096") == 96
    assert parse_bill_number("Bill1000") == 1000
    assert parse_bill_number("#101") is None
    assert parse_bill_number("BILL215896") is None
    assert parse_bill_number(None) is None


def test_max_known_number_ignores_unknowns():
    assert max_known_number([3, None, 7, 2]) == 7
    assert max_known_number([]) == 0
