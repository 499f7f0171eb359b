from datetime import date, datetime
from decimal import Decimal

import pytest

from app.ims.utils import (
    clean_str,
    next_sequence_number,
    parse_bool,
    parse_date,
    parse_decimal,
    parse_int,
    round_half_up,
    text_value,
)


def test_next_sequence_number():
    assert next_sequence_number([], "R-") == "R-001"
    assert next_sequence_number(["R-001", "R-007", "R-003"], "R-") == "R-008"
    assert next_sequence_number(["R-001", "X-050", "R-abc", None], "R-") == "R-002"
    assert next_sequence_number(["OBJ-999"], "OBJ-") == "OBJ-1000"


def test_parse_date():
    assert parse_date("2026-03-01") == date(2026, 3, 1)
    assert parse_date("2026-03-01T10:00:00Z") == date(2026, 3, 1)
    assert parse_date(datetime(2026, 3, 1, 8)) == date(2026, 3, 1)
    assert parse_date("") is None
    with pytest.raises(ValueError):
        parse_date("03/01/2026")


def test_parse_numbers():
    assert parse_int("5") == 5
    assert parse_int("", 3) == 3
    with pytest.raises(ValueError):
        parse_int(True)
    assert parse_decimal("12.50") == Decimal("12.50")
    assert parse_decimal(None) is None
    with pytest.raises(ValueError):
        parse_decimal("abc")
    for value in ("NaN", "Infinity", "-inf", float("nan")):
        with pytest.raises(ValueError):
            parse_decimal(value)


def test_misc_helpers():
    assert clean_str("  x ") == "x"
    assert clean_str("   ") is None
    assert text_value("  x ") == "x"
    assert text_value(123) == ""
    assert text_value(None) == ""
    assert parse_bool("yes") is True
    assert parse_bool("off") is False
    assert parse_bool(None, default=True) is True
    assert round_half_up(66.5) == 67
    assert round_half_up(66.49) == 66
