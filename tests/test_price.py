from decimal import Decimal

import pytest

from catalog_sync.sync.components.price import (
    apply_margin,
    apply_margin_to_prices,
    parse_locale_decimal,
    to_price_string,
)


@pytest.mark.parametrize("raw, expected", [
    ("100", Decimal("100")),
    ("1.234,56", Decimal("1234.56")),
    ("1,234.56", Decimal("1234.56")),
    ("99,90", Decimal("99.90")),
    ("₺ 1.250,00", Decimal("1250.00")),
    ("1.2.3", Decimal("12.3")),
    ("-5", Decimal("-5")),
    (12, Decimal("12")),
    (12.5, Decimal("12.5")),
])
def test_parse_locale_decimal(raw, expected):
    assert parse_locale_decimal(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "abc", "-", "."])
def test_parse_locale_decimal_non_numeric(raw):
    assert parse_locale_decimal(raw) is None


def test_apply_margin_rounds_to_integer():
    assert apply_margin("100", 10, True) == "110"
    assert apply_margin("99,90", 10, True) == "110"  # 109.89 -> 110
    assert apply_margin("10.5", 0, True) == "11"  # half up


def test_apply_margin_two_decimals():
    assert apply_margin("100", 12.5, False) == "112.50"
    assert apply_margin("1.234,56", 0, False) == "1234.56"


def test_apply_margin_absent_and_unparseable():
    assert apply_margin(None, 20, True) is None
    assert apply_margin("abc", 20, True) == "abc"


def test_apply_margin_leaves_unrepresentable_results_untouched():
    huge = "1" * 30
    assert apply_margin(huge, 10, True) == huge
    assert apply_margin("100", float("inf"), True) == "100"
    assert apply_margin("100", float("nan"), False) == "100"
    assert apply_margin("0", float("inf"), True) == "0"


def test_apply_margin_matches_rounded_product():
    for v in ("1", "7", "19.99", "250", "1000"):
        for p in (0, 5, 17.5, 100):
            expected = (Decimal(v) * (1 + Decimal(str(p)) / 100)).quantize(Decimal("1"), rounding="ROUND_HALF_UP")
            assert apply_margin(v, p, True) == str(expected)


def test_apply_margin_on_selects_fields():
    assert apply_margin_to_prices("100", "80", 10, "regular") == ("110", "80")
    assert apply_margin_to_prices("100", "80", 10, "sale") == ("100", "88")
    assert apply_margin_to_prices("100", "80", 10, "both") == ("110", "88")
    assert apply_margin_to_prices("100", None, 10, "both") == ("110", None)


def test_to_price_string():
    assert to_price_string("1.250,00") == "1250.00"
    assert to_price_string(100) == "100"
    assert to_price_string("n/a") is None
    assert to_price_string(None) is None
