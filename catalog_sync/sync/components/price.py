# catalog_sync/sync/components/price.py
from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional, Tuple

_NON_NUMERIC_RE = re.compile(r"[^0-9.\-]")


def parse_locale_decimal(value: Any) -> Optional[Decimal]:
    """
    Parse "1.234,56", "1,234.56", "₺ 99,90", "100" ... into a Decimal.
    The last '.' or ',' is the decimal point; every earlier separator is a thousands mark.
    Returns None when nothing numeric is left.
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return Decimal(str(value))

    s = str(value).strip()
    if s.rfind(",") > s.rfind("."):
        s = s.replace(".", "").replace(",", ".")
    else:
        s = s.replace(",", "")
    s = _NON_NUMERIC_RE.sub("", s)
    if s.count(".") > 1:
        head, _, tail = s.rpartition(".")
        s = head.replace(".", "") + "." + tail
    if not s or s in {"-", ".", "-."}:
        return None
    try:
        return Decimal(s)
    except InvalidOperation:
        return None


def format_price(value: Decimal, round_to_integer: bool) -> str:
    if round_to_integer:
        return str(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    # avoid scientific notation and guarantee 2 decimals
    return f"{value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP):.2f}"


def apply_margin(value: Optional[str], percent: float, round_to_integer: bool = True) -> Optional[str]:
    """
    Apply a percentage margin to a price string.
    None stays None; an unparseable or unrepresentable value is returned untouched.
    """
    if value is None:
        return None
    number = parse_locale_decimal(value)
    if number is None:
        return value
    try:
        result = number * (Decimal(1) + Decimal(str(percent or 0)) / Decimal(100))
        if not result.is_finite():
            return value
        return format_price(result, round_to_integer)
    except InvalidOperation:
        # beyond decimal context precision
        return value


def apply_margin_to_prices(
    regular_price: Optional[str],
    sale_price: Optional[str],
    percent: float,
    apply_on: str = "regular",
    round_to_integer: bool = True,
) -> Tuple[Optional[str], Optional[str]]:
    """Run apply_margin on regular, sale or both prices."""
    if apply_on in ("regular", "both"):
        regular_price = apply_margin(regular_price, percent, round_to_integer)
    if apply_on in ("sale", "both"):
        sale_price = apply_margin(sale_price, percent, round_to_integer)
    return regular_price, sale_price


def to_price_string(value: Any) -> Optional[str]:
    """Locale-normalized decimal string for a raw feed price ("1.250,00" -> "1250.00")."""
    if value is None:
        return None
    number = parse_locale_decimal(value)
    if number is None:
        return None
    return format(number, "f")
