from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

VAT_RATE = Decimal("0.14")
TWO_PLACES = Decimal("0.01")

CURRENCY_MARKERS = ("EGP", "USD", "EUR", "SAR", "AED", "GBP", "ج.م.", "ج.م", "جنيه", "£", "$", "€")
_CURRENCY_RE = re.compile("|".join(re.escape(marker) for marker in CURRENCY_MARKERS), re.I)
_ARABIC_DIGITS = str.maketrans("٠١٢٣٤٥٦٧٨٩٫٬", "0123456789.,")
_NUMBER_RE = re.compile(r"-?\d[\d,]*(?:\.\d+)?|-?\.\d+")
AMOUNT_TEXT_RE = re.compile(r"^\s*-?[\d,]+(?:\.\d+)?\s*$")


def normalize_digits(text: str) -> str:
    return (text or "").translate(_ARABIC_DIGITS)


def has_currency(text: str) -> bool:
    return bool(_CURRENCY_RE.search(text or ""))


def parse_amount(text: str | None) -> Decimal | None:
    """Parse a display amount such as ``"EGP 1,140.50"`` into a Decimal."""

    if text is None:
        return None
    cleaned = _CURRENCY_RE.sub(" ", normalize_digits(str(text)))
    cleaned = cleaned.replace("\u00a0", " ").strip()
    match = _NUMBER_RE.search(cleaned)
    if not match:
        return None
    try:
        return Decimal(match.group(0).replace(",", ""))
    except InvalidOperation:
        return None


def format_amount(value: Decimal | None) -> str:
    if value is None:
        return ""
    quantized = value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    return f"{quantized:,.2f}"


def split_vat(total: Decimal, rate: Decimal = VAT_RATE) -> tuple[Decimal, Decimal]:
    """Split a VAT-inclusive total into ``(net, vat)``.

    ``vat = total * r / (1 + r)`` rounded to two places; ``net`` is the
    remainder so ``net + vat == total`` at display precision.
    """

    total = total.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    vat = (total * rate / (Decimal(1) + rate)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    net = total - vat
    return net, vat
