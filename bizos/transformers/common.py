"""
Shared helpers for entity transformers

Money is carried as Decimal quantized to cents with ROUND_HALF_UP; values
arriving as JSON numbers go through str() first so binary float noise never
reaches the store. Datetimes are stored as naive UTC.
"""
import re
from datetime import datetime, date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional

import pytz
from bs4 import BeautifulSoup
from dateutil import parser as date_parser

CENTS = Decimal("0.01")
FOUR_PLACES = Decimal("0.0001")

_WS_RE = re.compile(r"\s+")

# Fixed preference for multi-locale name fields
LOCALE_PREFERENCE = ("es", "en", "pt")


def to_decimal(value: Any, places: Decimal = CENTS) -> Optional[Decimal]:
    """Parse a provider amount (str, int or float) into a quantized Decimal."""
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation:
            return None
    return amount.quantize(places, rounding=ROUND_HALF_UP)


def decimal_or_zero(value: Any, places: Decimal = CENTS) -> Decimal:
    amount = to_decimal(value, places)
    return amount if amount is not None else Decimal("0").quantize(places)


def from_minor_units(value: Optional[int], exponent: int = 2) -> Optional[Decimal]:
    """Stripe-style integer minor units (cents) to a Decimal amount."""
    if value is None:
        return None
    return (Decimal(int(value)) / (Decimal(10) ** exponent)).quantize(CENTS, rounding=ROUND_HALF_UP)


def to_int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        return int(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return default


def to_float(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_datetime(value: Any) -> Optional[datetime]:
    """ISO string, datetime or unix timestamp to naive UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.utcfromtimestamp(value)
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = date_parser.parse(str(value))
        except (ValueError, OverflowError):
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(pytz.UTC).replace(tzinfo=None)
    return parsed


def parse_date(value: Any) -> Optional[date]:
    """Date from 'YYYY-MM-DD', 'YYYYMMDD' or a datetime string."""
    if value is None or value == "":
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    text = str(value)
    if len(text) == 8 and text.isdigit():
        text = f"{text[0:4]}-{text[4:6]}-{text[6:8]}"
    parsed = parse_datetime(text)
    return parsed.date() if parsed else None


def strip_html(value: Optional[str]) -> Optional[str]:
    """Convert a provider HTML field to plain text; script and style bodies are dropped."""
    if not value:
        return None
    soup = BeautifulSoup(value, "lxml")
    for tag in soup.find_all(["script", "style"]):
        tag.decompose()
    text = _WS_RE.sub(" ", soup.get_text(separator=" ", strip=True)).strip()
    return text or None


def split_tags(value: Any) -> List[str]:
    """Comma-separated tag string (or list) to a clean list."""
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        items: Iterable[Any] = value
    else:
        items = str(value).split(",")
    return [str(tag).strip() for tag in items if str(tag).strip()]


def pick_localized(value: Any) -> Optional[str]:
    """
    Pick a display string from a multi-locale field.

    Order: es, en, pt, then the first key in the provider's order. Plain
    strings pass through.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        for locale in LOCALE_PREFERENCE:
            if value.get(locale):
                return value[locale]
        for candidate in value.values():
            if candidate:
                return candidate
    return None


def stringify_id(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def entity(workspace_id: str, source: str, external_id: Any, **fields: Any) -> Dict[str, Any]:
    """Normalized entity dict with its identity triple."""
    return {
        "workspace_id": workspace_id,
        "source": source,
        "external_id": str(external_id),
        **fields,
    }
