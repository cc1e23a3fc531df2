"""
Normalization helpers shared by all connectors.

Provider payloads carry timestamps as unix seconds, ISO strings or local
day/month/year strings, and amounts as minor units or decimal strings. These
helpers turn them into the canonical types and raise ValueError on anything
they cannot interpret; connectors translate that into ConnectorPayloadError.
"""

import logging
import re
from datetime import date, datetime, time, timezone, tzinfo
from decimal import Decimal, InvalidOperation
from typing import Iterable

from ..schemas.transaction import Transaction

logger = logging.getLogger(__name__)

# ISO 4217 currencies without minor units (Stripe "zero-decimal" list)
ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
        "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
    }
)

# Placeholder records with no informational content
DEFAULT_NOISE_PATTERNS = (
    re.compile(r"^\s*payment\s+received[\s,.-]*thank\s+you\s*[.!]?\s*$", re.IGNORECASE),
)

_DMY_RE = re.compile(r"^\s*(\d{1,2})[./-](\d{1,2})[./-](\d{4})\s*$")
_WHITESPACE_RE = re.compile(r"\s+")


def parse_timestamp(value: object, default_tz: tzinfo = timezone.utc) -> datetime:
    """
    Parse a provider timestamp into an aware UTC datetime.

    Accepts:
    - int/float or digit strings: unix seconds
    - ISO 8601 strings, with or without offset ("Z" allowed)
    - date-only "YYYY-MM-DD" strings or date objects: midnight in default_tz
    - datetime objects (naive ones are taken as default_tz)

    Raises:
        ValueError: value is empty or not a real calendar instant
    """
    if value is None or value == "":
        raise ValueError("timestamp is empty")
    if isinstance(value, bool):
        raise ValueError(f"not a timestamp: {value!r}")

    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)

    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return datetime.fromtimestamp(int(text), tz=timezone.utc)
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValueError(f"unparseable timestamp: {value!r}") from e
    else:
        raise ValueError(f"unsupported timestamp type: {type(value).__name__}")

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=default_tz)
    return moment.astimezone(timezone.utc)


def parse_day_month_year(
    date_text: str,
    time_text: str | None = None,
    tz: tzinfo = timezone.utc,
) -> datetime:
    """
    Parse "dd.mm.yyyy" / "dd-mm-yyyy" plus optional "HH:MM[:SS]" in tz.

    Raises:
        ValueError: the day does not exist or the text is malformed
    """
    match = _DMY_RE.match(date_text or "")
    if not match:
        raise ValueError(f"unparseable date: {date_text!r}")
    day, month, year = (int(part) for part in match.groups())
    day_value = date(year, month, day)

    clock = time.min
    if time_text and time_text.strip():
        try:
            clock = time.fromisoformat(time_text.strip())
        except ValueError as e:
            raise ValueError(f"unparseable time: {time_text!r}") from e

    return datetime.combine(day_value, clock, tzinfo=tz).astimezone(timezone.utc)


def to_decimal(value: object) -> Decimal:
    """Parse a numeric payload value; commas are accepted as decimal separator."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise ValueError(f"not an amount: {value!r}")
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    else:
        text = str(value).strip().replace(" ", "").replace(",", ".")
        try:
            result = Decimal(text)
        except InvalidOperation as e:
            raise ValueError(f"not an amount: {value!r}") from e
    if not result.is_finite():
        raise ValueError(f"not an amount: {value!r}")
    return result


def minor_to_major(amount: object, currency: str) -> Decimal:
    """Convert minor units (cents) to a decimal amount."""
    value = to_decimal(amount)
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return value
    return value / Decimal(100)


def clean_description(text: str | None, fallback: str = "") -> str:
    """Trim and collapse internal whitespace."""
    if not text:
        return fallback
    cleaned = _WHITESPACE_RE.sub(" ", str(text)).strip()
    return cleaned or fallback


def is_noise(text: str | None, patterns=DEFAULT_NOISE_PATTERNS) -> bool:
    """True if the text is a known placeholder with no informational content."""
    if not text:
        return False
    return any(pattern.match(text) for pattern in patterns)


def collapse_duplicates(transactions: Iterable[Transaction]) -> list[Transaction]:
    """
    Keep one transaction per id; later records replace earlier ones.

    Returns:
        Transactions in first-seen order
    """
    by_id: dict[str, Transaction] = {}
    collapsed = 0
    for transaction in transactions:
        if transaction.id in by_id:
            collapsed += 1
        by_id[transaction.id] = transaction
    if collapsed:
        logger.debug("Collapsed %d same-identity records (last write wins)", collapsed)
    return list(by_id.values())


def merge_streams(*streams: Iterable[Transaction]) -> list[Transaction]:
    """Merge sub-ledger streams into one list sorted ascending by date."""
    merged: list[Transaction] = []
    for stream in streams:
        merged.extend(stream)
    return sorted(collapse_duplicates(merged), key=lambda t: t.date)
