"""
Ledger text encodings (SSOT).

The spreadsheet stores human-formatted strings, not structured values. The
temporal dedup strategy compares fetched transactions against rows already in
the sheet, so it must reproduce the sheet's formatting exactly. Both the sink
(when writing) and the dedup filter (when comparing) go through this module.

Encodings:
- Date: dd/mm/yy in the ledger's timezone
- Amount: optional "-" sign, optional prefix, thousands separators, 2 decimals
  e.g. "-1,234.50" or "-$1,234.50" with prefix "$"
- Description ("To/From"): card accounts show the provider's original
  descriptor, other accounts prefer the memo
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from zoneinfo import ZoneInfo

from .transaction import Direction, Transaction

# Two-digit years below this pivot belong to the 2000s
TWO_DIGIT_YEAR_PIVOT = 50

_LEDGER_DATE_RE = re.compile(r"^\s*(\d{1,2})/(\d{1,2})/(\d{2}|\d{4})\s*$")


def parse_ledger_date(text: str | None) -> date | None:
    """
    Parse a dd/mm/yy (or dd/mm/yyyy) ledger cell.

    Two-digit years pivot at 50: "21/11/25" -> 2025-11-21,
    "21/11/73" -> 1973-11-21.

    Returns:
        The calendar date, or None when the text is not a valid date.
    """
    if not text:
        return None
    match = _LEDGER_DATE_RE.match(text)
    if not match:
        return None

    day, month, year = (int(part) for part in match.groups())
    if len(match.group(3)) == 2:
        year = 2000 + year if year < TWO_DIGIT_YEAR_PIVOT else 1900 + year

    try:
        return date(year, month, day)
    except ValueError:
        return None


def format_thousands(amount: Decimal) -> str:
    """Format a magnitude with two decimals and comma thousands separators."""
    quantized = abs(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return f"{quantized:,.2f}"


@dataclass(frozen=True)
class LedgerFormat:
    """Formatting rules of a human-formatted ledger worksheet."""

    timezone: str = "UTC"
    amount_prefix: str = ""
    card_accounts: tuple[str, ...] = ("Brex Card",)
    default_counterparty: str = ""

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def local_date(self, moment: datetime) -> date:
        """Calendar day of an instant as seen by the ledger."""
        return moment.astimezone(self.tz).date()

    def format_date(self, moment: datetime) -> str:
        return self.local_date(moment).strftime("%d/%m/%y")

    def format_amount(self, transaction: Transaction) -> str:
        sign = "-" if transaction.direction is Direction.EXPENSE else ""
        return f"{sign}{self.amount_prefix}{format_thousands(transaction.amount)}"

    def resolve_description(self, transaction: Transaction) -> str:
        """Text shown in the To/From column."""
        if transaction.account in self.card_accounts:
            original = transaction.source_metadata.get("original_description")
            return original or transaction.description or self.default_counterparty
        if transaction.memo:
            return transaction.memo
        return transaction.description or self.default_counterparty

    def row_key(self, transaction: Transaction) -> tuple[str, str, str]:
        """(date, amount, description) triple as the ledger would store it."""
        return (
            self.format_date(transaction.date),
            self.format_amount(transaction),
            self.resolve_description(transaction),
        )
