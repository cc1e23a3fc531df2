"""
Sync anchors and dedup strategies.

An anchor is a snapshot of what the ledger already holds, recomputed from the
sink at the start of every run. Which anchor a source uses is fixed by its
strategy, chosen in configuration:

- IdentitySet: the ledger keeps a stable id column; anchor = all ids written.
- TemporalBoundary: the ledger only keeps formatted date/description/amount;
  anchor = latest date plus the exact rows written on that date.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Sequence, Union

from .formatting import LedgerFormat, parse_ledger_date

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerRow:
    """Exact text of a row already in the ledger."""

    date_text: str
    amount_text: str
    description_text: str

    def as_key(self) -> tuple[str, str, str]:
        return (self.date_text, self.amount_text, self.description_text)


@dataclass(frozen=True)
class IdentityAnchor:
    """All transaction ids already recorded in the ledger."""

    known_ids: frozenset[str] = frozenset()

    @classmethod
    def from_column(cls, values: Iterable[Sequence[str]], skip_header: bool = True) -> "IdentityAnchor":
        """Build from a single-column sheet range (list of rows)."""
        ids = set()
        for index, row in enumerate(values):
            if skip_header and index == 0:
                continue
            if row and row[0] and str(row[0]).strip():
                ids.add(str(row[0]).strip())
        return cls(known_ids=frozenset(ids))


@dataclass(frozen=True)
class TemporalAnchor:
    """Latest ledger date and the rows written on it."""

    latest_date: date | None = None
    latest_date_rows: tuple[LedgerRow, ...] = ()

    @classmethod
    def from_rows(
        cls,
        values: Iterable[Sequence[str]],
        date_col: int = 0,
        description_col: int = 1,
        amount_col: int = 2,
        skip_header: bool = True,
    ) -> "TemporalAnchor":
        """
        Build from raw sheet rows.

        Rows missing the date, description or amount cell are skipped, as are
        rows whose date does not parse. Neither is an error.
        """
        parsed: list[tuple[date, LedgerRow]] = []
        skipped = 0
        width = max(date_col, description_col, amount_col) + 1

        for index, row in enumerate(values):
            if skip_header and index == 0:
                continue
            cells = [str(c).strip() for c in row] if row else []
            if len(cells) < width:
                skipped += 1
                continue
            date_text = cells[date_col]
            description_text = cells[description_col]
            amount_text = cells[amount_col]
            if not (date_text and description_text and amount_text):
                skipped += 1
                continue

            row_date = parse_ledger_date(date_text)
            if row_date is None:
                skipped += 1
                continue
            parsed.append((row_date, LedgerRow(date_text, amount_text, description_text)))

        if skipped:
            logger.debug("Ignored %d ledger rows without a usable date/amount/description", skipped)

        if not parsed:
            return cls()

        latest = max(row_date for row_date, _ in parsed)
        rows = tuple(row for row_date, row in parsed if row_date == latest)
        return cls(latest_date=latest, latest_date_rows=rows)

    def row_keys(self) -> set[tuple[str, str, str]]:
        return {row.as_key() for row in self.latest_date_rows}


@dataclass(frozen=True)
class IdentitySet:
    """Strategy A: dedupe on stable transaction ids."""

    name: str = field(default="identity", init=False)


@dataclass(frozen=True)
class TemporalBoundary:
    """Strategy B: latest ledger date plus exact content match on that date."""

    rules: LedgerFormat = field(default_factory=LedgerFormat)
    name: str = field(default="temporal", init=False)


AnchorStrategy = Union[IdentitySet, TemporalBoundary]
SyncAnchor = Union[IdentityAnchor, TemporalAnchor]


def strategy_from_name(name: str, rules: LedgerFormat | None = None) -> AnchorStrategy:
    """Map a configuration value to a strategy."""
    normalized = (name or "").strip().lower()
    if normalized in ("identity", "identity_set", "id"):
        return IdentitySet()
    if normalized in ("temporal", "temporal_boundary", "date"):
        return TemporalBoundary(rules=rules or LedgerFormat())
    raise ValueError(f"Unknown dedup strategy: {name!r} (expected 'identity' or 'temporal')")
