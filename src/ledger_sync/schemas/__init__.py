"""
SSOT (Single Source of Truth) schemas for the sync engine.

These canonical schemas are the ONLY models passed between connectors,
the dedup core and the ledger sink.
"""

from .anchor import (
    AnchorStrategy,
    IdentityAnchor,
    IdentitySet,
    LedgerRow,
    SyncAnchor,
    TemporalAnchor,
    TemporalBoundary,
    strategy_from_name,
)
from .formatting import (
    TWO_DIGIT_YEAR_PIVOT,
    LedgerFormat,
    format_thousands,
    parse_ledger_date,
)
from .transaction import Direction, Transaction, synthesize_id

__all__ = [
    "AnchorStrategy",
    "Direction",
    "IdentityAnchor",
    "IdentitySet",
    "LedgerFormat",
    "LedgerRow",
    "SyncAnchor",
    "TWO_DIGIT_YEAR_PIVOT",
    "TemporalAnchor",
    "TemporalBoundary",
    "Transaction",
    "format_thousands",
    "parse_ledger_date",
    "strategy_from_name",
    "synthesize_id",
]
