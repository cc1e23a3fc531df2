"""
Ledger sinks.

The spreadsheet the engine appends to. The sink owns column layout and
formatting; the sync core only reads anchors and appends.
"""

from .base import AnchorReadError, LedgerError, LedgerSink, PersistError
from .sheets import IDENTITY_LAYOUT, TEMPORAL_LAYOUT, SheetsAPIError, SheetsLedger

__all__ = [
    "AnchorReadError",
    "IDENTITY_LAYOUT",
    "LedgerError",
    "LedgerSink",
    "PersistError",
    "SheetsAPIError",
    "SheetsLedger",
    "TEMPORAL_LAYOUT",
]
