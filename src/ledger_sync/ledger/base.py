"""
Ledger sink contract.

The sink owns column layout and formatting. The sync core needs only:
- get_identity_set(ledger): ids already written (IdentitySet strategy)
- get_temporal_anchor(ledger): latest date + rows on it (TemporalBoundary strategy)
- append(ledger, transactions): write rows, return count written
"""

from abc import ABC, abstractmethod
from typing import Sequence

from ..schemas.anchor import IdentityAnchor, TemporalAnchor
from ..schemas.transaction import Transaction


class LedgerError(Exception):
    """Base exception for ledger sink errors."""

    pass


class AnchorReadError(LedgerError):
    """The ledger could not be read to compute an anchor."""

    pass


class PersistError(LedgerError):
    """Writing rows to the ledger failed."""

    pass


class LedgerSink(ABC):
    """Append-only ledger the sync engine writes to."""

    @abstractmethod
    def get_identity_set(self, ledger: str) -> IdentityAnchor:
        """Return every transaction id already recorded in ``ledger``."""

    @abstractmethod
    def get_temporal_anchor(self, ledger: str) -> TemporalAnchor:
        """Return the latest recorded date and the rows written on it."""

    @abstractmethod
    def append(self, ledger: str, transactions: Sequence[Transaction]) -> int:
        """Append rows in the given order; return the number written."""

    def probe(self) -> bool:
        """Connectivity check. Never raises."""
        return True
