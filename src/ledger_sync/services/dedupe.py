"""
Anchor resolution and dedup filtering (CRITICAL).

resolve_anchor() reads what the ledger already holds, filter_new() decides
which fetched transactions are new. Both are pure functions of their inputs
apart from the single sink read, so they can be tested without a network.

IdentitySet:
    new = fetched whose id is not in the ledger's id column

TemporalBoundary:
    day <  latest ledger date  -> already synced, discarded
    day == latest ledger date  -> new unless (date, amount, description) text
                                  matches a row already written on that day
    day >  latest ledger date  -> new

The temporal content match cannot tell apart two real transactions that
share date, amount and description text on the boundary day; one of them
is treated as already present. The ledger stores nothing that would
distinguish them.

Output is always sorted ascending by date so the ledger grows
chronologically.
"""

import logging
from typing import Iterable

from ..ledger.base import LedgerSink
from ..schemas.anchor import (
    AnchorStrategy,
    IdentityAnchor,
    IdentitySet,
    SyncAnchor,
    TemporalAnchor,
    TemporalBoundary,
)
from ..schemas.transaction import Transaction

logger = logging.getLogger(__name__)


def empty_anchor(strategy: AnchorStrategy) -> SyncAnchor:
    """Anchor meaning "the ledger holds nothing": every transaction is new."""
    if isinstance(strategy, TemporalBoundary):
        return TemporalAnchor()
    return IdentityAnchor()


def resolve_anchor(strategy: AnchorStrategy, sink: LedgerSink, ledger: str) -> SyncAnchor:
    """
    Read the ledger's current state for the given strategy.

    Raises:
        AnchorReadError: the ledger could not be read
    """
    if isinstance(strategy, IdentitySet):
        return sink.get_identity_set(ledger)
    if isinstance(strategy, TemporalBoundary):
        return sink.get_temporal_anchor(ledger)
    raise TypeError(f"Unsupported dedup strategy: {strategy!r}")


def sort_chronologically(transactions: Iterable[Transaction]) -> list[Transaction]:
    """Stable ascending sort by instant."""
    return sorted(transactions, key=lambda t: t.date)


def filter_by_identity(anchor: IdentityAnchor, transactions: Iterable[Transaction]) -> list[Transaction]:
    known = anchor.known_ids
    return [t for t in transactions if t.id not in known]


def filter_by_temporal_boundary(
    strategy: TemporalBoundary,
    anchor: TemporalAnchor,
    transactions: Iterable[Transaction],
) -> list[Transaction]:
    transactions = list(transactions)
    if anchor.latest_date is None:
        return transactions

    rules = strategy.rules
    existing = anchor.row_keys()
    new: list[Transaction] = []
    before = matched = 0

    for transaction in transactions:
        day = rules.local_date(transaction.date)
        if day < anchor.latest_date:
            before += 1
            continue
        if day == anchor.latest_date and rules.row_key(transaction) in existing:
            matched += 1
            continue
        new.append(transaction)

    logger.debug(
        "Temporal filter: %d before %s, %d matched on boundary day, %d new",
        before,
        anchor.latest_date.isoformat(),
        matched,
        len(new),
    )
    return new


def filter_new(
    strategy: AnchorStrategy,
    anchor: SyncAnchor,
    transactions: Iterable[Transaction],
) -> list[Transaction]:
    """
    Return the transactions not yet in the ledger, oldest first.

    Args:
        strategy: Dedup strategy configured for the source
        anchor: Anchor produced by resolve_anchor() for the same strategy
        transactions: Freshly fetched, normalized transactions

    Returns:
        New transactions sorted ascending by date
    """
    if isinstance(strategy, IdentitySet):
        if not isinstance(anchor, IdentityAnchor):
            raise TypeError("IdentitySet strategy requires an IdentityAnchor")
        new = filter_by_identity(anchor, transactions)
    elif isinstance(strategy, TemporalBoundary):
        if not isinstance(anchor, TemporalAnchor):
            raise TypeError("TemporalBoundary strategy requires a TemporalAnchor")
        new = filter_by_temporal_boundary(strategy, anchor, transactions)
    else:
        raise TypeError(f"Unsupported dedup strategy: {strategy!r}")

    return sort_chronologically(new)
