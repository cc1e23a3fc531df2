"""Test fixtures and utilities."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Sequence

import pytest

from ledger_sync.connectors.base import Connector, ConnectorError
from ledger_sync.ledger.base import AnchorReadError, LedgerSink, PersistError
from ledger_sync.schemas.anchor import IdentityAnchor, TemporalAnchor
from ledger_sync.schemas.formatting import LedgerFormat
from ledger_sync.schemas.transaction import Direction, Transaction


def make_transaction(
    tx_id: str = "stripe_ch_1",
    when: datetime | str = "2025-11-20T12:00:00+00:00",
    amount: str = "100.00",
    direction: Direction = Direction.INCOME,
    description: str = "Acme Corp",
    account: str = "Stripe",
    currency: str = "USD",
    **kwargs,
) -> Transaction:
    """Build a Transaction with sensible defaults."""
    if isinstance(when, str):
        when = datetime.fromisoformat(when)
    return Transaction(
        id=tx_id,
        date=when,
        amount=Decimal(amount),
        currency=currency,
        direction=direction,
        description=description,
        account=account,
        **kwargs,
    )


class InMemoryLedger(LedgerSink):
    """
    Ledger kept in memory.

    Identity worksheets store ids; temporal worksheets store the formatted
    (date, description, amount) text exactly as a spreadsheet would.
    """

    def __init__(self, rules: LedgerFormat | None = None, temporal: Sequence[str] = ()):
        self.rules = rules or LedgerFormat()
        self.temporal = set(temporal)
        self.rows: dict[str, list] = {}
        self.fail_reads: set[str] = set()
        self.fail_writes: set[str] = set()
        self.append_calls: list[tuple[str, int]] = []

    def seed_temporal(self, ledger: str, rows: list[list[str]]) -> None:
        self.temporal.add(ledger)
        self.rows.setdefault(ledger, []).extend(rows)

    def get_identity_set(self, ledger: str) -> IdentityAnchor:
        if ledger in self.fail_reads:
            raise AnchorReadError(f"cannot read {ledger}")
        ids = [[row] for row in self.rows.get(ledger, [])]
        return IdentityAnchor.from_column(ids, skip_header=False)

    def get_temporal_anchor(self, ledger: str) -> TemporalAnchor:
        if ledger in self.fail_reads:
            raise AnchorReadError(f"cannot read {ledger}")
        return TemporalAnchor.from_rows(self.rows.get(ledger, []), skip_header=False)

    def append(self, ledger: str, transactions: Sequence[Transaction]) -> int:
        if ledger in self.fail_writes:
            raise PersistError(f"cannot write {ledger}")
        target = self.rows.setdefault(ledger, [])
        for t in transactions:
            if ledger in self.temporal:
                target.append(
                    [
                        self.rules.format_date(t.date),
                        self.rules.resolve_description(t),
                        self.rules.format_amount(t),
                    ]
                )
            else:
                target.append(t.id)
        self.append_calls.append((ledger, len(transactions)))
        return len(transactions)


class FakeConnector(Connector):
    """Connector returning a fixed batch (or raising) without HTTP."""

    def __init__(self, name: str, transactions=None, error: Exception | None = None):
        self.name = name
        self.transactions = list(transactions or [])
        self.error = error
        self.fetch_calls = 0
        super().__init__(base_url=f"http://{name}.test", max_retries=0)

    def _probe_request(self) -> None:
        if self.error:
            raise self.error

    def _fetch_all(self) -> list[Transaction]:
        self.fetch_calls += 1
        if self.error:
            raise self.error
        return list(self.transactions)


@pytest.fixture
def utc_now() -> datetime:
    return datetime(2025, 11, 21, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def failing_connector() -> FakeConnector:
    return FakeConnector("broken", error=ConnectorError("upstream unavailable"))
