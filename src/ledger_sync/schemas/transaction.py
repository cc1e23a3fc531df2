"""
Canonical transaction object (SSOT).

Every connector maps its provider payload into this shape; the dedup core
and the ledger sink only ever see Transaction instances.
"""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional

# Length of the hash used for synthesized ids
SYNTHETIC_ID_LENGTH = 16


class Direction(str, Enum):
    """Money flow relative to the ledger's owner."""

    INCOME = "income"
    EXPENSE = "expense"


@dataclass(frozen=True)
class Transaction:
    """
    Canonical transaction.

    The amount is always a positive magnitude; the sign travels in
    ``direction`` so formatting code never has to guess it.
    """

    id: str
    date: datetime  # timezone-aware instant
    amount: Decimal
    currency: str  # ISO 4217
    direction: Direction
    description: str
    account: str
    memo: Optional[str] = None
    category: Optional[str] = None
    reference_id: Optional[str] = None
    source_metadata: Mapping[str, str] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("id must not be empty")
        if not isinstance(self.date, datetime):
            raise ValueError(f"date must be a datetime, got: {type(self.date).__name__}")
        if self.date.tzinfo is None or self.date.utcoffset() is None:
            raise ValueError(f"date must be timezone-aware, got: {self.date!r}")

        amount = self.amount
        if not isinstance(amount, Decimal):
            try:
                amount = Decimal(str(amount))
            except InvalidOperation as e:
                raise ValueError(f"amount must be numeric, got: {self.amount!r}") from e
            object.__setattr__(self, "amount", amount)
        if not amount.is_finite() or amount <= 0:
            raise ValueError(f"amount must be positive, got: {self.amount}")

        currency = (self.currency or "").strip().upper()
        if len(currency) != 3 or not currency.isalpha():
            raise ValueError(f"currency must be an ISO 4217 code, got: {self.currency!r}")
        object.__setattr__(self, "currency", currency)

        object.__setattr__(self, "direction", Direction(self.direction))
        object.__setattr__(
            self, "source_metadata", MappingProxyType(dict(self.source_metadata or {}))
        )

    @property
    def signed_amount(self) -> Decimal:
        """Amount with sign applied (negative for expenses)."""
        return -self.amount if self.direction is Direction.EXPENSE else self.amount

    @property
    def is_income(self) -> bool:
        return self.direction is Direction.INCOME


def synthesize_id(
    source: str,
    date: datetime,
    amount: Decimal | str | float,
    memo: str | None = None,
) -> str:
    """
    Build a stable id for providers that do not assign one.

    Format: {source}_{sha256(date|amount|memo)[:16]}

    Args:
        source: Source name (e.g. "privatbank")
        date: Transaction instant
        amount: Transaction magnitude
        memo: Free-text memo/purpose (normalized: stripped, lowercased)

    Returns:
        Deterministic id string
    """
    normalized_amount = f"{Decimal(str(amount)):.2f}"
    normalized_memo = (memo or "").strip().lower()
    canonical = f"{date.isoformat()}|{normalized_amount}|{normalized_memo}"
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{source}_{digest[:SYNTHETIC_ID_LENGTH]}"
