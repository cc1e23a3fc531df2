"""
Brex connector.

Brex keeps two independent sub-ledgers:
- card: /v2/transactions/card/primary (positive amount = purchase)
- cash: /v2/transactions/cash/{account_id} for every cash account
  (negative amount = money out)

Both are normalized separately, with their own account label and sign
convention, then merged into one list sorted by date.

Pagination: next_cursor until it comes back empty.
"""

import logging
from datetime import datetime, timedelta, timezone

from ..schemas.transaction import Direction, Transaction
from .base import Connector, ConnectorConfigError
from .normalize import (
    clean_description,
    is_noise,
    merge_streams,
    minor_to_major,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

CARD_ACCOUNT = "Brex Card"
CASH_ACCOUNT = "Brex Cash"

# Card entries that only mirror a repayment from the cash account
NOISE_CARD_TYPES = frozenset({"COLLECTION"})
# Statuses of records that never settled
DROPPED_STATUSES = frozenset({"FAILED", "CANCELED", "CANCELLED", "DECLINED", "REVERSED"})


class BrexConnector(Connector):
    """Connector for the Brex platform API."""

    name = "brex"
    display_name = "Brex"

    DEFAULT_BASE_URL = "https://platform.brexapis.com"
    PAGE_SIZE = 100

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        fetch_days: int = 30,
        include_cash: bool = True,
        **kwargs,
    ):
        self.api_key = api_key
        self.fetch_days = fetch_days
        self.include_cash = include_cash
        super().__init__(base_url=base_url, **kwargs)

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

    def _check_configured(self) -> None:
        if not self.api_key:
            raise ConnectorConfigError("Brex API key not configured")

    def _probe_request(self) -> None:
        self._request("GET", "/v2/accounts/cash", params={"limit": 1})

    def _fetch_all(self) -> list[Transaction]:
        since = datetime.now(timezone.utc) - timedelta(days=self.fetch_days)
        posted_at_start = since.strftime("%Y-%m-%dT00:00:00Z")

        card = self._normalize_stream(
            self._list("/v2/transactions/card/primary", {"posted_at_start": posted_at_start}),
            self.normalize_card,
        )

        cash: list[Transaction] = []
        if self.include_cash:
            for account in self._list("/v2/accounts/cash"):
                records = self._list(
                    f"/v2/transactions/cash/{account['id']}",
                    {"posted_at_start": posted_at_start},
                )
                cash.extend(self._normalize_stream(records, self.normalize_cash))

        logger.info("Brex: %d card, %d cash transactions kept", len(card), len(cash))
        return merge_streams(card, cash)

    def _list(self, endpoint: str, extra_params: dict | None = None) -> list[dict]:
        """Walk a cursor-paginated Brex endpoint."""
        items: list[dict] = []
        seen: set[str] = set()
        cursor: str | None = None

        for _ in self._pages():
            params = {"limit": self.PAGE_SIZE, **(extra_params or {})}
            if cursor:
                params["cursor"] = cursor

            data = self._request("GET", endpoint, params=params)
            items.extend(data.get("items") or [])
            logger.debug("Brex %s: fetched %d so far", endpoint, len(items))

            cursor = data.get("next_cursor")
            if not cursor:
                break
            self._check_cursor(cursor, seen)

        return items

    @staticmethod
    def _normalize_stream(records: list[dict], normalize) -> list[Transaction]:
        kept = [tx for tx in (normalize(record) for record in records) if tx is not None]
        dropped = len(records) - len(kept)
        if dropped:
            logger.debug("Brex: dropped %d non-final or noise records", dropped)
        return kept

    @staticmethod
    def _is_dropped(record: dict) -> bool:
        status = (record.get("status") or "").upper()
        return status in DROPPED_STATUSES

    def normalize_card(self, record: dict) -> Transaction | None:
        """Map a card transaction; None for noise or unsettled records."""
        if self._is_dropped(record):
            return None
        if (record.get("type") or "").upper() in NOISE_CARD_TYPES:
            return None

        merchant = record.get("merchant") or {}
        raw_descriptor = clean_description(merchant.get("raw_descriptor"))
        description = clean_description(
            raw_descriptor or record.get("description"), fallback="Brex transaction"
        )
        if is_noise(description) or is_noise(record.get("description")):
            return None

        money = record["amount"]
        currency = money.get("currency") or "USD"
        value = minor_to_major(money["amount"], currency)
        if value == 0:
            return None

        return Transaction(
            id=f"{self.name}_{record['id']}",
            date=parse_timestamp(record.get("posted_at_date") or record["initiated_at_date"]),
            amount=abs(value),
            currency=currency,
            # purchases are positive on the card ledger
            direction=Direction.EXPENSE if value > 0 else Direction.INCOME,
            description=description,
            account=CARD_ACCOUNT,
            category=merchant.get("mcc") or record.get("type") or None,
            reference_id=record["id"],
            source_metadata={
                "original_description": raw_descriptor,
                "payment_method": "Card",
                "initiated_by": "Client",
                "status": record.get("status") or "Finalized",
                "type": record.get("type") or "",
            },
        )

    def normalize_cash(self, record: dict) -> Transaction | None:
        """Map a cash account transaction; None for noise or unsettled records."""
        if self._is_dropped(record):
            return None

        description = clean_description(record.get("description"), fallback="Brex transaction")
        if is_noise(description):
            return None

        money = record["amount"]
        currency = money.get("currency") or "USD"
        value = minor_to_major(money["amount"], currency)
        if value == 0:
            return None

        memo = clean_description(record.get("memo")) or None

        return Transaction(
            id=f"{self.name}_{record['id']}",
            date=parse_timestamp(record.get("posted_at_date") or record["initiated_at_date"]),
            amount=abs(value),
            currency=currency,
            direction=Direction.EXPENSE if value < 0 else Direction.INCOME,
            description=description,
            account=CASH_ACCOUNT,
            memo=memo,
            category=record.get("type") or None,
            reference_id=record.get("transfer_id") or record["id"],
            source_metadata={
                "payment_method": "ACH/Wire",
                "initiated_by": "Brex" if (record.get("type") or "").upper() == "FEE" else "Client",
                "status": record.get("status") or "Finalized",
                "type": record.get("type") or "",
            },
        )
