"""
Stripe connector.

Streams:
- charges: income, id "stripe_{charge_id}"
- payouts: expense (money leaving Stripe for the bank), id "stripe_payout_{payout_id}"

Pagination: has_more + starting_after=<last id>.
"""

import logging
from datetime import datetime, timedelta, timezone

from ..schemas.transaction import Direction, Transaction
from .base import Connector, ConnectorConfigError
from .normalize import clean_description, merge_streams, minor_to_major, parse_timestamp

logger = logging.getLogger(__name__)

# Only these charge states mean money was actually captured
FINAL_CHARGE_STATUSES = frozenset({"succeeded"})
# Payout states that never moved money
DROPPED_PAYOUT_STATUSES = frozenset({"failed", "canceled"})


class StripeConnector(Connector):
    """Connector for the Stripe REST API."""

    name = "stripe"
    display_name = "Stripe"

    DEFAULT_BASE_URL = "https://api.stripe.com/v1"
    PAGE_SIZE = 100

    def __init__(
        self,
        secret_key: str,
        base_url: str = DEFAULT_BASE_URL,
        fetch_days: int = 30,
        account_label: str = "Stripe",
        include_payouts: bool = True,
        **kwargs,
    ):
        self.secret_key = secret_key
        self.fetch_days = fetch_days
        self.account_label = account_label
        self.include_payouts = include_payouts
        super().__init__(base_url=base_url, **kwargs)

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.secret_key}"} if self.secret_key else {}

    def _check_configured(self) -> None:
        if not self.secret_key:
            raise ConnectorConfigError("Stripe secret key not configured")

    def _probe_request(self) -> None:
        self._request("GET", "/balance")

    def _fetch_all(self) -> list[Transaction]:
        since = datetime.now(timezone.utc) - timedelta(days=self.fetch_days)
        created_gte = int(since.timestamp())

        charges = [
            tx
            for tx in (self.normalize_charge(c) for c in self._list("/charges", created_gte))
            if tx is not None
        ]
        payouts: list[Transaction] = []
        if self.include_payouts:
            payouts = [
                tx
                for tx in (self.normalize_payout(p) for p in self._list("/payouts", created_gte))
                if tx is not None
            ]

        logger.info("Stripe: %d charges, %d payouts kept", len(charges), len(payouts))
        return merge_streams(charges, payouts)

    def _list(self, endpoint: str, created_gte: int) -> list[dict]:
        """Walk a Stripe list endpoint until has_more is false."""
        items: list[dict] = []
        seen: set[str] = set()
        starting_after: str | None = None

        for _ in self._pages():
            params: dict = {"limit": self.PAGE_SIZE, "created[gte]": created_gte}
            if starting_after:
                params["starting_after"] = starting_after

            data = self._request("GET", endpoint, params=params)
            page = data["data"]
            items.extend(page)
            logger.debug("Stripe %s: fetched %d so far", endpoint, len(items))

            if not data.get("has_more") or not page:
                break
            starting_after = page[-1]["id"]
            self._check_cursor(starting_after, seen)

        return items

    def normalize_charge(self, charge: dict) -> Transaction | None:
        """Map a Stripe charge to a Transaction; None when dropped."""
        status = charge.get("status")
        if status not in FINAL_CHARGE_STATUSES:
            logger.debug("Stripe: dropping charge %s with status %s", charge.get("id"), status)
            return None

        currency = charge["currency"].upper()
        amount = minor_to_major(charge["amount"], currency)
        if amount <= 0:
            return None

        metadata = charge.get("metadata") or {}
        if metadata.get("category"):
            category = metadata["category"]
        elif charge.get("refunded"):
            category = "Refund"
        else:
            category = "Payment"

        billing = charge.get("billing_details") or {}
        payment_details = charge.get("payment_method_details") or {}

        return Transaction(
            id=f"{self.name}_{charge['id']}",
            date=parse_timestamp(charge["created"]),
            amount=amount,
            currency=currency,
            direction=Direction.INCOME,
            description=clean_description(
                charge.get("description") or charge.get("statement_descriptor"),
                fallback="Stripe charge",
            ),
            account=self.account_label,
            category=category,
            reference_id=charge.get("receipt_url") or charge["id"],
            source_metadata={
                "status": status,
                "customer_id": charge.get("customer") or "",
                "customer_email": billing.get("email") or charge.get("receipt_email") or "",
                "payment_method": payment_details.get("type", ""),
                "invoice_id": charge.get("invoice") or "",
            },
        )

    def normalize_payout(self, payout: dict) -> Transaction | None:
        """Map a Stripe payout to a Transaction; None when dropped."""
        status = payout.get("status")
        if status in DROPPED_PAYOUT_STATUSES:
            logger.debug("Stripe: dropping payout %s with status %s", payout.get("id"), status)
            return None

        currency = payout["currency"].upper()
        amount = minor_to_major(payout["amount"], currency)
        if amount <= 0:
            return None

        return Transaction(
            id=f"{self.name}_payout_{payout['id']}",
            date=parse_timestamp(payout["created"]),
            amount=amount,
            currency=currency,
            direction=Direction.EXPENSE,
            description=f"Stripe payout - {clean_description(payout.get('description'), fallback='Automatic')}",
            account=self.account_label,
            category="Bank Transfer",
            reference_id=payout["id"],
            source_metadata={"status": status or ""},
        )
