"""
Tests for the Stripe, Brex and PrivatBank connectors.

These tests use responses library to mock HTTP requests,
validating pagination, normalization and error translation without
making real API calls.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
import requests
import responses

from ledger_sync.connectors import (
    BrexConnector,
    ConnectorAPIError,
    ConnectorAuthError,
    ConnectorConfigError,
    ConnectorConnectionError,
    ConnectorPayloadError,
    PrivatBankConnector,
    StripeConnector,
)
from ledger_sync.connectors.normalize import (
    collapse_duplicates,
    is_noise,
    minor_to_major,
    parse_day_month_year,
    parse_timestamp,
)
from ledger_sync.connectors.privatbank import KYIV, categorize
from ledger_sync.schemas.transaction import Direction
from conftest import make_transaction


def _ts(text: str) -> int:
    return int(datetime.fromisoformat(text).replace(tzinfo=timezone.utc).timestamp())


class TestNormalizeHelpers:
    """Test shared normalization helpers."""

    def test_parse_unix_seconds(self):
        assert parse_timestamp(_ts("2025-11-20T10:00:00")) == datetime(
            2025, 11, 20, 10, 0, tzinfo=timezone.utc
        )

    def test_parse_iso_z(self):
        assert parse_timestamp("2025-11-20T10:00:00Z").tzinfo is not None

    def test_parse_date_only_is_midnight_utc(self):
        assert parse_timestamp("2025-11-20") == datetime(2025, 11, 20, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "yesterday", True])
    def test_parse_rejects_garbage(self, value):
        with pytest.raises(ValueError):
            parse_timestamp(value)

    def test_day_month_year_in_zone(self):
        moment = parse_day_month_year("20.11.2025", "10:15", tz=KYIV)
        assert moment == datetime(2025, 11, 20, 8, 15, tzinfo=timezone.utc)

    def test_day_month_year_invalid_day(self):
        with pytest.raises(ValueError):
            parse_day_month_year("31.02.2025")

    def test_minor_units(self):
        assert minor_to_major(12345, "usd") == Decimal("123.45")
        assert minor_to_major(500, "JPY") == Decimal("500")

    def test_noise(self):
        assert is_noise("Payment received, thank you")
        assert is_noise("PAYMENT RECEIVED - THANK YOU!")
        assert not is_noise("Payment received for invoice 12")

    def test_collapse_last_write_wins(self):
        first = make_transaction(tx_id="x", description="pending")
        other = make_transaction(tx_id="y")
        last = make_transaction(tx_id="x", description="posted")
        collapsed = collapse_duplicates([first, other, last])
        assert [t.id for t in collapsed] == ["x", "y"]
        assert collapsed[0].description == "posted"


class TestStripeConnector:
    """Test Stripe connector."""

    BASE_URL = "https://api.stripe.test/v1"
    KEY = "sk_test_123"

    def _connector(self, **kwargs) -> StripeConnector:
        return StripeConnector(self.KEY, base_url=self.BASE_URL, max_retries=0, **kwargs)

    @responses.activate
    def test_probe_success(self):
        """Probe hits the balance endpoint with the bearer key."""
        responses.add(responses.GET, f"{self.BASE_URL}/balance", json={"available": []})
        assert self._connector().probe() is True
        assert responses.calls[0].request.headers["Authorization"] == f"Bearer {self.KEY}"

    @responses.activate
    def test_probe_auth_failure(self):
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/balance",
            json={"error": {"message": "Invalid API Key provided"}},
            status=401,
        )
        assert self._connector().probe() is False

    def test_probe_without_key(self):
        """Missing credentials fail the probe without any request."""
        connector = StripeConnector("", base_url=self.BASE_URL)
        assert connector.probe() is False

    def test_fetch_without_key(self):
        with pytest.raises(ConnectorConfigError):
            StripeConnector("", base_url=self.BASE_URL).fetch()

    @responses.activate
    def test_fetch_paginates_and_filters(self):
        """Charges follow has_more/starting_after; only succeeded charges survive."""
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/charges",
            json={
                "has_more": True,
                "data": [
                    {
                        "id": "ch_3",
                        "status": "succeeded",
                        "amount": 12345,
                        "currency": "usd",
                        "created": _ts("2025-11-20T10:00:00"),
                        "description": "Invoice 42",
                        "receipt_url": "https://pay.stripe.test/r/ch_3",
                        "billing_details": {"email": "ap@acme.test"},
                    },
                    {
                        "id": "ch_2",
                        "status": "failed",
                        "amount": 5000,
                        "currency": "usd",
                        "created": _ts("2025-11-19T10:00:00"),
                    },
                ],
            },
        )
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/charges",
            json={
                "has_more": False,
                "data": [
                    {
                        "id": "ch_1",
                        "status": "succeeded",
                        "amount": 2000,
                        "currency": "eur",
                        "created": _ts("2025-11-18T10:00:00"),
                        "refunded": True,
                    },
                ],
            },
        )
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/payouts",
            json={
                "has_more": False,
                "data": [
                    {
                        "id": "po_1",
                        "status": "paid",
                        "amount": 10000,
                        "currency": "usd",
                        "created": _ts("2025-11-21T06:00:00"),
                    },
                    {
                        "id": "po_2",
                        "status": "failed",
                        "amount": 999,
                        "currency": "usd",
                        "created": _ts("2025-11-21T07:00:00"),
                    },
                ],
            },
        )

        transactions = self._connector().fetch()

        assert [t.id for t in transactions] == ["stripe_ch_1", "stripe_ch_3", "stripe_payout_po_1"]
        refund, invoice, payout = transactions
        assert refund.currency == "EUR"
        assert refund.category == "Refund"
        assert refund.description == "Stripe charge"
        assert invoice.amount == Decimal("123.45")
        assert invoice.direction is Direction.INCOME
        assert invoice.reference_id == "https://pay.stripe.test/r/ch_3"
        assert invoice.source_metadata["customer_email"] == "ap@acme.test"
        assert payout.direction is Direction.EXPENSE
        assert payout.description == "Stripe payout - Automatic"

        second_page = responses.calls[1].request
        assert "starting_after=ch_2" in second_page.url

    @responses.activate
    def test_payouts_can_be_disabled(self):
        responses.add(responses.GET, f"{self.BASE_URL}/charges", json={"has_more": False, "data": []})
        assert self._connector(include_payouts=False).fetch() == []
        assert len(responses.calls) == 1

    @responses.activate
    def test_server_error_raises_api_error(self):
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/charges",
            json={"error": {"message": "boom"}},
            status=500,
        )
        with pytest.raises(ConnectorAPIError) as exc_info:
            self._connector().fetch()
        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "boom"

    @responses.activate
    def test_auth_error(self):
        responses.add(responses.GET, f"{self.BASE_URL}/charges", json={}, status=401)
        with pytest.raises(ConnectorAuthError):
            self._connector().fetch()

    @responses.activate
    def test_timeout_raises_connection_error(self):
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/charges",
            body=requests.exceptions.ReadTimeout("read timed out"),
        )
        with pytest.raises(ConnectorConnectionError, match="timed out"):
            self._connector().fetch()

    @responses.activate
    def test_malformed_payload(self):
        """A record missing required fields becomes ConnectorPayloadError."""
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/charges",
            json={"has_more": False, "data": [{"id": "ch_x", "status": "succeeded"}]},
        )
        with pytest.raises(ConnectorPayloadError):
            self._connector(include_payouts=False).fetch()

    @responses.activate
    def test_non_object_records_are_payload_error(self):
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/charges",
            json={"has_more": False, "data": ["ch_x"]},
        )
        with pytest.raises(ConnectorPayloadError):
            self._connector(include_payouts=False).fetch()


class TestBrexConnector:
    """Test Brex connector (card + cash sub-ledgers)."""

    BASE_URL = "https://platform.brex.test"
    CARD_URL = f"{BASE_URL}/v2/transactions/card/primary"
    ACCOUNTS_URL = f"{BASE_URL}/v2/accounts/cash"
    CASH_URL = f"{BASE_URL}/v2/transactions/cash/acc_1"

    def _connector(self, **kwargs) -> BrexConnector:
        return BrexConnector("brex-token", base_url=self.BASE_URL, max_retries=0, **kwargs)

    def _add_cash(self, items):
        responses.add(responses.GET, self.ACCOUNTS_URL, json={"items": [{"id": "acc_1"}], "next_cursor": None})
        responses.add(responses.GET, self.CASH_URL, json={"items": items, "next_cursor": None})

    @responses.activate
    def test_probe(self):
        responses.add(responses.GET, self.ACCOUNTS_URL, json={"items": []})
        assert self._connector().probe() is True

    @responses.activate
    def test_card_and_cash_merged(self):
        """Both sub-ledgers are normalized with their own sign rules and merged by date."""
        responses.add(
            responses.GET,
            self.CARD_URL,
            json={
                "items": [
                    {
                        "id": "card_1",
                        "posted_at_date": "2025-11-20",
                        "amount": {"amount": 4599, "currency": "USD"},
                        "description": "AMAZON WEB SERVICES",
                        "merchant": {"raw_descriptor": "AWS EMEA*12345", "mcc": "4816"},
                        "type": "PURCHASE",
                    },
                    {
                        "id": "card_2",
                        "posted_at_date": "2025-11-19",
                        "amount": {"amount": -2000, "currency": "USD"},
                        "description": "Refund",
                        "type": "REFUND",
                    },
                ],
                "next_cursor": None,
            },
        )
        self._add_cash(
            [
                {
                    "id": "cash_1",
                    "posted_at_date": "2025-11-18",
                    "amount": {"amount": -125000, "currency": "USD"},
                    "description": "Wire to Landlord LLC",
                    "memo": "Rent Nov",
                    "type": "WIRE",
                },
                {
                    "id": "cash_2",
                    "initiated_at_date": "2025-11-21",
                    "amount": {"amount": -1500, "currency": "USD"},
                    "description": "Monthly fee",
                    "type": "FEE",
                },
            ]
        )

        transactions = self._connector().fetch()

        assert [t.id for t in transactions] == ["brex_cash_1", "brex_card_2", "brex_card_1", "brex_cash_2"]
        rent, refund, aws, fee = transactions
        assert rent.account == "Brex Cash"
        assert rent.direction is Direction.EXPENSE
        assert rent.amount == Decimal("1250.00")
        assert rent.memo == "Rent Nov"
        assert refund.direction is Direction.INCOME
        assert aws.account == "Brex Card"
        assert aws.direction is Direction.EXPENSE
        assert aws.description == "AWS EMEA*12345"
        assert aws.source_metadata["original_description"] == "AWS EMEA*12345"
        assert fee.source_metadata["initiated_by"] == "Brex"

    @responses.activate
    def test_noise_and_unsettled_dropped(self):
        """Collection entries, payment acknowledgements and failed records are dropped."""
        responses.add(
            responses.GET,
            self.CARD_URL,
            json={
                "items": [
                    {
                        "id": "card_c",
                        "posted_at_date": "2025-11-20",
                        "amount": {"amount": -50000, "currency": "USD"},
                        "description": "Brex card repayment",
                        "type": "COLLECTION",
                    },
                    {
                        "id": "card_p",
                        "posted_at_date": "2025-11-20",
                        "amount": {"amount": -50000, "currency": "USD"},
                        "description": "Payment received, thank you",
                        "type": "PAYMENT",
                    },
                ],
                "next_cursor": None,
            },
        )
        self._add_cash(
            [
                {
                    "id": "cash_f",
                    "posted_at_date": "2025-11-20",
                    "amount": {"amount": -100, "currency": "USD"},
                    "description": "Wire",
                    "status": "FAILED",
                },
                {
                    "id": "cash_p",
                    "initiated_at_date": "2025-11-21",
                    "amount": {"amount": -100, "currency": "USD"},
                    "description": "Pending wire",
                    "status": "PENDING",
                },
            ]
        )

        transactions = self._connector().fetch()

        assert [t.id for t in transactions] == ["brex_cash_p"]

    @responses.activate
    def test_cursor_pagination_and_last_write_wins(self):
        """next_cursor is followed; a record repeated across pages keeps the later version."""
        responses.add(
            responses.GET,
            self.CARD_URL,
            json={
                "items": [
                    {
                        "id": "card_1",
                        "initiated_at_date": "2025-11-20",
                        "amount": {"amount": 1000, "currency": "USD"},
                        "description": "Uber",
                        "status": "PENDING",
                    }
                ],
                "next_cursor": "page2",
            },
        )
        responses.add(
            responses.GET,
            self.CARD_URL,
            json={
                "items": [
                    {
                        "id": "card_1",
                        "posted_at_date": "2025-11-21",
                        "amount": {"amount": 1250, "currency": "USD"},
                        "description": "Uber",
                        "status": "POSTED",
                    }
                ],
                "next_cursor": None,
            },
        )

        transactions = self._connector(include_cash=False).fetch()

        assert len(transactions) == 1
        assert transactions[0].amount == Decimal("12.50")
        assert transactions[0].source_metadata["status"] == "POSTED"
        assert "cursor=page2" in responses.calls[1].request.url

    @responses.activate
    def test_repeated_cursor_is_payload_error(self):
        responses.add(responses.GET, self.CARD_URL, json={"items": [], "next_cursor": "same"})
        responses.add(responses.GET, self.CARD_URL, json={"items": [], "next_cursor": "same"})
        with pytest.raises(ConnectorPayloadError, match="cursor repeated"):
            self._connector(include_cash=False).fetch()

    @responses.activate
    def test_wrong_shape_body_is_payload_error(self):
        """A list where an object is expected is a payload error, not AttributeError."""
        responses.add(responses.GET, self.CARD_URL, json=[])
        with pytest.raises(ConnectorPayloadError, match="malformed payload"):
            self._connector(include_cash=False).fetch()

    @responses.activate
    def test_pagination_is_bounded(self):
        for cursor in ("a", "b", "c"):
            responses.add(responses.GET, self.CARD_URL, json={"items": [], "next_cursor": cursor})
        with pytest.raises(ConnectorPayloadError, match="did not terminate"):
            self._connector(include_cash=False, max_pages=2).fetch()


class TestPrivatBankConnector:
    """Test PrivatBank Autoclient connector."""

    BASE_URL = "https://acp.privatbank.test/api"
    TX_URL = f"{BASE_URL}/statements/transactions"

    def _connector(self) -> PrivatBankConnector:
        return PrivatBankConnector(
            "pb-token", "UA213223130000026007233566001", base_url=self.BASE_URL, max_retries=0
        )

    @responses.activate
    def test_probe_sends_token_header(self):
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/statements/balance/final",
            json={"status": "SUCCESS", "balances": []},
        )
        assert self._connector().probe() is True
        assert responses.calls[0].request.headers["token"] == "pb-token"

    def test_probe_requires_account(self):
        assert PrivatBankConnector("pb-token", "", base_url=self.BASE_URL).probe() is False

    @responses.activate
    def test_fetch_pages_and_normalizes(self):
        responses.add(
            responses.GET,
            self.TX_URL,
            json={
                "status": "SUCCESS",
                "exist_next_page": True,
                "next_page_id": "p2",
                "transactions": [
                    {
                        "ID": 101,
                        "REF": "R101",
                        "TRANTYPE": "C",
                        "SUM": "15000.00",
                        "CCY": "UAH",
                        "DAT_OD": "20.11.2025",
                        "TIM_P": "10:15",
                        "OSND": "Зарплата за листопад",
                        "AUT_CNTR_NAM": "ТОВ Ромашка",
                        "PR_PR": "r",
                    },
                    {
                        "ID": 102,
                        "TRANTYPE": "D",
                        "SUM": "99.00",
                        "DAT_OD": "20.11.2025",
                        "OSND": "Rejected payment",
                        "PR_PR": "t",
                    },
                ],
            },
        )
        responses.add(
            responses.GET,
            self.TX_URL,
            json={
                "status": "SUCCESS",
                "exist_next_page": False,
                "transactions": [
                    {
                        "TRANTYPE": "D",
                        "SUM": "250,50",
                        "DAT_OD": "19.11.2025",
                        "TIM_P": "09:00",
                        "OSND": "Taxi to airport",
                        "PR_PR": "r",
                    },
                ],
            },
        )

        transactions = self._connector().fetch()

        assert len(transactions) == 2
        taxi, salary = transactions
        assert taxi.id.startswith("privatbank_")
        assert len(taxi.id) == len("privatbank_") + 16
        assert taxi.direction is Direction.EXPENSE
        assert taxi.amount == Decimal("250.50")
        assert taxi.category == "Transport"
        assert salary.id == "privatbank_101"
        assert salary.reference_id == "R101"
        assert salary.date == datetime(2025, 11, 20, 8, 15, tzinfo=timezone.utc)
        assert salary.description == "ТОВ Ромашка"
        assert salary.memo == "Зарплата за листопад"
        assert salary.category == "Salary"
        assert "followId=p2" in responses.calls[1].request.url

    @responses.activate
    def test_synthesized_id_is_stable(self):
        record = {"TRANTYPE": "D", "SUM": "10", "DAT_OD": "19.11.2025", "OSND": "Fee", "PR_PR": "r"}
        for _ in range(2):
            responses.add(
                responses.GET,
                self.TX_URL,
                json={"status": "SUCCESS", "exist_next_page": False, "transactions": [record]},
            )
        first = self._connector().fetch()
        second = self._connector().fetch()
        assert first[0].id == second[0].id

    @responses.activate
    def test_error_status_in_body(self):
        responses.add(
            responses.GET,
            self.TX_URL,
            json={"status": "ERROR", "message": "Invalid token"},
        )
        with pytest.raises(ConnectorAPIError, match="Invalid token"):
            self._connector().fetch()


def test_categorize():
    assert categorize("Оплата комунальні послуги") == "Utilities"
    assert categorize("Something else") == "Other"
