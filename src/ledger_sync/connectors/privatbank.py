"""
PrivatBank (Autoclient API) connector.

Statement rows carry the booking date as "dd.mm.yyyy" plus "HH:MM" in Kyiv
local time, the amount as a decimal string, and the direction in TRANTYPE
(C = credit, D = debit). Rows without a native ID get a synthesized one.

Pagination: exist_next_page + next_page_id passed back as followId.
"""

import logging
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from ..schemas.transaction import Direction, Transaction, synthesize_id
from .base import Connector, ConnectorAPIError, ConnectorConfigError, dump_payload
from .normalize import (
    clean_description,
    is_noise,
    merge_streams,
    parse_day_month_year,
    to_decimal,
)

logger = logging.getLogger(__name__)

KYIV = ZoneInfo("Europe/Kyiv")

# PR_PR: r = booked, p = in progress, t = rejected
REJECTED_STATE = "t"

# Keyword categorization (Ukrainian and English)
CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Salary", ("зарплата", "заробітна", "salary")),
    ("Utilities", ("комунальні", "utility", "utilities")),
    ("Groceries", ("продукти", "grocery", "supermarket")),
    ("Transport", ("транспорт", "transport", "taxi", "uber")),
    ("Dining", ("ресторан", "кафе", "restaurant", "cafe")),
)


def categorize(text: str) -> str:
    """Pick a category from purpose text; "Other" when nothing matches."""
    lowered = (text or "").lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return "Other"


class PrivatBankConnector(Connector):
    """Connector for the PrivatBank business Autoclient API."""

    name = "privatbank"
    display_name = "PrivatBank"

    DEFAULT_BASE_URL = "https://acp.privatbank.ua/api"
    PAGE_SIZE = 100

    def __init__(
        self,
        token: str,
        account: str,
        base_url: str = DEFAULT_BASE_URL,
        fetch_days: int = 30,
        account_label: str = "PrivatBank",
        **kwargs,
    ):
        self.token = token
        self.account = account
        self.fetch_days = fetch_days
        self.account_label = account_label
        super().__init__(base_url=base_url, **kwargs)

    def _auth_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json;charset=utf-8"}
        if self.token:
            headers["token"] = self.token
        return headers

    def _check_configured(self) -> None:
        if not self.token or not self.account:
            raise ConnectorConfigError("PrivatBank token or account not configured")

    def _probe_request(self) -> None:
        self._checked_request("/statements/balance/final", {"acc": self.account})

    def _checked_request(self, endpoint: str, params: dict) -> dict:
        """GET that also validates the body-level status flag."""
        data = self._request("GET", endpoint, params=params)
        if not isinstance(data, dict) or data.get("status") != "SUCCESS":
            logger.debug("PrivatBank error body: %s", dump_payload(data))
            message = data.get("message") if isinstance(data, dict) else None
            raise ConnectorAPIError(
                provider=self.label,
                status_code=200,
                message=str(message or "status is not SUCCESS"),
                response_body=dump_payload(data),
            )
        return data

    def _fetch_all(self) -> list[Transaction]:
        start = datetime.now(KYIV) - timedelta(days=self.fetch_days)
        records = self._list(start.strftime("%d-%m-%Y"))

        kept = [tx for tx in (self.normalize_record(r) for r in records) if tx is not None]
        if len(kept) != len(records):
            logger.debug("PrivatBank: dropped %d rejected or noise rows", len(records) - len(kept))
        return merge_streams(kept)

    def _list(self, start_date: str) -> list[dict]:
        items: list[dict] = []
        seen: set[str] = set()
        follow_id: str | None = None

        for _ in self._pages():
            params = {"acc": self.account, "startDate": start_date, "limit": self.PAGE_SIZE}
            if follow_id:
                params["followId"] = follow_id

            data = self._checked_request("/statements/transactions", params)
            items.extend(data.get("transactions") or [])
            logger.debug("PrivatBank: fetched %d so far", len(items))

            if not data.get("exist_next_page"):
                break
            follow_id = data.get("next_page_id")
            if not follow_id:
                break
            self._check_cursor(follow_id, seen)

        return items

    def normalize_record(self, record: dict) -> Transaction | None:
        """Map a statement row; None for rejected or noise rows."""
        if (record.get("PR_PR") or "").lower() == REJECTED_STATE:
            return None

        purpose = clean_description(record.get("OSND"))
        if is_noise(purpose):
            return None

        value = to_decimal(record["SUM"])
        if value == 0:
            return None
        amount = abs(value)

        trantype = (record.get("TRANTYPE") or "").upper()
        if trantype == "C":
            direction = Direction.INCOME
        elif trantype == "D":
            direction = Direction.EXPENSE
        else:
            direction = Direction.EXPENSE if value < 0 else Direction.INCOME

        moment = parse_day_month_year(record["DAT_OD"], record.get("TIM_P"), tz=KYIV)
        counterparty = clean_description(record.get("AUT_CNTR_NAM"))
        native_id = str(record.get("ID") or record.get("REF") or "")
        tx_id = (
            f"{self.name}_{native_id}"
            if native_id
            else synthesize_id(self.name, moment, amount, purpose)
        )

        return Transaction(
            id=tx_id,
            date=moment,
            amount=amount,
            currency=record.get("CCY") or "UAH",
            direction=direction,
            description=counterparty or purpose or "PrivatBank transaction",
            account=self.account_label,
            memo=purpose or None,
            category=categorize(purpose),
            reference_id=str(record.get("REF") or native_id) or None,
            source_metadata={
                "counterparty_account": record.get("AUT_CNTR_ACC") or "",
                "state": record.get("PR_PR") or "",
            },
        )
