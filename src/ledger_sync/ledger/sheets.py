"""
Google Sheets ledger (Sheets API v4 over REST).

Each source writes to its own worksheet ("ledger"). Two row layouts:

identity (A:I), for sources with stable ids:
    ID | Date (UTC) | Amount | Currency | Description | Type | Category | Account | Reference

temporal (A:J), human-formatted, no id column:
    Date (dd/mm/yy) | To/From | Amount (signed) | Memo | External Memo |
    Originator | Initiated By | Method | Status | Finalized

Columns right of the layout are left alone (they usually hold formulas).
Authentication is a bearer access token supplied by configuration.
"""

import logging
from datetime import timezone
from typing import Sequence
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..schemas.anchor import IdentityAnchor, TemporalAnchor
from ..schemas.formatting import LedgerFormat
from ..schemas.transaction import Transaction
from .base import AnchorReadError, LedgerError, LedgerSink, PersistError

logger = logging.getLogger(__name__)

IDENTITY_LAYOUT = "identity"
TEMPORAL_LAYOUT = "temporal"

IDENTITY_HEADERS = [
    "ID", "Date", "Amount", "Currency", "Description",
    "Type", "Category", "Account", "Reference",
]
TEMPORAL_HEADERS = [
    "Date", "To/From", "Amount", "Memo", "External Memo",
    "Originator Identification", "Initiated By", "Method", "Status",
    "If Finalized Transaction",
]

FINALIZED_STATUSES = frozenset({"FINALIZED", "SETTLED", "COMPLETED", "PROCESSED", "SUCCEEDED", "PAID"})


class SheetsAPIError(LedgerError):
    """Sheets API returned an error response."""

    def __init__(self, status_code: int, message: str, response_body: str | None = None):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"Sheets API error {status_code}: {message}")


class SheetsLedger(LedgerSink):
    """
    Ledger backed by a Google Sheets spreadsheet.

    Features:
    - Read id column / date-description-amount columns for anchors
    - Append rows with USER_ENTERED semantics
    - Automatic retry with backoff
    """

    DEFAULT_BASE_URL = "https://sheets.googleapis.com/v4"
    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        spreadsheet_id: str,
        access_token: str,
        layouts: dict[str, str] | None = None,
        rules: LedgerFormat | None = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize the Sheets ledger.

        Args:
            spreadsheet_id: Target spreadsheet
            access_token: OAuth2 bearer token with the spreadsheets scope
            layouts: Worksheet name -> "identity" | "temporal"
            rules: Formatting rules for temporal worksheets
            base_url: Sheets API root
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for transient failures
            backoff_factor: Backoff factor for retries
        """
        self.spreadsheet_id = spreadsheet_id
        self.layouts = dict(layouts or {})
        self.rules = rules or LedgerFormat()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._prepared: set[str] = set()

        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            }
        )
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            # appends are not idempotent
            allowed_methods=["GET"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def layout_for(self, ledger: str) -> str:
        return self.layouts.get(ledger, IDENTITY_LAYOUT)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _spreadsheet_url(self, suffix: str = "") -> str:
        return f"{self.base_url}/spreadsheets/{self.spreadsheet_id}{suffix}"

    def _values_url(self, a1_range: str, suffix: str = "") -> str:
        return self._spreadsheet_url(f"/values/{quote(a1_range, safe='!:')}{suffix}")

    def _request(
        self,
        method: str,
        url: str,
        params: dict | None = None,
        json_data: dict | None = None,
    ) -> dict:
        """Make an API request with error handling."""
        logger.debug("Sheets request: %s %s", method, url)
        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise LedgerError(f"Request to Google Sheets failed: {e}") from e

        if not response.ok:
            try:
                message = response.json().get("error", {}).get("message", response.reason)
            except ValueError:
                message = response.reason
            raise SheetsAPIError(response.status_code, message, response.text)

        try:
            return response.json()
        except ValueError as e:
            raise LedgerError("Google Sheets returned a non-JSON body") from e

    def _get_values(self, a1_range: str) -> list[list[str]]:
        data = self._request("GET", self._values_url(a1_range))
        return data.get("values") or []

    def probe(self) -> bool:
        """Test connection to the spreadsheet."""
        try:
            data = self._request(
                "GET",
                self._spreadsheet_url(),
                params={"fields": "properties.title"},
            )
        except LedgerError as e:
            logger.warning("Google Sheets: connection check failed: %s", e)
            return False
        logger.info("Google Sheets: connected to %r", data.get("properties", {}).get("title"))
        return True

    # ------------------------------------------------------------------
    # Anchors
    # ------------------------------------------------------------------

    def get_identity_set(self, ledger: str) -> IdentityAnchor:
        """Read the id column (A) of an identity worksheet."""
        try:
            values = self._get_values(f"{ledger}!A:A")
        except LedgerError as e:
            raise AnchorReadError(f"Could not read existing ids from {ledger}: {e}") from e
        anchor = IdentityAnchor.from_column(values)
        logger.info("%s: %d ids already in ledger", ledger, len(anchor.known_ids))
        return anchor

    def get_temporal_anchor(self, ledger: str) -> TemporalAnchor:
        """Read date/description/amount (A:C) of a temporal worksheet."""
        try:
            values = self._get_values(f"{ledger}!A:C")
        except LedgerError as e:
            raise AnchorReadError(f"Could not read ledger rows from {ledger}: {e}") from e
        anchor = TemporalAnchor.from_rows(values, date_col=0, description_col=1, amount_col=2)
        logger.info(
            "%s: latest date %s with %d rows",
            ledger,
            anchor.latest_date.isoformat() if anchor.latest_date else "none",
            len(anchor.latest_date_rows),
        )
        return anchor

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def build_row(self, ledger: str, transaction: Transaction) -> list[str]:
        """Render one transaction in the worksheet's layout."""
        if self.layout_for(ledger) == TEMPORAL_LAYOUT:
            return self._temporal_row(transaction)
        return self._identity_row(transaction)

    @staticmethod
    def _identity_row(t: Transaction) -> list[str]:
        return [
            t.id,
            t.date.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
            f"{t.amount:.2f}",
            t.currency,
            t.description,
            t.direction.value,
            t.category or "",
            t.account,
            t.reference_id or "",
        ]

    def _temporal_row(self, t: Transaction) -> list[str]:
        rules = self.rules
        meta = t.source_metadata
        status = meta.get("status") or "Finalized"
        if t.account in rules.card_accounts:
            memo = meta.get("original_description", "")
        else:
            memo = t.memo or ""
        return [
            rules.format_date(t.date),
            rules.resolve_description(t),
            rules.format_amount(t),
            memo,
            "",
            "",
            meta.get("initiated_by") or "Client",
            meta.get("payment_method") or "ACH/Wire",
            status,
            "TRUE" if status.upper() in FINALIZED_STATUSES else "FALSE",
        ]

    def append(self, ledger: str, transactions: Sequence[Transaction]) -> int:
        """
        Append rows after the last used row of the worksheet.

        The first append to a worksheet creates it when missing and writes
        the header row when row 1 is empty. Both anchors skip row 1, so a
        data row written there would never be recognized.
        """
        if not transactions:
            return 0

        layout = self.layout_for(ledger)
        last_col = "J" if layout == TEMPORAL_LAYOUT else "I"
        rows = [self.build_row(ledger, t) for t in transactions]

        try:
            self._prepare(ledger)
            data = self._request(
                "POST",
                self._values_url(f"{ledger}!A:{last_col}", ":append"),
                params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
                json_data={"values": rows},
            )
        except LedgerError as e:
            raise PersistError(f"Failed to append {len(rows)} rows to {ledger}: {e}") from e

        written = data.get("updates", {}).get("updatedRows", len(rows))
        logger.info("%s: appended %d rows", ledger, written)
        return written

    def _prepare(self, ledger: str) -> None:
        if ledger in self._prepared:
            return
        self.ensure_headers(ledger)
        self._prepared.add(ledger)

    def ensure_worksheet(self, ledger: str) -> bool:
        """Add the worksheet to the spreadsheet if missing. Returns True when created."""
        data = self._request(
            "GET",
            self._spreadsheet_url(),
            params={"fields": "sheets.properties.title"},
        )
        titles = {sheet.get("properties", {}).get("title") for sheet in data.get("sheets", [])}
        if ledger in titles:
            return False
        self._request(
            "POST",
            self._spreadsheet_url(":batchUpdate"),
            json_data={"requests": [{"addSheet": {"properties": {"title": ledger}}}]},
        )
        logger.info("%s: worksheet created", ledger)
        return True

    def ensure_headers(self, ledger: str) -> None:
        """Create the worksheet if needed and write the header row when it is empty."""
        headers = TEMPORAL_HEADERS if self.layout_for(ledger) == TEMPORAL_LAYOUT else IDENTITY_HEADERS
        if not self.ensure_worksheet(ledger) and self._get_values(f"{ledger}!1:1"):
            return
        self._request(
            "PUT",
            self._values_url(f"{ledger}!A1"),
            params={"valueInputOption": "RAW"},
            json_data={"values": [headers]},
        )
        logger.info("%s: header row written", ledger)
