"""
Source connector contract and shared HTTP plumbing.

A connector owns one provider: its auth header, base URL and pagination
cursor. It exposes two operations:

- probe(): connectivity check, never raises
- fetch(): every final, informative transaction, normalized, or ConnectorError

Transient page failures are retried by the session's urllib3 Retry policy;
once retries are exhausted the failure surfaces as a ConnectorError.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Iterator

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..schemas.transaction import Transaction

logger = logging.getLogger(__name__)


class ConnectorError(Exception):
    """Base exception for connector errors."""

    def __init__(self, message: str, cause: BaseException | None = None):
        self.cause = cause
        super().__init__(message)


class ConnectorConfigError(ConnectorError):
    """Connector is missing credentials or settings."""

    pass


class ConnectorConnectionError(ConnectorError):
    """Network failure or timeout talking to the provider."""

    pass


class ConnectorAPIError(ConnectorError):
    """Provider returned an error response."""

    def __init__(
        self,
        provider: str,
        status_code: int,
        message: str,
        response_body: str | None = None,
    ):
        self.provider = provider
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"{provider} API error {status_code}: {message}")


class ConnectorAuthError(ConnectorAPIError):
    """Provider rejected the credentials (401/403)."""

    pass


class ConnectorPayloadError(ConnectorError):
    """Provider payload could not be interpreted or normalized."""

    pass


class Connector(ABC):
    """
    Base class for provider connectors.

    Subclasses implement _fetch_all() and _probe_request(); the public
    probe()/fetch() wrap them with the error contract.
    """

    #: Source name, used as id prefix and in sync results
    name: str = ""
    #: Human label used in log lines and errors
    display_name: str = ""

    DEFAULT_TIMEOUT = 30
    DEFAULT_MAX_PAGES = 500
    RETRY_STATUSES = (429, 500, 502, 503, 504)

    def __init__(
        self,
        base_url: str,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
        max_pages: int = DEFAULT_MAX_PAGES,
    ):
        """
        Initialize connector HTTP session.

        Args:
            base_url: Provider API root
            timeout: Per-request timeout in seconds
            max_retries: Maximum retry attempts for transient failures
            backoff_factor: Backoff factor for retries
            max_pages: Upper bound on paginated requests per stream
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_pages = max_pages

        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        self.session.headers.update(self._auth_headers())

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=list(self.RETRY_STATUSES),
            allowed_methods=["GET", "POST"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    @property
    def label(self) -> str:
        return self.display_name or self.name

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    def _auth_headers(self) -> dict[str, str]:
        """Headers added to every request."""
        return {}

    def _check_configured(self) -> None:
        """Raise ConnectorConfigError when credentials are missing."""

    @abstractmethod
    def _probe_request(self) -> None:
        """Cheapest authenticated request; raises on failure."""

    @abstractmethod
    def _fetch_all(self) -> list[Transaction]:
        """Fetch and normalize every record from every stream."""

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def probe(self) -> bool:
        """Test connection to the provider. Never raises."""
        try:
            self._check_configured()
            self._probe_request()
        except Exception as e:
            logger.warning("%s: connection check failed: %s", self.label, e)
            return False
        logger.info("%s: connection OK", self.label)
        return True

    def fetch(self) -> list[Transaction]:
        """
        Fetch all transactions from the provider.

        Returns:
            Normalized transactions sorted ascending by date

        Raises:
            ConnectorError: auth, network or payload failure
        """
        self._check_configured()
        try:
            transactions = self._fetch_all()
        except ConnectorError:
            raise
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise ConnectorPayloadError(
                f"{self.label}: malformed payload: {e}", cause=e
            ) from e
        logger.info("%s: fetched %d transactions", self.label, len(transactions))
        return transactions

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict | None = None,
        json_data: dict | None = None,
    ) -> Any:
        """Make an API request with error handling and return decoded JSON."""
        url = f"{self.base_url}{endpoint}"
        logger.debug("%s request: %s %s params=%s", self.label, method, url, params)

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise ConnectorConnectionError(
                f"Request to {self.label} timed out: {e}", cause=e
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise ConnectorConnectionError(
                f"Failed to connect to {self.label} at {self.base_url}: {e}", cause=e
            ) from e
        except requests.exceptions.RequestException as e:
            raise ConnectorError(f"{self.label} request failed: {e}", cause=e) from e

        if not response.ok:
            body = response.text
            message = self._error_message(response) or response.reason or "error"
            error_cls = ConnectorAuthError if response.status_code in (401, 403) else ConnectorAPIError
            raise error_cls(
                provider=self.label,
                status_code=response.status_code,
                message=message,
                response_body=body,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ConnectorPayloadError(
                f"{self.label} returned a non-JSON body for {endpoint}", cause=e
            ) from e

    @staticmethod
    def _error_message(response: requests.Response) -> str | None:
        """Extract a provider error message from a JSON error body."""
        try:
            payload = response.json()
        except ValueError:
            return None
        if not isinstance(payload, dict):
            return None
        error = payload.get("error")
        if isinstance(error, dict):
            return error.get("message")
        if isinstance(error, str):
            return error
        message = payload.get("message")
        return message if isinstance(message, str) else None

    def _pages(self) -> Iterator[int]:
        """Yield page numbers; raises once max_pages is exceeded."""
        for page in range(1, self.max_pages + 1):
            yield page
        raise ConnectorPayloadError(
            f"{self.label}: pagination did not terminate after {self.max_pages} pages"
        )

    def _check_cursor(self, cursor: str | None, seen: set[str]) -> None:
        """Refuse to loop on a cursor the provider already handed out."""
        if cursor is None:
            return
        if cursor in seen:
            raise ConnectorPayloadError(f"{self.label}: pagination cursor repeated: {cursor}")
        seen.add(cursor)

    def close(self) -> None:
        self.session.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(base_url={self.base_url!r})"


def dump_payload(payload: Any, limit: int = 500) -> str:
    """Compact JSON excerpt for log lines."""
    try:
        text = json.dumps(payload, default=str)
    except (TypeError, ValueError):
        text = repr(payload)
    return text if len(text) <= limit else text[:limit] + "..."
