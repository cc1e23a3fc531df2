"""
Configuration management (SSOT).

This module defines ALL configuration for ledger-sync.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Each source writes to exactly one worksheet ("ledger")
- The dedup strategy of a source is fixed here, never inferred at runtime
- Temporal worksheets are compared using the same LedgerFormat the sink
  writes with
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .schemas.anchor import AnchorStrategy, strategy_from_name
from .schemas.formatting import LedgerFormat

VALID_STRATEGIES = ("identity", "temporal")


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("Invalid configuration: " + "; ".join(errors))


@dataclass
class SheetsConfig:
    """Google Sheets ledger configuration.

    The access token is provided from outside (service account or OAuth
    flow); ledger-sync never stores or refreshes it.
    """

    spreadsheet_id: str = ""
    access_token: str = ""
    base_url: str = "https://sheets.googleapis.com/v4"


@dataclass
class SourceConfig:
    """Settings shared by every source."""

    enabled: bool = True
    # Worksheet this source appends to
    ledger: str = ""
    # "identity" (stable id column) or "temporal" (date + content match)
    strategy: str = "identity"
    # How far back each fetch looks (days)
    fetch_days: int = 30
    base_url: str = ""


@dataclass
class StripeConfig(SourceConfig):
    """Stripe configuration."""

    secret_key: str = ""
    ledger: str = "Stripe"
    strategy: str = "identity"
    base_url: str = "https://api.stripe.com/v1"
    include_payouts: bool = True


@dataclass
class BrexConfig(SourceConfig):
    """Brex configuration."""

    api_key: str = ""
    ledger: str = "Brex"
    strategy: str = "temporal"
    base_url: str = "https://platform.brexapis.com"
    include_cash: bool = True


@dataclass
class PrivatBankConfig(SourceConfig):
    """PrivatBank Autoclient configuration."""

    token: str = ""
    account: str = ""
    ledger: str = "PrivatBank"
    strategy: str = "identity"
    base_url: str = "https://acp.privatbank.ua/api"


@dataclass
class LedgerFormatConfig:
    """Text formatting of temporal worksheets (SSOT)."""

    # Timezone the dd/mm/yy dates are written in
    timezone: str = "UTC"
    # Prepended to amounts after the sign, e.g. "$" -> "-$1,234.50"
    amount_prefix: str = ""
    # Accounts whose To/From column shows the provider's original descriptor
    card_accounts: list[str] = field(default_factory=lambda: ["Brex Card"])
    # To/From fallback when a transaction has no description
    default_counterparty: str = ""

    def to_rules(self) -> LedgerFormat:
        return LedgerFormat(
            timezone=self.timezone,
            amount_prefix=self.amount_prefix,
            card_accounts=tuple(self.card_accounts),
            default_counterparty=self.default_counterparty,
        )


@dataclass
class SyncConfig:
    """Orchestrator and HTTP settings."""

    # Sources processed in parallel
    max_workers: int = 4
    # Per-request timeout (seconds)
    request_timeout: int = 30
    # Retries for transient HTTP failures (per request)
    max_retries: int = 3
    backoff_factor: float = 0.5
    # Upper bound on paginated requests per stream
    max_pages: int = 500


@dataclass
class Config:
    """Application configuration (SSOT)."""

    sheets: SheetsConfig = field(default_factory=SheetsConfig)
    stripe: StripeConfig = field(default_factory=StripeConfig)
    brex: BrexConfig = field(default_factory=BrexConfig)
    privatbank: PrivatBankConfig = field(default_factory=PrivatBankConfig)
    ledger_format: LedgerFormatConfig = field(default_factory=LedgerFormatConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)

    def source_configs(self) -> dict[str, SourceConfig]:
        """All sources by name, in default run order."""
        return {"brex": self.brex, "stripe": self.stripe, "privatbank": self.privatbank}

    def enabled_sources(self) -> list[str]:
        return [name for name, cfg in self.source_configs().items() if cfg.enabled]

    def strategy_for(self, source: str) -> AnchorStrategy:
        cfg = self.source_configs()[source]
        return strategy_from_name(cfg.strategy, self.ledger_format.to_rules())

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.sheets.spreadsheet_id:
            errors.append("sheets.spreadsheet_id is required")

        ledgers: dict[str, str] = {}
        for name, cfg in self.source_configs().items():
            if not cfg.enabled:
                continue
            try:
                strategy = strategy_from_name(cfg.strategy).name
            except ValueError:
                errors.append(f"{name}.strategy must be one of {', '.join(VALID_STRATEGIES)}")
                strategy = cfg.strategy
            if not cfg.ledger:
                errors.append(f"{name}.ledger is required")
            elif cfg.ledger in ledgers and ledgers[cfg.ledger] != strategy:
                errors.append(
                    f"{name}.ledger '{cfg.ledger}' is shared with a source using a different strategy"
                )
            else:
                ledgers[cfg.ledger] = strategy
            if cfg.fetch_days <= 0:
                errors.append(f"{name}.fetch_days must be positive")

        if self.privatbank.enabled and self.privatbank.token and not self.privatbank.account:
            errors.append("privatbank.account is required when a token is set")

        try:
            self.ledger_format.to_rules().tz
        except (KeyError, ValueError):
            errors.append(f"ledger_format.timezone '{self.ledger_format.timezone}' is not a known zone")

        if self.sync.max_workers < 1:
            errors.append("sync.max_workers must be >= 1")
        if self.sync.request_timeout <= 0:
            errors.append("sync.request_timeout must be positive")

        return errors


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name, "").strip().lower()
    if value in ("true", "1", "yes"):
        return True
    if value in ("false", "0", "no"):
        return False
    return default


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name, "")
    if value:
        try:
            return int(value)
        except ValueError:
            pass  # Keep default
    return default


def load_config(config_path: Path, validate: bool = False) -> Config:
    """
    Load configuration from YAML file.

    With validate=True, raises ConfigValidationError listing every problem
    found by Config.validate().

    Environment variables can override config values:
    - GOOGLE_SHEETS_SPREADSHEET_ID
    - GOOGLE_SHEETS_ACCESS_TOKEN
    - STRIPE_SECRET_KEY
    - BREX_API_KEY
    - PRIVATBANK_API_TOKEN
    - PRIVATBANK_ACCOUNT
    - LEDGER_SYNC_FETCH_DAYS (applies to every source)
    - LEDGER_SYNC_MAX_WORKERS
    - LEDGER_SYNC_<SOURCE>_ENABLED (true/false)
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    sheets_data = data.get("sheets", {})
    sheets = SheetsConfig(
        spreadsheet_id=os.environ.get(
            "GOOGLE_SHEETS_SPREADSHEET_ID", sheets_data.get("spreadsheet_id", "")
        ),
        access_token=os.environ.get(
            "GOOGLE_SHEETS_ACCESS_TOKEN", sheets_data.get("access_token", "")
        ),
        base_url=sheets_data.get("base_url", SheetsConfig.base_url),
    )

    stripe_data = data.get("stripe", {})
    stripe = StripeConfig(
        enabled=_env_bool("LEDGER_SYNC_STRIPE_ENABLED", stripe_data.get("enabled", True)),
        secret_key=os.environ.get("STRIPE_SECRET_KEY", stripe_data.get("secret_key", "")),
        ledger=stripe_data.get("ledger", StripeConfig.ledger),
        strategy=stripe_data.get("strategy", StripeConfig.strategy),
        fetch_days=_env_int("LEDGER_SYNC_FETCH_DAYS", stripe_data.get("fetch_days", 30)),
        base_url=stripe_data.get("base_url", StripeConfig.base_url),
        include_payouts=stripe_data.get("include_payouts", True),
    )

    brex_data = data.get("brex", {})
    brex = BrexConfig(
        enabled=_env_bool("LEDGER_SYNC_BREX_ENABLED", brex_data.get("enabled", True)),
        api_key=os.environ.get("BREX_API_KEY", brex_data.get("api_key", "")),
        ledger=brex_data.get("ledger", BrexConfig.ledger),
        strategy=brex_data.get("strategy", BrexConfig.strategy),
        fetch_days=_env_int("LEDGER_SYNC_FETCH_DAYS", brex_data.get("fetch_days", 30)),
        base_url=brex_data.get("base_url", BrexConfig.base_url),
        include_cash=brex_data.get("include_cash", True),
    )

    pb_data = data.get("privatbank", {})
    privatbank = PrivatBankConfig(
        enabled=_env_bool("LEDGER_SYNC_PRIVATBANK_ENABLED", pb_data.get("enabled", True)),
        token=os.environ.get("PRIVATBANK_API_TOKEN", pb_data.get("token", "")),
        account=os.environ.get("PRIVATBANK_ACCOUNT", pb_data.get("account", "")),
        ledger=pb_data.get("ledger", PrivatBankConfig.ledger),
        strategy=pb_data.get("strategy", PrivatBankConfig.strategy),
        fetch_days=_env_int("LEDGER_SYNC_FETCH_DAYS", pb_data.get("fetch_days", 30)),
        base_url=pb_data.get("base_url", PrivatBankConfig.base_url),
    )

    fmt_data = data.get("ledger_format", {})
    ledger_format = LedgerFormatConfig(
        timezone=fmt_data.get("timezone", "UTC"),
        amount_prefix=fmt_data.get("amount_prefix", ""),
        card_accounts=list(fmt_data.get("card_accounts", ["Brex Card"])),
        default_counterparty=fmt_data.get("default_counterparty", ""),
    )

    sync_data = data.get("sync", {})
    sync = SyncConfig(
        max_workers=_env_int("LEDGER_SYNC_MAX_WORKERS", sync_data.get("max_workers", 4)),
        request_timeout=sync_data.get("request_timeout", 30),
        max_retries=sync_data.get("max_retries", 3),
        backoff_factor=sync_data.get("backoff_factor", 0.5),
        max_pages=sync_data.get("max_pages", 500),
    )

    config = Config(
        sheets=sheets,
        stripe=stripe,
        brex=brex,
        privatbank=privatbank,
        ledger_format=ledger_format,
        sync=sync,
    )

    if validate:
        errors = config.validate()
        if errors:
            raise ConfigValidationError(errors)

    return config


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# ledger-sync configuration
#
# Secrets may be left empty here and supplied through the environment:
# GOOGLE_SHEETS_ACCESS_TOKEN, STRIPE_SECRET_KEY, BREX_API_KEY,
# PRIVATBANK_API_TOKEN, PRIVATBANK_ACCOUNT

sheets:
  spreadsheet_id: "YOUR_SPREADSHEET_ID"
  access_token: ""                        # OAuth2 bearer token (spreadsheets scope)

# Dedup strategy per source:
#   identity - the worksheet has an id column (column A)
#   temporal - the worksheet only has formatted date/description/amount
brex:
  enabled: true
  api_key: ""
  ledger: "Brex"
  strategy: "temporal"
  fetch_days: 30
  include_cash: true                      # also sync cash accounts

stripe:
  enabled: true
  secret_key: ""
  ledger: "Stripe"
  strategy: "identity"
  fetch_days: 30
  include_payouts: true

privatbank:
  enabled: true
  token: ""
  account: ""                             # IBAN / account number
  ledger: "PrivatBank"
  strategy: "identity"
  fetch_days: 30

# Formatting of temporal worksheets (must match what is already in the sheet)
ledger_format:
  timezone: "UTC"
  amount_prefix: ""                       # e.g. "$" if the sheet shows -$1,234.50
  card_accounts: ["Brex Card"]
  default_counterparty: ""

sync:
  max_workers: 4
  request_timeout: 30                     # seconds, per HTTP request
  max_retries: 3
  backoff_factor: 0.5
  max_pages: 500
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
