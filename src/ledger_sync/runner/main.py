"""
CLI main entry point.
"""

import argparse
import logging
import sys
from pathlib import Path

from ..config import Config, ConfigValidationError, create_default_config, load_config
from ..connectors import BrexConnector, Connector, PrivatBankConnector, StripeConnector
from ..ledger import IDENTITY_LAYOUT, TEMPORAL_LAYOUT, LedgerError, SheetsLedger
from ..schemas.anchor import TemporalBoundary
from ..services import SourceBinding, SyncOrchestrator

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # urllib3 logs every retry at DEBUG; keep it quiet unless asked
    if not verbose:
        logging.getLogger("urllib3").setLevel(logging.WARNING)


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledger-sync",
        description="Sync transactions from Stripe, Brex and PrivatBank into a Google Sheets ledger",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # sync command
    sync_parser = subparsers.add_parser("sync", help="Append new transactions to the ledger")
    sync_parser.add_argument(
        "-s",
        "--source",
        action="append",
        dest="sources",
        metavar="SOURCE",
        help="Source to sync (repeatable; default: all enabled sources)",
    )

    # test-connections command
    test_parser = subparsers.add_parser(
        "test-connections", help="Check connectivity to the ledger and each source"
    )
    test_parser.add_argument(
        "-s",
        "--source",
        action="append",
        dest="sources",
        metavar="SOURCE",
        help="Source to check (repeatable; default: all enabled sources)",
    )

    # init-config command
    init_parser = subparsers.add_parser("init-config", help="Write a default config file")
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config file",
    )

    # init-ledgers command
    subparsers.add_parser(
        "init-ledgers", help="Write header rows into empty ledger worksheets"
    )

    return parser


def build_connectors(config: Config) -> dict[str, Connector]:
    """Instantiate one connector per enabled source."""
    http = {
        "timeout": config.sync.request_timeout,
        "max_retries": config.sync.max_retries,
        "backoff_factor": config.sync.backoff_factor,
        "max_pages": config.sync.max_pages,
    }
    factories = {
        "brex": lambda: BrexConnector(
            api_key=config.brex.api_key,
            base_url=config.brex.base_url,
            fetch_days=config.brex.fetch_days,
            include_cash=config.brex.include_cash,
            **http,
        ),
        "stripe": lambda: StripeConnector(
            secret_key=config.stripe.secret_key,
            base_url=config.stripe.base_url,
            fetch_days=config.stripe.fetch_days,
            include_payouts=config.stripe.include_payouts,
            **http,
        ),
        "privatbank": lambda: PrivatBankConnector(
            token=config.privatbank.token,
            account=config.privatbank.account,
            base_url=config.privatbank.base_url,
            fetch_days=config.privatbank.fetch_days,
            **http,
        ),
    }
    return {name: factories[name]() for name in config.enabled_sources()}


def build_ledger(config: Config) -> SheetsLedger:
    """Sheets ledger with one worksheet layout per enabled source."""
    layouts = {}
    for name in config.enabled_sources():
        strategy = config.strategy_for(name)
        cfg = config.source_configs()[name]
        layouts[cfg.ledger] = (
            TEMPORAL_LAYOUT if isinstance(strategy, TemporalBoundary) else IDENTITY_LAYOUT
        )
    return SheetsLedger(
        spreadsheet_id=config.sheets.spreadsheet_id,
        access_token=config.sheets.access_token,
        layouts=layouts,
        rules=config.ledger_format.to_rules(),
        base_url=config.sheets.base_url,
        timeout=config.sync.request_timeout,
        max_retries=config.sync.max_retries,
        backoff_factor=config.sync.backoff_factor,
    )


def build_orchestrator(config: Config) -> SyncOrchestrator:
    """Wire connectors, strategies and the ledger from configuration."""
    connectors = build_connectors(config)
    sources = {
        name: SourceBinding(
            connector=connector,
            ledger=config.source_configs()[name].ledger,
            strategy=config.strategy_for(name),
        )
        for name, connector in connectors.items()
    }
    return SyncOrchestrator(sources, build_ledger(config), max_workers=config.sync.max_workers)


def _close(orchestrator: SyncOrchestrator) -> None:
    for binding in orchestrator.sources.values():
        binding.connector.close()


def cmd_sync(config: Config, sources: list[str] | None) -> int:
    """Run one sync pass and print the summary."""
    orchestrator = build_orchestrator(config)

    print("\n🔄 Syncing transactions...")
    try:
        summary = orchestrator.sync(sources)
    except ValueError as e:
        print(f"❌ {e}")
        return EXIT_CONFIG
    finally:
        _close(orchestrator)

    print()
    print(summary.render())

    if summary.has_errors:
        print(f"\n⚠️  Completed with {len(summary.errors)} error(s)")
    else:
        print("\n✅ Sync complete")
    return summary.exit_code


def cmd_test_connections(config: Config, sources: list[str] | None) -> int:
    """Probe the ledger and each source."""
    orchestrator = build_orchestrator(config)
    try:
        status = orchestrator.test_connections(sources)
    finally:
        _close(orchestrator)

    print("\n🔌 Connection Status")
    print("=" * 40)
    for name, ok in status.items():
        print(f"  {'✅' if ok else '❌'} {name}")
    print()

    return EXIT_OK if all(status.values()) else EXIT_FAILED


def cmd_init_config(config_path: Path, force: bool) -> int:
    """Write the default config file."""
    if config_path.exists() and not force:
        print(f"❌ {config_path} already exists (use --force to overwrite)")
        return EXIT_FAILED
    create_default_config(config_path)
    print(f"✅ Wrote default config to {config_path}")
    return EXIT_OK


def cmd_init_ledgers(config: Config) -> int:
    """Write header rows into every enabled source's worksheet if it is empty."""
    ledger = build_ledger(config)
    failed = 0
    for name in config.enabled_sources():
        worksheet = config.source_configs()[name].ledger
        try:
            ledger.ensure_headers(worksheet)
        except LedgerError as e:
            logger.error("Could not prepare %s: %s", worksheet, e)
            print(f"  ❌ {worksheet}: {e}")
            failed += 1
            continue
        print(f"  ✅ {worksheet} ({ledger.layout_for(worksheet)})")
    return EXIT_FAILED if failed else EXIT_OK


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return EXIT_FAILED

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config, parsed.force)

    # Load config
    try:
        config = load_config(parsed.config, validate=True)
    except ConfigValidationError as e:
        print("❌ Invalid configuration:")
        for error in e.errors:
            print(f"  - {error}")
        return EXIT_CONFIG
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return EXIT_CONFIG

    # Route to command
    if parsed.command == "sync":
        return cmd_sync(config, parsed.sources)
    elif parsed.command == "test-connections":
        return cmd_test_connections(config, parsed.sources)
    elif parsed.command == "init-ledgers":
        return cmd_init_ledgers(config)
    else:
        parser.print_help()
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
