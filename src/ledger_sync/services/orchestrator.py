"""Sync orchestrator.

Runs each configured source through fetch → resolve anchor → filter → sort →
persist and records one SyncResult per source. A failure in any stage is
contained at the source boundary: it becomes an error on that source's
result and the remaining sources carry on.

Sources run concurrently. Anchor read and append for a ledger happen under
that ledger's lock, so a batch is persisted relative to the anchor it was
filtered against and two sources never write the same worksheet at once.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from ..ledger.base import AnchorReadError
from .dedupe import empty_anchor, filter_new, resolve_anchor

if TYPE_CHECKING:
    from ..connectors.base import Connector
    from ..ledger.base import LedgerSink
    from ..schemas.anchor import AnchorStrategy

logger = logging.getLogger(__name__)

SINK_PROBE_NAME = "ledger"


class SyncStage(str, Enum):
    """Per-source, per-run state."""

    IDLE = "idle"
    FETCHING = "fetching"
    RESOLVING = "resolving"
    FILTERING = "filtering"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class SourceBinding:
    """A configured source: its connector, target worksheet and dedup strategy."""

    connector: Connector
    ledger: str
    strategy: AnchorStrategy


@dataclass
class SyncResult:
    """Result of syncing one source in one run."""

    source: str
    new_count: int = 0
    total_fetched: int = 0
    errors: list[str] = field(default_factory=list)
    stage: SyncStage = SyncStage.IDLE
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        """Return True if the source completed without errors."""
        return len(self.errors) == 0


@dataclass
class RunSummary:
    """Aggregate of one orchestrator pass, for human reporting."""

    results: list[SyncResult]

    @property
    def total_fetched(self) -> int:
        return sum(r.total_fetched for r in self.results)

    @property
    def total_new(self) -> int:
        return sum(r.new_count for r in self.results)

    @property
    def errors(self) -> list[str]:
        return [f"{r.source}: {error}" for r in self.results for error in r.errors]

    @property
    def has_errors(self) -> bool:
        return any(not r.success for r in self.results)

    @property
    def exit_code(self) -> int:
        return 1 if self.has_errors else 0

    def render(self) -> str:
        """Plain-text table of the run."""
        width = 72
        lines = ["=" * width, "SYNC SUMMARY", "=" * width]
        for r in self.results:
            status = "OK  " if r.success else "FAIL"
            line = (
                f"{status} {r.source.upper():<12} | New: {r.new_count:>4} | "
                f"Fetched: {r.total_fetched:>4}"
            )
            if r.errors:
                line += f" | Errors: {len(r.errors)}"
            lines.append(line)
        lines.append("-" * width)
        lines.append(
            f"TOTALS: {self.total_new} new transactions added from "
            f"{self.total_fetched} fetched"
        )
        if self.errors:
            lines.append("Errors:")
            lines.extend(f"  - {error}" for error in self.errors)
        lines.append("=" * width)
        return "\n".join(lines)


class SyncOrchestrator:
    """Runs sources independently and aggregates their results."""

    DEFAULT_MAX_WORKERS = 4

    def __init__(
        self,
        sources: Mapping[str, SourceBinding],
        sink: LedgerSink,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            sources: Source name -> binding, in default run order.
            sink: Ledger all sources append to.
            max_workers: Maximum sources processed in parallel.
        """
        self.sources = dict(sources)
        self.sink = sink
        self.max_workers = max(1, max_workers)
        self._ledger_locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _ledger_lock(self, ledger: str) -> threading.Lock:
        with self._locks_guard:
            return self._ledger_locks.setdefault(ledger, threading.Lock())

    def _select(self, sources: Iterable[str] | None) -> list[str]:
        if sources is None:
            names = list(self.sources)
        else:
            names = list(dict.fromkeys(s.strip().lower() for s in sources if s and s.strip()))
        if not any(name in self.sources for name in names):
            raise ValueError(
                f"No valid sources requested (configured: {', '.join(self.sources) or 'none'})"
            )
        return names

    def run(self, sources: Iterable[str] | None = None) -> list[SyncResult]:
        """Sync the requested sources (default: all configured).

        Args:
            sources: Source names to sync.

        Returns:
            One SyncResult per requested source, in request order.

        Raises:
            ValueError: None of the requested names is a configured source.
        """
        names = self._select(sources)
        logger.info("Starting sync for: %s", ", ".join(names))

        workers = min(self.max_workers, len(names))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sync") as pool:
            futures = [pool.submit(self.sync_source, name) for name in names]
            results = [future.result() for future in futures]

        summary = RunSummary(results)
        logger.info(
            "Sync completed: %d new of %d fetched across %d sources, %d errors",
            summary.total_new,
            summary.total_fetched,
            len(results),
            len(summary.errors),
        )
        return results

    def sync(self, sources: Iterable[str] | None = None) -> RunSummary:
        """run() and wrap the results in a RunSummary."""
        return RunSummary(self.run(sources))

    def sync_source(self, name: str) -> SyncResult:
        """Run one source through the pipeline; never raises."""
        result = SyncResult(source=name)
        start = time.monotonic()

        binding = self.sources.get(name)
        if binding is None:
            result.stage = SyncStage.FAILED
            result.errors.append(f"Unknown source: {name}")
            logger.warning("Unknown source: %s", name)
            return result

        try:
            self._run_pipeline(binding, result)
        except Exception as e:
            logger.exception("Sync failed for %s during %s", name, result.stage.value)
            result.errors.append(f"{result.stage.value}: {e}")
            result.new_count = 0
            result.stage = SyncStage.FAILED
        finally:
            result.duration_ms = int((time.monotonic() - start) * 1000)

        return result

    def _run_pipeline(self, binding: SourceBinding, result: SyncResult) -> None:
        name = result.source

        result.stage = SyncStage.FETCHING
        fetched = binding.connector.fetch()
        result.total_fetched = len(fetched)
        if not fetched:
            logger.info("%s: no transactions returned", name)
            result.stage = SyncStage.DONE
            return

        with self._ledger_lock(binding.ledger):
            result.stage = SyncStage.RESOLVING
            try:
                anchor = resolve_anchor(binding.strategy, self.sink, binding.ledger)
            except AnchorReadError as e:
                logger.warning("%s: %s; treating every transaction as new", name, e)
                anchor = empty_anchor(binding.strategy)

            result.stage = SyncStage.FILTERING
            new_transactions = filter_new(binding.strategy, anchor, fetched)
            logger.info(
                "%s: %d fetched, %d new for %s",
                name,
                len(fetched),
                len(new_transactions),
                binding.ledger,
            )

            if new_transactions:
                result.stage = SyncStage.PERSISTING
                result.new_count = self.sink.append(binding.ledger, new_transactions)

        result.stage = SyncStage.DONE

    def test_connections(self, sources: Iterable[str] | None = None) -> dict[str, bool]:
        """Probe the ledger and each requested connector. Never raises."""
        names = list(self.sources) if sources is None else [s.strip().lower() for s in sources]
        status = {SINK_PROBE_NAME: self._safe_probe(self.sink.probe)}
        for name in names:
            binding = self.sources.get(name)
            status[name] = binding is not None and self._safe_probe(binding.connector.probe)
        return status

    @staticmethod
    def _safe_probe(probe) -> bool:
        try:
            return bool(probe())
        except Exception:
            logger.exception("Connection probe raised")
            return False
