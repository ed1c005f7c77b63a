"""
ORACLE - Market Analyzer

Runs one analysis cycle end to end: fetch both sources concurrently,
normalize, detect, snapshot, persist.
"""

import asyncio
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, TypeVar

from shared import (
    AgentLogger,
    AnalysisSnapshot,
    DetectionConfig,
    FetchStatus,
    NormalizedPrice,
    RawOraclePrice,
    RawPoolPrice,
    SinkError,
    SourceResult,
    cycle_context,
)
from shared.timestamps import format_timestamp, utc_now

from .detector import ArbitrageDetector
from .normalizer import PriceNormalizer
from .snapshot import JsonSnapshotSink, build_snapshot

T = TypeVar("T")


class OracleSource(Protocol):
    async def fetch_prices(self, symbols: list[str]) -> list[SourceResult[RawOraclePrice]]:
        ...


class PoolSource(Protocol):
    async def find_pools(
        self,
        target_symbols: list[str],
        quote_symbol: str,
    ) -> list[SourceResult[RawPoolPrice]]:
        ...


@dataclass
class SourceStats:
    """Per-source outcome counts for one cycle."""
    fetched: int = 0
    not_found: int = 0
    unavailable: int = 0
    failed: int = 0
    rejected: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "fetched": self.fetched,
            "not_found": self.not_found,
            "unavailable": self.unavailable,
            "failed": self.failed,
            "rejected": self.rejected,
        }


@dataclass
class PriceBook:
    """Normalized prices from both sources for one cycle."""
    oracle: list[NormalizedPrice] = field(default_factory=list)
    pool: list[NormalizedPrice] = field(default_factory=list)
    oracle_stats: SourceStats = field(default_factory=SourceStats)
    pool_stats: SourceStats = field(default_factory=SourceStats)


@dataclass
class CycleResult:
    """Outcome of one cycle. The snapshot is valid even if persisting failed."""
    snapshot: AnalysisSnapshot
    prices: PriceBook
    persisted: bool = False
    sink_error: SinkError | None = None


async def run_until_stopped(
    coro: Awaitable[T],
    stop_event: asyncio.Event,
) -> tuple[bool, T | None]:
    """Run ``coro`` as a task, cancelling it if ``stop_event`` fires first.

    Returns ``(True, result)`` when the work finished and ``(False, None)``
    when it was abandoned. Exceptions from the work propagate.
    """
    task = asyncio.ensure_future(coro)
    stopper = asyncio.ensure_future(stop_event.wait())
    try:
        await asyncio.wait({task, stopper}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        stopper.cancel()

    if task.done():
        return True, task.result()

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    return False, None


def _collect(
    results: list[SourceResult],
    normalize: Callable[[SourceResult], NormalizedPrice | None],
) -> tuple[list[NormalizedPrice], SourceStats]:
    stats = SourceStats()
    prices = []
    counts = Counter(r.status for r in results)
    stats.not_found = counts[FetchStatus.NOT_FOUND]
    stats.unavailable = counts[FetchStatus.UNAVAILABLE]
    stats.failed = counts[FetchStatus.ERROR]

    for result in results:
        if not result.succeeded:
            continue
        normalized = normalize(result)
        if normalized is None:
            stats.rejected += 1
            continue
        prices.append(normalized)
        stats.fetched += 1

    return prices, stats


class MarketAnalyzer:
    """
    Orchestrates analysis cycles.

    Each cycle is independent: nothing fetched or computed is carried into
    the next one.
    """

    def __init__(
        self,
        oracle_source: OracleSource,
        pool_source: PoolSource,
        detection: DetectionConfig | None = None,
        sink: JsonSnapshotSink | None = None,
        version: str = "1.0.0",
    ):
        self.logger = AgentLogger("ORACLE-ANALYZER")
        self.oracle_source = oracle_source
        self.pool_source = pool_source
        self.detection = detection or DetectionConfig()
        self.sink = sink
        self.version = version

        self.normalizer = PriceNormalizer()
        self.detector = ArbitrageDetector(self.detection)

    async def fetch_all_prices(self, symbols: list[str]) -> PriceBook:
        """Fetch and normalize both sources; waits for both to finish."""
        quote = self.detection.quote_symbol

        oracle_results, pool_results = await asyncio.gather(
            self.oracle_source.fetch_prices(symbols),
            self.pool_source.find_pools(symbols, quote),
        )

        oracle, oracle_stats = _collect(
            oracle_results,
            lambda r: self.normalizer.normalize_oracle(r.value),
        )
        pool, pool_stats = _collect(
            pool_results,
            lambda r: self.normalizer.normalize_pool(r.value, r.key),
        )

        for result in (*oracle_results, *pool_results):
            if result.status == FetchStatus.ERROR:
                self.logger.warning("Source fetch failed", symbol=result.key, error=str(result.error))

        return PriceBook(
            oracle=oracle,
            pool=pool,
            oracle_stats=oracle_stats,
            pool_stats=pool_stats,
        )

    async def run_cycle(
        self,
        symbols: list[str],
        now: datetime | None = None,
    ) -> CycleResult:
        """Run one full cycle.

        Source failures only remove symbols; a SinkError is logged and
        returned on the result instead of raised.
        """
        symbols = [s.strip().upper() for s in symbols if s and s.strip()]
        self.logger.info("Starting market analysis", tokens=symbols)

        prices = await self.fetch_all_prices(symbols)
        self.logger.info(
            "Prices collected",
            oracle=prices.oracle_stats.as_dict(),
            pool=prices.pool_stats.as_dict(),
        )

        now = now or utc_now()
        opportunities = self.detector.detect(prices.oracle, prices.pool, now=now)
        summary = self.detector.summarize(opportunities)

        snapshot = build_snapshot(
            detection=self.detection,
            oracle_prices=prices.oracle,
            pool_prices=prices.pool,
            opportunities=opportunities,
            summary=summary,
            tokens_analyzed=symbols,
            analysis_time=format_timestamp(now),
            version=self.version,
        )
        self._report(snapshot)

        result = CycleResult(snapshot=snapshot, prices=prices)
        if self.sink is None:
            return result

        try:
            self.sink.persist(snapshot)
            result.persisted = True
        except SinkError as e:
            self.logger.error("Snapshot not persisted", path=e.path, error=e.message)
            result.sink_error = e

        return result

    async def run_continuous(
        self,
        symbols: list[str],
        interval_seconds: float,
        stop_event: asyncio.Event | None = None,
        max_cycles: int | None = None,
    ) -> int:
        """Run cycles on a fixed interval until stopped. Returns cycles run."""
        stop_event = stop_event or asyncio.Event()
        cycles = 0

        self.logger.info("Starting continuous analysis", interval_s=interval_seconds)
        while not stop_event.is_set():
            cycles += 1
            with cycle_context("analysis", cycles):
                try:
                    completed, _ = await run_until_stopped(self.run_cycle(symbols), stop_event)
                except Exception as e:
                    # next cycle starts from scratch
                    self.logger.exception("Cycle failed", error=str(e))
                else:
                    if not completed:
                        self.logger.warning("Cycle abandoned on shutdown, nothing persisted")

            if max_cycles is not None and cycles >= max_cycles:
                break

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
            except asyncio.TimeoutError:
                pass

        self.logger.info("Continuous analysis stopped", cycles=cycles)
        return cycles

    def _report(self, snapshot: AnalysisSnapshot) -> None:
        summary = snapshot.summary
        if not snapshot.opportunities:
            self.logger.info(
                "No opportunities at current thresholds",
                min_spread_pct=self.detection.min_spread_percentage * 100,
                min_confidence=self.detection.min_confidence,
            )
            return

        self.logger.info(
            "Opportunities found",
            count=summary.total_opportunities,
            best_spread_pct=round(summary.best_spread, 2),
            total_estimated_profit=round(summary.total_estimated_profit, 2),
        )
        for rank, opp in enumerate(snapshot.opportunities[:5], start=1):
            self.logger.info(
                "Top opportunity",
                rank=rank,
                symbol=opp.base_symbol,
                buy=f"{opp.buy_source.provider} @ {opp.buy_price:.4f}",
                sell=f"{opp.sell_source.provider} @ {opp.sell_price:.4f}",
                spread_pct=round(opp.spread_percent, 2),
                estimated_profit=round(opp.estimated_profit, 2),
                confidence=round(opp.confidence, 3),
            )
