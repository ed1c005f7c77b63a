"""Tests for the Oracle market analyzer cycle."""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from oracle.cycle import MarketAnalyzer, run_until_stopped
from oracle.snapshot import JsonSnapshotSink
from shared import (
    DetectionConfig,
    PoolToken,
    PriceSource,
    RawOraclePrice,
    RawPoolPrice,
    SinkError,
    SourceError,
    SourceResult,
)
from shared.timestamps import format_timestamp

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
FRESH = format_timestamp(NOW - timedelta(seconds=5))

USDC = PoolToken("USDC", "0xa0b8", 6)


class FakeOracle:
    """Oracle stand-in keyed by symbol; missing symbols come back unavailable."""

    def __init__(self, prices=None, errors=None):
        self.prices = prices or {}
        self.errors = errors or set()
        self.calls = []

    async def fetch_prices(self, symbols):
        self.calls.append(list(symbols))
        results = []
        for symbol in symbols:
            if symbol in self.errors:
                results.append(SourceResult.failed(symbol, SourceError("DIA", "HTTP 500", status_code=500)))
            elif symbol in self.prices:
                results.append(SourceResult.ok(symbol, RawOraclePrice(symbol, self.prices[symbol], FRESH)))
            else:
                results.append(SourceResult.unavailable(symbol))
        return results


class FakePools:
    """Pool stand-in returning one deep pool per configured symbol."""

    def __init__(self, prices=None, errors=None, fetched_at=FRESH):
        self.prices = prices or {}
        self.errors = errors or set()
        self.fetched_at = fetched_at
        self.quotes = []

    async def find_pools(self, target_symbols, quote_symbol):
        self.quotes.append(quote_symbol)
        results = []
        for symbol in target_symbols:
            if symbol in self.errors:
                results.append(SourceResult.failed(symbol, SourceError("Uniswap-V3", "timed out", timed_out=True)))
            elif symbol == quote_symbol or symbol not in self.prices:
                results.append(SourceResult.not_found(symbol))
            else:
                price = self.prices[symbol]
                results.append(SourceResult.ok(symbol, RawPoolPrice(
                    pool_id=f"0x{symbol.lower()}",
                    token0=USDC,
                    token1=PoolToken(symbol, f"0x{symbol.lower()}", 18),
                    token0_price=1 / price,
                    token1_price=price,
                    total_value_locked_usd=50_000_000,
                    volume_usd=5_000_000,
                    fetched_at=self.fetched_at,
                )))
        return results


class SlowOracle(FakeOracle):
    """Oracle whose answers arrive after ``delay`` seconds."""

    def __init__(self, prices=None, delay=0.3):
        super().__init__(prices)
        self.delay = delay
        self.answered = 0

    async def fetch_prices(self, symbols):
        await asyncio.sleep(self.delay)
        self.answered += 1
        return await super().fetch_prices(symbols)


class ExplodingOracle:
    async def fetch_prices(self, symbols):
        raise RuntimeError("connection pool closed")


class TestMarketAnalyzer:
    """Test suite for MarketAnalyzer."""

    @pytest.mark.asyncio
    async def test_cycle_finds_opportunity(self):
        """Test an oracle/pool disagreement ends up in the snapshot."""
        analyzer = MarketAnalyzer(
            FakeOracle({"ETH": 2000.0, "LINK": 15.0}),
            FakePools({"ETH": 1900.0, "LINK": 15.0}),
        )

        result = await analyzer.run_cycle(["ETH", "LINK"], now=NOW)

        opportunities = result.snapshot.opportunities
        assert len(opportunities) == 1
        assert opportunities[0].base_symbol == "ETH"
        assert opportunities[0].buy_source == PriceSource.POOL
        assert result.snapshot.summary.total_opportunities == 1
        assert [p.symbol for p in result.snapshot.oracle_prices] == ["ETH", "LINK"]
        assert [p.symbol for p in result.snapshot.pool_prices] == ["ETH", "LINK"]
        assert result.persisted is False

    @pytest.mark.asyncio
    async def test_symbols_cleaned(self):
        """Test symbols are trimmed and upper-cased before fetching."""
        oracle = FakeOracle({"ETH": 2000.0})
        analyzer = MarketAnalyzer(oracle, FakePools())

        result = await analyzer.run_cycle([" eth ", ""], now=NOW)

        assert oracle.calls == [["ETH"]]
        assert result.snapshot.tokens_analyzed == ["ETH"]

    @pytest.mark.asyncio
    async def test_partial_failures_only_drop_symbols(self):
        """Test failed fetches leave the rest of the cycle intact."""
        analyzer = MarketAnalyzer(
            FakeOracle({"ETH": 2000.0, "WBTC": 60000.0}, errors={"LINK"}),
            FakePools({"ETH": 1900.0, "LINK": 14.0}, errors={"WBTC"}),
        )

        result = await analyzer.run_cycle(["ETH", "WBTC", "LINK"], now=NOW)

        assert [o.base_symbol for o in result.snapshot.opportunities] == ["ETH"]
        assert result.prices.oracle_stats.fetched == 2
        assert result.prices.oracle_stats.failed == 1
        assert result.prices.pool_stats.fetched == 2
        assert result.prices.pool_stats.failed == 1

    @pytest.mark.asyncio
    async def test_everything_unavailable(self):
        """Test a cycle with no prices still yields a valid empty snapshot."""
        analyzer = MarketAnalyzer(FakeOracle(), FakePools())

        result = await analyzer.run_cycle(["ETH", "WBTC"], now=NOW)

        snapshot = result.snapshot
        assert snapshot.opportunities == []
        assert snapshot.summary.total_opportunities == 0
        assert snapshot.summary.best_spread == 0
        assert result.prices.oracle_stats.unavailable == 2
        assert result.prices.pool_stats.not_found == 2
        assert snapshot.to_dict()["priceData"] == {"oracle": [], "pool": []}

    @pytest.mark.asyncio
    async def test_quote_token_has_no_pool(self):
        """Test the quote token itself is reported as not found on the pool side."""
        pools = FakePools({"ETH": 1900.0})
        analyzer = MarketAnalyzer(FakeOracle({"USDC": 1.0, "ETH": 2000.0}), pools)

        result = await analyzer.run_cycle(["USDC", "ETH"], now=NOW)

        assert pools.quotes == ["USDC"]
        assert result.prices.pool_stats.not_found == 1
        assert [o.base_symbol for o in result.snapshot.opportunities] == ["ETH"]

    @pytest.mark.asyncio
    async def test_invalid_price_rejected(self):
        """Test negative oracle prices are dropped by normalization."""
        analyzer = MarketAnalyzer(FakeOracle({"ETH": -5.0}), FakePools({"ETH": 1900.0}))

        result = await analyzer.run_cycle(["ETH"], now=NOW)

        assert result.prices.oracle_stats.rejected == 1
        assert result.snapshot.oracle_prices == []
        assert result.snapshot.opportunities == []

    @pytest.mark.asyncio
    async def test_stale_pool_data(self):
        """Test pool data older than the age limit produces nothing."""
        stale = format_timestamp(NOW - timedelta(seconds=400))
        analyzer = MarketAnalyzer(
            FakeOracle({"ETH": 2000.0}),
            FakePools({"ETH": 1900.0}, fetched_at=stale),
        )

        result = await analyzer.run_cycle(["ETH"], now=NOW)

        assert len(result.snapshot.pool_prices) == 1
        assert result.snapshot.opportunities == []

    @pytest.mark.asyncio
    async def test_custom_thresholds(self):
        """Test detection settings flow into the detector and snapshot."""
        detection = DetectionConfig(min_spread_percentage=0.10)
        analyzer = MarketAnalyzer(
            FakeOracle({"ETH": 2000.0}),
            FakePools({"ETH": 1900.0}),
            detection=detection,
        )

        result = await analyzer.run_cycle(["ETH"], now=NOW)

        assert result.snapshot.opportunities == []
        assert result.snapshot.to_dict()["analysisConfig"]["minSpreadPercentage"] == pytest.approx(10.0)

    @pytest.mark.asyncio
    async def test_snapshot_persisted(self, tmp_path):
        """Test the snapshot is written when a sink is configured."""
        path = tmp_path / "public" / "arbData.json"
        analyzer = MarketAnalyzer(
            FakeOracle({"ETH": 2000.0}),
            FakePools({"ETH": 1900.0}),
            sink=JsonSnapshotSink(path),
        )

        result = await analyzer.run_cycle(["ETH"], now=NOW)

        assert result.persisted is True
        assert result.sink_error is None
        data = json.loads(path.read_text())
        assert data["lastUpdated"] == format_timestamp(NOW)
        assert data["opportunities"][0]["baseSymbol"] == "ETH"

    @pytest.mark.asyncio
    async def test_sink_failure_keeps_snapshot(self, tmp_path):
        """Test a write failure is reported on the result instead of raised."""
        analyzer = MarketAnalyzer(
            FakeOracle({"ETH": 2000.0}),
            FakePools({"ETH": 1900.0}),
            sink=JsonSnapshotSink(tmp_path),  # a directory cannot be replaced by a file
        )

        result = await analyzer.run_cycle(["ETH"], now=NOW)

        assert result.persisted is False
        assert isinstance(result.sink_error, SinkError)
        assert len(result.snapshot.opportunities) == 1

    @pytest.mark.asyncio
    async def test_run_continuous_bounded(self):
        """Test continuous mode stops after max_cycles."""
        oracle = FakeOracle({"ETH": 2000.0})
        analyzer = MarketAnalyzer(oracle, FakePools({"ETH": 1900.0}))

        cycles = await analyzer.run_continuous(["ETH"], interval_seconds=0.01, max_cycles=3)

        assert cycles == 3
        assert len(oracle.calls) == 3

    @pytest.mark.asyncio
    async def test_run_continuous_survives_failed_cycle(self):
        """Test an exception inside a cycle does not end the loop."""
        analyzer = MarketAnalyzer(ExplodingOracle(), FakePools())

        cycles = await analyzer.run_continuous(["ETH"], interval_seconds=0.01, max_cycles=2)

        assert cycles == 2

    @pytest.mark.asyncio
    async def test_run_continuous_honours_stop_event(self):
        """Test a set stop event ends the loop during the wait."""
        analyzer = MarketAnalyzer(FakeOracle({"ETH": 2000.0}), FakePools())
        stop_event = asyncio.Event()

        async def stop_soon():
            await asyncio.sleep(0.05)
            stop_event.set()

        stopper = asyncio.create_task(stop_soon())
        cycles = await analyzer.run_continuous(["ETH"], interval_seconds=60, stop_event=stop_event)
        await stopper

        assert cycles == 1

    @pytest.mark.asyncio
    async def test_already_stopped(self):
        """Test no cycle runs when the stop event is already set."""
        stop_event = asyncio.Event()
        stop_event.set()
        analyzer = MarketAnalyzer(FakeOracle(), FakePools())

        assert await analyzer.run_continuous(["ETH"], 0.01, stop_event=stop_event) == 0

    @pytest.mark.asyncio
    async def test_shutdown_abandons_cycle_in_flight(self, tmp_path):
        """Test stopping mid-cycle cancels the fetch and persists nothing."""
        path = tmp_path / "arbData.json"
        oracle = SlowOracle({"ETH": 2000.0}, delay=0.3)
        analyzer = MarketAnalyzer(oracle, FakePools({"ETH": 1900.0}), sink=JsonSnapshotSink(path))
        stop_event = asyncio.Event()

        async def stop_soon():
            await asyncio.sleep(0.05)
            stop_event.set()

        loop = asyncio.get_running_loop()
        started = loop.time()
        stopper = asyncio.create_task(stop_soon())
        cycles = await analyzer.run_continuous(["ETH"], interval_seconds=60, stop_event=stop_event)
        await stopper

        assert cycles == 1
        assert loop.time() - started < 0.25
        assert oracle.answered == 0
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_cancelled_cycle_writes_nothing(self, tmp_path):
        """Test cancelling run_cycle propagates and leaves no snapshot."""
        path = tmp_path / "arbData.json"
        analyzer = MarketAnalyzer(
            SlowOracle({"ETH": 2000.0}, delay=0.3),
            FakePools({"ETH": 1900.0}),
            sink=JsonSnapshotSink(path),
        )

        task = asyncio.create_task(analyzer.run_cycle(["ETH"], now=NOW))
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert not path.exists()
        assert list(tmp_path.iterdir()) == []


class TestRunUntilStopped:
    """Test suite for run_until_stopped."""

    @pytest.mark.asyncio
    async def test_finished_work_returns_result(self):
        """Test work that beats the stop event hands back its result."""
        async def work():
            return 42

        assert await run_until_stopped(work(), asyncio.Event()) == (True, 42)

    @pytest.mark.asyncio
    async def test_stop_cancels_work(self):
        """Test the stop event cancels unfinished work."""
        cancelled = asyncio.Event()

        async def work():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        stop_event = asyncio.Event()
        asyncio.get_running_loop().call_later(0.02, stop_event.set)

        assert await run_until_stopped(work(), stop_event) == (False, None)
        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_errors_propagate(self):
        """Test exceptions from the work reach the caller."""
        async def work():
            raise RuntimeError("subgraph down")

        with pytest.raises(RuntimeError):
            await run_until_stopped(work(), asyncio.Event())
