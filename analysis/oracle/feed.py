"""
ORACLE - Price Feed Publisher

Publishes a fixed list of BASE/QUOTE pairs from the push oracle. Non-USD
quotes are converted through the quote token's own USD price.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from shared import (
    AgentLogger,
    FetchStatus,
    RawOraclePrice,
    SinkError,
    SourceResult,
    cycle_context,
)
from shared.timestamps import format_timestamp, utc_now

from .cycle import OracleSource, run_until_stopped
from .snapshot import write_json_atomic

USD_QUOTES = frozenset({"USD", "USDC", "USDT"})


@dataclass(frozen=True)
class TradingPair:
    base: str
    quote: str

    @classmethod
    def parse(cls, text: str) -> "TradingPair":
        base, sep, quote = text.partition("/")
        if not sep or not base.strip() or not quote.strip():
            raise ValueError(f"trading pair must look like BASE/QUOTE: {text!r}")
        return cls(base.strip().upper(), quote.strip().upper())

    def __str__(self) -> str:
        return f"{self.base}/{self.quote}"


@dataclass(frozen=True)
class PairQuote:
    """Published price for one pair; failed pairs carry the reason."""
    base_token: str
    quote_token: str
    price: float
    timestamp: str
    source: str
    success: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "baseToken": self.base_token,
            "quoteToken": self.quote_token,
            "price": self.price,
            "timestamp": self.timestamp,
            "source": self.source,
            "success": self.success,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class PriceFeed:
    last_updated: str
    pairs: list[PairQuote]
    update_interval_ms: int
    version: str
    source: str = "DIA Oracle"
    successful: int = field(init=False)
    failed: int = field(init=False)

    def __post_init__(self) -> None:
        self.successful = sum(1 for p in self.pairs if p.success)
        self.failed = len(self.pairs) - self.successful

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastUpdated": self.last_updated,
            "source": self.source,
            "pairs": [p.to_dict() for p in self.pairs],
            "metadata": {
                "totalPairs": len(self.pairs),
                "successfulFetches": self.successful,
                "failedFetches": self.failed,
                "updateInterval": self.update_interval_ms,
                "version": self.version,
            },
        }


def _describe_failure(result: SourceResult[RawOraclePrice]) -> str:
    if result.status == FetchStatus.ERROR and result.error is not None:
        return result.error.message
    return f"{result.key}: {result.status.value}"


def quote_pair(
    pair: TradingPair,
    prices: dict[str, SourceResult[RawOraclePrice]],
    now: datetime,
) -> PairQuote:
    """Price one pair from already-fetched USD quotations."""
    fallback_ts = format_timestamp(now)

    def failure(reason: str) -> PairQuote:
        return PairQuote(pair.base, pair.quote, 0.0, fallback_ts, "DIA", False, reason)

    base = prices[pair.base]
    if not base.succeeded or base.value.price <= 0:
        return failure(_describe_failure(base))

    price = base.value.price
    source = "DIA"
    if pair.quote not in USD_QUOTES:
        quote = prices[pair.quote]
        if not quote.succeeded or quote.value.price <= 0:
            return failure(f"quote conversion unavailable: {_describe_failure(quote)}")
        price = price / quote.value.price
        source = "DIA (converted)"

    return PairQuote(
        base_token=pair.base,
        quote_token=pair.quote,
        price=price,
        timestamp=base.value.timestamp or fallback_ts,
        source=source,
        success=True,
    )


class PriceFeedPublisher:
    """Fetches pair prices from the oracle and writes the feed file."""

    def __init__(
        self,
        oracle_source: OracleSource,
        output_file: str | Path,
        update_interval_ms: int = 5000,
        version: str = "1.0.0",
    ):
        self.logger = AgentLogger("ORACLE-FEED")
        self.oracle_source = oracle_source
        self.output_file = Path(output_file)
        self.update_interval_ms = update_interval_ms
        self.version = version

    async def fetch_pairs(
        self,
        pairs: list[TradingPair],
        now: datetime | None = None,
    ) -> list[PairQuote]:
        """Quote every pair; each distinct symbol is fetched once."""
        symbols = []
        for pair in pairs:
            symbols.append(pair.base)
            if pair.quote not in USD_QUOTES:
                symbols.append(pair.quote)
        symbols = list(dict.fromkeys(symbols))

        results = await self.oracle_source.fetch_prices(symbols)
        by_symbol = dict(zip(symbols, results))

        now = now or utc_now()
        quotes = [quote_pair(pair, by_symbol, now) for pair in pairs]

        for quote in quotes:
            if not quote.success:
                self.logger.warning(
                    "Pair not priced",
                    pair=f"{quote.base_token}/{quote.quote_token}",
                    error=quote.error,
                )
        return quotes

    def build_feed(self, quotes: list[PairQuote], now: datetime | None = None) -> PriceFeed:
        return PriceFeed(
            last_updated=format_timestamp(now or utc_now()),
            pairs=quotes,
            update_interval_ms=self.update_interval_ms,
            version=self.version,
        )

    async def publish(self, pairs: list[TradingPair]) -> PriceFeed:
        """Fetch, build and persist one feed. Raises SinkError if the write fails."""
        now = utc_now()
        quotes = await self.fetch_pairs(pairs, now=now)
        feed = self.build_feed(quotes, now=now)

        try:
            write_json_atomic(self.output_file, feed.to_dict())
        except (OSError, TypeError, ValueError) as e:
            raise SinkError(str(self.output_file), str(e)) from e

        self.logger.info(
            "Price feed saved",
            path=str(self.output_file),
            successful=feed.successful,
            failed=feed.failed,
        )
        return feed

    async def run_continuous(
        self,
        pairs: list[TradingPair],
        stop_event: asyncio.Event | None = None,
        max_updates: int | None = None,
    ) -> int:
        """Publish on ``update_interval_ms`` until stopped. Returns updates attempted."""
        stop_event = stop_event or asyncio.Event()
        interval_s = self.update_interval_ms / 1000
        updates = 0

        while not stop_event.is_set():
            updates += 1
            with cycle_context("feed", updates):
                try:
                    completed, _ = await run_until_stopped(self.publish(pairs), stop_event)
                except SinkError as e:
                    self.logger.error("Price feed not saved", path=e.path, error=e.message)
                except Exception as e:
                    # next update starts from scratch
                    self.logger.exception("Price feed update failed", error=str(e))
                else:
                    if not completed:
                        self.logger.warning("Feed update abandoned on shutdown, nothing written")

            if max_updates is not None and updates >= max_updates:
                break

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_s)
            except asyncio.TimeoutError:
                pass

        return updates
