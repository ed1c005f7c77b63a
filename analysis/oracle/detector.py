"""
ORACLE - Arbitrage Detector

Detects price discrepancies for the same token across two sources.
"""

import time
from dataclasses import dataclass
from datetime import datetime

import numpy as np

from shared import (
    AgentLogger,
    ArbitrageOpportunity,
    DetectionConfig,
    NormalizedPrice,
    OpportunitySummary,
)
from shared.timestamps import age_seconds, as_utc, format_timestamp, utc_now


@dataclass(frozen=True)
class Spread:
    """Absolute and relative distance between two prices."""
    absolute: float
    percent: float  # Relative to the midpoint, in percent


def compute_spread(price_a: float, price_b: float) -> Spread | None:
    """Spread of two prices; None when the midpoint is not positive."""
    average = (price_a + price_b) / 2
    if average <= 0:
        return None

    absolute = abs(price_a - price_b)
    return Spread(absolute=absolute, percent=absolute / average * 100)


class ArbitrageDetector:
    """
    Pairs normalized prices by symbol and emits ranked opportunities.

    Filters, in order: presence in both sources, staleness, spread
    threshold, combined confidence. Holds no state between calls.
    """

    def __init__(self, config: DetectionConfig | None = None):
        self.logger = AgentLogger("ORACLE-DETECTOR")
        self.config = config or DetectionConfig()

        self.logger.info(
            "Arbitrage detector initialized",
            min_spread_pct=self.config.min_spread_percentage * 100,
            min_confidence=self.config.min_confidence,
            max_price_age_s=self.config.max_price_age_seconds,
        )

    def is_fresh(self, price: NormalizedPrice, now: datetime) -> bool:
        """True if the price is no older than ``max_price_age_seconds``."""
        try:
            return age_seconds(price.timestamp, now) <= self.config.max_price_age_seconds
        except ValueError:
            return False

    def detect(
        self,
        prices_a: list[NormalizedPrice],
        prices_b: list[NormalizedPrice],
        now: datetime | None = None,
    ) -> list[ArbitrageOpportunity]:
        """Find opportunities between two price lists.

        Output is sorted by estimated profit, highest first; equal profits
        keep the iteration order of ``prices_a``.
        """
        start_time = time.time()
        now = as_utc(now) if now is not None else utc_now()
        detected_at = format_timestamp(now)
        threshold_pct = self.config.min_spread_percentage * 100

        lookup: dict[str, NormalizedPrice] = {}
        for price in prices_b:
            lookup.setdefault(price.symbol.upper(), price)

        rejected = {"unpaired": 0, "stale": 0, "degenerate": 0, "spread": 0, "confidence": 0}
        opportunities = []

        for price_a in prices_a:
            symbol = price_a.symbol.upper()
            price_b = lookup.get(symbol)
            if price_b is None:
                rejected["unpaired"] += 1
                continue

            if not self.is_fresh(price_a, now) or not self.is_fresh(price_b, now):
                rejected["stale"] += 1
                self.logger.debug("Stale pair skipped", symbol=symbol)
                continue

            spread = compute_spread(price_a.price, price_b.price)
            if spread is None:
                rejected["degenerate"] += 1
                continue

            if spread.percent < threshold_pct:
                rejected["spread"] += 1
                continue

            if price_a.price < price_b.price:
                buy, sell = price_a, price_b
            else:
                buy, sell = price_b, price_a

            confidence = (price_a.confidence + price_b.confidence) / 2
            if confidence < self.config.min_confidence:
                rejected["confidence"] += 1
                self.logger.debug(
                    "Low confidence pair skipped",
                    symbol=symbol,
                    confidence=round(confidence, 3),
                )
                continue

            opportunities.append(ArbitrageOpportunity(
                base_symbol=symbol,
                quote_symbol=self.config.quote_symbol,
                buy_source=buy.source,
                sell_source=sell.source,
                buy_price=buy.price,
                sell_price=sell.price,
                spread_absolute=spread.absolute,
                spread_percent=spread.percent,
                estimated_profit=spread.percent / 100 * self.config.notional_trade_size,
                confidence=confidence,
                detected_at=detected_at,
            ))

        # sorted() is stable with reverse=True
        opportunities = sorted(opportunities, key=lambda o: o.estimated_profit, reverse=True)

        scan_time_ms = (time.time() - start_time) * 1000
        self.logger.debug(
            "Detection completed",
            pairs_checked=len(prices_a),
            opportunities_found=len(opportunities),
            scan_time_ms=round(scan_time_ms, 2),
            **{f"rejected_{reason}": count for reason, count in rejected.items()},
        )

        return opportunities

    @staticmethod
    def summarize(opportunities: list[ArbitrageOpportunity]) -> OpportunitySummary:
        """Aggregate statistics; all zero for an empty list."""
        if not opportunities:
            return OpportunitySummary()

        spreads = np.array([o.spread_percent for o in opportunities])
        profits = np.array([o.estimated_profit for o in opportunities])

        return OpportunitySummary(
            total_opportunities=len(opportunities),
            best_spread=float(np.max(spreads)),
            average_spread=float(np.mean(spreads)),
            total_estimated_profit=float(np.sum(profits)),
        )
