"""
Shared types for Matrix Python agents.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from .config import DetectionConfig
from .errors import SourceError

T = TypeVar("T")


class PriceSource(str, Enum):
    """Origin of a normalized price."""
    ORACLE = "ORACLE"
    POOL = "POOL"

    @property
    def provider(self) -> str:
        """Human-readable upstream provider name."""
        providers = {
            PriceSource.ORACLE: "DIA",
            PriceSource.POOL: "Uniswap-V3",
        }
        return providers[self]


class FetchStatus(str, Enum):
    """Outcome of a single source fetch."""
    OK = "ok"
    NOT_FOUND = "not_found"        # valid empty answer, e.g. no pool for the pair
    UNAVAILABLE = "unavailable"    # upstream explicitly reported zero/empty data
    ERROR = "error"


@dataclass(frozen=True)
class SourceResult(Generic[T]):
    """Per-key fetch result; failures stay isolated to their key."""
    key: str
    status: FetchStatus
    value: T | None = None
    error: SourceError | None = None

    @classmethod
    def ok(cls, key: str, value: T) -> "SourceResult[T]":
        return cls(key=key, status=FetchStatus.OK, value=value)

    @classmethod
    def not_found(cls, key: str) -> "SourceResult[T]":
        return cls(key=key, status=FetchStatus.NOT_FOUND)

    @classmethod
    def unavailable(cls, key: str) -> "SourceResult[T]":
        return cls(key=key, status=FetchStatus.UNAVAILABLE)

    @classmethod
    def failed(cls, key: str, error: SourceError) -> "SourceResult[T]":
        return cls(key=key, status=FetchStatus.ERROR, error=error)

    @property
    def succeeded(self) -> bool:
        return self.status == FetchStatus.OK and self.value is not None


@dataclass(frozen=True)
class RawOraclePrice:
    """Quotation from the push oracle."""
    symbol: str
    price: float
    timestamp: str  # ISO-8601
    name: str = ""
    source: str = "DIA"


@dataclass(frozen=True)
class PoolToken:
    """One side of a liquidity pool."""
    symbol: str
    address: str
    decimals: int


@dataclass(frozen=True)
class RawPoolPrice:
    """Pool state as indexed by the DEX subgraph."""
    pool_id: str
    token0: PoolToken
    token1: PoolToken
    token0_price: float
    token1_price: float
    total_value_locked_usd: float
    volume_usd: float
    fetched_at: str  # ISO-8601
    fee_tier: int = 0


@dataclass(frozen=True)
class NormalizedPrice:
    """Source-independent price observation consumed by the detector."""
    symbol: str  # Upper-cased
    price: float  # > 0
    timestamp: str  # ISO-8601
    source: PriceSource
    confidence: float  # 0-1

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "timestamp": self.timestamp,
            "source": self.source.value,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """Cross-source price discrepancy for one symbol."""
    base_symbol: str
    quote_symbol: str
    buy_source: PriceSource
    sell_source: PriceSource
    buy_price: float
    sell_price: float  # >= buy_price
    spread_absolute: float
    spread_percent: float
    estimated_profit: float  # Ranking heuristic on a fixed notional, not P&L
    confidence: float
    detected_at: str  # ISO-8601

    def to_dict(self) -> dict[str, Any]:
        return {
            "baseSymbol": self.base_symbol,
            "quoteSymbol": self.quote_symbol,
            "buySource": self.buy_source.value,
            "sellSource": self.sell_source.value,
            "buyPrice": self.buy_price,
            "sellPrice": self.sell_price,
            "spreadAbsolute": self.spread_absolute,
            "spreadPercent": self.spread_percent,
            "estimatedProfit": self.estimated_profit,
            "confidence": self.confidence,
            "detectedAt": self.detected_at,
        }


@dataclass(frozen=True)
class OpportunitySummary:
    """Derived statistics over one cycle's opportunities."""
    total_opportunities: int = 0
    best_spread: float = 0.0
    average_spread: float = 0.0
    total_estimated_profit: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalOpportunities": self.total_opportunities,
            "bestSpread": self.best_spread,
            "averageSpread": self.average_spread,
            "totalEstimatedProfit": self.total_estimated_profit,
        }


@dataclass(frozen=True)
class AnalysisSnapshot:
    """Complete output of one analysis cycle."""
    detection: DetectionConfig
    oracle_prices: list[NormalizedPrice]
    pool_prices: list[NormalizedPrice]
    opportunities: list[ArbitrageOpportunity]
    summary: OpportunitySummary
    analysis_time: str  # ISO-8601
    tokens_analyzed: list[str]
    version: str = "1.0.0"
    sources_used: list[str] = field(
        default_factory=lambda: [s.provider for s in PriceSource]
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastUpdated": self.analysis_time,
            "analysisConfig": {
                # Written in percent units
                "minSpreadPercentage": self.detection.min_spread_percentage * 100,
                "minConfidence": self.detection.min_confidence,
                "maxPriceAge": self.detection.max_price_age_seconds,
            },
            "priceData": {
                "oracle": [p.to_dict() for p in self.oracle_prices],
                "pool": [p.to_dict() for p in self.pool_prices],
            },
            "opportunities": [o.to_dict() for o in self.opportunities],
            "summary": self.summary.to_dict(),
            "metadata": {
                "analysisTime": self.analysis_time,
                "tokensAnalyzed": list(self.tokens_analyzed),
                "sourcesUsed": list(self.sources_used),
                "version": self.version,
            },
        }
