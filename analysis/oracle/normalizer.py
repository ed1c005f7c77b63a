"""
ORACLE - Price Normalizer

Turns source-specific records into NormalizedPrice with a confidence score.
"""

import math
from dataclasses import dataclass

from shared import (
    AgentLogger,
    NormalizedPrice,
    PriceSource,
    PriceValidationError,
    RawOraclePrice,
    RawPoolPrice,
)
from shared.timestamps import parse_timestamp

# Push oracles have bounded staleness but single-source risk
ORACLE_CONFIDENCE = 0.8

POOL_BASE_CONFIDENCE = 0.5

# (threshold_usd, bonus); every tier that is cleared contributes
TVL_TIERS = ((10_000_000, 0.2), (1_000_000, 0.1))
VOLUME_TIERS = ((1_000_000, 0.15), (100_000, 0.05))


@dataclass(frozen=True)
class PoolSide:
    """Which side of a pool a target symbol resolved to."""
    symbol: str
    price: float
    matched: bool  # False when neither token matched and token0 was used


def pool_confidence(tvl_usd: float, volume_usd: float) -> float:
    """Liquidity/volume derived confidence, in [0.5, 1.0].

    Thin pools produce unreliable marginal prices, so deep and actively
    traded pools score higher.
    """
    confidence = POOL_BASE_CONFIDENCE

    for threshold, bonus in TVL_TIERS:
        if tvl_usd > threshold:
            confidence += bonus

    for threshold, bonus in VOLUME_TIERS:
        if volume_usd > threshold:
            confidence += bonus

    # Rounded so summed tier bonuses don't leave float residue below the cap
    return min(round(confidence, 6), 1.0)


def resolve_pool_side(raw: RawPoolPrice, target_symbol: str) -> PoolSide:
    """Select the price of ``target_symbol`` within a pool.

    Falls back to token0 when neither side matches; callers get
    ``matched=False`` instead of an exception.
    """
    target = target_symbol.upper()

    if raw.token0.symbol.upper() == target:
        return PoolSide(raw.token0.symbol, raw.token0_price, True)
    if raw.token1.symbol.upper() == target:
        return PoolSide(raw.token1.symbol, raw.token1_price, True)
    return PoolSide(raw.token0.symbol, raw.token0_price, False)


def validate_price(symbol: str, price: float, timestamp: str) -> None:
    """Raise PriceValidationError unless the observation is usable."""
    if not symbol or not symbol.strip():
        raise PriceValidationError("empty symbol")
    if not isinstance(price, (int, float)) or not math.isfinite(price) or price <= 0:
        raise PriceValidationError(f"{symbol}: non-positive price {price!r}")
    try:
        parse_timestamp(timestamp)
    except ValueError as e:
        raise PriceValidationError(f"{symbol}: bad timestamp {timestamp!r}") from e


class PriceNormalizer:
    """
    Converts raw oracle and pool records into the common price shape.

    Invalid records are dropped (None) rather than propagated, so the
    detector only ever sees positive prices with parseable timestamps.
    """

    def __init__(self):
        self.logger = AgentLogger("ORACLE-NORMALIZER")

    def normalize_oracle(self, raw: RawOraclePrice) -> NormalizedPrice | None:
        """Normalize an oracle quotation."""
        try:
            validate_price(raw.symbol, raw.price, raw.timestamp)
        except PriceValidationError as e:
            self.logger.debug("Oracle record rejected", reason=str(e))
            return None

        return NormalizedPrice(
            symbol=raw.symbol.strip().upper(),
            price=float(raw.price),
            timestamp=raw.timestamp,
            source=PriceSource.ORACLE,
            confidence=ORACLE_CONFIDENCE,
        )

    def normalize_pool(
        self,
        raw: RawPoolPrice,
        target_symbol: str,
    ) -> NormalizedPrice | None:
        """Normalize a pool record for ``target_symbol``."""
        side = resolve_pool_side(raw, target_symbol)
        if not side.matched:
            self.logger.warning(
                "Target not in pool, falling back to token0",
                target=target_symbol,
                pool=raw.pool_id,
                token0=raw.token0.symbol,
                token1=raw.token1.symbol,
            )

        try:
            validate_price(side.symbol, side.price, raw.fetched_at)
        except PriceValidationError as e:
            self.logger.debug("Pool record rejected", pool=raw.pool_id, reason=str(e))
            return None

        return NormalizedPrice(
            symbol=side.symbol.strip().upper(),
            price=float(side.price),
            timestamp=raw.fetched_at,
            source=PriceSource.POOL,
            confidence=pool_confidence(raw.total_value_locked_usd, raw.volume_usd),
        )
