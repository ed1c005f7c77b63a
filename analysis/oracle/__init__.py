"""
ORACLE - Spread Detection Engine

"You do not truly know someone until you fight them."

Sees what the market disagrees about. Normalizes oracle and pool prices
into one shape and detects cross-source arbitrage spreads.
"""

from .cycle import CycleResult, MarketAnalyzer
from .detector import ArbitrageDetector
from .feed import PriceFeedPublisher, TradingPair
from .normalizer import PriceNormalizer
from .snapshot import JsonSnapshotSink

__all__ = [
    "ArbitrageDetector",
    "CycleResult",
    "JsonSnapshotSink",
    "MarketAnalyzer",
    "PriceFeedPublisher",
    "PriceNormalizer",
    "TradingPair",
]
