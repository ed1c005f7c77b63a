"""
Matrix Shared - Common types and utilities for Python analysis agents.
"""

from .config import DetectionConfig, MatrixConfig, get_config
from .errors import MatrixError, PriceValidationError, SinkError, SourceError
from .logger import AgentLogger, configure_logging, cycle_context
from .types import (
    AnalysisSnapshot,
    ArbitrageOpportunity,
    FetchStatus,
    NormalizedPrice,
    OpportunitySummary,
    PoolToken,
    PriceSource,
    RawOraclePrice,
    RawPoolPrice,
    SourceResult,
)

__all__ = [
    # Types
    "PriceSource",
    "FetchStatus",
    "SourceResult",
    "RawOraclePrice",
    "PoolToken",
    "RawPoolPrice",
    "NormalizedPrice",
    "ArbitrageOpportunity",
    "OpportunitySummary",
    "AnalysisSnapshot",
    # Errors
    "MatrixError",
    "SourceError",
    "SinkError",
    "PriceValidationError",
    # Config
    "get_config",
    "MatrixConfig",
    "DetectionConfig",
    # Logger
    "configure_logging",
    "AgentLogger",
    "cycle_context",
]
