"""
Configuration management for Matrix Python agents.
"""

from functools import lru_cache

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class DetectionConfig(BaseModel):
    """Spread detection thresholds."""
    min_spread_percentage: float = Field(default=0.02, ge=0.0)  # fraction, 0.02 == 2%
    min_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    max_price_age_seconds: int = Field(default=300, ge=0)
    notional_trade_size: float = Field(default=1000.0, gt=0.0)
    quote_symbol: str = "USDC"

    @field_validator("quote_symbol")
    @classmethod
    def _upper_quote(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("quote_symbol must not be empty")
        return value


class DiaConfig(BaseModel):
    """DIA push-oracle API configuration."""
    api_url: str = "https://api.diadata.org/v1"
    api_key: str | None = None
    timeout_ms: int = Field(default=10000, gt=0)


class SubgraphConfig(BaseModel):
    """Uniswap V3 subgraph configuration."""
    url: str = "https://api.thegraph.com/subgraphs/name/uniswap/uniswap-v3"
    api_key: str | None = None
    timeout_ms: int = Field(default=10000, gt=0)
    candidate_pools: int = Field(default=10, gt=0)


class SinkConfig(BaseModel):
    """Output file locations."""
    output_file: str = "./public/arbData.json"
    price_feed_file: str = "./public/priceFeed.json"


class MonitoringConfig(BaseModel):
    """Monitoring configuration."""
    log_level: str = "INFO"
    json_logs: bool = False


class MatrixConfig(BaseSettings):
    """Main Matrix configuration."""

    model_config = {"env_prefix": "MATRIX_", "env_nested_delimiter": "__"}

    # Environment
    environment: str = Field(default="development")

    # Analysis
    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    symbols: list[str] = Field(default_factory=lambda: ["ETH", "WBTC", "LINK"])
    trading_pairs: list[str] = Field(
        default_factory=lambda: ["ETH/USDC", "BTC/WETH", "ARB/USDC", "SOL/USDC", "SOMI/ETH"]
    )
    update_interval_ms: int = Field(default=5000, gt=0)
    version: str = "1.0.0"

    # Sources
    dia: DiaConfig = Field(default_factory=DiaConfig)
    subgraph: SubgraphConfig = Field(default_factory=SubgraphConfig)

    # Output
    sink: SinkConfig = Field(default_factory=SinkConfig)

    # Monitoring
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    @field_validator("symbols")
    @classmethod
    def _upper_symbols(cls, value: list[str]) -> list[str]:
        symbols = [s.strip().upper() for s in value if s and s.strip()]
        if not symbols:
            raise ValueError("at least one symbol is required")
        return symbols

    @field_validator("trading_pairs")
    @classmethod
    def _check_pairs(cls, value: list[str]) -> list[str]:
        for pair in value:
            base, sep, quote = pair.partition("/")
            if not sep or not base.strip() or not quote.strip():
                raise ValueError(f"trading pair must look like BASE/QUOTE: {pair!r}")
        return [pair.strip().upper() for pair in value]

    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def update_interval_seconds(self) -> float:
        return self.update_interval_ms / 1000


@lru_cache
def get_config() -> MatrixConfig:
    """Get cached configuration instance."""
    # Load .env file if present
    from dotenv import load_dotenv
    load_dotenv()

    return MatrixConfig()

