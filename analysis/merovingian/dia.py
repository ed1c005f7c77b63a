"""
MEROVINGIAN - DIA Oracle Client

Fetches the latest published quotation for a symbol from the DIA REST API.
"""

import asyncio
from typing import Any

import httpx

from shared import AgentLogger, RawOraclePrice, SourceError, SourceResult
from shared.config import DiaConfig

SOURCE_NAME = "DIA"


class DiaOracleClient:
    """
    Thin async client for ``GET /quotation/{symbol}``.

    Never retries and never caches: every call is one request, and every
    failure comes back as an ERROR result instead of an exception.
    """

    def __init__(
        self,
        base_url: str = "https://api.diadata.org/v1",
        api_key: str | None = None,
        timeout_ms: int = 10000,
        client: httpx.AsyncClient | None = None,
    ):
        self.logger = AgentLogger("MEROVINGIAN-DIA")
        self.base_url = base_url.rstrip("/")
        self.timeout_ms = timeout_ms

        headers = {"Accept": "application/json"}
        if api_key:
            headers["X-API-Key"] = api_key

        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout_ms / 1000)
        self.headers = headers

    @classmethod
    def from_config(cls, config: DiaConfig) -> "DiaOracleClient":
        return cls(
            base_url=config.api_url,
            api_key=config.api_key,
            timeout_ms=config.timeout_ms,
        )

    async def fetch_price(
        self,
        symbol: str,
        timeout_ms: int | None = None,
    ) -> SourceResult[RawOraclePrice]:
        """Fetch the latest quotation for one symbol."""
        if not symbol or not symbol.strip():
            raise ValueError("symbol must be a non-empty string")

        symbol = symbol.strip()
        timeout_s = (timeout_ms or self.timeout_ms) / 1000
        url = f"{self.base_url}/quotation/{symbol}"

        try:
            response = await asyncio.wait_for(
                self.client.get(url, headers=self.headers, timeout=timeout_s),
                timeout=timeout_s,
            )
            response.raise_for_status()
            payload = response.json() if response.content else None
        except (asyncio.TimeoutError, httpx.TimeoutException):
            error = SourceError(SOURCE_NAME, f"timed out fetching {symbol}", timed_out=True)
            self.logger.warning("Oracle request timed out", symbol=symbol, timeout_s=timeout_s)
            return SourceResult.failed(symbol, error)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            error = SourceError(SOURCE_NAME, f"HTTP {status} for {symbol}", status_code=status)
            self.logger.warning("Oracle returned error status", symbol=symbol, status=status)
            return SourceResult.failed(symbol, error)
        except httpx.HTTPError as e:
            error = SourceError(SOURCE_NAME, f"transport error for {symbol}: {e}")
            self.logger.warning("Oracle transport error", symbol=symbol, error=str(e))
            return SourceResult.failed(symbol, error)
        except ValueError as e:
            error = SourceError(SOURCE_NAME, f"invalid JSON for {symbol}: {e}")
            self.logger.warning("Oracle returned invalid JSON", symbol=symbol)
            return SourceResult.failed(symbol, error)

        if not payload:
            self.logger.info("Oracle has no data for symbol", symbol=symbol)
            return SourceResult.unavailable(symbol)

        try:
            raw = parse_quotation(payload, symbol)
        except (KeyError, TypeError, ValueError) as e:
            error = SourceError(SOURCE_NAME, f"malformed quotation for {symbol}: {e}")
            self.logger.warning("Oracle payload malformed", symbol=symbol, error=str(e))
            return SourceResult.failed(symbol, error)

        if raw.price == 0:
            self.logger.info("Oracle reports zero price", symbol=symbol)
            return SourceResult.unavailable(symbol)

        self.logger.debug("Oracle price fetched", symbol=raw.symbol, price=raw.price)
        return SourceResult.ok(symbol, raw)

    async def fetch_prices(
        self,
        symbols: list[str],
        timeout_ms: int | None = None,
    ) -> list[SourceResult[RawOraclePrice]]:
        """Fetch several symbols concurrently; results keep input order."""
        return list(await asyncio.gather(
            *(self.fetch_price(symbol, timeout_ms) for symbol in symbols)
        ))

    async def close(self) -> None:
        """Close HTTP client if this instance created it."""
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "DiaOracleClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


def parse_quotation(payload: dict[str, Any], requested: str) -> RawOraclePrice:
    """Convert a DIA quotation body into a RawOraclePrice.

    Raises KeyError/TypeError/ValueError when the body does not look like a
    quotation. A zero price is passed through for the caller to classify.
    """
    if not isinstance(payload, dict):
        raise TypeError(f"expected object, got {type(payload).__name__}")

    price = payload["Price"]
    if price is None or isinstance(price, bool):
        raise TypeError("Price is not a number")

    return RawOraclePrice(
        symbol=str(payload.get("Symbol") or requested),
        price=float(price),
        timestamp=str(payload.get("Time") or ""),
        name=str(payload.get("Name") or ""),
        source=str(payload.get("Source") or SOURCE_NAME),
    )
