"""
MEROVINGIAN - Uniswap V3 Subgraph Client

Locates the deepest pool for a token pair through The Graph and returns its
price data.
"""

import asyncio
from typing import Any

import httpx

from shared import AgentLogger, PoolToken, RawPoolPrice, SourceError, SourceResult
from shared.config import SubgraphConfig
from shared.timestamps import format_timestamp, utc_now

SOURCE_NAME = "Uniswap-V3"

POOL_FIELDS = """
    id
    token0 { id symbol decimals }
    token1 { id symbol decimals }
    token0Price
    token1Price
    volumeUSD
    totalValueLockedUSD
    feeTier
"""

FIND_POOLS_BY_SYMBOLS = """
query FindPoolsBySymbols($targets: [String!]!, $quotes: [String!]!, $first: Int!) {
  pools(
    where: {
      or: [
        { token0_: { symbol_in: $targets }, token1_: { symbol_in: $quotes } },
        { token0_: { symbol_in: $quotes }, token1_: { symbol_in: $targets } }
      ]
    }
    orderBy: totalValueLockedUSD
    orderDirection: desc
    first: $first
  ) {%s}
}
""" % POOL_FIELDS

POPULAR_POOLS = """
query PopularPools($first: Int!, $minTvl: String!) {
  pools(
    orderBy: totalValueLockedUSD
    orderDirection: desc
    first: $first
    where: { totalValueLockedUSD_gt: $minTvl }
  ) {%s}
}
""" % POOL_FIELDS


class UniswapSubgraphClient:
    """
    Async GraphQL client for the Uniswap V3 subgraph.

    The GraphQL filter narrows candidates; the final pool choice is made
    locally so matching stays case-insensitive and tie-breaking stays
    deterministic.
    """

    def __init__(
        self,
        url: str = "https://api.thegraph.com/subgraphs/name/uniswap/uniswap-v3",
        api_key: str | None = None,
        timeout_ms: int = 10000,
        candidate_pools: int = 10,
        client: httpx.AsyncClient | None = None,
    ):
        self.logger = AgentLogger("MEROVINGIAN-SUBGRAPH")
        self.url = url
        self.timeout_ms = timeout_ms
        self.candidate_pools = candidate_pools

        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout_ms / 1000)
        self.headers = headers

    @classmethod
    def from_config(cls, config: SubgraphConfig) -> "UniswapSubgraphClient":
        return cls(
            url=config.url,
            api_key=config.api_key,
            timeout_ms=config.timeout_ms,
            candidate_pools=config.candidate_pools,
        )

    async def _query(
        self,
        query: str,
        variables: dict[str, Any],
        timeout_ms: int | None = None,
    ) -> dict[str, Any]:
        """Run a GraphQL query and return its ``data`` object.

        Raises SourceError for every transport, HTTP, or GraphQL failure.
        """
        timeout_s = (timeout_ms or self.timeout_ms) / 1000
        try:
            response = await asyncio.wait_for(
                self.client.post(
                    self.url,
                    json={"query": query, "variables": variables},
                    headers=self.headers,
                    timeout=timeout_s,
                ),
                timeout=timeout_s,
            )
            response.raise_for_status()
            body = response.json()
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise SourceError(SOURCE_NAME, "subgraph query timed out", timed_out=True) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise SourceError(SOURCE_NAME, f"HTTP {status}", status_code=status) from e
        except httpx.HTTPError as e:
            raise SourceError(SOURCE_NAME, f"transport error: {e}") from e
        except ValueError as e:
            raise SourceError(SOURCE_NAME, f"invalid JSON: {e}") from e

        if not isinstance(body, dict):
            raise SourceError(SOURCE_NAME, "unexpected response shape")
        if body.get("errors"):
            messages = "; ".join(
                str(err.get("message", err)) if isinstance(err, dict) else str(err)
                for err in body["errors"]
            )
            raise SourceError(SOURCE_NAME, f"GraphQL error: {messages}")

        data = body.get("data")
        if not isinstance(data, dict):
            raise SourceError(SOURCE_NAME, "response has no data")
        return data

    async def find_pool_by_symbols(
        self,
        target_symbol: str,
        quote_symbol: str,
        timeout_ms: int | None = None,
    ) -> SourceResult[RawPoolPrice]:
        """Find the highest-TVL pool pairing ``target_symbol`` with ``quote_symbol``."""
        if not target_symbol or not quote_symbol:
            raise ValueError("target and quote symbols must be non-empty")

        key = target_symbol.upper()
        if key == quote_symbol.upper():
            self.logger.info("Skipping pool lookup for quote token", symbol=key)
            return SourceResult.not_found(key)

        variables = {
            "targets": _symbol_variants(target_symbol),
            "quotes": _symbol_variants(quote_symbol),
            "first": self.candidate_pools,
        }

        try:
            data = await self._query(FIND_POOLS_BY_SYMBOLS, variables, timeout_ms)
            pools = parse_pools(data.get("pools") or [], fetched_at=format_timestamp(utc_now()))
        except SourceError as e:
            self.logger.warning("Pool lookup failed", symbol=key, quote=quote_symbol, error=str(e))
            return SourceResult.failed(key, e)
        except (KeyError, TypeError, ValueError) as e:
            error = SourceError(SOURCE_NAME, f"malformed pool data: {e}")
            self.logger.warning("Pool payload malformed", symbol=key, error=str(e))
            return SourceResult.failed(key, error)

        pool = select_deepest_pool(pools, target_symbol, quote_symbol)
        if pool is None:
            self.logger.info("No pool found", symbol=key, quote=quote_symbol)
            return SourceResult.not_found(key)

        self.logger.debug(
            "Pool found",
            symbol=key,
            pool=pool.pool_id,
            tvl_usd=round(pool.total_value_locked_usd, 2),
        )
        return SourceResult.ok(key, pool)

    async def find_pools(
        self,
        target_symbols: list[str],
        quote_symbol: str,
        timeout_ms: int | None = None,
    ) -> list[SourceResult[RawPoolPrice]]:
        """Look up several targets against one quote concurrently."""
        return list(await asyncio.gather(
            *(self.find_pool_by_symbols(s, quote_symbol, timeout_ms) for s in target_symbols)
        ))

    async def fetch_popular_pools(
        self,
        limit: int = 10,
        min_tvl_usd: float = 1_000_000,
        timeout_ms: int | None = None,
    ) -> SourceResult[list[RawPoolPrice]]:
        """Fetch the top pools by TVL."""
        variables = {"first": limit, "minTvl": str(int(min_tvl_usd))}
        try:
            data = await self._query(POPULAR_POOLS, variables, timeout_ms)
            pools = parse_pools(data.get("pools") or [], fetched_at=format_timestamp(utc_now()))
        except SourceError as e:
            self.logger.warning("Popular pools query failed", error=str(e))
            return SourceResult.failed("popular", e)
        except (KeyError, TypeError, ValueError) as e:
            return SourceResult.failed(
                "popular", SourceError(SOURCE_NAME, f"malformed pool data: {e}")
            )

        self.logger.info("Popular pools fetched", count=len(pools))
        return SourceResult.ok("popular", pools)

    async def close(self) -> None:
        """Close HTTP client if this instance created it."""
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "UniswapSubgraphClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


def _symbol_variants(symbol: str) -> list[str]:
    # Subgraph string filters are case-sensitive
    variants = [symbol.upper(), symbol, symbol.lower()]
    return list(dict.fromkeys(variants))


def _parse_token(token: dict[str, Any]) -> PoolToken:
    return PoolToken(
        symbol=str(token["symbol"]),
        address=str(token["id"]),
        decimals=int(token["decimals"]),
    )


def parse_pool(pool: dict[str, Any], fetched_at: str) -> RawPoolPrice:
    """Convert one subgraph pool object; numeric fields arrive as strings."""
    return RawPoolPrice(
        pool_id=str(pool["id"]),
        token0=_parse_token(pool["token0"]),
        token1=_parse_token(pool["token1"]),
        token0_price=float(pool["token0Price"]),
        token1_price=float(pool["token1Price"]),
        total_value_locked_usd=float(pool["totalValueLockedUSD"]),
        volume_usd=float(pool["volumeUSD"]),
        fetched_at=fetched_at,
        fee_tier=int(pool.get("feeTier") or 0),
    )


def parse_pools(pools: list[dict[str, Any]], fetched_at: str) -> list[RawPoolPrice]:
    return [parse_pool(pool, fetched_at) for pool in pools]


def select_deepest_pool(
    pools: list[RawPoolPrice],
    target_symbol: str,
    quote_symbol: str,
) -> RawPoolPrice | None:
    """Pick the matching pool with the greatest TVL.

    Matching ignores case and token order. Equal TVL is resolved by the
    lowest pool id.
    """
    target = target_symbol.upper()
    quote = quote_symbol.upper()

    candidates = [
        pool for pool in pools
        if {pool.token0.symbol.upper(), pool.token1.symbol.upper()} == {target, quote}
    ]
    if not candidates:
        return None

    return min(candidates, key=lambda p: (-p.total_value_locked_usd, p.pool_id))
