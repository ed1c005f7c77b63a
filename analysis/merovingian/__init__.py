"""
MEROVINGIAN - Source Adapters

"I am a trafficker of information. I know everything I can."

Brokers price data from the outside world: the DIA push oracle and the
Uniswap V3 subgraph. Every fetch comes back as a SourceResult so that one
bad symbol never takes a whole cycle down with it.
"""

from .dia import DiaOracleClient
from .subgraph import UniswapSubgraphClient, select_deepest_pool

__all__ = ["DiaOracleClient", "UniswapSubgraphClient", "select_deepest_pool"]
