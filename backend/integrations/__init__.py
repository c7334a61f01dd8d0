"""External integrations.

This package contains:
- Source protocol: Common interface for position sources
- Market data protocol: Price feeds and lending-protocol oracles
- CoinGecko client: Batched price lookups
- Mock sources: Deterministic runners and price feed for local use
"""

from integrations.market_data_protocol import PriceBatchResult, PriceFeed, PriceOracle, PriceQuote
from integrations.source_protocol import SourceResult, SourceRunInput, SourceRunner, WalletInput

__all__ = [
    "PriceBatchResult",
    "PriceFeed",
    "PriceOracle",
    "PriceQuote",
    "SourceResult",
    "SourceRunInput",
    "SourceRunner",
    "WalletInput",
]
