"""Market data protocol definitions.

Defines the interfaces for price feeds (external market-data APIs) and
lending-protocol price oracles. This is separate from the SourceRunner
protocol, which handles reading positions.
"""

from dataclasses import dataclass, field
from typing import Optional, Protocol


@dataclass
class PriceQuote:
    """A resolved price for one asset in the snapshot's quote currency."""

    asset_id: str
    price: str  # Decimal string, e.g. "1.0001"
    source: str  # e.g. "coingecko", "aave-oracle", "stablecoin-fallback"
    cached: bool = False  # True when reused from an earlier snapshot


@dataclass
class PriceBatchResult:
    """Outcome of a batched price-feed lookup.

    ``prices`` is keyed by the normalized id (or lower-cased contract
    address). ``failed_ids`` lists ids whose request failed outright;
    ids that were answered without a price are simply absent.
    """

    prices: dict[str, str] = field(default_factory=dict)
    failed_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class PriceFeed(Protocol):
    """Protocol for external price feeds (e.g. CoinGecko)."""

    @property
    def provider_name(self) -> str:
        """Return the provider name used as the price source tag."""
        ...

    def get_prices_by_ids(
        self,
        ids: list[str],
        quote_currency: str,
        deadline: Optional[float] = None,
    ) -> PriceBatchResult:
        """Fetch prices for feed-specific ids.

        Args:
            ids: Feed ids (already normalized).
            quote_currency: ISO currency code, e.g. "USD".
            deadline: ``time.monotonic()`` value after which no new batch
                may start. ``None`` uses the feed's own budget.

        Raises:
            PriceFeedError: If not a single batch succeeded.
        """
        ...

    def get_token_prices(
        self,
        platform: str,
        contracts: list[str],
        quote_currency: str,
        deadline: Optional[float] = None,
    ) -> PriceBatchResult:
        """Fetch prices by contract address / mint on a platform."""
        ...


@dataclass
class OracleAsset:
    """An asset to be priced by a lending protocol's own oracle."""

    asset_id: str
    chain_key: str
    address: str


@dataclass
class OracleResult:
    """USD prices keyed by asset id, plus per-market error messages."""

    prices: dict[str, str] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


class PriceOracle(Protocol):
    """Protocol for on-chain lending-protocol price oracles."""

    @property
    def protocol(self) -> str:
        """The PositionProtocol value this oracle prices (e.g. "AAVE_V3")."""
        ...

    def fetch_usd_prices(self, assets: list[OracleAsset]) -> OracleResult:
        """Read USD prices for ``assets`` in bulk, one call per market."""
        ...
