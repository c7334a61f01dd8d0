"""Source registry for the position sources and the price feed.

The registry is responsible for:
- Tracking which source keys have a runner
- Building the default runners (mock runners when USE_MOCK_SOURCES is on)
- Choosing the price feed and lending oracles the resolver talks to
"""

import logging
from typing import Optional

from config import Settings, settings
from integrations.coingecko_client import CoinGeckoClient
from integrations.market_data_protocol import PriceFeed, PriceOracle
from integrations.mock_sources import (
    MockLendingOracle,
    MockLendingSource,
    MockPriceFeed,
    MockWalletEvmBalances,
    MockWalletSolanaBalances,
)
from integrations.source_protocol import SourceRunner
from models import PositionProtocol, SourceKey, is_source_key

logger = logging.getLogger(__name__)

LENDING_SOURCE_KEYS: list[str] = [
    SourceKey.AAVE_V3.value,
    SourceKey.KAMINO.value,
    SourceKey.HYPERLEND.value,
]

LENDING_PROTOCOLS: list[str] = [
    PositionProtocol.AAVE_V3.value,
    PositionProtocol.KAMINO.value,
    PositionProtocol.HYPERLEND.value,
]


class SourceRegistry:
    """Registry of position-source runners keyed by source key.

    Example:
        registry = get_source_registry()
        if registry.is_configured("aave_v3"):
            runner = registry.get_runner("aave_v3")
    """

    def __init__(self):
        self._runners: dict[str, SourceRunner] = {}

    def register_runner(self, runner: SourceRunner) -> None:
        """Register a runner under its own source key.

        Raises:
            ValueError: If the runner's key is not a known position source.
        """
        key = runner.source_key
        if not is_source_key(key) or key == SourceKey.PRICES.value:
            raise ValueError(f"Unknown position source '{key}'")
        self._runners[key] = runner

    def get_runner(self, source_key: str) -> SourceRunner:
        """Get a runner by source key.

        Raises:
            ValueError: If no runner is registered for the key.
        """
        if source_key not in self._runners:
            raise ValueError(f"Source '{source_key}' is not configured")
        return self._runners[source_key]

    def is_configured(self, source_key: str) -> bool:
        return source_key in self._runners

    def list_sources(self) -> list[str]:
        return list(self._runners.keys())

    def runners(self) -> dict[str, SourceRunner]:
        """A copy of the source_key -> runner map."""
        return dict(self._runners)

    def initialize_mock_sources(self) -> None:
        """Register the deterministic mock runner for every position source."""
        self.register_runner(MockWalletEvmBalances())
        self.register_runner(MockWalletSolanaBalances())
        for source_key in LENDING_SOURCE_KEYS:
            self.register_runner(MockLendingSource(source_key))


def get_source_registry(config: Optional[Settings] = None) -> SourceRegistry:
    """Create a registry with the default runners for ``config``.

    Only mock runners ship with the service; with USE_MOCK_SOURCES off
    nothing is registered and every enabled position source fails as not
    configured.
    """
    config = config or settings
    registry = SourceRegistry()
    if config.USE_MOCK_SOURCES:
        registry.initialize_mock_sources()

    names = registry.list_sources()
    if names:
        logger.info("Active sources: %s", ", ".join(names))
    else:
        logger.warning("No position sources configured")
    return registry


def get_price_feed(config: Optional[Settings] = None) -> PriceFeed:
    """Return the mock feed in mock mode, otherwise a CoinGecko client."""
    config = config or settings
    if config.USE_MOCK_SOURCES:
        return MockPriceFeed()
    return CoinGeckoClient(
        api_key=config.COINGECKO_API_KEY or None,
        base_url=config.COINGECKO_BASE_URL,
        request_timeout=config.PRICE_REQUEST_TIMEOUT_SECONDS,
        pipeline_timeout=config.PRICE_PIPELINE_TIMEOUT_SECONDS,
    )


def get_price_oracles(config: Optional[Settings] = None) -> dict[str, PriceOracle]:
    """Return the lending-protocol oracles keyed by PositionProtocol value.

    Mock mode registers a mock oracle per lending protocol. No on-chain
    oracle ships, so live mode prices lending positions through the feed.
    """
    config = config or settings
    if config.USE_MOCK_SOURCES:
        return {protocol: MockLendingOracle(protocol) for protocol in LENDING_PROTOCOLS}
    return {}
