"""Price resolution service - layered price lookup for a snapshot's assets.

Stages run in order and each one only looks at assets no earlier stage
priced:

1. Lending-protocol oracles (USD only)
2. Recent prices cached by earlier snapshots
3. Batched CoinGecko id lookup
4. Stablecoin symbol heuristic (USD only)
5. CoinGecko contract-address lookup for assets without an id
"""

import logging
import re
import time as time_module
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from integrations.coingecko_client import normalize_coingecko_id
from integrations.exceptions import PriceFeedError
from integrations.market_data_protocol import OracleAsset, PriceFeed, PriceOracle, PriceQuote
from models import Asset, PositionAsset, PositionLiability
from models.utils import utcnow
from services.snapshot_repository import SnapshotRepository
from utils.decimals import parse_decimal

logger = logging.getLogger(__name__)

DEFAULT_CACHE_WINDOW = timedelta(minutes=30)
DEFAULT_PIPELINE_TIMEOUT_SECONDS = 20.0

# Oracle prices for these assets are ignored in favour of the market feed.
CANONICAL_COINGECKO_IDS = frozenset({
    "usd-coin",
    "coinbase-wrapped-btc",
    "ethereum",
    "solana",
    "hyperliquid",
})

# Symbols priced at 1 USD without a network call.
STABLECOIN_COINGECKO_IDS: dict[str, str] = {
    "USDC": "usd-coin",
    "USDT": "tether",
    "USDHL": "usd-coin",
    "USD0": "usd-coin",
    "USDBC": "usd-coin",
    "USDC.E": "usd-coin",
    "USDT.E": "tether",
    "DAI": "dai",
}

# chain_key -> CoinGecko asset platform for contract-address lookups
CONTRACT_PLATFORMS: dict[str, str] = {
    "solana:mainnet-beta": "solana",
    "evm:1": "ethereum",
    "evm:8453": "base",
}

STABLECOIN_SOURCE = "stablecoin-fallback"

_SYMBOL_STRIP_RE = re.compile(r"[^A-Z0-9.]")


def _valid_price(value: Optional[str]) -> Optional[str]:
    """Return ``value`` if it parses to a positive decimal, else None."""
    if value is None:
        return None
    if parse_decimal(value) <= 0:
        return None
    return str(value)


def stablecoin_id_for_symbol(symbol: Optional[str]) -> Optional[str]:
    """Map a token symbol to a stablecoin's CoinGecko id, if it is one."""
    if not symbol:
        return None
    upper = symbol.strip().upper()
    normalized = _SYMBOL_STRIP_RE.sub("", upper)
    return STABLECOIN_COINGECKO_IDS.get(upper) or STABLECOIN_COINGECKO_IDS.get(normalized)


@dataclass
class PriceResolution:
    """Outcome of resolving prices for one snapshot."""

    quote_currency: str
    asset_count: int = 0
    quotes: list[PriceQuote] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    persisted_count: int = 0

    @property
    def prices(self) -> dict[str, str]:
        """asset_id -> decimal price string."""
        return {q.asset_id: q.price for q in self.quotes}

    @property
    def priced_count(self) -> int:
        return len(self.quotes)

    def source_counts(self) -> dict[str, int]:
        counts = Counter("cache" if q.cached else q.source for q in self.quotes)
        return dict(sorted(counts.items()))

    def to_meta(self) -> dict[str, Any]:
        """Diagnostic payload stored on the ``prices`` source run."""
        return {
            "asset_count": self.asset_count,
            "priced_count": self.priced_count,
            "persisted_count": self.persisted_count,
            "quote_currency": self.quote_currency,
            "sources": self.source_counts(),
            "warnings": self.warnings,
        }


class PriceResolver:
    """Resolves a quote-currency price for every asset in a snapshot.

    The price feed and oracles are injected so tests (and mock mode) can
    swap them without touching the stage logic.
    """

    def __init__(
        self,
        price_feed: PriceFeed,
        oracles: Optional[dict[str, PriceOracle]] = None,
        cache_window: timedelta = DEFAULT_CACHE_WINDOW,
        pipeline_timeout: float = DEFAULT_PIPELINE_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize with the price sources.

        Args:
            price_feed: External market-data feed (CoinGecko or a mock).
            oracles: PositionProtocol value -> oracle for lending markets.
            cache_window: How long a cached price stays reusable.
            pipeline_timeout: Seconds after which no new feed request starts.
            clock: Returns "now" as an aware UTC datetime.
        """
        self._feed = price_feed
        self._oracles = dict(oracles or {})
        self._cache_window = cache_window
        self._pipeline_timeout = pipeline_timeout
        self._clock = clock

    @property
    def price_feed(self) -> PriceFeed:
        return self._feed

    def resolve(self, db: Session, snapshot_id: str, quote_currency: str) -> PriceResolution:
        """Price every asset referenced by the snapshot's positions.

        Newly obtained prices are appended to the price cache for this
        snapshot before returning; positions are not touched.

        Args:
            db: Database session
            snapshot_id: Snapshot to price
            quote_currency: ISO currency code

        Returns:
            PriceResolution with one quote per priced asset
        """
        quote = quote_currency.upper()
        positions: list[PositionAsset | PositionLiability] = [
            *SnapshotRepository.list_position_assets(db, snapshot_id),
            *SnapshotRepository.list_position_liabilities(db, snapshot_id),
        ]
        asset_ids = sorted({p.asset_id for p in positions})
        assets = {a.id: a for a in SnapshotRepository.get_assets(db, asset_ids)}

        resolution = PriceResolution(quote_currency=quote, asset_count=len(asset_ids))
        quotes: dict[str, PriceQuote] = {}
        deadline = time_module.monotonic() + self._pipeline_timeout
        now = self._clock()

        logger.info(
            "Resolving %s prices for %d assets (snapshot %s)",
            quote, len(asset_ids), snapshot_id[:8],
        )

        self._oracle_stage(positions, assets, quote, quotes, resolution.warnings)
        self._cache_stage(db, asset_ids, quote, now, quotes)
        self._feed_stage(assets, quote, deadline, quotes, resolution.warnings)
        if quote == "USD":
            self._stablecoin_stage(db, assets, quotes)
        self._contract_stage(assets, quote, deadline, quotes, resolution.warnings)

        unpriced = [asset_id for asset_id in asset_ids if asset_id not in quotes]
        if unpriced:
            resolution.warnings.append(
                f"No price for {len(unpriced)} assets: {', '.join(unpriced)}"
            )

        resolution.quotes = [quotes[asset_id] for asset_id in asset_ids if asset_id in quotes]
        resolution.persisted_count = SnapshotRepository.insert_cached_prices(
            db,
            snapshot_id,
            quote,
            [q for q in resolution.quotes if not q.cached],
            fetched_at=now,
        )

        logger.info(
            "Resolved %d/%d prices (%s), %d warnings",
            resolution.priced_count, resolution.asset_count,
            resolution.source_counts(), len(resolution.warnings),
        )
        return resolution

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _oracle_stage(
        self,
        positions: list[PositionAsset | PositionLiability],
        assets: dict[str, Asset],
        quote: str,
        quotes: dict[str, PriceQuote],
        warnings: list[str],
    ) -> None:
        if not self._oracles:
            return

        ids_by_protocol: dict[str, set[str]] = {}
        for position in positions:
            if position.protocol in self._oracles:
                ids_by_protocol.setdefault(position.protocol, set()).add(position.asset_id)
        if not ids_by_protocol:
            return

        if quote != "USD":
            warnings.append("Oracle pricing only supports USD")
            return

        for protocol, asset_ids in sorted(ids_by_protocol.items()):
            oracle = self._oracles[protocol]
            requests = [
                OracleAsset(asset_id=asset.id, chain_key=asset.chain_key, address=asset.address_or_mint)
                for asset_id in sorted(asset_ids)
                if (asset := assets.get(asset_id)) is not None and asset.address_or_mint
            ]
            if not requests:
                continue

            try:
                result = oracle.fetch_usd_prices(requests)
            except Exception as e:
                logger.warning("%s oracle failed: %s", protocol, e, exc_info=True)
                warnings.append(f"{protocol} oracle: {e}")
                continue

            warnings.extend(result.errors)
            source = f"{protocol.lower().replace('_', '-')}-oracle"
            deferred = 0
            for asset_id, raw_price in result.prices.items():
                asset = assets.get(asset_id)
                price = _valid_price(raw_price)
                if asset is None or price is None or asset_id in quotes:
                    continue
                if normalize_coingecko_id(asset.coingecko_id) in CANONICAL_COINGECKO_IDS:
                    deferred += 1
                    continue
                quotes[asset_id] = PriceQuote(asset_id=asset_id, price=price, source=source)

            if deferred:
                logger.debug("%s oracle: deferred %d canonical assets to the feed", protocol, deferred)

    def _cache_stage(
        self,
        db: Session,
        asset_ids: list[str],
        quote: str,
        now: datetime,
        quotes: dict[str, PriceQuote],
    ) -> None:
        pending = [asset_id for asset_id in asset_ids if asset_id not in quotes]
        if not pending:
            return
        cached = SnapshotRepository.get_fresh_cached_prices(
            db, pending, quote, fetched_since=now - self._cache_window
        )
        for asset_id, row in cached.items():
            quotes[asset_id] = PriceQuote(
                asset_id=asset_id, price=row.price, source=row.source, cached=True
            )
        if cached:
            logger.debug("Reused %d cached prices", len(cached))

    def _feed_stage(
        self,
        assets: dict[str, Asset],
        quote: str,
        deadline: float,
        quotes: dict[str, PriceQuote],
        warnings: list[str],
    ) -> None:
        # Several assets (e.g. USDC on two chains) can share one feed id
        asset_ids_by_feed_id: dict[str, list[str]] = {}
        for asset_id, asset in sorted(assets.items()):
            if asset_id in quotes:
                continue
            feed_id = normalize_coingecko_id(asset.coingecko_id)
            if feed_id:
                asset_ids_by_feed_id.setdefault(feed_id, []).append(asset_id)
        if not asset_ids_by_feed_id:
            return

        try:
            batch = self._feed.get_prices_by_ids(list(asset_ids_by_feed_id), quote, deadline)
        except PriceFeedError as e:
            logger.warning("Price feed %s failed: %s", self._feed.provider_name, e)
            warnings.append(str(e))
            return
        except Exception as e:
            logger.warning("Price feed %s failed: %s", self._feed.provider_name, e, exc_info=True)
            warnings.append(f"{self._feed.provider_name}: {e.__class__.__name__}: {e}")
            return

        warnings.extend(batch.errors)
        for feed_id, raw_price in batch.prices.items():
            price = _valid_price(raw_price)
            if price is None:
                continue
            for asset_id in asset_ids_by_feed_id.get(feed_id, []):
                quotes[asset_id] = PriceQuote(
                    asset_id=asset_id, price=price, source=self._feed.provider_name
                )

    def _stablecoin_stage(
        self,
        db: Session,
        assets: dict[str, Asset],
        quotes: dict[str, PriceQuote],
    ) -> None:
        backfilled = 0
        for asset_id, asset in sorted(assets.items()):
            if asset_id in quotes:
                continue
            feed_id = stablecoin_id_for_symbol(asset.symbol)
            if feed_id is None:
                continue
            quotes[asset_id] = PriceQuote(asset_id=asset_id, price="1", source=STABLECOIN_SOURCE)
            if not asset.coingecko_id:
                asset.coingecko_id = feed_id
                backfilled += 1
        if backfilled:
            db.flush()
            logger.info("Backfilled CoinGecko ids for %d stablecoins", backfilled)

    def _contract_stage(
        self,
        assets: dict[str, Asset],
        quote: str,
        deadline: float,
        quotes: dict[str, PriceQuote],
        warnings: list[str],
    ) -> None:
        # platform -> lower-cased address -> (address as stored, asset ids)
        by_platform: dict[str, dict[str, tuple[str, list[str]]]] = {}
        for asset_id, asset in sorted(assets.items()):
            if asset_id in quotes or asset.coingecko_id or not asset.address_or_mint:
                continue
            platform = CONTRACT_PLATFORMS.get(asset.chain_key)
            if platform is None:
                continue
            address = asset.address_or_mint.strip()
            entry = by_platform.setdefault(platform, {}).setdefault(address.lower(), (address, []))
            entry[1].append(asset_id)

        source = f"{self._feed.provider_name}-contract"
        for platform, by_address in sorted(by_platform.items()):
            try:
                result = self._feed.get_token_prices(
                    platform, [address for address, _ in by_address.values()], quote, deadline
                )
            except Exception as e:
                logger.warning("Contract price lookup on %s failed: %s", platform, e, exc_info=True)
                warnings.append(f"{platform} contract prices: {e}")
                continue

            warnings.extend(result.errors)
            for lowered, (_, asset_ids) in by_address.items():
                price = _valid_price(result.prices.get(lowered))
                if price is None:
                    continue
                for asset_id in asset_ids:
                    quotes[asset_id] = PriceQuote(asset_id=asset_id, price=price, source=source)
