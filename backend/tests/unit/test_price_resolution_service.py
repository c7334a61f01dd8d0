"""Tests for PriceResolver."""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import httpx
import pytest

from integrations.coingecko_client import CoinGeckoClient
from models import ALL_SOURCE_KEYS, Asset, AssetKind, CachedPrice, PositionProtocol
from services.price_resolution_service import (
    STABLECOIN_SOURCE,
    PriceResolver,
    stablecoin_id_for_symbol,
)
from services.snapshot_repository import SnapshotRepository
from tests.fixtures import add_position
from tests.fixtures.mocks import MockPriceFeed, MockPriceOracle

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _resolver(feed, **kwargs) -> PriceResolver:
    return PriceResolver(feed, clock=lambda: NOW, **kwargs)


@pytest.fixture
def wsteth_asset(db):
    asset = Asset(
        id="evm:1:erc20:0x7f39c581f595b53c5cb19bd0b3f8da6c935e2ca0",
        chain_key="evm:1",
        kind=AssetKind.ERC20.value,
        symbol="wstETH",
        decimals=18,
        address_or_mint="0x7f39C581F595B53c5cb19bD0b3f8dA6c935E2Ca0",
        coingecko_id="wrapped-steth",
    )
    db.add(asset)
    db.commit()
    return asset


class TestStablecoinSymbols:
    @pytest.mark.parametrize(
        ("symbol", "expected"),
        [("USDC", "usd-coin"), ("usdc.e", "usd-coin"), (" USDbC ", "usd-coin"), ("USDT", "tether"), ("DAI", "dai")],
    )
    def test_known_symbols(self, symbol, expected):
        assert stablecoin_id_for_symbol(symbol) == expected

    @pytest.mark.parametrize("symbol", [None, "", "ETH", "USDE"])
    def test_unknown_symbols(self, symbol):
        assert stablecoin_id_for_symbol(symbol) is None


class TestFeedStage:
    def test_prices_from_feed_and_persisted(self, db, snapshot, evm_wallet, eth_asset):
        add_position(db, snapshot, evm_wallet, eth_asset, "2")
        feed = MockPriceFeed(prices={"ethereum": "3000"})

        resolution = _resolver(feed).resolve(db, snapshot.id, "USD")

        assert resolution.prices == {eth_asset.id: "3000"}
        assert resolution.source_counts() == {"coingecko": 1}
        assert resolution.persisted_count == 1
        assert feed.id_calls == [(["ethereum"], "USD")]

        row = db.query(CachedPrice).filter_by(snapshot_id=snapshot.id).one()
        assert row.price == "3000"
        assert row.source == "coingecko"
        assert row.quote_currency == "USD"

    def test_shared_feed_id_fans_out(self, db, snapshot, evm_wallet):
        for asset_id, chain_key in [
            ("evm:1:erc20:0xa0b8", "evm:1"),
            ("evm:8453:erc20:0x8335", "evm:8453"),
        ]:
            asset = Asset(id=asset_id, chain_key=chain_key, kind="ERC20", symbol="USDC", coingecko_id="usd-coin")
            db.add(asset)
            db.flush()
            add_position(db, snapshot, evm_wallet, asset, "10")
        feed = MockPriceFeed(prices={"usd-coin": "0.9998"})

        resolution = _resolver(feed).resolve(db, snapshot.id, "USD")

        assert feed.id_calls == [(["usd-coin"], "USD")]
        assert resolution.prices == {
            "evm:1:erc20:0xa0b8": "0.9998",
            "evm:8453:erc20:0x8335": "0.9998",
        }

    def test_feed_failure_is_a_warning(self, db, snapshot, evm_wallet, eth_asset):
        add_position(db, snapshot, evm_wallet, eth_asset, "1")

        resolution = _resolver(MockPriceFeed(should_fail=True)).resolve(db, snapshot.id, "USD")

        assert resolution.priced_count == 0
        assert any("503" in w for w in resolution.warnings)
        assert any(eth_asset.id in w for w in resolution.warnings)

    def test_unexpected_feed_error_is_a_warning(self, db, snapshot, evm_wallet, eth_asset, usdc_base_asset):
        add_position(db, snapshot, evm_wallet, eth_asset, "1")
        add_position(db, snapshot, evm_wallet, usdc_base_asset, "100")
        feed = MockPriceFeed()

        with patch.object(feed, "get_prices_by_ids", side_effect=AttributeError("'list' object has no attribute 'get'")):
            resolution = _resolver(feed).resolve(db, snapshot.id, "USD")

        assert resolution.prices == {usdc_base_asset.id: "1"}
        assert any("AttributeError" in w for w in resolution.warnings)
        assert any(eth_asset.id in w for w in resolution.warnings)


    def test_feed_batch_errors_are_kept(self, db, snapshot, evm_wallet, eth_asset):
        add_position(db, snapshot, evm_wallet, eth_asset, "1")
        feed = MockPriceFeed(prices={"ethereum": "3000"}, errors=["foo: CoinGecko request failed (404)"])

        resolution = _resolver(feed).resolve(db, snapshot.id, "USD")

        assert "foo: CoinGecko request failed (404)" in resolution.warnings

    def test_no_positions(self, db, snapshot):
        feed = MockPriceFeed()

        resolution = _resolver(feed).resolve(db, snapshot.id, "USD")

        assert resolution.asset_count == 0
        assert resolution.quotes == []
        assert feed.id_calls == []


class TestCacheStage:
    def _cache(self, db, asset, fetched_at, price="2900", source="coingecko"):
        earlier = SnapshotRepository.create_snapshot(db, "USD", ALL_SOURCE_KEYS)
        db.add(CachedPrice(
            snapshot_id=earlier.id,
            asset_id=asset.id,
            quote_currency="USD",
            price=price,
            source=source,
            fetched_at=fetched_at,
            meta_json={},
        ))
        db.commit()

    def test_fresh_cache_is_reused(self, db, snapshot, evm_wallet, eth_asset):
        self._cache(db, eth_asset, NOW - timedelta(minutes=10))
        add_position(db, snapshot, evm_wallet, eth_asset, "1")
        feed = MockPriceFeed(prices={"ethereum": "3000"})

        resolution = _resolver(feed).resolve(db, snapshot.id, "USD")

        assert feed.id_calls == []
        assert resolution.prices == {eth_asset.id: "2900"}
        assert resolution.quotes[0].cached is True
        assert resolution.quotes[0].source == "coingecko"
        assert resolution.source_counts() == {"cache": 1}
        assert resolution.persisted_count == 0

    def test_expired_cache_is_refetched(self, db, snapshot, evm_wallet, eth_asset):
        self._cache(db, eth_asset, NOW - timedelta(minutes=31))
        add_position(db, snapshot, evm_wallet, eth_asset, "1")
        feed = MockPriceFeed(prices={"ethereum": "3000"})

        resolution = _resolver(feed).resolve(db, snapshot.id, "USD")

        assert feed.id_calls == [(["ethereum"], "USD")]
        assert resolution.prices == {eth_asset.id: "3000"}
        assert resolution.persisted_count == 1

    def test_newest_cached_row_wins(self, db, snapshot, evm_wallet, eth_asset):
        self._cache(db, eth_asset, NOW - timedelta(minutes=20), price="2800")
        self._cache(db, eth_asset, NOW - timedelta(minutes=5), price="2950")
        add_position(db, snapshot, evm_wallet, eth_asset, "1")

        resolution = _resolver(MockPriceFeed()).resolve(db, snapshot.id, "USD")

        assert resolution.prices == {eth_asset.id: "2950"}

    def test_other_quote_currency_not_reused(self, db, snapshot, evm_wallet, eth_asset):
        self._cache(db, eth_asset, NOW - timedelta(minutes=5))
        add_position(db, snapshot, evm_wallet, eth_asset, "1")
        feed = MockPriceFeed(prices={"ethereum": "2700"})

        resolution = _resolver(feed).resolve(db, snapshot.id, "EUR")

        assert feed.id_calls == [(["ethereum"], "EUR")]
        assert resolution.prices == {eth_asset.id: "2700"}

    def test_configurable_window(self, db, snapshot, evm_wallet, eth_asset):
        self._cache(db, eth_asset, NOW - timedelta(minutes=10))
        add_position(db, snapshot, evm_wallet, eth_asset, "1")
        feed = MockPriceFeed(prices={"ethereum": "3000"})

        _resolver(feed, cache_window=timedelta(minutes=5)).resolve(db, snapshot.id, "USD")

        assert len(feed.id_calls) == 1


class TestOracleStage:
    def test_oracle_prices_lending_assets(self, db, snapshot, evm_wallet, wsteth_asset):
        add_position(db, snapshot, evm_wallet, wsteth_asset, "1.5", protocol=PositionProtocol.AAVE_V3.value, source_key="aave_v3")
        oracle = MockPriceOracle("AAVE_V3", prices={wsteth_asset.id: "3500.12"})
        feed = MockPriceFeed(prices={"wrapped-steth": "3400"})

        resolution = _resolver(feed, oracles={"AAVE_V3": oracle}).resolve(db, snapshot.id, "USD")

        assert resolution.prices == {wsteth_asset.id: "3500.12"}
        assert resolution.quotes[0].source == "aave-v3-oracle"
        assert feed.id_calls == []
        assert oracle.calls[0][0].address == wsteth_asset.address_or_mint

    def test_canonical_assets_deferred_to_feed(self, db, snapshot, evm_wallet, eth_asset):
        eth_asset.address_or_mint = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
        db.commit()
        add_position(db, snapshot, evm_wallet, eth_asset, "1", protocol=PositionProtocol.AAVE_V3.value, source_key="aave_v3")
        oracle = MockPriceOracle("AAVE_V3", prices={eth_asset.id: "2999"})
        feed = MockPriceFeed(prices={"ethereum": "3000"})

        resolution = _resolver(feed, oracles={"AAVE_V3": oracle}).resolve(db, snapshot.id, "USD")

        assert len(oracle.calls) == 1
        assert resolution.prices == {eth_asset.id: "3000"}
        assert resolution.quotes[0].source == "coingecko"

    def test_oracle_failure_is_a_warning(self, db, snapshot, evm_wallet, wsteth_asset):
        add_position(db, snapshot, evm_wallet, wsteth_asset, "1", protocol=PositionProtocol.AAVE_V3.value, source_key="aave_v3")
        oracle = MockPriceOracle("AAVE_V3", should_fail=True)
        feed = MockPriceFeed(prices={"wrapped-steth": "3400"})

        resolution = _resolver(feed, oracles={"AAVE_V3": oracle}).resolve(db, snapshot.id, "USD")

        assert resolution.prices == {wsteth_asset.id: "3400"}
        assert any("AAVE_V3 oracle" in w for w in resolution.warnings)

    def test_oracle_skipped_for_non_usd(self, db, snapshot, evm_wallet, wsteth_asset):
        add_position(db, snapshot, evm_wallet, wsteth_asset, "1", protocol=PositionProtocol.AAVE_V3.value, source_key="aave_v3")
        oracle = MockPriceOracle("AAVE_V3", prices={wsteth_asset.id: "3500"})
        feed = MockPriceFeed(prices={"wrapped-steth": "3200"})

        resolution = _resolver(feed, oracles={"AAVE_V3": oracle}).resolve(db, snapshot.id, "EUR")

        assert oracle.calls == []
        assert "Oracle pricing only supports USD" in resolution.warnings
        assert resolution.prices == {wsteth_asset.id: "3200"}

    def test_wallet_positions_not_sent_to_oracle(self, db, snapshot, evm_wallet, wsteth_asset):
        add_position(db, snapshot, evm_wallet, wsteth_asset, "1")
        oracle = MockPriceOracle("AAVE_V3", prices={wsteth_asset.id: "3500"})

        _resolver(MockPriceFeed(), oracles={"AAVE_V3": oracle}).resolve(db, snapshot.id, "USD")

        assert oracle.calls == []


class TestStablecoinStage:
    def test_stablecoin_priced_and_id_backfilled(self, db, snapshot, evm_wallet, usdc_base_asset):
        add_position(db, snapshot, evm_wallet, usdc_base_asset, "250")
        feed = MockPriceFeed()

        resolution = _resolver(feed).resolve(db, snapshot.id, "USD")

        assert resolution.prices == {usdc_base_asset.id: "1"}
        assert resolution.quotes[0].source == STABLECOIN_SOURCE
        assert feed.id_calls == []
        assert feed.token_calls == []
        db.refresh(usdc_base_asset)
        assert usdc_base_asset.coingecko_id == "usd-coin"

    def test_feed_price_preferred_over_heuristic(self, db, snapshot, evm_wallet, usdc_base_asset):
        usdc_base_asset.coingecko_id = "usd-coin"
        db.commit()
        add_position(db, snapshot, evm_wallet, usdc_base_asset, "250")
        feed = MockPriceFeed(prices={"usd-coin": "0.9997"})

        resolution = _resolver(feed).resolve(db, snapshot.id, "USD")

        assert resolution.prices == {usdc_base_asset.id: "0.9997"}

    def test_not_applied_for_non_usd(self, db, snapshot, evm_wallet, usdc_base_asset):
        add_position(db, snapshot, evm_wallet, usdc_base_asset, "250")
        feed = MockPriceFeed(token_prices={"base": {usdc_base_asset.address_or_mint.lower(): "0.92"}})

        resolution = _resolver(feed).resolve(db, snapshot.id, "EUR")

        assert resolution.prices == {usdc_base_asset.id: "0.92"}
        assert resolution.quotes[0].source == "coingecko-contract"


class TestContractStage:
    def test_contract_lookup_for_assets_without_id(self, db, snapshot, evm_wallet):
        asset = Asset(
            id="evm:8453:erc20:0x4ed4e862860bed51a9570b96d89af5e1b0efefed",
            chain_key="evm:8453",
            kind="ERC20",
            symbol="DEGEN",
            address_or_mint="0x4ed4E862860beD51a9570b96d89aF5E1B0Efefed",
        )
        db.add(asset)
        db.flush()
        add_position(db, snapshot, evm_wallet, asset, "1000")
        feed = MockPriceFeed(token_prices={"base": {"0x4ed4e862860bed51a9570b96d89af5e1b0efefed": "0.004"}})

        resolution = _resolver(feed).resolve(db, snapshot.id, "USD")

        assert feed.token_calls == [("base", ["0x4ed4E862860beD51a9570b96d89aF5E1B0Efefed"], "USD")]
        assert resolution.prices == {asset.id: "0.004"}
        assert resolution.quotes[0].source == "coingecko-contract"

    def test_unsupported_chain_left_unpriced(self, db, snapshot, evm_wallet):
        asset = Asset(id="evm:10:erc20:0xabc", chain_key="evm:10", kind="ERC20", symbol="OP", address_or_mint="0xabc")
        db.add(asset)
        db.flush()
        add_position(db, snapshot, evm_wallet, asset, "5")
        feed = MockPriceFeed()

        resolution = _resolver(feed).resolve(db, snapshot.id, "USD")

        assert feed.token_calls == []
        assert resolution.priced_count == 0
        assert resolution.warnings == ["No price for 1 assets: evm:10:erc20:0xabc"]


class TestResolutionMeta:
    def test_meta_payload(self, db, snapshot, evm_wallet, solana_wallet, eth_asset, sol_asset, usdc_base_asset):
        add_position(db, snapshot, evm_wallet, eth_asset, "1")
        add_position(db, snapshot, solana_wallet, sol_asset, "3", source_key="wallet_solana_balances")
        add_position(db, snapshot, evm_wallet, usdc_base_asset, "100")
        feed = MockPriceFeed(prices={"ethereum": "3000"})

        meta = _resolver(feed).resolve(db, snapshot.id, "usd").to_meta()

        assert meta["asset_count"] == 3
        assert meta["priced_count"] == 2
        assert meta["quote_currency"] == "USD"
        assert meta["sources"] == {"coingecko": 1, STABLECOIN_SOURCE: 1}
        assert meta["warnings"] == [f"No price for 1 assets: {sol_asset.id}"]


class TestWithCoinGeckoClient:
    """The resolver driving a real CoinGeckoClient over a mocked transport."""

    @pytest.fixture
    def coingecko(self):
        client = CoinGeckoClient()
        yield client
        client.close()

    def test_rate_limited_then_priced(self, db, snapshot, evm_wallet, eth_asset, coingecko):
        add_position(db, snapshot, evm_wallet, eth_asset, "2")
        rate_limited = httpx.Response(429, headers={"Retry-After": "1"})
        success = httpx.Response(200, json={"ethereum": {"usd": 3000.5}})

        with (
            patch.object(coingecko._client, "request", side_effect=[rate_limited, success]),
            patch("integrations.coingecko_client.time_module.sleep") as mock_sleep,
        ):
            resolution = _resolver(coingecko).resolve(db, snapshot.id, "USD")

        mock_sleep.assert_called_once_with(1.0)
        assert resolution.prices == {eth_asset.id: "3000.5"}
        row = db.query(CachedPrice).filter_by(snapshot_id=snapshot.id).one()
        assert row.source == "coingecko"
        assert row.price == "3000.5"

    def test_non_object_body_leaves_stablecoin_priced(
        self, db, snapshot, evm_wallet, eth_asset, usdc_base_asset, coingecko
    ):
        add_position(db, snapshot, evm_wallet, eth_asset, "1")
        add_position(db, snapshot, evm_wallet, usdc_base_asset, "100")

        with (
            patch.object(coingecko._client, "request", return_value=httpx.Response(200, json=["oops"])),
            patch("integrations.coingecko_client.time_module.sleep"),
        ):
            resolution = _resolver(coingecko).resolve(db, snapshot.id, "USD")

        assert resolution.prices == {usdc_base_asset.id: "1"}
        assert any("unreadable" in w for w in resolution.warnings)
