"""Deterministic sources and price feed used when USE_MOCK_SOURCES is on.

Every EVM wallet holds exactly 1 ETH on mainnet, every Solana wallet
holds exactly 1 SOL and the lending sources report nothing. The mock
price feed and the mock lending oracles answer 1 for any asset, so a
mock refresh of at least one wallet finishes as SUCCESS.
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from integrations.market_data_protocol import OracleAsset, OracleResult, PriceBatchResult
from integrations.source_protocol import SourceResult, SourceRunInput, WalletInput
from models import AssetKind, PositionProtocol, SourceKey, WalletType
from services.snapshot_repository import SnapshotRepository
from utils.asset_ids import (
    SOLANA_CHAIN_KEY,
    canonical_evm_native_asset_id,
    canonical_sol_native_asset_id,
    evm_chain_key,
)

logger = logging.getLogger(__name__)

ETHEREUM_CHAIN_ID = 1


def _native_rows(
    source_input: SourceRunInput,
    wallet_type: WalletType,
    source_key: str,
    chain_key: str,
    asset_id: str,
    decimals: int,
) -> list[dict]:
    """One position of exactly 1 native unit per matching wallet."""
    wallets: list[WalletInput] = [w for w in source_input.wallets if w.type == wallet_type.value]
    raw = str(10 ** decimals)
    return [
        {
            "snapshot_id": source_input.snapshot_id,
            "wallet_id": wallet.id,
            "chain_key": chain_key,
            "protocol": PositionProtocol.WALLET.value,
            "source_key": source_key,
            "asset_id": asset_id,
            "quantity_raw": raw,
            "quantity_decimal": format(Decimal(raw).scaleb(-decimals), "f"),
            "meta_json": {"mock": True},
        }
        for wallet in wallets
    ]


class MockWalletEvmBalances:
    """1 ETH per EVM wallet."""

    @property
    def source_key(self) -> str:
        return SourceKey.WALLET_EVM_BALANCES.value

    def run(self, db: Session, source_input: SourceRunInput) -> SourceResult:
        asset_id = canonical_evm_native_asset_id(ETHEREUM_CHAIN_ID)
        chain_key = evm_chain_key(ETHEREUM_CHAIN_ID)
        SnapshotRepository.ensure_asset(
            db,
            asset_id,
            chain_key=chain_key,
            kind=AssetKind.NATIVE.value,
            symbol="ETH",
            name="Ether",
            decimals=18,
            coingecko_id="ethereum",
        )
        rows = _native_rows(source_input, WalletType.EVM, self.source_key, chain_key, asset_id, 18)
        count = SnapshotRepository.add_position_assets(db, rows)
        return SourceResult(positions_asset_count=count, meta={"mock": True, "wallets": count})


class MockWalletSolanaBalances:
    """1 SOL per Solana wallet."""

    @property
    def source_key(self) -> str:
        return SourceKey.WALLET_SOLANA_BALANCES.value

    def run(self, db: Session, source_input: SourceRunInput) -> SourceResult:
        asset_id = canonical_sol_native_asset_id()
        SnapshotRepository.ensure_asset(
            db,
            asset_id,
            chain_key=SOLANA_CHAIN_KEY,
            kind=AssetKind.NATIVE.value,
            symbol="SOL",
            name="Solana",
            decimals=9,
            coingecko_id="solana",
        )
        rows = _native_rows(
            source_input, WalletType.SOLANA, self.source_key, SOLANA_CHAIN_KEY, asset_id, 9
        )
        count = SnapshotRepository.add_position_assets(db, rows)
        return SourceResult(positions_asset_count=count, meta={"mock": True, "wallets": count})


class MockLendingSource:
    """A lending-protocol source with no open positions."""

    def __init__(self, source_key: str):
        self._source_key = source_key

    @property
    def source_key(self) -> str:
        return self._source_key

    def run(self, db: Session, source_input: SourceRunInput) -> SourceResult:
        return SourceResult(meta={"mock": True})


class MockPriceFeed:
    """Prices every requested id (and contract) at 1."""

    def __init__(self, price: str = "1"):
        self._price = price

    @property
    def provider_name(self) -> str:
        return "mock"

    def get_prices_by_ids(
        self,
        ids: list[str],
        quote_currency: str,
        deadline: Optional[float] = None,
    ) -> PriceBatchResult:
        return PriceBatchResult(prices={i: self._price for i in ids})

    def get_token_prices(
        self,
        platform: str,
        contracts: list[str],
        quote_currency: str,
        deadline: Optional[float] = None,
    ) -> PriceBatchResult:
        return PriceBatchResult(prices={c.lower(): self._price for c in contracts})


class MockLendingOracle:
    """A lending-protocol oracle that prices every requested asset at 1 USD."""

    def __init__(self, protocol: str, price: str = "1"):
        self._protocol = protocol
        self._price = price

    @property
    def protocol(self) -> str:
        return self._protocol

    def fetch_usd_prices(self, assets: list[OracleAsset]) -> OracleResult:
        return OracleResult(prices={asset.asset_id: self._price for asset in assets})
