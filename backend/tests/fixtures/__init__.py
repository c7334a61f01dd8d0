"""Test fixtures and sample data."""
from decimal import Decimal
from typing import Optional

import pytest
from sqlalchemy.orm import Session

from models import (
    ALL_SOURCE_KEYS,
    Asset,
    AssetKind,
    PositionAsset,
    PositionLiability,
    PositionProtocol,
    Snapshot,
    Wallet,
    WalletType,
)
from services.snapshot_repository import SnapshotRepository

ETH_ASSET_ID = "evm:1:native"
SOL_ASSET_ID = "solana:mainnet-beta:native"
USDC_BASE_ASSET_ID = "evm:8453:erc20:0x833589fcd6edb6e08f4c7c32d4f71b54bda02913"


def add_position(
    db: Session,
    snapshot: Snapshot,
    wallet: Wallet,
    asset: Asset,
    quantity: str,
    liability: bool = False,
    protocol: str = PositionProtocol.WALLET.value,
    source_key: str = "wallet_evm_balances",
    price: Optional[str] = None,
) -> PositionAsset | PositionLiability:
    """Insert a single position row for ``asset``."""
    model = PositionLiability if liability else PositionAsset
    position = model(
        snapshot_id=snapshot.id,
        wallet_id=wallet.id,
        chain_key=asset.chain_key,
        protocol=protocol,
        source_key=source_key,
        asset_id=asset.id,
        quantity_raw=quantity,
        quantity_decimal=quantity,
        price_quote=price,
        value_quote=(Decimal(quantity) * Decimal(price)).quantize(Decimal("0.01")) if price else None,
        meta_json={},
    )
    db.add(position)
    db.flush()
    return position


@pytest.fixture
def evm_wallet(db):
    wallet = Wallet(address="0x1111111111111111111111111111111111111111", type=WalletType.EVM.value, label="main")
    db.add(wallet)
    db.commit()
    return wallet


@pytest.fixture
def solana_wallet(db):
    wallet = Wallet(address="9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin", type=WalletType.SOLANA.value)
    db.add(wallet)
    db.commit()
    return wallet


@pytest.fixture
def snapshot(db):
    snapshot = SnapshotRepository.create_snapshot(db, "USD", ALL_SOURCE_KEYS)
    db.commit()
    return snapshot


@pytest.fixture
def eth_asset(db):
    asset = Asset(
        id=ETH_ASSET_ID,
        chain_key="evm:1",
        kind=AssetKind.NATIVE.value,
        symbol="ETH",
        decimals=18,
        coingecko_id="ethereum",
    )
    db.add(asset)
    db.commit()
    return asset


@pytest.fixture
def sol_asset(db):
    asset = Asset(
        id=SOL_ASSET_ID,
        chain_key="solana:mainnet-beta",
        kind=AssetKind.NATIVE.value,
        symbol="SOL",
        decimals=9,
        coingecko_id="solana",
    )
    db.add(asset)
    db.commit()
    return asset


@pytest.fixture
def usdc_base_asset(db):
    """USDC on Base with no CoinGecko id recorded yet."""
    asset = Asset(
        id=USDC_BASE_ASSET_ID,
        chain_key="evm:8453",
        kind=AssetKind.ERC20.value,
        symbol="USDbC",
        decimals=6,
        address_or_mint="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
    )
    db.add(asset)
    db.commit()
    return asset
