"""Status and classification enums shared by models, services and API."""

from enum import Enum


class SnapshotStatus(str, Enum):
    """Lifecycle of a snapshot. RUNNING is the only non-terminal state."""

    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


class SourceRunStatus(str, Enum):
    """Lifecycle of a single source's run within a snapshot."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class SourceKey(str, Enum):
    """Every data source a snapshot knows about."""

    WALLET_EVM_BALANCES = "wallet_evm_balances"
    WALLET_SOLANA_BALANCES = "wallet_solana_balances"
    AAVE_V3 = "aave_v3"
    KAMINO = "kamino"
    HYPERLEND = "hyperlend"
    PRICES = "prices"


class WalletType(str, Enum):
    EVM = "EVM"
    SOLANA = "SOLANA"


class AssetKind(str, Enum):
    NATIVE = "NATIVE"
    ERC20 = "ERC20"
    SPL = "SPL"


class PositionProtocol(str, Enum):
    """Protocol a position was read from. Everything but WALLET is a lending market."""

    WALLET = "WALLET"
    AAVE_V3 = "AAVE_V3"
    KAMINO = "KAMINO"
    HYPERLEND = "HYPERLEND"


ALL_SOURCE_KEYS: list[str] = [key.value for key in SourceKey]

POSITION_SOURCE_KEYS: list[str] = [
    key.value for key in SourceKey if key is not SourceKey.PRICES
]


def is_source_key(value: str) -> bool:
    """Return True if ``value`` names a known source."""
    return value in ALL_SOURCE_KEYS
