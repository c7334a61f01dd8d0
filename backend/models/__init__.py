"""SQLAlchemy ORM models."""

from .asset import Asset
from .cached_price import CachedPrice
from .enums import (
    ALL_SOURCE_KEYS,
    POSITION_SOURCE_KEYS,
    AssetKind,
    PositionProtocol,
    SnapshotStatus,
    SourceKey,
    SourceRunStatus,
    WalletType,
    is_source_key,
)
from .position import PositionAsset, PositionLiability
from .snapshot import Snapshot
from .snapshot_summary import SnapshotSummary
from .source_run import SnapshotSourceRun
from .utils import generate_uuid
from .wallet import Wallet

__all__ = ["ALL_SOURCE_KEYS", "Asset", "AssetKind", "CachedPrice", "POSITION_SOURCE_KEYS", "PositionAsset", "PositionLiability", "PositionProtocol", "Snapshot", "SnapshotSourceRun", "SnapshotStatus", "SnapshotSummary", "SourceKey", "SourceRunStatus", "Wallet", "WalletType", "generate_uuid", "is_source_key"]
