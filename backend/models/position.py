"""Position models - asset-side holdings and liability-side debts."""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Numeric, String

from database import Base
from models.utils import generate_uuid, utcnow


class PositionAsset(Base):
    """An asset held by a wallet on a chain/protocol within a snapshot.

    Quantities and prices are stored as decimal strings so on-chain
    precision survives SQLite; ``value_quote`` is the rounded 2-dp value.
    """

    __tablename__ = "positions_assets"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    snapshot_id = Column(String(36), ForeignKey("snapshots.id"), nullable=False, index=True)
    wallet_id = Column(String(36), ForeignKey("wallets.id"), nullable=False)
    chain_key = Column(String, nullable=False)
    protocol = Column(String, nullable=False)
    source_key = Column(String, nullable=False)
    asset_id = Column(String, ForeignKey("assets.id"), nullable=False, index=True)
    quantity_raw = Column(String, nullable=False)
    quantity_decimal = Column(String, nullable=False)
    is_collateral = Column(Boolean, nullable=True)
    price_quote = Column(String, nullable=True)
    value_quote = Column(Numeric(20, 2), nullable=True)
    meta_json = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class PositionLiability(Base):
    """A debt owed by a wallet to a lending protocol within a snapshot."""

    __tablename__ = "positions_liabilities"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    snapshot_id = Column(String(36), ForeignKey("snapshots.id"), nullable=False, index=True)
    wallet_id = Column(String(36), ForeignKey("wallets.id"), nullable=False)
    chain_key = Column(String, nullable=False)
    protocol = Column(String, nullable=False)
    source_key = Column(String, nullable=False)
    asset_id = Column(String, ForeignKey("assets.id"), nullable=False, index=True)
    quantity_raw = Column(String, nullable=False)
    quantity_decimal = Column(String, nullable=False)
    price_quote = Column(String, nullable=True)
    value_quote = Column(Numeric(20, 2), nullable=True)
    meta_json = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow)
