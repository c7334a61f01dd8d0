"""CachedPrice model - append-only log of prices obtained per snapshot."""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, UniqueConstraint

from database import Base
from models.utils import generate_uuid, utcnow


class CachedPrice(Base):
    """A price obtained while refreshing a snapshot.

    Rows are written once per (snapshot, asset, quote currency) and never
    updated. Later snapshots reuse rows whose ``fetched_at`` is within the
    freshness window instead of calling the price feed again.
    """

    __tablename__ = "snapshot_prices"
    __table_args__ = (
        UniqueConstraint(
            "snapshot_id", "asset_id", "quote_currency",
            name="uix_snapshot_price_asset_quote",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    snapshot_id = Column(String(36), ForeignKey("snapshots.id"), nullable=False, index=True)
    asset_id = Column(String, ForeignKey("assets.id"), nullable=False, index=True)
    quote_currency = Column(String(8), nullable=False)
    price = Column(String, nullable=False)
    source = Column(String, nullable=False)  # e.g. "coingecko", "aave-v3-oracle"
    fetched_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    meta_json = Column(JSON, nullable=False, default=dict)
