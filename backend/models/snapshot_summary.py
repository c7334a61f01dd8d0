"""SnapshotSummary model - aggregated totals and price coverage."""

from decimal import Decimal

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class SnapshotSummary(Base):
    """One row per snapshot, upserted by the valuator."""

    __tablename__ = "snapshot_summaries"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    snapshot_id = Column(String(36), ForeignKey("snapshots.id"), nullable=False, unique=True)
    total_assets_quote = Column(Numeric(20, 2), nullable=False, default=Decimal("0"))
    total_liabilities_quote = Column(Numeric(20, 2), nullable=False, default=Decimal("0"))
    net_worth_quote = Column(Numeric(20, 2), nullable=False, default=Decimal("0"))
    priced_coverage_pct = Column(Float, nullable=False, default=0.0)
    priced_assets_count = Column(Integer, nullable=False, default=0)
    total_assets_count = Column(Integer, nullable=False, default=0)
    priced_liabilities_count = Column(Integer, nullable=False, default=0)
    total_liabilities_count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    snapshot = relationship("Snapshot", back_populates="summary")
