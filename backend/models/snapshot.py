"""Snapshot model - one refresh cycle's point-in-time portfolio state."""

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.orm import relationship

from database import Base
from models.enums import SnapshotStatus
from models.utils import generate_uuid, utcnow


class Snapshot(Base):
    """A portfolio snapshot.

    Created RUNNING and moved to exactly one terminal status
    (SUCCESS / PARTIAL / FAILED) by the orchestrator.
    """

    __tablename__ = "snapshots"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    quote_currency = Column(String(8), nullable=False, default="USD")
    status = Column(String, nullable=False, default=SnapshotStatus.RUNNING.value)
    started_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    # Relationships
    source_runs = relationship(
        "SnapshotSourceRun",
        back_populates="snapshot",
        order_by="SnapshotSourceRun.source_key",
    )
    summary = relationship("SnapshotSummary", back_populates="snapshot", uselist=False)

    @property
    def is_terminal(self) -> bool:
        return self.status != SnapshotStatus.RUNNING.value
