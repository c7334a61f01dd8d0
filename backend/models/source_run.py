"""SnapshotSourceRun model - records one source's outcome within a snapshot."""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base
from models.enums import SourceRunStatus
from models.utils import generate_uuid


class SnapshotSourceRun(Base):
    """The result of running a single data source for a snapshot.

    Every known source gets a row when the snapshot is created, so the
    status endpoint can show disabled and not-yet-started sources too.
    """

    __tablename__ = "snapshot_source_runs"
    __table_args__ = (
        UniqueConstraint("snapshot_id", "source_key", name="uix_source_run_snapshot_source"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    snapshot_id = Column(String(36), ForeignKey("snapshots.id"), nullable=False, index=True)
    source_key = Column(String, nullable=False)
    status = Column(String, nullable=False, default=SourceRunStatus.PENDING.value)
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    error_code = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    meta_json = Column(JSON, nullable=False, default=dict)  # Opaque diagnostic payload

    # Relationships
    snapshot = relationship("Snapshot", back_populates="source_runs")
