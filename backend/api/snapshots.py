"""Snapshot API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.helpers import get_or_404, position_responses
from database import get_db
from models import Snapshot
from schemas.snapshot import PositionResponse, SnapshotWithSummaryResponse
from services.snapshot_repository import SnapshotRepository
from utils.query_params import parse_protocol

router = APIRouter(prefix="/api/snapshots", tags=["snapshots"])


@router.get("/latest/summary", response_model=Optional[SnapshotWithSummaryResponse])
def get_latest_summary(db: Session = Depends(get_db)):
    """Most recent snapshot with its summary, or null if none exist."""
    return SnapshotRepository.get_latest_snapshot(db)


@router.get("/{snapshot_id}/assets", response_model=list[PositionResponse])
def list_snapshot_assets(
    snapshot_id: str,
    wallet_id: Optional[str] = Query(default=None),
    chain_key: Optional[str] = Query(default=None),
    protocol: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
):
    """Asset-side positions of a snapshot, largest value first.

    Optional ``wallet_id``, ``chain_key`` and ``protocol`` narrow the list.
    """
    protocol = parse_protocol(protocol)
    get_or_404(db, Snapshot, snapshot_id, "Snapshot not found")
    positions = SnapshotRepository.list_position_assets(
        db, snapshot_id, wallet_id=wallet_id, chain_key=chain_key, protocol=protocol
    )
    return position_responses(db, positions)


@router.get("/{snapshot_id}/liabilities", response_model=list[PositionResponse])
def list_snapshot_liabilities(
    snapshot_id: str,
    wallet_id: Optional[str] = Query(default=None),
    chain_key: Optional[str] = Query(default=None),
    protocol: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
):
    """Liability-side positions of a snapshot, largest value first."""
    protocol = parse_protocol(protocol)
    get_or_404(db, Snapshot, snapshot_id, "Snapshot not found")
    positions = SnapshotRepository.list_position_liabilities(
        db, snapshot_id, wallet_id=wallet_id, chain_key=chain_key, protocol=protocol
    )
    return position_responses(db, positions)
