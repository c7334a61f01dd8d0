"""Refresh API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from schemas.snapshot import RefreshRequest, RefreshResponse, SnapshotStatusResponse
from services.snapshot_orchestrator import SnapshotOrchestrator, build_orchestrator
from utils.query_params import parse_enabled_sources

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/refresh", tags=["refresh"])

# Dependency injection for testing
_orchestrator_override: Optional[SnapshotOrchestrator] = None
_default_orchestrator: Optional[SnapshotOrchestrator] = None


def get_orchestrator() -> SnapshotOrchestrator:
    """Get the SnapshotOrchestrator, allowing for test overrides."""
    global _default_orchestrator
    if _orchestrator_override is not None:
        return _orchestrator_override
    if _default_orchestrator is None:
        _default_orchestrator = build_orchestrator()
    return _default_orchestrator


def set_orchestrator_override(orchestrator: Optional[SnapshotOrchestrator]) -> None:
    """Set a SnapshotOrchestrator override for testing."""
    global _orchestrator_override
    _orchestrator_override = orchestrator


@router.post("", response_model=RefreshResponse, status_code=202)
def start_refresh(
    request: RefreshRequest,
    background_tasks: BackgroundTasks,
    orchestrator: SnapshotOrchestrator = Depends(get_orchestrator),
):
    """Create a snapshot and run the refresh in the background.

    Returns as soon as the snapshot row exists; poll
    ``/api/refresh/{snapshot_id}/status`` for progress.

    Raises:
        HTTPException:
            - 400 Bad Request: Unknown source key in enabled_sources
    """
    enabled_sources = parse_enabled_sources(request.enabled_sources)
    quote_currency = request.quote_currency.strip().upper()

    try:
        snapshot = orchestrator.create_snapshot(quote_currency, enabled_sources)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    background_tasks.add_task(orchestrator.refresh, snapshot.id, quote_currency, enabled_sources)
    logger.info("Refresh queued for snapshot %s", snapshot.id[:8])

    return RefreshResponse(
        snapshot_id=snapshot.id,
        status=snapshot.status,
        started_at=snapshot.started_at,
    )


@router.get("/{snapshot_id}/status", response_model=SnapshotStatusResponse)
def get_refresh_status(
    snapshot_id: str,
    orchestrator: SnapshotOrchestrator = Depends(get_orchestrator),
):
    """Snapshot status plus every source run's status, error and diagnostics.

    Raises:
        HTTPException:
            - 404 Not Found: Unknown snapshot id
    """
    snapshot = orchestrator.get_status(snapshot_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Snapshot not found")
    return snapshot
