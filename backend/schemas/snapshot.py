"""Pydantic schemas for refresh and snapshot endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field


class RefreshRequest(BaseModel):
    """Request body for starting a refresh."""

    quote_currency: str = Field(default="USD", min_length=3, max_length=8)
    enabled_sources: Optional[list[str]] = None


class RefreshResponse(BaseModel):
    """Returned immediately after a refresh is queued."""

    snapshot_id: str
    status: str
    started_at: datetime


class SourceRunResponse(BaseModel):
    """One source's run within a snapshot."""

    source_key: str
    status: str
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    meta_json: dict[str, Any] = {}

    model_config = {"from_attributes": True}


class SnapshotSummaryResponse(BaseModel):
    """Totals and coverage for a snapshot."""

    total_assets_quote: Decimal
    total_liabilities_quote: Decimal
    net_worth_quote: Decimal
    priced_coverage_pct: float
    priced_assets_count: int
    total_assets_count: int
    priced_liabilities_count: int
    total_liabilities_count: int
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SnapshotStatusResponse(BaseModel):
    """Snapshot status with every source run."""

    id: str
    quote_currency: str
    status: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    notes: Optional[str] = None
    source_runs: list[SourceRunResponse] = []

    model_config = {"from_attributes": True}


class SnapshotWithSummaryResponse(BaseModel):
    """Latest snapshot and its summary (absent while still running)."""

    id: str
    quote_currency: str
    status: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    notes: Optional[str] = None
    summary: Optional[SnapshotSummaryResponse] = None

    model_config = {"from_attributes": True}


class PositionResponse(BaseModel):
    """A position row with its asset's symbol and display quantity."""

    id: str
    wallet_id: str
    chain_key: str
    protocol: str
    source_key: str
    asset_id: str
    symbol: Optional[str] = None
    quantity_decimal: str
    quantity_display: str
    is_collateral: Optional[bool] = None
    price_quote: Optional[str] = None
    value_quote: Optional[Decimal] = None


class FxRateResponse(BaseModel):
    """A spot FX rate derived from the price feed."""

    base: str
    quote: str
    rate: str
    fetched_at: datetime
    source: str
