"""Shared API helpers for route handlers.

Lookups and response builders used by the snapshot and refresh routes.
"""

from typing import TypeVar, Union

from fastapi import HTTPException
from sqlalchemy.orm import Session

from database import Base
from models import PositionAsset, PositionLiability
from schemas.snapshot import PositionResponse
from services.snapshot_repository import SnapshotRepository
from utils.decimals import format_quantity

T = TypeVar("T", bound=Base)


def get_or_404(db: Session, model: type[T], entity_id: str, detail: str = "Not found") -> T:
    """Fetch a single row by primary key or raise 404.

    Raises:
        HTTPException: 404 if no row has that id.
    """
    entity = db.get(model, entity_id)
    if entity is None:
        raise HTTPException(status_code=404, detail=detail)
    return entity


def position_responses(
    db: Session,
    positions: list[Union[PositionAsset, PositionLiability]],
) -> list[PositionResponse]:
    """Build position responses with asset symbols and display quantities.

    Assets are loaded in one query for the whole list. Quantities are
    rounded up for display so dust balances never show as zero.
    """
    assets = {
        a.id: a for a in SnapshotRepository.get_assets(db, {p.asset_id for p in positions})
    }
    responses = []
    for position in positions:
        asset = assets.get(position.asset_id)
        responses.append(
            PositionResponse(
                id=position.id,
                wallet_id=position.wallet_id,
                chain_key=position.chain_key,
                protocol=position.protocol,
                source_key=position.source_key,
                asset_id=position.asset_id,
                symbol=asset.symbol if asset else None,
                quantity_decimal=position.quantity_decimal,
                quantity_display=format_quantity(position.quantity_decimal),
                # Only asset-side rows carry a collateral flag
                is_collateral=getattr(position, "is_collateral", None),
                price_quote=position.price_quote,
                value_quote=position.value_quote,
            )
        )
    return responses
