"""Portfolio valuation service - prices positions and summarizes a snapshot."""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from models import SnapshotSummary
from services.snapshot_repository import SnapshotRepository
from utils.decimals import CURRENCY_ROUNDING, parse_decimal, quantize

logger = logging.getLogger(__name__)


def coverage_pct(priced_count: int, total_count: int) -> float:
    """Share of priced positions as a percentage (0 when there are none)."""
    if total_count == 0:
        return 0.0
    return priced_count / total_count * 100


def value_position(quantity_decimal: str, price: str) -> Decimal:
    """quantity × price rounded to 2 dp, half-up."""
    return quantize(
        parse_decimal(quantity_decimal) * parse_decimal(price),
        rounding=CURRENCY_ROUNDING,
    )


class PortfolioValuationService:
    """Applies resolved prices to a snapshot's positions and upserts its summary.

    Both steps are idempotent: applying the same price map twice writes
    the same values, and the summary is always recomputed from the stored
    positions.
    """

    @staticmethod
    def apply_prices(db: Session, snapshot_id: str, prices: dict[str, str]) -> int:
        """Write price and value onto every position whose asset has a price.

        Args:
            db: Database session
            snapshot_id: Snapshot whose positions are priced
            prices: asset_id -> decimal price string

        Returns:
            Number of positions updated
        """
        if not prices:
            return 0

        updated = 0
        positions = (
            SnapshotRepository.list_position_assets(db, snapshot_id)
            + SnapshotRepository.list_position_liabilities(db, snapshot_id)
        )
        for position in positions:
            price = prices.get(position.asset_id)
            if price is None:
                continue
            position.price_quote = price
            position.value_quote = value_position(position.quantity_decimal, price)
            updated += 1

        db.flush()
        logger.info(
            "Snapshot %s: priced %d/%d positions",
            snapshot_id[:8], updated, len(positions),
        )
        return updated

    @staticmethod
    def compute_summary(db: Session, snapshot_id: str) -> SnapshotSummary:
        """Recompute totals and coverage from stored positions and upsert the summary."""
        assets = SnapshotRepository.list_position_assets(db, snapshot_id)
        liabilities = SnapshotRepository.list_position_liabilities(db, snapshot_id)

        total_assets = sum(
            (parse_decimal(p.value_quote) for p in assets if p.value_quote is not None),
            Decimal("0"),
        )
        total_liabilities = sum(
            (parse_decimal(p.value_quote) for p in liabilities if p.value_quote is not None),
            Decimal("0"),
        )

        priced_assets = sum(1 for p in assets if p.price_quote is not None)
        priced_liabilities = sum(1 for p in liabilities if p.price_quote is not None)
        total_count = len(assets) + len(liabilities)

        summary = SnapshotRepository.upsert_summary(
            db,
            snapshot_id,
            total_assets_quote=quantize(total_assets),
            total_liabilities_quote=quantize(total_liabilities),
            net_worth_quote=quantize(total_assets - total_liabilities),
            priced_coverage_pct=coverage_pct(priced_assets + priced_liabilities, total_count),
            priced_assets_count=priced_assets,
            total_assets_count=len(assets),
            priced_liabilities_count=priced_liabilities,
            total_liabilities_count=len(liabilities),
        )
        logger.info(
            "Snapshot %s: net worth %s, coverage %.1f%%",
            snapshot_id[:8], summary.net_worth_quote, summary.priced_coverage_pct,
        )
        return summary

    def run(
        self,
        db: Session,
        snapshot_id: str,
        prices: Optional[dict[str, str]] = None,
    ) -> SnapshotSummary:
        """Apply ``prices`` (if any) and upsert the snapshot summary."""
        if prices:
            self.apply_prices(db, snapshot_id, prices)
        return self.compute_summary(db, snapshot_id)
