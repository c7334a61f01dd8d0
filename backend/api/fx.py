"""FX API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from integrations.exceptions import PriceFeedError
from integrations.market_data_protocol import PriceFeed
from integrations.source_registry import get_price_feed as build_price_feed
from models.utils import utcnow
from schemas.snapshot import FxRateResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/fx", tags=["fx"])

# USDC tracks the dollar closely enough for a display rate
USD_PROXY_ID = "usd-coin"

# Dependency injection for testing
_price_feed_override: Optional[PriceFeed] = None
_default_price_feed: Optional[PriceFeed] = None


def get_price_feed() -> PriceFeed:
    """Get the PriceFeed, allowing for test overrides."""
    global _default_price_feed
    if _price_feed_override is not None:
        return _price_feed_override
    if _default_price_feed is None:
        _default_price_feed = build_price_feed()
    return _default_price_feed


def set_price_feed_override(feed: Optional[PriceFeed]) -> None:
    """Set a PriceFeed override for testing."""
    global _price_feed_override
    _price_feed_override = feed


@router.get("/usd-eur", response_model=FxRateResponse)
def get_usd_eur(feed: PriceFeed = Depends(get_price_feed)):
    """USD→EUR rate, taken from the EUR price of USDC.

    Raises:
        HTTPException:
            - 502 Bad Gateway: The price feed gave no rate
    """
    try:
        result = feed.get_prices_by_ids([USD_PROXY_ID], "EUR")
    except PriceFeedError as e:
        logger.warning("FX lookup failed: %s", e)
        raise HTTPException(status_code=502, detail="FX rate unavailable")

    rate = result.prices.get(USD_PROXY_ID)
    if rate is None:
        raise HTTPException(status_code=502, detail="FX rate unavailable")

    return FxRateResponse(
        base="USD",
        quote="EUR",
        rate=rate,
        fetched_at=utcnow(),
        source=feed.provider_name,
    )
