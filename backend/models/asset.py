"""Asset model - canonical token metadata referenced by positions."""

from sqlalchemy import Column, DateTime, Integer, String

from database import Base
from models.utils import utcnow


class Asset(Base):
    """A token on a specific chain.

    The primary key is the canonical asset id (see ``utils.asset_ids``),
    so sources writing the same token converge on one row.
    """

    __tablename__ = "assets"

    id = Column(String, primary_key=True)
    chain_key = Column(String, nullable=False, index=True)  # e.g. "evm:1"
    kind = Column(String, nullable=False)  # "NATIVE" | "ERC20" | "SPL"
    symbol = Column(String, nullable=True)
    name = Column(String, nullable=True)
    decimals = Column(Integer, nullable=True)
    address_or_mint = Column(String, nullable=True)
    coingecko_id = Column(String, nullable=True)  # External price-feed id
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
