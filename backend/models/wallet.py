"""Wallet model - an address whose balances are scanned on every refresh."""

from sqlalchemy import Boolean, Column, DateTime, String, UniqueConstraint

from database import Base
from models.utils import generate_uuid, utcnow


class Wallet(Base):
    """A tracked on-chain wallet."""

    __tablename__ = "wallets"
    __table_args__ = (
        UniqueConstraint("type", "address", name="uix_wallet_type_address"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    address = Column(String, nullable=False)
    type = Column(String, nullable=False)  # "EVM" | "SOLANA"
    label = Column(String, nullable=True)
    is_archived = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
