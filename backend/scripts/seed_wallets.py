#!/usr/bin/env python3
"""Upsert tracked wallets from the TEST_WALLETS_JSON setting.

TEST_WALLETS_JSON is a JSON list such as::

    [{"address": "0xabc...", "type": "EVM", "label": "main"},
     {"address": "9xQe...", "type": "SOLANA"}]

Existing wallets (same type and address) get their label updated and
are un-archived; new ones are inserted.

Usage:
    python -m scripts.seed_wallets
"""

import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy.orm import Session

from config import settings
from database import get_session_local, init_db
from logging_config import setup_logging
from models import Wallet, WalletType

logger = logging.getLogger(__name__)


def parse_wallets(raw: str) -> list[dict[str, Any]]:
    """Parse and validate a TEST_WALLETS_JSON value.

    EVM addresses are lower-cased; Solana addresses are case-sensitive
    and kept as given.

    Raises:
        ValueError: If the JSON is malformed or an entry is invalid.
    """
    if not raw.strip():
        return []
    try:
        entries = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"TEST_WALLETS_JSON is not valid JSON: {e}") from e
    if not isinstance(entries, list):
        raise ValueError("TEST_WALLETS_JSON must be a JSON list")

    wallets = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ValueError(f"Wallet #{index} must be an object")
        address = str(entry.get("address") or "").strip()
        wallet_type = str(entry.get("type") or "").strip().upper()
        if not address:
            raise ValueError(f"Wallet #{index} has no address")
        if wallet_type not in {t.value for t in WalletType}:
            raise ValueError(f"Wallet #{index} has unknown type {entry.get('type')!r}")
        if wallet_type == WalletType.EVM.value:
            address = address.lower()
        wallets.append({"address": address, "type": wallet_type, "label": entry.get("label")})
    return wallets


def seed_wallets(db: Session, wallets: list[dict[str, Any]]) -> tuple[int, int]:
    """Insert or update wallets. Returns (created, updated)."""
    created = updated = 0
    for data in wallets:
        existing = (
            db.query(Wallet)
            .filter_by(type=data["type"], address=data["address"])
            .first()
        )
        if existing:
            if data["label"] is not None:
                existing.label = data["label"]
            existing.is_archived = False
            updated += 1
        else:
            db.add(Wallet(address=data["address"], type=data["type"], label=data["label"]))
            created += 1
    db.commit()
    return created, updated


def main(raw: Optional[str] = None) -> None:
    setup_logging()
    wallets = parse_wallets(settings.TEST_WALLETS_JSON if raw is None else raw)
    if not wallets:
        logger.warning("TEST_WALLETS_JSON is empty, nothing to seed")
        return

    init_db()
    db = get_session_local()()
    try:
        created, updated = seed_wallets(db, wallets)
    finally:
        db.close()
    logger.info("Wallets seeded: %d created, %d updated", created, updated)


if __name__ == "__main__":
    main()
