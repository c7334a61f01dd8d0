"""Snapshot repository - persistence for snapshots, source runs, positions and prices.

Every method takes a session and only ``flush()``es; the caller owns the
transaction. State-machine moves are validated here so no caller can
move a snapshot or source run backwards.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from integrations.exceptions import InvalidTransitionError
from integrations.market_data_protocol import PriceQuote
from models import (
    Asset,
    CachedPrice,
    PositionAsset,
    PositionLiability,
    Snapshot,
    SnapshotSourceRun,
    SnapshotStatus,
    SnapshotSummary,
    SourceRunStatus,
    Wallet,
)
from models.utils import utcnow

logger = logging.getLogger(__name__)

_ASSET_FIELDS = ("chain_key", "kind", "symbol", "name", "decimals", "address_or_mint", "coingecko_id")


class SnapshotRepository:
    """Centralized reads and writes for the refresh pipeline."""

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    @staticmethod
    def create_snapshot(
        db: Session,
        quote_currency: str,
        source_keys: Iterable[str],
    ) -> Snapshot:
        """Insert a RUNNING snapshot with a PENDING run for every source key.

        Args:
            db: Database session (commit it to make both inserts durable
                together)
            quote_currency: ISO currency code, stored upper-case
            source_keys: Every known source, enabled or not

        Returns:
            The new Snapshot (flushed, not committed)
        """
        snapshot = Snapshot(
            quote_currency=quote_currency.upper(),
            status=SnapshotStatus.RUNNING.value,
            started_at=utcnow(),
        )
        db.add(snapshot)
        db.flush()

        for source_key in source_keys:
            db.add(
                SnapshotSourceRun(
                    snapshot_id=snapshot.id,
                    source_key=source_key,
                    status=SourceRunStatus.PENDING.value,
                    meta_json={},
                )
            )
        db.flush()
        return snapshot

    @staticmethod
    def get_snapshot(db: Session, snapshot_id: str) -> Optional[Snapshot]:
        return db.query(Snapshot).filter_by(id=snapshot_id).first()

    @staticmethod
    def get_latest_snapshot(db: Session) -> Optional[Snapshot]:
        return db.query(Snapshot).order_by(Snapshot.started_at.desc()).first()

    @staticmethod
    def finish_snapshot(
        db: Session,
        snapshot_id: str,
        status: SnapshotStatus,
        notes: Optional[str] = None,
    ) -> Snapshot:
        """Move a RUNNING snapshot to a terminal status and stamp finished_at.

        Raises:
            ValueError: If the snapshot does not exist
            InvalidTransitionError: If the snapshot is already terminal or
                ``status`` is RUNNING
        """
        snapshot = SnapshotRepository.get_snapshot(db, snapshot_id)
        if snapshot is None:
            raise ValueError(f"Snapshot '{snapshot_id}' not found")
        if status == SnapshotStatus.RUNNING:
            raise InvalidTransitionError("Cannot finish a snapshot as RUNNING")
        if snapshot.status != SnapshotStatus.RUNNING.value:
            raise InvalidTransitionError(
                f"Snapshot {snapshot_id} already finished as {snapshot.status}"
            )
        snapshot.status = status.value
        snapshot.finished_at = utcnow()
        if notes is not None:
            snapshot.notes = notes
        db.flush()
        return snapshot

    # ------------------------------------------------------------------
    # Source runs
    # ------------------------------------------------------------------

    @staticmethod
    def list_source_runs(db: Session, snapshot_id: str) -> list[SnapshotSourceRun]:
        return (
            db.query(SnapshotSourceRun)
            .filter_by(snapshot_id=snapshot_id)
            .order_by(SnapshotSourceRun.source_key)
            .all()
        )

    @staticmethod
    def get_source_run(
        db: Session, snapshot_id: str, source_key: str
    ) -> Optional[SnapshotSourceRun]:
        return (
            db.query(SnapshotSourceRun)
            .filter_by(snapshot_id=snapshot_id, source_key=source_key)
            .first()
        )

    @staticmethod
    def _get_run(db: Session, snapshot_id: str, source_key: str) -> SnapshotSourceRun:
        run = SnapshotRepository.get_source_run(db, snapshot_id, source_key)
        if run is None:
            raise ValueError(
                f"No source run '{source_key}' for snapshot '{snapshot_id}'"
            )
        return run

    @staticmethod
    def _transition(
        run: SnapshotSourceRun,
        expected: SourceRunStatus,
        target: SourceRunStatus,
    ) -> None:
        if run.status != expected.value:
            raise InvalidTransitionError(
                f"Source run {run.source_key} cannot move {run.status} -> {target.value}"
            )
        run.status = target.value

    @staticmethod
    def mark_source_running(db: Session, snapshot_id: str, source_key: str) -> SnapshotSourceRun:
        """PENDING -> RUNNING, stamping started_at."""
        run = SnapshotRepository._get_run(db, snapshot_id, source_key)
        SnapshotRepository._transition(run, SourceRunStatus.PENDING, SourceRunStatus.RUNNING)
        run.started_at = utcnow()
        db.flush()
        return run

    @staticmethod
    def mark_source_succeeded(
        db: Session,
        snapshot_id: str,
        source_key: str,
        meta: dict[str, Any],
    ) -> SnapshotSourceRun:
        """RUNNING -> SUCCESS, stamping finished_at and storing diagnostics."""
        run = SnapshotRepository._get_run(db, snapshot_id, source_key)
        SnapshotRepository._transition(run, SourceRunStatus.RUNNING, SourceRunStatus.SUCCESS)
        run.finished_at = utcnow()
        run.error_code = None
        run.error_message = None
        run.meta_json = meta
        db.flush()
        return run

    @staticmethod
    def mark_source_failed(
        db: Session,
        snapshot_id: str,
        source_key: str,
        error_code: str,
        error_message: str,
        meta: Optional[dict[str, Any]] = None,
    ) -> SnapshotSourceRun:
        """RUNNING -> FAILED, stamping finished_at and the error."""
        run = SnapshotRepository._get_run(db, snapshot_id, source_key)
        SnapshotRepository._transition(run, SourceRunStatus.RUNNING, SourceRunStatus.FAILED)
        run.finished_at = utcnow()
        run.error_code = error_code
        run.error_message = error_message
        run.meta_json = meta or {}
        db.flush()
        return run

    @staticmethod
    def mark_sources_skipped(
        db: Session,
        snapshot_id: str,
        source_keys: Iterable[str],
    ) -> int:
        """PENDING -> SUCCESS with a ``skipped`` marker for disabled sources.

        Returns:
            Number of runs marked
        """
        now = utcnow()
        count = 0
        for source_key in source_keys:
            run = SnapshotRepository._get_run(db, snapshot_id, source_key)
            SnapshotRepository._transition(run, SourceRunStatus.PENDING, SourceRunStatus.SUCCESS)
            run.started_at = now
            run.finished_at = now
            run.meta_json = {"skipped": True}
            count += 1
        db.flush()
        return count

    # ------------------------------------------------------------------
    # Wallets and assets
    # ------------------------------------------------------------------

    @staticmethod
    def list_active_wallets(db: Session) -> list[Wallet]:
        return (
            db.query(Wallet)
            .filter(Wallet.is_archived.is_(False))
            .order_by(Wallet.created_at)
            .all()
        )

    @staticmethod
    def ensure_asset(db: Session, asset_id: str, **fields: Any) -> Asset:
        """Ensure an Asset row exists for ``asset_id``.

        Creates the row if missing. Existing rows only have empty fields
        filled in, so metadata written by another source is kept.

        Returns:
            The Asset record (flushed but not committed)
        """
        unknown = set(fields) - set(_ASSET_FIELDS)
        if unknown:
            raise ValueError(f"Unknown asset fields: {', '.join(sorted(unknown))}")

        asset = db.query(Asset).filter_by(id=asset_id).first()
        if asset is None:
            asset = Asset(id=asset_id, **fields)
            db.add(asset)
            db.flush()
            logger.debug("Created asset: %s", asset_id)
            return asset

        changed = False
        for name, value in fields.items():
            if value is not None and getattr(asset, name) is None:
                setattr(asset, name, value)
                changed = True
        if changed:
            db.flush()
        return asset

    @staticmethod
    def get_assets(db: Session, asset_ids: Iterable[str]) -> list[Asset]:
        ids = list(asset_ids)
        if not ids:
            return []
        return db.query(Asset).filter(Asset.id.in_(ids)).order_by(Asset.id).all()

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    @staticmethod
    def add_position_assets(db: Session, rows: list[dict[str, Any]]) -> int:
        """Insert asset-side positions in one batch. Returns the row count."""
        if not rows:
            return 0
        db.add_all(PositionAsset(**row) for row in rows)
        db.flush()
        return len(rows)

    @staticmethod
    def add_position_liabilities(db: Session, rows: list[dict[str, Any]]) -> int:
        """Insert liability-side positions in one batch. Returns the row count."""
        if not rows:
            return 0
        db.add_all(PositionLiability(**row) for row in rows)
        db.flush()
        return len(rows)

    @staticmethod
    def _list_positions(
        db: Session,
        model: type[PositionAsset] | type[PositionLiability],
        snapshot_id: str,
        wallet_id: Optional[str] = None,
        chain_key: Optional[str] = None,
        protocol: Optional[str] = None,
    ) -> list:
        query = db.query(model).filter(model.snapshot_id == snapshot_id)
        if wallet_id:
            query = query.filter(model.wallet_id == wallet_id)
        if chain_key:
            query = query.filter(model.chain_key == chain_key)
        if protocol:
            query = query.filter(model.protocol == protocol)
        # Largest value first, unpriced rows last
        return query.order_by(
            model.value_quote.is_(None),
            model.value_quote.desc(),
            model.created_at,
            model.id,
        ).all()

    @staticmethod
    def list_position_assets(
        db: Session,
        snapshot_id: str,
        wallet_id: Optional[str] = None,
        chain_key: Optional[str] = None,
        protocol: Optional[str] = None,
    ) -> list[PositionAsset]:
        """Asset-side positions, optionally filtered, by value descending."""
        return SnapshotRepository._list_positions(
            db, PositionAsset, snapshot_id, wallet_id, chain_key, protocol
        )

    @staticmethod
    def list_position_liabilities(
        db: Session,
        snapshot_id: str,
        wallet_id: Optional[str] = None,
        chain_key: Optional[str] = None,
        protocol: Optional[str] = None,
    ) -> list[PositionLiability]:
        """Liability-side positions, optionally filtered, by value descending."""
        return SnapshotRepository._list_positions(
            db, PositionLiability, snapshot_id, wallet_id, chain_key, protocol
        )

    @staticmethod
    def count_positions(db: Session, snapshot_id: str) -> int:
        """Total asset plus liability rows for a snapshot."""
        assets = (
            db.query(func.count(PositionAsset.id))
            .filter(PositionAsset.snapshot_id == snapshot_id)
            .scalar()
        )
        liabilities = (
            db.query(func.count(PositionLiability.id))
            .filter(PositionLiability.snapshot_id == snapshot_id)
            .scalar()
        )
        return (assets or 0) + (liabilities or 0)

    # ------------------------------------------------------------------
    # Price cache
    # ------------------------------------------------------------------

    @staticmethod
    def get_fresh_cached_prices(
        db: Session,
        asset_ids: Iterable[str],
        quote_currency: str,
        fetched_since: datetime,
    ) -> dict[str, CachedPrice]:
        """Newest cached price per asset fetched at or after ``fetched_since``."""
        ids = list(asset_ids)
        if not ids:
            return {}
        rows = (
            db.query(CachedPrice)
            .filter(
                CachedPrice.asset_id.in_(ids),
                CachedPrice.quote_currency == quote_currency,
                CachedPrice.fetched_at >= fetched_since,
            )
            .order_by(CachedPrice.fetched_at.desc())
            .all()
        )
        newest: dict[str, CachedPrice] = {}
        for row in rows:
            newest.setdefault(row.asset_id, row)
        return newest

    @staticmethod
    def insert_cached_prices(
        db: Session,
        snapshot_id: str,
        quote_currency: str,
        quotes: list[PriceQuote],
        fetched_at: datetime,
    ) -> int:
        """Append price rows for a snapshot, skipping assets it already has.

        Returns:
            Number of rows inserted
        """
        if not quotes:
            return 0
        existing = {
            asset_id
            for (asset_id,) in db.query(CachedPrice.asset_id).filter(
                CachedPrice.snapshot_id == snapshot_id,
                CachedPrice.quote_currency == quote_currency,
                CachedPrice.asset_id.in_([q.asset_id for q in quotes]),
            )
        }
        inserted = 0
        for quote in quotes:
            if quote.asset_id in existing:
                continue
            existing.add(quote.asset_id)
            db.add(
                CachedPrice(
                    snapshot_id=snapshot_id,
                    asset_id=quote.asset_id,
                    quote_currency=quote_currency,
                    price=quote.price,
                    source=quote.source,
                    fetched_at=fetched_at,
                    meta_json={"provider": quote.source},
                )
            )
            inserted += 1
        db.flush()
        return inserted

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    @staticmethod
    def get_summary(db: Session, snapshot_id: str) -> Optional[SnapshotSummary]:
        return db.query(SnapshotSummary).filter_by(snapshot_id=snapshot_id).first()

    @staticmethod
    def upsert_summary(db: Session, snapshot_id: str, **values: Any) -> SnapshotSummary:
        """Create or overwrite the summary row for a snapshot."""
        summary = SnapshotRepository.get_summary(db, snapshot_id)
        if summary is None:
            summary = SnapshotSummary(snapshot_id=snapshot_id, **values)
            db.add(summary)
        else:
            for name, value in values.items():
                setattr(summary, name, value)
        db.flush()
        return summary
