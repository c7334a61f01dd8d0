"""Snapshot orchestrator - drives one refresh from RUNNING to a terminal status.

Phases:
1. Mark disabled sources as skipped
2. Run every enabled position source on the scheduler (barrier)
3. Resolve prices under the ``prices`` source run
4. Value positions and upsert the summary
5. Finalize the snapshot status exactly once
"""

import logging
from contextlib import contextmanager
from functools import partial
from typing import Callable, Iterable, Iterator, Optional

from sqlalchemy.orm import Session, selectinload

from config import Settings, settings
from database import get_session_local
from integrations.exceptions import PriceFeedError, SourceError, SourceNotConfiguredError
from integrations.source_protocol import SourceRunInput, SourceRunner, WalletInput
from integrations.source_registry import get_price_feed, get_price_oracles, get_source_registry
from models import (
    ALL_SOURCE_KEYS,
    Snapshot,
    SnapshotStatus,
    SourceKey,
    SourceRunStatus,
)
from models.enums import is_source_key
from services.portfolio_valuation_service import PortfolioValuationService
from services.price_resolution_service import PriceResolver
from services.snapshot_repository import SnapshotRepository
from services.source_scheduler import SourceScheduler

logger = logging.getLogger(__name__)

ERR_SOURCE_RUN = SourceError.error_code
ERR_PRICES = PriceFeedError.error_code
ERR_NO_PRICES = "ERR_NO_PRICES"
ERR_ESCAPED = "ERR_SOURCE_ESCAPED"


def derive_snapshot_status(
    run_statuses: Iterable[str],
    total_positions: int,
    coverage_pct: float,
) -> SnapshotStatus:
    """Terminal status from the enabled runs' statuses, position count and coverage.

    FAILED when nothing succeeded or nothing was found, SUCCESS only when
    every enabled run succeeded and every position is priced, PARTIAL
    otherwise.
    """
    statuses = list(run_statuses)
    any_success = any(s == SourceRunStatus.SUCCESS.value for s in statuses)
    all_success = all(s == SourceRunStatus.SUCCESS.value for s in statuses)
    any_failed = any(s == SourceRunStatus.FAILED.value for s in statuses)

    if not any_success or total_positions == 0:
        return SnapshotStatus.FAILED
    if all_success and not any_failed and coverage_pct >= 100:
        return SnapshotStatus.SUCCESS
    return SnapshotStatus.PARTIAL


def _status_note(
    status: SnapshotStatus,
    failed_keys: list[str],
    total_positions: int,
    coverage_pct: float,
) -> Optional[str]:
    if status == SnapshotStatus.SUCCESS:
        return None
    parts = []
    if failed_keys:
        parts.append(f"Failed sources: {', '.join(failed_keys)}")
    if total_positions == 0:
        parts.append("No positions found")
    elif coverage_pct < 100:
        parts.append(f"Priced coverage {coverage_pct:.1f}%")
    return "; ".join(parts) or None


def finalize_snapshot(db: Session, snapshot_id: str, enabled_sources: Iterable[str]) -> Snapshot:
    """Derive and persist the terminal status of a RUNNING snapshot.

    Raises:
        InvalidTransitionError: If the snapshot was already finalized.
    """
    enabled = set(enabled_sources)
    runs = [
        run for run in SnapshotRepository.list_source_runs(db, snapshot_id)
        if run.source_key in enabled
    ]
    total_positions = SnapshotRepository.count_positions(db, snapshot_id)
    summary = SnapshotRepository.get_summary(db, snapshot_id)
    coverage = summary.priced_coverage_pct if summary is not None else 0.0

    status = derive_snapshot_status([run.status for run in runs], total_positions, coverage)
    failed_keys = [run.source_key for run in runs if run.status == SourceRunStatus.FAILED.value]
    snapshot = SnapshotRepository.finish_snapshot(
        db,
        snapshot_id,
        status,
        notes=_status_note(status, failed_keys, total_positions, coverage),
    )
    logger.info(
        "Snapshot %s finished %s (%d positions, coverage %.1f%%)",
        snapshot_id[:8], status.value, total_positions, coverage,
    )
    return snapshot


class SnapshotOrchestrator:
    """Runs snapshot refreshes against injected sources, resolver and valuator.

    Every phase and every source task gets its own session from
    ``session_factory`` so source tasks can run on worker threads.

    Example:
        orchestrator = build_orchestrator()
        snapshot = orchestrator.create_snapshot("USD")
        orchestrator.refresh(snapshot.id, "USD")
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        runners: dict[str, SourceRunner],
        price_resolver: PriceResolver,
        valuator: Optional[PortfolioValuationService] = None,
        concurrency: int = 1,
    ):
        """Initialize with explicit dependencies.

        Args:
            session_factory: Returns a new Session (e.g. a sessionmaker).
            runners: source_key -> runner for the position sources.
            price_resolver: Resolver used by the ``prices`` source.
            valuator: Applies prices and computes the summary.
            concurrency: Worker pool size for position sources.
        """
        self._session_factory = session_factory
        self._runners = dict(runners)
        self._resolver = price_resolver
        self._valuator = valuator or PortfolioValuationService()
        self._scheduler = SourceScheduler(concurrency)

    @property
    def price_resolver(self) -> PriceResolver:
        return self._resolver

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def resolve_enabled_sources(enabled_sources: Optional[Iterable[str]] = None) -> list[str]:
        """Validate requested source keys and return them in canonical order.

        ``None`` enables every known source.

        Raises:
            ValueError: If any key is unknown.
        """
        if enabled_sources is None:
            return list(ALL_SOURCE_KEYS)
        requested = list(dict.fromkeys(enabled_sources))
        unknown = [key for key in requested if not is_source_key(key)]
        if unknown:
            raise ValueError(f"Unknown sources: {', '.join(unknown)}")
        return [key for key in ALL_SOURCE_KEYS if key in requested]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create_snapshot(
        self,
        quote_currency: str = "USD",
        enabled_sources: Optional[Iterable[str]] = None,
    ) -> Snapshot:
        """Insert a RUNNING snapshot plus a PENDING run for every known source.

        Returns:
            The committed snapshot, detached from its session

        Raises:
            ValueError: If ``enabled_sources`` names an unknown source.
        """
        self.resolve_enabled_sources(enabled_sources)
        db = self._session_factory()
        try:
            snapshot = SnapshotRepository.create_snapshot(db, quote_currency, ALL_SOURCE_KEYS)
            db.commit()
            db.refresh(snapshot)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info("Created snapshot %s (%s)", snapshot.id[:8], snapshot.quote_currency)
        return snapshot

    def run_snapshot(
        self,
        snapshot_id: str,
        quote_currency: str = "USD",
        enabled_sources: Optional[Iterable[str]] = None,
    ) -> SnapshotStatus:
        """Run every phase for a RUNNING snapshot and finalize it.

        Returns:
            The terminal status

        Raises:
            Exception: Anything outside the per-source and price boundaries
                (database errors, invalid transitions). ``refresh`` turns
                these into a FAILED snapshot.
        """
        enabled = self.resolve_enabled_sources(enabled_sources)
        disabled = [key for key in ALL_SOURCE_KEYS if key not in enabled]

        with self._session_scope() as db:
            if disabled:
                SnapshotRepository.mark_sources_skipped(db, snapshot_id, disabled)
            wallets = [
                WalletInput(id=w.id, address=w.address, type=w.type)
                for w in SnapshotRepository.list_active_wallets(db)
            ]

        logger.info(
            "Snapshot %s: %d sources enabled, %d skipped, %d wallets",
            snapshot_id[:8], len(enabled), len(disabled), len(wallets),
        )

        source_input = SourceRunInput(snapshot_id=snapshot_id, wallets=wallets)
        position_keys = [key for key in enabled if key != SourceKey.PRICES.value]
        escaped = self._scheduler.run([
            (key, partial(self._run_source, snapshot_id, key, source_input))
            for key in position_keys
        ])
        if escaped:
            self._fail_escaped_runs(snapshot_id, escaped)

        prices: Optional[dict[str, str]] = None
        if SourceKey.PRICES.value in enabled:
            prices = self._run_prices(snapshot_id, quote_currency)

        with self._session_scope() as db:
            self._valuator.run(db, snapshot_id, prices)
            snapshot = finalize_snapshot(db, snapshot_id, enabled)
            status = SnapshotStatus(snapshot.status)
        return status

    def refresh(
        self,
        snapshot_id: str,
        quote_currency: str = "USD",
        enabled_sources: Optional[Iterable[str]] = None,
    ) -> SnapshotStatus:
        """Background entry point: run the snapshot, never raise.

        A failure in the control flow itself moves the snapshot from
        RUNNING to FAILED with a diagnostic note.
        """
        try:
            return self.run_snapshot(snapshot_id, quote_currency, enabled_sources)
        except Exception as e:
            logger.exception("Snapshot %s refresh aborted", snapshot_id[:8])
            self._fail_snapshot(snapshot_id, f"Refresh aborted: {e.__class__.__name__}: {e}")
            return SnapshotStatus.FAILED

    def get_status(self, snapshot_id: str) -> Optional[Snapshot]:
        """Load a snapshot with its source runs and summary (detached)."""
        db = self._session_factory()
        try:
            return (
                db.query(Snapshot)
                .options(selectinload(Snapshot.source_runs), selectinload(Snapshot.summary))
                .filter_by(id=snapshot_id)
                .first()
            )
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _run_source(self, snapshot_id: str, source_key: str, source_input: SourceRunInput) -> None:
        """Per-task wrapper: RUNNING, run, then exactly one terminal stamp."""
        with self._session_scope() as db:
            SnapshotRepository.mark_source_running(db, snapshot_id, source_key)

        db = self._session_factory()
        try:
            runner = self._runners.get(source_key)
            if runner is None:
                raise SourceNotConfiguredError(
                    f"No runner registered for source '{source_key}'", source_key
                )
            result = runner.run(db, source_input)
            meta = {
                **result.meta,
                "positions_asset_count": result.positions_asset_count,
                "positions_liability_count": result.positions_liability_count,
            }
            SnapshotRepository.mark_source_succeeded(db, snapshot_id, source_key, meta)
            db.commit()
            logger.info(
                "Source %s: %d assets, %d liabilities",
                source_key, result.positions_asset_count, result.positions_liability_count,
            )
        except Exception as e:
            # Partial writes from the runner go with the rollback
            db.rollback()
            error_code = e.error_code if isinstance(e, SourceError) else ERR_SOURCE_RUN
            logger.warning("Source %s failed: %s", source_key, e, exc_info=True)
            SnapshotRepository.mark_source_failed(
                db,
                snapshot_id,
                source_key,
                error_code=error_code,
                error_message=str(e) or e.__class__.__name__,
                meta={"error_type": e.__class__.__name__},
            )
            db.commit()
        finally:
            db.close()

    def _fail_escaped_runs(self, snapshot_id: str, source_keys: list[str]) -> None:
        """Give a terminal status to runs whose wrapper could not record one."""
        with self._session_scope() as db:
            for source_key in source_keys:
                run = SnapshotRepository.get_source_run(db, snapshot_id, source_key)
                if run is None or run.status in (
                    SourceRunStatus.SUCCESS.value, SourceRunStatus.FAILED.value
                ):
                    continue
                if run.status == SourceRunStatus.PENDING.value:
                    SnapshotRepository.mark_source_running(db, snapshot_id, source_key)
                SnapshotRepository.mark_source_failed(
                    db,
                    snapshot_id,
                    source_key,
                    error_code=ERR_ESCAPED,
                    error_message="Source task ended without recording a result",
                )

    def _run_prices(self, snapshot_id: str, quote_currency: str) -> Optional[dict[str, str]]:
        """Resolve prices under the ``prices`` run. Returns None on failure."""
        source_key = SourceKey.PRICES.value
        with self._session_scope() as db:
            SnapshotRepository.mark_source_running(db, snapshot_id, source_key)

        db = self._session_factory()
        try:
            resolution = self._resolver.resolve(db, snapshot_id, quote_currency)
            meta = resolution.to_meta()
            if resolution.priced_count == 0:
                SnapshotRepository.mark_source_failed(
                    db,
                    snapshot_id,
                    source_key,
                    error_code=ERR_NO_PRICES,
                    error_message=f"No prices obtained for {resolution.asset_count} assets",
                    meta=meta,
                )
            else:
                SnapshotRepository.mark_source_succeeded(db, snapshot_id, source_key, meta)
            db.commit()
            return resolution.prices
        except Exception as e:
            db.rollback()
            logger.error("Price resolution failed for snapshot %s: %s", snapshot_id[:8], e, exc_info=True)
            SnapshotRepository.mark_source_failed(
                db,
                snapshot_id,
                source_key,
                error_code=ERR_PRICES,
                error_message=str(e) or e.__class__.__name__,
                meta={"error_type": e.__class__.__name__},
            )
            db.commit()
            return None
        finally:
            db.close()

    def _fail_snapshot(self, snapshot_id: str, note: str) -> None:
        try:
            with self._session_scope() as db:
                snapshot = SnapshotRepository.get_snapshot(db, snapshot_id)
                if snapshot is None or snapshot.is_terminal:
                    return
                SnapshotRepository.finish_snapshot(db, snapshot_id, SnapshotStatus.FAILED, notes=note)
        except Exception:
            logger.exception("Could not mark snapshot %s as FAILED", snapshot_id[:8])


def build_orchestrator(
    config: Optional[Settings] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> SnapshotOrchestrator:
    """Wire an orchestrator from settings (mock or real sources and feed)."""
    config = config or settings
    if session_factory is None:
        session_factory = get_session_local()

    resolver = PriceResolver(
        get_price_feed(config),
        oracles=get_price_oracles(config),
        cache_window=config.price_cache_window,
        pipeline_timeout=config.PRICE_PIPELINE_TIMEOUT_SECONDS,
    )
    return SnapshotOrchestrator(
        session_factory,
        get_source_registry(config).runners(),
        resolver,
        PortfolioValuationService(),
        concurrency=config.REFRESH_CONCURRENCY,
    )
