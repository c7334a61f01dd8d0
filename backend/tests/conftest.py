"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.fx import get_price_feed as get_price_feed_for_fx
from api.refresh import get_orchestrator as get_orchestrator_for_refresh
from database import Base, get_db
from integrations.mock_sources import MockPriceFeed
from integrations.source_registry import SourceRegistry
from main import app
from services.portfolio_valuation_service import PortfolioValuationService
from services.price_resolution_service import PriceResolver
from services.snapshot_orchestrator import SnapshotOrchestrator
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import (  # noqa: F401
    eth_asset,
    evm_wallet,
    snapshot,
    sol_asset,
    solana_wallet,
    usdc_base_asset,
)


@pytest.fixture(name="db")
def db_fixture():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(name="session_factory")
def session_factory_fixture(tmp_path):
    """A sessionmaker over a file database, safe to use from worker threads."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'snapshots.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(name="make_orchestrator")
def make_orchestrator_fixture(session_factory):
    """Build an orchestrator over the file database with injectable parts."""

    def _make(runners=None, price_feed=None, oracles=None, concurrency=1, **resolver_kwargs):
        if runners is None:
            registry = SourceRegistry()
            registry.initialize_mock_sources()
            runners = registry.runners()
        resolver = PriceResolver(price_feed or MockPriceFeed(), oracles=oracles, **resolver_kwargs)
        return SnapshotOrchestrator(
            session_factory,
            runners,
            resolver,
            PortfolioValuationService(),
            concurrency=concurrency,
        )

    return _make


@pytest.fixture(name="client")
def client_fixture(session_factory, make_orchestrator):
    """Create a test client backed by mock sources and the file database."""

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    orchestrator = make_orchestrator()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_orchestrator_for_refresh] = lambda: orchestrator
    app.dependency_overrides[get_price_feed_for_fx] = lambda: MockPriceFeed(price="0.92")
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
