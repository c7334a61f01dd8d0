"""Integration tests for the refresh API."""

from models import ALL_SOURCE_KEYS, Wallet, WalletType


def _seed_wallets(session_factory):
    db = session_factory()
    try:
        db.add(Wallet(address="0xabc0000000000000000000000000000000000001", type=WalletType.EVM.value))
        db.add(Wallet(address="So11111111111111111111111111111111111111112", type=WalletType.SOLANA.value))
        db.commit()
    finally:
        db.close()


class TestStartRefresh:
    """Tests for POST /api/refresh."""

    def test_returns_accepted_and_runs_in_background(self, client, session_factory):
        """The refresh is queued, then completes with every mock source."""
        _seed_wallets(session_factory)

        response = client.post("/api/refresh", json={"quote_currency": "usd"})
        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "RUNNING"
        snapshot_id = data["snapshot_id"]

        status = client.get(f"/api/refresh/{snapshot_id}/status")
        assert status.status_code == 200
        body = status.json()
        assert body["status"] == "SUCCESS"
        assert body["quote_currency"] == "USD"
        assert body["finished_at"] is not None
        runs = {r["source_key"]: r for r in body["source_runs"]}
        assert sorted(runs) == sorted(ALL_SOURCE_KEYS)
        assert runs["wallet_evm_balances"]["meta_json"]["positions_asset_count"] == 1
        assert runs["wallet_solana_balances"]["meta_json"]["positions_asset_count"] == 1
        assert runs["prices"]["meta_json"]["priced_count"] == 2

    def test_enabled_sources_subset(self, client, session_factory):
        """Sources left out of enabled_sources are recorded as skipped."""
        _seed_wallets(session_factory)

        response = client.post(
            "/api/refresh",
            json={"enabled_sources": ["wallet_solana_balances", "prices", "prices"]},
        )
        snapshot_id = response.json()["snapshot_id"]

        body = client.get(f"/api/refresh/{snapshot_id}/status").json()
        runs = {r["source_key"]: r for r in body["source_runs"]}
        assert runs["wallet_evm_balances"]["meta_json"] == {"skipped": True}
        assert runs["wallet_solana_balances"]["meta_json"]["positions_asset_count"] == 1
        assert body["status"] == "SUCCESS"

    def test_no_wallets_fails_snapshot(self, client):
        """With nothing to value the snapshot ends FAILED."""
        response = client.post("/api/refresh", json={})
        snapshot_id = response.json()["snapshot_id"]

        body = client.get(f"/api/refresh/{snapshot_id}/status").json()
        assert body["status"] == "FAILED"
        assert "No positions found" in body["notes"]

    def test_unknown_source_rejected(self, client):
        """Unknown source keys are a 400."""
        response = client.post(
            "/api/refresh",
            json={"enabled_sources": ["wallet_evm_balances", "marginfi"]},
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid sources: marginfi"

    def test_blank_quote_currency_rejected(self, client):
        """quote_currency must look like a currency code."""
        response = client.post("/api/refresh", json={"quote_currency": "U"})
        assert response.status_code == 422


class TestRefreshStatus:
    """Tests for GET /api/refresh/{snapshot_id}/status."""

    def test_unknown_snapshot(self, client):
        """Returns 404 for an unknown snapshot id."""
        response = client.get("/api/refresh/does-not-exist/status")
        assert response.status_code == 404
        assert response.json()["detail"] == "Snapshot not found"
