"""
Application Startup Tests

Tests the FastAPI lifespan wiring of the reconciliation scheduler:
- Misconfigured transfer source outside production starts with reconciliation disabled
- Misconfigured transfer source in production refuses to start
- Configured source exposes the scheduler on app.state

Run with: pytest tests/test_server.py -v
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

import server
from config import Settings
from conftest import FakeInvoiceStore, FakeTransferSource
from reconciliation.exceptions import SourceConfigurationError
from reconciliation.services.reconciliation_service import ReconciliationService


@pytest.fixture
def patched_server(monkeypatch):
    """Lifespan dependencies replaced so no database is needed."""
    engine = MagicMock()
    engine.dispose = AsyncMock()
    monkeypatch.setattr(server, "init_db", AsyncMock(return_value=True))
    monkeypatch.setattr(server, "get_engine", lambda: engine)
    monkeypatch.setattr(
        server, "validate_environment",
        lambda: {"valid": True, "errors": [], "warnings": []}
    )
    if hasattr(server.app.state, "reconciliation_scheduler"):
        del server.app.state.reconciliation_scheduler

    yield server

    if hasattr(server.app.state, "reconciliation_scheduler"):
        del server.app.state.reconciliation_scheduler


def use_environment(monkeypatch, environment):
    monkeypatch.setattr(
        server, "settings",
        Settings(_env_file=None, ENVIRONMENT=environment, RECONCILE_INTERVAL_SECONDS=0)
    )


class TestLifespan:

    def test_misconfigured_source_disables_reconciliation(self, patched_server, monkeypatch):
        use_environment(monkeypatch, "development")
        monkeypatch.setattr(
            patched_server, "build_reconciliation_service",
            MagicMock(side_effect=SourceConfigurationError("ALCHEMY_API_KEY or ALCHEMY_URL is required"))
        )

        with TestClient(patched_server.app) as client:
            response = client.get("/api/reconciliation/status")

        assert response.status_code == 503
        assert not hasattr(patched_server.app.state, "reconciliation_scheduler")

    def test_misconfigured_source_fails_startup_in_production(self, patched_server, monkeypatch):
        use_environment(monkeypatch, "production")
        monkeypatch.setattr(
            patched_server, "build_reconciliation_service",
            MagicMock(side_effect=SourceConfigurationError("CONTRACT_ADDRESS is required"))
        )

        with pytest.raises(SourceConfigurationError):
            with TestClient(patched_server.app):
                pass

    def test_configured_source_starts_scheduler(self, patched_server, monkeypatch):
        use_environment(monkeypatch, "development")
        service = ReconciliationService(store=FakeInvoiceStore([]), source=FakeTransferSource())
        monkeypatch.setattr(patched_server, "build_reconciliation_service", lambda settings: service)

        with TestClient(patched_server.app) as client:
            response = client.get("/api/reconciliation/status")

        assert response.status_code == 200
        assert response.json()["source"]["source"] == "ASSET_TRANSFERS"
        assert patched_server.app.state.reconciliation_scheduler.service is service
