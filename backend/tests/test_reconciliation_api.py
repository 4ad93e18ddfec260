"""
Reconciliation API Tests

Tests for the reconciliation endpoints:
- GET /api/reconciliation/status - Module status (public)
- GET /api/reconciliation/currencies - Currency tolerances (public)
- POST /api/reconciliation/run - Run a pass (internal key)

The router is mounted on a bare FastAPI app with an in-memory store
and transfer source behind the scheduler.

Run with: pytest tests/test_reconciliation_api.py -v
"""

import pytest
from fastapi import APIRouter, FastAPI
from fastapi.testclient import TestClient

from conftest import ADDRESS_A, ADDRESS_B, FakeInvoiceStore, FakeTransferSource, make_invoice, make_transfer
from reconciliation.endpoints.reconciliation_api import router
from reconciliation.exceptions import SourceUnavailable
from reconciliation.scheduler import ReconciliationScheduler
from reconciliation.services.reconciliation_service import ReconciliationService

API_KEY = "test-internal-key"


@pytest.fixture(autouse=True)
def internal_keys(monkeypatch):
    monkeypatch.setattr("middleware.internal_auth._get_valid_api_keys", lambda: {API_KEY})


@pytest.fixture
def store():
    return FakeInvoiceStore([
        make_invoice("inv-1", "1.0", address=ADDRESS_A, minutes=0),
        make_invoice("inv-2", "2.0", address=ADDRESS_B, minutes=1),
    ])


@pytest.fixture
def source():
    return FakeTransferSource({ADDRESS_A: [make_transfer("0x1", "1.0")]})


@pytest.fixture
def app(store, source):
    app = FastAPI()
    api_router = APIRouter(prefix="/api")
    api_router.include_router(router)
    app.include_router(api_router)
    service = ReconciliationService(store=store, source=source)
    app.state.reconciliation_scheduler = ReconciliationScheduler(service)
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def auth_headers():
    return {"X-Internal-Api-Key": API_KEY, "X-Service-Name": "cron"}


class TestPublicEndpoints:

    def test_status_endpoint(self, client):
        response = client.get("/api/reconciliation/status")

        assert response.status_code == 200
        data = response.json()
        assert data["module"] == "reconciliation"
        assert data["status"] == "operational"
        assert data["source"]["source"] == "ASSET_TRANSFERS"
        assert data["treat_weth_as_eth"] is False
        assert data["scheduler"]["scheduled"] is False
        assert data["scheduler"]["last_result"] is None

    def test_currencies_endpoint(self, client):
        response = client.get("/api/reconciliation/currencies")

        assert response.status_code == 200
        data = response.json()
        by_symbol = {c["currency"]: c for c in data["currencies"]}
        assert data["count"] == 5
        assert by_symbol["ETH"]["tolerance"] == "0.0001"
        assert by_symbol["USDC"]["tolerance"] == "0.01"

    def test_status_without_scheduler_returns_503(self):
        app = FastAPI()
        app.include_router(router, prefix="/api")

        with TestClient(app) as client:
            response = client.get("/api/reconciliation/status")

        assert response.status_code == 503


class TestRunAuthentication:

    def test_missing_key_rejected(self, client):
        response = client.post("/api/reconciliation/run")

        assert response.status_code == 401

    def test_wrong_key_rejected(self, client):
        response = client.post("/api/reconciliation/run", headers={"X-Internal-Api-Key": "nope"})

        assert response.status_code == 403

    def test_unconfigured_keys_return_503(self, client, monkeypatch, auth_headers):
        monkeypatch.setattr("middleware.internal_auth._get_valid_api_keys", lambda: set())

        response = client.post("/api/reconciliation/run", headers=auth_headers)

        assert response.status_code == 503


class TestRunPass:

    def test_run_returns_summary(self, client, auth_headers, store):
        response = client.post("/api/reconciliation/run", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["trigger"] == "api"
        assert data["checked"] == 2
        assert data["detected"] == 1
        assert data["updated"] == 1
        assert data["updatedIds"] == ["inv-1"]
        assert data["conflicts"] == 0
        assert data["errors"] == []
        assert store.status["inv-1"] == "PAID"

    def test_run_reports_per_invoice_errors(self, client, auth_headers, source):
        source.failures[ADDRESS_B] = SourceUnavailable("ASSET_TRANSFERS", "HTTP 429")

        response = client.post("/api/reconciliation/run", headers=auth_headers)

        assert response.status_code == 200
        errors = response.json()["errors"]
        assert errors == [{
            "invoiceId": "inv-2",
            "invoiceNumber": "INV-inv-2",
            "kind": "source_unavailable",
            "error": "ASSET_TRANSFERS: HTTP 429",
        }]

    def test_last_result_visible_in_status(self, client, auth_headers):
        client.post("/api/reconciliation/run", headers=auth_headers)

        status = client.get("/api/reconciliation/status").json()

        assert status["scheduler"]["last_result"]["updated"] == 1
        assert status["scheduler"]["last_error"] is None

    def test_pending_load_failure_returns_500(self, client, auth_headers, store):
        store.fail_load = True

        response = client.post("/api/reconciliation/run", headers=auth_headers)

        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to load pending invoices"
