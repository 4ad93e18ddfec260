"""
Reconciliation API Endpoints

REST API for the payment reconciliation engine:
- POST /api/reconciliation/run - Run one reconciliation pass (internal key)
- GET /api/reconciliation/status - Module status and last run
- GET /api/reconciliation/currencies - Supported currencies and tolerances
"""

import logging
from typing import Optional, List
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from middleware.internal_auth import InternalService, require_internal_service
from reconciliation.exceptions import PendingLoadError
from reconciliation.scheduler import ReconciliationScheduler
from reconciliation.source_registry import currency_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reconciliation", tags=["Reconciliation"])


# ==================== Response Models ====================

class InvoiceErrorResponse(BaseModel):
    invoiceId: str
    invoiceNumber: str
    kind: str
    error: str


class AmbiguousMatchResponse(BaseModel):
    invoiceId: str
    invoiceNumber: str
    chosen: str
    candidates: List[str]


class ReconciliationRunResponse(BaseModel):
    """Summary of one reconciliation pass."""
    runId: str
    trigger: str
    startedAt: str
    finishedAt: Optional[str]
    checked: int = Field(..., description="Unpaid invoices with a payment address")
    detected: int = Field(..., description="Invoices with a matching transfer")
    updated: int = Field(..., description="Invoices marked PAID by this pass")
    updatedIds: List[str]
    conflicts: int = Field(..., description="Matches already settled by another pass")
    errors: List[InvoiceErrorResponse]
    ambiguous: List[AmbiguousMatchResponse]
    truncated: List[str]


# ==================== Dependencies ====================

def get_scheduler(request: Request) -> ReconciliationScheduler:
    scheduler = getattr(request.app.state, "reconciliation_scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Reconciliation service not initialised")
    return scheduler


# ==================== Endpoints ====================

@router.get("/status", summary="Module status")
async def get_module_status(scheduler: ReconciliationScheduler = Depends(get_scheduler)):
    """
    Get reconciliation module status.

    Returns the configured transfer source, scheduler state and the
    summary of the most recent pass run by this process.
    """
    return {
        "module": "reconciliation",
        "status": "operational",
        "source": scheduler.service.source.describe(),
        "treat_weth_as_eth": scheduler.service.rules.treat_weth_as_eth,
        "scheduler": scheduler.status(),
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/currencies", summary="List supported currencies")
async def list_currencies():
    """
    List currencies an invoice can be reconciled in, with matching tolerances.
    """
    configs = currency_registry.get_all_configs()
    return {
        "currencies": [cfg.to_dict() for cfg in configs],
        "count": len(configs)
    }


@router.post("/run", response_model=ReconciliationRunResponse, summary="Run reconciliation pass")
async def run_reconciliation(
    scheduler: ReconciliationScheduler = Depends(get_scheduler),
    service: InternalService = Depends(require_internal_service)
):
    """
    Run one reconciliation pass.

    This will:
    1. Load unpaid invoices that have a payment address
    2. Fetch incoming transfers for each address
    3. Match transfers to invoices (tolerance + one transaction per invoice)
    4. Mark matched invoices PAID

    Per-invoice failures are returned in `errors`; the call only fails when
    the pending invoices cannot be loaded.

    Requires internal API key authentication.
    """
    logger.info(f"Reconciliation pass requested by {service.name}")
    try:
        result = await scheduler.run_now(trigger="api")
    except PendingLoadError as e:
        logger.error(f"Reconciliation run failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to load pending invoices")

    return result.to_dict()
