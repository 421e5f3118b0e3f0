"""
Sync API - Scheduled synchronization endpoints
Designed to be called by cron-job.org or similar services

Endpoints:
- GET  /api/v1/sync/status     - Last import/update/stock sync (public)
- GET  /api/v1/sync/health     - Health check (public)
- POST /api/v1/sync/all        - Invoice cycle + stock sync (requires API key)

Security:
- POST endpoints require X-Sync-Key header with valid SYNC_API_KEY
- GET endpoints are public (read-only, no sensitive data)

Author: Equipo Gestión de Pedidos
Date: 2025-09-09
"""
from fastapi import APIRouter, HTTPException, Query, BackgroundTasks, Header, Depends
from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime
import logging

from app.core.config import settings
from app.services.sync_service import SyncService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/sync", tags=["Sync"])

sync_service = SyncService()


# ============================================================================
# Security - API Key Verification
# ============================================================================

async def verify_sync_key(x_sync_key: str = Header(None, alias="X-Sync-Key")):
    """
    Verify the X-Sync-Key header.

    Without SYNC_API_KEY configured every request is allowed (development).
    """
    if not settings.SYNC_API_KEY:
        logger.warning("SYNC_API_KEY not configured - sync endpoints are unprotected!")
        return

    if not x_sync_key:
        logger.warning("Sync request without X-Sync-Key header")
        raise HTTPException(status_code=401, detail="Missing X-Sync-Key header. Authentication required.")

    if x_sync_key != settings.SYNC_API_KEY:
        logger.warning("Invalid sync key attempt")
        raise HTTPException(status_code=401, detail="Invalid API key")


# ============================================================================
# Response Models
# ============================================================================

class SyncStatusResponse(BaseModel):
    last_invoice_import: Optional[datetime]
    last_invoice_update: Optional[datetime]
    orders_count: int
    last_invoice_date: Optional[datetime]
    products_count: int
    last_stock_sync: Optional[datetime]


class InvoiceSyncResponse(BaseModel):
    success: bool
    message: str
    new_invoices: int
    invoices_checked: int
    orders_updated: int
    errors: int
    duration_seconds: float


class StockSyncResponse(BaseModel):
    success: bool
    message: str
    products_processed: int
    errors: int
    duration_seconds: float


class FullSyncResponse(BaseModel):
    success: bool
    message: str
    invoice_sync: Optional[InvoiceSyncResponse]
    stock_sync: Optional[StockSyncResponse]
    errors: List[str] = []
    total_duration_seconds: float
    timestamp: datetime


# ============================================================================
# Endpoints
# ============================================================================

@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status():
    try:
        return await sync_service.get_sync_status()
    except Exception as e:
        logger.error(f"Error getting sync status: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/all", response_model=FullSyncResponse, dependencies=[Depends(verify_sync_key)])
async def sync_all(
    background_tasks: BackgroundTasks,
    run_in_background: bool = Query(default=False, description="Run sync in background")
):
    """
    Run one invoice cycle and one stock sync pass.

    Args:
        run_in_background: If True, start sync and return immediately
    """
    if run_in_background:
        background_tasks.add_task(sync_service.run_full_sync)
        return FullSyncResponse(
            success=True,
            message="Sync started in background",
            invoice_sync=None,
            stock_sync=None,
            total_duration_seconds=0,
            timestamp=datetime.now(),
        )

    result = await sync_service.run_full_sync()

    return FullSyncResponse(
        success=result.success,
        message=result.message,
        invoice_sync=InvoiceSyncResponse(**vars(result.invoices)) if result.invoices else None,
        stock_sync=StockSyncResponse(**vars(result.stock)) if result.stock else None,
        errors=result.errors,
        total_duration_seconds=result.total_duration_seconds,
        timestamp=datetime.now(),
    )


@router.get("/health")
async def sync_health():
    """Quick keep-alive ping"""
    return sync_service.health()
