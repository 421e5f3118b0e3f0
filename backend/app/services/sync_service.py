"""
Sync Service - entry points for externally scheduled synchronization

When the background pollers are not running (SIIGO_AUTO_START off, or a
host that sleeps between requests) a cron job can drive the same work
through /api/v1/sync:
- invoice cycle: new invoice detection + order updates
- stock cycle: scheduled stock refresh of the oldest synced products

Author: Equipo Gestión de Pedidos
Date: 2025-09-09
"""
import time
import asyncio
import logging
from typing import Dict, List, Optional, Any
from datetime import datetime
from dataclasses import dataclass, field

from app.repositories.order_repository import OrderRepository
from app.repositories.product_repository import ProductRepository
from app.repositories.sync_log_repository import (
    SyncLogRepository, SYNC_TYPE_IMPORT, SYNC_TYPE_UPDATE, STATUS_SUCCESS, STATUS_UPDATED,
)
from app.services.siigo_update_service import SiigoUpdateService, get_siigo_update_service
from app.services.stock_sync_service import StockSyncService, get_stock_sync_service

logger = logging.getLogger(__name__)


# ============================================================================
# Response Models (dataclasses for type safety)
# ============================================================================

@dataclass
class InvoiceSyncResult:
    success: bool
    message: str
    new_invoices: int
    invoices_checked: int
    orders_updated: int
    errors: int
    duration_seconds: float


@dataclass
class StockSyncResult:
    success: bool
    message: str
    products_processed: int
    errors: int
    duration_seconds: float


@dataclass
class FullSyncResult:
    success: bool
    message: str
    invoices: Optional[InvoiceSyncResult] = None
    stock: Optional[StockSyncResult] = None
    errors: List[str] = field(default_factory=list)
    total_duration_seconds: float = 0.0


# ============================================================================
# Sync Service
# ============================================================================

class SyncService:
    """Runs one pass of each background job on demand"""

    def __init__(self, update_service: SiigoUpdateService = None,
                 stock_sync_service: StockSyncService = None,
                 sync_log_repository: SyncLogRepository = None,
                 order_repository: OrderRepository = None,
                 product_repository: ProductRepository = None):
        self._update_service = update_service
        self._stock_sync_service = stock_sync_service
        self.sync_log = sync_log_repository or SyncLogRepository()
        self.orders = order_repository or OrderRepository()
        self.products = product_repository or ProductRepository()

    # Resolved lazily so building the router doesn't touch SIIGO settings
    @property
    def update_service(self) -> SiigoUpdateService:
        if self._update_service is None:
            self._update_service = get_siigo_update_service()
        return self._update_service

    @property
    def stock_sync_service(self) -> StockSyncService:
        if self._stock_sync_service is None:
            self._stock_sync_service = get_stock_sync_service()
        return self._stock_sync_service

    # =========================================================================
    # Status Methods
    # =========================================================================

    async def get_sync_status(self) -> Dict[str, Any]:
        """Last import/update timestamps, imported order count and stock sync time"""
        return await asyncio.to_thread(self._collect_status)

    def _collect_status(self) -> Dict[str, Any]:
        orders = self.orders.count_from_siigo()
        stock = self.products.get_stock_stats()

        return {
            "last_invoice_import": self.sync_log.get_last_processed_at(SYNC_TYPE_IMPORT, STATUS_SUCCESS),
            "last_invoice_update": self.sync_log.get_last_processed_at(SYNC_TYPE_UPDATE, STATUS_UPDATED),
            "orders_count": orders['orders_count'],
            "last_invoice_date": orders['last_invoice_date'],
            "products_count": stock.get('total_products') or 0,
            "last_stock_sync": stock.get('last_sync_time'),
        }

    # =========================================================================
    # Sync runs
    # Both jobs block on requests/psycopg2/time.sleep, so they run in a
    # worker thread and the event loop keeps serving other requests.
    # =========================================================================

    async def sync_invoices(self) -> InvoiceSyncResult:
        start_time = time.time()
        cycle = await asyncio.to_thread(self.update_service.update_processed_invoices)

        return InvoiceSyncResult(
            success=cycle.errors == 0,
            message=(
                f"{cycle.new_invoices} facturas nuevas, {cycle.updated} pedidos actualizados"
                if cycle.errors == 0 else f"Ciclo completado con {cycle.errors} errores"
            ),
            new_invoices=cycle.new_invoices,
            invoices_checked=cycle.checked,
            orders_updated=cycle.updated,
            errors=cycle.errors,
            duration_seconds=round(time.time() - start_time, 2),
        )

    async def sync_stock(self) -> StockSyncResult:
        start_time = time.time()
        counts = await asyncio.to_thread(self.stock_sync_service.sync_product_stock)

        return StockSyncResult(
            success=counts['errors'] == 0,
            message=f"{counts['updated']} productos sincronizados",
            products_processed=counts['updated'],
            errors=counts['errors'],
            duration_seconds=round(time.time() - start_time, 2),
        )

    async def run_full_sync(self) -> FullSyncResult:
        """
        Invoices then stock; a failing step doesn't prevent the next one

        Returns:
            FullSyncResult, success only when both steps succeeded
        """
        logger.info("Starting full sync")
        start_time = time.time()
        errors: List[str] = []
        invoices = None
        stock = None

        try:
            invoices = await self.sync_invoices()
        except Exception as e:
            logger.error(f"Invoice sync failed: {e}")
            errors.append(f"invoices: {e}")

        try:
            stock = await self.sync_stock()
        except Exception as e:
            logger.error(f"Stock sync failed: {e}")
            errors.append(f"stock: {e}")

        success = not errors and bool(invoices and invoices.success) and bool(stock and stock.success)
        duration = round(time.time() - start_time, 2)
        logger.info(f"Full sync finished in {duration}s (success={success})")

        return FullSyncResult(
            success=success,
            message="Full sync completed" if success else "Sync completed with errors",
            invoices=invoices,
            stock=stock,
            errors=errors,
            total_duration_seconds=duration,
        )

    def health(self) -> Dict[str, Any]:
        return {
            "status": "healthy",
            "service": "sync",
            "timestamp": datetime.now().isoformat(),
        }
