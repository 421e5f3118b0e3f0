"""
SIIGO API Endpoints
Invoice listing and import, product import, stock reconciliation, customer
sync and the background service controls.

Endpoints that call SIIGO are plain `def` so FastAPI runs them in the
threadpool; the connector blocks while it waits for the rate limit.

Author: Equipo Gestión de Pedidos
Date: 2025-09-10
"""
import logging
from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.connectors.siigo_connector import SiigoAuthError, SiigoConnector, get_siigo_connector
from app.core.events import event_publisher
from app.services.customer_sync_service import CustomerSyncService
from app.services.product_import_service import ProductImportService
from app.services.siigo_import_service import SiigoImportService
from app.services.siigo_update_service import SiigoUpdateService, get_siigo_update_service
from app.services.stock_consistency_service import StockConsistencyService, get_stock_consistency_service
from app.services.stock_sync_service import StockSyncService, get_stock_sync_service

logger = logging.getLogger(__name__)
router = APIRouter()


# ============================================================================
# Request models
# ============================================================================

class ImportRequest(BaseModel):
    invoice_ids: List[str] = Field(default_factory=list)
    payment_method: str = 'transferencia'
    delivery_method: str = 'domicilio'


class EnqueueRequest(BaseModel):
    product_ids: List[int] = Field(default_factory=list)
    siigo_ids: List[str] = Field(default_factory=list)
    codes: List[str] = Field(default_factory=list)


# ============================================================================
# Dependencies
# ============================================================================

def get_connector() -> SiigoConnector:
    return get_siigo_connector()


def get_import_service() -> SiigoImportService:
    return SiigoImportService()


def get_product_import_service() -> ProductImportService:
    return ProductImportService()


def get_update_service() -> SiigoUpdateService:
    return get_siigo_update_service()


def get_consistency_service() -> StockConsistencyService:
    return get_stock_consistency_service()


def get_stock_service() -> StockSyncService:
    return get_stock_sync_service()


def get_customer_sync_service() -> CustomerSyncService:
    return CustomerSyncService()


# ============================================================================
# Invoices
# ============================================================================

@router.get("/invoices")
def list_invoices(
    page: int = Query(1, ge=1),
    page_size: int = Query(100, ge=1, le=100),
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD; defaults to configured start date or yesterday"),
    service: SiigoImportService = Depends(get_import_service),
):
    """SIIGO invoices with import status and customer data"""
    try:
        data = service.list_invoices(page=page, page_size=page_size, start_date=start_date)
    except SiigoAuthError as e:
        logger.error(f"SIIGO authentication error listing invoices: {e}")
        return JSONResponse(status_code=503, content={
            "success": False,
            "message": "Servicio SIIGO no disponible o no configurado",
            "error": "SIIGO_AUTH_ERROR",
        })
    except Exception as e:
        logger.error(f"Error listing SIIGO invoices: {e}")
        raise HTTPException(status_code=500, detail=f"Error obteniendo facturas de SIIGO: {e}")

    response = {
        "success": True,
        "data": {"results": data['results'], "pagination": data['pagination']},
    }
    if data.get('message'):
        response["message"] = data['message']
    return response


@router.post("/import")
def import_invoices(request: ImportRequest, service: SiigoImportService = Depends(get_import_service)):
    if not request.invoice_ids:
        raise HTTPException(status_code=400, detail="IDs de facturas requeridos")

    try:
        result = service.import_invoices(
            request.invoice_ids,
            payment_method=request.payment_method,
            delivery_method=request.delivery_method,
        )
    except Exception as e:
        logger.error(f"Error importing invoices: {e}")
        raise HTTPException(status_code=500, detail=f"Error importando facturas: {e}")

    return {
        "success": True,
        "message": result.message,
        "results": [asdict(r) for r in result.results],
        "summary": {
            "total": result.total,
            "successful": result.successful,
            "failed": result.failed,
            "duration_seconds": result.duration_seconds,
        },
    }


@router.get("/invoices/{invoice_id}")
def get_invoice(invoice_id: str, service: SiigoImportService = Depends(get_import_service)):
    try:
        invoice = service.get_invoice_with_customer(invoice_id)
    except Exception as e:
        logger.error(f"Error getting SIIGO invoice {invoice_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Error obteniendo detalles de la factura: {e}")

    if not invoice:
        raise HTTPException(status_code=404, detail="Factura no encontrada")

    return {"success": True, "data": invoice}


@router.post("/invoices/{invoice_id}/force-update")
def force_update_invoice(invoice_id: str, service: SiigoUpdateService = Depends(get_update_service)):
    try:
        return service.force_update_invoice(invoice_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error forcing update of invoice {invoice_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/updates/stats")
async def get_update_stats(service: SiigoUpdateService = Depends(get_update_service)):
    try:
        return {"success": True, "data": service.get_update_stats()}
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


# ============================================================================
# Status
# ============================================================================

@router.get("/connection/status")
def get_connection_status(connector: SiigoConnector = Depends(get_connector)):
    try:
        token = connector.authenticate()
    except Exception as e:
        logger.error(f"Error checking SIIGO connection: {e}")
        return JSONResponse(status_code=500, content={
            "success": False,
            "connected": False,
            "message": "Error de conexión",
            "error": str(e),
        })

    return {
        "success": True,
        "connected": bool(token),
        "message": "Conectado a SIIGO API" if token else "No conectado",
        "requestCount": connector.request_count,
    }


@router.get("/automation/status")
async def get_automation_status(service: SiigoUpdateService = Depends(get_update_service)):
    return {"success": True, "data": service.get_status()}


# ============================================================================
# Products & stock
# ============================================================================

@router.post("/products/import")
def import_products(
    background_tasks: BackgroundTasks,
    run_in_background: bool = Query(False, description="Start the import and return immediately"),
    service: ProductImportService = Depends(get_product_import_service),
):
    """Replace the local catalog with every SIIGO product"""
    if run_in_background:
        background_tasks.add_task(service.import_all_products)
        return {"success": True, "message": "Importación de productos iniciada en segundo plano"}

    result = service.import_all_products()
    if not result.success:
        raise HTTPException(status_code=500, detail=result.message)
    return {"success": True, "message": result.message, "data": asdict(result)}


@router.get("/stock/consistency/status")
async def get_consistency_status(service: StockConsistencyService = Depends(get_consistency_service)):
    return {"success": True, "data": service.get_status()}


@router.post("/stock/consistency/start")
def start_consistency(service: StockConsistencyService = Depends(get_consistency_service)):
    return {"success": True, "data": service.start()}


@router.post("/stock/consistency/stop")
async def stop_consistency(service: StockConsistencyService = Depends(get_consistency_service)):
    return {"success": True, "data": service.stop()}


@router.post("/stock/consistency/enqueue")
async def enqueue_products(request: EnqueueRequest,
                           service: StockConsistencyService = Depends(get_consistency_service)):
    for product_id in request.product_ids:
        service.enqueue_by_product_id(product_id)
    for siigo_id in request.siigo_ids:
        service.enqueue_by_siigo_id(siigo_id)
    for code in request.codes:
        service.enqueue_by_code(code)
    return {"success": True, "data": {"queue_size": service.queue_size}}


@router.post("/stock/sync/{siigo_product_id}")
def sync_product_stock(siigo_product_id: str, service: StockSyncService = Depends(get_stock_service)):
    updated = service.sync_specific_product(siigo_product_id)
    return {
        "success": True,
        "updated": updated,
        "message": "Producto actualizado" if updated else "Sin cambios",
    }


@router.get("/stock/stats")
async def get_stock_stats(service: StockSyncService = Depends(get_stock_service)):
    stats = service.get_stock_stats()
    if stats is None:
        raise HTTPException(status_code=500, detail="Error obteniendo estadísticas de stock")
    return {"success": True, "data": stats}


# ============================================================================
# Customers & events
# ============================================================================

@router.post("/customers/sync")
def sync_customers(service: CustomerSyncService = Depends(get_customer_sync_service)):
    result = service.sync_customers_from_siigo()
    if not result.get('success'):
        raise HTTPException(status_code=500, detail=result.get('error') or "Error sincronizando clientes")
    return result


@router.get("/events")
async def get_events(
    since_id: int = Query(0, ge=0),
    event_type: Optional[str] = Query(None, alias="type"),
):
    """Events published by the background services since since_id"""
    events = event_publisher.recent(since_id=since_id, event_type=event_type)
    return {"success": True, "count": len(events), "data": events}
