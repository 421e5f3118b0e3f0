"""
Webhooks API - receives SIIGO product notifications

Author: Equipo Gestión de Pedidos
Date: 2025-09-10
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from app.services.webhook_service import WebhookService, get_webhook_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])


def get_service() -> WebhookService:
    return get_webhook_service()


@router.post("/receive")
def receive_webhook(payload: Dict[str, Any] = Body(...), service: WebhookService = Depends(get_service)):
    """
    SIIGO callback. Answers 200 once the payload is stored, even when the
    handler could not apply it, so SIIGO doesn't retry indefinitely.
    """
    if not payload.get('topic') or not payload.get('id'):
        raise HTTPException(status_code=400, detail="Payload inválido: topic e id son requeridos")

    try:
        processed = service.process_webhook_payload(payload)
    except Exception as e:
        logger.error(f"Error receiving webhook {payload.get('topic')}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return {"success": True, "processed": processed}


@router.post("/setup")
def setup_webhooks(service: WebhookService = Depends(get_service)):
    subscriptions = service.setup_stock_webhooks()
    return {
        "success": True,
        "message": f"Webhooks configurados: {len(subscriptions)}",
        "data": subscriptions,
    }


@router.get("/subscriptions")
def get_subscriptions(service: WebhookService = Depends(get_service)):
    try:
        return {"success": True, "data": service.get_webhook_subscriptions()}
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/logs")
def get_logs(limit: int = Query(100, ge=1, le=1000), service: WebhookService = Depends(get_service)):
    try:
        return {"success": True, "data": service.get_webhook_logs(limit)}
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
