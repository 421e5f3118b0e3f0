"""
Webhook Service - SIIGO product webhooks

Subscribes to the product topics and processes received payloads. Every
payload is stored in webhook_logs before being dispatched by topic.

Author: Equipo Gestión de Pedidos
Date: 2025-09-07
"""
import time
import logging
from typing import Any, Dict, List, Optional

from app.core.config import settings
from app.core.events import EventPublisher, event_publisher
from app.connectors.siigo_connector import SiigoConnector, get_siigo_connector
from app.repositories.product_repository import ProductRepository
from app.repositories.webhook_repository import WebhookRepository, STOCK_UPDATE_TOPIC

logger = logging.getLogger(__name__)

APPLICATION_ID = 'GestionPedidos'
PRODUCT_CREATE_TOPIC = 'public.siigoapi.products.create'
PRODUCT_UPDATE_TOPIC = 'public.siigoapi.products.update'
STOCK_TOPICS = [PRODUCT_CREATE_TOPIC, PRODUCT_UPDATE_TOPIC, STOCK_UPDATE_TOPIC]


class WebhookService:
    """Webhook subscriptions and payload processing"""

    SUBSCRIPTION_PAUSE_SECONDS = 1.0

    def __init__(self, connector: SiigoConnector = None,
                 product_repository: ProductRepository = None,
                 webhook_repository: WebhookRepository = None,
                 publisher: EventPublisher = None,
                 webhook_base_url: Optional[str] = None):
        self.connector = connector or get_siigo_connector()
        self.products = product_repository or ProductRepository()
        self.webhooks = webhook_repository or WebhookRepository()
        self.publisher = publisher or event_publisher
        self.webhook_base_url = (webhook_base_url or settings.WEBHOOK_BASE_URL).rstrip('/')

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe_to_webhook(self, topic: str) -> Dict[str, Any]:
        logger.info(f"Subscribing to webhook {topic}")
        subscription = self.connector.create_webhook_subscription({
            'application_id': APPLICATION_ID,
            'topic': topic,
            'url': f"{self.webhook_base_url}/receive",
        })
        self.webhooks.save_subscription(subscription)
        logger.info(f"Subscribed to {topic}: {subscription.get('id')}")
        return subscription

    def setup_stock_webhooks(self) -> List[Dict[str, Any]]:
        """Subscribe to every product topic; a failing topic doesn't stop the rest"""
        subscriptions = []

        for topic in STOCK_TOPICS:
            try:
                subscriptions.append(self.subscribe_to_webhook(topic))
                time.sleep(self.SUBSCRIPTION_PAUSE_SECONDS)
            except Exception as e:
                logger.error(f"Error configuring webhook {topic}: {e}")

        logger.info(f"Webhooks configured: {len(subscriptions)}/{len(STOCK_TOPICS)}")
        return subscriptions

    def get_webhook_subscriptions(self) -> List[Dict[str, Any]]:
        return self.webhooks.get_active_subscriptions()

    def get_webhook_logs(self, limit: int = 100) -> List[Dict[str, Any]]:
        return self.webhooks.get_logs(limit)

    # =========================================================================
    # Payload processing
    # =========================================================================

    def process_webhook_payload(self, payload: Dict[str, Any]) -> bool:
        """
        Log and dispatch a received payload

        Returns:
            Whether the payload was processed; handler errors are stored in
            the log entry instead of being raised
        """
        topic = payload.get('topic')
        logger.info(f"Processing webhook {topic}")

        log_id = self.webhooks.insert_log(payload)
        processed = False
        error_message = None

        try:
            if topic == STOCK_UPDATE_TOPIC:
                processed = self.process_stock_update(payload, log_id)
            elif topic == PRODUCT_UPDATE_TOPIC:
                processed = self.process_product_update(payload)
            elif topic == PRODUCT_CREATE_TOPIC:
                processed = self.process_product_create(payload)
            else:
                logger.warning(f"Unhandled webhook topic: {topic}")
        except Exception as e:
            logger.error(f"Error processing webhook {topic}: {e}")
            error_message = str(e)
            processed = False

        self.webhooks.mark_log_processed(log_id, processed, error_message)
        return processed

    def process_stock_update(self, payload: Dict[str, Any], log_id: Optional[int] = None) -> bool:
        product = self.products.find_by_siigo_id(payload.get('id'))
        if not product or not product.is_active:
            logger.warning(f"Product {payload.get('id')} not found in local database")
            return False

        new_stock = int(payload.get('available_quantity') or 0)
        old_stock = int(product.available_quantity or 0)

        if new_stock == old_stock:
            logger.info(f"No stock change for product {payload.get('id')}")
            return True

        self.products.update_quantity_by_siigo_id(payload['id'], new_stock)
        if log_id is not None:
            self.webhooks.set_log_stock_change(log_id, old_stock, new_stock)

        logger.info(f"Stock updated via webhook for {product.product_name}: {old_stock} -> {new_stock}")
        self.publisher.publish('stock_updated', {
            'productId': product.id,
            'siigoProductId': payload['id'],
            'productName': product.product_name,
            'oldStock': old_stock,
            'newStock': new_stock,
            'source': 'webhook',
        })
        return True

    def process_product_update(self, payload: Dict[str, Any]) -> bool:
        product = self.products.find_by_siigo_id(payload.get('id'))
        if not product or not product.is_active:
            logger.warning(f"Product {payload.get('id')} not found for update")
            return False

        self.products.update_from_siigo_payload(
            payload['id'],
            payload.get('name'),
            bool(payload.get('active')),
            int(payload.get('available_quantity') or 0),
        )
        logger.info(f"Product updated via webhook: {payload.get('name')}")
        return True

    def process_product_create(self, payload: Dict[str, Any]) -> bool:
        # New products arrive with the next full import
        if self.products.find_by_siigo_id(payload.get('id')):
            logger.info(f"Product {payload.get('id')} already exists")
        else:
            logger.info(f"New product detected via webhook: {payload.get('name')}")
        return True


# Global instance
_webhook_service: Optional[WebhookService] = None


def get_webhook_service() -> WebhookService:
    global _webhook_service
    if _webhook_service is None:
        _webhook_service = WebhookService()
    return _webhook_service
