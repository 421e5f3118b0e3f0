"""
Stock Sync Service - scheduled stock refresh from SIIGO

Every 5 minutes the 50 products that went longest without a sync are looked
up in SIIGO by code; stock and active state are refreshed when they changed.
Webhooks (see webhook_service) cover immediate updates; this loop catches
whatever they miss.

Author: Equipo Gestión de Pedidos
Date: 2025-09-08
"""
import time
import logging
from typing import Any, Dict, Optional

from app.core.config import settings
from app.core.events import EventPublisher, event_publisher
from app.core.scheduler import IntervalTimer
from app.connectors.siigo_connector import SiigoAPIError, SiigoConnector, get_siigo_connector
from app.repositories.product_repository import ProductRepository
from app.repositories.webhook_repository import WebhookRepository
from app.services.webhook_service import WebhookService

logger = logging.getLogger(__name__)


class StockSyncService:
    """Periodic stock refresh of the least recently synced products"""

    BATCH_LIMIT = 50
    PRODUCT_PAUSE_SECONDS = 0.2

    def __init__(self, connector: SiigoConnector = None,
                 product_repository: ProductRepository = None,
                 webhook_repository: WebhookRepository = None,
                 webhook_service: WebhookService = None,
                 publisher: EventPublisher = None,
                 interval_minutes: Optional[int] = None):
        self.connector = connector or get_siigo_connector()
        self.products = product_repository or ProductRepository()
        self.webhooks = webhook_repository or WebhookRepository()
        self.webhook_service = webhook_service or WebhookService(
            connector=self.connector,
            product_repository=self.products,
            webhook_repository=self.webhooks,
        )
        self.publisher = publisher or event_publisher
        self.interval_minutes = interval_minutes or settings.STOCK_SYNC_INTERVAL_MINUTES
        self.webhooks_configured = False
        self._timer: Optional[IntervalTimer] = None

    @property
    def is_running(self) -> bool:
        return self._timer is not None and self._timer.is_running

    def start(self) -> None:
        """Subscribe webhooks (once), then sync now and every interval_minutes"""
        if self.is_running:
            return

        logger.info(f"Starting stock sync (every {self.interval_minutes} minutes, webhooks for immediate updates)")

        if not self.webhooks_configured:
            try:
                self.webhook_service.setup_stock_webhooks()
                self.webhooks_configured = True
            except Exception as e:
                logger.error(f"Error configuring webhooks, continuing with scheduled sync: {e}")

        self._timer = IntervalTimer(
            'stock-sync',
            self.interval_minutes * 60,
            self.sync_product_stock,
            run_immediately=True,
        )
        self._timer.start()

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.stop()
            self._timer = None
            logger.info("Automatic stock sync stopped")

    def sync_product_stock(self) -> Dict[str, int]:
        """One scheduled pass. Per-product failures are counted, not raised."""
        updated = 0
        errors = 0

        try:
            products = self.products.find_oldest_synced(limit=self.BATCH_LIMIT)
            logger.info(f"Scheduled stock sync: {len(products)} products")

            for product in products:
                try:
                    self.update_product_stock(product)
                    updated += 1
                    time.sleep(self.PRODUCT_PAUSE_SECONDS)
                except Exception as e:
                    logger.error(f"Error updating stock for product {product.get('siigo_id')}: {e}")
                    errors += 1

            logger.info(f"Scheduled stock sync finished: {updated} processed, {errors} errors")

        except Exception as e:
            logger.error(f"Error in scheduled stock sync: {e}")

        return {'updated': updated, 'errors': errors}

    def update_product_stock(self, product: Dict[str, Any]) -> bool:
        """
        Refresh one product from SIIGO

        Args:
            product: dict with id, siigo_id, product_name, available_quantity, is_active

        Returns:
            True when stock or active state changed

        Raises:
            LookupError: SIIGO returned no product for the code
        """
        try:
            siigo_product = self.connector.get_product_by_code(product['siigo_id'])
        except SiigoAPIError as e:
            if e.status_code == 404:
                self.products.mark_inactive(product['id'])
                logger.warning(f"Product {product['siigo_id']} not found in SIIGO, marked inactive")
                return False
            raise

        if not siigo_product:
            raise LookupError(f"Product {product['siigo_id']} not found in SIIGO")

        current_stock = int(siigo_product.get('available_quantity') or 0)
        current_active = siigo_product.get('active') is not False
        old_stock = int(product.get('available_quantity') or 0)
        old_active = bool(product.get('is_active'))

        stock_changed = current_stock != old_stock
        active_changed = current_active != old_active

        if not (stock_changed or active_changed):
            self.products.touch_last_sync(product['id'])
            return False

        self.products.update_stock(product['id'], current_stock, current_active)

        changes = []
        if stock_changed:
            changes.append(f"Stock: {old_stock} -> {current_stock}")
        if active_changed:
            changes.append(f"Active: {old_active} -> {current_active}")
        logger.info(f"{product.get('product_name')}: {', '.join(changes)}")

        self.publisher.publish('stock_updated', {
            'productId': product['id'],
            'siigoProductId': product['siigo_id'],
            'productName': product.get('product_name'),
            'oldStock': old_stock,
            'newStock': current_stock,
            'oldActive': old_active,
            'newActive': current_active,
            'source': 'scheduled_sync',
        })
        return True

    def sync_specific_product(self, siigo_product_id: str) -> bool:
        """Refresh one product right away. False when unknown locally or on error."""
        try:
            product = self.products.find_by_siigo_id(siigo_product_id)
            if not product:
                logger.warning(f"Product {siigo_product_id} not found in local database")
                return False

            updated = self.update_product_stock({
                'id': product.id,
                'siigo_id': product.siigo_id,
                'product_name': product.product_name,
                'available_quantity': product.available_quantity,
                'is_active': product.is_active,
            })
            logger.info(f"Product {siigo_product_id} synced: {'updated' if updated else 'no changes'}")
            return updated

        except Exception as e:
            logger.error(f"Error syncing product {siigo_product_id}: {e}")
            return False

    def get_stock_stats(self) -> Optional[Dict[str, Any]]:
        try:
            return {
                'products': self.products.get_stock_stats(),
                'webhooks': self.webhooks.get_stock_webhook_stats(),
                'webhooksConfigured': self.webhooks_configured,
                'syncRunning': self.is_running,
            }
        except Exception as e:
            logger.error(f"Error getting stock stats: {e}")
            return None


# Global instance
_stock_sync_service: Optional[StockSyncService] = None


def get_stock_sync_service() -> StockSyncService:
    global _stock_sync_service
    if _stock_sync_service is None:
        _stock_sync_service = StockSyncService()
    return _stock_sync_service
