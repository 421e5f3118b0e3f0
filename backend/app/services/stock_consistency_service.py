"""
Stock Consistency Service - background reconciliation of local stock with SIIGO

Products are queued by local id, siigo_id or internal code and reconciled
in small batches:
- on start, products updated in the last 6 hours are queued
- every 30 s a batch of up to 25 queued products is reconciled
- every 5 min recently updated products are queued again
- every 10 min the products with the oldest last_sync_at are queued

Requests are spaced with an adaptive delay plus jitter to stay below the
SIIGO rate limit. Stock changes are announced as stock_updated events.

Author: Equipo Gestión de Pedidos
Date: 2025-09-08
"""
import re
import time
import random
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from app.core.events import EventPublisher, event_publisher
from app.core.scheduler import IntervalTimer
from app.connectors.siigo_connector import SiigoAPIError, SiigoConnector, get_siigo_connector
from app.domain.product import Product
from app.repositories.product_repository import ProductRepository

logger = logging.getLogger(__name__)

KIND_ID = 'id'
KIND_SIIGO = 'siigo'
KIND_CODE = 'code'

QueueKey = Tuple[str, str]

_UUID_LIKE = re.compile(r'^[0-9a-fA-F-]{36}$')
_CROSS_FALLBACK_STATUSES = (400, 404)


class StockConsistencyService:
    """Queue-based stock reconciliation"""

    BATCH_SIZE = 25
    RECENT_HOURS = 6
    SCAN_LIMIT = 200

    QUEUE_INTERVAL_SECONDS = 30
    RECENT_SCAN_INTERVAL_SECONDS = 5 * 60
    OLDEST_SCAN_INTERVAL_SECONDS = 10 * 60
    FIRST_RUN_DELAY_SECONDS = 5

    MIN_DELAY_SECONDS = 0.8
    MAX_DELAY_SECONDS = 2.5
    MAX_JITTER_SECONDS = 0.3
    ERROR_BACKOFF_SECONDS = 1.5

    def __init__(self, connector: SiigoConnector = None,
                 product_repository: ProductRepository = None,
                 publisher: EventPublisher = None):
        self.connector = connector or get_siigo_connector()
        self.products = product_repository or ProductRepository()
        self.publisher = publisher or event_publisher

        # dict keeps insertion order; keys are the queue, values unused
        self._queue: Dict[QueueKey, None] = {}
        self._lock = threading.Lock()
        self._timers: List[IntervalTimer] = []
        self.running = False

    # =========================================================================
    # Queue
    # =========================================================================

    def _enqueue(self, kind: str, value: Any) -> None:
        if not value:
            return
        with self._lock:
            self._queue[(kind, str(value))] = None

    def enqueue_by_product_id(self, product_id: Any) -> None:
        self._enqueue(KIND_ID, product_id)

    def enqueue_by_siigo_id(self, siigo_id: Any) -> None:
        self._enqueue(KIND_SIIGO, siigo_id)

    def enqueue_by_code(self, code: Any) -> None:
        self._enqueue(KIND_CODE, code)

    @property
    def queue_size(self) -> int:
        with self._lock:
            return len(self._queue)

    def _take_batch(self) -> Tuple[List[QueueKey], int]:
        with self._lock:
            pending = len(self._queue)
            batch = list(self._queue)[:self.BATCH_SIZE]
            for key in batch:
                del self._queue[key]
        return batch, pending

    def _enqueue_rows(self, rows: List[Dict[str, Any]]) -> None:
        for row in rows:
            if row.get('siigo_id'):
                self.enqueue_by_siigo_id(row['siigo_id'])
            elif row.get('internal_code'):
                self.enqueue_by_code(row['internal_code'])
            else:
                self.enqueue_by_product_id(row.get('id'))

    def enqueue_recent_updated(self, limit: int = SCAN_LIMIT) -> int:
        rows = self.products.find_recently_updated(hours=self.RECENT_HOURS, limit=limit)
        self._enqueue_rows(rows)
        logger.info(f"Queued {len(rows)} recently updated products")
        return len(rows)

    def enqueue_oldest_pending(self, limit: int = SCAN_LIMIT) -> int:
        rows = self.products.find_oldest_synced(limit=limit)
        self._enqueue_rows(rows)
        logger.info(f"Queued {len(rows)} least recently synced products")
        return len(rows)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> Dict[str, bool]:
        if self.running:
            return {'running': True}

        self.running = True
        logger.info("Starting stock consistency service")

        try:
            self.enqueue_recent_updated()
        except Exception as e:
            logger.warning(f"Error queueing recent products: {e}")

        self._timers = [
            IntervalTimer('stock-consistency-queue', self.QUEUE_INTERVAL_SECONDS,
                          self.process_queue, first_run_after=self.FIRST_RUN_DELAY_SECONDS),
            IntervalTimer('stock-consistency-recent', self.RECENT_SCAN_INTERVAL_SECONDS,
                          self.enqueue_recent_updated),
            IntervalTimer('stock-consistency-oldest', self.OLDEST_SCAN_INTERVAL_SECONDS,
                          self.enqueue_oldest_pending),
        ]
        for timer in self._timers:
            timer.start()

        return {'running': True}

    def stop(self) -> Dict[str, bool]:
        if not self.running:
            return {'running': False}

        self.running = False
        for timer in self._timers:
            timer.stop()
        self._timers = []
        logger.info("Stock consistency service stopped")
        return {'running': False}

    def get_status(self) -> Dict[str, Any]:
        return {
            'running': self.running,
            'queue_size': self.queue_size,
            'batch_size': self.BATCH_SIZE,
            'recent_hours': self.RECENT_HOURS,
        }

    # =========================================================================
    # Processing
    # =========================================================================

    def _request_delay(self) -> float:
        base = min(max(self.connector.rate_limit_delay or 1.0, self.MIN_DELAY_SECONDS), self.MAX_DELAY_SECONDS)
        return base + random.uniform(0, self.MAX_JITTER_SECONDS)

    def process_queue(self) -> int:
        """
        Reconcile one batch

        Returns:
            Number of keys reconciled without error
        """
        if not self.running:
            return 0

        batch, pending = self._take_batch()
        if not batch:
            return 0

        logger.info(f"Reconciling batch: {len(batch)}/{pending} pending")
        reconciled = 0

        for index, (kind, value) in enumerate(batch):
            if not self.running:
                # stopped mid-batch: keep the rest for the next start()
                with self._lock:
                    for key in batch[index:]:
                        self._queue[key] = None
                logger.info(f"Reconciliation stopped, {len(batch) - index} keys left queued")
                break
            try:
                self.reconcile_one(kind, value)
                reconciled += 1
                time.sleep(self._request_delay())
            except Exception as e:
                logger.warning(f"Reconcile error for {kind}={value}: {e}")
                with self._lock:
                    self._queue[(kind, value)] = None
                time.sleep(self.ERROR_BACKOFF_SECONDS)

        return reconciled

    def resolve_product(self, kind: str, value: str) -> Optional[Product]:
        """Local product for a queue key, trying siigo_id and internal_code in both orders"""
        if kind == KIND_ID:
            return self.products.find_by_id(value)
        if kind == KIND_SIIGO:
            return self.products.find_by_siigo_id(value) or self.products.find_by_internal_code(value)
        if kind == KIND_CODE:
            return self.products.find_by_internal_code(value) or self.products.find_by_siigo_id(value)
        return None

    def fetch_siigo_product(self, siigo_id: str) -> Optional[Dict[str, Any]]:
        """
        Look a product up by UUID or by code. When the first lookup answers
        400/404 the other one is tried.
        """
        is_uuid = bool(_UUID_LIKE.match(siigo_id))
        primary = self.connector.get_product_details if is_uuid else self.connector.get_product_by_code
        fallback = self.connector.get_product_by_code if is_uuid else self.connector.get_product_details

        try:
            product = primary(siigo_id)
        except SiigoAPIError as e:
            if e.status_code not in _CROSS_FALLBACK_STATUSES:
                raise
            product = fallback(siigo_id)

        if isinstance(product, dict) and isinstance(product.get('results'), list):
            product = product['results'][0] if product['results'] else None
        return product or None

    def reconcile_one(self, kind: str, value: str) -> bool:
        """
        Compare one product with SIIGO and fix the local stock

        Returns:
            True when the local stock changed
        """
        product = self.resolve_product(kind, value)
        if not product or not product.siigo_id:
            logger.info(f"Product not resolvable for reconciliation: {kind}={value}")
            return False

        siigo_product = self.fetch_siigo_product(str(product.siigo_id))
        if not siigo_product:
            logger.warning(f"Product not found in SIIGO: {product.siigo_id}")
            self.products.touch_last_sync(product.id)
            return False

        siigo_stock = int(siigo_product.get('available_quantity') or 0)
        local_stock = int(product.available_quantity or 0)
        active = siigo_product.get('active') is not False

        if siigo_stock == local_stock:
            self.products.touch_last_sync(product.id)
            return False

        self.products.update_stock(product.id, siigo_stock, active)
        logger.info(f"Reconciled {product.product_name}: {local_stock} -> {siigo_stock}")

        self.publisher.publish('stock_updated', {
            'productId': product.id,
            'siigoProductId': product.siigo_id,
            'productName': product.product_name,
            'oldStock': local_stock,
            'newStock': siigo_stock,
            'source': 'consistency_service',
        })
        return True


# Global instance
_stock_consistency_service: Optional[StockConsistencyService] = None


def get_stock_consistency_service() -> StockConsistencyService:
    global _stock_consistency_service
    if _stock_consistency_service is None:
        _stock_consistency_service = StockConsistencyService()
    return _stock_consistency_service
