"""
SIIGO Update Service - keeps imported orders in line with their invoices

Every cycle (10 minutes by default):
1. detect_new_invoices: invoices from the last two days without a successful
   import are imported automatically
2. every invoice imported successfully in the last 7 days is fetched again and,
   when its total, observations or items changed, the order total and notes
   are refreshed

Changes are announced through the event feed (new-invoice, invoices-updated).

Author: Equipo Gestión de Pedidos
Date: 2025-09-06
"""
import re
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from app.core.config import settings
from app.core.events import EventPublisher, event_publisher
from app.core.scheduler import IntervalTimer
from app.connectors.siigo_connector import SiigoConnector, get_siigo_connector
from app.repositories.order_repository import OrderRepository
from app.repositories.sync_log_repository import (
    SyncLogRepository, STATUS_UPDATED, STATUS_ERROR,
)
from app.services import siigo_mapping
from app.services.siigo_import_service import SiigoImportService

logger = logging.getLogger(__name__)

NEW_INVOICES_LOOKBACK_DAYS = 2
RECHECK_DAYS = 7
AMOUNT_TOLERANCE = 0.01
_CREATED_FROM_INVOICE_LINE = re.compile(r'Pedido creado desde factura SIIGO:[^\n]*\n?')


@dataclass
class UpdateCycleResult:
    new_invoices: int
    checked: int
    updated: int
    errors: int

    @property
    def total_changes(self) -> int:
        return self.new_invoices + self.updated


class SiigoUpdateService:
    """Periodic invoice poller"""

    def __init__(self, connector: SiigoConnector = None,
                 import_service: SiigoImportService = None,
                 order_repository: OrderRepository = None,
                 sync_log_repository: SyncLogRepository = None,
                 publisher: EventPublisher = None,
                 interval_minutes: Optional[int] = None):
        self.connector = connector or get_siigo_connector()
        self.orders = order_repository or OrderRepository()
        self.sync_log = sync_log_repository or SyncLogRepository()
        self.import_service = import_service or SiigoImportService(
            connector=self.connector,
            order_repository=self.orders,
            sync_log_repository=self.sync_log,
        )
        self.publisher = publisher or event_publisher
        self.interval_minutes = interval_minutes or settings.SIIGO_UPDATE_INTERVAL_MINUTES
        self._timer: Optional[IntervalTimer] = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._timer is not None and self._timer.is_running

    def start(self) -> None:
        """Run a cycle now and then every interval_minutes. No-op when running."""
        if self.is_running:
            return
        logger.info(f"Starting SIIGO update service (every {self.interval_minutes} minutes)")
        self._timer = IntervalTimer(
            'siigo-update',
            self.interval_minutes * 60,
            self.update_processed_invoices,
            run_immediately=True,
        )
        self._timer.start()

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.stop()
            self._timer = None
        logger.info("SIIGO update service stopped")

    def get_status(self) -> Dict[str, Any]:
        running = self.is_running
        return {
            'isRunning': running,
            'interval': self.interval_minutes * 60 * 1000,
            'intervalMinutes': self.interval_minutes,
            'message': (
                f"Servicio automático ejecutándose cada {self.interval_minutes} minutos"
                if running else 'Servicio automático detenido'
            ),
        }

    # =========================================================================
    # Cycle
    # =========================================================================

    def update_processed_invoices(self) -> UpdateCycleResult:
        """One poll cycle. Errors are logged, never raised."""
        new_invoices = 0
        checked = 0
        updated = 0
        errors = 0

        try:
            new_invoices = self.detect_new_invoices()
            processed = self.sync_log.get_recent_successful_imports(days=RECHECK_DAYS)

            for entry in processed:
                checked += 1
                try:
                    if self.check_and_update_invoice(entry['siigo_invoice_id'], entry['order_id']):
                        updated += 1
                except Exception as e:
                    logger.error(f"Error updating invoice {entry['siigo_invoice_id']}: {e}")
                    errors += 1

            result = UpdateCycleResult(new_invoices=new_invoices, checked=checked,
                                       updated=updated, errors=errors)
            logger.info(
                f"SIIGO update cycle: {new_invoices} new, {checked} checked, "
                f"{updated} updated, {errors} errors"
            )

            if result.total_changes > 0:
                payload = {
                    'type': 'invoices-updated',
                    'updatedCount': updated,
                    'newInvoicesCount': new_invoices,
                    'totalChanges': result.total_changes,
                }
                self.publisher.publish('invoices-updated', payload, channel='siigo-updates')
                self.publisher.publish('invoices-updated', payload, channel='orders-updates')

            return result

        except Exception as e:
            logger.error(f"Error in automatic invoice update: {e}")
            return UpdateCycleResult(new_invoices=new_invoices, checked=checked,
                                     updated=updated, errors=errors + 1)

    def detect_new_invoices(self) -> int:
        """Import invoices from the last two days that have no successful import"""
        try:
            start_date = (date.today() - timedelta(days=NEW_INVOICES_LOOKBACK_DAYS)).isoformat()
            data = self.connector.get_invoices(page=1, page_size=100, start_date=start_date)
            invoices = (data or {}).get('results') or []
        except Exception as e:
            logger.error(f"Error detecting new invoices: {e}")
            return 0

        new_count = 0
        for invoice in invoices:
            try:
                if self.sync_log.has_successful_import(invoice['id']):
                    continue
                if self.orders.find_id_by_siigo_invoice_id(invoice['id']):
                    continue
                if self.import_new_invoice(invoice):
                    new_count += 1
            except Exception as e:
                logger.error(f"Error processing invoice {invoice.get('id')}: {e}")

        if new_count > 0:
            plural = 's' if new_count > 1 else ''
            self.publisher.publish('new-invoice', {
                'type': 'new-invoice',
                'count': new_count,
                'message': f"{new_count} nueva{plural} factura{plural} detectada{plural} en SIIGO",
            }, channel='siigo-updates')

        return new_count

    def import_new_invoice(self, invoice: Dict[str, Any]) -> bool:
        try:
            result = self.import_service.process_invoice_to_order(invoice, payment_method='auto')
            logger.info(f"New invoice {invoice.get('name') or invoice.get('id')} imported as order {result.order_id}")
            return result.success
        except Exception as e:
            logger.error(f"Error importing new invoice {invoice.get('id')}: {e}")
            return False

    # =========================================================================
    # Diff & patch
    # =========================================================================

    def check_and_update_invoice(self, invoice_id: str, order_id: int) -> bool:
        """
        Re-fetch an invoice and patch its order when something changed.

        Returns:
            True when the order was updated
        """
        try:
            invoice_data = self.connector.get_invoice_details(invoice_id)
            if not invoice_data:
                return False

            order = self.orders.get_row(order_id)
            if not order:
                return False

            if not self.detect_changes(invoice_data, order):
                return False

            self.update_order_from_invoice(invoice_data, order_id)
            self.log_update(invoice_id, order_id, STATUS_UPDATED)
            return True

        except Exception as e:
            logger.error(f"Error checking invoice {invoice_id}: {e}")
            self.log_update(invoice_id, order_id, STATUS_ERROR, str(e))
            raise

    def list_changes(self, invoice_data: Dict[str, Any], order: Dict[str, Any]) -> List[str]:
        """Human readable differences between an invoice and its order"""
        changes = []

        current_total = float(invoice_data.get('total') or 0)
        order_total = float(order.get('total_amount') or 0)
        if abs(current_total - order_total) > AMOUNT_TOLERANCE:
            changes.append(f"Total: {order_total} → {current_total}")

        current_observations = (invoice_data.get('observations') or '').strip()
        order_notes = _CREATED_FROM_INVOICE_LINE.sub('', order.get('notes') or '', count=1).strip()
        expected_notes = (siigo_mapping.build_order_notes(invoice_data) or '').strip()
        if order_notes not in (current_observations, expected_notes):
            changes.append('Observaciones modificadas')

        current_items = siigo_mapping.extract_order_items(invoice_data)
        order_items = self.orders.get_items(order['id'])
        if len(current_items) != len(order_items):
            changes.append(f"Items: {len(order_items)} → {len(current_items)}")
        else:
            for index, (current, stored) in enumerate(zip(current_items, order_items), start=1):
                # stored names went through sanitize_text on import
                if (siigo_mapping.sanitize_text(current['name']) != siigo_mapping.sanitize_text(stored.get('name'))
                        or abs(current['price'] - float(stored.get('price') or 0)) > AMOUNT_TOLERANCE
                        or current['quantity'] != float(stored.get('quantity') or 0)):
                    changes.append(f"Item {index} modificado")
                    break

        return changes

    def detect_changes(self, invoice_data: Dict[str, Any], order: Dict[str, Any]) -> bool:
        changes = self.list_changes(invoice_data, order)
        if changes:
            logger.info(f"Changes detected for order {order.get('id')}: {', '.join(changes)}")
        return bool(changes)

    def update_order_from_invoice(self, invoice_data: Dict[str, Any], order_id: int) -> None:
        """Refresh total and notes only; customer, payment and items stay as imported"""
        self.orders.update_total_and_notes(
            order_id,
            float(invoice_data.get('total') or 0),
            siigo_mapping.build_order_notes(invoice_data),
        )

    def log_update(self, invoice_id: str, order_id: int, status: str,
                   error_message: Optional[str] = None) -> None:
        try:
            self.sync_log.log_update(invoice_id, order_id, status, error_message)
        except Exception as e:
            logger.error(f"Error logging invoice update {invoice_id}: {e}")

    # =========================================================================
    # Manual operations
    # =========================================================================

    def force_update_invoice(self, invoice_id: str) -> Dict[str, Any]:
        """
        Check one invoice right away

        Raises:
            LookupError: the invoice has no successfully imported order
        """
        order_id = self.sync_log.find_order_for_invoice(invoice_id)
        if not order_id:
            raise LookupError('No se encontró pedido asociado a esta factura')

        was_updated = self.check_and_update_invoice(invoice_id, order_id)
        return {
            'success': True,
            'updated': was_updated,
            'message': 'Factura actualizada exitosamente' if was_updated else 'No se detectaron cambios',
        }

    def get_update_stats(self) -> Dict[str, Any]:
        """Update outcomes in the last 24 hours"""
        return self.sync_log.get_update_stats(hours=24)


# Global instance
_siigo_update_service: Optional[SiigoUpdateService] = None


def get_siigo_update_service() -> SiigoUpdateService:
    global _siigo_update_service
    if _siigo_update_service is None:
        _siigo_update_service = SiigoUpdateService()
    return _siigo_update_service
