"""
SIIGO Import Service - turns SIIGO invoices into orders

- list_invoices: SIIGO invoice page annotated with import status and customer data
- process_invoice_to_order: create one order (+ items) from one invoice
- import_invoices: bulk import by id, skipping invoices that already have an order

Every import attempt is recorded in siigo_sync_log.

Author: Equipo Gestión de Pedidos
Date: 2025-09-04
"""
import math
import time
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from app.connectors.siigo_connector import SiigoConnector, SiigoError, get_siigo_connector
from app.repositories.order_repository import OrderRepository
from app.repositories.sync_log_repository import SyncLogRepository
from app.services.credentials_service import CredentialsService, get_credentials_service
from app.services import siigo_mapping

logger = logging.getLogger(__name__)

ALREADY_IMPORTED_MESSAGE = 'Factura ya importada'


# ============================================================================
# Response Models (dataclasses for type safety)
# ============================================================================

@dataclass
class InvoiceImportResult:
    invoice_id: str
    success: bool
    message: str
    order_id: Optional[int] = None
    items_count: int = 0


@dataclass
class BulkImportResult:
    success: bool
    message: str
    results: List[InvoiceImportResult] = field(default_factory=list)
    total: int = 0
    successful: int = 0
    failed: int = 0
    duration_seconds: float = 0.0


# ============================================================================
# Import Service
# ============================================================================

class SiigoImportService:
    """Creates orders from SIIGO invoices"""

    INVOICE_PAUSE_SECONDS = 0.5

    def __init__(self, connector: SiigoConnector = None,
                 order_repository: OrderRepository = None,
                 sync_log_repository: SyncLogRepository = None,
                 credentials_service: CredentialsService = None):
        self.connector = connector or get_siigo_connector()
        self.orders = order_repository or OrderRepository()
        self.sync_log = sync_log_repository or SyncLogRepository()
        self.credentials = credentials_service or get_credentials_service()

    # =========================================================================
    # Single invoice
    # =========================================================================

    def _fetch_customer_info(self, customer_id: Optional[str]) -> Dict[str, Any]:
        if not customer_id:
            return {}
        try:
            return self.connector.get_customer(customer_id) or {}
        except SiigoError as e:
            logger.warning(f"Could not fetch SIIGO customer {customer_id}: {e}")
            return {}

    def process_invoice_to_order(self, invoice: Dict[str, Any],
                                 payment_method: str = 'transferencia',
                                 delivery_method: str = 'domicilio') -> InvoiceImportResult:
        """
        Create an order from a SIIGO invoice

        Args:
            invoice: invoice as listed by SIIGO (at least {'id': ...})
            payment_method: order payment method
            delivery_method: order delivery method

        Returns:
            InvoiceImportResult with the new order id and items inserted

        Raises:
            Any error fetching the invoice or inserting the order; the failure is
            logged to siigo_sync_log before re-raising
        """
        invoice_id = invoice.get('id')
        logger.info(f"Processing SIIGO invoice {invoice.get('name') or invoice_id} into order")

        try:
            full_invoice = self.connector.get_invoice_details(invoice_id)

            customer_id = (
                (full_invoice.get('customer') or {}).get('id')
                or (invoice.get('customer') or {}).get('id')
            )
            customer_info = self._fetch_customer_info(customer_id)

            order_data = siigo_mapping.build_order_data(
                invoice,
                full_invoice,
                customer_info,
                payment_method=payment_method,
                delivery_method=delivery_method,
                created_by=self.orders.get_system_user_id(),
            )
            order_id = self.orders.create(order_data)

            items_inserted = 0
            for item in full_invoice.get('items') or []:
                name = siigo_mapping.sanitize_text(
                    item.get('description') or item.get('name') or siigo_mapping.DEFAULT_ITEM_NAME
                )
                try:
                    self.orders.add_item(
                        order_id,
                        name=name,
                        quantity=float(item.get('quantity') or 1),
                        price=float(item.get('price') or item.get('unit_price') or 0),
                        description=siigo_mapping.sanitize_text(
                            item.get('code') or item.get('description') or item.get('name')
                        ),
                    )
                    items_inserted += 1
                except Exception as e:
                    logger.error(f"Error inserting item '{name}' for order {order_id}: {e}")

            self.sync_log.log_import_success(invoice_id, order_id)

            message = f"Pedido {order_data['order_number']} creado con {items_inserted} items"
            logger.info(message)
            return InvoiceImportResult(
                invoice_id=invoice_id,
                success=True,
                message=message,
                order_id=order_id,
                items_count=items_inserted,
            )

        except Exception as e:
            logger.error(f"Error processing SIIGO invoice {invoice.get('name') or invoice_id}: {e}")
            try:
                self.sync_log.log_import_error(invoice_id, str(e))
            except Exception as log_error:
                logger.error(f"Error logging sync failure for {invoice_id}: {log_error}")
            raise

    # =========================================================================
    # Bulk import
    # =========================================================================

    def import_invoices(self, invoice_ids: List[str],
                        payment_method: str = 'transferencia',
                        delivery_method: str = 'domicilio') -> BulkImportResult:
        """
        Import several invoices; per-invoice failures don't stop the batch.
        """
        start_time = time.time()
        results: List[InvoiceImportResult] = []

        for invoice_id in invoice_ids:
            try:
                existing_order_id = self.orders.find_id_by_siigo_invoice_id(invoice_id)
                if existing_order_id:
                    results.append(InvoiceImportResult(
                        invoice_id=invoice_id,
                        success=False,
                        message=ALREADY_IMPORTED_MESSAGE,
                        order_id=existing_order_id,
                    ))
                    continue

                results.append(
                    self.process_invoice_to_order({'id': invoice_id}, payment_method, delivery_method)
                )
                time.sleep(self.INVOICE_PAUSE_SECONDS)

            except Exception as e:
                logger.error(f"Error importing SIIGO invoice {invoice_id}: {e}")
                results.append(InvoiceImportResult(invoice_id=invoice_id, success=False, message=str(e)))

        successful = sum(1 for r in results if r.success)
        return BulkImportResult(
            success=True,
            message=f"Importación completada: {successful}/{len(results)} exitosas",
            results=results,
            total=len(results),
            successful=successful,
            failed=len(results) - successful,
            duration_seconds=round(time.time() - start_time, 2),
        )

    # =========================================================================
    # Listing
    # =========================================================================

    def resolve_start_date(self, start_date: Optional[str] = None) -> str:
        """Explicit date, else configured siigo_start_date, else yesterday"""
        if start_date:
            return start_date
        configured = self.credentials.get_siigo_start_date()
        if configured:
            return configured
        return (date.today() - timedelta(days=1)).isoformat()

    def _enrich_invoice(self, invoice: Dict[str, Any]) -> Dict[str, Any]:
        customer = invoice.get('customer') or {}
        if not customer.get('id'):
            return invoice

        try:
            customer_info = self.connector.get_customer(customer['id']) or {}
        except SiigoError as e:
            logger.warning(f"Could not fetch customer for invoice {invoice.get('name')}: {e}")
            return invoice

        customer_name = siigo_mapping.extract_customer_name(customer, customer_info)
        email = siigo_mapping.extract_customer_email(customer, customer_info)
        enriched_customer = dict(customer)
        enriched_customer.update({
            'commercial_name': customer_name,
            'name': customer_name,
            'identification': customer_info.get('identification'),
            'person': customer_info.get('person'),
            'company': customer_info.get('company'),
            'contacts': customer_info.get('contacts'),
            'address': customer_info.get('address'),
            'phones': customer_info.get('phones'),
            'email': email,
        })

        enriched = dict(invoice)
        enriched['customer'] = enriched_customer
        enriched['customer_info'] = {
            'commercial_name': customer_name,
            'phone': siigo_mapping.extract_customer_phone({}, customer_info),
            'address': siigo_mapping.extract_customer_address({}, customer_info),
            'email': email or 'Sin email',
        }
        return enriched

    def list_invoices(self, page: int = 1, page_size: int = 100,
                      start_date: Optional[str] = None) -> Dict[str, Any]:
        """
        SIIGO invoices with import status

        Every invoice is returned; already imported ones carry
        is_imported=True / import_status='imported'.

        Raises:
            SiigoAuthError: SIIGO credentials missing or rejected
        """
        empty_pagination = {'page': page, 'page_size': page_size, 'total': 0, 'pages': 0}

        if not self.credentials.is_siigo_enabled():
            return {
                'message': 'SIIGO deshabilitado en esta instancia',
                'results': [],
                'pagination': empty_pagination,
            }

        siigo_data = self.connector.get_invoices(
            page=page,
            page_size=page_size,
            start_date=self.resolve_start_date(start_date),
        )
        invoices = (siigo_data or {}).get('results')
        if not invoices:
            return {'message': None, 'results': [], 'pagination': empty_pagination}

        imported_ids = self.orders.get_imported_invoice_ids()
        results = []
        for invoice in invoices:
            is_imported = str(invoice.get('id')) in imported_ids
            marked = dict(invoice)
            marked['is_imported'] = is_imported
            marked['import_status'] = 'imported' if is_imported else 'available'
            results.append(self._enrich_invoice(marked))

        total = (siigo_data.get('pagination') or {}).get('total_results') or len(results)
        return {
            'message': None,
            'results': results,
            'pagination': {
                'page': page,
                'page_size': page_size,
                'total': total,
                'pages': math.ceil(total / page_size) if page_size else 0,
                'showing_all': True,
                'imported_count': len(imported_ids),
            },
        }

    def get_invoice_with_customer(self, invoice_id: str) -> Optional[Dict[str, Any]]:
        """Invoice detail with the SIIGO customer record merged into 'customer'"""
        invoice = self.connector.get_invoice_details(invoice_id)
        if not invoice:
            return None

        customer = invoice.get('customer') or {}
        if customer.get('id'):
            try:
                customer_info = self.connector.get_customer(customer['id']) or {}
                merged = dict(customer)
                merged.update(customer_info)
                merged['full_details'] = customer_info
                invoice['customer'] = merged
            except SiigoError as e:
                logger.warning(f"Could not fetch customer for invoice {invoice_id}: {e}")

        return invoice
