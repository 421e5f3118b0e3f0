"""
Product Import Service - full catalog import from SIIGO

Downloads every SIIGO product page, wipes the local products table and
inserts the catalog again. Products without a usable barcode receive a
generated temporary one so the barcode column stays unique.

Author: Equipo Gestión de Pedidos
Date: 2025-09-05
"""
import time
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from app.connectors.siigo_connector import SiigoConnector, SiigoError, get_siigo_connector
from app.repositories.product_repository import ProductRepository

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
DEFAULT_CATEGORY = 'Sin categoría'
PENDING_BARCODE = 'PENDIENTE'
BARCODE_METADATA_HINTS = ('barcode', 'codigo', 'barra')


@dataclass
class ProductImportResult:
    success: bool
    message: str
    total_products: int = 0
    imported_products: int = 0
    real_barcodes: int = 0
    temp_barcodes: int = 0
    categories_created: int = 0
    categories: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0


# ============================================================================
# Field extraction
# ============================================================================

def generate_temporary_barcode(product_code: str, index: int, company_prefix: str = 'COMPANY') -> str:
    """PREFIX-CODE8-<last 8 digits of ms timestamp>-<index padded to 4>"""
    timestamp = str(int(time.time() * 1000))[-8:]
    truncated_code = str(product_code)[:8].upper()
    return f"{company_prefix}-{truncated_code}-{timestamp}-{index:04d}"


def extract_barcode(product: Dict[str, Any]) -> Optional[str]:
    """Barcode from barcode, additional_fields.barcode or a barcode-like metadata entry"""
    barcode = product.get('barcode')
    if isinstance(barcode, str) and barcode.strip():
        return barcode.strip()

    additional = (product.get('additional_fields') or {}).get('barcode')
    if isinstance(additional, str) and additional.strip():
        return additional.strip()

    for meta in product.get('metadata') or []:
        name = (meta.get('name') or '').lower()
        if any(hint in name for hint in BARCODE_METADATA_HINTS):
            value = meta.get('value')
            if isinstance(value, str) and value.strip():
                return value.strip()
            break

    return None


def extract_price(product: Dict[str, Any]) -> float:
    """First value of the first price list, 0 when missing"""
    try:
        return float(product['prices'][0]['price_list'][0]['value']) or 0.0
    except (KeyError, IndexError, TypeError, ValueError):
        return 0.0


# ============================================================================
# Import Service
# ============================================================================

class ProductImportService:
    """Replaces the local catalog with the SIIGO catalog"""

    PAGE_PAUSE_SECONDS = 0.5
    BATCH_PAUSE_EVERY = 50
    BATCH_PAUSE_SECONDS = 0.1

    def __init__(self, connector: SiigoConnector = None, product_repository: ProductRepository = None):
        self.connector = connector or get_siigo_connector()
        self.products = product_repository or ProductRepository()

    def fetch_all_products(self) -> List[Dict[str, Any]]:
        """
        Page through SIIGO products until an empty or short page.
        A failing page stops pagination; what was fetched so far is kept.
        """
        all_products: List[Dict[str, Any]] = []
        page = 1

        while True:
            try:
                products = self.connector.get_products(page=page, page_size=PAGE_SIZE)
            except SiigoError as e:
                logger.error(f"Error fetching SIIGO products page {page}: {e}")
                break

            if not products:
                break

            all_products.extend(products)
            logger.info(f"Page {page}: {len(products)} products (total {len(all_products)})")

            if len(products) < PAGE_SIZE:
                break

            page += 1
            time.sleep(self.PAGE_PAUSE_SECONDS)

        return all_products

    @staticmethod
    def map_product(siigo_product: Dict[str, Any], index: int) -> Dict[str, Any]:
        internal_code = siigo_product.get('code') or None
        return {
            'product_name': siigo_product.get('name') or f"Producto {internal_code or index}",
            'internal_code': internal_code,
            'category': (siigo_product.get('account_group') or {}).get('name') or DEFAULT_CATEGORY,
            'description': siigo_product.get('description') or '',
            'standard_price': extract_price(siigo_product),
            'siigo_id': siigo_product.get('id') or None,
            'available_quantity': siigo_product.get('available_quantity') or 0,
            'is_active': siigo_product.get('active') is True,
        }

    def import_all_products(self) -> ProductImportResult:
        """
        Full import

        Returns:
            ProductImportResult; success False when SIIGO returned no products
            (the local catalog is left untouched in that case)
        """
        start_time = time.time()
        errors: List[str] = []

        try:
            all_products = self.fetch_all_products()

            if not all_products:
                return ProductImportResult(
                    success=False,
                    message='No se encontraron productos en SIIGO',
                    duration_seconds=round(time.time() - start_time, 2),
                )

            deleted = self.products.delete_all()
            logger.info(f"Deleted {deleted} existing products before import")

            categories: List[str] = []
            imported = 0
            real_barcodes = 0
            temp_barcodes = 0

            for i, siigo_product in enumerate(all_products):
                try:
                    product = self.map_product(siigo_product, i)

                    category = product['category']
                    if category != DEFAULT_CATEGORY and category not in categories:
                        categories.append(category)

                    barcode = extract_barcode(siigo_product)
                    if barcode and barcode != PENDING_BARCODE:
                        real_barcodes += 1
                    else:
                        barcode = generate_temporary_barcode(
                            product['internal_code'] or f"PROD{i}", temp_barcodes
                        )
                        temp_barcodes += 1
                    product['barcode'] = barcode

                    self.products.insert_product(product)
                    imported += 1

                    if i > 0 and i % self.BATCH_PAUSE_EVERY == 0:
                        time.sleep(self.BATCH_PAUSE_SECONDS)

                except Exception as e:
                    error_msg = f"Error importing product {siigo_product.get('code')}: {e}"
                    logger.error(error_msg)
                    errors.append(error_msg)

            new_categories = 0
            try:
                new_categories = self.products.ensure_categories(categories)
                logger.info(f"Categories: {len(categories)} found, {new_categories} new")
            except Exception as e:
                logger.warning(f"Error inserting categories: {e}")
                errors.append(f"Error inserting categories: {e}")

            duration = round(time.time() - start_time, 2)
            logger.info(
                f"Product import finished: {imported}/{len(all_products)} products, "
                f"{real_barcodes} real barcodes, {temp_barcodes} temporary, {duration}s"
            )

            return ProductImportResult(
                success=True,
                message=f"Importados {imported} de {len(all_products)} productos",
                total_products=len(all_products),
                imported_products=imported,
                real_barcodes=real_barcodes,
                temp_barcodes=temp_barcodes,
                categories_created=new_categories,
                categories=categories,
                errors=errors[:10],
                duration_seconds=duration,
            )

        except Exception as e:
            logger.error(f"Product import failed: {e}")
            return ProductImportResult(
                success=False,
                message='Error en la importación completa de productos',
                errors=[str(e)],
                duration_seconds=round(time.time() - start_time, 2),
            )
