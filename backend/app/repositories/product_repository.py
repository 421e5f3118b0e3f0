"""
Product Repository - Data Access Layer for Products

Handles all database queries for products and categories: the bulk
re-import from SIIGO, stock reconciliation and webhook updates.

Author: Equipo Gestión de Pedidos
Date: 2025-09-03
"""
from typing import List, Optional, Dict, Any, Iterable
from decimal import Decimal

from app.domain.product import Product
from app.core.database import get_db_connection_dict

PRODUCT_COLUMNS = """
    id, product_name, barcode, internal_code, category, description,
    standard_price, siigo_product_id, siigo_id, available_quantity, stock,
    is_active, created_at, updated_at, last_sync_at, stock_updated_at
"""


class ProductRepository:
    """
    Repository for Product data access

    All SQL queries for products are centralized here.
    Lookups return Product domain models; scan queries return light dicts.
    """

    @staticmethod
    def _map_row_to_product(row: dict) -> Product:
        """Map a products row to the Product domain model"""
        return Product(
            id=row['id'],
            product_name=row.get('product_name') or '',
            barcode=row.get('barcode'),
            internal_code=row.get('internal_code'),
            category=row.get('category'),
            description=row.get('description'),
            standard_price=row.get('standard_price') or Decimal('0'),
            siigo_product_id=row.get('siigo_product_id'),
            siigo_id=row.get('siigo_id'),
            available_quantity=int(row.get('available_quantity') or 0),
            stock=row.get('stock'),
            is_active=bool(row.get('is_active')),
            created_at=row.get('created_at'),
            updated_at=row.get('updated_at'),
            last_sync_at=row.get('last_sync_at'),
            stock_updated_at=row.get('stock_updated_at'),
        )

    def _find_one(self, column: str, value: Any) -> Optional[Product]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(
                f"SELECT {PRODUCT_COLUMNS} FROM products WHERE {column} = %s LIMIT 1",
                (value,)
            )
            row = cursor.fetchone()
            if not row:
                return None
            return self._map_row_to_product(row)

        finally:
            cursor.close()
            conn.close()

    # =========================================================================
    # Lookups
    # =========================================================================

    def find_by_id(self, product_id: int) -> Optional[Product]:
        """
        Find product by ID

        Args:
            product_id: Internal product ID

        Returns:
            Product or None if not found
        """
        return self._find_one('id', product_id)

    def find_by_siigo_id(self, siigo_id: str) -> Optional[Product]:
        return self._find_one('siigo_id', siigo_id)

    def find_by_internal_code(self, internal_code: str) -> Optional[Product]:
        return self._find_one('internal_code', internal_code)

    def find_recently_updated(self, hours: int = 6, limit: int = 200) -> List[Dict[str, Any]]:
        """Products linked to SIIGO whose updated_at falls in the last `hours`"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT id, siigo_id, internal_code, product_name
                FROM products
                WHERE siigo_id IS NOT NULL
                  AND updated_at > NOW() - (%s * INTERVAL '1 hour')
                ORDER BY updated_at DESC
                LIMIT %s
            """, (hours, limit))
            return [dict(row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def find_oldest_synced(self, limit: int = 200) -> List[Dict[str, Any]]:
        """Products linked to SIIGO, never-synced first, then oldest last_sync_at"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT id, siigo_id, internal_code, product_name, available_quantity, is_active
                FROM products
                WHERE siigo_id IS NOT NULL
                ORDER BY COALESCE(last_sync_at, TIMESTAMP '1970-01-01') ASC
                LIMIT %s
            """, (limit,))
            return [dict(row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    # =========================================================================
    # Bulk import
    # =========================================================================

    def delete_all(self) -> int:
        """Remove every product (full re-import). Returns rows deleted."""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("DELETE FROM products")
            deleted = cursor.rowcount
            conn.commit()
            return deleted

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def insert_product(self, product: Dict[str, Any]) -> int:
        """
        Insert a product coming from SIIGO

        Args:
            product: dict with product_name, barcode, internal_code, category,
                description, standard_price, siigo_id, available_quantity, is_active

        Returns:
            New product ID
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO products (
                    product_name, barcode, internal_code, category, description,
                    standard_price, siigo_product_id, siigo_id, available_quantity,
                    is_active, created_at, updated_at, last_sync_at, stock
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, NOW(), NOW(), NOW(), %s)
                RETURNING id
            """, (
                product['product_name'],
                product.get('barcode'),
                product.get('internal_code'),
                product.get('category'),
                product.get('description') or '',
                product.get('standard_price') or 0,
                product.get('internal_code'),
                product.get('siigo_id'),
                product.get('available_quantity') or 0,
                bool(product.get('is_active')),
                product.get('available_quantity') or 0,
            ))
            product_id = cursor.fetchone()['id']
            conn.commit()
            return product_id

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def ensure_categories(self, categories: Iterable[str]) -> int:
        """
        Insert categories that don't exist yet

        Returns:
            Number of categories created
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()
        created = 0

        try:
            for name in categories:
                cursor.execute("SELECT id FROM categories WHERE name = %s", (name,))
                if cursor.fetchone():
                    continue

                cursor.execute("""
                    INSERT INTO categories (name, description, created_at, updated_at)
                    VALUES (%s, %s, NOW(), NOW())
                """, (name, f"Categoría {name} importada desde SIIGO"))
                created += 1

            conn.commit()
            return created

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    # =========================================================================
    # Stock updates
    # =========================================================================

    def update_stock(self, product_id: int, available_quantity: int, is_active: bool) -> None:
        """Store a new stock value reported by SIIGO"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE products
                SET available_quantity = %s,
                    is_active = %s,
                    stock_updated_at = NOW(),
                    last_sync_at = NOW(),
                    updated_at = NOW()
                WHERE id = %s
            """, (available_quantity, is_active, product_id))
            conn.commit()

        finally:
            cursor.close()
            conn.close()

    def touch_last_sync(self, product_id: int) -> None:
        """Mark product as checked without changes"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("UPDATE products SET last_sync_at = NOW() WHERE id = %s", (product_id,))
            conn.commit()

        finally:
            cursor.close()
            conn.close()

    def mark_inactive(self, product_id: int) -> None:
        """Product no longer exists in SIIGO"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE products
                SET is_active = FALSE, last_sync_at = NOW()
                WHERE id = %s
            """, (product_id,))
            conn.commit()

        finally:
            cursor.close()
            conn.close()

    def update_quantity_by_siigo_id(self, siigo_id: str, available_quantity: int) -> int:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE products
                SET available_quantity = %s, stock_updated_at = NOW(), updated_at = NOW()
                WHERE siigo_id = %s
            """, (available_quantity, siigo_id))
            updated = cursor.rowcount
            conn.commit()
            return updated

        finally:
            cursor.close()
            conn.close()

    def apply_siigo_inventory(self, product_id: int, available_quantity: int, is_active: bool,
                              siigo_id: str) -> None:
        """Full inventory pass: stock, state and the SIIGO id the product matched"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE products
                SET available_quantity = %s,
                    is_active = %s,
                    siigo_id = %s,
                    stock_updated_at = NOW(),
                    updated_at = NOW()
                WHERE id = %s
            """, (available_quantity, is_active, siigo_id, product_id))
            conn.commit()

        finally:
            cursor.close()
            conn.close()

    def update_from_siigo_payload(self, siigo_id: str, name: str, is_active: bool,
                                  available_quantity: int) -> int:
        """Apply a products.update webhook payload"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE products
                SET product_name = COALESCE(%s, product_name),
                    is_active = %s,
                    available_quantity = %s,
                    updated_at = NOW()
                WHERE siigo_id = %s
            """, (name, is_active, available_quantity, siigo_id))
            updated = cursor.rowcount
            conn.commit()
            return updated

        finally:
            cursor.close()
            conn.close()

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stock_stats(self) -> Dict[str, Any]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT
                    COUNT(*) AS total_products,
                    COUNT(last_sync_at) AS synced_products,
                    COUNT(*) FILTER (WHERE stock_updated_at > NOW() - INTERVAL '1 day') AS updated_today,
                    AVG(available_quantity) AS avg_stock,
                    MAX(last_sync_at) AS last_sync_time
                FROM products
                WHERE siigo_id IS NOT NULL
            """)
            row = cursor.fetchone() or {}
            stats = dict(row)
            if stats.get('avg_stock') is not None:
                stats['avg_stock'] = float(stats['avg_stock'])
            return stats

        finally:
            cursor.close()
            conn.close()
