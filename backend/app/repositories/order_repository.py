"""
Order Repository - Data Access Layer for Orders

Orders created from SIIGO invoices, their items, and the system user
used as created_by for automatic imports.

Author: Equipo Gestión de Pedidos
Date: 2025-09-03
"""
from typing import List, Optional, Dict, Any, Set

from app.core.database import get_db_connection_dict

ORDER_INSERT_COLUMNS = [
    'order_number', 'invoice_code', 'siigo_invoice_id', 'customer_name', 'commercial_name',
    'customer_phone', 'customer_address', 'customer_identification',
    'customer_id_type', 'siigo_customer_id', 'customer_person_type',
    'customer_email', 'customer_department', 'customer_country', 'customer_city',
    'total_amount', 'status', 'delivery_method', 'payment_method',
    'shipping_payment_method', 'siigo_public_url', 'siigo_observations',
    'siigo_invoice_created_at', 'created_by',
]


class OrderRepository:
    """
    Repository for Order data access

    All SQL queries for orders and order_items are centralized here.
    """

    # =========================================================================
    # Reads
    # =========================================================================

    def get_row(self, order_id: int) -> Optional[Dict[str, Any]]:
        """Raw orders row as dict"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT * FROM orders WHERE id = %s", (order_id,))
            row = cursor.fetchone()
            return dict(row) if row else None

        finally:
            cursor.close()
            conn.close()

    def get_items(self, order_id: int) -> List[Dict[str, Any]]:
        """Items of an order in insertion order"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(
                "SELECT * FROM order_items WHERE order_id = %s ORDER BY id",
                (order_id,)
            )
            return [dict(row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def find_id_by_siigo_invoice_id(self, siigo_invoice_id: str) -> Optional[int]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(
                "SELECT id FROM orders WHERE siigo_invoice_id = %s LIMIT 1",
                (siigo_invoice_id,)
            )
            row = cursor.fetchone()
            return row['id'] if row else None

        finally:
            cursor.close()
            conn.close()

    def get_imported_invoice_ids(self) -> Set[str]:
        """SIIGO invoice ids that already have an order"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(
                "SELECT siigo_invoice_id FROM orders WHERE siigo_invoice_id IS NOT NULL"
            )
            return {str(row['siigo_invoice_id']) for row in cursor.fetchall()}

        finally:
            cursor.close()
            conn.close()

    def get_system_user_id(self) -> Optional[int]:
        """User used as created_by for imports: 'sistema' first, then lowest admin id"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT id FROM users
                WHERE role IN ('admin', 'sistema')
                ORDER BY CASE WHEN username = 'sistema' THEN 1 ELSE 2 END, id
                LIMIT 1
            """)
            row = cursor.fetchone()
            return row['id'] if row else None

        finally:
            cursor.close()
            conn.close()

    # =========================================================================
    # Writes
    # =========================================================================

    def create(self, order_data: Dict[str, Any]) -> int:
        """
        Insert an order built from a SIIGO invoice

        Args:
            order_data: dict with the keys in ORDER_INSERT_COLUMNS

        Returns:
            New order ID
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        columns = ', '.join(ORDER_INSERT_COLUMNS)
        placeholders = ', '.join(['%s'] * len(ORDER_INSERT_COLUMNS))

        try:
            cursor.execute(
                f"INSERT INTO orders ({columns}, created_at) VALUES ({placeholders}, NOW()) RETURNING id",
                tuple(order_data.get(column) for column in ORDER_INSERT_COLUMNS)
            )
            order_id = cursor.fetchone()['id']
            conn.commit()
            return order_id

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def add_item(self, order_id: int, name: str, quantity: float, price: float,
                 description: Optional[str] = None, product_code: Optional[str] = None) -> int:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO order_items (order_id, name, quantity, price, description, product_code, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, NOW())
                RETURNING id
            """, (order_id, name, quantity, price, description, product_code))
            item_id = cursor.fetchone()['id']
            conn.commit()
            return item_id

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def update_total_and_notes(self, order_id: int, total_amount: float, notes: Optional[str]) -> None:
        """Only total and notes are refreshed from SIIGO; customer and payment data are preserved"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE orders SET
                    total_amount = %s,
                    notes = %s,
                    updated_at = NOW()
                WHERE id = %s
            """, (total_amount, notes, order_id))
            conn.commit()

        finally:
            cursor.close()
            conn.close()

    def count_from_siigo(self) -> Dict[str, Any]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT COUNT(*) AS count, MAX(siigo_invoice_created_at) AS last_invoice_date
                FROM orders
                WHERE siigo_invoice_id IS NOT NULL
            """)
            row = cursor.fetchone() or {}
            return {
                'orders_count': row.get('count') or 0,
                'last_invoice_date': row.get('last_invoice_date'),
            }

        finally:
            cursor.close()
            conn.close()
