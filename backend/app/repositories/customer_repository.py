"""
Customer Repository - local copy of the SIIGO customer master

Author: Equipo Gestión de Pedidos
Date: 2025-09-04
"""
from typing import Dict, Any

from app.core.database import get_db_connection_dict

CUSTOMER_FIELDS = [
    'document_type', 'identification', 'check_digit', 'name', 'commercial_name',
    'phone', 'address', 'city', 'state', 'email', 'active',
]


class CustomerRepository:
    """Repository for the customers table"""

    def upsert(self, customer: Dict[str, Any]) -> str:
        """
        Insert or update a customer keyed by siigo_id

        Returns:
            'created' or 'updated'
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT id FROM customers WHERE siigo_id = %s", (customer['siigo_id'],))
            existing = cursor.fetchone()

            if existing:
                assignments = ', '.join(f"{field} = %s" for field in CUSTOMER_FIELDS)
                cursor.execute(
                    f"UPDATE customers SET {assignments}, updated_at = NOW() WHERE siigo_id = %s",
                    tuple(customer.get(field) for field in CUSTOMER_FIELDS) + (customer['siigo_id'],)
                )
                result = 'updated'
            else:
                columns = ', '.join(['siigo_id'] + CUSTOMER_FIELDS)
                placeholders = ', '.join(['%s'] * (len(CUSTOMER_FIELDS) + 1))
                cursor.execute(
                    f"INSERT INTO customers ({columns}, created_at, updated_at) "
                    f"VALUES ({placeholders}, NOW(), NOW())",
                    (customer['siigo_id'],) + tuple(customer.get(field) for field in CUSTOMER_FIELDS)
                )
                result = 'created'

            conn.commit()
            return result

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()
