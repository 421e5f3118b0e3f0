"""
Sync Log Repository - siigo_sync_log access

Every invoice import writes a row (sync_type 'import', status success/error)
and every update check that changes or fails writes another (sync_type
'update', status updated/error). The update poller reads the successful
imports back to know which invoices to re-check.

Author: Equipo Gestión de Pedidos
Date: 2025-09-03
"""
from typing import List, Optional, Dict, Any

from app.core.database import get_db_connection_dict

SYNC_TYPE_IMPORT = 'import'
SYNC_TYPE_UPDATE = 'update'

STATUS_SUCCESS = 'success'
STATUS_ERROR = 'error'
STATUS_UPDATED = 'updated'


class SyncLogRepository:
    """Repository for siigo_sync_log"""

    def _insert(self, siigo_invoice_id: str, sync_type: str, sync_status: str,
                order_id: Optional[int] = None, error_message: Optional[str] = None) -> None:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO siigo_sync_log (
                    siigo_invoice_id, order_id, sync_type, sync_status, error_message, processed_at
                ) VALUES (%s, %s, %s, %s, %s, NOW())
            """, (siigo_invoice_id, order_id, sync_type, sync_status, error_message))
            conn.commit()

        finally:
            cursor.close()
            conn.close()

    def log_import_success(self, siigo_invoice_id: str, order_id: int) -> None:
        self._insert(siigo_invoice_id, SYNC_TYPE_IMPORT, STATUS_SUCCESS, order_id=order_id)

    def log_import_error(self, siigo_invoice_id: str, error_message: str) -> None:
        self._insert(siigo_invoice_id, SYNC_TYPE_IMPORT, STATUS_ERROR, error_message=error_message)

    def log_update(self, siigo_invoice_id: str, order_id: int, status: str,
                   error_message: Optional[str] = None) -> None:
        self._insert(siigo_invoice_id, SYNC_TYPE_UPDATE, status, order_id=order_id,
                     error_message=error_message)

    def has_successful_import(self, siigo_invoice_id: str) -> bool:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT id FROM siigo_sync_log
                WHERE siigo_invoice_id = %s AND sync_status = %s
                LIMIT 1
            """, (siigo_invoice_id, STATUS_SUCCESS))
            return cursor.fetchone() is not None

        finally:
            cursor.close()
            conn.close()

    def get_recent_successful_imports(self, days: int = 7) -> List[Dict[str, Any]]:
        """Distinct (invoice, order) pairs imported successfully in the last `days`, newest first"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT siigo_invoice_id, order_id, MAX(processed_at) AS processed_at
                FROM siigo_sync_log
                WHERE sync_status = %s
                  AND order_id IS NOT NULL
                  AND processed_at >= NOW() - (%s * INTERVAL '1 day')
                GROUP BY siigo_invoice_id, order_id
                ORDER BY processed_at DESC
            """, (STATUS_SUCCESS, days))
            return [dict(row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def find_order_for_invoice(self, siigo_invoice_id: str) -> Optional[int]:
        """Order created by the latest successful import of an invoice"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT order_id FROM siigo_sync_log
                WHERE siigo_invoice_id = %s AND sync_status = %s
                ORDER BY processed_at DESC
                LIMIT 1
            """, (siigo_invoice_id, STATUS_SUCCESS))
            row = cursor.fetchone()
            return row['order_id'] if row else None

        finally:
            cursor.close()
            conn.close()

    def get_update_stats(self, hours: int = 24) -> Dict[str, Any]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT
                    COUNT(*) AS total_updates,
                    COUNT(*) FILTER (WHERE sync_status = %s) AS successful_updates,
                    COUNT(*) FILTER (WHERE sync_status = %s) AS failed_updates,
                    MAX(processed_at) AS last_update
                FROM siigo_sync_log
                WHERE sync_type = %s
                  AND processed_at >= NOW() - (%s * INTERVAL '1 hour')
            """, (STATUS_UPDATED, STATUS_ERROR, SYNC_TYPE_UPDATE, hours))
            row = cursor.fetchone()
            return dict(row) if row else {
                'total_updates': 0, 'successful_updates': 0, 'failed_updates': 0, 'last_update': None
            }

        finally:
            cursor.close()
            conn.close()

    def get_last_processed_at(self, sync_type: str, status: str) -> Optional[Any]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT MAX(processed_at) AS last_sync
                FROM siigo_sync_log
                WHERE sync_type = %s AND sync_status = %s
            """, (sync_type, status))
            row = cursor.fetchone()
            return row['last_sync'] if row else None

        finally:
            cursor.close()
            conn.close()
