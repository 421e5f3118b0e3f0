"""
Webhook Repository - SIIGO webhook subscriptions and received payload log

Author: Equipo Gestión de Pedidos
Date: 2025-09-04
"""
import json
from typing import List, Optional, Dict, Any

from app.core.database import get_db_connection_dict

STOCK_UPDATE_TOPIC = 'public.siigoapi.products.stock.update'


class WebhookRepository:
    """Repository for webhook_subscriptions and webhook_logs"""

    def save_subscription(self, subscription: Dict[str, Any]) -> None:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO webhook_subscriptions (
                    webhook_id, application_id, topic, url, company_key, active, created_at, updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, NOW(), NOW())
                ON CONFLICT (webhook_id) DO UPDATE SET
                    active = EXCLUDED.active,
                    updated_at = NOW()
            """, (
                subscription.get('id'),
                subscription.get('application_id'),
                subscription.get('topic'),
                subscription.get('url'),
                subscription.get('company_key'),
                bool(subscription.get('active', True)),
            ))
            conn.commit()

        finally:
            cursor.close()
            conn.close()

    def get_active_subscriptions(self) -> List[Dict[str, Any]]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT * FROM webhook_subscriptions
                WHERE active = TRUE
                ORDER BY created_at DESC
            """)
            return [dict(row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def insert_log(self, payload: Dict[str, Any]) -> int:
        """Store a received payload before processing it. Returns log id."""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO webhook_logs (
                    topic, company_key, product_id, siigo_product_id, product_code, payload,
                    processed, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, FALSE, NOW())
                RETURNING id
            """, (
                payload.get('topic'),
                payload.get('company_key'),
                payload.get('id'),
                payload.get('id'),
                payload.get('code'),
                json.dumps(payload, ensure_ascii=False, default=str),
            ))
            log_id = cursor.fetchone()['id']
            conn.commit()
            return log_id

        finally:
            cursor.close()
            conn.close()

    def mark_log_processed(self, log_id: int, processed: bool, error_message: Optional[str] = None) -> None:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE webhook_logs
                SET processed = %s, error_message = %s
                WHERE id = %s
            """, (processed, error_message, log_id))
            conn.commit()

        finally:
            cursor.close()
            conn.close()

    def set_log_stock_change(self, log_id: int, old_stock: int, new_stock: int) -> None:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE webhook_logs SET old_stock = %s, new_stock = %s WHERE id = %s
            """, (old_stock, new_stock, log_id))
            conn.commit()

        finally:
            cursor.close()
            conn.close()

    def get_logs(self, limit: int = 100) -> List[Dict[str, Any]]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT * FROM webhook_logs
                ORDER BY created_at DESC
                LIMIT %s
            """, (limit,))
            return [dict(row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def get_stock_webhook_stats(self) -> Dict[str, Any]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT
                    COUNT(*) AS total_webhooks,
                    COUNT(*) FILTER (WHERE processed = TRUE) AS processed_webhooks,
                    COUNT(*) FILTER (WHERE created_at > NOW() - INTERVAL '1 hour') AS webhooks_last_hour
                FROM webhook_logs
                WHERE topic = %s
            """, (STOCK_UPDATE_TOPIC,))
            row = cursor.fetchone()
            return dict(row) if row else {}

        finally:
            cursor.close()
            conn.close()
