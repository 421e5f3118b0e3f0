"""
Unit tests for SyncLogRepository, WebhookRepository and CustomerRepository

Author: Equipo Gestión de Pedidos
Date: 2025-09-12
"""
import json
from unittest.mock import patch

from app.repositories.customer_repository import CustomerRepository, CUSTOMER_FIELDS
from app.repositories.sync_log_repository import SyncLogRepository
from app.repositories.webhook_repository import WebhookRepository


class TestSyncLogRepository:

    @patch('app.repositories.sync_log_repository.get_db_connection_dict')
    def test_log_import_success(self, mock_get_conn, db_mock):
        conn, cursor = db_mock()
        mock_get_conn.return_value = conn

        SyncLogRepository().log_import_success('inv-1', 42)

        assert cursor.execute.call_args.args[1] == ('inv-1', 42, 'import', 'success', None)
        conn.commit.assert_called_once()

    @patch('app.repositories.sync_log_repository.get_db_connection_dict')
    def test_log_update_error(self, mock_get_conn, db_mock):
        conn, cursor = db_mock()
        mock_get_conn.return_value = conn

        SyncLogRepository().log_update('inv-1', 42, 'error', 'timeout')

        assert cursor.execute.call_args.args[1] == ('inv-1', 42, 'update', 'error', 'timeout')

    @patch('app.repositories.sync_log_repository.get_db_connection_dict')
    def test_has_successful_import(self, mock_get_conn, db_mock):
        conn, _ = db_mock(fetchone={'id': 3})
        mock_get_conn.return_value = conn

        assert SyncLogRepository().has_successful_import('inv-1') is True

    @patch('app.repositories.sync_log_repository.get_db_connection_dict')
    def test_recent_successful_imports(self, mock_get_conn, db_mock):
        conn, cursor = db_mock(fetchall=[{'siigo_invoice_id': 'a', 'order_id': 1, 'processed_at': None}])
        mock_get_conn.return_value = conn

        rows = SyncLogRepository().get_recent_successful_imports(days=7)

        assert rows[0]['order_id'] == 1
        assert cursor.execute.call_args.args[1] == ('success', 7)

    @patch('app.repositories.sync_log_repository.get_db_connection_dict')
    def test_update_stats_default(self, mock_get_conn, db_mock):
        conn, _ = db_mock(fetchone=None)
        mock_get_conn.return_value = conn

        stats = SyncLogRepository().get_update_stats()

        assert stats['total_updates'] == 0
        assert stats['last_update'] is None


class TestWebhookRepository:

    @patch('app.repositories.webhook_repository.get_db_connection_dict')
    def test_insert_log_stores_payload_json(self, mock_get_conn, db_mock):
        # Arrange
        conn, cursor = db_mock(fetchone={'id': 77})
        mock_get_conn.return_value = conn
        payload = {'topic': 'public.siigoapi.products.stock.update', 'id': 'uuid-1', 'code': 'CAF500'}

        # Act
        log_id = WebhookRepository().insert_log(payload)

        # Assert
        assert log_id == 77
        params = cursor.execute.call_args.args[1]
        assert params[2] == 'uuid-1'
        assert params[4] == 'CAF500'
        assert json.loads(params[5]) == payload

    @patch('app.repositories.webhook_repository.get_db_connection_dict')
    def test_save_subscription_upserts(self, mock_get_conn, db_mock):
        conn, cursor = db_mock()
        mock_get_conn.return_value = conn

        WebhookRepository().save_subscription({'id': 'wh-1', 'topic': 't', 'url': 'u'})

        sql, params = cursor.execute.call_args.args
        assert 'ON CONFLICT (webhook_id)' in sql
        assert params[0] == 'wh-1'
        assert params[-1] is True


class TestCustomerRepository:

    @patch('app.repositories.customer_repository.get_db_connection_dict')
    def test_upsert_creates(self, mock_get_conn, db_mock):
        conn, cursor = db_mock(fetchone=None)
        mock_get_conn.return_value = conn
        customer = {'siigo_id': 'c-1', 'name': 'Ana Ruiz', 'active': True}

        assert CustomerRepository().upsert(customer) == 'created'
        params = cursor.execute.call_args.args[1]
        assert params[0] == 'c-1'
        assert len(params) == len(CUSTOMER_FIELDS) + 1

    @patch('app.repositories.customer_repository.get_db_connection_dict')
    def test_upsert_updates(self, mock_get_conn, db_mock):
        conn, cursor = db_mock(fetchone={'id': 5})
        mock_get_conn.return_value = conn

        assert CustomerRepository().upsert({'siigo_id': 'c-1', 'name': 'Ana'}) == 'updated'
        assert cursor.execute.call_args.args[1][-1] == 'c-1'
        conn.commit.assert_called_once()
