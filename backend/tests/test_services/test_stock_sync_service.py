"""
Tests for the scheduled stock sync

Author: Equipo Gestión de Pedidos
Date: 2025-09-13
"""
from unittest.mock import MagicMock, patch

import pytest

from app.connectors.siigo_connector import SiigoAPIError
from app.domain.product import Product
from app.services.stock_sync_service import StockSyncService


@pytest.fixture
def products():
    return MagicMock()


@pytest.fixture
def webhooks():
    return MagicMock()


@pytest.fixture
def webhook_service():
    return MagicMock()


@pytest.fixture
def service(mock_connector, products, webhooks, webhook_service, mock_publisher):
    return StockSyncService(
        connector=mock_connector,
        product_repository=products,
        webhook_repository=webhooks,
        webhook_service=webhook_service,
        publisher=mock_publisher,
        interval_minutes=5,
    )


@pytest.fixture
def local_product():
    return {
        'id': 4,
        'siigo_id': 'CAF500',
        'product_name': 'Café 500g',
        'available_quantity': 10,
        'is_active': True,
    }


class TestUpdateProductStock:

    def test_stock_change(self, service, mock_connector, products, mock_publisher, local_product):
        # Arrange
        mock_connector.get_product_by_code.return_value = {'available_quantity': 4, 'active': True}

        # Act
        changed = service.update_product_stock(local_product)

        # Assert
        assert changed is True
        products.update_stock.assert_called_once_with(4, 4, True)
        payload = mock_publisher.publish.call_args.args[1]
        assert payload['source'] == 'scheduled_sync'
        assert payload['oldStock'] == 10
        assert payload['newStock'] == 4

    def test_deactivation_without_stock_change(self, service, mock_connector, products, local_product):
        mock_connector.get_product_by_code.return_value = {'available_quantity': 10, 'active': False}

        assert service.update_product_stock(local_product) is True
        products.update_stock.assert_called_once_with(4, 10, False)

    def test_unchanged(self, service, mock_connector, products, mock_publisher, local_product):
        mock_connector.get_product_by_code.return_value = {'available_quantity': 10, 'active': True}

        assert service.update_product_stock(local_product) is False
        products.touch_last_sync.assert_called_once_with(4)
        mock_publisher.publish.assert_not_called()

    def test_not_found_marks_inactive(self, service, mock_connector, products, local_product):
        mock_connector.get_product_by_code.side_effect = SiigoAPIError('nf', status_code=404)

        assert service.update_product_stock(local_product) is False
        products.mark_inactive.assert_called_once_with(4)

    def test_empty_lookup_raises(self, service, mock_connector, local_product):
        mock_connector.get_product_by_code.return_value = None

        with pytest.raises(LookupError):
            service.update_product_stock(local_product)


class TestSyncProductStock:

    @patch('app.services.stock_sync_service.time.sleep')
    def test_counts_errors(self, mock_sleep, service, products, local_product):
        products.find_oldest_synced.return_value = [local_product, dict(local_product, id=5)]

        with patch.object(service, 'update_product_stock', side_effect=[True, Exception('timeout')]):
            result = service.sync_product_stock()

        assert result == {'updated': 1, 'errors': 1}
        products.find_oldest_synced.assert_called_once_with(limit=50)

    def test_query_failure_returns_zero(self, service, products):
        products.find_oldest_synced.side_effect = Exception('db down')

        assert service.sync_product_stock() == {'updated': 0, 'errors': 0}


class TestSyncSpecificProduct:

    def test_unknown_product(self, service, products):
        products.find_by_siigo_id.return_value = None

        assert service.sync_specific_product('ZZZ') is False

    def test_known_product(self, service, products, mock_connector):
        products.find_by_siigo_id.return_value = Product(
            id=4, product_name='Café 500g', siigo_id='CAF500', available_quantity=10,
        )
        mock_connector.get_product_by_code.return_value = {'available_quantity': 2}

        assert service.sync_specific_product('CAF500') is True
        products.update_stock.assert_called_once_with(4, 2, True)

    def test_error_returns_false(self, service, products):
        products.find_by_siigo_id.side_effect = Exception('db down')

        assert service.sync_specific_product('CAF500') is False


class TestLifecycleAndStats:

    @patch('app.services.stock_sync_service.IntervalTimer')
    def test_start_configures_webhooks_once(self, mock_timer_cls, service, webhook_service):
        timer = mock_timer_cls.return_value
        timer.is_running = False

        service.start()
        service.start()

        webhook_service.setup_stock_webhooks.assert_called_once()
        assert service.webhooks_configured is True
        assert mock_timer_cls.call_count == 2
        assert mock_timer_cls.call_args.args[:2] == ('stock-sync', 300)

    @patch('app.services.stock_sync_service.IntervalTimer')
    def test_webhook_failure_does_not_block_start(self, mock_timer_cls, service, webhook_service):
        webhook_service.setup_stock_webhooks.side_effect = Exception('SIIGO down')

        service.start()

        assert service.webhooks_configured is False
        mock_timer_cls.return_value.start.assert_called_once()

    def test_stats(self, service, products, webhooks):
        products.get_stock_stats.return_value = {'total_products': 3}
        webhooks.get_stock_webhook_stats.return_value = {'total_webhooks': 1}

        stats = service.get_stock_stats()

        assert stats == {
            'products': {'total_products': 3},
            'webhooks': {'total_webhooks': 1},
            'webhooksConfigured': False,
            'syncRunning': False,
        }

    def test_stats_error(self, service, products):
        products.get_stock_stats.side_effect = Exception('db down')

        assert service.get_stock_stats() is None
