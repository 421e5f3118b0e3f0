"""
Tests for SIIGO webhook subscriptions and payload processing

Author: Equipo Gestión de Pedidos
Date: 2025-09-13
"""
from unittest.mock import MagicMock, patch

import pytest

from app.domain.product import Product
from app.repositories.webhook_repository import STOCK_UPDATE_TOPIC
from app.services.webhook_service import (
    WebhookService, PRODUCT_CREATE_TOPIC, PRODUCT_UPDATE_TOPIC, STOCK_TOPICS,
)


@pytest.fixture
def products():
    return MagicMock()


@pytest.fixture
def webhooks():
    webhooks = MagicMock()
    webhooks.insert_log.return_value = 77
    return webhooks


@pytest.fixture
def service(mock_connector, products, webhooks, mock_publisher):
    return WebhookService(
        connector=mock_connector,
        product_repository=products,
        webhook_repository=webhooks,
        publisher=mock_publisher,
        webhook_base_url='https://pedidos.example.co/api/webhooks/',
    )


@pytest.fixture
def product():
    return Product(id=3, product_name='Café 500g', siigo_id='uuid-3', available_quantity=10)


class TestSubscriptions:

    def test_subscribe(self, service, mock_connector, webhooks):
        # Arrange
        mock_connector.create_webhook_subscription.return_value = {'id': 'wh-1', 'topic': STOCK_UPDATE_TOPIC}

        # Act
        subscription = service.subscribe_to_webhook(STOCK_UPDATE_TOPIC)

        # Assert
        assert subscription['id'] == 'wh-1'
        mock_connector.create_webhook_subscription.assert_called_once_with({
            'application_id': 'GestionPedidos',
            'topic': STOCK_UPDATE_TOPIC,
            'url': 'https://pedidos.example.co/api/webhooks/receive',
        })
        webhooks.save_subscription.assert_called_once_with(subscription)

    @patch('app.services.webhook_service.time.sleep')
    def test_setup_continues_after_failure(self, mock_sleep, service, mock_connector):
        mock_connector.create_webhook_subscription.side_effect = [
            {'id': 'wh-1'}, Exception('409 conflict'), {'id': 'wh-3'},
        ]

        subscriptions = service.setup_stock_webhooks()

        assert [s['id'] for s in subscriptions] == ['wh-1', 'wh-3']
        assert mock_connector.create_webhook_subscription.call_count == len(STOCK_TOPICS)


class TestStockUpdate:

    def test_stock_change(self, service, products, webhooks, mock_publisher, product):
        # Arrange
        products.find_by_siigo_id.return_value = product
        payload = {'topic': STOCK_UPDATE_TOPIC, 'id': 'uuid-3', 'available_quantity': 6}

        # Act
        processed = service.process_webhook_payload(payload)

        # Assert
        assert processed is True
        webhooks.insert_log.assert_called_once_with(payload)
        products.update_quantity_by_siigo_id.assert_called_once_with('uuid-3', 6)
        webhooks.set_log_stock_change.assert_called_once_with(77, 10, 6)
        webhooks.mark_log_processed.assert_called_once_with(77, True, None)
        assert mock_publisher.publish.call_args.args[1]['source'] == 'webhook'

    def test_same_stock(self, service, products, mock_publisher, product):
        products.find_by_siigo_id.return_value = product

        assert service.process_stock_update({'id': 'uuid-3', 'available_quantity': 10}) is True
        products.update_quantity_by_siigo_id.assert_not_called()
        mock_publisher.publish.assert_not_called()

    def test_inactive_product_not_processed(self, service, products, webhooks, product):
        product.is_active = False
        products.find_by_siigo_id.return_value = product

        processed = service.process_webhook_payload(
            {'topic': STOCK_UPDATE_TOPIC, 'id': 'uuid-3', 'available_quantity': 1}
        )

        assert processed is False
        webhooks.mark_log_processed.assert_called_once_with(77, False, None)


class TestOtherTopics:

    def test_product_update(self, service, products, product):
        products.find_by_siigo_id.return_value = product
        payload = {'topic': PRODUCT_UPDATE_TOPIC, 'id': 'uuid-3', 'name': 'Café 1kg',
                   'active': True, 'available_quantity': 8}

        assert service.process_webhook_payload(payload) is True
        products.update_from_siigo_payload.assert_called_once_with('uuid-3', 'Café 1kg', True, 8)

    def test_product_create_acknowledged(self, service, products):
        products.find_by_siigo_id.return_value = None

        assert service.process_webhook_payload({'topic': PRODUCT_CREATE_TOPIC, 'id': 'new'}) is True

    def test_unknown_topic(self, service, webhooks):
        assert service.process_webhook_payload({'topic': 'public.siigoapi.invoices.create', 'id': 'x'}) is False
        webhooks.mark_log_processed.assert_called_once_with(77, False, None)

    def test_handler_error_recorded(self, service, products, webhooks):
        products.find_by_siigo_id.side_effect = Exception('db down')

        processed = service.process_webhook_payload({'topic': STOCK_UPDATE_TOPIC, 'id': 'uuid-3'})

        assert processed is False
        webhooks.mark_log_processed.assert_called_once_with(77, False, 'db down')
