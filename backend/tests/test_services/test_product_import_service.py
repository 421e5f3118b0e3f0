"""
Tests for the complete SIIGO product import

Author: Equipo Gestión de Pedidos
Date: 2025-09-12
"""
from unittest.mock import MagicMock, patch

import pytest

from app.connectors.siigo_connector import SiigoAPIError
from app.services.product_import_service import (
    ProductImportService,
    generate_temporary_barcode,
    extract_barcode,
    extract_price,
    PAGE_SIZE,
)


def siigo_product(code, **overrides):
    product = {
        'id': f'uuid-{code}',
        'code': code,
        'name': f'Producto {code}',
        'account_group': {'id': 1, 'name': 'Bebidas'},
        'prices': [{'price_list': [{'position': 1, 'value': 2500}]}],
        'available_quantity': 10,
        'active': True,
    }
    product.update(overrides)
    return product


@pytest.fixture
def products():
    products = MagicMock()
    products.delete_all.return_value = 3
    products.ensure_categories.return_value = 1
    return products


@pytest.fixture
def service(mock_connector, products):
    return ProductImportService(connector=mock_connector, product_repository=products)


class TestFieldExtraction:

    @patch('app.services.product_import_service.time.time', return_value=1700000000.5)
    def test_temporary_barcode_format(self, mock_time):
        assert generate_temporary_barcode('abc12345678', 3) == 'COMPANY-ABC12345-00000500-0003'

    def test_barcode_from_field(self):
        assert extract_barcode({'barcode': ' 7701234 '}) == '7701234'

    def test_barcode_from_additional_fields(self):
        assert extract_barcode({'additional_fields': {'barcode': '7705555'}}) == '7705555'

    def test_barcode_from_metadata(self):
        product = {'metadata': [{'name': 'Código de Barras', 'value': '7709999'}]}
        assert extract_barcode(product) == '7709999'

    def test_no_barcode(self):
        assert extract_barcode({'barcode': '   '}) is None

    def test_price(self):
        assert extract_price(siigo_product('A')) == 2500.0

    def test_price_missing(self):
        assert extract_price({'prices': []}) == 0.0


class TestImportAllProducts:

    @patch('app.services.product_import_service.time.sleep')
    def test_replaces_catalog(self, mock_sleep, service, mock_connector, products):
        # Arrange
        mock_connector.get_products.return_value = [
            siigo_product('A', barcode='7701'),
            siigo_product('B', account_group=None, active=False),
        ]

        # Act
        result = service.import_all_products()

        # Assert
        assert result.success is True
        assert result.total_products == 2
        assert result.imported_products == 2
        assert result.real_barcodes == 1
        assert result.temp_barcodes == 1
        assert result.categories == ['Bebidas']
        assert result.categories_created == 1
        products.delete_all.assert_called_once()

        first, second = [c.args[0] for c in products.insert_product.call_args_list]
        assert first['barcode'] == '7701'
        assert first['standard_price'] == 2500.0
        assert first['siigo_id'] == 'uuid-A'
        assert second['barcode'].startswith('COMPANY-B-')
        assert second['category'] == 'Sin categoría'
        assert second['is_active'] is False
        products.ensure_categories.assert_called_once_with(['Bebidas'])

    @patch('app.services.product_import_service.time.sleep')
    def test_existing_categories_not_counted_as_created(self, mock_sleep, service, mock_connector, products):
        mock_connector.get_products.return_value = [siigo_product('A')]
        products.ensure_categories.return_value = 0

        result = service.import_all_products()

        assert result.categories == ['Bebidas']
        assert result.categories_created == 0

    @patch('app.services.product_import_service.time.sleep')
    def test_pending_barcode_gets_temporary(self, mock_sleep, service, mock_connector, products):
        mock_connector.get_products.return_value = [siigo_product('C', barcode='PENDIENTE')]

        result = service.import_all_products()

        assert result.temp_barcodes == 1
        assert products.insert_product.call_args.args[0]['barcode'].startswith('COMPANY-C-')

    @patch('app.services.product_import_service.time.sleep')
    def test_empty_catalog_keeps_local_products(self, mock_sleep, service, mock_connector, products):
        mock_connector.get_products.return_value = []

        result = service.import_all_products()

        assert result.success is False
        assert result.message == 'No se encontraron productos en SIIGO'
        products.delete_all.assert_not_called()

    @patch('app.services.product_import_service.time.sleep')
    def test_insert_errors_collected(self, mock_sleep, service, mock_connector, products):
        mock_connector.get_products.return_value = [siigo_product('A'), siigo_product('B')]
        products.insert_product.side_effect = [Exception('duplicate key'), 2]

        result = service.import_all_products()

        assert result.success is True
        assert result.imported_products == 1
        assert len(result.errors) == 1
        assert 'duplicate key' in result.errors[0]

    @patch('app.services.product_import_service.time.sleep')
    def test_delete_failure_reports_error(self, mock_sleep, service, mock_connector, products):
        mock_connector.get_products.return_value = [siigo_product('A')]
        products.delete_all.side_effect = Exception('connection lost')

        result = service.import_all_products()

        assert result.success is False
        assert result.errors == ['connection lost']


class TestFetchAllProducts:

    @patch('app.services.product_import_service.time.sleep')
    def test_failing_page_keeps_fetched_products(self, mock_sleep, service, mock_connector):
        full_page = [siigo_product(str(i)) for i in range(PAGE_SIZE)]
        mock_connector.get_products.side_effect = [full_page, SiigoAPIError('server error', status_code=500)]

        products = service.fetch_all_products()

        assert len(products) == PAGE_SIZE
        assert mock_connector.get_products.call_count == 2

    @patch('app.services.product_import_service.time.sleep')
    def test_stops_on_short_page(self, mock_sleep, service, mock_connector):
        mock_connector.get_products.return_value = [siigo_product('A')]

        service.fetch_all_products()

        mock_connector.get_products.assert_called_once_with(page=1, page_size=PAGE_SIZE)
