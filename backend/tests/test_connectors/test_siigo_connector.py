"""
Tests for SiigoConnector

The requests.Session is a MagicMock: session.post answers /auth and
session.request answers every API call.

Author: Equipo Gestión de Pedidos
Date: 2025-09-12
"""
from datetime import date
from unittest.mock import MagicMock, patch

import pytest
import requests

from app.core.config import settings
from app.connectors.siigo_connector import (
    SiigoConnector,
    SiigoAPIError,
    SiigoAuthError,
    SiigoNotConfiguredError,
    normalize_base_url,
    format_date_for_siigo,
)


def make_response(status_code=200, json_data=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = json_data if json_data is not None else {}
    response.content = b'{}' if json_data is not None else b''
    response.text = ''
    return response


def auth_response(token='tok-1', expires_in=3600):
    return make_response(200, {'access_token': token, 'expires_in': expires_in})


@pytest.fixture
def session():
    session = MagicMock()
    session.post.return_value = auth_response()
    return session


@pytest.fixture
def connector(session):
    return SiigoConnector(
        base_url='https://api.siigo.com/v1',
        username='api@empresa.co',
        access_key='secret',
        rate_limit_delay=0,
        max_retries=3,
        use_db_credentials=False,
        session=session,
    )


class TestHelpers:
    """URL and date normalization"""

    def test_normalize_base_url_strips_v1_and_slash(self):
        assert normalize_base_url('https://api.siigo.com/v1/') == 'https://api.siigo.com'
        assert normalize_base_url('https://api.siigo.com') == 'https://api.siigo.com'

    def test_normalize_base_url_empty(self):
        assert normalize_base_url(None) is None

    def test_format_date_compact(self):
        assert format_date_for_siigo('20250105') == '2025-01-05'

    def test_format_date_from_date_object(self):
        assert format_date_for_siigo(date(2025, 1, 5)) == '2025-01-05'

    def test_format_date_from_iso_timestamp(self):
        assert format_date_for_siigo('2025-01-05T10:30:00Z') == '2025-01-05'

    def test_format_date_unrecognized_passes_through(self):
        assert format_date_for_siigo('mañana') == 'mañana'


class TestAuthentication:

    def test_token_is_cached(self, connector, session):
        # Act
        first = connector.authenticate()
        second = connector.authenticate()

        # Assert
        assert first == second == 'tok-1'
        assert session.post.call_count == 1
        assert session.post.call_args.args[0] == 'https://api.siigo.com/auth'

    def test_missing_credentials(self, session, monkeypatch):
        # Arrange
        monkeypatch.setattr(settings, 'SIIGO_USERNAME', '')
        monkeypatch.setattr(settings, 'SIIGO_ACCESS_KEY', '')
        connector = SiigoConnector(use_db_credentials=False, rate_limit_delay=0, session=session)

        # Act & Assert
        with pytest.raises(SiigoNotConfiguredError):
            connector.authenticate()
        session.post.assert_not_called()

    def test_network_failure_raises_auth_error(self, connector, session):
        session.post.side_effect = requests.ConnectionError("down")

        with pytest.raises(SiigoAuthError):
            connector.authenticate()

    def test_missing_token_in_response(self, connector, session):
        session.post.return_value = make_response(200, {'error': 'invalid'})

        with pytest.raises(SiigoAuthError):
            connector.authenticate()


class TestRetry:

    @patch('app.connectors.siigo_connector.time.sleep')
    def test_rate_limited_request_waits_and_retries(self, mock_sleep, connector, session):
        # Arrange
        session.request.side_effect = [
            make_response(429, {'Errors': []}),
            make_response(200, {'results': [], 'pagination': {}}),
        ]

        # Act
        data = connector.get_invoices(page=1)

        # Assert
        assert data == {'results': [], 'pagination': {}}
        assert session.request.call_count == 2
        mock_sleep.assert_any_call(4)

    @patch('app.connectors.siigo_connector.time.sleep')
    def test_unauthorized_reauthenticates(self, mock_sleep, connector, session):
        # Arrange
        session.post.side_effect = [auth_response('tok-1'), auth_response('tok-2')]
        session.request.side_effect = [
            make_response(401, {}),
            make_response(200, {'id': 'inv-1'}),
        ]

        # Act
        data = connector.get_invoice_details('inv-1')

        # Assert
        assert data == {'id': 'inv-1'}
        assert session.post.call_count == 2
        second_headers = session.request.call_args_list[1].kwargs['headers']
        assert second_headers['Authorization'] == 'Bearer tok-2'

    @patch('app.connectors.siigo_connector.time.sleep')
    def test_client_error_not_retried(self, mock_sleep, connector, session):
        session.request.return_value = make_response(404, {'Errors': [{'Code': 'NotFound'}]})

        with pytest.raises(SiigoAPIError) as exc_info:
            connector.get_invoice_details('missing')

        assert exc_info.value.status_code == 404
        assert exc_info.value.payload == {'Errors': [{'Code': 'NotFound'}]}
        assert session.request.call_count == 1

    @patch('app.connectors.siigo_connector.time.sleep')
    def test_server_error_retried_with_backoff(self, mock_sleep, connector, session):
        session.request.return_value = make_response(500, {})

        with pytest.raises(SiigoAPIError) as exc_info:
            connector.get_invoice_details('inv-1')

        assert exc_info.value.status_code == 500
        assert session.request.call_count == 3
        sleeps = [c.args[0] for c in mock_sleep.call_args_list]
        assert sleeps == [2, 4]

    @patch('app.connectors.siigo_connector.time.sleep')
    def test_network_error_becomes_api_error(self, mock_sleep, connector, session):
        session.request.side_effect = requests.ConnectionError("reset")

        with pytest.raises(SiigoAPIError) as exc_info:
            connector.get_product_details('p-1')

        assert exc_info.value.status_code is None
        assert session.request.call_count == 3


class TestInvoices:

    def test_get_invoices_formats_start_date(self, connector, session):
        # Arrange
        session.request.return_value = make_response(200, {'results': []})

        # Act
        connector.get_invoices(page=2, page_size=50, start_date='20250901')

        # Assert
        kwargs = session.request.call_args.kwargs
        assert kwargs['method'] == 'GET'
        assert kwargs['url'] == 'https://api.siigo.com/v1/invoices'
        assert kwargs['params'] == {'page_size': 50, 'page': 2, 'date_start': '2025-09-01'}
        assert kwargs['timeout'] == 45
        assert kwargs['headers']['Partner-Id']

    def test_empty_body_returns_empty_dict(self, connector, session):
        session.request.return_value = make_response(204)

        assert connector.create_webhook_subscription({'topic': 'x'}) == {}

    def test_request_count_increments(self, connector, session):
        session.request.return_value = make_response(200, {'id': 'inv-1'})

        connector.get_invoice_details('inv-1')
        connector.get_invoice_details('inv-1')

        assert connector.get_status()['request_count'] == 2


class TestCustomers:

    def test_customer_detail_is_cached(self, connector, session):
        session.request.return_value = make_response(200, {'id': 'c-1', 'name': ['Ana', 'Ruiz']})

        first = connector.get_customer('c-1')
        second = connector.get_customer('c-1')

        assert first == second
        assert session.request.call_count == 1

    def test_cache_expires(self, connector, session):
        session.request.return_value = make_response(200, {'id': 'c-1'})
        connector.cache_ttl_seconds = 0

        connector.get_customer('c-1')
        connector.get_customer('c-1')

        assert session.request.call_count == 2

    @patch('app.connectors.siigo_connector.time.sleep')
    def test_get_all_customers_stops_on_short_page(self, mock_sleep, connector, session):
        # Arrange
        full_page = [{'id': f'c-{i}'} for i in range(2)]
        session.request.side_effect = [
            make_response(200, {'results': full_page}),
            make_response(200, {'results': [{'id': 'c-last'}]}),
        ]

        # Act
        customers = connector.get_all_customers(max_pages=5, page_size=2)

        # Assert
        assert [c['id'] for c in customers] == ['c-0', 'c-1', 'c-last']
        assert session.request.call_count == 2

    @patch('app.connectors.siigo_connector.time.sleep')
    def test_get_all_customers_keeps_collected_on_error(self, mock_sleep, connector, session):
        session.request.side_effect = [
            make_response(200, {'results': [{'id': 'c-0'}, {'id': 'c-1'}]}),
            make_response(403, {}),
        ]

        customers = connector.get_all_customers(max_pages=5, page_size=2)

        assert len(customers) == 2


class TestProducts:

    def test_get_all_products_follows_total_pages(self, connector, session):
        session.request.side_effect = [
            make_response(200, {'results': [{'id': 'p-1'}], 'pagination': {'total_pages': 2}}),
            make_response(200, {'results': [{'id': 'p-2'}], 'pagination': {'total_pages': 2}}),
        ]

        products = connector.get_all_products(page_size=1)

        assert [p['id'] for p in products] == ['p-1', 'p-2']
        assert session.request.call_args_list[1].kwargs['params'] == {'page': 2, 'page_size': 1}

    def test_get_product_by_code_returns_first_match(self, connector, session):
        session.request.return_value = make_response(200, {'results': [{'id': 'p-1', 'code': 'A1'}]})

        product = connector.get_product_by_code('A1')

        assert product['id'] == 'p-1'
        assert session.request.call_args.kwargs['params'] == {'code': 'A1'}

    def test_get_product_by_code_no_match(self, connector, session):
        session.request.return_value = make_response(200, {'results': []})

        assert connector.get_product_by_code('ZZ') is None
