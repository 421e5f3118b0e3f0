"""
Tests for CredentialsService

Author: Equipo Gestión de Pedidos
Date: 2025-09-12
"""
import json
from unittest.mock import patch

from app.core.config import settings
from app.services.credentials_service import CredentialsService


class TestGetSiigoCredentials:

    @patch('app.services.credentials_service.get_db_connection_dict')
    def test_database_credentials(self, mock_get_conn, db_mock):
        # Arrange
        conn, cursor = db_mock(fetchone={
            'siigo_username': 'api@empresa.co',
            'siigo_access_key': 'plain-key',
            'siigo_base_url': 'https://api.siigo.com',
            'is_enabled': True,
        })
        mock_get_conn.return_value = conn

        # Act
        creds = CredentialsService().get_siigo_credentials()

        # Assert
        assert creds['username'] == 'api@empresa.co'
        assert creds['access_key'] == 'plain-key'
        assert creds['base_url'] == 'https://api.siigo.com'
        assert creds['is_enabled'] is True
        assert creds['source'] == 'database'
        cursor.close.assert_called()
        conn.close.assert_called()

    @patch('app.services.credentials_service.get_db_connection_dict')
    def test_encrypted_key_falls_back_to_environment(self, mock_get_conn, db_mock, monkeypatch):
        monkeypatch.setattr(settings, 'SIIGO_ACCESS_KEY', 'env-key')
        envelope = json.dumps({'encrypted': 'abc', 'iv': '1', 'authTag': '2'})
        conn, _ = db_mock(fetchone={
            'siigo_username': 'api@empresa.co',
            'siigo_access_key': envelope,
            'siigo_base_url': 'https://api.siigo.com',
            'is_enabled': True,
        })
        mock_get_conn.return_value = conn

        creds = CredentialsService().get_siigo_credentials()

        assert creds['access_key'] == 'env-key'
        assert creds['source'] == 'env'

    @patch('app.services.credentials_service.get_db_connection_dict')
    def test_database_unavailable(self, mock_get_conn, db_mock, monkeypatch):
        monkeypatch.setattr(settings, 'SIIGO_USERNAME', 'env-user')
        monkeypatch.setattr(settings, 'SIIGO_ACCESS_KEY', 'env-key')
        monkeypatch.setattr(settings, 'SIIGO_API_BASE_URL', 'https://api.siigo.com')
        mock_get_conn.side_effect = Exception('connection refused')

        creds = CredentialsService().get_siigo_credentials()

        assert creds['username'] == 'env-user'
        assert creds['access_key'] == 'env-key'
        assert creds['base_url'] == 'https://api.siigo.com'
        assert creds['is_enabled'] is False


class TestSystemConfig:

    @patch('app.services.credentials_service.get_db_connection_dict')
    def test_enabled_flag(self, mock_get_conn, db_mock):
        conn, _ = db_mock(fetchone={'is_enabled': False})
        mock_get_conn.return_value = conn

        assert CredentialsService().is_siigo_enabled() is False

    @patch('app.services.credentials_service.get_db_connection_dict')
    def test_start_date_when_enabled(self, mock_get_conn, db_mock):
        conn, cursor = db_mock(fetchone=[
            {'config_value': 'true'},
            {'config_value': '2025-08-01'},
        ])
        mock_get_conn.return_value = conn

        assert CredentialsService().get_siigo_start_date() == '2025-08-01'
        assert cursor.execute.call_args.args[1] == ('siigo_start_date',)

    @patch('app.services.credentials_service.get_db_connection_dict')
    def test_start_date_disabled(self, mock_get_conn, db_mock):
        conn, _ = db_mock(fetchone={'config_value': 'false'})
        mock_get_conn.return_value = conn

        assert CredentialsService().get_siigo_start_date() is None

    @patch('app.services.credentials_service.get_db_connection_dict')
    def test_missing_value_returns_default(self, mock_get_conn, db_mock):
        conn, _ = db_mock(fetchone=None)
        mock_get_conn.return_value = conn

        assert CredentialsService().get_system_config('siigo_base_url', 'x') == 'x'
