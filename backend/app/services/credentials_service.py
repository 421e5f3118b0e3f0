"""
Credentials Service - SIIGO credentials and system configuration lookup

Credentials for the SIIGO API live in the siigo_credentials table (one row per
company, latest wins). Instance-wide switches live in system_config.

Lookup order used by the SIIGO connector:
1. siigo_credentials (company 1, most recently updated row)
2. environment variables (SIIGO_USERNAME / SIIGO_ACCESS_KEY)
3. base URL from system_config.siigo_base_url, then SIIGO_API_BASE_URL

Author: Equipo Gestión de Pedidos
Date: 2025-09-02
"""
import json
import logging
from typing import Optional, Dict, Any

from app.core.config import settings
from app.core.database import get_db_connection_dict

logger = logging.getLogger(__name__)

DEFAULT_COMPANY_ID = 1


class CredentialsService:
    """Reads SIIGO credentials and system_config values from the database"""

    def __init__(self, company_id: int = DEFAULT_COMPANY_ID):
        self.company_id = company_id

    def _fetch_credentials_row(self) -> Optional[Dict[str, Any]]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT siigo_username, siigo_access_key, siigo_base_url, is_enabled
                FROM siigo_credentials
                WHERE company_id = %s
                ORDER BY updated_at DESC NULLS LAST, created_at DESC
                LIMIT 1
            """, (self.company_id,))
            return cursor.fetchone()
        finally:
            cursor.close()
            conn.close()

    @staticmethod
    def _plain_access_key(value: Optional[str]) -> Optional[str]:
        """
        Access keys saved by the admin panel may be an encrypted JSON envelope
        ({"encrypted", "iv", "authTag"}). Those cannot be used here, so they are
        treated as missing and the environment fallback applies.
        """
        if not value:
            return None
        try:
            parsed = json.loads(value)
        except (json.JSONDecodeError, TypeError, ValueError):
            return value
        if isinstance(parsed, dict) and parsed.get("encrypted"):
            logger.warning("Encrypted SIIGO access key found in database, using environment key instead")
            return None
        return value

    def get_siigo_credentials(self) -> Dict[str, Any]:
        """
        Get SIIGO credentials

        Returns:
            Dict with keys: username, access_key, base_url, is_enabled, source
        """
        username = None
        access_key = None
        base_url = None
        is_enabled = False
        source = "env"

        try:
            row = self._fetch_credentials_row()
            if row:
                username = row.get('siigo_username') or None
                access_key = self._plain_access_key(row.get('siigo_access_key'))
                base_url = row.get('siigo_base_url') or None
                is_enabled = bool(row.get('is_enabled'))
                if username and access_key:
                    source = "database"
        except Exception as e:
            logger.warning(f"Could not read siigo_credentials, falling back to environment: {e}")

        if not username or not access_key:
            username = username or settings.SIIGO_USERNAME or None
            access_key = access_key or settings.SIIGO_ACCESS_KEY or None

        if not base_url:
            base_url = self.get_system_config('siigo_base_url', settings.SIIGO_API_BASE_URL)

        return {
            'username': username,
            'access_key': access_key,
            'base_url': base_url,
            'is_enabled': is_enabled,
            'source': source,
        }

    def is_siigo_enabled(self) -> bool:
        """SIIGO is enabled only when the latest credentials row says so"""
        try:
            row = self._fetch_credentials_row()
            return bool(row and row.get('is_enabled'))
        except Exception as e:
            logger.warning(f"Could not read is_enabled from database, assuming disabled: {e}")
            return False

    def get_system_config(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Read a single system_config value, returning default when missing or on error"""
        try:
            conn = get_db_connection_dict()
            cursor = conn.cursor()
            try:
                cursor.execute(
                    "SELECT config_value FROM system_config WHERE config_key = %s",
                    (key,)
                )
                row = cursor.fetchone()
            finally:
                cursor.close()
                conn.close()
        except Exception as e:
            logger.warning(f"Could not read system_config '{key}': {e}")
            return default

        if not row or row.get('config_value') in (None, ''):
            return default
        return row['config_value']

    def get_siigo_start_date(self) -> Optional[str]:
        """Configured invoice start date, only when siigo_start_date_enabled is 'true'"""
        if (self.get_system_config('siigo_start_date_enabled', 'false') or '').lower() != 'true':
            return None
        return self.get_system_config('siigo_start_date')


# Singleton instance for easy import
_credentials_service: Optional[CredentialsService] = None

def get_credentials_service() -> CredentialsService:
    """Get the singleton credentials service instance"""
    global _credentials_service
    if _credentials_service is None:
        _credentials_service = CredentialsService()
    return _credentials_service
