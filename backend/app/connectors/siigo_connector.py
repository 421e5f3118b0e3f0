"""
SIIGO API Connector
Handles all interactions with the SIIGO accounting/ERP REST API

Features:
- Token authentication against {base}/auth (cached until expires_in)
- Fixed delay between consecutive requests (rate_limit_delay)
- Retry with exponential backoff: 429 waits 2^n*2 s, 401 re-authenticates
- Short-lived customer cache (customer lookups repeat a lot while importing)

Author: Equipo Gestión de Pedidos
Date: 2025-09-02
"""
import os
import re
import time
import logging
import threading
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

import requests

from app.core.config import settings

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.siigo.com"
AUTH_TIMEOUT = 30
DEFAULT_TIMEOUT = 30
INVOICES_TIMEOUT = 45
CUSTOMER_TIMEOUT = 20


# ============================================================================
# Errors
# ============================================================================

class SiigoError(Exception):
    """Base error for SIIGO integration"""
    pass


class SiigoAuthError(SiigoError):
    """Authentication against SIIGO failed"""
    pass


class SiigoNotConfiguredError(SiigoAuthError):
    """No SIIGO username/access key available"""
    pass


class SiigoAPIError(SiigoError):
    """HTTP or network error talking to SIIGO"""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


# ============================================================================
# Helpers
# ============================================================================

def normalize_base_url(url: Optional[str]) -> Optional[str]:
    """
    Strip whitespace, trailing slashes and a trailing /v1 so paths can always
    be built as f"{base}/v1/..." without doubling the version segment.
    """
    if not url or not isinstance(url, str):
        return None
    normalized = url.strip()
    normalized = re.sub(r'/+$', '', normalized)
    normalized = re.sub(r'/v1$', '', normalized, flags=re.IGNORECASE)
    return normalized or None


def format_date_for_siigo(value: Any) -> Any:
    """
    Convert a date to the yyyy-MM-dd format expected by date_start.

    Accepts yyyy-MM-dd (returned unchanged), yyyymmdd, date/datetime objects
    and ISO datetimes. Unrecognized values are returned unchanged.
    """
    if isinstance(value, datetime):
        return value.strftime('%Y-%m-%d')
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str):
        return value

    text = value.strip()
    if re.fullmatch(r'\d{4}-\d{2}-\d{2}', text):
        return text
    if re.fullmatch(r'\d{8}', text):
        return f"{text[:4]}-{text[4:6]}-{text[6:8]}"

    try:
        parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
        return parsed.strftime('%Y-%m-%d')
    except ValueError:
        logger.warning(f"Unrecognized date format for SIIGO: {value}")
        return value


# ============================================================================
# Connector
# ============================================================================

class SiigoConnector:
    """
    Connector for the SIIGO REST API

    Credentials are resolved lazily on authenticate() through the
    credentials service unless they were passed explicitly.
    """

    def __init__(self, base_url: str = None, username: str = None, access_key: str = None,
                 rate_limit_delay: float = None, max_retries: int = None,
                 use_db_credentials: bool = True, session: requests.Session = None):
        """
        Initialize SIIGO connector

        Args:
            base_url: API base URL, with or without /v1 (optional)
            username: SIIGO API username (optional if using DB/env credentials)
            access_key: SIIGO API access key (optional if using DB/env credentials)
            rate_limit_delay: Minimum seconds between requests (default from settings)
            max_retries: Attempts per request (default from settings)
            use_db_credentials: Read siigo_credentials/system_config on authenticate
            session: requests.Session to use (a new one by default)
        """
        self.base_url = normalize_base_url(base_url)
        self.username = username
        self.access_key = access_key
        self.use_db_credentials = use_db_credentials

        self.rate_limit_delay = (
            settings.SIIGO_RATE_LIMIT_DELAY if rate_limit_delay is None else rate_limit_delay
        )
        self.max_retries = max_retries or settings.SIIGO_MAX_RETRIES
        self.cache_ttl_seconds = settings.SIIGO_CUSTOMER_CACHE_SECONDS

        self.token: Optional[str] = None
        self.token_expiry: Optional[float] = None
        self.request_count = 0
        self.last_request_time = 0.0

        self.session = session or requests.Session()
        self._customers_cache: Dict[str, Dict[str, Any]] = {}
        self._auth_lock = threading.Lock()
        self._rate_lock = threading.Lock()

    # =========================================================================
    # Configuration & authentication
    # =========================================================================

    def load_config(self) -> None:
        """Resolve username, access key and base URL (database, then env)"""
        if not self.use_db_credentials:
            self.username = self.username or settings.SIIGO_USERNAME or None
            self.access_key = self.access_key or settings.SIIGO_ACCESS_KEY or None
            self.base_url = self.base_url or normalize_base_url(settings.SIIGO_API_BASE_URL) or DEFAULT_BASE_URL
            return

        try:
            from app.services.credentials_service import get_credentials_service
            creds = get_credentials_service().get_siigo_credentials()

            self.username = creds.get('username') or self.username
            self.access_key = creds.get('access_key') or self.access_key
            self.base_url = (
                normalize_base_url(creds.get('base_url'))
                or self.base_url
                or DEFAULT_BASE_URL
            )
        except Exception as e:
            logger.warning(f"Error loading SIIGO configuration: {e}")
            if not self.base_url:
                self.base_url = DEFAULT_BASE_URL

    def get_base_url(self) -> str:
        return self.base_url or DEFAULT_BASE_URL

    def is_token_valid(self) -> bool:
        return bool(self.token and self.token_expiry and time.time() < self.token_expiry)

    def clear_token(self) -> None:
        self.token = None
        self.token_expiry = None

    def authenticate(self) -> str:
        """
        Get a valid access token, requesting a new one when expired.

        Raises:
            SiigoNotConfiguredError: no credentials available
            SiigoAuthError: SIIGO rejected the credentials or was unreachable
        """
        with self._auth_lock:
            if self.is_token_valid():
                return self.token

            self.load_config()

            if not self.username or not self.access_key:
                raise SiigoNotConfiguredError("Credenciales SIIGO no configuradas")

            logger.info("Authenticating with SIIGO API")
            try:
                response = self.session.post(
                    f"{self.get_base_url()}/auth",
                    json={"username": self.username, "access_key": self.access_key},
                    headers={"Content-Type": "application/json"},
                    timeout=AUTH_TIMEOUT,
                )
                response.raise_for_status()
                data = response.json()
                token = data["access_token"]
                expires_in = int(data.get("expires_in") or 3600)
            except (requests.RequestException, KeyError, ValueError, TypeError) as e:
                logger.error(f"SIIGO authentication failed: {e}")
                raise SiigoAuthError("No se pudo autenticar con SIIGO API") from e

            self.token = token
            self.token_expiry = time.time() + expires_in
            logger.info(f"SIIGO token obtained (expires in {expires_in}s)")
            return self.token

    def get_headers(self) -> Dict[str, str]:
        token = self.authenticate()
        partner_id = os.getenv('SIIGO_API_PARTNER_ID') or settings.SIIGO_PARTNER_ID or 'siigo'
        return {
            'Authorization': f'Bearer {token}',
            'Content-Type': 'application/json',
            'Partner-Id': partner_id,
        }

    # =========================================================================
    # Rate limiting & retry
    # =========================================================================

    def wait_for_rate_limit(self) -> None:
        """Sleep so consecutive requests are at least rate_limit_delay apart"""
        with self._rate_lock:
            elapsed = time.monotonic() - self.last_request_time
            if self.last_request_time and elapsed < self.rate_limit_delay:
                delay = self.rate_limit_delay - elapsed
                logger.debug(f"Rate limiting: waiting {delay:.2f}s")
                time.sleep(delay)
            self.last_request_time = time.monotonic()
            self.request_count += 1

    def request_with_retry(self, request_fn: Callable[[], Any], max_retries: int = None) -> Any:
        """
        Run request_fn with rate limiting and retries.

        - 429: wait 2^attempt * 2 seconds and retry
        - 401: drop the token, re-authenticate and retry
        - 5xx / network errors: wait 2^attempt seconds and retry
        - other 4xx: raised immediately
        """
        max_retries = max_retries or self.max_retries
        last_error: Optional[SiigoAPIError] = None

        for attempt in range(1, max_retries + 1):
            try:
                self.wait_for_rate_limit()
                return request_fn()
            except SiigoAPIError as e:
                last_error = e
                logger.warning(f"SIIGO attempt {attempt}/{max_retries} failed: {e}")

                if e.status_code == 429:
                    delay = (2 ** attempt) * 2
                    logger.warning(f"SIIGO rate limit hit, waiting {delay}s")
                    time.sleep(delay)
                    continue

                if e.status_code == 401:
                    logger.info("SIIGO token rejected, re-authenticating")
                    self.clear_token()
                    self.authenticate()
                    continue

                if e.status_code is not None and 400 <= e.status_code < 500:
                    raise

                if attempt == max_retries:
                    raise

                time.sleep(2 ** attempt)

        raise SiigoAPIError(
            f"SIIGO request failed after {max_retries} attempts: {last_error}",
            status_code=last_error.status_code if last_error else None,
            payload=last_error.payload if last_error else None,
        )

    def _send(self, method: str, path: str, params: Dict[str, Any] = None,
              json: Dict[str, Any] = None, timeout: int = DEFAULT_TIMEOUT) -> Any:
        """Single HTTP call; non-2xx responses raise SiigoAPIError"""
        url = f"{self.get_base_url()}{path}"
        headers = self.get_headers()

        try:
            response = self.session.request(
                method=method,
                url=url,
                headers=headers,
                params=params,
                json=json,
                timeout=timeout,
            )
        except requests.RequestException as e:
            raise SiigoAPIError(f"Error de conexión con SIIGO: {e}") from e

        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = response.text
            raise SiigoAPIError(
                f"SIIGO {method} {path} returned {response.status_code}",
                status_code=response.status_code,
                payload=payload,
            )

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    def _request(self, method: str, path: str, **kwargs) -> Any:
        return self.request_with_retry(lambda: self._send(method, path, **kwargs))

    # =========================================================================
    # Invoices
    # =========================================================================

    def get_invoices(self, page: int = 1, page_size: int = 100, start_date: Any = None) -> Dict[str, Any]:
        """
        Get one page of invoices

        Returns:
            Raw SIIGO page: {"results": [...], "pagination": {...}}
        """
        params = {'page_size': page_size or 100, 'page': page or 1}
        if start_date:
            params['date_start'] = format_date_for_siigo(start_date)

        logger.info(f"Fetching SIIGO invoices page={params['page']} date_start={params.get('date_start')}")
        return self._request('GET', '/v1/invoices', params=params, timeout=INVOICES_TIMEOUT)

    def get_invoice_details(self, invoice_id: str) -> Dict[str, Any]:
        return self._request('GET', f'/v1/invoices/{invoice_id}')

    # =========================================================================
    # Customers
    # =========================================================================

    def get_customer(self, customer_id: str) -> Dict[str, Any]:
        """Customer detail, cached for cache_ttl_seconds"""
        cached = self._customers_cache.get(customer_id)
        if cached and time.time() - cached['timestamp'] < self.cache_ttl_seconds:
            return cached['data']

        data = self._request('GET', f'/v1/customers/{customer_id}', timeout=CUSTOMER_TIMEOUT)
        self._customers_cache[customer_id] = {'data': data, 'timestamp': time.time()}
        return data

    def get_customers(self, page: int = 1, page_size: int = 50) -> List[Dict[str, Any]]:
        data = self._request('GET', '/v1/customers', params={'page': page, 'page_size': page_size})
        return data.get('results') or []

    def get_customers_page(self, page: int = 1, page_size: int = 100) -> Dict[str, Any]:
        """Raw customers page including pagination"""
        return self._request('GET', '/v1/customers', params={'page': page, 'page_size': page_size})

    def get_all_customers(self, max_pages: int = 20, page_size: int = 50) -> List[Dict[str, Any]]:
        """
        Walk customer pages until an empty or short page, up to max_pages.

        A rate-limit error waits 5 seconds and retries the same page; any
        other error stops pagination and returns what was collected.
        """
        all_customers: List[Dict[str, Any]] = []
        page = 1

        while page <= max_pages:
            try:
                customers = self.get_customers(page, page_size)
            except SiigoAPIError as e:
                logger.error(f"Error fetching customers page {page}: {e}")
                if e.status_code == 429:
                    time.sleep(5)
                    continue
                break

            if not customers:
                break

            all_customers.extend(customers)

            if len(customers) < page_size:
                break

            page += 1
            time.sleep(1)

        logger.info(f"Fetched {len(all_customers)} customers from SIIGO")
        return all_customers

    # =========================================================================
    # Products
    # =========================================================================

    def get_products_page(self, page: int = 1, page_size: int = 100) -> Dict[str, Any]:
        return self._request('GET', '/v1/products', params={'page': page, 'page_size': page_size})

    def get_products(self, page: int = 1, page_size: int = 100) -> List[Dict[str, Any]]:
        """Products of a single page"""
        return self.get_products_page(page, page_size).get('results') or []

    def get_all_products(self, page_size: int = 100) -> List[Dict[str, Any]]:
        """All products, following pagination.total_pages"""
        products: List[Dict[str, Any]] = []
        page = 1

        while True:
            data = self.get_products_page(page, page_size)
            products.extend(data.get('results') or [])

            total_pages = (data.get('pagination') or {}).get('total_pages') or 0
            if total_pages <= page:
                break
            page += 1

        return products

    def get_product_details(self, product_id: str) -> Dict[str, Any]:
        return self._request('GET', f'/v1/products/{product_id}', timeout=CUSTOMER_TIMEOUT)

    def get_product_by_code(self, code: str) -> Optional[Dict[str, Any]]:
        """First product matching ?code=, or None"""
        data = self._request('GET', '/v1/products', params={'code': code})
        results = data.get('results') if isinstance(data, dict) else None
        return results[0] if results else None

    # =========================================================================
    # Webhooks
    # =========================================================================

    def create_webhook_subscription(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request('POST', '/v1/webhooks', json=payload)

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(self) -> Dict[str, Any]:
        return {
            'base_url': self.get_base_url(),
            'authenticated': self.is_token_valid(),
            'request_count': self.request_count,
            'rate_limit_delay': self.rate_limit_delay,
            'max_retries': self.max_retries,
        }


# Singleton instance shared by services and pollers
_siigo_connector: Optional[SiigoConnector] = None

def get_siigo_connector() -> SiigoConnector:
    """Get the singleton SIIGO connector instance"""
    global _siigo_connector
    if _siigo_connector is None:
        _siigo_connector = SiigoConnector()
    return _siigo_connector
