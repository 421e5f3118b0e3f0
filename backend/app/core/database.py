"""
Conexión a base de datos PostgreSQL

Todas las consultas del backend son SQL directo con psycopg2:
- get_db_connection / get_db_connection_dict para operaciones puntuales
- variantes *_with_retry para procesos en segundo plano (pollers, importaciones)

Author: Equipo Gestión de Pedidos
Updated: 2025-09-02
"""
import time
import logging

import psycopg2
from psycopg2.extras import RealDictCursor

from .config import settings

logger = logging.getLogger(__name__)

# Seconds psycopg2 waits for the server before giving up
CONNECTION_TIMEOUT = 10


def _database_url() -> str:
    database_url = settings.DATABASE_URL
    if not database_url:
        raise Exception("DATABASE_URL not configured")
    return database_url


# ============================================================================
# psycopg2 Direct Connections
# ============================================================================

def get_db_connection():
    """
    Get a direct psycopg2 database connection (returns tuples)

    Example:
        conn = get_db_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT COUNT(*) FROM orders")
        total = cursor.fetchone()[0]
        cursor.close()
        conn.close()
    """
    return psycopg2.connect(_database_url(), connect_timeout=CONNECTION_TIMEOUT)


def get_db_connection_dict():
    """
    Get a database connection with RealDictCursor (returns dictionaries)

    This is what the repositories use; rows come back as dicts keyed by column.
    """
    return psycopg2.connect(
        _database_url(),
        cursor_factory=RealDictCursor,
        connect_timeout=CONNECTION_TIMEOUT,
    )


# ============================================================================
# Database Connection with Retry Logic
# ============================================================================

def _connect_with_retry(max_retries: int, retry_delay: float, cursor_factory=None):
    database_url = _database_url()
    last_error = None

    for attempt in range(1, max_retries + 1):
        try:
            logger.debug(f"Database connection attempt {attempt}/{max_retries}")
            if cursor_factory is not None:
                conn = psycopg2.connect(
                    database_url,
                    cursor_factory=cursor_factory,
                    connect_timeout=CONNECTION_TIMEOUT,
                )
            else:
                conn = psycopg2.connect(database_url, connect_timeout=CONNECTION_TIMEOUT)

            cursor = conn.cursor()
            cursor.execute("SELECT 1")
            cursor.close()

            logger.debug(f"Database connection successful on attempt {attempt}")
            return conn

        except psycopg2.OperationalError as e:
            last_error = e
            logger.warning(f"Connection error on attempt {attempt}/{max_retries}: {e}")

            if attempt < max_retries:
                delay = retry_delay * (2 ** (attempt - 1))
                logger.info(f"Retrying in {delay:.2f} seconds...")
                time.sleep(delay)
            else:
                logger.error(f"All {max_retries} connection attempts failed")
                raise

    raise last_error if last_error else Exception("Connection failed after all retries")


def get_db_connection_with_retry(max_retries=3, retry_delay=1.0):
    """
    Get a psycopg2 connection with automatic retry on connection failures

    Retries with exponential backoff (retry_delay, 2*retry_delay, ...).
    Non-connection errors are raised immediately.

    Raises:
        psycopg2.OperationalError: If all retry attempts fail
    """
    return _connect_with_retry(max_retries, retry_delay)


def get_db_connection_dict_with_retry(max_retries=3, retry_delay=1.0):
    """Same as get_db_connection_with_retry but rows are returned as dicts."""
    return _connect_with_retry(max_retries, retry_delay, cursor_factory=RealDictCursor)
