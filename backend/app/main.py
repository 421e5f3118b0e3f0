"""
Gestión de Pedidos - Backend API
Order management integrated with SIIGO
"""
import time
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment variables before settings are read
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(env_path)

from app.core.config import settings
from app.core.database import get_db_connection_with_retry, CONNECTION_TIMEOUT
from app.core.rate_limit import RateLimitMiddleware
from app.api import siigo, sync, webhooks

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def start_background_services() -> bool:
    """Start the invoice poller and both stock services when SIIGO is enabled"""
    from app.services.credentials_service import get_credentials_service
    from app.services.siigo_update_service import get_siigo_update_service
    from app.services.stock_consistency_service import get_stock_consistency_service
    from app.services.stock_sync_service import get_stock_sync_service

    if not get_credentials_service().is_siigo_enabled():
        logger.info("SIIGO disabled, background services not started")
        return False

    get_siigo_update_service().start()
    get_stock_sync_service().start()
    get_stock_consistency_service().start()
    logger.info("SIIGO background services started")
    return True


def stop_background_services() -> None:
    from app.services.siigo_update_service import get_siigo_update_service
    from app.services.stock_consistency_service import get_stock_consistency_service
    from app.services.stock_sync_service import get_stock_sync_service

    get_siigo_update_service().stop()
    get_stock_sync_service().stop()
    get_stock_consistency_service().stop()


@asynccontextmanager
async def lifespan(app: FastAPI):
    started = False
    if settings.SIIGO_AUTO_START:
        try:
            started = start_background_services()
        except Exception as e:
            logger.error(f"Error starting SIIGO background services: {e}")
    yield
    if started:
        stop_background_services()


# Crear aplicación FastAPI
app = FastAPI(
    title=settings.API_TITLE,
    version=settings.API_VERSION,
    description=settings.API_DESCRIPTION,
    lifespan=lifespan,
)

app.add_middleware(RateLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
    expose_headers=["*"],
)

# Include API routers
app.include_router(siigo.router, prefix="/api/v1/siigo", tags=["SIIGO"])
app.include_router(webhooks.router)
app.include_router(sync.router)


@app.get("/")
async def root():
    """Endpoint raíz - Verificación de estado de la API"""
    return {
        "message": "Gestión de Pedidos API",
        "status": "online",
        "version": settings.API_VERSION,
    }


@app.get("/health")
async def health():
    """Health check endpoint para monitoreo - tests database connectivity"""
    start_time = time.time()

    db_status = "unknown"
    db_latency_ms = None
    db_error = None

    try:
        conn = get_db_connection_with_retry(max_retries=1, retry_delay=0.5)
        cursor = conn.cursor()

        db_start = time.time()
        cursor.execute("SELECT 1")
        cursor.fetchone()
        db_latency_ms = round((time.time() - db_start) * 1000, 2)

        cursor.close()
        conn.close()
        db_status = "connected"
    except Exception as e:
        db_status = "disconnected"
        db_error = str(e)

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "service": "gestion-pedidos-api",
        "version": settings.API_VERSION,
        "database": {
            "status": db_status,
            "latency_ms": db_latency_ms,
            "error": db_error,
            "connection_timeout_s": CONNECTION_TIMEOUT,
        },
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host=settings.API_HOST, port=settings.API_PORT)
