"""
Configuración centralizada de la aplicación
"""
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Configuración de la aplicación"""

    # API Settings
    API_TITLE: str = "Gestión de Pedidos API"
    API_VERSION: str = "1.0.0"
    API_DESCRIPTION: str = "API de gestión de pedidos integrada con SIIGO"
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 5000
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = ""

    # CORS - comma-separated or JSON array
    ALLOWED_ORIGINS: Optional[str] = "http://localhost:3000"

    def get_allowed_origins(self) -> List[str]:
        """Parse ALLOWED_ORIGINS string into list"""
        if not self.ALLOWED_ORIGINS:
            return ["http://localhost:3000"]

        import json
        try:
            origins = json.loads(self.ALLOWED_ORIGINS)
            if isinstance(origins, list):
                return origins
        except (json.JSONDecodeError, ValueError):
            pass

        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    # SIIGO API
    SIIGO_API_BASE_URL: str = "https://api.siigo.com"
    SIIGO_USERNAME: str = ""
    SIIGO_ACCESS_KEY: str = ""
    SIIGO_PARTNER_ID: str = "siigo"
    SIIGO_RATE_LIMIT_DELAY: float = 1.0  # seconds between requests
    SIIGO_MAX_RETRIES: int = 3
    SIIGO_CUSTOMER_CACHE_SECONDS: int = 300

    # Background services
    SIIGO_AUTO_START: bool = False
    SIIGO_UPDATE_INTERVAL_MINUTES: int = 10
    STOCK_SYNC_INTERVAL_MINUTES: int = 5

    # Webhooks
    WEBHOOK_BASE_URL: str = "http://localhost:5000/api/webhooks"

    # Cron / keep-alive endpoints
    SYNC_API_KEY: str = ""

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
