from functools import lru_cache
from types import MappingProxyType
from typing import List, Mapping, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database settings
    DATABASE_URL: Optional[str] = None
    POSTGRES_USER: str = 'contapp_user'
    POSTGRES_PASSWORD: str = 'contapp_pass'
    POSTGRES_DB: str = 'contapp_db'
    POSTGRES_HOST: str = 'postgres'
    POSTGRES_PORT: int = 5432
    AUTO_CREATE_TABLES: bool = False

    # Identity provider (ID tokens)
    AUTH_SECRET: str = 'change-me-in-production'
    AUTH_ALGORITHM: str = 'HS256'
    AUTH_JWKS_URL: Optional[str] = None  # p.ej. llaves securetoken de Firebase
    AUTH_AUDIENCE: Optional[str] = None
    AUTH_ISSUER: Optional[str] = None

    # Outbound calls
    REQUEST_TIMEOUT_MS: int = 30000
    SUNAT_WORKER_URL: str = ''

    # Chat completions
    OPENAI_API_KEY: str = ''
    OPENAI_BASE_URL: str = 'https://api.openai.com/v1'
    OPENAI_DEFAULT_MODEL: str = 'gpt-4o-mini'

    # PayPal
    PAYPAL_CLIENT_ID: str = ''
    PAYPAL_CLIENT_SECRET: str = ''
    PAYPAL_ENV: str = 'sandbox'
    PAYPAL_WEBHOOK_ID: str = ''
    PAYPAL_PLAN_ID_PRO: str = ''
    PAYPAL_PLAN_ID_PLUS: str = ''
    PAYPAL_BRAND_NAME: str = 'ContApp Peru'

    # Web
    APP_BASE_URL: str = ''
    CORS_ORIGIN: str = ''
    BUSINESS_TIMEZONE: str = 'America/Lima'

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def request_timeout(self) -> float:
        """Timeout de llamadas salientes en segundos."""
        return self.REQUEST_TIMEOUT_MS / 1000

    @property
    def sunat_worker_url(self) -> str:
        raw = (self.SUNAT_WORKER_URL or "").strip()
        return raw[:-1] if raw.endswith("/") else raw

    @property
    def cors_origins(self) -> List[str]:
        origins = [item.strip() for item in self.CORS_ORIGIN.split(",") if item.strip()]
        return origins or ["*"]

    @property
    def paypal_base_url(self) -> str:
        if self.PAYPAL_ENV.lower() in ("live", "production", "prod"):
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"

    @property
    def plan_ids(self) -> Mapping[str, str]:
        """Código de plan -> ID de plan en PayPal (solo los configurados)."""
        mapping = {"PRO": self.PAYPAL_PLAN_ID_PRO, "PLUS": self.PAYPAL_PLAN_ID_PLUS}
        return MappingProxyType({code: plan_id for code, plan_id in mapping.items() if plan_id})

    model_config = SettingsConfigDict(
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        frozen=True,
    )

    @field_validator("DEBUG", "AUTO_CREATE_TABLES", mode="before")
    @classmethod
    def parse_bool(cls, v):
        if isinstance(v, str):
            return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
        return bool(v)


@lru_cache
def get_settings() -> Settings:
    """Configuración resuelta una sola vez al arrancar el proceso."""
    return Settings()


settings = get_settings()
