from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # App
    APP_NAME: str = "Courier Commission Engine"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Database
    DATABASE_URL: str = "postgresql://commission_user:commission_pass@db:5432/commission_db"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10

    # Commissions
    DEFAULT_CURRENCY: str = "EUR"
    AUTO_APPROVE_ACTOR: str = "system:auto-approve"
    AUTO_APPROVE_NOTES: str = "Auto-approved when invoice was paid"

    # Observability webhook, receives audit write failures
    AUDIT_ALERT_WEBHOOK_URL: Optional[str] = None
    AUDIT_ALERT_TIMEOUT: int = 10

    # Seed data on startup (disabled in production)
    SEED_DEMO_DATA: bool = False

    # Frontend URL allowed by CORS
    FRONTEND_URL: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
