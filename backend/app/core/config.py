from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # App
    APP_NAME: str = "Field Verification CRM - Commission Engine"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "postgresql://crm_user:crm_pass@db:5432/crm_db"

    # Redis / Celery
    REDIS_URL: str = "redis://redis:6379/0"
    CELERY_TASK_ALWAYS_EAGER: bool = False

    # Security (tokens are issued by the auth service, verified here)
    SECRET_KEY: str = "your-secret-key-change-in-production"
    ALGORITHM: str = "HS256"

    # Commission engine
    DEFAULT_CURRENCY: str = "INR"
    BULK_OPERATION_MAX_IDS: int = 500
    AUTO_CALCULATION_STATUS: str = "CALCULATED"  # case-completion hook
    MANUAL_CALCULATION_STATUS: str = "PENDING"  # reviewer-triggered

    # Seed admin on startup
    SEED_ADMIN_EMAIL: Optional[str] = "admin@crm.local"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
