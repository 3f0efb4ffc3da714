from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import List, Any
import json


def parse_cors_origins(v: Any) -> List[str]:
    """Parse CORS origins from string or list"""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        # Try JSON parsing first
        if v.startswith('['):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        # Fall back to comma-separated
        return [origin.strip() for origin in v.split(',') if origin.strip()]
    return []


class Settings(BaseSettings):
    """Application settings - all configurable via environment variables"""

    # ==========================================
    # Application
    # ==========================================
    APP_NAME: str = "CSI Portal"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    API_VERSION: str = "v1"
    BASE_URL: str = "http://localhost:3000"

    # Server Configuration
    SERVER_HOST: str = "0.0.0.0"
    SERVER_PORT: int = 8000

    # ==========================================
    # Database
    # ==========================================
    DATABASE_URL: str = "sqlite+aiosqlite:///./csi_portal.db"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800
    DB_ECHO: bool = False

    # ==========================================
    # Redis / Celery
    # ==========================================
    REDIS_URL: str = "memory://"
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/1"
    CELERY_TASK_TIME_LIMIT: int = 1800  # 30 minutes
    CELERY_TASK_SOFT_TIME_LIMIT: int = 1500

    # ==========================================
    # Authentication
    # ==========================================
    JWT_SECRET_KEY: str = "change-this-secret-key-in-production"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 480  # 8 hours
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    SESSION_TIMEOUT_MINUTES: int = 30  # sliding window
    MAX_SESSION_DURATION_HOURS: int = 8  # hard cap
    BCRYPT_ROUNDS: int = 12  # 4 for dev (fast), 12 for prod (secure)

    # ==========================================
    # LDAP
    # ==========================================
    LDAP_URL: str = "ldap://localhost:389"
    LDAP_BASE_DN: str = "dc=example,dc=com"
    LDAP_BIND_DN: str = ""
    LDAP_BIND_PASSWORD: str = ""
    LDAP_TIMEOUT: int = 5  # seconds
    LDAP_MAX_RETRIES: int = 3
    LDAP_RETRY_DELAY: float = 1.0  # seconds, multiplied by attempt number

    # ==========================================
    # Email
    # ==========================================
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    EMAIL_FROM: str = "noreply@csi-portal.local"
    EMAIL_FROM_NAME: str = "CSI Portal"
    EMAIL_BATCH_SIZE: int = 50
    EMAIL_BATCH_DELAY: float = 1.0  # seconds between batches
    EMAIL_DUPLICATE_WINDOW_HOURS: int = 24

    # ==========================================
    # SAP Integration
    # ==========================================
    SAP_API_URL: str = ""
    SAP_API_KEY: str = ""
    SAP_TIMEOUT: int = 30  # seconds
    SAP_MAX_RETRIES: int = 3
    SAP_RETRY_DELAY: float = 1.0  # seconds, doubled per attempt

    # ==========================================
    # Scheduler
    # ==========================================
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_INTERVAL_SECONDS: int = 60

    # ==========================================
    # CORS (stored as comma-separated string, parsed to list)
    # ==========================================
    CORS_ORIGINS_STR: str = "http://localhost:3000,http://127.0.0.1:3000"

    @property
    def CORS_ORIGINS(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return parse_cors_origins(self.CORS_ORIGINS_STR)

    # ==========================================
    # Rate Limiting
    # ==========================================
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_PER_MINUTE: int = 100
    RATE_LIMIT_AUTH_PER_MINUTE: int = 5

    # ==========================================
    # Request bodies
    # ==========================================
    MAX_UPLOAD_SIZE: int = 10485760  # 10MB, Excel imports
    MAX_JSON_BODY_SIZE: int = 1048576  # 1MB

    # ==========================================
    # Logging
    # ==========================================
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/csi_portal.log"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields in .env that aren't defined in Settings

    @field_validator("SESSION_TIMEOUT_MINUTES")
    @classmethod
    def validate_session_timeout(cls, v: int) -> int:
        if v < 1 or v > 1440:
            raise ValueError("SESSION_TIMEOUT_MINUTES must be between 1 and 1440")
        return v

    @field_validator("MAX_SESSION_DURATION_HOURS")
    @classmethod
    def validate_max_session_duration(cls, v: int) -> int:
        if v < 1 or v > 24:
            raise ValueError("MAX_SESSION_DURATION_HOURS must be between 1 and 24")
        return v

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    def is_dev_mode(self) -> bool:
        """Check if running in development mode"""
        return self.ENVIRONMENT == "development" or self.DEBUG

    def get_survey_url(self, survey_id: str) -> str:
        """Public URL a respondent opens for a survey"""
        return f"{self.BASE_URL.rstrip('/')}/survey/{survey_id}"


# Create settings instance
settings = Settings()
