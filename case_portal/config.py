"""
Configuration for Case Portal
=============================

Environment variables:
- JWT_SECRET_KEY: HMAC secret for verifying access tokens
- JWT_ALGORITHM: Signing algorithm (default: HS256)
- JWT_ACCESS_TOKEN_EXPIRE_MINUTES: Lifetime of tokens minted by create_access_token
- CORS_ALLOW_ORIGINS: Comma-separated list of allowed origins
- ENFORCE_HTTPS / HSTS_MAX_AGE: Security headers middleware
- SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD, SMTP_FROM, SMTP_USE_TLS: Owner notifications
- APP_URL: Frontend base URL used in notification links
- NOTIFY_OWNER_ON_REQUEST: Email the case owner when a lawyer requests access (default: true)

DATABASE_URL and SQL_ECHO are read by db.session when the engine is built.
"""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings from environment variables"""

    # Identity boundary
    jwt_secret_key: str = "dev-secret-key-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60

    # HTTP
    cors_allow_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    enforce_https: bool = False
    hsts_max_age: int = 31536000  # 1 year

    # Owner notifications
    notify_owner_on_request: bool = True
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = "noreply@caseportal.local"
    smtp_use_tls: bool = True
    app_url: str = "http://localhost:3000"

    class Config:
        env_prefix = ""
        case_sensitive = False
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def cors_origins(self) -> List[str]:
        origins: List[str] = []
        for item in self.cors_allow_origins.split(","):
            origin = item.strip().strip('"').strip("'").rstrip("/")
            if origin:
                origins.append(origin)
        return origins

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_password)

    def validate_security_config(self) -> List[str]:
        """Validate security-sensitive settings, return list of warnings"""
        warnings = []
        if self.jwt_secret_key == "dev-secret-key-change-in-production":
            warnings.append("JWT_SECRET_KEY is the development default; set a real secret")
        if self.notify_owner_on_request and not self.smtp_configured:
            warnings.append("NOTIFY_OWNER_ON_REQUEST=true but SMTP is not configured (notifications are logged only)")
        return warnings


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
