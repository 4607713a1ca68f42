# crm_auth/core/config.py
import os
from typing import ClassVar, List
from pydantic import BaseModel, Field


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _default_database_url() -> str:
    data_dir = os.path.abspath(os.getenv("DATA_DIR", "./data"))
    os.makedirs(data_dir, exist_ok=True)
    return os.getenv("DATABASE_URL", f"sqlite:///{os.path.join(data_dir, 'crm.db')}")


class Settings(BaseModel):
    # constant, not a pydantic field
    DATA_DIR: ClassVar[str] = os.path.abspath(os.getenv("DATA_DIR", "./data"))

    ENVIRONMENT: str = Field(default_factory=lambda: os.getenv("ENVIRONMENT", "development"))
    LOG_LEVEL: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    DATABASE_URL: str = Field(default_factory=_default_database_url)
    RUN_MIGRATIONS_ON_STARTUP: bool = Field(default_factory=lambda: _env_bool("RUN_MIGRATIONS_ON_STARTUP", "true"))
    CORS_ORIGINS: List[str] = Field(
        default_factory=lambda: [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",") if o.strip()]
    )

    # tokens
    SECRET_KEY: str = Field(default_factory=lambda: os.getenv("SECRET_KEY", "CHANGE_ME_SUPER_SECRET"))
    REFRESH_SECRET_KEY: str = Field(default_factory=lambda: os.getenv("REFRESH_SECRET_KEY", "CHANGE_ME_ANOTHER_SECRET"))
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default_factory=lambda: int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "180")))
    REFRESH_TOKEN_EXPIRE_DAYS: int = Field(default_factory=lambda: int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7")))
    ACCESS_TOKEN_NEAR_EXPIRY_SECONDS: int = Field(default_factory=lambda: int(os.getenv("ACCESS_TOKEN_NEAR_EXPIRY_SECONDS", "300")))
    TOKEN_SWEEP_INTERVAL_SECONDS: int = Field(default_factory=lambda: int(os.getenv("TOKEN_SWEEP_INTERVAL_SECONDS", "0")))

    # refresh cookie
    REFRESH_COOKIE_NAME: str = Field(default_factory=lambda: os.getenv("REFRESH_COOKIE_NAME", "refreshToken"))
    COOKIE_SECURE: bool = Field(default_factory=lambda: _env_bool("COOKIE_SECURE", "true"))
    COOKIE_SAMESITE: str = Field(default_factory=lambda: os.getenv("COOKIE_SAMESITE", "lax").lower())
    COOKIE_DOMAIN: str | None = Field(default_factory=lambda: os.getenv("COOKIE_DOMAIN") or None)
    # legacy clients still post {"refreshToken": ...}
    ALLOW_BODY_REFRESH_TOKEN: bool = Field(default_factory=lambda: _env_bool("ALLOW_BODY_REFRESH_TOKEN", "true"))

    # optional bootstrap admin
    SEED_ADMIN_EMAIL: str | None = Field(default_factory=lambda: os.getenv("SEED_ADMIN_EMAIL") or None)
    SEED_ADMIN_PASSWORD: str | None = Field(default_factory=lambda: os.getenv("SEED_ADMIN_PASSWORD") or None)
    SEED_TENANT_ID: str = Field(default_factory=lambda: os.getenv("SEED_TENANT_ID", "demo"))

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"


settings = Settings()
