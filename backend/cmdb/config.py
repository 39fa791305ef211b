from pydantic_settings import BaseSettings
import secrets


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "CMDB"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ALLOWED_ORIGINS: str = "*"

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://cmdb:cmdb@db:5432/cmdb"

    # Identity: "disabled" (development, fixed identity) or "token" (JWT bearer)
    AUTH_MODE: str = "token"
    DEV_USERNAME: str = "admin"
    DEV_ROLE: str = "admin"

    # JWT
    JWT_SECRET_KEY: str = secrets.token_urlsafe(64)
    JWT_ALGORITHM: str = "HS256"

    # IP pool
    IP_POOL_FREE_LIST_LIMIT: int = 64

    # HTTPS
    HTTPS_ONLY: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
