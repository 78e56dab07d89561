from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    DATABASE_URL: str
    REDIS_URL: str
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440

    # Trading wallet defaults
    DEMO_STARTING_BALANCE: Decimal = Decimal("50000")
    DEFAULT_LEVERAGE: int = 50
    MARGIN_CALL_LEVEL: Decimal = Decimal("80")
    MARGIN_STOP_OUT_LEVEL: Decimal = Decimal("50")
    DEFAULT_RISK_PERCENTAGE: Decimal = Decimal("2.00")

    # Scheduled checks
    PRICE_ALERT_INTERVAL_SECONDS: int = 60
    POSITION_CHECK_INTERVAL_SECONDS: int = 30

    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "http://localhost:3000"

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def convert_database_url(cls, v):
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

settings = Settings()
