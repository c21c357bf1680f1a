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

    # "static" uses the built-in price table, "redis" reads cached tickers
    PRICE_SOURCE: str = "static"

    # 0 disables trading fees; 0.001 charges 0.1% on buy cost and sell proceeds
    TRADING_FEE_RATE: Decimal = Decimal("0")
    STARTING_USD_BALANCE: Decimal = Decimal("10000.00")
    INITIAL_PORTFOLIO_VALUE: Decimal = Decimal("10000.00")

    # Conflict handling for concurrent balance updates
    MAX_RETRIES: int = 5
    RETRY_BACKOFF_SECONDS: float = 0.01
    LOCK_TIMEOUT_SECONDS: float = 5.0

    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = ""

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def convert_database_url(cls, v):
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    @field_validator('TRADING_FEE_RATE')
    @classmethod
    def check_fee_rate(cls, v):
        if v < 0 or v >= 1:
            raise ValueError("TRADING_FEE_RATE must be in [0, 1)")
        return v

settings = Settings()
