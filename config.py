import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        access_token_secret: str,
        refresh_token_secret: str,
        access_token_ttl_minutes: int,
        refresh_token_ttl_days: int,
        bcrypt_rounds: int,
        db_pool_size: int,
        db_max_overflow: int,
        db_pool_timeout_secs: float,
        client_url: str,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.access_token_secret = access_token_secret
        self.refresh_token_secret = refresh_token_secret
        self.access_token_ttl_minutes = access_token_ttl_minutes
        self.refresh_token_ttl_days = refresh_token_ttl_days
        self.bcrypt_rounds = bcrypt_rounds
        self.db_pool_size = db_pool_size
        self.db_max_overflow = db_max_overflow
        self.db_pool_timeout_secs = db_pool_timeout_secs
        self.client_url = client_url
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "UTC")
    # Development defaults only; both must be overridden in production.
    access_token_secret = os.getenv(
        "FINANCE_ACCESS_TOKEN_SECRET",
        "3f6c1a0e9d2b47c58e71f4a2b6d90c3e5a8f17b2c4d6e8f0a1b3c5d7e9f10a2b",
    )
    refresh_token_secret = os.getenv(
        "FINANCE_REFRESH_TOKEN_SECRET",
        "b7e2d4f6a8c0e1f3a5b7c9d1e3f5a7b9c1d3e5f7a9b1c3d5e7f9a1b3c5d7e9f1",
    )
    access_token_ttl_minutes = int(os.getenv("FINANCE_ACCESS_TOKEN_TTL_MINUTES", "15"))
    refresh_token_ttl_days = int(os.getenv("FINANCE_REFRESH_TOKEN_TTL_DAYS", "7"))
    bcrypt_rounds = int(os.getenv("FINANCE_BCRYPT_ROUNDS", "12"))
    db_pool_size = int(os.getenv("FINANCE_DB_POOL_SIZE", "5"))
    db_max_overflow = int(os.getenv("FINANCE_DB_MAX_OVERFLOW", "10"))
    db_pool_timeout_secs = float(os.getenv("FINANCE_DB_POOL_TIMEOUT_SECS", "30"))
    client_url = os.getenv("FINANCE_CLIENT_URL", "http://localhost:3000")
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        access_token_secret=access_token_secret,
        refresh_token_secret=refresh_token_secret,
        access_token_ttl_minutes=access_token_ttl_minutes,
        refresh_token_ttl_days=refresh_token_ttl_days,
        bcrypt_rounds=bcrypt_rounds,
        db_pool_size=db_pool_size,
        db_max_overflow=db_max_overflow,
        db_pool_timeout_secs=db_pool_timeout_secs,
        client_url=client_url,
        log_level=log_level,
    )
