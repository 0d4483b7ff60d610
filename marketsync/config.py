import re
from pathlib import Path
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from dateutil import tz

# Load .env from repo root for local development and scripts.
ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
load_dotenv(dotenv_path=ENV_PATH)

_HHMM_RE = re.compile(r"^\d{2}:\d{2}$")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=True, populate_by_name=True)
    db_path: str = Field(default="./data/marketsync.db", alias="DB_PATH")
    market_timezone: str = Field(default="America/New_York", alias="MARKET_TIMEZONE")
    market_open_time: str = Field(default="09:30", alias="MARKET_OPEN_TIME")
    market_close_time: str = Field(default="16:00", alias="MARKET_CLOSE_TIME")
    quote_cache_market_hours: int = Field(default=15, alias="QUOTE_CACHE_MARKET_HOURS")
    quote_cache_after_hours: int = Field(default=30, alias="QUOTE_CACHE_AFTER_HOURS")
    historical_data_days: int = Field(default=365, alias="HISTORICAL_DATA_DAYS")
    request_delay_seconds: float = Field(default=0.25, alias="REQUEST_DELAY_SECONDS")
    provider_usage_tz: str = Field(default="UTC", alias="PROVIDER_USAGE_TZ")
    http_timeout_seconds: float = Field(default=15.0, alias="HTTP_TIMEOUT_SECONDS")
    http_retry_attempts: int = Field(default=2, alias="HTTP_RETRY_ATTEMPTS")
    http_retry_backoff_seconds: float = Field(default=1.0, alias="HTTP_RETRY_BACKOFF_SECONDS")
    fmp_base_url: str = Field(default="https://financialmodelingprep.com/api/v3", alias="FMP_BASE_URL")
    safety_cache_ttl_hours: int = Field(default=24, alias="SAFETY_CACHE_TTL_HOURS")
    safety_cache_retention_days: int = Field(default=30, alias="SAFETY_CACHE_RETENTION_DAYS")
    safety_lookback_years: int = Field(default=5, alias="SAFETY_LOOKBACK_YEARS")
    scheduler_enabled: int = Field(default=0, alias="SCHEDULER_ENABLED")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_error_file: str = Field(default="", alias="LOG_ERROR_FILE")

def validate_settings(cfg: Settings) -> list[str]:
    """Return human-readable configuration problems; empty when the config is usable."""
    errors = []
    if cfg.historical_data_days < 1 or cfg.historical_data_days > 3650:
        errors.append(f"HISTORICAL_DATA_DAYS must be between 1 and 3650, got: {cfg.historical_data_days}")
    for name, value in (("MARKET_OPEN_TIME", cfg.market_open_time), ("MARKET_CLOSE_TIME", cfg.market_close_time)):
        if not _HHMM_RE.match(value or ""):
            errors.append(f"{name} must be in HH:MM format, got: {value}")
    if _HHMM_RE.match(cfg.market_open_time or "") and _HHMM_RE.match(cfg.market_close_time or ""):
        if cfg.market_open_time >= cfg.market_close_time:
            errors.append("MARKET_OPEN_TIME must be earlier than MARKET_CLOSE_TIME")
    for name, value in (("MARKET_TIMEZONE", cfg.market_timezone), ("PROVIDER_USAGE_TZ", cfg.provider_usage_tz)):
        if tz.gettz(value) is None:
            errors.append(f"Invalid {name}: {value}")
    if cfg.quote_cache_market_hours < 1 or cfg.quote_cache_market_hours > 60:
        errors.append(f"QUOTE_CACHE_MARKET_HOURS must be between 1 and 60, got: {cfg.quote_cache_market_hours}")
    if cfg.quote_cache_after_hours < 1 or cfg.quote_cache_after_hours > 120:
        errors.append(f"QUOTE_CACHE_AFTER_HOURS must be between 1 and 120, got: {cfg.quote_cache_after_hours}")
    if (cfg.log_level or "").upper() not in LOG_LEVELS:
        errors.append(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got: {cfg.log_level}")
    if cfg.request_delay_seconds < 0:
        errors.append(f"REQUEST_DELAY_SECONDS must be >= 0, got: {cfg.request_delay_seconds}")
    return errors

settings = Settings()
