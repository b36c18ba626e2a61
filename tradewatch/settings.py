# tradewatch/settings.py
"""Environment-driven configuration.

`load_settings()` is called once by the bootstrap code; nothing in the package
reads the environment at import time apart from `.env` loading.
"""
import os
import tempfile
from dataclasses import dataclass
from dotenv import load_dotenv
from .errors import ConfigError

DEFAULT_MARKET_API_URL = "https://diablo.trade/api/trpc/offer.search"
DEFAULT_LISTING_URL_TEMPLATE = "https://diablo.trade/listings/items/{item_id}"
DEFAULT_CAPTURE_SELECTOR = (
    ".relative.mx-auto.h-fit.w-64.border-\\[20px\\].sm\\:w-72"
    ".sm\\:border-\\[24px\\].flip-card-face"
)


@dataclass(frozen=True)
class Settings:
    database_url: str
    webhook_url: str
    market_api_url: str = DEFAULT_MARKET_API_URL
    listing_url_template: str = DEFAULT_LISTING_URL_TEMPLATE
    provider_timeout: float = 30.0
    webhook_timeout: float = 30.0
    headless: bool = True
    capture_timeout_ms: int = 60000
    capture_selector: str = DEFAULT_CAPTURE_SELECTOR
    capture_retries: int = 2
    artifact_dir: str = os.path.join(tempfile.gettempdir(), "tradewatch")
    batch_size: int = 10
    ledger_max_ids: int = 1000
    scheduler_timezone: str = "UTC"
    db_pool_size: int = 5
    db_max_overflow: int = 10
    static_dir: str = "public"
    embed_footer: str = "Diablo.trade"
    log_file: str = None


def normalize_database_url(url):
    # SQLAlchemy 2.x doesn't accept 'postgres://'
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg2://", 1)
    return url


def _int(name, default):
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _float(name, default):
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def load_settings():
    load_dotenv()
    database_url = os.getenv("DATABASE_URL") or os.getenv("POSTGRES_URL")
    if not database_url:
        raise ConfigError("DATABASE_URL not set")
    webhook_url = os.getenv("DISCORD_WEBHOOK_URL")
    if not webhook_url:
        raise ConfigError("DISCORD_WEBHOOK_URL not set")

    batch_size = _int("BATCH_SIZE", 10)
    if not 1 <= batch_size <= 10:
        # discord caps a message at 10 embeds
        raise ConfigError("BATCH_SIZE must be between 1 and 10")

    return Settings(
        database_url=normalize_database_url(database_url),
        webhook_url=webhook_url,
        market_api_url=os.getenv("MARKET_API_URL", DEFAULT_MARKET_API_URL),
        listing_url_template=os.getenv("LISTING_URL_TEMPLATE", DEFAULT_LISTING_URL_TEMPLATE),
        provider_timeout=_float("PROVIDER_TIMEOUT", 30.0),
        webhook_timeout=_float("WEBHOOK_TIMEOUT", 30.0),
        headless=os.getenv("HEADLESS", "1") == "1",
        capture_timeout_ms=_int("CAPTURE_TIMEOUT_MS", 60000),
        capture_selector=os.getenv("CAPTURE_SELECTOR", DEFAULT_CAPTURE_SELECTOR),
        capture_retries=max(1, _int("CAPTURE_RETRIES", 2)),
        artifact_dir=os.getenv("ARTIFACT_DIR", os.path.join(tempfile.gettempdir(), "tradewatch")),
        batch_size=batch_size,
        ledger_max_ids=max(1, _int("LEDGER_MAX_IDS", 1000)),
        scheduler_timezone=os.getenv("SCHEDULER_TIMEZONE", "UTC"),
        db_pool_size=_int("DB_POOL_SIZE", 5),
        db_max_overflow=_int("DB_MAX_OVERFLOW", 10),
        static_dir=os.getenv("STATIC_DIR", "public"),
        embed_footer=os.getenv("EMBED_FOOTER", "Diablo.trade"),
        log_file=os.getenv("LOG_FILE") or None,
    )
