# backend/app/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/ordersync.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///ordersync.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # External order-management API
    ORDER_API_BASE_URL = os.environ.get("ORDER_API_BASE_URL", "https://www.bling.com.br/Api/v3")
    ORDER_API_TOKEN_URL = os.environ.get("ORDER_API_TOKEN_URL", "https://www.bling.com.br/Api/v3/oauth/token")
    ORDER_API_AUTHORIZE_URL = os.environ.get(
        "ORDER_API_AUTHORIZE_URL",
        "https://www.bling.com.br/Api/v3/oauth/authorize",
    )
    ORDER_API_TIMEOUT_SECONDS = float(os.environ.get("ORDER_API_TIMEOUT_SECONDS", "10"))

    # Background sync loop (off unless explicitly enabled for the host process)
    SYNC_ENABLED = _env_bool("SYNC_ENABLED", False)
    SYNC_INTERVAL_SECONDS = float(os.environ.get("SYNC_INTERVAL_SECONDS", "1800"))
    SYNC_INITIAL_DELAY_SECONDS = float(os.environ.get("SYNC_INITIAL_DELAY_SECONDS", "5"))
    SYNC_ACCOUNT_DELAY_SECONDS = float(os.environ.get("SYNC_ACCOUNT_DELAY_SECONDS", "1"))
    SYNC_PAGE_SIZE = int(os.environ.get("SYNC_PAGE_SIZE", "100"))
    SYNC_MAX_PAGES = int(os.environ.get("SYNC_MAX_PAGES", "5"))
    SYNC_PAGE_DELAY_SECONDS = float(os.environ.get("SYNC_PAGE_DELAY_SECONDS", "0.3"))
    SYNC_LOOKBACK_HOURS = int(os.environ.get("SYNC_LOOKBACK_HOURS", "24"))

    # Canonical status that triggers automatic stock deduction
    AUTO_DEDUCT_STATUS = os.environ.get("AUTO_DEDUCT_STATUS", "Verified")
