# Shared_Utils/url_helper.py
import os
import urllib.parse

ASYNC_DRIVER = "postgresql+asyncpg://"
SQLITE_ASYNC_DRIVER = "sqlite+aiosqlite://"


def normalize_driver(url: str) -> str:
    """Ensure an async driver; preserve path/query/fragment."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", ASYNC_DRIVER, 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", ASYNC_DRIVER, 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", SQLITE_ASYNC_DRIVER, 1)
    return url


def percent_encode(s: str) -> str:
    # Encode username/password safely
    return urllib.parse.quote_plus(s or "")


def is_sqlite_url(url: str) -> bool:
    return url.startswith("sqlite")


def build_async_url_from_env() -> str:
    """
    Precedence:
      1) DATABASE_URL (normalized to an async driver)
      2) DB_* pieces (DB_HOST/DB_PORT/DB_NAME/DB_USER/DB_PASSWORD)
    """
    env_url = os.getenv("DATABASE_URL")
    if env_url:
        return normalize_driver(env_url)

    in_docker = os.getenv("IN_DOCKER", "false").lower() == "true"
    default_host = "db" if in_docker else "127.0.0.1"

    host = os.getenv("DB_HOST", default_host)
    port = os.getenv("DB_PORT", "5432")
    name = os.getenv("DB_NAME", "fuel_ledger")
    user = percent_encode(os.getenv("DB_USER", "ledger_user"))
    pwd = percent_encode(os.getenv("DB_PASSWORD", ""))

    return f"{ASYNC_DRIVER}{user}:{pwd}@{host}:{port}/{name}"
