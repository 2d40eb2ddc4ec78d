import os
import asyncio
import functools

from sqlalchemy import text
from typing import Optional, Any
from contextlib import asynccontextmanager
from sqlalchemy.pool import StaticPool
from sqlalchemy.exc import OperationalError, DBAPIError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from Shared_Utils.url_helper import normalize_driver, is_sqlite_url


class _NoopLogger:
    def debug(self, *a, **k): pass
    info = debug; warning = debug; error = debug; exception = debug


class DatabaseSessionManager:
    """Creates the async engine, yields sessions, runs a one-time schema bootstrap."""

    def __init__(self, dsn: str, logger: Optional[Any] = None, **engine_kw):
        # Logger is duck-typed (must have .debug/.info/.warning/.error/.exception)
        self.logger = logger or _NoopLogger()

        dsn = normalize_driver(dsn)
        self.dsn = dsn

        if is_sqlite_url(dsn):
            # Single shared connection so ":memory:" databases survive across sessions
            defaults = dict(echo=False, poolclass=StaticPool)
        else:
            defaults = dict(
                echo=False,
                pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
                max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "5")),
                pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "10")),
                pool_recycle=int(os.getenv("DB_POOL_RECYCLE", "300")),
                pool_pre_ping=True,
                connect_args={
                    "timeout": float(os.getenv("DB_CONNECT_TIMEOUT", "5")),
                    "command_timeout": float(os.getenv("DB_COMMAND_TIMEOUT", "30")),
                    "server_settings": {
                        "application_name": os.getenv("DB_APP_NAME", "fuel_ledger"),
                        "statement_timeout": os.getenv("DB_STATEMENT_TIMEOUT_MS", "60000"),
                    },
                },
            )
        for k, v in defaults.items():
            engine_kw.setdefault(k, v)

        self.engine = create_async_engine(dsn, **engine_kw)
        self._async_session_factory = async_sessionmaker(
            bind=self.engine, expire_on_commit=False, class_=AsyncSession
        )

        # One-time bootstrap guards
        self._schema_lock = asyncio.Lock()
        self._schema_ready = False

    # ---------- bootstrap / session ----------

    async def _ensure_schema_once(self):
        if self._schema_ready:
            return
        async with self._schema_lock:
            if self._schema_ready:
                return
            from .bootstrap_schema import ensure_ledger_schema
            await ensure_ledger_schema(self.engine)
            self.logger.debug("Ledger schema ensured")
            self._schema_ready = True

    @asynccontextmanager
    async def async_session(self):
        await self._ensure_schema_once()
        async with self._async_session_factory() as session:
            yield session

    # ---------- retry helper ----------

    @staticmethod
    def is_retryable_db_error(e: Exception) -> bool:
        RETRYABLE_SNIPPETS = (
            "ConnectionDoesNotExistError",
            "connection was closed",
            "server closed the connection",
            "could not receive data from server",
            "terminating connection due to administrator command",
            "Connection reset by peer",
            "transport closed",
        )
        s = str(e)
        return isinstance(e, (ConnectionError, OSError, OperationalError, DBAPIError)) \
            and any(sn in s for sn in RETRYABLE_SNIPPETS)

    @staticmethod
    def db_retry_once(func):
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except Exception as e:
                if not DatabaseSessionManager.is_retryable_db_error(e):
                    raise
                self.logger.warning(f"⚠️ Retrying {func.__name__} after connection error: {e}")
                await self.db.engine.dispose()
                await asyncio.sleep(float(os.getenv("DB_RETRY_BACKOFF_SEC", "0.5")))
                return await func(self, *args, **kwargs)

        return wrapper

    # ---------- light engine warm-up ----------

    async def initialize(self) -> None:
        """Verify connectivity and create the schema (single retry)."""
        last_exc = None
        for attempt in (1, 2):
            try:
                async with self.async_session() as s:
                    await s.execute(text("SELECT 1"))
                return
            except (OSError, ConnectionError, OperationalError, DBAPIError) as e:
                last_exc = e
                await self.engine.dispose()
                if attempt == 1:
                    await asyncio.sleep(0.75)
                    continue
                break
        raise last_exc  # surface the original error

    async def disconnect(self):
        """Close the SQLAlchemy database engine."""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("✅ SQLAlchemy engine disposed successfully.")
