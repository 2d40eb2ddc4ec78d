import os
from decimal import Decimal, InvalidOperation
from typing import Optional

from Config import constants_core as core
from Config.environment import env
from Config.exceptions import ConfigMissingError, ConfigRangeError, ConfigValidationError
from Shared_Utils.url_helper import build_async_url_from_env


class CentralConfig:
    """Centralized configuration manager shared across all ledger modules."""
    _instance = None  # Singleton instance
    _is_loaded = False

    def __new__(cls, *args, **kwargs):
        if cls._instance is None:
            cls._instance = super(CentralConfig, cls).__new__(cls)
        return cls._instance

    def __init__(self, database_url: Optional[str] = None):
        if not self._is_loaded:
            self._initialize_default_values()
            self._load_configuration(database_url)
            self._is_loaded = True

    @classmethod
    def reset_instance(cls):
        """Drop the cached singleton so the next call re-reads the environment."""
        cls._instance = None
        cls._is_loaded = False

    def _initialize_default_values(self):
        """Set default values for all configuration attributes."""
        self._database_url = None
        self._log_level = "INFO"
        self._log_dir = str(env.log_dir)
        self._volume_tolerance = core.VOLUME_TOLERANCE
        self._money_tolerance = core.MONEY_TOLERANCE
        self._drift_tolerance = core.VALUE_DRIFT_TOLERANCE
        self._db_pool_size = 5
        self._db_max_overflow = 5

    def _load_configuration(self, database_url: Optional[str]):
        """Load configuration from environment variables (the .env file is already loaded)."""
        env.load()
        self._log_level = os.getenv("LOG_LEVEL", self._log_level).upper()
        self._log_dir = os.getenv("FUEL_LEDGER_LOG_DIR", self._log_dir)
        self._db_pool_size = int(os.getenv("DB_POOL_SIZE", self._db_pool_size))
        self._db_max_overflow = int(os.getenv("DB_MAX_OVERFLOW", self._db_max_overflow))

        self._volume_tolerance = self._load_tolerance(
            "FIFO_VOLUME_TOLERANCE", self._volume_tolerance, Decimal("1"))
        self._money_tolerance = self._load_tolerance(
            "FIFO_MONEY_TOLERANCE", self._money_tolerance, Decimal("1"))
        self._drift_tolerance = self._load_tolerance(
            "FIFO_DRIFT_TOLERANCE", self._drift_tolerance, Decimal("10"))

        self._database_url = database_url or build_async_url_from_env()

    @staticmethod
    def _load_tolerance(key: str, default: Decimal, maximum: Decimal) -> Decimal:
        raw = os.getenv(key)
        if raw is None:
            return default
        try:
            value = Decimal(raw)
        except InvalidOperation:
            raise ConfigValidationError(key, raw, "Not a decimal number", f"e.g. {key}={default}")
        if value < 0 or value > maximum:
            raise ConfigRangeError(key, value, Decimal("0"), maximum)
        return value

    @property
    def database_url(self) -> str:
        if not self._database_url:
            raise ConfigMissingError("DATABASE_URL", "environment or .env file")
        return self._database_url

    @property
    def log_level(self) -> str:
        return self._log_level

    @property
    def log_dir(self) -> str:
        return self._log_dir

    @property
    def volume_tolerance(self) -> Decimal:
        return self._volume_tolerance

    @property
    def money_tolerance(self) -> Decimal:
        return self._money_tolerance

    @property
    def drift_tolerance(self) -> Decimal:
        return self._drift_tolerance

    @property
    def db_pool_size(self) -> int:
        return self._db_pool_size

    @property
    def db_max_overflow(self) -> int:
        return self._db_max_overflow
