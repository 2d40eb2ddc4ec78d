"""
Shared wiring for the ledger scripts: config, logging, database and store.
"""

from datetime import date
from typing import Optional

from dateutil import parser as dateparser


async def init_dependencies(log_level: Optional[str] = None, database_url: Optional[str] = None):
    """
    Build every collaborator a script needs.

    Returns:
        (config, logger_manager, precision_utils, database_session_manager, store)
    """
    from Config.config_manager import CentralConfig
    from Shared_Utils.logging_manager import LoggerManager
    from Shared_Utils.precision import PrecisionUtils
    from database_manager.database_session_manager import DatabaseSessionManager
    from fifo_engine.store import SqlRecordStore
    from Shared_Utils.url_helper import is_sqlite_url

    config = CentralConfig(database_url=database_url)

    log_config = {"log_level": log_level or config.log_level}
    logger_manager = LoggerManager(log_config, log_dir=config.log_dir)
    ledger_logger = logger_manager.get_logger("ledger_logger")

    database_session_manager = DatabaseSessionManager(
        config.database_url,
        logger=ledger_logger,
        **({} if is_sqlite_url(config.database_url) else dict(
            pool_size=config.db_pool_size,
            max_overflow=config.db_max_overflow,
        )),
    )
    await database_session_manager.initialize()

    precision_utils = PrecisionUtils.get_instance(logger_manager)
    store = SqlRecordStore(database_session_manager, logger_manager)
    return config, logger_manager, precision_utils, database_session_manager, store


def parse_day(value: Optional[str]) -> Optional[date]:
    """Parse a CLI date like '2025-01-31' or 'Jan 31 2025'."""
    if not value:
        return None
    return dateparser.parse(value).date()


def print_banner(title: str):
    print("=" * 80)
    print(title)
    print("=" * 80)

