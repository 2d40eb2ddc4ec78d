"""
Critical Path Test Fixtures

Shared fixtures for ledger-critical testing. Records are built with Decimal
quantities; the store is the in-memory arena unless a test asks for SQL.
"""

import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

from Shared_Utils.precision import PrecisionUtils
from fifo_engine.engine import FifoAllocationEngine
from fifo_engine.exceptions_detector import ExceptionDetector
from fifo_engine.models import Allocation, ConsumptionRecord, PurchaseLot
from fifo_engine.recovery import RecoveryOrchestrator
from fifo_engine.store import InMemoryRecordStore
from fifo_engine.verifier import ConsistencyVerifier


@pytest.fixture
def mock_logger():
    """Mock logger (covers the custom ALLOCATION/SHORTFALL/REPAIR levels too)"""
    logger = MagicMock()
    logger.info = MagicMock()
    logger.warning = MagicMock()
    logger.error = MagicMock()
    logger.debug = MagicMock()
    return logger


@pytest.fixture
def logger_manager(mock_logger):
    """Mock LoggerManager handing out the same mock logger for every name"""
    manager = MagicMock()
    manager.get_logger.return_value = mock_logger
    return manager


@pytest.fixture
def precision(logger_manager):
    return PrecisionUtils(logger_manager)


@pytest.fixture
def make_lot():
    """Factory: purchase lot with USD value equal to purchase-currency value unless given"""
    def _make(lot_id, vessel_id, purchase_date, liters, value, value_usd=None, remaining=None,
              tons=None, invoice=None):
        liters = Decimal(str(liters))
        return PurchaseLot(
            id=lot_id,
            vessel_id=vessel_id,
            supplier_id=1,
            purchase_date=purchase_date,
            invoice_reference=invoice or f"INV-{lot_id:04d}",
            quantity_liters=liters,
            quantity_tons=Decimal(str(tons)) if tons is not None else (liters * Decimal("0.85") / 1000),
            total_value=Decimal(str(value)),
            total_value_usd=Decimal(str(value_usd if value_usd is not None else value)),
            remaining_quantity=Decimal(str(remaining)) if remaining is not None else None,
        )
    return _make


@pytest.fixture
def make_consumption():
    """Factory: consumption record; month key derived from the date"""
    def _make(consumption_id, vessel_id, consumption_date, liters, legs=None):
        return ConsumptionRecord(
            id=consumption_id,
            vessel_id=vessel_id,
            consumption_date=consumption_date,
            consumption_liters=Decimal(str(liters)),
            legs_completed=legs,
        )
    return _make


@pytest.fixture
def make_allocation():
    """Factory: raw ledger row, for injecting hand-edited or corrupt data"""
    def _make(lot_id, consumption_id, quantity, value_usd, balance_after, month, value=None):
        return Allocation(
            lot_id=lot_id,
            consumption_id=consumption_id,
            allocated_quantity=Decimal(str(quantity)),
            allocated_value=Decimal(str(value if value is not None else value_usd)),
            allocated_value_usd=Decimal(str(value_usd)),
            lot_balance_after=Decimal(str(balance_after)),
            month=month,
        )
    return _make


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def two_lot_store(make_lot, make_consumption):
    """
    Vessel 1: lots of 1000 L on 2025-01-01 and 2025-01-15 ($1000 each),
    one consumption of 1500 L on 2025-01-20.
    """
    return InMemoryRecordStore(
        lots=[
            make_lot(1, 1, date(2025, 1, 1), "1000", "1000"),
            make_lot(2, 1, date(2025, 1, 15), "1000", "1000"),
        ],
        consumptions=[make_consumption(1, 1, date(2025, 1, 20), "1500")],
    )


@pytest.fixture
def engine_factory(logger_manager, precision):
    def _make(record_store):
        return FifoAllocationEngine(record_store, logger_manager, precision)
    return _make


@pytest.fixture
def verifier_factory(logger_manager, precision):
    def _make(record_store):
        return ConsistencyVerifier(record_store, logger_manager, precision_utils=precision)
    return _make


@pytest.fixture
def detector_factory(logger_manager):
    def _make(record_store):
        return ExceptionDetector(record_store, logger_manager)
    return _make


@pytest.fixture
def recovery_factory(logger_manager, precision):
    def _make(record_store):
        return RecoveryOrchestrator(record_store, logger_manager, precision)
    return _make


def ledger_pairs(allocations):
    """(lot, consumption, quantity, balance_after) tuples in storage order"""
    return [(a.lot_id, a.consumption_id, a.allocated_quantity, a.lot_balance_after) for a in allocations]


@pytest.fixture
def pairs():
    return ledger_pairs
