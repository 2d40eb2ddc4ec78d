"""
FIFO Fuel Ledger

Allocates fuel bought in discrete purchase lots to fuel consumed over time,
strictly oldest lot first per vessel, and keeps lot balances, consumption
coverage and monetary value consistent.

Key Components:
- LotQueueBuilder: FIFO-ordered lots a vessel may draw from for one month
- FifoAllocationEngine: Matches unresolved consumption against lot queues
- ConsistencyVerifier: Recomputes totals and grades ledger integrity
- ExceptionDetector: Finds chronology violations, negative balances, value drift
- RecoveryOrchestrator: Full rebuild and targeted repair of the ledger
- RecordStore: In-memory and SQL storage behind one async contract

Architecture:
- Purchases and consumption are facts (what happened)
- Allocations are derived separately (what it means)
- Allocations can be deleted and regenerated anytime
- Every write is a single atomic store call

Usage:
    from fifo_engine import FifoAllocationEngine, InMemoryRecordStore

    engine = FifoAllocationEngine(store, logger_manager)
    result = await engine.run_allocation()
"""

from .engine import FifoAllocationEngine
from .exceptions import LedgerError, PersistenceError
from .exceptions_detector import ExceptionDetector
from .lot_queue import LotQueueBuilder
from .models import (
    Allocation, AllocationFilter, AllocationFinding, AllocationResult, BalanceVerificationResult,
    ConsumptionRecord, DateWindow, FindingType, PurchaseLot, RecoveryResult, Severity, Shortfall,
)
from .recovery import RecoveryOrchestrator
from .store import InMemoryRecordStore, RecordStore, SqlRecordStore
from .verifier import ConsistencyVerifier

__all__ = [
    'FifoAllocationEngine',
    'LotQueueBuilder',
    'ConsistencyVerifier',
    'ExceptionDetector',
    'RecoveryOrchestrator',
    'RecordStore',
    'InMemoryRecordStore',
    'SqlRecordStore',
    'LedgerError',
    'PersistenceError',
    'PurchaseLot',
    'ConsumptionRecord',
    'Allocation',
    'AllocationFilter',
    'DateWindow',
    'Shortfall',
    'AllocationResult',
    'RecoveryResult',
    'BalanceVerificationResult',
    'AllocationFinding',
    'FindingType',
    'Severity',
]

__version__ = '1.0.0'
