"""
Record store for purchases, consumption and allocations.

``RecordStore`` is the contract the ledger core reads from and writes to.
Every write method is atomic: either all rows change or none do.

- ``InMemoryRecordStore`` keeps indexed dicts keyed by id and swaps in a
  fully built copy on every write. Used for snapshots, local runs and tests.
- ``SqlRecordStore`` maps the same contract onto the SQLAlchemy tables in
  ``TableModels`` with one transaction per write call.
"""

import asyncio
import itertools
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, exists, select, update
from sqlalchemy.exc import SQLAlchemyError

from database_manager.database_session_manager import DatabaseSessionManager
from fifo_engine.exceptions import PersistenceError
from fifo_engine.models import (
    Allocation, AllocationFilter, ConsumptionRecord, DateWindow, LedgerSnapshot, PurchaseLot,
)
from TableModels import AllocationRow, ConsumptionRow, PurchaseRow


def _lot_order(lot: PurchaseLot):
    return lot.purchase_date, lot.id


def _consumption_order(consumption: ConsumptionRecord):
    return consumption.consumption_date, consumption.id


def _allocation_order(allocation: Allocation):
    return allocation.created_at, allocation.id or 0


class RecordStore(ABC):
    """Durable storage the ledger core depends on."""

    @abstractmethod
    async def list_vessels_with_unresolved_consumption(self) -> List[int]:
        """Vessel ids owning at least one consumption record with no allocations, ascending."""

    @abstractmethod
    async def list_unresolved_consumptions(self) -> List[ConsumptionRecord]:
        """Consumption records with zero allocations, ordered by (month, vessel, date, id)."""

    @abstractmethod
    async def list_lots_for_vessel(self, vessel_id: int, cutoff: date) -> List[PurchaseLot]:
        """Lots of one vessel with remaining > 0 purchased on or before cutoff, FIFO ordered."""

    @abstractmethod
    async def list_lots(self, window: Optional[DateWindow] = None) -> List[PurchaseLot]:
        ...

    @abstractmethod
    async def list_consumptions(self, window: Optional[DateWindow] = None) -> List[ConsumptionRecord]:
        ...

    @abstractmethod
    async def list_allocations(self, allocation_filter: Optional[AllocationFilter] = None) -> List[Allocation]:
        """Allocations in storage order (created_at, id)."""

    @abstractmethod
    async def apply_allocation_batch(self, new_allocations: List[Allocation],
                                     updated_lots: List[PurchaseLot]) -> List[Allocation]:
        """Insert allocations and write lot balances atomically. Returns the rows with ids."""

    @abstractmethod
    async def replace_ledger(self, allocations: List[Allocation],
                             lots: List[PurchaseLot]) -> List[Allocation]:
        """Drop every allocation, write lot balances, insert the new allocation set atomically."""

    @abstractmethod
    async def apply_repair(self, removed_allocation_ids: Iterable[int],
                           updated_lots: List[PurchaseLot]) -> None:
        """Delete the given allocations and write lot balances atomically."""

    @abstractmethod
    async def add_lots(self, lots: List[PurchaseLot]) -> List[PurchaseLot]:
        """Insert purchase lots (upstream data entry). Returns them with ids."""

    @abstractmethod
    async def add_consumptions(self, consumptions: List[ConsumptionRecord]) -> List[ConsumptionRecord]:
        """Insert consumption records (upstream data entry). Returns them with ids."""

    async def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            lots=await self.list_lots(),
            consumptions=await self.list_consumptions(),
            allocations=await self.list_allocations(),
        )


# =========================================================================
# IN-MEMORY STORE
# =========================================================================

class InMemoryRecordStore(RecordStore):
    """
    Arena of records keyed by id.

    Writes build new dicts and swap them in only after every row has been
    validated, so a failed write leaves the previous state untouched.
    """

    def __init__(self, lots: Iterable[PurchaseLot] = (), consumptions: Iterable[ConsumptionRecord] = (),
                 allocations: Iterable[Allocation] = ()):
        self.lots: Dict[int, PurchaseLot] = {lot.id: lot for lot in lots}
        self.consumptions: Dict[int, ConsumptionRecord] = {c.id: c for c in consumptions}
        self.allocations: Dict[int, Allocation] = {}
        self._write_lock = asyncio.Lock()
        self._lot_ids = itertools.count(max(self.lots, default=0) + 1)
        self._consumption_ids = itertools.count(max(self.consumptions, default=0) + 1)
        self._allocation_ids = itertools.count(1)
        for allocation in allocations:
            self.add_allocation(allocation)

    def add_allocation(self, allocation: Allocation) -> Allocation:
        """Insert one ledger row as-is, bypassing the engine (imports and corruption tests)."""
        stamped = self._stamp(allocation, datetime.now(timezone.utc))
        self.allocations[stamped.id] = stamped
        return stamped

    def _stamp(self, allocation: Allocation, now: datetime) -> Allocation:
        if allocation.id is None:
            allocation = replace(allocation, id=next(self._allocation_ids))
        if allocation.created_at is None:
            allocation = replace(allocation, created_at=now)
        return allocation

    # ---------- reads ----------

    def _pending(self) -> List[ConsumptionRecord]:
        resolved = {a.consumption_id for a in self.allocations.values()}
        return [c for c in self.consumptions.values() if c.id not in resolved]

    async def list_vessels_with_unresolved_consumption(self) -> List[int]:
        return sorted({c.vessel_id for c in self._pending()})

    async def list_unresolved_consumptions(self) -> List[ConsumptionRecord]:
        return sorted(self._pending(), key=lambda c: (c.month, c.vessel_id, c.consumption_date, c.id))

    async def list_lots_for_vessel(self, vessel_id: int, cutoff: date) -> List[PurchaseLot]:
        eligible = [
            lot for lot in self.lots.values()
            if lot.vessel_id == vessel_id and lot.remaining_quantity > 0 and lot.purchase_date <= cutoff
        ]
        return sorted(eligible, key=_lot_order)

    async def list_lots(self, window: Optional[DateWindow] = None) -> List[PurchaseLot]:
        lots = [lot for lot in self.lots.values() if window is None or window.contains(lot.purchase_date)]
        return sorted(lots, key=_lot_order)

    async def list_consumptions(self, window: Optional[DateWindow] = None) -> List[ConsumptionRecord]:
        consumptions = [
            c for c in self.consumptions.values() if window is None or window.contains(c.consumption_date)
        ]
        return sorted(consumptions, key=_consumption_order)

    async def list_allocations(self, allocation_filter: Optional[AllocationFilter] = None) -> List[Allocation]:
        rows = [a for a in self.allocations.values() if allocation_filter is None or allocation_filter.matches(a)]
        return sorted(rows, key=_allocation_order)

    # ---------- writes ----------

    def _merge_lots(self, lots: Dict[int, PurchaseLot], updated_lots: List[PurchaseLot], operation: str):
        for lot in updated_lots:
            if lot.id not in lots:
                raise PersistenceError(operation, KeyError(f"unknown lot {lot.id}"))
            lots[lot.id] = replace(lots[lot.id], remaining_quantity=lot.remaining_quantity)

    def _insert_allocations(self, table: Dict[int, Allocation], lots: Dict[int, PurchaseLot],
                            new_allocations: List[Allocation], operation: str) -> List[Allocation]:
        now = datetime.now(timezone.utc)
        stored = []
        for allocation in new_allocations:
            if allocation.lot_id not in lots:
                raise PersistenceError(operation, KeyError(f"unknown lot {allocation.lot_id}"))
            if allocation.consumption_id not in self.consumptions:
                raise PersistenceError(operation, KeyError(f"unknown consumption {allocation.consumption_id}"))
            row = self._stamp(replace(allocation, id=None), now)
            table[row.id] = row
            stored.append(row)
        return stored

    async def apply_allocation_batch(self, new_allocations: List[Allocation],
                                     updated_lots: List[PurchaseLot]) -> List[Allocation]:
        async with self._write_lock:
            lots = dict(self.lots)
            allocations = dict(self.allocations)
            self._merge_lots(lots, updated_lots, "apply_allocation_batch")
            stored = self._insert_allocations(allocations, lots, new_allocations, "apply_allocation_batch")
            self.lots, self.allocations = lots, allocations
            return stored

    async def replace_ledger(self, allocations: List[Allocation],
                             lots: List[PurchaseLot]) -> List[Allocation]:
        async with self._write_lock:
            new_lots = dict(self.lots)
            new_allocations: Dict[int, Allocation] = {}
            self._merge_lots(new_lots, lots, "replace_ledger")
            stored = self._insert_allocations(new_allocations, new_lots, allocations, "replace_ledger")
            self.lots, self.allocations = new_lots, new_allocations
            return stored

    async def apply_repair(self, removed_allocation_ids: Iterable[int],
                           updated_lots: List[PurchaseLot]) -> None:
        async with self._write_lock:
            lots = dict(self.lots)
            allocations = dict(self.allocations)
            for allocation_id in removed_allocation_ids:
                if allocations.pop(allocation_id, None) is None:
                    raise PersistenceError("apply_repair", KeyError(f"unknown allocation {allocation_id}"))
            self._merge_lots(lots, updated_lots, "apply_repair")
            self.lots, self.allocations = lots, allocations

    async def add_lots(self, lots: List[PurchaseLot]) -> List[PurchaseLot]:
        stored = []
        for lot in lots:
            if lot.id is None or lot.id in self.lots:
                lot = replace(lot, id=next(self._lot_ids))
            self.lots[lot.id] = lot
            stored.append(lot)
        return stored

    async def add_consumptions(self, consumptions: List[ConsumptionRecord]) -> List[ConsumptionRecord]:
        stored = []
        for consumption in consumptions:
            if consumption.id is None or consumption.id in self.consumptions:
                consumption = replace(consumption, id=next(self._consumption_ids))
            self.consumptions[consumption.id] = consumption
            stored.append(consumption)
        return stored


# =========================================================================
# SQL STORE
# =========================================================================

def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlRecordStore(RecordStore):
    """
    SQLAlchemy 2 async implementation over the ``fuel_*`` tables.

    Each write runs inside one ``session.begin()`` block; any SQLAlchemy error
    rolls the transaction back and is re-raised as ``PersistenceError``.
    """

    def __init__(self, database_session_manager: DatabaseSessionManager, logger_manager=None):
        self.db = database_session_manager
        self.logger = logger_manager.get_logger('ledger_logger') if logger_manager else database_session_manager.logger

    # ---------- row mapping ----------

    @staticmethod
    def _to_lot(row: PurchaseRow) -> PurchaseLot:
        return PurchaseLot(
            id=row.id,
            vessel_id=row.vessel_id,
            supplier_id=row.supplier_id,
            purchase_date=row.purchase_date,
            invoice_reference=row.invoice_reference or "",
            currency=row.currency or "USD",
            quantity_liters=row.quantity_liters,
            quantity_tons=row.quantity_tons or 0,
            total_value=row.total_value,
            total_value_usd=row.total_value_usd,
            remaining_quantity=row.remaining_quantity,
            created_at=_aware(row.created_at),
        )

    @staticmethod
    def _to_consumption(row: ConsumptionRow) -> ConsumptionRecord:
        return ConsumptionRecord(
            id=row.id,
            vessel_id=row.vessel_id,
            consumption_date=row.consumption_date,
            month=row.month,
            consumption_liters=row.consumption_liters,
            legs_completed=row.legs_completed,
            created_at=_aware(row.created_at),
        )

    @staticmethod
    def _to_allocation(row: AllocationRow) -> Allocation:
        return Allocation(
            id=row.id,
            lot_id=row.lot_id,
            consumption_id=row.consumption_id,
            allocated_quantity=row.allocated_quantity,
            allocated_value=row.allocated_value,
            allocated_value_usd=row.allocated_value_usd,
            lot_balance_after=row.lot_balance_after,
            month=row.month,
            batch_id=row.batch_id,
            created_at=_aware(row.created_at),
        )

    @staticmethod
    def _allocation_row(allocation: Allocation, now: datetime) -> AllocationRow:
        return AllocationRow(
            lot_id=allocation.lot_id,
            consumption_id=allocation.consumption_id,
            allocated_quantity=allocation.allocated_quantity,
            allocated_value=allocation.allocated_value,
            allocated_value_usd=allocation.allocated_value_usd,
            lot_balance_after=allocation.lot_balance_after,
            month=allocation.month,
            batch_id=allocation.batch_id,
            created_at=allocation.created_at or now,
        )

    # ---------- reads ----------

    @DatabaseSessionManager.db_retry_once
    async def list_vessels_with_unresolved_consumption(self) -> List[int]:
        has_allocation = exists().where(AllocationRow.consumption_id == ConsumptionRow.id)
        stmt = (
            select(ConsumptionRow.vessel_id)
            .where(~has_allocation)
            .distinct()
            .order_by(ConsumptionRow.vessel_id)
        )
        async with self.db.async_session() as session:
            return list((await session.execute(stmt)).scalars().all())

    @DatabaseSessionManager.db_retry_once
    async def list_unresolved_consumptions(self) -> List[ConsumptionRecord]:
        has_allocation = exists().where(AllocationRow.consumption_id == ConsumptionRow.id)
        stmt = (
            select(ConsumptionRow)
            .where(~has_allocation)
            .order_by(ConsumptionRow.month, ConsumptionRow.vessel_id,
                      ConsumptionRow.consumption_date, ConsumptionRow.id)
        )
        async with self.db.async_session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [self._to_consumption(row) for row in rows]

    @DatabaseSessionManager.db_retry_once
    async def list_lots_for_vessel(self, vessel_id: int, cutoff: date) -> List[PurchaseLot]:
        stmt = (
            select(PurchaseRow)
            .where(PurchaseRow.vessel_id == vessel_id,
                   PurchaseRow.remaining_quantity > 0,
                   PurchaseRow.purchase_date <= cutoff)
            .order_by(PurchaseRow.purchase_date, PurchaseRow.id)
        )
        async with self.db.async_session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [self._to_lot(row) for row in rows]

    @DatabaseSessionManager.db_retry_once
    async def list_lots(self, window: Optional[DateWindow] = None) -> List[PurchaseLot]:
        stmt = select(PurchaseRow).order_by(PurchaseRow.purchase_date, PurchaseRow.id)
        if window and window.start:
            stmt = stmt.where(PurchaseRow.purchase_date >= window.start)
        if window and window.end:
            stmt = stmt.where(PurchaseRow.purchase_date <= window.end)
        async with self.db.async_session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [self._to_lot(row) for row in rows]

    @DatabaseSessionManager.db_retry_once
    async def list_consumptions(self, window: Optional[DateWindow] = None) -> List[ConsumptionRecord]:
        stmt = select(ConsumptionRow).order_by(ConsumptionRow.consumption_date, ConsumptionRow.id)
        if window and window.start:
            stmt = stmt.where(ConsumptionRow.consumption_date >= window.start)
        if window and window.end:
            stmt = stmt.where(ConsumptionRow.consumption_date <= window.end)
        async with self.db.async_session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [self._to_consumption(row) for row in rows]

    @DatabaseSessionManager.db_retry_once
    async def list_allocations(self, allocation_filter: Optional[AllocationFilter] = None) -> List[Allocation]:
        stmt = select(AllocationRow).order_by(AllocationRow.created_at, AllocationRow.id)
        if allocation_filter is not None:
            if allocation_filter.month is not None:
                stmt = stmt.where(AllocationRow.month == allocation_filter.month)
            id_clauses = []
            if allocation_filter.lot_ids is not None:
                id_clauses.append(AllocationRow.lot_id.in_(allocation_filter.lot_ids))
            if allocation_filter.consumption_ids is not None:
                id_clauses.append(AllocationRow.consumption_id.in_(allocation_filter.consumption_ids))
            if len(id_clauses) == 2:
                stmt = stmt.where(id_clauses[0] | id_clauses[1])
            elif id_clauses:
                stmt = stmt.where(id_clauses[0])
        async with self.db.async_session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [self._to_allocation(row) for row in rows]

    # ---------- writes ----------

    @staticmethod
    async def _write_lot_balances(session, lots: List[PurchaseLot]):
        for lot in lots:
            await session.execute(
                update(PurchaseRow)
                .where(PurchaseRow.id == lot.id)
                .values(remaining_quantity=lot.remaining_quantity)
            )

    async def _insert_allocations(self, session, allocations: List[Allocation]) -> List[AllocationRow]:
        now = datetime.now(timezone.utc)
        rows = [self._allocation_row(a, now) for a in allocations]
        session.add_all(rows)
        await session.flush()
        return rows

    async def apply_allocation_batch(self, new_allocations: List[Allocation],
                                     updated_lots: List[PurchaseLot]) -> List[Allocation]:
        try:
            async with self.db.async_session() as session:
                async with session.begin():
                    await self._write_lot_balances(session, updated_lots)
                    rows = await self._insert_allocations(session, new_allocations)
                return [self._to_allocation(row) for row in rows]
        except SQLAlchemyError as e:
            self.logger.error(f"❌ apply_allocation_batch rolled back: {e}", exc_info=True)
            raise PersistenceError("apply_allocation_batch", e) from e

    async def replace_ledger(self, allocations: List[Allocation],
                             lots: List[PurchaseLot]) -> List[Allocation]:
        try:
            async with self.db.async_session() as session:
                async with session.begin():
                    await session.execute(delete(AllocationRow))
                    await self._write_lot_balances(session, lots)
                    rows = await self._insert_allocations(session, allocations)
                return [self._to_allocation(row) for row in rows]
        except SQLAlchemyError as e:
            self.logger.error(f"❌ replace_ledger rolled back: {e}", exc_info=True)
            raise PersistenceError("replace_ledger", e) from e

    async def apply_repair(self, removed_allocation_ids: Iterable[int],
                           updated_lots: List[PurchaseLot]) -> None:
        removed = list(removed_allocation_ids)
        try:
            async with self.db.async_session() as session:
                async with session.begin():
                    if removed:
                        await session.execute(delete(AllocationRow).where(AllocationRow.id.in_(removed)))
                    await self._write_lot_balances(session, updated_lots)
        except SQLAlchemyError as e:
            self.logger.error(f"❌ apply_repair rolled back: {e}", exc_info=True)
            raise PersistenceError("apply_repair", e) from e

    async def add_lots(self, lots: List[PurchaseLot]) -> List[PurchaseLot]:
        try:
            async with self.db.async_session() as session:
                async with session.begin():
                    rows = [
                        PurchaseRow(
                            vessel_id=lot.vessel_id,
                            supplier_id=lot.supplier_id,
                            purchase_date=lot.purchase_date,
                            invoice_reference=lot.invoice_reference,
                            currency=lot.currency,
                            quantity_liters=lot.quantity_liters,
                            quantity_tons=lot.quantity_tons,
                            total_value=lot.total_value,
                            total_value_usd=lot.total_value_usd,
                            remaining_quantity=lot.remaining_quantity,
                        )
                        for lot in lots
                    ]
                    session.add_all(rows)
                    await session.flush()
                    stored = [replace(lot, id=row.id) for lot, row in zip(lots, rows)]
                return stored
        except SQLAlchemyError as e:
            raise PersistenceError("add_lots", e) from e

    async def add_consumptions(self, consumptions: List[ConsumptionRecord]) -> List[ConsumptionRecord]:
        try:
            async with self.db.async_session() as session:
                async with session.begin():
                    rows = [
                        ConsumptionRow(
                            vessel_id=c.vessel_id,
                            consumption_date=c.consumption_date,
                            month=c.month,
                            consumption_liters=c.consumption_liters,
                            legs_completed=c.legs_completed,
                        )
                        for c in consumptions
                    ]
                    session.add_all(rows)
                    await session.flush()
                    stored = [replace(c, id=row.id) for c, row in zip(consumptions, rows)]
                return stored
        except SQLAlchemyError as e:
            raise PersistenceError("add_consumptions", e) from e
