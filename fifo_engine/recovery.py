"""
Recovery Orchestrator

Rebuilds the allocation ledger from source records, or surgically removes
the newest allocations from over-allocated lots. Both modes persist with a
single atomic store write and are idempotent.
"""

import asyncio
import time
from dataclasses import replace
from decimal import Decimal
from typing import Dict, List, Optional

from Config import constants_core as core
from Shared_Utils.logging_manager import LoggerManager
from Shared_Utils.precision import PrecisionUtils
from fifo_engine.engine import FifoAllocationEngine
from fifo_engine.exceptions import PersistenceError
from fifo_engine.models import Allocation, PurchaseLot, RecoveryResult
from fifo_engine.store import InMemoryRecordStore, RecordStore

CLEAN_REPORT_LINE = "No data inconsistencies found - all data appears correct!"


def _ledger_signature(allocations: List[Allocation]):
    return [
        (a.lot_id, a.consumption_id, a.allocated_quantity, a.allocated_value,
         a.allocated_value_usd, a.lot_balance_after, a.month)
        for a in allocations
    ]


class RecoveryOrchestrator:
    """
    Full rebuild and targeted repair of the allocation ledger.

    Usage:
        recovery = RecoveryOrchestrator(store, logger_manager)
        result = await recovery.rebuild_from_scratch()
    """

    def __init__(
        self,
        store: RecordStore,
        logger_manager: LoggerManager,
        precision_utils: Optional[PrecisionUtils] = None,
        config=None,
    ):
        self.store = store
        self.logger_manager = logger_manager
        self.logger = logger_manager.get_logger('recovery_logger')
        self.precision = precision_utils or PrecisionUtils(logger_manager)
        self.config = config
        self.volume_tolerance = config.volume_tolerance if config else core.VOLUME_TOLERANCE

    # =========================================================================
    # FULL REBUILD
    # =========================================================================

    async def rebuild_from_scratch(self, cancel_event: Optional[asyncio.Event] = None) -> RecoveryResult:
        """
        Recompute every allocation from purchases and consumption alone.

        The engine runs against an in-memory copy of the store with all lots
        reset and no allocations; the outcome replaces the stored ledger in one
        write. When the rebuilt ledger equals the stored one nothing is written.

        Raises:
            PersistenceError: the replacement write failed; the stored ledger is unchanged.
        """
        started = time.monotonic()
        result = RecoveryResult(success=True, mode='rebuild')
        self.logger.info("🔄 Rebuilding allocation ledger from scratch")

        snapshot = await self.store.snapshot()
        reset_lots = [replace(lot, remaining_quantity=lot.quantity_liters) for lot in snapshot.lots]
        result.log(f"Snapshot: {len(snapshot.lots)} lots, {len(snapshot.consumptions)} consumption records, "
                   f"{len(snapshot.allocations)} allocations")

        scratch = InMemoryRecordStore(reset_lots, snapshot.consumptions)
        engine = FifoAllocationEngine(scratch, self.logger_manager, self.precision, self.config)
        plan = await engine.plan_allocation(cancel_event)
        result.details.extend(plan.details)
        result.shortfalls = plan.shortfalls
        result.cancelled = plan.cancelled

        if plan.cancelled:
            result.success = False
            result.message = "Rebuild cancelled; stored ledger unchanged"
            result.log(f"⏹️ {result.message}")
            result.duration_ms = int((time.monotonic() - started) * 1000)
            self.logger.warning(f"⏹️ {result.message}")
            return result

        final_lots: Dict[int, PurchaseLot] = {lot.id: lot for lot in reset_lots}
        for lot in plan.updated_lots:
            final_lots[lot.id] = lot
        stored_lots = {lot.id: lot for lot in snapshot.lots}
        changed_lots = [
            lot for lot in final_lots.values()
            if lot.remaining_quantity != stored_lots[lot.id].remaining_quantity
        ]

        if not changed_lots and _ledger_signature(plan.allocations) == _ledger_signature(snapshot.allocations):
            result.message = "Ledger already matches a rebuild from scratch; nothing changed."
            result.log(result.message)
            result.duration_ms = int((time.monotonic() - started) * 1000)
            self.logger.info(f"✅ {result.message}")
            return result

        try:
            stored = await self.store.replace_ledger(
                plan.allocations, sorted(final_lots.values(), key=lambda lot: lot.id)
            )
        except PersistenceError as e:
            result.success = False
            result.error_message = str(e)
            result.message = "Rebuild aborted; the stored ledger was not changed."
            result.log(f"❌ {result.message}")
            e.result = result
            self.logger.error(f"❌ {result.message} ({e.cause})", exc_info=True)
            raise

        result.fixed_lots = len(changed_lots)
        result.removed_allocations = len(snapshot.allocations)
        result.created_allocations = len(stored)
        result.message = (
            f"Rebuilt ledger: {result.fixed_lots} lots reset, {result.removed_allocations} allocations removed, "
            f"{result.created_allocations} allocations created, {len(result.shortfalls)} shortfalls."
        )
        result.log(result.message)
        result.duration_ms = int((time.monotonic() - started) * 1000)
        self.logger.repair(result.message)
        return result

    def _exceeds(self, allocated: Decimal, available: Decimal) -> bool:
        return allocated > available and not self.precision.within(allocated, available, self.volume_tolerance)

    # =========================================================================
    # TARGETED REPAIR
    # =========================================================================

    async def repair_over_allocated_lots(self) -> RecoveryResult:
        """
        Fix lots whose allocations exceed their original quantity.

        Newest allocations (by creation time, then id) are removed first until
        the excess is gone; the lot's remaining quantity is then recomputed
        from the allocations it keeps. Lots with a negative stored remaining
        but no excess only get their remaining recomputed.
        """
        started = time.monotonic()
        result = RecoveryResult(success=True, mode='repair')
        snapshot = await self.store.snapshot()

        by_lot: Dict[int, List[Allocation]] = {}
        for allocation in snapshot.allocations:
            by_lot.setdefault(allocation.lot_id, []).append(allocation)

        removed_ids: List[int] = []
        updated_lots: List[PurchaseLot] = []

        for lot in snapshot.lots:
            allocations = sorted(by_lot.get(lot.id, []), key=lambda a: (a.created_at, a.id))
            allocated = sum((a.allocated_quantity for a in allocations), Decimal("0"))
            over_allocated = self._exceeds(allocated, lot.quantity_liters)
            if not over_allocated and lot.remaining_quantity >= 0:
                continue

            kept = list(allocations)
            while kept and self._exceeds(sum((a.allocated_quantity for a in kept), Decimal("0")),
                                         lot.quantity_liters):
                newest = kept.pop()
                removed_ids.append(newest.id)
                result.log(
                    f"Lot #{lot.id} ({lot.invoice_reference or lot.purchase_date}): removed allocation "
                    f"#{newest.id} ({newest.allocated_quantity} L → consumption #{newest.consumption_id})"
                )

            kept_total = sum((a.allocated_quantity for a in kept), Decimal("0"))
            new_remaining = max(Decimal("0"), self.precision.liters(lot.quantity_liters - kept_total))
            updated_lots.append(replace(lot, remaining_quantity=new_remaining))
            result.log(
                f"Lot #{lot.id}: remaining {lot.remaining_quantity} L → {new_remaining} L "
                f"({allocated} L allocated of {lot.quantity_liters} L before repair)"
            )

        if not updated_lots:
            result.message = "No over-allocated lots found."
            result.log(result.message)
            result.duration_ms = int((time.monotonic() - started) * 1000)
            self.logger.info(f"✅ {result.message}")
            return result

        try:
            await self.store.apply_repair(removed_ids, updated_lots)
        except PersistenceError as e:
            result.success = False
            result.error_message = str(e)
            result.message = "Repair aborted; no lots were changed."
            result.log(f"❌ {result.message}")
            e.result = result
            self.logger.error(f"❌ {result.message} ({e.cause})", exc_info=True)
            raise

        result.fixed_lots = len(updated_lots)
        result.removed_allocations = len(removed_ids)
        result.message = (
            f"Repaired {result.fixed_lots} lots: {result.removed_allocations} allocations removed. "
            f"Affected consumption may now be under-allocated; run a full rebuild to reallocate it."
        )
        result.log(result.message)
        result.duration_ms = int((time.monotonic() - started) * 1000)
        self.logger.repair(result.message)
        return result

    # =========================================================================
    # REPORTING
    # =========================================================================

    async def inconsistency_report(self) -> List[str]:
        """Human-readable lines describing every lot-level inconsistency."""
        snapshot = await self.store.snapshot()
        allocated: Dict[int, Decimal] = {}
        for allocation in snapshot.allocations:
            allocated[allocation.lot_id] = allocated.get(allocation.lot_id, Decimal("0")) + allocation.allocated_quantity

        lines = []
        for lot in snapshot.lots:
            label = lot.invoice_reference or f"#{lot.id}"
            total = allocated.get(lot.id, Decimal("0"))
            if lot.remaining_quantity < 0:
                lines.append(f"Purchase {label}: Negative remaining quantity ({lot.remaining_quantity:.3f}L)")
            if self._exceeds(total, lot.quantity_liters):
                lines.append(
                    f"Purchase {label}: Over-allocated by {total - lot.quantity_liters:.3f}L "
                    f"({total:.3f}L allocated vs {lot.quantity_liters:.3f}L available)"
                )
            expected_remaining = lot.quantity_liters - total
            if not self.precision.within(expected_remaining, lot.remaining_quantity, self.volume_tolerance):
                lines.append(
                    f"Purchase {label}: Inconsistent remaining quantity "
                    f"(stored: {lot.remaining_quantity:.3f}L, calculated: {expected_remaining:.3f}L)"
                )

        if not lines:
            lines.append(CLEAN_REPORT_LINE)
        return lines
