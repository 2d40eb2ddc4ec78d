"""
FIFO Allocation Engine

Matches unresolved fuel consumption against the oldest purchase lots of the
same vessel and derives allocated quantity, value and lot balances.
"""

import asyncio
import time
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from itertools import groupby
from typing import Dict, List, Optional, Tuple

from Config import constants_core as core
from Shared_Utils.logging_manager import LoggerManager
from Shared_Utils.precision import PrecisionUtils
from fifo_engine.exceptions import PersistenceError
from fifo_engine.lot_queue import LotQueueBuilder
from fifo_engine.models import (
    Allocation, AllocationFilter, AllocationResult, ConsumptionRecord, PurchaseLot, Shortfall, month_end,
)
from fifo_engine.store import RecordStore

NO_WORK_MESSAGE = "No unallocated consumption records found."


class FifoAllocationEngine:
    """
    FIFO Allocation Engine for fuel cost basis.

    Core Principles:
    - Purchases and consumption are facts; allocations are derived from them
    - Consumption is processed month by month, then vessel by vessel
    - A lot bought after the processing month never covers that month
    - Insufficient supply is reported as a shortfall, never raised
    - One run is one atomic write

    Usage:
        engine = FifoAllocationEngine(store, logger_manager, precision_utils)
        result = await engine.run_allocation()
    """

    def __init__(
        self,
        store: RecordStore,
        logger_manager: LoggerManager,
        precision_utils: Optional[PrecisionUtils] = None,
        config=None,
    ):
        """
        Args:
            store: Record store holding lots, consumption and allocations
            logger_manager: Logging manager
            precision_utils: Fixed-point helpers (a fresh instance is built when omitted)
            config: Optional CentralConfig supplying tolerances
        """
        self.store = store
        self.logger_manager = logger_manager
        self.logger = logger_manager.get_logger('ledger_logger')
        self.precision = precision_utils or PrecisionUtils(logger_manager)
        self.volume_tolerance = config.volume_tolerance if config else core.VOLUME_TOLERANCE
        self.lot_queue = LotQueueBuilder(store, self.logger)

    async def run_allocation(self, cancel_event: Optional[asyncio.Event] = None) -> AllocationResult:
        """
        Allocate every consumption record that has no allocations yet.

        Args:
            cancel_event: Checked between vessel-month groups. Groups not started
                are skipped; groups already computed are still written.

        Returns:
            AllocationResult with counters, shortfalls and the per-step log

        Raises:
            PersistenceError: the batch write failed; nothing from this run is visible.
                ``error.result`` holds the log of the aborted run.
        """
        started = time.monotonic()
        result = await self.plan_allocation(cancel_event)

        if result.processed_consumptions == 0 and not result.cancelled:
            result.duration_ms = int((time.monotonic() - started) * 1000)
            return result

        if result.allocations or result.updated_lots:
            try:
                result.allocations = await self.store.apply_allocation_batch(
                    result.allocations, result.updated_lots
                )
            except PersistenceError as e:
                result.success = False
                result.error_message = str(e)
                result.message = f"Allocation run aborted: {e.operation} failed; no changes were saved."
                result.log(f"❌ {result.message}")
                e.result = result
                self.logger.error(f"❌ {result.message} ({e.cause})", exc_info=True)
                raise

        result.duration_ms = int((time.monotonic() - started) * 1000)
        self.logger.info(
            f"🎉 Allocation run complete!\n"
            f"   Batch: {result.batch_id}\n"
            f"   Consumption records: {result.processed_consumptions}\n"
            f"   Allocations: {result.allocations_created}\n"
            f"   Quantity: {result.total_allocated_quantity} L\n"
            f"   Value: ${result.total_allocated_value:,.2f}\n"
            f"   Shortfalls: {len(result.shortfalls)}\n"
            f"   Duration: {result.duration_ms:,}ms"
        )
        return result

    async def plan_allocation(self, cancel_event: Optional[asyncio.Event] = None) -> AllocationResult:
        """
        Compute the allocations a run would write, without writing them.

        The returned result carries ``allocations`` and ``updated_lots``; the
        store is only read.
        """
        batch_id = uuid.uuid4()
        result = AllocationResult(success=True, batch_id=batch_id)

        vessels = await self.store.list_vessels_with_unresolved_consumption()
        consumptions = await self.store.list_unresolved_consumptions() if vessels else []
        if not consumptions:
            result.message = NO_WORK_MESSAGE
            result.log(NO_WORK_MESSAGE)
            self.logger.info(f"ℹ️ {NO_WORK_MESSAGE}")
            return result

        self.logger.info(
            f"🚀 Starting allocation run (Batch {batch_id}): {len(consumptions)} unresolved records "
            f"across {len(vessels)} vessels"
        )

        created_at = datetime.now(timezone.utc)
        working: Dict[int, PurchaseLot] = {}

        for (month, vessel_id), group in self._group_consumptions(consumptions):
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                result.log(f"⏹️ Cancelled before {month} vessel {vessel_id}; remaining groups skipped")
                self.logger.warning(f"⏹️ Allocation run cancelled before {month} vessel {vessel_id}")
                break
            await self._allocate_group(month, vessel_id, group, working, created_at, batch_id, result)
            result.groups_processed += 1

        result.updated_lots = sorted(working.values(), key=lambda lot: lot.id)
        result.allocations_created = len(result.allocations)

        if result.cancelled:
            result.message = (
                f"Allocation run cancelled after {result.groups_processed} groups: "
                f"{result.allocations_created} allocations created."
            )
        else:
            result.message = (
                f"Processed {result.processed_consumptions} consumption records: "
                f"{result.allocations_created} allocations created, {len(result.shortfalls)} shortfalls."
            )
        result.log(result.message)
        return result

    @staticmethod
    def _group_consumptions(
        consumptions: List[ConsumptionRecord]
    ) -> List[Tuple[Tuple[str, int], List[ConsumptionRecord]]]:
        """Month ascending, then vessel ascending; each group in (date, id) order."""
        ordered = sorted(consumptions, key=lambda c: (c.month, c.vessel_id, c.consumption_date, c.id))
        return [
            (key, list(items))
            for key, items in groupby(ordered, key=lambda c: (c.month, c.vessel_id))
        ]

    # =========================================================================
    # FIFO MATCHING ALGORITHM
    # =========================================================================

    async def _allocate_group(
        self,
        month: str,
        vessel_id: int,
        group: List[ConsumptionRecord],
        working: Dict[int, PurchaseLot],
        created_at: datetime,
        batch_id: uuid.UUID,
        result: AllocationResult,
    ):
        """
        Lot-major walk over one vessel-month group.

        Each lot in FIFO order is drained into the group's consumption in
        chronological order until the lot or the group runs out.
        """
        total_consumption = sum((c.consumption_liters for c in group), Decimal("0"))
        cutoff = month_end(month)
        result.log(f"📅 {month} vessel {vessel_id}: {len(group)} records, {total_consumption} L (cutoff {cutoff})")

        queue = await self.lot_queue.build(vessel_id, cutoff, working)
        if not queue:
            result.log(f"⚠️ {month} vessel {vessel_id}: no lots available")

        required = {c.id: self.precision.liters(c.consumption_liters) for c in group}
        filled = {c.id: Decimal("0") for c in group}

        for lot in queue:
            remaining = self.precision.liters(lot.remaining_quantity)
            for consumption in group:
                if remaining <= 0:
                    break
                unfilled = required[consumption.id] - filled[consumption.id]
                if unfilled <= 0:
                    continue

                amount = min(remaining, unfilled)
                remaining -= amount
                filled[consumption.id] += amount

                allocation = Allocation(
                    lot_id=lot.id,
                    consumption_id=consumption.id,
                    allocated_quantity=amount,
                    allocated_value=self.precision.proportional_value(amount, lot.quantity_liters, lot.total_value),
                    allocated_value_usd=self.precision.proportional_value(
                        amount, lot.quantity_liters, lot.total_value_usd
                    ),
                    lot_balance_after=remaining,
                    month=consumption.month,
                    created_at=created_at,
                    batch_id=batch_id,
                )
                result.allocations.append(allocation)
                result.total_allocated_quantity += amount
                result.total_allocated_value += allocation.allocated_value_usd
                result.log(
                    f"   Lot #{lot.id} ({lot.purchase_date}) → consumption #{consumption.id} "
                    f"({consumption.consumption_date}): {amount} L, ${allocation.allocated_value_usd}, "
                    f"lot balance {remaining} L"
                )
                self.logger.debug(f"   {allocation}")

            if remaining != lot.remaining_quantity:
                working[lot.id] = replace(lot, remaining_quantity=remaining)

        group_allocated = sum(filled.values(), Decimal("0"))
        self.logger.allocation(
            f"{month} vessel {vessel_id}: {group_allocated} of {total_consumption} L allocated "
            f"from {len(queue)} lots"
        )

        for consumption in group:
            missing = required[consumption.id] - filled[consumption.id]
            if missing > self.volume_tolerance:
                shortfall = Shortfall(
                    consumption_id=consumption.id,
                    vessel_id=vessel_id,
                    month=month,
                    consumption_date=consumption.consumption_date,
                    required_quantity=required[consumption.id],
                    allocated_quantity=filled[consumption.id],
                    missing_quantity=missing,
                )
                result.shortfalls.append(shortfall)
                result.log(f"   ⚠️ {shortfall}")
                self.logger.shortfall(str(shortfall))

        result.processed_consumptions += len(group)

    # =========================================================================
    # LEDGER READS
    # =========================================================================

    async def allocations_for_month(self, month: str) -> List[Allocation]:
        return await self.store.list_allocations(AllocationFilter(month=month))

    async def monthly_allocation_summary(self) -> Dict[str, Decimal]:
        """Total allocated USD value per month key, oldest month first."""
        totals: Dict[str, Decimal] = {}
        for allocation in await self.store.list_allocations():
            totals[allocation.month] = totals.get(allocation.month, Decimal("0")) + allocation.allocated_value_usd
        return dict(sorted(totals.items()))
