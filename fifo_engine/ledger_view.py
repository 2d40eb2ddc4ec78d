"""Indexed read-only view of the ledger shared by the verifier, detector and recovery."""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from fifo_engine.models import Allocation, AllocationFilter, ConsumptionRecord, DateWindow, PurchaseLot
from fifo_engine.store import RecordStore


@dataclass
class LedgerView:
    """
    Records in scope plus id indexes over every lot and consumption record.

    ``lots``/``consumptions`` are the windowed sets; ``lot_index`` and
    ``consumption_index`` cover the whole store so allocations touching the
    window can always resolve both ends.
    """

    lots: List[PurchaseLot]
    consumptions: List[ConsumptionRecord]
    allocations: List[Allocation]
    lot_index: Dict[int, PurchaseLot] = field(default_factory=dict)
    consumption_index: Dict[int, ConsumptionRecord] = field(default_factory=dict)

    def allocations_by_lot(self) -> Dict[int, List[Allocation]]:
        grouped: Dict[int, List[Allocation]] = {}
        for allocation in self.allocations:
            grouped.setdefault(allocation.lot_id, []).append(allocation)
        return grouped

    def allocated_per_lot(self) -> Dict[int, Decimal]:
        totals: Dict[int, Decimal] = {}
        for allocation in self.allocations:
            totals[allocation.lot_id] = totals.get(allocation.lot_id, Decimal("0")) + allocation.allocated_quantity
        return totals

    def allocated_per_consumption(self) -> Dict[int, Decimal]:
        totals: Dict[int, Decimal] = {}
        for allocation in self.allocations:
            totals[allocation.consumption_id] = (
                totals.get(allocation.consumption_id, Decimal("0")) + allocation.allocated_quantity
            )
        return totals


async def load_view(store: RecordStore, window: Optional[DateWindow] = None,
                    allocation_filter: Optional[AllocationFilter] = None) -> LedgerView:
    """
    Read lots by purchase date and consumption by consumption date inside the
    window, and the allocations touching either set.

    An explicit ``allocation_filter`` replaces the window-derived one.
    """
    all_lots = await store.list_lots()
    all_consumptions = await store.list_consumptions()

    if window is None:
        lots, consumptions = all_lots, all_consumptions
    else:
        lots = [lot for lot in all_lots if window.contains(lot.purchase_date)]
        consumptions = [c for c in all_consumptions if window.contains(c.consumption_date)]

    if allocation_filter is None and window is not None:
        allocation_filter = AllocationFilter(
            lot_ids=frozenset(lot.id for lot in lots),
            consumption_ids=frozenset(c.id for c in consumptions),
        )

    return LedgerView(
        lots=lots,
        consumptions=consumptions,
        allocations=await store.list_allocations(allocation_filter),
        lot_index={lot.id: lot for lot in all_lots},
        consumption_index={c.id: c for c in all_consumptions},
    )
