"""
Lot Queue Builder

Produces the FIFO-ordered purchase lots one vessel may draw from for one
processing month.
"""

from datetime import date
from typing import Dict, List, Optional

from fifo_engine.models import PurchaseLot
from fifo_engine.store import RecordStore


class LotQueueBuilder:
    """
    Builds per-vessel lot queues.

    Eligible lots belong to the requested vessel, have ``remaining_quantity > 0``
    and were purchased on or before the cutoff. Order is ``(purchase_date, id)``
    so two lots bought the same day always queue the same way.

    Usage:
        builder = LotQueueBuilder(store)
        queue = await builder.build(vessel_id=7, cutoff=date(2025, 1, 31))
    """

    def __init__(self, store: RecordStore, logger=None):
        self.store = store
        self.logger = logger

    async def build(self, vessel_id: int, cutoff: date,
                    working: Optional[Dict[int, PurchaseLot]] = None) -> List[PurchaseLot]:
        """
        Return the ordered queue, or an empty list when nothing is eligible.

        Args:
            vessel_id: Vessel whose lots are queued; other vessels are never eligible
            cutoff: Last purchase date allowed (end of the processing month)
            working: Lots already drawn down earlier in the same run, keyed by id.
                Their in-run balance replaces the stored one.
        """
        stored = await self.store.list_lots_for_vessel(vessel_id, cutoff)

        candidates: Dict[int, PurchaseLot] = {lot.id: lot for lot in stored}
        if working:
            for lot in working.values():
                if lot.vessel_id == vessel_id and lot.purchase_date <= cutoff:
                    candidates[lot.id] = lot

        queue = [
            lot for lot in candidates.values()
            if lot.vessel_id == vessel_id and lot.remaining_quantity > 0 and lot.purchase_date <= cutoff
        ]
        queue.sort(key=lambda lot: (lot.purchase_date, lot.id))

        if self.logger:
            self.logger.debug(
                f"🔍 Lot queue vessel {vessel_id} (cutoff {cutoff}): "
                f"{len(queue)} lots, ids {[lot.id for lot in queue]}"
            )
        return queue
