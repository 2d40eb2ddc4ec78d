"""
Consistency Verifier

Recomputes global totals from source records and from the allocation ledger
and grades how well they agree. Never writes.
"""

from decimal import Decimal
from typing import Optional

from Config import constants_core as core
from Shared_Utils.logging_manager import LoggerManager
from Shared_Utils.precision import PrecisionUtils
from fifo_engine.ledger_view import LedgerView, load_view
from fifo_engine.models import BalanceVerificationResult, DateWindow, expected_value_usd
from fifo_engine.store import RecordStore


class ConsistencyVerifier:
    """
    Validates conservation across lots, consumption and allocations.

    Checks:
    - Remaining lot inventory matches purchases minus what was drawn from them
    - Each allocation's USD value matches quantity × lot price per liter
    - Per lot: stored remaining equals original minus allocated
    - No negative remaining, no over-allocated lot or consumption record
    - No ledger row with a negative lot balance
    - No allocation pointing at a missing lot or consumption record
    """

    def __init__(self, store: RecordStore, logger_manager: LoggerManager, config=None,
                 precision_utils: Optional[PrecisionUtils] = None):
        self.store = store
        self.logger = logger_manager.get_logger('ledger_logger')
        self.precision = precision_utils or PrecisionUtils(logger_manager)
        self.volume_tolerance = config.volume_tolerance if config else core.VOLUME_TOLERANCE
        self.money_tolerance = config.money_tolerance if config else core.MONEY_TOLERANCE

    async def verify(self, window: Optional[DateWindow] = None) -> BalanceVerificationResult:
        """
        Verify the ledger, optionally restricted to a date window.

        Lots are scoped by purchase date, consumption by consumption date, and
        allocations by touching either set.
        """
        self.logger.info(f"🔍 Verifying ledger consistency ({window or 'all dates'})")
        view = await load_view(self.store, window)
        result = BalanceVerificationResult(window=window)

        self._compute_totals(view, result)
        self._check_inventory_balance(view, result)
        self._check_allocation_values(view, result)
        self._check_lot_conservation(view, result)
        self._check_negative_remaining(view, result)
        self._check_over_allocated_lots(view, result)
        self._check_over_allocated_consumptions(view, result)
        self._check_negative_lot_balances(view, result)
        self._check_orphaned_allocations(view, result)

        score = (
            Decimal("100")
            - core.INTEGRITY_ISSUE_PENALTY * len(result.issues)
            - core.INTEGRITY_INCONSISTENCY_PENALTY * result.inconsistent_allocations
        )
        result.integrity_score = max(Decimal("0"), min(Decimal("100"), score))

        if result.is_balanced:
            self.logger.info(f"✅ Ledger balanced (score {result.integrity_score}, {result.grade})")
        else:
            self.logger.warning(
                f"⚠️ Ledger unbalanced: {len(result.issues)} issues "
                f"(score {result.integrity_score}, {result.grade})"
            )
            for issue in result.issues:
                self.logger.warning(f"   - {issue}")
        return result

    # =========================================================================
    # TOTALS
    # =========================================================================

    @staticmethod
    def _compute_totals(view: LedgerView, result: BalanceVerificationResult):
        zero = Decimal("0")
        consumption_ids = {c.id for c in view.consumptions}
        consumed_allocations = [a for a in view.allocations if a.consumption_id in consumption_ids]

        result.total_purchase_quantity = sum((lot.quantity_liters for lot in view.lots), zero)
        result.total_remaining_quantity = sum((lot.remaining_quantity for lot in view.lots), zero)
        result.total_purchase_value_usd = sum((lot.total_value_usd for lot in view.lots), zero)
        result.total_consumption_quantity = sum((c.consumption_liters for c in view.consumptions), zero)
        result.total_allocated_quantity = sum((a.allocated_quantity for a in consumed_allocations), zero)
        result.total_allocated_value_usd = sum((a.allocated_value_usd for a in consumed_allocations), zero)

        result.quantity_variance = result.total_purchase_quantity - result.total_consumption_quantity
        result.value_variance = result.total_purchase_value_usd - result.total_allocated_value_usd
        result.unallocated_consumption = result.total_consumption_quantity - result.total_allocated_quantity

    # =========================================================================
    # CHECKS
    # =========================================================================

    def _check_inventory_balance(self, view: LedgerView, result: BalanceVerificationResult):
        """
        Purchases minus consumption, corrected for consumption still pending
        allocation, must equal the inventory the lots report.
        """
        lot_ids = {lot.id for lot in view.lots}
        drawn = sum((a.allocated_quantity for a in view.allocations if a.lot_id in lot_ids), Decimal("0"))
        expected_remaining = result.total_purchase_quantity - drawn
        if not self.precision.within(expected_remaining, result.total_remaining_quantity, self.volume_tolerance):
            result.add_issue(
                f"Calculated inventory ({expected_remaining:.3f} L; variance {result.quantity_variance:.3f} L, "
                f"unallocated {result.unallocated_consumption:.3f} L) doesn't match remaining inventory "
                f"({result.total_remaining_quantity:.3f} L)"
            )

    def _check_allocation_values(self, view: LedgerView, result: BalanceVerificationResult):
        for allocation in view.allocations:
            lot = view.lot_index.get(allocation.lot_id)
            if lot is None:
                continue
            expected = expected_value_usd(lot, allocation.allocated_quantity)
            if not self.precision.within(allocation.allocated_value_usd, expected, self.money_tolerance):
                result.inconsistent_allocations += 1
        if result.inconsistent_allocations > 0:
            result.add_issue(f"{result.inconsistent_allocations} allocations with value inconsistencies")

    def _check_lot_conservation(self, view: LedgerView, result: BalanceVerificationResult):
        allocated = view.allocated_per_lot()
        mismatched = [
            lot for lot in view.lots
            if not self.precision.within(lot.quantity_liters - allocated.get(lot.id, Decimal("0")),
                                         lot.remaining_quantity, self.volume_tolerance)
        ]
        if mismatched:
            result.add_issue(
                f"{len(mismatched)} lots whose remaining quantity differs from original minus allocated "
                f"(lots {[lot.id for lot in mismatched]})"
            )

    @staticmethod
    def _check_negative_remaining(view: LedgerView, result: BalanceVerificationResult):
        negative = [lot.id for lot in view.lots if lot.remaining_quantity < 0]
        if negative:
            result.add_issue(f"{len(negative)} lots with negative remaining quantity (lots {negative})")

    def _check_over_allocated_lots(self, view: LedgerView, result: BalanceVerificationResult):
        allocated = view.allocated_per_lot()
        over = [
            lot.id for lot in view.lots
            if allocated.get(lot.id, Decimal("0")) - lot.quantity_liters > self.volume_tolerance
        ]
        if over:
            result.add_issue(f"{len(over)} over-allocated lots (lots {over})")

    def _check_over_allocated_consumptions(self, view: LedgerView, result: BalanceVerificationResult):
        allocated = view.allocated_per_consumption()
        over = [
            c.id for c in view.consumptions
            if allocated.get(c.id, Decimal("0")) - c.consumption_liters > self.volume_tolerance
        ]
        if over:
            result.add_issue(f"{len(over)} over-allocated consumption records (records {over})")

    @staticmethod
    def _check_negative_lot_balances(view: LedgerView, result: BalanceVerificationResult):
        negative = [a.id for a in view.allocations if a.lot_balance_after < 0]
        if negative:
            result.add_issue(f"{len(negative)} allocations with a negative lot balance (allocations {negative})")

    @staticmethod
    def _check_orphaned_allocations(view: LedgerView, result: BalanceVerificationResult):
        orphaned = [
            a.id for a in view.allocations
            if a.lot_id not in view.lot_index or a.consumption_id not in view.consumption_index
        ]
        if orphaned:
            result.add_issue(f"{len(orphaned)} allocations referencing missing records (allocations {orphaned})")
