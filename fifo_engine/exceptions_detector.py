"""
Exception Detector

Scans the allocation ledger for chronology violations, negative lot balances
and value drift. Findings are data for manual review; nothing is modified.
"""

from decimal import Decimal
from typing import Iterable, List, Optional

from Config import constants_core as core
from Shared_Utils.logging_manager import LoggerManager
from fifo_engine.ledger_view import LedgerView, load_view
from fifo_engine.models import (
    Allocation, AllocationFilter, AllocationFinding, DateWindow, FindingType, Severity, expected_value_usd,
)
from fifo_engine.store import RecordStore


class ExceptionDetector:
    """
    Produces a prioritized list of ledger anomalies.

    Usage:
        detector = ExceptionDetector(store, logger_manager)
        findings = await detector.detect(DateWindow(date(2025, 1, 1), date(2025, 3, 31)))
    """

    def __init__(self, store: RecordStore, logger_manager: LoggerManager, config=None):
        self.store = store
        self.logger = logger_manager.get_logger('ledger_logger')
        self.drift_tolerance = config.drift_tolerance if config else core.VALUE_DRIFT_TOLERANCE

    async def detect(
        self,
        window: Optional[DateWindow] = None,
        lot_ids: Optional[Iterable[int]] = None,
        consumption_ids: Optional[Iterable[int]] = None,
    ) -> List[AllocationFinding]:
        """
        Run every detector and return findings sorted by severity, then date.

        Args:
            window: Restrict to allocations touching lots/consumption inside the window
            lot_ids: Restrict to allocations against these lots
            consumption_ids: Restrict to allocations feeding these consumption records
        """
        allocation_filter = None
        if lot_ids is not None or consumption_ids is not None:
            allocation_filter = AllocationFilter(
                lot_ids=frozenset(lot_ids) if lot_ids is not None else None,
                consumption_ids=frozenset(consumption_ids) if consumption_ids is not None else None,
            )
        view = await load_view(self.store, window, allocation_filter)
        if window is not None and allocation_filter is not None:
            in_window_lots = {lot.id for lot in view.lots}
            in_window_consumptions = {c.id for c in view.consumptions}
            view.allocations = [
                a for a in view.allocations
                if a.lot_id in in_window_lots or a.consumption_id in in_window_consumptions
            ]

        findings: List[AllocationFinding] = []
        findings.extend(self._detect_fifo_violations(view))
        findings.extend(self._detect_negative_balances(view))
        findings.extend(self._detect_value_errors(view))
        findings.sort(key=lambda f: f.sort_key())

        critical = sum(1 for f in findings if f.is_critical)
        if findings:
            self.logger.warning(
                f"⚠️ {len(findings)} ledger exceptions found ({critical} critical) "
                f"in {len(view.allocations)} allocations"
            )
        else:
            self.logger.info(f"✅ No ledger exceptions in {len(view.allocations)} allocations")
        return findings

    def _finding(self, view: LedgerView, allocation: Allocation, finding_type: FindingType,
                 severity: Severity, description: str, recommended_action: str,
                 **extra) -> AllocationFinding:
        lot = view.lot_index.get(allocation.lot_id)
        consumption = view.consumption_index.get(allocation.consumption_id)
        extra.setdefault('quantity_affected', allocation.allocated_quantity)
        return AllocationFinding(
            finding_type=finding_type,
            severity=severity,
            description=description,
            lot_id=allocation.lot_id,
            consumption_id=allocation.consumption_id,
            allocation_id=allocation.id,
            vessel_id=lot.vessel_id if lot else None,
            invoice_reference=lot.invoice_reference if lot else "",
            transaction_date=consumption.consumption_date if consumption else None,
            value_affected=allocation.allocated_value_usd,
            recommended_action=recommended_action,
            **extra,
        )

    # =========================================================================
    # DETECTORS
    # =========================================================================

    def _detect_fifo_violations(self, view: LedgerView) -> List[AllocationFinding]:
        """Within one lot, storage order must never step back in consumption date."""
        findings = []
        for lot_id, allocations in view.allocations_by_lot().items():
            for previous, current in zip(allocations, allocations[1:]):
                prev_consumption = view.consumption_index.get(previous.consumption_id)
                curr_consumption = view.consumption_index.get(current.consumption_id)
                if prev_consumption is None or curr_consumption is None:
                    continue
                if curr_consumption.consumption_date < prev_consumption.consumption_date:
                    findings.append(self._finding(
                        view, current, FindingType.FIFO_VIOLATION, Severity.WARNING,
                        description=(
                            f"Lot {lot_id}: allocation {current.id} covers consumption dated "
                            f"{curr_consumption.consumption_date} after allocation {previous.id} "
                            f"covered {prev_consumption.consumption_date}"
                        ),
                        recommended_action="Review the lot's allocation order; rebuild allocations if the "
                                           "ledger was edited or replayed out of order",
                    ))
        return findings

    def _detect_negative_balances(self, view: LedgerView) -> List[AllocationFinding]:
        findings = []
        for allocation in view.allocations:
            if allocation.lot_balance_after < 0:
                findings.append(self._finding(
                    view, allocation, FindingType.NEGATIVE_BALANCE, Severity.CRITICAL,
                    description=(
                        f"Lot {allocation.lot_id} balance after allocation {allocation.id} is "
                        f"{allocation.lot_balance_after} L"
                    ),
                    recommended_action="Repair over-allocated lots or rebuild allocations from scratch",
                    quantity_affected=allocation.lot_balance_after.copy_abs(),
                ))
        return findings

    def _detect_value_errors(self, view: LedgerView) -> List[AllocationFinding]:
        findings = []
        for allocation in view.allocations:
            lot = view.lot_index.get(allocation.lot_id)
            if lot is None:
                continue
            expected = expected_value_usd(lot, allocation.allocated_quantity)
            difference = allocation.allocated_value_usd - expected
            if abs(difference) > self.drift_tolerance:
                findings.append(self._finding(
                    view, allocation, FindingType.VALUE_ERROR, Severity.WARNING,
                    description=(
                        f"Allocation {allocation.id}: value ${allocation.allocated_value_usd} differs from "
                        f"expected ${expected:.2f} by ${difference.copy_abs():.2f}"
                    ),
                    recommended_action="Check the lot's recorded totals, then rebuild allocations",
                    expected_value=expected.quantize(Decimal("0.01")),
                    actual_value=allocation.allocated_value_usd,
                ))
        return findings
