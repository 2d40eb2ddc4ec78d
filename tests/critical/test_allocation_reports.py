"""
Critical Path Tests: Allocation Reports

Tests the pandas frames behind the reporting script.

Priority: 🟡 HIGH (cost reports feed voyage accounting)
"""

import pytest
from datetime import date
from decimal import Decimal

from scripts.allocation_reports import build_ledger_frame, monthly_summary_frame, vessel_summary_frame

pytestmark = pytest.mark.asyncio


class TestReportFrames:
    """Test ledger tabulation"""

    @pytest.mark.critical
    async def test_ledger_frame_joins_lot_and_consumption(self, two_lot_store, engine_factory):
        await engine_factory(two_lot_store).run_allocation()

        ledger = build_ledger_frame(await two_lot_store.snapshot())

        assert len(ledger) == 2
        assert ledger['lot_id'].tolist() == [1, 2]
        assert ledger['invoice_reference'].tolist() == ["INV-0001", "INV-0002"]
        assert ledger['allocated_quantity'].tolist() == [Decimal("1000"), Decimal("500")]
        assert ledger['allocated_tons'].tolist() == [Decimal("0.850"), Decimal("0.425")]
        assert ledger['price_per_liter_usd'].tolist() == [Decimal("1.000000"), Decimal("1.000000")]
        assert not ledger['cross_vessel'].any()

    @pytest.mark.critical
    async def test_monthly_summary(self, two_lot_store, engine_factory):
        await engine_factory(two_lot_store).run_allocation()
        ledger = build_ledger_frame(await two_lot_store.snapshot())

        summary = monthly_summary_frame(ledger)

        assert summary['month'].tolist() == ["2025-01"]
        assert summary['allocations'].tolist() == [2]
        assert summary['allocated_quantity'].tolist() == [Decimal("1500")]
        assert summary['allocated_value_usd'].tolist() == [Decimal("1500.00")]

    @pytest.mark.critical
    async def test_vessel_summary_average_cost(self, two_lot_store, engine_factory):
        await engine_factory(two_lot_store).run_allocation()
        ledger = build_ledger_frame(await two_lot_store.snapshot())

        by_vessel = vessel_summary_frame(ledger)

        assert by_vessel['vessel_id'].tolist() == [1]
        assert by_vessel['avg_cost_per_liter'].tolist() == [Decimal("1.000000")]

    @pytest.mark.critical
    async def test_month_filter_and_empty_frames(self, two_lot_store, engine_factory):
        await engine_factory(two_lot_store).run_allocation()

        ledger = build_ledger_frame(await two_lot_store.snapshot(), month="2025-02")

        assert ledger.empty
        assert monthly_summary_frame(ledger).empty
        assert list(vessel_summary_frame(ledger).columns) == [
            'vessel_id', 'allocated_quantity', 'allocated_value_usd', 'avg_cost_per_liter',
        ]

    @pytest.mark.critical
    async def test_ledger_price_rounded_to_six_places(self, store, make_lot, make_consumption,
                                                      engine_factory, precision):
        """
        Test: Per-liter price column uses the ledger price scale

        Given: A 3 L lot bought for $2 (0.6666…/L)
        Then: The report shows 0.666667
        """
        await store.add_lots([make_lot(1, 1, date(2025, 1, 1), "3", "2")])
        await store.add_consumptions([make_consumption(1, 1, date(2025, 1, 2), "3")])
        await engine_factory(store).run_allocation()

        ledger = build_ledger_frame(await store.snapshot(), precision_utils=precision)

        assert ledger['price_per_liter_usd'].tolist() == [Decimal("0.666667")]
        assert ledger['allocated_value_usd'].tolist() == [Decimal("2.00")]
