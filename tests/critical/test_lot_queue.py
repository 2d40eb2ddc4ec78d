"""
Critical Path Tests: Lot Queue

Tests the per-vessel FIFO queue the engine draws from.

Priority: 🔴 CRITICAL (queue order is the FIFO guarantee)
"""

import pytest
from dataclasses import replace
from datetime import date
from decimal import Decimal

from fifo_engine.lot_queue import LotQueueBuilder
from fifo_engine.store import InMemoryRecordStore

pytestmark = pytest.mark.asyncio


@pytest.fixture
def fleet_store(make_lot):
    return InMemoryRecordStore(lots=[
        make_lot(4, 1, date(2025, 1, 20), "100", "100"),
        make_lot(2, 1, date(2025, 1, 5), "100", "100"),
        make_lot(1, 1, date(2025, 1, 5), "100", "100"),
        make_lot(3, 1, date(2025, 1, 10), "100", "100", remaining="0"),
        make_lot(5, 1, date(2025, 2, 1), "100", "100"),
        make_lot(6, 2, date(2025, 1, 1), "100", "100"),
    ])


class TestLotQueue:
    """Test eligibility and ordering"""

    @pytest.mark.critical
    async def test_queue_is_fifo_ordered_and_filtered(self, fleet_store):
        """
        Test: Eligibility and order

        Given: Lots across two vessels, one exhausted, one after the cutoff
        Then: Only vessel 1's open lots up to 2025-01-31, by (date, id)
        """
        queue = await LotQueueBuilder(fleet_store).build(1, date(2025, 1, 31))

        assert [lot.id for lot in queue] == [1, 2, 4]

    @pytest.mark.critical
    async def test_cutoff_is_inclusive(self, fleet_store):
        queue = await LotQueueBuilder(fleet_store).build(1, date(2025, 2, 1))

        assert [lot.id for lot in queue] == [1, 2, 4, 5]

    @pytest.mark.critical
    async def test_working_balances_override_stored(self, fleet_store):
        """
        Test: In-run balances win over the stored ones

        Given: Lot 1 drained and lot 2 half drawn earlier in the run
        Then: Lot 1 leaves the queue and lot 2 carries its in-run balance
        """
        working = {
            1: replace(fleet_store.lots[1], remaining_quantity=Decimal("0")),
            2: replace(fleet_store.lots[2], remaining_quantity=Decimal("50")),
        }

        queue = await LotQueueBuilder(fleet_store).build(1, date(2025, 1, 31), working)

        assert [(lot.id, lot.remaining_quantity) for lot in queue] == [
            (2, Decimal("50")),
            (4, Decimal("100")),
        ]

    @pytest.mark.critical
    async def test_working_lots_of_other_vessels_ignored(self, fleet_store):
        working = {6: replace(fleet_store.lots[6], remaining_quantity=Decimal("10"))}

        queue = await LotQueueBuilder(fleet_store).build(1, date(2025, 1, 31), working)

        assert 6 not in [lot.id for lot in queue]

    @pytest.mark.critical
    async def test_unknown_vessel_gives_empty_queue(self, fleet_store):
        assert await LotQueueBuilder(fleet_store).build(99, date(2025, 12, 31)) == []
