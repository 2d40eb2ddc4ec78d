"""
Critical Path Tests: FIFO Fuel Allocation

Tests the FIFO (First-In-First-Out) engine that assigns consumed fuel to the
oldest purchase lots of the same vessel. This is CRITICAL for the cost basis
of every voyage.

Priority: 🔴 CRITICAL (cost basis accuracy)
"""

import asyncio
import pytest
from datetime import date
from decimal import Decimal

from fifo_engine.engine import NO_WORK_MESSAGE
from fifo_engine.exceptions import PersistenceError
from fifo_engine.store import InMemoryRecordStore

pytestmark = pytest.mark.asyncio


class TestFIFOAllocationLogic:
    """Test core FIFO matching"""

    @pytest.mark.critical
    async def test_oldest_lot_consumed_first(self, two_lot_store, engine_factory, pairs):
        """
        Test: Two lots, one consumption spanning both

        Given: Lot 1 (2025-01-01, 1000 L) and Lot 2 (2025-01-15, 1000 L)
        And: Consumption of 1500 L on 2025-01-20
        Then: 1000 L from Lot 1 (balance 0), then 500 L from Lot 2 (balance 500)
        """
        result = await engine_factory(two_lot_store).run_allocation()

        assert result.success
        assert pairs(await two_lot_store.list_allocations()) == [
            (1, 1, Decimal("1000"), Decimal("0")),
            (2, 1, Decimal("500"), Decimal("500")),
        ]
        assert two_lot_store.lots[1].remaining_quantity == Decimal("0")
        assert two_lot_store.lots[2].remaining_quantity == Decimal("500")
        assert result.total_allocated_quantity == Decimal("1500")
        assert result.total_allocated_value == Decimal("1500.00")
        assert not result.shortfalls

    @pytest.mark.critical
    async def test_partial_fill_reports_shortfall(self, store, make_lot, make_consumption, engine_factory):
        """
        Test: Not enough fuel purchased

        Given: One lot of 500 L and a consumption of 800 L on one date
        Then: Exactly one allocation of 500 L
        And: A shortfall of 300 L, lot remaining 0, run still successful
        """
        await store.add_lots([make_lot(1, 1, date(2025, 3, 1), "500", "450")])
        await store.add_consumptions([make_consumption(1, 1, date(2025, 3, 3), "800")])

        result = await engine_factory(store).run_allocation()

        allocations = await store.list_allocations()
        assert result.success
        assert len(allocations) == 1
        assert allocations[0].allocated_quantity == Decimal("500")
        assert len(result.shortfalls) == 1
        assert result.shortfalls[0].consumption_id == 1
        assert result.shortfalls[0].missing_quantity == Decimal("300")
        assert result.has_shortfalls
        assert result.total_shortfall_quantity == Decimal("300")
        assert store.lots[1].remaining_quantity == Decimal("0")

    @pytest.mark.critical
    async def test_value_is_proportional_share_of_lot_total(self, store, make_lot, make_consumption, engine_factory):
        """
        Test: Value proportionality

        Given: Lot of 1000 L valued at $1000 total
        And: Consumption of 250 L
        Then: allocated_value_usd == 250.00
        """
        await store.add_lots([make_lot(1, 1, date(2025, 1, 2), "1000", "920", value_usd="1000")])
        await store.add_consumptions([make_consumption(1, 1, date(2025, 1, 9), "250")])

        await engine_factory(store).run_allocation()

        allocation = (await store.list_allocations())[0]
        assert allocation.allocated_value_usd == Decimal("250.00")
        assert allocation.allocated_value == Decimal("230.00")

    @pytest.mark.critical
    async def test_no_look_ahead_into_later_months(self, store, make_lot, make_consumption, engine_factory):
        """
        Test: A lot bought after the processing month is never used for it

        Given: Lot A 2025-01-10 (500 L) and Lot B 2025-02-05 (1000 L)
        And: Consumption 800 L on 2025-01-31 and 300 L on 2025-02-10
        Then: January only draws from Lot A (shortfall 300 L)
        And: Lot B never feeds the January consumption
        """
        await store.add_lots([
            make_lot(1, 1, date(2025, 1, 10), "500", "500"),
            make_lot(2, 1, date(2025, 2, 5), "1000", "1000"),
        ])
        await store.add_consumptions([
            make_consumption(1, 1, date(2025, 1, 31), "800"),
            make_consumption(2, 1, date(2025, 2, 10), "300"),
        ])

        result = await engine_factory(store).run_allocation()

        allocations = await store.list_allocations()
        assert not any(a.lot_id == 2 and a.consumption_id == 1 for a in allocations)
        assert [(a.lot_id, a.consumption_id, a.allocated_quantity) for a in allocations] == [
            (1, 1, Decimal("500")),
            (2, 2, Decimal("300")),
        ]
        assert [s.missing_quantity for s in result.shortfalls] == [Decimal("300")]

    @pytest.mark.critical
    async def test_consumption_filled_in_date_order(self, store, make_lot, make_consumption, engine_factory, pairs):
        """
        Test: Chronological order inside a vessel-month group, not id order

        Given: One lot of 1000 L; three 400 L consumptions whose ids are out of date order
        Then: Earliest dates are filled first and the latest one is short 200 L
        """
        await store.add_lots([make_lot(1, 1, date(2025, 4, 1), "1000", "1000")])
        await store.add_consumptions([
            make_consumption(1, 1, date(2025, 4, 10), "400"),
            make_consumption(2, 1, date(2025, 4, 5), "400"),
            make_consumption(3, 1, date(2025, 4, 20), "400"),
        ])

        result = await engine_factory(store).run_allocation()

        assert pairs(await store.list_allocations()) == [
            (1, 2, Decimal("400"), Decimal("600")),
            (1, 1, Decimal("400"), Decimal("200")),
            (1, 3, Decimal("200"), Decimal("0")),
        ]
        assert result.shortfalls[0].consumption_id == 3
        assert result.shortfalls[0].missing_quantity == Decimal("200")

    @pytest.mark.critical
    async def test_same_date_lots_ordered_by_id(self, store, make_lot, make_consumption, engine_factory):
        """
        Test: Deterministic tie-break

        Given: Two lots bought the same day
        Then: The lower id is drawn first
        """
        await store.add_lots([
            make_lot(7, 1, date(2025, 5, 1), "100", "100"),
            make_lot(3, 1, date(2025, 5, 1), "100", "100"),
        ])
        await store.add_consumptions([make_consumption(1, 1, date(2025, 5, 2), "150")])

        await engine_factory(store).run_allocation()

        assert [a.lot_id for a in await store.list_allocations()] == [3, 7]

    @pytest.mark.critical
    async def test_lots_never_cross_vessels(self, store, make_lot, make_consumption, engine_factory):
        """
        Test: Allocation is vessel-scoped

        Given: Fuel bought by vessel 2 only
        And: Consumption on vessel 1
        Then: No allocation; the full quantity is a shortfall
        """
        await store.add_lots([make_lot(1, 2, date(2025, 1, 1), "1000", "1000")])
        await store.add_consumptions([make_consumption(1, 1, date(2025, 1, 5), "100")])

        result = await engine_factory(store).run_allocation()

        assert result.allocations_created == 0
        assert result.shortfalls[0].missing_quantity == Decimal("100")
        assert store.lots[1].remaining_quantity == Decimal("1000")

    @pytest.mark.critical
    async def test_exhausted_lots_are_skipped(self, store, make_lot, make_consumption, engine_factory):
        """
        Test: No zero-quantity allocations

        Given: An older lot with nothing remaining and a newer full lot
        Then: Only the newer lot is used
        """
        await store.add_lots([
            make_lot(1, 1, date(2025, 1, 1), "500", "500", remaining="0"),
            make_lot(2, 1, date(2025, 1, 2), "500", "500"),
        ])
        await store.add_consumptions([make_consumption(1, 1, date(2025, 1, 3), "300")])

        await engine_factory(store).run_allocation()

        allocations = await store.list_allocations()
        assert [a.lot_id for a in allocations] == [2]
        assert all(a.allocated_quantity > 0 for a in allocations)

    @pytest.mark.critical
    async def test_idle_consumption_is_allocated(self, store, make_lot, make_consumption, engine_factory):
        """Consumption with no legs completed is still allocable"""
        await store.add_lots([make_lot(1, 1, date(2025, 1, 1), "100", "100")])
        await store.add_consumptions([make_consumption(1, 1, date(2025, 1, 3), "40", legs=None)])

        result = await engine_factory(store).run_allocation()

        assert result.allocations_created == 1


class TestAllocationRuns:
    """Test run-level behavior: grouping, incremental runs, cancellation, persistence"""

    @pytest.mark.critical
    async def test_balance_carries_across_months_within_one_run(self, store, make_lot, make_consumption,
                                                                engine_factory, pairs):
        """
        Test: Later groups see lots already drawn down earlier in the same run

        Given: One 1000 L lot in January, 600 L consumed in January and 600 L in February
        Then: January takes 600 L, February takes the last 400 L and is short 200 L
        """
        await store.add_lots([make_lot(1, 1, date(2025, 1, 1), "1000", "1000")])
        await store.add_consumptions([
            make_consumption(1, 1, date(2025, 1, 15), "600"),
            make_consumption(2, 1, date(2025, 2, 10), "600"),
        ])

        result = await engine_factory(store).run_allocation()

        assert pairs(await store.list_allocations()) == [
            (1, 1, Decimal("600"), Decimal("400")),
            (1, 2, Decimal("400"), Decimal("0")),
        ]
        assert result.shortfalls[0].missing_quantity == Decimal("200")
        assert store.lots[1].remaining_quantity == Decimal("0")

    @pytest.mark.critical
    async def test_groups_run_month_first_then_vessel(self, store, make_lot, make_consumption, engine_factory):
        """January for every vessel is processed before February for any vessel"""
        await store.add_lots([
            make_lot(1, 1, date(2025, 1, 1), "1000", "1000"),
            make_lot(2, 2, date(2025, 1, 1), "1000", "1000"),
        ])
        await store.add_consumptions([
            make_consumption(1, 1, date(2025, 2, 3), "100"),
            make_consumption(2, 2, date(2025, 1, 20), "100"),
            make_consumption(3, 1, date(2025, 1, 25), "100"),
        ])

        result = await engine_factory(store).run_allocation()

        assert [(a.month, a.consumption_id) for a in result.allocations] == [
            ("2025-01", 3),
            ("2025-01", 2),
            ("2025-02", 1),
        ]
        assert result.groups_processed == 3

    @pytest.mark.critical
    async def test_second_run_finds_no_work(self, two_lot_store, engine_factory):
        """
        Test: Incremental runs only touch unresolved consumption

        Given: A completed run
        Then: The next run reports no work and changes nothing
        """
        engine = engine_factory(two_lot_store)
        await engine.run_allocation()
        before = await two_lot_store.list_allocations()

        result = await engine.run_allocation()

        assert result.success
        assert result.message == NO_WORK_MESSAGE
        assert result.allocations_created == 0
        assert await two_lot_store.list_allocations() == before

    @pytest.mark.critical
    async def test_vessel_lookup_gates_the_record_read(self, make_lot, engine_factory):
        """
        Test: Nothing pending at vessel level

        Given: A store with no vessel holding unresolved consumption
        Then: The run stops before reading consumption records
        """
        class CountingStore(InMemoryRecordStore):
            record_reads = 0

            async def list_unresolved_consumptions(self):
                CountingStore.record_reads += 1
                return await super().list_unresolved_consumptions()

        counting = CountingStore(lots=[make_lot(1, 1, date(2025, 1, 1), "100", "100")])

        result = await engine_factory(counting).run_allocation()

        assert result.message == NO_WORK_MESSAGE
        assert CountingStore.record_reads == 0

    @pytest.mark.critical
    async def test_conservation_holds_per_lot(self, store, make_lot, make_consumption, engine_factory):
        """
        Test: original - remaining == sum(allocated) for every lot after a run
        """
        await store.add_lots([
            make_lot(1, 1, date(2025, 1, 1), "1200.5", "1100"),
            make_lot(2, 1, date(2025, 1, 20), "800.25", "760"),
            make_lot(3, 2, date(2025, 1, 5), "3000", "2700"),
            make_lot(4, 2, date(2025, 2, 14), "999.999", "950"),
        ])
        await store.add_consumptions([
            make_consumption(1, 1, date(2025, 1, 10), "333.333"),
            make_consumption(2, 1, date(2025, 1, 28), "1000"),
            make_consumption(3, 1, date(2025, 2, 2), "700"),
            make_consumption(4, 2, date(2025, 1, 31), "2500.75"),
            make_consumption(5, 2, date(2025, 2, 20), "1400"),
        ])

        await engine_factory(store).run_allocation()

        allocations = await store.list_allocations()
        for lot in store.lots.values():
            allocated = sum((a.allocated_quantity for a in allocations if a.lot_id == lot.id), Decimal("0"))
            assert abs(lot.quantity_liters - lot.remaining_quantity - allocated) <= Decimal("0.001")
            assert lot.remaining_quantity >= 0
        for consumption in store.consumptions.values():
            allocated = sum(
                (a.allocated_quantity for a in allocations if a.consumption_id == consumption.id), Decimal("0")
            )
            assert allocated <= consumption.consumption_liters

    @pytest.mark.critical
    async def test_cancel_before_start_runs_nothing(self, two_lot_store, engine_factory):
        cancel_event = asyncio.Event()
        cancel_event.set()

        result = await engine_factory(two_lot_store).run_allocation(cancel_event)

        assert result.cancelled
        assert result.processed_consumptions == 0
        assert await two_lot_store.list_allocations() == []

    @pytest.mark.critical
    async def test_cancel_between_groups_commits_finished_groups(self, store, make_lot, make_consumption,
                                                                 engine_factory):
        """
        Test: Cancellation is checked between vessel-month groups

        Given: Two groups and a cancel signal raised while the first is processed
        Then: The first group's allocations are saved; the second stays unresolved
        """
        await store.add_lots([make_lot(1, 1, date(2025, 1, 1), "1000", "1000")])
        await store.add_consumptions([
            make_consumption(1, 1, date(2025, 1, 10), "100"),
            make_consumption(2, 1, date(2025, 2, 10), "100"),
        ])
        engine = engine_factory(store)
        cancel_event = asyncio.Event()
        build = engine.lot_queue.build

        async def build_then_cancel(*args, **kwargs):
            queue = await build(*args, **kwargs)
            cancel_event.set()
            return queue

        engine.lot_queue.build = build_then_cancel

        result = await engine.run_allocation(cancel_event)

        assert result.cancelled
        assert [a.consumption_id for a in await store.list_allocations()] == [1]
        assert [c.id for c in await store.list_unresolved_consumptions()] == [2]
        assert store.lots[1].remaining_quantity == Decimal("900")

    @pytest.mark.critical
    async def test_persistence_failure_aborts_whole_run(self, make_lot, make_consumption, engine_factory):
        """
        Test: A failed batch write leaves nothing from the run visible

        Given: A store whose batch write fails
        Then: PersistenceError propagates with the run log attached
        And: No allocation exists and lot balances are untouched
        """
        class FailingStore(InMemoryRecordStore):
            async def apply_allocation_batch(self, new_allocations, updated_lots):
                raise PersistenceError("apply_allocation_batch", RuntimeError("disk full"))

        failing = FailingStore(
            lots=[make_lot(1, 1, date(2025, 1, 1), "1000", "1000")],
            consumptions=[make_consumption(1, 1, date(2025, 1, 2), "100")],
        )

        with pytest.raises(PersistenceError) as exc_info:
            await engine_factory(failing).run_allocation()

        error = exc_info.value
        assert error.operation == "apply_allocation_batch"
        assert isinstance(error.cause, RuntimeError)
        assert error.result is not None and not error.result.success
        assert error.result.details
        assert failing.allocations == {}
        assert failing.lots[1].remaining_quantity == Decimal("1000")


class TestLedgerReads:
    """Test month-level reads over the ledger"""

    @pytest.mark.critical
    async def test_month_reads_and_summary(self, store, make_lot, make_consumption, engine_factory):
        await store.add_lots([make_lot(1, 1, date(2025, 1, 1), "1000", "1000")])
        await store.add_consumptions([
            make_consumption(1, 1, date(2025, 1, 10), "100"),
            make_consumption(2, 1, date(2025, 2, 10), "300"),
        ])
        engine = engine_factory(store)
        await engine.run_allocation()

        february = await engine.allocations_for_month("2025-02")
        summary = await engine.monthly_allocation_summary()

        assert [a.consumption_id for a in february] == [2]
        assert summary == {"2025-01": Decimal("100.00"), "2025-02": Decimal("300.00")}
        assert list(summary) == ["2025-01", "2025-02"]
