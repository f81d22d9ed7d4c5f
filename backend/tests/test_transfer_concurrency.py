"""
Concurrency tests for transfers.

Each transfer runs in its own session (its own database connection) and the
requests are started together with asyncio.gather, so the conditional debits
really race inside the database.
"""

import asyncio

import pytest

from core.errors import Conflict, InsufficientStock, NotFound
from db.inventory.stock import StockRecord
from services import ledger
from services.transfers import TransferCoordinator, TransferResult


@pytest.fixture
def racing_coordinator(view, audit):
    # real sleeps and headroom for lock contention
    return TransferCoordinator(view, audit, max_retries=10, backoff_seconds=0.01)


async def _run_transfers(session_maker, coordinator, requests):
    async def one(item, src, dst, qty, key=None):
        async with session_maker() as session:
            return await coordinator.transfer(session, item, src, dst, qty, idempotency_key=key)

    return await asyncio.gather(*(one(*r) for r in requests), return_exceptions=True)


class TestConcurrentTransfers:
    async def test_two_transfers_cannot_overdraw(self, session_maker, seed_stock, record_of, racing_coordinator):
        """Two transfers of 6 from 10: exactly one succeeds and 4 remain."""
        await seed_stock("WH1", "WH2", records=[("Bolt", "WH1", 10, 5)])

        outcomes = await _run_transfers(
            session_maker,
            racing_coordinator,
            [("Bolt", "WH1", "WH2", 6), ("Bolt", "WH1", "WH2", 6)],
        )

        succeeded = [o for o in outcomes if isinstance(o, TransferResult)]
        rejected = [o for o in outcomes if isinstance(o, InsufficientStock)]
        assert len(succeeded) == 1, outcomes
        assert len(rejected) == 1, outcomes
        assert (await record_of("Bolt", "WH1")).quantity == 4
        assert (await record_of("Bolt", "WH2")).quantity == 6

    async def test_many_transfers_respect_available_stock(
        self, session_maker, seed_stock, record_of, racing_coordinator, audit
    ):
        await seed_stock("WH1", "WH2", records=[("Bolt", "WH1", 10, 5)])

        outcomes = await _run_transfers(
            session_maker,
            racing_coordinator,
            [("Bolt", "WH1", "WH2", 3)] * 8,
        )

        succeeded = [o for o in outcomes if isinstance(o, TransferResult)]
        rejected = [o for o in outcomes if isinstance(o, InsufficientStock)]
        assert len(succeeded) == 3, outcomes
        assert len(rejected) == 5, outcomes
        assert (await record_of("Bolt", "WH1")).quantity == 1
        assert (await record_of("Bolt", "WH2")).quantity == 9
        assert len(await audit.recent(action_type="transfer")) == 3

    async def test_opposite_directions_conserve_units(self, session_maker, seed_stock, record_of, racing_coordinator):
        await seed_stock("WH1", "WH2", records=[("Bolt", "WH1", 20, 5), ("Bolt", "WH2", 20, 5)])

        outcomes = await _run_transfers(
            session_maker,
            racing_coordinator,
            [("Bolt", "WH1", "WH2", 2), ("Bolt", "WH2", "WH1", 3)] * 4,
        )

        assert all(isinstance(o, TransferResult) for o in outcomes), outcomes
        wh1 = (await record_of("Bolt", "WH1")).quantity
        wh2 = (await record_of("Bolt", "WH2")).quantity
        assert (wh1, wh2) == (24, 16)

    async def test_concurrent_retries_with_same_key_move_stock_once(
        self, session_maker, seed_stock, record_of, racing_coordinator
    ):
        await seed_stock("WH1", "WH2", records=[("Bolt", "WH1", 10, 5)])

        outcomes = await _run_transfers(
            session_maker,
            racing_coordinator,
            [("Bolt", "WH1", "WH2", 4, "client-retry")] * 3,
        )

        assert all(isinstance(o, TransferResult) for o in outcomes), outcomes
        assert sum(1 for o in outcomes if not o.replayed) == 1
        assert (await record_of("Bolt", "WH1")).quantity == 6
        assert (await record_of("Bolt", "WH2")).quantity == 4


async def _reduce(session_maker, record_id, qty):
    async with session_maker() as session:
        rec = await ledger.reduce(session, record_id, qty)
        await session.commit()
        return rec


async def _set_quantity(session_maker, record_id, qty):
    async with session_maker() as session:
        rec = await ledger.update_record(session, record_id, quantity=qty)
        await session.commit()
        return rec


async def _delete_warehouse(session_maker, warehouse_id):
    async with session_maker() as session:
        name = await ledger.delete_warehouse(session, warehouse_id)
        await session.commit()
        return name


async def _warehouse_id(session_maker, name):
    async with session_maker() as session:
        return (await ledger.get_warehouse(session, name)).id


class TestTransfersAgainstManualEdits:
    async def test_reduce_and_transfer_cannot_overdraw(
        self, session_maker, seed_stock, record_of, racing_coordinator
    ):
        """Two transfers of 4 and two reductions of 3 compete for 10 units."""
        await seed_stock("WH1", "WH2", records=[("Bolt", "WH1", 10, 5)])
        source_id = (await record_of("Bolt", "WH1")).id

        async def transfer():
            async with session_maker() as session:
                return await racing_coordinator.transfer(session, "Bolt", "WH1", "WH2", 4)

        outcomes = await asyncio.gather(
            transfer(),
            _reduce(session_maker, source_id, 3),
            transfer(),
            _reduce(session_maker, source_id, 3),
            return_exceptions=True,
        )

        moved = [o for o in outcomes if isinstance(o, TransferResult)]
        reduced = [o for o in outcomes if isinstance(o, StockRecord)]
        assert all(isinstance(o, (TransferResult, StockRecord, InsufficientStock)) for o in outcomes), outcomes
        assert any(isinstance(o, InsufficientStock) for o in outcomes), outcomes

        wh1 = (await record_of("Bolt", "WH1")).quantity
        wh2 = (await record_of("Bolt", "WH2")).quantity if moved else 0
        assert wh1 >= 0
        assert wh2 == 4 * len(moved)
        # whatever left WH1 either arrived in WH2 or was written off
        assert wh1 + wh2 + 3 * len(reduced) == 10

    async def test_quantity_edit_and_transfer_serialize(
        self, session_maker, seed_stock, record_of, racing_coordinator
    ):
        """The outcome matches one of the two serial orders, never a blend."""
        await seed_stock("WH1", "WH2", records=[("Bolt", "WH1", 10, 5)])
        source_id = (await record_of("Bolt", "WH1")).id

        async def transfer():
            async with session_maker() as session:
                return await racing_coordinator.transfer(session, "Bolt", "WH1", "WH2", 4)

        outcomes = await asyncio.gather(
            transfer(), _set_quantity(session_maker, source_id, 20), return_exceptions=True
        )

        assert isinstance(outcomes[0], TransferResult), outcomes
        assert isinstance(outcomes[1], StockRecord), outcomes
        wh1 = (await record_of("Bolt", "WH1")).quantity
        # edit then transfer: 16; transfer then edit: 20
        assert wh1 in (16, 20)
        assert (await record_of("Bolt", "WH2")).quantity == 4
        if wh1 == 16:
            assert outcomes[0].new_source_quantity == 16
        else:
            assert outcomes[0].new_source_quantity == 6


class TestTransfersAgainstWarehouseDeletion:
    async def test_credit_after_lookup_keeps_warehouse_and_stock(
        self, session_maker, seed_stock, record_of, racing_coordinator, monkeypatch
    ):
        """
        A transfer into an existing zero record commits after the delete has
        looked the warehouse up. The delete must refuse and no units vanish.
        """
        await seed_stock("WH1", "WH2", records=[("Bolt", "WH1", 10, 5), ("Bolt", "WH2", 0, 5)])
        wh2_id = await _warehouse_id(session_maker, "WH2")
        real_lookup = ledger.get_warehouse_by_id
        landed = []

        async def lookup_then_transfer(session, warehouse_id, lock=False):
            wh = await real_lookup(session, warehouse_id, lock=lock)
            landed.extend(await _run_transfers(session_maker, racing_coordinator, [("Bolt", "WH1", "WH2", 6)]))
            return wh

        monkeypatch.setattr(ledger, "get_warehouse_by_id", lookup_then_transfer)

        with pytest.raises(Conflict) as err:
            await _delete_warehouse(session_maker, wh2_id)

        assert isinstance(landed[0], TransferResult), landed
        assert "6 units" in err.value.message
        assert (await record_of("Bolt", "WH1")).quantity == 4
        assert (await record_of("Bolt", "WH2")).quantity == 6

    async def test_transfer_into_deleted_warehouse_moves_nothing(
        self, session_maker, seed_stock, record_of, racing_coordinator
    ):
        await seed_stock("WH1", "WH2", records=[("Bolt", "WH1", 10, 5), ("Bolt", "WH2", 0, 5)])

        await _delete_warehouse(session_maker, await _warehouse_id(session_maker, "WH2"))
        outcomes = await _run_transfers(session_maker, racing_coordinator, [("Bolt", "WH1", "WH2", 6)])

        assert isinstance(outcomes[0], NotFound), outcomes
        assert (await record_of("Bolt", "WH1")).quantity == 10

    async def test_racing_delete_and_transfer_conserve_units(
        self, session_maker, seed_stock, record_of, racing_coordinator
    ):
        await seed_stock("WH1", "WH2", records=[("Bolt", "WH1", 10, 5), ("Bolt", "WH2", 0, 5)])
        wh2_id = await _warehouse_id(session_maker, "WH2")

        async def transfer():
            async with session_maker() as session:
                return await racing_coordinator.transfer(session, "Bolt", "WH1", "WH2", 6)

        moved, deleted = await asyncio.gather(
            transfer(), _delete_warehouse(session_maker, wh2_id), return_exceptions=True
        )

        wh1 = (await record_of("Bolt", "WH1")).quantity
        if isinstance(moved, TransferResult):
            # the credit won: the warehouse and its 6 units survive
            assert isinstance(deleted, Conflict), deleted
            assert (wh1, (await record_of("Bolt", "WH2")).quantity) == (4, 6)
        else:
            # the delete won: the transfer rolled back its debit
            assert isinstance(moved, (NotFound, Conflict)), moved
            assert deleted == "WH2"
            assert wh1 == 10
