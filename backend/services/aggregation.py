"""
Aggregation view: warehouse totals and low/in-stock counts derived from the ledger.

With ``ttl_seconds == 0`` every read recomputes from the database. With a TTL
the results are cached in-process; every successful ledger mutation calls
``invalidate()`` before its response is returned, so readers in this process
never see totals older than the last completed write. Writes committed by
other processes become visible after at most ``ttl_seconds``.
"""

import logging
import time
from typing import Callable, Dict

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from db.inventory.stock import StockRecord
from db.warehouse import Warehouse

logger = logging.getLogger(__name__)


class AggregationView:
    def __init__(self, ttl_seconds: float = 0.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = float(ttl_seconds or 0)
        self._clock = clock
        self._cache: Dict[str, tuple] = {}
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def invalidate(self) -> None:
        self._cache.clear()
        self._generation += 1
        logger.debug("Aggregates invalidated (generation=%s)", self._generation)

    def _cached(self, key: str):
        if self.ttl_seconds <= 0:
            return None
        hit = self._cache.get(key)
        if hit is None:
            return None
        stored_at, value = hit
        if self._clock() - stored_at > self.ttl_seconds:
            self._cache.pop(key, None)
            return None
        return value

    def _store(self, key: str, value, generation: int) -> None:
        # A mutation that finished while we were computing makes this value stale
        if self.ttl_seconds > 0 and generation == self._generation:
            self._cache[key] = (self._clock(), value)

    async def warehouse_totals(self, db: AsyncSession) -> Dict[str, int]:
        """Total quantity per warehouse, including empty warehouses."""
        hit = self._cached("warehouse_totals")
        if hit is not None:
            return dict(hit)

        generation = self._generation
        res = await db.execute(
            select(Warehouse.name, func.coalesce(func.sum(StockRecord.quantity), 0))
            .outerjoin(StockRecord, StockRecord.warehouse_id == Warehouse.id)
            .group_by(Warehouse.id, Warehouse.name, Warehouse.name_key)
            .order_by(Warehouse.name_key.asc())
        )
        totals = {name: int(total or 0) for (name, total) in res.all()}
        self._store("warehouse_totals", totals, generation)
        return dict(totals)

    async def stock_status_counts(self, db: AsyncSession) -> Dict[str, int]:
        hit = self._cached("stock_status_counts")
        if hit is not None:
            return dict(hit)

        generation = self._generation
        res = await db.execute(
            select(
                func.coalesce(
                    func.sum(case((StockRecord.quantity <= StockRecord.low_stock_threshold, 1), else_=0)),
                    0,
                ),
                func.count(StockRecord.id),
            )
        )
        low, total = res.one()
        counts = {"lowStock": int(low or 0), "inStock": int(total or 0) - int(low or 0)}
        self._store("stock_status_counts", counts, generation)
        return dict(counts)


aggregation_view = AggregationView(ttl_seconds=settings.aggregate_cache_ttl_seconds)


def get_aggregation_view() -> AggregationView:
    return aggregation_view
