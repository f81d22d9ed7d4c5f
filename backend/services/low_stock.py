"""
Low-stock monitor: periodic scan for records at or below their threshold.

The scan runs on an APScheduler interval job, independent of request traffic.
Results are pushed to subscribers (at-most-once, nothing is persisted); with
no subscriber attached they are simply dropped. A failing scan or subscriber
is logged and the next tick runs as usual.
"""

import logging
from typing import Awaitable, Callable, List, Optional, Union

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import settings
from db.database import async_session_maker
from db.inventory.stock import StockRecord
from db.warehouse import Warehouse

logger = logging.getLogger(__name__)

AlertCallback = Callable[[List[StockRecord]], Union[None, Awaitable[None]]]

_JOB_ID = "low_stock_scan"


async def scan(db: AsyncSession) -> List[StockRecord]:
    """Records with quantity <= low_stock_threshold, ordered by name then warehouse."""
    res = await db.execute(
        select(StockRecord)
        .join(Warehouse, StockRecord.warehouse_id == Warehouse.id)
        .where(StockRecord.quantity <= StockRecord.low_stock_threshold)
        .order_by(StockRecord.name_key.asc(), Warehouse.name_key.asc())
        .execution_options(populate_existing=True)
    )
    return list(res.scalars().all())


class LowStockMonitor:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        interval_seconds: int = 300,
    ):
        self._session_maker = session_maker
        self.interval_seconds = interval_seconds
        self._subscribers: List[AlertCallback] = []
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.is_running = False

    def subscribe(self, callback: AlertCallback) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: AlertCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def run_scan(self) -> Optional[List[StockRecord]]:
        """One scheduled tick. Never raises."""
        try:
            async with self._session_maker() as db:
                records = await scan(db)
        except Exception:
            logger.exception("Low-stock scan failed; will retry on the next tick")
            return None

        if records:
            logger.info("Low stock on %s record(s): %s", len(records), ", ".join(r.name for r in records))

        for callback in list(self._subscribers):
            try:
                outcome = callback(records)
                if outcome is not None:
                    await outcome
            except Exception:
                logger.exception("Low-stock subscriber %r failed", callback)
        return records

    def start(self) -> None:
        """Start the interval job (needs a running event loop)."""
        if self.is_running:
            return
        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self.run_scan,
            trigger="interval",
            seconds=self.interval_seconds,
            id=_JOB_ID,
            name="Low-stock scan",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        self.is_running = True
        logger.info("Low-stock monitor started (every %ss)", self.interval_seconds)

    def stop(self) -> None:
        if self.is_running and self.scheduler is not None:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            logger.info("Low-stock monitor stopped")


low_stock_monitor = LowStockMonitor(
    async_session_maker,
    interval_seconds=settings.low_stock_scan_interval_seconds,
)
