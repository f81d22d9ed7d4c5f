"""
Reset the stock ledger and seed a few demo warehouses and items.

This script:
- Deletes ALL transfer receipts, stock records and warehouses (audit log is kept).
- Creates the warehouses listed in DEMO_WAREHOUSES.
- Seeds every demo item into every warehouse with a small quantity.

Run from the backend directory:
  PYTHONPATH=. python scripts/seed_demo_inventory.py

Optional env vars:
- DEMO_WAREHOUSES (default: "Main,North,South")
- DEMO_ITEM_QTY (default: 20)
- DEMO_LOW_STOCK_THRESHOLD (default: 5)
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Sequence

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import configure_logging
from db.database import async_session_maker, create_db_and_tables
from db.inventory.stock import StockRecord
from db.inventory.transfer import TransferReceipt
from db.warehouse import Warehouse, warehouse_key
from services import ledger

logger = logging.getLogger(__name__)

DEMO_ITEMS = ("Bolt", "Nut", "Washer", "Hinge", "Bracket", "Screw")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)).strip())
    except ValueError:
        return default


def _env_list(name: str, default: str) -> list[str]:
    return [v.strip() for v in os.getenv(name, default).split(",") if v.strip()]


async def seed(
    db: AsyncSession,
    warehouses: Sequence[str],
    items: Sequence[str] = DEMO_ITEMS,
    quantity: int = 20,
    threshold: int = 5,
) -> tuple[int, int]:
    """Wipe the ledger and seed it. Returns (warehouses created, records created)."""
    # children first
    await db.execute(delete(TransferReceipt))
    await db.execute(delete(StockRecord))
    await db.execute(delete(Warehouse))
    await db.commit()

    for name in warehouses:
        db.add(Warehouse(name=name, name_key=warehouse_key(name)))
    await db.flush()

    created_records = 0
    for wh in warehouses:
        for item in items:
            await ledger.add_stock(db, item, wh, quantity, default_threshold=threshold)
            created_records += 1

    await db.commit()
    return len(warehouses), created_records


async def main() -> None:
    configure_logging()
    warehouses = _env_list("DEMO_WAREHOUSES", "Main,North,South")
    qty = _env_int("DEMO_ITEM_QTY", 20)
    threshold = _env_int("DEMO_LOW_STOCK_THRESHOLD", 5)

    await create_db_and_tables()
    async with async_session_maker() as db:
        created_wh, created_records = await seed(db, warehouses, quantity=qty, threshold=threshold)

    logger.info(
        "Inventory reset complete. Warehouses created: %s. Stock records created: %s (qty=%s, threshold=%s).",
        created_wh, created_records, qty, threshold,
    )


if __name__ == "__main__":
    asyncio.run(main())
