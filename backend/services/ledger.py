"""
Stock ledger: authoritative storage and atomic mutation of stock records.

Every mutation is a single SQL statement against one (item, warehouse) row:
credits are ``INSERT ... ON CONFLICT DO UPDATE`` upserts and debits are
conditional ``UPDATE ... WHERE quantity >= :q`` compare-and-swaps. Same-key
writers therefore serialize on the row inside the database, and writers on
different keys never wait for each other. Nothing here commits; callers own
the transaction.
"""

import logging
import math
import uuid
from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID

from sqlalchemy import asc, delete, desc, exists, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import Conflict, InsufficientStock, InvalidArgument, InvariantViolation, NotFound
from db.inventory.stock import StockRecord, item_key
from db.warehouse import Warehouse, warehouse_key

logger = logging.getLogger(__name__)


@dataclass
class StockFilter:
    min_quantity: Optional[int] = None
    max_quantity: Optional[int] = None
    search: Optional[str] = None
    warehouse: Optional[str] = None


@dataclass
class Page:
    items: List[StockRecord]
    total_items: int
    current_page: int
    total_pages: int


_SORT_COLUMNS = {
    "name": StockRecord.name_key,
    "quantity": StockRecord.quantity,
    "warehouse": Warehouse.name_key,
    "createdAt": StockRecord.created_at,
    "updatedAt": StockRecord.updated_at,
}


def _insert_for(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"stock upserts are not supported on {dialect}")


async def _reload(db: AsyncSession, record_id: UUID) -> StockRecord:
    res = await db.execute(
        select(StockRecord)
        .where(StockRecord.id == record_id)
        .execution_options(populate_existing=True)
    )
    return res.scalar_one()


async def get_warehouse(db: AsyncSession, name: str) -> Warehouse:
    res = await db.execute(select(Warehouse).where(Warehouse.name_key == warehouse_key(name)))
    wh = res.scalar_one_or_none()
    if not wh:
        raise NotFound(f"Warehouse '{name}' not found")
    return wh


async def get_warehouse_by_id(db: AsyncSession, warehouse_id: UUID, lock: bool = False) -> Warehouse:
    stmt = select(Warehouse).where(Warehouse.id == warehouse_id)
    if lock:
        # Blocks concurrent credits into this warehouse until we commit
        stmt = stmt.with_for_update()
    wh = (await db.execute(stmt)).scalar_one_or_none()
    if not wh:
        raise NotFound("Warehouse not found")
    return wh


async def held_quantity(db: AsyncSession, warehouse_id: UUID) -> int:
    res = await db.execute(
        select(func.coalesce(func.sum(StockRecord.quantity), 0)).where(StockRecord.warehouse_id == warehouse_id)
    )
    return int(res.scalar_one() or 0)


async def delete_warehouse(db: AsyncSession, warehouse_id: UUID) -> str:
    """
    Delete a warehouse together with its zero-quantity records.

    Both deletes are conditional, so a credit that lands after the lookup
    keeps its record and the warehouse survives. Any record left behind
    also trips the ``ON DELETE RESTRICT`` foreign key. Either way the
    caller gets a Conflict and no stock is lost. Returns the deleted name.
    """
    wh = await get_warehouse_by_id(db, warehouse_id, lock=True)
    name = wh.name

    try:
        await db.execute(
            delete(StockRecord)
            .where(StockRecord.warehouse_id == warehouse_id, StockRecord.quantity == 0)
            .execution_options(synchronize_session=False)
        )
        res = await db.execute(
            delete(Warehouse)
            .where(
                Warehouse.id == warehouse_id,
                ~exists().where(StockRecord.warehouse_id == warehouse_id),
            )
            .execution_options(synchronize_session=False)
        )
    except IntegrityError:
        await db.rollback()
        raise Conflict(f"Warehouse '{name}' still holds stock; transfer or remove it first")

    if res.rowcount == 0:
        total = await held_quantity(db, warehouse_id)
        await db.rollback()
        raise Conflict(f"Warehouse '{name}' still holds {total} units; transfer or remove them first")
    return name


async def get(db: AsyncSession, name: str, warehouse: str) -> StockRecord:
    res = await db.execute(
        select(StockRecord)
        .join(Warehouse, StockRecord.warehouse_id == Warehouse.id)
        .where(
            StockRecord.name_key == item_key(name),
            Warehouse.name_key == warehouse_key(warehouse),
        )
        .execution_options(populate_existing=True)
    )
    rec = res.scalar_one_or_none()
    if not rec:
        raise NotFound(f"Item '{name}' not found in warehouse '{warehouse}'")
    return rec


async def get_by_id(db: AsyncSession, record_id: UUID) -> StockRecord:
    res = await db.execute(
        select(StockRecord)
        .where(StockRecord.id == record_id)
        .execution_options(populate_existing=True)
    )
    rec = res.scalar_one_or_none()
    if not rec:
        raise NotFound("Item not found")
    return rec


async def try_debit(db: AsyncSession, record: StockRecord, quantity: int) -> Optional[StockRecord]:
    """
    Compare-and-swap debit. Returns the updated record, or None when the row
    holds less than ``quantity`` at the moment the statement runs.
    """
    if quantity <= 0:
        raise InvalidArgument("quantity must be > 0")

    res = await db.execute(
        update(StockRecord)
        .where(StockRecord.id == record.id, StockRecord.quantity >= quantity)
        .values(quantity=StockRecord.quantity - quantity, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        return None
    return await _reload(db, record.id)


async def upsert_delta(
    db: AsyncSession,
    name: str,
    warehouse: str,
    delta: int,
    default_threshold: int,
) -> StockRecord:
    """Atomically apply ``quantity += delta``, creating the record on a credit."""
    if delta < 0:
        rec = await get(db, name, warehouse)
        updated = await try_debit(db, rec, -delta)
        if updated is None:
            logger.error(
                "Invariant violation: debit of %s on '%s'@'%s' would leave negative stock (quantity=%s)",
                -delta, rec.name, warehouse, rec.quantity,
            )
            raise InvariantViolation(
                f"Applying {delta} to '{rec.name}' in '{warehouse}' would make quantity negative"
            )
        return updated

    wh = await get_warehouse(db, warehouse)
    tbl = StockRecord.__table__
    insert = _insert_for(db)
    stmt = insert(tbl).values(
        id=uuid.uuid4(),
        name=name.strip(),
        name_key=item_key(name),
        warehouse_id=wh.id,
        quantity=delta,
        low_stock_threshold=default_threshold,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[tbl.c.name_key, tbl.c.warehouse_id],
        set_={"quantity": tbl.c.quantity + delta, "updated_at": func.now()},
    ).returning(tbl.c.id)
    record_id = (await db.execute(stmt)).scalar_one()
    return await _reload(db, record_id)


async def list_by_warehouse(db: AsyncSession, warehouse: str) -> List[StockRecord]:
    wh = await get_warehouse(db, warehouse)
    res = await db.execute(
        select(StockRecord)
        .where(StockRecord.warehouse_id == wh.id)
        .order_by(StockRecord.name_key.asc())
    )
    return list(res.scalars().all())


async def list_all(
    db: AsyncSession,
    filters: Optional[StockFilter] = None,
    sort_by: str = "name",
    sort_order: str = "asc",
    page: int = 1,
    limit: int = 15,
) -> Page:
    filters = filters or StockFilter()
    page = max(int(page), 1)
    limit = max(int(limit), 1)

    stmt = select(StockRecord).join(Warehouse, StockRecord.warehouse_id == Warehouse.id)
    if filters.min_quantity is not None:
        stmt = stmt.where(StockRecord.quantity >= filters.min_quantity)
    if filters.max_quantity is not None:
        stmt = stmt.where(StockRecord.quantity <= filters.max_quantity)
    if filters.warehouse:
        stmt = stmt.where(Warehouse.name_key == warehouse_key(filters.warehouse))
    if filters.search:
        qq = f"%{filters.search.strip().lower()}%"
        stmt = stmt.where(or_(StockRecord.name_key.like(qq), Warehouse.name_key.like(qq)))

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()

    column = _SORT_COLUMNS.get(sort_by, StockRecord.name_key)
    direction = desc if sort_order == "desc" else asc
    stmt = stmt.order_by(direction(column), StockRecord.id.asc())
    stmt = stmt.offset((page - 1) * limit).limit(limit)

    res = await db.execute(stmt.execution_options(populate_existing=True))
    return Page(
        items=list(res.scalars().all()),
        total_items=int(total),
        current_page=page,
        total_pages=math.ceil(total / limit) if total else 0,
    )


async def add_stock(
    db: AsyncSession,
    name: str,
    warehouse: str,
    quantity: int,
    default_threshold: int,
    low_stock_threshold: Optional[int] = None,
) -> StockRecord:
    """Create the record, or credit it when the item already lives there."""
    if quantity < 0:
        raise InvalidArgument("quantity must be >= 0")
    threshold = default_threshold if low_stock_threshold is None else low_stock_threshold
    rec = await upsert_delta(db, name, warehouse, quantity, threshold)
    if low_stock_threshold is not None and rec.low_stock_threshold != low_stock_threshold:
        await db.execute(
            update(StockRecord)
            .where(StockRecord.id == rec.id)
            .values(low_stock_threshold=low_stock_threshold, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        rec = await _reload(db, rec.id)
    return rec


async def update_record(
    db: AsyncSession,
    record_id: UUID,
    *,
    name: Optional[str] = None,
    warehouse: Optional[str] = None,
    quantity: Optional[int] = None,
    low_stock_threshold: Optional[int] = None,
) -> StockRecord:
    """Manual edit, applied as one UPDATE statement so it never interleaves with a transfer."""
    rec = await get_by_id(db, record_id)

    values = {}
    if name is not None:
        values["name"] = name.strip()
        values["name_key"] = item_key(name)
    if warehouse is not None:
        values["warehouse_id"] = (await get_warehouse(db, warehouse)).id
    if quantity is not None:
        if quantity < 0:
            raise InvalidArgument("quantity must be >= 0")
        values["quantity"] = quantity
    if low_stock_threshold is not None:
        if low_stock_threshold < 0:
            raise InvalidArgument("lowStockThreshold must be >= 0")
        values["low_stock_threshold"] = low_stock_threshold
    if not values:
        return rec

    target_key = values.get("name_key", rec.name_key)
    target_wh = values.get("warehouse_id", rec.warehouse_id)
    if (target_key, target_wh) != (rec.name_key, rec.warehouse_id):
        clash = await db.execute(
            select(StockRecord.id).where(
                StockRecord.name_key == target_key,
                StockRecord.warehouse_id == target_wh,
                StockRecord.id != rec.id,
            )
        )
        if clash.first() is not None:
            raise Conflict(f"Item '{values.get('name', rec.name)}' already exists in that warehouse")

    try:
        res = await db.execute(
            update(StockRecord)
            .where(StockRecord.id == record_id)
            .values(**values, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
    except IntegrityError:
        await db.rollback()
        raise Conflict("Item already exists in that warehouse")
    if res.rowcount == 0:
        raise NotFound("Item not found")
    return await _reload(db, record_id)


async def reduce(db: AsyncSession, record_id: UUID, quantity: int) -> StockRecord:
    if quantity <= 0:
        raise InvalidArgument("quantity must be > 0")
    rec = await get_by_id(db, record_id)
    updated = await try_debit(db, rec, quantity)
    if updated is None:
        current = await get_by_id(db, record_id)
        raise InsufficientStock(
            f"Not enough '{current.name}' in '{current.warehouse.name}'. "
            f"Available={int(current.quantity)} requested={int(quantity)}",
            available=int(current.quantity),
            requested=int(quantity),
        )
    return updated


async def delete_record(db: AsyncSession, record_id: UUID) -> StockRecord:
    rec = await get_by_id(db, record_id)
    await db.delete(rec)
    await db.flush()
    return rec
