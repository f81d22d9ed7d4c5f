import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_superuser, current_active_user
from core.errors import Conflict
from db.database import get_async_session
from db.users import User
from db.warehouse import Warehouse, warehouse_key
from schemas.warehouses import WarehouseCreate, WarehouseRead, WarehouseUpdate
from services import ledger
from services.aggregation import AggregationView, get_aggregation_view

logger = logging.getLogger(__name__)

router = APIRouter()


async def _ensure_name_free(db: AsyncSession, name: str, exclude_id: UUID | None = None) -> None:
    stmt = select(Warehouse.id).where(Warehouse.name_key == warehouse_key(name))
    if exclude_id is not None:
        stmt = stmt.where(Warehouse.id != exclude_id)
    if (await db.execute(stmt)).first() is not None:
        raise Conflict(f"Warehouse '{name}' already exists")


@router.get("/", response_model=List[WarehouseRead])
async def list_warehouses(
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    res = await db.execute(select(Warehouse).order_by(Warehouse.name_key.asc()))
    return [WarehouseRead(**w.to_schema) for w in res.scalars().all()]


@router.post("/", response_model=WarehouseRead, status_code=status.HTTP_201_CREATED)
async def create_warehouse(
    payload: WarehouseCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_superuser),
    view: AggregationView = Depends(get_aggregation_view),
):
    await _ensure_name_free(db, payload.name)

    wh = Warehouse(name=payload.name, name_key=warehouse_key(payload.name), location=payload.location)
    db.add(wh)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict(f"Warehouse '{payload.name}' already exists")
    await db.refresh(wh)
    view.invalidate()
    logger.info("Warehouse '%s' created", wh.name)
    return WarehouseRead(**wh.to_schema)


@router.put("/{warehouse_id}", response_model=WarehouseRead)
async def update_warehouse(
    warehouse_id: UUID,
    payload: WarehouseUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_superuser),
    view: AggregationView = Depends(get_aggregation_view),
):
    """Rename or relocate a warehouse; its stock follows via the foreign key."""
    wh = await ledger.get_warehouse_by_id(db, warehouse_id)

    data = payload.model_dump(exclude_unset=True)
    if data.get("name") is not None:
        await _ensure_name_free(db, data["name"], exclude_id=wh.id)
        wh.name = data["name"]
        wh.name_key = warehouse_key(data["name"])
    if "location" in data:
        wh.location = data["location"]

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict(f"Warehouse '{data.get('name')}' already exists")
    await db.refresh(wh)
    view.invalidate()
    return WarehouseRead(**wh.to_schema)


@router.delete("/{warehouse_id}")
async def delete_warehouse(
    warehouse_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_superuser),
    view: AggregationView = Depends(get_aggregation_view),
):
    """Delete an empty warehouse. Zero-quantity records go with it."""
    name = await ledger.delete_warehouse(db, warehouse_id)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict(f"Warehouse '{name}' still holds stock; transfer or remove it first")
    view.invalidate()
    logger.info("Warehouse '%s' deleted", name)
    return {"ok": True, "message": f"Warehouse '{name}' deleted"}
