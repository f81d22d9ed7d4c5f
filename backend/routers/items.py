import logging
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_superuser, current_active_user
from core.config import settings
from core.errors import InventoryError
from db.database import get_async_session
from db.inventory.stock import StockRecord
from db.users import User
from schemas.inventory import (
    LowStockAlertOut,
    SortField,
    SortOrder,
    StockRecordCreate,
    StockRecordOut,
    StockRecordPage,
    StockRecordUpdate,
    StockReduceRequest,
    StockStatusCountsOut,
    TransferCreate,
    TransferOut,
    WarehouseQuantityOut,
    WarehouseTotalOut,
)
from schemas.logs import AuditEntryCreate
from services import ledger, low_stock
from services.aggregation import AggregationView, get_aggregation_view
from services.audit import AuditLog, get_audit_log
from services.transfers import TransferCoordinator, get_transfer_coordinator

logger = logging.getLogger(__name__)

router = APIRouter()


def _record_out(rec: StockRecord) -> StockRecordOut:
    return StockRecordOut(**rec.to_schema)


@router.get("/items", response_model=StockRecordPage)
async def list_items(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=500),
    search: Optional[str] = None,
    sort_by: SortField = Query("name", alias="sortBy"),
    sort_order: SortOrder = Query("asc", alias="sortOrder"),
    min_quantity: Optional[int] = Query(None, alias="minQuantity"),
    max_quantity: Optional[int] = Query(None, alias="maxQuantity"),
    warehouse: Optional[str] = None,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    """
    Paged stock records.

    - search matches item or warehouse names, case-insensitively.
    - minQuantity/maxQuantity are inclusive bounds.
    """
    result = await ledger.list_all(
        db,
        ledger.StockFilter(
            min_quantity=min_quantity,
            max_quantity=max_quantity,
            search=search,
            warehouse=warehouse,
        ),
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    return StockRecordPage(
        items=[_record_out(r) for r in result.items],
        total_items=result.total_items,
        current_page=result.current_page,
        total_pages=result.total_pages,
    )


@router.get("/items/low-stock-alert", response_model=List[LowStockAlertOut])
async def low_stock_alert(
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    records = await low_stock.scan(db)
    return [
        LowStockAlertOut(
            id=r.id,
            name=r.name,
            warehouse=r.warehouse.name,
            quantity=int(r.quantity),
            low_stock_threshold=int(r.low_stock_threshold),
        )
        for r in records
    ]


@router.get("/items/bar-chart", response_model=Dict[str, WarehouseTotalOut])
async def bar_chart_data(
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
    view: AggregationView = Depends(get_aggregation_view),
):
    totals = await view.warehouse_totals(db)
    return {name: WarehouseTotalOut(total_quantity=total) for name, total in totals.items()}


@router.get("/items/pie-chart", response_model=StockStatusCountsOut)
async def pie_chart_data(
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
    view: AggregationView = Depends(get_aggregation_view),
):
    counts = await view.stock_status_counts(db)
    return StockStatusCountsOut(low_stock=counts["lowStock"], in_stock=counts["inStock"])


@router.get("/warehouse-quantities", response_model=List[WarehouseQuantityOut])
async def warehouse_quantities(
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
    view: AggregationView = Depends(get_aggregation_view),
):
    totals = await view.warehouse_totals(db)
    return [WarehouseQuantityOut(warehouse=name, total_quantity=total) for name, total in totals.items()]


@router.post("/items/transfer", response_model=TransferOut, status_code=status.HTTP_201_CREATED)
async def transfer_item(
    payload: TransferCreate,
    user: User = Depends(current_active_superuser),
    db: AsyncSession = Depends(get_async_session),
    coordinator: TransferCoordinator = Depends(get_transfer_coordinator),
):
    """
    Move stock of one item from one warehouse to another.

    - itemId is resolved to the item name; the destination record is created
      with the source's threshold when missing.
    - Send an idempotencyKey to make client retries safe: a repeated key
      returns the original result without moving stock again.
    """
    item_name = payload.item_name
    if payload.item_id is not None:
        item_name = (await ledger.get_by_id(db, payload.item_id)).name

    result = await coordinator.transfer(
        db,
        item_name,
        payload.from_warehouse,
        payload.to_warehouse,
        payload.quantity,
        user_id=user.id,
        idempotency_key=payload.idempotency_key,
    )
    return TransferOut(**result.to_dict())


@router.get("/items/{item_id}", response_model=StockRecordOut)
async def get_item(
    item_id: UUID,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    return _record_out(await ledger.get_by_id(db, item_id))


@router.post("/items", response_model=StockRecordOut, status_code=status.HTTP_201_CREATED)
async def add_item(
    payload: StockRecordCreate,
    user: User = Depends(current_active_superuser),
    db: AsyncSession = Depends(get_async_session),
    view: AggregationView = Depends(get_aggregation_view),
    audit: AuditLog = Depends(get_audit_log),
):
    """Add stock; credits the existing record when the item already lives in that warehouse."""
    try:
        rec = await ledger.add_stock(
            db,
            payload.name,
            payload.warehouse,
            payload.quantity,
            default_threshold=settings.default_low_stock_threshold,
            low_stock_threshold=payload.low_stock_threshold,
        )
        await db.commit()
    except InventoryError:
        await db.rollback()
        raise
    except Exception:
        await db.rollback()
        logger.exception("[items] add_item failed")
        raise

    view.invalidate()
    await audit.append(
        AuditEntryCreate(
            action_type="add",
            item_id=rec.id,
            item_name=rec.name,
            quantity=payload.quantity,
            to_warehouse=rec.warehouse.name,
            user_id=user.id,
        )
    )
    return _record_out(rec)


@router.put("/items/{item_id}", response_model=StockRecordOut)
async def update_item(
    item_id: UUID,
    payload: StockRecordUpdate,
    user: User = Depends(current_active_superuser),
    db: AsyncSession = Depends(get_async_session),
    view: AggregationView = Depends(get_aggregation_view),
    audit: AuditLog = Depends(get_audit_log),
):
    data = payload.model_dump(exclude_unset=True)
    try:
        rec = await ledger.update_record(db, item_id, **data)
        await db.commit()
    except InventoryError:
        await db.rollback()
        raise
    except Exception:
        await db.rollback()
        logger.exception("[items] update_item failed")
        raise

    view.invalidate()
    await audit.append(
        AuditEntryCreate(
            action_type="update",
            item_id=rec.id,
            item_name=rec.name,
            quantity=int(rec.quantity),
            to_warehouse=rec.warehouse.name,
            user_id=user.id,
        )
    )
    return _record_out(rec)


@router.post("/items/{item_id}/reduce", response_model=StockRecordOut)
async def reduce_item(
    item_id: UUID,
    payload: StockReduceRequest,
    user: User = Depends(current_active_superuser),
    db: AsyncSession = Depends(get_async_session),
    view: AggregationView = Depends(get_aggregation_view),
    audit: AuditLog = Depends(get_audit_log),
):
    try:
        rec = await ledger.reduce(db, item_id, payload.quantity)
        await db.commit()
    except InventoryError:
        await db.rollback()
        raise
    except Exception:
        await db.rollback()
        logger.exception("[items] reduce_item failed")
        raise

    view.invalidate()
    await audit.append(
        AuditEntryCreate(
            action_type="reduce",
            item_id=rec.id,
            item_name=rec.name,
            quantity=payload.quantity,
            from_warehouse=rec.warehouse.name,
            user_id=user.id,
        )
    )
    return _record_out(rec)


@router.delete("/items/{item_id}")
async def delete_item(
    item_id: UUID,
    user: User = Depends(current_active_superuser),
    db: AsyncSession = Depends(get_async_session),
    view: AggregationView = Depends(get_aggregation_view),
    audit: AuditLog = Depends(get_audit_log),
):
    try:
        rec = await ledger.delete_record(db, item_id)
        snapshot = _record_out(rec)
        await db.commit()
    except InventoryError:
        await db.rollback()
        raise
    except Exception:
        await db.rollback()
        logger.exception("[items] delete_item failed")
        raise

    view.invalidate()
    await audit.append(
        AuditEntryCreate(
            action_type="delete",
            item_id=snapshot.id,
            item_name=snapshot.name,
            quantity=snapshot.quantity,
            from_warehouse=snapshot.warehouse,
            user_id=user.id,
        )
    )
    return {"ok": True, "message": f"Item '{snapshot.name}' deleted"}
